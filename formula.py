from __future__ import annotations

import ast
import math
from typing import Any, Dict, Mapping

from simpleeval import DEFAULT_OPERATORS, InvalidExpression, SimpleEval, safe_power

# Circle constant rounded to two decimals; existing totals depend on this exact value.
PI_APPROX = 3.14
CONSTANTS: Dict[str, float] = {"PI": PI_APPROX, "pi": PI_APPROX}

# `^` is exponentiation in template formulas, not bitwise xor.
OPERATORS: Dict[Any, Any] = dict(DEFAULT_OPERATORS)
OPERATORS[ast.BitXor] = safe_power
for _bitwise in (ast.BitAnd, ast.BitOr, ast.LShift, ast.RShift, ast.Invert):
    OPERATORS.pop(_bitwise, None)

FUNCTIONS: Dict[str, Any] = {
    "abs": abs,
    "round": round,
    "min": min,
    "max": max,
    "sqrt": math.sqrt,
    "ceil": math.ceil,
    "floor": math.floor,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
}


class FormulaError(Exception):
    """A formula could not be turned into a finite number."""


class FormulaEvaluator(SimpleEval):
    """SimpleEval restricted to arithmetic: no attribute or subscript access."""

    def __init__(self, names: Mapping[str, float]):
        super().__init__(operators=OPERATORS, functions=FUNCTIONS, names=dict(names))
        for node in (ast.Attribute, ast.Subscript):
            self.nodes.pop(node, None)


def build_scope(values: Mapping[str, float]) -> Dict[str, float]:
    scope = dict(values)
    scope.update(CONSTANTS)
    return scope


def evaluate(formula: str, values: Mapping[str, float]) -> float:
    """Evaluate ``formula`` over ``values`` plus the PI constants.

    Only arithmetic over the given names and the whitelisted math functions is
    available. Anything else (unknown names, attribute access, bad syntax,
    division by zero, non-finite or non-numeric results) raises FormulaError.
    """
    if not formula or not formula.strip():
        raise FormulaError("Formula is empty")

    expression = formula.strip()
    evaluator = FormulaEvaluator(build_scope(values))
    try:
        if len(ast.parse(expression).body) != 1:
            raise FormulaError("Formula must be a single expression")
        result = evaluator.eval(expression)
    except (InvalidExpression, SyntaxError) as exc:
        raise FormulaError(f"Invalid formula: {exc}") from exc
    except (ArithmeticError, TypeError, ValueError, RecursionError) as exc:
        raise FormulaError(f"Cannot evaluate formula: {exc}") from exc

    if isinstance(result, bool) or not isinstance(result, (int, float)):
        raise FormulaError(f"Formula produced a non-numeric result: {result!r}")
    try:
        value = float(result)
    except OverflowError as exc:
        raise FormulaError("Formula result is too large") from exc
    if not math.isfinite(value):
        raise FormulaError("Formula result is not finite")
    return value
