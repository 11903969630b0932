from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Tuple, Union

from catalog import ProductTemplate
from formula import FormulaError, evaluate

logger = logging.getLogger(__name__)

DEFAULT_QUANTITY = 1.0
NOT_READY_TEXT = "..."
ERROR_TEXT = "Error"
GRAND_TOTAL_LABEL = "Grand Total"


class InstanceNotFound(Exception):
    def __init__(self, instance_id: str):
        super().__init__(f"Calculation {instance_id!r} not found")
        self.instance_id = instance_id


class UnknownVariable(ValueError):
    pass


# ---------------------------------------------------------------------------
# Result states
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NotReady:
    pass


@dataclass(frozen=True)
class EvaluationError:
    message: str


@dataclass(frozen=True)
class Ready:
    value: float


UnitResult = Union[Ready, NotReady, EvaluationError]


@dataclass(frozen=True)
class OutputSnapshot:
    bindings: Tuple[Tuple[str, float], ...]
    quantity: float
    unit_result: UnitResult
    total: float


Listener = Callable[[str, OutputSnapshot], None]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_empty(raw: Any) -> bool:
    return raw is None or (isinstance(raw, str) and not raw.strip())


def _parse_finite(raw: Any) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    try:
        value = float(raw.strip() if isinstance(raw, str) else raw)
    except (TypeError, ValueError, OverflowError):
        return None
    return value if math.isfinite(value) else None


def format_number(value: float) -> str:
    """Render with thousands separators and at most two fractional digits."""
    text = f"{value:,.2f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text == "-0" else text


def describe_result(result: UnitResult) -> str:
    if isinstance(result, Ready):
        return format_number(result.value)
    if isinstance(result, EvaluationError):
        return ERROR_TEXT
    return NOT_READY_TEXT


# ---------------------------------------------------------------------------
# Variable binding store
# ---------------------------------------------------------------------------


class BindingStore:
    """Entered values by variable name. A missing name means "not entered yet"."""

    def __init__(self) -> None:
        self._values: Dict[str, float] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return len(self._values)

    def get(self, name: str) -> Optional[float]:
        return self._values.get(name)

    def as_dict(self) -> Dict[str, float]:
        return dict(self._values)

    def snapshot(self) -> Tuple[Tuple[str, float], ...]:
        return tuple(sorted(self._values.items()))

    def set_value(self, name: str, raw: Any) -> bool:
        """Apply raw field input. Returns False when the input was ignored."""
        if _is_empty(raw):
            return self._values.pop(name, None) is not None
        value = _parse_finite(raw)
        if value is None:
            logger.debug("Ignoring non-numeric input %r for %s", raw, name)
            return False
        if name in self._values and self._values[name] == value:
            return False
        self._values[name] = value
        return True

    def clear(self) -> bool:
        changed = bool(self._values)
        self._values.clear()
        return changed

    def retain(self, names: Iterable[str]) -> bool:
        keep = set(names)
        dropped = [name for name in self._values if name not in keep]
        for name in dropped:
            del self._values[name]
        return bool(dropped)


# ---------------------------------------------------------------------------
# Calculation instance
# ---------------------------------------------------------------------------


class CalculationInstance:
    """One session-local use of a product template.

    Every mutator recomputes synchronously. Listeners are told about the new
    output only when it differs from what they were last told.
    """

    def __init__(
        self,
        template: ProductTemplate,
        instance_id: Optional[str] = None,
        quantity: float = DEFAULT_QUANTITY,
    ):
        self.instance_id = instance_id or uuid.uuid4().hex
        self.template = template
        self.bindings = BindingStore()
        self.quantity = max(0.0, float(quantity))
        self.unit_result: UnitResult = NotReady()
        self.total = 0.0
        self._listeners: List[Listener] = []
        self._last_output: Optional[OutputSnapshot] = None
        self.recompute()

    def snapshot(self) -> OutputSnapshot:
        return OutputSnapshot(
            bindings=self.bindings.snapshot(),
            quantity=self.quantity,
            unit_result=self.unit_result,
            total=self.total,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and hand it the current output right away."""
        self._listeners.append(listener)
        listener(self.instance_id, self.snapshot())

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_value(self, name: str, raw: Any) -> bool:
        if name not in self.template.variable_names:
            raise UnknownVariable(f"{name!r} is not a variable of {self.template.name!r}")
        changed = self.bindings.set_value(name, raw)
        self.recompute()
        return changed

    def set_quantity(self, raw: Any) -> bool:
        value = None if _is_empty(raw) else _parse_finite(raw)
        if value is None or value < 0:
            logger.debug("Ignoring quantity input %r for %s", raw, self.instance_id)
            return False
        changed = value != self.quantity
        self.quantity = value
        self.recompute()
        return changed

    def rebind(self, template: ProductTemplate) -> None:
        if template.id != self.template.id:
            self.bindings.clear()
        else:
            self.bindings.retain(template.variable_names)
        self.template = template
        self.recompute()

    def recompute(self) -> bool:
        """Re-evaluate the formula. Returns True if listeners were notified."""
        self.unit_result = self._evaluate()
        if isinstance(self.unit_result, Ready):
            self.total = self.unit_result.value * self.quantity
        else:
            self.total = 0.0
        return self._notify()

    def _evaluate(self) -> UnitResult:
        values = self.bindings.as_dict()
        # An empty binding map is never ready, even for templates without variables.
        if not values or any(name not in values for name in self.template.variable_names):
            return NotReady()
        try:
            return Ready(evaluate(self.template.formula, values))
        except FormulaError as exc:
            logger.debug("Formula of %s failed: %s", self.template.id, exc)
            return EvaluationError(str(exc))

    def _notify(self) -> bool:
        output = self.snapshot()
        if output == self._last_output:
            return False
        self._last_output = output
        for listener in list(self._listeners):
            listener(self.instance_id, output)
        return True


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


class LineItem(NamedTuple):
    index: Optional[int]
    template_name: str
    bound_variables: str
    quantity: Optional[float]
    unit_result: Optional[UnitResult]
    total: float

    @property
    def is_grand_total(self) -> bool:
        return self.index is None


def describe_bindings(template: ProductTemplate, bindings: Tuple[Tuple[str, float], ...]) -> str:
    values = dict(bindings)
    return ", ".join(
        f"{v.label}: {format_number(values[v.name])}"
        for v in template.variables
        if v.name in values
    )


class Aggregator:
    """Last reported output per calculation instance."""

    def __init__(self) -> None:
        self._snapshots: Dict[str, OutputSnapshot] = {}
        self.notifications = 0

    def __len__(self) -> int:
        return len(self._snapshots)

    def get(self, instance_id: str) -> Optional[OutputSnapshot]:
        return self._snapshots.get(instance_id)

    def upsert(self, instance_id: str, snapshot: OutputSnapshot) -> None:
        self._snapshots[instance_id] = snapshot
        self.notifications += 1

    def remove(self, instance_id: str) -> None:
        self._snapshots.pop(instance_id, None)

    def grand_total(self) -> float:
        return sum(snapshot.total for snapshot in self._snapshots.values())

    def export_line_items(self, instances: Iterable[CalculationInstance]) -> List[LineItem]:
        items: List[LineItem] = []
        for index, instance in enumerate(instances, start=1):
            snapshot = self._snapshots.get(instance.instance_id)
            if snapshot is None:
                snapshot = OutputSnapshot((), instance.quantity, NotReady(), 0.0)
            items.append(LineItem(
                index=index,
                template_name=instance.template.name,
                bound_variables=describe_bindings(instance.template, snapshot.bindings),
                quantity=snapshot.quantity,
                unit_result=snapshot.unit_result,
                total=snapshot.total,
            ))
        items.append(LineItem(None, GRAND_TOTAL_LABEL, "", None, None, self.grand_total()))
        return items


class CalculationSession:
    """Ordered calculation instances and the aggregator watching them."""

    def __init__(self, default_quantity: float = DEFAULT_QUANTITY):
        self.default_quantity = default_quantity
        self.aggregator = Aggregator()
        self._instances: Dict[str, CalculationInstance] = {}
        self._unsubscribers: Dict[str, Callable[[], None]] = {}

    def __len__(self) -> int:
        return len(self._instances)

    def instances(self) -> List[CalculationInstance]:
        return list(self._instances.values())

    def get(self, instance_id: str) -> CalculationInstance:
        instance = self._instances.get(instance_id)
        if instance is None:
            raise InstanceNotFound(instance_id)
        return instance

    def add(self, template: ProductTemplate) -> CalculationInstance:
        instance = CalculationInstance(template, quantity=self.default_quantity)
        self._instances[instance.instance_id] = instance
        self._unsubscribers[instance.instance_id] = instance.subscribe(self.aggregator.upsert)
        logger.debug("Added %s for template %s", instance.instance_id, template.id)
        return instance

    def remove(self, instance_id: str) -> None:
        self.get(instance_id)
        self._unsubscribers.pop(instance_id)()
        del self._instances[instance_id]
        self.aggregator.remove(instance_id)
        logger.debug("Removed %s", instance_id)

    def refresh_template(self, template: ProductTemplate) -> int:
        refreshed = 0
        for instance in self._instances.values():
            if instance.template.id == template.id:
                instance.rebind(template)
                refreshed += 1
        return refreshed

    def grand_total(self) -> float:
        return self.aggregator.grand_total()

    def line_items(self) -> List[LineItem]:
        return self.aggregator.export_line_items(self.instances())
