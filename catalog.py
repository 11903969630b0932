from __future__ import annotations

import json
import keyword
import logging
import uuid
from copy import deepcopy
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from formula import CONSTANTS

logger = logging.getLogger(__name__)

TEMPLATE_FIELDS: tuple[str, ...] = ("name", "image_ref", "variables", "formula")


class TemplateNotFound(Exception):
    def __init__(self, template_id: str):
        super().__init__(f"Template {template_id!r} not found")
        self.template_id = template_id


class StoreError(Exception):
    """The template store could not be read or written."""


class TemplateValidationError(ValueError):
    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Variable:
    name: str
    label: str


@dataclass(frozen=True)
class ProductTemplate:
    id: str
    name: str
    formula: str
    variables: Tuple[Variable, ...] = ()
    image_ref: str = ""
    created_at: str = ""
    updated_at: str = ""

    @property
    def variable_names(self) -> Tuple[str, ...]:
        return tuple(v.name for v in self.variables)

    def label_for(self, name: str) -> str:
        for variable in self.variables:
            if variable.name == name:
                return variable.label
        return name

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProductTemplate":
        variables = tuple(
            Variable(name=str(v.get("name", "")), label=str(v.get("label", "")))
            for v in data.get("variables") or ()
        )
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            formula=str(data.get("formula", "")),
            variables=variables,
            image_ref=str(data.get("image_ref") or ""),
            created_at=str(data.get("created_at") or ""),
            updated_at=str(data.get("updated_at") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["variables"] = [asdict(v) for v in self.variables]
        return data


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def validate_template(data: Mapping[str, Any]) -> list[str]:
    errs = []
    if _is_blank(data.get("name")):
        errs.append("Name is required.")
    if _is_blank(data.get("formula")):
        errs.append("Formula is required.")
    image_ref = data.get("image_ref")
    if image_ref is not None and not isinstance(image_ref, str):
        errs.append("Image reference must be a string.")

    variables = data.get("variables") or []
    if not isinstance(variables, list):
        return errs + ["Variables must be a list."]
    seen: set[str] = set()
    for idx, variable in enumerate(variables, start=1):
        if not isinstance(variable, dict):
            errs.append(f"Variable #{idx} must be an object.")
            continue
        name = variable.get("name")
        if _is_blank(name):
            errs.append(f"Variable #{idx} needs a name.")
        elif not name.isidentifier() or keyword.iskeyword(name):
            errs.append(f"Variable name {name!r} must be a valid identifier.")
        elif name in CONSTANTS:
            errs.append(f"Variable name {name!r} is reserved.")
        elif name in seen:
            errs.append(f"Variable name {name!r} is used more than once.")
        else:
            seen.add(name)
        if _is_blank(variable.get("label")):
            errs.append(f"Variable #{idx} needs a label.")
    return errs


def _clean_variable(variable: Any) -> Any:
    if not isinstance(variable, dict):
        return variable
    return {key: str(variable.get(key) or "").strip() for key in ("name", "label")}


def _clean_payload(data: Mapping[str, Any]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key in TEMPLATE_FIELDS:
        if key not in data:
            continue
        value = data[key]
        if key == "variables" and isinstance(value, list):
            value = [_clean_variable(v) for v in value]
        elif isinstance(value, str):
            value = value.strip()
        payload[key] = value
    return payload


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


# ---------------------------------------------------------------------------
# JSON-file template store
# ---------------------------------------------------------------------------


def _load_json(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as exc:
        raise StoreError(f"Invalid JSON in {path}: {exc}") from exc
    except OSError as exc:
        raise StoreError(f"Failed to read {path}: {exc}") from exc


class TemplateStore:
    """Product templates kept in a single JSON document.

    Construct once and hand it to the app; the file is read on first use and
    rewritten on every change. A failed write leaves the in-memory catalog as
    it was before the call.
    """

    def __init__(self, path: str):
        self.path = path
        self._templates: Optional[Dict[str, dict[str, Any]]] = None

    def open(self) -> "TemplateStore":
        if self._templates is None:
            document = _load_json(self.path)
            records = document.get("templates", []) if isinstance(document, dict) else []
            self._templates = {str(r["id"]): r for r in records if isinstance(r, dict) and "id" in r}
            logger.info("Loaded %d templates from %s", len(self._templates), self.path)
        return self

    def _records(self) -> Dict[str, dict[str, Any]]:
        self.open()
        assert self._templates is not None
        return self._templates

    def _flush(self, records: Dict[str, dict[str, Any]]) -> None:
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump({"templates": list(records.values())}, f, indent=2, ensure_ascii=False)
                f.write("\n")
        except OSError as exc:
            raise StoreError(f"Failed to write {self.path}: {exc}") from exc
        self._templates = records

    def list(self) -> List[ProductTemplate]:
        return [ProductTemplate.from_dict(r) for r in self._records().values()]

    def get(self, template_id: str) -> ProductTemplate:
        record = self._records().get(template_id)
        if record is None:
            raise TemplateNotFound(template_id)
        return ProductTemplate.from_dict(record)

    def create(self, data: Mapping[str, Any]) -> ProductTemplate:
        payload = _clean_payload(data)
        payload.setdefault("image_ref", "")
        payload.setdefault("variables", [])
        errs = validate_template(payload)
        if errs:
            raise TemplateValidationError(errs)

        stamp = _now()
        record = dict(payload, id=uuid.uuid4().hex, created_at=stamp, updated_at=stamp)
        records = deepcopy(self._records())
        records[record["id"]] = record
        self._flush(records)
        logger.info("Created template %s (%s)", record["id"], record["name"])
        return ProductTemplate.from_dict(record)

    def update(self, template_id: str, data: Mapping[str, Any]) -> ProductTemplate:
        current = self._records().get(template_id)
        if current is None:
            raise TemplateNotFound(template_id)
        merged = dict(current)
        merged.update(_clean_payload(data))
        errs = validate_template(merged)
        if errs:
            raise TemplateValidationError(errs)

        merged["updated_at"] = _now()
        records = deepcopy(self._records())
        records[template_id] = merged
        self._flush(records)
        logger.info("Updated template %s", template_id)
        return ProductTemplate.from_dict(merged)

    def delete(self, template_id: str) -> None:
        if template_id not in self._records():
            raise TemplateNotFound(template_id)
        records = deepcopy(self._records())
        del records[template_id]
        self._flush(records)
        logger.info("Deleted template %s", template_id)
