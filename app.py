#!/usr/bin/env python3
"""
Web UI for the catalog-driven calculation sheet.

- Catalog CRUD over a JSON template store.
- Per-browser calculation sessions, recomputed on every edit.
- PDF / CSV export of the current sheet.

Run:
  python app.py
Open:
  http://127.0.0.1:5000
"""
from __future__ import annotations

import io
import json
import logging
import os
import secrets
import threading
from collections import OrderedDict
from typing import Any, List, Optional

from flask import Blueprint, Flask, current_app, jsonify, request, send_file, session

from calculator import (
    CalculationInstance,
    CalculationSession,
    EvaluationError,
    InstanceNotFound,
    Ready,
    UnitResult,
    describe_result,
    format_number,
)
from catalog import StoreError, TemplateNotFound, TemplateStore, TemplateValidationError
from export import ExportResult, render_csv, render_pdf
from formula import PI_APPROX
from template import HTML_TEMPLATE

logger = logging.getLogger(__name__)

bp = Blueprint("calculator", __name__)


# ---------------------------------------------------------------------------
# Configuration & preset loading
# ---------------------------------------------------------------------------

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
BASE_PRESETS_PATH = os.path.join(BASE_DIR, "presets.json")
LOCAL_PRESETS_PATH = os.environ.get(
    "PRESETS_OVERRIDE_PATH",
    os.path.join(BASE_DIR, "presets.local.json"),
)


def _load_json(path: str, *, required: bool = False) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        if required:
            raise
        return {}
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"Invalid JSON in {path}: {exc}") from exc


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged: dict[str, Any] = base.copy()
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(base_value, value)
        else:
            merged[key] = value
    return merged


def load_defaults(
    base_path: str = BASE_PRESETS_PATH,
    local_path: str = LOCAL_PRESETS_PATH,
) -> dict[str, Any]:
    presets = _deep_merge(_load_json(base_path, required=True), _load_json(local_path))
    defaults = presets.get("defaults")
    if not isinstance(defaults, dict):
        raise RuntimeError(f"'defaults' section is missing from {base_path}")
    return defaults


def _resolve_path(path: str) -> str:
    return path if os.path.isabs(path) else os.path.join(BASE_DIR, path)


class SessionRegistry:
    """Calculation sessions by cookie token; the least recently used go first."""

    def __init__(self, limit: int = 500):
        self.limit = max(1, int(limit))
        self._sessions: OrderedDict[str, CalculationSession] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, sid: Optional[str]) -> Optional[CalculationSession]:
        with self._lock:
            calc = self._sessions.get(sid) if sid else None
            if calc is not None:
                self._sessions.move_to_end(sid)
            return calc

    def add(self, sid: str, calc: CalculationSession) -> CalculationSession:
        with self._lock:
            self._sessions[sid] = calc
            while len(self._sessions) > self.limit:
                dropped, _ = self._sessions.popitem(last=False)
                logger.info("Dropping idle calculation session %s", dropped)
            return calc

    def sessions(self) -> List[CalculationSession]:
        with self._lock:
            return list(self._sessions.values())


def create_app(
    store: Optional[TemplateStore] = None,
    defaults: Optional[dict[str, Any]] = None,
) -> Flask:
    if defaults is None:
        defaults = load_defaults()
    if store is None:
        catalog_path = os.environ.get("CATALOG_PATH") or _resolve_path(defaults.get("catalog_path", "catalog.json"))
        store = TemplateStore(catalog_path)

    app = Flask(__name__)
    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY") or secrets.token_hex(16)
    app.config["CALC_DEFAULTS"] = defaults
    app.extensions["template_store"] = store.open()
    app.extensions["calc_sessions"] = SessionRegistry(defaults.get("max_sessions", 500))
    app.register_blueprint(bp)
    return app


# ---------------------------------------------------------------------------
# Shared utilities
# ---------------------------------------------------------------------------


def _store() -> TemplateStore:
    return current_app.extensions["template_store"]


def _sessions() -> SessionRegistry:
    return current_app.extensions["calc_sessions"]


def _current_session(create: bool = False) -> CalculationSession:
    """The caller's session. Read-only callers without one get an empty, unregistered sheet."""
    registry = _sessions()
    calc = registry.get(session.get("sid"))
    if calc is not None:
        return calc
    quantity = float(current_app.config["CALC_DEFAULTS"].get("quantity", 1))
    calc = CalculationSession(default_quantity=quantity)
    if create:
        sid = secrets.token_hex(16)
        session["sid"] = sid
        registry.add(sid, calc)
    return calc


def _json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def _result_json(result: UnitResult) -> dict[str, Any]:
    payload: dict[str, Any] = {"display": describe_result(result)}
    if isinstance(result, Ready):
        payload.update(state="ready", value=result.value)
    elif isinstance(result, EvaluationError):
        payload.update(state="error", message=result.message)
    else:
        payload["state"] = "not_ready"
    return payload


def _instance_json(instance: CalculationInstance) -> dict[str, Any]:
    return {
        "instance_id": instance.instance_id,
        "template": instance.template.to_dict(),
        "values": instance.bindings.as_dict(),
        "quantity": instance.quantity,
        "unit_result": _result_json(instance.unit_result),
        "total": instance.total,
        "total_display": format_number(instance.total),
    }


def _session_json(calc: CalculationSession) -> dict[str, Any]:
    total = calc.grand_total()
    return {
        "items": [_instance_json(i) for i in calc.instances()],
        "grand_total": total,
        "grand_total_display": format_number(total),
    }


def _edit_json(calc: CalculationSession, instance: CalculationInstance, changed: bool) -> dict[str, Any]:
    total = calc.grand_total()
    return {
        "item": _instance_json(instance),
        "changed": changed,
        "grand_total": total,
        "grand_total_display": format_number(total),
    }


def _download(result: ExportResult):
    response = send_file(
        io.BytesIO(result.content),
        mimetype=result.mimetype,
        as_attachment=True,
        download_name=result.filename,
    )
    if result.warnings:
        response.headers["X-Export-Warning"] = " | ".join(result.warnings)
    return response


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


@bp.app_errorhandler(TemplateNotFound)
@bp.app_errorhandler(InstanceNotFound)
def _not_found(exc: Exception):
    return jsonify({"error": str(exc)}), 404


@bp.app_errorhandler(TemplateValidationError)
def _invalid_template(exc: TemplateValidationError):
    return jsonify({"error": "Template is invalid", "errors": exc.errors}), 400


@bp.app_errorhandler(ValueError)
def _bad_request(exc: Exception):
    return jsonify({"error": str(exc)}), 400


@bp.app_errorhandler(StoreError)
def _store_failure(exc: StoreError):
    logger.error("Template store failure: %s", exc)
    return jsonify({"error": "Template store is unavailable"}), 500


# ---------------------------------------------------------------------------
# Flask routes
# ---------------------------------------------------------------------------


@bp.route("/")
def index():
    cfg = {"pi": PI_APPROX, "quantity": current_app.config["CALC_DEFAULTS"].get("quantity", 1)}
    return HTML_TEMPLATE.replace("{CFG_JSON}", json.dumps(cfg, ensure_ascii=False))


@bp.route("/api/templates", methods=["GET"])
def list_templates():
    return jsonify([t.to_dict() for t in _store().list()])


@bp.route("/api/templates", methods=["POST"])
def create_template():
    template = _store().create(_json_body())
    return jsonify(template.to_dict()), 201


@bp.route("/api/templates/<template_id>", methods=["GET"])
def get_template(template_id: str):
    return jsonify(_store().get(template_id).to_dict())


@bp.route("/api/templates/<template_id>", methods=["PUT"])
def update_template(template_id: str):
    template = _store().update(template_id, _json_body())
    for calc in _sessions().sessions():
        calc.refresh_template(template)
    return jsonify(template.to_dict())


@bp.route("/api/templates/<template_id>", methods=["DELETE"])
def delete_template(template_id: str):
    _store().delete(template_id)
    return jsonify({"message": "Template deleted successfully"})


@bp.route("/api/session", methods=["GET"])
def get_session():
    return jsonify(_session_json(_current_session()))


@bp.route("/api/session/items", methods=["POST"])
def add_item():
    template_id = _json_body().get("template_id")
    if not template_id:
        raise ValueError("template_id is required")
    calc = _current_session(create=True)
    instance = calc.add(_store().get(str(template_id)))
    return jsonify(_edit_json(calc, instance, True)), 201


@bp.route("/api/session/items/<instance_id>", methods=["DELETE"])
def remove_item(instance_id: str):
    calc = _current_session()
    calc.remove(instance_id)
    return jsonify(_session_json(calc))


@bp.route("/api/session/items/<instance_id>/values/<name>", methods=["PUT"])
def set_value(instance_id: str, name: str):
    calc = _current_session()
    instance = calc.get(instance_id)
    changed = instance.set_value(name, _json_body().get("value"))
    return jsonify(_edit_json(calc, instance, changed))


@bp.route("/api/session/items/<instance_id>/quantity", methods=["PUT"])
def set_quantity(instance_id: str):
    calc = _current_session()
    instance = calc.get(instance_id)
    changed = instance.set_quantity(_json_body().get("value"))
    return jsonify(_edit_json(calc, instance, changed))


@bp.route("/export.pdf")
def export_pdf():
    defaults = current_app.config["CALC_DEFAULTS"]
    font_path = os.environ.get("EXPORT_FONT_PATH") or defaults.get("export_font_path")
    result = render_pdf(
        _current_session().line_items(),
        title=defaults.get("export_title", "Calculation Sheet"),
        font_path=_resolve_path(font_path) if font_path else None,
    )
    return _download(result)


@bp.route("/export.csv")
def export_csv():
    return _download(render_csv(_current_session().line_items()))


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


if __name__ == "__main__":
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "5000"))
    debug = os.environ.get("DEBUG", "0") in ["1", "true", "True"]
    create_app().run(host=host, port=port, debug=debug)
