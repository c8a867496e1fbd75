from __future__ import annotations
import json
import re as _re
from datetime import datetime

_EMAIL_RE = _re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# field types that only structure the form and carry no value
_LAYOUT_TYPES = ("header",)


def parse_schema(schema_text: str) -> dict:
    try:
        s = json.loads(schema_text or "{}")
    except ValueError:
        return {}
    if isinstance(s, list):
        # bare list of fields
        return {"fields": s}
    return s if isinstance(s, dict) else {}


def _is_empty(val) -> bool:
    return val is None or val == "" or (isinstance(val, (list, dict)) and len(val) == 0)


def _option_values(options) -> list:
    out = []
    for o in options or []:
        if isinstance(o, dict):
            out.append(o.get("value"))
        else:
            out.append(o)
    return out


def field_key(f: dict) -> str:
    return str(f.get("id") or f.get("name") or "")


def validate_payload(schema: dict, payload: dict) -> list[str]:
    errors: list[str] = []
    fields = schema.get("fields") or []
    if not isinstance(fields, list):
        return ["Form schema is not valid."]

    for f in fields:
        if not isinstance(f, dict):
            continue
        name = field_key(f)
        label = f.get("label") or name
        ftype = (f.get("type") or "text").lower()
        required = bool(f.get("required"))
        rules = f.get("validation") or {}
        if not isinstance(rules, dict):
            rules = {}
        options = _option_values(f.get("options"))

        if not name or ftype in _LAYOUT_TYPES:
            continue

        val = payload.get(name)

        if required and _is_empty(val):
            errors.append(f"Field '{label}' is required.")
            continue

        if _is_empty(val):
            continue

        if ftype == "date":
            if isinstance(val, str):
                try:
                    datetime.strptime(val[:10], "%Y-%m-%d")
                except ValueError:
                    errors.append(f"Field '{label}' must be a date in YYYY-MM-DD format.")
            else:
                errors.append(f"Field '{label}' must be a date.")
        elif ftype in ("select", "radio"):
            if options and val not in options:
                errors.append(f"Field '{label}' must be one of the listed options.")
        elif ftype == "checkbox":
            if options and isinstance(val, list):
                if any(v not in options for v in val):
                    errors.append(f"Field '{label}' contains an invalid option.")
        elif ftype == "file":
            # uploads are stored as {"url": .., "name": ..} by the storage collaborator
            if not isinstance(val, dict) or "url" not in val:
                errors.append(f"Field '{label}' has no valid file.")

        if isinstance(val, str) and ftype in ("text", "select", "radio"):
            if rules.get("isNumeric"):
                try:
                    float(val)
                except ValueError:
                    errors.append(f"Field '{label}' must be a number.")
            if rules.get("isEmail") and not _EMAIL_RE.match(val):
                errors.append(f"Field '{label}' must be an e-mail address.")
            pattern = rules.get("pattern") or ""
            if pattern:
                try:
                    if not _re.match(pattern, val):
                        errors.append(rules.get("message") or f"Field '{label}' does not match the expected pattern.")
                except _re.error:
                    errors.append(f"Pattern for '{label}' is not valid.")
    return errors


def is_declared(payload: dict, field: str) -> bool:
    """Declaration acknowledgment given (checkbox sent as bool or string)."""
    v = payload.get(field)
    return v is True or (isinstance(v, str) and v.strip().lower() == "true")
