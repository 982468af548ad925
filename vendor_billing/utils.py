"""
Utility functions shared across the app. This includes:
- Parsing helpers for JSON bodies and query strings (ids, dates, booleans).
- ok(): the success envelope every endpoint returns.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable

from flask import jsonify, request

from .exceptions import ValidationError


def ok(data: Any = None, status: int = 200, **extra: Any):
    """JSON success envelope: {"success": true, "data": ...}."""
    payload = {"success": True, "data": data}
    payload.update(extra)
    return jsonify(payload), status


def json_body() -> dict:
    """Request body as a dict. A missing or non-object body is a ValidationError."""
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def parse_optional_int(value: Any) -> int | None:
    """Parse optional int from query/body. Invalid input -> None."""
    if value is None or isinstance(value, bool):
        return None
    raw = str(value).strip()
    if raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def parse_required_int(value: Any, field: str) -> int:
    number = parse_optional_int(value)
    if number is None:
        raise ValidationError(f"{field} must be an integer", details={"field": field})
    return number


def parse_id_list(value: Any, field: str) -> list[int]:
    """Non-empty list of distinct integer ids, order preserved."""
    if not isinstance(value, (list, tuple)) or not value:
        raise ValidationError(f"{field} must be a non-empty list of ids", details={"field": field})

    ids: list[int] = []
    for raw in value:
        parsed = parse_optional_int(raw)
        if parsed is None:
            raise ValidationError(f"{field} must contain integer ids", details={"field": field})
        if parsed not in ids:
            ids.append(parsed)
    return ids


def parse_date(value: Any, field: str, default: date | None = None) -> date | None:
    """ISO date (YYYY-MM-DD, a trailing time part is ignored)."""
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return default
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError(f"{field} must be a date (YYYY-MM-DD)", details={"field": field})


def parse_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    raw = str(value).strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    return None


def clean_text(value: Any) -> str | None:
    """Strip strings; empty -> None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def require_text(value: Any, field: str) -> str:
    text = clean_text(value)
    if text is None:
        raise ValidationError(f"{field} is required", details={"field": field})
    return text


def missing_ids(requested: Iterable[int], found: Iterable[int]) -> list[int]:
    found_set = set(found)
    return [i for i in requested if i not in found_set]
