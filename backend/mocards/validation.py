from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from .services.errors import ValidationError
from .time_utils import parse_iso_datetime


# Maximum sale / service value: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999


def require_payload(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def require_fields(payload: dict, *names: str) -> None:
    missing = [n for n in names if payload.get(n) in (None, "")]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={"missing": missing},
        )


def coerce_int(value: Any, field: str, *, minimum: Optional[int] = None, maximum: Optional[int] = None) -> Optional[int]:
    """
    Strict integer parsing for JSON and query-string input.

    Rejects bools, floats, decimals and scientific notation ("1e3").
    None passes through.
    """
    if value is None:
        return None

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", details={field: result})
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be <= {maximum}", details={field: result})
    return result


def coerce_cents(value: Any, field: str) -> Optional[int]:
    return coerce_int(value, field, minimum=0, maximum=MAX_AMOUNT_CENTS)


def coerce_str(value: Any, field: str, *, max_length: Optional[int] = None) -> Optional[str]:
    """Stripped string; blank becomes None."""
    if value is None:
        return None
    result = str(value).strip()
    if not result:
        return None
    if max_length is not None and len(result) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return result


def coerce_datetime(value: Any, field: str) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
