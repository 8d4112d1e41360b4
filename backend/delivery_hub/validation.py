from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from werkzeug.routing import IntegerConverter

from .errors import ValidationError
from .time_utils import parse_iso_date


# Maximum amount that fits Numeric(12, 2)
MAX_AMOUNT = Decimal("9999999999.99")
CENTS = Decimal("0.01")

# Largest value a 64-bit signed integer key can hold
MAX_ID = 2**63 - 1


def parse_decimal(value: Any, field: str, *, required: bool = True) -> Decimal | None:
    """
    Coerce JSON numbers / numeric strings to a 2-place Decimal.

    Rejects booleans, NaN/Infinity and anything outside Numeric(12, 2).
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None

    # bool is an int subclass; true/false are never amounts
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")

    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")

    if not number.is_finite():
        raise ValidationError(f"{field} must be a finite number")

    if abs(number) > MAX_AMOUNT:
        raise ValidationError(f"{field} is out of range")
    number = number.quantize(CENTS, rounding=ROUND_HALF_UP)
    if abs(number) > MAX_AMOUNT:
        raise ValidationError(f"{field} is out of range")
    return number


def parse_id(value: Any, field: str, *, required: bool = False) -> int | None:
    """Integer identifiers from JSON or query strings. Blank/None -> None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{field} must be an integer")
    try:
        parsed = int(str(value).strip())
    except ValueError:
        raise ValidationError(f"{field} must be an integer")
    if parsed <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    if parsed > MAX_ID:
        raise ValidationError(f"{field} is out of range")
    return parsed


class IdConverter(IntegerConverter):
    """
    `<id:...>` URL segment: a positive integer that fits a 64-bit key column.

    Anything larger does not match the route, so it answers 404.
    """

    def __init__(self, map, *args, **kwargs):
        kwargs.setdefault("min", 1)
        kwargs.setdefault("max", MAX_ID)
        super().__init__(map, *args, **kwargs)


def parse_date(value: Any, field: str) -> date | None:
    if isinstance(value, date):
        return value
    try:
        return parse_iso_date(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a date (YYYY-MM-DD)")


def clean_text(value: Any, max_length: int | None = None) -> str | None:
    """
    Strip and truncate free text to its column length.

    Blank strings become None.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length is not None:
        text = text[:max_length]
    return text


def require_text(value: Any, field: str, max_length: int | None = None) -> str:
    text = clean_text(value, max_length)
    if text is None:
        raise ValidationError(f"{field} is required")
    return text


def parse_flag(value: Any) -> bool:
    """Query-string booleans: 'true', '1', 'yes' (any case) are true."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"true", "1", "yes"}


def json_object(payload: Any) -> dict:
    """Request body as a dict. Missing body -> {}; arrays and scalars are rejected."""
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload
