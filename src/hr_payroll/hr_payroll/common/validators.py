from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from ..core.exceptions import ValidationError


def require_non_empty(value: Optional[str], field_name: str) -> str:
    if not value or not str(value).strip():
        raise ValidationError(f"{field_name} is required.")
    return str(value).strip()


def require_min_length(value: str, field_name: str, min_len: int) -> str:
    if value is None or len(value) < min_len:
        raise ValidationError(f"{field_name} must be at least {min_len} characters.")
    return value


def require_decimal(value: Any, field_name: str) -> Decimal:
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, AttributeError, ValueError):
        raise ValidationError(f"{field_name} must be a number.")
    if not number.is_finite():
        raise ValidationError(f"{field_name} must be a number.")
    return number


def require_positive(value: Any, field_name: str) -> Decimal:
    number = require_decimal(value, field_name)
    if number <= 0:
        raise ValidationError(f"{field_name} must be greater than zero.")
    return number


def optional_text(value: Any) -> Optional[str]:
    text = str(value or "").strip()
    return text or None
