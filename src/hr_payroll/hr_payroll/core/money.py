"""Decimal rounding helpers (ROUND_HALF_UP) for money, days and quantities."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

ZERO = Decimal("0")
_CENT = Decimal("0.01")
_QTY = Decimal("0.0001")
_ITEM_QTY = Decimal("0.001")


def to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value))


def round_currency(value: Any) -> Decimal:
    return to_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def round_days(value: Any) -> Decimal:
    return to_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def round_quantity(value: Any) -> Decimal:
    return to_decimal(value).quantize(_QTY, rounding=ROUND_HALF_UP)


def round_item_quantity(value: Any) -> Decimal:
    return to_decimal(value).quantize(_ITEM_QTY, rounding=ROUND_HALF_UP)


def currency_text(value: Any) -> str:
    return f"{round_currency(value):.2f}"


def round_hours(value: Any) -> Decimal:
    return to_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)
