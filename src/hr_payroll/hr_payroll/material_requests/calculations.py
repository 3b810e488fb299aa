"""Line totals, request totals and served-quantity checks for material requests."""
from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from ..common.validators import optional_text
from ..core.constants import MATERIAL_REQUEST_MAX_ITEMS, MATERIAL_REQUEST_QUANTITY_TOLERANCE
from ..core.exceptions import ValidationError
from ..core.money import ZERO, round_currency, round_item_quantity, to_decimal
from .model import ItemInput, MaterialRequestItem

QUANTITY_TOLERANCE = Decimal(MATERIAL_REQUEST_QUANTITY_TOLERANCE)


@dataclass(frozen=True)
class NormalizedItem:
    line_number: int
    description: str
    uom: str
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal
    item_code: Optional[str] = None
    remarks: Optional[str] = None


@dataclass(frozen=True)
class Totals:
    freight: Decimal
    discount: Decimal
    subtotal: Decimal
    grand_total: Decimal


def parse_item(raw: Mapping[str, Any]) -> ItemInput:
    description = (raw.get("description") or "").strip()
    uom = (raw.get("uom") or "").strip()
    if not description:
        raise ValidationError("Item description is required.")
    if not uom:
        raise ValidationError("Item unit of measure is required.")
    try:
        quantity = to_decimal(raw.get("quantity"))
        price_raw = raw.get("unit_price")
        unit_price = None if price_raw in (None, "") else to_decimal(price_raw)
    except ArithmeticError:
        raise ValidationError("Item quantity and unit price must be numbers.")
    if not quantity.is_finite() or (unit_price is not None and not unit_price.is_finite()):
        raise ValidationError("Item quantity and unit price must be numbers.")
    if quantity <= 0:
        raise ValidationError("Quantity must be greater than zero.")
    if unit_price is not None and unit_price < 0:
        raise ValidationError("Unit price cannot be negative.")
    return ItemInput(
        description=description,
        uom=uom,
        quantity=quantity,
        unit_price=unit_price,
        item_code=optional_text(raw.get("item_code")),
        remarks=optional_text(raw.get("remarks")),
    )


def normalize_items(items: Sequence[ItemInput]) -> List[NormalizedItem]:
    if not items:
        raise ValidationError("At least one item is required.")
    if len(items) > MATERIAL_REQUEST_MAX_ITEMS:
        raise ValidationError(f"A material request can have at most {MATERIAL_REQUEST_MAX_ITEMS} items.")

    normalized = []
    for index, item in enumerate(items, start=1):
        quantity = round_item_quantity(item.quantity)
        unit_price = round_currency(item.unit_price) if item.unit_price is not None else ZERO
        normalized.append(
            NormalizedItem(
                line_number=index,
                description=item.description.strip(),
                uom=item.uom.strip(),
                quantity=quantity,
                unit_price=unit_price,
                line_total=round_currency(quantity * unit_price),
                item_code=item.item_code,
                remarks=item.remarks,
            )
        )
    return normalized


def compute_totals(items: Iterable[NormalizedItem], *, freight: Any = 0, discount: Any = 0) -> Totals:
    subtotal = round_currency(sum((i.line_total for i in items), ZERO))
    try:
        freight_value, discount_value = to_decimal(freight), to_decimal(discount)
    except ArithmeticError:
        raise ValidationError("Freight and discount must be numbers.")
    if not (freight_value.is_finite() and discount_value.is_finite()):
        raise ValidationError("Freight and discount must be numbers.")
    freight_amount = round_currency(freight_value)
    discount_amount = round_currency(discount_value)
    if freight_amount < 0 or discount_amount < 0:
        raise ValidationError("Freight and discount cannot be negative.")
    return Totals(
        freight=freight_amount,
        discount=discount_amount,
        subtotal=subtotal,
        grand_total=round_currency(subtotal + freight_amount - discount_amount),
    )


def has_remaining_quantity(items: Iterable[MaterialRequestItem]) -> bool:
    return any(item.quantity - item.served_quantity > QUANTITY_TOLERANCE for item in items)


def apply_served_quantities(
    items: Sequence[MaterialRequestItem], served: Mapping[int, Decimal]
) -> List[MaterialRequestItem]:
    """Return items with `served` added; rejects unknown lines and over-serving."""

    by_id = {item.item_id: item for item in items}
    unknown = [item_id for item_id in served if item_id not in by_id]
    if unknown:
        raise ValidationError("One or more served items do not belong to this request.")

    updated = []
    for item in items:
        quantity = served.get(item.item_id)
        if quantity is None:
            updated.append(item)
            continue
        if not quantity.is_finite():
            raise ValidationError("Served quantity must be a number.")
        if quantity <= 0:
            raise ValidationError("Served quantity must be greater than zero.")
        if quantity > item.remaining_quantity + QUANTITY_TOLERANCE:
            raise ValidationError("Served quantity cannot be greater than the remaining quantity.")
        updated.append(replace(item, served_quantity=round_item_quantity(item.served_quantity + quantity)))
    return updated
