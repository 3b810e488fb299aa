from datetime import date
from decimal import Decimal

import pytest

from src.hr_payroll.hr_payroll.core.exceptions import ValidationError
from src.hr_payroll.hr_payroll.material_requests.calculations import (
    apply_served_quantities,
    compute_totals,
    has_remaining_quantity,
    normalize_items,
    parse_item,
)
from src.hr_payroll.hr_payroll.material_requests.flow import parse_flow_approvers, validate_flow_definition
from src.hr_payroll.hr_payroll.material_requests.model import FlowApprover, ItemInput, MaterialRequestItem
from src.hr_payroll.hr_payroll.material_requests.service import next_request_number

D = Decimal


def _item(item_id, quantity, served="0"):
    return MaterialRequestItem(
        item_id=item_id,
        request_id=1,
        line_number=item_id,
        description="Bond paper",
        uom="ream",
        quantity=D(quantity),
        unit_price=D("250"),
        line_total=D(quantity) * D("250"),
        served_quantity=D(served),
    )


def test_parse_item_validates_fields():
    item = parse_item({"description": " Bond paper ", "uom": "ream", "quantity": "2", "unit_price": "", "item_code": " "})
    assert item == ItemInput(description="Bond paper", uom="ream", quantity=D("2"))

    with pytest.raises(ValidationError, match="description is required"):
        parse_item({"uom": "pc", "quantity": "1"})
    with pytest.raises(ValidationError, match="unit of measure"):
        parse_item({"description": "Pen", "quantity": "1"})
    with pytest.raises(ValidationError, match="must be numbers"):
        parse_item({"description": "Pen", "uom": "pc", "quantity": "two"})
    with pytest.raises(ValidationError, match="greater than zero"):
        parse_item({"description": "Pen", "uom": "pc", "quantity": "0"})
    with pytest.raises(ValidationError, match="cannot be negative"):
        parse_item({"description": "Pen", "uom": "pc", "quantity": "1", "unit_price": "-1"})


def test_normalize_and_totals():
    items = normalize_items(
        [
            ItemInput(description="Bond paper", uom="ream", quantity=D("2.5"), unit_price=D("249.995")),
            ItemInput(description="Repair", uom="lot", quantity=D("1")),
        ]
    )
    assert [i.line_number for i in items] == [1, 2]
    assert items[0].unit_price == D("250.00")
    assert items[0].line_total == D("625.00")
    assert items[1].line_total == D("0.00")

    totals = compute_totals(items, freight="100", discount="25.50")
    assert totals.subtotal == D("625.00")
    assert totals.grand_total == D("699.50")

    with pytest.raises(ValidationError, match="cannot be negative"):
        compute_totals(items, freight="-1")
    with pytest.raises(ValidationError, match="At least one item"):
        normalize_items([])


def test_served_quantities():
    items = [_item(1, "10", served="4"), _item(2, "3")]

    updated = apply_served_quantities(items, {1: D("6"), 2: D("1")})
    assert [i.served_quantity for i in updated] == [D("10.000"), D("1.000")]
    assert has_remaining_quantity(updated)
    assert not has_remaining_quantity(apply_served_quantities(updated, {2: D("2")}))

    with pytest.raises(ValidationError, match="greater than the remaining"):
        apply_served_quantities(items, {1: D("6.01")})
    with pytest.raises(ValidationError, match="do not belong"):
        apply_served_quantities(items, {9: D("1")})
    with pytest.raises(ValidationError, match="greater than zero"):
        apply_served_quantities(items, {1: D("0")})


def test_non_finite_amounts_are_rejected():
    for raw in ("NaN", "Infinity", "-Infinity", "sNaN"):
        with pytest.raises(ValidationError, match="must be numbers"):
            parse_item({"description": "Pen", "uom": "pc", "quantity": raw})
        with pytest.raises(ValidationError, match="must be numbers"):
            parse_item({"description": "Pen", "uom": "pc", "quantity": "1", "unit_price": raw})

    items = normalize_items([ItemInput(description="Pen", uom="pc", quantity=D("1"), unit_price=D("10"))])
    with pytest.raises(ValidationError, match="Freight and discount must be numbers"):
        compute_totals(items, freight="Infinity")
    with pytest.raises(ValidationError, match="Freight and discount must be numbers"):
        compute_totals(items, discount="NaN")
    with pytest.raises(ValidationError, match="Served quantity must be a number"):
        apply_served_quantities([_item(1, "10")], {1: D("NaN")})


def test_request_numbers_continue_daily_series():
    today = date(2026, 10, 19)
    assert next_request_number("PO", today, None) == "MR-PO-20261019-000001"
    assert next_request_number("JO", today, "MR-JO-20261019-000041", attempt=1) == "MR-JO-20261019-000043"


def test_flow_definition_rules():
    two_steps = [
        FlowApprover(1, "Supervisor", 10),
        FlowApprover(1, "Supervisor", 11),
        FlowApprover(2, "Manager", 12),
    ]
    validate_flow_definition(2, two_steps)

    with pytest.raises(ValidationError, match="between 1 and 4"):
        validate_flow_definition(5, two_steps)
    with pytest.raises(ValidationError, match="Step 2 must have at least one approver"):
        validate_flow_definition(2, [FlowApprover(1, "Supervisor", 10), FlowApprover(1, "Supervisor", 11)])
    with pytest.raises(ValidationError, match="Duplicate approver"):
        validate_flow_definition(1, [FlowApprover(1, "Supervisor", 10), FlowApprover(1, "Supervisor", 10)])
    with pytest.raises(ValidationError, match="same step name"):
        validate_flow_definition(1, [FlowApprover(1, "Supervisor", 10), FlowApprover(1, "Lead", 11)])
    with pytest.raises(ValidationError, match="Step number must be between"):
        validate_flow_definition(1, [FlowApprover(2, "Manager", 10)])


def test_parse_flow_approvers():
    rows = [{"step_number": "1", "step_name": " Supervisor ", "approver_user_id": "10"}]
    assert parse_flow_approvers(rows) == [FlowApprover(1, "Supervisor", 10)]
    with pytest.raises(ValidationError, match="Each approver needs"):
        parse_flow_approvers([{"step_number": "x"}])
