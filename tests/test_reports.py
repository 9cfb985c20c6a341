"""Tests for stock, sales, and GST summaries."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from shop_engine import coordinator, core_logic, data_manager, reports, returns
from shop_engine.constants import PaymentMethod, SaleStatus, SaleType
from shop_engine.exceptions import ValidationError


def _sell(context, item_id, quantity, total) -> core_logic.MutationResult:
    return coordinator.create_transaction(
        context,
        core_logic.CreateTransactionCommand(
            lines=[core_logic.CartLine(inventory_item_id=item_id, quantity=quantity, total_price=Decimal(total))],
            payment_method=PaymentMethod.OFFLINE,
        ),
    )


def _line(total: str, *, has_gst: bool = True, status: str = SaleStatus.COMPLETED.value) -> data_manager.SaleRow:
    return data_manager.SaleRow(
        sale_id="T1-L01",
        account_id="A-TEST",
        transaction_id="T1",
        inventory_item_id="I1",
        product_name="Fan",
        quantity=1,
        total_price=Decimal(total),
        item_cost_at_sale=Decimal("0"),
        has_gst=has_gst,
        sale_type="loose",
        status=status,
    )


def test_stock_levels_follow_operations(runtime_context, add_item):
    fan = add_item("Fan", stock=5)
    wire = add_item("Wire", stock=7)
    _sell(runtime_context, fan.item_id, 2, "20")

    assert reports.calculate_stock_levels(runtime_context) == {fan.item_id: 3, wire.item_id: 7}


def test_sales_summary_excludes_returned_lines_and_nets_refunds(runtime_context, add_item):
    fan = add_item("Fan", stock=10, price="10", cost="6")
    _sell(runtime_context, fan.item_id, 3, "30")
    returned = _sell(runtime_context, fan.item_id, 1, "10").sales[0]
    returns.return_sale_line(runtime_context, returned.sale_id)
    returns.standalone_return(
        runtime_context,
        core_logic.StandaloneReturnCommand(item_id=fan.item_id, quantity=1, refund_amount=Decimal("8")),
    )

    summary = reports.calculate_sales_summary(runtime_context)

    assert summary["total_revenue"] == Decimal("22")
    assert summary["total_cost"] == Decimal("12")
    assert summary["profit"] == Decimal("10")


def test_gst_breakdown_splits_inclusive_totals():
    breakdown = reports.calculate_gst_breakdown([_line("118"), _line("50", has_gst=False)])

    assert breakdown["taxable_amount"] == Decimal("100.00")
    assert breakdown["gst"] == Decimal("18.00")
    assert breakdown["cgst"] == Decimal("9.00")
    assert breakdown["sgst"] == Decimal("9.00")


def test_gst_breakdown_ignores_returned_lines_and_rounds_to_cents():
    breakdown = reports.calculate_gst_breakdown(
        [_line("100"), _line("500", status=SaleStatus.RETURNED.value)]
    )

    assert breakdown["taxable_amount"] == Decimal("84.75")
    assert breakdown["gst"] == Decimal("15.25")
    assert breakdown["cgst"] + breakdown["sgst"] == breakdown["gst"]


def _sell_on(context, day, *lines, payment_method=PaymentMethod.OFFLINE) -> core_logic.MutationResult:
    return coordinator.create_transaction(
        context,
        core_logic.CreateTransactionCommand(
            lines=[
                core_logic.CartLine(
                    inventory_item_id=item_id, quantity=qty, total_price=Decimal(total), sale_type=kind
                )
                for item_id, qty, total, kind in lines
            ],
            payment_method=payment_method,
            timestamp=datetime(2024, 3, day, 18, 30, tzinfo=UTC),
        ),
    )


def test_sales_summary_honours_inclusive_date_range(runtime_context, add_item):
    fan = add_item("Fan", stock=10, price="10", cost="6")
    for day in (1, 2, 3):
        _sell_on(runtime_context, day, (fan.item_id, 1, "10", SaleType.LOOSE))

    summary = reports.calculate_sales_summary(runtime_context, start=date(2024, 3, 2), end=date(2024, 3, 3))
    opened = reports.calculate_sales_summary(runtime_context, end=date(2024, 3, 1))

    assert summary["total_revenue"] == Decimal("20")
    assert summary["profit"] == Decimal("8")
    assert summary["profit_margin"] == Decimal("40.00")
    assert opened["total_revenue"] == Decimal("10")
    assert reports.calculate_sales_summary(runtime_context)["total_revenue"] == Decimal("30")


def test_sales_in_range_rejects_reversed_bounds(runtime_context):
    with pytest.raises(ValidationError):
        reports.sales_in_range(runtime_context, start=date(2024, 3, 2), end=date(2024, 3, 1))


def test_profit_margin_is_zero_without_revenue(runtime_context):
    assert reports.calculate_sales_summary(runtime_context)["profit_margin"] == Decimal("0")


def test_revenue_breakdown_by_payment_gst_and_sale_type(runtime_context, add_item):
    fan = add_item("Fan", stock=10, price="118", cost="80", has_gst=True)
    bulb = add_item("Bulb-9W", stock=100, price="10", cost="6", bundle_price="90", items_per_bundle=10)
    _sell_on(
        runtime_context,
        5,
        (fan.item_id, 1, "118", SaleType.LOOSE),
        (bulb.item_id, 1, "90", SaleType.BUNDLE),
        payment_method=PaymentMethod.ONLINE,
    )
    returned = _sell_on(runtime_context, 5, (bulb.item_id, 3, "30", SaleType.LOOSE)).sales[0]
    returns.return_sale_line(runtime_context, returned.sale_id)
    _sell_on(runtime_context, 6, (bulb.item_id, 2, "20", SaleType.LOOSE))

    breakdown = reports.calculate_revenue_breakdown(runtime_context)

    assert breakdown["online"] == Decimal("208")
    assert breakdown["offline"] == Decimal("20")
    assert breakdown["gst_sales"] == Decimal("118")
    assert breakdown["non_gst_sales"] == Decimal("110")
    assert breakdown["bundle_sales"] == Decimal("90")
    assert breakdown["loose_sales"] == Decimal("138")

    day_five = reports.calculate_revenue_breakdown(runtime_context, start=date(2024, 3, 5), end=date(2024, 3, 5))
    assert day_five["offline"] == Decimal("0")
    assert day_five["online"] == Decimal("208")
