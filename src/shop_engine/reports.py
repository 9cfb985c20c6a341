"""Read-only summaries handed to presentation code (dashboards, invoices)."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional

from . import data_manager, log
from .constants import GST_RATE, PaymentMethod, SaleStatus, SaleType
from .core_logic import RuntimeContext
from .exceptions import ValidationError
from .reconciler import is_refund_line
from .view_cache import ensure_view

CENT = Decimal("0.01")
SALES_REPORT = "sales_report"


def calculate_stock_levels(context: RuntimeContext) -> Dict[str, int]:
    """Return the cached stock of every item keyed by item id."""

    return {item.item_id: item.stock for item in ensure_view(context).inventory()}


def _as_utc_date(value: date) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC).date()
    return value


def transaction_date(transaction: data_manager.TransactionRow) -> date:
    """Return the UTC calendar day a transaction was recorded on."""

    return _as_utc_date(datetime.fromisoformat(transaction.timestamp_iso))


def sales_in_range(
    context: RuntimeContext,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[data_manager.SaleRow]:
    """Return the relevant line items whose transaction falls inside a date range.

    Both bounds are inclusive UTC calendar days; either may be omitted to
    leave that side open. Returned lines are never included.

    Raises:
        ValidationError: If ``start`` is after ``end``.
    """

    view = ensure_view(context)
    if start is None and end is None:
        return view.relevant_sales()

    first = _as_utc_date(start) if start is not None else None
    last = _as_utc_date(end) if end is not None else None
    if first is not None and last is not None and first > last:
        raise ValidationError(f"start date {first} is after end date {last}", operation=SALES_REPORT)

    selected: List[data_manager.SaleRow] = []
    for sale in view.relevant_sales():
        transaction = view.get_transaction(sale.transaction_id)
        if transaction is None:
            continue
        day = transaction_date(transaction)
        if first is not None and day < first:
            continue
        if last is not None and day > last:
            continue
        selected.append(sale)
    return selected


def calculate_sales_summary(
    context: RuntimeContext,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Dict[str, Decimal]:
    """Produce aggregate revenue, cost, and profit over relevant line items.

    Returned lines are excluded. Refund lines carry negative revenue, and
    their cost snapshot is subtracted because the units went back on the
    shelf. ``start`` and ``end`` narrow the lines as in :func:`sales_in_range`.

    Returns:
        dict[str, Decimal]: ``total_revenue``, ``total_cost``, ``profit`` and
            ``profit_margin`` (percent of revenue, zero without revenue).
    """

    total_revenue = Decimal("0")
    total_cost = Decimal("0")
    for sale in sales_in_range(context, start=start, end=end):
        total_revenue += sale.total_price
        if is_refund_line(sale):
            total_cost -= sale.item_cost_at_sale
        else:
            total_cost += sale.item_cost_at_sale
    profit = total_revenue - total_cost
    margin = Decimal("0")
    if total_revenue > 0:
        margin = (profit / total_revenue * 100).quantize(CENT, rounding=ROUND_HALF_UP)
    log.debug(
        "Calculated sales summary: revenue=%s cost=%s profit=%s",
        total_revenue,
        total_cost,
        profit,
    )
    return {
        "total_revenue": total_revenue,
        "total_cost": total_cost,
        "profit": profit,
        "profit_margin": margin,
    }


def calculate_revenue_breakdown(
    context: RuntimeContext,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Dict[str, Decimal]:
    """Split relevant revenue by payment method, GST flag, and sale type.

    Payment method comes from each line's transaction. Every split covers the
    same lines, so each pair of GST and sale-type figures adds up to the
    summary's ``total_revenue``.

    Returns:
        dict[str, Decimal]: one key per payment method (``online``,
            ``offline``) plus ``gst_sales``, ``non_gst_sales``,
            ``bundle_sales`` and ``loose_sales``.
    """

    view = ensure_view(context)
    breakdown: Dict[str, Decimal] = {method.value.lower(): Decimal("0") for method in PaymentMethod}
    breakdown.update(
        gst_sales=Decimal("0"),
        non_gst_sales=Decimal("0"),
        bundle_sales=Decimal("0"),
        loose_sales=Decimal("0"),
    )
    for sale in sales_in_range(context, start=start, end=end):
        transaction = view.get_transaction(sale.transaction_id)
        if transaction is not None:
            key = transaction.payment_method.lower()
            breakdown[key] = breakdown.get(key, Decimal("0")) + sale.total_price
        breakdown["gst_sales" if sale.has_gst else "non_gst_sales"] += sale.total_price
        if sale.sale_type == SaleType.BUNDLE.value:
            breakdown["bundle_sales"] += sale.total_price
        else:
            breakdown["loose_sales"] += sale.total_price
    return breakdown


def calculate_gst_breakdown(
    sales: Iterable[data_manager.SaleRow],
    *,
    rate: Decimal = GST_RATE,
) -> Dict[str, Decimal]:
    """Split GST out of GST-inclusive line totals.

    Only lines flagged ``has_gst`` that are not returned contribute. The tax
    is split evenly into central and state halves.

    Returns:
        dict[str, Decimal]: ``taxable_amount``, ``gst``, ``cgst`` and
            ``sgst``, rounded to cents.
    """

    gross = Decimal("0")
    for sale in sales:
        if sale.has_gst and sale.status != SaleStatus.RETURNED.value:
            gross += sale.total_price
    taxable = (gross / (Decimal("1") + rate)).quantize(CENT, rounding=ROUND_HALF_UP)
    gst = gross.quantize(CENT, rounding=ROUND_HALF_UP) - taxable
    cgst = (gst / 2).quantize(CENT, rounding=ROUND_HALF_UP)
    return {
        "taxable_amount": taxable,
        "gst": gst,
        "cgst": cgst,
        "sgst": gst - cgst,
    }
