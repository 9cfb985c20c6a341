"""Stock reconciler: unit conversion and guarded stock deltas.

Stock is always counted in individual units. A bundle line converts to units
through the item's current ``items_per_bundle``; no per-line snapshot of the
bundle size is kept.
"""

from __future__ import annotations

from typing import Optional

from . import data_manager, log
from .constants import SaleType
from .core_logic import RuntimeContext
from .exceptions import BundleConfigurationError, InsufficientStockError, NotFoundError, ValidationError


def parse_sale_type(sale_type: object, *, operation: Optional[str] = None) -> SaleType:
    """Return ``sale_type`` as a :class:`SaleType`, rejecting unknown values."""

    try:
        return SaleType(sale_type)
    except ValueError as exc:
        raise ValidationError(f"unsupported sale type: {sale_type!r}", operation=operation) from exc


def compute_unit_delta(
    item: data_manager.InventoryRow,
    quantity: int,
    sale_type: object,
    *,
    operation: Optional[str] = None,
) -> int:
    """Return how many individual units ``quantity`` represents for ``item``.

    Args:
        item (data_manager.InventoryRow): Item the quantity refers to.
        quantity (int): Number of loose units or of bundles.
        sale_type (SaleType | str): How ``quantity`` is denominated.
        operation (str | None): Logical operation name used in errors.

    Returns:
        int: ``quantity`` for loose sales, ``quantity * items_per_bundle`` for
            bundle sales.

    Raises:
        BundleConfigurationError: If a bundle conversion is requested for an
            item that is not a bundle or has no valid bundle size.
    """

    kind = parse_sale_type(sale_type, operation=operation)
    if kind is SaleType.LOOSE:
        return quantity
    if not item.is_bundle or item.items_per_bundle is None or item.items_per_bundle <= 1:
        log.error("Item '%s' has no valid bundle configuration", item.item_id)
        raise BundleConfigurationError(
            f"item '{item.name}' is not configured for bundle sales",
            operation=operation,
        )
    return quantity * item.items_per_bundle


def is_refund_line(sale: data_manager.SaleRow) -> bool:
    """Refund lines carry a negative total and put units back into stock."""

    return sale.total_price < 0


def line_stock_effect(
    item: data_manager.InventoryRow,
    sale: data_manager.SaleRow,
    *,
    operation: Optional[str] = None,
) -> int:
    """Return the signed delta ``sale`` applied to stock when it was recorded."""

    units = compute_unit_delta(item, sale.quantity, sale.sale_type, operation=operation)
    return units if is_refund_line(sale) else -units


def apply_delta(
    context: RuntimeContext,
    item_id: str,
    signed_units: int,
    *,
    operation: Optional[str] = None,
) -> data_manager.InventoryRow:
    """Apply a signed stock delta through one conditional store write.

    This is the only place stock changes as part of a sale or return. The
    write is rejected, and stock left untouched, when it would make stock
    negative.

    Args:
        context (RuntimeContext): Runtime context providing the table store.
        item_id (str): Item whose stock changes.
        signed_units (int): Units to add (positive) or remove (negative).
        operation (str | None): Logical operation name used in errors.

    Returns:
        data_manager.InventoryRow: The item as stored after the write.

    Raises:
        NotFoundError: If the item does not exist.
        InsufficientStockError: If the write would drive stock below zero.
        data_manager.StoreError: If the store call itself fails.
    """

    try:
        updated = data_manager.adjust_stock(context.workbook, context.account_id, item_id, signed_units)
    except data_manager.RowNotFoundError as exc:
        log.warning("Stock adjustment targeted unknown item '%s'", item_id)
        raise NotFoundError("inventory item", item_id, operation=operation) from exc

    if updated is None:
        current = data_manager.select_inventory(
            context.workbook, {"AccountID": context.account_id, "ItemID": item_id}
        )
        available = current[0].stock if current else 0
        name = current[0].name if current else item_id
        log.warning(
            "Rejected stock change of %d for '%s' (available %d)",
            signed_units,
            item_id,
            available,
        )
        raise InsufficientStockError(
            item_id,
            name,
            available=available,
            required=-signed_units,
            operation=operation,
        )

    log.info("Adjusted stock of '%s' by %+d to %d", item_id, signed_units, updated.stock)
    return updated
