"""Ledger store: account-scoped access to transactions and their line items.

Reads always go to the table store rather than the view cache, so callers
that validate before writing act on current state. Each helper issues exactly
one store call.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from . import data_manager, log
from .constants import SaleStatus
from .core_logic import RuntimeContext, line_position
from .exceptions import NotFoundError


def _scope(context: RuntimeContext, **match: str) -> dict:
    return {"AccountID": context.account_id, **match}


def list_transactions(context: RuntimeContext) -> List[data_manager.TransactionRow]:
    """Return every transaction of the account, newest first."""

    rows = data_manager.select_transactions(context.workbook, _scope(context))
    return sorted(rows, key=lambda row: (row.timestamp_iso, row.transaction_id), reverse=True)


def get_transaction(
    context: RuntimeContext,
    transaction_id: str,
    *,
    operation: Optional[str] = None,
) -> data_manager.TransactionRow:
    """Resolve a transaction by id.

    Raises:
        NotFoundError: If the account has no such transaction.
    """

    rows = data_manager.select_transactions(
        context.workbook, _scope(context, TransactionID=transaction_id)
    )
    if not rows:
        log.warning("Transaction lookup failed for id '%s'", transaction_id)
        raise NotFoundError("transaction", transaction_id, operation=operation)
    return rows[0]


def list_sales(
    context: RuntimeContext,
    *,
    transaction_id: Optional[str] = None,
    inventory_item_id: Optional[str] = None,
) -> List[data_manager.SaleRow]:
    """Return the account's line items, optionally filtered, in line order."""

    match = _scope(context)
    if transaction_id is not None:
        match["TransactionID"] = transaction_id
    if inventory_item_id is not None:
        match["InventoryItemID"] = inventory_item_id
    return sorted(
        data_manager.select_sales(context.workbook, match),
        key=lambda row: (row.transaction_id, line_position(row.sale_id)),
    )


def get_sale(
    context: RuntimeContext,
    sale_id: str,
    *,
    operation: Optional[str] = None,
) -> data_manager.SaleRow:
    """Resolve a line item by id.

    Raises:
        NotFoundError: If the account has no such line item.
    """

    rows = data_manager.select_sales(context.workbook, _scope(context, SaleID=sale_id))
    if not rows:
        log.warning("Sale lookup failed for id '%s'", sale_id)
        raise NotFoundError("sale", sale_id, operation=operation)
    return rows[0]


def insert_transaction(
    context: RuntimeContext, row: data_manager.TransactionRow
) -> data_manager.TransactionRow:
    data_manager.insert_rows(
        context.workbook,
        data_manager.TRANSACTIONS_SHEET,
        [data_manager.serialize_transaction(row)],
    )
    return row


def insert_transactions(
    context: RuntimeContext, rows: Sequence[data_manager.TransactionRow]
) -> Tuple[data_manager.TransactionRow, ...]:
    if rows:
        data_manager.insert_rows(
            context.workbook,
            data_manager.TRANSACTIONS_SHEET,
            [data_manager.serialize_transaction(row) for row in rows],
        )
    return tuple(rows)


def delete_transaction_row(context: RuntimeContext, transaction_id: str) -> int:
    return data_manager.delete_rows(
        context.workbook,
        data_manager.TRANSACTIONS_SHEET,
        match=_scope(context, TransactionID=transaction_id),
    )


def insert_sales(
    context: RuntimeContext, rows: Sequence[data_manager.SaleRow]
) -> Tuple[data_manager.SaleRow, ...]:
    """Insert a batch of line items in one store call."""

    if rows:
        data_manager.insert_rows(
            context.workbook,
            data_manager.SALES_SHEET,
            [data_manager.serialize_sale(row) for row in rows],
        )
    return tuple(rows)


def delete_sales(
    context: RuntimeContext,
    *,
    transaction_id: Optional[str] = None,
    inventory_item_id: Optional[str] = None,
) -> int:
    """Delete the line items of a transaction or of an item in one store call."""

    if transaction_id is None and inventory_item_id is None:
        raise ValueError("delete_sales needs a transaction_id or an inventory_item_id")
    match = _scope(context)
    if transaction_id is not None:
        match["TransactionID"] = transaction_id
    if inventory_item_id is not None:
        match["InventoryItemID"] = inventory_item_id
    return data_manager.delete_rows(context.workbook, data_manager.SALES_SHEET, match=match)


def mark_sale_returned(context: RuntimeContext, sale_id: str) -> data_manager.SaleRow:
    """Flip a completed line to ``returned`` with a conditional update.

    Raises:
        data_manager.StoreError: If no completed line matched, meaning the
            line vanished or was returned concurrently.
    """

    updated = data_manager.update_rows(
        context.workbook,
        data_manager.SALES_SHEET,
        match=_scope(context, SaleID=sale_id, Status=SaleStatus.COMPLETED.value),
        field_values={"Status": SaleStatus.RETURNED.value},
    )
    if not updated:
        raise data_manager.StoreError(f"Sale {sale_id} is no longer in the completed state")
    return data_manager.deserialize_sale(updated[0])
