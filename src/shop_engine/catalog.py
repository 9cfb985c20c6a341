"""Catalog store: inventory items and their create, update, and delete rules."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from . import data_manager, ledger, log, reconciler
from .core_logic import (
    InventoryItemDraft,
    MutationResult,
    RuntimeContext,
    resolve_timestamp,
    generate_id,
    require_nonnegative_money,
    require_positive_quantity,
    to_money,
)
from .exceptions import DuplicateItemNameError, NotFoundError, PersistenceError, ValidationError
from .saga import Saga
from .view_cache import publish

ADD_ITEM = "add_inventory_item"
UPDATE_ITEM = "update_inventory_item"
DELETE_ITEM = "delete_inventory_item"
RESTOCK_ITEM = "restock_item"


def normalize_name(name: str) -> str:
    """Return the form used for duplicate detection: trimmed and case-folded."""

    return name.strip().casefold()


def list_items(context: RuntimeContext) -> List[data_manager.InventoryRow]:
    """Return every inventory item of the account in sheet order."""

    return data_manager.select_inventory(context.workbook, {"AccountID": context.account_id})


def get_item(
    context: RuntimeContext,
    item_id: str,
    *,
    operation: Optional[str] = None,
) -> data_manager.InventoryRow:
    """Read an item's current state straight from the table store.

    Raises:
        NotFoundError: If the account has no item with ``item_id``.
    """

    rows = data_manager.select_inventory(
        context.workbook, {"AccountID": context.account_id, "ItemID": item_id}
    )
    if not rows:
        log.warning("Inventory lookup failed for id '%s'", item_id)
        raise NotFoundError("inventory item", item_id, operation=operation)
    return rows[0]


def find_item_by_name(
    context: RuntimeContext,
    name: str,
    *,
    exclude_id: Optional[str] = None,
) -> Optional[data_manager.InventoryRow]:
    """Return the item whose normalized name equals ``name``'s, if any."""

    wanted = normalize_name(name)
    for item in list_items(context):
        if item.item_id != exclude_id and normalize_name(item.name) == wanted:
            return item
    return None


def validate_draft(draft: InventoryItemDraft, *, operation: str) -> Dict[str, Any]:
    """Check an item draft and return its normalized column values.

    Rules: a non-empty name, integer stock of at least zero, non-negative
    price and cost with ``price >= cost``, and bundle fields present only on
    bundle items, where ``bundle_price > 0`` and ``items_per_bundle`` is an
    integer greater than one.

    Raises:
        ValidationError: If any rule is violated.
    """

    name = (draft.name or "").strip()
    if not name:
        raise ValidationError("item name must not be empty", operation=operation)

    stock = draft.stock
    if isinstance(stock, bool) or not isinstance(stock, int) or stock < 0:
        raise ValidationError(f"stock must be a non-negative integer, got {stock!r}", operation=operation)

    price = require_nonnegative_money(draft.price, operation=operation)
    cost = require_nonnegative_money(draft.cost, operation=operation)
    if price < cost:
        log.warning("Rejected item '%s': price %s below cost %s", name, price, cost)
        raise ValidationError(f"price {price} must not be lower than cost {cost}", operation=operation)

    bundle_price: Optional[Decimal] = None
    items_per_bundle: Optional[int] = None
    if draft.is_bundle:
        if draft.bundle_price is None:
            raise ValidationError("bundle items need a bundle price", operation=operation)
        bundle_price = to_money(draft.bundle_price, operation=operation)
        if bundle_price <= 0:
            raise ValidationError("bundle price must be greater than zero", operation=operation)
        size = draft.items_per_bundle
        if isinstance(size, bool) or not isinstance(size, int) or size <= 1:
            raise ValidationError(
                f"items per bundle must be an integer greater than 1, got {size!r}",
                operation=operation,
            )
        items_per_bundle = size
    elif draft.bundle_price is not None or draft.items_per_bundle is not None:
        raise ValidationError("bundle fields are only allowed on bundle items", operation=operation)

    return {
        "Name": name,
        "Stock": stock,
        "Price": price,
        "Cost": cost,
        "HasGST": bool(draft.has_gst),
        "IsBundle": bool(draft.is_bundle),
        "BundlePrice": bundle_price,
        "ItemsPerBundle": items_per_bundle,
    }


def _ensure_unique_name(
    context: RuntimeContext,
    name: str,
    *,
    operation: str,
    exclude_id: Optional[str] = None,
) -> None:
    clash = find_item_by_name(context, name, exclude_id=exclude_id)
    if clash is not None:
        log.warning("Rejected duplicate item name '%s' (clashes with '%s')", name, clash.item_id)
        raise DuplicateItemNameError(name, operation=operation)


def add_inventory_item(
    context: RuntimeContext,
    draft: InventoryItemDraft,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.InventoryRow:
    """Validate and insert a new inventory item.

    Args:
        context (RuntimeContext): Runtime context providing the table store.
        draft (InventoryItemDraft): Fields of the new item.
        timestamp (datetime | None): Creation time, defaults to now (UTC).

    Returns:
        data_manager.InventoryRow: The stored item.

    Raises:
        ValidationError: If the draft breaks a catalog rule.
        DuplicateItemNameError: If the account already has an item with the
            same trimmed, case-insensitive name.
        PersistenceError: If the insert fails.
    """

    values = validate_draft(draft, operation=ADD_ITEM)
    _ensure_unique_name(context, values["Name"], operation=ADD_ITEM)

    when = resolve_timestamp(timestamp)
    row = data_manager.InventoryRow(
        item_id=generate_id(prefix="I", when=when),
        account_id=context.account_id,
        name=values["Name"],
        stock=values["Stock"],
        price=values["Price"],
        cost=values["Cost"],
        has_gst=values["HasGST"],
        is_bundle=values["IsBundle"],
        bundle_price=values["BundlePrice"],
        items_per_bundle=values["ItemsPerBundle"],
        created_at=when.isoformat(),
        updated_at=None,
    )
    try:
        data_manager.insert_rows(
            context.workbook,
            data_manager.INVENTORY_SHEET,
            [data_manager.serialize_inventory(row)],
        )
    except data_manager.StoreError as exc:
        log.error("Could not insert item '%s': %s", row.name, exc)
        raise PersistenceError(str(exc), operation=ADD_ITEM, step="insert item") from exc

    publish(context, MutationResult(items=(row,)))
    log.info("Added inventory item '%s' (%s) with stock %d", row.name, row.item_id, row.stock)
    return row


def update_inventory_item(
    context: RuntimeContext,
    item_id: str,
    draft: InventoryItemDraft,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.InventoryRow:
    """Validate and overwrite the editable fields of an existing item.

    The duplicate-name check ignores the item itself, so renaming ``"Fan"`` to
    ``"fan"`` is allowed. Historical line items keep their own cost and GST
    snapshots and are not touched.

    Raises:
        NotFoundError: If the item does not exist.
        ValidationError: If the draft breaks a catalog rule.
        DuplicateItemNameError: If another item already uses the name.
        PersistenceError: If the update fails.
    """

    get_item(context, item_id, operation=UPDATE_ITEM)
    values = validate_draft(draft, operation=UPDATE_ITEM)
    _ensure_unique_name(context, values["Name"], operation=UPDATE_ITEM, exclude_id=item_id)
    values["UpdatedAt"] = resolve_timestamp(timestamp).isoformat()

    try:
        updated = data_manager.update_rows(
            context.workbook,
            data_manager.INVENTORY_SHEET,
            match={"AccountID": context.account_id, "ItemID": item_id},
            field_values=values,
        )
    except data_manager.StoreError as exc:
        log.error("Could not update item '%s': %s", item_id, exc)
        raise PersistenceError(str(exc), operation=UPDATE_ITEM, step="update item") from exc
    if not updated:
        raise NotFoundError("inventory item", item_id, operation=UPDATE_ITEM)

    row = data_manager.deserialize_inventory(updated[0])
    publish(context, MutationResult(items=(row,)))
    log.info("Updated inventory item '%s' (%s)", row.name, row.item_id)
    return row


def _set_cost(
    context: RuntimeContext,
    item_id: str,
    cost: Decimal,
    updated_at: Optional[str],
) -> data_manager.InventoryRow:
    updated = data_manager.update_rows(
        context.workbook,
        data_manager.INVENTORY_SHEET,
        match={"AccountID": context.account_id, "ItemID": item_id},
        field_values={"Cost": cost, "UpdatedAt": updated_at},
    )
    if not updated:
        raise data_manager.StoreError(f"Inventory item disappeared during restock: {item_id}")
    return data_manager.deserialize_inventory(updated[0])


def restock_item(
    context: RuntimeContext,
    item_id: str,
    quantity: int,
    *,
    cost: Any = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.InventoryRow:
    """Add purchased units to an item and optionally record the new unit cost.

    The stock increase goes through the same guarded delta as sales and
    returns. When ``cost`` is given it replaces the item's cost, so later
    sales snapshot the latest purchase price. Both writes run in a saga: if
    the cost update fails the added units are taken back out.

    Args:
        context (RuntimeContext): Runtime context providing the table store.
        item_id (str): Item receiving the units.
        quantity (int): Individual units received, at least one.
        cost (Decimal | None): New unit cost, or ``None`` to keep the current
            one. Must not exceed the item's price.
        timestamp (datetime | None): Time recorded in ``UpdatedAt`` when the
            cost changes, defaults to now (UTC).

    Returns:
        data_manager.InventoryRow: The item as stored after the restock.

    Raises:
        NotFoundError: If the item does not exist.
        ValidationError: If the quantity or cost is invalid.
        PersistenceError: If a store call failed and the restock was undone.
        InconsistencyWarning: If undoing the stock increase also failed.
    """

    item = get_item(context, item_id, operation=RESTOCK_ITEM)
    quantity = require_positive_quantity(quantity, operation=RESTOCK_ITEM)
    new_cost: Optional[Decimal] = None
    if cost is not None:
        new_cost = require_nonnegative_money(cost, operation=RESTOCK_ITEM)
        if new_cost > item.price:
            log.warning("Rejected restock of '%s': cost %s above price %s", item_id, new_cost, item.price)
            raise ValidationError(
                f"cost {new_cost} must not exceed price {item.price}",
                operation=RESTOCK_ITEM,
            )

    with Saga(RESTOCK_ITEM) as saga:
        row = saga.step(
            "add stock",
            lambda: reconciler.apply_delta(context, item_id, quantity, operation=RESTOCK_ITEM),
            lambda _: reconciler.apply_delta(context, item_id, -quantity, operation=RESTOCK_ITEM),
        )
        if new_cost is not None:
            row = saga.step(
                "update cost",
                lambda: _set_cost(
                    context, item_id, new_cost, resolve_timestamp(timestamp).isoformat()
                ),
            )

    publish(context, MutationResult(items=(row,)))
    log.info(
        "Restocked '%s' (%s) with %d unit(s), stock now %d, cost %s",
        row.name,
        item_id,
        quantity,
        row.stock,
        row.cost,
    )
    return row


def delete_inventory_item(context: RuntimeContext, item_id: str) -> MutationResult:
    """Delete an item together with its line items as one coordinated operation.

    Store calls run in this order: delete the item's line items, delete every
    transaction left without lines, delete the item. Transactions that keep
    other lines are left with their recorded total. Stock of other items is
    not touched.

    Raises:
        NotFoundError: If the item does not exist.
        PersistenceError: If a store call fails and the removed rows were
            restored.
        InconsistencyWarning: If restoring removed rows also failed.
    """

    item = get_item(context, item_id, operation=DELETE_ITEM)
    sales = ledger.list_sales(context, inventory_item_id=item_id)
    affected = list(dict.fromkeys(sale.transaction_id for sale in sales))

    with Saga(DELETE_ITEM) as saga:
        saga.step(
            "delete item sales",
            lambda: ledger.delete_sales(context, inventory_item_id=item_id),
            lambda _: ledger.insert_sales(context, sales),
        )

        emptied: List[data_manager.TransactionRow] = []
        for transaction_id in affected:
            if ledger.list_sales(context, transaction_id=transaction_id):
                continue
            emptied.extend(
                data_manager.select_transactions(
                    context.workbook,
                    {"AccountID": context.account_id, "TransactionID": transaction_id},
                )
            )

        for txn in emptied:
            saga.step(
                f"delete emptied transaction {txn.transaction_id}",
                lambda txn=txn: ledger.delete_transaction_row(context, txn.transaction_id),
                lambda _, txn=txn: ledger.insert_transaction(context, txn),
            )

        saga.step(
            "delete item",
            lambda: data_manager.delete_rows(
                context.workbook,
                data_manager.INVENTORY_SHEET,
                match={"AccountID": context.account_id, "ItemID": item_id},
            ),
        )

    result = MutationResult(
        removed_transaction_ids=tuple(txn.transaction_id for txn in emptied),
        removed_sale_ids=tuple(sale.sale_id for sale in sales),
        removed_item_ids=(item_id,),
    )
    publish(context, result)
    log.info(
        "Deleted inventory item '%s' (%s) with %d line item(s) and %d emptied transaction(s)",
        item.name,
        item_id,
        len(sales),
        len(emptied),
    )
    return result
