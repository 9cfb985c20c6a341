"""Tests for catalog CRUD rules and the cascading item delete."""

from __future__ import annotations

from decimal import Decimal

import pytest

from shop_engine import catalog, coordinator, core_logic, data_manager, ledger
from shop_engine.constants import PaymentMethod
from shop_engine.exceptions import (
    DuplicateItemNameError,
    InconsistencyWarning,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from shop_engine.view_cache import ensure_view


def _draft(name: str = "Fan", **overrides) -> core_logic.InventoryItemDraft:
    fields = dict(name=name, stock=4, price=Decimal("900"), cost=Decimal("700"))
    fields.update(overrides)
    return core_logic.InventoryItemDraft(**fields)


def _sell(context, *lines) -> core_logic.MutationResult:
    return coordinator.create_transaction(
        context,
        core_logic.CreateTransactionCommand(
            lines=[
                core_logic.CartLine(inventory_item_id=item_id, quantity=qty, total_price=Decimal(total))
                for item_id, qty, total in lines
            ],
            payment_method=PaymentMethod.ONLINE,
        ),
    )


# ---------------------------------------------------------------------------
# Add / update
# ---------------------------------------------------------------------------


def test_add_item_stores_trimmed_name(runtime_context):
    item = catalog.add_inventory_item(runtime_context, _draft("  Fan  "))

    assert item.name == "Fan"
    assert item.item_id.startswith("I")
    assert catalog.get_item(runtime_context, item.item_id) == item


def test_add_item_rejects_case_insensitive_duplicate(runtime_context, add_item):
    add_item("switch ")
    with pytest.raises(DuplicateItemNameError):
        catalog.add_inventory_item(runtime_context, _draft("Switch"))
    assert len(catalog.list_items(runtime_context)) == 1


def test_add_item_rejects_price_below_cost(runtime_context):
    with pytest.raises(ValidationError):
        catalog.add_inventory_item(runtime_context, _draft(price=Decimal("5"), cost=Decimal("6")))
    assert catalog.list_items(runtime_context) == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "   "},
        {"stock": -1},
        {"stock": 1.5},
        {"is_bundle": True, "bundle_price": Decimal("50"), "items_per_bundle": 1},
        {"is_bundle": True, "bundle_price": Decimal("0"), "items_per_bundle": 6},
        {"is_bundle": True, "items_per_bundle": 6},
        {"items_per_bundle": 6},
    ],
)
def test_add_item_rejects_invalid_drafts(runtime_context, overrides):
    with pytest.raises(ValidationError):
        catalog.add_inventory_item(runtime_context, _draft(**overrides))


def test_add_bundle_item(runtime_context):
    item = catalog.add_inventory_item(
        runtime_context,
        _draft("Bulb-9W", is_bundle=True, bundle_price=Decimal("100"), items_per_bundle=10),
    )
    assert item.is_bundle is True
    assert item.items_per_bundle == 10


def test_add_item_store_failure_becomes_persistence_error(runtime_context, monkeypatch):
    def failing_insert(*_args, **_kwargs):
        raise data_manager.StoreError("disk full")

    monkeypatch.setattr(data_manager, "insert_rows", failing_insert)
    with pytest.raises(PersistenceError):
        catalog.add_inventory_item(runtime_context, _draft())


def test_update_item_may_keep_its_own_name(runtime_context, add_item):
    """Renaming an item to a case variant of its own name is allowed."""

    item = add_item("Fan", stock=2)
    updated = catalog.update_inventory_item(runtime_context, item.item_id, _draft("fan", stock=7))

    assert updated.name == "fan"
    assert updated.stock == 7
    assert updated.updated_at is not None
    assert updated.created_at == item.created_at


def test_update_item_rejects_other_items_name(runtime_context, add_item):
    add_item("Fan")
    other = add_item("Switch")
    with pytest.raises(DuplicateItemNameError):
        catalog.update_inventory_item(runtime_context, other.item_id, _draft(" FAN"))


def test_update_unknown_item_raises(runtime_context):
    with pytest.raises(NotFoundError):
        catalog.update_inventory_item(runtime_context, "missing", _draft())


def test_update_item_leaves_historical_snapshots(runtime_context, add_item):
    item = add_item("Fan", stock=5, price="10", cost="6")
    sale = _sell(runtime_context, (item.item_id, 2, "20")).sales[0]

    catalog.update_inventory_item(runtime_context, item.item_id, _draft("Fan", cost=Decimal("9"), price=Decimal("15")))

    assert ledger.get_sale(runtime_context, sale.sale_id).item_cost_at_sale == Decimal("12")


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


def test_delete_item_cascades_without_orphans(runtime_context, add_item):
    """Deleting an item removes its lines and any transaction left empty."""

    fan = add_item("Fan", stock=5)
    switch = add_item("Switch", stock=5)
    solo = _sell(runtime_context, (fan.item_id, 1, "10")).transaction
    mixed = _sell(runtime_context, (fan.item_id, 1, "10"), (switch.item_id, 1, "10")).transaction

    result = catalog.delete_inventory_item(runtime_context, fan.item_id)

    assert result.removed_item_ids == (fan.item_id,)
    assert result.removed_transaction_ids == (solo.transaction_id,)
    assert ledger.list_sales(runtime_context, inventory_item_id=fan.item_id) == []
    remaining = {txn.transaction_id for txn in ledger.list_transactions(runtime_context)}
    assert remaining == {mixed.transaction_id}
    assert ledger.get_transaction(runtime_context, mixed.transaction_id).total_price == Decimal("20")
    assert catalog.get_item(runtime_context, switch.item_id).stock == 4
    with pytest.raises(NotFoundError):
        catalog.get_item(runtime_context, fan.item_id)


def test_delete_item_updates_loaded_view(runtime_context, add_item):
    fan = add_item("Fan", stock=5)
    txn = _sell(runtime_context, (fan.item_id, 1, "10")).transaction
    view = ensure_view(runtime_context)

    catalog.delete_inventory_item(runtime_context, fan.item_id)

    assert view.get_item(fan.item_id) is None
    assert view.get_transaction(txn.transaction_id) is None
    assert view.sales() == []


def test_delete_item_restores_rows_when_final_delete_fails(runtime_context, add_item, monkeypatch):
    fan = add_item("Fan", stock=5)
    txn = _sell(runtime_context, (fan.item_id, 2, "20")).transaction
    original_delete = data_manager.delete_rows

    def flaky_delete(workbook, sheet_name, *, match):
        if sheet_name == data_manager.INVENTORY_SHEET:
            raise data_manager.StoreError("inventory locked")
        return original_delete(workbook, sheet_name, match=match)

    monkeypatch.setattr(data_manager, "delete_rows", flaky_delete)

    with pytest.raises(PersistenceError):
        catalog.delete_inventory_item(runtime_context, fan.item_id)

    assert ledger.get_transaction(runtime_context, txn.transaction_id) == txn
    assert len(ledger.list_sales(runtime_context, transaction_id=txn.transaction_id)) == 1
    assert catalog.get_item(runtime_context, fan.item_id).stock == 3


def test_delete_item_reports_inconsistency_when_restore_fails(runtime_context, add_item, monkeypatch):
    fan = add_item("Fan", stock=5)
    _sell(runtime_context, (fan.item_id, 1, "10"))
    original_delete = data_manager.delete_rows

    def flaky_delete(workbook, sheet_name, *, match):
        if sheet_name == data_manager.INVENTORY_SHEET:
            raise data_manager.StoreError("inventory locked")
        return original_delete(workbook, sheet_name, match=match)

    def failing_insert(*_args, **_kwargs):
        raise data_manager.StoreError("sales locked")

    monkeypatch.setattr(data_manager, "delete_rows", flaky_delete)
    monkeypatch.setattr(data_manager, "insert_rows", failing_insert)

    with pytest.raises(InconsistencyWarning):
        catalog.delete_inventory_item(runtime_context, fan.item_id)


def test_delete_unknown_item_raises(runtime_context):
    with pytest.raises(NotFoundError):
        catalog.delete_inventory_item(runtime_context, "missing")


# ---------------------------------------------------------------------------
# restock_item
# ---------------------------------------------------------------------------


def test_restock_adds_units_and_records_latest_cost(runtime_context, add_item, stock_of):
    """Later sales snapshot the cost paid on the most recent purchase."""

    fan = add_item("Fan", stock=2, price="10", cost="6")
    view = ensure_view(runtime_context)

    restocked = catalog.restock_item(runtime_context, fan.item_id, 8, cost=Decimal("7.50"))

    assert (restocked.stock, restocked.cost) == (10, Decimal("7.50"))
    assert restocked.updated_at is not None
    assert stock_of(fan.item_id) == 10
    assert view.get_item(fan.item_id) == restocked

    [line] = _sell(runtime_context, (fan.item_id, 2, "20")).sales
    assert line.item_cost_at_sale == Decimal("15.00")


def test_restock_without_cost_keeps_current_cost(runtime_context, add_item):
    fan = add_item("Fan", stock=1, price="10", cost="6")

    restocked = catalog.restock_item(runtime_context, fan.item_id, 4)

    assert (restocked.stock, restocked.cost, restocked.updated_at) == (5, Decimal("6.00"), None)


@pytest.mark.parametrize(
    "quantity, cost",
    [(0, None), (-3, None), (2, Decimal("-1")), (2, Decimal("10.01"))],
)
def test_restock_rejects_invalid_input(runtime_context, add_item, stock_of, quantity, cost):
    fan = add_item("Fan", stock=3, price="10", cost="6")

    with pytest.raises(ValidationError):
        catalog.restock_item(runtime_context, fan.item_id, quantity, cost=cost)
    assert stock_of(fan.item_id) == 3


def test_restock_unknown_item_raises(runtime_context):
    with pytest.raises(NotFoundError):
        catalog.restock_item(runtime_context, "missing", 1)


def test_failed_cost_update_takes_the_units_back(runtime_context, add_item, stock_of, monkeypatch):
    fan = add_item("Fan", stock=3, price="10", cost="6")

    def failing_update(*_args, **_kwargs):
        raise data_manager.StoreError("inventory locked")

    monkeypatch.setattr(data_manager, "update_rows", failing_update)

    with pytest.raises(PersistenceError) as excinfo:
        catalog.restock_item(runtime_context, fan.item_id, 5, cost=Decimal("7"))

    assert excinfo.value.step == "update cost"
    assert stock_of(fan.item_id) == 3
    assert catalog.get_item(runtime_context, fan.item_id).cost == Decimal("6.00")
