"""Tests for the read-through, write-through view cache."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

from shop_engine import core_logic, data_manager, view_cache
from shop_engine.constants import SaleStatus


def _txn(transaction_id: str, timestamp: str) -> data_manager.TransactionRow:
    return data_manager.TransactionRow(
        transaction_id=transaction_id,
        account_id="A-TEST",
        timestamp_iso=timestamp,
        total_price=Decimal("10"),
        payment_method="Offline",
        customer_name=None,
        customer_phone=None,
    )


def _sale(transaction_id: str, position: int, status: str = SaleStatus.COMPLETED.value) -> data_manager.SaleRow:
    return data_manager.SaleRow(
        sale_id=core_logic.line_id(transaction_id, position),
        account_id="A-TEST",
        transaction_id=transaction_id,
        inventory_item_id="I1",
        product_name="Fan",
        quantity=1,
        total_price=Decimal("10"),
        item_cost_at_sale=Decimal("6"),
        has_gst=False,
        sale_type="loose",
        status=status,
    )


def test_ensure_view_loads_once(runtime_context, add_item, monkeypatch):
    add_item("Fan")
    first = view_cache.ensure_view(runtime_context)
    assert [item.name for item in first.inventory()] == ["Fan"]

    def fail_load(_context):
        raise AssertionError("view should not reload")

    monkeypatch.setattr(view_cache.ViewCache, "load", classmethod(lambda cls, context: fail_load(context)))
    assert view_cache.ensure_view(runtime_context) is first


def test_view_only_loads_current_account(config_factory):
    context = core_logic.load_runtime_context(config_factory().config_path)
    data_manager.insert_rows(
        context.workbook,
        data_manager.TRANSACTIONS_SHEET,
        [
            data_manager.serialize_transaction(_txn("T1", "2024-01-01")),
            data_manager.serialize_transaction(replace(_txn("T2", "2024-01-02"), account_id="A-OTHER")),
        ],
    )

    view = view_cache.ensure_view(context)

    assert [txn.transaction_id for txn in view.transactions()] == ["T1"]


def test_sales_are_grouped_newest_transaction_first():
    view = view_cache.ViewCache(
        transactions=[_txn("T2", "2024-01-02"), _txn("T1", "2024-01-01")],
        sales=[_sale("T1", 1), _sale("T2", 2), _sale("T2", 1)],
    )
    assert [sale.sale_id for sale in view.sales()] == ["T2-L01", "T2-L02", "T1-L01"]


def test_relevant_sales_excludes_returned_lines():
    view = view_cache.ViewCache(
        transactions=[_txn("T1", "2024-01-01")],
        sales=[_sale("T1", 1), _sale("T1", 2, SaleStatus.RETURNED.value)],
    )
    assert [sale.sale_id for sale in view.relevant_sales()] == ["T1-L01"]


def test_apply_prepends_new_transactions_and_replaces_known_rows():
    view = view_cache.ViewCache(transactions=[_txn("T1", "2024-01-01")], sales=[_sale("T1", 1)])
    returned = _sale("T1", 1, SaleStatus.RETURNED.value)

    view.apply(core_logic.MutationResult(transactions=(_txn("T2", "2024-01-02"),), sales=(returned,)))

    assert [txn.transaction_id for txn in view.transactions()] == ["T2", "T1"]
    assert view.get_sale("T1-L01") == returned


def test_apply_removes_listed_ids():
    view = view_cache.ViewCache(
        transactions=[_txn("T1", "2024-01-01")],
        sales=[_sale("T1", 1)],
    )
    view.apply(core_logic.MutationResult(removed_transaction_ids=("T1",), removed_sale_ids=("T1-L01",)))
    assert view.transactions() == []
    assert view.sales() == []


def test_publish_without_loaded_view_is_a_no_op(runtime_context, add_item):
    """An unloaded view picks up the post-state when it is first read."""

    item = add_item("Fan", stock=3)
    assert view_cache.VIEW_BUCKET not in runtime_context._cache

    view = view_cache.ensure_view(runtime_context)

    assert view.get_item(item.item_id).stock == 3


def test_invalidate_view_forces_reload(runtime_context, add_item):
    first = view_cache.ensure_view(runtime_context)
    view_cache.invalidate_view(runtime_context)
    add_item("Fan")

    second = view_cache.ensure_view(runtime_context)

    assert second is not first
    assert [item.name for item in second.inventory()] == ["Fan"]
