"""Local view cache consumed by presentation code.

The cache is a read-through, write-through projection of the catalog and the
ledger. It is loaded from the table store on first use and afterwards changes
only by applying the :class:`~shop_engine.core_logic.MutationResult` returned
by a successful operation. It never recomputes stock or totals on its own, so
it cannot drift from what the store reported.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from . import data_manager, ledger, log
from .constants import SaleStatus
from .core_logic import MutationResult, RuntimeContext, line_position

VIEW_BUCKET = "view"


class ViewCache:
    """In-memory snapshot of inventory, transactions, and flattened sales."""

    def __init__(
        self,
        inventory: Iterable[data_manager.InventoryRow] = (),
        transactions: Iterable[data_manager.TransactionRow] = (),
        sales: Iterable[data_manager.SaleRow] = (),
    ) -> None:
        self._inventory: Dict[str, data_manager.InventoryRow] = {item.item_id: item for item in inventory}
        self._transactions: List[data_manager.TransactionRow] = list(transactions)
        self._sales: Dict[str, data_manager.SaleRow] = {sale.sale_id: sale for sale in sales}

    @classmethod
    def load(cls, context: RuntimeContext) -> "ViewCache":
        """Build a view from the current contents of the table store."""

        inventory = data_manager.select_inventory(context.workbook, {"AccountID": context.account_id})
        view = cls(
            inventory=inventory,
            transactions=ledger.list_transactions(context),
            sales=ledger.list_sales(context),
        )
        log.debug(
            "Loaded view cache with %d items, %d transactions, %d sales",
            len(view._inventory),
            len(view._transactions),
            len(view._sales),
        )
        return view

    def inventory(self) -> List[data_manager.InventoryRow]:
        return list(self._inventory.values())

    def transactions(self) -> List[data_manager.TransactionRow]:
        """Return transactions newest first."""

        return list(self._transactions)

    def sales(self) -> List[data_manager.SaleRow]:
        """Return every line item, grouped by transaction, newest transaction first."""

        position = {txn.transaction_id: idx for idx, txn in enumerate(self._transactions)}
        return sorted(
            self._sales.values(),
            key=lambda sale: (
                position.get(sale.transaction_id, len(position)),
                line_position(sale.sale_id),
            ),
        )

    def relevant_sales(self) -> List[data_manager.SaleRow]:
        """Return the line items that count toward reporting (not returned)."""

        return [sale for sale in self.sales() if sale.status != SaleStatus.RETURNED.value]

    def get_item(self, item_id: str) -> Optional[data_manager.InventoryRow]:
        return self._inventory.get(item_id)

    def get_transaction(self, transaction_id: str) -> Optional[data_manager.TransactionRow]:
        for txn in self._transactions:
            if txn.transaction_id == transaction_id:
                return txn
        return None

    def get_sale(self, sale_id: str) -> Optional[data_manager.SaleRow]:
        return self._sales.get(sale_id)

    def items_for(self, transaction_id: str) -> List[data_manager.SaleRow]:
        """Return the line items of one transaction in line order."""

        return sorted(
            (sale for sale in self._sales.values() if sale.transaction_id == transaction_id),
            key=lambda sale: line_position(sale.sale_id),
        )

    def apply(self, result: MutationResult) -> None:
        """Fold an operation's post-state into the view: upserts, then removals."""

        for item in result.items:
            self._inventory[item.item_id] = item
        for txn in result.transactions:
            for idx, existing in enumerate(self._transactions):
                if existing.transaction_id == txn.transaction_id:
                    self._transactions[idx] = txn
                    break
            else:
                self._transactions.insert(0, txn)
        for sale in result.sales:
            self._sales[sale.sale_id] = sale

        removed_transactions = set(result.removed_transaction_ids)
        if removed_transactions:
            self._transactions = [
                txn for txn in self._transactions if txn.transaction_id not in removed_transactions
            ]
        for sale_id in result.removed_sale_ids:
            self._sales.pop(sale_id, None)
        for item_id in result.removed_item_ids:
            self._inventory.pop(item_id, None)


def ensure_view(context: RuntimeContext) -> ViewCache:
    """Return the context's view cache, loading it from the store on first use."""

    view = context._cache.get(VIEW_BUCKET)
    if view is None:
        view = ViewCache.load(context)
        context._cache[VIEW_BUCKET] = view
    return view


def publish(context: RuntimeContext, result: MutationResult) -> None:
    """Apply a successful operation's result to the view, if one is loaded.

    An unloaded view is left alone; it reads the post-state from the store
    when first requested.
    """

    view = context._cache.get(VIEW_BUCKET)
    if view is None:
        return
    view.apply(result)
    log.debug(
        "Applied result to view cache (%d items, %d transactions, %d sales updated)",
        len(result.items),
        len(result.transactions),
        len(result.sales),
    )


def invalidate_view(context: RuntimeContext) -> None:
    """Drop the cached view so the next read reloads it from the store."""

    if context._cache.pop(VIEW_BUCKET, None) is not None:
        log.debug("Invalidated view cache")
