"""Transaction coordinator: checkout creation and whole-transaction deletion.

Both operations issue several independent store calls and run them inside a
:class:`~shop_engine.saga.Saga`, so a failure part-way through undoes the
calls that already succeeded. The view cache is updated only from the result
of an operation that completed.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Tuple

from . import catalog, data_manager, ledger, log, reconciler
from .constants import PaymentMethod, SaleStatus, SaleType
from .core_logic import (
    CartLine,
    CreateTransactionCommand,
    MutationResult,
    RuntimeContext,
    resolve_timestamp,
    generate_id,
    line_id,
    require_nonnegative_money,
    require_positive_quantity,
)
from .exceptions import InsufficientStockError, NotFoundError, ValidationError
from .saga import Saga
from .view_cache import ensure_view, publish

CREATE_TRANSACTION = "create_transaction"
DELETE_TRANSACTION = "delete_transaction"


def parse_payment_method(value: object, *, operation: str) -> PaymentMethod:
    """Coerce ``value`` into a :class:`PaymentMethod` or raise ``ValidationError``."""
    try:
        return PaymentMethod(value)
    except ValueError as exc:
        raise ValidationError(f"unsupported payment method: {value!r}", operation=operation) from exc


def _validate_lines(
    context: RuntimeContext,
    lines: List[CartLine],
) -> List[Tuple[CartLine, Decimal, SaleType]]:
    """Check every cart line and pre-check stock without writing anything.

    Required units are summed per item before comparing with stock, so two
    lines for the same item cannot each pass on their own and together
    oversell it.
    """

    if not lines:
        raise ValidationError("a transaction needs at least one line", operation=CREATE_TRANSACTION)

    prepared: List[Tuple[CartLine, Decimal, SaleType]] = []
    required: Dict[str, int] = {}
    items: Dict[str, data_manager.InventoryRow] = {}
    for line in lines:
        require_positive_quantity(line.quantity, operation=CREATE_TRANSACTION)
        total_price = require_nonnegative_money(line.total_price, operation=CREATE_TRANSACTION)
        sale_type = reconciler.parse_sale_type(line.sale_type, operation=CREATE_TRANSACTION)
        item = items.get(line.inventory_item_id) or catalog.get_item(
            context, line.inventory_item_id, operation=CREATE_TRANSACTION
        )
        items[item.item_id] = item
        if (
            sale_type is SaleType.BUNDLE
            and line.items_per_bundle is not None
            and line.items_per_bundle != item.items_per_bundle
        ):
            log.warning(
                "Stale cart line for '%s': bundle size %s, item now has %s",
                item.item_id,
                line.items_per_bundle,
                item.items_per_bundle,
            )
            raise ValidationError(
                f"bundle size of '{item.name}' changed to {item.items_per_bundle}; refresh the cart",
                operation=CREATE_TRANSACTION,
            )
        units = reconciler.compute_unit_delta(item, line.quantity, sale_type, operation=CREATE_TRANSACTION)
        required[item.item_id] = required.get(item.item_id, 0) + units
        prepared.append((line, total_price, sale_type))

    for item_id, units in required.items():
        item = items[item_id]
        if item.stock < units:
            log.warning(
                "Insufficient stock for '%s': available %d, needed %d",
                item.name,
                item.stock,
                units,
            )
            raise InsufficientStockError(
                item.item_id,
                item.name,
                available=item.stock,
                required=units,
                operation=CREATE_TRANSACTION,
            )
    return prepared


def create_transaction(context: RuntimeContext, command: CreateTransactionCommand) -> MutationResult:
    """Record a multi-line checkout and deduct its stock.

    Store calls run in this order: insert the transaction row, then for each
    line re-read the item and apply its stock deduction, then insert all line
    items in one call. Each line item snapshots the item's cost (times the
    units consumed), GST flag and name as read just before its deduction.

    Args:
        context (RuntimeContext): Runtime context providing the table store.
        command (CreateTransactionCommand): Cart lines, payment method and
            optional customer reference.

    Returns:
        MutationResult: The new transaction, its line items, and the items
            as stored after their deductions.

    Raises:
        ValidationError: If the cart is empty or a line is malformed.
        NotFoundError: If a line references an unknown item.
        InsufficientStockError: If any item lacks the required units. Nothing
            persists.
        PersistenceError: If a store call failed and every completed step was
            undone.
        InconsistencyWarning: If undoing a completed step also failed.
    """

    payment_method = parse_payment_method(command.payment_method, operation=CREATE_TRANSACTION)
    prepared = _validate_lines(context, list(command.lines))

    when = resolve_timestamp(command.timestamp)
    grand_total = sum((total for _, total, _ in prepared), Decimal("0"))
    transaction = data_manager.TransactionRow(
        transaction_id=generate_id(prefix="T", when=when),
        account_id=context.account_id,
        timestamp_iso=when.isoformat(),
        total_price=grand_total,
        payment_method=payment_method.value,
        customer_name=command.customer.name if command.customer else None,
        customer_phone=command.customer.phone if command.customer else None,
    )

    sales: List[data_manager.SaleRow] = []
    updated_items: Dict[str, data_manager.InventoryRow] = {}
    with Saga(CREATE_TRANSACTION) as saga:
        saga.step(
            "insert transaction",
            lambda: ledger.insert_transaction(context, transaction),
            lambda row: ledger.delete_transaction_row(context, row.transaction_id),
        )

        for position, (line, total_price, sale_type) in enumerate(prepared, start=1):
            current = catalog.get_item(context, line.inventory_item_id, operation=CREATE_TRANSACTION)
            units = reconciler.compute_unit_delta(
                current, line.quantity, sale_type, operation=CREATE_TRANSACTION
            )
            if current.stock < units:
                raise InsufficientStockError(
                    current.item_id,
                    current.name,
                    available=current.stock,
                    required=units,
                    operation=CREATE_TRANSACTION,
                )

            updated = saga.step(
                f"deduct stock for line {position}",
                lambda item_id=current.item_id, units=units: reconciler.apply_delta(
                    context, item_id, -units, operation=CREATE_TRANSACTION
                ),
                lambda _, item_id=current.item_id, units=units: reconciler.apply_delta(
                    context, item_id, units, operation=CREATE_TRANSACTION
                ),
            )
            updated_items[updated.item_id] = updated

            sales.append(
                data_manager.SaleRow(
                    sale_id=line_id(transaction.transaction_id, position),
                    account_id=context.account_id,
                    transaction_id=transaction.transaction_id,
                    inventory_item_id=current.item_id,
                    product_name=line.product_name or current.name,
                    quantity=line.quantity,
                    total_price=total_price,
                    item_cost_at_sale=current.cost * units,
                    has_gst=current.has_gst,
                    sale_type=sale_type.value,
                    status=SaleStatus.COMPLETED.value,
                )
            )

        saga.step("insert sales", lambda: ledger.insert_sales(context, sales))

    result = MutationResult(
        transactions=(transaction,),
        sales=tuple(sales),
        items=tuple(updated_items.values()),
    )
    publish(context, result)
    log.info(
        "Created transaction '%s' with %d line(s), total %s (%s)",
        transaction.transaction_id,
        len(sales),
        grand_total,
        payment_method.value,
    )
    return result


def delete_transaction(context: RuntimeContext, transaction_id: str) -> MutationResult:
    """Delete a whole transaction and give back the stock of its lines.

    The store does not cascade deletes, so calls run in this fixed order:
    delete the transaction's line items, delete the transaction row, then
    reverse the stock effect of every line still ``completed``, in line order.
    Returned lines are skipped because their stock was already restored.

    Args:
        context (RuntimeContext): Runtime context providing the table store.
        transaction_id (str): Transaction to delete; must be present in the
            view cache.

    Returns:
        MutationResult: Removed transaction and line ids plus the items as
            stored after their stock was restored.

    Raises:
        NotFoundError: If the transaction is not in the view, or a line's item
            no longer exists.
        InsufficientStockError: If reversing a refund line would need more
            units than are in stock. Nothing persists.
        PersistenceError: If a store call failed and every completed step was
            undone.
        InconsistencyWarning: If undoing a completed step also failed.
    """

    view = ensure_view(context)
    if view.get_transaction(transaction_id) is None:
        log.warning("Delete requested for unknown transaction '%s'", transaction_id)
        raise NotFoundError("transaction", transaction_id, operation=DELETE_TRANSACTION)

    transaction = ledger.get_transaction(context, transaction_id, operation=DELETE_TRANSACTION)
    lines = ledger.list_sales(context, transaction_id=transaction_id)

    restorations: List[Tuple[data_manager.SaleRow, str, int]] = []
    for sale in lines:
        if sale.status == SaleStatus.RETURNED.value:
            continue
        item = catalog.get_item(context, sale.inventory_item_id, operation=DELETE_TRANSACTION)
        effect = reconciler.line_stock_effect(item, sale, operation=DELETE_TRANSACTION)
        restorations.append((sale, item.item_id, -effect))

    updated_items: Dict[str, data_manager.InventoryRow] = {}
    with Saga(DELETE_TRANSACTION) as saga:
        saga.step(
            "delete sales",
            lambda: ledger.delete_sales(context, transaction_id=transaction_id),
            lambda _: ledger.insert_sales(context, lines),
        )
        saga.step(
            "delete transaction",
            lambda: ledger.delete_transaction_row(context, transaction_id),
            lambda _: ledger.insert_transaction(context, transaction),
        )
        for sale, item_id, delta in restorations:
            updated = saga.step(
                f"restore stock for {sale.sale_id}",
                lambda item_id=item_id, delta=delta: reconciler.apply_delta(
                    context, item_id, delta, operation=DELETE_TRANSACTION
                ),
                lambda _, item_id=item_id, delta=delta: reconciler.apply_delta(
                    context, item_id, -delta, operation=DELETE_TRANSACTION
                ),
            )
            updated_items[item_id] = updated

    result = MutationResult(
        items=tuple(updated_items.values()),
        removed_transaction_ids=(transaction_id,),
        removed_sale_ids=tuple(sale.sale_id for sale in lines),
    )
    publish(context, result)
    log.info(
        "Deleted transaction '%s' (%d line(s), %d restored)",
        transaction_id,
        len(lines),
        len(restorations),
    )
    return result
