"""Return processor: single-line returns and standalone refunds."""

from __future__ import annotations

from . import catalog, data_manager, ledger, log, reconciler
from .constants import SaleStatus, SaleType
from .core_logic import (
    MutationResult,
    RuntimeContext,
    StandaloneReturnCommand,
    resolve_timestamp,
    generate_id,
    line_id,
    require_positive_quantity,
    to_money,
)
from .exceptions import SaleAlreadyReturnedError, ValidationError
from .saga import Saga
from .view_cache import publish

RETURN_SALE_LINE = "return_sale_line"
STANDALONE_RETURN = "standalone_return"


def return_sale_line(context: RuntimeContext, sale_id: str) -> MutationResult:
    """Return one line item: restore its stock, then mark it ``returned``.

    Stock is restored first. The status flip is a conditional update that
    only matches a ``completed`` line; if it fails, the restoration is
    reversed. The parent transaction's recorded total is left as it was, and
    reporting excludes returned lines instead.

    Raises:
        NotFoundError: If the line or its item does not exist.
        SaleAlreadyReturnedError: If the line was already returned.
        ValidationError: If the line is itself a refund.
        PersistenceError: If a store call failed and the stock restoration
            was undone.
        InconsistencyWarning: If undoing the stock restoration also failed.
    """

    sale = ledger.get_sale(context, sale_id, operation=RETURN_SALE_LINE)
    if sale.status == SaleStatus.RETURNED.value:
        log.warning("Sale '%s' has already been returned", sale_id)
        raise SaleAlreadyReturnedError(sale_id, operation=RETURN_SALE_LINE)
    if reconciler.is_refund_line(sale):
        raise ValidationError(f"sale '{sale_id}' is a refund and cannot be returned", operation=RETURN_SALE_LINE)

    item = catalog.get_item(context, sale.inventory_item_id, operation=RETURN_SALE_LINE)
    units = reconciler.compute_unit_delta(item, sale.quantity, sale.sale_type, operation=RETURN_SALE_LINE)

    with Saga(RETURN_SALE_LINE) as saga:
        restored = saga.step(
            "restore stock",
            lambda: reconciler.apply_delta(context, item.item_id, units, operation=RETURN_SALE_LINE),
            lambda _: reconciler.apply_delta(context, item.item_id, -units, operation=RETURN_SALE_LINE),
        )
        returned = saga.step("mark sale returned", lambda: ledger.mark_sale_returned(context, sale_id))

    result = MutationResult(sales=(returned,), items=(restored,))
    publish(context, result)
    log.info("Returned sale '%s': restored %d unit(s) of '%s'", sale_id, units, item.name)
    return result


def standalone_return(context: RuntimeContext, command: StandaloneReturnCommand) -> MutationResult:
    """Record a refund that has no original sale record.

    Creates a negative-value transaction paid with the shop's default
    in-person method and a single loose refund line, then puts ``quantity``
    units back into stock. The refund amount is taken as given and never
    derived from the item's price; its sign is ignored.

    Args:
        context (RuntimeContext): Runtime context providing the table store.
        command (StandaloneReturnCommand): Item, quantity and refund amount.

    Returns:
        MutationResult: The refund transaction, its line, and the item as
            stored after the restoration.

    Raises:
        ValidationError: If the quantity is not a positive integer or the
            refund amount is zero or not a number.
        NotFoundError: If the item does not exist.
        PersistenceError: If a store call failed and every completed step was
            undone.
        InconsistencyWarning: If undoing a completed step also failed.
    """

    quantity = require_positive_quantity(command.quantity, operation=STANDALONE_RETURN)
    refund = abs(to_money(command.refund_amount, operation=STANDALONE_RETURN))
    if refund == 0:
        raise ValidationError("refund amount must not be zero", operation=STANDALONE_RETURN)
    item = catalog.get_item(context, command.item_id, operation=STANDALONE_RETURN)

    when = resolve_timestamp(command.timestamp)
    transaction = data_manager.TransactionRow(
        transaction_id=generate_id(prefix="R", when=when),
        account_id=context.account_id,
        timestamp_iso=when.isoformat(),
        total_price=-refund,
        payment_method=context.settings.default_payment_method,
        customer_name=None,
        customer_phone=None,
    )
    refund_line = data_manager.SaleRow(
        sale_id=line_id(transaction.transaction_id, 1),
        account_id=context.account_id,
        transaction_id=transaction.transaction_id,
        inventory_item_id=item.item_id,
        product_name=item.name,
        quantity=quantity,
        total_price=-refund,
        item_cost_at_sale=item.cost * quantity,
        has_gst=item.has_gst,
        sale_type=SaleType.LOOSE.value,
        status=SaleStatus.COMPLETED.value,
    )

    with Saga(STANDALONE_RETURN) as saga:
        saga.step(
            "insert refund transaction",
            lambda: ledger.insert_transaction(context, transaction),
            lambda row: ledger.delete_transaction_row(context, row.transaction_id),
        )
        saga.step(
            "insert refund line",
            lambda: ledger.insert_sales(context, [refund_line]),
            lambda _: ledger.delete_sales(context, transaction_id=transaction.transaction_id),
        )
        restored = saga.step(
            "restore stock",
            lambda: reconciler.apply_delta(context, item.item_id, quantity, operation=STANDALONE_RETURN),
        )

    result = MutationResult(transactions=(transaction,), sales=(refund_line,), items=(restored,))
    publish(context, result)
    log.info(
        "Recorded standalone return '%s': %d unit(s) of '%s', refund %s",
        transaction.transaction_id,
        quantity,
        item.name,
        refund,
    )
    return result
