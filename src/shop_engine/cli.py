"""Command-line entry points for the shop engine.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the command objects consumed by the engine.
Keeping the CLI thin ensures the same parser configuration can be reused by
tests, scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import catalog, coordinator, core_logic, log, reports, returns
from .constants import PaymentMethod, SaleType
from .exceptions import InconsistencyWarning, PersistenceError, ShopEngineError
from .view_cache import ensure_view


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="shop-cli",
        description="Command-line tools for the shop inventory and sales workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and returns."""
    specs = {
        "add-item": register_add_item_command(subparsers),
        "update-item": register_update_item_command(subparsers),
        "delete-item": register_delete_item_command(subparsers),
        "restock": register_restock_command(subparsers),
        "sale": register_sale_command(subparsers),
        "delete-transaction": register_delete_transaction_command(subparsers),
        "return-line": register_return_line_command(subparsers),
        "standalone-return": register_standalone_return_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "summary": register_summary_command(subparsers),
        "log": register_log_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def parse_money(raw: str) -> Decimal:
    """argparse type converting text into a :class:`~decimal.Decimal`."""
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid amount: {raw!r}") from exc


def parse_date(raw: str) -> date:
    """argparse type for ``YYYY-MM-DD`` report bounds."""
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date: {raw!r}") from exc


def parse_cart_line(raw: str) -> core_logic.CartLine:
    """argparse type for ``ITEM_ID:QUANTITY:TOTAL[:loose|bundle]``."""
    parts = raw.split(":")
    if len(parts) not in (3, 4):
        raise argparse.ArgumentTypeError(
            f"expected ITEM_ID:QUANTITY:TOTAL[:SALE_TYPE], got {raw!r}"
        )
    item_id, quantity_raw, total_raw = parts[:3]
    try:
        quantity = int(quantity_raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid quantity: {quantity_raw!r}") from exc
    sale_type_raw = parts[3] if len(parts) == 4 else SaleType.LOOSE.value
    try:
        sale_type = SaleType(sale_type_raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid sale type: {sale_type_raw!r}") from exc
    return core_logic.CartLine(
        inventory_item_id=item_id,
        quantity=quantity,
        total_price=parse_money(total_raw),
        sale_type=sale_type,
    )


def _add_item_fields(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", required=True)
    parser.add_argument("--stock", type=int, required=True)
    parser.add_argument("--price", type=parse_money, required=True)
    parser.add_argument("--cost", type=parse_money, required=True)
    parser.add_argument("--gst", action="store_true", help="Prices include GST.")
    parser.add_argument("--bundle", action="store_true", help="The item is also sold in bundles.")
    parser.add_argument("--bundle-price", type=parse_money, default=None)
    parser.add_argument("--items-per-bundle", type=int, default=None)


def register_add_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-item``."""
    name = "add-item"
    help_text = "Add a new inventory item."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_item_fields(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_item)


def register_update_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-item``."""
    name = "update-item"
    help_text = "Overwrite the fields of an inventory item."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item-id", required=True)
        _add_item_fields(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_item)


def register_delete_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-item``."""
    name = "delete-item"
    help_text = "Delete an inventory item and its line items."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_item)


def register_restock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restock``."""
    name = "restock"
    help_text = "Add purchased units to an item, optionally with a new unit cost."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item-id", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--cost", type=parse_money, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_restock)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a multi-line sale transaction."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--line",
            dest="lines",
            action="append",
            type=parse_cart_line,
            required=True,
            help="Cart line as ITEM_ID:QUANTITY:TOTAL[:loose|bundle]; repeat for more lines.",
        )
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            required=True,
        )
        parser.add_argument("--customer-name", default=None)
        parser.add_argument("--customer-phone", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_delete_transaction_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-transaction``."""
    name = "delete-transaction"
    help_text = "Delete a transaction and restore the stock of its lines."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_transaction)


def register_return_line_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``return-line``."""
    name = "return-line"
    help_text = "Return a single line item of a transaction."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_return_line)


def register_standalone_return_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``standalone-return``."""
    name = "standalone-return"
    help_text = "Refund stock that has no original sale record."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item-id", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--refund-amount", type=parse_money, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_standalone_return)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name, help_text=help_text, register=registrar, execute=run_stock_report, mutates=False
    )


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Display revenue, cost, profit, and GST summaries."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--start", type=parse_date, default=None, help="First day included (YYYY-MM-DD).")
        parser.add_argument("--end", type=parse_date, default=None, help="Last day included (YYYY-MM-DD).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name, help_text=help_text, register=registrar, execute=run_summary_report, mutates=False
    )


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    name = "log"
    help_text = "Display transactions and their line items."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name, help_text=help_text, register=registrar, execute=run_log_report, mutates=False
    )


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    context = core_logic.load_runtime_context(target)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_item_draft(args: argparse.Namespace) -> core_logic.InventoryItemDraft:
    """Translate CLI args into an inventory item draft."""
    return core_logic.InventoryItemDraft(
        name=args.name,
        stock=args.stock,
        price=args.price,
        cost=args.cost,
        has_gst=args.gst,
        is_bundle=args.bundle,
        bundle_price=args.bundle_price,
        items_per_bundle=args.items_per_bundle,
    )


def translate_sale(args: argparse.Namespace) -> core_logic.CreateTransactionCommand:
    """Translate CLI args into a create-transaction command object."""
    customer = None
    if args.customer_name:
        customer = core_logic.CustomerInfo(name=args.customer_name, phone=args.customer_phone)
    return core_logic.CreateTransactionCommand(
        lines=list(args.lines),
        payment_method=PaymentMethod(args.payment_method),
        customer=customer,
    )


def translate_standalone_return(args: argparse.Namespace) -> core_logic.StandaloneReturnCommand:
    """Translate CLI args into a standalone return command object."""
    return core_logic.StandaloneReturnCommand(
        item_id=args.item_id,
        quantity=args.quantity,
        refund_amount=args.refund_amount,
    )


def run_add_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-item workflow."""
    item = catalog.add_inventory_item(context, translate_item_draft(args))
    print(f"Added {item.item_id}: {item.name}")
    return 0


def run_update_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-item workflow."""
    item = catalog.update_inventory_item(context, args.item_id, translate_item_draft(args))
    print(f"Updated {item.item_id}: {item.name}")
    return 0


def run_delete_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-item workflow."""
    result = catalog.delete_inventory_item(context, args.item_id)
    print(f"Deleted {args.item_id} with {len(result.removed_sale_ids)} line item(s)")
    return 0


def run_restock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the restock workflow."""
    item = catalog.restock_item(context, args.item_id, args.quantity, cost=args.cost)
    print(f"Restocked {item.item_id}: stock {item.stock}, cost {item.cost}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow."""
    result = coordinator.create_transaction(context, translate_sale(args))
    print(f"Recorded {result.transaction.transaction_id}: total {result.transaction.total_price}")
    return 0


def run_delete_transaction(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-transaction workflow."""
    result = coordinator.delete_transaction(context, args.transaction_id)
    print(f"Deleted {args.transaction_id}: restored stock of {len(result.items)} item(s)")
    return 0


def run_return_line(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the single-line return workflow."""
    result = returns.return_sale_line(context, args.sale_id)
    [item] = result.items
    print(f"Returned {args.sale_id}: {item.name} stock {item.stock}")
    return 0


def run_standalone_return(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the standalone return workflow."""
    result = returns.standalone_return(context, translate_standalone_return(args))
    print(f"Recorded {result.transaction.transaction_id}: total {result.transaction.total_price}")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print every item with its stock."""
    for item in ensure_view(context).inventory():
        print(f"{item.item_id}\t{item.name}\t{item.stock}")
    return 0


def run_summary_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the sales and GST summaries."""
    bounds = dict(start=args.start, end=args.end)
    summary = reports.calculate_sales_summary(context, **bounds)
    revenue = reports.calculate_revenue_breakdown(context, **bounds)
    gst = reports.calculate_gst_breakdown(reports.sales_in_range(context, **bounds))
    for key, value in [*summary.items(), *revenue.items(), *gst.items()]:
        print(f"{key}\t{value}")
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print transactions newest first with their line items."""
    view = ensure_view(context)
    for txn in view.transactions():
        print(f"{txn.transaction_id}\t{txn.timestamp_iso}\t{txn.payment_method}\t{txn.total_price}")
        for sale in view.items_for(txn.transaction_id):
            print(f"  {sale.sale_id}\t{sale.product_name}\t{sale.quantity} {sale.sale_type}\t{sale.total_price}\t{sale.status}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, InconsistencyWarning):
        log.error("%s", error)
        return 4
    if isinstance(error, PersistenceError):
        log.error("%s", error)
        return 5
    if isinstance(error, ShopEngineError):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:
        return handle_cli_error(error)
