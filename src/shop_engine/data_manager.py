"""Table store for the shop engine.

This module provides low-level helpers that read from and write to the shop
workbook. Each worksheet behaves like a table in a remote row store: rows can
be selected, inserted, updated, and deleted with equality predicates, and every
call stands on its own. There is no multi-call transaction and no row locking,
so business logic that spans several calls belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Table operations: selecting typed records, inserting, updating, and
   deleting rows, plus the conditional stock adjustment primitive.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet
import openpyxl

from . import log
from .constants import DEFAULT_IN_PERSON_PAYMENT, SheetName


CONFIG_FILE_NAME = "config.ini"
INVENTORY_SHEET = SheetName.INVENTORY.value
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value
SALES_SHEET = SheetName.SALES.value

# Column layout of every table; the first column is the primary key.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    INVENTORY_SHEET: [
        "ItemID",
        "AccountID",
        "Name",
        "Stock",
        "Price",
        "Cost",
        "HasGST",
        "IsBundle",
        "BundlePrice",
        "ItemsPerBundle",
        "CreatedAt",
        "UpdatedAt",
    ],
    TRANSACTIONS_SHEET: [
        "TransactionID",
        "AccountID",
        "Timestamp",
        "TotalPrice",
        "PaymentMethod",
        "CustomerName",
        "CustomerPhone",
    ],
    SALES_SHEET: [
        "SaleID",
        "AccountID",
        "TransactionID",
        "InventoryItemID",
        "ProductName",
        "Quantity",
        "TotalPrice",
        "ItemCostAtSale",
        "HasGST",
        "SaleType",
        "Status",
    ],
}


class StoreError(Exception):
    """Raised when a table store call cannot be completed."""


class RowNotFoundError(StoreError, KeyError):
    """Raised when a keyed update or adjustment targets a missing row."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    account_id: str
    default_payment_method: str = DEFAULT_IN_PERSON_PAYMENT.value


@dataclass(frozen=True)
class InventoryRow:
    """In-memory view of a row from the ``Inventory`` sheet."""

    item_id: str
    account_id: str
    name: str
    stock: int
    price: Decimal
    cost: Decimal
    has_gst: bool
    is_bundle: bool
    bundle_price: Optional[Decimal]
    items_per_bundle: Optional[int]
    created_at: str
    updated_at: Optional[str]


@dataclass(frozen=True)
class TransactionRow:
    """In-memory view of a row from the ``Transactions`` sheet."""

    transaction_id: str
    account_id: str
    timestamp_iso: str
    total_price: Decimal
    payment_method: str
    customer_name: Optional[str]
    customer_phone: Optional[str]


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``Sales`` sheet."""

    sale_id: str
    account_id: str
    transaction_id: str
    inventory_item_id: str
    product_name: str
    quantity: int
    total_price: Decimal
    item_cost_at_sale: Decimal
    has_gst: bool
    sale_type: str
    status: str


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. User home references (``~``) are expanded.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The function validates that all required options are present under the
    expected sections and normalizes the configured data file path. Relative
    paths are expanded against ``base_path`` when provided, or against the
    current working directory as a fallback. ``DefaultPaymentMethod`` is
    optional and falls back to the in-person method.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries. Defaults to :func:`Path.cwd` when omitted.

    Returns:
        ConfigSettings: Immutable settings container with resolved data file
            path, shop metadata, schema version, and account defaults.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
        account_id = parser.get("Defaults", "AccountID")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    default_payment = parser.get(
        "Defaults",
        "DefaultPaymentMethod",
        fallback=DEFAULT_IN_PERSON_PAYMENT.value,
    )

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        account_id=account_id,
        default_payment_method=default_payment,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the shop workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook file.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def header_map(sheet: Worksheet) -> Dict[str, int]:
    """Return a mapping of header titles to 1-based column indices."""

    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1]) if cell.value is not None}


def _resolve_columns(sheet: Worksheet, columns: Mapping[str, Any]) -> Dict[str, int]:
    headers = header_map(sheet)
    resolved: Dict[str, int] = {}
    for column in columns:
        if column not in headers:
            raise KeyError(f"Unknown column on '{sheet.title}': {column}")
        resolved[column] = headers[column]
    return resolved


def _matching_row_indices(sheet: Worksheet, match: Optional[Mapping[str, Any]]) -> List[int]:
    """Return the 1-based indices of populated rows satisfying ``match``."""

    match = match or {}
    columns = _resolve_columns(sheet, match)
    indices: List[int] = []
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if not any(cell is not None for cell in row):
            continue
        if all(
            (row[col - 1] if col - 1 < len(row) else None) == match[name]
            for name, col in columns.items()
        ):
            indices.append(row_idx)
    return indices


def _row_values(sheet: Worksheet, row_index: int) -> List[object]:
    return [cell.value for cell in sheet[row_index]]


def select_rows(
    workbook: Workbook,
    sheet_name: str,
    match: Optional[Mapping[str, Any]] = None,
) -> List[List[object]]:
    """Return the raw values of every row whose columns equal ``match``.

    Args:
        workbook (Workbook): Workbook containing ``sheet_name``.
        sheet_name (str): Table to read.
        match (Mapping[str, Any] | None): Column/value equality predicates.
            ``None`` or an empty mapping selects every populated row.

    Returns:
        list[list[object]]: Row values in sheet order.

    Raises:
        KeyError: If a predicate references an unknown column.
    """

    sheet = workbook[sheet_name]
    return [_row_values(sheet, idx) for idx in _matching_row_indices(sheet, match)]


def insert_rows(workbook: Workbook, sheet_name: str, rows: Sequence[Sequence[object]]) -> None:
    """Append one or more rows to a table in a single call.

    The whole batch is checked against the primary key column before anything
    is written, so a call either appends every row or none of them.

    Args:
        workbook (Workbook): Workbook whose table should be modified.
        sheet_name (str): Table receiving the rows.
        rows (Sequence[Sequence[object]]): Serialized rows in column order.

    Raises:
        StoreError: If a row has the wrong width or its key already exists.
    """

    sheet = workbook[sheet_name]
    width = len(SHEET_COLUMNS[sheet_name])
    key_column = SHEET_COLUMNS[sheet_name][0]
    existing = {row[0] for row in select_rows(workbook, sheet_name)}
    seen = set()
    for row in rows:
        if len(row) != width:
            raise StoreError(f"Row for '{sheet_name}' must have {width} values, got {len(row)}")
        key = row[0]
        if key in existing or key in seen:
            raise StoreError(f"Duplicate {key_column} on '{sheet_name}': {key}")
        seen.add(key)

    for row in rows:
        sheet.append(list(row))
    log.debug("Inserted %d row(s) into '%s'", len(rows), sheet_name)


def update_rows(
    workbook: Workbook,
    sheet_name: str,
    *,
    match: Mapping[str, Any],
    field_values: Mapping[str, Any],
) -> List[List[object]]:
    """Update selected columns of every row satisfying ``match``.

    Only the specified fields are modified. Including a non-key column in
    ``match`` turns the call into a conditional update: rows whose current
    value differs are left untouched.

    Args:
        workbook (Workbook): Workbook containing the table.
        sheet_name (str): Table to modify.
        match (Mapping[str, Any]): Column/value equality predicates.
        field_values (Mapping[str, Any]): Mapping of column names to
            replacement values.

    Returns:
        list[list[object]]: Post-update values of the modified rows.

    Raises:
        KeyError: If any referenced column cannot be found.
    """

    sheet = workbook[sheet_name]
    columns = _resolve_columns(sheet, field_values)
    indices = _matching_row_indices(sheet, match)
    for row_index in indices:
        for field, value in field_values.items():
            sheet.cell(row=row_index, column=columns[field], value=value)
    return [_row_values(sheet, idx) for idx in indices]


def delete_rows(workbook: Workbook, sheet_name: str, *, match: Mapping[str, Any]) -> int:
    """Delete every row satisfying ``match`` and return how many were removed."""

    if not match:
        raise StoreError(f"Refusing to delete every row of '{sheet_name}' without a predicate")
    sheet = workbook[sheet_name]
    indices = _matching_row_indices(sheet, match)
    for row_index in reversed(indices):
        sheet.delete_rows(row_index, 1)
    log.debug("Deleted %d row(s) from '%s'", len(indices), sheet_name)
    return len(indices)


def adjust_stock(workbook: Workbook, account_id: str, item_id: str, delta: int) -> Optional[InventoryRow]:
    """Add ``delta`` to an item's stock only if the result stays non-negative.

    This is the store-side equivalent of
    ``UPDATE inventory SET stock = stock + delta WHERE account = ? AND id = ? AND stock >= -delta``:
    the current value is read and written inside the same call, so no other
    writer can interleave between the check and the write.

    Args:
        workbook (Workbook): Workbook containing the inventory table.
        account_id (str): Account that must own the item.
        item_id (str): Identifier of the item to adjust.
        delta (int): Signed number of individual units to add.

    Returns:
        InventoryRow | None: The updated row, or ``None`` when the guard
            rejected the write and stock was left unchanged.

    Raises:
        RowNotFoundError: If the account has no inventory row with ``item_id``.
    """

    sheet = workbook[INVENTORY_SHEET]
    indices = _matching_row_indices(sheet, {"AccountID": account_id, "ItemID": item_id})
    if not indices:
        raise RowNotFoundError(f"Inventory item not found: {item_id}")
    row_index = indices[0]
    stock_col = header_map(sheet)["Stock"]
    current = int(sheet.cell(row=row_index, column=stock_col).value or 0)
    updated = current + int(delta)
    if updated < 0:
        return None
    sheet.cell(row=row_index, column=stock_col, value=updated)
    return deserialize_inventory(_row_values(sheet, row_index))


def select_inventory(workbook: Workbook, match: Optional[Mapping[str, Any]] = None) -> List[InventoryRow]:
    """Return typed inventory rows satisfying ``match``."""

    return [deserialize_inventory(raw) for raw in select_rows(workbook, INVENTORY_SHEET, match)]


def select_transactions(workbook: Workbook, match: Optional[Mapping[str, Any]] = None) -> List[TransactionRow]:
    """Return typed transaction rows satisfying ``match``."""

    return [deserialize_transaction(raw) for raw in select_rows(workbook, TRANSACTIONS_SHEET, match)]


def select_sales(workbook: Workbook, match: Optional[Mapping[str, Any]] = None) -> List[SaleRow]:
    """Return typed sale rows satisfying ``match``."""

    return [deserialize_sale(raw) for raw in select_rows(workbook, SALES_SHEET, match)]


def serialize_inventory(record: InventoryRow) -> list[object]:
    """Convert an inventory dataclass into the worksheet column ordering."""

    return [
        record.item_id,
        record.account_id,
        record.name,
        record.stock,
        record.price,
        record.cost,
        record.has_gst,
        record.is_bundle,
        record.bundle_price,
        record.items_per_bundle,
        record.created_at,
        record.updated_at,
    ]


def serialize_transaction(record: TransactionRow) -> list[object]:
    """Convert a transaction dataclass into the worksheet column ordering."""

    return [
        record.transaction_id,
        record.account_id,
        record.timestamp_iso,
        record.total_price,
        record.payment_method,
        record.customer_name,
        record.customer_phone,
    ]


def serialize_sale(record: SaleRow) -> list[object]:
    """Convert a sale line dataclass into the worksheet column ordering.

    Numerical fields remain :class:`~decimal.Decimal` instances, allowing
    Excel to preserve precision when the workbook is saved.
    """

    return [
        record.sale_id,
        record.account_id,
        record.transaction_id,
        record.inventory_item_id,
        record.product_name,
        record.quantity,
        record.total_price,
        record.item_cost_at_sale,
        record.has_gst,
        record.sale_type,
        record.status,
    ]


def _pad(raw_row: Sequence[object], sheet_name: str) -> List[object]:
    width = len(SHEET_COLUMNS[sheet_name])
    values = list(raw_row[:width])
    values.extend([None] * (width - len(values)))
    return values


def _to_decimal(raw: object, default: str = "0.00") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _to_optional_text(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def deserialize_inventory(raw_row: Sequence[object]) -> InventoryRow:
    """Convert a raw worksheet row into a strongly typed inventory record.

    Numeric values become :class:`~decimal.Decimal` or ``int`` instances and
    id/name fields are coerced to ``str`` to avoid surprises caused by Excel
    automatically interpreting numbers. Bundle fields stay ``None`` when the
    sheet leaves them blank.
    """

    (
        item_id,
        account_id,
        name,
        stock_raw,
        price_raw,
        cost_raw,
        has_gst,
        is_bundle,
        bundle_price_raw,
        items_per_bundle_raw,
        created_at,
        updated_at,
    ) = _pad(raw_row, INVENTORY_SHEET)

    return InventoryRow(
        item_id=str(item_id),
        account_id=str(account_id),
        name=str(name) if name is not None else "",
        stock=int(stock_raw) if stock_raw is not None else 0,
        price=_to_decimal(price_raw),
        cost=_to_decimal(cost_raw),
        has_gst=bool(has_gst),
        is_bundle=bool(is_bundle),
        bundle_price=(_to_decimal(bundle_price_raw) if bundle_price_raw is not None else None),
        items_per_bundle=(int(items_per_bundle_raw) if items_per_bundle_raw is not None else None),
        created_at=str(created_at) if created_at is not None else "",
        updated_at=_to_optional_text(updated_at),
    )


def deserialize_transaction(raw_row: Sequence[object]) -> TransactionRow:
    """Convert a raw worksheet row into a strongly typed transaction record."""

    (
        transaction_id,
        account_id,
        timestamp_iso,
        total_price_raw,
        payment_method,
        customer_name,
        customer_phone,
    ) = _pad(raw_row, TRANSACTIONS_SHEET)

    return TransactionRow(
        transaction_id=str(transaction_id),
        account_id=str(account_id),
        timestamp_iso=str(timestamp_iso) if timestamp_iso is not None else "",
        total_price=_to_decimal(total_price_raw),
        payment_method=str(payment_method) if payment_method is not None else "",
        customer_name=_to_optional_text(customer_name),
        customer_phone=_to_optional_text(customer_phone),
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRow:
    """Convert a raw worksheet row into a strongly typed sale line record."""

    (
        sale_id,
        account_id,
        transaction_id,
        inventory_item_id,
        product_name,
        quantity_raw,
        total_price_raw,
        item_cost_raw,
        has_gst,
        sale_type,
        status,
    ) = _pad(raw_row, SALES_SHEET)

    return SaleRow(
        sale_id=str(sale_id),
        account_id=str(account_id),
        transaction_id=str(transaction_id),
        inventory_item_id=str(inventory_item_id),
        product_name=str(product_name) if product_name is not None else "",
        quantity=int(quantity_raw) if quantity_raw is not None else 0,
        total_price=_to_decimal(total_price_raw),
        item_cost_at_sale=_to_decimal(item_cost_raw),
        has_gst=bool(has_gst),
        sale_type=str(sale_type) if sale_type is not None else "",
        status=str(status) if status is not None else "",
    )
