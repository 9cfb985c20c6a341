"""Runtime context, command objects, and shared rules for the shop engine.

Every operation in the engine receives a :class:`RuntimeContext` bundling the
configuration and the live workbook that acts as the table store. Callers
express intents through the frozen command dataclasses defined here, and every
mutating operation answers with a :class:`MutationResult` describing the
authoritative post-state of the rows it touched.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, PaymentMethod, SaleType
from .exceptions import ValidationError


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the engine."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def account_id(self) -> str:
        return self.settings.account_id


@dataclass(frozen=True)
class CustomerInfo:
    """Optional customer reference attached to a checkout."""

    name: str
    phone: Optional[str] = None


@dataclass(frozen=True)
class CartLine:
    """One product entry in a checkout request.

    ``items_per_bundle`` is what the cart displayed when the line was built.
    Stock conversion always uses the item's current value; a differing cart
    value marks the cart as stale.
    """

    inventory_item_id: str
    quantity: int
    total_price: Decimal
    sale_type: SaleType = SaleType.LOOSE
    product_name: Optional[str] = None
    items_per_bundle: Optional[int] = None


@dataclass(frozen=True)
class CreateTransactionCommand:
    """User intent for checking out a cart."""

    lines: Sequence[CartLine]
    payment_method: PaymentMethod
    customer: Optional[CustomerInfo] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class StandaloneReturnCommand:
    """User intent for refunding stock that has no original sale record."""

    item_id: str
    quantity: int
    refund_amount: Decimal
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class InventoryItemDraft:
    """User-editable fields of an inventory item."""

    name: str
    stock: int
    price: Decimal
    cost: Decimal
    has_gst: bool = False
    is_bundle: bool = False
    bundle_price: Optional[Decimal] = None
    items_per_bundle: Optional[int] = None


@dataclass(frozen=True)
class MutationResult:
    """Authoritative post-state returned by every mutating operation.

    Rows listed in ``transactions``, ``sales`` and ``items`` were created or
    updated and reflect the store after the operation. The ``removed_*``
    tuples list identifiers that no longer exist.
    """

    transactions: Tuple[data_manager.TransactionRow, ...] = ()
    sales: Tuple[data_manager.SaleRow, ...] = ()
    items: Tuple[data_manager.InventoryRow, ...] = ()
    removed_transaction_ids: Tuple[str, ...] = ()
    removed_sale_ids: Tuple[str, ...] = ()
    removed_item_ids: Tuple[str, ...] = ()

    @property
    def transaction(self) -> Optional[data_manager.TransactionRow]:
        """Return the single transaction touched by the operation, if any."""

        return self.transactions[0] if self.transactions else None


def resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the engine.

    The helper resolves ``config.ini``, parses settings, and opens the workbook
    that stores inventory and ledger rows. The resulting
    :class:`RuntimeContext` bundles the immutable settings with a mutable
    workbook handle and an empty cache store.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for engine operations.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    A new :class:`RuntimeContext` is produced, so the cached view of the
    previous context is discarded along with the in-memory edits.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


def generate_id(*, prefix: str = "T", when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier using UTC timestamps.

    Args:
        prefix (str): Designator prepended to the identifier, ``"T"`` for
            transactions and ``"I"`` for inventory items.
        when (datetime | None): Timestamp used for the sortable part. When
            ``None`` the current UTC time is used.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}{XXXX}``
            where the trailing random suffix avoids collisions between ids
            generated within the same microsecond.
    """
    when = when or resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}{uuid.uuid4().hex[:4].upper()}"


def line_id(transaction_id: str, position: int) -> str:
    """Return the identifier of the ``position``-th (1-based) line of a transaction."""
    return f"{transaction_id}-L{position:02d}"


def line_position(sale_id: str) -> int:
    """Return the 1-based position encoded in a line id, or 0 when it has none.

    Line ids are zero-padded to two digits only, so ordering must use this
    number rather than the id text once a transaction passes 99 lines.
    """
    _, separator, suffix = sale_id.rpartition("-L")
    return int(suffix) if separator and suffix.isdigit() else 0


def require_positive_quantity(quantity: Any, *, operation: Optional[str] = None) -> int:
    """Validate that a quantity is a strictly positive integer.

    Raises:
        ValidationError: If ``quantity`` is not an integer or is not above zero.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        log.warning("Quantity validation failed: %r", quantity)
        raise ValidationError(f"quantity must be a positive integer, got {quantity!r}", operation=operation)
    return quantity


def to_money(amount: Any, *, operation: Optional[str] = None) -> Decimal:
    """Coerce ``amount`` into a :class:`~decimal.Decimal`.

    Floats go through ``str`` so ``0.1`` becomes ``Decimal("0.1")``.

    Raises:
        ValidationError: If ``amount`` cannot be interpreted as a number.
    """
    if isinstance(amount, Decimal):
        value = amount
    else:
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError(f"invalid monetary value: {amount!r}", operation=operation) from exc
    if not value.is_finite():
        raise ValidationError(f"invalid monetary value: {amount!r}", operation=operation)
    return value


def require_nonnegative_money(amount: Any, *, operation: Optional[str] = None) -> Decimal:
    """Validate that a monetary value is zero or positive.

    Raises:
        ValidationError: If ``amount`` is not a number or is below zero.
    """
    value = to_money(amount, operation=operation)
    if value < Decimal("0"):
        log.warning("Monetary value validation failed: %s", value)
        raise ValidationError(f"amount must be zero or positive, got {value}", operation=operation)
    return value
