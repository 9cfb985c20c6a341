"""Enumerations shared across the shop engine modules.

Centralises domain constants so that the table store, the stock and ledger
logic, and the presentation adapters rely on a single source of truth for
critical identifiers.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Prices are recorded GST-inclusive; the rate splits evenly into CGST and SGST.
GST_RATE = Decimal("0.18")


class PaymentMethod(str, Enum):
    """Enumerate supported payment methods for a checkout."""

    ONLINE = "Online"
    OFFLINE = "Offline"


# Refunds without an original sale are always settled over the counter.
DEFAULT_IN_PERSON_PAYMENT = PaymentMethod.OFFLINE


class SaleType(str, Enum):
    """Enumerate how a line item quantity is denominated."""

    LOOSE = "loose"
    BUNDLE = "bundle"


class SaleStatus(str, Enum):
    """Enumerate the lifecycle states of a line item."""

    COMPLETED = "completed"
    RETURNED = "returned"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the table store."""

    INVENTORY = "Inventory"
    TRANSACTIONS = "Transactions"
    SALES = "Sales"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "GST_RATE",
    "PaymentMethod",
    "DEFAULT_IN_PERSON_PAYMENT",
    "SaleType",
    "SaleStatus",
    "SheetName",
]
