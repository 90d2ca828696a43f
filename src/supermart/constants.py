"""Enumerations and fixed business tables shared across the Supermart toolkit.

Centralises domain constants so that the data access layer (DAL), the domain
rule modules, and the command-line front-end rely on a single source of truth
for collection names, payment methods, and customer classifications.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


MONEY_QUANTUM = Decimal("0.01")

# Tolerance applied when comparing stored aggregates with recomputed values.
AMOUNT_TOLERANCE = Decimal("0.01")

SALE_NUMBER_PREFIX = "SAL"
INVOICE_NUMBER_PREFIX = "INV"
SALE_SEQUENCE_WIDTH = 4
CUSTOMER_NUMBER_PREFIX = "CUS"
CUSTOMER_NUMBER_WIDTH = 6


class PaymentMethod(str, Enum):
    """Enumerate the payment methods a generated sale can settle with."""

    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    NETBANKING = "netbanking"


class CustomerGroup(str, Enum):
    """Enumerate the customer classifications stored on customer documents."""

    VIP = "vip"
    REGULAR = "regular"
    RETAIL = "retail"


class LoyaltyTier(str, Enum):
    """Enumerate loyalty tiers derived from cumulative spend."""

    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class SaleStatus(str, Enum):
    """Enumerate the lifecycle states a sale document may carry."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class StockOperation(str, Enum):
    """Enumerate the supported branch stock mutations."""

    SET = "set"
    ADD = "add"
    SUBTRACT = "subtract"


class Collection(str, Enum):
    """Enumerate the MongoDB collections managed by the DAL."""

    USERS = "users"
    PRODUCTS = "products"
    CATEGORIES = "categories"
    BRANCHES = "branches"
    CUSTOMERS = "customers"
    SALES = "sales"
    COUNTERS = "counters"


# Relative weights for cash 15%, card 45%, upi 35%, netbanking 5%.
DEFAULT_PAYMENT_WEIGHTS: tuple[tuple[PaymentMethod, float], ...] = (
    (PaymentMethod.CASH, 0.15),
    (PaymentMethod.CARD, 0.45),
    (PaymentMethod.UPI, 0.35),
    (PaymentMethod.NETBANKING, 0.05),
)

CASH_DENOMINATIONS: tuple[int, ...] = (100, 200, 500, 2000)

# Ordered from highest threshold to lowest.
LOYALTY_THRESHOLDS: tuple[tuple[Decimal, LoyaltyTier], ...] = (
    (Decimal("100000"), LoyaltyTier.PLATINUM),
    (Decimal("50000"), LoyaltyTier.GOLD),
    (Decimal("20000"), LoyaltyTier.SILVER),
)

SALES_ROLES: tuple[str, ...] = (
    "Admin",
    "Regional Manager",
    "Store Manager",
    "Inventory Manager",
    "Cashier",
)

STORAGE_LOCATIONS: tuple[str, ...] = (
    *(f"{aisle}{slot}" for aisle in "ABCDEF" for slot in range(1, 9)),
    "Cold Storage-1",
    "Cold Storage-2",
    "Cold Storage-3",
    "Display-Front",
    "Display-Center",
    "Display-End",
)


__all__ = [
    "MONEY_QUANTUM",
    "AMOUNT_TOLERANCE",
    "SALE_NUMBER_PREFIX",
    "INVOICE_NUMBER_PREFIX",
    "SALE_SEQUENCE_WIDTH",
    "CUSTOMER_NUMBER_PREFIX",
    "CUSTOMER_NUMBER_WIDTH",
    "PaymentMethod",
    "CustomerGroup",
    "LoyaltyTier",
    "SaleStatus",
    "StockOperation",
    "Collection",
    "DEFAULT_PAYMENT_WEIGHTS",
    "CASH_DENOMINATIONS",
    "LOYALTY_THRESHOLDS",
    "SALES_ROLES",
    "STORAGE_LOCATIONS",
]
