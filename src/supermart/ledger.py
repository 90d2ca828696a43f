"""Customer ledger rules: loyalty tiers, purchase aggregates, and seeding.

Customer aggregates (``totalSpent``, ``totalPurchases``, and friends) are
generated independently of the sales collection when customers are seeded.
:func:`rebuild_from_sales` derives them from sale history instead and is only
used by the explicit reconciliation workflow.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import ROUND_FLOOR, Decimal
from typing import Iterable, Optional

from bson import ObjectId

from .constants import (
    CUSTOMER_NUMBER_PREFIX,
    CUSTOMER_NUMBER_WIDTH,
    LOYALTY_THRESHOLDS,
    CustomerGroup,
    LoyaltyTier,
)
from .data_manager import CustomerRecord, SaleRecord


@dataclass(frozen=True)
class CustomerTier:
    """Generation profile for one customer segment."""

    name: str
    count: int
    spend_range: tuple[int, int]
    purchase_range: tuple[int, int]
    credit_range: tuple[int, int]
    loyalty_multiplier: Decimal
    customer_group: CustomerGroup
    credit_chance: float


CUSTOMER_TIERS: tuple[CustomerTier, ...] = (
    CustomerTier("VIP", 50, (10000, 50000), (20, 100), (5000, 20000), Decimal("3"), CustomerGroup.VIP, 0.7),
    CustomerTier("Loyal", 100, (5000, 10000), (10, 25), (2000, 8000), Decimal("2"), CustomerGroup.REGULAR, 0.7),
    CustomerTier("Regular", 150, (2000, 5000), (5, 15), (1000, 4000), Decimal("1.5"), CustomerGroup.REGULAR, 0.3),
    CustomerTier("Occasional", 200, (500, 2000), (1, 8), (0, 1500), Decimal("1"), CustomerGroup.RETAIL, 0.1),
)

FIRST_NAMES: tuple[str, ...] = (
    "Arjun", "Rahul", "Amit", "Rohan", "Karan", "Vikas", "Sanjay", "Anil", "Suresh", "Ravi",
    "Vikram", "Manoj", "Rajesh", "Deepak", "Nitin", "Aditya", "Nikhil", "Varun", "Gaurav", "Harish",
    "Priya", "Anjali", "Neha", "Pooja", "Sneha", "Kavita", "Rekha", "Asha", "Sunita", "Meena",
    "Deepika", "Swati", "Preeti", "Ritu", "Nisha", "Shweta", "Divya", "Shruti", "Tanvi", "Isha",
)

LAST_NAMES: tuple[str, ...] = (
    "Sharma", "Patel", "Singh", "Kumar", "Gupta", "Shah", "Reddy", "Iyer", "Nair", "Desai",
    "Joshi", "Mehta", "Rao", "Kulkarni", "Shetty", "Menon", "Kapoor", "Malhotra", "Agarwal", "Bansal",
    "Verma", "Chauhan", "Yadav", "Pandey", "Mishra", "Saxena", "Tiwari", "Jain", "Bose", "Das",
)

EMAIL_DOMAINS: tuple[str, ...] = ("gmail.com", "yahoo.com", "outlook.com", "hotmail.com", "rediffmail.com")

PHONE_PREFIXES: tuple[str, ...] = (
    "98", "97", "96", "95", "93", "91", "90", "89", "88", "87", "86", "85", "84",
    "83", "82", "81", "80", "79", "78", "77", "76", "75", "74", "73", "72", "70",
)


def loyalty_tier_for(total_spent: Decimal) -> LoyaltyTier:
    """Map cumulative spend onto a loyalty tier; thresholds are inclusive."""

    for threshold, tier in LOYALTY_THRESHOLDS:
        if total_spent >= threshold:
            return tier
    return LoyaltyTier.BRONZE


def average_order_value(total_spent: Decimal, total_purchases: int) -> Decimal:
    if total_purchases <= 0:
        return Decimal("0")
    return (total_spent / total_purchases).quantize(Decimal("0.01"))


def add_purchase(customer: CustomerRecord, amount: Decimal, when: datetime) -> CustomerRecord:
    """Record one purchase against ``customer`` and return the updated record.

    The purchase count and cumulative spend grow, the last purchase date
    moves to ``when`` (the first purchase date is only set once), and the
    average order value and loyalty tier are recomputed.

    Args:
        customer (CustomerRecord): Customer to update.
        amount (Decimal): Sale total attributed to the customer.
        when (datetime): Purchase timestamp.

    Returns:
        CustomerRecord: Updated copy of ``customer``.

    Raises:
        ValueError: If ``amount`` is negative.
    """

    if amount < 0:
        raise ValueError("Amount must be zero or positive")

    total_spent = customer.total_spent + amount
    total_purchases = customer.total_purchases + 1
    return replace(
        customer,
        total_spent=total_spent,
        total_purchases=total_purchases,
        average_order_value=average_order_value(total_spent, total_purchases),
        loyalty_tier=loyalty_tier_for(total_spent).value,
        first_purchase_date=customer.first_purchase_date or when,
        last_purchase_date=when,
    )


def rebuild_from_sales(customer: CustomerRecord, sales: Iterable[SaleRecord]) -> CustomerRecord:
    """Derive purchase aggregates for ``customer`` from its sale history.

    Sales belonging to other customers are ignored. Loyalty points, credit
    fields, and the customer group are left untouched.
    """

    rebuilt = replace(
        customer,
        total_spent=Decimal("0"),
        total_purchases=0,
        average_order_value=Decimal("0"),
        loyalty_tier=LoyaltyTier.BRONZE.value,
        first_purchase_date=None,
        last_purchase_date=None,
    )
    owned = sorted(
        (sale for sale in sales if sale.customer_id == customer.customer_id),
        key=lambda sale: sale.created_at,
    )
    for sale in owned:
        rebuilt = add_purchase(rebuilt, sale.total, sale.created_at)
    return rebuilt


def format_customer_number(index: int) -> str:
    return f"{CUSTOMER_NUMBER_PREFIX}{index:0{CUSTOMER_NUMBER_WIDTH}d}"


def _phone_number(rng: random.Random) -> str:
    digits = "".join(str(rng.randint(0, 9)) for _ in range(8))
    return f"+91{rng.choice(PHONE_PREFIXES)}{digits}"


def _email(first_name: str, last_name: str, index: int, rng: random.Random) -> str:
    separator = rng.choice(("", ".", "_"))
    unique_number = index + rng.randint(100, 999)
    return f"{first_name.lower()}{separator}{last_name.lower()}{unique_number}@{rng.choice(EMAIL_DOMAINS)}"


def generate_customer(
    tier: CustomerTier,
    index: int,
    branch_id: ObjectId,
    rng: random.Random,
    *,
    now: datetime,
    created_by: Optional[ObjectId] = None,
) -> CustomerRecord:
    """Generate one synthetic customer belonging to ``tier``.

    Spend, purchase count, and credit are drawn from the tier's ranges.
    Loyalty points are ``floor(spent * 1% * multiplier)`` and the average
    order value is the floored ratio of spend to purchases. A customer holds a
    credit line with the tier's probability, and 40% of credit holders carry
    an outstanding balance of up to half their limit. Roughly 95% of
    customers are active.

    Args:
        tier (CustomerTier): Segment profile.
        index (int): One-based running index used for the customer number.
        branch_id (ObjectId): Registering branch.
        rng (random.Random): Random source.
        now (datetime): Reference time for purchase dates.
        created_by (ObjectId | None): Auditing user.

    Returns:
        CustomerRecord: New record with a fresh identifier.
    """

    first_name = rng.choice(FIRST_NAMES)
    last_name = rng.choice(LAST_NAMES)

    total_spent = Decimal(rng.randint(*tier.spend_range))
    total_purchases = rng.randint(*tier.purchase_range)
    loyalty_points = int((total_spent * Decimal("0.01") * tier.loyalty_multiplier).to_integral_value(ROUND_FLOOR))
    average = Decimal(math.floor(total_spent / total_purchases))

    has_credit = rng.random() < tier.credit_chance
    credit_limit = rng.randint(*tier.credit_range) if has_credit else 0
    current_balance = rng.randint(0, credit_limit // 2) if has_credit and rng.random() > 0.6 else 0

    return CustomerRecord(
        customer_id=ObjectId(),
        customer_number=format_customer_number(index),
        first_name=first_name,
        last_name=last_name,
        phone=_phone_number(rng),
        registered_branch_id=branch_id,
        email=_email(first_name, last_name, index, rng),
        customer_group=tier.customer_group.value,
        total_spent=total_spent,
        total_purchases=total_purchases,
        average_order_value=average,
        loyalty_points=loyalty_points,
        loyalty_tier=loyalty_tier_for(total_spent).value,
        credit_limit=Decimal(credit_limit),
        current_balance=Decimal(current_balance),
        is_active=rng.random() > 0.05,
        first_purchase_date=now - timedelta(days=rng.randint(180, 730)),
        last_purchase_date=now - timedelta(days=rng.randint(1, 90)),
        created_by=created_by,
    )


__all__ = [
    "CustomerTier",
    "CUSTOMER_TIERS",
    "loyalty_tier_for",
    "average_order_value",
    "add_purchase",
    "rebuild_from_sales",
    "format_customer_number",
    "generate_customer",
]
