"""Sale transaction builder.

Constructs arithmetically consistent sale records from a branch's product
assortment, its registered customers, and the staff allowed to ring up
sales. Nothing in this module touches the database: callers pass in the
branch context and a :class:`random.Random` instance and persist the
returned :class:`~supermart.data_manager.SaleRecord` themselves.

Amounts are :class:`~decimal.Decimal` values rounded half-up to the paisa
at line level. Sale aggregates are sums of the rounded line values, so a
stored sale always agrees with its own line items.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId

from . import log
from .catalog import get_branch_stock
from .constants import (
    CASH_DENOMINATIONS,
    DEFAULT_PAYMENT_WEIGHTS,
    INVOICE_NUMBER_PREFIX,
    MONEY_QUANTUM,
    SALE_NUMBER_PREFIX,
    SALE_SEQUENCE_WIDTH,
    CustomerGroup,
    PaymentMethod,
    SaleStatus,
)
from .data_manager import (
    CustomerRecord,
    PaymentRecord,
    ProductRecord,
    SaleItemRecord,
    SaleRecord,
    UserRecord,
)


# (min items, max items, per-line quantity cap) by customer group.
ITEM_PROFILES: Dict[str, Tuple[int, int, int]] = {
    CustomerGroup.VIP.value: (8, 20, 15),
    CustomerGroup.REGULAR.value: (5, 12, 10),
    CustomerGroup.RETAIL.value: (2, 8, 5),
}
DEFAULT_ITEM_PROFILE: Tuple[int, int, int] = (3, 10, 10)

VIP_DISCOUNT_CHANCE = 0.15
VIP_DISCOUNT_RANGE = (5, 15)

# Reference prefix and random-suffix width per payment method.
REFERENCE_FORMATS: Dict[PaymentMethod, Tuple[str, int]] = {
    PaymentMethod.CARD: ("CARD", 4),
    PaymentMethod.UPI: ("UPI", 6),
    PaymentMethod.NETBANKING: ("NB", 6),
}

# Tender above the largest note is rounded up to this step.
LARGE_TENDER_STEP = 500


@dataclass(frozen=True)
class SaleTotals:
    """Aggregate amounts of a sale derived from its line items."""

    subtotal: Decimal
    total_discount: Decimal
    total_tax: Decimal
    total: Decimal


@dataclass
class SaleContext:
    """Everything the builder needs to know about one branch.

    ``stock_on_hand`` is the builder's working view of branch quantities. It
    is decremented as sales are emitted so a batch never sells more units
    than the branch holds.
    """

    branch_id: ObjectId
    products: Sequence[ProductRecord]
    customers: Sequence[CustomerRecord]
    cashiers: Sequence[UserRecord]
    stock_on_hand: Dict[ObjectId, int] = field(default_factory=dict)

    @classmethod
    def for_branch(
        cls,
        branch_id: ObjectId,
        products: Sequence[ProductRecord],
        customers: Sequence[CustomerRecord],
        cashiers: Sequence[UserRecord],
    ) -> "SaleContext":
        """Build a context restricted to products stocked at ``branch_id``
        and customers registered there."""

        stocked: List[ProductRecord] = []
        on_hand: Dict[ObjectId, int] = {}
        for product in products:
            stock = get_branch_stock(product, branch_id)
            if stock is None:
                continue
            stocked.append(product)
            on_hand[product.product_id] = stock.quantity
        local_customers = [customer for customer in customers if customer.registered_branch_id == branch_id]
        return cls(
            branch_id=branch_id,
            products=stocked,
            customers=local_customers,
            cashiers=list(cashiers),
            stock_on_hand=on_hand,
        )

    def available(self, product: ProductRecord) -> int:
        return self.stock_on_hand.get(product.product_id, 0)

    def consume(self, product: ProductRecord, quantity: int) -> None:
        self.stock_on_hand[product.product_id] = max(0, self.available(product) - quantity)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def compute_line(product: ProductRecord, quantity: int, discount_percent: Decimal = Decimal("0")) -> SaleItemRecord:
    """Price one line item.

    ``itemTotal = unitPrice x quantity``, the discount applies to the item
    total, tax applies to what remains, and the line total is the taxable
    amount plus tax.

    Args:
        product (ProductRecord): Product being sold. Its selling price is the
            unit price and its GST rate the tax rate.
        quantity (int): Units sold; must be positive.
        discount_percent (Decimal): Percentage discount for the line.

    Returns:
        SaleItemRecord: Fully priced line item.

    Raises:
        ValueError: If ``quantity`` is not positive or the discount falls
            outside ``[0, 100]``.
    """

    if quantity <= 0:
        raise ValueError("Quantity must be greater than zero")
    if not Decimal("0") <= discount_percent <= Decimal("100"):
        raise ValueError(f"Discount must be between 0 and 100: {discount_percent}")

    item_total = quantize_money(product.selling_price * quantity)
    discount_amount = quantize_money(item_total * discount_percent / 100)
    taxable_amount = item_total - discount_amount
    tax_amount = quantize_money(taxable_amount * product.gst_rate / 100)
    return SaleItemRecord(
        product_id=product.product_id,
        product_name=product.name,
        sku=product.sku,
        quantity=quantity,
        unit_price=product.selling_price,
        cost_price=product.cost_price,
        discount=discount_percent,
        discount_amount=discount_amount,
        taxable_amount=taxable_amount,
        tax_rate=product.gst_rate,
        tax_amount=tax_amount,
        line_total=taxable_amount + tax_amount,
    )


def summarize_items(items: Sequence[SaleItemRecord]) -> SaleTotals:
    subtotal = sum((item.item_total for item in items), Decimal("0"))
    total_discount = sum((item.discount_amount for item in items), Decimal("0"))
    total_tax = sum((item.tax_amount for item in items), Decimal("0"))
    return SaleTotals(
        subtotal=quantize_money(subtotal),
        total_discount=total_discount,
        total_tax=total_tax,
        total=quantize_money(subtotal - total_discount + total_tax),
    )


def choose_payment_method(
    rng: random.Random,
    weights: Sequence[Tuple[PaymentMethod, float]] = DEFAULT_PAYMENT_WEIGHTS,
) -> PaymentMethod:
    """Draw a payment method according to ``weights``."""

    methods = [method for method, _ in weights]
    return rng.choices(methods, weights=[weight for _, weight in weights], k=1)[0]


def payment_reference(method: PaymentMethod, when: datetime, rng: random.Random) -> Optional[str]:
    """Synthesize a gateway reference ``{PREFIX}{epoch millis}{digits}``.

    Cash payments carry no reference.
    """

    fmt = REFERENCE_FORMATS.get(PaymentMethod(method))
    if fmt is None:
        return None
    prefix, width = fmt
    millis = int(when.timestamp() * 1000)
    digits = rng.randint(10 ** (width - 1), 10 ** width - 1)
    return f"{prefix}{millis}{digits}"


def cash_tendered(total: Decimal) -> Decimal:
    """Cash handed over for ``total``: the smallest note covering it.

    Totals above the largest note are rounded up to the next multiple of
    ``LARGE_TENDER_STEP``.
    """

    for denomination in CASH_DENOMINATIONS:
        if total <= denomination:
            return Decimal(denomination)
    return Decimal(math.ceil(total / LARGE_TENDER_STEP) * LARGE_TENDER_STEP)


def format_sale_number(prefix: str, when: datetime, sequence: int) -> str:
    """Return ``prefix + YYYYMMDD + zero-padded sequence``."""

    return f"{prefix}{when:%Y%m%d}{sequence:0{SALE_SEQUENCE_WIDTH}d}"


class SaleNumberer:
    """Hands out sale sequences from a reservation source.

    ``reserve`` returns the next sequence each time it is called; in
    production it is bound to the database counter so numbering survives
    across processes.
    """

    def __init__(self, reserve: Callable[[], int]):
        self._reserve = reserve
        self.last_sequence: Optional[int] = None

    def next_sequence(self) -> int:
        sequence = self._reserve()
        if self.last_sequence is not None and sequence <= self.last_sequence:
            raise RuntimeError(
                f"Sequence source went backwards: {sequence} after {self.last_sequence}"
            )
        self.last_sequence = sequence
        return sequence

    @staticmethod
    def numbers_for(when: datetime, sequence: int) -> Tuple[str, str]:
        return (
            format_sale_number(SALE_NUMBER_PREFIX, when, sequence),
            format_sale_number(INVOICE_NUMBER_PREFIX, when, sequence),
        )


def _item_profile(customer: Optional[CustomerRecord]) -> Tuple[int, int, int]:
    if customer is None:
        return DEFAULT_ITEM_PROFILE
    return ITEM_PROFILES.get(customer.customer_group, DEFAULT_ITEM_PROFILE)


def _draw_discount(customer: Optional[CustomerRecord], rng: random.Random) -> Decimal:
    if customer is None or customer.customer_group != CustomerGroup.VIP.value:
        return Decimal("0")
    if rng.random() >= VIP_DISCOUNT_CHANCE:
        return Decimal("0")
    return Decimal(str(round(rng.uniform(*VIP_DISCOUNT_RANGE), 2)))


def build_sale(
    context: SaleContext,
    *,
    when: datetime,
    sequence: int,
    rng: random.Random,
    walk_in_rate: float = 0.0,
) -> Optional[SaleRecord]:
    """Build one sale for the branch described by ``context``.

    The customer is drawn from the branch's customers unless the draw falls
    under ``walk_in_rate`` or the branch has none, in which case the sale is
    a walk-in. The number of items and the per-line quantity cap depend on
    the customer group. Products are shuffled and the first ``itemCount``
    are considered; products with no remaining stock are skipped.

    Args:
        context (SaleContext): Branch assortment, customers, cashiers, and the
            working stock view. Quantities sold are deducted from it.
        when (datetime): Sale timestamp.
        sequence (int): Sequence number embedded in sale and invoice numbers.
        rng (random.Random): Random source.
        walk_in_rate (float): Probability of a sale without a customer.

    Returns:
        SaleRecord | None: The sale, or ``None`` when every selected product
            was out of stock.
    """

    customer: Optional[CustomerRecord] = None
    if context.customers and rng.random() >= walk_in_rate:
        customer = rng.choice(list(context.customers))
    cashier = rng.choice(list(context.cashiers)) if context.cashiers else None

    min_items, max_items, quantity_cap = _item_profile(customer)
    item_count = rng.randint(min_items, max_items)
    discount = _draw_discount(customer, rng)

    shuffled = rng.sample(list(context.products), len(context.products))
    items: List[SaleItemRecord] = []
    for product in shuffled[:item_count]:
        on_hand = context.available(product)
        if on_hand <= 0:
            continue
        quantity = rng.randint(1, min(on_hand, quantity_cap))
        items.append(compute_line(product, quantity, discount))
        context.consume(product, quantity)

    if not items:
        log.debug("Skipped empty sale at sequence %s: selected products out of stock", sequence)
        return None

    totals = summarize_items(items)
    method = choose_payment_method(rng)
    tendered: Optional[Decimal] = None
    change = Decimal("0")
    if method is PaymentMethod.CASH:
        tendered = cash_tendered(totals.total)
        change = tendered - totals.total

    sale_number, invoice_number = SaleNumberer.numbers_for(when, sequence)
    return SaleRecord(
        sale_id=ObjectId(),
        sale_number=sale_number,
        invoice_number=invoice_number,
        branch_id=context.branch_id,
        customer_id=customer.customer_id if customer is not None else None,
        customer_name=customer.full_name if customer is not None else None,
        items=tuple(items),
        subtotal=totals.subtotal,
        total_discount=totals.total_discount,
        total_tax=totals.total_tax,
        total=totals.total,
        payment=PaymentRecord(
            method=method.value,
            amount=totals.total,
            reference=payment_reference(method, when, rng),
            cash_tendered=tendered,
            change_amount=change,
        ),
        status=SaleStatus.COMPLETED.value,
        created_by=cashier.user_id if cashier is not None else None,
        created_at=when,
    )


__all__ = [
    "ITEM_PROFILES",
    "DEFAULT_ITEM_PROFILE",
    "SaleTotals",
    "SaleContext",
    "quantize_money",
    "compute_line",
    "summarize_items",
    "choose_payment_method",
    "payment_reference",
    "cash_tendered",
    "format_sale_number",
    "SaleNumberer",
    "build_sale",
]
