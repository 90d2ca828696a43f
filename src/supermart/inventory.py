"""Inventory distributor.

Assigns a starting stock level to every (product, branch) pair so that each
branch lands near a target inventory value. The primary branch carries the
whole catalog; secondary branches stock a random 60-80% subset and still skip
roughly three in ten of those products.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from bson import ObjectId

from . import log
from .catalog import validate_stock
from .constants import STORAGE_LOCATIONS
from .data_manager import BranchRecord, ProductRecord, StockRecord


MIN_STOCK_UNITS = 5
MAX_STOCK_UNITS = 1000
VARIANCE_RANGE = (0.8, 1.3)
SECONDARY_SKIP_CHANCE = 0.3
SECONDARY_ASSORTMENT_RANGE = (0.6, 0.8)
REORDER_RATIO_RANGE = (0.2, 0.3)
MAX_STOCK_RATIO_RANGE = (1.5, 2.0)
RESTOCK_WINDOW_DAYS = 30


@dataclass
class BranchAllocation:
    """Outcome of stocking one branch."""

    branch_id: ObjectId
    target_value: Decimal
    stock: Dict[ObjectId, StockRecord] = field(default_factory=dict)
    total_value: Decimal = Decimal("0")
    total_units: int = 0

    @property
    def products_stocked(self) -> int:
        return len(self.stock)

    @property
    def achievement(self) -> Decimal:
        """Stocked value as a percentage of the target."""

        if self.target_value <= 0:
            return Decimal("0")
        return (self.total_value / self.target_value * 100).quantize(Decimal("0.1"))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def round_stocking_units(quantity: int, cost_price: Decimal) -> int:
    """Round to realistic pack sizes: tens below cost 20, fives below 100."""

    if cost_price < 20:
        return _round_half_up(quantity / 10) * 10
    if cost_price < 100:
        return _round_half_up(quantity / 5) * 5
    return quantity


def base_quantity(cost_price: Decimal, per_product_target: Decimal) -> int:
    """Units of a product worth ``per_product_target`` at cost, floored.

    Raises:
        ValueError: If ``cost_price`` is not positive.
    """

    if cost_price <= 0:
        raise ValueError(f"Cost price must be greater than zero: {cost_price}")
    return int(per_product_target // cost_price)


def calculate_quantity(
    cost_price: Decimal,
    per_product_target: Decimal,
    rng: random.Random,
    *,
    is_primary: bool = True,
) -> int:
    """Stock quantity for one product at one branch.

    Secondary branches skip the product with probability
    ``SECONDARY_SKIP_CHANCE`` (returning 0). Otherwise the base quantity is
    scaled by a random variance, clamped to ``[MIN_STOCK_UNITS,
    MAX_STOCK_UNITS]``, and rounded to stocking units.
    """

    if not is_primary and rng.random() < SECONDARY_SKIP_CHANCE:
        return 0

    variance = rng.uniform(*VARIANCE_RANGE)
    quantity = math.floor(base_quantity(cost_price, per_product_target) * variance)
    quantity = min(MAX_STOCK_UNITS, max(MIN_STOCK_UNITS, quantity))
    return round_stocking_units(quantity, cost_price)


def calculate_reorder_level(quantity: int, rng: random.Random) -> int:
    return max(MIN_STOCK_UNITS, math.floor(quantity * rng.uniform(*REORDER_RATIO_RANGE)))


def calculate_max_stock_level(quantity: int, rng: random.Random) -> int:
    return math.ceil(quantity * rng.uniform(*MAX_STOCK_RATIO_RANGE))


class LocationAllocator:
    """Draws storage locations for one branch.

    Locations are unique within the branch until the pool is exhausted, after
    which duplicates are allowed.
    """

    def __init__(self, rng: random.Random, pool: Sequence[str] = STORAGE_LOCATIONS):
        self._rng = rng
        self._pool = list(pool)
        self._used: set[str] = set()

    def next_location(self) -> str:
        remaining = [location for location in self._pool if location not in self._used]
        location = self._rng.choice(remaining or self._pool)
        self._used.add(location)
        return location


def select_assortment(
    products: Sequence[ProductRecord],
    rng: random.Random,
    *,
    is_primary: bool,
) -> List[ProductRecord]:
    """Products a branch considers stocking: all of them for the primary
    branch, a shuffled 60-80% subset elsewhere."""

    if is_primary:
        return list(products)
    count = math.floor(len(products) * rng.uniform(*SECONDARY_ASSORTMENT_RANGE))
    return rng.sample(list(products), len(products))[:count]


def distribute_branch(
    branch: BranchRecord,
    products: Sequence[ProductRecord],
    target_value: Decimal,
    rng: random.Random,
    *,
    is_primary: bool,
    now: datetime,
) -> BranchAllocation:
    """Compute stock entries for ``branch``.

    The per-product target is the branch target divided evenly across the
    assortment. Products without a usable cost price are skipped with a
    warning.

    Args:
        branch (BranchRecord): Branch being stocked.
        products (Sequence[ProductRecord]): Full catalog.
        target_value (Decimal): Inventory value goal at cost.
        rng (random.Random): Random source.
        is_primary (bool): Whether the branch carries the whole catalog.
        now (datetime): Reference time for ``lastRestocked``.

    Returns:
        BranchAllocation: Stock entries keyed by product id with totals.
    """

    allocation = BranchAllocation(branch_id=branch.branch_id, target_value=target_value)
    assortment = select_assortment(products, rng, is_primary=is_primary)
    if not assortment:
        return allocation

    per_product_target = target_value / len(assortment)
    locations = LocationAllocator(rng)

    for product in assortment:
        if product.cost_price <= 0:
            log.warning("Skipping product '%s' at branch '%s': no cost price", product.sku, branch.code)
            continue
        quantity = calculate_quantity(product.cost_price, per_product_target, rng, is_primary=is_primary)
        if quantity == 0:
            continue

        stock = validate_stock(
            StockRecord(
                branch_id=branch.branch_id,
                quantity=quantity,
                reorder_level=calculate_reorder_level(quantity, rng),
                max_stock_level=calculate_max_stock_level(quantity, rng),
                reserved_quantity=0,
                location=locations.next_location(),
                last_restocked=now - timedelta(days=rng.randint(1, RESTOCK_WINDOW_DAYS)),
            )
        )
        allocation.stock[product.product_id] = stock
        allocation.total_value += product.cost_price * quantity
        allocation.total_units += quantity

    log.info(
        "Branch '%s': %d products, %d units, value %s of target %s (%s%%)",
        branch.code,
        allocation.products_stocked,
        allocation.total_units,
        allocation.total_value,
        target_value,
        allocation.achievement,
    )
    return allocation


def choose_primary_branch(branches: Sequence[BranchRecord]) -> Optional[BranchRecord]:
    """The branch flagged primary, otherwise the first by code."""

    if not branches:
        return None
    flagged = [branch for branch in branches if branch.is_primary]
    if flagged:
        return flagged[0]
    return min(branches, key=lambda branch: branch.code)


__all__ = [
    "BranchAllocation",
    "round_stocking_units",
    "base_quantity",
    "calculate_quantity",
    "calculate_reorder_level",
    "calculate_max_stock_level",
    "LocationAllocator",
    "select_assortment",
    "distribute_branch",
    "choose_primary_branch",
]
