"""Product catalog rules: per-branch stock bookkeeping and pricing metrics.

Every function here is pure. Records are immutable, so mutations return a new
:class:`~supermart.data_manager.ProductRecord` (or ``StockRecord``) that the
caller persists through the data layer.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Optional

from bson import ObjectId

from . import log
from .constants import StockOperation
from .data_manager import ProductRecord, StockRecord
from .errors import InsufficientStockError


DEFAULT_REORDER_LEVEL = 10
DEFAULT_MAX_STOCK_LEVEL = 1000


def validate_stock(stock: StockRecord) -> StockRecord:
    """Check the invariants every stock entry written by the toolkit holds.

    Args:
        stock (StockRecord): Candidate entry.

    Returns:
        StockRecord: ``stock`` unchanged, for call chaining.

    Raises:
        ValueError: If quantity or reserved quantity is negative, or the
            reorder level is not below the maximum stock level.
    """

    if stock.quantity < 0:
        raise ValueError(f"Stock quantity must not be negative: {stock.quantity}")
    if stock.reserved_quantity < 0:
        raise ValueError(f"Reserved quantity must not be negative: {stock.reserved_quantity}")
    if stock.reorder_level >= stock.max_stock_level:
        raise ValueError(
            f"Reorder level {stock.reorder_level} must be below max stock level {stock.max_stock_level}"
        )
    return stock


def get_branch_stock(product: ProductRecord, branch_id: ObjectId) -> Optional[StockRecord]:
    for entry in product.stock_by_branch:
        if entry.branch_id == branch_id:
            return entry
    return None


def _replace_branch_stock(product: ProductRecord, stock: StockRecord) -> ProductRecord:
    entries = [entry for entry in product.stock_by_branch if entry.branch_id != stock.branch_id]
    entries.append(stock)
    # Preserve the original branch ordering when the entry already existed.
    order = {entry.branch_id: index for index, entry in enumerate(product.stock_by_branch)}
    entries.sort(key=lambda entry: order.get(entry.branch_id, len(order)))
    return replace(product, stock_by_branch=tuple(entries))


def update_stock(
    product: ProductRecord,
    branch_id: ObjectId,
    quantity: int,
    operation: StockOperation = StockOperation.SET,
    *,
    when: Optional[datetime] = None,
) -> ProductRecord:
    """Apply a stock mutation for one branch and return the updated product.

    ``set`` replaces the quantity, ``add`` increases it, and ``subtract``
    decreases it without going below zero. Only ``set`` and ``add`` move the
    restock timestamp. A branch that has no entry yet is given one with the
    default reorder and maximum levels.

    Args:
        product (ProductRecord): Product to update.
        branch_id (ObjectId): Branch whose stock changes.
        quantity (int): Magnitude of the change. Must be nonnegative.
        operation (StockOperation): Mutation to apply.
        when (datetime | None): Restock timestamp. Defaults to now (UTC).

    Returns:
        ProductRecord: Copy of ``product`` carrying the new stock entry.

    Raises:
        ValueError: If ``quantity`` is negative or the operation is unknown.
    """

    if quantity < 0:
        log.error("Stock update rejected for '%s': negative quantity %s", product.sku, quantity)
        raise ValueError("Quantity must be zero or positive")

    timestamp = when if when is not None else datetime.now(UTC)
    current = get_branch_stock(product, branch_id) or StockRecord(
        branch_id=branch_id,
        quantity=0,
        reorder_level=DEFAULT_REORDER_LEVEL,
        max_stock_level=DEFAULT_MAX_STOCK_LEVEL,
    )

    operation = StockOperation(operation)
    if operation is StockOperation.SET:
        new_quantity = quantity
    elif operation is StockOperation.ADD:
        new_quantity = current.quantity + quantity
    else:
        new_quantity = max(0, current.quantity - quantity)

    restocked = current.last_restocked if operation is StockOperation.SUBTRACT else timestamp
    updated = replace(current, quantity=new_quantity, last_restocked=restocked)
    return _replace_branch_stock(product, updated)


def available_quantity(stock: StockRecord) -> int:
    """Quantity on hand that is not held by an open reservation."""

    return max(0, stock.quantity - stock.reserved_quantity)


def reserve_stock(product: ProductRecord, branch_id: ObjectId, quantity: int) -> ProductRecord:
    """Hold ``quantity`` units at a branch for a pending sale.

    Raises:
        InsufficientStockError: If the branch has no entry or fewer unreserved
            units than requested.
        ValueError: If ``quantity`` is not positive.
    """

    if quantity <= 0:
        raise ValueError("Quantity must be greater than zero")
    stock = get_branch_stock(product, branch_id)
    available = available_quantity(stock) if stock is not None else 0
    if stock is None or available < quantity:
        log.warning(
            "Reservation of %s units of '%s' refused: %s available",
            quantity,
            product.sku,
            available,
        )
        raise InsufficientStockError(
            f"Insufficient stock for '{product.sku}': requested {quantity}, available {available}"
        )
    return _replace_branch_stock(product, replace(stock, reserved_quantity=stock.reserved_quantity + quantity))


def release_stock(product: ProductRecord, branch_id: ObjectId, quantity: int) -> ProductRecord:
    """Return reserved units to the available pool; never drops below zero."""

    stock = get_branch_stock(product, branch_id)
    if stock is None:
        return product
    released = max(0, stock.reserved_quantity - quantity)
    return _replace_branch_stock(product, replace(stock, reserved_quantity=released))


def total_quantity(product: ProductRecord) -> int:
    return sum(entry.quantity for entry in product.stock_by_branch)


def profit_margin(product: ProductRecord) -> Decimal:
    """Margin over cost as a percentage, rounded to two places.

    Products with no cost price report a zero margin.
    """

    if product.cost_price <= 0:
        return Decimal("0")
    margin = (product.selling_price - product.cost_price) / product.cost_price * 100
    return margin.quantize(Decimal("0.01"))


def is_low_stock(stock: StockRecord) -> bool:
    return stock.quantity <= stock.reorder_level


def stock_value(product: ProductRecord, branch_id: ObjectId) -> Decimal:
    """Cost value of the stock a branch holds for ``product``."""

    stock = get_branch_stock(product, branch_id)
    if stock is None:
        return Decimal("0")
    return product.cost_price * stock.quantity


__all__ = [
    "DEFAULT_REORDER_LEVEL",
    "DEFAULT_MAX_STOCK_LEVEL",
    "validate_stock",
    "get_branch_stock",
    "update_stock",
    "available_quantity",
    "reserve_stock",
    "release_stock",
    "total_quantity",
    "profit_margin",
    "is_low_stock",
    "stock_value",
]
