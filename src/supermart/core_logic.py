"""Workflow layer for the Supermart toolkit.

This module orchestrates the batch jobs exposed on the command line. It
consumes the Data Access Layer (DAL) for all I/O and delegates every domain
rule to the catalog, ledger, sales, inventory, and validation modules.
"""

from __future__ import annotations

import random
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from bson import ObjectId
from pymongo import MongoClient
from pymongo.database import Database

from . import data_manager, log
from .catalog import update_stock
from .constants import SALE_NUMBER_PREFIX, SALES_ROLES, Collection, StockOperation
from .errors import (
    BusinessRuleViolation,
    InsufficientStockError,
    MissingPrerequisiteError,
    MissingReferenceError,
)
from .inventory import BranchAllocation, choose_primary_branch, distribute_branch
from .ledger import CUSTOMER_TIERS, CustomerTier, generate_customer, rebuild_from_sales
from .master_data import (
    BRANCHES_SHEET,
    CATEGORIES_SHEET,
    PRODUCTS_SHEET,
    USERS_SHEET,
    iter_sheet_rows,
    open_master_workbook,
    parse_branch_row,
    parse_category_row,
    parse_product_row,
    parse_user_row,
)
from .sales import SaleContext, SaleNumberer, build_sale
from .validation import DataSnapshot, ValidationReport, run_checks


SALE_COUNTER = "sales"

# Fallback share of customers and sales per branch, in branch-code order.
DEFAULT_BRANCH_SHARES: tuple[Decimal, ...] = (Decimal("50"), Decimal("30"), Decimal("20"))
FALLBACK_BRANCH_SHARE = Decimal("10")

WEEKEND_BOOST = Decimal("1.3")
OPENING_HOUR = 9
CLOSING_HOUR = 21

PREREQUISITE_HINTS: Dict[str, str] = {
    "branches": "import master data first",
    "categories": "import master data first",
    "products": "import master data first",
    "inventory": "run distribute-inventory first",
    "customers": "run seed-customers first",
    "staff": "import staff users first",
    "system_user": "import the system administrator user first",
}


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and database handles used by the workflows."""

    settings: data_manager.ConfigSettings
    client: MongoClient
    database: Database
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass
class BranchSalesStats:
    """Per-branch outcome of a sales generation run."""

    branch_code: str
    requested: int = 0
    inserted: int = 0
    skipped_empty: int = 0
    revenue: Decimal = Decimal("0")
    profit: Decimal = Decimal("0")
    payment_methods: Counter = field(default_factory=Counter)


@dataclass
class SalesSummary:
    """Outcome of :func:`generate_sales`."""

    branches: List[BranchSalesStats] = field(default_factory=list)
    first_sequence: Optional[int] = None
    last_sequence: Optional[int] = None

    @property
    def inserted(self) -> int:
        return sum(stats.inserted for stats in self.branches)

    @property
    def revenue(self) -> Decimal:
        return sum((stats.revenue for stats in self.branches), Decimal("0"))

    @property
    def profit(self) -> Decimal:
        return sum((stats.profit for stats in self.branches), Decimal("0"))


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    The workflow layer keeps in-memory caches keyed by domain area (branches,
    products, customers, staff) so repeated lookups within one command do not
    hit the database again.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after writing to the database.

    Missing buckets are ignored.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_branches_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "branches")
    if "all" not in bucket:
        all_branches = list(data_manager.iter_branches(context.database))
        bucket["all"] = all_branches
        bucket["by_id"] = {branch.branch_id: branch for branch in all_branches}
        bucket["by_code"] = {branch.code: branch for branch in all_branches}
        log.debug("Populated branches cache with %d entries", len(all_branches))
    return bucket


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the product cache bucket on demand.

    Returns:
        dict[str, Any]: Bucket containing ``all`` products, the ``stocked``
            subset carrying branch inventory, and a ``by_id`` lookup.
    """

    bucket = _get_cache_bucket(context, "products")
    if "all" not in bucket:
        all_products = list(data_manager.iter_products(context.database))
        bucket["all"] = all_products
        bucket["stocked"] = [product for product in all_products if product.stock_by_branch]
        bucket["by_id"] = {product.product_id: product for product in all_products}
        log.debug(
            "Populated products cache with %d entries (%d stocked)",
            len(all_products),
            len(bucket["stocked"]),
        )
    return bucket


def _ensure_customers_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "customers")
    if "all" not in bucket:
        all_customers = list(data_manager.iter_customers(context.database))
        bucket["all"] = all_customers
        bucket["active"] = [customer for customer in all_customers if customer.is_active]
        log.debug(
            "Populated customers cache with %d entries (%d active)",
            len(all_customers),
            len(bucket["active"]),
        )
    return bucket


def _ensure_staff_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "staff")
    if "sales" not in bucket:
        bucket["sales"] = list(data_manager.iter_users(context.database, roles=SALES_ROLES))
        log.debug("Populated staff cache with %d sales-capable users", len(bucket["sales"]))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and open the database for the workflows.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer consults ``SUPERMART_CONFIG`` and
            then searches upward from the current working directory.

    Returns:
        RuntimeContext: Context holding settings, the open client, and an empty
            cache store.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser)
    client, database = data_manager.open_database(settings)
    log.info("Loaded runtime context from '%s'", resolved_config)
    return RuntimeContext(settings=settings, client=client, database=database)


def close_context(context: RuntimeContext) -> None:
    data_manager.close_client(context.client)


def list_branches(context: RuntimeContext) -> List[data_manager.BranchRecord]:
    """Return cached branches ordered by branch code."""
    return list(_ensure_branches_cache(context)["all"])


def list_products(context: RuntimeContext, *, stocked_only: bool = False) -> List[data_manager.ProductRecord]:
    """Return cached products, optionally only those carrying branch stock."""
    cache = _ensure_products_cache(context)
    return list(cache["stocked"] if stocked_only else cache["all"])


def list_customers(context: RuntimeContext, *, include_inactive: bool = False) -> List[data_manager.CustomerRecord]:
    cache = _ensure_customers_cache(context)
    return list(cache["all"] if include_inactive else cache["active"])


def list_sales_staff(context: RuntimeContext) -> List[data_manager.UserRecord]:
    """Return active users whose role allows ringing up sales."""
    return list(_ensure_staff_cache(context)["sales"])


def get_branch(context: RuntimeContext, code: str) -> data_manager.BranchRecord:
    """Resolve a branch by its code.

    Raises:
        MissingReferenceError: If no branch carries ``code``.
    """
    cache = _ensure_branches_cache(context)
    try:
        return cache["by_code"][code.upper()]
    except KeyError as exc:
        log.warning("Branch lookup failed for code '%s'", code)
        raise MissingReferenceError(f"Unknown branch code: {code}") from exc


def get_system_user(context: RuntimeContext) -> data_manager.UserRecord:
    """Resolve the auditing user configured as ``[Defaults] SystemUserEmail``.

    Raises:
        MissingPrerequisiteError: If the user does not exist.
    """
    email = context.settings.system_user_email
    user = data_manager.find_user_by_email(context.database, email)
    if user is None:
        log.error("System user '%s' not found", email)
        raise MissingPrerequisiteError(
            f"System user '{email}' not found; {PREREQUISITE_HINTS['system_user']}"
        )
    return user


def ensure_prerequisites(context: RuntimeContext, *names: str) -> None:
    """Verify the data a batch job depends on is present.

    Args:
        context (RuntimeContext): Active runtime context.
        *names (str): Any of ``branches``, ``categories``, ``products``,
            ``inventory``, ``customers``, ``staff``, and ``system_user``.

    Raises:
        MissingPrerequisiteError: Naming the first missing dataset and the
            command that produces it.
        ValueError: If an unknown prerequisite name is requested.
    """
    checks = {
        "branches": lambda: bool(list_branches(context)),
        "categories": lambda: data_manager.count_documents(context.database, Collection.CATEGORIES) > 0,
        "products": lambda: bool(list_products(context)),
        "inventory": lambda: bool(list_products(context, stocked_only=True)),
        "customers": lambda: bool(list_customers(context)),
        "staff": lambda: bool(list_sales_staff(context)),
        "system_user": lambda: get_system_user(context) is not None,
    }
    for name in names:
        if name not in checks:
            raise ValueError(f"Unknown prerequisite: {name}")
        if not checks[name]():
            log.error("Missing prerequisite data: %s", name)
            raise MissingPrerequisiteError(f"No {name.replace('_', ' ')} found; {PREREQUISITE_HINTS[name]}")


def branch_target(settings: data_manager.ConfigSettings, branch: data_manager.BranchRecord) -> Decimal:
    """Inventory value target for ``branch``, falling back to the default."""
    return settings.inventory_targets.get(branch.code, settings.default_inventory_target)


def branch_weights(
    settings: data_manager.ConfigSettings,
    branches: Sequence[data_manager.BranchRecord],
) -> List[Decimal]:
    """Relative share of customers and sales per branch.

    Configured ``[SalesShare]`` weights win; otherwise branches receive the
    default shares in code order.

    Raises:
        BusinessRuleViolation: If a weight is negative or all weights are zero.
    """
    weights = []
    for index, branch in enumerate(branches):
        default = DEFAULT_BRANCH_SHARES[index] if index < len(DEFAULT_BRANCH_SHARES) else FALLBACK_BRANCH_SHARE
        weight = settings.sales_share.get(branch.code, default)
        if weight < 0:
            raise BusinessRuleViolation(f"[SalesShare] weight for branch {branch.code} must not be negative")
        weights.append(weight)
    if branches and not any(weights):
        raise BusinessRuleViolation("[SalesShare] gives every branch a zero weight; at least one must be positive")
    return weights


def allocate_counts(total: int, weights: Sequence[Decimal]) -> List[int]:
    """Split ``total`` across ``weights`` with the largest-remainder method.

    The returned counts always sum to ``total`` (when any weight is positive).
    """
    weight_sum = sum(weights, Decimal("0"))
    if total <= 0 or weight_sum <= 0:
        return [0 for _ in weights]
    exact = [Decimal(total) * weight / weight_sum for weight in weights]
    counts = [int(value) for value in exact]
    remainder = total - sum(counts)
    by_fraction = sorted(range(len(weights)), key=lambda index: exact[index] - counts[index], reverse=True)
    for index in by_fraction[:remainder]:
        counts[index] += 1
    return counts


def sale_timestamps(rng: random.Random, count: int, *, days: int, end: datetime) -> List[datetime]:
    """Spread ``count`` sale times over the ``days`` ending on ``end``'s date.

    Weekends carry 30% more sales than weekdays. Times fall within trading
    hours and are returned in chronological order.
    """
    if days <= 0:
        raise ValueError("Days must be greater than zero")
    last_day: date = end.date()
    calendar = [last_day - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    weights = [WEEKEND_BOOST if day.weekday() >= 5 else Decimal("1") for day in calendar]
    timestamps: List[datetime] = []
    for day, day_count in zip(calendar, allocate_counts(count, weights)):
        for _ in range(day_count):
            moment = time(rng.randint(OPENING_HOUR, CLOSING_HOUR), rng.randint(0, 59), rng.randint(0, 59))
            timestamps.append(datetime.combine(day, moment, tzinfo=end.tzinfo or UTC))
    timestamps.sort()
    return timestamps


def distribute_inventory(
    context: RuntimeContext,
    rng: random.Random,
    *,
    now: Optional[datetime] = None,
) -> List[BranchAllocation]:
    """Replace the stock of every product with a fresh distribution.

    Existing ``stockByBranch`` entries are cleared first. The primary branch
    stocks the whole catalog; the others stock a random subset.

    Args:
        context (RuntimeContext): Active runtime context.
        rng (random.Random): Random source.
        now (datetime | None): Reference time; defaults to now (UTC).

    Returns:
        list[BranchAllocation]: One allocation per branch in code order.

    Raises:
        MissingPrerequisiteError: If there are no branches or products.
    """
    ensure_prerequisites(context, "branches", "products")
    timestamp = _resolve_timestamp(now)
    branches = list_branches(context)
    products = list_products(context)
    primary = choose_primary_branch(branches)

    cleared = data_manager.clear_all_stock(context.database)
    log.info("Cleared existing inventory on %d products", cleared)

    allocations = [
        distribute_branch(
            branch,
            products,
            branch_target(context.settings, branch),
            rng,
            is_primary=primary is not None and branch.branch_id == primary.branch_id,
            now=timestamp,
        )
        for branch in branches
    ]

    for product in products:
        entries = [allocation.stock[product.product_id] for allocation in allocations if product.product_id in allocation.stock]
        if entries:
            data_manager.replace_stock(context.database, product.product_id, entries)

    _invalidate_cache(context, "products")
    log.info(
        "Distributed inventory across %d branches: total value %s",
        len(allocations),
        sum((allocation.total_value for allocation in allocations), Decimal("0")),
    )
    return allocations


def seed_customers(
    context: RuntimeContext,
    rng: random.Random,
    *,
    now: Optional[datetime] = None,
    tiers: Sequence[CustomerTier] = CUSTOMER_TIERS,
) -> Dict[str, int]:
    """Replace all customers with freshly generated tiered customers.

    Customers are registered at branches according to the branch share
    weights. Their purchase aggregates are generated independently of the
    sales collection.

    Returns:
        dict[str, int]: Inserted customer count per tier name.

    Raises:
        MissingPrerequisiteError: If there are no branches or the system user
            is missing.
    """
    ensure_prerequisites(context, "branches")
    system_user = get_system_user(context)
    timestamp = _resolve_timestamp(now)
    branches = list_branches(context)
    weights = branch_weights(context.settings, branches)

    deleted = data_manager.delete_all(context.database, Collection.CUSTOMERS)
    log.info("Deleted %d existing customers", deleted)

    created: Dict[str, int] = {}
    index = 1
    for tier in tiers:
        records = []
        for _ in range(tier.count):
            branch = rng.choices(branches, weights=[float(weight) for weight in weights], k=1)[0]
            records.append(
                generate_customer(
                    tier,
                    index,
                    branch.branch_id,
                    rng,
                    now=timestamp,
                    created_by=system_user.user_id,
                )
            )
            index += 1
        documents = [data_manager.serialize_customer(record) for record in records]
        inserted = data_manager.insert_documents(context.database, Collection.CUSTOMERS, documents)
        created[tier.name] = len(inserted)
        log.info("Created %d/%d %s customers", len(inserted), tier.count, tier.name)

    _invalidate_cache(context, "customers")
    return created


def _commit_stock(
    context: RuntimeContext,
    sales: Sequence[data_manager.SaleRecord],
    *,
    when: datetime,
) -> int:
    """Subtract sold quantities from persisted branch stock; returns products touched."""
    sold: Dict[tuple[ObjectId, ObjectId], int] = defaultdict(int)
    for sale in sales:
        for item in sale.items:
            sold[(item.product_id, sale.branch_id)] += item.quantity

    products = _ensure_products_cache(context)["by_id"]
    updated: Dict[ObjectId, data_manager.ProductRecord] = {}
    for (product_id, branch_id), quantity in sold.items():
        product = updated.get(product_id) or products[product_id]
        updated[product_id] = update_stock(product, branch_id, quantity, StockOperation.SUBTRACT, when=when)

    for product in updated.values():
        data_manager.replace_stock(context.database, product.product_id, product.stock_by_branch)
    _invalidate_cache(context, "products")
    log.info("Committed stock decrements for %d products", len(updated))
    return len(updated)


def generate_sales(
    context: RuntimeContext,
    rng: random.Random,
    *,
    days: int = 90,
    total_sales: int = 1750,
    append: bool = False,
    commit_stock: bool = False,
    walk_in_rate: float = 0.0,
    now: Optional[datetime] = None,
) -> SalesSummary:
    """Generate and insert sales for every branch.

    Sales are split across branches by share weight and spread over the last
    ``days`` days with a weekend boost. Without ``append`` the existing sales
    are removed and numbering restarts; with ``append`` numbering continues
    after the highest stored sequence. Quantities sold are tracked against an
    in-memory stock view so no branch sells more than it holds; persisting
    the decrements is opt-in through ``commit_stock``.

    Args:
        context (RuntimeContext): Active runtime context.
        rng (random.Random): Random source.
        days (int): Length of the sales window ending today.
        total_sales (int): Number of sale attempts across all branches.
        append (bool): Keep existing sales and continue numbering.
        commit_stock (bool): Write the stock decrements back to products.
        walk_in_rate (float): Probability of a sale without a customer.
        now (datetime | None): End of the window; defaults to now (UTC).

    Returns:
        SalesSummary: Per-branch counts, revenue, profit, and payment mix.

    Raises:
        MissingPrerequisiteError: If branches, stocked products, or sales
            staff are missing.
        ValueError: If ``days`` or ``total_sales`` is not positive or the
            walk-in rate is outside ``[0, 1]``.
    """
    if days <= 0:
        raise ValueError("Days must be greater than zero")
    if total_sales <= 0:
        raise ValueError("Sales count must be greater than zero")
    if not 0.0 <= walk_in_rate <= 1.0:
        raise ValueError("Walk-in rate must be between 0 and 1")
    ensure_prerequisites(context, "branches", "inventory", "staff")
    timestamp = _resolve_timestamp(now)

    if not append:
        deleted = data_manager.delete_all(context.database, Collection.SALES)
        data_manager.reset_sequence(context.database, SALE_COUNTER)
        log.info("Deleted %d existing sales", deleted)

    floor = data_manager.max_sale_sequence(context.database, SALE_NUMBER_PREFIX)
    numberer = SaleNumberer(lambda: data_manager.reserve_sequence(context.database, SALE_COUNTER, floor=floor))

    branches = list_branches(context)
    products = list_products(context, stocked_only=True)
    customers = list_customers(context)
    cashiers = list_sales_staff(context)
    counts = allocate_counts(total_sales, branch_weights(context.settings, branches))

    summary = SalesSummary()
    committed: List[data_manager.SaleRecord] = []
    for branch, count in zip(branches, counts):
        stats = BranchSalesStats(branch_code=branch.code, requested=count)
        summary.branches.append(stats)
        sale_context = SaleContext.for_branch(branch.branch_id, products, customers, cashiers)
        if not sale_context.products:
            log.warning("Branch '%s' has no stocked products; skipping", branch.code)
            continue

        records: List[data_manager.SaleRecord] = []
        for when in sale_timestamps(rng, count, days=days, end=timestamp):
            sequence = numberer.next_sequence()
            if summary.first_sequence is None:
                summary.first_sequence = sequence
            summary.last_sequence = sequence
            sale = build_sale(sale_context, when=when, sequence=sequence, rng=rng, walk_in_rate=walk_in_rate)
            if sale is None:
                stats.skipped_empty += 1
                continue
            records.append(sale)

        documents = [data_manager.serialize_sale(record) for record in records]
        inserted_ids = {
            document["_id"]
            for document in data_manager.insert_documents(context.database, Collection.SALES, documents)
        }
        for record in records:
            if record.sale_id not in inserted_ids:
                continue
            committed.append(record)
            stats.inserted += 1
            stats.revenue += record.total
            stats.profit += record.profit
            stats.payment_methods[record.payment.method] += 1

        log.info(
            "Branch '%s': %d/%d sales inserted (%d empty), revenue %s, profit %s",
            branch.code,
            stats.inserted,
            count,
            stats.skipped_empty,
            stats.revenue,
            stats.profit,
        )

    if commit_stock and committed:
        _commit_stock(context, committed, when=timestamp)

    return summary


def sync_customers(context: RuntimeContext) -> int:
    """Rebuild every customer's purchase aggregates from the sales collection.

    Only customers whose stored aggregates differ are written.

    Returns:
        int: Number of customers updated.

    Raises:
        MissingPrerequisiteError: If there are no customers.
    """
    ensure_prerequisites(context, "customers")
    by_customer: Dict[ObjectId, List[data_manager.SaleRecord]] = defaultdict(list)
    for sale in data_manager.iter_sales(context.database):
        if sale.customer_id is not None:
            by_customer[sale.customer_id].append(sale)

    updated = 0
    for customer in list_customers(context, include_inactive=True):
        rebuilt = rebuild_from_sales(customer, by_customer.get(customer.customer_id, []))
        if rebuilt != customer:
            data_manager.update_customer_stats(context.database, rebuilt)
            updated += 1

    _invalidate_cache(context, "customers")
    log.info("Synchronized purchase aggregates for %d customers", updated)
    return updated


def load_snapshot(context: RuntimeContext) -> DataSnapshot:
    return DataSnapshot(
        branches=tuple(data_manager.iter_branches(context.database)),
        categories=tuple(data_manager.iter_categories(context.database)),
        products=tuple(data_manager.iter_products(context.database)),
        customers=tuple(data_manager.iter_customers(context.database)),
        sales=tuple(data_manager.iter_sales(context.database)),
    )


def run_validation(context: RuntimeContext) -> ValidationReport:
    """Run the consistency checks against a fresh read of the database."""
    report = run_checks(load_snapshot(context))
    counts = report.counts()
    log.info(
        "Validation finished: %d passed, %d warnings, %d failed",
        counts["passed"],
        counts["warnings"],
        counts["failed"],
    )
    return report


def initialize_database(context: RuntimeContext) -> List[str]:
    return data_manager.create_indexes(context.database)


def _parse_rows(workbook: Any, sheet: str, parse: Any) -> List[Any]:
    records = []
    for number, row in enumerate(iter_sheet_rows(workbook, sheet), start=2):
        try:
            records.append(parse(row))
        except ValueError as exc:
            raise BusinessRuleViolation(f"{sheet} row {number}: {exc}") from exc
    return records


def import_master_data(context: RuntimeContext, workbook_path: Path) -> Dict[str, int]:
    """Upsert branches, categories, products, and users from a workbook.

    Rows are matched on branch code, category code, product SKU, and user
    email, so re-importing a workbook updates records in place. Product stock
    is never touched by an import.

    Returns:
        dict[str, int]: Rows imported per sheet.

    Raises:
        FileNotFoundError: If the workbook does not exist.
        BusinessRuleViolation: If a row is incomplete or malformed.
        MissingReferenceError: If a product or user references an unknown
            category or branch code.
    """
    workbook = open_master_workbook(workbook_path)
    database = context.database
    imported: Dict[str, int] = {}

    branches = _parse_rows(workbook, BRANCHES_SHEET, parse_branch_row)
    for branch in branches:
        data_manager.upsert_document(database, Collection.BRANCHES, "code", data_manager.serialize_branch(branch))
    imported[BRANCHES_SHEET] = len(branches)

    categories = _parse_rows(workbook, CATEGORIES_SHEET, parse_category_row)
    for category in categories:
        data_manager.upsert_document(
            database, Collection.CATEGORIES, "code", data_manager.serialize_category(category)
        )
    imported[CATEGORIES_SHEET] = len(categories)

    category_ids = {category.code: category.category_id for category in data_manager.iter_categories(database)}
    products = _parse_rows(workbook, PRODUCTS_SHEET, lambda row: parse_product_row(row, category_ids))
    for product in products:
        data_manager.upsert_document(
            database,
            Collection.PRODUCTS,
            "sku",
            data_manager.serialize_product(product),
            insert_only=("stockByBranch",),
        )
    imported[PRODUCTS_SHEET] = len(products)

    branch_ids = {branch.code: branch.branch_id for branch in data_manager.iter_branches(database)}
    users = _parse_rows(workbook, USERS_SHEET, lambda row: parse_user_row(row, branch_ids))
    for user in users:
        data_manager.upsert_document(database, Collection.USERS, "email", data_manager.serialize_user(user))
    imported[USERS_SHEET] = len(users)

    _invalidate_cache(context, "branches", "products", "staff")
    log.info(
        "Imported master data from '%s': %s",
        workbook_path,
        ", ".join(f"{sheet}={count}" for sheet, count in imported.items()),
    )
    return imported


__all__ = [
    "BusinessRuleViolation",
    "MissingReferenceError",
    "MissingPrerequisiteError",
    "InsufficientStockError",
    "RuntimeContext",
    "BranchSalesStats",
    "SalesSummary",
    "load_runtime_context",
    "close_context",
    "list_branches",
    "list_products",
    "list_customers",
    "list_sales_staff",
    "get_branch",
    "get_system_user",
    "ensure_prerequisites",
    "branch_target",
    "branch_weights",
    "allocate_counts",
    "sale_timestamps",
    "distribute_inventory",
    "seed_customers",
    "generate_sales",
    "sync_customers",
    "load_snapshot",
    "run_validation",
    "initialize_database",
    "import_master_data",
]
