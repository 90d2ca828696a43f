"""Consistency validator.

Recomputes derived values from the stored documents and compares them with
what was persisted. Checks only read the :class:`DataSnapshot` they are
given; findings are recorded on a :class:`ValidationReport` and never
raised.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Sequence, Tuple

from .constants import AMOUNT_TOLERANCE, PaymentMethod
from .data_manager import (
    BranchRecord,
    CategoryRecord,
    CustomerRecord,
    ProductRecord,
    SaleRecord,
)


MARGIN_RANGE = (Decimal("15"), Decimal("25"))
CUSTOMER_DIVERGENCE_NOTE = (
    "Customer aggregates are generated independently of sales; divergence is expected"
)

BASIC_INTEGRITY = "Basic data integrity"
REFERENCES = "Orphaned references"
STOCK = "Inventory stock levels"
SALE_CALCULATIONS = "Sales calculations"
REVENUE_AND_PROFIT = "Revenue and profit"
CUSTOMER_AGGREGATES = "Customer aggregates"
PRODUCT_PRICING = "Product pricing"
DISTRIBUTION = "Data distribution"


@dataclass(frozen=True)
class Finding:
    """A warning or failure produced by one check."""

    check: str
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class ValidationReport:
    """Passed, warning, and failed buckets accumulated across checks."""

    passed: List[Tuple[str, str]] = field(default_factory=list)
    warnings: List[Finding] = field(default_factory=list)
    failed: List[Finding] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)

    def ok(self, check: str, message: str) -> None:
        self.passed.append((check, message))

    def warn(self, check: str, message: str, **details: Any) -> None:
        self.warnings.append(Finding(check, message, details))

    def fail(self, check: str, message: str, **details: Any) -> None:
        self.failed.append(Finding(check, message, details))

    @property
    def succeeded(self) -> bool:
        return not self.failed

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def counts(self) -> Dict[str, int]:
        return {"passed": len(self.passed), "warnings": len(self.warnings), "failed": len(self.failed)}


@dataclass(frozen=True)
class DataSnapshot:
    """Everything the validator reads, loaded once."""

    branches: Tuple[BranchRecord, ...] = ()
    categories: Tuple[CategoryRecord, ...] = ()
    products: Tuple[ProductRecord, ...] = ()
    customers: Tuple[CustomerRecord, ...] = ()
    sales: Tuple[SaleRecord, ...] = ()


def _differs(stored: Decimal, calculated: Decimal) -> bool:
    return abs(stored - calculated) > AMOUNT_TOLERANCE


def check_basic_integrity(snapshot: DataSnapshot, report: ValidationReport) -> None:
    if snapshot.branches:
        report.ok(BASIC_INTEGRITY, f"Found {len(snapshot.branches)} branches")
    else:
        report.fail(BASIC_INTEGRITY, "No branches found")

    if snapshot.products:
        report.ok(BASIC_INTEGRITY, f"Found {len(snapshot.products)} products")
    else:
        report.warn(BASIC_INTEGRITY, "No products found")

    if snapshot.customers:
        report.ok(BASIC_INTEGRITY, f"Found {len(snapshot.customers)} customers")
    else:
        report.warn(BASIC_INTEGRITY, "No customers found")

    stocked = sum(1 for product in snapshot.products if product.stock_by_branch)
    if stocked:
        report.ok(BASIC_INTEGRITY, f"Found {stocked} products with inventory data")
    else:
        report.fail(BASIC_INTEGRITY, "No inventory data found in products")

    if snapshot.sales:
        report.ok(BASIC_INTEGRITY, f"Found {len(snapshot.sales)} sales transactions")
    else:
        report.warn(BASIC_INTEGRITY, "No sales transactions found")


def check_references(snapshot: DataSnapshot, report: ValidationReport) -> None:
    branch_ids = {branch.branch_id for branch in snapshot.branches}
    category_ids = {category.category_id for category in snapshot.categories}
    customer_ids = {customer.customer_id for customer in snapshot.customers}

    bad_categories = [product for product in snapshot.products if product.category_id not in category_ids]
    for product in bad_categories:
        report.fail(REFERENCES, f"Product {product.sku}: unknown category", category=str(product.category_id))
    if not bad_categories:
        report.ok(REFERENCES, "All products have valid category references")

    bad_stock = 0
    for product in snapshot.products:
        for stock in product.stock_by_branch:
            if stock.branch_id not in branch_ids:
                bad_stock += 1
                report.fail(
                    REFERENCES,
                    f"Product {product.sku}: inventory references unknown branch",
                    branch=str(stock.branch_id),
                )
    if not bad_stock:
        report.ok(REFERENCES, "All product inventory has valid branch references")

    bad_branches = [sale for sale in snapshot.sales if sale.branch_id not in branch_ids]
    for sale in bad_branches:
        report.fail(REFERENCES, f"Sale {sale.invoice_number}: unknown branch", branch=str(sale.branch_id))
    if not bad_branches:
        report.ok(REFERENCES, "All sales have valid branch references")

    walk_ins = sum(1 for sale in snapshot.sales if sale.customer_id is None)
    dangling = [
        sale for sale in snapshot.sales if sale.customer_id is not None and sale.customer_id not in customer_ids
    ]
    for sale in dangling:
        report.warn(
            REFERENCES,
            f"Sale {sale.invoice_number}: unknown customer",
            customer=str(sale.customer_id),
        )
    if not dangling:
        report.ok(REFERENCES, f"All sales have valid customer references ({walk_ins} walk-in)")


def check_stock(snapshot: DataSnapshot, report: ValidationReport) -> None:
    branch_names = {branch.branch_id: branch.name for branch in snapshot.branches}
    problems = 0
    for product in snapshot.products:
        for stock in product.stock_by_branch:
            branch = branch_names.get(stock.branch_id, str(stock.branch_id))
            if stock.quantity < 0:
                problems += 1
                report.fail(
                    STOCK,
                    f"Product {product.sku}: negative stock in {branch}",
                    quantity=stock.quantity,
                )
            if stock.reorder_level >= stock.max_stock_level:
                problems += 1
                report.fail(
                    STOCK,
                    f"Product {product.sku}: reorder level not below max stock in {branch}",
                    reorder_level=stock.reorder_level,
                    max_stock_level=stock.max_stock_level,
                )
            if stock.quantity <= stock.reorder_level:
                report.warn(
                    STOCK,
                    f"Product {product.sku}: below reorder level in {branch}",
                    quantity=stock.quantity,
                    reorder_level=stock.reorder_level,
                )
    if not problems:
        report.ok(STOCK, "No negative or inconsistent stock levels")


def check_sale_calculations(snapshot: DataSnapshot, report: ValidationReport) -> None:
    """Recompute subtotal, line tax, total tax, and total for each sale."""

    errors = 0
    for sale in snapshot.sales:
        subtotal = sum((item.quantity * item.unit_price for item in sale.items), Decimal("0"))
        if _differs(sale.subtotal, subtotal):
            errors += 1
            report.fail(
                SALE_CALCULATIONS,
                f"Sale {sale.invoice_number}: subtotal mismatch",
                stored=sale.subtotal,
                calculated=subtotal,
                diff=abs(sale.subtotal - subtotal),
            )

        for item in sale.items:
            expected = (item.item_total - item.discount_amount) * item.tax_rate / 100
            if _differs(item.tax_amount, expected):
                errors += 1
                report.fail(
                    SALE_CALCULATIONS,
                    f"Sale {sale.invoice_number}: line tax mismatch for {item.sku}",
                    stored=item.tax_amount,
                    calculated=expected,
                    diff=abs(item.tax_amount - expected),
                )

        tax = sum((item.tax_amount for item in sale.items), Decimal("0"))
        if _differs(sale.total_tax, tax):
            errors += 1
            report.fail(
                SALE_CALCULATIONS,
                f"Sale {sale.invoice_number}: tax mismatch",
                stored=sale.total_tax,
                calculated=tax,
                diff=abs(sale.total_tax - tax),
            )

        total = sale.subtotal + sale.total_tax - sale.total_discount
        if _differs(sale.total, total):
            errors += 1
            report.fail(
                SALE_CALCULATIONS,
                f"Sale {sale.invoice_number}: total mismatch",
                stored=sale.total,
                calculated=total,
                diff=abs(sale.total - total),
            )

    if not errors:
        report.ok(SALE_CALCULATIONS, f"All {len(snapshot.sales)} sales have correct calculations")


def check_revenue_and_profit(snapshot: DataSnapshot, report: ValidationReport) -> None:
    """Summarise revenue and profit per branch and check the overall margin.

    Profit is revenue net of tax minus the cost of goods sold.
    """

    by_branch: Dict[Any, List[SaleRecord]] = defaultdict(list)
    for sale in snapshot.sales:
        by_branch[sale.branch_id].append(sale)

    branches: Dict[str, Dict[str, Any]] = {}
    total_revenue = Decimal("0")
    total_profit = Decimal("0")
    for branch in snapshot.branches:
        sales = by_branch.get(branch.branch_id, [])
        revenue = sum((sale.total for sale in sales), Decimal("0"))
        profit = sum((sale.profit for sale in sales), Decimal("0"))
        branches[branch.code] = {"name": branch.name, "sales": len(sales), "revenue": revenue, "profit": profit}
        total_revenue += revenue
        total_profit += profit

    report.summary["revenue"] = {
        "branches": branches,
        "total_sales": len(snapshot.sales),
        "total_revenue": total_revenue,
        "total_profit": total_profit,
    }

    if total_revenue <= 0:
        report.ok(REVENUE_AND_PROFIT, "No sales revenue to evaluate")
        return

    margin = (total_profit / total_revenue * 100).quantize(Decimal("0.01"))
    low, high = MARGIN_RANGE
    if low <= margin <= high:
        report.ok(REVENUE_AND_PROFIT, f"Profit margin {margin}% is within expected range ({low}-{high}%)")
    else:
        report.warn(
            REVENUE_AND_PROFIT,
            f"Profit margin {margin}% is outside expected range ({low}-{high}%)",
            margin=margin,
        )


def check_customer_aggregates(snapshot: DataSnapshot, report: ValidationReport) -> None:
    spent: Dict[Any, Decimal] = defaultdict(lambda: Decimal("0"))
    purchases: Counter = Counter()
    for sale in snapshot.sales:
        if sale.customer_id is None:
            continue
        spent[sale.customer_id] += sale.total
        purchases[sale.customer_id] += 1

    mismatches = 0
    for customer in snapshot.customers:
        actual_spent = spent[customer.customer_id]
        if _differs(customer.total_spent, actual_spent):
            mismatches += 1
            report.warn(
                CUSTOMER_AGGREGATES,
                f"Customer {customer.customer_number}: total spent mismatch",
                stored=customer.total_spent,
                calculated=actual_spent,
                note=CUSTOMER_DIVERGENCE_NOTE,
            )
        actual_count = purchases[customer.customer_id]
        if customer.total_purchases != actual_count:
            mismatches += 1
            report.warn(
                CUSTOMER_AGGREGATES,
                f"Customer {customer.customer_number}: purchase count mismatch",
                stored=customer.total_purchases,
                actual=actual_count,
                note=CUSTOMER_DIVERGENCE_NOTE,
            )

    if not mismatches:
        report.ok(
            CUSTOMER_AGGREGATES,
            f"All {len(snapshot.customers)} customers have consistent purchase data",
        )


def check_product_pricing(snapshot: DataSnapshot, report: ValidationReport) -> None:
    categories = {category.category_id: category for category in snapshot.categories}
    issues = 0
    for product in snapshot.products:
        if product.selling_price <= product.cost_price:
            issues += 1
            report.fail(
                PRODUCT_PRICING,
                f"Product {product.sku}: selling price not above cost price",
                selling_price=product.selling_price,
                cost_price=product.cost_price,
            )
        category = categories.get(product.category_id)
        if category is not None and category.gst_rate is not None and category.gst_rate != product.gst_rate:
            issues += 1
            report.warn(
                PRODUCT_PRICING,
                f"Product {product.sku}: GST rate does not match category {category.code}",
                product_gst=product.gst_rate,
                category_gst=category.gst_rate,
            )
    if not issues:
        report.ok(PRODUCT_PRICING, f"All {len(snapshot.products)} products have valid pricing")


def check_distribution(snapshot: DataSnapshot, report: ValidationReport) -> None:
    customers = Counter(customer.registered_branch_id for customer in snapshot.customers)
    sales = Counter(sale.branch_id for sale in snapshot.sales)
    stocked: Counter = Counter()
    for product in snapshot.products:
        for stock in product.stock_by_branch:
            if stock.quantity > 0:
                stocked[stock.branch_id] += 1

    report.summary["distribution"] = {
        "branches": {
            branch.code: {
                "name": branch.name,
                "customers": customers[branch.branch_id],
                "stocked_items": stocked[branch.branch_id],
                "sales": sales[branch.branch_id],
            }
            for branch in snapshot.branches
        },
        "payment_methods": {
            method.value: sum(1 for sale in snapshot.sales if sale.payment.method == method.value)
            for method in PaymentMethod
        },
    }
    report.ok(DISTRIBUTION, "Data distribution analysis completed")


CHECKS: Sequence[Tuple[str, Callable[[DataSnapshot, ValidationReport], None]]] = (
    (BASIC_INTEGRITY, check_basic_integrity),
    (REFERENCES, check_references),
    (STOCK, check_stock),
    (SALE_CALCULATIONS, check_sale_calculations),
    (REVENUE_AND_PROFIT, check_revenue_and_profit),
    (CUSTOMER_AGGREGATES, check_customer_aggregates),
    (PRODUCT_PRICING, check_product_pricing),
    (DISTRIBUTION, check_distribution),
)


def run_checks(snapshot: DataSnapshot) -> ValidationReport:
    """Run every check over ``snapshot`` and return the populated report."""

    report = ValidationReport()
    for _, check in CHECKS:
        check(snapshot, report)
    return report


__all__ = [
    "Finding",
    "ValidationReport",
    "DataSnapshot",
    "CHECKS",
    "check_basic_integrity",
    "check_references",
    "check_stock",
    "check_sale_calculations",
    "check_revenue_and_profit",
    "check_customer_aggregates",
    "check_product_pricing",
    "check_distribution",
    "run_checks",
]
