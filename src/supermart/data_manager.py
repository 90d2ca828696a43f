"""Data access layer for the Supermart toolkit.

This module provides low-level helpers that read from and write to the
MongoDB database backing the store chain. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Connection lifecycle: opening and closing the ``pymongo`` client.
3. Collection operations: loading structured records and inserting or
   updating individual documents.
"""


from __future__ import annotations

import configparser
import os
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database
from pymongo.errors import BulkWriteError

from . import log
from .constants import Collection


CONFIG_FILE_NAME = "config.ini"
CONFIG_ENV_VAR = "SUPERMART_CONFIG"
URI_ENV_VAR = "MONGODB_URI"
DEFAULT_INVENTORY_TARGET = Decimal("1500000")


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    mongodb_uri: str
    database_name: str
    chain_name: str
    currency: str
    system_user_email: str
    default_inventory_target: Decimal = DEFAULT_INVENTORY_TARGET
    inventory_targets: Mapping[str, Decimal] = field(default_factory=dict)
    sales_share: Mapping[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class BranchRecord:
    """In-memory view of a ``branches`` document."""

    branch_id: ObjectId
    code: str
    name: str
    city: str = ""
    state: str = ""
    phone: str = ""
    email: str = ""
    is_primary: bool = False
    is_active: bool = True
    tax_rate: Decimal = Decimal("18")
    currency: str = "INR"


@dataclass(frozen=True)
class CategoryRecord:
    """In-memory view of a ``categories`` document."""

    category_id: ObjectId
    code: str
    name: str
    gst_rate: Optional[Decimal] = None


@dataclass(frozen=True)
class StockRecord:
    """One entry of a product's ``stockByBranch`` list."""

    branch_id: ObjectId
    quantity: int
    reorder_level: int = 10
    max_stock_level: int = 1000
    reserved_quantity: int = 0
    location: Optional[str] = None
    last_restocked: Optional[datetime] = None


@dataclass(frozen=True)
class ProductRecord:
    """In-memory view of a ``products`` document."""

    product_id: ObjectId
    sku: str
    name: str
    category_id: Optional[ObjectId]
    cost_price: Decimal
    selling_price: Decimal
    mrp: Optional[Decimal] = None
    gst_rate: Decimal = Decimal("18")
    is_active: bool = True
    stock_by_branch: Tuple[StockRecord, ...] = ()


@dataclass(frozen=True)
class UserRecord:
    """In-memory view of a ``users`` document."""

    user_id: ObjectId
    email: str
    full_name: str
    role: str
    branch_id: Optional[ObjectId] = None
    is_active: bool = True


@dataclass(frozen=True)
class CustomerRecord:
    """In-memory view of a ``customers`` document."""

    customer_id: ObjectId
    customer_number: str
    first_name: str
    last_name: str
    phone: str
    registered_branch_id: Optional[ObjectId]
    email: Optional[str] = None
    customer_group: str = "regular"
    total_spent: Decimal = Decimal("0")
    total_purchases: int = 0
    average_order_value: Decimal = Decimal("0")
    loyalty_points: int = 0
    loyalty_tier: str = "bronze"
    credit_limit: Decimal = Decimal("0")
    current_balance: Decimal = Decimal("0")
    is_active: bool = True
    first_purchase_date: Optional[datetime] = None
    last_purchase_date: Optional[datetime] = None
    created_by: Optional[ObjectId] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass(frozen=True)
class SaleItemRecord:
    """One line item of a sale."""

    product_id: ObjectId
    product_name: str
    sku: str
    quantity: int
    unit_price: Decimal
    cost_price: Decimal
    discount: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    line_total: Decimal

    @property
    def item_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class PaymentRecord:
    """Settlement details attached to a sale."""

    method: str
    amount: Decimal
    reference: Optional[str] = None
    cash_tendered: Optional[Decimal] = None
    change_amount: Decimal = Decimal("0")


@dataclass(frozen=True)
class SaleRecord:
    """In-memory view of a ``sales`` document."""

    sale_id: ObjectId
    sale_number: str
    invoice_number: str
    branch_id: Optional[ObjectId]
    customer_id: Optional[ObjectId]
    customer_name: Optional[str]
    items: Tuple[SaleItemRecord, ...]
    subtotal: Decimal
    total_discount: Decimal
    total_tax: Decimal
    total: Decimal
    payment: PaymentRecord
    status: str
    created_by: Optional[ObjectId]
    created_at: datetime

    @property
    def cost_total(self) -> Decimal:
        return sum((item.cost_price * item.quantity for item in self.items), Decimal("0"))

    @property
    def profit(self) -> Decimal:
        return self.total - self.total_tax - self.cost_total


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the ``SUPERMART_CONFIG`` environment
    variable is honoured, and failing that the function walks up from the
    current working directory toward the filesystem root looking for a file
    named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    from_env = os.environ.get(CONFIG_ENV_VAR)
    if from_env:
        return Path(from_env)

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    # Branch codes are upper case; keep option names as written.
    parser.optionxform = str  # type: ignore[assignment]
    parser.read(config_path)
    return parser


def _decimal_section(parser: configparser.ConfigParser, section: str) -> Dict[str, Decimal]:
    if not parser.has_section(section):
        return {}
    return {key.upper(): Decimal(value) for key, value in parser.items(section)}


def parse_settings(
    parser: configparser.ConfigParser,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The ``MONGODB_URI`` environment variable, when set, takes precedence over
    the ``[Database] Uri`` entry so deployments can keep credentials out of
    the configuration file.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        environ (Mapping[str, str] | None): Environment to consult. Defaults to
            :data:`os.environ`.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
    """

    environ = os.environ if environ is None else environ
    try:
        database_name = parser.get("Database", "Name")
        chain_name = parser.get("Store", "ChainName")
        system_user_email = parser.get("Defaults", "SystemUserEmail")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    uri = environ.get(URI_ENV_VAR) or parser.get("Database", "Uri", fallback="")
    if not uri:
        raise KeyError(f"Missing required configuration entry: [Database] Uri or ${URI_ENV_VAR}")

    return ConfigSettings(
        mongodb_uri=uri,
        database_name=database_name,
        chain_name=chain_name,
        currency=parser.get("Store", "Currency", fallback="INR"),
        system_user_email=system_user_email,
        default_inventory_target=Decimal(
            parser.get("Inventory", "DefaultTarget", fallback=str(DEFAULT_INVENTORY_TARGET))
        ),
        inventory_targets=_decimal_section(parser, "InventoryTargets"),
        sales_share=_decimal_section(parser, "SalesShare"),
    )


def open_database(settings: ConfigSettings) -> Tuple[MongoClient, Database]:
    """Open a client for ``settings.mongodb_uri`` and return it with the database.

    The client is created with ``tz_aware=True`` so datetimes read back from
    the server carry UTC information. Callers own the client and must close it
    via :func:`close_client`.
    """

    client: MongoClient = MongoClient(settings.mongodb_uri, tz_aware=True)
    database = client[settings.database_name]
    log.info("Connected to database '%s'", settings.database_name)
    return client, database


def close_client(client: MongoClient) -> None:
    """Close the database connection opened by :func:`open_database`."""

    client.close()
    log.info("Database connection closed")


def create_indexes(database: Database) -> List[str]:
    """Create the indexes the batch tools rely on and return their names."""

    created = [
        database[Collection.PRODUCTS.value].create_index([("sku", ASCENDING)], unique=True),
        database[Collection.PRODUCTS.value].create_index(
            [("stockByBranch.branch", ASCENDING), ("stockByBranch.quantity", ASCENDING)]
        ),
        database[Collection.BRANCHES.value].create_index([("code", ASCENDING)], unique=True),
        database[Collection.CATEGORIES.value].create_index([("code", ASCENDING)], unique=True),
        database[Collection.USERS.value].create_index([("email", ASCENDING)], unique=True),
        database[Collection.CUSTOMERS.value].create_index([("customerNumber", ASCENDING)], unique=True),
        database[Collection.CUSTOMERS.value].create_index(
            [("registeredBranch", ASCENDING), ("isActive", ASCENDING)]
        ),
        database[Collection.SALES.value].create_index([("saleNumber", ASCENDING)], unique=True),
        database[Collection.SALES.value].create_index([("branch", ASCENDING), ("createdAt", DESCENDING)]),
        database[Collection.SALES.value].create_index([("customer", ASCENDING)]),
    ]
    log.info("Ensured %d indexes", len(created))
    return created


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def iter_branches(database: Database) -> Iterable[BranchRecord]:
    """Yield every branch ordered by branch code."""

    for raw in database[Collection.BRANCHES.value].find({}).sort("code", ASCENDING):
        yield deserialize_branch(raw)


def iter_categories(database: Database) -> Iterable[CategoryRecord]:
    """Yield every product category."""

    for raw in database[Collection.CATEGORIES.value].find({}):
        yield deserialize_category(raw)


def iter_products(database: Database) -> Iterable[ProductRecord]:
    """Yield products ordered by SKU."""

    for raw in database[Collection.PRODUCTS.value].find({}).sort("sku", ASCENDING):
        yield deserialize_product(raw)


def iter_users(
    database: Database,
    *,
    roles: Optional[Sequence[str]] = None,
    active_only: bool = True,
) -> Iterable[UserRecord]:
    """Yield users, optionally filtered by role membership and active flag."""

    query: Dict[str, Any] = {}
    if roles is not None:
        query["role"] = {"$in": list(roles)}
    if active_only:
        query["isActive"] = True
    for raw in database[Collection.USERS.value].find(query):
        yield deserialize_user(raw)


def find_user_by_email(database: Database, email: str) -> Optional[UserRecord]:
    raw = database[Collection.USERS.value].find_one({"email": email.lower()})
    return deserialize_user(raw) if raw is not None else None


def iter_customers(database: Database) -> Iterable[CustomerRecord]:
    """Yield customers ordered by customer number."""

    for raw in database[Collection.CUSTOMERS.value].find({}).sort("customerNumber", ASCENDING):
        yield deserialize_customer(raw)


def iter_sales(database: Database) -> Iterable[SaleRecord]:
    """Yield sales in sale-number order."""

    for raw in database[Collection.SALES.value].find({}).sort("saleNumber", ASCENDING):
        yield deserialize_sale(raw)


def count_documents(database: Database, collection: Collection) -> int:
    return database[collection.value].count_documents({})


def max_sale_sequence(database: Database, prefix: str) -> int:
    """Return the highest sequence suffix among stored sale numbers.

    Sale numbers embed the sale date ahead of the sequence, so lexical
    ordering does not give the highest sequence; every number is inspected.
    Numbers that do not follow ``{prefix}{YYYYMMDD}{sequence}`` are ignored.
    """

    pattern = re.compile(rf"^{re.escape(prefix)}\d{{8}}(\d+)$")
    highest = 0
    cursor = database[Collection.SALES.value].find({}, {"saleNumber": 1, "_id": 0})
    for raw in cursor:
        match = pattern.match(str(raw.get("saleNumber", "")))
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def insert_documents(
    database: Database,
    collection: Collection,
    documents: Sequence[Mapping[str, Any]],
) -> List[Mapping[str, Any]]:
    """Bulk insert ``documents`` and return the ones the server accepted.

    Inserts run unordered so a single bad document does not abort the batch.
    When the driver reports a :class:`~pymongo.errors.BulkWriteError` the
    documents at the failing indices are dropped, the first few write errors
    are logged, and the remainder are returned. If nothing was inserted the
    error propagates.

    Args:
        database (Database): Target database.
        collection (Collection): Destination collection.
        documents (Sequence[Mapping[str, Any]]): Documents carrying their own
            ``_id`` values.

    Returns:
        list[Mapping[str, Any]]: Documents that were written.
    """

    if not documents:
        return []

    try:
        database[collection.value].insert_many(list(documents), ordered=False)
        return list(documents)
    except BulkWriteError as error:
        details = error.details or {}
        write_errors = details.get("writeErrors", [])
        inserted_count = details.get("nInserted", 0)
        if inserted_count == 0:
            raise
        failed = {entry.get("index") for entry in write_errors}
        inserted = [doc for index, doc in enumerate(documents) if index not in failed]
        log.warning(
            "Partial insert into '%s': %d/%d documents written",
            collection.value,
            len(inserted),
            len(documents),
        )
        for entry in write_errors[:3]:
            log.warning("  write error at index %s: %s", entry.get("index"), entry.get("errmsg"))
        return inserted


def delete_all(database: Database, collection: Collection) -> int:
    """Remove every document from ``collection`` and return the count."""

    result = database[collection.value].delete_many({})
    return result.deleted_count


def replace_stock(database: Database, product_id: ObjectId, stock: Sequence[StockRecord]) -> None:
    """Overwrite the ``stockByBranch`` list of a single product."""

    database[Collection.PRODUCTS.value].update_one(
        {"_id": product_id},
        {"$set": {"stockByBranch": [serialize_stock(entry) for entry in stock]}},
    )


def clear_all_stock(database: Database) -> int:
    """Empty ``stockByBranch`` on every product; returns the matched count."""

    result = database[Collection.PRODUCTS.value].update_many({}, {"$set": {"stockByBranch": []}})
    return result.matched_count


def update_customer_stats(database: Database, customer: CustomerRecord) -> None:
    """Persist the cumulative purchase fields of ``customer``."""

    document = serialize_customer(customer)
    fields = (
        "totalSpent",
        "totalPurchases",
        "averageOrderValue",
        "loyaltyTier",
        "firstPurchaseDate",
        "lastPurchaseDate",
    )
    database[Collection.CUSTOMERS.value].update_one(
        {"_id": customer.customer_id},
        {"$set": {name: document[name] for name in fields}},
    )


def upsert_document(
    database: Database,
    collection: Collection,
    key_field: str,
    document: Mapping[str, Any],
    *,
    insert_only: Sequence[str] = (),
) -> ObjectId:
    """Insert or update a document identified by ``key_field``.

    The existing ``_id`` is preserved on update so references held by other
    collections remain valid. Fields named in ``insert_only`` are written when
    the document is created and left alone on update.

    Returns:
        ObjectId: Identifier of the stored document.
    """

    on_insert = {name: document[name] for name in insert_only if name in document}
    on_insert["_id"] = document.get("_id") or ObjectId()
    payload = {
        name: value for name, value in document.items() if name != "_id" and name not in on_insert
    }
    stored = database[collection.value].find_one_and_update(
        {key_field: document[key_field]},
        {"$set": payload, "$setOnInsert": on_insert},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return stored["_id"]


def reserve_sequence(database: Database, key: str, *, floor: int = 0) -> int:
    """Atomically allocate the next value of the named counter.

    The counter is first raised to at least ``floor`` so numbering never
    collides with identifiers already present in the store, then incremented
    with ``findAndModify`` semantics.
    """

    counters = database[Collection.COUNTERS.value]
    counters.update_one({"_id": key}, {"$max": {"value": floor}}, upsert=True)
    stored = counters.find_one_and_update(
        {"_id": key},
        {"$inc": {"value": 1}},
        return_document=ReturnDocument.AFTER,
    )
    return int(stored["value"])


def reset_sequence(database: Database, key: str) -> None:
    database[Collection.COUNTERS.value].delete_one({"_id": key})


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _money_out(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def _decimal_in(raw: object, default: str = "0") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _optional_decimal_in(raw: object) -> Optional[Decimal]:
    return Decimal(str(raw)) if raw is not None else None


def _datetime_in(raw: object) -> Optional[datetime]:
    if not isinstance(raw, datetime):
        return None
    return raw if raw.tzinfo is not None else raw.replace(tzinfo=UTC)


def serialize_branch(record: BranchRecord) -> Dict[str, Any]:
    return {
        "_id": record.branch_id,
        "code": record.code,
        "name": record.name,
        "address": {"city": record.city, "state": record.state},
        "contact": {"phone": record.phone, "email": record.email},
        "isPrimary": record.is_primary,
        "isActive": record.is_active,
        "settings": {"taxRate": _money_out(record.tax_rate), "currency": record.currency},
    }


def deserialize_branch(raw: Mapping[str, Any]) -> BranchRecord:
    address = raw.get("address") or {}
    contact = raw.get("contact") or {}
    settings = raw.get("settings") or {}
    return BranchRecord(
        branch_id=raw["_id"],
        code=str(raw.get("code", "")),
        name=str(raw.get("name", "")),
        city=str(address.get("city", "")),
        state=str(address.get("state", "")),
        phone=str(contact.get("phone", "")),
        email=str(contact.get("email", "")),
        is_primary=bool(raw.get("isPrimary", False)),
        is_active=bool(raw.get("isActive", True)),
        tax_rate=_decimal_in(settings.get("taxRate"), "18"),
        currency=str(settings.get("currency", "INR")),
    )


def serialize_category(record: CategoryRecord) -> Dict[str, Any]:
    return {
        "_id": record.category_id,
        "code": record.code,
        "name": record.name,
        "gstRate": _money_out(record.gst_rate),
    }


def deserialize_category(raw: Mapping[str, Any]) -> CategoryRecord:
    rate = raw.get("gstRate", raw.get("taxRate"))
    return CategoryRecord(
        category_id=raw["_id"],
        code=str(raw.get("code", "")),
        name=str(raw.get("name", "")),
        gst_rate=_optional_decimal_in(rate),
    )


def serialize_stock(record: StockRecord) -> Dict[str, Any]:
    return {
        "branch": record.branch_id,
        "quantity": record.quantity,
        "reorderLevel": record.reorder_level,
        "maxStockLevel": record.max_stock_level,
        "reservedQuantity": record.reserved_quantity,
        "location": record.location,
        "lastRestocked": record.last_restocked,
    }


def deserialize_stock(raw: Mapping[str, Any]) -> StockRecord:
    return StockRecord(
        branch_id=raw["branch"],
        quantity=int(raw.get("quantity", 0)),
        reorder_level=int(raw.get("reorderLevel", 10)),
        max_stock_level=int(raw.get("maxStockLevel", 1000)),
        reserved_quantity=int(raw.get("reservedQuantity", 0) or 0),
        location=raw.get("location"),
        last_restocked=_datetime_in(raw.get("lastRestocked")),
    )


def serialize_product(record: ProductRecord) -> Dict[str, Any]:
    return {
        "_id": record.product_id,
        "sku": record.sku,
        "name": record.name,
        "category": record.category_id,
        "pricing": {
            "costPrice": _money_out(record.cost_price),
            "sellingPrice": _money_out(record.selling_price),
            "mrp": _money_out(record.mrp),
            "gstRate": _money_out(record.gst_rate),
        },
        "isActive": record.is_active,
        "stockByBranch": [serialize_stock(entry) for entry in record.stock_by_branch],
    }


def deserialize_product(raw: Mapping[str, Any]) -> ProductRecord:
    """Convert a product document into a :class:`ProductRecord`.

    Older documents store the GST percentage under ``pricing.taxRate``; it is
    accepted as a fallback for ``pricing.gstRate``.
    """

    pricing = raw.get("pricing") or {}
    gst_raw = pricing.get("gstRate", pricing.get("taxRate"))
    return ProductRecord(
        product_id=raw["_id"],
        sku=str(raw.get("sku", "")),
        name=str(raw.get("name", "")),
        category_id=raw.get("category"),
        cost_price=_decimal_in(pricing.get("costPrice")),
        selling_price=_decimal_in(pricing.get("sellingPrice")),
        mrp=_optional_decimal_in(pricing.get("mrp")),
        gst_rate=_decimal_in(gst_raw, "18"),
        is_active=bool(raw.get("isActive", True)),
        stock_by_branch=tuple(deserialize_stock(entry) for entry in raw.get("stockByBranch") or []),
    )


def serialize_user(record: UserRecord) -> Dict[str, Any]:
    return {
        "_id": record.user_id,
        "email": record.email.lower(),
        "fullName": record.full_name,
        "role": record.role,
        "branch": record.branch_id,
        "isActive": record.is_active,
    }


def deserialize_user(raw: Mapping[str, Any]) -> UserRecord:
    return UserRecord(
        user_id=raw["_id"],
        email=str(raw.get("email", "")),
        full_name=str(raw.get("fullName", "")),
        role=str(raw.get("role", "")),
        branch_id=raw.get("branch"),
        is_active=bool(raw.get("isActive", True)),
    )


def serialize_customer(record: CustomerRecord) -> Dict[str, Any]:
    return {
        "_id": record.customer_id,
        "customerNumber": record.customer_number,
        "firstName": record.first_name,
        "lastName": record.last_name,
        "email": record.email,
        "phone": record.phone,
        "customerGroup": record.customer_group,
        "registeredBranch": record.registered_branch_id,
        "totalSpent": _money_out(record.total_spent),
        "totalPurchases": record.total_purchases,
        "averageOrderValue": _money_out(record.average_order_value),
        "loyaltyPoints": record.loyalty_points,
        "loyaltyTier": record.loyalty_tier,
        "creditLimit": _money_out(record.credit_limit),
        "currentBalance": _money_out(record.current_balance),
        "isActive": record.is_active,
        "firstPurchaseDate": record.first_purchase_date,
        "lastPurchaseDate": record.last_purchase_date,
        "createdBy": record.created_by,
    }


def deserialize_customer(raw: Mapping[str, Any]) -> CustomerRecord:
    return CustomerRecord(
        customer_id=raw["_id"],
        customer_number=str(raw.get("customerNumber", "")),
        first_name=str(raw.get("firstName", "")),
        last_name=str(raw.get("lastName", "")),
        phone=str(raw.get("phone", "")),
        registered_branch_id=raw.get("registeredBranch"),
        email=raw.get("email"),
        customer_group=str(raw.get("customerGroup", "regular")),
        total_spent=_decimal_in(raw.get("totalSpent")),
        total_purchases=int(raw.get("totalPurchases", 0) or 0),
        average_order_value=_decimal_in(raw.get("averageOrderValue")),
        loyalty_points=int(raw.get("loyaltyPoints", 0) or 0),
        loyalty_tier=str(raw.get("loyaltyTier", "bronze")),
        credit_limit=_decimal_in(raw.get("creditLimit")),
        current_balance=_decimal_in(raw.get("currentBalance")),
        is_active=bool(raw.get("isActive", True)),
        first_purchase_date=_datetime_in(raw.get("firstPurchaseDate")),
        last_purchase_date=_datetime_in(raw.get("lastPurchaseDate")),
        created_by=raw.get("createdBy"),
    )


def serialize_sale_item(record: SaleItemRecord) -> Dict[str, Any]:
    return {
        "product": record.product_id,
        "productName": record.product_name,
        "sku": record.sku,
        "quantity": record.quantity,
        "unitPrice": _money_out(record.unit_price),
        "costPrice": _money_out(record.cost_price),
        "discount": _money_out(record.discount),
        "discountAmount": _money_out(record.discount_amount),
        "taxableAmount": _money_out(record.taxable_amount),
        "taxRate": _money_out(record.tax_rate),
        "taxAmount": _money_out(record.tax_amount),
        "lineTotal": _money_out(record.line_total),
    }


def deserialize_sale_item(raw: Mapping[str, Any]) -> SaleItemRecord:
    """Convert a stored line item, tolerating the older ``total``/``tax`` keys."""

    return SaleItemRecord(
        product_id=raw.get("product"),
        product_name=str(raw.get("productName", "")),
        sku=str(raw.get("sku", "")),
        quantity=int(raw.get("quantity", 0)),
        unit_price=_decimal_in(raw.get("unitPrice")),
        cost_price=_decimal_in(raw.get("costPrice")),
        discount=_decimal_in(raw.get("discount")),
        discount_amount=_decimal_in(raw.get("discountAmount")),
        taxable_amount=_decimal_in(raw.get("taxableAmount")),
        tax_rate=_decimal_in(raw.get("taxRate")),
        tax_amount=_decimal_in(raw.get("taxAmount", raw.get("tax"))),
        line_total=_decimal_in(raw.get("lineTotal", raw.get("total"))),
    )


def serialize_sale(record: SaleRecord) -> Dict[str, Any]:
    payment = record.payment
    return {
        "_id": record.sale_id,
        "saleNumber": record.sale_number,
        "invoiceNumber": record.invoice_number,
        "branch": record.branch_id,
        "customer": record.customer_id,
        "customerName": record.customer_name,
        "items": [serialize_sale_item(item) for item in record.items],
        "subtotal": _money_out(record.subtotal),
        "totalDiscount": _money_out(record.total_discount),
        "totalTax": _money_out(record.total_tax),
        "total": _money_out(record.total),
        "paymentMethod": payment.method,
        "payment": {
            "method": payment.method,
            "amount": _money_out(payment.amount),
            "reference": payment.reference,
            "cashTendered": _money_out(payment.cash_tendered),
            "changeAmount": _money_out(payment.change_amount),
        },
        "status": record.status,
        "createdBy": record.created_by,
        "createdAt": record.created_at,
    }


def deserialize_sale(raw: Mapping[str, Any]) -> SaleRecord:
    """Convert a sale document into a :class:`SaleRecord`.

    Documents written by older tooling carry ``discountAmount``/``taxAmount``
    at sale level instead of ``totalDiscount``/``totalTax``; both spellings
    are accepted.
    """

    payment_raw = raw.get("payment") or {}
    method = str(payment_raw.get("method", raw.get("paymentMethod", "")))
    payment = PaymentRecord(
        method=method,
        amount=_decimal_in(payment_raw.get("amount", raw.get("total"))),
        reference=payment_raw.get("reference", raw.get("paymentReference")),
        cash_tendered=_optional_decimal_in(payment_raw.get("cashTendered")),
        change_amount=_decimal_in(payment_raw.get("changeAmount", raw.get("changeAmount"))),
    )
    return SaleRecord(
        sale_id=raw["_id"],
        sale_number=str(raw.get("saleNumber", "")),
        invoice_number=str(raw.get("invoiceNumber", "")),
        branch_id=raw.get("branch"),
        customer_id=raw.get("customer"),
        customer_name=raw.get("customerName"),
        items=tuple(deserialize_sale_item(item) for item in raw.get("items") or []),
        subtotal=_decimal_in(raw.get("subtotal")),
        total_discount=_decimal_in(raw.get("totalDiscount", raw.get("discountAmount"))),
        total_tax=_decimal_in(raw.get("totalTax", raw.get("taxAmount"))),
        total=_decimal_in(raw.get("total")),
        payment=payment,
        status=str(raw.get("status", "completed")),
        created_by=raw.get("createdBy"),
        created_at=_datetime_in(raw.get("createdAt")) or datetime.fromtimestamp(0, UTC),
    )
