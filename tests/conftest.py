"""Shared pytest fixtures and utilities for Supermart tests."""

from __future__ import annotations

import argparse
import random
import sys
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, Sequence

import mongomock
import pytest
from bson import ObjectId

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from supermart import cli, core_logic, data_manager  # noqa: E402
from supermart.constants import Collection  # noqa: E402

SYSTEM_USER_EMAIL = "admin@test.local"
FIXED_NOW = datetime(2024, 6, 30, 18, 0, 0, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[Database]\n"
    "Uri = {uri}\n"
    "Name = {name}\n\n"
    "[Store]\n"
    "ChainName = Test Mart\n"
    "Currency = INR\n\n"
    "[Defaults]\n"
    "SystemUserEmail = {system_user_email}\n\n"
    "[InventoryTargets]\n"
    "mum = 250000\n\n"
    "[SalesShare]\n"
    "MUM = 60\n"
    "DEL = 40\n"
)


@dataclass(frozen=True)
class SeededCatalog:
    """Identifiers of the master data written by ``seeded_context``."""

    branches: Sequence[data_manager.BranchRecord]
    categories: Sequence[data_manager.CategoryRecord]
    products: Sequence[data_manager.ProductRecord]
    system_user: data_manager.UserRecord
    cashier: data_manager.UserRecord


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def rng() -> random.Random:
    return random.Random(20240630)


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


# ---------------------------------------------------------------------------
# Configuration and database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a complete config.ini into a temporary folder."""

    config_path = tmp_path / "config.ini"
    config_path.write_text(
        _CONFIG_TEMPLATE.format(
            uri="mongodb://localhost:27017",
            name="supermart_test",
            system_user_email=SYSTEM_USER_EMAIL,
        )
    )
    return config_path


@pytest.fixture
def settings() -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        mongodb_uri="mongodb://localhost:27017",
        database_name="supermart_test",
        chain_name="Test Mart",
        currency="INR",
        system_user_email=SYSTEM_USER_EMAIL,
        default_inventory_target=Decimal("100000"),
    )


@pytest.fixture
def mongo_client() -> Iterator[mongomock.MongoClient]:
    client = mongomock.MongoClient()
    try:
        yield client
    finally:
        client.close()


@pytest.fixture
def database(mongo_client: mongomock.MongoClient, settings: data_manager.ConfigSettings):
    return mongo_client[settings.database_name]


@pytest.fixture
def runtime_context(
    settings: data_manager.ConfigSettings,
    mongo_client: mongomock.MongoClient,
    database,
) -> core_logic.RuntimeContext:
    """Assemble a runtime context around an in-memory database."""

    return core_logic.RuntimeContext(settings=settings, client=mongo_client, database=database)


# ---------------------------------------------------------------------------
# Record factories
# ---------------------------------------------------------------------------


@pytest.fixture
def branch_factory() -> Callable[..., data_manager.BranchRecord]:
    def _make(code: str = "MUM", *, is_primary: bool = False, **overrides) -> data_manager.BranchRecord:
        values = {
            "branch_id": ObjectId(),
            "code": code,
            "name": f"Supermart {code}",
            "city": code.title(),
            "is_primary": is_primary,
        }
        values.update(overrides)
        return data_manager.BranchRecord(**values)

    return _make


@pytest.fixture
def product_factory() -> Callable[..., data_manager.ProductRecord]:
    def _make(
        sku: str = "SKU-001",
        *,
        cost: str = "80",
        price: str = "100",
        gst: str = "18",
        stock: Sequence[data_manager.StockRecord] = (),
        **overrides,
    ) -> data_manager.ProductRecord:
        values = {
            "product_id": ObjectId(),
            "sku": sku,
            "name": f"Product {sku}",
            "category_id": ObjectId(),
            "cost_price": Decimal(cost),
            "selling_price": Decimal(price),
            "gst_rate": Decimal(gst),
            "stock_by_branch": tuple(stock),
        }
        values.update(overrides)
        return data_manager.ProductRecord(**values)

    return _make


@pytest.fixture
def customer_factory() -> Callable[..., data_manager.CustomerRecord]:
    counter = {"value": 0}

    def _make(branch_id: ObjectId, *, group: str = "regular", **overrides) -> data_manager.CustomerRecord:
        counter["value"] += 1
        values = {
            "customer_id": ObjectId(),
            "customer_number": f"CUS{counter['value']:06d}",
            "first_name": "Asha",
            "last_name": "Nair",
            "phone": "+919800000000",
            "registered_branch_id": branch_id,
            "customer_group": group,
        }
        values.update(overrides)
        return data_manager.CustomerRecord(**values)

    return _make


@pytest.fixture
def user_factory() -> Callable[..., data_manager.UserRecord]:
    def _make(email: str = "cashier@test.local", *, role: str = "Cashier", **overrides) -> data_manager.UserRecord:
        values = {"user_id": ObjectId(), "email": email, "full_name": "Test User", "role": role}
        values.update(overrides)
        return data_manager.UserRecord(**values)

    return _make


@pytest.fixture
def seeded_context(
    runtime_context: core_logic.RuntimeContext,
    branch_factory,
    user_factory,
) -> tuple[core_logic.RuntimeContext, SeededCatalog]:
    """Runtime context with branches, categories, products, and staff stored."""

    database = runtime_context.database
    branches = [
        branch_factory("BLR"),
        branch_factory("DEL"),
        branch_factory("MUM", is_primary=True),
    ]
    categories = [
        data_manager.CategoryRecord(category_id=ObjectId(), code="GROC", name="Groceries", gst_rate=Decimal("5")),
        data_manager.CategoryRecord(category_id=ObjectId(), code="ELEC", name="Electronics", gst_rate=Decimal("18")),
    ]
    costs = ("12", "18", "35", "60", "95", "120", "240", "480", "750", "1500", "15", "45")
    products = []
    for index, cost in enumerate(costs, start=1):
        category = categories[index % 2]
        products.append(
            data_manager.ProductRecord(
                product_id=ObjectId(),
                sku=f"SKU-{index:03d}",
                name=f"Product {index}",
                category_id=category.category_id,
                cost_price=Decimal(cost),
                selling_price=(Decimal(cost) * Decimal("1.25")).quantize(Decimal("0.01")),
                mrp=(Decimal(cost) * Decimal("1.4")).quantize(Decimal("0.01")),
                gst_rate=category.gst_rate,
            )
        )
    system_user = user_factory(SYSTEM_USER_EMAIL, role="Admin", full_name="System Administrator")
    cashier = user_factory("cashier@test.local", role="Cashier", branch_id=branches[2].branch_id)

    data_manager.insert_documents(database, Collection.BRANCHES, [data_manager.serialize_branch(b) for b in branches])
    data_manager.insert_documents(
        database, Collection.CATEGORIES, [data_manager.serialize_category(c) for c in categories]
    )
    data_manager.insert_documents(database, Collection.PRODUCTS, [data_manager.serialize_product(p) for p in products])
    data_manager.insert_documents(
        database, Collection.USERS, [data_manager.serialize_user(u) for u in (system_user, cashier)]
    )
    return runtime_context, SeededCatalog(branches, categories, products, system_user, cashier)


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="supermart-cli", description="Supermart CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
