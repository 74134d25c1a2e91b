"""
Pytest configuration and fixtures for retail warehouse ETL tests

This module provides shared fixtures for unit and integration tests.
"""
import os
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Generator

import psycopg
import pytest

from retail_dw.core.config import EtlConfig
from retail_dw.core.models import SourceCustomer, SourceProduct, SourceTransaction
from retail_dw.etl.pipeline import EtlPipeline
from retail_dw.warehouse.memory_store import InMemoryWarehouseStore
from retail_dw.warehouse.source import InMemorySourceReader


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# CLOCK FIXTURES
# =======================

class FakeClock:
    """Settable wall clock; advance() moves it forward."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class FakeTimer:
    """Monotonic timer that only moves when told to."""

    def __init__(self):
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 15, 2, 0, 0))


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


# =======================
# SOURCE DATA FACTORIES
# =======================

def make_customer(customer_id: int = 1, **overrides) -> SourceCustomer:
    data = {
        "customer_id": customer_id,
        "name": f"Customer {customer_id}",
        "email": f"customer{customer_id}@example.com",
        "phone": "9800000000",
        "city": "Pune",
        "state": "Maharashtra",
        "zip_code": "411001",
        "tier_name": "Silver",
        "total_spent": Decimal("0"),
        "updated_at": datetime(2024, 1, 10, 9, 0),
    }
    data.update(overrides)
    return SourceCustomer(**data)


def make_product(product_id: int = 1, **overrides) -> SourceProduct:
    data = {
        "product_id": product_id,
        "sku": f"SKU-{product_id:04d}",
        "name": f"Product {product_id}",
        "category_id": 1,
        "category_name": "Electronics",
        "price": Decimal("1200.00"),
        "cost_price": Decimal("800.00"),
        "updated_at": datetime(2024, 1, 10, 9, 0),
    }
    data.update(overrides)
    return SourceProduct(**data)


def make_transaction(transaction_id: int, **overrides) -> SourceTransaction:
    data = {
        "transaction_id": transaction_id,
        "sale_id": transaction_id,
        "customer_id": 1,
        "product_id": 1,
        "employee_id": 3,
        "payment_method_id": 2,
        "sale_date": datetime(2024, 1, 15, 1, 30),
        "status": "completed",
        "quantity": 2,
        "unit_price": Decimal("1200.00"),
        "discount_pct": Decimal("10"),
        "line_total": Decimal("2160.00"),
    }
    data.update(overrides)
    return SourceTransaction(**data)


@pytest.fixture
def store() -> InMemoryWarehouseStore:
    return InMemoryWarehouseStore()


@pytest.fixture
def source(clock) -> InMemorySourceReader:
    """Two customers, two products and three completed sale lines; source time follows clock."""
    return InMemorySourceReader(
        customers=[
            make_customer(1),
            make_customer(2, city="Mumbai", total_spent=Decimal("60000")),
        ],
        products=[
            make_product(1),
            make_product(2, price=Decimal("55000.00"), cost_price=Decimal("40000.00")),
        ],
        transactions=[
            make_transaction(1),
            make_transaction(2, sale_id=1, product_id=2, quantity=1,
                             unit_price=Decimal("55000.00"), discount_pct=Decimal("0"),
                             line_total=Decimal("55000.00")),
            make_transaction(3, sale_id=2, customer_id=2, quantity=1,
                             discount_pct=Decimal("0"), line_total=Decimal("1200.00")),
        ],
        clock=clock,
    )


@pytest.fixture
def pipeline(store, source, clock, timer) -> EtlPipeline:
    return EtlPipeline(store, source, EtlConfig(), clock=clock, timer=timer)


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "fixtures")


@pytest.fixture(scope="session")
def postgres_container():
    """
    Start PostgreSQL container for integration tests

    Loads the operational source schema from tests/fixtures/source_schema.sql.
    Skips when Docker is not available.

    Yields:
        PostgresContainer instance
    """
    testcontainers_postgres = pytest.importorskip("testcontainers.postgres")

    try:
        container = testcontainers_postgres.PostgresContainer(
            image="postgres:16.2-alpine",
            username="test_etl",
            password="test_password",
            dbname="test_retail_dw",
        )
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available: {e}")

    try:
        with open(os.path.join(FIXTURES_DIR, "source_schema.sql")) as f:
            source_sql = f.read()

        conninfo = (
            f"host={container.get_container_host_ip()} "
            f"port={container.get_exposed_port(5432)} "
            f"dbname=test_retail_dw user=test_etl password=test_password"
        )
        with psycopg.connect(conninfo) as conn:
            with conn.cursor() as cur:
                cur.execute(source_sql)
            conn.commit()

        yield container
    finally:
        container.stop()


@pytest.fixture
def db_pool(postgres_container) -> Generator:
    """
    Open a connection pool against a freshly created, empty warehouse schema

    Yields:
        DatabaseConnectionPool
    """
    from retail_dw.warehouse.connection import DatabaseConnectionPool
    from retail_dw.warehouse.schema_mgmt import SchemaManager

    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_retail_dw",
        user="test_etl",
        password="test_password",
        max_size=4,
    )
    pool.open()

    manager = SchemaManager(pool)
    manager.create_warehouse_schema()
    manager.truncate_warehouse()
    pool.execute_command(
        "TRUNCATE TABLE sales_details, sales, products, customers, "
        "categories, customer_tiers RESTART IDENTITY CASCADE"
    )

    yield pool

    pool.close()


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_env_vars():
    """
    Set test environment variables

    This fixture loads config/test.env and sets environment variables
    """
    from dotenv import load_dotenv

    env_path = os.path.join(
        os.path.dirname(os.path.dirname(__file__)),
        "config",
        "test.env"
    )

    if os.path.exists(env_path):
        load_dotenv(env_path, override=True)


# =======================
# FACTORY FIXTURES
# =======================

@pytest.fixture
def customer_factory():
    return make_customer


@pytest.fixture
def product_factory():
    return make_product


@pytest.fixture
def transaction_factory():
    return make_transaction
