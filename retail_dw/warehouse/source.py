"""
Readers for the operational source tables.

The engine consumes three sources: customers (joined to customer_tiers),
products (joined to categories) and sale lines (sales_details joined to
sales and products). Readers yield rows lazily and report any read failure
as SourceUnavailable.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterator

import psycopg
from pydantic import BaseModel, ValidationError

from retail_dw.core.errors import InvalidSourceRow, SourceUnavailable
from retail_dw.core.models import SourceCustomer, SourceProduct, SourceTransaction
from retail_dw.observability.logger import get_logger

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

SOURCE_TABLES = ("customers", "products", "sales")


class SourceReader(ABC):
    """
    Abstract reader over the operational tables.
    """

    def iter_rows(self, source_table: str) -> Iterator[BaseModel]:
        """
        Iterate the rows of a timestamped source table.

        Args:
            source_table: "customers" or "products"
        """
        if source_table == "customers":
            return self.iter_customers()
        if source_table == "products":
            return self.iter_products()
        raise ValueError(f"Unknown source table '{source_table}'")

    @abstractmethod
    def now(self) -> datetime:
        """
        Current time on the source clock.

        Checkpoint timestamps are compared with updated_at values written by
        the source, so they must come from the same clock.
        """

    @abstractmethod
    def iter_customers(self) -> Iterator[SourceCustomer]:
        ...

    @abstractmethod
    def iter_products(self) -> Iterator[SourceProduct]:
        ...

    @abstractmethod
    def iter_transactions(self, after_id: int = 0) -> Iterator[SourceTransaction]:
        """Sale lines with transaction_id > after_id, in id order."""


class InMemorySourceReader(SourceReader):
    """
    Source reader over plain Python collections.

    Rows are keyed by natural key, so upsert_* replaces a row the way an
    UPDATE would in the operational database.
    """

    def __init__(
        self,
        customers: list[SourceCustomer] | None = None,
        products: list[SourceProduct] | None = None,
        transactions: list[SourceTransaction] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.customers: dict[int, SourceCustomer] = {}
        self.products: dict[int, SourceProduct] = {}
        self.transactions: dict[int, SourceTransaction] = {}
        self.clock = clock
        for customer in customers or []:
            self.upsert_customer(customer)
        for product in products or []:
            self.upsert_product(product)
        for transaction in transactions or []:
            self.add_transaction(transaction)

    def now(self) -> datetime:
        return self.clock()

    def upsert_customer(self, customer: SourceCustomer) -> None:
        self.customers[customer.customer_id] = customer

    def upsert_product(self, product: SourceProduct) -> None:
        self.products[product.product_id] = product

    def add_transaction(self, transaction: SourceTransaction) -> None:
        self.transactions[transaction.transaction_id] = transaction

    def iter_customers(self) -> Iterator[SourceCustomer]:
        for customer_id in sorted(self.customers):
            yield self.customers[customer_id]

    def iter_products(self) -> Iterator[SourceProduct]:
        for product_id in sorted(self.products):
            yield self.products[product_id]

    def iter_transactions(self, after_id: int = 0) -> Iterator[SourceTransaction]:
        for transaction_id in sorted(self.transactions):
            if transaction_id <= after_id:
                continue
            transaction = self.transactions[transaction_id]
            product = self.products.get(transaction.product_id)
            cost_price = product.cost_price if product and product.cost_price is not None else Decimal("0")
            yield transaction.model_copy(update={"cost_price": cost_price})


CUSTOMERS_QUERY = """
    SELECT c.customer_id, c.name, c.email, c.phone, c.city, c.state, c.zip_code,
           ct.tier_name, COALESCE(c.total_spent, 0) AS total_spent, c.updated_at
    FROM customers c
    LEFT JOIN customer_tiers ct ON c.tier_id = ct.tier_id
    ORDER BY c.customer_id
"""

PRODUCTS_QUERY = """
    SELECT p.product_id, p.sku, p.name, p.category_id, cat.category_name,
           p.price, p.cost_price, p.updated_at
    FROM products p
    LEFT JOIN categories cat ON p.category_id = cat.category_id
    ORDER BY p.product_id
"""

TRANSACTIONS_QUERY = """
    SELECT sd.sale_detail_id AS transaction_id, s.sale_id, s.customer_id,
           sd.product_id, s.employee_id, s.payment_method_id, s.sale_date,
           s.status, sd.quantity, sd.unit_price,
           COALESCE(sd.discount, 0) AS discount_pct, sd.line_total,
           COALESCE(p.cost_price, 0) AS cost_price
    FROM sales_details sd
    JOIN sales s ON s.sale_id = sd.sale_id
    JOIN products p ON p.product_id = sd.product_id
    WHERE sd.sale_detail_id > %s
    ORDER BY sd.sale_detail_id
"""


class PostgresSourceReader(SourceReader):
    """
    Reads the operational tables through server-side cursors.
    """

    def __init__(self, pool: DatabaseConnectionPool, fetch_size: int = 1000):
        """
        Initialize source reader.

        Args:
            pool: Connection pool pointing at the operational database
            fetch_size: Rows fetched per round trip
        """
        self.pool = pool
        self.fetch_size = fetch_size

    def now(self) -> datetime:
        # LOCALTIMESTAMP matches the naive updated_at columns
        try:
            rows = self.pool.execute_query("SELECT LOCALTIMESTAMP AS now")
        except (psycopg.Error, RuntimeError) as e:
            raise SourceUnavailable("clock", str(e)) from e
        return rows[0]["now"]

    def _stream(
        self,
        source_table: str,
        query: str,
        params: tuple,
        model: type[BaseModel],
        key_field: str,
    ):
        cursor_name = f"etl_{source_table}_{datetime.now():%H%M%S%f}"
        try:
            with self.pool.get_connection() as conn:
                with conn.cursor(name=cursor_name) as cur:
                    cur.itersize = self.fetch_size
                    cur.execute(query, params)
                    for row in cur:
                        try:
                            record = model(**row)
                        except ValidationError as e:
                            error = e.errors()[0]
                            field_name = ".".join(str(p) for p in error["loc"])
                            logger.error(
                                f"Invalid row in source table {source_table}",
                                extra={"row_key": row.get(key_field), "errors": e.error_count()}
                            )
                            raise InvalidSourceRow(
                                source_table, f"{field_name}: {error['msg']}", row.get(key_field)
                            ) from e
                        yield record
        except psycopg.Error as e:
            logger.error(f"Failed to read source table {source_table}: {e}")
            raise SourceUnavailable(source_table, str(e)) from e
        except RuntimeError as e:
            raise SourceUnavailable(source_table, str(e)) from e

    def iter_customers(self) -> Iterator[SourceCustomer]:
        return self._stream("customers", CUSTOMERS_QUERY, (), SourceCustomer, "customer_id")

    def iter_products(self) -> Iterator[SourceProduct]:
        return self._stream("products", PRODUCTS_QUERY, (), SourceProduct, "product_id")

    def iter_transactions(self, after_id: int = 0) -> Iterator[SourceTransaction]:
        return self._stream(
            "sales", TRANSACTIONS_QUERY, (after_id,), SourceTransaction, "transaction_id"
        )
