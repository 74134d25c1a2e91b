"""
Unit tests for the PostgreSQL source reader, run over an in-process pool.
"""

import pytest
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal

import psycopg

from retail_dw.core.errors import InvalidSourceRow, SourceUnavailable
from retail_dw.warehouse.source import PostgresSourceReader


class RowsCursor:
    def __init__(self, rows):
        self.rows = rows
        self.itersize = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        self.params = params

    def __iter__(self):
        return iter(self.rows)


class RowsPool:
    """Hands out connections whose cursors yield fixed dict rows."""

    def __init__(self, rows=(), now=None, error=None):
        self.rows = list(rows)
        self.now = now
        self.error = error

    @contextmanager
    def get_connection(self):
        if self.error:
            raise self.error
        pool = self

        class Connection:
            def cursor(self, name=None):
                return RowsCursor(pool.rows)

        yield Connection()

    def execute_query(self, query, params=None):
        if self.error:
            raise self.error
        return [{"now": self.now}]


def sale_line(transaction_id, **overrides):
    row = {
        "transaction_id": transaction_id,
        "sale_id": 1,
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
        "cost_price": Decimal("800.00"),
    }
    row.update(overrides)
    return row


@pytest.mark.unit
class TestPostgresSourceReader:

    def test_streams_rows_as_models(self):
        reader = PostgresSourceReader(RowsPool([sale_line(1), sale_line(2)]), fetch_size=1)
        lines = list(reader.iter_transactions(0))
        assert [t.transaction_id for t in lines] == [1, 2]
        assert lines[0].cost_price == Decimal("800.00")

    def test_invalid_row_raises_with_table_and_key(self):
        reader = PostgresSourceReader(RowsPool([sale_line(1), sale_line(2, quantity=0)]))
        rows = reader.iter_transactions(0)

        assert next(rows).transaction_id == 1
        with pytest.raises(InvalidSourceRow) as exc_info:
            next(rows)

        error = exc_info.value
        assert isinstance(error, SourceUnavailable)
        assert error.source_table == "sales"
        assert error.row_key == 2
        assert "quantity" in str(error)

    def test_null_price_is_invalid(self):
        product = {
            "product_id": 7, "sku": "SKU-0007", "name": "Kettle", "category_id": 1,
            "category_name": "Home", "price": None, "cost_price": None,
            "updated_at": datetime(2024, 1, 10, 9, 0),
        }
        reader = PostgresSourceReader(RowsPool([product]))
        with pytest.raises(InvalidSourceRow) as exc_info:
            list(reader.iter_products())
        assert exc_info.value.source_table == "products"
        assert exc_info.value.row_key == 7

    def test_read_failure_maps_to_source_unavailable(self):
        reader = PostgresSourceReader(RowsPool(error=psycopg.OperationalError("connection refused")))
        with pytest.raises(SourceUnavailable, match="connection refused"):
            list(reader.iter_customers())

    def test_now_reads_database_clock(self):
        db_time = datetime(2024, 1, 15, 8, 30)
        assert PostgresSourceReader(RowsPool(now=db_time)).now() == db_time

    def test_now_failure_maps_to_source_unavailable(self):
        reader = PostgresSourceReader(RowsPool(error=psycopg.OperationalError("timeout")))
        with pytest.raises(SourceUnavailable):
            reader.now()
