"""
PostgreSQL implementation of the warehouse store.

Stage writes run on one pooled connection inside a single transaction that
also holds a transaction-scoped advisory lock per source. Job log writes go
through their own pooled connections so a failure record is never rolled
back together with the stage it describes.
"""

from contextlib import contextmanager
from datetime import date
from typing import Iterable, NamedTuple

import psycopg
from psycopg import errors

from retail_dw.core.errors import (
    ConcurrentRunError,
    IntegrityViolation,
    PartialWriteFailure,
    PipelineTimeout,
)
from retail_dw.core.models import (
    Checkpoint,
    DailySalesSummary,
    DimensionRecord,
    JobRun,
    SalesFact,
)
from retail_dw.observability.logger import get_logger

from .connection import DatabaseConnectionPool
from .store import WarehouseStore

logger = get_logger(__name__)


class DimensionTable(NamedTuple):
    table: str
    surrogate_column: str
    natural_column: str
    attribute_columns: tuple[str, ...]


DIMENSION_TABLES = {
    "customer": DimensionTable(
        "dim_customer",
        "customer_key",
        "customer_id",
        ("name", "email", "phone", "city", "state", "zip_code", "tier_name", "segment"),
    ),
    "product": DimensionTable(
        "dim_product",
        "product_key",
        "product_id",
        ("sku", "name", "category_id", "category_name", "price", "cost_price", "price_range"),
    ),
}

FACT_COLUMNS = (
    "date_key", "time_key", "customer_key", "product_key", "employee_key",
    "payment_key", "geo_key", "transaction_id", "sale_id", "quantity",
    "unit_price", "discount_amount", "tax_amount", "line_total",
    "cost_amount", "profit_amount",
)

SUMMARY_COLUMNS = (
    "date_key", "geo_key", "total_transactions", "total_customers",
    "total_products_sold", "gross_sales", "total_discount", "net_sales",
    "total_cost", "gross_profit", "avg_transaction_value",
)

JOB_COLUMNS = """
    job_id, job_name, start_time, end_time, status, rows_processed,
    rows_inserted, rows_updated, rows_deleted, error_message
"""


def _job_from_row(row: dict) -> JobRun:
    data = dict(row)
    data["run_id"] = data.pop("job_id")
    return JobRun(**data)


def _checkpoint_from_row(row: dict) -> Checkpoint:
    return Checkpoint(
        source_name=row["source_table"],
        last_extracted_id=row["last_extracted_id"],
        last_extracted_timestamp=row["last_extracted_timestamp"],
        last_run_time=row["last_run_time"],
    )


class PostgresWarehouseStore(WarehouseStore):
    """
    Warehouse store backed by the tables created by SchemaManager.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize the store.

        Args:
            pool: Database connection pool
        """
        self.pool = pool
        self._conn: psycopg.Connection | None = None

    @contextmanager
    def transaction(self, lock_key: str | None = None, timeout_seconds: float | None = None):
        if self._conn is not None:
            raise RuntimeError("Nested transactions are not supported")

        try:
            with self.pool.get_connection() as conn:
                with conn.transaction():
                    self._conn = conn
                    try:
                        # Bound every statement by the time left in the run
                        if timeout_seconds is not None:
                            conn.execute(
                                "SELECT set_config('statement_timeout', %s, true)",
                                (str(int(timeout_seconds * 1000)),),
                            )
                        # Single writer per source, released at commit or rollback
                        if lock_key is not None:
                            row = conn.execute(
                                "SELECT pg_try_advisory_xact_lock(hashtext(%s)) AS locked",
                                (lock_key,),
                            ).fetchone()
                            if not row["locked"]:
                                raise ConcurrentRunError(lock_key)
                        yield self
                    finally:
                        self._conn = None
        except errors.QueryCanceled as e:
            raise PipelineTimeout(f"Statement timeout exceeded: {e}") from e
        except errors.IntegrityError as e:
            raise IntegrityViolation(str(e)) from e
        except psycopg.Error as e:
            logger.error(f"Warehouse transaction rolled back: {e}")
            raise PartialWriteFailure(str(e)) from e

    @contextmanager
    def _cursor(self):
        """Cursor on the open transaction, or on a short autocommitted one."""
        if self._conn is not None:
            with self._conn.cursor() as cur:
                yield cur
        else:
            with self.pool.get_connection() as conn:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()

    # -- checkpoints -------------------------------------------------------

    def get_checkpoint(self, source_name: str) -> Checkpoint | None:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT source_table, last_extracted_id, last_extracted_timestamp, last_run_time
                FROM etl_checkpoint
                WHERE source_table = %s
                """,
                (source_name,),
            )
            row = cur.fetchone()
        return _checkpoint_from_row(row) if row else None

    def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO etl_checkpoint
                    (source_table, last_extracted_id, last_extracted_timestamp, last_run_time)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (source_table) DO UPDATE SET
                    last_extracted_id = EXCLUDED.last_extracted_id,
                    last_extracted_timestamp = EXCLUDED.last_extracted_timestamp,
                    last_run_time = EXCLUDED.last_run_time,
                    updated_at = NOW()
                """,
                (
                    checkpoint.source_name,
                    checkpoint.last_extracted_id,
                    checkpoint.last_extracted_timestamp,
                    checkpoint.last_run_time,
                ),
            )

    def delete_checkpoint(self, source_name: str) -> bool:
        with self._cursor() as cur:
            cur.execute("DELETE FROM etl_checkpoint WHERE source_table = %s", (source_name,))
            return cur.rowcount > 0

    def list_checkpoints(self) -> list[Checkpoint]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT source_table, last_extracted_id, last_extracted_timestamp, last_run_time
                FROM etl_checkpoint
                ORDER BY last_run_time DESC
                """
            )
            return [_checkpoint_from_row(r) for r in cur.fetchall()]

    # -- job log (autonomous) ----------------------------------------------

    def insert_job_run(self, run: JobRun) -> int:
        rows = self.pool.execute_query(
            """
            INSERT INTO etl_job_log (job_name, start_time, status)
            VALUES (%s, %s, %s)
            RETURNING job_id
            """,
            (run.job_name, run.start_time, run.status),
        )
        return rows[0]["job_id"]

    def update_job_run(self, run: JobRun) -> None:
        self.pool.execute_command(
            """
            UPDATE etl_job_log
            SET end_time = %s,
                status = %s,
                rows_processed = %s,
                rows_inserted = %s,
                rows_updated = %s,
                rows_deleted = %s,
                error_message = %s
            WHERE job_id = %s
            """,
            (
                run.end_time,
                run.status,
                run.rows_processed,
                run.rows_inserted,
                run.rows_updated,
                run.rows_deleted,
                run.error_message,
                run.run_id,
            ),
        )

    def get_job_run(self, run_id: int) -> JobRun | None:
        rows = self.pool.execute_query(
            f"SELECT {JOB_COLUMNS} FROM etl_job_log WHERE job_id = %s", (run_id,)
        )
        return _job_from_row(rows[0]) if rows else None

    def list_job_runs(self, limit: int = 50, status: str | None = None) -> list[JobRun]:
        if status:
            rows = self.pool.execute_query(
                f"""
                SELECT {JOB_COLUMNS} FROM etl_job_log
                WHERE status = %s
                ORDER BY start_time DESC, job_id DESC
                LIMIT %s
                """,
                (status, limit),
            )
        else:
            rows = self.pool.execute_query(
                f"""
                SELECT {JOB_COLUMNS} FROM etl_job_log
                ORDER BY start_time DESC, job_id DESC
                LIMIT %s
                """,
                (limit,),
            )
        return [_job_from_row(r) for r in rows]

    # -- dimensions --------------------------------------------------------

    def _record_from_row(self, spec: DimensionTable, row: dict) -> DimensionRecord:
        return DimensionRecord(
            surrogate_key=row[spec.surrogate_column],
            natural_key=row[spec.natural_column],
            attributes={c: row[c] for c in spec.attribute_columns},
            effective_date=row["effective_date"],
            expiry_date=row["expiry_date"],
            is_current=row["is_current"],
        )

    def _select_dimension(self, spec: DimensionTable) -> str:
        columns = ", ".join(
            (spec.surrogate_column, spec.natural_column)
            + spec.attribute_columns
            + ("effective_date", "expiry_date", "is_current")
        )
        return f"SELECT {columns} FROM {spec.table}"

    def current_dimension_records(self, dimension: str) -> dict[int, DimensionRecord]:
        spec = DIMENSION_TABLES[dimension]
        with self._cursor() as cur:
            cur.execute(f"{self._select_dimension(spec)} WHERE is_current")
            records = [self._record_from_row(spec, r) for r in cur.fetchall()]
        return {r.natural_key: r for r in records}

    def dimension_history(
        self, dimension: str, natural_key: int | None = None
    ) -> list[DimensionRecord]:
        spec = DIMENSION_TABLES[dimension]
        query = self._select_dimension(spec)
        params: tuple = ()
        if natural_key is not None:
            query += f" WHERE {spec.natural_column} = %s"
            params = (natural_key,)
        query += f" ORDER BY {spec.surrogate_column}"
        with self._cursor() as cur:
            cur.execute(query, params)
            return [self._record_from_row(spec, r) for r in cur.fetchall()]

    def expire_dimension_records(
        self, dimension: str, surrogate_keys: Iterable[int], expiry_date: date
    ) -> int:
        keys = list(surrogate_keys)
        if not keys:
            return 0
        spec = DIMENSION_TABLES[dimension]
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE {spec.table}
                SET is_current = FALSE,
                    expiry_date = GREATEST(%s::date, effective_date)
                WHERE {spec.surrogate_column} = ANY(%s) AND is_current
                """,
                (expiry_date, keys),
            )
            return cur.rowcount

    def insert_dimension_records(
        self, dimension: str, records: list[DimensionRecord]
    ) -> list[DimensionRecord]:
        spec = DIMENSION_TABLES[dimension]
        columns = (spec.natural_column,) + spec.attribute_columns + (
            "effective_date", "expiry_date", "is_current"
        )
        placeholders = ", ".join(["%s"] * len(columns))
        query = (
            f"INSERT INTO {spec.table} ({', '.join(columns)}) "
            f"VALUES ({placeholders}) RETURNING {spec.surrogate_column}"
        )

        inserted = []
        with self._cursor() as cur:
            for record in records:
                values = (
                    (record.natural_key,)
                    + tuple(record.attributes.get(c) for c in spec.attribute_columns)
                    + (record.effective_date, record.expiry_date, record.is_current)
                )
                cur.execute(query, values)
                surrogate_key = cur.fetchone()[spec.surrogate_column]
                inserted.append(record.model_copy(update={"surrogate_key": surrogate_key}))
        return inserted

    # -- facts -------------------------------------------------------------

    def fact_transaction_ids(self, above: int = 0) -> set[int]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT transaction_id FROM fact_sales WHERE transaction_id > %s", (above,)
            )
            return {r["transaction_id"] for r in cur.fetchall()}

    def insert_facts(self, facts: list[SalesFact]) -> int:
        if not facts:
            return 0
        query = (
            f"INSERT INTO fact_sales ({', '.join(FACT_COLUMNS)}) "
            f"VALUES ({', '.join(['%s'] * len(FACT_COLUMNS))})"
        )
        with self._cursor() as cur:
            cur.executemany(
                query, [tuple(getattr(f, c) for c in FACT_COLUMNS) for f in facts]
            )
        return len(facts)

    def list_facts(self, date_key: int | None = None) -> list[SalesFact]:
        query = f"SELECT sale_key, {', '.join(FACT_COLUMNS)} FROM fact_sales"
        params: tuple = ()
        if date_key is not None:
            query += " WHERE date_key = %s"
            params = (date_key,)
        query += " ORDER BY sale_key"
        with self._cursor() as cur:
            cur.execute(query, params)
            return [SalesFact(**r) for r in cur.fetchall()]

    def resolve_geo_key(self, city: str | None, state: str | None) -> int | None:
        if not city or not state:
            return None
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO dim_geography (city, state)
                VALUES (%s, %s)
                ON CONFLICT (city, state) DO UPDATE SET city = EXCLUDED.city
                RETURNING geo_key
                """,
                (city, state),
            )
            return cur.fetchone()["geo_key"]

    def replace_daily_summary(
        self, date_key: int, rows: list[DailySalesSummary]
    ) -> tuple[int, int]:
        with self._cursor() as cur:
            cur.execute("DELETE FROM fact_daily_sales_summary WHERE date_key = %s", (date_key,))
            deleted = cur.rowcount
            if rows:
                cur.executemany(
                    f"INSERT INTO fact_daily_sales_summary ({', '.join(SUMMARY_COLUMNS)}) "
                    f"VALUES ({', '.join(['%s'] * len(SUMMARY_COLUMNS))})",
                    [tuple(getattr(r, c) for c in SUMMARY_COLUMNS) for r in rows],
                )
        return deleted, len(rows)

    def list_daily_summary(self, date_key: int) -> list[DailySalesSummary]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {', '.join(SUMMARY_COLUMNS)} FROM fact_daily_sales_summary
                WHERE date_key = %s
                ORDER BY geo_key NULLS FIRST
                """,
                (date_key,),
            )
            return [DailySalesSummary(**r) for r in cur.fetchall()]
