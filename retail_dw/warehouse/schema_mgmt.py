"""
Schema management for the warehouse tables owned by the ETL engine.

Creates the checkpoint and job log tables, the SCD Type 2 dimensions and
the fact tables. Operational source tables are a precondition and are not
managed here.
"""

from .connection import DatabaseConnectionPool

WAREHOUSE_DDL = [
    """
    CREATE TABLE IF NOT EXISTS etl_job_log (
        job_id BIGSERIAL PRIMARY KEY,
        job_name VARCHAR(100) NOT NULL,
        start_time TIMESTAMP NOT NULL,
        end_time TIMESTAMP,
        status VARCHAR(20) NOT NULL DEFAULT 'running'
            CHECK (status IN ('running', 'completed', 'failed')),
        rows_processed INT NOT NULL DEFAULT 0,
        rows_inserted INT NOT NULL DEFAULT 0,
        rows_updated INT NOT NULL DEFAULT 0,
        rows_deleted INT NOT NULL DEFAULT 0,
        error_message TEXT,
        created_at TIMESTAMP NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS etl_checkpoint (
        checkpoint_id SERIAL PRIMARY KEY,
        source_table VARCHAR(100) NOT NULL UNIQUE,
        last_extracted_id BIGINT,
        last_extracted_timestamp TIMESTAMP NOT NULL,
        last_run_time TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS dim_customer (
        customer_key SERIAL PRIMARY KEY,
        customer_id INT NOT NULL,
        name VARCHAR(100),
        email VARCHAR(100),
        phone VARCHAR(20),
        city VARCHAR(50),
        state VARCHAR(50),
        zip_code VARCHAR(10),
        tier_name VARCHAR(50),
        segment VARCHAR(50),
        effective_date DATE NOT NULL,
        expiry_date DATE NOT NULL DEFAULT '9999-12-31',
        is_current BOOLEAN NOT NULL DEFAULT TRUE,
        CHECK (effective_date <= expiry_date)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_dim_customer_id ON dim_customer (customer_id)",
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_dim_customer_current
        ON dim_customer (customer_id) WHERE is_current
    """,
    """
    CREATE TABLE IF NOT EXISTS dim_product (
        product_key SERIAL PRIMARY KEY,
        product_id INT NOT NULL,
        sku VARCHAR(50),
        name VARCHAR(100),
        category_id INT,
        category_name VARCHAR(100),
        price NUMERIC(10, 2),
        cost_price NUMERIC(10, 2),
        price_range VARCHAR(20),
        effective_date DATE NOT NULL,
        expiry_date DATE NOT NULL DEFAULT '9999-12-31',
        is_current BOOLEAN NOT NULL DEFAULT TRUE,
        CHECK (effective_date <= expiry_date)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_dim_product_id ON dim_product (product_id)",
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_dim_product_current
        ON dim_product (product_id) WHERE is_current
    """,
    """
    CREATE TABLE IF NOT EXISTS dim_geography (
        geo_key SERIAL PRIMARY KEY,
        city VARCHAR(50) NOT NULL,
        state VARCHAR(50) NOT NULL,
        region VARCHAR(50),
        country VARCHAR(50) NOT NULL DEFAULT 'India',
        UNIQUE (city, state)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS fact_sales (
        sale_key BIGSERIAL PRIMARY KEY,
        date_key INT NOT NULL,
        time_key INT,
        customer_key INT NOT NULL REFERENCES dim_customer (customer_key),
        product_key INT NOT NULL REFERENCES dim_product (product_key),
        employee_key INT,
        payment_key INT,
        geo_key INT REFERENCES dim_geography (geo_key),
        transaction_id BIGINT NOT NULL,
        sale_id INT NOT NULL,
        quantity INT NOT NULL,
        unit_price NUMERIC(10, 2) NOT NULL,
        discount_amount NUMERIC(10, 2) NOT NULL DEFAULT 0,
        tax_amount NUMERIC(10, 2) NOT NULL DEFAULT 0,
        line_total NUMERIC(12, 2) NOT NULL,
        cost_amount NUMERIC(10, 2),
        profit_amount NUMERIC(10, 2)
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_fact_sales_transaction ON fact_sales (transaction_id)",
    "CREATE INDEX IF NOT EXISTS idx_fact_sales_date ON fact_sales (date_key)",
    """
    CREATE TABLE IF NOT EXISTS fact_daily_sales_summary (
        summary_key BIGSERIAL PRIMARY KEY,
        date_key INT NOT NULL,
        geo_key INT,
        total_transactions INT,
        total_customers INT,
        total_products_sold INT,
        gross_sales NUMERIC(15, 2),
        total_discount NUMERIC(12, 2),
        net_sales NUMERIC(15, 2),
        total_cost NUMERIC(15, 2),
        gross_profit NUMERIC(15, 2),
        avg_transaction_value NUMERIC(10, 2),
        UNIQUE (date_key, geo_key)
    )
    """,
]

WAREHOUSE_TABLES = [
    "fact_daily_sales_summary",
    "fact_sales",
    "dim_geography",
    "dim_product",
    "dim_customer",
    "etl_checkpoint",
    "etl_job_log",
]


class SchemaManager:
    """
    Creates and drops the warehouse tables.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize schema manager.

        Args:
            pool: Database connection pool
        """
        self.pool = pool

    def create_warehouse_schema(self) -> None:
        """Create every warehouse table and index that does not exist yet."""
        with self.pool.get_connection() as conn:
            with conn.transaction():
                for statement in WAREHOUSE_DDL:
                    conn.execute(statement)

    def truncate_warehouse(self) -> None:
        """Remove all warehouse rows (tests and total rebuilds only)."""
        tables = ", ".join(WAREHOUSE_TABLES)
        self.pool.execute_command(f"TRUNCATE TABLE {tables} RESTART IDENTITY CASCADE")

    def existing_tables(self) -> list[str]:
        """Warehouse tables present in the current schema."""
        rows = self.pool.execute_query(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = current_schema() AND table_name = ANY(%s)
            ORDER BY table_name
            """,
            (WAREHOUSE_TABLES,),
        )
        return [r["table_name"] for r in rows]
