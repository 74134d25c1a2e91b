"""
Tests for the database connection pool

Constructor defaults run without a database; the rest use testcontainers.
"""
import pytest

from retail_dw.warehouse.connection import DatabaseConnectionPool


def container_pool(postgres_container, **kwargs) -> DatabaseConnectionPool:
    return DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_retail_dw",
        user="test_etl",
        password="test_password",
        **kwargs,
    )


@pytest.mark.unit
def test_password_required(monkeypatch):
    """Test that a missing password is rejected up front"""
    monkeypatch.delenv("DB_PASSWORD", raising=False)
    with pytest.raises(ValueError, match="password"):
        DatabaseConnectionPool()


@pytest.mark.unit
def test_environment_defaults(monkeypatch):
    """Test that connection settings fall back to DB_* variables"""
    monkeypatch.setenv("DB_HOST", "warehouse.internal")
    monkeypatch.setenv("DB_PORT", "6543")
    monkeypatch.setenv("DB_PASSWORD", "secret")
    monkeypatch.delenv("DB_NAME", raising=False)

    pool = DatabaseConnectionPool()
    assert pool.host == "warehouse.internal"
    assert pool.port == 6543
    assert pool.database == "retail_dw"
    assert not pool.is_open


@pytest.mark.unit
def test_get_connection_requires_open_pool():
    pool = DatabaseConnectionPool(password="secret")
    with pytest.raises(RuntimeError):
        with pool.get_connection():
            pass


@pytest.mark.integration
def test_connection_pool_initialization(postgres_container):
    """Test that connection pool initializes correctly"""
    pool = container_pool(postgres_container, min_size=2, max_size=5)

    pool.open()

    assert pool.is_open
    assert pool._pool.min_size == 2
    assert pool._pool.max_size == 5

    pool.close()
    assert not pool.is_open


@pytest.mark.integration
def test_execute_query_and_command(postgres_container):
    """Test executing queries and commands using the pool"""
    with container_pool(postgres_container) as pool:
        result = pool.execute_query("SELECT 42 as answer")
        assert result == [{"answer": 42}]

        assert pool.execute_command("SELECT 1") == 1

    # Pool should be closed after context
    with pytest.raises(RuntimeError):
        pool.execute_query("SELECT 1")


@pytest.mark.integration
def test_open_fails_after_retries(postgres_container):
    """Test that a wrong password exhausts the retries"""
    from psycopg import OperationalError

    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_retail_dw",
        user="test_etl",
        password="wrong_password",
        timeout=2.0,
    )
    with pytest.raises(OperationalError):
        pool.open(max_retries=2, retry_delay=0.1)
    assert not pool.is_open
