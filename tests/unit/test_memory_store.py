"""
Unit tests for the in-memory warehouse store.
"""

import pytest
from datetime import date
from decimal import Decimal

from retail_dw.core.errors import ConcurrentRunError, IntegrityViolation
from retail_dw.core.models import DimensionRecord, SalesFact


def record(natural_key, day=date(2024, 1, 10)):
    return DimensionRecord(natural_key=natural_key, effective_date=day)


def fact(transaction_id):
    return SalesFact(
        date_key=20240115, time_key=130, customer_key=1, product_key=1,
        transaction_id=transaction_id, sale_id=1, quantity=1,
        unit_price=Decimal("10"), line_total=Decimal("10"),
    )


@pytest.mark.unit
class TestInMemoryWarehouseStore:

    def test_rollback_restores_state_but_not_sequences(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.insert_dimension_records("customer", [record(1)])
                raise RuntimeError("abort")

        assert store.dimension_history("customer") == []
        inserted = store.insert_dimension_records("customer", [record(1)])
        assert inserted[0].surrogate_key == 2

    def test_lock_is_exclusive_per_source(self, store):
        with store.transaction(lock_key="customers"):
            with pytest.raises(ConcurrentRunError):
                with store.transaction(lock_key="customers"):
                    pass
        with store.transaction(lock_key="customers"):
            pass

    def test_nested_transaction_rejected(self, store):
        with store.transaction(lock_key="customers"):
            with pytest.raises(RuntimeError):
                with store.transaction(lock_key="products"):
                    pass
        with store.transaction(lock_key="products"):
            pass

    def test_expire_clamps_and_skips_expired(self, store):
        [current] = store.insert_dimension_records("customer", [record(1)])
        assert store.expire_dimension_records("customer", [current.surrogate_key],
                                              date(2024, 1, 9)) == 1
        assert store.expire_dimension_records("customer", [current.surrogate_key],
                                              date(2024, 2, 1)) == 0

        [expired] = store.dimension_history("customer", 1)
        assert expired.expiry_date == date(2024, 1, 10)
        assert store.current_dimension_records("customer") == {}

    def test_duplicate_keys_in_batch(self, store):
        with pytest.raises(IntegrityViolation):
            store.insert_dimension_records("product", [record(1), record(1)])

    def test_duplicate_fact_rejected(self, store):
        store.insert_facts([fact(1)])
        with pytest.raises(IntegrityViolation):
            store.insert_facts([fact(1)])
        assert store.fact_transaction_ids() == {1}
        assert store.fact_transaction_ids(above=1) == set()

    def test_geo_keys_are_stable(self, store):
        pune = store.resolve_geo_key("Pune", "Maharashtra")
        assert store.resolve_geo_key("Pune", "Maharashtra") == pune
        assert store.resolve_geo_key("Delhi", "Delhi") != pune
        assert store.resolve_geo_key(None, "Delhi") is None
