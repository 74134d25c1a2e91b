"""
Unit tests for dimension snapshots and classification buckets.
"""

import pytest
from decimal import Decimal

from retail_dw.core.config import BusinessPolicy
from retail_dw.etl.dimensions import (
    CUSTOMER_DIMENSION,
    PRODUCT_DIMENSION,
    classify_price,
    classify_spend,
    customer_snapshot,
    product_snapshot,
)

POLICY = BusinessPolicy()


@pytest.mark.unit
class TestClassifySpend:

    @pytest.mark.parametrize("spent,segment", [
        ("0", "New"),
        ("9999.99", "New"),
        ("10000", "Regular"),
        ("49999.99", "Regular"),
        ("50000", "Premium"),
        ("60000", "Premium"),
        ("100000", "VIP"),
        ("2500000", "VIP"),
    ])
    def test_thresholds(self, spent, segment):
        assert classify_spend(Decimal(spent), POLICY) == segment

    def test_custom_policy(self):
        policy = BusinessPolicy(
            spend_segments=[{"label": "Gold", "min_spent": 500}],
            default_segment="Basic",
        )
        assert classify_spend(Decimal("500"), policy) == "Gold"
        assert classify_spend(Decimal("499"), policy) == "Basic"


@pytest.mark.unit
class TestClassifyPrice:

    @pytest.mark.parametrize("price,label", [
        ("0", "Budget"),
        ("9999.99", "Budget"),
        ("10000", "Mid-Range"),
        ("49999.99", "Mid-Range"),
        ("50000", "Premium"),
        ("99999.99", "Premium"),
        ("100000", "Luxury"),
    ])
    def test_thresholds(self, price, label):
        assert classify_price(Decimal(price), POLICY) == label


@pytest.mark.unit
class TestSnapshots:

    def test_customer_snapshot_derives_segment(self, customer_factory):
        snapshot = customer_snapshot(
            customer_factory(1, total_spent=Decimal("60000"), tier_name=None), POLICY
        )
        assert snapshot["segment"] == "Premium"
        assert snapshot["tier_name"] == "Unknown"
        assert snapshot["city"] == "Pune"

    def test_product_snapshot_derives_price_range(self, product_factory):
        snapshot = product_snapshot(
            product_factory(1, price=Decimal("75000"), category_name=None), POLICY
        )
        assert snapshot["price_range"] == "Premium"
        assert snapshot["category_name"] == "Unknown"

    def test_customer_change_predicate_tracks_segment(self, customer_factory):
        before = customer_snapshot(customer_factory(1), POLICY)
        after = customer_snapshot(customer_factory(1, total_spent=Decimal("60000")), POLICY)
        assert CUSTOMER_DIMENSION.changed(before, after)

    def test_customer_change_predicate_ignores_phone(self, customer_factory):
        before = customer_snapshot(customer_factory(1), POLICY)
        after = customer_snapshot(customer_factory(1, phone="9811111111"), POLICY)
        assert not CUSTOMER_DIMENSION.changed(before, after)

    def test_product_change_predicate(self, product_factory):
        before = product_snapshot(product_factory(1), POLICY)
        assert PRODUCT_DIMENSION.changed(
            before, product_snapshot(product_factory(1, price=Decimal("1300")), POLICY)
        )
        assert PRODUCT_DIMENSION.changed(
            before, product_snapshot(product_factory(1, category_id=9), POLICY)
        )
        assert not PRODUCT_DIMENSION.changed(
            before, product_snapshot(product_factory(1, sku="OTHER"), POLICY)
        )
