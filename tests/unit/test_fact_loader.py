"""
Unit tests for fact derivation, planning and loading.
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

from retail_dw.core.config import BusinessPolicy
from retail_dw.core.models import DimensionRecord, SalesFact
from retail_dw.etl.fact_loader import (
    FactLoader,
    date_key_of,
    derive_measures,
    money,
    plan_facts,
    summarize_facts,
    time_key_of,
)

POLICY = BusinessPolicy()


def current(natural_key, surrogate_key, **attributes):
    return DimensionRecord(
        surrogate_key=surrogate_key,
        natural_key=natural_key,
        attributes=attributes,
        effective_date=date(2024, 1, 1),
    )


CUSTOMERS = {1: current(1, 101, city="Pune", state="Maharashtra")}
PRODUCTS = {1: current(1, 201)}


def no_geo(city, state):
    return None


@pytest.mark.unit
class TestMeasures:

    def test_keys(self):
        moment = datetime(2024, 3, 7, 9, 5)
        assert date_key_of(moment) == 20240307
        assert time_key_of(moment) == 905

    def test_money_rounds_half_up(self):
        assert money(Decimal("0.125")) == Decimal("0.13")
        assert money(Decimal("2.5")) == Decimal("2.50")

    def test_derive_measures(self, transaction_factory):
        measures = derive_measures(transaction_factory(1), POLICY)
        assert measures == {
            "line_total": Decimal("2160.00"),
            "discount_amount": Decimal("240.00"),
            "tax_amount": Decimal("388.80"),
            "cost_amount": Decimal("0.00"),
            "profit_amount": Decimal("2160.00"),
        }

    def test_cost_and_profit(self, transaction_factory):
        measures = derive_measures(
            transaction_factory(1, cost_price=Decimal("800.00")), POLICY
        )
        assert measures["cost_amount"] == Decimal("1600.00")
        assert measures["profit_amount"] == Decimal("560.00")

    def test_tax_rate_from_policy(self, transaction_factory):
        measures = derive_measures(transaction_factory(1), BusinessPolicy(tax_rate=Decimal("0.05")))
        assert measures["tax_amount"] == Decimal("108.00")


@pytest.mark.unit
class TestPlanFacts:

    def test_builds_fact_against_current_versions(self, transaction_factory):
        plan = plan_facts(
            [transaction_factory(1)], 0, CUSTOMERS, PRODUCTS,
            lambda city, state: 7 if (city, state) == ("Pune", "Maharashtra") else None,
            POLICY,
        )
        fact = plan.facts[0]
        assert (fact.customer_key, fact.product_key, fact.geo_key) == (101, 201, 7)
        assert (fact.date_key, fact.time_key) == (20240115, 130)
        assert fact.transaction_id == 1
        assert plan.watermark == 1

    def test_only_completed_transactions(self, transaction_factory):
        plan = plan_facts(
            [transaction_factory(1, status="pending"), transaction_factory(2)],
            0, CUSTOMERS, PRODUCTS, no_geo, POLICY,
        )
        assert [f.transaction_id for f in plan.facts] == [2]
        assert plan.rows_processed == 1
        assert plan.watermark == 0

    def test_cancelled_lines_do_not_hold_watermark(self, transaction_factory):
        plan = plan_facts(
            [
                transaction_factory(5, status="cancelled"),
                transaction_factory(6),
                transaction_factory(7, status="refunded"),
            ],
            4, CUSTOMERS, PRODUCTS, no_geo, POLICY,
        )
        assert [f.transaction_id for f in plan.facts] == [6]
        assert plan.watermark == 7

    def test_pending_tail_holds_watermark(self, transaction_factory):
        plan = plan_facts(
            [
                transaction_factory(5),
                transaction_factory(6, status="pending"),
                transaction_factory(7, customer_id=98),
                transaction_factory(8),
            ],
            4, CUSTOMERS, PRODUCTS, no_geo, POLICY,
        )
        assert [f.transaction_id for f in plan.facts] == [5, 8]
        assert plan.watermark == 5

    def test_completed_line_is_picked_up_after_pending_run(self, transaction_factory):
        first = plan_facts(
            [transaction_factory(5), transaction_factory(6, status="pending")],
            4, CUSTOMERS, PRODUCTS, no_geo, POLICY,
        )
        assert first.watermark == 5

        second = plan_facts(
            [transaction_factory(6)],
            first.watermark, CUSTOMERS, PRODUCTS, no_geo, POLICY,
        )
        assert [f.transaction_id for f in second.facts] == [6]
        assert second.watermark == 6

    def test_skips_missing_dimensions_and_holds_watermark(self, transaction_factory):
        plan = plan_facts(
            [
                transaction_factory(5),
                transaction_factory(6, product_id=99),
                transaction_factory(7, customer_id=98),
                transaction_factory(8),
            ],
            4, CUSTOMERS, PRODUCTS, no_geo, POLICY,
        )
        assert [f.transaction_id for f in plan.facts] == [5, 8]
        assert plan.skipped == {6: "missing_product", 7: "missing_customer"}
        assert plan.watermark == 5

    def test_already_loaded_filtered(self, transaction_factory):
        plan = plan_facts(
            [transaction_factory(5), transaction_factory(6)],
            4, CUSTOMERS, PRODUCTS, no_geo, POLICY, already_loaded={6},
        )
        assert [f.transaction_id for f in plan.facts] == [5]
        assert plan.watermark == 6

    def test_nothing_new_keeps_watermark(self):
        plan = plan_facts([], 12, CUSTOMERS, PRODUCTS, no_geo, POLICY)
        assert plan.facts == []
        assert plan.watermark == 12


@pytest.mark.unit
class TestSummarizeFacts:

    def _fact(self, transaction_id, sale_id, customer_key, geo_key, line_total, **extra):
        data = dict(
            date_key=20240115, time_key=1000, customer_key=customer_key, product_key=1,
            geo_key=geo_key, transaction_id=transaction_id, sale_id=sale_id, quantity=2,
            unit_price=Decimal("10"), line_total=Decimal(line_total),
        )
        data.update(extra)
        return SalesFact(**data)

    def test_groups_by_geography(self):
        summaries = summarize_facts([
            self._fact(1, 1, 1, 2, "100.00", discount_amount=Decimal("5.00"),
                       cost_amount=Decimal("60.00"), profit_amount=Decimal("40.00")),
            self._fact(2, 1, 1, 2, "50.00", cost_amount=Decimal("20.00"),
                       profit_amount=Decimal("30.00")),
            self._fact(3, 2, 2, None, "25.00"),
        ])
        assert [s.geo_key for s in summaries] == [None, 2]

        pune = summaries[1]
        assert pune.total_transactions == 1
        assert pune.total_customers == 1
        assert pune.total_products_sold == 4
        assert pune.net_sales == Decimal("150.00")
        assert pune.total_discount == Decimal("5.00")
        assert pune.gross_sales == Decimal("155.00")
        assert pune.total_cost == Decimal("80.00")
        assert pune.gross_profit == Decimal("70.00")
        assert pune.avg_transaction_value == Decimal("75.00")

    def test_empty(self):
        assert summarize_facts([]) == []


@pytest.mark.unit
class TestFactLoader:

    def _load_dimensions(self, store, customer_ids=(1, 2), product_ids=(1, 2)):
        store.insert_dimension_records("customer", [
            DimensionRecord(natural_key=k, attributes={"city": "Pune", "state": "Maharashtra"},
                            effective_date=date(2024, 1, 1))
            for k in customer_ids
        ])
        store.insert_dimension_records("product", [
            DimensionRecord(natural_key=k, effective_date=date(2024, 1, 1))
            for k in product_ids
        ])

    def test_load_new_facts(self, store, source):
        self._load_dimensions(store)
        result = FactLoader(store, source, POLICY).load_new_facts(None)

        assert (result.rows_processed, result.rows_inserted, result.rows_skipped) == (3, 3, 0)
        assert result.watermark == 3
        facts = store.list_facts()
        assert [f.transaction_id for f in facts] == [1, 2, 3]
        assert facts[0].cost_amount == Decimal("1600.00")
        assert facts[1].tax_amount == Decimal("9900.00")
        assert len({f.geo_key for f in facts}) == 1

    def test_load_is_idempotent_above_watermark(self, store, source):
        self._load_dimensions(store)
        loader = FactLoader(store, source, POLICY)
        loader.load_new_facts(None)
        assert loader.load_new_facts(0).rows_inserted == 0
        assert len(store.list_facts()) == 3

    def test_skip_then_retry(self, store, source):
        self._load_dimensions(store, product_ids=(1,))
        loader = FactLoader(store, source, POLICY)

        first = loader.load_new_facts(None)
        assert first.skipped_ids == [2]
        assert first.watermark == 1
        assert [f.transaction_id for f in store.list_facts()] == [1, 3]

        self._load_dimensions(store, customer_ids=(), product_ids=(2,))
        second = loader.load_new_facts(first.watermark)
        assert second.rows_inserted == 1
        assert second.watermark == 3
        assert sorted(f.transaction_id for f in store.list_facts()) == [1, 2, 3]

    def test_refresh_daily_summary_replaces_rows(self, store, source):
        self._load_dimensions(store)
        loader = FactLoader(store, source, POLICY)
        loader.load_new_facts(None)

        assert loader.refresh_daily_summary(date(2024, 1, 15)) == (0, 1)
        assert loader.refresh_daily_summary(date(2024, 1, 15)) == (1, 1)
        summary = store.list_daily_summary(20240115)[0]
        assert summary.total_transactions == 2
        assert summary.total_customers == 2
        assert summary.net_sales == Decimal("58360.00")
