"""
Fact loading for the sales star schema.

Sale lines above the last loaded degenerate key are joined to the current
customer and product versions and turned into immutable fact rows. A line
whose customer or product has no current version yet is skipped and picked
up by a later run. Pending and processing lines are likewise revisited once
they complete: the watermark stops just below the first skipped or still
open line, and lines above the watermark that already have a fact are
filtered out. Cancelled and refunded lines never hold it.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable

from retail_dw.core.config import BusinessPolicy
from retail_dw.core.models import (
    DailySalesSummary,
    DimensionRecord,
    SalesFact,
    SourceTransaction,
)
from retail_dw.observability import metrics
from retail_dw.observability.logger import get_logger
from retail_dw.warehouse.source import SourceReader
from retail_dw.warehouse.store import WarehouseStore

logger = get_logger(__name__)

CENT = Decimal("0.01")

GeoResolver = Callable[[str | None, str | None], int | None]


def money(value: Decimal) -> Decimal:
    """Round half-up to cents."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def date_key_of(moment: datetime | date) -> int:
    """YYYYMMDD integer key."""
    return moment.year * 10000 + moment.month * 100 + moment.day


def time_key_of(moment: datetime) -> int:
    """HHMM integer key."""
    return moment.hour * 100 + moment.minute


def derive_measures(transaction: SourceTransaction, policy: BusinessPolicy) -> dict[str, Decimal]:
    """
    Derived money measures of one sale line.

    Returns:
        Dict with line_total, discount_amount, tax_amount, cost_amount and
        profit_amount, each rounded to cents
    """
    line_total = money(transaction.effective_line_total)
    cost_amount = money(transaction.cost_price * transaction.quantity)
    return {
        "line_total": line_total,
        "discount_amount": money(
            transaction.discount_pct * transaction.unit_price * transaction.quantity / 100
        ),
        "tax_amount": money(line_total * policy.tax_rate),
        "cost_amount": cost_amount,
        "profit_amount": line_total - cost_amount,
    }


@dataclass
class FactPlan:
    """
    Facts to insert and the watermark to store once they are committed.
    """

    facts: list[SalesFact] = field(default_factory=list)
    skipped: dict[int, str] = field(default_factory=dict)
    watermark: int = 0
    rows_processed: int = 0


def plan_facts(
    transactions: Iterable[SourceTransaction],
    last_loaded: int,
    customers: dict[int, DimensionRecord],
    products: dict[int, DimensionRecord],
    geo_key_for: GeoResolver,
    policy: BusinessPolicy,
    already_loaded: Iterable[int] = (),
    check_deadline: Callable[[], None] | None = None,
) -> FactPlan:
    """
    Build fact rows for the sale lines above `last_loaded`.

    Args:
        transactions: Sale lines in id order
        last_loaded: Degenerate key watermark of the previous run
        customers: Current customer versions by customer_id
        products: Current product versions by product_id
        geo_key_for: Maps a customer's (city, state) to a geography key
        policy: Business constants (tax rate, completed status)
        already_loaded: Degenerate keys above the watermark that already have facts
        check_deadline: Called per line; raises when the run is out of time

    Returns:
        FactPlan; skipped maps transaction_id to the skip reason
    """
    already_loaded = set(already_loaded)
    plan = FactPlan(watermark=last_loaded)
    highest_seen = last_loaded
    still_open: list[int] = []

    for transaction in transactions:
        if check_deadline is not None:
            check_deadline()
        if transaction.transaction_id <= last_loaded:
            continue
        highest_seen = max(highest_seen, transaction.transaction_id)

        if transaction.status != policy.completed_status:
            if transaction.status in policy.open_statuses:
                # may still complete; hold the watermark below it
                still_open.append(transaction.transaction_id)
            continue
        if transaction.transaction_id in already_loaded:
            continue
        plan.rows_processed += 1

        customer = customers.get(transaction.customer_id)
        product = products.get(transaction.product_id)
        if customer is None:
            plan.skipped[transaction.transaction_id] = "missing_customer"
            continue
        if product is None:
            plan.skipped[transaction.transaction_id] = "missing_product"
            continue

        plan.facts.append(SalesFact(
            date_key=date_key_of(transaction.sale_date),
            time_key=time_key_of(transaction.sale_date),
            customer_key=customer.surrogate_key,
            product_key=product.surrogate_key,
            employee_key=transaction.employee_id,
            payment_key=transaction.payment_method_id,
            geo_key=geo_key_for(
                customer.attributes.get("city"), customer.attributes.get("state")
            ),
            transaction_id=transaction.transaction_id,
            sale_id=transaction.sale_id,
            quantity=transaction.quantity,
            unit_price=transaction.unit_price,
            **derive_measures(transaction, policy),
        ))

    held = [*plan.skipped, *still_open]
    plan.watermark = min(held) - 1 if held else highest_seen
    return plan


def summarize_facts(facts: Iterable[SalesFact]) -> list[DailySalesSummary]:
    """
    Aggregate facts per (date_key, geo_key).

    Transactions count distinct orders; avg_transaction_value is the mean
    line total.
    """
    groups: dict[tuple[int, int | None], list[SalesFact]] = defaultdict(list)
    for fact in facts:
        groups[(fact.date_key, fact.geo_key)].append(fact)

    summaries = []
    for (date_key, geo_key), rows in sorted(
        groups.items(), key=lambda item: (item[0][0], item[0][1] is not None, item[0][1] or 0)
    ):
        net_sales = sum((f.line_total for f in rows), Decimal("0"))
        total_discount = sum((f.discount_amount for f in rows), Decimal("0"))
        total_cost = sum((f.cost_amount for f in rows), Decimal("0"))
        summaries.append(DailySalesSummary(
            date_key=date_key,
            geo_key=geo_key,
            total_transactions=len({f.sale_id for f in rows}),
            total_customers=len({f.customer_key for f in rows}),
            total_products_sold=sum(f.quantity for f in rows),
            gross_sales=money(net_sales + total_discount),
            total_discount=money(total_discount),
            net_sales=money(net_sales),
            total_cost=money(total_cost),
            gross_profit=money(sum((f.profit_amount for f in rows), Decimal("0"))),
            avg_transaction_value=money(net_sales / len(rows)),
        ))
    return summaries


@dataclass
class FactLoadResult:
    """Counters of one fact load."""

    rows_processed: int = 0
    rows_inserted: int = 0
    rows_skipped: int = 0
    watermark: int = 0
    skipped_ids: list[int] = field(default_factory=list)


class FactLoader:
    """
    Loads sales facts and rebuilds the daily summary.
    """

    def __init__(
        self,
        store: WarehouseStore,
        source: SourceReader,
        policy: BusinessPolicy,
        check_deadline: Callable[[], None] | None = None,
    ):
        self.store = store
        self.source = source
        self.policy = policy
        self.check_deadline = check_deadline

    def load_new_facts(self, last_loaded_degenerate_key: int | None) -> FactLoadResult:
        """
        Insert facts for the completed sale lines above the watermark.

        Must run inside a store transaction; the caller stores
        result.watermark as the new checkpoint in the same transaction.

        Args:
            last_loaded_degenerate_key: Watermark of the previous run (None for first load)

        Returns:
            FactLoadResult

        Raises:
            SourceUnavailable: If the sales source cannot be read
        """
        last_loaded = last_loaded_degenerate_key or 0

        plan = plan_facts(
            self.source.iter_transactions(last_loaded),
            last_loaded,
            customers=self.store.current_dimension_records("customer"),
            products=self.store.current_dimension_records("product"),
            geo_key_for=self.store.resolve_geo_key,
            policy=self.policy,
            already_loaded=self.store.fact_transaction_ids(last_loaded),
            check_deadline=self.check_deadline,
        )

        # Write facts
        inserted = self.store.insert_facts(plan.facts) if plan.facts else 0
        metrics.record_rows_written("fact_sales", inserted=inserted)

        # Count skips per reason
        if plan.skipped:
            for reason in set(plan.skipped.values()):
                metrics.increment_counter(
                    metrics.facts_skipped_total,
                    sum(1 for r in plan.skipped.values() if r == reason),
                    reason=reason,
                )
            logger.warning(
                f"Skipped {len(plan.skipped)} transactions without current dimension rows",
                extra={
                    "skipped_transaction_ids": sorted(plan.skipped)[:50],
                    "watermark": plan.watermark,
                }
            )

        logger.info(
            "Fact load finished",
            extra={
                "rows_processed": plan.rows_processed,
                "rows_inserted": inserted,
                "rows_skipped": len(plan.skipped),
                "watermark": plan.watermark,
            }
        )
        return FactLoadResult(
            rows_processed=plan.rows_processed,
            rows_inserted=inserted,
            rows_skipped=len(plan.skipped),
            watermark=plan.watermark,
            skipped_ids=sorted(plan.skipped),
        )

    def refresh_daily_summary(self, day: date) -> tuple[int, int]:
        """
        Rebuild the summary rows of one day from fact_sales.

        Returns:
            Tuple of (rows_deleted, rows_inserted)
        """
        date_key = date_key_of(day)
        rows = summarize_facts(self.store.list_facts(date_key))
        deleted, inserted = self.store.replace_daily_summary(date_key, rows)
        metrics.record_rows_written("fact_daily_sales_summary", inserted=inserted, deleted=deleted)
        return deleted, inserted
