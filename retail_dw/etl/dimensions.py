"""
Dimension definitions: how a source row becomes a dimension snapshot and
which attributes open a new version when they change.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable

from pydantic import BaseModel

from retail_dw.core.config import BusinessPolicy
from retail_dw.core.models import SourceCustomer, SourceProduct


def classify_spend(total_spent: Decimal, policy: BusinessPolicy) -> str:
    """
    Customer segment for a lifetime spend.

    Examples (default policy):
        60000 -> "Premium", 100000 -> "VIP", 0 -> "New"
    """
    for segment in policy.spend_segments:
        if total_spent >= segment.min_spent:
            return segment.label
    return policy.default_segment


def classify_price(price: Decimal, policy: BusinessPolicy) -> str:
    """Price range label for a unit price."""
    for price_range in policy.price_ranges:
        if price < price_range.upper_bound:
            return price_range.label
    return policy.top_price_range


def customer_snapshot(row: SourceCustomer, policy: BusinessPolicy) -> dict[str, Any]:
    return {
        "name": row.name,
        "email": row.email,
        "phone": row.phone,
        "city": row.city,
        "state": row.state,
        "zip_code": row.zip_code,
        "tier_name": row.tier_name or policy.unknown_label,
        "segment": classify_spend(row.total_spent, policy),
    }


def product_snapshot(row: SourceProduct, policy: BusinessPolicy) -> dict[str, Any]:
    return {
        "sku": row.sku,
        "name": row.name,
        "category_id": row.category_id,
        "category_name": row.category_name or policy.unknown_label,
        "price": row.price,
        "cost_price": row.cost_price,
        "price_range": classify_price(row.price, policy),
    }


@dataclass(frozen=True)
class DimensionSpec:
    """
    Static description of one SCD Type 2 dimension.

    Attributes:
        name: Dimension name understood by the warehouse store
        job_prefix: Prefix of the job names logged for this dimension
        source_table: Operational table the members come from
        natural_key: Field of the source row holding the member identity
        snapshot: Builds the attribute snapshot (including derived fields)
        tracked_attributes: Attributes whose change opens a new version
    """

    name: str
    job_prefix: str
    source_table: str
    natural_key: str
    snapshot: Callable[[Any, BusinessPolicy], dict[str, Any]]
    tracked_attributes: tuple[str, ...]

    def key_of(self, row: BaseModel) -> int:
        return getattr(row, self.natural_key)

    def changed(self, current: dict[str, Any], incoming: dict[str, Any]) -> bool:
        """Default change predicate: any tracked attribute differs."""
        return any(current.get(a) != incoming.get(a) for a in self.tracked_attributes)


CUSTOMER_DIMENSION = DimensionSpec(
    name="customer",
    job_prefix="load_dim_customer",
    source_table="customers",
    natural_key="customer_id",
    snapshot=customer_snapshot,
    # segment is derived from spend, so a spend-only update still versions the row
    tracked_attributes=("name", "email", "city", "tier_name", "segment"),
)

PRODUCT_DIMENSION = DimensionSpec(
    name="product",
    job_prefix="load_dim_product",
    source_table="products",
    natural_key="product_id",
    snapshot=product_snapshot,
    tracked_attributes=("name", "price", "category_id"),
)

DIMENSION_SPECS = {spec.name: spec for spec in (CUSTOMER_DIMENSION, PRODUCT_DIMENSION)}
