"""
Business policy and runtime settings for the ETL engine.

Tax rate, segment thresholds and price ranges are business policy rather
than engine logic, so they live here instead of inside the loaders.
"""

from decimal import Decimal

from pydantic import BaseModel, Field, field_validator


class SpendSegment(BaseModel):
    """Customer segment assigned when total spend reaches min_spent."""

    label: str = Field(..., min_length=1)
    min_spent: Decimal = Field(..., ge=0)


class PriceRange(BaseModel):
    """Product price range assigned when price is below upper_bound."""

    label: str = Field(..., min_length=1)
    upper_bound: Decimal = Field(..., gt=0)


def _default_segments() -> list[SpendSegment]:
    return [
        SpendSegment(label="VIP", min_spent=Decimal("100000")),
        SpendSegment(label="Premium", min_spent=Decimal("50000")),
        SpendSegment(label="Regular", min_spent=Decimal("10000")),
    ]


def _default_price_ranges() -> list[PriceRange]:
    return [
        PriceRange(label="Budget", upper_bound=Decimal("10000")),
        PriceRange(label="Mid-Range", upper_bound=Decimal("50000")),
        PriceRange(label="Premium", upper_bound=Decimal("100000")),
    ]


class BusinessPolicy(BaseModel):
    """
    Fixed business constants used when deriving dimension and fact fields.

    Attributes:
        tax_rate: Tax applied to the line total of every fact
        completed_status: Sale status that makes a transaction eligible for loading
        open_statuses: Statuses that may still become completed; a line in one of
            them holds the sales watermark so it is revisited
        spend_segments: Spend thresholds for the customer segment
        default_segment: Segment for spend below every threshold
        price_ranges: Upper bounds for the product price range
        top_price_range: Range for prices at or above every upper bound
        unknown_label: Substituted for a missing tier or category name
    """

    tax_rate: Decimal = Field(Decimal("0.18"), ge=0, le=1)
    completed_status: str = "completed"
    open_statuses: list[str] = Field(default_factory=lambda: ["pending", "processing"])
    spend_segments: list[SpendSegment] = Field(default_factory=_default_segments)
    default_segment: str = "New"
    price_ranges: list[PriceRange] = Field(default_factory=_default_price_ranges)
    top_price_range: str = "Luxury"
    unknown_label: str = "Unknown"

    @field_validator("spend_segments")
    @classmethod
    def sort_segments(cls, v):
        """Highest threshold first so the first match wins."""
        return sorted(v, key=lambda s: s.min_spent, reverse=True)

    @field_validator("price_ranges")
    @classmethod
    def sort_price_ranges(cls, v):
        """Lowest bound first so the first match wins."""
        return sorted(v, key=lambda r: r.upper_bound)


class EtlConfig(BaseModel):
    """
    Complete engine configuration.

    Attributes:
        policy: Business constants
        timeout_seconds: Upper bound for a single pipeline run (None disables it)
        stale_run_minutes: Age after which a still-running job is reported as stale
    """

    policy: BusinessPolicy = Field(default_factory=BusinessPolicy)
    timeout_seconds: float | None = Field(None, gt=0)
    stale_run_minutes: int = Field(120, gt=0)
