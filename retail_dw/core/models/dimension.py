"""
DimensionRecord model representing one version of a slowly changing dimension row.
"""

from datetime import date
from typing import Any

from pydantic import BaseModel, Field, model_validator

# Expiry date carried by the current version of every natural key
OPEN_END_DATE = date(9999, 12, 31)


class DimensionRecord(BaseModel):
    """
    One SCD Type 2 version of a dimension member.

    Attributes:
        surrogate_key: Warehouse-generated key (None until persisted, never reused)
        natural_key: Identity of the member in the source system
        attributes: Snapshot of the member's attributes for this version
        effective_date: First day this version is valid
        expiry_date: Last day this version is valid (9999-12-31 while current)
        is_current: Whether this is the live version of the natural key
    """

    surrogate_key: int | None = None
    natural_key: int
    attributes: dict[str, Any] = Field(default_factory=dict)
    effective_date: date
    expiry_date: date = OPEN_END_DATE
    is_current: bool = True

    @model_validator(mode="after")
    def check_date_range(self):
        """Validate that a version never expires before it takes effect."""
        if self.effective_date > self.expiry_date:
            raise ValueError(
                f"expiry_date ({self.expiry_date}) must not precede "
                f"effective_date ({self.effective_date})"
            )
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "surrogate_key": 42,
                "natural_key": 1001,
                "attributes": {
                    "name": "Asha Rao",
                    "email": "asha@example.com",
                    "city": "Pune",
                    "tier_name": "Gold",
                    "segment": "Premium"
                },
                "effective_date": "2024-01-15",
                "expiry_date": "9999-12-31",
                "is_current": True
            }
        }
