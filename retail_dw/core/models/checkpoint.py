"""
Checkpoint model representing the incremental extraction cursor of a source.
"""

from datetime import datetime

from pydantic import BaseModel, Field

# Returned when a source has never been extracted
BEGINNING_OF_TIME = datetime(1900, 1, 1)


class Checkpoint(BaseModel):
    """
    Durable per-source cursor enabling incremental extraction.

    Attributes:
        source_name: Operational source table the cursor belongs to (unique)
        last_extracted_id: Highest id extracted so far (None for timestamp-only sources)
        last_extracted_timestamp: Rows modified after this instant are extracted next run
        last_run_time: When the checkpoint was last advanced
    """

    source_name: str = Field(..., min_length=1, max_length=100)
    last_extracted_id: int | None = None
    last_extracted_timestamp: datetime = BEGINNING_OF_TIME
    last_run_time: datetime = Field(default_factory=datetime.now)

    class Config:
        json_schema_extra = {
            "example": {
                "source_name": "customers",
                "last_extracted_id": None,
                "last_extracted_timestamp": "2024-01-15T02:00:00",
                "last_run_time": "2024-01-15T02:00:04"
            }
        }
