"""
JobRun model representing one execution of an ETL job.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

JobStatus = Literal["running", "completed", "failed"]


class JobCounts(BaseModel):
    """Row counters reported by a job when it completes."""

    rows_processed: int = Field(0, ge=0)
    rows_inserted: int = Field(0, ge=0)
    rows_updated: int = Field(0, ge=0)
    rows_deleted: int = Field(0, ge=0)


class JobRun(BaseModel):
    """
    One run of an ETL job.

    Attributes:
        run_id: Auto-increment primary key
        job_name: Name of the job (e.g. "load_fact_sales")
        start_time: When the run started
        end_time: When the run reached a terminal status
        status: "running", "completed" or "failed"
        rows_processed/rows_inserted/rows_updated/rows_deleted: Row counters
        error_message: Captured error text for failed runs
    """

    run_id: int | None = None
    job_name: str = Field(..., min_length=1, max_length=100)
    start_time: datetime = Field(default_factory=datetime.now)
    end_time: datetime | None = None
    status: JobStatus = "running"
    rows_processed: int = 0
    rows_inserted: int = 0
    rows_updated: int = 0
    rows_deleted: int = 0
    error_message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != "running"

    @property
    def duration_seconds(self) -> float | None:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    class Config:
        json_schema_extra = {
            "example": {
                "run_id": 17,
                "job_name": "load_dim_customer_incremental",
                "start_time": "2024-01-15T02:00:00",
                "end_time": "2024-01-15T02:00:03",
                "status": "completed",
                "rows_processed": 120,
                "rows_inserted": 12,
                "rows_updated": 4,
                "rows_deleted": 0,
                "error_message": None
            }
        }
