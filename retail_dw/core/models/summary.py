"""
Structured results returned by pipeline stages and entry points.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class StageResult(BaseModel):
    """
    Outcome of one pipeline stage (one job run).
    """

    stage: str
    run_id: int | None = None
    status: Literal["completed", "failed"] = "completed"
    rows_processed: int = 0
    rows_inserted: int = 0
    rows_updated: int = 0
    rows_deleted: int = 0
    rows_skipped: int = 0
    duration_seconds: float = 0.0
    error_message: str | None = None


class PipelineSummary(BaseModel):
    """
    Result of run_full_pipeline() or run_incremental().
    """

    mode: Literal["full", "incremental"]
    status: Literal["completed", "failed"] = "completed"
    started_at: datetime
    duration_seconds: float = 0.0
    stages: list[StageResult] = Field(default_factory=list)
    error_message: str | None = None

    @property
    def rows_processed(self) -> int:
        return sum(s.rows_processed for s in self.stages)

    @property
    def rows_inserted(self) -> int:
        return sum(s.rows_inserted for s in self.stages)

    @property
    def rows_updated(self) -> int:
        return sum(s.rows_updated for s in self.stages)

    @property
    def rows_skipped(self) -> int:
        return sum(s.rows_skipped for s in self.stages)

    def describe(self) -> str:
        """Human-readable one-paragraph summary of the run."""
        lines = [
            f"{self.mode} pipeline {self.status} in {self.duration_seconds:.2f}s: "
            f"processed={self.rows_processed} inserted={self.rows_inserted} "
            f"updated={self.rows_updated} skipped={self.rows_skipped}"
        ]
        for stage in self.stages:
            lines.append(
                f"  {stage.stage}: {stage.status} "
                f"(processed={stage.rows_processed}, inserted={stage.rows_inserted}, "
                f"updated={stage.rows_updated}, deleted={stage.rows_deleted}, "
                f"skipped={stage.rows_skipped})"
            )
        if self.error_message:
            lines.append(f"  error: {self.error_message}")
        return "\n".join(lines)
