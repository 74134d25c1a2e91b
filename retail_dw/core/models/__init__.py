"""
Core data models for the retail warehouse ETL engine.

All models use Pydantic for runtime validation and type safety.
"""

from .checkpoint import BEGINNING_OF_TIME, Checkpoint
from .dimension import OPEN_END_DATE, DimensionRecord
from .fact import DailySalesSummary, SalesFact
from .job_run import JobCounts, JobRun, JobStatus
from .source import SourceCustomer, SourceProduct, SourceTransaction
from .summary import PipelineSummary, StageResult

__all__ = [
    "BEGINNING_OF_TIME",
    "OPEN_END_DATE",
    "Checkpoint",
    "DimensionRecord",
    "SalesFact",
    "DailySalesSummary",
    "JobCounts",
    "JobRun",
    "JobStatus",
    "SourceCustomer",
    "SourceProduct",
    "SourceTransaction",
    "PipelineSummary",
    "StageResult",
]
