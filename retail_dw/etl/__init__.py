"""
Incremental warehouse loading: checkpoints, change detection, SCD Type 2
dimensions, facts and the job log.
"""

from .change_detector import ChangeDetector, detect_changes
from .checkpoint import CheckpointStore
from .dimensions import (
    CUSTOMER_DIMENSION,
    PRODUCT_DIMENSION,
    DimensionSpec,
    classify_price,
    classify_spend,
)
from .fact_loader import FactLoader, FactLoadResult, derive_measures, summarize_facts
from .job_tracker import JobTracker
from .pipeline import EtlPipeline
from .scd2 import DimensionLoader, DimensionLoadResult, plan_expirations, plan_new_versions

__all__ = [
    "ChangeDetector",
    "detect_changes",
    "CheckpointStore",
    "CUSTOMER_DIMENSION",
    "PRODUCT_DIMENSION",
    "DimensionSpec",
    "classify_price",
    "classify_spend",
    "FactLoader",
    "FactLoadResult",
    "derive_measures",
    "summarize_facts",
    "JobTracker",
    "EtlPipeline",
    "DimensionLoader",
    "DimensionLoadResult",
    "plan_expirations",
    "plan_new_versions",
]
