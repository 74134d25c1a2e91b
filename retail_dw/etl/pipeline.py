"""
ETL orchestration.

Every stage runs as one job-tracker run around one store transaction that
holds the single-writer lock of its source: detection, expire, insert and
checkpoint advance either all commit or all roll back. A failed stage is
recorded on the job log before the error propagates, so the checkpoint
stays where it was and a rerun reprocesses the same delta.
"""

import time
from datetime import date, datetime
from typing import Callable

from retail_dw.core.config import EtlConfig
from retail_dw.core.errors import PipelineTimeout
from retail_dw.core.models import JobCounts, PipelineSummary, StageResult
from retail_dw.observability import metrics
from retail_dw.observability.logger import get_logger, log_operation
from retail_dw.warehouse.source import SourceReader
from retail_dw.warehouse.store import WarehouseStore

from .change_detector import ChangeDetector
from .checkpoint import CheckpointStore
from .dimensions import CUSTOMER_DIMENSION, PRODUCT_DIMENSION, DimensionSpec
from .fact_loader import FactLoader
from .job_tracker import JobTracker, format_error
from .scd2 import DimensionLoader, DimensionLoadResult

logger = get_logger(__name__)

SALES_SOURCE = "sales"
SUMMARY_LOCK = "fact_daily_sales_summary"

FACT_JOB = "load_fact_sales"
SUMMARY_JOB = "refresh_daily_summary"

StageBody = Callable[[], dict[str, int]]


class EtlPipeline:
    """
    Entry point for full and incremental warehouse loads.

    Usage:
        pipeline = EtlPipeline(store, source, load_config())
        summary = pipeline.run_incremental()
        print(summary.describe())
    """

    def __init__(
        self,
        store: WarehouseStore,
        source: SourceReader,
        config: EtlConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
        timer: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize pipeline.

        Args:
            store: Warehouse store receiving dimensions, facts, checkpoints and job runs
            source: Reader over the operational tables
            config: Business policy and runtime settings (defaults when omitted)
            clock: Wall clock for business dates and job run times; checkpoint
                timestamps come from source.now()
            timer: Monotonic timer used for durations and the run timeout
        """
        self.store = store
        self.source = source
        self.config = config or EtlConfig()
        self.clock = clock
        self.timer = timer

        self.checkpoints = CheckpointStore(store, clock)
        self.tracker = JobTracker(store, clock)
        self.detector = ChangeDetector(source, store)
        self.fact_loader = FactLoader(
            store, source, self.config.policy, check_deadline=self._check_deadline
        )

        self.last_summary: PipelineSummary | None = None
        self._deadline: float | None = None
        self._run_started: datetime | None = None

    # -- timeout -----------------------------------------------------------

    def _check_deadline(self) -> None:
        if self._deadline is not None and self.timer() > self._deadline:
            raise PipelineTimeout(
                f"Run exceeded its time budget of {self.config.timeout_seconds}s"
            )

    def _remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(self._deadline - self.timer(), 0.001)

    # -- entry points ------------------------------------------------------

    def run_full_pipeline(self) -> PipelineSummary:
        """
        Rebuild both dimensions, load every eligible fact and refresh the
        daily summary of the run date.

        Raises:
            EtlError: The first stage failure, after it is recorded
        """
        return self._run("full", [
            lambda stages: self._full_dimension(stages, CUSTOMER_DIMENSION),
            lambda stages: self._full_dimension(stages, PRODUCT_DIMENSION),
            self._load_facts,
            lambda stages: self._refresh_summary(stages, self._run_started.date()),
        ])

    def run_incremental(self) -> PipelineSummary:
        """
        Load changed customers and products as new SCD Type 2 versions, then
        the facts above the sales watermark.

        Raises:
            EtlError: The first stage failure, after it is recorded
        """
        return self._run("incremental", [
            lambda stages: self._incremental_dimension(stages, CUSTOMER_DIMENSION),
            lambda stages: self._incremental_dimension(stages, PRODUCT_DIMENSION),
            self._load_facts,
        ])

    def refresh_daily_summary(self, day: date | None = None) -> StageResult:
        """
        Rebuild the daily summary of one day (today by default) outside a
        pipeline run.
        """
        day = day or self.clock().date()
        self._deadline = None
        return self._refresh_summary([], day)

    # -- orchestration -----------------------------------------------------

    def _run(self, mode: str, steps: list[Callable[[list[StageResult]], StageResult]]) -> PipelineSummary:
        self._run_started = self.clock()
        began = self.timer()
        timeout = self.config.timeout_seconds
        self._deadline = began + timeout if timeout else None

        summary = PipelineSummary(mode=mode, started_at=self._run_started)
        self.last_summary = summary

        try:
            with log_operation(f"{mode}_pipeline", logger=logger):
                for step in steps:
                    self._check_deadline()
                    step(summary.stages)
        except Exception as e:
            summary.status = "failed"
            summary.error_message = format_error(e)
            raise
        finally:
            summary.duration_seconds = self.timer() - began
            metrics.increment_counter(
                metrics.pipeline_runs_total, mode=mode, status=summary.status
            )
            logger.info(summary.describe(), extra={"mode": mode, "status": summary.status})

        return summary

    def _stage(
        self,
        stages: list[StageResult],
        job_name: str,
        lock_key: str,
        body: StageBody,
    ) -> StageResult:
        """
        Run one stage: a tracked job around one locked store transaction.

        body returns the stage counters; rows_skipped is reported on the
        StageResult only.
        """
        result = StageResult(stage=job_name)
        stages.append(result)
        began = self.timer()

        try:
            with metrics.track_duration(metrics.stage_duration_seconds, stage=job_name):
                with self.tracker.track(job_name) as job:
                    result.run_id = job["run_id"]
                    with self.store.transaction(lock_key=lock_key, timeout_seconds=self._remaining()):
                        counts = body()
                    # Record counts on the job run
                    job["counts"] = JobCounts(
                        rows_processed=counts.get("rows_processed", 0),
                        rows_inserted=counts.get("rows_inserted", 0),
                        rows_updated=counts.get("rows_updated", 0),
                        rows_deleted=counts.get("rows_deleted", 0),
                    )
        except Exception as e:
            result.status = "failed"
            result.error_message = format_error(e)
            raise
        finally:
            result.duration_seconds = self.timer() - began

        for name, value in counts.items():
            setattr(result, name, value)
        return result

    def _dimension_loader(self, spec: DimensionSpec) -> DimensionLoader:
        return DimensionLoader(
            self.store,
            spec,
            self.config.policy,
            clock=self.clock,
            check_deadline=self._check_deadline,
        )

    def _full_dimension(self, stages: list[StageResult], spec: DimensionSpec) -> StageResult:
        def body():
            extracted_at = self.source.now()
            loaded = self._dimension_loader(spec).full_refresh(
                self.source.iter_rows(spec.source_table)
            )
            self.checkpoints.update(spec.source_table, None, extracted_at)
            return _dimension_counts(loaded)

        return self._stage(stages, f"{spec.job_prefix}_full", spec.source_table, body)

    def _incremental_dimension(self, stages: list[StageResult], spec: DimensionSpec) -> StageResult:
        def body():
            # taken before extraction, on the clock that writes updated_at
            extracted_at = self.source.now()
            since = self.checkpoints.get(spec.source_table)
            changed = self.detector.find_changed(spec.source_table, since)
            loaded = self._dimension_loader(spec).load_incremental(changed)
            self.checkpoints.update(spec.source_table, None, extracted_at)
            return _dimension_counts(loaded)

        return self._stage(stages, f"{spec.job_prefix}_incremental", spec.source_table, body)

    def _load_facts(self, stages: list[StageResult]) -> StageResult:
        def body():
            extracted_at = self.source.now()
            last_loaded = self.checkpoints.get_last_id(SALES_SOURCE)
            loaded = self.fact_loader.load_new_facts(last_loaded)
            self.checkpoints.update(SALES_SOURCE, loaded.watermark, extracted_at)
            return {
                "rows_processed": loaded.rows_processed,
                "rows_inserted": loaded.rows_inserted,
                "rows_skipped": loaded.rows_skipped,
            }

        return self._stage(stages, FACT_JOB, SALES_SOURCE, body)

    def _refresh_summary(self, stages: list[StageResult], day: date) -> StageResult:
        def body():
            deleted, inserted = self.fact_loader.refresh_daily_summary(day)
            return {
                "rows_processed": inserted,
                "rows_inserted": inserted,
                "rows_deleted": deleted,
            }

        return self._stage(stages, SUMMARY_JOB, SUMMARY_LOCK, body)


def _dimension_counts(loaded: DimensionLoadResult) -> dict[str, int]:
    return {
        "rows_processed": loaded.rows_processed,
        "rows_inserted": loaded.rows_inserted,
        "rows_updated": loaded.rows_expired,
    }
