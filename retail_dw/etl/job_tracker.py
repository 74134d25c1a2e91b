"""
Job tracker: the run log of every ETL stage.

Runs move running -> completed or running -> failed and never leave a
terminal state. Writes go through the store's autonomous job-log methods,
so a failure recorded inside a rolled-back stage transaction survives.
"""

from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable

from retail_dw.core.errors import JobStateError
from retail_dw.core.models import JobCounts, JobRun
from retail_dw.observability import metrics
from retail_dw.observability.logger import get_logger
from retail_dw.warehouse.store import WarehouseStore

logger = get_logger(__name__)


def format_error(error: BaseException) -> str:
    """Captured error text stored on a failed run."""
    return f"{type(error).__name__}: {error}"


class JobTracker:
    """
    Records the lifecycle of ETL job runs.
    """

    def __init__(self, store: WarehouseStore, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.clock = clock

    def start(self, job_name: str) -> int:
        """
        Open a run in status "running".

        Returns:
            run_id of the new run
        """
        run_id = self.store.insert_job_run(JobRun(job_name=job_name, start_time=self.clock()))
        logger.info(f"Job started: {job_name}", extra={"job_name": job_name, "run_id": run_id})
        return run_id

    def _running(self, run_id: int, target: str) -> JobRun:
        run = self.store.get_job_run(run_id)
        if run is None:
            raise KeyError(f"Unknown job run {run_id}")
        if run.is_terminal:
            raise JobStateError(run_id, run.status, target)
        return run

    def complete(self, run_id: int, counts: JobCounts | None = None) -> JobRun:
        """
        Mark a running job as completed with its row counters.

        Raises:
            JobStateError: If the run already reached a terminal status
        """
        run = self._running(run_id, "completed")
        counts = counts or JobCounts()
        finished = run.model_copy(update={
            "status": "completed",
            "end_time": self.clock(),
            **counts.model_dump(),
        })
        self.store.update_job_run(finished)
        metrics.record_job_outcome(run.job_name, "completed")

        logger.info(
            f"Job completed: {run.job_name}",
            extra={"job_name": run.job_name, "run_id": run_id, **counts.model_dump()}
        )
        return finished

    def fail(self, run_id: int, error_message: str) -> JobRun:
        """
        Mark a running job as failed with the captured error text.

        Raises:
            JobStateError: If the run already reached a terminal status
        """
        run = self._running(run_id, "failed")
        failed = run.model_copy(update={
            "status": "failed",
            "end_time": self.clock(),
            "error_message": error_message,
        })
        self.store.update_job_run(failed)
        metrics.record_job_outcome(run.job_name, "failed")

        logger.error(
            f"Job failed: {run.job_name}",
            extra={"job_name": run.job_name, "run_id": run_id, "error_message": error_message}
        )
        return failed

    @contextmanager
    def track(self, job_name: str):
        """
        Run a block as one job.

        Yields a dict; the block stores its JobCounts under "counts". An
        exception marks the run failed before it propagates.

        Usage:
            with tracker.track("load_fact_sales") as job:
                ...
                job["counts"] = JobCounts(rows_inserted=10)
        """
        run_id = self.start(job_name)
        job = {"run_id": run_id, "counts": None}
        try:
            yield job
        except BaseException as e:
            self.fail(run_id, format_error(e))
            raise
        self.complete(run_id, job["counts"])

    def recent_runs(self, limit: int = 20, status: str | None = None) -> list[JobRun]:
        """Most recent runs first."""
        return self.store.list_job_runs(limit=limit, status=status)

    def stale_runs(self, older_than: timedelta) -> list[JobRun]:
        """
        Runs still "running" after `older_than`.

        A killed process leaves its run in "running" forever; these are the
        candidates for resolve_stale().
        """
        cutoff = self.clock() - older_than
        return [
            run for run in self.store.list_job_runs(limit=1000, status="running")
            if run.start_time < cutoff
        ]

    def resolve_stale(self, run_id: int, message: str = "Marked failed by operator") -> JobRun:
        """Fail an abandoned run so it no longer shows as running."""
        logger.warning(f"Resolving stale run {run_id}", extra={"run_id": run_id})
        return self.fail(run_id, message)
