"""
Warehouse store interface.

Persistence for checkpoints, the job log, versioned dimensions and facts.
The loaders only talk to this interface, so the SCD and fact algorithms
run unchanged against PostgreSQL or the in-memory store.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import date
from typing import Iterable

from retail_dw.core.models import (
    Checkpoint,
    DailySalesSummary,
    DimensionRecord,
    JobRun,
    SalesFact,
)

DIMENSIONS = ("customer", "product")


class WarehouseStore(ABC):
    """
    Abstract persistence collaborator for the ETL engine.

    Contract:
    - transaction() makes all dimension, fact, summary and checkpoint writes
      inside it atomic, and holds the named single-writer lock while open
    - job log writes are autonomous and survive a rolled-back transaction
    - surrogate keys are never reused
    """

    @abstractmethod
    def transaction(
        self,
        lock_key: str | None = None,
        timeout_seconds: float | None = None,
    ) -> AbstractContextManager["WarehouseStore"]:
        """
        Open an atomic unit of work.

        Args:
            lock_key: Source name to hold the single-writer lock for
            timeout_seconds: Upper bound for statements run inside the transaction

        Raises:
            ConcurrentRunError: If another run holds the lock
        """

    # -- checkpoints -------------------------------------------------------

    @abstractmethod
    def get_checkpoint(self, source_name: str) -> Checkpoint | None:
        ...

    @abstractmethod
    def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        ...

    @abstractmethod
    def delete_checkpoint(self, source_name: str) -> bool:
        ...

    @abstractmethod
    def list_checkpoints(self) -> list[Checkpoint]:
        ...

    # -- job log -----------------------------------------------------------

    @abstractmethod
    def insert_job_run(self, run: JobRun) -> int:
        """Persist a new run and return its run_id."""

    @abstractmethod
    def update_job_run(self, run: JobRun) -> None:
        ...

    @abstractmethod
    def get_job_run(self, run_id: int) -> JobRun | None:
        ...

    @abstractmethod
    def list_job_runs(self, limit: int = 50, status: str | None = None) -> list[JobRun]:
        """Most recent runs first."""

    # -- dimensions --------------------------------------------------------

    @abstractmethod
    def current_dimension_records(self, dimension: str) -> dict[int, DimensionRecord]:
        """Map of natural key to the current version of each member."""

    @abstractmethod
    def dimension_history(
        self, dimension: str, natural_key: int | None = None
    ) -> list[DimensionRecord]:
        """All versions, ordered by surrogate key."""

    @abstractmethod
    def expire_dimension_records(
        self, dimension: str, surrogate_keys: Iterable[int], expiry_date: date
    ) -> int:
        """
        Expire current versions.

        The stored expiry date is clamped so it never precedes the version's
        effective date. Versions that are already expired are left untouched.

        Returns:
            Number of versions expired
        """

    @abstractmethod
    def insert_dimension_records(
        self, dimension: str, records: list[DimensionRecord]
    ) -> list[DimensionRecord]:
        """
        Insert new current versions and return them with surrogate keys.

        Raises:
            IntegrityViolation: If a natural key already has a current version
        """

    # -- facts -------------------------------------------------------------

    @abstractmethod
    def fact_transaction_ids(self, above: int = 0) -> set[int]:
        """Degenerate keys already loaded that are greater than `above`."""

    @abstractmethod
    def insert_facts(self, facts: list[SalesFact]) -> int:
        ...

    @abstractmethod
    def list_facts(self, date_key: int | None = None) -> list[SalesFact]:
        ...

    @abstractmethod
    def resolve_geo_key(self, city: str | None, state: str | None) -> int | None:
        """Get or create the geography key for a city/state pair."""

    @abstractmethod
    def replace_daily_summary(
        self, date_key: int, rows: list[DailySalesSummary]
    ) -> tuple[int, int]:
        """
        Delete the summary rows for a day and insert fresh ones.

        Returns:
            Tuple of (rows_deleted, rows_inserted)
        """

    @abstractmethod
    def list_daily_summary(self, date_key: int) -> list[DailySalesSummary]:
        ...
