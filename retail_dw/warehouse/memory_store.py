"""
In-memory warehouse store.

Implements the full WarehouseStore contract without a database: used by
the test suite and for embedding the engine in notebooks. Transactions are
snapshot-and-restore; the job log and key sequences sit outside the
snapshot, matching PostgreSQL sequences and the autonomous job log.
"""

import copy
import itertools
import threading
from contextlib import contextmanager
from datetime import date
from typing import Iterable

from retail_dw.core.errors import ConcurrentRunError, IntegrityViolation
from retail_dw.core.models import (
    Checkpoint,
    DailySalesSummary,
    DimensionRecord,
    JobRun,
    SalesFact,
)

from .store import DIMENSIONS, WarehouseStore


class _State:
    """Transactional part of the in-memory warehouse."""

    def __init__(self):
        self.dimensions: dict[str, dict[int, DimensionRecord]] = {d: {} for d in DIMENSIONS}
        self.current_index: dict[str, dict[int, int]] = {d: {} for d in DIMENSIONS}
        self.facts: list[SalesFact] = []
        self.fact_ids: set[int] = set()
        self.checkpoints: dict[str, Checkpoint] = {}
        self.geography: dict[tuple[str, str], int] = {}
        self.daily_summary: dict[int, list[DailySalesSummary]] = {}


class InMemoryWarehouseStore(WarehouseStore):
    """
    Dictionary-backed warehouse store.

    The current-version index (natural key -> surrogate key) is maintained
    alongside the versioned records so current lookups never scan history.
    """

    def __init__(self):
        self._state = _State()
        self._job_runs: dict[int, JobRun] = {}
        self._sequences = {
            "job_run": itertools.count(1),
            "customer": itertools.count(1),
            "product": itertools.count(1),
            "fact": itertools.count(1),
            "geo": itertools.count(1),
        }
        self._locks_guard = threading.Lock()
        self._held_locks: set[str] = set()
        self._in_transaction = False

    @contextmanager
    def transaction(self, lock_key: str | None = None, timeout_seconds: float | None = None):
        if lock_key is not None:
            self._acquire(lock_key)

        if self._in_transaction:
            if lock_key is not None:
                self._release(lock_key)
            raise RuntimeError("Nested transactions are not supported")

        snapshot = copy.deepcopy(self._state)
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self._state = snapshot
            raise
        finally:
            self._in_transaction = False
            if lock_key is not None:
                self._release(lock_key)

    def _acquire(self, lock_key: str) -> None:
        with self._locks_guard:
            if lock_key in self._held_locks:
                raise ConcurrentRunError(lock_key)
            self._held_locks.add(lock_key)

    def _release(self, lock_key: str) -> None:
        with self._locks_guard:
            self._held_locks.discard(lock_key)

    # -- checkpoints -------------------------------------------------------

    def get_checkpoint(self, source_name: str) -> Checkpoint | None:
        checkpoint = self._state.checkpoints.get(source_name)
        return checkpoint.model_copy() if checkpoint else None

    def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        self._state.checkpoints[checkpoint.source_name] = checkpoint.model_copy()

    def delete_checkpoint(self, source_name: str) -> bool:
        return self._state.checkpoints.pop(source_name, None) is not None

    def list_checkpoints(self) -> list[Checkpoint]:
        return sorted(
            (c.model_copy() for c in self._state.checkpoints.values()),
            key=lambda c: c.last_run_time,
            reverse=True,
        )

    # -- job log -----------------------------------------------------------

    def insert_job_run(self, run: JobRun) -> int:
        run_id = next(self._sequences["job_run"])
        self._job_runs[run_id] = run.model_copy(update={"run_id": run_id})
        return run_id

    def update_job_run(self, run: JobRun) -> None:
        if run.run_id not in self._job_runs:
            raise KeyError(f"Unknown job run {run.run_id}")
        self._job_runs[run.run_id] = run.model_copy()

    def get_job_run(self, run_id: int) -> JobRun | None:
        run = self._job_runs.get(run_id)
        return run.model_copy() if run else None

    def list_job_runs(self, limit: int = 50, status: str | None = None) -> list[JobRun]:
        runs = [r for r in self._job_runs.values() if status is None or r.status == status]
        runs.sort(key=lambda r: (r.start_time, r.run_id), reverse=True)
        return [r.model_copy() for r in runs[:limit]]

    # -- dimensions --------------------------------------------------------

    def current_dimension_records(self, dimension: str) -> dict[int, DimensionRecord]:
        records = self._state.dimensions[dimension]
        return {
            natural_key: records[surrogate_key].model_copy(deep=True)
            for natural_key, surrogate_key in self._state.current_index[dimension].items()
        }

    def dimension_history(
        self, dimension: str, natural_key: int | None = None
    ) -> list[DimensionRecord]:
        return [
            r.model_copy(deep=True)
            for _, r in sorted(self._state.dimensions[dimension].items())
            if natural_key is None or r.natural_key == natural_key
        ]

    def expire_dimension_records(
        self, dimension: str, surrogate_keys: Iterable[int], expiry_date: date
    ) -> int:
        records = self._state.dimensions[dimension]
        index = self._state.current_index[dimension]
        expired = 0

        for surrogate_key in surrogate_keys:
            record = records.get(surrogate_key)
            if record is None or not record.is_current:
                continue
            records[surrogate_key] = record.model_copy(update={
                "is_current": False,
                "expiry_date": max(expiry_date, record.effective_date),
            })
            index.pop(record.natural_key, None)
            expired += 1

        return expired

    def insert_dimension_records(
        self, dimension: str, records: list[DimensionRecord]
    ) -> list[DimensionRecord]:
        index = self._state.current_index[dimension]
        batch_keys = [r.natural_key for r in records]
        already_current = sorted(k for k in set(batch_keys) if k in index)
        if already_current:
            raise IntegrityViolation(
                f"{dimension} natural keys already have a current version: {already_current}"
            )
        if len(set(batch_keys)) != len(batch_keys):
            raise IntegrityViolation(f"Duplicate {dimension} natural keys in one insert batch")

        inserted = []
        for record in records:
            surrogate_key = next(self._sequences[dimension])
            stored = record.model_copy(deep=True, update={"surrogate_key": surrogate_key})
            self._state.dimensions[dimension][surrogate_key] = stored
            if stored.is_current:
                index[stored.natural_key] = surrogate_key
            inserted.append(stored.model_copy(deep=True))
        return inserted

    # -- facts -------------------------------------------------------------

    def fact_transaction_ids(self, above: int = 0) -> set[int]:
        return {t for t in self._state.fact_ids if t > above}

    def insert_facts(self, facts: list[SalesFact]) -> int:
        for fact in facts:
            if fact.transaction_id in self._state.fact_ids:
                raise IntegrityViolation(
                    f"Transaction {fact.transaction_id} already has a fact row"
                )
            stored = fact.model_copy(update={"sale_key": next(self._sequences["fact"])})
            self._state.facts.append(stored)
            self._state.fact_ids.add(fact.transaction_id)
        return len(facts)

    def list_facts(self, date_key: int | None = None) -> list[SalesFact]:
        return [
            f.model_copy()
            for f in self._state.facts
            if date_key is None or f.date_key == date_key
        ]

    def resolve_geo_key(self, city: str | None, state: str | None) -> int | None:
        if not city or not state:
            return None
        key = (city, state)
        if key not in self._state.geography:
            self._state.geography[key] = next(self._sequences["geo"])
        return self._state.geography[key]

    def replace_daily_summary(
        self, date_key: int, rows: list[DailySalesSummary]
    ) -> tuple[int, int]:
        deleted = len(self._state.daily_summary.pop(date_key, []))
        if rows:
            self._state.daily_summary[date_key] = [r.model_copy() for r in rows]
        return deleted, len(rows)

    def list_daily_summary(self, date_key: int) -> list[DailySalesSummary]:
        return [r.model_copy() for r in self._state.daily_summary.get(date_key, [])]
