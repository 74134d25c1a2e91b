"""
SCD Type 2 dimension loading.

Per natural key the versions move {no record} -> {current} ->
{expired, current v2} -> ... The planning functions are pure: they take the
current-version map and the incoming snapshots and return what to expire
and what to insert. DimensionLoader applies a plan through the warehouse
store, always expiring before inserting so a natural key never has two
current versions.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Iterable

from pydantic import BaseModel

from retail_dw.core.config import BusinessPolicy
from retail_dw.core.models import DimensionRecord
from retail_dw.observability import metrics
from retail_dw.observability.logger import get_logger
from retail_dw.warehouse.store import WarehouseStore

from .dimensions import DimensionSpec

logger = get_logger(__name__)

ChangePredicate = Callable[[dict[str, Any], dict[str, Any]], bool]


@dataclass
class DimensionLoadResult:
    """Counters of one dimension load."""

    dimension: str
    rows_processed: int = 0
    rows_expired: int = 0
    rows_inserted: int = 0


def plan_expirations(
    current: dict[int, DimensionRecord],
    snapshots: dict[int, dict[str, Any]],
    change_predicate: ChangePredicate,
) -> list[int]:
    """
    Surrogate keys of the current versions whose source snapshot changed.

    Members absent from `snapshots` are left alone.
    """
    return [
        record.surrogate_key
        for natural_key, record in current.items()
        if natural_key in snapshots
        and change_predicate(record.attributes, snapshots[natural_key])
    ]


def plan_new_versions(
    snapshots: dict[int, dict[str, Any]],
    current_keys: Iterable[int],
    today: date,
) -> list[DimensionRecord]:
    """
    New current versions for every snapshot whose natural key has no
    current version.
    """
    current_keys = set(current_keys)
    return [
        DimensionRecord(natural_key=natural_key, attributes=attributes, effective_date=today)
        for natural_key, attributes in snapshots.items()
        if natural_key not in current_keys
    ]


class DimensionLoader:
    """
    Applies SCD Type 2 plans for one dimension.

    All methods expect to run inside a store transaction opened by the
    caller; a failure part-way leaves nothing behind after rollback, and a
    retry is a no-op for versions that were already expired or inserted.
    """

    def __init__(
        self,
        store: WarehouseStore,
        spec: DimensionSpec,
        policy: BusinessPolicy,
        clock: Callable[[], datetime] = datetime.now,
        check_deadline: Callable[[], None] | None = None,
    ):
        """
        Initialize dimension loader.

        Args:
            store: Warehouse store
            spec: Dimension being loaded
            policy: Business constants for derived attributes
            clock: Source of "now"; effective dates are clock().date()
            check_deadline: Called while planning; raises when the run is out of time
        """
        self.store = store
        self.spec = spec
        self.policy = policy
        self.clock = clock
        self.check_deadline = check_deadline or (lambda: None)

    @property
    def table(self) -> str:
        return f"dim_{self.spec.name}"

    def snapshots(self, source_rows: Iterable[BaseModel]) -> dict[int, dict[str, Any]]:
        """Attribute snapshot per natural key; a later row for the same key wins."""
        result = {}
        for row in source_rows:
            self.check_deadline()
            result[self.spec.key_of(row)] = self.spec.snapshot(row, self.policy)
        return result

    def _expire(self, surrogate_keys: list[int]) -> int:
        if not surrogate_keys:
            return 0
        expiry_date = self.clock().date() - timedelta(days=1)
        expired = self.store.expire_dimension_records(self.spec.name, surrogate_keys, expiry_date)
        metrics.record_rows_written(self.table, expired=expired)
        return expired

    def _insert(self, records: list[DimensionRecord]) -> int:
        if not records:
            return 0
        inserted = len(self.store.insert_dimension_records(self.spec.name, records))
        metrics.record_rows_written(self.table, inserted=inserted)
        return inserted

    def expire_changed(
        self,
        current_records: dict[int, DimensionRecord],
        source_rows: Iterable[BaseModel] | dict[int, dict[str, Any]],
        change_predicate: ChangePredicate | None = None,
    ) -> int:
        """
        Expire current versions whose tracked attributes differ from the source.

        Args:
            current_records: natural key -> current version
            source_rows: Source rows, or snapshots already built from them
            change_predicate: (current_attributes, incoming_attributes) -> bool;
                defaults to comparing the tracked attributes of the dimension

        Returns:
            Number of versions expired
        """
        snapshots = source_rows if isinstance(source_rows, dict) else self.snapshots(source_rows)
        predicate = change_predicate or self.spec.changed
        return self._expire(plan_expirations(current_records, snapshots, predicate))

    def insert_new_versions(
        self,
        source_rows: Iterable[BaseModel] | dict[int, dict[str, Any]],
    ) -> int:
        """
        Insert a current version for every source row without one.

        Returns:
            Number of versions inserted
        """
        snapshots = source_rows if isinstance(source_rows, dict) else self.snapshots(source_rows)
        current_keys = self.store.current_dimension_records(self.spec.name).keys()
        return self._insert(plan_new_versions(snapshots, current_keys, self.clock().date()))

    def load_incremental(self, source_rows: Iterable[BaseModel]) -> DimensionLoadResult:
        """Expire changed members, then insert new versions for changed and new ones."""
        snapshots = self.snapshots(source_rows)
        result = DimensionLoadResult(self.spec.name, rows_processed=len(snapshots))
        if not snapshots:
            return result

        # Close out changed versions before inserting their replacements
        current = self.store.current_dimension_records(self.spec.name)
        result.rows_expired = self.expire_changed(current, snapshots)
        result.rows_inserted = self.insert_new_versions(snapshots)

        logger.info(
            f"Incremental load of {self.table}",
            extra={"dimension": self.spec.name, **_counts(result)}
        )
        return result

    def full_refresh(self, source_rows: Iterable[BaseModel]) -> DimensionLoadResult:
        """
        Expire every current version, then insert every source row.

        History collapses to the rebuild date: all expiry dates become
        yesterday, even for members that did not change.
        """
        snapshots = self.snapshots(source_rows)
        current = self.store.current_dimension_records(self.spec.name)

        result = DimensionLoadResult(self.spec.name, rows_processed=len(snapshots))
        result.rows_expired = self._expire([r.surrogate_key for r in current.values()])
        result.rows_inserted = self._insert(plan_new_versions(snapshots, (), self.clock().date()))

        logger.info(
            f"Full refresh of {self.table}",
            extra={"dimension": self.spec.name, **_counts(result)}
        )
        return result


def _counts(result: DimensionLoadResult) -> dict[str, int]:
    return {
        "rows_processed": result.rows_processed,
        "rows_expired": result.rows_expired,
        "rows_inserted": result.rows_inserted,
    }
