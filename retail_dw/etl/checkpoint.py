"""
Checkpoint store: durable per-source extraction cursors.
"""

from datetime import datetime
from typing import Callable

from retail_dw.core.models import BEGINNING_OF_TIME, Checkpoint
from retail_dw.observability import metrics
from retail_dw.observability.logger import get_logger
from retail_dw.warehouse.store import WarehouseStore

logger = get_logger(__name__)


class CheckpointStore:
    """
    Reads and advances incremental extraction cursors.

    update() must be called inside the same store transaction as the load
    it records; advancing a cursor before the load commits would skip rows
    on retry.
    """

    def __init__(self, store: WarehouseStore, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.clock = clock

    def get(self, source_name: str) -> datetime:
        """
        Last extracted timestamp for a source.

        Returns:
            The checkpoint timestamp, or BEGINNING_OF_TIME when none exists
        """
        checkpoint = self.store.get_checkpoint(source_name)
        if checkpoint is None:
            return BEGINNING_OF_TIME
        return checkpoint.last_extracted_timestamp

    def get_last_id(self, source_name: str) -> int | None:
        checkpoint = self.store.get_checkpoint(source_name)
        return checkpoint.last_extracted_id if checkpoint else None

    def update(
        self,
        source_name: str,
        last_id: int | None,
        last_timestamp: datetime,
    ) -> Checkpoint:
        """
        Upsert the checkpoint for a source and stamp last_run_time.

        Neither the id nor the timestamp ever moves backwards; a lower value
        is clamped to the stored one.

        Returns:
            The checkpoint as stored
        """
        existing = self.store.get_checkpoint(source_name)

        if existing is not None:
            if last_timestamp < existing.last_extracted_timestamp:
                logger.warning(
                    f"Checkpoint for {source_name} would move backwards; keeping "
                    f"{existing.last_extracted_timestamp.isoformat()}",
                    extra={"source_name": source_name, "requested": last_timestamp.isoformat()}
                )
                last_timestamp = existing.last_extracted_timestamp
            if existing.last_extracted_id is not None:
                if last_id is None or last_id < existing.last_extracted_id:
                    last_id = existing.last_extracted_id

        checkpoint = Checkpoint(
            source_name=source_name,
            last_extracted_id=last_id,
            last_extracted_timestamp=last_timestamp,
            last_run_time=self.clock(),
        )
        self.store.save_checkpoint(checkpoint)

        metrics.set_gauge(
            metrics.checkpoint_timestamp_seconds,
            last_timestamp.timestamp(),
            source_name=source_name,
        )
        logger.debug(
            f"Checkpoint advanced for {source_name}",
            extra={
                "source_name": source_name,
                "last_extracted_id": last_id,
                "last_extracted_timestamp": last_timestamp.isoformat(),
            }
        )
        return checkpoint

    def reset(self, source_name: str) -> bool:
        """
        Delete a checkpoint so the next run extracts from the beginning of time.

        Returns:
            True if a checkpoint existed
        """
        removed = self.store.delete_checkpoint(source_name)
        if removed:
            logger.warning(f"Checkpoint reset for {source_name}", extra={"source_name": source_name})
        return removed

    def list(self) -> list[dict]:
        """All checkpoints with the hours elapsed since their last run."""
        now = self.clock()
        return [
            {
                **c.model_dump(),
                "hours_since_last_run": int((now - c.last_run_time).total_seconds() // 3600),
            }
            for c in self.store.list_checkpoints()
        ]
