"""
Error taxonomy for the warehouse-loading engine.

Low-level failures are mapped onto these types at the storage boundary so
pipeline stages can record them on the job tracker before re-raising.
"""


class EtlError(Exception):
    """Base class for all ETL failures."""


class SourceUnavailable(EtlError):
    """Raised when an operational source cannot be read."""

    def __init__(self, source_table: str, message: str):
        self.source_table = source_table
        self.message = message
        super().__init__(f"[{source_table}] source unavailable: {message}")


class InvalidSourceRow(SourceUnavailable):
    """Raised when a source row fails validation."""

    def __init__(self, source_table: str, message: str, row_key=None):
        self.row_key = row_key
        super().__init__(source_table, f"invalid row {row_key}: {message}")


class IntegrityViolation(EtlError):
    """Raised when a write would break a warehouse invariant."""


class PartialWriteFailure(EtlError):
    """Raised when a write fails part-way through a stage."""


class ConcurrentRunError(EtlError):
    """Raised when another pipeline instance holds the lock for a source."""

    def __init__(self, lock_key: str):
        self.lock_key = lock_key
        super().__init__(f"Another run is already loading '{lock_key}'")


class PipelineTimeout(EtlError):
    """Raised when a run exceeds its configured time budget."""


class JobStateError(EtlError):
    """Raised on an illegal job run state transition."""

    def __init__(self, run_id: int, status: str, target: str):
        self.run_id = run_id
        self.status = status
        self.target = target
        super().__init__(
            f"Job run {run_id} is '{status}' and cannot transition to '{target}'"
        )
