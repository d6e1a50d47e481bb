"""In-memory pipeline job store with age and capacity eviction.

Holds every in-flight and finished pipeline record for the lifetime of
the process. Nothing is persisted across restarts. Eviction is lazy:
the orchestrator calls evict() once at the start of every run instead
of running a background timer.

All access goes through one lock so the store stays consistent when
request handlers run on worker threads as well as the event loop.
"""

import logging
import threading
from datetime import UTC, datetime, timedelta

from carenet.shared.response_models import PipelineRecord

logger = logging.getLogger(__name__)


class JobStoreClosedError(RuntimeError):
    """Raised when a closed store is written to."""


def _age_key(record: PipelineRecord) -> tuple[datetime, str]:
    """Sort key ordering records oldest first, ties by pipeline ID."""
    return (record.started_at, record.pipeline_id)


class JobStore:
    """Bounded mapping of pipeline ID to pipeline record.

    Args:
        ttl: Maximum age of a record before eviction.
        max_records: Maximum number of records kept after eviction.
    """

    def __init__(self, ttl: timedelta, max_records: int) -> None:
        if max_records < 0:
            raise ValueError("max_records must be non-negative")
        self._ttl = ttl
        self._max_records = max_records
        self._records: dict[str, PipelineRecord] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def ttl(self) -> timedelta:
        """Maximum record age."""
        return self._ttl

    @property
    def max_records(self) -> int:
        """Capacity limit applied by evict()."""
        return self._max_records

    def insert(self, record: PipelineRecord) -> None:
        """Add or replace a record under its pipeline ID.

        Args:
            record: Record to store.

        Raises:
            JobStoreClosedError: If the store has been closed.
        """
        with self._lock:
            if self._closed:
                raise JobStoreClosedError("job store is closed")
            self._records[record.pipeline_id] = record

    def replace(self, record: PipelineRecord) -> bool:
        """Overwrite a record only while its pipeline ID is still stored.

        Runs write their progress back through here, so a record that
        eviction already dropped stays dropped.

        Args:
            record: Updated record.

        Returns:
            True if the record was written, False if it is gone.

        Raises:
            JobStoreClosedError: If the store has been closed.
        """
        with self._lock:
            if self._closed:
                raise JobStoreClosedError("job store is closed")
            if record.pipeline_id not in self._records:
                return False
            self._records[record.pipeline_id] = record
            return True

    def get(self, pipeline_id: str) -> PipelineRecord | None:
        """Look up a record.

        Args:
            pipeline_id: Pipeline identifier.

        Returns:
            The record, or None if unknown or evicted.
        """
        with self._lock:
            return self._records.get(pipeline_id)

    def list_all(self) -> list[PipelineRecord]:
        """Return all records, most recently started first."""
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=_age_key, reverse=True)

    def evict(self, now: datetime | None = None, reserve: int = 0) -> int:
        """Drop expired records, then the oldest ones above capacity.

        Args:
            now: Reference time. Defaults to the current UTC time.
            reserve: Slots to leave free below the capacity, for records
                about to be inserted.

        Returns:
            Number of records removed.
        """
        now = now or datetime.now(UTC)
        with self._lock:
            expired = [
                pipeline_id for pipeline_id, record in self._records.items()
                if now - record.started_at > self._ttl
            ]
            for pipeline_id in expired:
                del self._records[pipeline_id]

            overflow: list[str] = []
            excess = len(self._records) - max(self._max_records - reserve, 0)
            if excess > 0:
                oldest = sorted(self._records.values(), key=_age_key)[:excess]
                overflow = [record.pipeline_id for record in oldest]
                for pipeline_id in overflow:
                    del self._records[pipeline_id]
            remaining = len(self._records)

        removed = len(expired) + len(overflow)
        if removed:
            logger.info(
                "job_store_evicted",
                extra={
                    "expired": len(expired),
                    "over_capacity": len(overflow),
                    "remaining": remaining,
                },
            )
        return removed

    def close(self) -> None:
        """Release all records and reject further inserts."""
        with self._lock:
            self._records.clear()
            self._closed = True
        logger.info("job_store_closed")

    @property
    def closed(self) -> bool:
        """Whether close() has been called."""
        return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, pipeline_id: object) -> bool:
        with self._lock:
            return pipeline_id in self._records
