"""
Backup Replication

Mirrors ledger writes into the backup document store on a background
worker. The ledger write on the caller's path never waits for the mirror;
mirror writes are retried with exponential backoff and jitter, and a
write that still fails after the last attempt is logged and dropped.
"""

import logging
import random
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .document_store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for mirror write retries."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True


@dataclass
class ReplicationMetrics:
    """Counters for mirror writes."""

    submitted: int = 0
    replicated: int = 0
    retried: int = 0
    dropped: int = 0
    last_failure_time: datetime | None = None
    last_error: str | None = None
    error_types: dict[str, int] = field(default_factory=dict)


class BackupReplicator:
    """
    Background writer for the backup document store.

    A single worker thread applies writes in submission order, so the
    mirror of one database never sees a later document before an earlier one.
    """

    def __init__(
        self,
        store: DocumentStore,
        retry_attempts: int = 3,
        retry_delay_ms: int = 1000,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self.store = store
        self.retry_config = retry_config or RetryConfig(
            max_attempts=max(1, retry_attempts),
            initial_delay=retry_delay_ms / 1000.0,
        )
        self.metrics = ReplicationMetrics()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="dbvc-replicator")
        self._futures: set[Future] = set()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def pending_count(self) -> int:
        with self._lock:
            return sum(1 for f in self._futures if not f.done())

    def submit(self, entity_type: str, document: dict[str, Any]) -> Future | None:
        """
        Queue a document for mirroring.

        Returns:
            The future of the write, or None when the replicator is closed
        """
        with self._lock:
            if self._closed:
                logger.warning(
                    f"Replicator closed; dropping {entity_type} document {document.get('id')}"
                )
                return None
            self.metrics.submitted += 1
            future = self._executor.submit(self._replicate, entity_type, dict(document))
            self._futures.add(future)
        future.add_done_callback(self._discard)
        return future

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def _replicate(self, entity_type: str, document: dict[str, Any]) -> bool:
        """Write one document with retry. Never raises."""
        config = self.retry_config
        delay = config.initial_delay
        document_id = document.get("id")

        for attempt in range(1, config.max_attempts + 1):
            try:
                self.store.create(entity_type, document)
                if attempt > 1:
                    logger.info(
                        f"Mirrored {entity_type} {document_id} after {attempt} attempts"
                    )
                self.metrics.replicated += 1
                return True
            except Exception as e:
                error_type = type(e).__name__
                self.metrics.error_types[error_type] = self.metrics.error_types.get(error_type, 0) + 1
                self.metrics.last_error = str(e)
                self.metrics.last_failure_time = datetime.now()

                if attempt == config.max_attempts:
                    break

                self.metrics.retried += 1
                actual_delay = delay
                if config.jitter:
                    actual_delay = delay * (0.5 + random.random() * 0.5)
                logger.warning(
                    f"Mirror write {attempt}/{config.max_attempts} failed for "
                    f"{entity_type} {document_id}: {e}. Retrying in {actual_delay:.2f}s"
                )
                time.sleep(actual_delay)
                delay = min(delay * config.exponential_base, config.max_delay)

        self.metrics.dropped += 1
        logger.error(
            f"Dropping {entity_type} document {document_id} after "
            f"{config.max_attempts} attempts: {self.metrics.last_error}"
        )
        return False

    def flush(self, timeout: float | None = None) -> bool:
        """
        Wait for queued writes to finish.

        Returns:
            True when nothing is left pending
        """
        with self._lock:
            futures = list(self._futures)
        if not futures:
            return True
        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    def close(self, wait_for_pending: bool = True) -> None:
        """Stop accepting writes and shut the worker down."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=wait_for_pending, cancel_futures=not wait_for_pending)
        logger.debug(f"Replicator closed: {self.get_stats()}")

    def get_stats(self) -> dict[str, Any]:
        return {
            "pending": self.pending_count,
            "submitted": self.metrics.submitted,
            "replicated": self.metrics.replicated,
            "retried": self.metrics.retried,
            "dropped": self.metrics.dropped,
            "last_error": self.metrics.last_error,
        }
