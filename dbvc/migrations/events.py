"""
Change Event Recorder

Writes the audit trail of migration state changes to the ledger and
queues a copy for the backup mirror. Audit writes never break a run:
a failed write is logged and dropped.
"""

import logging
from datetime import datetime
from typing import Any, Callable

from ..database.document_store import ENTITY_CHANGE_EVENT
from ..database.models import ChangeEvent, ChangeEventType, utc_now
from ..database.replication import BackupReplicator
from ..repositories import ChangeEventRepository

logger = logging.getLogger(__name__)


class ChangeEventRecorder:
    """Append-only change event writer."""

    def __init__(
        self,
        repository: ChangeEventRepository,
        replicator: BackupReplicator | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.replicator = replicator
        self.now = now

    def record(
        self,
        migration_id: str,
        database_id: str,
        event_type: ChangeEventType,
        environment: str,
        context: dict[str, Any] | None = None,
    ) -> ChangeEvent | None:
        """
        Record one event.

        Returns:
            The stored event, or None when the ledger write failed
        """
        event = ChangeEvent(
            migration_id=migration_id,
            database_id=database_id,
            event_type=event_type,
            environment=environment,
            context=dict(context or {}),
            timestamp=self.now(),
        )

        stored = None
        try:
            stored = self.repository.create(event)
        except Exception as e:
            logger.error(
                f"Failed to record {event_type.value} event for {migration_id} "
                f"on {database_id}: {e}"
            )

        if self.replicator is not None:
            document = (stored or event).to_dict()
            suffix = stored.id if stored else int(event.timestamp.timestamp() * 1000)
            document["id"] = f"{database_id}_{migration_id}_{suffix}"
            self.replicator.submit(ENTITY_CHANGE_EVENT, document)

        logger.debug(f"Change event {event_type.value}: {migration_id} ({environment})")
        return stored
