"""
Backup Document Store
JSON documents keyed by id, partitioned by database id and grouped by
entity type. Holds full migration content, schema definitions and the
change-event mirror for disaster recovery and export; never read for
correctness decisions.
"""

import json
import logging
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from ..exceptions import DocumentStoreError

logger = logging.getLogger(__name__)

ENTITY_MIGRATION = "migration"
ENTITY_SCHEMA_SNAPSHOT = "schema-snapshot"
ENTITY_CHANGE_EVENT = "change-event"

ENTITY_TYPES = frozenset({ENTITY_MIGRATION, ENTITY_SCHEMA_SNAPSHOT, ENTITY_CHANGE_EVENT})


class DocumentStore(ABC):
    """Abstract interface for the backup document store."""

    @abstractmethod
    def create(self, entity_type: str, document: dict[str, Any]) -> str:
        """
        Write a document. ``document`` must carry ``id`` and ``databaseId``.

        Returns:
            The document id
        """

    @abstractmethod
    def read(self, entity_type: str, document_id: str, partition: str) -> dict[str, Any] | None:
        """Read a document, or None when it does not exist."""

    @abstractmethod
    def list(self, entity_type: str, partition: str) -> list[dict[str, Any]]:
        """List every document of an entity type within a partition."""

    def health_check(self) -> bool:
        return True


class FileDocumentStore(DocumentStore):
    """
    Filesystem document store.

    Layout: ``<root>/<entity type>/<partition>/<id>.json``. Writes go to a
    temporary file first and are moved into place, so a reader never sees
    a half-written document.
    """

    _SAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]")

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"FileDocumentStore({str(self.root)!r})"

    @classmethod
    def _safe(cls, name: str) -> str:
        safe = cls._SAFE_NAME.sub("_", name)
        if not safe or safe in {".", ".."}:
            raise DocumentStoreError(f"Invalid document path component: {name!r}")
        return safe

    def _partition_dir(self, entity_type: str, partition: str) -> Path:
        if entity_type not in ENTITY_TYPES:
            raise DocumentStoreError(
                f"Unknown entity type: {entity_type}", partition=partition
            )
        return self.root / entity_type / self._safe(partition)

    def create(self, entity_type: str, document: dict[str, Any]) -> str:
        document_id = document.get("id")
        partition = document.get("databaseId")
        if not document_id or not partition:
            raise DocumentStoreError(
                "Document requires 'id' and 'databaseId'",
                document_id=document_id,
                partition=partition,
            )

        target_dir = self._partition_dir(entity_type, partition)
        target = target_dir / f"{self._safe(document_id)}.json"
        try:
            with self._lock:
                target_dir.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(dir=target_dir, suffix=".tmp")
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        json.dump({**document, "entityType": entity_type}, f, indent=2, default=str)
                    os.replace(tmp_name, target)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
        except (OSError, TypeError, ValueError) as e:
            raise DocumentStoreError(
                f"Failed to write {entity_type} document: {e}",
                document_id=document_id,
                partition=partition,
            ) from e

        logger.debug(f"Stored {entity_type} document {document_id} in partition {partition}")
        return document_id

    def read(self, entity_type: str, document_id: str, partition: str) -> dict[str, Any] | None:
        path = self._partition_dir(entity_type, partition) / f"{self._safe(document_id)}.json"
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise DocumentStoreError(
                f"Failed to read {entity_type} document: {e}",
                document_id=document_id,
                partition=partition,
            ) from e

    def list(self, entity_type: str, partition: str) -> list[dict[str, Any]]:
        directory = self._partition_dir(entity_type, partition)
        if not directory.exists():
            return []
        documents = []
        for path in sorted(directory.glob("*.json")):
            try:
                with open(path, encoding="utf-8") as f:
                    documents.append(json.load(f))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable document {path}: {e}")
        return documents

    def health_check(self) -> bool:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            return os.access(self.root, os.W_OK)
        except OSError as e:
            logger.error(f"Document store health check failed: {e}")
            return False
