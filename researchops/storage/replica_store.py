"""
ReplicaStore Abstraction

The replica is the always-writable local copy of every journal entry.

DESIGN PRINCIPLES:
1. Every accepted write lands here, confirmed or not
2. Reads are served from here when Airtable is unavailable
3. Each operation is atomic for a single row; nothing spans rows or stores
4. Primary key renames (placeholder -> Airtable id) happen only via promote()
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from researchops.core.journal import MirroredRecord

# Columns a caller may patch through update(). Primary key and project
# reference change only through promote().
UPDATABLE_FIELDS = ('category', 'content', 'tags')


class ReplicaStore(ABC):
    """
    Abstract interface for the local replica of journal entries.

    Implementations:
    - PostgresReplicaStore: production store (journal_entries table)
    - In-memory fakes in the test suite
    """

    @abstractmethod
    def insert(self, record: MirroredRecord) -> MirroredRecord:
        """
        Insert a new row.

        Raises:
            Any store error; the coordinator decides whether it is fatal
        """

    @abstractmethod
    def upsert(self, record: MirroredRecord) -> MirroredRecord:
        """Insert or overwrite a row by record_id (idempotent replay)."""

    @abstractmethod
    def update(self, record_id: str, patch: Dict[str, Any]) -> None:
        """
        Apply a partial update.

        Args:
            record_id: Row primary key
            patch: Subset of UPDATABLE_FIELDS; tags already serialized
        """

    @abstractmethod
    def delete(self, record_id: str) -> None:
        """Delete a row. Deleting a missing row is not an error."""

    @abstractmethod
    def get(self, record_id: str) -> Optional[MirroredRecord]:
        """Fetch one row by primary key."""

    @abstractmethod
    def list_by_project(self, local_project_id: str) -> List[MirroredRecord]:
        """List a project's rows, newest first."""

    @abstractmethod
    def list_pending(self, limit: Optional[int] = None) -> List[MirroredRecord]:
        """List rows still carrying a placeholder id, oldest first."""

    @abstractmethod
    def promote(
        self,
        placeholder_id: str,
        authoritative_id: str,
        authoritative_project_id: Optional[str]
    ) -> bool:
        """
        Rename a pending row to its authoritative id.

        Atomic and conditional: only a row whose primary key is still
        placeholder_id is touched.

        Returns:
            True if a row was renamed, False if there was nothing to promote
        """

    @abstractmethod
    def get_store_name(self) -> str:
        """Store implementation name (for logs and health checks)."""

    @abstractmethod
    def ping(self) -> bool:
        """Check store availability."""
