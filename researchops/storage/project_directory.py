"""
Project Directory

Read-only lookup from the stable local project id (the UUID used in URLs)
to the project's Airtable record id.

Projects are created and linked to Airtable elsewhere. This module never
writes: local_id is immutable and record_id, once set, never changes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
import logging

from researchops.core.errors import ProjectNotFound
from researchops.storage.postgres_replica import ConnectionFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Project:
    """Project as known to the replica."""
    local_id: str
    authoritative_id: Optional[str]   # Airtable record id, None until linked
    name: str = ""
    status: Optional[str] = None

    @property
    def is_linked(self) -> bool:
        return bool(self.authoritative_id)


class ProjectDirectory(ABC):
    """Resolve local project ids."""

    @abstractmethod
    def resolve_project(self, local_id: str) -> Project:
        """
        Resolve a project by local id.

        Raises:
            ProjectNotFound: If no project matches
        """


class PostgresProjectDirectory(ProjectDirectory):
    """Project lookup against the replica's projects table."""

    def __init__(self, connect: ConnectionFactory):
        self._connect = connect

    def resolve_project(self, local_id: str) -> Project:
        if not local_id:
            raise ProjectNotFound(local_id)

        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT local_id, record_id, name, status
                    FROM projects
                    WHERE local_id = %s
                    LIMIT 1
                """, (local_id,))
                row = cur.fetchone()

        if not row:
            logger.warning(f"Project {local_id} not found")
            raise ProjectNotFound(local_id)

        return Project(
            local_id=row['local_id'],
            authoritative_id=row.get('record_id') or None,
            name=row.get('name') or "",
            status=row.get('status'),
        )
