"""
Replica storage for journal entries.

This module provides the storage side of the dual-write architecture:
- Airtable as authoritative record store (see researchops.integrations.airtable)
- Postgres as always-writable replica (this package)

The replica holds every accepted entry; rows Airtable has not confirmed yet
carry a placeholder primary key.
"""

from researchops.storage.replica_store import ReplicaStore
from researchops.storage.postgres_replica import PostgresReplicaStore
from researchops.storage.project_directory import (
    Project,
    ProjectDirectory,
    PostgresProjectDirectory
)

__all__ = [
    'ReplicaStore',
    'PostgresReplicaStore',
    'Project',
    'ProjectDirectory',
    'PostgresProjectDirectory'
]
