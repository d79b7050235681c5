"""
Shared pytest fixtures for the ResearchOps journals test suite.

Stores are in-memory fakes implementing the same interfaces as the Postgres
and Airtable implementations, so coordinator and sweep tests run without a
database or network.
"""

import itertools
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from researchops.config import AirtableConfig, ReplicaConfig, ResearchOpsConfig
from researchops.core.errors import ProjectNotFound
from researchops.core.journal import MirroredRecord
from researchops.core.placeholder import is_placeholder
from researchops.dualwrite.coordinator import DualWriteCoordinator
from researchops.dualwrite.reconciliation import ReconciliationSweep
from researchops.dualwrite.replica_misses import ReplicaMissQueue
from researchops.integrations.airtable import AuthoritativeRecord, RecordStoreClient
from researchops.storage.project_directory import Project, ProjectDirectory
from researchops.storage.replica_store import ReplicaStore, UPDATABLE_FIELDS


class InMemoryProjectDirectory(ProjectDirectory):
    def __init__(self, projects: Optional[List[Project]] = None):
        self.projects = {p.local_id: p for p in (projects or [])}
        self.calls = 0

    def resolve_project(self, local_id: str) -> Project:
        self.calls += 1
        project = self.projects.get(local_id)
        if project is None:
            raise ProjectNotFound(local_id)
        return project


class InMemoryReplicaStore(ReplicaStore):
    """Dict-backed replica. Set fail_with to make writes raise."""

    def __init__(self):
        self.rows: Dict[str, MirroredRecord] = {}
        self.fail_with: Optional[Exception] = None
        self.calls: List[str] = []

    def _write(self, name: str):
        self.calls.append(name)
        if self.fail_with is not None:
            raise self.fail_with

    def insert(self, record: MirroredRecord) -> MirroredRecord:
        self._write("insert")
        if record.record_id in self.rows:
            raise KeyError(f"duplicate key {record.record_id}")
        self.rows[record.record_id] = record
        return record

    def upsert(self, record: MirroredRecord) -> MirroredRecord:
        self._write("upsert")
        self.rows[record.record_id] = record
        return record

    def update(self, record_id: str, patch: Dict[str, Any]) -> None:
        self._write("update")
        row = self.rows.get(record_id)
        if row is None or not any(name in patch for name in UPDATABLE_FIELDS):
            return
        self.rows[record_id] = row.with_patch(patch)

    def delete(self, record_id: str) -> None:
        self._write("delete")
        self.rows.pop(record_id, None)

    def get(self, record_id: str) -> Optional[MirroredRecord]:
        return self.rows.get(record_id)

    def list_by_project(self, local_project_id: str) -> List[MirroredRecord]:
        rows = [r for r in self.rows.values() if r.local_project_id == local_project_id]
        return sorted(rows, key=lambda r: r.created_at, reverse=True)

    def list_pending(self, limit: Optional[int] = None) -> List[MirroredRecord]:
        rows = sorted(
            (r for r in self.rows.values() if r.is_pending),
            key=lambda r: r.created_at
        )
        return rows if limit is None else rows[:limit]

    def promote(self, placeholder_id: str, authoritative_id: str,
                authoritative_project_id: Optional[str]) -> bool:
        self._write("promote")
        if not is_placeholder(placeholder_id) or placeholder_id not in self.rows:
            return False
        row = self.rows.pop(placeholder_id)
        self.rows[authoritative_id] = row.with_record_id(authoritative_id, authoritative_project_id)
        return True

    def get_store_name(self) -> str:
        return "memory"

    def ping(self) -> bool:
        return self.fail_with is None


class FakeRecordStore(RecordStoreClient):
    """
    Scripted Airtable stand-in.

    Ids are issued from next_ids when given, otherwise generated. Set
    fail_with to make every call raise.
    """

    def __init__(self, next_ids: Optional[List[str]] = None, created_at: str = "2026-01-01T00:00:00.000Z"):
        self.next_ids = list(next_ids or [])
        self.created_at = created_at
        self.fail_with: Optional[Exception] = None
        self.records: Dict[str, Dict[str, Any]] = {}
        self.create_calls: List[tuple] = []
        self.update_calls: List[tuple] = []
        self.delete_calls: List[str] = []
        self._counter = itertools.count(1)

    @property
    def call_count(self) -> int:
        return len(self.create_calls) + len(self.update_calls) + len(self.delete_calls)

    def create(self, project_ref: str, fields: Dict[str, Any]) -> AuthoritativeRecord:
        self.create_calls.append((project_ref, dict(fields)))
        if self.fail_with is not None:
            raise self.fail_with
        record_id = self.next_ids.pop(0) if self.next_ids else f"rec{next(self._counter):014d}"
        self.records[record_id] = dict(fields, project=project_ref)
        return AuthoritativeRecord(id=record_id, created_at=self.created_at)

    def update(self, record_id: str, fields: Dict[str, Any]) -> None:
        self.update_calls.append((record_id, dict(fields)))
        if self.fail_with is not None:
            raise self.fail_with
        self.records.setdefault(record_id, {}).update(fields)

    def delete(self, record_id: str) -> None:
        self.delete_calls.append(record_id)
        if self.fail_with is not None:
            raise self.fail_with
        self.records.pop(record_id, None)


@pytest.fixture
def directory() -> InMemoryProjectDirectory:
    """P1 is linked to Airtable project A1; P2 is not linked yet."""
    return InMemoryProjectDirectory([
        Project(local_id="P1", authoritative_id="A1", name="Linked project"),
        Project(local_id="P2", authoritative_id=None, name="Unlinked project"),
    ])


@pytest.fixture
def replica() -> InMemoryReplicaStore:
    return InMemoryReplicaStore()


@pytest.fixture
def record_store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def miss_queue() -> ReplicaMissQueue:
    return ReplicaMissQueue(maxsize=10)


@pytest.fixture
def log() -> MagicMock:
    """Injected structlog-style logger; assertions inspect its calls."""
    return MagicMock()


@pytest.fixture
def coordinator(directory, replica, record_store, log, miss_queue) -> DualWriteCoordinator:
    return DualWriteCoordinator(
        directory=directory,
        replica=replica,
        record_store=record_store,
        logger=log,
        miss_queue=miss_queue
    )


@pytest.fixture
def sweep(directory, replica, record_store, log, miss_queue) -> ReconciliationSweep:
    return ReconciliationSweep(
        directory=directory,
        replica=replica,
        record_store=record_store,
        logger=log,
        miss_queue=miss_queue
    )


@pytest.fixture
def config() -> ResearchOpsConfig:
    return ResearchOpsConfig(
        replica=ReplicaConfig(database_url="postgresql://localhost/researchops_test"),
        airtable=AirtableConfig(),
        replica_miss_queue_size=10
    )
