"""
Tests for DualWriteCoordinator.

All stores are in-memory fakes (see conftest.py); the logger is a MagicMock
so event names can be asserted.
"""

import threading
from unittest.mock import MagicMock

import pytest

from researchops.core.errors import InvalidArgument, ProjectNotFound, ReplicaWriteFailed
from researchops.core.journal import Category
from researchops.core.placeholder import PLACEHOLDER_PATTERN
from researchops.dualwrite.coordinator import DualWriteCoordinator, WriteSource
from researchops.integrations.airtable import RecordStoreError

from tests.conftest import FakeRecordStore, InMemoryReplicaStore


def _events(log: MagicMock, level: str):
    return [c.args[0] for c in getattr(log, level).call_args_list]


class TestCreateValidation:
    """Invalid input touches no store."""

    @pytest.mark.parametrize("project,category,content", [
        ("", "procedures", "text"),
        ("P1", "", "text"),
        ("P1", "procedures", "   "),
        ("P1", "musings", "text"),
        (None, None, None),
    ])
    def test_invalid_argument(self, coordinator, directory, replica, record_store, project, category, content):
        with pytest.raises(InvalidArgument):
            coordinator.create_record(project, category, content)

        assert directory.calls == 0
        assert record_store.call_count == 0
        assert replica.calls == []

    def test_unknown_project(self, coordinator, replica, record_store):
        with pytest.raises(ProjectNotFound) as exc_info:
            coordinator.create_record("P404", "procedures", "text")

        assert exc_info.value.local_id == "P404"
        assert record_store.call_count == 0
        assert replica.calls == []


class TestCreateDualWrite:
    """Authoritative first, replica always."""

    def test_authoritative_success(self, coordinator, replica, record_store, log):
        record_store.next_ids = ["recAAAAAAAAAAAAAA"]

        result = coordinator.create_record("P1", "decisions", " Ship it ", "b, a, b")

        assert result.ok
        assert result.source == WriteSource.AUTHORITATIVE_AND_REPLICA
        assert result.authoritative_id == "recAAAAAAAAAAAAAA"
        assert result.record_id == "recAAAAAAAAAAAAAA"
        assert result.authoritative_project_id == "A1"
        assert result.authoritative_error is None

        assert record_store.create_calls == [
            ("A1", {"category": "decisions", "content": "Ship it", "tags": ["b", "a"]})
        ]
        row = replica.get("recAAAAAAAAAAAAAA")
        assert row.category == Category.DECISIONS
        assert row.serialized_tags == "b, a"
        assert row.created_at == record_store.created_at
        assert "journal.create.done" in _events(log, "info")

    def test_authoritative_failure_degrades_to_replica_only(self, coordinator, replica, record_store, log):
        record_store.fail_with = RecordStoreError("Airtable 500: boom", status=500)

        result = coordinator.create_record("P1", "procedures", "text")

        assert result.ok
        assert result.source == WriteSource.REPLICA_ONLY
        assert result.authoritative_id is None
        assert "Airtable 500" in result.authoritative_error
        assert PLACEHOLDER_PATTERN.match(result.record_id)
        assert replica.get(result.record_id).is_pending
        assert "journal.create.authoritative_failed" in _events(log, "warning")

    def test_unlinked_project_never_calls_airtable(self, coordinator, replica, record_store, log):
        result = coordinator.create_record("P2", "perceptions", "text")

        assert record_store.call_count == 0
        assert result.source == WriteSource.REPLICA_ONLY
        assert result.replica.authoritative_project_id is None
        assert "journal.create.project_unlinked" in _events(log, "warning")

    def test_no_record_store_configured(self, directory, replica, log):
        coordinator = DualWriteCoordinator(directory, replica, record_store=None, logger=log)

        result = coordinator.create_record("P1", "procedures", "text")

        assert result.source == WriteSource.REPLICA_ONLY
        assert result.replica.authoritative_project_id == "A1"
        assert "journal.create.authoritative_disabled" in _events(log, "warning")

    def test_injected_id_factory_and_clock(self, directory, replica, log):
        coordinator = DualWriteCoordinator(
            directory, replica, logger=log,
            id_factory=lambda: "pending-" + "f" * 32,
            clock=lambda: "2026-02-02T00:00:00.000Z"
        )

        result = coordinator.create_record("P2", "procedures", "text")

        assert result.record_id == "pending-" + "f" * 32
        assert result.replica.created_at == "2026-02-02T00:00:00.000Z"


class TestCreateReplicaFailures:
    """Replica failure is fatal only when nothing else holds the entry."""

    def test_replica_only_failure_is_fatal(self, coordinator, replica, record_store, log):
        record_store.fail_with = RecordStoreError("down")
        replica.fail_with = RuntimeError("disk full")

        with pytest.raises(ReplicaWriteFailed) as exc_info:
            coordinator.create_record("P1", "procedures", "text")

        assert exc_info.value.fatal
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert "journal.create.replica_failed" in _events(log, "error")

    def test_replica_miss_after_authoritative_success_is_queued(self, coordinator, replica, record_store,
                                                                miss_queue, log):
        record_store.next_ids = ["recAAAAAAAAAAAAAA"]
        replica.fail_with = RuntimeError("connection reset")

        result = coordinator.create_record("P1", "procedures", "text", ["x"])

        assert result.ok
        assert result.source == WriteSource.AUTHORITATIVE_AND_REPLICA
        assert result.replica is None
        assert result.record_id == "recAAAAAAAAAAAAAA"
        assert len(miss_queue) == 1
        assert miss_queue.drain()[0].record_id == "recAAAAAAAAAAAAAA"
        assert "journal.create.replica_miss" in _events(log, "error")


class TestUpdateAndDelete:
    """Mutations of existing entries."""

    def test_update_confirmed_entry(self, coordinator, replica, record_store):
        created = coordinator.create_record("P1", "procedures", "old", "a")

        result = coordinator.update_record(created.record_id, content="new", tags=[])

        assert result.source == WriteSource.AUTHORITATIVE_AND_REPLICA
        assert record_store.update_calls == [(created.record_id, {"content": "new", "tags": []})]
        row = replica.get(created.record_id)
        assert row.content == "new"
        assert row.tags == ()

    def test_update_placeholder_skips_airtable(self, coordinator, replica, record_store):
        created = coordinator.create_record("P2", "procedures", "old")

        result = coordinator.update_record(created.record_id, category="decisions")

        assert record_store.call_count == 0
        assert result.source == WriteSource.REPLICA_ONLY
        assert replica.get(created.record_id).category == Category.DECISIONS

    def test_update_requires_a_field(self, coordinator, record_store):
        with pytest.raises(InvalidArgument):
            coordinator.update_record("recAAAAAAAAAAAAAA")
        assert record_store.call_count == 0

    def test_update_rejects_unknown_category(self, coordinator, record_store):
        with pytest.raises(InvalidArgument):
            coordinator.update_record("recAAAAAAAAAAAAAA", category="musings")
        assert record_store.call_count == 0

    def test_update_replica_failure_after_airtable_success_is_logged(self, coordinator, replica, log):
        created = coordinator.create_record("P1", "procedures", "old")
        replica.fail_with = RuntimeError("timeout")

        result = coordinator.update_record(created.record_id, content="new")

        assert result.ok
        assert "journal.update.replica_miss" in _events(log, "error")

    def test_update_replica_failure_after_airtable_error_is_logged(self, coordinator, replica,
                                                                  record_store, log):
        created = coordinator.create_record("P1", "procedures", "old")
        record_store.fail_with = RecordStoreError("Airtable 503: unavailable", status=503)
        replica.fail_with = RuntimeError("replica timeout")

        result = coordinator.update_record(created.record_id, content="new")

        assert result.ok
        assert result.source == WriteSource.REPLICA_ONLY
        assert "Airtable 503" in result.authoritative_error
        assert "journal.update.replica_miss" in _events(log, "error")
        assert "journal.update.replica_failed" not in _events(log, "error")

    def test_delete_replica_failure_after_airtable_error_is_logged(self, coordinator, replica,
                                                                  record_store, log):
        created = coordinator.create_record("P1", "procedures", "text")
        record_store.fail_with = RecordStoreError("down")
        replica.fail_with = RuntimeError("replica timeout")

        result = coordinator.delete_record(created.record_id)

        assert result.ok
        assert "journal.delete.replica_miss" in _events(log, "error")

    def test_update_placeholder_replica_failure_is_fatal(self, coordinator, replica, record_store):
        created = coordinator.create_record("P2", "procedures", "old")
        replica.fail_with = RuntimeError("replica timeout")

        with pytest.raises(ReplicaWriteFailed) as exc_info:
            coordinator.update_record(created.record_id, content="new")

        assert exc_info.value.fatal
        assert record_store.call_count == 0

    def test_delete_without_record_store_replica_failure_is_fatal(self, directory, replica, log):
        coordinator = DualWriteCoordinator(directory, replica, record_store=None, logger=log)
        replica.fail_with = RuntimeError("replica timeout")

        with pytest.raises(ReplicaWriteFailed):
            coordinator.delete_record("recAAAAAAAAAAAAAA")

    def test_update_patches_queued_replica_miss(self, coordinator, replica, miss_queue, log):
        replica.fail_with = RuntimeError("down")
        created = coordinator.create_record("P1", "procedures", "old", "a")
        replica.fail_with = None

        coordinator.update_record(created.record_id, content="new", tags="b, c")

        queued = miss_queue.drain()
        assert len(queued) == 1
        assert queued[0].content == "new"
        assert queued[0].tags == ("b", "c")
        assert "journal.update.patched_queued_miss" in _events(log, "info")

    def test_delete_placeholder_skips_airtable(self, coordinator, replica, record_store):
        created = coordinator.create_record("P2", "procedures", "text")

        result = coordinator.delete_record(created.record_id)

        assert result.to_dict() == {
            "ok": True,
            "id": created.record_id,
            "source": "replica-only",
            "authoritativeError": None,
        }
        assert record_store.call_count == 0
        assert replica.get(created.record_id) is None

    def test_delete_confirmed_entry(self, coordinator, replica, record_store):
        created = coordinator.create_record("P1", "procedures", "text")

        result = coordinator.delete_record(created.record_id)

        assert result.source == WriteSource.AUTHORITATIVE_AND_REPLICA
        assert record_store.delete_calls == [created.record_id]
        assert created.record_id not in record_store.records
        assert replica.get(created.record_id) is None

    def test_delete_drops_queued_replica_miss(self, coordinator, replica, record_store, miss_queue):
        replica.fail_with = RuntimeError("down")
        created = coordinator.create_record("P1", "procedures", "text")
        assert len(miss_queue) == 1

        replica.fail_with = None
        coordinator.delete_record(created.record_id)

        assert len(miss_queue) == 0


class TestAudit:
    """Audit mode raises authoritative write events to info level."""

    def test_audit_logs_at_info(self, directory, replica, record_store, log):
        coordinator = DualWriteCoordinator(directory, replica, record_store, logger=log, audit=True)

        coordinator.create_record("P1", "procedures", "text")

        assert "journal.create.authoritative_ok" in _events(log, "info")

    def test_default_logs_at_debug(self, coordinator, log):
        coordinator.create_record("P1", "procedures", "text")

        assert "journal.create.authoritative_ok" in _events(log, "debug")
        assert "journal.create.authoritative_ok" not in _events(log, "info")


class TestConcurrentWriters:
    """
    Documents the ordering behaviour of concurrent writers.

    There is no ordering token across the two stores: two updates to the same
    entry can land in opposite orders, and each store keeps whichever write
    reached it last.
    """

    def test_interleaved_updates_can_diverge(self, directory):
        replica = InMemoryReplicaStore()
        record_store = FakeRecordStore(next_ids=["recAAAAAAAAAAAAAA"])
        coordinator = DualWriteCoordinator(directory, replica, record_store, logger=MagicMock())
        coordinator.create_record("P1", "procedures", "v0")

        first_in_airtable = threading.Event()
        second_done = threading.Event()
        original_update = replica.update

        def slow_replica_update(record_id, patch):
            # Writer 1 reaches the replica only after writer 2 has finished
            if patch.get("content") == "v1":
                second_done.wait(timeout=5)
            original_update(record_id, patch)

        replica.update = slow_replica_update

        def writer_1():
            coordinator.update_record("recAAAAAAAAAAAAAA", content="v1")

        original_airtable_update = record_store.update

        def tracking_airtable_update(record_id, fields):
            original_airtable_update(record_id, fields)
            if fields.get("content") == "v1":
                first_in_airtable.set()

        record_store.update = tracking_airtable_update

        t1 = threading.Thread(target=writer_1)
        t1.start()
        assert first_in_airtable.wait(timeout=5)

        coordinator.update_record("recAAAAAAAAAAAAAA", content="v2")
        second_done.set()
        t1.join(timeout=5)

        # Airtable saw v1 then v2; the replica saw v2 then v1
        assert record_store.records["recAAAAAAAAAAAAAA"]["content"] == "v2"
        assert replica.get("recAAAAAAAAAAAAAA").content == "v1"
