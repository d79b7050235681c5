"""
Dual-Write Coordinator

Orchestrates journal entry writes across Airtable (authoritative) and the
Postgres replica.

Write rule:
1. Validate input (InvalidArgument, nothing touched)
2. Resolve the project (ProjectNotFound, nothing touched)
3. Try Airtable when the project is linked; failures are logged, never raised
4. Always write the replica, keyed by the Airtable id or a fresh placeholder
5. Return a tagged result: 'authoritative+replica' or 'replica-only'

Replica failures are fatal only when the replica was the sole persistence
attempted. After an Airtable success they are logged and the row is queued
for replay by the reconciliation sweep. Update and delete log replica errors
whenever Airtable was called, whatever it answered; only placeholder rows and
replica-only deployments see them raised.

The coordinator holds no locks and spans no transactions. Steps run
sequentially in the calling thread; once started, a call runs to completion
even if the HTTP client disconnects.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog

from researchops.core.errors import (
    AuthoritativeUnavailable,
    InvalidArgument,
    ReplicaWriteFailed
)
from researchops.core.journal import (
    MirroredRecord,
    TagsInput,
    normalize_tags,
    parse_category,
    require_text,
    serialize_tags,
    utc_now_iso
)
from researchops.core.placeholder import generate_placeholder_id, is_placeholder
from researchops.dualwrite.replica_misses import ReplicaMissQueue
from researchops.integrations.airtable import AuthoritativeRecord, RecordStoreClient
from researchops.storage.project_directory import ProjectDirectory
from researchops.storage.replica_store import ReplicaStore


class WriteSource(str, Enum):
    """Which stores hold the write."""
    AUTHORITATIVE_AND_REPLICA = "authoritative+replica"
    REPLICA_ONLY = "replica-only"


@dataclass
class WriteResult:
    """
    Outcome of create_record.

    replica is None only when Airtable holds the entry but the replica
    insert failed (the row is queued for replay).
    """
    ok: bool
    source: WriteSource
    project_local_id: str
    authoritative_project_id: Optional[str]
    replica: Optional[MirroredRecord]
    authoritative_id: Optional[str]
    authoritative_error: Optional[str]

    @property
    def record_id(self) -> Optional[str]:
        """Id callers should use to address the entry."""
        if self.authoritative_id:
            return self.authoritative_id
        return self.replica.record_id if self.replica else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "source": self.source.value,
            "projectLocalId": self.project_local_id,
            "authoritativeProjectId": self.authoritative_project_id,
            "replica": self.replica.to_dict() if self.replica else None,
            "authoritativeId": self.authoritative_id,
            "authoritativeError": self.authoritative_error,
        }


@dataclass
class MutationResult:
    """Outcome of update_record / delete_record."""
    ok: bool
    record_id: str
    source: WriteSource
    authoritative_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "id": self.record_id,
            "source": self.source.value,
            "authoritativeError": self.authoritative_error,
        }


class DualWriteCoordinator:
    """
    Create/update/delete journal entries in both stores.

    Usage:
        coordinator = DualWriteCoordinator(directory, replica, airtable, logger=log)
        result = coordinator.create_record(
            'd04ab32e-6756-408e-a649-6859dd0079f2',
            'procedures',
            'Set up weekly triage',
            'governance, triage'
        )
        result.source  # WriteSource.AUTHORITATIVE_AND_REPLICA
    """

    def __init__(
        self,
        directory: ProjectDirectory,
        replica: ReplicaStore,
        record_store: Optional[RecordStoreClient] = None,
        logger: Any = None,
        miss_queue: Optional[ReplicaMissQueue] = None,
        audit: bool = False,
        id_factory: Callable[[], str] = generate_placeholder_id,
        clock: Callable[[], str] = utc_now_iso
    ):
        """
        Args:
            directory: Project lookup
            replica: Local replica store
            record_store: Airtable client; None runs replica-only
            logger: structlog-style logger (event name + keyword context)
            miss_queue: Where rows go when the replica misses an authoritative write
            audit: Log every authoritative write at info level
            id_factory: Placeholder id generator
            clock: ISO-8601 timestamp source for replica-only rows
        """
        self.directory = directory
        self.replica = replica
        self.record_store = record_store
        self.log = logger if logger is not None else structlog.get_logger(__name__)
        self.miss_queue = miss_queue
        self.audit = audit
        self._new_placeholder = id_factory
        self._now = clock

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    def create_record(
        self,
        local_project_id: Any,
        category: Any,
        content: Any,
        tags: TagsInput = None
    ) -> WriteResult:
        """
        Create a journal entry in Airtable (best-effort) and the replica (always).

        Args:
            local_project_id: Project UUID used in URLs
            category: One of Category
            content: Entry text
            tags: List of tags or comma-separated string

        Returns:
            WriteResult

        Raises:
            InvalidArgument: Missing/empty/unknown field
            ProjectNotFound: local_project_id does not resolve
            ReplicaWriteFailed: Replica write failed and Airtable did not take the entry
        """
        project_local_id = require_text("project_local_id", local_project_id)
        parsed_category = parse_category(category)
        text = require_text("content", content)
        tag_set = normalize_tags(tags)

        project = self.directory.resolve_project(project_local_id)
        authoritative_project_id = project.authoritative_id

        authoritative: Optional[AuthoritativeRecord] = None
        authoritative_error: Optional[AuthoritativeUnavailable] = None

        if not authoritative_project_id:
            self.log.warning(
                "journal.create.project_unlinked",
                project_local_id=project_local_id
            )
        elif self.record_store is None:
            self.log.warning(
                "journal.create.authoritative_disabled",
                project_local_id=project_local_id
            )
        else:
            fields = {
                "category": parsed_category.value,
                "content": text,
                "tags": list(tag_set),
            }
            try:
                authoritative = self.record_store.create(authoritative_project_id, fields)
            except Exception as e:
                authoritative_error = AuthoritativeUnavailable("create", e)
                self.log.warning(
                    "journal.create.authoritative_failed",
                    project_local_id=project_local_id,
                    authoritative_project_id=authoritative_project_id,
                    error=str(e)
                )
            else:
                self._audit(
                    "journal.create.authoritative_ok",
                    record_id=authoritative.id,
                    authoritative_project_id=authoritative_project_id
                )

        record = MirroredRecord(
            record_id=authoritative.id if authoritative else self._new_placeholder(),
            authoritative_project_id=authoritative_project_id,
            category=parsed_category,
            content=text,
            tags=tag_set,
            created_at=authoritative.created_at if authoritative else self._now(),
            local_project_id=project_local_id,
        )

        replica_row: Optional[MirroredRecord]
        try:
            replica_row = self.replica.insert(record)
        except Exception as e:
            if authoritative is None:
                self.log.error(
                    "journal.create.replica_failed",
                    record_id=record.record_id,
                    project_local_id=project_local_id,
                    error=str(e)
                )
                raise ReplicaWriteFailed(record.record_id, e, fatal=True) from e

            replica_row = None
            self.log.error(
                "journal.create.replica_miss",
                record_id=record.record_id,
                project_local_id=project_local_id,
                error=str(e),
                queued=self.miss_queue is not None
            )
            if self.miss_queue is not None:
                self.miss_queue.put(record)

        source = (
            WriteSource.AUTHORITATIVE_AND_REPLICA if authoritative
            else WriteSource.REPLICA_ONLY
        )

        self.log.info(
            "journal.create.done",
            record_id=record.record_id,
            source=source.value,
            project_local_id=project_local_id
        )

        return WriteResult(
            ok=True,
            source=source,
            project_local_id=project_local_id,
            authoritative_project_id=authoritative_project_id,
            replica=replica_row,
            authoritative_id=authoritative.id if authoritative else None,
            authoritative_error=str(authoritative_error) if authoritative_error else None,
        )

    # ------------------------------------------------------------------
    # update / delete
    # ------------------------------------------------------------------

    def update_record(
        self,
        record_id: Any,
        category: Any = None,
        content: Any = None,
        tags: TagsInput = None
    ) -> MutationResult:
        """
        Patch an entry. Arguments left as None are not changed.

        Pass tags=[] or tags='' to clear tags. A row still parked in the
        replica-miss queue gets the same patch, so the next replay does not
        restore the old values.

        Raises:
            InvalidArgument: No fields, or an invalid field value
            ReplicaWriteFailed: Replica update failed and Airtable was never called
        """
        entry_id = require_text("record_id", record_id)

        fields: Dict[str, Any] = {}
        if category is not None:
            fields["category"] = parse_category(category).value
        if content is not None:
            fields["content"] = require_text("content", content)
        if tags is not None:
            fields["tags"] = list(normalize_tags(tags))

        if not fields:
            raise InvalidArgument("No updatable fields provided")

        attempted, authoritative_ok, authoritative_error = self._authoritative_mutation(
            "update",
            entry_id,
            lambda: self.record_store.update(entry_id, fields)
        )

        patch = dict(fields)
        if "tags" in patch:
            patch["tags"] = serialize_tags(patch["tags"])

        if self.miss_queue is not None and self.miss_queue.apply_patch(entry_id, patch):
            self.log.info("journal.update.patched_queued_miss", record_id=entry_id)

        self._replica_mutation(
            "update",
            entry_id,
            lambda: self.replica.update(entry_id, patch),
            attempted
        )

        return MutationResult(
            ok=True,
            record_id=entry_id,
            source=self._source(authoritative_ok),
            authoritative_error=authoritative_error,
        )

    def delete_record(self, record_id: Any) -> MutationResult:
        """
        Delete an entry from both stores.

        Raises:
            InvalidArgument: Missing record_id
            ReplicaWriteFailed: Replica delete failed and Airtable was never called
        """
        entry_id = require_text("record_id", record_id)

        attempted, authoritative_ok, authoritative_error = self._authoritative_mutation(
            "delete",
            entry_id,
            lambda: self.record_store.delete(entry_id)
        )

        if self.miss_queue is not None and self.miss_queue.discard(entry_id):
            self.log.info("journal.delete.dequeued_miss", record_id=entry_id)

        self._replica_mutation(
            "delete",
            entry_id,
            lambda: self.replica.delete(entry_id),
            attempted
        )

        return MutationResult(
            ok=True,
            record_id=entry_id,
            source=self._source(authoritative_ok),
            authoritative_error=authoritative_error,
        )

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _authoritative_mutation(self, operation, entry_id, call):
        """
        Run an Airtable update/delete.

        Placeholder ids never exist upstream, so they are skipped.

        Returns:
            (attempted, succeeded, error string or None)
        """
        if is_placeholder(entry_id) or self.record_store is None:
            self.log.debug(
                f"journal.{operation}.authoritative_skipped",
                record_id=entry_id,
                pending=is_placeholder(entry_id)
            )
            return False, False, None

        try:
            call()
        except Exception as e:
            self.log.warning(
                f"journal.{operation}.authoritative_failed",
                record_id=entry_id,
                error=str(e)
            )
            return True, False, str(AuthoritativeUnavailable(operation, e))

        self._audit(f"journal.{operation}.authoritative_ok", record_id=entry_id)
        return True, True, None

    def _replica_mutation(self, operation, entry_id, call, authoritative_attempted):
        """
        Apply the mutation to the replica.

        Once Airtable has been called it has reflected or reported the outcome,
        so a replica error is only logged. Otherwise the replica was the only
        store attempted and the error is fatal.
        """
        try:
            call()
        except Exception as e:
            if not authoritative_attempted:
                self.log.error(
                    f"journal.{operation}.replica_failed",
                    record_id=entry_id,
                    error=str(e)
                )
                raise ReplicaWriteFailed(entry_id, e, fatal=True) from e

            self.log.error(
                f"journal.{operation}.replica_miss",
                record_id=entry_id,
                error=str(e)
            )

    def _source(self, authoritative_ok: bool) -> WriteSource:
        return WriteSource.AUTHORITATIVE_AND_REPLICA if authoritative_ok else WriteSource.REPLICA_ONLY

    def _audit(self, event: str, **context) -> None:
        if self.audit:
            self.log.info(event, **context)
        else:
            self.log.debug(event, **context)
