"""
Reconciliation Sweep

Promotes placeholder rows once Airtable accepts them.

Per sweep:
1. Replay rows parked in the replica-miss queue (idempotent upsert)
2. Scan the replica for 'pending-' rows, oldest first
3. For each: resolve the project's Airtable id, create the record upstream,
   then rename the replica row to the Airtable id (conditional, atomic)
4. Failures leave the row untouched for the next sweep

Safe to run indefinitely and concurrently with the coordinator:
- Confirmed rows are never touched (promote() is a no-op for them)
- A row deleted mid-sweep makes promote() return False; the just-created
  Airtable record is then deleted again so nothing is orphaned upstream
- A rate-limit response ends the sweep early; remaining rows wait

Two sweeps running at once can both create the same row upstream before
either renames it. Schedule a single sweep at a time (cron, or the admin
endpoint which serialises on a lock).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

import structlog

from researchops.core.errors import ProjectNotFound
from researchops.core.journal import MirroredRecord
from researchops.dualwrite.replica_misses import ReplicaMissQueue
from researchops.integrations.airtable import RecordStoreClient
from researchops.storage.project_directory import ProjectDirectory
from researchops.storage.replica_store import ReplicaStore


class PromotionStatus(str, Enum):
    """Per-row sweep outcome."""
    PROMOTED = "promoted"
    FAILED = "failed"          # Airtable create or rename failed; row kept
    SKIPPED = "skipped"        # Not pending, or project still unlinked
    VANISHED = "vanished"      # Row deleted between scan and rename


@dataclass
class SweepReport:
    """Counters for one sweep."""
    scanned: int = 0
    promoted: int = 0
    failed: int = 0
    skipped: int = 0
    vanished: int = 0
    replayed: int = 0
    replay_failed: int = 0
    rate_limited: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "promoted": self.promoted,
            "failed": self.failed,
            "skipped": self.skipped,
            "vanished": self.vanished,
            "replayed": self.replayed,
            "replay_failed": self.replay_failed,
            "rate_limited": self.rate_limited,
            "errors": list(self.errors),
        }


class ReconciliationSweep:
    """
    Background sweep converging the replica onto Airtable.

    Usage:
        sweep = ReconciliationSweep(directory, replica, airtable, miss_queue=queue)
        report = sweep.run(limit=100)
    """

    def __init__(
        self,
        directory: ProjectDirectory,
        replica: ReplicaStore,
        record_store: Optional[RecordStoreClient],
        logger: Any = None,
        miss_queue: Optional[ReplicaMissQueue] = None
    ):
        self.directory = directory
        self.replica = replica
        self.record_store = record_store
        self.log = logger if logger is not None else structlog.get_logger(__name__)
        self.miss_queue = miss_queue

    def run(self, limit: Optional[int] = None) -> SweepReport:
        """
        Run one sweep.

        Args:
            limit: Max pending rows to scan (None = all)

        Returns:
            SweepReport
        """
        report = SweepReport()

        self._replay_misses(report)

        if self.record_store is None:
            self.log.warning("reconcile.authoritative_disabled")
            return report

        try:
            pending = self.replica.list_pending(limit)
        except Exception as e:
            self.log.error("reconcile.scan_failed", error=str(e))
            report.errors.append(f"scan: {e}")
            return report

        self.log.info("reconcile.start", pending=len(pending), limit=limit)

        for row in pending:
            report.scanned += 1
            status = self.reconcile_row(row, report)

            if status == PromotionStatus.PROMOTED:
                report.promoted += 1
            elif status == PromotionStatus.FAILED:
                report.failed += 1
            elif status == PromotionStatus.VANISHED:
                report.vanished += 1
            else:
                report.skipped += 1

            if report.rate_limited:
                self.log.warning("reconcile.rate_limited", scanned=report.scanned)
                break

        self.log.info("reconcile.done", **report.to_dict())
        return report

    def reconcile_row(self, row: MirroredRecord, report: Optional[SweepReport] = None) -> PromotionStatus:
        """
        Try to promote a single row.

        Returns:
            PromotionStatus; the row is untouched unless PROMOTED
        """
        report = report if report is not None else SweepReport()

        if not row.is_pending:
            return PromotionStatus.SKIPPED

        if self.record_store is None:
            return PromotionStatus.SKIPPED

        try:
            project = self.directory.resolve_project(row.local_project_id)
        except ProjectNotFound:
            self.log.warning(
                "reconcile.project_missing",
                record_id=row.record_id,
                project_local_id=row.local_project_id
            )
            return PromotionStatus.SKIPPED
        except Exception as e:
            self.log.error("reconcile.project_lookup_failed", record_id=row.record_id, error=str(e))
            report.errors.append(f"{row.record_id}: {e}")
            return PromotionStatus.FAILED

        if not project.authoritative_id:
            return PromotionStatus.SKIPPED

        try:
            created = self.record_store.create(project.authoritative_id, row.to_authoritative_fields())
        except Exception as e:
            if getattr(e, "is_rate_limited", False):
                report.rate_limited = True
            self.log.warning(
                "reconcile.authoritative_failed",
                record_id=row.record_id,
                error=str(e)
            )
            report.errors.append(f"{row.record_id}: {e}")
            return PromotionStatus.FAILED

        try:
            promoted = self.replica.promote(row.record_id, created.id, project.authoritative_id)
        except Exception as e:
            self.log.error(
                "reconcile.promote_failed",
                record_id=row.record_id,
                authoritative_id=created.id,
                error=str(e)
            )
            report.errors.append(f"{row.record_id}: {e}")
            self._compensate(created.id, row.record_id)
            return PromotionStatus.FAILED

        if not promoted:
            self.log.warning(
                "reconcile.row_vanished",
                record_id=row.record_id,
                authoritative_id=created.id
            )
            self._compensate(created.id, row.record_id)
            return PromotionStatus.VANISHED

        self.log.info(
            "reconcile.promoted",
            placeholder_id=row.record_id,
            authoritative_id=created.id
        )
        return PromotionStatus.PROMOTED

    def _compensate(self, authoritative_id: str, placeholder_id: str) -> None:
        """Delete an upstream record whose replica row could not be renamed."""
        try:
            self.record_store.delete(authoritative_id)
        except Exception as e:
            self.log.error(
                "reconcile.compensate_failed",
                authoritative_id=authoritative_id,
                placeholder_id=placeholder_id,
                error=str(e)
            )

    def _replay_misses(self, report: SweepReport) -> None:
        if self.miss_queue is None:
            return

        for record in self.miss_queue.drain():
            try:
                self.replica.upsert(record)
                report.replayed += 1
            except Exception as e:
                report.replay_failed += 1
                report.errors.append(f"replay {record.record_id}: {e}")
                self.miss_queue.put(record)

        if report.replayed or report.replay_failed:
            self.log.info(
                "reconcile.replayed_misses",
                replayed=report.replayed,
                replay_failed=report.replay_failed
            )
