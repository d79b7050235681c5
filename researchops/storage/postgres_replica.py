"""
PostgresReplicaStore

ReplicaStore backed by the journal_entries table.

Schema (db/migrations/001_replica_schema.sql):
 - record_id        TEXT PRIMARY KEY   -- Airtable id, or 'pending-...' placeholder
 - project          TEXT NULL          -- Airtable project record id (rec...)
 - category         TEXT
 - content          TEXT
 - tags             TEXT               -- 'x, y' (legacy rows: JSON array)
 - createdat        TEXT               -- ISO-8601
 - local_project_id TEXT (indexed)     -- project UUID used in URLs

Each method checks out its own connection, so one failed statement never
poisons another request's transaction.
"""

from typing import Any, Callable, ContextManager, Dict, List, Optional
import logging

from psycopg import Connection

from researchops.core.journal import MirroredRecord
from researchops.core.placeholder import PLACEHOLDER_PREFIX, is_placeholder
from researchops.storage.replica_store import ReplicaStore, UPDATABLE_FIELDS

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], ContextManager[Connection]]

_COLUMNS = "record_id, project, category, content, tags, createdat, local_project_id"


class PostgresReplicaStore(ReplicaStore):
    """
    Postgres replica (always writable).

    Expects connections configured with psycopg.rows.dict_row.
    """

    def __init__(self, connect: ConnectionFactory):
        """
        Initialize Postgres replica store.

        Args:
            connect: Zero-arg callable returning a connection context manager
                     (e.g. pool.connection)
        """
        self._connect = connect

    def _params(self, record: MirroredRecord) -> tuple:
        return (
            record.record_id,
            record.authoritative_project_id,
            record.category.value,
            record.content,
            record.serialized_tags,
            record.created_at,
            record.local_project_id,
        )

    def insert(self, record: MirroredRecord) -> MirroredRecord:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"""
                    INSERT INTO journal_entries ({_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                """, self._params(record))
            conn.commit()

        logger.debug(f"Replica insert: {record.record_id}")
        return record

    def upsert(self, record: MirroredRecord) -> MirroredRecord:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"""
                    INSERT INTO journal_entries ({_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (record_id) DO UPDATE SET
                        project = EXCLUDED.project,
                        category = EXCLUDED.category,
                        content = EXCLUDED.content,
                        tags = EXCLUDED.tags,
                        createdat = EXCLUDED.createdat,
                        local_project_id = EXCLUDED.local_project_id
                """, self._params(record))
            conn.commit()

        logger.debug(f"Replica upsert: {record.record_id}")
        return record

    def update(self, record_id: str, patch: Dict[str, Any]) -> None:
        sets = []
        params = []

        for name in UPDATABLE_FIELDS:
            if name in patch:
                sets.append(f"{name} = %s")
                params.append(patch[name])

        if not sets:
            return

        params.append(record_id)

        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"UPDATE journal_entries SET {', '.join(sets)} WHERE record_id = %s",
                    params
                )
            conn.commit()

        logger.debug(f"Replica update: {record_id} ({', '.join(sorted(patch))})")

    def delete(self, record_id: str) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM journal_entries WHERE record_id = %s",
                    (record_id,)
                )
            conn.commit()

        logger.debug(f"Replica delete: {record_id}")

    def get(self, record_id: str) -> Optional[MirroredRecord]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"""
                    SELECT {_COLUMNS}
                    FROM journal_entries
                    WHERE record_id = %s
                """, (record_id,))
                row = cur.fetchone()

        return MirroredRecord.from_row(row) if row else None

    def list_by_project(self, local_project_id: str) -> List[MirroredRecord]:
        if not local_project_id:
            return []

        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"""
                    SELECT {_COLUMNS}
                    FROM journal_entries
                    WHERE local_project_id = %s
                    ORDER BY createdat::timestamptz DESC
                """, (local_project_id,))
                rows = cur.fetchall()

        return [MirroredRecord.from_row(row) for row in rows]

    def list_pending(self, limit: Optional[int] = None) -> List[MirroredRecord]:
        query = f"""
            SELECT {_COLUMNS}
            FROM journal_entries
            WHERE record_id LIKE %s
            ORDER BY createdat::timestamptz ASC
        """
        params: list = [PLACEHOLDER_PREFIX + '%']

        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)

        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                rows = cur.fetchall()

        return [MirroredRecord.from_row(row) for row in rows]

    def promote(
        self,
        placeholder_id: str,
        authoritative_id: str,
        authoritative_project_id: Optional[str]
    ) -> bool:
        if not is_placeholder(placeholder_id):
            # Already confirmed; re-scans must be no-ops
            return False

        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE journal_entries
                    SET record_id = %s, project = %s
                    WHERE record_id = %s
                """, (authoritative_id, authoritative_project_id, placeholder_id))
                promoted = cur.rowcount == 1
            conn.commit()

        if promoted:
            logger.info(f"Replica promote: {placeholder_id} -> {authoritative_id}")
        else:
            logger.warning(f"Replica promote found no row for {placeholder_id}")

        return promoted

    def get_store_name(self) -> str:
        return 'postgres'

    def ping(self) -> bool:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    cur.fetchone()
            return True
        except Exception as e:
            logger.error(f"Replica health check failed: {e}")
            return False
