"""
ResearchOps API - Dependencies

Shared dependencies for the FastAPI application:
- Database connection pooling
- Service wiring (directory, replica, Airtable, coordinator, sweep)
- API key authentication
- Request ID generation
"""

import os
import uuid
from dataclasses import dataclass
from typing import Iterator, Optional
from contextlib import contextmanager

from fastapi import Header, HTTPException, Request
from psycopg import Connection
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool
import structlog

from researchops.config import ResearchOpsConfig
from researchops.dualwrite.coordinator import DualWriteCoordinator
from researchops.dualwrite.reconciliation import ReconciliationSweep
from researchops.dualwrite.replica_misses import ReplicaMissQueue
from researchops.integrations.airtable import AirtableRecordStore, RecordStoreClient
from researchops.storage.postgres_replica import PostgresReplicaStore
from researchops.storage.project_directory import PostgresProjectDirectory, ProjectDirectory
from researchops.storage.replica_store import ReplicaStore

logger = structlog.get_logger()

# Global connection pool (initialized at startup)
_pool: Optional[ConnectionPool] = None


def init_connection_pool(
    database_url: str,
    min_size: int = 2,
    max_size: int = 10,
    timeout: float = 10.0,
    statement_timeout_ms: int = 5000
) -> ConnectionPool:
    """
    Initialize database connection pool.

    Pool is created ONCE at application startup. Every connection carries a
    statement_timeout so a stuck replica call cannot hold a request forever.

    Args:
        database_url: Postgres connection URL
        min_size: Minimum pool connections
        max_size: Maximum pool connections
        timeout: Connection checkout timeout in seconds
        statement_timeout_ms: Per-statement timeout in milliseconds

    Returns:
        ConnectionPool instance
    """
    global _pool

    logger.info(
        "database.pool.init",
        min_size=min_size,
        max_size=max_size,
        timeout=timeout,
        statement_timeout_ms=statement_timeout_ms
    )

    _pool = ConnectionPool(
        conninfo=database_url,
        min_size=min_size,
        max_size=max_size,
        timeout=timeout,
        kwargs={
            'row_factory': dict_row,
            'options': f'-c statement_timeout={statement_timeout_ms}'
        },
        open=True
    )

    return _pool


def close_connection_pool():
    """Close database connection pool."""
    global _pool

    if _pool:
        logger.info("database.pool.close")
        _pool.close()
        _pool = None


@contextmanager
def replica_connection() -> Iterator[Connection]:
    """
    Connection for the replica store and project directory.

    Store errors propagate unchanged: the coordinator decides whether a
    replica failure is fatal.

    Raises:
        RuntimeError: If pool not initialized
    """
    if not _pool:
        raise RuntimeError("Database connection pool not initialized")

    with _pool.connection() as conn:
        yield conn


# Service wiring
@dataclass
class Services:
    """Collaborators shared by all requests."""
    directory: ProjectDirectory
    replica: ReplicaStore
    record_store: Optional[RecordStoreClient]
    miss_queue: ReplicaMissQueue
    coordinator: DualWriteCoordinator
    sweep: ReconciliationSweep


_services: Optional[Services] = None


def build_services(
    config: ResearchOpsConfig,
    directory: ProjectDirectory,
    replica: ReplicaStore,
    record_store: Optional[RecordStoreClient] = None
) -> Services:
    """
    Wire the coordinator and sweep around shared collaborators.

    record_store defaults to an AirtableRecordStore when Airtable is configured.
    """
    if record_store is None and config.airtable.is_enabled():
        record_store = AirtableRecordStore(
            base_id=config.airtable.base_id,
            api_key=config.airtable.api_key,
            table=config.airtable.journal_table,
            timeout=config.airtable.timeout_s
        )

    miss_queue = ReplicaMissQueue(maxsize=config.replica_miss_queue_size)

    coordinator = DualWriteCoordinator(
        directory=directory,
        replica=replica,
        record_store=record_store,
        logger=structlog.get_logger("researchops.dualwrite.coordinator"),
        miss_queue=miss_queue,
        audit=config.audit
    )

    sweep = ReconciliationSweep(
        directory=directory,
        replica=replica,
        record_store=record_store,
        logger=structlog.get_logger("researchops.dualwrite.reconciliation"),
        miss_queue=miss_queue
    )

    return Services(
        directory=directory,
        replica=replica,
        record_store=record_store,
        miss_queue=miss_queue,
        coordinator=coordinator,
        sweep=sweep
    )


def init_services(config: ResearchOpsConfig) -> Services:
    """Build Postgres-backed services. Call after init_connection_pool()."""
    global _services

    _services = build_services(
        config,
        directory=PostgresProjectDirectory(replica_connection),
        replica=PostgresReplicaStore(replica_connection)
    )

    logger.info(
        "services.init",
        airtable_enabled=_services.record_store is not None,
        replica=_services.replica.get_store_name()
    )

    return _services


def close_services():
    global _services
    _services = None


def get_services() -> Services:
    """FastAPI dependency: shared services."""
    if _services is None:
        raise HTTPException(
            status_code=503,
            detail="Service not initialized"
        )
    return _services


# API Key validation
def get_valid_api_keys() -> set:
    """
    Get valid API keys from environment.

    Returns:
        Set of valid API keys
    """
    api_keys_str = os.getenv("VALID_API_KEYS", "")
    if not api_keys_str:
        logger.warning("auth.no_api_keys_configured")
        return set()

    return set(key.strip() for key in api_keys_str.split(",") if key.strip())


VALID_API_KEYS = get_valid_api_keys()
AUTH_MODE = os.getenv("AUTH_MODE", "api_key")  # api_key, disabled


async def verify_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(None, alias="X-API-Key")
) -> str:
    """
    Verify API key from X-API-Key header.

    Admin endpoints (reconciliation trigger) require it.

    Raises:
        HTTPException: 401 if missing or invalid
    """
    request_id = getattr(request.state, "request_id", "unknown")

    if AUTH_MODE == "disabled":
        logger.warning("auth.disabled", request_id=request_id)
        return "disabled"

    if not x_api_key:
        logger.warning("auth.missing_api_key", request_id=request_id)
        raise HTTPException(
            status_code=401,
            detail="API key required. Provide X-API-Key header."
        )

    if x_api_key not in VALID_API_KEYS:
        logger.warning(
            "auth.invalid_api_key",
            request_id=request_id,
            api_key_prefix=x_api_key[:8] + "..."
        )
        raise HTTPException(
            status_code=401,
            detail="Invalid API key"
        )

    logger.debug("auth.valid_api_key", request_id=request_id)
    return x_api_key


def generate_request_id() -> str:
    """
    Generate unique request ID for tracing.

    Returns:
        Request ID (UUID4)
    """
    return f"req_{uuid.uuid4().hex[:12]}"
