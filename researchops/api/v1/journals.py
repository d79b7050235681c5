"""
ResearchOps API v1 - Journal Entry Endpoints

Reads come from the replica. Writes go through the DualWriteCoordinator,
which tries Airtable first and always mirrors to the replica.

Handlers are plain functions so FastAPI runs them on its threadpool: the
coordinator's blocking Airtable and Postgres calls never stall the event
loop, and a client disconnect never interrupts a write halfway.
"""

from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
import structlog

from researchops.api.dependencies import Services, get_services
from researchops.core.errors import DualWriteError

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1")


# Pydantic models
class JournalEntry(BaseModel):
    """Journal entry as read from the replica."""
    id: str
    project: Optional[str]
    category: str
    content: str
    tags: List[str]
    createdAt: Optional[str]
    pending: bool


class JournalEntryListResponse(BaseModel):
    """Response for list_journal_entries endpoint."""
    ok: bool
    source: str
    entries: List[JournalEntry]


class JournalEntryResponse(BaseModel):
    """Response for get_journal_entry endpoint."""
    ok: bool
    entry: JournalEntry


class JournalEntryCreate(BaseModel):
    """
    Create payload.

    Field presence is validated by the coordinator so that every caller,
    HTTP or not, gets the same InvalidArgument errors.
    """
    project: Optional[str] = None
    project_local_id: Optional[str] = None
    category: Optional[str] = None
    content: Optional[str] = None
    tags: Optional[Union[List[str], str]] = None


class JournalEntryUpdate(BaseModel):
    """Partial update payload. Omitted fields are left unchanged."""
    category: Optional[str] = None
    content: Optional[str] = None
    tags: Optional[Union[List[str], str]] = None


def _entry(record) -> JournalEntry:
    return JournalEntry(
        id=record.record_id,
        project=record.authoritative_project_id,
        category=record.category.value,
        content=record.content,
        tags=list(record.tags),
        createdAt=record.created_at or None,
        pending=record.is_pending
    )


# Endpoints
@router.get("/journal-entries", response_model=JournalEntryListResponse)
def list_journal_entries(
    request: Request,
    project: Optional[str] = Query(None, description="Project local id"),
    services: Services = Depends(get_services)
):
    """
    List a project's journal entries from the replica, newest first.

    Entries still waiting for Airtable carry pending=true.
    """
    request_id = request.state.request_id

    if not project:
        return JournalEntryListResponse(ok=True, source="replica", entries=[])

    try:
        records = services.replica.list_by_project(project)
    except Exception as e:
        logger.error(
            "journals.list.error",
            exc_info=e,
            request_id=request_id,
            project_local_id=project
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to load journal entries"
        )

    logger.info(
        "journals.list.success",
        request_id=request_id,
        project_local_id=project,
        count=len(records)
    )

    return JournalEntryListResponse(
        ok=True,
        source="replica",
        entries=[_entry(r) for r in records]
    )


@router.get("/journal-entries/{entry_id}", response_model=JournalEntryResponse)
def get_journal_entry(
    request: Request,
    entry_id: str,
    services: Services = Depends(get_services)
):
    """
    Get a journal entry by id (Airtable id or placeholder).

    Raises:
        404: Entry not found
    """
    request_id = request.state.request_id

    try:
        record = services.replica.get(entry_id)
    except Exception as e:
        logger.error(
            "journal.get.error",
            exc_info=e,
            request_id=request_id,
            entry_id=entry_id
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to load journal entry"
        )

    if record is None:
        logger.warning("journal.not_found", request_id=request_id, entry_id=entry_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Journal entry {entry_id} not found"
        )

    return JournalEntryResponse(ok=True, entry=_entry(record))


@router.post("/journal-entries", status_code=status.HTTP_201_CREATED)
def create_journal_entry(
    request: Request,
    payload: JournalEntryCreate,
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """
    Create a journal entry (dual-write).

    Returns 201 whenever the entry was persisted somewhere. 'source' tells
    the UI whether Airtable has it yet ('authoritative+replica') or it is
    saved locally and still syncing ('replica-only').

    Raises:
        400: Missing or invalid field
        404: Unknown project
        503: Neither store accepted the entry
    """
    request_id = request.state.request_id
    project_local_id = payload.project_local_id or payload.project

    try:
        result = services.coordinator.create_record(
            project_local_id,
            payload.category,
            payload.content,
            payload.tags
        )
    except DualWriteError as e:
        logger.warning(
            "journal.create.rejected",
            request_id=request_id,
            code=e.code,
            error=e.message
        )
        raise

    body = result.to_dict()
    body["id"] = result.record_id

    logger.info(
        "journal.create.success",
        request_id=request_id,
        entry_id=body["id"],
        source=body["source"]
    )

    return body


@router.patch("/journal-entries/{entry_id}")
def update_journal_entry(
    request: Request,
    entry_id: str,
    payload: JournalEntryUpdate,
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """
    Update a journal entry (dual-write, partial).

    Raises:
        400: No updatable fields or invalid value
        503: Neither store accepted the change
    """
    result = services.coordinator.update_record(
        entry_id,
        category=payload.category,
        content=payload.content,
        tags=payload.tags
    )

    logger.info(
        "journal.update.success",
        request_id=request.state.request_id,
        entry_id=entry_id,
        source=result.source.value
    )

    return result.to_dict()


@router.delete("/journal-entries/{entry_id}")
def delete_journal_entry(
    request: Request,
    entry_id: str,
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """
    Delete a journal entry from both stores.

    Raises:
        503: Neither store accepted the delete
    """
    result = services.coordinator.delete_record(entry_id)

    logger.info(
        "journal.delete.success",
        request_id=request.state.request_id,
        entry_id=entry_id,
        source=result.source.value
    )

    return result.to_dict()
