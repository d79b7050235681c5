"""
Airtable Record Store

Authoritative store for journal entries, accessed over the Airtable REST API.

The coordinator only sees the RecordStoreClient interface: create, update,
delete. Any exception raised here means "authoritative unavailable" to the
caller; nothing in this module retries. Retries belong to the reconciliation
sweep.

API reference: https://airtable.com/developers/web/api/introduction
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote
import logging

import requests

from researchops.core.journal import serialize_tags, utc_now_iso

logger = logging.getLogger(__name__)

AIRTABLE_API_URL = "https://api.airtable.com/v0"

# Request timeout (seconds)
REQUEST_TIMEOUT = 10

# Generic field name -> Airtable column
FIELD_MAP = {
    "category": "Category",
    "content": "Content",
    "tags": "Tags",
}
PROJECT_LINK_FIELD = "Project"


@dataclass(frozen=True)
class AuthoritativeRecord:
    """Identity assigned by the authoritative store on create."""
    id: str
    created_at: str


class RecordStoreError(Exception):
    """Authoritative store call failed (transport or HTTP error)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429


class RecordStoreClient(ABC):
    """
    Authoritative record store interface.

    Field-name guessing and other schema workarounds live behind this
    interface, never in the coordinator.
    """

    @abstractmethod
    def create(self, project_ref: str, fields: Dict[str, Any]) -> AuthoritativeRecord:
        """Create a record linked to project_ref. Raises on any failure."""

    @abstractmethod
    def update(self, record_id: str, fields: Dict[str, Any]) -> None:
        """Patch a record. Raises on any failure."""

    @abstractmethod
    def delete(self, record_id: str) -> None:
        """Delete a record. Raises on any failure."""


def to_airtable_fields(fields: Dict[str, Any], drop_empty: bool = True) -> Dict[str, Any]:
    """
    Map generic journal fields to Airtable columns.

    Tags are sent as the same 'x, y' string the replica stores. On create,
    empty values are dropped so Airtable does not reject blank select options;
    on update an empty string clears the column.
    """
    out = {}
    for name, value in fields.items():
        column = FIELD_MAP.get(name)
        if column is None:
            continue
        if name == "tags" and not isinstance(value, str):
            value = serialize_tags(value or [])
        if value is None:
            continue
        if drop_empty and isinstance(value, str) and not value.strip():
            continue
        out[column] = value
    return out


class AirtableRecordStore(RecordStoreClient):
    """
    Airtable-backed RecordStoreClient.

    Usage:
        store = AirtableRecordStore(base_id, api_key, 'Journals')
        rec = store.create('rec00J4gJcfVGNCG5', {
            'category': 'procedures',
            'content': 'did the thing',
            'tags': ['x', 'y']
        })
    """

    def __init__(
        self,
        base_id: str,
        api_key: str,
        table: str,
        timeout: float = REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        self.base_id = base_id
        self.table = table
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    @property
    def table_url(self) -> str:
        return f"{AIRTABLE_API_URL}/{self.base_id}/{quote(self.table, safe='')}"

    def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout:
            raise RecordStoreError(f"Airtable timeout after {self.timeout}s ({method} {self.table})")
        except requests.exceptions.RequestException as e:
            raise RecordStoreError(f"Airtable request error: {e}")

        if not response.ok:
            body = (response.text or "")[:500]
            raise RecordStoreError(
                f"Airtable {response.status_code}: {body}",
                status=response.status_code
            )

        try:
            return response.json()
        except ValueError:
            return {}

    def create(self, project_ref: str, fields: Dict[str, Any]) -> AuthoritativeRecord:
        payload_fields = to_airtable_fields(fields)
        payload_fields[PROJECT_LINK_FIELD] = [project_ref]

        data = self._request(
            "POST",
            self.table_url,
            json={"records": [{"fields": payload_fields}]}
        )

        records = data.get("records") or []
        record = records[0] if records else {}
        record_id = record.get("id")
        if not record_id:
            raise RecordStoreError("Airtable response missing record id")

        created_at = record.get("createdTime") or utc_now_iso()
        logger.debug(f"Airtable create: {record_id} in {self.table}")

        return AuthoritativeRecord(id=record_id, created_at=created_at)

    def update(self, record_id: str, fields: Dict[str, Any]) -> None:
        payload_fields = to_airtable_fields(fields, drop_empty=False)
        if not payload_fields:
            return

        self._request(
            "PATCH",
            self.table_url,
            json={"records": [{"id": record_id, "fields": payload_fields}]}
        )
        logger.debug(f"Airtable update: {record_id}")

    def delete(self, record_id: str) -> None:
        self._request("DELETE", f"{self.table_url}/{quote(record_id, safe='')}")
        logger.debug(f"Airtable delete: {record_id}")
