"""
Journal entry model and input normalisation.

Shared by the coordinator, the replica store and the reconciliation sweep so
that all three agree on field semantics. The sweep replays stored rows against
Airtable, so normalisation here must be idempotent: normalising an already
normalised value returns it unchanged.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple, Union
import json

from researchops.core.errors import InvalidArgument
from researchops.core.placeholder import is_placeholder

TAG_SEPARATOR = ", "


class Category(str, Enum):
    """Journal category (matches the Airtable single-select options)."""
    PERCEPTIONS = "perceptions"
    PROCEDURES = "procedures"
    DECISIONS = "decisions"
    INTROSPECTIONS = "introspections"


TagsInput = Union[None, str, Iterable[Any]]


def normalize_tags(value: TagsInput) -> Tuple[str, ...]:
    """
    Normalise tags to a duplicate-free tuple of trimmed, non-empty strings.

    Accepts a pre-split list or a comma-separated string. First occurrence
    order is kept so the serialised form is deterministic for equal input.

    Examples:
        normalize_tags("a, b,c")        -> ('a', 'b', 'c')
        normalize_tags(["a", " b", ""]) -> ('a', 'b')
        normalize_tags(None)            -> ()
    """
    if value is None:
        return ()
    if isinstance(value, str):
        parts = value.split(",")
    else:
        parts = [str(v) for v in value if v is not None]

    seen = []
    for part in parts:
        tag = part.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return tuple(seen)


def serialize_tags(tags: Iterable[str]) -> str:
    """Serialise normalised tags for storage ('x, y')."""
    return TAG_SEPARATOR.join(normalize_tags(list(tags)))


def parse_tags(stored: Optional[str]) -> Tuple[str, ...]:
    """
    Parse a stored tags column.

    Handles the canonical 'x, y' form and the legacy JSON array form
    ('["x","y"]') found in rows seeded from an Airtable export.
    """
    if not stored or not stored.strip():
        return ()
    text = stored.strip()
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return normalize_tags(parsed)
    return normalize_tags(text)


def require_text(name: str, value: Any) -> str:
    """Trim a required text field, raising InvalidArgument if empty."""
    text = "" if value is None else str(value).strip()
    if not text:
        raise InvalidArgument(f"{name} is required")
    return text


def parse_category(value: Any) -> Category:
    """Validate a category value against the known categories."""
    text = require_text("category", value)
    try:
        return Category(text)
    except ValueError:
        valid = ", ".join(c.value for c in Category)
        raise InvalidArgument("invalid category", detail=f"Must be one of: {valid}")


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class MirroredRecord:
    """
    Journal entry row as held by the replica.

    record_id is the Airtable id once confirmed, a placeholder before that.
    """
    record_id: str
    authoritative_project_id: Optional[str]
    category: Category
    content: str
    tags: Tuple[str, ...] = field(default_factory=tuple)
    created_at: str = field(default_factory=utc_now_iso)
    local_project_id: str = ""

    @property
    def is_pending(self) -> bool:
        """Derived from the id prefix; never stored."""
        return is_placeholder(self.record_id)

    @property
    def serialized_tags(self) -> str:
        return serialize_tags(self.tags)

    def with_record_id(self, record_id: str, authoritative_project_id: Optional[str]) -> 'MirroredRecord':
        """Copy of this row renamed to a new primary key."""
        return replace(
            self,
            record_id=record_id,
            authoritative_project_id=authoritative_project_id,
        )

    def with_patch(self, patch: Dict[str, Any]) -> 'MirroredRecord':
        """
        Copy of this row with a replica patch applied.

        Takes the same patch as ReplicaStore.update: category value, content,
        and tags in their serialized form. Other keys are ignored.
        """
        changes: Dict[str, Any] = {}
        if "category" in patch:
            changes["category"] = Category(patch["category"])
        if "content" in patch:
            changes["content"] = patch["content"]
        if "tags" in patch:
            changes["tags"] = normalize_tags(patch["tags"])
        return replace(self, **changes)

    def to_authoritative_fields(self) -> Dict[str, Any]:
        """Fields sent to the record store on create."""
        return {
            "category": self.category.value,
            "content": self.content,
            "tags": list(self.tags),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Serializable caller-facing row."""
        return {
            "recordId": self.record_id,
            "authoritativeProjectId": self.authoritative_project_id,
            "category": self.category.value,
            "content": self.content,
            "tags": self.serialized_tags,
            "createdAt": self.created_at,
            "localProjectId": self.local_project_id,
            "pending": self.is_pending,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'MirroredRecord':
        """
        Build from a replica row (dict_row cursor).

        Unknown categories in legacy rows fall back to 'procedures' rather
        than failing the read.
        """
        try:
            category = Category(row.get("category") or "")
        except ValueError:
            category = Category.PROCEDURES

        created_at = row.get("createdat")
        if isinstance(created_at, datetime):
            created_at = created_at.isoformat()

        return cls(
            record_id=row["record_id"],
            authoritative_project_id=row.get("project"),
            category=category,
            content=row.get("content") or "",
            tags=parse_tags(row.get("tags")),
            created_at=created_at or "",
            local_project_id=row.get("local_project_id") or "",
        )