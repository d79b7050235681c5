"""
Placeholder identifiers for unconfirmed replica rows.

A placeholder stands in for an Airtable record id until the authoritative
write succeeds. The reconciliation sweep finds work by prefix alone, so the
prefix must never be producible by Airtable: Airtable ids are 'rec' followed
by 14 alphanumerics, placeholders are 'pending-' followed by 32 hex digits.

The pending/confirmed state is always derived from the id. There is no
separate flag column to drift out of sync with it.
"""

from dataclasses import dataclass
from typing import Union
import logging
import random
import re
import secrets
import time

logger = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "pending-"

PLACEHOLDER_PATTERN = re.compile(r"^pending-[0-9a-f]{32}$")
AUTHORITATIVE_PATTERN = re.compile(r"^rec[A-Za-z0-9]{14}$")


@dataclass(frozen=True)
class Pending:
    """Row not yet confirmed by the authoritative store."""
    placeholder_id: str


@dataclass(frozen=True)
class Confirmed:
    """Row whose primary key is the authoritative record id."""
    authoritative_id: str


RecordState = Union[Pending, Confirmed]


def generate_placeholder_id() -> str:
    """
    Generate a fresh placeholder id.

    Uses the OS CSPRNG. If it is unavailable, falls back to a millisecond
    timestamp plus non-cryptographic random bits, which keeps ids unique in
    practice and preserves the format.

    Returns:
        'pending-' + 32 lowercase hex digits
    """
    try:
        suffix = secrets.token_hex(16)
    except (NotImplementedError, OSError) as e:
        logger.warning(f"CSPRNG unavailable, using timestamp fallback: {e}")
        suffix = _fallback_suffix()
    return f"{PLACEHOLDER_PREFIX}{suffix}"


def _fallback_suffix() -> str:
    millis = format(int(time.time() * 1000) & 0xFFFFFFFFFFFF, "012x")
    return millis + format(random.getrandbits(80), "020x")


def is_placeholder(record_id: str) -> bool:
    """True if the id carries the reserved placeholder prefix."""
    return bool(record_id) and record_id.startswith(PLACEHOLDER_PREFIX)


def looks_authoritative(record_id: str) -> bool:
    """True if the id has the authoritative store's own format."""
    return bool(record_id) and AUTHORITATIVE_PATTERN.match(record_id) is not None


def record_state(record_id: str) -> RecordState:
    """
    Derive the row state from its primary key.

    Args:
        record_id: Replica primary key

    Returns:
        Pending if the id is a placeholder, Confirmed otherwise
    """
    if is_placeholder(record_id):
        return Pending(placeholder_id=record_id)
    return Confirmed(authoritative_id=record_id)
