"""
ResearchOps Journals v1.4

Dual-write journal service for qualitative research projects.

CORE CONTRACTS:
- Airtable is authoritative: once a record exists there, its id and timestamp win
- Postgres replica is always written: every accepted entry is readable locally
- Placeholder ids ("pending-...") mark rows Airtable has not confirmed yet
- Only the reconciliation sweep promotes a placeholder row to an Airtable id
- No cross-store transactions: each store is atomic per row, nothing more
"""

__version__ = "1.4.0"
