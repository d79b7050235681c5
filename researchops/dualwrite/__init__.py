"""
Dual-write path for journal entries.

- coordinator: create/update/delete across Airtable and the replica
- reconciliation: sweep promoting placeholder rows to Airtable ids
- replica_misses: rows Airtable accepted but the replica missed
"""

from researchops.dualwrite.coordinator import (
    DualWriteCoordinator,
    MutationResult,
    WriteResult,
    WriteSource
)
from researchops.dualwrite.reconciliation import (
    PromotionStatus,
    ReconciliationSweep,
    SweepReport
)
from researchops.dualwrite.replica_misses import ReplicaMissQueue

__all__ = [
    'DualWriteCoordinator',
    'MutationResult',
    'WriteResult',
    'WriteSource',
    'PromotionStatus',
    'ReconciliationSweep',
    'SweepReport',
    'ReplicaMissQueue'
]
