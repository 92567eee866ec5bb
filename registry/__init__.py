"""
Registry Module for the Nullifier Ledger
Eligibility registry, nullifier ledger and async batch submission
"""

from .batching import BatchResult, BatchSubmitter
from .eligibility import EligibilityRegistration, EligibilityRegistry
from .ledger import (
    LedgerEntry,
    NullifierLedger,
    RejectionReason,
    SubmissionResult,
    TallySnapshot,
    VoteStatus,
)

__all__ = [
    'BatchResult',
    'BatchSubmitter',
    'EligibilityRegistration',
    'EligibilityRegistry',
    'LedgerEntry',
    'NullifierLedger',
    'RejectionReason',
    'SubmissionResult',
    'TallySnapshot',
    'VoteStatus',
]
