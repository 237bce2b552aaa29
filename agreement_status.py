# agreement_status.py
"""
Agreement and signature status vocabularies.

These enums are the single definition of the allowed status values. The
agreements table CHECK constraint, the migration, and the workflow code all
read from here, so the schema and the code cannot drift apart.
"""

from enum import Enum


class AgreementStatus(str, Enum):
    """Lifecycle status of a rental agreement."""
    DRAFT = 'draft'
    REVIEW = 'review'
    PENDING = 'pending'
    SIGNED = 'signed'
    REJECTED = 'rejected'
    EXPIRED = 'expired'
    TERMINATED = 'terminated'
    CANCELLED = 'cancelled'

    @classmethod
    def values(cls):
        return [s.value for s in cls]


class SignatureStatus(str, Enum):
    """Signing progress as reported by the e-signature provider."""
    PENDING = 'pending'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    DECLINED = 'declined'
    EXPIRED = 'expired'
    FAILED = 'failed'

    @classmethod
    def values(cls):
        return [s.value for s in cls]


EDITABLE_STATUSES = frozenset({AgreementStatus.DRAFT, AgreementStatus.REVIEW})

TERMINAL_STATUSES = frozenset({
    AgreementStatus.SIGNED,
    AgreementStatus.REJECTED,
    AgreementStatus.EXPIRED,
    AgreementStatus.TERMINATED,
    AgreementStatus.CANCELLED,
})
