"""
Agreement status transitions, editability and provider status mapping.
"""

import logging
import re
from typing import Dict, Optional

from agreement_status import (
    AgreementStatus,
    SignatureStatus,
    EDITABLE_STATUSES,
    TERMINAL_STATUSES,
)
from .exceptions import IllegalTransitionError

logger = logging.getLogger(__name__)

# User actions
SAVE_DRAFT = 'save_draft'
SAVE_FOR_REVIEW = 'save_for_review'
SEND_FOR_SIGNATURE = 'send_for_signature'
CANCEL = 'cancel'

# Provider-driven transitions
PROVIDER_UPDATE = 'provider_update'

# action -> (allowed source statuses, target status). None as a source means
# a record that has not been saved yet. A target of None keeps the status.
TRANSITIONS = {
    SAVE_DRAFT: ({None, AgreementStatus.DRAFT, AgreementStatus.REVIEW}, AgreementStatus.DRAFT),
    SAVE_FOR_REVIEW: ({None, AgreementStatus.DRAFT, AgreementStatus.REVIEW}, AgreementStatus.REVIEW),
    SEND_FOR_SIGNATURE: ({None, AgreementStatus.DRAFT, AgreementStatus.REVIEW}, AgreementStatus.PENDING),
    CANCEL: ({AgreementStatus.DRAFT, AgreementStatus.REVIEW, AgreementStatus.PENDING}, AgreementStatus.CANCELLED),
    PROVIDER_UPDATE: ({AgreementStatus.PENDING}, None),
}

FORM_FIELDS = (
    'templateid',
    'propertyid',
    'unitid',
    'renteeid',
    'terms.monthlyRent',
    'terms.depositAmount',
    'terms.startDate',
    'terms.endDate',
    'terms.paymentDueDay',
    'terms.noticePeriod',
    'terms.additionalTerms',
    'notes',
    'signatories',
    'save_draft',
    'save_for_review',
    'send_for_signature',
    'preview',
)

# Always available, whatever the status
READ_ONLY_FIELDS = frozenset({'preview'})

PROVIDER_TO_AGREEMENT = {
    SignatureStatus.COMPLETED: AgreementStatus.SIGNED,
    SignatureStatus.DECLINED: AgreementStatus.REJECTED,
    SignatureStatus.FAILED: AgreementStatus.REJECTED,
    SignatureStatus.EXPIRED: AgreementStatus.EXPIRED,
}

# Evia Sign webhook EventId -> signature status
EVENT_SIGN_REQUEST_RECEIVED = 1
EVENT_SIGNATORY_COMPLETED = 2
EVENT_REQUEST_COMPLETED = 3

WEBHOOK_EVENT_STATUS = {
    EVENT_SIGN_REQUEST_RECEIVED: SignatureStatus.PENDING,
    EVENT_SIGNATORY_COMPLETED: SignatureStatus.IN_PROGRESS,
    EVENT_REQUEST_COMPLETED: SignatureStatus.COMPLETED,
}

# Signing only moves forward; a lower rank never replaces a higher one
SIGNATURE_RANK = {
    SignatureStatus.PENDING: 0,
    SignatureStatus.IN_PROGRESS: 1,
    SignatureStatus.COMPLETED: 2,
    SignatureStatus.DECLINED: 2,
    SignatureStatus.EXPIRED: 2,
    SignatureStatus.FAILED: 2,
}

_STATUS_ALIASES = {
    'completed': SignatureStatus.COMPLETED,
    'complete': SignatureStatus.COMPLETED,
    'signed': SignatureStatus.COMPLETED,
    'in_progress': SignatureStatus.IN_PROGRESS,
    'inprogress': SignatureStatus.IN_PROGRESS,
    'partially_signed': SignatureStatus.IN_PROGRESS,
    'pending': SignatureStatus.PENDING,
    'pending_signature': SignatureStatus.PENDING,
    'sent': SignatureStatus.PENDING,
    'declined': SignatureStatus.DECLINED,
    'rejected': SignatureStatus.DECLINED,
    'expired': SignatureStatus.EXPIRED,
    'failed': SignatureStatus.FAILED,
    'error': SignatureStatus.FAILED,
}


def _as_status(status) -> Optional[AgreementStatus]:
    if status is None or status == '':
        return None
    try:
        return AgreementStatus(status)
    except ValueError:
        logger.warning(f"Unknown agreement status: {status}")
        return None


def is_editable(status, has_id: bool = True) -> bool:
    """A record is editable when it is new, or in draft or review."""
    if not has_id:
        return True
    return _as_status(status) in EDITABLE_STATUSES


def check_transition(current_status, action: str) -> Optional[AgreementStatus]:
    """
    Confirm an action is legal from the current status.

    Returns the target status (None when the action keeps the status).
    Raises IllegalTransitionError otherwise.
    """
    if action not in TRANSITIONS:
        raise IllegalTransitionError(f"Unknown action: {action}", current_status, action)

    allowed, target = TRANSITIONS[action]
    current = _as_status(current_status)
    if current_status and current is None:
        raise IllegalTransitionError(
            f"Agreement has unknown status '{current_status}'", current_status, action
        )

    if current not in allowed:
        label = current.value if current else 'new'
        raise IllegalTransitionError(
            f"Cannot {action.replace('_', ' ')} an agreement that is {label}",
            current_status, action
        )

    return target


def field_states(status, has_id: bool = True) -> Dict[str, Dict[str, bool]]:
    """
    Per-field disabled flags for the agreement form.

    Outside draft/review every input is disabled except the preview.
    """
    editable = is_editable(status, has_id)
    return {
        name: {'disabled': not editable and name not in READ_ONLY_FIELDS}
        for name in FORM_FIELDS
    }


def normalize_signature_status(status) -> Optional[SignatureStatus]:
    """
    Map a free-text provider status onto the signature vocabulary.

    Examples:
        "Completed" -> completed
        "In Progress" -> in_progress
        "pending_signature" -> pending
    Returns None when the status is not recognised.
    """
    if status is None:
        return None
    if isinstance(status, SignatureStatus):
        return status

    key = re.sub(r'[\s\-]+', '_', str(status).strip().lower())
    normalized = _STATUS_ALIASES.get(key)
    if normalized is None:
        logger.warning(f"Unrecognised provider status: {status}")
    return normalized


def provider_to_agreement_status(signature_status) -> Optional[AgreementStatus]:
    """
    Agreement status implied by a provider signature status.

    pending and in_progress keep the agreement pending, so they return None.
    """
    normalized = normalize_signature_status(signature_status)
    if normalized is None:
        return None
    return PROVIDER_TO_AGREEMENT.get(normalized)


def is_terminal(status) -> bool:
    return _as_status(status) in TERMINAL_STATUSES


def is_regression(current, incoming) -> bool:
    """True when incoming would move signing progress backwards."""
    current = normalize_signature_status(current) if current else None
    incoming = normalize_signature_status(incoming)
    if current is None or incoming is None:
        return False
    return SIGNATURE_RANK[incoming] < SIGNATURE_RANK[current]
