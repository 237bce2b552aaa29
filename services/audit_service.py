"""
Audit Service - Centralized audit trail logging for rental agreements.

Provides helper functions to log audit events consistently throughout the
signature workflow. Every save, document build, gateway submission and
status reconciliation is tracked. Reconciliation divergence is recorded with
critical severity so it can be told apart from ordinary failures.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from models import db, AuditEvent

logger = logging.getLogger(__name__)


def log_event(event_type, agreement_id=None, description=None, event_data=None,
              source='app', severity='info'):
    """
    Log an audit event and commit it.

    Args:
        event_type: One of the AuditEvent type constants
        agreement_id: ID of the related agreement
        description: Human-readable description of the event
        event_data: Dict of additional context data
        source: Source of the event ('app', 'webhook', 'system')
        severity: 'info', 'warning', 'error' or 'critical'

    Returns:
        The created AuditEvent instance, or None if it could not be stored
    """
    try:
        event = AuditEvent.log(
            event_type=event_type,
            agreement_id=agreement_id,
            description=description,
            event_data=event_data,
            source=source,
            severity=severity
        )
        db.session.commit()
        return event
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to store audit event {event_type} for agreement {agreement_id}: {e}")
        return None


# =============================================================================
# AGREEMENT EVENTS
# =============================================================================

def log_agreement_saved(agreement, old_status=None):
    """Log a save, and a status change when the status moved."""
    log_event(
        event_type=AuditEvent.AGREEMENT_SAVED,
        agreement_id=agreement.id,
        description=f"Agreement saved as '{agreement.status}'",
        event_data={'status': agreement.status}
    )
    if old_status and old_status != agreement.status:
        log_status_changed(agreement, old_status, agreement.status)


def log_agreement_cancelled(agreement, old_status, reason=None):
    """Log a cancellation and the status change it made."""
    log_event(
        event_type=AuditEvent.AGREEMENT_CANCELLED,
        agreement_id=agreement.id,
        description=f"Agreement cancelled{': ' + reason if reason else ''}",
        event_data={
            'old_status': old_status,
            'reason': reason or None,
            'request_id': agreement.eviasignreference
        }
    )
    log_status_changed(agreement, old_status, agreement.status)


def log_status_changed(agreement, old_status, new_status, source='app'):
    """Log when an agreement status changes."""
    return log_event(
        event_type=AuditEvent.AGREEMENT_STATUS_CHANGED,
        agreement_id=agreement.id,
        description=f"Status changed from '{old_status}' to '{new_status}'",
        event_data={
            'old_status': old_status,
            'new_status': new_status
        },
        source=source
    )


# =============================================================================
# DOCUMENT EVENTS
# =============================================================================

def log_document_generated(agreement_id, document_url):
    return log_event(
        event_type=AuditEvent.DOCUMENT_GENERATED,
        agreement_id=agreement_id,
        description="Agreement document generated",
        event_data={'document_url': document_url}
    )


def log_document_generation_failed(agreement_id, error):
    return log_event(
        event_type=AuditEvent.DOCUMENT_GENERATION_FAILED,
        agreement_id=agreement_id,
        description="Agreement document generation failed",
        event_data={'error': str(error)},
        severity='error'
    )


# =============================================================================
# SIGNATURE EVENTS
# =============================================================================

def log_signature_requested(agreement_id, request_id, signatories):
    """Log a successful gateway submission."""
    return log_event(
        event_type=AuditEvent.SIGNATURE_REQUESTED,
        agreement_id=agreement_id,
        description=f"Sent for signature to {len(signatories)} signator{'y' if len(signatories) == 1 else 'ies'}",
        event_data={
            'request_id': request_id,
            'signatories': [{'name': s.name, 'contact': s.contact, 'role': s.role} for s in signatories]
        }
    )


def log_signature_request_failed(agreement_id, error):
    return log_event(
        event_type=AuditEvent.SIGNATURE_REQUEST_FAILED,
        agreement_id=agreement_id,
        description="Signature request rejected by gateway",
        event_data={'error': error},
        severity='error'
    )


def log_signature_status_updated(agreement_id, old_status, new_status, source):
    return log_event(
        event_type=AuditEvent.SIGNATURE_STATUS_UPDATED,
        agreement_id=agreement_id,
        description=f"Signature status '{old_status}' -> '{new_status}'",
        event_data={
            'old_signature_status': old_status,
            'new_signature_status': new_status
        },
        source=source
    )


def log_webhook_received(agreement_id, event_id, payload):
    """Log webhook receipt, matched or not."""
    return log_event(
        event_type=AuditEvent.WEBHOOK_RECEIVED,
        agreement_id=agreement_id,
        description=f"Webhook event {event_id} received",
        event_data={
            'event_id': event_id,
            'request_id': payload.get('RequestId'),
            'event_description': payload.get('EventDescription'),
            'email': payload.get('Email')
        },
        source='webhook'
    )


def log_reconciliation_divergence(agreement_id, request_id, error):
    """
    The gateway accepted a signature request but the agreement record could
    not be updated with its reference. Retrying would create a duplicate
    request, so this is recorded separately from ordinary failures.
    """
    return log_event(
        event_type=AuditEvent.RECONCILIATION_DIVERGENCE,
        agreement_id=agreement_id,
        description=(
            f"Signature request {request_id} was accepted by the gateway "
            f"but the agreement could not be updated"
        ),
        event_data={
            'request_id': request_id,
            'error': str(error)
        },
        source='system',
        severity='critical'
    )
