"""
Evia Sign Webhook Processing

Evia Sign calls back with:
    {
        "RequestId": "...",
        "EventId": 1 | 2 | 3,
        "EventDescription": "SignRequestReceived" | "SignatoryCompleted" | "RequestCompleted",
        "EventTime": "2024-03-01T10:15:00Z",
        "UserName": "...",
        "Email": "...",
        "Subject": "...",
        "Documents": [{"DocumentName": "...", "DocumentContent": "<base64 PDF>"}]
    }

Every callback is stored first, then reconciled into the matching agreement
through AgreementWorkflow.apply_provider_status.
"""

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

from . import state_machine
from .exceptions import AgreementValidationError, PersistenceError
from .workflow import AgreementWorkflow, as_naive_utc

logger = logging.getLogger(__name__)


def _signed_document_bytes(payload: Dict[str, Any]) -> Optional[bytes]:
    """Decode the first attached signed document, if any."""
    documents = payload.get('Documents') or []
    for document in documents:
        content = document.get('DocumentContent') if isinstance(document, dict) else None
        if not content:
            continue
        try:
            return base64.b64decode(content, validate=False)
        except (binascii.Error, ValueError) as e:
            logger.error(f"Could not decode signed document for {payload.get('RequestId')}: {e}")
    return None


def upsert_signatory(signatories: Optional[List[Dict[str, Any]]], name: str, email: str,
                     signed_at: Optional[str]) -> List[Dict[str, Any]]:
    """Mark one signatory as completed, adding them if they are not listed yet."""
    updated = [dict(s) for s in (signatories or []) if isinstance(s, dict)]
    entry = {'name': name, 'email': email, 'status': 'completed', 'signedAt': signed_at}

    for i, existing in enumerate(updated):
        if existing.get('email') and email and existing['email'].lower() == email.lower():
            updated[i] = {**existing, 'status': 'completed', 'signedAt': signed_at}
            return updated

    updated.append(entry)
    return updated


def process_webhook(payload: Dict[str, Any], workflow: AgreementWorkflow, storage=None) -> Dict[str, Any]:
    """
    Store and apply one Evia Sign callback.

    Returns:
        dict with 'success', 'matched', 'agreement_id' and 'ignored' keys

    Raises:
        AgreementValidationError if RequestId or EventId is missing
    """
    if not isinstance(payload, dict):
        raise AgreementValidationError('Webhook payload must be a JSON object')

    request_id = payload.get('RequestId')
    event_id = payload.get('EventId')
    if not request_id or event_id in (None, ''):
        raise AgreementValidationError('Missing required fields: RequestId, EventId')

    try:
        event_id = int(event_id)
    except (TypeError, ValueError):
        raise AgreementValidationError(f"Invalid EventId: {event_id}")

    event_time = as_naive_utc(payload.get('EventTime'))
    store = workflow.store

    stored_event = None
    try:
        stored_event = store.record_webhook_event(
            request_id=request_id,
            event_id=event_id,
            event_type=payload.get('EventDescription'),
            event_time=event_time,
            user_name=payload.get('UserName'),
            user_email=payload.get('Email'),
            subject=payload.get('Subject'),
            raw_data={k: v for k, v in payload.items() if k != 'Documents'}
        )
    except PersistenceError as e:
        logger.error(f"Could not store webhook event {event_id} for {request_id}: {e}")

    agreement = store.get_by_reference(request_id)
    if agreement is None:
        logger.warning(f"Webhook for unknown signature request {request_id}")
        workflow.audit.log_webhook_received(None, event_id, payload)
        return {'success': True, 'matched': False, 'agreement_id': None, 'ignored': True}

    workflow.audit.log_webhook_received(agreement.id, event_id, payload)

    signature_status = state_machine.WEBHOOK_EVENT_STATUS.get(event_id)
    if signature_status is None:
        logger.warning(f"Ignoring unknown webhook event {event_id} ({payload.get('EventDescription')}) "
                       f"for {request_id}")
        return {'success': True, 'matched': True, 'agreement_id': agreement.id, 'ignored': True}

    signatories_status = None
    signed_document_url = None

    if event_id == state_machine.EVENT_SIGN_REQUEST_RECEIVED:
        signatories_status = []

    elif event_id == state_machine.EVENT_SIGNATORY_COMPLETED:
        signatories_status = upsert_signatory(
            agreement.signatories_status,
            payload.get('UserName'),
            payload.get('Email'),
            payload.get('EventTime')
        )

    elif event_id == state_machine.EVENT_REQUEST_COMPLETED and not agreement.signatureurl:
        file_data = _signed_document_bytes(payload)
        if file_data and storage is not None:
            try:
                signed_document_url = storage.upload_signed_document(agreement.id, file_data)
            except Exception as e:
                logger.error(f"Failed to store signed document for agreement {agreement.id}: {e}")
        elif not file_data:
            logger.info(f"No signed document attached to completion of {request_id}")

    result = workflow.apply_provider_status(
        agreement.id,
        signature_status,
        reported_at=event_time,
        signatories_status=signatories_status,
        signed_document_url=signed_document_url,
        source='webhook'
    )

    if result.success and stored_event is not None:
        store.mark_webhook_processed(stored_event)

    return {
        'success': result.success,
        'matched': True,
        'agreement_id': agreement.id,
        'ignored': bool(result.warnings),
        'error': result.error
    }
