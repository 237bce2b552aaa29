"""
Agreement Workflow Controller

Orchestrates the agreement-to-signature workflow:

    save_draft          persist the form as a draft
    save_for_review     validate, persist, (re)generate the document, move to review
    send_for_signature  validate, persist, always regenerate the document,
                        submit it to the signature gateway, move to pending
    refresh_signature_status / apply_provider_status
                        reconcile provider-reported status into the record
    cancel_agreement    move a draft, review or pending agreement to cancelled

Every public method returns a WorkflowResult. Internal layers raise
AgreementError subclasses, which are converted at this boundary; anything
else is logged and returned as an 'unexpected' failure.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from agreement_status import AgreementStatus, SignatureStatus
from models import generate_uuid
from services import audit_service

from . import state_machine
from .context_builder import build_merge_context, default_signatories
from .document_builder import DocumentBuilder
from .evia_client import SignatureGateway
from .exceptions import (
    AgreementError,
    AgreementNotFoundError,
    AgreementValidationError,
    DocumentGenerationError,
    GatewayError,
    IllegalTransitionError,
    PersistenceError,
    ReconciliationError,
)
from .merge_engine import TemplateMerger
from .store import AgreementStore
from .transforms import parse_date, transform_date
from .types import AgreementForm, MergeResult, Signatory, SignatureRequest, WorkflowResult
from .validators import validate_for_save, validate_signatories, validate_unit_selection

logger = logging.getLogger(__name__)

GENERIC_GATEWAY_ERROR = 'Failed to send agreement for signature'
GENERIC_UNEXPECTED_ERROR = 'Something went wrong. Please try again.'
MISSING_WEBHOOK_WARNING = (
    'No webhook URL is configured; signature status will only update on manual refresh'
)


def utcnow() -> datetime:
    return datetime.utcnow()


def as_naive_utc(value: Any) -> Optional[datetime]:
    """Parse a provider timestamp into a naive UTC datetime."""
    if value is None or value == '':
        return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            parsed = parse_date(value)
            if parsed is None:
                return None
            value = datetime(parsed.year, parsed.month, parsed.day)
    if isinstance(value, datetime) and value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class InFlightRegistry:
    """
    Tracks agreements with a send for signature in progress.

    Thread-safe; one instance is shared by every request the app serves.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._keys = set()

    def acquire(self, key: str) -> bool:
        """Claim a key. Returns False if it is already claimed."""
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._keys.discard(key)

    def is_in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._keys


class AgreementWorkflow:
    """Agreement workflow with its collaborators injected."""

    def __init__(self, store: AgreementStore, documents: DocumentBuilder, gateway: SignatureGateway,
                 in_flight: InFlightRegistry = None, webhook_url: str = None,
                 multi_unit_type: str = 'apartment', audit=audit_service,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.documents = documents
        self.gateway = gateway
        self.in_flight = in_flight or InFlightRegistry()
        self.webhook_url = webhook_url
        self.multi_unit_type = multi_unit_type
        self.audit = audit
        self.clock = clock

    # -------------------------------------------------------------------------
    # Boundary
    # -------------------------------------------------------------------------

    def _run(self, operation: str, func: Callable, *args, **kwargs) -> WorkflowResult:
        """Run an operation and convert any error into a failed WorkflowResult."""
        try:
            return func(*args, **kwargs)
        except AgreementError as e:
            if e.kind == 'validation':
                logger.info(f"{operation} rejected by validation: {e}")
            else:
                logger.error(f"{operation} failed ({e.kind}): {e}")
            return WorkflowResult.fail(
                str(e),
                e.kind,
                field_errors=getattr(e, 'field_errors', None),
                request_id=getattr(e, 'request_id', None)
            )
        except Exception:
            logger.exception(f"Unexpected error during {operation}")
            return WorkflowResult.fail(GENERIC_UNEXPECTED_ERROR, 'unexpected')

    def _load_for(self, form: AgreementForm, action: str):
        """
        Load the stored record for a form and check the action is legal.

        The stored status decides, not the status the form claims.
        """
        existing = self.store.get(form.id) if form.id else None
        state_machine.check_transition(existing.status if existing else None, action)
        return existing

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    def _title(self, prop) -> str:
        name = getattr(prop, 'name', None)
        return f"Rental Agreement - {name}" if name else 'Rental Agreement'

    def _merge(self, form: AgreementForm) -> MergeResult:
        template = self.store.get_template(form.templateid)
        if template is None:
            raise DocumentGenerationError(f"Template {form.templateid} not found")
        context = build_merge_context(form, self.store, today=self.clock().date())
        return TemplateMerger.merge(template.content, context)

    def _generate_document(self, agreement, form: AgreementForm):
        """
        Merge, render and store the agreement document.

        Returns (document_url, merge_result). The stored record is not
        touched here.
        """
        try:
            merged = self._merge(form)
            url = self.documents.generate(agreement.id, merged.content,
                                          title=self._title(agreement.property))
        except DocumentGenerationError as e:
            self.audit.log_document_generation_failed(agreement.id, e)
            raise

        self.audit.log_document_generated(agreement.id, url)
        return url, merged

    # -------------------------------------------------------------------------
    # Save actions
    # -------------------------------------------------------------------------

    def save_draft(self, form: AgreementForm) -> WorkflowResult:
        """Persist the form as a draft. Drafts may be incomplete."""
        return self._run('save_draft', self._save_draft, form)

    def _save_draft(self, form: AgreementForm) -> WorkflowResult:
        existing = self._load_for(form, state_machine.SAVE_DRAFT)
        old_status = existing.status if existing else None

        prop = self.store.get_property(form.propertyid)
        validate_unit_selection(form, prop, self.multi_unit_type)

        agreement = self.store.save(form, AgreementStatus.DRAFT.value)
        logger.info(f"Saved agreement {agreement.id} as draft")
        self.audit.log_agreement_saved(agreement, old_status)
        return WorkflowResult.ok(agreement.to_dict())

    def save_for_review(self, form: AgreementForm) -> WorkflowResult:
        """
        Validate and persist the form, then move it to review.

        The document is regenerated when the record is flagged as stale or
        has none. The status only moves once the document is stored.
        """
        return self._run('save_for_review', self._save_for_review, form)

    def _save_for_review(self, form: AgreementForm) -> WorkflowResult:
        existing = self._load_for(form, state_machine.SAVE_FOR_REVIEW)
        old_status = existing.status if existing else None

        prop = self.store.get_property(form.propertyid)
        validate_for_save(form, prop, self.multi_unit_type)

        agreement = self.store.save(form, old_status or AgreementStatus.DRAFT.value)

        warnings: List[str] = []
        updates: Dict[str, Any] = {'status': AgreementStatus.REVIEW.value}
        if agreement.needs_document_generation or not agreement.documenturl:
            url, merged = self._generate_document(agreement, form)
            warnings.extend(self._unresolved_warnings(merged))
            updates.update(documenturl=url, needs_document_generation=False)

        agreement = self.store.update_fields(agreement.id, **updates)
        form.status = agreement.status
        logger.info(f"Agreement {agreement.id} saved for review")
        self.audit.log_agreement_saved(agreement, old_status or AgreementStatus.DRAFT.value)
        return WorkflowResult.ok(agreement.to_dict(), warnings=warnings)

    @staticmethod
    def _unresolved_warnings(merged: MergeResult) -> List[str]:
        if not merged.has_unresolved:
            return []
        return [f"Unresolved placeholders: {', '.join(merged.unresolved)}"]

    # -------------------------------------------------------------------------
    # Send for signature
    # -------------------------------------------------------------------------

    def default_signatories(self, form: AgreementForm) -> List[Signatory]:
        prop = self.store.get_property(form.propertyid)
        rentee = self.store.get_rentee(form.renteeid)
        return default_signatories(prop, rentee)

    def send_for_signature(self, form: AgreementForm, signatories: List[Signatory],
                           title: str = None, message: str = None) -> WorkflowResult:
        """
        Submit the agreement to the signature gateway.

        A second call for the same agreement while one is running is
        rejected straight away.
        """
        if not form.id:
            form.id = generate_uuid()

        if not self.in_flight.acquire(form.id):
            logger.warning(f"Send for signature already in progress for agreement {form.id}")
            return WorkflowResult.fail(
                'This agreement is already being sent for signature', 'state'
            )

        try:
            return self._run('send_for_signature', self._send_for_signature,
                             form, signatories, title, message)
        finally:
            self.in_flight.release(form.id)

    def _send_for_signature(self, form: AgreementForm, signatories: List[Signatory],
                            title: Optional[str], message: Optional[str]) -> WorkflowResult:
        existing = self._load_for(form, state_machine.SEND_FOR_SIGNATURE)
        old_status = existing.status if existing else AgreementStatus.DRAFT.value

        prop = self.store.get_property(form.propertyid)
        validate_for_save(form, prop, self.multi_unit_type)
        validate_signatories(signatories)

        # Pre-save so the record exists before anything leaves the system
        agreement = self.store.save(form, old_status)

        # Always regenerate: the provider needs the file built from this form
        document_url, merged = self._generate_document(agreement, form)
        agreement = self.store.update_fields(
            agreement.id, documenturl=document_url, needs_document_generation=False
        )

        warnings = self._unresolved_warnings(merged)
        if not self.webhook_url:
            logger.warning(f"{MISSING_WEBHOOK_WARNING} (agreement {agreement.id})")
            warnings.append(MISSING_WEBHOOK_WARNING)

        request = SignatureRequest(
            document_url=document_url,
            title=title or self._title(prop),
            message=message or 'Please review and sign this rental agreement',
            signatories=signatories,
            agreement_id=agreement.id,
            webhook_url=self.webhook_url
        )
        result = self.gateway.send_document_for_signature(request)

        if not result.success or not result.request_id:
            error = result.error or GENERIC_GATEWAY_ERROR
            self.audit.log_signature_request_failed(agreement.id, error)
            return WorkflowResult.fail(error, GatewayError.kind,
                                       agreement=agreement.to_dict(), warnings=warnings)

        sent_at = self.clock()
        try:
            agreement = self.store.update_fields(
                agreement.id,
                status=AgreementStatus.PENDING.value,
                eviasignreference=result.request_id,
                signature_status=SignatureStatus.PENDING.value,
                signature_sent_at=sent_at,
                signature_updated_at=None,
                signatories_status=[]
            )
        except PersistenceError as e:
            self._report_divergence(agreement.id, result.request_id, e)
            raise ReconciliationError(
                f"The agreement was sent for signature (request {result.request_id}) "
                f"but could not be updated. Do not resend; contact support to reconcile it.",
                agreement_id=agreement.id,
                request_id=result.request_id
            ) from e

        form.status = agreement.status
        logger.info(f"Agreement {agreement.id} sent for signature as {result.request_id}")
        self.audit.log_signature_requested(agreement.id, result.request_id, signatories)
        self.audit.log_status_changed(agreement, old_status, agreement.status)
        return WorkflowResult.ok(agreement.to_dict(), warnings=warnings, request_id=result.request_id)

    def _report_divergence(self, agreement_id: str, request_id: str, error: Exception) -> None:
        logger.critical(
            f"RECONCILIATION REQUIRED: signature request {request_id} was accepted by the "
            f"gateway but agreement {agreement_id} could not be updated: {error}"
        )
        self.audit.log_reconciliation_divergence(agreement_id, request_id, error)

    # -------------------------------------------------------------------------
    # Status reconciliation
    # -------------------------------------------------------------------------

    def apply_provider_status(self, agreement_id: str, signature_status: Any,
                              reported_at: Any = None, signatories_status: List[Dict[str, Any]] = None,
                              signed_document_url: str = None, source: str = 'webhook') -> WorkflowResult:
        """
        Reconcile one provider status report into the agreement record.

        Shared by webhook pushes and manual refreshes. Reports for records
        that are no longer pending, reports older than the last applied one,
        and reports that would move signing backwards are ignored. Applying
        the same report twice leaves the record unchanged.
        """
        return self._run('apply_provider_status', self._apply_provider_status, agreement_id,
                         signature_status, reported_at, signatories_status, signed_document_url, source)

    def _apply_provider_status(self, agreement_id, signature_status, reported_at,
                               signatories_status, signed_document_url, source) -> WorkflowResult:
        normalized = state_machine.normalize_signature_status(signature_status)
        if normalized is None:
            raise AgreementValidationError(f"Unrecognised provider status '{signature_status}'")

        agreement = self.store.get(agreement_id)
        if agreement is None:
            raise AgreementNotFoundError(f"Agreement {agreement_id} not found")

        try:
            state_machine.check_transition(agreement.status, state_machine.PROVIDER_UPDATE)
        except IllegalTransitionError:
            logger.info(f"Ignoring {source} status '{normalized.value}' for agreement "
                        f"{agreement_id} in status '{agreement.status}'")
            return WorkflowResult.ok(agreement.to_dict(),
                                     warnings=[f"Agreement is {agreement.status}; status report ignored"])

        reported_at = as_naive_utc(reported_at) or self.clock()
        if agreement.signature_updated_at and reported_at < agreement.signature_updated_at:
            logger.warning(f"Ignoring stale {source} status '{normalized.value}' for agreement "
                           f"{agreement_id} reported at {reported_at}")
            return WorkflowResult.ok(agreement.to_dict(), warnings=['Stale status report ignored'])

        if state_machine.is_regression(agreement.signature_status, normalized):
            logger.warning(f"Ignoring {source} status '{normalized.value}' for agreement "
                           f"{agreement_id}; already '{agreement.signature_status}'")
            return WorkflowResult.ok(agreement.to_dict(), warnings=['Out-of-order status report ignored'])

        updates: Dict[str, Any] = {'signature_status': normalized.value}
        if signatories_status is not None:
            updates['signatories_status'] = signatories_status

        target = state_machine.provider_to_agreement_status(normalized)
        if target is not None:
            updates['status'] = target.value
            if target == AgreementStatus.SIGNED:
                updates['signeddate'] = reported_at
                if signed_document_url:
                    updates['signatureurl'] = signed_document_url

        changed = {k: v for k, v in updates.items() if getattr(agreement, k) != v}
        if not changed:
            return WorkflowResult.ok(agreement.to_dict())

        changed['signature_updated_at'] = reported_at
        old_status = agreement.status
        old_signature_status = agreement.signature_status

        agreement = self.store.update_fields(agreement_id, **changed)

        logger.info(f"Agreement {agreement_id} signature status '{old_signature_status}' -> "
                    f"'{agreement.signature_status}' from {source}")
        self.audit.log_signature_status_updated(agreement_id, old_signature_status,
                                                agreement.signature_status, source)
        if agreement.status != old_status:
            self.audit.log_status_changed(agreement, old_status, agreement.status, source=source)
        return WorkflowResult.ok(agreement.to_dict())

    def refresh_signature_status(self, agreement_id: str) -> WorkflowResult:
        """
        Pull the current signature status and reconcile it.

        A stored completion webhook settles the question without calling
        the provider. Otherwise the provider is polled, falling back to the
        latest stored webhook event when the poll fails.
        """
        return self._run('refresh_signature_status', self._refresh_signature_status, agreement_id)

    def _refresh_signature_status(self, agreement_id: str) -> WorkflowResult:
        agreement = self.store.get(agreement_id)
        if agreement is None:
            raise AgreementNotFoundError(f"Agreement {agreement_id} not found")

        reference = agreement.eviasignreference
        if not reference:
            raise IllegalTransitionError('Agreement has not been sent for signature',
                                         agreement.status, 'refresh_signature_status')

        if state_machine.is_terminal(agreement.status):
            return WorkflowResult.ok(agreement.to_dict())

        event = self.store.latest_webhook_event(reference)
        event_status = state_machine.WEBHOOK_EVENT_STATUS.get(event.event_id) if event else None

        if event_status == SignatureStatus.COMPLETED:
            return self._apply_provider_status(agreement_id, event_status, event.event_time,
                                               None, None, 'webhook_event')

        result = self.gateway.check_signature_status(reference)
        if result.success:
            return self._apply_provider_status(agreement_id, result.status, self.clock(),
                                               None, None, 'poll')

        if event_status is not None:
            logger.warning(f"Status poll for {reference} failed ({result.error}); "
                           f"using stored webhook event {event.event_id}")
            return self._apply_provider_status(agreement_id, event_status, event.event_time,
                                               None, None, 'webhook_event')

        error = result.error or 'Could not get signature status'
        return WorkflowResult.fail(error, GatewayError.kind, agreement=agreement.to_dict(),
                                   request_id=reference)

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def cancel_agreement(self, agreement_id: str, reason: str = None) -> WorkflowResult:
        """
        Move an agreement to cancelled. The record is kept.

        A non-empty reason is appended to the notes with today's date.
        Cancelling a pending agreement does not withdraw the provider
        request; later reports for it are ignored.
        """
        return self._run('cancel_agreement', self._cancel_agreement, agreement_id, reason)

    def _cancel_agreement(self, agreement_id: str, reason: Optional[str]) -> WorkflowResult:
        agreement = self.store.get(agreement_id)
        if agreement is None:
            raise AgreementNotFoundError(f"Agreement {agreement_id} not found")

        if self.in_flight.is_in_flight(agreement_id):
            raise IllegalTransitionError('This agreement is being sent for signature',
                                         agreement.status, state_machine.CANCEL)

        old_status = agreement.status
        target = state_machine.check_transition(old_status, state_machine.CANCEL)

        reason = (reason or '').strip()
        notes = agreement.notes
        if reason:
            entry = f"Cancellation reason ({transform_date(self.clock())}): {reason}"
            notes = f"{notes}\n\n{entry}" if notes else entry

        agreement = self.store.update_fields(agreement_id, status=target.value, notes=notes)

        warnings = []
        if old_status == AgreementStatus.PENDING.value and agreement.eviasignreference:
            warnings.append(f"Signature request {agreement.eviasignreference} is still open "
                            f"with the provider")

        logger.info(f"Agreement {agreement_id} cancelled (was '{old_status}')")
        self.audit.log_agreement_cancelled(agreement, old_status, reason)
        return WorkflowResult.ok(agreement.to_dict(), warnings=warnings)

    # -------------------------------------------------------------------------
    # Read-only actions
    # -------------------------------------------------------------------------

    def preview(self, form: AgreementForm) -> MergeResult:
        """Merge the current form without persisting anything."""
        return self._merge(form)

    def cancel(self, form: AgreementForm) -> WorkflowResult:
        """Discard in-memory edits. Nothing is written."""
        existing = self.store.get(form.id) if form.id else None
        return WorkflowResult.ok(existing.to_dict() if existing else None)
