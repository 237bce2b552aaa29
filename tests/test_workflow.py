"""
Agreement workflow tests.

Covers saves, send for signature, failure isolation between the gateway,
document and persistence layers, and status refresh.

Run with: python -m pytest tests/test_workflow.py -v
"""

from datetime import datetime

import pytest

from agreement_status import AgreementStatus, SignatureStatus
from models import db, Agreement, AuditEvent
from services.agreements import (
    AgreementStore,
    GatewayResult,
    PersistenceError,
    Signatory,
    StatusResult,
)
from services.agreements.workflow import MISSING_WEBHOOK_WARNING


def signatories():
    return [
        Signatory(name='Olivia Owner', contact='owner@example.com', role='landlord'),
        Signatory(name='Ravi Rentee', contact='ravi@example.com', role='tenant'),
    ]


class FailingReferenceStore(AgreementStore):
    """Store that cannot record the gateway reference."""

    def update_fields(self, agreement_id, **fields):
        if 'eviasignreference' in fields:
            raise PersistenceError('database went away')
        return super().update_fields(agreement_id, **fields)


class FailingSaveStore(AgreementStore):
    """Store whose saves always fail."""

    def save(self, form, status):
        raise PersistenceError('database went away')


# =============================================================================
# SAVE ACTIONS
# =============================================================================

class TestSaveDraft:

    def test_new_draft_is_persisted(self, workflow, make_form):
        form = make_form(terms={'monthlyRent': 1000})
        result = workflow.save_draft(form)

        assert result.success
        assert result.agreement['status'] == 'draft'
        assert form.id == result.agreement['id']
        assert db.session.get(Agreement, form.id) is not None

    def test_incomplete_draft_is_allowed(self, workflow, seeded):
        from services.agreements import AgreementForm
        result = workflow.save_draft(AgreementForm(propertyid=seeded['house_id']))
        assert result.success

    def test_dates_are_derived_from_terms(self, workflow, make_form):
        form = make_form()
        result = workflow.save_draft(form)
        assert result.agreement['startdate'] == '2024-03-01'
        assert result.agreement['enddate'] == '2025-02-28'

    def test_apartment_without_unit_is_blocked(self, workflow, make_form, seeded):
        form = make_form(propertyid=seeded['apartment_id'])
        result = workflow.save_draft(form)

        assert not result.success
        assert result.error_kind == 'validation'
        assert 'unitid' in result.field_errors
        assert Agreement.query.count() == 0

    def test_house_drops_stray_unit(self, workflow, make_form, seeded):
        form = make_form(unitid=seeded['unit_id'])
        result = workflow.save_draft(form)

        assert result.success
        assert result.agreement['unitid'] is None

    def test_review_can_go_back_to_draft(self, workflow, make_form):
        form = make_form()
        workflow.save_for_review(form)
        result = workflow.save_draft(form)
        assert result.success
        assert result.agreement['status'] == 'draft'


class TestSaveForReview:

    def test_generates_document_and_moves_to_review(self, workflow, make_form, storage):
        form = make_form()
        result = workflow.save_for_review(form)

        assert result.success
        assert result.agreement['status'] == 'review'
        assert result.agreement['documenturl'].endswith('.docx')
        assert result.agreement['needs_document_generation'] is False
        assert len(storage.documents) == 1

    def test_incomplete_form_reports_every_field(self, workflow, make_form):
        form = make_form(terms={'startDate': '2024-03-01', 'endDate': '2024-01-01'})
        result = workflow.save_for_review(form)

        assert not result.success
        assert result.error_kind == 'validation'
        assert result.field_errors['terms.monthlyRent'] == 'Monthly rent is required'
        assert result.field_errors['terms.endDate'] == 'End date cannot be before start date'

    def test_unchanged_resave_keeps_document(self, workflow, make_form, storage):
        form = make_form()
        workflow.save_for_review(form)
        result = workflow.save_for_review(form)

        assert result.success
        assert len(storage.documents) == 1

    def test_content_change_regenerates_document(self, workflow, make_form, storage):
        form = make_form()
        first = workflow.save_for_review(form)
        form.terms['monthlyRent'] = 1750
        second = workflow.save_for_review(form)

        assert len(storage.documents) == 2
        assert second.agreement['documenturl'] != first.agreement['documenturl']

    def test_document_failure_keeps_data_but_not_status(self, workflow, make_form, storage):
        storage.fail_with = RuntimeError('bucket offline')
        form = make_form()
        result = workflow.save_for_review(form)

        assert not result.success
        assert result.error_kind == 'document'
        stored = db.session.get(Agreement, form.id)
        assert stored.status == 'draft'
        assert stored.terms['monthlyRent'] == 1500
        assert AuditEvent.query.filter_by(event_type=AuditEvent.DOCUMENT_GENERATION_FAILED).count() == 1

    def test_unresolved_tokens_are_warned(self, workflow, make_form, seeded):
        from models import AgreementTemplate
        template = db.session.get(AgreementTemplate, seeded['template_id'])
        template.content = '<p>{{rentee.shoeSize}}</p>'
        db.session.commit()

        result = workflow.save_for_review(make_form())
        assert result.success
        assert result.warnings == ['Unresolved placeholders: {{rentee.shoeSize}}']


# =============================================================================
# SEND FOR SIGNATURE
# =============================================================================

class TestSendForSignature:

    def test_send_moves_to_pending(self, workflow, make_form, gateway):
        form = make_form()
        result = workflow.send_for_signature(form, signatories())

        assert result.success
        assert result.request_id == 'REQ-123'
        assert result.warnings == []
        assert len(gateway.requests) == 1

        agreement = result.agreement
        assert agreement['status'] == 'pending'
        assert agreement['eviasignreference'] == 'REQ-123'
        assert agreement['signature_status'] == 'pending'
        assert agreement['signature_sent_at'] is not None
        assert agreement['documenturl'].endswith('.docx')

    def test_request_carries_document_and_webhook(self, workflow, make_form, gateway):
        form = make_form()
        workflow.send_for_signature(form, signatories(), title='Lease for Maple House')

        request = gateway.requests[0]
        assert request.agreement_id == form.id
        assert request.title == 'Lease for Maple House'
        assert request.document_url == db.session.get(Agreement, form.id).documenturl
        assert request.webhook_url == 'https://rentals.example.com/agreements/webhook/evia-sign'

    def test_document_is_always_regenerated(self, workflow, make_form, storage):
        form = make_form()
        workflow.save_for_review(form)
        workflow.send_for_signature(form, signatories())
        assert len(storage.documents) == 2

    def test_gateway_failure_leaves_status_unchanged(self, workflow, make_form, gateway):
        gateway.result = GatewayResult(success=False, error='provider unavailable')
        form = make_form()
        workflow.save_for_review(form)

        result = workflow.send_for_signature(form, signatories())

        assert not result.success
        assert result.error_kind == 'gateway'
        assert 'provider unavailable' in result.error
        stored = db.session.get(Agreement, form.id)
        assert stored.status == 'review'
        assert stored.eviasignreference is None

    def test_pending_agreement_cannot_be_sent_again(self, workflow, make_form, gateway):
        form = make_form()
        workflow.send_for_signature(form, signatories())
        result = workflow.send_for_signature(form, signatories())

        assert not result.success
        assert result.error_kind == 'state'
        assert len(gateway.requests) == 1

    def test_validation_failure_makes_no_gateway_call(self, workflow, make_form, gateway):
        form = make_form(terms={})
        result = workflow.send_for_signature(form, signatories())

        assert result.error_kind == 'validation'
        assert gateway.requests == []

    def test_signatories_are_required(self, workflow, make_form, gateway):
        result = workflow.send_for_signature(make_form(), [Signatory(name='', contact='x@example.com')])

        assert result.error_kind == 'validation'
        assert 'signatories[0]' in result.field_errors
        assert gateway.requests == []

    def test_presave_failure_makes_no_gateway_call(self, workflow, make_form, gateway):
        workflow.store = FailingSaveStore()
        result = workflow.send_for_signature(make_form(), signatories())

        assert result.error_kind == 'persistence'
        assert gateway.requests == []

    def test_document_failure_makes_no_gateway_call(self, workflow, make_form, gateway, storage):
        storage.fail_with = RuntimeError('bucket offline')
        result = workflow.send_for_signature(make_form(), signatories())

        assert result.error_kind == 'document'
        assert gateway.requests == []

    def test_unrecorded_reference_is_a_reconciliation_failure(self, workflow, make_form, gateway):
        workflow.store = FailingReferenceStore()
        form = make_form()
        result = workflow.send_for_signature(form, signatories())

        assert not result.success
        assert result.error_kind == 'reconciliation'
        assert result.request_id == 'REQ-123'
        assert result.to_dict()['reconciliation_required'] is True
        assert len(gateway.requests) == 1

        divergence = AuditEvent.query.filter_by(event_type=AuditEvent.RECONCILIATION_DIVERGENCE).one()
        assert divergence.severity == 'critical'
        assert divergence.agreement_id == form.id
        assert divergence.event_data['request_id'] == 'REQ-123'

    def test_send_in_flight_is_rejected(self, workflow, make_form, gateway):
        form = make_form(id='agreement-in-flight')
        assert workflow.in_flight.acquire(form.id)

        result = workflow.send_for_signature(form, signatories())

        assert result.error_kind == 'state'
        assert gateway.requests == []

    def test_guard_is_released_after_send(self, workflow, make_form):
        form = make_form()
        workflow.send_for_signature(form, signatories())
        assert not workflow.in_flight.is_in_flight(form.id)

    def test_missing_webhook_url_is_warned(self, workflow, make_form, gateway):
        workflow.webhook_url = None
        result = workflow.send_for_signature(make_form(), signatories())

        assert result.success
        assert MISSING_WEBHOOK_WARNING in result.warnings
        assert gateway.requests[0].webhook_url is None

    def test_unexpected_gateway_exception(self, workflow, make_form, gateway):
        gateway.result = RuntimeError('socket exploded')
        result = workflow.send_for_signature(make_form(), signatories())

        assert not result.success
        assert result.error_kind == 'unexpected'
        assert 'socket exploded' not in result.error

    def test_default_signatories(self, workflow, make_form):
        parties = workflow.default_signatories(make_form())
        assert [(s.role, s.contact, s.text_marker) for s in parties] == [
            ('landlord', 'owner@example.com', 'For Landlord:'),
            ('tenant', 'ravi@example.com', 'For Tenant:'),
        ]


# =============================================================================
# STATUS REFRESH
# =============================================================================

@pytest.fixture
def sent(workflow, make_form):
    form = make_form()
    result = workflow.send_for_signature(form, signatories())
    assert result.success
    return form.id


class TestRefreshSignatureStatus:

    def test_poll_completion_signs_agreement(self, workflow, gateway, sent):
        gateway.status_result = StatusResult(success=True, status='Completed')
        result = workflow.refresh_signature_status(sent)

        assert result.success
        assert result.agreement['status'] == 'signed'
        assert result.agreement['signature_status'] == 'completed'
        assert result.agreement['signeddate'] is not None
        assert gateway.status_checks == ['REQ-123']

    def test_poll_in_progress_keeps_pending(self, workflow, gateway, sent):
        gateway.status_result = StatusResult(success=True, status='In Progress')
        result = workflow.refresh_signature_status(sent)

        assert result.agreement['status'] == 'pending'
        assert result.agreement['signature_status'] == 'in_progress'

    def test_declined_rejects_agreement(self, workflow, gateway, sent):
        gateway.status_result = StatusResult(success=True, status='declined')
        result = workflow.refresh_signature_status(sent)
        assert result.agreement['status'] == 'rejected'

    def test_stored_completion_skips_poll(self, workflow, gateway, sent):
        workflow.store.record_webhook_event('REQ-123', 3, 'RequestCompleted',
                                            event_time=datetime.utcnow())
        result = workflow.refresh_signature_status(sent)

        assert result.agreement['status'] == 'signed'
        assert gateway.status_checks == []

    def test_failed_poll_falls_back_to_stored_event(self, workflow, gateway, sent):
        workflow.store.record_webhook_event('REQ-123', 2, 'SignatoryCompleted',
                                            event_time=datetime.utcnow())
        gateway.status_result = StatusResult(success=False, error='timeout')

        result = workflow.refresh_signature_status(sent)

        assert result.success
        assert result.agreement['signature_status'] == 'in_progress'

    def test_request_not_found_changes_nothing(self, workflow, gateway, sent):
        gateway.status_result = StatusResult(success=False, not_found=True,
                                             error='Signature request REQ-123 not found')
        result = workflow.refresh_signature_status(sent)

        assert not result.success
        assert result.error_kind == 'gateway'
        assert db.session.get(Agreement, sent).status == 'pending'

    def test_unknown_agreement(self, workflow):
        result = workflow.refresh_signature_status('no-such-agreement')
        assert result.error_kind == 'not_found'

    def test_unsent_agreement(self, workflow, make_form, gateway):
        form = make_form()
        workflow.save_draft(form)
        result = workflow.refresh_signature_status(form.id)

        assert result.error_kind == 'state'
        assert gateway.status_checks == []

    def test_signed_agreement_is_not_polled(self, workflow, gateway, sent):
        gateway.status_result = StatusResult(success=True, status='completed')
        workflow.refresh_signature_status(sent)
        workflow.refresh_signature_status(sent)
        assert gateway.status_checks == ['REQ-123']


class TestApplyProviderStatus:

    def test_unknown_status_is_rejected(self, workflow, sent):
        result = workflow.apply_provider_status(sent, 'on fire')
        assert result.error_kind == 'validation'

    def test_same_report_twice_is_a_no_op(self, workflow, sent):
        reported = datetime(2030, 1, 1, 12, 0)
        workflow.apply_provider_status(sent, 'in_progress', reported_at=reported)
        count = AuditEvent.query.filter_by(event_type=AuditEvent.SIGNATURE_STATUS_UPDATED).count()

        result = workflow.apply_provider_status(sent, 'in_progress', reported_at=reported)

        assert result.success
        assert AuditEvent.query.filter_by(event_type=AuditEvent.SIGNATURE_STATUS_UPDATED).count() == count

    def test_terminal_record_is_not_touched(self, workflow, sent):
        workflow.apply_provider_status(sent, 'completed', reported_at=datetime(2030, 1, 1))
        result = workflow.apply_provider_status(sent, 'declined', reported_at=datetime(2030, 1, 2))

        assert result.agreement['status'] == AgreementStatus.SIGNED.value
        assert result.agreement['signature_status'] == SignatureStatus.COMPLETED.value
        assert result.warnings

    def test_completion_records_signed_document(self, workflow, sent):
        result = workflow.apply_provider_status(
            sent, 'completed', reported_at='2030-01-01T09:00:00Z',
            signed_document_url='https://storage.example.com/files/agreements/signed.pdf'
        )
        assert result.agreement['signatureurl'] == 'https://storage.example.com/files/agreements/signed.pdf'
        assert result.agreement['signeddate'] == '2030-01-01T09:00:00'


# =============================================================================
# CANCELLATION
# =============================================================================

class TestCancelAgreement:

    def test_draft_is_cancelled(self, workflow, make_form):
        form = make_form()
        workflow.save_draft(form)

        result = workflow.cancel_agreement(form.id)

        assert result.success
        assert result.agreement['status'] == AgreementStatus.CANCELLED.value
        assert result.agreement['notes'] is None
        assert db.session.get(Agreement, form.id) is not None

    def test_reason_is_appended_to_notes(self, workflow, make_form):
        workflow.clock = lambda: datetime(2024, 3, 1, 9, 30)
        form = make_form(notes='Keys with the neighbour')
        workflow.save_draft(form)

        result = workflow.cancel_agreement(form.id, '  Tenant withdrew  ')

        assert result.agreement['notes'] == (
            'Keys with the neighbour\n\nCancellation reason (March 1, 2024): Tenant withdrew'
        )

    def test_reason_becomes_the_note(self, workflow, make_form):
        workflow.clock = lambda: datetime(2024, 3, 1)
        form = make_form()
        workflow.save_for_review(form)

        result = workflow.cancel_agreement(form.id, 'Unit sold')
        assert result.agreement['notes'] == 'Cancellation reason (March 1, 2024): Unit sold'

    def test_pending_cancel_warns_about_open_request(self, workflow, sent):
        result = workflow.cancel_agreement(sent, 'Signed on paper instead')

        assert result.success
        assert result.warnings == ['Signature request REQ-123 is still open with the provider']

    def test_later_provider_reports_are_ignored(self, workflow, sent):
        workflow.cancel_agreement(sent)

        result = workflow.apply_provider_status(sent, 'completed', reported_at=datetime(2030, 1, 1))

        assert result.success
        assert result.agreement['status'] == AgreementStatus.CANCELLED.value
        assert result.agreement['signeddate'] is None
        assert result.warnings

    def test_signed_agreement_cannot_be_cancelled(self, workflow, sent):
        workflow.apply_provider_status(sent, 'completed', reported_at=datetime(2030, 1, 1))

        result = workflow.cancel_agreement(sent, 'Too late')

        assert result.error_kind == 'state'
        assert db.session.get(Agreement, sent).status == AgreementStatus.SIGNED.value

    def test_cancelling_twice_is_rejected(self, workflow, make_form):
        form = make_form()
        workflow.save_draft(form)
        workflow.cancel_agreement(form.id)

        assert workflow.cancel_agreement(form.id).error_kind == 'state'

    def test_unknown_agreement(self, workflow):
        assert workflow.cancel_agreement('no-such-agreement').error_kind == 'not_found'

    def test_send_in_flight_blocks_cancel(self, workflow, make_form):
        form = make_form()
        workflow.save_draft(form)
        assert workflow.in_flight.acquire(form.id)

        result = workflow.cancel_agreement(form.id)

        assert result.error_kind == 'state'
        assert db.session.get(Agreement, form.id).status == AgreementStatus.DRAFT.value

    def test_cancellation_is_audited(self, workflow, make_form):
        form = make_form()
        workflow.save_draft(form)
        workflow.cancel_agreement(form.id, 'Tenant withdrew')

        event = AuditEvent.query.filter_by(event_type=AuditEvent.AGREEMENT_CANCELLED).one()
        assert event.agreement_id == form.id
        assert event.event_data['old_status'] == 'draft'
        assert event.event_data['reason'] == 'Tenant withdrew'


class TestPreviewAndCancel:

    def test_preview_does_not_persist(self, workflow, make_form):
        merged = workflow.preview(make_form())

        assert '<p>Tenant: Ravi Rentee</p>' in merged.content
        assert 'Rent: $1,500.00 from March 1, 2024 to February 28, 2025' in merged.content
        assert Agreement.query.count() == 0

    def test_cancel_returns_stored_state(self, workflow, make_form):
        form = make_form()
        workflow.save_draft(form)
        form.terms['monthlyRent'] = 99999

        result = workflow.cancel(form)
        assert result.agreement['terms']['monthlyRent'] == 1500
