# routes/agreements/api.py
"""
Agreement workflow API endpoints (JSON responses).
"""

from flask import request, jsonify, current_app

from services.agreements import (
    AgreementError,
    AgreementForm,
    Signatory,
    state_machine,
    suggest_terms as suggest_terms_for,
)
from . import agreements_bp

# error_kind -> HTTP status
STATUS_CODES = {
    'validation': 422,
    'state': 409,
    'not_found': 404,
    'persistence': 502,
    'document': 502,
    'gateway': 502,
    'reconciliation': 502,
    'unexpected': 500,
}


def get_workflow():
    return current_app.extensions['agreement_workflow']


def result_response(result):
    """Turn a WorkflowResult into a JSON response with the matching status code."""
    if result.success:
        return jsonify(result.to_dict()), 200
    return jsonify(result.to_dict()), STATUS_CODES.get(result.error_kind, 500)


def error_response(error: AgreementError):
    body = {
        'success': False,
        'error': str(error),
        'error_kind': error.kind,
        'field_errors': getattr(error, 'field_errors', {}),
    }
    return jsonify(body), STATUS_CODES.get(error.kind, 500)


def read_form(payload=None):
    payload = payload if payload is not None else (request.get_json(silent=True) or {})
    return AgreementForm.from_dict(payload)


# =============================================================================
# WORKFLOW ACTIONS
# =============================================================================

@agreements_bp.route('/api/draft', methods=['POST'])
def save_draft():
    """Save the agreement form as a draft."""
    return result_response(get_workflow().save_draft(read_form()))


@agreements_bp.route('/api/review', methods=['POST'])
def save_for_review():
    """Validate the form, generate its document and move it to review."""
    return result_response(get_workflow().save_for_review(read_form()))


@agreements_bp.route('/api/send', methods=['POST'])
def send_for_signature():
    """
    Send the agreement for e-signature.

    Body: {"agreement": {...form...}, "signatories": [...], "title": "...", "message": "..."}
    Signatories default to the property owner and the rentee when omitted.
    """
    payload = request.get_json(silent=True) or {}
    workflow = get_workflow()
    form = read_form(payload.get('agreement') or {})

    raw_signatories = payload.get('signatories')
    if raw_signatories is None:
        try:
            signatories = workflow.default_signatories(form)
        except AgreementError as e:
            return error_response(e)
    else:
        signatories = [Signatory.from_dict(s) for s in raw_signatories if isinstance(s, dict)]

    result = workflow.send_for_signature(
        form,
        signatories,
        title=payload.get('title'),
        message=payload.get('message')
    )

    if result.error_kind == 'reconciliation':
        current_app.logger.critical(
            f"Agreement {form.id} needs manual reconciliation with request {result.request_id}"
        )
    return result_response(result)


@agreements_bp.route('/api/<agreement_id>/refresh-status', methods=['POST'])
def refresh_status(agreement_id):
    """Poll the signature provider and reconcile the agreement status."""
    return result_response(get_workflow().refresh_signature_status(agreement_id))


@agreements_bp.route('/api/<agreement_id>/cancel', methods=['POST'])
def cancel_agreement(agreement_id):
    """
    Cancel an agreement.

    Body (optional): {"reason": "..."}
    """
    payload = request.get_json(silent=True) or {}
    return result_response(get_workflow().cancel_agreement(agreement_id, payload.get('reason')))


# =============================================================================
# READ-ONLY ENDPOINTS
# =============================================================================

@agreements_bp.route('/api/preview', methods=['POST'])
def preview():
    """Merge the form into its template without saving anything."""
    try:
        merged = get_workflow().preview(read_form())
    except AgreementError as e:
        return error_response(e)

    return jsonify({
        'success': True,
        'content': merged.content,
        'unresolved': merged.unresolved
    })


@agreements_bp.route('/api/<agreement_id>')
def get_agreement(agreement_id):
    """Get an agreement with the disabled state of each form field."""
    try:
        agreement = get_workflow().store.get(agreement_id)
    except AgreementError as e:
        return error_response(e)

    if agreement is None:
        return jsonify({'success': False, 'error': 'Agreement not found', 'error_kind': 'not_found'}), 404

    return jsonify({
        'success': True,
        'agreement': agreement.to_dict(),
        'editable': state_machine.is_editable(agreement.status),
        'field_states': state_machine.field_states(agreement.status)
    })


@agreements_bp.route('/api/suggest-terms')
def suggest_terms():
    """Suggest rent, deposit, due day and notice period for a property/unit."""
    store = get_workflow().store
    try:
        prop = store.get_property(request.args.get('propertyid'))
        unit = store.get_unit(request.args.get('unitid'))
    except AgreementError as e:
        return error_response(e)

    if prop is None:
        return jsonify({'success': False, 'error': 'Property not found', 'error_kind': 'not_found'}), 404

    return jsonify({'success': True, 'terms': suggest_terms_for(prop, unit)})
