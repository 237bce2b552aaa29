# routes/agreements/webhook.py
"""
Evia Sign webhook endpoint.
"""

from flask import request, jsonify, current_app

from services.agreements import AgreementError, AgreementValidationError, process_webhook
from . import agreements_bp


@agreements_bp.route('/webhook/evia-sign', methods=['POST'])
def evia_sign_webhook():
    """
    Receive status callbacks from Evia Sign.

    Configure this URL as the request CallbackUrl (EVIA_WEBHOOK_URL):
    https://yourdomain.com/agreements/webhook/evia-sign

    Events:
    - 1 SignRequestReceived: request created, nobody has signed
    - 2 SignatoryCompleted: one signatory finished
    - 3 RequestCompleted: everyone signed, signed PDF attached
    """
    payload = request.get_json(silent=True)
    if not payload:
        return jsonify({'success': False, 'error': 'No payload'}), 400

    try:
        result = process_webhook(
            payload,
            current_app.extensions['agreement_workflow'],
            storage=current_app.extensions.get('agreement_storage')
        )
    except AgreementValidationError as e:
        current_app.logger.warning(f"Rejected Evia Sign webhook: {e}")
        return jsonify({'success': False, 'error': str(e)}), 400
    except AgreementError as e:
        current_app.logger.error(f"Evia Sign webhook failed: {e}")
        return jsonify({'success': False, 'error': str(e)}), 502

    current_app.logger.info(
        f"Evia Sign webhook {payload.get('EventId')} for {payload.get('RequestId')}: "
        f"matched={result['matched']} ignored={result['ignored']}"
    )
    return jsonify(result), 200 if result['success'] else 502
