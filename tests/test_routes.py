"""
HTTP endpoint tests for the agreements blueprint.

Run with: python -m pytest tests/test_routes.py -v
"""

from services.agreements import GatewayResult


def send_body(form, **extra):
    body = {'agreement': form.to_dict()}
    body.update(extra)
    return body


class TestWorkflowEndpoints:

    def test_save_draft(self, client, make_form):
        response = client.post('/agreements/api/draft', json=make_form().to_dict())

        assert response.status_code == 200
        data = response.get_json()
        assert data['success']
        assert data['agreement']['status'] == 'draft'

    def test_validation_error_is_422(self, client, make_form):
        response = client.post('/agreements/api/review', json=make_form(terms={}).to_dict())

        assert response.status_code == 422
        data = response.get_json()
        assert data['error_kind'] == 'validation'
        assert 'terms.monthlyRent' in data['field_errors']

    def test_send_with_default_signatories(self, client, make_form, gateway):
        response = client.post('/agreements/api/send', json=send_body(make_form()))

        assert response.status_code == 200
        data = response.get_json()
        assert data['request_id'] == 'REQ-123'
        assert data['agreement']['status'] == 'pending'
        assert [s.contact for s in gateway.requests[0].signatories] == ['owner@example.com', 'ravi@example.com']

    def test_send_with_explicit_signatories(self, client, make_form, gateway):
        body = send_body(make_form(), signatories=[{'name': 'Ravi Rentee', 'email': 'ravi@example.com'}],
                         title='Custom title')
        response = client.post('/agreements/api/send', json=body)

        assert response.status_code == 200
        request = gateway.requests[0]
        assert request.title == 'Custom title'
        assert [s.contact for s in request.signatories] == ['ravi@example.com']

    def test_gateway_failure_is_502(self, client, make_form, gateway):
        gateway.result = GatewayResult(success=False, error='provider unavailable')
        response = client.post('/agreements/api/send', json=send_body(make_form()))

        assert response.status_code == 502
        data = response.get_json()
        assert data['error_kind'] == 'gateway'
        assert data['error'] == 'provider unavailable'
        assert data['reconciliation_required'] is False

    def test_resend_is_409(self, client, workflow, make_form):
        form = make_form()
        client.post('/agreements/api/send', json=send_body(form))
        form_data = form.to_dict()
        form_data['id'] = workflow.store.get_by_reference('REQ-123').id

        response = client.post('/agreements/api/send', json={'agreement': form_data})
        assert response.status_code == 409

    def test_refresh_unknown_agreement_is_404(self, client):
        response = client.post('/agreements/api/missing/refresh-status')
        assert response.status_code == 404
        assert response.get_json()['error_kind'] == 'not_found'

    def test_cancel_with_reason(self, client, workflow, make_form):
        form = make_form()
        workflow.save_draft(form)

        response = client.post(f'/agreements/api/{form.id}/cancel', json={'reason': 'Tenant withdrew'})

        assert response.status_code == 200
        data = response.get_json()
        assert data['agreement']['status'] == 'cancelled'
        assert 'Tenant withdrew' in data['agreement']['notes']

    def test_cancel_twice_is_409(self, client, workflow, make_form):
        form = make_form()
        workflow.save_draft(form)
        client.post(f'/agreements/api/{form.id}/cancel')

        response = client.post(f'/agreements/api/{form.id}/cancel')
        assert response.status_code == 409
        assert response.get_json()['error_kind'] == 'state'

    def test_cancel_unknown_agreement_is_404(self, client):
        assert client.post('/agreements/api/missing/cancel').status_code == 404


class TestReadEndpoints:

    def test_get_agreement_with_field_states(self, client, workflow, make_form):
        form = make_form()
        workflow.send_for_signature(form, workflow.default_signatories(form))

        response = client.get(f'/agreements/api/{form.id}')

        assert response.status_code == 200
        data = response.get_json()
        assert data['editable'] is False
        assert data['field_states']['preview'] == {'disabled': False}
        assert data['field_states']['terms.monthlyRent'] == {'disabled': True}

    def test_get_draft_is_editable(self, client, workflow, make_form):
        form = make_form()
        workflow.save_draft(form)

        data = client.get(f'/agreements/api/{form.id}').get_json()
        assert data['editable'] is True
        assert not any(state['disabled'] for state in data['field_states'].values())

    def test_get_missing_agreement(self, client):
        assert client.get('/agreements/api/nope').status_code == 404

    def test_preview(self, client, make_form):
        response = client.post('/agreements/api/preview', json=make_form().to_dict())

        data = response.get_json()
        assert data['success']
        assert 'Tenant: Ravi Rentee' in data['content']
        assert data['unresolved'] == []

    def test_suggest_terms(self, client, seeded):
        response = client.get(f"/agreements/api/suggest-terms?propertyid={seeded['apartment_id']}"
                              f"&unitid={seeded['unit_id']}")

        assert response.status_code == 200
        assert response.get_json()['terms']['monthlyRent'] == 1100

    def test_suggest_terms_unknown_property(self, client, seeded):
        response = client.get('/agreements/api/suggest-terms?propertyid=nope')
        assert response.status_code == 404


class TestWebhookEndpoint:

    def test_completion_signs_agreement(self, client, workflow, make_form):
        form = make_form()
        workflow.send_for_signature(form, workflow.default_signatories(form))

        response = client.post('/agreements/webhook/evia-sign', json={
            'RequestId': 'REQ-123',
            'EventId': 3,
            'EventDescription': 'RequestCompleted',
            'EventTime': '2030-01-01T11:00:00Z',
        })

        assert response.status_code == 200
        assert response.get_json()['matched'] is True
        assert workflow.store.get(form.id).status == 'signed'

    def test_unknown_request_is_acknowledged(self, client, app):
        response = client.post('/agreements/webhook/evia-sign',
                               json={'RequestId': 'REQ-NONE', 'EventId': 1})

        assert response.status_code == 200
        assert response.get_json()['matched'] is False

    def test_missing_fields_is_400(self, client, app):
        response = client.post('/agreements/webhook/evia-sign', json={'EventId': 1})
        assert response.status_code == 400

    def test_empty_body_is_400(self, client, app):
        response = client.post('/agreements/webhook/evia-sign', data='not json',
                               content_type='text/plain')
        assert response.status_code == 400
