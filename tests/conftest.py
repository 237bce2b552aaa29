"""
Shared fixtures for the agreement workflow tests.

The app runs on in-memory SQLite with fake document storage and a fake
signature gateway, so no network calls are made.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from app import create_app
from models import db, AppUser, Property, PropertyUnit, AgreementTemplate
from services.agreements import (
    AgreementForm,
    GatewayResult,
    SignatureGateway,
    StatusResult,
)
from services.agreements.document_builder import DocumentStorage


TEMPLATE_CONTENT = (
    "<h1>Lease</h1>"
    "<p>Tenant: {{rentee.fullname}}</p>"
    "<p>Property: {{propertyName}}</p>"
    "<p>Rent: {{monthlyRent}} from {{startDate}} to {{endDate}}</p>"
    "<p>For Landlord:</p><p>For Tenant:</p>"
)


class FakeStorage(DocumentStorage):
    """Records uploads and hands back predictable URLs."""

    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.documents = []
        self.signed_documents = []

    def upload_agreement_document(self, agreement_id, file_data):
        if self.fail_with:
            raise self.fail_with
        self.documents.append((agreement_id, file_data))
        return f"https://storage.example.com/files/agreements/{agreement_id}/agreement_{len(self.documents)}.docx"

    def upload_signed_document(self, agreement_id, file_data):
        if self.fail_with:
            raise self.fail_with
        self.signed_documents.append((agreement_id, file_data))
        return f"https://storage.example.com/files/agreements/signed_{agreement_id}.pdf"


class FakeGateway(SignatureGateway):
    """Signature gateway that returns canned results and records requests."""

    def __init__(self, result=None, status_result=None):
        self.result = result or GatewayResult(success=True, request_id='REQ-123')
        self.status_result = status_result or StatusResult(success=True, status='pending')
        self.requests = []
        self.status_checks = []

    def send_document_for_signature(self, request):
        self.requests.append(request)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result

    def check_signature_status(self, request_id):
        self.status_checks.append(request_id)
        return self.status_result


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def app(storage, gateway):
    app = create_app('config.TestConfig', storage=storage, gateway=gateway)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def workflow(app):
    return app.extensions['agreement_workflow']


@pytest.fixture
def seeded(app):
    """Owner, rentee, a house, an apartment with one unit, and a template."""
    owner = AppUser(name='Olivia Owner', email='owner@example.com', role='owner')
    rentee = AppUser(
        name='Ravi Rentee',
        email='ravi@example.com',
        role='rentee',
        national_id='NIC-991',
        permanent_address='12 Lake Road\nColombo',
        contact_details={'phone': '0771234567'}
    )
    db.session.add_all([owner, rentee])
    db.session.flush()

    house = Property(
        name='Maple House',
        address='1 Maple Street\nKandy',
        propertytype='house',
        rentalvalues={'baseRent': 1500, 'deposit': 3000},
        terms={'paymentDueDay': 1, 'noticePeriod': 60},
        bank_name='City Bank',
        bank_branch='Kandy',
        bank_account_number='001-22-333',
        owner_id=owner.id
    )
    apartment = Property(
        name='Harbour View',
        address='9 Harbour Road',
        propertytype='apartment',
        rentalvalues={'monthlyRent': 900},
        owner_id=owner.id
    )
    db.session.add_all([house, apartment])
    db.session.flush()

    unit = PropertyUnit(propertyid=apartment.id, unitnumber='4B',
                        rentalvalues={'monthlyRent': 1100, 'depositAmount': 2200})
    template = AgreementTemplate(name='Standard Lease', content=TEMPLATE_CONTENT)
    db.session.add_all([unit, template])
    db.session.commit()

    return {
        'owner_id': owner.id,
        'rentee_id': rentee.id,
        'house_id': house.id,
        'apartment_id': apartment.id,
        'unit_id': unit.id,
        'template_id': template.id,
    }


@pytest.fixture
def complete_terms():
    return {
        'monthlyRent': 1500,
        'depositAmount': 3000,
        'startDate': '2024-03-01',
        'endDate': '2025-02-28',
        'paymentDueDay': '5',
        'noticePeriod': '30',
        'additionalTerms': 'No pets.'
    }


@pytest.fixture
def make_form(seeded, complete_terms):
    """Build a complete form for the house; override any field with kwargs."""
    def _make(**overrides):
        data = {
            'templateid': seeded['template_id'],
            'propertyid': seeded['house_id'],
            'renteeid': seeded['rentee_id'],
            'terms': dict(complete_terms),
        }
        data.update(overrides)
        return AgreementForm.from_dict(data)
    return _make
