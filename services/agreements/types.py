"""
Agreement Workflow Type Definitions

Dataclasses passed between the merge engine, the gateway client and the
workflow controller. None of these are persisted directly; the Agreement
model in models.py is the stored form.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from agreement_status import AgreementStatus


# Keys of the terms JSON object, in the camelCase the stored templates use
TERMS_FIELDS = (
    'monthlyRent',
    'depositAmount',
    'startDate',
    'endDate',
    'paymentDueDay',
    'noticePeriod',
    'additionalTerms',
)

# Form fields that feed the merged document. Changing any of them makes the
# stored document stale.
CONTENT_FIELDS = ('templateid', 'propertyid', 'unitid', 'renteeid', 'terms')


@dataclass
class AgreementForm:
    """
    The in-memory form state for one agreement.

    This is what the UI submits on every save action. It is not trusted to
    be consistent with the database: the store re-derives startdate/enddate
    from the terms and nulls unitid for single-unit properties.
    """
    id: Optional[str] = None
    templateid: Optional[str] = None
    propertyid: Optional[str] = None
    unitid: Optional[str] = None
    renteeid: Optional[str] = None
    status: str = AgreementStatus.DRAFT.value
    terms: Dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AgreementForm':
        """
        Build a form from a request body or an Agreement.to_dict() result.

        Legacy rows carry startdate/enddate columns without the matching
        terms keys, so those are copied into the terms when missing.
        """
        terms = data.get('terms') or {}
        if not isinstance(terms, dict):
            terms = {}
        terms = dict(terms)

        if data.get('startdate') and not terms.get('startDate'):
            terms['startDate'] = data['startdate']
        if data.get('enddate') and not terms.get('endDate'):
            terms['endDate'] = data['enddate']

        return cls(
            id=data.get('id') or None,
            templateid=data.get('templateid') or None,
            propertyid=data.get('propertyid') or None,
            unitid=data.get('unitid') or None,
            renteeid=data.get('renteeid') or None,
            status=data.get('status') or AgreementStatus.DRAFT.value,
            terms=terms,
            notes=data.get('notes')
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'templateid': self.templateid,
            'propertyid': self.propertyid,
            'unitid': self.unitid,
            'renteeid': self.renteeid,
            'status': self.status,
            'terms': dict(self.terms),
            'notes': self.notes,
        }


@dataclass
class MergeContext:
    """
    Data gathered for a single merge.

    property, unit and rentee may be model instances or plain dicts.
    today is fixed by the caller so a merge is repeatable.
    """
    property: Any = None
    unit: Any = None
    rentee: Any = None
    terms: Dict[str, Any] = field(default_factory=dict)
    today: date = field(default_factory=date.today)
    agreement_id: Optional[str] = None


@dataclass
class MergeResult:
    """Merged content plus the tokens that could not be resolved."""
    content: str
    unresolved: List[str] = field(default_factory=list)

    @property
    def has_unresolved(self) -> bool:
        return bool(self.unresolved)


@dataclass
class Signatory:
    """
    A party asked to sign the agreement.

    contact is an email address; the gateway notifies signatories by email.
    text_marker is the text in the document next to which the provider
    places the signature stamp.
    """
    name: str
    contact: str
    role: str = 'tenant'
    text_marker: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool((self.name or '').strip()) and bool((self.contact or '').strip())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Signatory':
        return cls(
            name=data.get('name') or '',
            contact=data.get('contact') or data.get('email') or '',
            role=data.get('role') or data.get('identifier') or 'tenant',
            text_marker=data.get('textMarker') or data.get('text_marker')
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'contact': self.contact,
            'role': self.role
        }


@dataclass
class SignatureRequest:
    """A document submission to the e-signature gateway."""
    document_url: str
    title: str
    message: str
    signatories: List[Signatory]
    agreement_id: str
    webhook_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape of the gateway request."""
        return {
            'documentUrl': self.document_url,
            'title': self.title,
            'message': self.message,
            'signatories': [s.to_dict() for s in self.signatories],
            'webhookUrl': self.webhook_url,
            'completedDocumentsAttached': True,
            'agreementId': self.agreement_id
        }


@dataclass
class GatewayResult:
    """Outcome of a gateway submission. Errors are values, not exceptions."""
    success: bool
    request_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'requestId': self.request_id,
            'error': self.error
        }


@dataclass
class StatusResult:
    """Outcome of a provider status poll."""
    success: bool
    status: Optional[str] = None
    signatories: List[Dict[str, Any]] = field(default_factory=list)
    not_found: bool = False
    error: Optional[str] = None


@dataclass
class WorkflowResult:
    """
    Result of every public workflow operation.

    error_kind is one of: validation, state, not_found, persistence, document,
    gateway, reconciliation, unexpected.
    """
    success: bool
    agreement: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    field_errors: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    request_id: Optional[str] = None

    @classmethod
    def ok(cls, agreement: Dict[str, Any] = None, warnings: List[str] = None,
           request_id: str = None) -> 'WorkflowResult':
        return cls(success=True, agreement=agreement, warnings=list(warnings or []),
                   request_id=request_id)

    @classmethod
    def fail(cls, error: str, error_kind: str, agreement: Dict[str, Any] = None,
             field_errors: Dict[str, str] = None, warnings: List[str] = None,
             request_id: str = None) -> 'WorkflowResult':
        return cls(
            success=False,
            agreement=agreement,
            error=error,
            error_kind=error_kind,
            field_errors=dict(field_errors or {}),
            warnings=list(warnings or []),
            request_id=request_id
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'agreement': self.agreement,
            'error': self.error,
            'error_kind': self.error_kind,
            'field_errors': self.field_errors,
            'warnings': self.warnings,
            'request_id': self.request_id,
            'reconciliation_required': self.error_kind == 'reconciliation'
        }
