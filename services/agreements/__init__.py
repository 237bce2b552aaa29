"""
Rental Agreement Signature Workflow

Merges agreement templates with live data, renders them to DOCX, sends them
for e-signature through Evia Sign and reconciles signing status back into
the agreement record.

Usage:
    from services.agreements import AgreementWorkflow, AgreementForm

    workflow = current_app.extensions['agreement_workflow']
    form = AgreementForm.from_dict(request.get_json())
    result = workflow.send_for_signature(form, workflow.default_signatories(form))
    if not result.success:
        ...  # result.error_kind tells validation/state/gateway/... apart
"""

from .types import (
    AgreementForm,
    MergeContext,
    MergeResult,
    Signatory,
    SignatureRequest,
    GatewayResult,
    StatusResult,
    WorkflowResult,
)

from .exceptions import (
    AgreementError,
    AgreementValidationError,
    AgreementNotFoundError,
    IllegalTransitionError,
    PersistenceError,
    DocumentGenerationError,
    GatewayError,
    ReconciliationError,
)

from .merge_engine import TemplateMerger, merge
from .context_builder import build_merge_context, suggest_terms, default_signatories
from .document_builder import DocumentBuilder, DocumentStorage, build_docx
from .store import AgreementStore
from .evia_client import EviaSignClient, SignatureGateway
from .workflow import AgreementWorkflow, InFlightRegistry
from .webhooks import process_webhook
from . import state_machine

__all__ = [
    # Types
    'AgreementForm',
    'MergeContext',
    'MergeResult',
    'Signatory',
    'SignatureRequest',
    'GatewayResult',
    'StatusResult',
    'WorkflowResult',

    # Exceptions
    'AgreementError',
    'AgreementValidationError',
    'AgreementNotFoundError',
    'IllegalTransitionError',
    'PersistenceError',
    'DocumentGenerationError',
    'GatewayError',
    'ReconciliationError',

    # Merge
    'TemplateMerger',
    'merge',
    'build_merge_context',
    'suggest_terms',
    'default_signatories',

    # Collaborators
    'DocumentBuilder',
    'DocumentStorage',
    'build_docx',
    'AgreementStore',
    'EviaSignClient',
    'SignatureGateway',

    # Workflow
    'AgreementWorkflow',
    'InFlightRegistry',
    'process_webhook',
    'state_machine',
]
