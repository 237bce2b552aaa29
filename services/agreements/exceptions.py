"""
Agreement Workflow Exceptions

Raised by the internal layers of the agreement workflow. The workflow
controller catches them at its public boundary and converts them into
WorkflowResult failures, so callers never see them directly.
"""


class AgreementError(Exception):
    """Base exception for all agreement workflow errors."""
    kind = 'unexpected'


class AgreementValidationError(AgreementError):
    """
    Raised when local validation fails before a transition.

    field_errors maps a form field name to a human-readable message so the
    UI can show it inline next to the field.
    """
    kind = 'validation'

    def __init__(self, message: str, field_errors: dict = None):
        self.field_errors = field_errors or {}
        super().__init__(message)


class IllegalTransitionError(AgreementError):
    """Raised when an action is not allowed from the record's current status."""
    kind = 'state'

    def __init__(self, message: str, current_status: str = None, action: str = None):
        self.current_status = current_status
        self.action = action
        super().__init__(message)


class PersistenceError(AgreementError):
    """Raised when the agreement record cannot be read or written."""
    kind = 'persistence'


class DocumentGenerationError(AgreementError):
    """
    Raised when the merged content cannot be turned into a stored document.

    Kept separate from PersistenceError so a user can tell "my data didn't
    save" apart from "my data saved but the file couldn't be built".
    """
    kind = 'document'


class GatewayError(AgreementError):
    """
    Raised when the e-signature provider rejects or fails a call.

    Wraps the underlying HTTP error with context.
    """
    kind = 'gateway'

    def __init__(self, message: str, status_code: int = None, response_body: str = None):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class ReconciliationError(AgreementError):
    """
    Raised when the gateway accepted a signature request but the agreement
    record could not be updated with the returned reference.
    """
    kind = 'reconciliation'

    def __init__(self, message: str, agreement_id: str = None, request_id: str = None):
        self.agreement_id = agreement_id
        self.request_id = request_id
        super().__init__(message)


class AgreementNotFoundError(AgreementError):
    """Raised when an operation names an agreement that does not exist."""
    kind = 'not_found'
