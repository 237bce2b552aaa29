"""
Evia Sign Client

Thin wrapper around the Evia Sign REST API for agreement signature
requests. Handles authentication, token refresh, document upload, request
building and error handling.

Without an access token the client runs in mock mode: sends return a
generated MOCK- request ID and status checks report pending.
"""

import json
import logging
import re
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from .exceptions import GatewayError
from .types import GatewayResult, SignatureRequest, Signatory, StatusResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = 'https://evia.enadocapp.com/_apis'

TOKEN_ENDPOINT = '/falcon/auth/api/v1/Token'
DOCUMENT_UPLOAD_ENDPOINT = '/sign/thumbs/api/Requests/document'
SEND_REQUEST_ENDPOINT = '/sign/api/Requests'
CHECK_STATUS_ENDPOINT = '/sign/api/Requests/status'

# Request timeouts
DEFAULT_TIMEOUT = 30
UPLOAD_TIMEOUT = 60

# Auto-stamp request type
AUTO_STAMP_REQUEST_TYPE = 3

STAMP_COLOR = '#7c95f4'
UUID_PATTERN = re.compile(r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', re.IGNORECASE)

DEFAULT_TEXT_MARKERS = {
    'landlord': 'For Landlord:',
    'tenant': 'For Tenant:',
}


class SignatureGateway(ABC):
    """What the workflow needs from an e-signature provider."""

    @abstractmethod
    def send_document_for_signature(self, request: SignatureRequest) -> GatewayResult:
        """Submit a stored document for signature."""

    @abstractmethod
    def check_signature_status(self, request_id: str) -> StatusResult:
        """Ask the provider for the current status of a request."""


def _error_message(response) -> str:
    """Pull the provider's own error message out of a response."""
    if response is None:
        return ''
    try:
        body = response.json()
    except ValueError:
        return (response.text or '').strip()[:500]

    if isinstance(body, dict):
        for key in ('message', 'Message', 'error', 'Error', 'title', 'detail'):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and value.get('message'):
                return value['message']
    return json.dumps(body)[:500]


class EviaSignClient(SignatureGateway):
    """
    Client for Evia Sign API operations.

    Provides methods for:
        - Uploading a document and sending it for signature
        - Checking request status
        - Refreshing the access token
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, access_token: str = '',
                 refresh_token: str = '', client_id: str = '', client_secret: str = '',
                 session: requests.Session = None):
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip('/')
        self.access_token = access_token or ''
        self.refresh_token = refresh_token or ''
        self.client_id = client_id or ''
        self.client_secret = client_secret or ''
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config) -> 'EviaSignClient':
        return cls(
            base_url=config.get('EVIA_API_BASE_URL'),
            access_token=config.get('EVIA_ACCESS_TOKEN'),
            refresh_token=config.get('EVIA_REFRESH_TOKEN'),
            client_id=config.get('EVIA_CLIENT_ID'),
            client_secret=config.get('EVIA_CLIENT_SECRET')
        )

    def is_mock_mode(self) -> bool:
        """Check if running in mock mode (no access token)."""
        return not self.access_token

    def _get_headers(self) -> Dict[str, str]:
        return {'Authorization': f'Bearer {self.access_token}'}

    def can_refresh(self) -> bool:
        return bool(self.refresh_token and self.client_id and self.client_secret)

    def refresh_access_token(self) -> bool:
        """
        Exchange the refresh token for a new access token.

        Returns True when a new token was stored on the client.
        """
        if not self.can_refresh():
            return False

        try:
            response = self.session.post(
                f"{self.base_url}{TOKEN_ENDPOINT}",
                json={
                    'client_id': self.client_id,
                    'client_secret': self.client_secret,
                    'refresh_token': self.refresh_token,
                    'grant_type': 'refresh_token'
                },
                timeout=DEFAULT_TIMEOUT
            )
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Evia Sign token refresh failed: {e}")
            return False

        token = data.get('authToken') or data.get('access_token')
        if not token:
            logger.error("Evia Sign token refresh returned no token")
            return False

        self.access_token = token
        self.refresh_token = data.get('refreshToken') or data.get('refresh_token') or self.refresh_token
        logger.info("Evia Sign access token refreshed")
        return True

    def _request(self, method: str, path: str, timeout: int = DEFAULT_TIMEOUT, **kwargs):
        """
        Make an authenticated request, refreshing the token once on a 401.

        Raises:
            GatewayError with the provider's message on any failure
        """
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, headers=self._get_headers(),
                                            timeout=timeout, **kwargs)
            if response.status_code == 401 and self.refresh_access_token():
                response = self.session.request(method, url, headers=self._get_headers(),
                                                timeout=timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise GatewayError(f"Could not reach Evia Sign: {e}")

        if not response.ok:
            message = _error_message(response) or f"Evia Sign returned HTTP {response.status_code}"
            raise GatewayError(message, status_code=response.status_code,
                               response_body=(response.text or '')[:1000])
        return response

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    def download_document(self, document_url: str) -> bytes:
        """Fetch the stored agreement document."""
        try:
            response = self.session.get(document_url, timeout=UPLOAD_TIMEOUT)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise GatewayError(f"Failed to fetch document for signing: {e}",
                               status_code=getattr(getattr(e, 'response', None), 'status_code', None))
        return response.content

    @staticmethod
    def parse_document_token(response) -> Optional[str]:
        """
        Read the document token from an upload response.

        Evia answers with either a bare token string, a JSON object holding
        documentToken/DocumentToken, or text containing the token.
        """
        try:
            body = response.json()
        except ValueError:
            body = response.text

        if isinstance(body, str):
            text = body.strip().strip('"')
            match = UUID_PATTERN.search(text)
            if match:
                return match.group(0)
            return text or None

        if isinstance(body, dict):
            token = body.get('documentToken') or body.get('DocumentToken')
            if token:
                return token

        match = UUID_PATTERN.search(json.dumps(body))
        return match.group(0) if match else None

    def upload_document(self, file_data: bytes, filename: str) -> str:
        """Upload a document and return the token Evia assigned to it."""
        response = self._request(
            'POST',
            DOCUMENT_UPLOAD_ENDPOINT,
            timeout=UPLOAD_TIMEOUT,
            files={'File': (filename, file_data,
                            'application/vnd.openxmlformats-officedocument.wordprocessingml.document')}
        )
        token = self.parse_document_token(response)
        if not token:
            raise GatewayError("Evia Sign did not return a document token",
                               status_code=response.status_code,
                               response_body=(response.text or '')[:1000])
        return token

    # -------------------------------------------------------------------------
    # Signature requests
    # -------------------------------------------------------------------------

    @staticmethod
    def _stamp(identifier: str, stamp_type: str, y_offset: int) -> Dict[str, Any]:
        return {
            'Identifier': identifier,
            'Color': STAMP_COLOR,
            'Order': 1,
            'Offset': {'X_offset': 0, 'Y_offset': y_offset},
            'StampSize': {'Height': 50, 'Width': 100},
            'Type': stamp_type
        }

    @classmethod
    def _text_marker(cls, signatory: Signatory, index: int) -> str:
        if signatory.text_marker:
            return signatory.text_marker
        if signatory.role in DEFAULT_TEXT_MARKERS:
            return DEFAULT_TEXT_MARKERS[signatory.role]
        return DEFAULT_TEXT_MARKERS['landlord'] if index == 0 else DEFAULT_TEXT_MARKERS['tenant']

    @classmethod
    def build_request_json(cls, request: SignatureRequest, document_token: str) -> Dict[str, Any]:
        """Build the RequestJson body for an auto-stamp signature request."""
        signatories: List[Dict[str, Any]] = []
        for index, signatory in enumerate(request.signatories):
            order = index + 1
            signatories.append({
                'Color': STAMP_COLOR,
                'Email': signatory.contact,
                'Name': signatory.name,
                'Order': order,
                'PrivateMessage': request.message or 'Please sign this document',
                'signatoryType': 1,
                'OTP': {
                    'IsRequired': False,
                    'AccessCode': '',
                    'Type': '1',
                    'MobileNumber': ''
                },
                'AutoStamps': [
                    cls._stamp(cls._text_marker(signatory, index), 'signature', -50),
                    cls._stamp(f'email{order}', 'email', -25),
                    cls._stamp(f'Date{order}', 'date', -25),
                ]
            })

        return {
            'Message': request.message or 'Please sign this document',
            'Title': request.title or 'Rental Agreement',
            'CallbackUrl': request.webhook_url or '',
            'CompletedDocumentsAttached': True,
            'Documents': [document_token],
            'PDFComments': [],
            'Signatories': signatories,
            'AuditDetails': {
                'AuthorType': 1,
                'AuthorIPAddress': '',
                'Device': 'rental-agreements service'
            },
            'Connections': []
        }

    def send_document_for_signature(self, request: SignatureRequest) -> GatewayResult:
        """
        Upload the agreement document and create a signature request.

        Provider and network failures come back as success=False with the
        provider's message; anything else propagates.
        """
        if self.is_mock_mode():
            request_id = f"MOCK-{uuid.uuid4().hex[:12].upper()}"
            logger.info(f"[MOCK] Signature request {request_id} for agreement {request.agreement_id}")
            return GatewayResult(success=True, request_id=request_id)

        try:
            file_data = self.download_document(request.document_url)
            filename = request.document_url.split('?', 1)[0].rsplit('/', 1)[-1] or 'agreement.docx'
            document_token = self.upload_document(file_data, filename)

            request_json = self.build_request_json(request, document_token)
            response = self._request(
                'POST',
                SEND_REQUEST_ENDPOINT,
                params={'type': AUTO_STAMP_REQUEST_TYPE},
                files={'RequestJson': (None, json.dumps(request_json))}
            )
        except GatewayError as e:
            logger.error(f"Evia Sign request failed for agreement {request.agreement_id}: {e}"
                         f" (status {e.status_code})")
            return GatewayResult(success=False, error=str(e))

        try:
            data = response.json()
        except ValueError:
            data = {}
        request_id = None
        if isinstance(data, dict):
            request_id = data.get('requestId') or data.get('RequestId')

        if not request_id:
            logger.error(f"Evia Sign accepted agreement {request.agreement_id} without a request ID")
            return GatewayResult(success=False, error="Evia Sign did not return a request ID")

        logger.info(f"Created Evia Sign request {request_id} for agreement {request.agreement_id}")
        return GatewayResult(success=True, request_id=request_id)

    def check_signature_status(self, request_id: str) -> StatusResult:
        """Get the provider status of a signature request."""
        if self.is_mock_mode():
            return StatusResult(success=True, status='pending')

        try:
            response = self._request('GET', f"{CHECK_STATUS_ENDPOINT}/{request_id}")
        except GatewayError as e:
            if e.status_code == 404:
                return StatusResult(success=False, not_found=True,
                                    error=f"Signature request {request_id} not found")
            logger.error(f"Evia Sign status check failed for {request_id}: {e}")
            return StatusResult(success=False, error=str(e))

        try:
            data = response.json()
        except ValueError:
            return StatusResult(success=False, error="Evia Sign returned an unreadable status")

        if isinstance(data, str):
            return StatusResult(success=True, status=data)

        status = data.get('status') or data.get('Status')
        signatories = data.get('signatories') or data.get('Signatories') or []
        if not status:
            return StatusResult(success=False, error="Evia Sign returned no status")
        return StatusResult(success=True, status=status, signatories=signatories)
