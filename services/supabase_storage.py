"""
Supabase Storage Service for Agreement Documents

Handles uploads of generated agreement documents and signed PDFs using
Supabase Storage. Agreement files live in a public bucket and are
referenced by their public URL.
"""

import uuid
from datetime import datetime

from supabase import create_client, Client

from services.agreements.document_builder import DocumentStorage

DOCX_CONTENT_TYPE = 'application/vnd.openxmlformats-officedocument.wordprocessingml.document'
PDF_CONTENT_TYPE = 'application/pdf'


def generate_agreement_document_path(agreement_id: str, extension: str = 'docx') -> str:
    """
    Generate a unique storage path for a generated agreement document.

    Example: agreements/<agreement id>/agreement_20240301T101500_1a2b3c4d.docx
    """
    timestamp = datetime.utcnow().strftime('%Y%m%dT%H%M%S')
    return f"agreements/{agreement_id}/agreement_{timestamp}_{uuid.uuid4().hex[:8]}.{extension}"


def generate_signed_document_path(agreement_id: str) -> str:
    """Storage path for the signed PDF returned by the signing provider."""
    timestamp = datetime.utcnow().strftime('%Y%m%dT%H%M%S')
    return f"agreements/signed_{agreement_id}_{timestamp}.pdf"


class SupabaseStorage(DocumentStorage):
    """
    Uploads agreement files to one Supabase Storage bucket.

    The Supabase client is created on first use so an app without storage
    credentials can still start; it fails only when a file is uploaded.
    """

    def __init__(self, url: str = None, key: str = None, bucket: str = 'files', client: Client = None):
        self.url = url
        self.key = key
        self.bucket = bucket
        self._client = client

    def get_client(self) -> Client:
        """
        Get or create the Supabase client.
        Uses SUPABASE_URL and SUPABASE_KEY from config.
        """
        if self._client is None:
            if not self.url or not self.key:
                raise ValueError(
                    "SUPABASE_URL and SUPABASE_KEY are required for document storage. "
                    "Get these from your Supabase project settings."
                )
            self._client = create_client(self.url, self.key)
        return self._client

    def upload_file(self, storage_path: str, file_data: bytes, content_type: str = None) -> dict:
        """
        Upload a file to the bucket.

        Returns:
            dict with 'path', 'filename', 'size' keys on success

        Raises:
            Exception on upload failure
        """
        file_options = {'upsert': 'true'}
        if content_type:
            file_options['content-type'] = content_type

        self.get_client().storage.from_(self.bucket).upload(
            path=storage_path,
            file=file_data,
            file_options=file_options
        )

        return {
            'path': storage_path,
            'filename': storage_path.rsplit('/', 1)[-1],
            'size': len(file_data)
        }

    def get_public_url(self, storage_path: str) -> str:
        return self.get_client().storage.from_(self.bucket).get_public_url(storage_path)

    def upload_agreement_document(self, agreement_id: str, file_data: bytes) -> str:
        """Upload a generated DOCX and return its public URL."""
        storage_path = generate_agreement_document_path(agreement_id)
        self.upload_file(storage_path, file_data, DOCX_CONTENT_TYPE)
        return self.get_public_url(storage_path)

    def upload_signed_document(self, agreement_id: str, file_data: bytes) -> str:
        """Upload a signed PDF and return its public URL."""
        storage_path = generate_signed_document_path(agreement_id)
        self.upload_file(storage_path, file_data, PDF_CONTENT_TYPE)
        return self.get_public_url(storage_path)
