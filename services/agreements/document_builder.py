"""
Agreement Document Builder

Turns merged agreement HTML into a DOCX file with python-docx and stores it
through a DocumentStorage backend, returning the file's durable URL.

Only the HTML that stored templates actually use is understood: headings,
paragraphs, list items, line breaks and bold/italic runs. Anything else is
stripped down to its text.
"""

import html
import io
import logging
import re
from abc import ABC, abstractmethod
from typing import List, Tuple

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt

from .exceptions import DocumentGenerationError

logger = logging.getLogger(__name__)

BLOCK_PATTERN = re.compile(
    r'<(h[1-6]|p|li|oli|div|tr)(?:\s[^>]*)?>(.*?)</\1\s*>',
    re.IGNORECASE | re.DOTALL
)
BREAK_PATTERN = re.compile(r'<br\s*/?>', re.IGNORECASE)
INLINE_PATTERN = re.compile(r'<(strong|b|em|i|u)(?:\s[^>]*)?>(.*?)</\1\s*>', re.IGNORECASE | re.DOTALL)
TAG_PATTERN = re.compile(r'<[^>]+>')
# Items of an <ol> are renamed to <oli> so they render numbered
ORDERED_LIST_PATTERN = re.compile(r'<ol(?:\s[^>]*)?>.*?</ol\s*>', re.IGNORECASE | re.DOTALL)
LIST_ITEM_TAG_PATTERN = re.compile(r'<(/?)li(?=[\s>])', re.IGNORECASE)

LIST_STYLES = {
    'li': 'List Bullet',
    'oli': 'List Number',
}


class DocumentStorage(ABC):
    """Where generated agreement documents are kept."""

    @abstractmethod
    def upload_agreement_document(self, agreement_id: str, file_data: bytes) -> str:
        """Store a DOCX and return its URL."""

    @abstractmethod
    def upload_signed_document(self, agreement_id: str, file_data: bytes) -> str:
        """Store a signed PDF and return its URL."""


def _clean_text(fragment: str) -> str:
    text = TAG_PATTERN.sub('', fragment)
    text = html.unescape(text)
    return re.sub(r'[ \t\r\f\v]+', ' ', text).strip()


def _clean_inline(fragment: str) -> str:
    """Like _clean_text but keeps single edge spaces between runs."""
    text = html.unescape(TAG_PATTERN.sub('', fragment))
    return re.sub(r'\s+', ' ', text)


def _split_runs(fragment: str) -> List[Tuple[str, bool, bool]]:
    """Split a block into (text, bold, italic) runs."""
    runs = []
    pos = 0
    for match in INLINE_PATTERN.finditer(fragment):
        if match.start() > pos:
            runs.append((fragment[pos:match.start()], False, False))
        tag = match.group(1).lower()
        runs.append((match.group(2), tag in ('strong', 'b'), tag in ('em', 'i')))
        pos = match.end()
    if pos < len(fragment):
        runs.append((fragment[pos:], False, False))
    return runs


def _text_blocks(fragment: str, separator: str = r'\n') -> List[Tuple[str, str]]:
    """Paragraph blocks for loose text, one per non-empty chunk."""
    return [('p', chunk) for chunk in re.split(separator, fragment) if _clean_text(chunk)]


def _mark_ordered_items(match) -> str:
    return LIST_ITEM_TAG_PATTERN.sub(r'<\1oli', match.group(0))


def html_to_blocks(content: str) -> List[Tuple[str, str]]:
    """
    Break merged HTML into (kind, inner_html) blocks.

    kind is 'h1'..'h6', 'p', 'li' (bulleted) or 'oli' (numbered, inside an
    <ol>). Text outside any block tag becomes one paragraph per line.
    Content with no block tags is treated as plain text, one paragraph per
    blank-line separated chunk.
    """
    content = BREAK_PATTERN.sub('\n', content or '')
    content = ORDERED_LIST_PATTERN.sub(_mark_ordered_items, content)

    matches = list(BLOCK_PATTERN.finditer(content))
    if not matches:
        return _text_blocks(content, r'\n\s*\n')

    blocks = []
    pos = 0
    for match in matches:
        blocks.extend(_text_blocks(content[pos:match.start()]))
        pos = match.end()

        kind = match.group(1).lower()
        if kind in ('div', 'tr'):
            kind = 'p'
        inner = match.group(2)
        if BLOCK_PATTERN.search(inner):
            blocks.extend(html_to_blocks(inner))
            continue
        if _clean_text(inner):
            blocks.append((kind, inner))

    blocks.extend(_text_blocks(content[pos:]))
    return blocks


def build_docx(content: str, title: str = None) -> bytes:
    """Render merged HTML into DOCX bytes."""
    doc = Document()
    if title:
        doc.core_properties.title = title

    style = doc.styles['Normal']
    style.font.name = 'Times New Roman'
    style.font.size = Pt(12)

    for kind, inner in html_to_blocks(content):
        if kind.startswith('h'):
            # h1 is the document title, h2 and below become headings 1-2
            level = min(int(kind[1]) - 1, 2)
            heading = doc.add_heading(_clean_text(inner), level=level)
            if level == 0:
                heading.alignment = WD_ALIGN_PARAGRAPH.CENTER
            continue

        paragraph = doc.add_paragraph(style=LIST_STYLES.get(kind))
        for text, bold, italic in _split_runs(inner):
            # Explicit <br> line breaks stay inside the paragraph
            for i, line in enumerate(text.split('\n')):
                if i:
                    paragraph.add_run().add_break()
                line = _clean_inline(line)
                if line.strip():
                    run = paragraph.add_run(line)
                    run.bold = bold
                    run.italic = italic

    buffer = io.BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


class DocumentBuilder:
    """Builds and stores the DOCX for one agreement."""

    def __init__(self, storage: DocumentStorage):
        self.storage = storage

    def generate(self, agreement_id: str, content: str, title: str = None) -> str:
        """
        Render merged content and store it.

        Returns:
            URL of the stored .docx file

        Raises:
            DocumentGenerationError if rendering or upload fails, or the
            storage returns no usable URL
        """
        if not agreement_id:
            raise DocumentGenerationError("Agreement must be saved before its document is generated")
        if not (content or '').strip():
            raise DocumentGenerationError("Template produced empty content")

        try:
            file_data = build_docx(content, title)
        except Exception as e:
            logger.error(f"Failed to render DOCX for agreement {agreement_id}: {e}")
            raise DocumentGenerationError(f"Failed to render document: {e}") from e

        try:
            url = self.storage.upload_agreement_document(agreement_id, file_data)
        except Exception as e:
            logger.error(f"Failed to upload document for agreement {agreement_id}: {e}")
            raise DocumentGenerationError(f"Failed to store document: {e}") from e

        if not url or not str(url).split('?', 1)[0].lower().endswith('.docx'):
            raise DocumentGenerationError("Document storage returned no usable URL")

        logger.info(f"Generated document for agreement {agreement_id}: {url}")
        return url
