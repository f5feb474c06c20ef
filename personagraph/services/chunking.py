"""
Page loading and overlapping chunking of uploaded documents.
"""

from pathlib import Path
from typing import List, Union

import fitz
from langchain_text_splitters import RecursiveCharacterTextSplitter

from ..errors import ValidationError
from ..models.core import PageText, TextWindow
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_OVERLAP = 50

DocumentSource = Union[str, Path, bytes]


def load_pdf_pages(source: DocumentSource) -> List[PageText]:
    """
    Extract text per page from a PDF.

    Args:
        source: File path or raw PDF bytes

    Returns:
        One PageText per non-empty page, numbered from 1

    Raises:
        ValidationError: If the document cannot be opened as a PDF
    """
    try:
        if isinstance(source, bytes):
            document = fitz.open(stream=source, filetype='pdf')
        else:
            document = fitz.open(str(source))
    except Exception as e:
        raise ValidationError(f'Unable to open PDF: {e}')

    pages = []
    with document:
        for index, page in enumerate(document):
            text = page.get_text('text')
            if text and text.strip():
                pages.append(PageText(page_number=index + 1, text=text))

    logger.debug(f'Loaded {len(pages)} non-empty pages')
    return pages


def load_document_pages(source: DocumentSource, filename: str = '') -> List[PageText]:
    """
    Load pages from a PDF or a plain-text upload.

    Plain text (.txt, .md) becomes a single page without a page number.
    """
    name = filename or (str(source) if not isinstance(source, bytes) else '')
    suffix = Path(name).suffix.lower()

    if suffix in ('.txt', '.md'):
        if isinstance(source, bytes):
            text = source.decode('utf-8', errors='replace')
        else:
            text = Path(source).read_text(encoding='utf-8', errors='replace')
        return [PageText(page_number=None, text=text)] if text.strip() else []

    return load_pdf_pages(source)


class Chunker:
    """Recursive, boundary-aware splitter producing overlapping windows per page.

    Prefers paragraph, then line, then word boundaries before cutting characters.
    Deterministic for identical input and parameters.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE, chunk_overlap: int = DEFAULT_CHUNK_OVERLAP):
        if chunk_size <= chunk_overlap:
            raise ValueError('chunk_size must be greater than chunk_overlap')

        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.splitter = RecursiveCharacterTextSplitter(chunk_size=chunk_size, chunk_overlap=chunk_overlap)

    def split_text(self, text: str) -> List[str]:
        if not text or not text.strip():
            return []
        return self.splitter.split_text(text)

    def split_pages(self, pages: List[PageText]) -> List[TextWindow]:
        """
        Split every page independently.

        Args:
            pages: Extracted page texts in document order

        Returns:
            Windows tagged with (page_number, chunk_index); chunk_index restarts per page
        """
        windows = []
        for page in pages:
            for chunk_index, content in enumerate(self.split_text(page.text)):
                windows.append(TextWindow(page_number=page.page_number, chunk_index=chunk_index, content=content))
        return windows
