"""
Document text extraction for uploads (course materials and answer sheets).

Supported types: PDF (pypdf), DOCX (python-docx), TXT (UTF-8).

CONSTRAINTS:
- Deterministic: same bytes → same text
- No network calls, no DB writes
- Parsing is CPU-bound and runs in a worker thread so the event loop stays free
"""

import asyncio
import io
import logging
import re
import zipfile
from pathlib import Path

from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from docx.table import Table
from docx.text.paragraph import Paragraph
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from services.errors import (
    FileTooLargeError,
    NoExtractableTextError,
    UnreadableDocumentError,
    UnsupportedFileTypeError,
)

# pypdf warns on every slightly malformed xref table
logging.getLogger("pypdf").setLevel(logging.ERROR)

log = logging.getLogger(__name__)


def clean_text(text: str) -> str:
    """
    Remove extraction artifacts while keeping line structure.

    Removes CID artifacts, Private Use Area glyphs, control characters and
    zero-width spaces; folds exotic spaces; collapses runs of blank lines.
    """
    if not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\(cid:\d+\)", "", text)
    text = re.sub(r"[\uE000-\uF8FF]", "", text)
    text = re.sub(r"[\u0000-\u0008\u000B\u000C\u000E-\u001F\u007F-\u009F\u200B-\u200D\uFEFF]", "", text)
    text = re.sub(r"[\u00A0\u2000-\u200A\u202F\u205F\t]", " ", text)
    text = re.sub(r"[ ]{2,}", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


class DocumentTextExtractor:
    """
    Turns uploaded bytes into plain text.
    File type is decided by extension; size is checked before parsing.
    """

    SUPPORTED_TYPES = {
        "pdf": "application/pdf",
        "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "txt": "text/plain",
    }
    DEFAULT_MAX_SIZE = 10 * 1024 * 1024

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE):
        self.max_size = max_size

    def detect_file_type(self, filename: str) -> str:
        ext = Path(filename or "").suffix.lower().lstrip(".")
        if ext not in self.SUPPORTED_TYPES:
            raise UnsupportedFileTypeError(
                f"Unsupported file type '{ext or filename}'. Allowed: {', '.join(self.SUPPORTED_TYPES)}"
            )
        return ext

    def validate(self, filename: str, size: int) -> str:
        """Check type and size; returns the normalized extension."""
        file_type = self.detect_file_type(filename)
        if size > self.max_size:
            raise FileTooLargeError(
                f"File is {size} bytes; limit is {self.max_size} bytes",
                details={"max_size": self.max_size},
            )
        return file_type

    async def extract(self, content: bytes, filename: str) -> str:
        """
        Extract cleaned text from an uploaded document.

        Raises:
            UnsupportedFileTypeError, FileTooLargeError: upload rejected
            UnreadableDocumentError: the file could not be parsed
            NoExtractableTextError: parsed, but no text inside (e.g. scanned PDF)
        """
        file_type = self.validate(filename, len(content))
        raw = await asyncio.to_thread(self.extract_sync, content, file_type)
        text = clean_text(raw)
        if not text:
            raise NoExtractableTextError(f"No extractable text in '{filename}'")
        log.info("Extracted %s chars from %s (%s)", len(text), filename, file_type)
        return text

    def extract_sync(self, content: bytes, file_type: str) -> str:
        if file_type == "pdf":
            return self._extract_pdf(content)
        if file_type == "docx":
            return self._extract_docx(content)
        if file_type == "txt":
            return self._extract_txt(content)
        raise UnsupportedFileTypeError(f"Unsupported file type '{file_type}'")

    @staticmethod
    def _extract_pdf(content: bytes) -> str:
        try:
            reader = PdfReader(io.BytesIO(content))
            pages = []
            for page in reader.pages:
                page_text = page.extract_text()
                if page_text and page_text.strip():
                    pages.append(page_text.strip())
        except (PdfReadError, ValueError, KeyError) as e:
            raise UnreadableDocumentError(f"PDF extraction failed: {e}") from e
        return "\n\n".join(pages)

    @staticmethod
    def _extract_docx(content: bytes) -> str:
        """Paragraphs and tables in document order."""
        try:
            doc = Document(io.BytesIO(content))
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as e:
            raise UnreadableDocumentError(f"DOCX extraction failed: {e}") from e

        blocks = []
        for element in doc.element.body:
            if element.tag.endswith("}p"):
                para = Paragraph(element, doc)
                if para.text.strip():
                    blocks.append(para.text)
            elif element.tag.endswith("}tbl"):
                table = Table(element, doc)
                for row in table.rows:
                    cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                    if cells:
                        blocks.append(" | ".join(cells))
        return "\n\n".join(blocks)

    @staticmethod
    def _extract_txt(content: bytes) -> str:
        try:
            return content.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise UnreadableDocumentError(f"Text file is not valid UTF-8: {e}") from e
