import io
import os
import re
import pdfplumber
from pdfminer.pdfparser import PDFSyntaxError
from pdfplumber.utils.exceptions import PdfminerException

from domain.errors import DocumentExtractionError

TEXT_SUFFIXES = (".txt", ".md")


def _pdf_text(data: bytes) -> str:
    text_parts = []
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        for page in pdf.pages:
            t = page.extract_text() or ""
            text_parts.append(t)
    return re.sub(r"\s+\n", "\n", "\n".join(text_parts))


def extract_text(data: bytes, filename: str = "document.pdf") -> str:
    """Plain text of a PDF (or .txt/.md) document. May be empty."""
    try:
        if filename.lower().endswith(TEXT_SUFFIXES):
            return data.decode("utf-8")
        return _pdf_text(data)
    except (PDFSyntaxError, PdfminerException, UnicodeDecodeError) as exc:
        raise DocumentExtractionError(f"could not extract text from {os.path.basename(filename)}: {exc}") from exc
