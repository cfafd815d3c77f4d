import io
from dataclasses import dataclass
from typing import Any, Dict

import pdfplumber


@dataclass
class PdfExtraction:
    text: str
    pages: int
    info: Dict[str, Any]


def _plain_metadata(metadata: Dict[str, Any]) -> Dict[str, str]:
    # pdfminer can hand back bytes / PSLiteral values; keep the payload JSON-safe
    out: Dict[str, str] = {}
    for k, v in (metadata or {}).items():
        if isinstance(v, bytes):
            v = v.decode("utf-8", errors="replace")
        out[str(k)] = str(v)
    return out


def extract_pdf_text(data: bytes) -> PdfExtraction:
    """Extract page text and document info from an uploaded PDF."""
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        texts = []
        for page in pdf.pages:
            page_text = page.extract_text()
            if page_text:
                texts.append(page_text)
        return PdfExtraction(
            text="\n".join(texts),
            pages=len(pdf.pages),
            info=_plain_metadata(pdf.metadata),
        )
