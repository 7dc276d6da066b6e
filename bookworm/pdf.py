"""Read-only access to a PDF's document information dictionary."""

from __future__ import annotations

from typing import Optional

import pymupdf

from .errors import MalformedContainer
from .models import PdfInfo

TRAILER_XREF = -1


def _xref_value(doc: pymupdf.Document, xref: int, key: str) -> Optional[str]:
    kind, value = doc.xref_get_key(xref, key)
    if kind == "string":
        return value
    if kind == "name":
        return value.lstrip("/")
    return None


def _info_xref(doc: pymupdf.Document) -> int:
    kind, value = doc.xref_get_key(TRAILER_XREF, "Info")
    if kind != "xref":
        return 0
    try:
        return int(value.split()[0])
    except (IndexError, ValueError):
        return 0


def read_pdf_info(data: bytes) -> PdfInfo:
    try:
        doc = pymupdf.open(stream=data, filetype="pdf")
    except (RuntimeError, ValueError) as exc:
        raise MalformedContainer(f"Unreadable PDF: {exc}") from exc

    with doc:
        info_xref = _info_xref(doc)

        def info(key: str) -> Optional[str]:
            return _xref_value(doc, info_xref, key) if info_xref else None

        language = info("Language")
        if language is None:
            catalog = doc.pdf_catalog()
            language = _xref_value(doc, catalog, "Lang") if catalog else None
        return PdfInfo(
            title=info("Title"),
            author=info("Author"),
            language=language,
            creator=info("Creator"),
            producer=info("Producer"),
            creation_date=info("CreationDate"),
            modification_date=info("ModDate"),
        )
