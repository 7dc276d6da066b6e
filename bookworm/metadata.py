from __future__ import annotations

from typing import Optional

from .errors import UnsupportedFormat
from .models import Document, FormatKind, Metadata
from .opf import metadata_from_root
from .pdf import read_pdf_info


def _collapse(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return " ".join(value.split())


def _language_tag(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip().replace("_", "-")


def normalize_metadata(meta: Metadata) -> Metadata:
    authors = [_collapse(author) or "" for author in meta.authors]
    return Metadata(
        title=_collapse(meta.title),
        authors=[author for author in authors if author],
        language=_language_tag(meta.language),
        identifier=meta.identifier.strip() if meta.identifier is not None else None,
        cover_resource=meta.cover_resource,
    )


def _from_pdf(document: Document) -> Metadata:
    if document.source is None:
        return Metadata()
    info = read_pdf_info(document.source)
    author = _collapse(info.author)
    return Metadata(
        title=info.title,
        authors=[author] if author else [],
        language=info.language,
        identifier=None,
    )


def extract(document: Document) -> Metadata:
    if document.format in {FormatKind.EPUB, FormatKind.KEPUB}:
        if document.package is None:
            raw = document.metadata
        else:
            raw = metadata_from_root(document.package, document.manifest)
    elif document.format == FormatKind.PDF:
        raw = _from_pdf(document)
    else:
        raise UnsupportedFormat(document.format)
    document.metadata = normalize_metadata(raw)
    return document.metadata
