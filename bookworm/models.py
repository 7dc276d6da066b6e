from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class FormatKind(str, Enum):
    EPUB = "epub"
    KEPUB = "kepub"
    PDF = "pdf"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ManifestEntry:
    id: str
    path: str
    media_type: str
    href: str = ""
    properties: frozenset[str] = frozenset()


@dataclass
class Metadata:
    title: Optional[str] = None
    authors: list[str] = field(default_factory=list)
    language: Optional[str] = None
    identifier: Optional[str] = None
    cover_resource: Optional[str] = None


@dataclass(frozen=True)
class TocInfo:
    uid: Optional[str] = None
    doc_title: Optional[str] = None


@dataclass(frozen=True)
class PdfInfo:
    title: Optional[str] = None
    author: Optional[str] = None
    language: Optional[str] = None
    creator: Optional[str] = None
    producer: Optional[str] = None
    creation_date: Optional[str] = None
    modification_date: Optional[str] = None


@dataclass
class Document:
    format: FormatKind
    manifest: list[ManifestEntry] = field(default_factory=list)
    spine: list[str] = field(default_factory=list)
    metadata: Metadata = field(default_factory=Metadata)
    resources: dict[str, bytes] = field(default_factory=dict)
    opf_path: Optional[str] = None
    # lxml root of the package document.
    package: Any = None
    toc: Optional[TocInfo] = None
    source: Optional[bytes] = None

    def manifest_by_id(self) -> dict[str, ManifestEntry]:
        return {entry.id: entry for entry in self.manifest}

    def spine_entries(self) -> list[ManifestEntry]:
        by_id = self.manifest_by_id()
        return [by_id[idref] for idref in self.spine]
