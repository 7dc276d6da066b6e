from __future__ import annotations

import io
import logging
import struct
import zipfile
from typing import Iterable

from lxml import etree as LXML_ET

from .container import CONTAINER_XML, EPUB_MIMETYPE, MIMETYPE_MEMBER
from .kobo import has_kobo_spans
from .models import FormatKind
from .opf import has_kobo_markers, opf_path_from_container_xml, parse_opf

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"
ZIP_LOCAL_HEADER_MAGIC = b"PK\x03\x04"
_LOCAL_HEADER = struct.Struct("<4sHHHHHIIIHH")


def _first_entry_is_epub_mimetype(data: bytes) -> bool:
    if len(data) < _LOCAL_HEADER.size:
        return False
    (_, _, flags, method, _, _, _, compressed_size, _, name_len, extra_len) = _LOCAL_HEADER.unpack_from(data, 0)
    name_start = _LOCAL_HEADER.size
    name = data[name_start : name_start + name_len]
    if name != MIMETYPE_MEMBER.encode("ascii") or method != zipfile.ZIP_STORED:
        return False
    expected = EPUB_MIMETYPE.encode("ascii")
    if flags & 0x08 and compressed_size == 0:
        # Sizes live in a trailing data descriptor.
        compressed_size = len(expected)
    payload_start = name_start + name_len + extra_len
    payload = data[payload_start : payload_start + compressed_size]
    return payload == expected


def kepub_markers_present(package_root: LXML_ET._Element, spine_payloads: Iterable[bytes]) -> bool:
    if has_kobo_markers(package_root):
        return True
    return any(has_kobo_spans(payload) for payload in spine_payloads)


def _refine_epub_kind(data: bytes) -> FormatKind:
    with zipfile.ZipFile(io.BytesIO(data), "r") as zf:
        members = {
            info.filename.replace("\\", "/").lstrip("/"): info.filename
            for info in zf.infolist()
            if not info.is_dir()
        }
        container_raw = zf.read(members[CONTAINER_XML]) if CONTAINER_XML in members else None
        opf_path = opf_path_from_container_xml(container_raw, members.keys())
        package = parse_opf(zf.read(members[opf_path]), opf_path)
        by_id = {entry.id: entry for entry in package.manifest}
        spine_payloads = (
            zf.read(members[by_id[idref].path])
            for idref in package.spine
            if idref in by_id and by_id[idref].path in members
        )
        if kepub_markers_present(package.root, spine_payloads):
            return FormatKind.KEPUB
    return FormatKind.EPUB


def identify(data: bytes) -> FormatKind:
    """Classify raw bytes by content. Never raises."""
    try:
        head = bytes(data[:8])
    except (TypeError, ValueError):
        return FormatKind.UNKNOWN
    if head.startswith(PDF_MAGIC):
        return FormatKind.PDF
    if not head.startswith(ZIP_LOCAL_HEADER_MAGIC):
        return FormatKind.UNKNOWN
    try:
        if not _first_entry_is_epub_mimetype(bytes(data)):
            return FormatKind.UNKNOWN
    except struct.error:
        return FormatKind.UNKNOWN
    try:
        return _refine_epub_kind(bytes(data))
    except Exception as exc:
        logger.debug("could not inspect package for Kobo markers: %s", exc)
        return FormatKind.EPUB
