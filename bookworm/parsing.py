from __future__ import annotations

import io
import logging
import zipfile

from .container import CONTAINER_XML, MIMETYPE_MEMBER, read_container
from .errors import MalformedContainer, UnsupportedFormat
from .metadata import extract
from .models import Document, FormatKind
from .opf import NCX_MEDIA_TYPE, opf_path_from_container_xml, parse_ncx, parse_opf
from .sniff import ZIP_LOCAL_HEADER_MAGIC, identify, kepub_markers_present

logger = logging.getLogger(__name__)


def _looks_like_loose_epub(data: bytes) -> bool:
    # Archives that break the mimetype-first rule but still carry an ePub package.
    if not data.startswith(ZIP_LOCAL_HEADER_MAGIC):
        return False
    try:
        with zipfile.ZipFile(io.BytesIO(data), "r") as zf:
            names = {info.filename.replace("\\", "/").lstrip("/") for info in zf.infolist()}
    except (zipfile.BadZipFile, ValueError, OSError):
        return False
    return CONTAINER_XML in names or any(name.lower().endswith(".opf") for name in names)


def parse_pdf(data: bytes) -> Document:
    document = Document(format=FormatKind.PDF, source=data)
    extract(document)
    return document


def parse_epub(data: bytes) -> Document:
    entries = read_container(data)
    resources = {name: payload for name, payload in entries if name != MIMETYPE_MEMBER}
    opf_path = opf_path_from_container_xml(resources.get(CONTAINER_XML), resources.keys())
    package = parse_opf(resources[opf_path], opf_path)

    by_id = {entry.id: entry for entry in package.manifest}
    for idref in package.spine:
        if idref not in by_id:
            raise MalformedContainer(f"Spine references unknown manifest id '{idref}'", path=opf_path)
    for entry in package.manifest:
        if entry.path not in resources:
            raise MalformedContainer(f"Manifest item '{entry.id}' is missing from the archive", path=entry.path)

    toc = None
    for entry in package.manifest:
        if entry.media_type == NCX_MEDIA_TYPE:
            toc = parse_ncx(resources[entry.path])
            break

    spine_payloads = (resources[by_id[idref].path] for idref in package.spine)
    kind = FormatKind.KEPUB if kepub_markers_present(package.root, spine_payloads) else FormatKind.EPUB
    document = Document(
        format=kind,
        manifest=package.manifest,
        spine=package.spine,
        metadata=package.metadata,
        resources=resources,
        opf_path=opf_path,
        package=package.root,
        toc=toc,
    )
    extract(document)
    return document


def parse(data: bytes) -> Document:
    kind = identify(data)
    if kind == FormatKind.PDF:
        return parse_pdf(data)
    if kind in {FormatKind.EPUB, FormatKind.KEPUB}:
        return parse_epub(data)
    if _looks_like_loose_epub(data):
        logger.warning("archive lacks a leading stored mimetype entry; reading it as an ePub anyway")
        return parse_epub(data)
    raise UnsupportedFormat(kind)
