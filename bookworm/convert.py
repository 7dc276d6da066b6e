from __future__ import annotations

import copy
import logging
from typing import Optional

from .container import CONTAINER_XML, EPUB_MIMETYPE, render_container_xml, write_container
from .errors import UnsupportedConversion
from .kobo import KoboSpanContext, SegmentationPolicy, inject_kobo_spans, strip_kobo_spans
from .markup import parse_content_document, serialize_content_document
from .models import Document, FormatKind
from .opf import ensure_cover_image_property, serialize_opf, set_kepub_marker

logger = logging.getLogger(__name__)

CONTENT_MEDIA_TYPES = {"application/xhtml+xml", "text/html"}
SUPPORTED_CONVERSIONS = frozenset({(FormatKind.EPUB, FormatKind.KEPUB), (FormatKind.KEPUB, FormatKind.EPUB)})


def _spine_content_paths(document: Document) -> list[str]:
    paths: list[str] = []
    for entry in document.spine_entries():
        if entry.media_type in CONTENT_MEDIA_TYPES and entry.path not in paths:
            paths.append(entry.path)
    return paths


def _pack(document: Document, replacements: dict[str, bytes]) -> bytes:
    entries = [(name, replacements.get(name, payload)) for name, payload in document.resources.items()]
    if CONTAINER_XML not in document.resources and document.opf_path:
        entries.insert(0, (CONTAINER_XML, render_container_xml(document.opf_path)))
    return write_container(entries, mimetype=EPUB_MIMETYPE)


def _epub_to_kepub(document: Document, policy: Optional[SegmentationPolicy]) -> bytes:
    context = KoboSpanContext(policy=policy or SegmentationPolicy.from_env())
    replacements: dict[str, bytes] = {}
    for path in _spine_content_paths(document):
        content = parse_content_document(document.resources[path], path)
        inject_kobo_spans(content, context)
        replacements[path] = serialize_content_document(content)

    if document.package is not None and document.opf_path:
        package = copy.deepcopy(document.package)
        set_kepub_marker(package, True)
        ensure_cover_image_property(package, document.opf_path, document.metadata.cover_resource)
        replacements[document.opf_path] = serialize_opf(package)
    logger.debug("injected spans up to kobo.%d.%d", context.paragraph, context.segment)
    return _pack(document, replacements)


def _kepub_to_epub(document: Document) -> bytes:
    replacements: dict[str, bytes] = {}
    for path in _spine_content_paths(document):
        content = parse_content_document(document.resources[path], path)
        strip_kobo_spans(content)
        replacements[path] = serialize_content_document(content)

    if document.package is not None and document.opf_path:
        package = copy.deepcopy(document.package)
        set_kepub_marker(package, False)
        replacements[document.opf_path] = serialize_opf(package)
    return _pack(document, replacements)


def convert(document: Document, target: FormatKind, *, policy: Optional[SegmentationPolicy] = None) -> bytes:
    """Convert a parsed ePub/KePub into the target container format.

    Every spine content document is rewritten before any output is produced,
    so a single broken chapter fails the whole conversion. The input
    document is left untouched.
    """
    source = document.format
    if (source, target) not in SUPPORTED_CONVERSIONS:
        raise UnsupportedConversion(source, target)
    logger.info("converting %s -> %s (%d spine items)", source, target, len(document.spine))
    if target == FormatKind.KEPUB:
        return _epub_to_kepub(document, policy)
    if target == FormatKind.EPUB:
        return _kepub_to_epub(document)
    raise UnsupportedConversion(source, target)
