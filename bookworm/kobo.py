"""Kobo span injection and removal for XHTML content documents.

Kobo readers track reading position through ``<span class="koboSpan"
id="kobo.P.S">`` wrappers, where ``P`` counts paragraphs and ``S`` counts
sentence segments inside a paragraph. Injection only ever wraps existing
text nodes, so removing the spans restores the original markup exactly.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from . import env
from .markup import ContentDocument, Element, Node, Text, make_element

KOBO_SPAN_CLASS = "koboSpan"
KOBO_ID_RE = re.compile(r"^kobo\.(\d+)\.(\d+)$")
KOBO_SPAN_MARKER_RE = re.compile(rb"class\s*=\s*[\"'][^\"']*\bkoboSpan\b")

BLOCK_TAGS = frozenset(
    {
        "address",
        "article",
        "aside",
        "blockquote",
        "body",
        "caption",
        "dd",
        "div",
        "dl",
        "dt",
        "figcaption",
        "figure",
        "footer",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "header",
        "li",
        "main",
        "nav",
        "ol",
        "p",
        "pre",
        "section",
        "table",
        "td",
        "th",
        "tr",
        "ul",
    }
)
SKIP_TAGS = frozenset({"script", "style", "svg", "math", "head", "title", "textarea"})
_CLOSERS = "\"')]}»”’"


@dataclass(frozen=True)
class SegmentationPolicy:
    """Where text is cut into sentence segments.

    A cut happens after a run of ``terminals`` (plus any closing quotes or
    brackets) that is followed by whitespace; the whitespace stays with the
    segment it follows. A word listed in ``abbreviations`` never ends a
    sentence. The end of a text node always ends a segment.
    """

    terminals: str = env.DEFAULT_SENTENCE_TERMINALS
    closers: str = _CLOSERS
    abbreviations: frozenset[str] = frozenset()

    @classmethod
    def from_env(cls) -> "SegmentationPolicy":
        return cls(terminals=env.sentence_terminals(), abbreviations=env.abbreviations())

    def _is_abbreviation(self, text: str, terminal_at: int) -> bool:
        if not self.abbreviations:
            return False
        start = terminal_at
        while start > 0 and not text[start - 1].isspace():
            start -= 1
        word = text[start:terminal_at].lstrip("\"'([{“‘«")
        lowered = {item.lower().rstrip(".") for item in self.abbreviations}
        return word.lower() in lowered

    def split(self, text: str) -> list[str]:
        segments: list[str] = []
        start = 0
        index = 0
        length = len(text)
        while index < length:
            if text[index] not in self.terminals:
                index += 1
                continue
            terminal_at = index
            index += 1
            while index < length and text[index] in self.terminals:
                index += 1
            while index < length and text[index] in self.closers:
                index += 1
            if index >= length or not text[index].isspace():
                continue
            while index < length and text[index].isspace():
                index += 1
            if self._is_abbreviation(text, terminal_at):
                continue
            segments.append(text[start:index])
            start = index
        if start < length:
            segments.append(text[start:])
        return segments


@dataclass
class KoboSpanContext:
    """Span numbering shared by every content document of one book, in spine order."""

    policy: SegmentationPolicy = field(default_factory=SegmentationPolicy)
    paragraph: int = 0
    segment: int = 0

    def observe(self, span_id: str) -> None:
        match = KOBO_ID_RE.match(span_id)
        if not match:
            return
        seen = (int(match.group(1)), int(match.group(2)))
        if seen > (self.paragraph, self.segment):
            self.paragraph, self.segment = seen

    def next_paragraph(self) -> None:
        self.paragraph += 1
        self.segment = 0

    def next_span_id(self) -> str:
        self.segment += 1
        return f"kobo.{self.paragraph}.{self.segment}"


def is_kobo_span(element: Element) -> bool:
    if element.local_name != "span" or KOBO_SPAN_CLASS not in element.classes:
        return False
    return bool(KOBO_ID_RE.match(element.attributes.get("id", "")))


def has_kobo_spans(data: bytes) -> bool:
    return bool(KOBO_SPAN_MARKER_RE.search(data))


class _SpanWriter:
    def __init__(self, context: KoboSpanContext) -> None:
        self.context = context
        self.paragraph_pending = True

    def visit(self, element: Element) -> None:
        block = element.local_name in BLOCK_TAGS
        if block:
            self.paragraph_pending = True
        rewritten: list[Node] = []
        for child in element.children:
            if isinstance(child, Text):
                rewritten.extend(self._wrap(child, element.prefix))
                continue
            if isinstance(child, Element):
                if is_kobo_span(child):
                    self.context.observe(child.attributes.get("id", ""))
                    self.paragraph_pending = False
                elif child.local_name not in SKIP_TAGS:
                    self.visit(child)
            rewritten.append(child)
        element.children = rewritten
        if block:
            self.paragraph_pending = True

    def _wrap(self, node: Text, prefix: str) -> list[Node]:
        if not node.raw.strip():
            return [node]
        span_name = f"{prefix}:span" if prefix else "span"
        wrapped: list[Node] = []
        for piece in self.context.policy.split(node.raw):
            if self.paragraph_pending:
                self.context.next_paragraph()
                self.paragraph_pending = False
            span_id = self.context.next_span_id()
            wrapped.append(make_element(span_name, {"class": KOBO_SPAN_CLASS, "id": span_id}, [Text(piece)]))
        return wrapped


def inject_kobo_spans(document: ContentDocument, context: Optional[KoboSpanContext] = None) -> ContentDocument:
    body = document.body()
    if body is None:
        return document
    context = context or KoboSpanContext()
    # new ids start past every kobo.P.S id already in the document
    for element in document.iter_elements():
        context.observe(element.attributes.get("id", ""))
    _SpanWriter(context).visit(body)
    return document


def _unwrap(children: list[Node]) -> list[Node]:
    flattened: list[Node] = []
    for child in children:
        if isinstance(child, Element):
            child.children = _unwrap(child.children)
            if is_kobo_span(child):
                flattened.extend(child.children)
                continue
        flattened.append(child)

    merged: list[Node] = []
    for child in flattened:
        if isinstance(child, Text) and merged and isinstance(merged[-1], Text):
            merged[-1] = Text(merged[-1].raw + child.raw)
            continue
        merged.append(child)
    return merged


def strip_kobo_spans(document: ContentDocument) -> ContentDocument:
    document.nodes = _unwrap(document.nodes)
    return document
