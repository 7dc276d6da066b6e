from __future__ import annotations

import codecs
import html
import re
from dataclasses import dataclass, field
from typing import Iterator, Optional, Union

from lxml import etree as LXML_ET

from .errors import ContentParseError

# Each pattern is matched at a "<" position of an already well-formed document.
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_CDATA_RE = re.compile(r"<!\[CDATA\[.*?\]\]>", re.DOTALL)
_PI_RE = re.compile(r"<\?.*?\?>", re.DOTALL)
_DOCTYPE_RE = re.compile(r"<!DOCTYPE(?:[^\[>]|\[[^\]]*\])*>", re.DOTALL | re.IGNORECASE)
_END_TAG_RE = re.compile(r"</([^\s>]+)\s*>")
_START_TAG_RE = re.compile(
    r"<([^\s/>!?]+)((?:\s+[^\s=/>]+\s*=\s*(?:\"[^\"]*\"|'[^']*'))*)\s*(/?)>",
    re.DOTALL,
)
_ATTR_RE = re.compile(r"([^\s=/>]+)\s*=\s*(?:\"([^\"]*)\"|'([^']*)')")
_XML_DECL_ENCODING_RE = re.compile(rb"^<\?xml[^>]*encoding\s*=\s*[\"']([A-Za-z0-9._-]+)[\"']")

_BOMS = (
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)


@dataclass
class Text:
    raw: str


@dataclass
class Comment:
    raw: str


@dataclass
class Raw:
    """Markup kept verbatim: declarations, processing instructions, CDATA."""

    raw: str


@dataclass
class Element:
    name: str
    start_tag: str
    end_tag: Optional[str] = None
    children: list["Node"] = field(default_factory=list)

    @property
    def local_name(self) -> str:
        return self.name.rpartition(":")[2].lower()

    @property
    def prefix(self) -> str:
        return self.name.rpartition(":")[0]

    @property
    def attributes(self) -> dict[str, str]:
        body = self.start_tag[len(self.name) + 1 :]
        attrs: dict[str, str] = {}
        for match in _ATTR_RE.finditer(body):
            value = match.group(2) if match.group(2) is not None else match.group(3)
            attrs[match.group(1)] = html.unescape(value or "")
        return attrs

    @property
    def classes(self) -> list[str]:
        return self.attributes.get("class", "").split()

    def iter(self) -> Iterator["Element"]:
        yield self
        for child in self.children:
            if isinstance(child, Element):
                yield from child.iter()


Node = Union[Element, Text, Comment, Raw]


@dataclass
class ContentDocument:
    path: str
    nodes: list[Node]
    encoding: str = "utf-8"
    bom: bytes = b""

    def iter_elements(self) -> Iterator[Element]:
        for node in self.nodes:
            if isinstance(node, Element):
                yield from node.iter()

    def body(self) -> Optional[Element]:
        for element in self.iter_elements():
            if element.local_name == "body":
                return element
        return None


def make_element(name: str, attributes: dict[str, str], children: Optional[list[Node]] = None) -> Element:
    attrs = "".join(f' {key}="{html.escape(value, quote=True)}"' for key, value in attributes.items())
    return Element(name=name, start_tag=f"<{name}{attrs}>", end_tag=f"</{name}>", children=list(children or []))


def _detect_encoding(data: bytes) -> tuple[str, bytes]:
    for bom, encoding in _BOMS:
        if data.startswith(bom):
            return encoding, bom
    match = _XML_DECL_ENCODING_RE.match(data)
    if match:
        declared = match.group(1).decode("ascii").lower()
        try:
            codecs.lookup(declared)
        except LookupError:
            return "utf-8", b""
        return declared, b""
    return "utf-8", b""


def _check_well_formed(data: bytes, path: str) -> None:
    parser = LXML_ET.XMLParser(
        resolve_entities=False,
        no_network=True,
        load_dtd=False,
        recover=False,
        huge_tree=False,
    )
    try:
        LXML_ET.fromstring(data, parser=parser)
    except LXML_ET.XMLSyntaxError as exc:
        line, column = exc.position if exc.position else (None, None)
        raise ContentParseError(exc.msg or str(exc), path=path, line=line, column=column) from exc


def _line_column(source: str, offset: int) -> tuple[int, int]:
    line = source.count("\n", 0, offset) + 1
    column = offset - (source.rfind("\n", 0, offset) + 1) + 1
    return line, column


def _tokenize(source: str, path: str) -> list[Node]:
    root = Element(name="", start_tag="", end_tag="")
    stack: list[Element] = [root]
    pos = 0
    length = len(source)
    while pos < length:
        lt = source.find("<", pos)
        if lt == -1:
            stack[-1].children.append(Text(source[pos:]))
            break
        if lt > pos:
            stack[-1].children.append(Text(source[pos:lt]))

        for pattern, kind in ((_COMMENT_RE, Comment), (_CDATA_RE, Raw), (_PI_RE, Raw), (_DOCTYPE_RE, Raw)):
            match = pattern.match(source, lt)
            if match:
                stack[-1].children.append(kind(match.group(0)))
                pos = match.end()
                break
        else:
            match = _END_TAG_RE.match(source, lt)
            if match:
                if len(stack) == 1 or stack[-1].name != match.group(1):
                    line, column = _line_column(source, lt)
                    raise ContentParseError(
                        f"Unexpected end tag </{match.group(1)}>", path=path, line=line, column=column
                    )
                stack.pop().end_tag = match.group(0)
                pos = match.end()
                continue
            match = _START_TAG_RE.match(source, lt)
            if not match:
                line, column = _line_column(source, lt)
                raise ContentParseError("Unrecognised markup", path=path, line=line, column=column)
            element = Element(name=match.group(1), start_tag=match.group(0))
            stack[-1].children.append(element)
            if not match.group(3):
                stack.append(element)
            pos = match.end()

    if len(stack) != 1:
        raise ContentParseError(f"Unclosed element <{stack[-1].name}>", path=path)
    return root.children


def parse_content_document(data: bytes, path: str = "") -> ContentDocument:
    _check_well_formed(data, path)
    encoding, bom = _detect_encoding(data)
    try:
        source = data[len(bom) :].decode(encoding)
    except UnicodeDecodeError as exc:
        raise ContentParseError(f"Cannot decode as {encoding}: {exc.reason}", path=path) from exc
    return ContentDocument(path=path, nodes=_tokenize(source, path), encoding=encoding, bom=bom)


def _serialize_node(node: Node, out: list[str]) -> None:
    if isinstance(node, Element):
        out.append(node.start_tag)
        for child in node.children:
            _serialize_node(child, out)
        if node.end_tag is not None:
            out.append(node.end_tag)
        return
    out.append(node.raw)


def serialize_content_document(document: ContentDocument) -> bytes:
    out: list[str] = []
    for node in document.nodes:
        _serialize_node(node, out)
    return document.bom + "".join(out).encode(document.encoding)
