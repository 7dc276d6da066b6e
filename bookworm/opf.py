from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Collection, Optional
from urllib.parse import unquote

from lxml import etree as LXML_ET

from .container import canonical_member
from .errors import ContentParseError, MalformedContainer, MissingAttribute
from .models import ManifestEntry, Metadata, TocInfo

logger = logging.getLogger(__name__)

CONTAINER_NS = "urn:oasis:names:tc:opendocument:xmlns:container"
OPF_NS = "http://www.idpf.org/2007/opf"
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"
KEPUB_MARKER_NAME = "kobo:kepub"
FALLBACK_OPF_PATHS = ("OEBPS/content.opf", "OPS/content.opf", "content.opf")
_NAME_TOKEN_SPLIT_RE = re.compile(r"[^a-z0-9]+")


@dataclass
class OpfPackage:
    root: LXML_ET._Element
    manifest: list[ManifestEntry]
    spine: list[str]
    metadata: Metadata
    version: str = ""


def _tag_local_name(tag: object) -> str:
    if not tag or not isinstance(tag, str):
        return ""
    if "}" in tag:
        return tag.split("}", 1)[1]
    return tag


def _child_by_local_name(node: LXML_ET._Element, local_name: str) -> Optional[LXML_ET._Element]:
    for child in list(node):
        if _tag_local_name(child.tag) == local_name:
            return child
    return None


def _iter_children_by_local_name(node: LXML_ET._Element, local_name: str) -> list[LXML_ET._Element]:
    return [child for child in list(node) if _tag_local_name(child.tag) == local_name]


def _element_text(node: LXML_ET._Element) -> str:
    return "".join(node.itertext()).strip()


def _strict_root(raw: bytes, path: str) -> LXML_ET._Element:
    parser = LXML_ET.XMLParser(resolve_entities=False, no_network=True, recover=False)
    try:
        return LXML_ET.fromstring(raw, parser=parser)
    except LXML_ET.XMLSyntaxError as exc:
        line, column = exc.position if exc.position else (None, None)
        raise ContentParseError(exc.msg or str(exc), path=path, line=line, column=column) from exc


def _lenient_root(raw: bytes) -> LXML_ET._Element:
    parser = LXML_ET.XMLParser(resolve_entities=False, no_network=True, recover=True)
    return LXML_ET.fromstring(raw, parser=parser)


def resolve_opf_href(opf_path: str, href: str) -> str:
    raw = unquote((href or "").split("#", 1)[0].strip())
    opf_dir = PurePosixPath(opf_path).parent.as_posix()
    base = opf_dir if opf_dir not in {"", "."} else ""
    joined = posixpath.join(base, raw) if base else raw
    normalized = posixpath.normpath(joined)
    if normalized.startswith("../") or normalized == "..":
        raise MalformedContainer("Manifest href escapes the container root", path=href)
    return canonical_member(normalized)


def opf_path_from_container_xml(container_raw: Optional[bytes], names: Collection[str]) -> str:
    full_path = ""
    if container_raw:
        try:
            root = _lenient_root(container_raw)
        except LXML_ET.XMLSyntaxError:
            root = None
        if root is not None:
            rootfile = root.find(f".//{{{CONTAINER_NS}}}rootfile")
            if rootfile is not None:
                full_path = (rootfile.attrib.get("full-path") or "").strip()
            if not full_path:
                for node in root.iter():
                    if _tag_local_name(node.tag) != "rootfile":
                        continue
                    candidate = (node.attrib.get("full-path") or "").strip()
                    if candidate:
                        full_path = candidate
                        break
    if full_path:
        normalized = canonical_member(full_path)
        if normalized in names:
            return normalized
        logger.warning("container.xml points at missing package document %s", full_path)

    for candidate in FALLBACK_OPF_PATHS:
        if candidate in names:
            return candidate
    opf_members = sorted(name for name in names if name.lower().endswith(".opf"))
    if len(opf_members) == 1:
        return opf_members[0]
    raise MalformedContainer("Failed to resolve the package document", path="META-INF/container.xml")


def _manifest_from_root(opf_path: str, root: LXML_ET._Element) -> list[ManifestEntry]:
    manifest = root.find(f"{{{OPF_NS}}}manifest")
    if manifest is None:
        manifest = _child_by_local_name(root, "manifest")
    if manifest is None:
        return []

    entries: list[ManifestEntry] = []
    seen: set[str] = set()
    for node in _iter_children_by_local_name(manifest, "item"):
        values = {}
        for attribute in ("id", "href", "media-type"):
            value = node.attrib.get(attribute)
            if value is None or not value.strip():
                raise MissingAttribute("item", attribute, path=opf_path)
            values[attribute] = value.strip()
        if values["id"] in seen:
            raise MalformedContainer(f"Duplicate manifest id '{values['id']}'", path=opf_path)
        seen.add(values["id"])
        entries.append(
            ManifestEntry(
                id=values["id"],
                path=resolve_opf_href(opf_path, values["href"]),
                media_type=values["media-type"].lower(),
                href=values["href"],
                properties=frozenset(str(node.attrib.get("properties") or "").split()),
            )
        )
    return entries


def _spine_from_root(opf_path: str, root: LXML_ET._Element) -> list[str]:
    spine = root.find(f"{{{OPF_NS}}}spine")
    if spine is None:
        spine = _child_by_local_name(root, "spine")
    if spine is None:
        return []
    idrefs: list[str] = []
    for itemref in _iter_children_by_local_name(spine, "itemref"):
        idref = str(itemref.attrib.get("idref") or "").strip()
        if not idref:
            raise MissingAttribute("itemref", "idref", path=opf_path)
        idrefs.append(idref)
    return idrefs


def _metadata_node(root: LXML_ET._Element) -> Optional[LXML_ET._Element]:
    metadata = root.find(f"{{{OPF_NS}}}metadata")
    if metadata is None:
        metadata = _child_by_local_name(root, "metadata")
    return metadata


def _names_cover(name: str) -> bool:
    return "cover" in _NAME_TOKEN_SPLIT_RE.split(name.lower())


def _cover_resource(metadata: Optional[LXML_ET._Element], manifest: list[ManifestEntry]) -> Optional[str]:
    by_id = {entry.id: entry for entry in manifest}
    if metadata is not None:
        for node in _iter_children_by_local_name(metadata, "meta"):
            attrs = {_tag_local_name(key): value for key, value in node.attrib.items()}
            if str(attrs.get("name") or "").strip() != "cover":
                continue
            cover_ref = str(attrs.get("content") or "").strip()
            candidate = by_id.get(cover_ref)
            if candidate and candidate.media_type.startswith("image/"):
                return candidate.path
    for entry in manifest:
        if entry.media_type.startswith("image/") and "cover-image" in entry.properties:
            return entry.path
    for entry in manifest:
        if not entry.media_type.startswith("image/"):
            continue
        if _names_cover(entry.id) or _names_cover(PurePosixPath(entry.path).stem):
            return entry.path
    return None


def metadata_from_root(root: LXML_ET._Element, manifest: list[ManifestEntry]) -> Metadata:
    metadata = _metadata_node(root)
    if metadata is None:
        return Metadata(cover_resource=_cover_resource(None, manifest))

    dc_values: dict[str, list[LXML_ET._Element]] = {}
    for node in list(metadata):
        local = _tag_local_name(node.tag)
        if local in {"identifier", "title", "language", "creator"}:
            dc_values.setdefault(local, []).append(node)

    def first_dc(name: str) -> Optional[str]:
        nodes = dc_values.get(name)
        if not nodes:
            return None
        return _element_text(nodes[0])

    identifier = None
    unique_id = str(root.attrib.get("unique-identifier") or "").strip()
    for node in dc_values.get("identifier", []):
        if unique_id and node.attrib.get("id") == unique_id:
            identifier = _element_text(node)
            break
    if identifier is None:
        identifier = first_dc("identifier")

    authors = [_element_text(node) for node in dc_values.get("creator", [])]
    return Metadata(
        title=first_dc("title"),
        authors=[author for author in authors if author],
        language=first_dc("language"),
        identifier=identifier,
        cover_resource=_cover_resource(metadata, manifest),
    )


def parse_opf(data: bytes, opf_path: str = "content.opf") -> OpfPackage:
    root = _strict_root(data, opf_path)
    if _tag_local_name(root.tag) != "package":
        raise ContentParseError(f"Expected <package>, found <{_tag_local_name(root.tag)}>", path=opf_path)
    manifest = _manifest_from_root(opf_path, root)
    return OpfPackage(
        root=root,
        manifest=manifest,
        spine=_spine_from_root(opf_path, root),
        metadata=metadata_from_root(root, manifest),
        version=str(root.attrib.get("version") or "").strip(),
    )


def serialize_opf(root: LXML_ET._Element) -> bytes:
    return LXML_ET.tostring(root.getroottree(), encoding="utf-8", xml_declaration=True)


def has_kobo_markers(root: LXML_ET._Element) -> bool:
    for node in root.iter():
        if not isinstance(node.tag, str):
            continue
        if "kobo" in node.nsmap or any("kobo" in (uri or "") for uri in node.nsmap.values()):
            return True
        if _tag_local_name(node.tag) == "meta" and node.attrib.get("name") == KEPUB_MARKER_NAME:
            return True
    return False


def set_kepub_marker(root: LXML_ET._Element, enabled: bool) -> None:
    metadata = _metadata_node(root)
    if metadata is None:
        if not enabled:
            return
        metadata = LXML_ET.Element(f"{{{OPF_NS}}}metadata")
        root.insert(0, metadata)
    for node in _iter_children_by_local_name(metadata, "meta"):
        if node.attrib.get("name") == KEPUB_MARKER_NAME:
            metadata.remove(node)
    if enabled:
        marker = LXML_ET.SubElement(metadata, f"{{{OPF_NS}}}meta")
        marker.set("name", KEPUB_MARKER_NAME)
        marker.set("content", "true")


def ensure_cover_image_property(root: LXML_ET._Element, opf_path: str, cover_path: Optional[str]) -> bool:
    if not cover_path or not str(root.attrib.get("version") or "").startswith("3"):
        return False
    manifest = root.find(f"{{{OPF_NS}}}manifest")
    if manifest is None:
        manifest = _child_by_local_name(root, "manifest")
    if manifest is None:
        return False
    for node in _iter_children_by_local_name(manifest, "item"):
        href = str(node.attrib.get("href") or "")
        if not href or resolve_opf_href(opf_path, href) != cover_path:
            continue
        properties = str(node.attrib.get("properties") or "").split()
        if "cover-image" in properties:
            return False
        node.set("properties", " ".join([*properties, "cover-image"]))
        return True
    return False


def parse_ncx(data: bytes) -> TocInfo:
    try:
        root = _lenient_root(data)
    except LXML_ET.XMLSyntaxError:
        logger.warning("ignoring unparsable NCX table of contents")
        return TocInfo()
    if root is None:
        return TocInfo()

    uid = None
    for node in root.iter():
        if _tag_local_name(node.tag) != "meta":
            continue
        if node.attrib.get("name") == "dtb:uid":
            uid = str(node.attrib.get("content") or "").strip()
            break

    doc_title = None
    for node in root.iter():
        if _tag_local_name(node.tag) != "docTitle":
            continue
        doc_title = _element_text(node)
        break
    return TocInfo(uid=uid, doc_title=doc_title)
