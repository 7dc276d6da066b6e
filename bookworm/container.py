from __future__ import annotations

import io
import logging
import zipfile
import zlib
from functools import lru_cache
from pathlib import Path, PurePosixPath
from typing import Iterable

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .errors import MalformedContainer

logger = logging.getLogger(__name__)

EPUB_MIMETYPE = "application/epub+zip"
MIMETYPE_MEMBER = "mimetype"
CONTAINER_XML = "META-INF/container.xml"
OPF_MEDIA_TYPE = "application/oebps-package+xml"
EPUB_TEMPLATES_DIR = Path(__file__).resolve().parent / "epub_templates"


@lru_cache(maxsize=1)
def _epub_template_env() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(EPUB_TEMPLATES_DIR)),
        autoescape=select_autoescape(
            enabled_extensions=("xml", "xhtml", "html"),
            default_for_string=False,
        ),
        trim_blocks=True,
        lstrip_blocks=True,
    )


def _render_epub_template(template_name: str, **context: object) -> str:
    return _epub_template_env().get_template(template_name).render(**context)


def render_container_xml(opf_path: str) -> bytes:
    return _render_epub_template(
        "container.xml.j2",
        opf_path=canonical_member(opf_path),
        media_type=OPF_MEDIA_TYPE,
    ).encode("utf-8")


def canonical_member(name: str) -> str:
    """Normalise an archive member name, refusing anything that escapes the root."""
    raw = (name or "").replace("\\", "/")
    parts = [part for part in raw.split("/") if part not in {"", "."}]
    if not parts:
        raise MalformedContainer("Empty archive entry name", path=name)
    if ".." in parts:
        raise MalformedContainer("Path traversal in archive entry", path=name)
    if parts[0].endswith(":"):
        raise MalformedContainer("Absolute archive entry path", path=name)
    return "/".join(parts)


def read_container(data: bytes) -> list[tuple[str, bytes]]:
    try:
        archive = zipfile.ZipFile(io.BytesIO(data), "r")
    except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError, OSError) as exc:
        raise MalformedContainer(f"Not a readable ZIP archive: {exc}") from exc

    entries: list[tuple[str, bytes]] = []
    seen: set[str] = set()
    with archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            name = canonical_member(info.filename)
            if name in seen:
                logger.warning("skipping duplicate archive entry %s", info.filename)
                continue
            try:
                payload = archive.read(info)
            except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError) as exc:
                raise MalformedContainer(
                    f"Unreadable archive entry: {exc}",
                    path=info.filename,
                    offset=info.header_offset,
                ) from exc
            seen.add(name)
            entries.append((name, payload))

    if entries and entries[0][0] != MIMETYPE_MEMBER:
        logger.warning("archive does not start with a mimetype entry; continuing")
    return entries


def write_container(entries: Iterable[tuple[str, bytes]], mimetype: str = EPUB_MIMETYPE) -> bytes:
    buffer = io.BytesIO()
    written: set[str] = {MIMETYPE_MEMBER}
    with zipfile.ZipFile(buffer, "w") as zf:
        # The mimetype entry must be first, stored and without extra field data.
        mimetype_info = zipfile.ZipInfo(MIMETYPE_MEMBER)
        mimetype_info.compress_type = zipfile.ZIP_STORED
        mimetype_info.extra = b""
        zf.writestr(mimetype_info, mimetype.encode("ascii"))

        for path, payload in entries:
            name = canonical_member(path)
            if name == MIMETYPE_MEMBER:
                continue
            if name in written:
                raise MalformedContainer("Duplicate archive entry", path=name)
            zinfo = zipfile.ZipInfo(name)
            zinfo.compress_type = zipfile.ZIP_DEFLATED
            zf.writestr(zinfo, payload)
            written.add(name)
    return buffer.getvalue()


def package_directory(root: Path) -> bytes:
    if not root.is_dir():
        raise MalformedContainer(f"Not a directory: {root}")

    files = sorted(path for path in root.rglob("*") if path.is_file())
    entries: list[tuple[str, bytes]] = []
    for path in files:
        name = canonical_member(path.relative_to(root).as_posix())
        if name == MIMETYPE_MEMBER:
            continue
        entries.append((name, path.read_bytes()))

    names = {name for name, _ in entries}
    if CONTAINER_XML not in names:
        opf_members = [name for name in names if name.lower().endswith(".opf")]
        if len(opf_members) != 1:
            raise MalformedContainer(
                f"Cannot infer package document: found {len(opf_members)} .opf files",
                path=CONTAINER_XML,
            )
        logger.info("rendering %s for %s", CONTAINER_XML, opf_members[0])
        entries.insert(0, (CONTAINER_XML, render_container_xml(opf_members[0])))
    else:
        # Keep META-INF ahead of content so readers find it early.
        entries.sort(key=lambda item: not item[0].startswith("META-INF/"))
    return write_container(entries)


def unpackage_container(data: bytes, target_dir: Path) -> list[Path]:
    entries = read_container(data)
    base = target_dir.resolve()
    written: list[Path] = []
    for name, payload in entries:
        destination = (base / PurePosixPath(name)).resolve()
        if base != destination and base not in destination.parents:
            raise MalformedContainer("Archive entry escapes target directory", path=name)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(payload)
        written.append(destination)
    return written
