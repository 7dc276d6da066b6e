from __future__ import annotations

import io
import zipfile
from typing import Optional, Union

CONTAINER_XML = (
    "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
    "<container version=\"1.0\" xmlns=\"urn:oasis:names:tc:opendocument:xmlns:container\">"
    "<rootfiles><rootfile full-path=\"OEBPS/content.opf\" media-type=\"application/oebps-package+xml\"/>"
    "</rootfiles></container>"
)

DEFAULT_METADATA = (
    "<dc:identifier id=\"BookId\">urn:uuid:0b7c3f2e-4a53-4a8e-9a57-9c1d1e2f3a4b</dc:identifier>"
    "<dc:title>The Test Book</dc:title>"
    "<dc:language>en</dc:language>"
    "<dc:creator>Ada Writer</dc:creator>"
)


def chapter_xhtml(body: str, title: str = "Chapter") -> str:
    return (
        "<?xml version=\"1.0\" encoding=\"utf-8\"?>\n"
        "<!DOCTYPE html>\n"
        "<html xmlns=\"http://www.w3.org/1999/xhtml\" xml:lang=\"en\">\n"
        f"<head><title>{title}</title><link rel=\"stylesheet\" href=\"../Styles/book.css\"/></head>\n"
        f"<body>{body}</body>\n"
        "</html>\n"
    )


def opf_xml(
    *,
    metadata: str = DEFAULT_METADATA,
    manifest: str,
    spine: str,
    version: str = "3.0",
    unique_identifier: str = "BookId",
    extra_metadata: str = "",
) -> str:
    return (
        "<?xml version=\"1.0\" encoding=\"utf-8\"?>"
        f"<package xmlns=\"http://www.idpf.org/2007/opf\" unique-identifier=\"{unique_identifier}\" version=\"{version}\">"
        f"<metadata xmlns:dc=\"http://purl.org/dc/elements/1.1/\">{metadata}{extra_metadata}</metadata>"
        f"<manifest>{manifest}</manifest>"
        f"<spine>{spine}</spine>"
        "</package>"
    )


def make_zip(
    files: list[tuple[str, Union[str, bytes]]],
    *,
    mimetype: Optional[str] = "application/epub+zip",
    mimetype_compress: int = zipfile.ZIP_STORED,
) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        if mimetype is not None:
            zf.writestr("mimetype", mimetype, compress_type=mimetype_compress)
        for name, payload in files:
            zf.writestr(name, payload)
    return buffer.getvalue()


def make_epub(
    chapters: list[str],
    *,
    metadata: str = DEFAULT_METADATA,
    extra_metadata: str = "",
    spine_order: Optional[list[int]] = None,
    version: str = "3.0",
    extra_manifest: str = "",
    extra_files: Optional[list[tuple[str, Union[str, bytes]]]] = None,
    mimetype_first: bool = True,
) -> bytes:
    manifest = "".join(
        f"<item id=\"c{index}\" href=\"Text/ch{index}.xhtml\" media-type=\"application/xhtml+xml\"/>"
        for index in range(1, len(chapters) + 1)
    )
    manifest += "<item id=\"css\" href=\"Styles/book.css\" media-type=\"text/css\"/>"
    manifest += "<item id=\"cover-img\" href=\"Images/cover.png\" media-type=\"image/png\"/>"
    manifest += extra_manifest
    order = spine_order or list(range(1, len(chapters) + 1))
    spine = "".join(f"<itemref idref=\"c{index}\"/>" for index in order)
    files: list[tuple[str, Union[str, bytes]]] = [
        ("META-INF/container.xml", CONTAINER_XML),
        (
            "OEBPS/content.opf",
            opf_xml(
                metadata=metadata,
                manifest=manifest,
                spine=spine,
                version=version,
                extra_metadata=extra_metadata,
            ),
        ),
        ("OEBPS/Styles/book.css", "p { margin: 0; }"),
        ("OEBPS/Images/cover.png", b"\x89PNG\r\n\x1a\nnot-really-a-png"),
    ]
    for index, body in enumerate(chapters, start=1):
        files.append((f"OEBPS/Text/ch{index}.xhtml", chapter_xhtml(body, title=f"Chapter {index}")))
    files.extend(extra_files or [])
    if mimetype_first:
        return make_zip(files)
    return make_zip([*files, ("mimetype", "application/epub+zip")], mimetype=None)
