#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from bookworm.batch import atomic_write, convert_collection, output_name
from bookworm.container import package_directory, unpackage_container
from bookworm.errors import BookwormError
from bookworm.models import FormatKind
from bookworm.pdf import read_pdf_info
from bookworm.pipeline import convert, parse

COLLECTION_SUFFIXES = (".epub",)


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Utilities to manage an ebook collection (ePub, KePub, PDF)."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress")
    sub = parser.add_subparsers(dest="command", required=True)

    info = sub.add_parser("info", help="Show format and metadata")
    info.add_argument("path")

    conv = sub.add_parser("convert", help="Convert between ePub and KePub")
    conv.add_argument("path")
    conv.add_argument("--to", choices=["kepub", "epub"], default="kepub")
    conv.add_argument("-o", "--output", help="Output file path")

    batch = sub.add_parser("batch", help="Convert every ePub under a directory")
    batch.add_argument("source_dir")
    batch.add_argument("output_dir")
    batch.add_argument("--to", choices=["kepub", "epub"], default="kepub")
    batch.add_argument("-j", "--workers", type=int, default=None)

    package = sub.add_parser("package", help="Pack an unpacked ePub directory")
    package.add_argument("path")
    package.add_argument("-o", "--output", help="Output file path")

    unpackage = sub.add_parser("unpackage", help="Unpack a (K)ePub into a directory")
    unpackage.add_argument("path")
    unpackage.add_argument("-o", "--output", help="Target directory")
    return parser.parse_args(argv)


def _info(path: Path) -> int:
    document = parse(path.read_bytes())
    meta = document.metadata
    print(f"Format: {document.format}")
    print(f"Title: {meta.title if meta.title is not None else 'Unknown'}")
    print(f"Authors: {', '.join(meta.authors) if meta.authors else 'Unknown'}")
    print(f"Language: {meta.language if meta.language is not None else 'Unknown'}")
    print(f"Identifier: {meta.identifier if meta.identifier is not None else 'Unknown'}")
    if meta.cover_resource:
        print(f"Cover: {meta.cover_resource}")
    if document.spine:
        print(f"Spine items: {len(document.spine)}")
    if document.toc is not None and document.toc.doc_title:
        print(f"TOC title: {document.toc.doc_title}")
    if document.format == FormatKind.PDF and document.source is not None:
        pdf_info = read_pdf_info(document.source)
        for label, value in (
            ("Creator", pdf_info.creator),
            ("Producer", pdf_info.producer),
            ("Created", pdf_info.creation_date),
            ("Modified", pdf_info.modification_date),
        ):
            if value:
                print(f"{label}: {value}")
    return 0


def main(argv: list[str]) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "info":
            return _info(Path(args.path))

        if args.command == "convert":
            input_path = Path(args.path)
            target = FormatKind(args.to)
            output_path = Path(args.output) if args.output else input_path.with_name(output_name(input_path, target))
            payload = convert(parse(input_path.read_bytes()), target)
            atomic_write(output_path, payload)
            print(f"{target} saved to: {output_path}")
            return 0

        if args.command == "batch":
            source_dir = Path(args.source_dir)
            sources = sorted(
                path for path in source_dir.rglob("*") if path.is_file() and path.suffix.lower() in COLLECTION_SUFFIXES
            )
            result = convert_collection(sources, FormatKind(args.to), Path(args.output_dir), workers=args.workers)
            for item in result.items:
                detail = f" ({item.message})" if item.message else ""
                print(f"{item.status}: {item.source}{detail}")
            return 1 if result.failed else 0

        if args.command == "package":
            source = Path(args.path)
            output_path = Path(args.output) if args.output else source.with_suffix(".epub")
            atomic_write(output_path, package_directory(source))
            print(f"EPUB saved to: {output_path}")
            return 0

        if args.command == "unpackage":
            source = Path(args.path)
            target_dir = Path(args.output) if args.output else source.with_name(source.name.split(".")[0])
            written = unpackage_container(source.read_bytes(), target_dir)
            print(f"Unpacked {len(written)} files into: {target_dir}")
            return 0
    except FileNotFoundError as exc:
        print(f"Input file not found: {exc.filename}", file=sys.stderr)
        return 1
    except BookwormError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
