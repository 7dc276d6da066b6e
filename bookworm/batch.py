from __future__ import annotations

import logging
import os
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from . import env
from .convert import convert
from .errors import BookwormError
from .models import FormatKind
from .parsing import parse
from .sniff import identify

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_CONVERTED = "converted"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"


@dataclass
class BatchItem:
    source: Path
    output: Optional[Path] = None
    status: str = STATUS_PENDING
    message: Optional[str] = None


@dataclass
class BatchResult:
    items: list[BatchItem] = field(default_factory=list)

    def with_status(self, status: str) -> list[BatchItem]:
        return [item for item in self.items if item.status == status]

    @property
    def converted(self) -> list[BatchItem]:
        return self.with_status(STATUS_CONVERTED)

    @property
    def failed(self) -> list[BatchItem]:
        return self.with_status(STATUS_FAILED)

    @property
    def cancelled(self) -> list[BatchItem]:
        return self.with_status(STATUS_CANCELLED)


def output_name(source: Path, target: FormatKind) -> str:
    name = source.name
    lowered = name.lower()
    for suffix in (env.kepub_suffix(), ".kepub.epub", ".epub", ".kepub"):
        if lowered.endswith(suffix.lower()):
            name = name[: -len(suffix)]
            break
    if target == FormatKind.KEPUB:
        return f"{name}{env.kepub_suffix()}"
    return f"{name}.epub"


def atomic_write(destination: Path, payload: bytes) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp_handle = tempfile.NamedTemporaryFile(
        prefix=f".{destination.name}.",
        suffix=".tmp",
        dir=str(destination.parent),
        delete=False,
    )
    tmp_path = Path(tmp_handle.name)
    try:
        with tmp_handle:
            tmp_handle.write(payload)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        tmp_path.replace(destination)
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)


def convert_file(
    source: Path, target: FormatKind, output_dir: Path, destination: Optional[Path] = None
) -> BatchItem:
    item = BatchItem(source=source)
    data = source.read_bytes()
    if identify(data) == FormatKind.PDF:
        item.status = STATUS_SKIPPED
        item.message = f"not convertible ({FormatKind.PDF})"
        return item

    document = parse(data)
    if document.format == target:
        item.status = STATUS_SKIPPED
        item.message = f"already {target}"
        return item
    payload = convert(document, target)
    destination = destination or output_dir / output_name(source, target)
    atomic_write(destination, payload)
    item.output = destination
    item.status = STATUS_CONVERTED
    logger.info("converted %s -> %s", source, destination)
    return item


def plan_destinations(sources: list[Path], target: FormatKind, output_dir: Path) -> list[Path]:
    """Map each source to an output path that mirrors its folder below the common source root."""
    if not sources:
        return []
    root = Path(os.path.commonpath([str(source.absolute().parent) for source in sources]))
    return [
        output_dir / source.absolute().parent.relative_to(root) / output_name(source, target) for source in sources
    ]


def convert_collection(
    sources: Iterable[Path],
    target: FormatKind,
    output_dir: Path,
    *,
    workers: Optional[int] = None,
    cancel: Optional[threading.Event] = None,
) -> BatchResult:
    """Convert many files in parallel, one independent pipeline per file.

    ``cancel`` is checked before each file starts; a file that has begun is
    always finished (or failed) so no partial output is left behind. Two
    sources that would write the same output file are never both converted:
    the later one is marked failed.
    """
    cancel = cancel or threading.Event()
    result = BatchResult(items=[BatchItem(source=Path(source)) for source in sources])
    destinations = plan_destinations([item.source for item in result.items], target, output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    claimed: dict[Path, Path] = {}
    for item, destination in zip(result.items, destinations):
        if destination in claimed:
            item.status = STATUS_FAILED
            item.message = f"output {destination} already claimed by {claimed[destination]}"
            logger.warning("failed to convert %s: %s", item.source, item.message)
        else:
            claimed[destination] = item.source

    def run(index: int) -> None:
        item = result.items[index]
        if item.status != STATUS_PENDING:
            return
        if cancel.is_set():
            item.status = STATUS_CANCELLED
            return
        try:
            result.items[index] = convert_file(item.source, target, output_dir, destinations[index])
        except (BookwormError, OSError) as exc:
            logger.warning("failed to convert %s: %s", item.source, exc)
            item.status = STATUS_FAILED
            item.message = str(exc)

    with ThreadPoolExecutor(max_workers=workers or env.batch_workers(), thread_name_prefix="bookworm-convert") as pool:
        list(pool.map(run, range(len(result.items))))
    return result
