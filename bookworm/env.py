from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

DEFAULT_SENTENCE_TERMINALS = ".!?"
DEFAULT_KEPUB_SUFFIX = ".kepub.epub"


def read_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value not in {None, ""}:
        return value

    file_var = os.getenv(f"{name}_FILE")
    if not file_var:
        return default

    try:
        content = Path(file_var).read_text(encoding="utf-8")
    except OSError:
        return default
    return content.rstrip("\r\n")


def read_env_int(name: str, default: int) -> int:
    raw = read_env(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    return value if value > 0 else default


def batch_workers() -> int:
    return read_env_int("BOOKWORM_WORKERS", min(4, os.cpu_count() or 1))


def sentence_terminals() -> str:
    return read_env("BOOKWORM_SENTENCE_TERMINALS") or DEFAULT_SENTENCE_TERMINALS


def abbreviations() -> frozenset[str]:
    raw = read_env("BOOKWORM_ABBREVIATIONS") or ""
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


def kepub_suffix() -> str:
    return read_env("BOOKWORM_KEPUB_SUFFIX") or DEFAULT_KEPUB_SUFFIX
