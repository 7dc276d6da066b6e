"""The four calls collaborators use: identify, parse, convert, extract_metadata."""

from __future__ import annotations

from .convert import SUPPORTED_CONVERSIONS, convert
from .metadata import extract as extract_metadata
from .models import Document, FormatKind, Metadata
from .parsing import parse
from .sniff import identify

__all__ = [
    "Document",
    "FormatKind",
    "Metadata",
    "SUPPORTED_CONVERSIONS",
    "convert",
    "extract_metadata",
    "identify",
    "parse",
]
