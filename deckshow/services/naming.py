"""Utility helpers for consistent identifier and asset naming."""

from __future__ import annotations

import re
import string
from datetime import datetime, timezone
from typing import Optional, Tuple

__all__ = [
    "DEFAULT_PROJECT_ID",
    "FALLBACK_IDENTIFIER",
    "MAX_SLIDE_INDEX",
    "SET_ID_FORMAT",
    "SLIDE_FILE_PATTERN",
    "SET_ID_PATTERN",
    "build_set_id",
    "is_valid_identifier",
    "parse_set_id",
    "parse_slide_index",
    "sanitize_identifier",
    "slide_filename",
]


FALLBACK_IDENTIFIER = "Project"
DEFAULT_PROJECT_ID = "DefaultProject"
SET_ID_FORMAT = "%Y%m%d_%H%M%S"
MAX_SLIDE_INDEX = 999
SLIDE_FILE_PATTERN = re.compile(r"^slide-(\d{3})\.png$", re.IGNORECASE)
SET_ID_PATTERN = re.compile(r"^(\d{8}_\d{6})(?:_(\d+))?$")

_ALLOWED_CHARACTERS = frozenset(string.ascii_letters + string.digits + "-_")
_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def sanitize_identifier(value: Optional[str]) -> str:
    """Return a filesystem-safe identifier for *value*.

    Characters outside ``[A-Za-z0-9_-]`` become ``-``; leading and trailing
    dashes are stripped and an empty result falls back to ``"Project"``. The
    result is stable under repeated application.
    """

    mapped = "".join(char if char in _ALLOWED_CHARACTERS else "-" for char in value or "")
    trimmed = mapped.strip("-")
    return trimmed or FALLBACK_IDENTIFIER


def is_valid_identifier(value: str) -> bool:
    """Return ``True`` when *value* could have been produced by :func:`sanitize_identifier`."""

    if not _IDENTIFIER_PATTERN.match(value or ""):
        return False
    return not value.startswith("-") and not value.endswith("-")


def build_set_id(moment: Optional[datetime] = None) -> str:
    """Return the set identifier for *moment* (defaults to now) in UTC."""

    if moment is None:
        moment = datetime.now(timezone.utc)
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(SET_ID_FORMAT)


def slide_filename(index: int) -> str:
    """Return the file name for the 1-based slide *index*."""

    if index < 1 or index > MAX_SLIDE_INDEX:
        raise ValueError(f"Slide index must be between 1 and {MAX_SLIDE_INDEX} (got {index})")
    return f"slide-{index:03d}.png"


def parse_slide_index(filename: str) -> Optional[int]:
    match = SLIDE_FILE_PATTERN.match(filename)
    if match is None:
        return None
    return int(match.group(1))


def parse_set_id(name: str) -> Optional[Tuple[str, int]]:
    """Split a set directory name into its timestamp and collision sequence.

    ``20240101_120000`` parses as ``("20240101_120000", 1)`` and
    ``20240101_120000_3`` as ``("20240101_120000", 3)``. Names that are not set
    identifiers return ``None``.
    """

    match = SET_ID_PATTERN.match(name)
    if match is None:
        return None
    return match.group(1), int(match.group(2) or 1)
