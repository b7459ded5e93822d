"""Utility helpers for consistent file and archive naming."""

from __future__ import annotations

from datetime import date, datetime, timezone
import re
from typing import Optional

__all__ = [
    "build_timestamped_name",
    "format_export_timestamp",
    "build_export_filename",
    "build_csv_filename",
    "sanitize_file_name",
]


def build_timestamped_name(
    stem: str,
    *,
    timestamp: Optional[str] = None,
    extension: str = "",
) -> str:
    """Return ``{stem}-{timestamp}`` with an optional lower-cased *extension*."""

    stamp = timestamp or datetime.now().strftime("%Y%m%d-%H%M%S")
    suffix = ""
    if extension:
        suffix = extension if extension.startswith(".") else f".{extension}"
        suffix = suffix.lower()
    return f"{stem or 'item'}-{stamp}{suffix}"


def format_export_timestamp(moment: Optional[datetime] = None) -> str:
    """Return an ISO-8601 UTC stamp with ``:`` and ``.`` replaced by ``-``.

    ``2024-05-01T12:30:45.123Z`` becomes ``2024-05-01T12-30-45-123Z``, which
    is safe to embed in a file name on every platform.
    """

    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    iso = moment.strftime("%Y-%m-%dT%H:%M:%S") + f".{moment.microsecond // 1000:03d}Z"
    return re.sub(r"[:.]", "-", iso)


def build_export_filename(moment: Optional[datetime] = None) -> str:
    return build_timestamped_name(
        "all-files", timestamp=format_export_timestamp(moment), extension="zip"
    )


def build_csv_filename(stem: str, today: Optional[date] = None) -> str:
    """Return ``{stem}-YYYY-MM-DD.csv``."""

    today = today or datetime.now(timezone.utc).date()
    return build_timestamped_name(stem, timestamp=today.isoformat(), extension="csv")


def sanitize_file_name(name: str) -> str:
    """Drop any directory components a client may send with an upload name."""

    candidate = (name or "").replace("\\", "/").split("/")[-1].strip()
    if candidate in {"", ".", ".."}:
        return ""
    return candidate
