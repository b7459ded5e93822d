"""Spreadsheet-friendly exports of file metadata and revenue entries."""

from __future__ import annotations

import csv
import io
from typing import Iterable, List, Sequence

from .export import NothingToExportError
from .income import IncomeRecord
from .storage import FileRecord

FILE_CSV_HEADERS: Sequence[str] = (
    "fileName",
    "categoryId",
    "organization",
    "fileSize",
    "fileType",
    "uploadedAt",
)
INCOME_CSV_HEADERS: Sequence[str] = ("date", "organization", "amount", "notes", "createdBy")


def _render(headers: Sequence[str], rows: Iterable[Sequence[object]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    writer.writerows(rows)
    return buffer.getvalue()


def build_files_csv(records: Iterable[FileRecord]) -> str:
    entries: List[FileRecord] = list(records)
    if not entries:
        raise NothingToExportError("No files found to export")
    return _render(
        FILE_CSV_HEADERS,
        (
            (
                record.file_name,
                record.category_id,
                record.organization or "",
                record.file_size or 0,
                record.file_type or "",
                record.uploaded_at or "",
            )
            for record in entries
        ),
    )


def build_income_csv(records: Iterable[IncomeRecord]) -> str:
    entries: List[IncomeRecord] = list(records)
    if not entries:
        raise NothingToExportError("No income records found to export")
    return _render(
        INCOME_CSV_HEADERS,
        (
            (record.date, record.organization, f"{record.amount:.2f}", record.notes or "", record.created_by)
            for record in entries
        ),
    )


__all__ = [
    "FILE_CSV_HEADERS",
    "INCOME_CSV_HEADERS",
    "build_files_csv",
    "build_income_csv",
]
