"""FastAPI application powering the Instructor Hub admin API."""

from __future__ import annotations

import asyncio
import contextlib
import contextvars
import datetime
import hmac
import logging
import re
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict
from typing import Any, Callable, Dict, List, Optional, TypeVar

from fastapi import FastAPI, File, Form, Header, HTTPException, Query, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, Response
from pydantic import BaseModel, Field
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import AppConfig
from ..services.blobs import BlobNotFoundError, BlobStoreError, LocalBlobStore
from ..services.categories import CATEGORIES
from ..services.csv_export import build_files_csv, build_income_csv
from ..services.events import emit_db_event
from ..services.export import (
    BulkExporter,
    ExportCaller,
    ExportFailedError,
    NothingToExportError,
)
from ..services.income import (
    IncomeRepository,
    IncomeValidationError,
    summarize_income,
)
from ..services.naming import build_csv_filename
from ..services.progress import ExportProgressTracker
from ..services.storage import FileRecord, FileRepository, MetadataStoreError
from ..services.uploads import FileNotFoundInStoreError, FileService, UploadError

T = TypeVar("T")

LOGGER = logging.getLogger(__name__)

_ARCHIVE_NAME_PATTERN = re.compile(r"^all-files-[0-9A-Za-z-]+\.zip$")
_PERMISSION_DETAIL = "You do not have permission to perform this action"

_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "instructor_hub_request_id",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and echo it back."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        token = _REQUEST_ID_VAR.set(request_id)

        async def _send(message: Dict[str, Any]) -> None:
            if message.get("type") == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", request_id.encode("latin-1")))
                message["headers"] = headers
            await send(message)

        try:
            await self.app(scope, receive, _send)
        finally:
            _REQUEST_ID_VAR.reset(token)


class FileModel(BaseModel):
    id: int
    file_name: str
    file_size: int
    file_type: str
    category_id: str
    storage_path: Optional[str] = None
    download_url: Optional[str] = None
    organization: str = ""
    uploaded_at: str

    @classmethod
    def from_record(cls, record: FileRecord) -> "FileModel":
        return cls(**record.__dict__)


class FileListResponse(BaseModel):
    files: List[FileModel]
    total: int


class IncomePayload(BaseModel):
    amount: float = Field(..., gt=0)
    organization: str = Field(..., min_length=1)
    date: datetime.date
    notes: Optional[str] = None


class ExportResponse(BaseModel):
    filename: str
    size: int
    succeeded: int
    skipped: int
    skipped_files: List[str] = Field(default_factory=list)
    download_path: str


def _normalize_root_path(value: Optional[str]) -> str:
    if value is None:
        return ""
    normalized = value.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


def is_admin_token(config: AppConfig, supplied: Optional[str]) -> bool:
    expected = config.admin_token
    if not expected or not supplied:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))


def create_app(
    repository: FileRepository,
    *,
    config: AppConfig,
    income_repository: Optional[IncomeRepository] = None,
    blob_store: Optional[LocalBlobStore] = None,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    # Exports run one at a time off the event loop.
    export_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="bulk-export")

    @contextlib.asynccontextmanager
    async def _lifespan(_: FastAPI):
        try:
            yield
        finally:
            export_executor.shutdown(wait=True, cancel_futures=True)

    app = FastAPI(
        title="Instructor Hub",
        description="Files, revenue and exports for an independent instructor",
        root_path=_normalize_root_path(root_path),
        lifespan=_lifespan,
    )
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    income_repository = income_repository or IncomeRepository(config)
    blob_store = blob_store or LocalBlobStore(config.blob_root)
    for repo in (repository, income_repository):
        configure_emitter = getattr(repo, "configure_event_emitter", None)
        if callable(configure_emitter):
            configure_emitter(emit_db_event)

    file_service = FileService(repository, blob_store)
    export_tracker = ExportProgressTracker()

    app.state.export_executor = export_executor
    app.state.export_tracker = export_tracker
    app.state.blob_store = blob_store
    app.state.file_service = file_service

    async def _run_in_worker(operation: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        context = contextvars.copy_context()
        return await loop.run_in_executor(export_executor, context.run, operation)

    def _require_admin(token: Optional[str]) -> None:
        if not is_admin_token(config, token):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=_PERMISSION_DETAIL)

    @app.get("/api/categories")
    async def list_categories() -> Dict[str, Any]:
        counts = repository.count_by_category()
        return {
            "categories": [
                {**asdict(category), "file_count": counts.get(category.id, 0)}
                for category in CATEGORIES
            ]
        }

    @app.get("/api/files", response_model=FileListResponse)
    async def list_files(
        category_id: Optional[str] = Query(None),
        search: Optional[str] = Query(None),
    ) -> FileListResponse:
        records = repository.list_files(category_id=category_id, search=search)
        return FileListResponse(
            files=[FileModel.from_record(record) for record in records],
            total=len(records),
        )

    @app.post("/api/files", status_code=status.HTTP_201_CREATED, response_model=FileModel)
    async def upload_file(
        category_id: str = Form(...),
        organization: str = Form(""),
        file: UploadFile = File(...),
        x_admin_token: Optional[str] = Header(None),
    ) -> FileModel:
        _require_admin(x_admin_token)
        data = await file.read()
        try:
            record = file_service.upload(
                file.filename or "",
                data,
                category_id=category_id,
                file_type=file.content_type,
                organization=organization,
            )
        except UploadError as error:
            raise HTTPException(status_code=400, detail=str(error)) from error
        except (BlobStoreError, MetadataStoreError) as error:
            LOGGER.exception("Upload of '%s' failed", file.filename)
            raise HTTPException(status_code=500, detail="Upload failed") from error
        return FileModel.from_record(record)

    @app.get("/api/files/{file_id}/content")
    async def download_file(file_id: int) -> Response:
        try:
            record, content = file_service.read(file_id)
        except FileNotFoundInStoreError as error:
            raise HTTPException(status_code=404, detail="File not found") from error
        except BlobNotFoundError as error:
            raise HTTPException(status_code=404, detail="File content is missing") from error
        except (BlobStoreError, MetadataStoreError) as error:
            LOGGER.exception("Could not read content of file %s", file_id)
            raise HTTPException(status_code=500, detail="Could not read file content") from error
        return Response(
            content=content,
            media_type=record.file_type or "application/octet-stream",
            headers={"Content-Disposition": f'attachment; filename="{record.file_name}"'},
        )

    @app.delete("/api/files/{file_id}")
    async def delete_file(
        file_id: int,
        x_admin_token: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        _require_admin(x_admin_token)
        try:
            record = file_service.delete(file_id)
        except FileNotFoundInStoreError as error:
            raise HTTPException(status_code=404, detail="File not found") from error
        except BlobStoreError as error:
            raise HTTPException(
                status_code=500,
                detail=f"Failed to delete \"{file_id}\". Please try again.",
            ) from error
        return {"deleted": record.id, "message": f'Successfully deleted "{record.file_name}"'}

    @app.get("/api/statistics/organizations")
    async def organization_statistics() -> Dict[str, Any]:
        return {
            "organizations": [
                {"name": name, "count": count}
                for name, count in repository.count_by_organization()
            ]
        }

    @app.post("/api/exports/files", response_model=ExportResponse)
    async def export_all_files(x_admin_token: Optional[str] = Header(None)) -> ExportResponse:
        if not is_admin_token(config, x_admin_token):
            LOGGER.warning("Rejected bulk export request without a valid admin token")
            raise HTTPException(
                status_code=403,
                detail="You do not have permission to download all files",
            )
        if not export_tracker.start():
            raise HTTPException(status_code=409, detail="An export is already running")

        caller = ExportCaller(
            identity=f"request:{_REQUEST_ID_VAR.get() or 'unknown'}",
            is_admin=True,
        )
        exporter = BulkExporter(
            repository,
            blob_store,
            settings=config.export,
            observer=export_tracker,
        )
        try:
            result = await _run_in_worker(lambda: exporter.export_all(caller))
        except NothingToExportError as error:
            raise HTTPException(status_code=404, detail=error.user_message) from error
        except ExportFailedError as error:
            raise HTTPException(status_code=502, detail=error.user_message) from error
        finally:
            # The slot claimed above is released by the terminal phase of the run.
            if export_tracker.active:
                export_tracker.fail("Failed to download files: export was interrupted")

        archive_root = config.archive_root
        archive_root.mkdir(parents=True, exist_ok=True)
        archive_path = archive_root / result.filename
        try:
            archive_path.write_bytes(result.archive)
        except OSError as error:
            export_tracker.fail("Failed to download files: could not store archive")
            raise HTTPException(status_code=500, detail="Failed to store archive") from error

        return ExportResponse(
            filename=result.filename,
            size=result.size,
            succeeded=result.succeeded_count,
            skipped=result.skipped_count,
            skipped_files=[item.record.file_name for item in result.skipped],
            download_path=f"/api/exports/archives/{result.filename}",
        )

    @app.get("/api/exports/files/progress")
    async def export_progress() -> Dict[str, Any]:
        return {"progress": export_tracker.snapshot()}

    @app.get("/api/exports/archives/{filename}")
    async def download_archive(
        filename: str,
        x_admin_token: Optional[str] = Header(None),
    ) -> FileResponse:
        _require_admin(x_admin_token)
        if not _ARCHIVE_NAME_PATTERN.match(filename):
            raise HTTPException(status_code=404, detail="Archive not found")
        archive_path = config.archive_root / filename
        if not archive_path.is_file():
            raise HTTPException(status_code=404, detail="Archive not found")
        return FileResponse(archive_path, media_type="application/zip", filename=filename)

    @app.get("/api/exports/files.csv")
    async def export_files_csv(x_admin_token: Optional[str] = Header(None)) -> Response:
        _require_admin(x_admin_token)
        try:
            content = build_files_csv(repository.list_all_files())
        except NothingToExportError as error:
            raise HTTPException(status_code=404, detail=error.user_message) from error
        except MetadataStoreError as error:
            LOGGER.exception("Could not list files for CSV export")
            raise HTTPException(
                status_code=500,
                detail="Failed to export files. Please try again.",
            ) from error
        filename = build_csv_filename("files-export")
        return Response(
            content=content,
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.get("/api/income")
    async def list_income(
        month: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}$"),
        organization: Optional[str] = Query(None),
        x_admin_token: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        _require_admin(x_admin_token)
        records = income_repository.list_income(month=month, organization=organization)
        return {
            "income": [record.__dict__ for record in records],
            "organizations": income_repository.organizations(),
        }

    @app.post("/api/income", status_code=status.HTTP_201_CREATED)
    async def add_income(
        payload: IncomePayload,
        x_admin_token: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        _require_admin(x_admin_token)
        try:
            income_id = income_repository.add_income(
                payload.amount,
                payload.organization,
                payload.date,
                notes=payload.notes,
                created_by="admin",
            )
        except IncomeValidationError as error:
            raise HTTPException(status_code=400, detail=str(error)) from error
        except MetadataStoreError as error:
            raise HTTPException(
                status_code=500, detail="Failed to save income data. Please try again."
            ) from error
        record = income_repository.get_income(income_id)
        return {"income": record.__dict__ if record else {"id": income_id}}

    @app.delete("/api/income/{income_id}")
    async def delete_income(
        income_id: int,
        x_admin_token: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        _require_admin(x_admin_token)
        if not income_repository.remove_income(income_id):
            raise HTTPException(status_code=404, detail="Income record not found")
        return {"deleted": income_id}

    @app.get("/api/income/summary")
    async def income_summary(x_admin_token: Optional[str] = Header(None)) -> Dict[str, Any]:
        _require_admin(x_admin_token)
        summary = summarize_income(income_repository.list_income())
        return {"summary": summary.to_dict()}

    @app.get("/api/income.csv")
    async def export_income_csv(x_admin_token: Optional[str] = Header(None)) -> Response:
        _require_admin(x_admin_token)
        try:
            content = build_income_csv(income_repository.list_income())
        except NothingToExportError as error:
            raise HTTPException(status_code=404, detail=error.user_message) from error
        filename = build_csv_filename("income-export")
        return Response(
            content=content,
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    return app


__all__ = ["create_app", "is_admin_token"]
