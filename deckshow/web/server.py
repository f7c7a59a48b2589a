"""FastAPI application exposing the slideshow view, uploads and stored slides."""

from __future__ import annotations

import asyncio
import contextlib
import contextvars
import logging
import shutil
import tempfile
import uuid
from contextlib import asynccontextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi import status
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse
from pydantic import BaseModel
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..config import AppConfig
from ..errors import (
    DeckshowError,
    SetCollisionError,
    SlideConversionDependencyError,
    SlideValidationError,
    ValidationReason,
)
from ..processing import PyMuPDFRasterizationPipeline
from ..services.ingestion import (
    RasterizationPipeline,
    UploadOrchestrator,
    UploadOutcome,
    UploadRejected,
    UploadRequest,
    UploadState,
    UploadedDocument,
)
from ..services.jobs import ConversionJob, ConversionJobQueue
from ..services.naming import sanitize_identifier
from ..services.projects import ProjectRegistry
from ..services.storage import FileSystemSlideSetRepository, SlideSetRepository
from ..services.urls import storage_public_url


_UPLOAD_SPOOL_BYTES = 8 * 1024 * 1024
_REQUEST_ID_HEADER = b"x-request-id"

_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "deckshow_request_id",
    default=None,
)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects the current request id into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra or {})
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        request_id = _REQUEST_ID_VAR.get()
        if request_id:
            extra.setdefault("request_id", request_id)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and echo it in the response."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = uuid.uuid4().hex
        token = _REQUEST_ID_VAR.set(request_id)

        async def _send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((_REQUEST_ID_HEADER, request_id.encode("ascii")))
                message["headers"] = headers
            await send(message)

        try:
            await self.app(scope, receive, _send_with_request_id)
        finally:
            _REQUEST_ID_VAR.reset(token)


class Notice(str, Enum):
    """Typed message carried by the post-upload redirect."""

    UPLOADED = "uploaded"


class ProjectEntry(BaseModel):
    id: str
    display_name: str


class ProjectListResponse(BaseModel):
    projects: List[ProjectEntry]
    default_project: str


class SlideshowView(BaseModel):
    projects: List[ProjectEntry]
    selected_project: str
    latest_set_id: Optional[str] = None
    slides: List[str] = []
    message: Optional[str] = None
    notice: Optional[Notice] = None
    error: Optional[str] = None


class JobResponse(BaseModel):
    job_id: str
    project_id: str
    filename: str
    status: str
    set_id: Optional[str] = None
    pages_done: int = 0
    pages_total: Optional[int] = None
    error: Optional[str] = None
    poll_url: str


_NO_SETS_MESSAGE = "No slide sets have been uploaded for this project yet."
_NO_SLIDES_MESSAGE = "No slides found in the latest set."


def _status_for_error(error: Optional[DeckshowError]) -> int:
    if isinstance(error, SlideValidationError):
        if error.reason is ValidationReason.TOO_LARGE:
            return status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
        if error.reason is ValidationReason.PROJECT_EXISTS:
            return status.HTTP_409_CONFLICT
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, SlideConversionDependencyError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(error, SetCollisionError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _request_origin(request: Request) -> str:
    return str(request.base_url).rstrip("/")


def _resolve_storage_path(root: Path, relative_path: str) -> Path:
    root_path = root.resolve()
    candidate = (root_path / relative_path).resolve()
    candidate.relative_to(root_path)
    return candidate


def _document_from_upload(upload: Optional[UploadFile], *, detach: bool = False) -> Optional[UploadedDocument]:
    """Wrap *upload* for the orchestrator.

    With ``detach`` the content is copied into a spool file owned by the
    returned document, so it outlives the request.
    """

    if upload is None or not upload.filename:
        return None
    source = upload.file
    with contextlib.suppress(OSError, ValueError):
        source.seek(0)
    if detach:
        spool = tempfile.SpooledTemporaryFile(max_size=_UPLOAD_SPOOL_BYTES)
        shutil.copyfileobj(source, spool)
        source = spool
    return UploadedDocument.from_stream(upload.filename, source)


def create_app(
    repository: Optional[SlideSetRepository] = None,
    *,
    config: AppConfig,
    pipeline: Optional[RasterizationPipeline] = None,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    repository = repository or FileSystemSlideSetRepository(config)
    pipeline = pipeline or PyMuPDFRasterizationPipeline(
        config.slide_dpi,
        max_bytes=config.max_upload_bytes,
        rollback=config.rollback_partial_sets,
    )
    registry = ProjectRegistry(repository)
    orchestrator = UploadOrchestrator(config, repository, pipeline, registry=registry)
    job_queue = ConversionJobQueue(orchestrator)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        job_queue.shutdown(wait=False)

    app = FastAPI(
        title="Deckshow",
        description="Upload PDF decks and present the latest conversion as a slideshow",
        root_path=root_path or "",
        lifespan=lifespan,
    )
    app.add_middleware(RequestContextMiddleware)
    app.state.server = None
    app.state.repository = repository
    app.state.orchestrator = orchestrator
    app.state.job_queue = job_queue

    presentations_root = config.presentations_root

    def _build_view(
        request: Request,
        selected: Optional[str],
        *,
        message: Optional[str] = None,
        notice: Optional[Notice] = None,
        error: Optional[str] = None,
    ) -> SlideshowView:
        projects = registry.list_projects()
        if selected and selected.strip():
            project_id = sanitize_identifier(selected.strip())
        else:
            project_id = registry.default_project(projects)

        latest = repository.latest_set(project_id)
        slide_urls: List[str] = []
        if latest is None:
            message = message or _NO_SETS_MESSAGE
        else:
            slides = repository.slides_of(latest)
            if not slides:
                message = message or _NO_SLIDES_MESSAGE
            origin = _request_origin(request)
            slide_urls = [
                storage_public_url(slide.path, config.storage_root, origin) for slide in slides
            ]

        return SlideshowView(
            projects=[ProjectEntry(id=p.id, display_name=p.display_name) for p in projects],
            selected_project=project_id,
            latest_set_id=latest.set_id if latest else None,
            slides=slide_urls,
            message=message,
            notice=notice,
            error=error,
        )

    def _error_response(
        request: Request,
        outcome: UploadOutcome,
        previous_selection: Optional[str],
    ) -> JSONResponse:
        # Rejected uploads keep showing what was on screen; failed ones show the target project.
        selected = previous_selection if outcome.state is UploadState.REJECTED else outcome.project_id
        view = _build_view(request, selected, error=outcome.message)
        return JSONResponse(status_code=_status_for_error(outcome.error), content=view.model_dump(mode="json"))

    def _serialize_job(request: Request, job: ConversionJob) -> JobResponse:
        return JobResponse(
            job_id=job.id,
            project_id=job.project_id,
            filename=job.filename,
            status=job.status,
            set_id=job.set_id,
            pages_done=job.pages_done,
            pages_total=job.pages_total,
            error=job.error,
            poll_url=str(request.url_for("get_conversion_job", job_id=job.id)),
        )

    @app.get("/slideshow", response_model=SlideshowView)
    async def view_slideshow(
        request: Request,
        project_id: Optional[str] = Query(None, alias="projectId"),
        notice: Optional[Notice] = Query(None),
        set_id: Optional[str] = Query(None, alias="setId"),
    ) -> SlideshowView:
        message = None
        if notice is Notice.UPLOADED:
            message = f"Uploaded slide set {set_id}." if set_id else "Upload complete."
        return await asyncio.to_thread(
            _build_view, request, project_id, message=message, notice=notice
        )

    @app.get("/api/projects", response_model=ProjectListResponse)
    async def list_projects() -> ProjectListResponse:
        projects = registry.list_projects()
        return ProjectListResponse(
            projects=[ProjectEntry(id=p.id, display_name=p.display_name) for p in projects],
            default_project=registry.default_project(projects),
        )

    @app.post("/slideshow/upload", response_model=None)
    async def upload_slides(
        request: Request,
        pdf_file: Optional[UploadFile] = File(None, alias="pdfFile"),
        project_id: Optional[str] = Form(None, alias="projectId"),
        new_project_name: Optional[str] = Form(None, alias="newProjectName"),
    ) -> Any:
        LOGGER.info(
            "Upload received (project=%s, new_project=%s, filename=%s)",
            project_id,
            new_project_name,
            pdf_file.filename if pdf_file else None,
        )
        try:
            document = _document_from_upload(pdf_file)
            outcome = await asyncio.to_thread(
                orchestrator.submit,
                UploadRequest(
                    document=document,
                    project_id=project_id,
                    new_project_name=new_project_name,
                ),
            )
        finally:
            if pdf_file is not None:
                await pdf_file.close()

        if outcome.state is not UploadState.READY or outcome.slide_set is None:
            return _error_response(request, outcome, project_id)

        target = request.url_for("view_slideshow").include_query_params(
            projectId=outcome.project_id,
            notice=Notice.UPLOADED.value,
            setId=outcome.slide_set.set_id,
        )
        return RedirectResponse(url=str(target), status_code=status.HTTP_303_SEE_OTHER)

    @app.post("/slideshow/jobs", response_model=None)
    async def submit_conversion_job(
        request: Request,
        pdf_file: Optional[UploadFile] = File(None, alias="pdfFile"),
        project_id: Optional[str] = Form(None, alias="projectId"),
        new_project_name: Optional[str] = Form(None, alias="newProjectName"),
    ) -> Any:
        try:
            document = await asyncio.to_thread(_document_from_upload, pdf_file, detach=True)
        finally:
            if pdf_file is not None:
                await pdf_file.close()

        upload_request = UploadRequest(
            document=document,
            project_id=project_id,
            new_project_name=new_project_name,
        )
        try:
            plan = await asyncio.to_thread(orchestrator.prepare, upload_request)
        except UploadRejected as rejection:
            if document is not None:
                document.stream.close()
            return _error_response(request, rejection.outcome, project_id)

        job = job_queue.enqueue(plan)
        LOGGER.info("Queued conversion job %s for project '%s'", job.id, job.project_id)
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=_serialize_job(request, job).model_dump(mode="json"),
        )

    @app.get("/slideshow/jobs/{job_id}", response_model=JobResponse)
    async def get_conversion_job(request: Request, job_id: str) -> JobResponse:
        job = job_queue.get(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return _serialize_job(request, job)

    @app.get("/presentations/{path:path}")
    async def serve_presentation_file(path: str) -> FileResponse:
        try:
            target = _resolve_storage_path(presentations_root, path)
        except ValueError as error:
            raise HTTPException(status_code=404, detail="File not found") from error
        if not target.exists() or target.is_dir():
            raise HTTPException(status_code=404, detail="File not found")
        return FileResponse(target)

    return app


__all__ = [
    "ContextualLoggerAdapter",
    "JobResponse",
    "Notice",
    "ProjectListResponse",
    "RequestContextMiddleware",
    "SlideshowView",
    "create_app",
]
