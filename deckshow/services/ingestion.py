"""Upload orchestration: project resolution, validation and conversion."""

from __future__ import annotations

import io
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional, Protocol

from ..config import AppConfig, ProjectCollisionPolicy
from ..errors import (
    DeckshowError,
    SetCollisionError,
    SlideConversionDependencyError,
    SlideConversionError,
    SlideStorageError,
    SlideValidationError,
    ValidationReason,
)
from .events import emit_task_event
from .naming import sanitize_identifier
from .projects import ProjectRegistry
from .storage import SlideSetRecord, SlideSetRepository


LOGGER = logging.getLogger(__name__)


ProgressCallback = Callable[[int, int], None]


@dataclass
class UploadedDocument:
    """An uploaded file together with its declared name and size in bytes."""

    filename: str
    stream: BinaryIO
    size: int

    @classmethod
    def from_bytes(cls, filename: str, data: bytes) -> "UploadedDocument":
        return cls(filename=filename, stream=io.BytesIO(data), size=len(data))

    @classmethod
    def from_stream(cls, filename: str, stream: BinaryIO) -> "UploadedDocument":
        """Wrap a seekable *stream*, measuring its size without consuming it."""

        stream.seek(0, io.SEEK_END)
        size = stream.tell()
        stream.seek(0)
        return cls(filename=filename, stream=stream, size=size)

    @property
    def base_name(self) -> str:
        return Path(self.filename.replace("\\", "/")).name


class RasterizationPipeline(Protocol):
    """Protocol describing a PDF-to-PNG conversion backend."""

    def validate(self, document: Optional[UploadedDocument]) -> None:
        """Raise :class:`SlideValidationError` when *document* is unacceptable."""

    def convert(
        self,
        document: UploadedDocument,
        target_dir: Path,
        *,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> int:
        """Persist *document* in *target_dir*, render every page and return the page count."""


class UploadState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    REJECTED = "rejected"
    CONVERTING = "converting"
    READY = "ready"
    FAILED = "failed"


@dataclass
class UploadRequest:
    document: Optional[UploadedDocument]
    project_id: Optional[str] = None
    new_project_name: Optional[str] = None


@dataclass
class UploadPlan:
    """A validated upload waiting for its set directory and conversion."""

    project_id: str
    document: UploadedDocument


@dataclass
class UploadOutcome:
    state: UploadState
    project_id: str
    slide_set: Optional[SlideSetRecord] = None
    page_count: int = 0
    message: str = ""
    error: Optional[DeckshowError] = None
    history: List[UploadState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is UploadState.READY


class UploadRejected(Exception):
    """Carries the rejection outcome out of :meth:`UploadOrchestrator.prepare`."""

    def __init__(self, outcome: UploadOutcome) -> None:
        super().__init__(outcome.message)
        self.outcome = outcome


_BACKEND_MISSING_MESSAGE = (
    "Slide conversion backend is not available. Install PyMuPDF "
    "(pip install PyMuPDF) and try again."
)


class UploadOrchestrator:
    """Coordinate a single upload from project resolution to the final state."""

    def __init__(
        self,
        config: AppConfig,
        repository: SlideSetRepository,
        pipeline: RasterizationPipeline,
        *,
        registry: Optional[ProjectRegistry] = None,
        project_collision: Optional[ProjectCollisionPolicy] = None,
    ) -> None:
        self._repository = repository
        self._pipeline = pipeline
        self._registry = registry or ProjectRegistry(repository)
        self._project_collision: ProjectCollisionPolicy = (
            project_collision or config.project_collision
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def resolve_project_id(
        self,
        project_id: Optional[str] = None,
        new_project_name: Optional[str] = None,
    ) -> str:
        """Pick the target project: new name, then selection, then the default."""

        if new_project_name and new_project_name.strip():
            return sanitize_identifier(new_project_name.strip())
        if project_id and project_id.strip():
            return sanitize_identifier(project_id.strip())
        return self._registry.default_project(self._registry.list_projects())

    def prepare(self, request: UploadRequest) -> UploadPlan:
        """Resolve the project and validate the upload without touching storage.

        Raises :class:`UploadRejected` when the upload cannot proceed.
        """

        history = [UploadState.IDLE, UploadState.VALIDATING]
        project_id = self.resolve_project_id(request.project_id, request.new_project_name)
        try:
            self._pipeline.validate(request.document)
            if request.document is None:
                raise SlideValidationError(
                    ValidationReason.NO_FILE, "Please choose a PDF file to upload."
                )
            if self._is_new_project_collision(request, project_id):
                raise SlideValidationError(
                    ValidationReason.PROJECT_EXISTS,
                    f"A project named '{project_id}' already exists. "
                    "Select it from the list instead of creating a new one.",
                )
        except SlideValidationError as error:
            history.append(UploadState.REJECTED)
            LOGGER.info("Rejected upload for project '%s': %s", project_id, error)
            raise UploadRejected(
                UploadOutcome(
                    state=UploadState.REJECTED,
                    project_id=project_id,
                    message=str(error),
                    error=error,
                    history=history,
                )
            ) from error

        return UploadPlan(project_id=project_id, document=request.document)

    def run(
        self,
        plan: UploadPlan,
        *,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> UploadOutcome:
        """Create the set directory for *plan* and convert the document into it."""

        history = [UploadState.IDLE, UploadState.VALIDATING, UploadState.CONVERTING]
        start = time.perf_counter()
        slide_set: Optional[SlideSetRecord] = None
        try:
            slide_set = self._repository.create_set(plan.project_id)
            emit_task_event(
                "converting",
                "Slide conversion started",
                payload={
                    "project_id": plan.project_id,
                    "set_id": slide_set.set_id,
                    "filename": plan.document.base_name,
                    "bytes": plan.document.size,
                },
            )
            page_count = self._pipeline.convert(
                plan.document,
                slide_set.path,
                progress_callback=progress_callback,
            )
        except SlideConversionDependencyError as error:
            LOGGER.error("Slide conversion backend unavailable: %s", error)
            return self._finish_failed(plan, slide_set, error, _BACKEND_MISSING_MESSAGE, history, start)
        except (
            SlideConversionError,
            SlideStorageError,
            SetCollisionError,
            SlideValidationError,
        ) as error:
            LOGGER.error("Slide conversion failed for project '%s': %s", plan.project_id, error)
            return self._finish_failed(plan, slide_set, error, str(error), history, start)

        history.append(UploadState.READY)
        duration_ms = (time.perf_counter() - start) * 1000.0
        emit_task_event(
            "ready",
            "Slide conversion finished",
            payload={
                "project_id": plan.project_id,
                "set_id": slide_set.set_id,
                "pages": page_count,
            },
            duration_ms=duration_ms,
        )
        return UploadOutcome(
            state=UploadState.READY,
            project_id=plan.project_id,
            slide_set=slide_set,
            page_count=page_count,
            message=f"Converted {page_count} slide(s) into set {slide_set.set_id}.",
            history=history,
        )

    def submit(self, request: UploadRequest) -> UploadOutcome:
        """Handle *request* synchronously from validation to the final state."""

        try:
            plan = self.prepare(request)
        except UploadRejected as rejection:
            return rejection.outcome
        return self.run(plan)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _is_new_project_collision(self, request: UploadRequest, project_id: str) -> bool:
        if self._project_collision != "reject":
            return False
        if not (request.new_project_name and request.new_project_name.strip()):
            return False
        return self._registry.exists(project_id)

    @staticmethod
    def _finish_failed(
        plan: UploadPlan,
        slide_set: Optional[SlideSetRecord],
        error: DeckshowError,
        message: str,
        history: List[UploadState],
        start: float,
    ) -> UploadOutcome:
        history.append(UploadState.FAILED)
        emit_task_event(
            "failed",
            "Slide conversion did not complete",
            payload={
                "project_id": plan.project_id,
                "set_id": slide_set.set_id if slide_set else None,
                "error": f"{error.__class__.__name__}: {error}",
            },
            duration_ms=(time.perf_counter() - start) * 1000.0,
            level=logging.WARNING,
        )
        return UploadOutcome(
            state=UploadState.FAILED,
            project_id=plan.project_id,
            slide_set=slide_set,
            message=message,
            error=error,
            history=history,
        )


__all__ = [
    "ProgressCallback",
    "RasterizationPipeline",
    "UploadOrchestrator",
    "UploadOutcome",
    "UploadPlan",
    "UploadRejected",
    "UploadRequest",
    "UploadState",
    "UploadedDocument",
]
