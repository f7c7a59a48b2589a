"""Slide rasterization backed by PyMuPDF."""

from __future__ import annotations

import contextlib
import logging
import shutil
import tempfile
import time
from pathlib import Path
from typing import Any, List, Optional

from ..config import DEFAULT_MAX_UPLOAD_BYTES, DEFAULT_SLIDE_DPI
from ..errors import (
    SlideConversionDependencyError,
    SlideConversionError,
    SlideStorageError,
    SlideValidationError,
    ValidationReason,
)
from ..services.events import emit_file_event
from ..services.ingestion import ProgressCallback, RasterizationPipeline, UploadedDocument
from ..services.naming import MAX_SLIDE_INDEX, slide_filename


LOGGER = logging.getLogger(__name__)

_PDF_SUFFIX = ".pdf"
_COPY_CHUNK_SIZE = 1024 * 1024


def _load_backend() -> Any:
    try:
        import fitz  # type: ignore
    except ImportError as exc:  # pragma: no cover - runtime check
        raise SlideConversionDependencyError(
            "PyMuPDF (fitz) is not installed; install it with 'pip install PyMuPDF'"
        ) from exc
    return fitz


def _format_size(size: int) -> str:
    return f"{size / (1024 * 1024):.0f} MiB"


class PyMuPDFRasterizationPipeline(RasterizationPipeline):
    """Render every page of an uploaded PDF into ``slide-NNN.png`` files.

    Pages are rendered at ``dpi`` on both axes without an alpha channel, so
    transparent regions come out on a white background.
    """

    def __init__(
        self,
        dpi: int = DEFAULT_SLIDE_DPI,
        *,
        max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        max_pages: int = MAX_SLIDE_INDEX,
        rollback: bool = True,
    ) -> None:
        if max_pages > MAX_SLIDE_INDEX:
            raise ValueError(f"max_pages cannot exceed {MAX_SLIDE_INDEX}")
        self._dpi = dpi
        self._max_bytes = max_bytes
        self._max_pages = max_pages
        self._rollback = rollback
        LOGGER.debug(
            "PyMuPDFRasterizationPipeline initialised with dpi=%s, max_bytes=%s, rollback=%s",
            dpi,
            max_bytes,
            rollback,
        )

    @property
    def dpi(self) -> int:
        return self._dpi

    def validate(self, document: Optional[UploadedDocument]) -> None:
        if document is None or not document.filename or document.size <= 0:
            raise SlideValidationError(ValidationReason.NO_FILE, "Please choose a PDF file to upload.")
        if Path(document.base_name).suffix.lower() != _PDF_SUFFIX:
            raise SlideValidationError(
                ValidationReason.WRONG_TYPE,
                f"Only PDF files are supported (got '{document.base_name}').",
            )
        if self._max_bytes > 0 and document.size > self._max_bytes:
            raise SlideValidationError(
                ValidationReason.TOO_LARGE,
                f"'{document.base_name}' is larger than the {_format_size(self._max_bytes)} limit.",
            )

    def convert(
        self,
        document: UploadedDocument,
        target_dir: Path,
        *,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> int:
        """Render *document* into *target_dir*.

        Files are written to a hidden staging directory beside *target_dir*
        and moved into place once every page has rendered, so a failed attempt
        never overwrites files already present in *target_dir*.
        """

        written: List[Path] = []
        staging: Optional[Path] = None
        start = time.perf_counter()
        try:
            self.validate(document)
            fitz = _load_backend()
            staging = self._create_staging(target_dir)
            pdf_path = self._persist_document(document, staging)
            written.append(pdf_path)
            page_count = self._render_pages(
                fitz, pdf_path, staging, written, progress_callback
            )
        except (SlideConversionError, SlideStorageError, SlideValidationError):
            if self._rollback:
                self._discard(staging, target_dir, len(written))
            else:
                LOGGER.warning(
                    "Leaving %s partially converted file(s) in %s", len(written), target_dir
                )
                self._keep_partial(staging, target_dir)
            raise

        try:
            self._promote(staging, target_dir)
        except SlideStorageError:
            if self._rollback:
                self._discard(staging, target_dir, len(written))
            raise

        emit_file_event(
            "rasterize_pdf",
            payload={
                "source": document.base_name,
                "target": target_dir,
                "pages": page_count,
                "dpi": self._dpi,
            },
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )
        return page_count

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _create_staging(target_dir: Path) -> Path:
        try:
            target_dir.parent.mkdir(parents=True, exist_ok=True)
            staging = tempfile.mkdtemp(
                prefix=f".{target_dir.name}.", suffix=".partial", dir=target_dir.parent
            )
        except OSError as error:
            raise SlideStorageError(
                f"Unable to prepare a staging directory for '{target_dir}': {error}"
            ) from error
        return Path(staging)

    @staticmethod
    def _promote(staging: Path, target_dir: Path) -> None:
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            for entry in sorted(staging.iterdir()):
                entry.replace(target_dir / entry.name)
            staging.rmdir()
        except OSError as error:
            raise SlideStorageError(
                f"Unable to move converted slides into '{target_dir}': {error}"
            ) from error
        LOGGER.debug("Promoted staged files from %s to %s", staging, target_dir)

    @classmethod
    def _keep_partial(cls, staging: Optional[Path], target_dir: Path) -> None:
        if staging is None:
            return
        try:
            cls._promote(staging, target_dir)
        except SlideStorageError:
            LOGGER.exception("Unable to keep partially converted files from %s", staging)

    @staticmethod
    def _persist_document(document: UploadedDocument, target_dir: Path) -> Path:
        target = target_dir / document.base_name
        source = document.stream
        with contextlib.suppress(OSError, ValueError):
            source.seek(0)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            with target.open("wb") as buffer:
                shutil.copyfileobj(source, buffer, length=_COPY_CHUNK_SIZE)
        except OSError as error:
            raise SlideStorageError(f"Unable to store '{document.base_name}': {error}") from error
        LOGGER.debug("Stored original document at %s", target)
        return target

    def _render_pages(
        self,
        fitz: Any,
        pdf_path: Path,
        target_dir: Path,
        written: List[Path],
        progress_callback: Optional[ProgressCallback],
    ) -> int:
        try:
            document = fitz.open(pdf_path)
        except Exception as error:  # noqa: BLE001 - PyMuPDF raises several error types
            raise SlideConversionError(f"Unable to open PDF document: {error}") from error

        try:
            page_count = int(document.page_count)
            if page_count < 1:
                raise SlideConversionError("The PDF document does not contain any pages.")
            if page_count > self._max_pages:
                raise SlideValidationError(
                    ValidationReason.TOO_MANY_PAGES,
                    f"The PDF has {page_count} pages; at most {self._max_pages} are supported.",
                )

            scale = float(self._dpi) / 72.0
            matrix = fitz.Matrix(scale, scale)
            for index in range(1, page_count + 1):
                try:
                    page = document.load_page(index - 1)
                    pixmap = page.get_pixmap(matrix=matrix, alpha=False)
                    payload = pixmap.tobytes("png")
                except Exception as error:  # noqa: BLE001 - surface renderer failures
                    raise SlideConversionError(
                        f"Unable to render page {index} of {page_count}: {error}"
                    ) from error

                target = target_dir / slide_filename(index)
                try:
                    target.write_bytes(payload)
                except OSError as error:
                    raise SlideStorageError(f"Unable to write '{target.name}': {error}") from error
                written.append(target)

                if progress_callback is not None:
                    progress_callback(index, page_count)
            return page_count
        finally:
            document.close()

    @staticmethod
    def _discard(staging: Optional[Path], target_dir: Path, removed_files: int) -> None:
        if staging is not None:
            shutil.rmtree(staging, ignore_errors=True)
        try:
            target_dir.rmdir()
        except FileNotFoundError:
            pass
        except OSError:
            LOGGER.debug("Set directory %s kept after rollback (not empty)", target_dir)
        else:
            LOGGER.info("Removed incomplete slide set %s", target_dir)
        emit_file_event(
            "rollback_set",
            payload={"target": target_dir, "removed_files": removed_files},
            level=logging.WARNING,
        )


__all__ = ["PyMuPDFRasterizationPipeline"]
