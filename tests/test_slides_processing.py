"""Tests for the PyMuPDF rasterization pipeline."""

import sys
from pathlib import Path

import pytest

from deckshow.errors import (
    SlideConversionDependencyError,
    SlideConversionError,
    SlideStorageError,
    SlideValidationError,
    ValidationReason,
)
from deckshow.processing.slides import PyMuPDFRasterizationPipeline
from deckshow.services.ingestion import UploadedDocument


PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def _pdf_document(make_pdf, pages: int = 3, name: str = "deck.pdf") -> UploadedDocument:
    return UploadedDocument.from_bytes(name, make_pdf(pages))


def test_convert_writes_original_and_numbered_slides(tmp_path: Path, make_pdf):
    pipeline = PyMuPDFRasterizationPipeline(dpi=72)
    target = tmp_path / "set"
    progress = []

    count = pipeline.convert(
        _pdf_document(make_pdf, 3, "Quarterly Review.pdf"),
        target,
        progress_callback=lambda done, total: progress.append((done, total)),
    )

    assert count == 3
    assert sorted(entry.name for entry in target.iterdir()) == [
        "Quarterly Review.pdf",
        "slide-001.png",
        "slide-002.png",
        "slide-003.png",
    ]
    assert (target / "slide-001.png").read_bytes().startswith(PNG_SIGNATURE)
    assert progress == [(1, 3), (2, 3), (3, 3)]


def test_convert_renders_at_configured_dpi(tmp_path: Path, make_pdf):
    fitz = pytest.importorskip("fitz")
    pipeline = PyMuPDFRasterizationPipeline(dpi=144)
    target = tmp_path / "set"

    pipeline.convert(_pdf_document(make_pdf, 1), target)

    pixmap = fitz.Pixmap(str(target / "slide-001.png"))
    # Default page size is 595x842 points (A4).
    assert pixmap.width == pytest.approx(595 * 2, abs=2)
    assert pixmap.height == pytest.approx(842 * 2, abs=2)
    assert pixmap.alpha == 0


def test_convert_strips_client_directories_from_filename(tmp_path: Path, make_pdf):
    pipeline = PyMuPDFRasterizationPipeline(dpi=36)
    target = tmp_path / "set"

    pipeline.convert(_pdf_document(make_pdf, 1, "C:\\Users\\me\\deck.pdf"), target)

    assert (target / "deck.pdf").exists()


@pytest.mark.parametrize(
    ("document", "reason"),
    [
        (None, ValidationReason.NO_FILE),
        (UploadedDocument.from_bytes("", b"%PDF"), ValidationReason.NO_FILE),
        (UploadedDocument.from_bytes("deck.pdf", b""), ValidationReason.NO_FILE),
        (UploadedDocument.from_bytes("notes.txt", b"hello"), ValidationReason.WRONG_TYPE),
        (UploadedDocument.from_bytes("deck.pptx", b"PK"), ValidationReason.WRONG_TYPE),
    ],
)
def test_validate_rejects_bad_uploads(document, reason):
    pipeline = PyMuPDFRasterizationPipeline()

    with pytest.raises(SlideValidationError) as excinfo:
        pipeline.validate(document)

    assert excinfo.value.reason is reason


def test_validate_accepts_uppercase_suffix():
    PyMuPDFRasterizationPipeline().validate(UploadedDocument.from_bytes("DECK.PDF", b"%PDF-1.4"))


def test_validate_enforces_size_limit():
    pipeline = PyMuPDFRasterizationPipeline(max_bytes=10)

    with pytest.raises(SlideValidationError) as excinfo:
        pipeline.validate(UploadedDocument.from_bytes("deck.pdf", b"x" * 11))

    assert excinfo.value.reason is ValidationReason.TOO_LARGE
    PyMuPDFRasterizationPipeline(max_bytes=0).validate(
        UploadedDocument.from_bytes("deck.pdf", b"x" * 11)
    )


def test_missing_backend_raises_dependency_error(tmp_path: Path, monkeypatch):
    monkeypatch.setitem(sys.modules, "fitz", None)
    pipeline = PyMuPDFRasterizationPipeline()
    target = tmp_path / "set"
    target.mkdir()

    with pytest.raises(SlideConversionDependencyError):
        pipeline.convert(UploadedDocument.from_bytes("deck.pdf", b"%PDF-1.4"), target)

    assert not target.exists()


def test_page_limit_rejects_large_documents(tmp_path: Path, make_pdf):
    pipeline = PyMuPDFRasterizationPipeline(dpi=36, max_pages=2)
    target = tmp_path / "set"

    with pytest.raises(SlideValidationError) as excinfo:
        pipeline.convert(_pdf_document(make_pdf, 3), target)

    assert excinfo.value.reason is ValidationReason.TOO_MANY_PAGES
    assert not target.exists()


def test_max_pages_cannot_exceed_slide_numbering():
    with pytest.raises(ValueError):
        PyMuPDFRasterizationPipeline(max_pages=1000)


def test_corrupt_pdf_is_rolled_back(tmp_path: Path):
    pytest.importorskip("fitz")
    pipeline = PyMuPDFRasterizationPipeline()
    target = tmp_path / "set"

    with pytest.raises(SlideConversionError):
        pipeline.convert(UploadedDocument.from_bytes("broken.pdf", b"not really a pdf"), target)

    assert not target.exists()


def _fail_on_second_page(monkeypatch):
    original_write = Path.write_bytes

    def flaky_write(self, data):
        if self.name == "slide-002.png":
            raise OSError("disk full")
        return original_write(self, data)

    monkeypatch.setattr(Path, "write_bytes", flaky_write)


def test_partial_failure_removes_written_files(tmp_path: Path, monkeypatch, make_pdf):
    document = _pdf_document(make_pdf, 3)
    _fail_on_second_page(monkeypatch)
    pipeline = PyMuPDFRasterizationPipeline(dpi=36)
    target = tmp_path / "set"

    with pytest.raises(SlideStorageError) as excinfo:
        pipeline.convert(document, target)

    assert "slide-002.png" in str(excinfo.value)
    assert not target.exists()


def test_partial_failure_keeps_files_without_rollback(tmp_path: Path, monkeypatch, make_pdf):
    document = _pdf_document(make_pdf, 3)
    _fail_on_second_page(monkeypatch)
    pipeline = PyMuPDFRasterizationPipeline(dpi=36, rollback=False)
    target = tmp_path / "set"

    with pytest.raises(SlideStorageError):
        pipeline.convert(document, target)

    assert sorted(entry.name for entry in target.iterdir()) == ["deck.pdf", "slide-001.png"]


def test_rollback_keeps_foreign_files(tmp_path: Path):
    pytest.importorskip("fitz")
    pipeline = PyMuPDFRasterizationPipeline()
    target = tmp_path / "set"
    target.mkdir()
    (target / "keep.txt").write_text("mine", encoding="utf-8")

    with pytest.raises(SlideConversionError):
        pipeline.convert(UploadedDocument.from_bytes("broken.pdf", b"garbage"), target)

    assert [entry.name for entry in target.iterdir()] == ["keep.txt"]


def test_failed_conversion_keeps_existing_slides(tmp_path: Path, make_pdf):
    pipeline = PyMuPDFRasterizationPipeline(dpi=36)
    target = tmp_path / "set"
    pipeline.convert(_pdf_document(make_pdf, 2), target)
    original_bytes = (target / "deck.pdf").read_bytes()

    with pytest.raises(SlideConversionError):
        pipeline.convert(UploadedDocument.from_bytes("deck.pdf", b"not a pdf"), target)

    assert sorted(entry.name for entry in target.iterdir()) == [
        "deck.pdf",
        "slide-001.png",
        "slide-002.png",
    ]
    assert (target / "deck.pdf").read_bytes() == original_bytes


def test_conversion_leaves_no_staging_directories(tmp_path: Path, monkeypatch, make_pdf):
    pipeline = PyMuPDFRasterizationPipeline(dpi=36)
    pipeline.convert(_pdf_document(make_pdf, 1), tmp_path / "ok")
    _fail_on_second_page(monkeypatch)

    with pytest.raises(SlideStorageError):
        pipeline.convert(_pdf_document(make_pdf, 3), tmp_path / "broken")

    assert [entry.name for entry in tmp_path.iterdir()] == ["ok"]
