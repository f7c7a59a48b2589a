from __future__ import annotations

import io
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from deckshow.bootstrap import Bootstrapper
from deckshow.config import MAX_UPLOAD_BYTES_ENV, AppConfig


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.delenv(MAX_UPLOAD_BYTES_ENV, raising=False)
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    config_file = config_dir / "default.json"
    config_file.write_text('{"storage_root": "storage"}', encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping({"storage_root": "storage"}, base_path=tmp_path)

    Bootstrapper(config).initialize()
    return config


@pytest.fixture()
def make_pdf():
    """Return a factory producing PDFs with labelled pages."""

    fitz = pytest.importorskip("fitz")

    def _build(page_count: int = 3) -> bytes:
        document = fitz.open()
        for index in range(page_count):
            page = document.new_page()
            page.insert_text((72, 72 + (index * 18)), f"Sample page {index + 1}")
        buffer = io.BytesIO()
        document.save(buffer)
        document.close()
        return buffer.getvalue()

    return _build
