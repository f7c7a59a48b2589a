"""Tests for the run.py entrypoint helpers."""

from __future__ import annotations

import dataclasses
from types import SimpleNamespace

from typer.testing import CliRunner

import run


runner = CliRunner()


def _setup_serve(monkeypatch, tmp_path, upload_limit, **serve_kwargs):
    captured = {}

    monkeypatch.setattr(
        run,
        "initialize_app",
        lambda: SimpleNamespace(storage_root=tmp_path, max_upload_bytes=upload_limit),
    )
    monkeypatch.setattr(run, "configure_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(run, "FileSystemSlideSetRepository", lambda config: object())

    dummy_app = SimpleNamespace(state=SimpleNamespace())

    def fake_create_app(repository, config, root_path):
        captured["root_path"] = root_path
        return dummy_app

    monkeypatch.setattr(run, "create_app", fake_create_app)

    class DummyConfig:
        def __init__(self, app, **kwargs):
            captured["app"] = app
            captured["config_kwargs"] = kwargs

    class DummyServer:
        def __init__(self, config):
            captured["server_config"] = config
            captured["server_instance"] = self

        def run(self):
            captured["server_run"] = True

    class DummyThread:
        def __init__(self, target, daemon):
            self._target = target
            captured["thread_daemon"] = daemon

        def start(self):
            captured["thread_started"] = True

    monkeypatch.setattr(run.uvicorn, "Config", DummyConfig)
    monkeypatch.setattr(run.uvicorn, "Server", DummyServer)
    monkeypatch.setattr(run.threading, "Thread", DummyThread)
    monkeypatch.setattr(run.webbrowser, "open", lambda *args, **kwargs: True)

    options = {"host": "0.0.0.0", "port": 9000, "root_path": "/deck", "open_browser": True}
    options.update(serve_kwargs)
    run.serve(**options)

    captured["app_state_server"] = dummy_app.state.server
    return captured


def test_serve_applies_request_size_limit(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path, upload_limit=50 * 1024 * 1024)

    assert captured["config_kwargs"]["limit_max_request_size"] == 50 * 1024 * 1024
    assert captured["config_kwargs"]["root_path"] == "/deck"
    assert captured["config_kwargs"]["log_config"] is None
    assert captured["app_state_server"] is captured["server_instance"]
    assert captured["server_run"] is True
    assert captured["thread_started"] is True


def test_serve_omits_limit_when_disabled(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path, upload_limit=0)

    assert "limit_max_request_size" not in captured["config_kwargs"]


def test_serve_can_skip_browser(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path, upload_limit=0, open_browser=False)

    assert "thread_started" not in captured


def test_normalize_root_path():
    assert run._normalize_root_path(None) == ""
    assert run._normalize_root_path("  ") == ""
    assert run._normalize_root_path("/") == ""
    assert run._normalize_root_path("deck/") == "/deck"
    assert run._normalize_root_path("/deck") == "/deck"


def _patch_initialize(monkeypatch, config):
    monkeypatch.setattr(run, "initialize_app", lambda: config)
    monkeypatch.setattr(run, "configure_logging", lambda *args, **kwargs: None)


def test_ingest_command_creates_slide_set(monkeypatch, temp_config, tmp_path, make_pdf):
    _patch_initialize(monkeypatch, dataclasses.replace(temp_config, slide_dpi=36))
    source = tmp_path / "Board Meeting.pdf"
    source.write_bytes(make_pdf(2))

    result = runner.invoke(run.cli, ["ingest", str(source), "--new-project", "Board Meeting"])

    assert result.exit_code == 0, result.output
    assert "Ingestion completed." in result.output
    assert "Rendered slide 2/2" in result.output
    project_dir = temp_config.presentations_root / "Board-Meeting"
    (set_dir,) = list(project_dir.iterdir())
    assert sorted(entry.name for entry in set_dir.iterdir()) == [
        "Board Meeting.pdf",
        "slide-001.png",
        "slide-002.png",
    ]


def test_ingest_command_reports_rejection(monkeypatch, temp_config, tmp_path):
    _patch_initialize(monkeypatch, temp_config)
    source = tmp_path / "notes.txt"
    source.write_text("not a deck", encoding="utf-8")

    result = runner.invoke(run.cli, ["ingest", str(source)])

    assert result.exit_code == 1
    assert "Ingestion failed (rejected)" in result.output
    assert list(temp_config.presentations_root.iterdir()) == []


def test_overview_lists_projects(monkeypatch, temp_config):
    _patch_initialize(monkeypatch, temp_config)
    (temp_config.presentations_root / "Roadmap" / "20240101_000000").mkdir(parents=True)
    (temp_config.presentations_root / "Roadmap" / "20240101_000000" / "slide-001.png").write_bytes(
        b"png"
    )

    result = runner.invoke(run.cli, ["overview"])

    assert result.exit_code == 0, result.output
    assert "Roadmap" in result.output
    assert "20240101_000000" in result.output


def test_overview_handles_empty_storage(monkeypatch, temp_config):
    _patch_initialize(monkeypatch, temp_config)

    result = runner.invoke(run.cli, ["overview"])

    assert result.exit_code == 0, result.output
    assert "No presentations have been uploaded yet." in result.output
