"""Entry-point for the Deckshow application."""

from __future__ import annotations

import inspect
import logging
import threading
import time
import webbrowser
from pathlib import Path
from typing import Optional

import uvicorn
import typer

from deckshow.bootstrap import initialize_app
from deckshow.logging_utils import configure_logging
from deckshow.processing import PyMuPDFRasterizationPipeline
from deckshow.services.ingestion import (
    UploadOrchestrator,
    UploadRejected,
    UploadRequest,
    UploadedDocument,
)
from deckshow.services.storage import FileSystemSlideSetRepository
from deckshow.ui.overview import OverviewUI
from deckshow.web import create_app


LOGGER = logging.getLogger("deckshow.cli")


cli = typer.Typer(add_completion=False, help="Deckshow management commands")


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None, open_browser=True)


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip().rstrip("/")
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="DECKSHOW_ROOT_PATH",
    ),
    open_browser: bool = typer.Option(
        True,
        "--open-browser/--no-browser",
        help="Open the slideshow in a browser once the server starts",
    ),
) -> None:
    """Run the FastAPI-powered slideshow server."""

    app_config = initialize_app()
    configure_logging(storage_root=app_config.storage_root)

    repository = FileSystemSlideSetRepository(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(repository, config=app_config, root_path=normalized_root)

    config_kwargs = {}
    if app_config.max_upload_bytes > 0:
        config_signature = inspect.signature(uvicorn.Config.__init__)
        if "limit_max_request_size" in config_signature.parameters:
            config_kwargs["limit_max_request_size"] = app_config.max_upload_bytes
        else:
            LOGGER.warning(
                "Ignoring max upload size limit; uvicorn.Config does not support "
                "'limit_max_request_size'.",
            )

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
        **config_kwargs,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server

    if open_browser:
        browser_host = host
        if not browser_host or browser_host in {"0.0.0.0", "::"}:
            browser_host = "127.0.0.1"
        url = f"http://{browser_host}:{port}{normalized_root}/slideshow"

        def _open_browser_later() -> None:
            time.sleep(1.0)
            try:
                webbrowser.open(url, new=2, autoraise=True)
            except webbrowser.Error as error:
                LOGGER.debug("Unable to open browser at %s: %s", url, error)

        threading.Thread(target=_open_browser_later, daemon=True).start()

    server.run()


@cli.command()
def overview() -> None:
    """Render an overview of stored projects and their latest slide sets."""

    config = initialize_app()
    configure_logging(storage_root=config.storage_root)

    repository = FileSystemSlideSetRepository(config)
    OverviewUI(repository).run()


@cli.command()
def ingest(
    pdf: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
        help="Path to the slideshow PDF",
    ),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Existing project id"),
    new_project: Optional[str] = typer.Option(
        None, "--new-project", "-n", help="Name of a project to create"
    ),
) -> None:
    """Convert *pdf* into a new slide set without going through the web server."""

    config = initialize_app()
    configure_logging(storage_root=config.storage_root)

    repository = FileSystemSlideSetRepository(config)
    pipeline = PyMuPDFRasterizationPipeline(
        config.slide_dpi,
        max_bytes=config.max_upload_bytes,
        rollback=config.rollback_partial_sets,
    )
    orchestrator = UploadOrchestrator(config, repository, pipeline)

    def _report(done: int, total: int) -> None:
        typer.echo(f"====> Rendered slide {done}/{total}")

    with pdf.open("rb") as handle:
        document = UploadedDocument.from_stream(pdf.name, handle)
        request = UploadRequest(document=document, project_id=project, new_project_name=new_project)
        try:
            plan = orchestrator.prepare(request)
        except UploadRejected as rejection:
            outcome = rejection.outcome
        else:
            typer.echo(f"====> Converting '{pdf.name}' for project '{plan.project_id}'…")
            outcome = orchestrator.run(plan, progress_callback=_report)

    if not outcome.succeeded or outcome.slide_set is None:
        typer.echo(f"Ingestion failed ({outcome.state.value}): {outcome.message}")
        raise typer.Exit(code=1)

    typer.echo("Ingestion completed.")
    typer.echo(f"  Project: {outcome.project_id}")
    typer.echo(f"  Slide set: {outcome.slide_set.set_id} ({outcome.page_count} slide(s))")
    typer.echo(f"  Location: {outcome.slide_set.path}")


if __name__ == "__main__":
    cli()
