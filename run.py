"""Entry-point for the Instructor Hub application."""

from __future__ import annotations

import logging
import threading
import time
import webbrowser
from datetime import date
from pathlib import Path
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn

from instructor_hub.bootstrap import initialize_app
from instructor_hub.config import ADMIN_TOKEN_ENV
from instructor_hub.logging_utils import build_default_handlers, configure_logging
from instructor_hub.services.blobs import BlobStoreError, LocalBlobStore
from instructor_hub.services.categories import is_known_category
from instructor_hub.services.csv_export import build_files_csv, build_income_csv
from instructor_hub.services.export import BulkExporter, ExportCaller, ExportError
from instructor_hub.services.income import IncomeRepository, IncomeValidationError
from instructor_hub.services.naming import build_csv_filename
from instructor_hub.services.progress import ExportProgress, format_progress_message
from instructor_hub.services.storage import FileRepository, MetadataStoreError
from instructor_hub.services.uploads import FileService, UploadError
from instructor_hub.ui.overview import OverviewUI, format_file_size
from instructor_hub.web import create_app
from instructor_hub.web.server import _normalize_root_path, is_admin_token


LOGGER = logging.getLogger("instructor_hub.cli")


cli = typer.Typer(add_completion=False, help="Instructor Hub management commands")


def _prepare_logging(storage_root: Path) -> None:
    configure_logging(handlers=build_default_handlers(storage_root))


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None)


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="INSTRUCTOR_HUB_ROOT_PATH",
    ),
) -> None:
    """Run the FastAPI-powered admin API."""

    app_config = initialize_app()
    _prepare_logging(app_config.storage_root)

    repository = FileRepository(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(repository, config=app_config, root_path=normalized_root)

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server

    browser_host = host
    if not browser_host or browser_host in {"0.0.0.0", "::"}:
        browser_host = "127.0.0.1"
    url = f"http://{browser_host}:{port}{normalized_root}/docs"

    def _open_browser_later() -> None:
        time.sleep(1.0)
        try:
            webbrowser.open(url, new=2, autoraise=True)
        except webbrowser.Error:
            LOGGER.debug("Could not open a browser for %s", url)

    threading.Thread(target=_open_browser_later, daemon=True).start()

    server.run()


@cli.command("export-files")
def export_files(
    output: Path = typer.Option(
        Path("."),
        "--output",
        "-o",
        file_okay=False,
        dir_okay=True,
        help="Directory that receives the ZIP archive.",
    ),
    admin_token: Optional[str] = typer.Option(
        None,
        "--admin-token",
        envvar=ADMIN_TOKEN_ENV,
        help="Administrator token authorising the export.",
    ),
) -> None:
    """Bundle every stored file into one ZIP archive."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    repository = FileRepository(config)
    caller = ExportCaller(identity="cli", is_admin=is_admin_token(config, admin_token))
    console = Console()

    with Progress(
        TextColumn("[bold cyan]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    ) as progress_bar:
        task_id = progress_bar.add_task("Preparing export", total=100)

        def _observe(update: ExportProgress) -> None:
            description = "Compressing archive" if update.phase == "compressing" else update.message
            progress_bar.update(task_id, completed=update.overall, description=description)

        exporter = BulkExporter(
            repository,
            LocalBlobStore(config.blob_root),
            settings=config.export,
            observer=_observe,
        )
        try:
            result = exporter.export_all(caller)
        except ExportError as error:
            progress_bar.stop()
            typer.echo(f"Export failed: {error.user_message}")
            raise typer.Exit(code=1) from error

    output.mkdir(parents=True, exist_ok=True)
    target = output / result.filename
    target.write_bytes(result.archive)

    total = len(result.results)
    typer.echo(
        format_progress_message(
            f"Archived {result.succeeded_count} of {total} file(s)",
            result.succeeded_count,
            total,
        )
    )
    for skipped in result.skipped:
        typer.echo(f"  Skipped {skipped.record.category_id}/{skipped.record.file_name}: {skipped.error}")
    typer.echo(f"Archive saved to: {target} ({format_file_size(result.size)})")


@cli.command("export-csv")
def export_csv(
    output: Path = typer.Option(
        Path("."),
        "--output",
        "-o",
        file_okay=False,
        dir_okay=True,
        help="Directory that receives the CSV file.",
    ),
    income: bool = typer.Option(
        False,
        "--income",
        help="Export revenue entries instead of file metadata.",
    ),
) -> None:
    """Write file metadata (or revenue entries) to a CSV file."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    try:
        if income:
            content = build_income_csv(IncomeRepository(config).list_income())
            filename = build_csv_filename("income-export")
        else:
            content = build_files_csv(FileRepository(config).list_all_files())
            filename = build_csv_filename("files-export")
    except ExportError as error:
        typer.echo(error.user_message)
        raise typer.Exit(code=1) from error

    output.mkdir(parents=True, exist_ok=True)
    target = output / filename
    target.write_text(content, encoding="utf-8")
    typer.echo(f"CSV saved to: {target}")


@cli.command()
def upload(
    path: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
        help="File to store.",
    ),
    category: str = typer.Option(..., "--category", "-c", help="Category identifier"),
    organization: str = typer.Option("", help="Organization the file belongs to"),
) -> None:
    """Store *path* under the given category."""

    if not is_known_category(category):
        raise typer.BadParameter(f"Unknown category '{category}'.", param_hint="--category")

    config = initialize_app()
    _prepare_logging(config.storage_root)

    service = FileService(FileRepository(config), LocalBlobStore(config.blob_root))
    try:
        record = service.upload(
            path.name,
            path.read_bytes(),
            category_id=category,
            organization=organization,
        )
    except UploadError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error
    except (BlobStoreError, MetadataStoreError) as error:
        typer.echo(f"Upload failed: {error}")
        raise typer.Exit(code=1) from error

    typer.echo(f'Successfully uploaded "{record.file_name}" (id={record.id})')


@cli.command("add-income")
def add_income(
    amount: float = typer.Option(..., help="Amount received"),
    organization: str = typer.Option(..., help="Paying organization"),
    entry_date: Optional[str] = typer.Option(
        None,
        "--date",
        help="Date of the payment (YYYY-MM-DD); defaults to today",
    ),
    notes: Optional[str] = typer.Option(None, help="Free-form notes"),
) -> None:
    """Record a revenue entry."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    repository = IncomeRepository(config)
    try:
        income_id = repository.add_income(
            amount,
            organization,
            entry_date or date.today().isoformat(),
            notes=notes,
            created_by="cli",
        )
    except IncomeValidationError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error
    except MetadataStoreError as error:
        typer.echo("Failed to save income data. Please try again.")
        raise typer.Exit(code=1) from error

    typer.echo(f"Income entry saved (id={income_id})")


@cli.command()
def overview() -> None:
    """Render an overview of stored files and revenue."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    ui = OverviewUI(FileRepository(config), IncomeRepository(config))
    ui.run()


if __name__ == "__main__":
    cli()
