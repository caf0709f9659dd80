"""Command-line interface for the SmugMug album importer."""

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from smugmug_importer.api_client import BearerTokenAuth, SmugMugClient
from smugmug_importer.config import DEFAULT_STATE_DIR, SMUGMUG_ALBUM_MAX_SIZE, ImporterConfig
from smugmug_importer.idempotency import IdempotencyLedger
from smugmug_importer.importer import ImportOrchestrator
from smugmug_importer.job_store import FileJobStore
from smugmug_importer.models import AlbumHandle, SourceAlbum, SourcePhoto
from smugmug_importer.tracker import album_chain
from smugmug_importer.utils import load_manifest, scan_albums, stage_photos

app = typer.Typer(
    name="smugmug-importer",
    help="Import photo albums into SmugMug, resumably",
    add_completion=False,
)
console = Console()


def setup_logging(verbose: bool) -> None:
    """Configure logging with Rich handler.

    Args:
        verbose: Enable verbose (DEBUG) logging
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


def load_source(source: Path) -> tuple[list[SourceAlbum], list[SourcePhoto]]:
    """Load albums and photos from a directory tree or a JSON manifest."""
    if source.is_dir():
        return scan_albums(source)
    return load_manifest(source)


async def async_import(
    source: Path,
    job_id: str,
    access_token: str,
    config: ImporterConfig,
) -> int:
    """Async import implementation.

    Args:
        source: Directory of album subdirectories, or a JSON manifest
        job_id: Job id, reused to resume an interrupted import
        access_token: SmugMug API access token
        config: Importer settings

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    logger = logging.getLogger(__name__)

    try:
        albums, photos = load_source(source)

        if not albums:
            logger.warning("No albums found to import")
            return 0

        job_store = FileJobStore(config.state_dir)
        if source.is_dir():
            stage_photos(job_store, job_id, source, photos)

        async with SmugMugClient(auth=BearerTokenAuth(access_token)) as client:
            orchestrator = ImportOrchestrator(client, job_store, config)
            result = await orchestrator.import_all(job_id, albums, photos)

        console.print("\n[bold]Import Summary:[/bold]")
        console.print(f"  Job: {job_id}")
        console.print(f"  [green]Albums imported: {result.albums_imported}/{len(albums)}[/green]")
        console.print(f"  [green]Photos imported: {result.photos_imported}/{len(photos)}[/green]")
        console.print(f"  [red]Failed: {len(result.failures)}[/red]")

        if result.failures:
            console.print("\n[bold red]Failed items:[/bold red]")
            for failure in result.failures:
                console.print(f"  - {failure.label} ({failure.key}): {failure.error_message}")

        if not result.ok:
            console.print(f"\n[bold red]Import aborted: {result.exception}[/bold red]")
            console.print("Run the same command again with the same job id to resume.")
            return 1

        return 1 if result.failures else 0

    except Exception as e:
        logger.error(f"Import failed: {e}", exc_info=True)
        return 1


@app.command("import")
def import_(
    source: Path = typer.Argument(
        ...,
        help="Directory containing album subdirectories, or a JSON manifest",
        exists=True,
        readable=True,
    ),
    job_id: str = typer.Option(
        ...,
        "--job-id",
        "-j",
        envvar="SMUGMUG_JOB_ID",
        help="Job id; rerun with the same id to resume an interrupted import",
    ),
    access_token: str = typer.Option(
        None,
        "--access-token",
        "-t",
        envvar="SMUGMUG_ACCESS_TOKEN",
        help="SmugMug API access token (or set SMUGMUG_ACCESS_TOKEN env var)",
    ),
    state_dir: Path = typer.Option(
        DEFAULT_STATE_DIR,
        "--state-dir",
        envvar="SMUGMUG_STATE_DIR",
        help="Directory where job state is kept between runs",
    ),
    max_album_size: int = typer.Option(
        SMUGMUG_ALBUM_MAX_SIZE,
        "--max-album-size",
        envvar="SMUGMUG_MAX_ALBUM_SIZE",
        min=1,
        help="Maximum number of photos per SmugMug album before overflowing",
    ),
    max_concurrent: int = typer.Option(
        10,
        "--max-concurrent",
        "-c",
        min=1,
        max=50,
        help="Maximum number of concurrent uploads",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Import albums and photos into SmugMug.

    SOURCE is either a directory, where each subdirectory becomes an album of
    the image files it contains, or a JSON manifest listing albums and photos.
    Albums holding more photos than --max-album-size spill into chained
    "-overflow" albums.
    """
    setup_logging(verbose)

    if not access_token:
        console.print(
            "[red]Error: SmugMug access token is required. "
            "Provide via --access-token or SMUGMUG_ACCESS_TOKEN environment variable.[/red]"
        )
        raise typer.Exit(1)

    config = ImporterConfig(
        max_album_size=max_album_size,
        max_concurrent_uploads=max_concurrent,
        state_dir=state_dir,
    )
    exit_code = asyncio.run(async_import(source, job_id, access_token, config))
    raise typer.Exit(exit_code)


@app.command()
def status(
    source: Path = typer.Argument(
        ...,
        help="Directory or JSON manifest the job was started with",
        exists=True,
        readable=True,
    ),
    job_id: str = typer.Option(..., "--job-id", "-j", envvar="SMUGMUG_JOB_ID"),
    state_dir: Path = typer.Option(
        DEFAULT_STATE_DIR, "--state-dir", envvar="SMUGMUG_STATE_DIR"
    ),
) -> None:
    """Show which albums of a job were created and how full they are."""
    albums, _ = load_source(source)
    job_store = FileJobStore(state_dir)
    ledger = IdempotencyLedger(job_store, job_id)

    table = Table(title=f"Job {job_id}")
    table.add_column("Album")
    table.add_column("State")
    table.add_column("Destination")
    table.add_column("Photos", justify="right")

    for album in albums:
        cached = ledger.get_cached_result(album.id)
        if cached is None:
            table.add_row(album.name, ledger.state(album.id).value, "-", "-")
            continue
        handle = AlbumHandle.from_dict(cached)
        for index, progress in enumerate(album_chain(job_store, job_id, handle.uri)):
            label = album.name if index == 0 else ""
            table.add_row(label, "imported", progress.album_uri, str(progress.photo_count))

    console.print(table)


@app.command()
def clean(
    job_id: str = typer.Option(..., "--job-id", "-j", envvar="SMUGMUG_JOB_ID"),
    state_dir: Path = typer.Option(
        DEFAULT_STATE_DIR, "--state-dir", envvar="SMUGMUG_STATE_DIR"
    ),
) -> None:
    """Delete the saved state of a job."""
    FileJobStore(state_dir).delete_job(job_id)
    console.print(f"Removed state for job {job_id}")


if __name__ == "__main__":
    app()
