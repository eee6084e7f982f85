#!/usr/bin/env python
"""Batch generation script: run a file of requests through the pipeline locally."""

import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent / "src"))

from api.dependencies import close_services, get_config, get_pipeline, get_pipeline_config
from models.batch import BatchJob
from services.batch_input import load_batch_file
from services.batch_orchestrator import BatchOrchestrator, BatchValidationError
from utils.config import setup_cli_logging, validate_config

logger = logging.getLogger(__name__)
console = Console()

USAGE = """Usage: python batch_process.py <requests.ndjson|json|yaml> [category_id] [voice_id]

Example NDJSON (one request per line):
{"Título da Oração": "Morning Peace", "Base bíblica": "John 14:27", "Tema central": "peace", "Playlist": "Calm"}

Example YAML:
category_id: morning
requests:
  - title: Morning Peace
    theme: peace
    scriptural_basis: John 14:27
    playlist_names: [Calm]
    positions: {Calm: 1}
"""


def render_summary(job: BatchJob) -> Table:
    """Build the per-item summary table."""
    table = Table(title=f"Batch {job.job_id} ({job.state.value})")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Audio")
    table.add_column("Image")
    table.add_column("Playlists")
    table.add_column("Error")

    colours = {"success": "green", "error": "red", "pending": "yellow", "running": "cyan"}
    for result in job.results:
        status = result.status.value
        links = ", ".join(f"{link.playlist_name}:{link.action.value}" for link in result.playlist_links)
        table.add_row(
            str(result.index + 1),
            result.fields.get("title") or result.request.title,
            f"[{colours.get(status, 'white')}]{status}[/]",
            f"{result.duration_seconds}s" if result.audio_url else "-",
            "yes" if result.image_url else "-",
            links or "-",
            result.error or "",
        )
    return table


async def log_item_progress(job: BatchJob) -> None:
    progress = job.progress()
    current = progress.current_item
    if current and current.get("step"):
        logger.debug(f"[{current['index'] + 1}/{progress.total}] {current['title']}: {current['step']}")


async def process_batch(batch_path: Path, category_id: str | None, voice_id: str | None) -> int:
    """Run every request in the file and print a summary.

    Returns:
        Process exit code (0 when every item succeeded)
    """
    parsed = load_batch_file(batch_path, category_id=category_id, voice_id=voice_id)
    for error in parsed.errors:
        logger.warning(f"Line {error.line} rejected: {error.message}")
    if not parsed.requests:
        logger.error("No valid requests in batch file")
        return 1

    pipeline_config = get_pipeline_config()
    orchestrator = BatchOrchestrator(
        await get_pipeline(), pipeline_config, listeners=[log_item_progress]
    )

    try:
        handle = orchestrator.submit(parsed.requests)
    except BatchValidationError as e:
        logger.error(str(e))
        return 1

    logger.info(f"Starting batch {handle.job_id}: {handle.job.total} item(s)")
    try:
        job = await handle.wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        handle.cancel()
        job = await handle.wait()

    console.print(render_summary(job))
    console.print(
        f"Succeeded: [green]{job.success_count}[/]  Failed: [red]{job.failed_count}[/]  "
        f"Not run: {job.total - job.completed_count}"
    )
    if job.halt_reason:
        console.print(f"[red]Halted:[/] {job.halt_reason}")
    return 0 if job.success_count == job.total else 2


async def main() -> None:
    """Main entry point for batch processing."""
    config = get_config()
    setup_cli_logging(config.get("log_level", "INFO"))

    if len(sys.argv) < 2:
        print(USAGE)
        sys.exit(1)

    errors = validate_config(config)
    if errors:
        for error in errors:
            logger.error(f"Configuration: {error}")
        sys.exit(1)

    batch_path = Path(sys.argv[1])
    category_id = sys.argv[2] if len(sys.argv) > 2 else None
    voice_id = sys.argv[3] if len(sys.argv) > 3 else None

    try:
        exit_code = await process_batch(batch_path, category_id, voice_id)
    except (OSError, ValueError) as e:
        logger.error(f"Batch processing failed: {e}")
        exit_code = 1
    finally:
        await close_services()
    sys.exit(exit_code)


if __name__ == "__main__":
    asyncio.run(main())
