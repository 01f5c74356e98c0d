import mimetypes
import typer
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.progress import Progress, BarColumn, SpinnerColumn, TextColumn
from rich.table import Table

from vtp.config.loader import load_config
from vtp.config.models import PipelineConfig
from vtp.domain.errors import ConfigurationError
from vtp.domain.events import CleanupFailed, InvocationSkipped, StageChanged, TranscodeProgress
from vtp.domain.models import PipelineState, SourceObject
from vtp.functions import build_orchestrator
from vtp.infrastructure.event_bus import EventBus
from vtp.infrastructure.logging import setup_logging
from vtp.pipeline.paths import derive_paths, matches_intake_prefix, matches_video_directory, requires_transcode

app = typer.Typer(help="VTP (Video Transcode & Publish) - thumbnails and MP4 renditions for Cloud Storage uploads")

console = Console()


def _load(config_path: Optional[Path]) -> PipelineConfig:
    try:
        return load_config(config_path=config_path)
    except (ConfigurationError, FileNotFoundError) as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


@app.command()
def process(
    bucket: str = typer.Argument(..., help="Bucket holding the uploaded object"),
    name: str = typer.Argument(..., help="Full object path inside the bucket"),
    content_type: Optional[str] = typer.Option(None, "--content-type", help="Object content type (guessed from the name if omitted)"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Optional YAML config (environment overrides it)"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Also write logs to this file"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging")
):
    """Run the pipeline once for gs://BUCKET/NAME, as if it had just been finalized."""
    config = _load(config_path)
    if debug:
        config = config.model_copy(update={"debug": True})
    setup_logging(debug=config.debug, log_path=log_path or config.log_path, rich_console=True)

    if content_type is None:
        content_type = mimetypes.guess_type(name)[0] or ""

    event_bus = EventBus()
    orchestrator = build_orchestrator(config, event_bus=event_bus)
    source = SourceObject(bucket=bucket, name=name, content_type=content_type)

    with Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task(f"Transcoding {source.file_name}", total=100, visible=False)

        @event_bus.subscribe(StageChanged)
        def on_stage(event: StageChanged):
            progress.console.print(f"[cyan]{event.state.value}[/cyan] {event.source.name}")

        @event_bus.subscribe(TranscodeProgress)
        def on_progress(event: TranscodeProgress):
            progress.update(task, completed=event.progress_percent, visible=True)

        @event_bus.subscribe(InvocationSkipped)
        def on_skip(event: InvocationSkipped):
            progress.console.print(f"[yellow]Skipped:[/yellow] {event.reason}")

        @event_bus.subscribe(CleanupFailed)
        def on_cleanup_failed(event: CleanupFailed):
            progress.console.print(f"[yellow]Cleanup:[/yellow] {event.error_message}")

        result = orchestrator.handle(source)

    if result.published:
        table = Table(title=f"Published from gs://{bucket}/{name}")
        table.add_column("Object")
        for path in result.published:
            table.add_row(path)
        console.print(table)

    if result.state == PipelineState.FAILED:
        typer.secho(f"Failed: {result.error_message}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.secho(f"✓ {result.state.value}", fg=typer.colors.GREEN)


@app.command()
def paths(
    name: str = typer.Argument(..., help="Object path to derive destinations for"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Optional YAML config (environment overrides it)"),
):
    """Show where NAME's thumbnail and video would be published."""
    config = _load(config_path)
    source = SourceObject(bucket="", name=name)
    derived = derive_paths(source.file_name, source.directory, config)

    accepted = matches_intake_prefix(source.name, config.intake_prefix) and (
        config.video_path is None or matches_video_directory(source.directory, config.video_path)
    )

    table = Table(title=f"Derived paths for {name}")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("thumbnail", derived.thumbnail_cloud_path)
    table.add_row("video", derived.video_cloud_path)
    table.add_row("already target format", "yes" if derived.already_target_format else "no")
    table.add_row("transcode", "yes" if requires_transcode(source.name, derived, config.force_transcode) else "no")
    table.add_row("passes filters", "yes" if accepted else "no")
    console.print(table)


if __name__ == "__main__":
    app()
