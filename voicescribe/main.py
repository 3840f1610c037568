"""Command line entry point for VoiceScribe."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from .config import VoiceScribeConfig
from .errors import ConfigurationError, TranscriptionRequestError

logger = logging.getLogger(__name__)
console = Console()

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def setup_logging(config: VoiceScribeConfig, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/voicescribe.log')
    console_output = config.get('logging.console_output', True)

    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("VoiceScribe starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def _client(config: VoiceScribeConfig):
    from .transcription.client import TranscriptionClient
    return TranscriptionClient(config.get_server_url())


@click.group()
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help="Path to configuration YAML file (default: looks for voicescribe.yaml)")
@click.option('--log-level', type=click.Choice(LOG_LEVELS, case_sensitive=False), default=None,
              help="Set logging level (default: from config, INFO)")
@click.version_option("0.1.0", prog_name="VoiceScribe")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], log_level: Optional[str]) -> None:
    """VoiceScribe - voice recording with transcription and speaker labeling."""
    try:
        config = VoiceScribeConfig(config_path)
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(str(e))
    setup_logging(config, log_level or config.get('logging.level', 'INFO'))
    ctx.obj = config


@cli.command()
@click.option('--host', default=None, help="Interface to bind (default: server.host)")
@click.option('--port', type=int, default=None, help="Port to listen on (default: server.port)")
@click.option('--allow-missing', is_flag=True,
              help="Start even if credentials are missing; affected endpoints answer with an error")
@click.pass_obj
def serve(config: VoiceScribeConfig, host: Optional[str], port: Optional[int], allow_missing: bool) -> None:
    """Run the transcription HTTP server."""
    from .server import run_server
    from .services import build_service

    try:
        config.validate()
    except ConfigurationError as e:
        if not allow_missing:
            console.print(f"❌ {e}", style="bold red")
            logger.error(str(e))
            sys.exit(1)
        console.print(f"⚠️  {e} - starting in degraded mode", style="yellow")
        logger.warning(f"{e} - starting in degraded mode")

    service = build_service(config)
    run_server(service, host or config.get('server.host', '0.0.0.0'), port or config.get('server.port', 3000))


@cli.command()
@click.option('--diarize', is_flag=True, help="Label speakers when transcribing")
@click.option('--speakers', type=click.IntRange(min=2), default=2, show_default=True,
              help="Expected number of speakers")
@click.option('--name', 'names', multiple=True, help="Speaker name, repeat in speaking order")
@click.pass_obj
def record(config: VoiceScribeConfig, diarize: bool, speakers: int, names) -> None:
    """Open the interactive recorder."""
    from .audio import CaptureController
    from .models.api import SubmitOptions
    from .ui.recorder_screen import RecorderScreen, RecorderSession

    controller = CaptureController(
        sample_rate=config.get('audio.sample_rate', 16000),
        chunk_size=config.get('audio.chunk_size', 1024),
        channels=config.get('audio.channels', 1),
    )
    options = SubmitOptions(diarize=diarize or bool(names), expected_speaker_count=speakers,
                            speaker_names=list(names) or None)
    session = RecorderSession(controller, _client(config))
    RecorderScreen(session, options=options, console=console).run()


@cli.command()
@click.pass_obj
def history(config: VoiceScribeConfig) -> None:
    """List stored transcriptions with total usage."""
    from .ui.conversation_view import render_history

    try:
        page = asyncio.run(_client(config).list_transcriptions())
    except TranscriptionRequestError as e:
        raise click.ClickException(str(e))
    console.print(render_history(page))


@cli.command()
@click.argument('record_id')
@click.pass_obj
def delete(config: VoiceScribeConfig, record_id: str) -> None:
    """Delete one transcription and its audio."""
    try:
        message = asyncio.run(_client(config).delete_transcription(record_id))
    except TranscriptionRequestError as e:
        raise click.ClickException(str(e))
    console.print(f"🗑️  {message}", style="yellow")


@cli.command()
@click.confirmation_option(prompt="Delete all transcriptions?")
@click.pass_obj
def clear(config: VoiceScribeConfig) -> None:
    """Delete every transcription and its audio."""
    try:
        deleted = asyncio.run(_client(config).clear_transcriptions())
    except TranscriptionRequestError as e:
        raise click.ClickException(str(e))
    console.print(f"🗑️  Deleted {deleted} transcriptions", style="yellow")


@cli.command('check-config')
@click.pass_obj
def check_config(config: VoiceScribeConfig) -> None:
    """Show which settings are configured; exit 1 if required ones are missing."""
    table = Table(title="VoiceScribe configuration")
    table.add_column("Setting")
    table.add_column("Status")

    missing = config.missing_settings()
    for name in ('OPENAI_API_KEY', 'BLOB_READ_WRITE_TOKEN', 'GOOGLE_APPLICATION_CREDENTIALS'):
        table.add_row(name, "[red]missing[/red]" if name in missing else "[green]ok[/green]")
    table.add_row("Config file", str(config.config_file or "(defaults)"))
    table.add_row("Speech-to-text", f"{config.get_stt_backend_name()} "
                  f"({'ready' if config.has_speech_to_text() else 'not configured'})")
    table.add_row("Speaker labeling", "ready" if config.has_labeling() else "[red]not configured[/red]")
    table.add_row("Object storage", f"{config.get('storage.backend', 'vercel')} "
                  f"({'ready' if config.has_object_storage() else 'not configured'})")
    table.add_row("Database", config.get_database_url().split('@')[-1])
    table.add_row("App URL", config.get_app_url())
    console.print(table)

    if missing:
        console.print(f"❌ Missing required settings: {', '.join(missing)}", style="bold red")
        sys.exit(1)
    console.print("✅ All required settings present", style="green")


def main() -> None:
    """Main entry point for VoiceScribe."""
    cli()


if __name__ == "__main__":
    main()
