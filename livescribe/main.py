"""Main application entry point for livescribe."""

import sys
import asyncio
import argparse
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .audio.capture import list_input_devices
from .config import LiveScribeConfig
from .errors import CaptureUnavailable, ConnectionFailed
from .models.transcription import TranscriptDirection, TranscriptEvent
from .services.recording_service import RecordingService
from .transcription.factory import BACKENDS, create_backend
from .transcription.registry import TranscriptionSessionManager

logger = logging.getLogger(__name__)


class Server:
    """Command-line host for one recording session."""

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None,
                 console: Optional[Console] = None):
        """Load configuration and set up logging.

        Args:
            config_path: YAML config file, or None for built-in defaults
            log_level: Overrides `logging.level` from the config
            console: rich Console for transcript output
        """
        self.config = LiveScribeConfig(config_path)
        self.console = console or Console()
        # --log-level wins over the config file
        setup_logging(self.config, log_level or self.config.get("logging.level", "INFO"))
        self.should_exit = False
        self.recording_service: Optional[RecordingService] = None

    def init(self, backend_name: Optional[str] = None, system_audio: Optional[str] = None):
        logger.info("Initializing services...")
        if system_audio is not None:
            self.config.set('audio.system_audio_device', system_audio)

        backend = create_backend(self.config, backend_name)
        manager = TranscriptionSessionManager(
            backend,
            connect_timeout=self.config.get('transcription.connect_timeout', 10.0),
            setup_timeout=self.config.get('transcription.setup_timeout', 10.0),
        )
        self.recording_service = RecordingService(self.config, manager)

    async def run(self, duration: Optional[int]) -> None:
        service = self.recording_service
        await service.start_recording(on_transcript=self.print_event)
        self.console.print("[bold red]● Recording[/bold red] (Ctrl+C to stop)")
        try:
            if duration:
                await asyncio.sleep(duration)
            else:
                while not self.should_exit:
                    await asyncio.sleep(1)
        finally:
            await self.cleanup()

    async def cleanup(self) -> None:
        service = self.recording_service
        if service is None:
            return
        info = await service.stop_recording()
        await service.manager.close()
        service.shutdown()

        if info is not None:
            self.console.print(f"Recording saved: [cyan]{info.audio_file}[/cyan] "
                               f"({info.duration_seconds:.1f}s)")
        text = service.transcript.text
        if text:
            self.console.print(f"\n[bold]Transcript[/bold]\n{text}")

    def print_event(self, event: TranscriptEvent) -> None:
        if event.direction is TranscriptDirection.OUTPUT:
            style = "magenta"
        else:
            style = "green" if event.is_final else "dim"
        stamp = event.timestamp.astimezone().strftime('%H:%M:%S')
        self.console.print(f"[{style}]{stamp} {event.text}[/{style}]")


def print_devices(console: Console) -> None:
    table = Table(title="Input devices")
    table.add_column("Index", justify="right")
    table.add_column("Name")
    table.add_column("Channels", justify="right")
    table.add_column("Rate", justify="right")
    for device in list_input_devices():
        table.add_row(str(device["index"]), device["name"], str(device["channels"]),
                      f"{device['default_sample_rate']:.0f}")
    console.print(table)


def setup_logging(config, level: str = "INFO", console: Optional[Console] = None) -> Path:
    """Configure the root logger: full detail to a rotating file, warnings to the terminal.

    Args:
        config: LiveScribeConfig providing the `logging.*` keys
        level: Root level name
        console: rich Console shared with the transcript output

    Returns:
        Path of the log file
    """
    log_path = Path(config.get('logging.file_path', 'data/logs/livescribe.log'))
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=config.get('logging.max_bytes', 5 * 1024 * 1024),
        backupCount=config.get('logging.backup_count', 3),
        encoding='utf-8',
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s %(threadName)s %(name)s %(levelname)s %(funcName)s:%(lineno)d %(message)s'
    ))
    root_logger.addHandler(file_handler)

    if config.get('logging.console_output', True):
        # Transcript lines go to the same console; keep log noise to warnings.
        rich_handler = RichHandler(
            console=Console(stderr=True) if console is None else console,
            show_path=False,
            rich_tracebacks=True,
        )
        rich_handler.setLevel(logging.WARNING)
        root_logger.addHandler(rich_handler)

    logger.info(f"livescribe {__version__} logging to {log_path} at {level}")
    return log_path


def main() -> None:
    """Main entry point for livescribe."""
    parser = argparse.ArgumentParser(
        description="livescribe - live microphone and system audio transcription"
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: built-in defaults)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config, INFO)"
    )

    parser.add_argument(
        "--backend",
        type=str,
        choices=BACKENDS,
        help="Streaming transcription backend (overrides config)"
    )

    parser.add_argument(
        "--duration",
        type=int,
        help="Stop after this many seconds (default: run until Ctrl+C)"
    )

    parser.add_argument(
        "--system-audio",
        type=str,
        metavar="DEVICE",
        help="Also capture this loopback/monitor input device (name substring)"
    )

    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List audio input devices and exit"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"livescribe {__version__}"
    )

    args = parser.parse_args()

    console = Console()
    if args.list_devices:
        print_devices(console)
        return

    server = Server(args.config, args.log_level, console=console)
    try:
        server.init(args.backend, args.system_audio)
        asyncio.run(server.run(args.duration))
    except KeyboardInterrupt:
        console.print("\nStopped.")
    except (CaptureUnavailable, ConnectionFailed, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        logger.error(f"Application error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
