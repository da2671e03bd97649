"""Unit tests for the command-line entry point helpers."""

import io
import logging
import sys
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from rich.console import Console
from rich.logging import RichHandler

from livescribe import main as cli
from livescribe.config import LiveScribeConfig
from livescribe.models.transcription import TranscriptDirection, TranscriptEvent


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.mark.unit
class TestSetupLogging:

    def test_file_and_console_handlers(self, temp_data_dir, restore_root_logger):
        config = LiveScribeConfig()
        config.set('logging.file_path', f"{temp_data_dir}/logs/test.log")

        path = cli.setup_logging(config, "DEBUG")
        logging.getLogger("livescribe.test").debug("hello from test")
        for handler in logging.getLogger().handlers:
            handler.flush()

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert any(isinstance(h, RichHandler) and h.level == logging.WARNING for h in root.handlers)
        assert "hello from test" in path.read_text()

    def test_console_output_disabled(self, temp_data_dir, restore_root_logger):
        config = LiveScribeConfig()
        config.set('logging.file_path', f"{temp_data_dir}/test.log")
        config.set('logging.console_output', False)

        cli.setup_logging(config, "INFO")

        assert not any(isinstance(h, RichHandler) for h in logging.getLogger().handlers)


@pytest.mark.unit
class TestConsoleOutput:

    def test_print_event_shows_text(self, temp_data_dir, restore_root_logger):
        config_path = f"{temp_data_dir}/livescribe.yaml"
        with open(config_path, "w") as f:
            f.write("logging:\n  console_output: false\n")
        output = io.StringIO()
        server = cli.Server(config_path, console=Console(file=output, force_terminal=False))

        server.print_event(TranscriptEvent(text="hello world"))
        server.print_event(TranscriptEvent(
            text="reply", direction=TranscriptDirection.OUTPUT, is_final=False,
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc)))

        text = output.getvalue()
        assert "hello world" in text
        assert "reply" in text

    def test_list_devices(self):
        output = io.StringIO()
        devices = [{"index": 2, "name": "USB Microphone", "channels": 1,
                    "default_sample_rate": 48000.0}]

        with patch.object(cli, "list_input_devices", return_value=devices), \
                patch.object(cli, "Console", return_value=Console(file=output, width=120)), \
                patch.object(sys, "argv", ["livescribe", "--list-devices"]):
            cli.main()

        assert "USB Microphone" in output.getvalue()

    def test_missing_api_key_exits(self, temp_data_dir, monkeypatch, restore_root_logger):
        for name in ("VITE_OPENAI_API_KEY", "OPENAI_API_KEY", "VITE_AZURE_OPENAI_API_KEY"):
            monkeypatch.delenv(name, raising=False)
        config_path = f"{temp_data_dir}/livescribe.yaml"
        with open(config_path, "w") as f:
            f.write("logging:\n  console_output: false\n")
        output = io.StringIO()

        with patch.object(cli, "Console", return_value=Console(file=output, width=120)), \
                patch.object(sys, "argv", ["livescribe", "--config", config_path]):
            with pytest.raises(SystemExit) as exc_info:
                cli.main()

        assert exc_info.value.code == 1
        assert "API key" in output.getvalue()
