"""Tests for the silicon-chat CLI, run against the echo backend."""

import logging
import os
import select
import signal
import subprocess
import sys
import time
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from silicon_chat.backends import EchoCapability
from silicon_chat.cli import cli
from silicon_chat.protocols import UnavailabilityReason
from silicon_chat.settings import JsonFileSettings


@pytest.fixture
def settings_file(tmp_path):
    return tmp_path / "settings.json"


@pytest.fixture(autouse=True)
def restore_chat_logger():
    logger = logging.getLogger("silicon_chat")
    saved_handlers, saved_level = list(logger.handlers), logger.level
    yield
    logger.handlers[:] = saved_handlers
    logger.setLevel(saved_level)


def invoke(settings_file, *args, input=None):
    runner = CliRunner()
    return runner.invoke(
        cli,
        ["--backend", "echo", "--settings-file", str(settings_file), *args],
        input=input,
    )


class TestAsk:
    def test_streaming(self, settings_file):
        result = invoke(settings_file, "ask", "hello", "world")

        assert result.exit_code == 0, result.output
        assert "Echo: hello world" in result.output

    def test_non_streaming(self, settings_file):
        result = invoke(settings_file, "ask", "--no-stream", "hello")

        assert result.exit_code == 0, result.output
        assert "Echo: hello" in result.output

    def test_overrides_are_not_persisted(self, settings_file):
        result = invoke(settings_file, "ask", "--no-stream", "--temperature", "1.5", "hi")

        assert result.exit_code == 0, result.output
        assert not settings_file.exists()

    def test_temperature_out_of_range(self, settings_file):
        result = invoke(settings_file, "ask", "--temperature", "3", "hi")

        assert result.exit_code == 2

    def test_blank_prompt(self, settings_file):
        result = invoke(settings_file, "ask", "   ")

        assert result.exit_code == 1
        assert "blank" in result.output

    def test_unavailable_model(self, settings_file):
        unavailable = EchoCapability(unavailable_reason=UnavailabilityReason.ASSETS_NOT_READY)
        with patch("silicon_chat.cli.CliContext.make_capability", return_value=unavailable):
            result = invoke(settings_file, "ask", "hello")

        assert result.exit_code == 1
        assert "Model assets not downloaded" in result.output


class TestChat:
    def test_conversation_and_commands(self, settings_file, tmp_path):
        export_path = tmp_path / "transcript.txt"
        script = "\n".join(
            [
                "hello",
                "/settings",
                f"/export {export_path}",
                "/new",
                "/bogus",
                "/quit",
            ]
        )

        result = invoke(settings_file, "chat", input=script + "\n")

        assert result.exit_code == 0, result.output
        assert "Echo: hello" in result.output
        assert "streaming_enabled" in result.output
        assert "Started a new chat." in result.output
        assert "Unknown command: /bogus" in result.output
        assert export_path.read_text(encoding="utf-8") == "You: hello\n\nAssistant: Echo: hello\n"

    def test_end_of_input_leaves(self, settings_file):
        result = invoke(settings_file, "chat", input="/help\n")

        assert result.exit_code == 0, result.output
        assert "Slash Commands" in result.output


class TestDoctor:
    def test_available(self, settings_file):
        result = invoke(settings_file, "doctor")

        assert result.exit_code == 0
        assert "Model available (echo backend)." in result.output

    def test_unavailable(self, settings_file):
        unavailable = EchoCapability(unavailable_reason=UnavailabilityReason.DEVICE_INELIGIBLE)
        with patch("silicon_chat.cli.CliContext.make_capability", return_value=unavailable):
            result = invoke(settings_file, "doctor")

        assert result.exit_code == 1
        assert "Device not eligible" in result.output


class TestSettingsCommands:
    def test_set_show_reset(self, settings_file):
        result = invoke(settings_file, "settings", "set", "temperature", "5")
        assert result.exit_code == 0, result.output
        assert "temperature = 2.0" in result.output
        assert JsonFileSettings(settings_file).snapshot().temperature == 2.0

        result = invoke(settings_file, "settings", "set", "streaming_enabled", "off")
        assert result.exit_code == 0, result.output

        result = invoke(settings_file, "settings", "show")
        assert "False" in result.output
        assert str(settings_file) in result.output

        result = invoke(settings_file, "settings", "reset")
        assert result.exit_code == 0
        assert JsonFileSettings(settings_file).snapshot().streaming_enabled is True

    def test_bad_value(self, settings_file):
        result = invoke(settings_file, "settings", "set", "streaming_enabled", "maybe")

        assert result.exit_code == 2

    def test_unknown_key(self, settings_file):
        result = invoke(settings_file, "settings", "set", "top_p", "0.9")

        assert result.exit_code == 2

    def test_persisted_settings_drive_ask(self, settings_file):
        invoke(settings_file, "settings", "set", "streaming_enabled", "off")

        result = invoke(settings_file, "ask", "hello")

        assert result.exit_code == 0, result.output
        assert "Echo: hello" in result.output


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
class TestInterrupt:
    def test_ctrl_c_at_prompt_exits(self, settings_file):
        env = dict(os.environ)
        env.update(SILICON_CHAT_BACKEND="echo", SILICON_CHAT_SETTINGS=str(settings_file))
        proc = subprocess.Popen(
            [sys.executable, "-m", "silicon_chat.cli", "chat"],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            env=env,
            cwd=str(Path(__file__).resolve().parent.parent),
        )
        try:
            assert b"you> " in read_until(proc.stdout, b"you> ", timeout=15)

            proc.send_signal(signal.SIGINT)

            assert proc.wait(timeout=10) != 0
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()
            proc.stdin.close()
            proc.stdout.close()


def read_until(stream, marker, timeout):
    deadline = time.monotonic() + timeout
    seen = b""
    while marker not in seen:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        ready, _, _ = select.select([stream], [], [], remaining)
        if not ready:
            break
        chunk = os.read(stream.fileno(), 1024)
        if not chunk:
            break
        seen += chunk
    return seen
