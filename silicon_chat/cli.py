"""
SiliconChat CLI — a terminal front-end for the conversation controller.

Registered as `silicon-chat` console script via pyproject.toml.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import click

from .backends import AppleFMCapability, EchoCapability
from .controller import RequestController, RequestState
from .exceptions import AppleFMSetupError
from .logging_config import configure_logging
from .protocols import ModelCapability
from .settings import ChatSettings, InMemorySettings, JsonFileSettings, parse_setting
from .store import ChangeKind, Role, StoreChange

ECHO_STREAM_DELAY_SECONDS = 0.03
SETTING_KEYS = ["streaming_enabled", "temperature", "system_instructions"]

HELP_TEXT = """Slash Commands
/help                 Show command help
/new                  Start a new chat (clears the conversation and session)
/clear                Alias for /new
/export [path]        Write the conversation transcript to a file
/settings             Show the settings used for the next message
/quit                 Leave the chat

Press Ctrl-C while a response is streaming to stop it."""


def default_settings_path() -> Path:
    return Path(click.get_app_dir("silicon-chat")) / "settings.json"


@dataclass
class CliContext:
    backend: str
    settings_path: Path

    def load_settings(self) -> JsonFileSettings:
        return JsonFileSettings(self.settings_path)

    def make_capability(self) -> ModelCapability:
        if self.backend == "echo":
            return EchoCapability(delay=ECHO_STREAM_DELAY_SECONDS)
        return AppleFMCapability()


class TranscriptPrinter:
    """Writes assistant text to the terminal as the store changes."""

    def __init__(self, controller: RequestController) -> None:
        self._printed = ""
        self._dirty = False
        self._unsubscribers = [
            controller.store.subscribe(self._on_store_change),
            controller.subscribe_state(self._on_state_change),
        ]

    def _on_store_change(self, change: StoreChange) -> None:
        message = change.message
        if message is None or message.role is not Role.ASSISTANT:
            return
        if change.kind is ChangeKind.APPENDED:
            self._printed = ""
            return
        if message.text.startswith(self._printed):
            click.echo(message.text[len(self._printed) :], nl=False)
        else:
            # The model revised earlier text: print the new version on a fresh line.
            click.echo()
            click.echo(message.text, nl=False)
        self._printed = message.text
        self._dirty = True

    def _on_state_change(self, state: RequestState) -> None:
        if state is RequestState.IDLE and self._dirty:
            click.echo()
            self._dirty = False

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()


@contextlib.contextmanager
def interrupt_cancels(controller: RequestController) -> Iterator[None]:
    """Route Ctrl-C to ``cancel_requested`` while a response is in flight."""
    loop = asyncio.get_running_loop()
    installed = False
    with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
        loop.add_signal_handler(signal.SIGINT, controller.cancel_requested)
        installed = True
    try:
        yield
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _report_error(controller: RequestController) -> bool:
    notice = controller.error
    if not notice.visible:
        return False
    click.secho(notice.message, fg="red", err=True)
    controller.acknowledge_error()
    return True


def _format_settings(settings: ChatSettings) -> str:
    return "\n".join(f"  {key:<20} {value!r}" for key, value in settings.to_dict().items())


# ── Main group ────────────────────────────────────────────────────────────────


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="silicon-chat")
@click.option(
    "--backend",
    type=click.Choice(["apple", "echo"]),
    default="apple",
    show_default=True,
    envvar="SILICON_CHAT_BACKEND",
    help="Model backend. 'echo' needs no Apple Intelligence.",
)
@click.option(
    "--settings-file",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="SILICON_CHAT_SETTINGS",
    default=None,
    help="Settings JSON file (defaults to the per-user app directory).",
)
@click.option("-v", "--verbose", count=True, help="Log more (-v info, -vv debug).")
@click.pass_context
def cli(ctx: click.Context, backend: str, settings_file: Path | None, verbose: int) -> None:
    """SiliconChat — chat with the on-device Apple Foundation Model."""
    configure_logging(verbose)
    ctx.obj = CliContext(backend=backend, settings_path=settings_file or default_settings_path())


# ── Chat ──────────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("prompt", nargs=-1, required=True)
@click.option("--stream/--no-stream", default=None, help="Override the streaming setting.")
@click.option(
    "--temperature",
    type=click.FloatRange(0.0, 2.0),
    default=None,
    help="Override the temperature setting.",
)
@click.pass_obj
def ask(
    obj: CliContext, prompt: tuple[str, ...], stream: bool | None, temperature: float | None
) -> None:
    """Send a single prompt and print the response.

    \b
    Examples:
        silicon-chat ask "Summarize the plot of Hamlet"
        silicon-chat --backend echo ask --no-stream hello
    """
    snapshot = obj.load_settings().snapshot()
    overrides: dict[str, object] = {}
    if stream is not None:
        overrides["streaming_enabled"] = stream
    if temperature is not None:
        overrides["temperature"] = temperature
    settings = InMemorySettings(snapshot)
    if overrides:
        settings.update(**overrides)

    controller = RequestController(obj.make_capability(), settings)
    rc = asyncio.run(_ask(controller, " ".join(prompt)))
    if rc != 0:
        raise SystemExit(rc)


async def _ask(controller: RequestController, prompt: str) -> int:
    printer = TranscriptPrinter(controller)
    try:
        with interrupt_cancels(controller):
            message = await controller.ask(prompt)
    finally:
        printer.close()
        controller.close()
    if _report_error(controller):
        return 1
    if message is None:
        click.secho("Nothing to send: the prompt is blank.", fg="yellow", err=True)
        return 1
    return 0


@cli.command()
@click.pass_obj
def chat(obj: CliContext) -> None:
    """Start an interactive chat session.

    Responses stream into the terminal; Ctrl-C stops the current response and
    Ctrl-D (or /quit) leaves.
    """
    controller = RequestController(obj.make_capability(), obj.load_settings())
    asyncio.run(_chat_loop(controller))


def _read_line() -> str | None:
    click.echo(click.style("you> ", fg="cyan", bold=True), nl=False)
    line = sys.stdin.readline()
    if not line:
        return None
    return line.rstrip("\n").rstrip("\r")


async def _prompt_line() -> str | None:
    """Read one line on a daemon thread.

    A blocked read must not keep the process alive after Ctrl-C, so the default
    executor (joined by ``asyncio.run`` on shutdown) is not used.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[str | None] = loop.create_future()

    def settle(line: str | None, error: BaseException | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(line)

    def reader() -> None:
        try:
            line, error = _read_line(), None
        except Exception as exc:
            line, error = None, exc
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(settle, line, error)

    threading.Thread(target=reader, name="silicon-chat-stdin", daemon=True).start()
    return await future


async def _chat_loop(controller: RequestController) -> None:
    printer = TranscriptPrinter(controller)
    click.secho("SiliconChat — /help for commands, Ctrl-D to quit.", fg="cyan")
    try:
        while True:
            line = await _prompt_line()
            if line is None:
                click.echo()
                break
            text = line.strip()
            if not text:
                continue
            if text.startswith("/"):
                if not _run_slash_command(controller, text):
                    break
                continue

            if controller.submit(line) is None:
                _report_error(controller)
                continue
            with interrupt_cancels(controller):
                await controller.wait_idle()
            _report_error(controller)
    finally:
        printer.close()
        controller.close()


def _run_slash_command(controller: RequestController, text: str) -> bool:
    """Execute a slash command. Returns ``False`` when the chat should end."""
    command, _, argument = text.partition(" ")
    command = command.lower()
    argument = argument.strip()

    if command in {"/quit", "/exit"}:
        return False
    if command == "/help":
        click.echo(HELP_TEXT)
    elif command in {"/new", "/clear"}:
        controller.reset_conversation()
        click.secho("Started a new chat.", fg="green")
    elif command == "/export":
        target = Path(argument or "silicon-chat-transcript.txt").expanduser()
        try:
            target.write_text(controller.store.to_transcript() + "\n", encoding="utf-8")
        except OSError as exc:
            click.secho(f"Could not export transcript: {exc}", fg="red", err=True)
        else:
            click.secho(f"Exported {len(controller.store)} messages to {target}", fg="green")
    elif command == "/settings":
        click.echo(_format_settings(controller.settings.snapshot()))
    else:
        click.secho(f"Unknown command: {command}. Try /help.", fg="yellow", err=True)
    return True


# ── Doctor ────────────────────────────────────────────────────────────────────


@cli.command()
@click.pass_obj
def doctor(obj: CliContext) -> None:
    """Check whether the selected model backend can serve requests."""
    try:
        capability = obj.make_capability()
    except AppleFMSetupError as exc:
        click.secho(str(exc), fg="red", err=True)
        raise SystemExit(2) from exc

    if capability.is_available():
        click.secho(f"Model available ({obj.backend} backend).", fg="green")
        return
    reason = capability.unavailability_reason()
    description = reason.description if reason is not None else "Unknown reason"
    click.secho(f"Model unavailable. Reason: {description}", fg="red", err=True)
    raise SystemExit(1)


# ── Settings ──────────────────────────────────────────────────────────────────


@cli.group()
def settings() -> None:
    """Show or change persisted chat settings."""


@settings.command(name="show")
@click.pass_obj
def settings_show(obj: CliContext) -> None:
    """Print the current settings."""
    click.secho(f"Settings file: {obj.settings_path}", fg="cyan")
    click.echo(_format_settings(obj.load_settings().snapshot()))


@settings.command(name="set")
@click.argument("key", type=click.Choice(SETTING_KEYS))
@click.argument("value")
@click.pass_obj
def settings_set(obj: CliContext, key: str, value: str) -> None:
    """Change one setting. Temperature is clamped to 0.0–2.0.

    \b
    Examples:
        silicon-chat settings set temperature 0.3
        silicon-chat settings set streaming_enabled off
        silicon-chat settings set system_instructions "Answer in French."
    """
    try:
        parsed = parse_setting(key, value)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="VALUE") from exc
    updated = obj.load_settings().update(**{key: parsed})
    click.secho(f"{key} = {getattr(updated, key)!r}", fg="green")


@settings.command(name="reset")
@click.pass_obj
def settings_reset(obj: CliContext) -> None:
    """Restore default settings."""
    obj.load_settings().reset()
    click.secho("Settings restored to defaults.", fg="green")


# ── Entry point ───────────────────────────────────────────────────────────────


def cli_entry() -> None:
    """Entry point for the console_scripts."""
    try:
        cli()
    except AppleFMSetupError as exc:
        click.secho(str(exc), fg="red", err=True)
        raise SystemExit(2) from exc


if __name__ == "__main__":
    cli_entry()
