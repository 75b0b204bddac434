"""Desktop chat window for the on-device Apple Foundation Model, built with Toga.

Highlights:
- streaming responses rendered as they arrive
- a single Send/Stop button
- New Chat clears the conversation and the model session
- settings window for streaming, temperature and system instructions
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import toga
from toga.style import Pack
from toga.style.pack import COLUMN, ROW

from silicon_chat import (
    AppleFMCapability,
    EchoCapability,
    ErrorNotice,
    JsonFileSettings,
    RequestController,
    RequestState,
    Role,
)
from silicon_chat.logging_config import configure_logging
from silicon_chat.settings import clamp_temperature

SETTINGS_FILENAME = "settings.json"
TEMPERATURE_TICKS = 21

FONT_SIZE_SECTION = 12
FONT_SIZE_BODY = 11

COLOR_APP_BG = "#0E1218"
COLOR_PANEL_BG = "#151C26"
COLOR_TEXTAREA_BG = "#1A1E26"
COLOR_ACCENT = "#5E9BFF"
COLOR_DANGER = "#C24E5E"
COLOR_TEXT_PRIMARY = "#F6FAFF"
COLOR_TEXT_MUTED = "#9AA8BC"


def secondary_button_style() -> Pack:
    return Pack(
        flex=1,
        margin=(6, 8, 6, 0),
        background_color=COLOR_PANEL_BG,
        color=COLOR_TEXT_PRIMARY,
    )


class SiliconChatApp(toga.App):
    """Toga desktop app wrapping a ``RequestController``."""

    def startup(self) -> None:
        """Build UI and wire it to the controller."""
        configure_logging(int(os.environ.get("SILICON_CHAT_VERBOSE", "0") or 0))
        self.settings = JsonFileSettings(self._settings_path())
        if os.environ.get("SILICON_CHAT_BACKEND") == "echo":
            capability = EchoCapability(delay=0.03)
        else:
            capability = AppleFMCapability()
        self.capability = capability
        self.controller = RequestController(capability, self.settings)

        self.settings_window: toga.Window | None = None
        self.settings_stream_switch: toga.Switch | None = None
        self.settings_temperature_slider: toga.Slider | None = None
        self.settings_temperature_label: toga.Label | None = None
        self.settings_instructions_input: toga.MultilineTextInput | None = None
        self._error_task: asyncio.Task | None = None

        self._build_ui()
        self._unsubscribers = [
            self.controller.store.subscribe(lambda change: self._render_transcript()),
            self.controller.subscribe_state(self._on_state_change),
            self.controller.subscribe_errors(self._on_error),
        ]
        self._on_state_change(self.controller.state)
        self.main_window.show()

    def _settings_path(self) -> Path:
        """Resolve app-local settings path."""
        try:
            config_dir = Path(self.paths.config)
        except (AttributeError, RuntimeError):
            config_dir = Path.home() / ".silicon_chat"
        config_dir.mkdir(parents=True, exist_ok=True)
        return config_dir / SETTINGS_FILENAME

    def _build_ui(self) -> None:
        """Create the main window: transcript, prompt and action row."""
        self.transcript_view = toga.MultilineTextInput(
            readonly=True,
            style=Pack(
                flex=1,
                margin=(14, 14, 10, 14),
                background_color=COLOR_TEXTAREA_BG,
                color=COLOR_TEXT_PRIMARY,
                font_size=FONT_SIZE_BODY,
            ),
        )
        self.prompt_input = toga.MultilineTextInput(
            placeholder="Message the on-device model...",
            style=Pack(
                height=110,
                margin=(0, 14, 10, 14),
                background_color=COLOR_TEXTAREA_BG,
                color=COLOR_TEXT_PRIMARY,
                font_size=FONT_SIZE_BODY,
            ),
        )
        self.new_chat_button = toga.Button(
            "New Chat",
            on_press=self.on_new_chat,
            style=secondary_button_style(),
        )
        self.settings_button = toga.Button(
            "Settings",
            on_press=self.on_open_settings,
            style=secondary_button_style(),
        )
        self.send_button = toga.Button(
            "Send",
            on_press=self.on_send_or_stop,
            style=Pack(
                flex=1,
                margin=(6, 0, 6, 8),
                background_color=COLOR_ACCENT,
                color="#FFFFFF",
                font_weight="bold",
            ),
        )
        action_row = toga.Box(style=Pack(direction=ROW, margin=(0, 14, 14, 14)))
        action_row.add(self.new_chat_button)
        action_row.add(self.settings_button)
        action_row.add(self.send_button)

        root = toga.Box(style=Pack(direction=COLUMN, flex=1, background_color=COLOR_APP_BG))
        root.add(self.transcript_view)
        root.add(self.prompt_input)
        root.add(action_row)

        self.main_window = toga.MainWindow(title=self.formal_name, size=(720, 640))
        self.main_window.content = root

    # Rendering

    def _render_transcript(self) -> None:
        """Render the conversation store into the transcript view."""
        blocks = []
        for message in self.controller.store:
            role = "You" if message.role is Role.USER else "Assistant"
            text = message.text
            if message.role is Role.ASSISTANT and not text and self.controller.is_responding:
                text = "..."
            blocks.append(f"{role}\n{text}")
        if not blocks:
            self.transcript_view.value = "Send a message to start chatting."
            return
        self.transcript_view.value = "\n\n".join(blocks)

    def _on_state_change(self, state: RequestState) -> None:
        responding = state is RequestState.RESPONDING
        self.send_button.text = "Stop" if responding else "Send"
        self.send_button.style.background_color = COLOR_DANGER if responding else COLOR_ACCENT
        self.prompt_input.readonly = responding
        self._render_transcript()

    def _on_error(self, notice: ErrorNotice) -> None:
        if not notice.visible:
            return
        self._error_task = asyncio.create_task(self._show_error(notice))

    async def _show_error(self, notice: ErrorNotice) -> None:
        await self.main_window.dialog(toga.ErrorDialog("Error", notice.message))
        self.controller.acknowledge_error()

    # Actions

    async def on_send_or_stop(self, widget: toga.Widget) -> None:
        """Send the prompt, or stop the response in progress."""
        del widget
        if self.controller.is_responding:
            self.controller.handle_send_or_stop("")
            return
        text = self.prompt_input.value or ""
        if self.controller.handle_send_or_stop(text) is not None:
            self.prompt_input.value = ""

    async def on_new_chat(self, widget: toga.Widget) -> None:
        """Start a fresh conversation with a fresh model session."""
        del widget
        self.controller.reset_conversation()
        self.prompt_input.value = ""

    async def on_open_settings(self, widget: toga.Widget) -> None:
        """Open the settings window."""
        del widget
        if self.settings_window is not None:
            self.settings_window.show()
            return

        current = self.settings.snapshot()
        self.settings_stream_switch = toga.Switch(
            "Stream responses",
            value=current.streaming_enabled,
            style=Pack(margin_bottom=10, color=COLOR_TEXT_PRIMARY),
        )
        self.settings_temperature_label = toga.Label(
            self._temperature_caption(current.temperature),
            style=Pack(color=COLOR_TEXT_MUTED, font_size=FONT_SIZE_BODY),
        )
        self.settings_temperature_slider = toga.Slider(
            min=0.0,
            max=2.0,
            tick_count=TEMPERATURE_TICKS,
            value=current.temperature,
            on_change=self.on_temperature_change,
            style=Pack(margin_bottom=10),
        )
        self.settings_instructions_input = toga.MultilineTextInput(
            value=current.system_instructions,
            style=Pack(
                height=110,
                margin_bottom=10,
                background_color=COLOR_TEXTAREA_BG,
                color=COLOR_TEXT_PRIMARY,
            ),
        )

        form = toga.Box(style=Pack(direction=COLUMN, margin=14, background_color=COLOR_PANEL_BG))
        form.add(
            toga.Label(
                "Chat Settings",
                style=Pack(
                    color=COLOR_TEXT_PRIMARY,
                    font_size=FONT_SIZE_SECTION,
                    font_weight="bold",
                    margin_bottom=8,
                ),
            )
        )
        form.add(self.settings_stream_switch)
        form.add(self.settings_temperature_label)
        form.add(self.settings_temperature_slider)
        form.add(
            toga.Label(
                "System instructions",
                style=Pack(color=COLOR_TEXT_MUTED, font_size=FONT_SIZE_BODY),
            )
        )
        form.add(self.settings_instructions_input)

        button_row = toga.Box(style=Pack(direction=ROW, margin_top=8))
        button_row.add(
            toga.Button("Cancel", on_press=self.on_cancel_settings, style=secondary_button_style())
        )
        button_row.add(
            toga.Button(
                "Save",
                on_press=self.on_save_settings,
                style=Pack(
                    flex=1,
                    margin=(6, 0, 6, 8),
                    background_color=COLOR_ACCENT,
                    color="#FFFFFF",
                ),
            )
        )
        form.add(button_row)

        self.settings_window = toga.Window(
            title="Chat Settings",
            size=(460, 380),
            resizable=False,
            on_close=self.on_settings_window_close,
        )
        self.settings_window.content = form
        self.settings_window.show()

    @staticmethod
    def _temperature_caption(value: float) -> str:
        return f"Temperature: {value:.1f}"

    def on_temperature_change(self, widget: toga.Slider) -> None:
        if self.settings_temperature_label is not None:
            self.settings_temperature_label.text = self._temperature_caption(widget.value)

    async def on_cancel_settings(self, widget: toga.Widget) -> None:
        """Close the settings window without applying changes."""
        del widget
        self._close_settings()

    async def on_save_settings(self, widget: toga.Widget) -> None:
        """Persist the edited settings. The next request uses a fresh session."""
        del widget
        if (
            self.settings_stream_switch is None
            or self.settings_temperature_slider is None
            or self.settings_instructions_input is None
        ):
            return
        temperature = clamp_temperature(float(self.settings_temperature_slider.value))
        try:
            self.settings.update(
                streaming_enabled=bool(self.settings_stream_switch.value),
                temperature=round(temperature, 1),
                system_instructions=self.settings_instructions_input.value or "",
            )
        except OSError as exc:
            message = f"Could not write {self.settings.path}:\n{exc}"
            await self.main_window.dialog(toga.ErrorDialog("Settings not saved", message))
            return
        self._close_settings()

    def on_settings_window_close(self, window: toga.Window, **kwargs) -> bool:
        del window, kwargs
        self.settings_window = None
        return True

    def _close_settings(self) -> None:
        if self.settings_window is not None:
            self.settings_window.close()
        self.settings_window = None

    def on_exit(self) -> bool:
        """Stop any response and detach listeners when the app exits."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self.controller.close()
        if isinstance(self.capability, AppleFMCapability):
            self.capability.close()
        return True


def main() -> SiliconChatApp:
    """Briefcase entrypoint."""
    return SiliconChatApp(
        formal_name="SiliconChat",
        app_id="com.siliconchat.chat",
    )
