"""
Request controller: drives one prompt -> response cycle at a time.

State machine::

    IDLE --submit--> RESPONDING --completed / failed / cancelled--> IDLE

All transitions run on the asyncio event loop that owns the controller, which
serializes them. The model call itself runs as an ``asyncio.Task``; it checks
its ``CancellationToken`` before the one-shot call and before applying every
streamed fragment, and a stop request also interrupts whatever the task is
currently awaiting.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .cancellation import CancellationToken
from .exceptions import (
    GenerationCancelled,
    ModelError,
    SessionCreationError,
    SiliconChatError,
    UnavailableError,
)
from .protocols import FragmentMode, GenerationOptions, UnavailabilityReason
from .session import SessionManager
from .store import ConversationStore, Message

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .protocols import ModelCapability, ModelSession
    from .settings import ChatSettings, SettingsProvider

logger = logging.getLogger("silicon_chat.controller")


class RequestState(enum.Enum):
    IDLE = "idle"
    RESPONDING = "responding"


@dataclass(frozen=True)
class ErrorNotice:
    """Displayable error state for a UI: message text plus a "show error" flag."""

    message: str = ""
    error: SiliconChatError | None = None
    visible: bool = False


StateListener = Callable[[RequestState], None]
ErrorListener = Callable[[ErrorNotice], None]
FragmentListener = Callable[[str, Message], None]


class RequestController:
    """Owns the conversation, the session handle and the request state.

    Args:
        capability: The model service used for every request.
        settings: Provider read once at the start of each request. Its change
            notification invalidates the session handle.
        store: Conversation store to render from. A fresh one by default.
    """

    def __init__(
        self,
        capability: ModelCapability,
        settings: SettingsProvider,
        store: ConversationStore | None = None,
    ) -> None:
        self.capability = capability
        self.settings = settings
        self.store = store if store is not None else ConversationStore()
        self.sessions = SessionManager(capability)

        self._state = RequestState.IDLE
        self._token: CancellationToken | None = None
        self._task: asyncio.Task[None] | None = None
        self._error = ErrorNotice()

        self._state_listeners: list[StateListener] = []
        self._error_listeners: list[ErrorListener] = []
        self._fragment_listeners: list[FragmentListener] = []
        self._unsubscribe_settings: Callable[[], None] | None = settings.subscribe(
            self._on_settings_changed
        )

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def is_responding(self) -> bool:
        return self._state is RequestState.RESPONDING

    @property
    def error(self) -> ErrorNotice:
        return self._error

    @property
    def active_token(self) -> CancellationToken | None:
        return self._token

    def subscribe_state(self, listener: StateListener) -> Callable[[], None]:
        return _subscribe(self._state_listeners, listener)

    def subscribe_errors(self, listener: ErrorListener) -> Callable[[], None]:
        return _subscribe(self._error_listeners, listener)

    def subscribe_fragments(self, listener: FragmentListener) -> Callable[[], None]:
        """Called once per applied fragment, e.g. for haptics or scroll-to-bottom."""
        return _subscribe(self._fragment_listeners, listener)

    # ------------------------------------------------------------------
    # UI actions
    # ------------------------------------------------------------------

    def submit(self, prompt: str) -> asyncio.Task[None] | None:
        """Start a request for *prompt*.

        Must be called from the event loop thread. Returns the task running the
        model call, or ``None`` when nothing was started: a request is already
        in flight, the prompt is blank, the model is unavailable, or no session
        could be created. Failures are surfaced through ``error``.
        """
        if self._state is RequestState.RESPONDING:
            logger.debug("[SiliconChat] Submit ignored: a response is already in progress.")
            return None
        if not prompt.strip():
            logger.debug("[SiliconChat] Submit ignored: blank prompt.")
            return None

        loop = asyncio.get_running_loop()

        reason = self._unavailability()
        if reason is not None:
            self._surface(UnavailableError(reason))
            return None

        config = self.settings.snapshot()
        self.store.append_user(prompt)
        self.store.append_assistant()
        token = CancellationToken()
        self._token = token
        self._set_state(RequestState.RESPONDING)

        try:
            session = self.sessions.get_or_create(config)
        except SessionCreationError as exc:
            self._finish(token)
            self._surface(exc)
            return None

        logger.info(
            "[SiliconChat] Responding (streaming=%s, temperature=%s).",
            config.streaming_enabled,
            config.temperature,
        )
        task = loop.create_task(self._run(session, prompt, config, token))
        self._task = task
        token.add_callback(task.cancel)
        # Also covers a task cancelled before its first step.
        task.add_done_callback(lambda _task: self._finish(token))
        return task

    def cancel_requested(self) -> bool:
        """Stop the in-flight response. Returns ``True`` if a request was signalled."""
        token = self._token
        if token is None:
            return False
        logger.info("[SiliconChat] Stop requested.")
        return token.cancel()

    def handle_send_or_stop(self, text: str) -> asyncio.Task[None] | None:
        """Single send/stop affordance: stop while responding, otherwise submit."""
        if self.is_responding:
            self.cancel_requested()
            return None
        return self.submit(text)

    def reset_conversation(self) -> None:
        """Stop any response, clear the conversation and drop the session handle."""
        token = self._token
        if token is not None:
            token.cancel()
            self._finish(token)
        self.store.clear()
        self.sessions.invalidate()
        logger.info("[SiliconChat] Conversation reset.")

    def acknowledge_error(self) -> None:
        """Hide the current error notice (explicit user acknowledgment)."""
        if not self._error.visible:
            return
        self._error = dataclasses.replace(self._error, visible=False)
        self._emit(self._error_listeners, self._error)

    async def wait_idle(self) -> None:
        """Wait for the in-flight model call, if any, to unwind."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def ask(self, prompt: str) -> Message | None:
        """Submit *prompt* and wait for the response. Returns the assistant message."""
        task = self.submit(prompt)
        if task is None:
            return None
        await asyncio.wait({task})
        return self.store.last

    def close(self) -> None:
        """Detach from the settings provider and stop any in-flight response."""
        if self._unsubscribe_settings is not None:
            self._unsubscribe_settings()
            self._unsubscribe_settings = None
        self.cancel_requested()

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    async def _run(
        self,
        session: ModelSession,
        prompt: str,
        config: ChatSettings,
        token: CancellationToken,
    ) -> None:
        options = GenerationOptions(temperature=config.temperature)
        try:
            if config.streaming_enabled:
                await self._consume_stream(session.stream_response(prompt, options), token)
            else:
                token.raise_if_cancelled()
                text = await session.respond(prompt, options)
                token.raise_if_cancelled()
                self.store.replace_last_text(text)
        except GenerationCancelled:
            logger.info("[SiliconChat] Response cancelled.")
        except asyncio.CancelledError:
            if not token.cancelled:
                # Cancelled from outside (e.g. loop shutdown): settle, then propagate.
                logger.info("[SiliconChat] Response task cancelled externally.")
                self._finish(token)
                raise
            logger.info("[SiliconChat] Response cancelled.")
        except Exception as exc:
            logger.warning("[SiliconChat] Model request failed: %s", exc, exc_info=True)
            self._finish(token)
            self._surface(ModelError.from_exception(exc))
            return
        else:
            last = self.store.last
            logger.info(
                "[SiliconChat] Response complete (%d chars).", len(last.text) if last else 0
            )
        self._finish(token)

    async def _consume_stream(self, stream: AsyncIterator[str], token: CancellationToken) -> None:
        cumulative = self.capability.fragment_mode is FragmentMode.CUMULATIVE
        text = ""
        try:
            async for fragment in stream:
                token.raise_if_cancelled()
                text = fragment if cumulative else text + fragment
                message = self.store.replace_last_text(text)
                logger.debug("[SiliconChat Stream] Fragment applied (%d chars).", len(text))
                self._emit(self._fragment_listeners, fragment, message)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _finish(self, token: CancellationToken) -> None:
        """End the responding period owned by *token*. Idempotent."""
        if self._token is not token:
            return
        token.invalidate()
        self._token = None
        self._task = None
        if self.store.has_open_message:
            self.store.finalize_last()
        self._set_state(RequestState.IDLE)

    def _set_state(self, state: RequestState) -> None:
        if state is self._state:
            return
        self._state = state
        self._emit(self._state_listeners, state)

    def _surface(self, error: SiliconChatError) -> None:
        logger.warning("[SiliconChat] %s", error)
        self._error = ErrorNotice(message=str(error), error=error, visible=True)
        self._emit(self._error_listeners, self._error)

    def _unavailability(self) -> UnavailabilityReason | None:
        try:
            if self.capability.is_available():
                return None
            return self.capability.unavailability_reason() or UnavailabilityReason.UNKNOWN
        except Exception:
            logger.warning("[SiliconChat] Availability check failed.", exc_info=True)
            return UnavailabilityReason.UNKNOWN

    def _on_settings_changed(self, settings: ChatSettings) -> None:
        logger.info("[SiliconChat] Settings changed; session will be recreated on next request.")
        self.sessions.invalidate()

    @staticmethod
    def _emit(listeners: list[Any], *args: Any) -> None:
        for listener in list(listeners):
            try:
                listener(*args)
            except Exception:
                logger.warning("[SiliconChat] Listener %r failed.", listener, exc_info=True)


def _subscribe(listeners: list[Any], listener: Any) -> Callable[[], None]:
    listeners.append(listener)

    def unsubscribe() -> None:
        if listener in listeners:
            listeners.remove(listener)

    return unsubscribe
