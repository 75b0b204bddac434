"""
Model capability backends.

``AppleFMCapability`` runs on the on-device Apple Foundation Model through
``apple_fm_sdk``. ``EchoCapability`` is a deterministic stand-in for
development machines and tests without Apple Intelligence.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import re
import threading
from typing import TYPE_CHECKING, Any, TypeVar

from .protocols import (
    FragmentMode,
    GenerationOptions,
    UnavailabilityReason,
    create_generation_options,
    create_model,
    create_session,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Coroutine

logger = logging.getLogger("silicon_chat.backends")

T = TypeVar("T")

WORKER_JOIN_TIMEOUT_SECONDS = 0.4


# ---------------------------------------------------------------------------
# Apple Foundation Models
# ---------------------------------------------------------------------------


def map_unavailability_reason(reason: Any) -> UnavailabilityReason:
    """Map an SDK unavailability reason (enum member or string) onto ours."""
    name = str(getattr(reason, "name", reason) or "").lower()
    if "eligible" in name:
        return UnavailabilityReason.DEVICE_INELIGIBLE
    if "enabled" in name:
        return UnavailabilityReason.FEATURE_DISABLED
    if "ready" in name or "asset" in name:
        return UnavailabilityReason.ASSETS_NOT_READY
    return UnavailabilityReason.UNKNOWN


class SDKWorker:
    """Event loop on a daemon thread that runs every SDK call.

    The SDK is never driven from the caller's loop (a GUI loop, typically):
    coroutines are handed over with ``run_coroutine_threadsafe`` and results
    come back through futures or ``call_soon_threadsafe``.
    """

    def __init__(self, name: str = "silicon-chat-fm-worker") -> None:
        self.name = name
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                thread = threading.Thread(target=loop.run_forever, name=self.name, daemon=True)
                thread.start()
                self._loop, self._thread = loop, thread
                logger.debug("[SiliconChat] SDK worker thread %s started.", self.name)
            return self._loop

    def submit(self, coro: Coroutine[Any, Any, T]) -> concurrent.futures.Future[T]:
        return asyncio.run_coroutine_threadsafe(coro, self._ensure_loop())

    def close(self) -> None:
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = self._thread = None
        if loop is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(WORKER_JOIN_TIMEOUT_SECONDS)
        if not loop.is_running():
            loop.close()


def _post(loop: asyncio.AbstractEventLoop, queue: asyncio.Queue, item: tuple[str, Any]) -> bool:
    """Hand *item* to the consumer loop. ``False`` once that loop has closed."""
    try:
        loop.call_soon_threadsafe(queue.put_nowait, item)
    except RuntimeError:
        return False
    return True


class AppleFMSession:
    """``ModelSession`` backed by an ``apple_fm_sdk.LanguageModelSession``.

    Calls run on ``worker``; the awaiting loop only receives results.
    """

    def __init__(self, session: Any, instructions: str, worker: SDKWorker | None = None) -> None:
        self._session = session
        self.instructions = instructions
        self.worker = worker if worker is not None else SDKWorker()

    async def respond(self, prompt: str, options: GenerationOptions) -> str:
        sdk_options = create_generation_options(options)

        async def call() -> str:
            response = await self._session.respond(prompt, options=sdk_options)
            return str(response)

        future = self.worker.submit(call())
        try:
            return await asyncio.wrap_future(future)
        finally:
            future.cancel()

    async def stream_response(self, prompt: str, options: GenerationOptions) -> AsyncIterator[str]:
        """Yield cumulative snapshots produced on the worker thread."""
        sdk_options = create_generation_options(options)
        consumer_loop = asyncio.get_running_loop()
        events: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        stop = threading.Event()

        async def producer() -> None:
            stream = None
            try:
                stream = self._session.stream_response(prompt, options=sdk_options)
                async for snapshot in stream:
                    if stop.is_set():
                        return
                    if not _post(consumer_loop, events, ("chunk", str(snapshot))):
                        return
            except Exception as exc:
                _post(consumer_loop, events, ("error", exc))
                return
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()
            _post(consumer_loop, events, ("done", None))

        future = self.worker.submit(producer())
        try:
            while True:
                kind, payload = await events.get()
                if kind == "chunk":
                    yield payload
                    continue
                if kind == "error":
                    raise payload
                break
        finally:
            # Stops the producer at its next snapshot, or at its current await.
            stop.set()
            future.cancel()

    def __repr__(self) -> str:
        return f"AppleFMSession(instructions={self.instructions!r})"


class AppleFMCapability:
    """On-device Apple Foundation Model capability."""

    fragment_mode = FragmentMode.CUMULATIVE

    def __init__(self, model: Any | None = None) -> None:
        self.model = model if model is not None else create_model()
        self.worker = SDKWorker()

    def is_available(self) -> bool:
        available, _reason = self.model.is_available()
        return bool(available)

    def unavailability_reason(self) -> UnavailabilityReason | None:
        available, reason = self.model.is_available()
        if available:
            return None
        return map_unavailability_reason(reason)

    def create_session(self, instructions: str) -> AppleFMSession:
        sdk_session = create_session(instructions, model=self.model)
        return AppleFMSession(sdk_session, instructions, worker=self.worker)

    def close(self) -> None:
        """Stop the SDK worker thread."""
        self.worker.close()

    def __repr__(self) -> str:
        return f"AppleFMCapability(model={self.model!r})"


# ---------------------------------------------------------------------------
# Echo
# ---------------------------------------------------------------------------

_WORD_BOUNDARY = re.compile(r"\S+\s*")


class EchoSession:
    """Replies ``"Echo: <prompt>"``; streams the reply word by word."""

    def __init__(self, instructions: str, fragment_mode: FragmentMode, delay: float) -> None:
        self.instructions = instructions
        self.fragment_mode = fragment_mode
        self.delay = delay
        self.prompts: list[str] = []

    @staticmethod
    def reply_for(prompt: str) -> str:
        return f"Echo: {prompt}"

    async def respond(self, prompt: str, options: GenerationOptions) -> str:
        self.prompts.append(prompt)
        await asyncio.sleep(self.delay)
        return self.reply_for(prompt)

    async def stream_response(self, prompt: str, options: GenerationOptions) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        text = ""
        for word in _WORD_BOUNDARY.findall(self.reply_for(prompt)):
            await asyncio.sleep(self.delay)
            text += word
            yield text if self.fragment_mode is FragmentMode.CUMULATIVE else word


class EchoCapability:
    """Deterministic capability that needs no model assets."""

    def __init__(
        self,
        *,
        unavailable_reason: UnavailabilityReason | None = None,
        fragment_mode: FragmentMode = FragmentMode.CUMULATIVE,
        delay: float = 0.0,
    ) -> None:
        self._unavailable_reason = unavailable_reason
        self.fragment_mode = fragment_mode
        self.delay = delay
        self.sessions: list[EchoSession] = []

    def is_available(self) -> bool:
        return self._unavailable_reason is None

    def unavailability_reason(self) -> UnavailabilityReason | None:
        return self._unavailable_reason

    def create_session(self, instructions: str) -> EchoSession:
        session = EchoSession(instructions, self.fragment_mode, self.delay)
        self.sessions.append(session)
        logger.debug("[SiliconChat Echo] Session #%d created.", len(self.sessions))
        return session

    def __repr__(self) -> str:
        return f"EchoCapability(fragment_mode={self.fragment_mode.value}, delay={self.delay})"
