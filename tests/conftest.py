"""Shared stubs for SiliconChat tests."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from silicon_chat.controller import RequestController
from silicon_chat.protocols import FragmentMode, GenerationOptions, UnavailabilityReason
from silicon_chat.settings import ChatSettings, InMemorySettings


class StubSession:
    """Scripted session handle that records every call it receives."""

    def __init__(self, capability: StubCapability, instructions: str) -> None:
        self.capability = capability
        self.instructions = instructions
        self.calls: list[tuple[str, str, GenerationOptions]] = []

    async def respond(self, prompt: str, options: GenerationOptions) -> str:
        cap = self.capability
        self.calls.append(("respond", prompt, options))
        cap._enter()
        try:
            await asyncio.sleep(0)
            if cap.hang:
                await asyncio.Event().wait()
            if cap.error is not None:
                raise cap.error
            return cap.reply
        finally:
            cap._exit()

    async def stream_response(self, prompt: str, options: GenerationOptions):
        cap = self.capability
        self.calls.append(("stream", prompt, options))
        cap._enter()
        try:
            for index, fragment in enumerate(cap.fragments):
                if cap.error is not None and index == cap.error_after:
                    raise cap.error
                if cap.hang and index == cap.hang_after:
                    await asyncio.Event().wait()
                await asyncio.sleep(0)
                yield fragment
            if cap.error is not None and cap.error_after >= len(cap.fragments):
                raise cap.error
        finally:
            cap.stream_closed = True
            cap._exit()


class StubCapability:
    """Deterministic model capability with knobs for availability, errors and hangs."""

    def __init__(
        self,
        *,
        reply: str = "Hi there",
        fragments: tuple[str, ...] = ("H", "Hi", "Hi there"),
        fragment_mode: FragmentMode = FragmentMode.CUMULATIVE,
        unavailable_reason: UnavailabilityReason | None = None,
    ) -> None:
        self.reply = reply
        self.fragments = fragments
        self.fragment_mode = fragment_mode
        self.unavailable_reason = unavailable_reason
        self.error: BaseException | None = None
        self.error_after = 0
        self.hang = False
        self.hang_after = 0
        self.session_error: Exception | None = None
        self.created_instructions: list[str] = []
        self.sessions: list[StubSession] = []
        self.active_calls = 0
        self.max_active_calls = 0
        self.stream_closed = False
        self.started = asyncio.Event()

    def is_available(self) -> bool:
        return self.unavailable_reason is None

    def unavailability_reason(self) -> UnavailabilityReason | None:
        return self.unavailable_reason

    def create_session(self, instructions: str) -> StubSession:
        if self.session_error is not None:
            raise self.session_error
        self.created_instructions.append(instructions)
        session = StubSession(self, instructions)
        self.sessions.append(session)
        return session

    def _enter(self) -> None:
        self.active_calls += 1
        self.max_active_calls = max(self.max_active_calls, self.active_calls)
        self.started.set()

    def _exit(self) -> None:
        self.active_calls -= 1


@pytest.fixture
def capability() -> StubCapability:
    return StubCapability()


@pytest.fixture
def settings() -> InMemorySettings:
    return InMemorySettings(ChatSettings(streaming_enabled=True, temperature=0.7))


@pytest.fixture
def controller(capability: StubCapability, settings: InMemorySettings) -> Any:
    ctrl = RequestController(capability, settings)
    yield ctrl
    ctrl.close()


def texts(controller: RequestController) -> list[tuple[str, str]]:
    return [(m.role.value, m.text) for m in controller.store.messages]
