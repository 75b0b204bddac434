"""
Model capability protocols.

The conversation core never talks to ``apple_fm_sdk`` directly. It consumes a
``ModelCapability`` that reports availability and hands out ``ModelSession``
handles able to respond either in one shot or as a stream of text fragments.
``create_model`` and ``create_session`` are thin constructors over the SDK
used by the Apple backend.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .exceptions import require_apple_fm

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


class UnavailabilityReason(enum.Enum):
    """Why a model capability cannot serve requests."""

    DEVICE_INELIGIBLE = "deviceIneligible"
    FEATURE_DISABLED = "featureDisabled"
    ASSETS_NOT_READY = "assetsNotReady"
    UNKNOWN = "unknown"

    @property
    def description(self) -> str:
        return _REASON_DESCRIPTIONS[self]


_REASON_DESCRIPTIONS = {
    UnavailabilityReason.DEVICE_INELIGIBLE: "Device not eligible",
    UnavailabilityReason.FEATURE_DISABLED: "Apple Intelligence not enabled in Settings",
    UnavailabilityReason.ASSETS_NOT_READY: "Model assets not downloaded",
    UnavailabilityReason.UNKNOWN: "Unknown reason",
}


class FragmentMode(enum.Enum):
    """How a capability's stream fragments relate to the full response text.

    CUMULATIVE: every fragment is the whole response so far (replace).
    DELTA: every fragment is new text to be appended.
    """

    CUMULATIVE = "cumulative"
    DELTA = "delta"


@dataclass(frozen=True)
class GenerationOptions:
    """Per-request generation options, forwarded to the capability verbatim."""

    temperature: float


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class ModelSession(Protocol):
    """A session handle bound to fixed system instructions."""

    async def respond(self, prompt: str, options: GenerationOptions) -> str: ...

    def stream_response(self, prompt: str, options: GenerationOptions) -> AsyncIterator[str]: ...


@runtime_checkable
class ModelCapability(Protocol):
    """The on-device language model service as seen by the conversation core."""

    fragment_mode: FragmentMode

    def is_available(self) -> bool: ...

    def unavailability_reason(self) -> UnavailabilityReason | None: ...

    def create_session(self, instructions: str) -> ModelSession: ...


# ---------------------------------------------------------------------------
# apple_fm_sdk constructors
# ---------------------------------------------------------------------------


def create_model() -> Any:
    """Return the default ``apple_fm_sdk.SystemLanguageModel``."""
    fm = require_apple_fm()
    return fm.SystemLanguageModel()


def create_session(instructions: str, model: Any | None = None) -> Any:
    """Return a new ``apple_fm_sdk.LanguageModelSession`` seeded with *instructions*."""
    fm = require_apple_fm()
    if model is None:
        model = fm.SystemLanguageModel()
    return fm.LanguageModelSession(model=model, instructions=instructions)


def create_generation_options(options: GenerationOptions) -> Any:
    """Convert ``GenerationOptions`` into the SDK's options object."""
    fm = require_apple_fm()
    return fm.GenerationOptions(temperature=options.temperature)
