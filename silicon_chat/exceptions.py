"""
Error taxonomy for SiliconChat.

Every failure inside a prompt/response cycle is normalized by the request
controller into one of the classes below before it reaches a UI. Setup
problems with the Apple Foundation Models SDK get their own error so entry
points (CLI, desktop app) can print actionable guidance.
"""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from types import ModuleType

    from .protocols import UnavailabilityReason


class SiliconChatError(Exception):
    """Base class for errors surfaced by SiliconChat."""


class UnavailableError(SiliconChatError):
    """The model capability is not usable right now.

    Raised before a request enters the responding state. Not retryable until
    the underlying condition changes (device settings, asset download, ...).
    """

    def __init__(self, reason: UnavailabilityReason) -> None:
        self.reason = reason
        super().__init__(f"The language model is not available. Reason: {reason.description}")


class SessionCreationError(SiliconChatError):
    """The session manager failed to produce a session handle."""

    def __init__(self, message: str = "Session could not be created.") -> None:
        super().__init__(message)


class ModelError(SiliconChatError):
    """Any other failure reported by the model capability during a request."""

    def __init__(self, description: str) -> None:
        self.description = description
        super().__init__(f"An error occurred: {description}")

    @classmethod
    def from_exception(cls, exc: BaseException) -> ModelError:
        description = str(exc) or type(exc).__name__
        return cls(description)


class GenerationCancelled(SiliconChatError):
    """Cooperative cancellation signal.

    Not an error: the controller swallows it and never shows it to the user.
    Capabilities may raise it to report that they stopped producing output.
    """

    def __init__(self, message: str = "Generation cancelled.") -> None:
        super().__init__(message)


class AppleFMSetupError(SiliconChatError):
    """The Apple Foundation Models SDK is missing or the model is unusable."""


def require_apple_fm() -> ModuleType:
    """Import and return ``apple_fm_sdk`` or raise ``AppleFMSetupError``."""
    try:
        return importlib.import_module("apple_fm_sdk")
    except ImportError as exc:
        raise AppleFMSetupError(
            "[SiliconChat] 'apple-fm-sdk' is not installed.\n"
            "The Apple backend requires the Apple Foundation Models SDK on macOS 26+.\n"
            "Install it with `pip install 'silicon-chat[apple]'`.\n"
            "Use `--backend echo` to try SiliconChat without it."
        ) from exc

