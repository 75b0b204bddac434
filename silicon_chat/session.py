"""Session manager: owns at most one live model session handle."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .exceptions import SessionCreationError

if TYPE_CHECKING:
    from .protocols import ModelCapability, ModelSession
    from .settings import ChatSettings

logger = logging.getLogger("silicon_chat.session")


class SessionManager:
    """Lazily creates and caches the session handle for one controller.

    The handle is bound to the system instructions it was created with. It is
    discarded on ``invalidate()`` and never reused under different instructions.
    """

    def __init__(self, capability: ModelCapability) -> None:
        self._capability = capability
        self._session: ModelSession | None = None
        self._instructions: str | None = None

    @property
    def current(self) -> ModelSession | None:
        return self._session

    @property
    def instructions(self) -> str | None:
        """Instructions the live handle was created with, if any."""
        return self._instructions

    def get_or_create(self, config: ChatSettings) -> ModelSession:
        """Return the live handle, creating one from *config* if needed.

        Raises:
            SessionCreationError: the capability failed to produce a handle.
        """
        if self._session is not None and self._instructions != config.system_instructions:
            logger.info("[SiliconChat] System instructions changed; discarding stale session.")
            self.invalidate()

        if self._session is not None:
            return self._session

        try:
            session = self._capability.create_session(config.system_instructions)
        except Exception as exc:
            logger.error("[SiliconChat] Session creation failed: %s", exc)
            raise SessionCreationError() from exc
        if session is None:
            logger.error("[SiliconChat] Capability returned no session handle.")
            raise SessionCreationError()

        logger.info(
            "[SiliconChat] Created model session (%d chars of instructions).",
            len(config.system_instructions),
        )
        self._session = session
        self._instructions = config.system_instructions
        return session

    def invalidate(self) -> None:
        """Discard the current handle. Safe to call when there is none."""
        if self._session is not None:
            logger.debug("[SiliconChat] Session invalidated.")
        self._session = None
        self._instructions = None
