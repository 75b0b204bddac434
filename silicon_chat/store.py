"""
Conversation store: the ordered message list a renderer observes.

Append-only, except that the trailing assistant message stays open for text
replacement while its response is being produced.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import uuid
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

logger = logging.getLogger("silicon_chat.store")


class Role(enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """A single chat message. ``id`` stays stable across text updates."""

    role: Role
    text: str
    id: uuid.UUID = field(default_factory=uuid.uuid4)


class ChangeKind(enum.Enum):
    APPENDED = "appended"
    UPDATED = "updated"
    CLEARED = "cleared"


@dataclass(frozen=True)
class StoreChange:
    kind: ChangeKind
    index: int | None = None
    message: Message | None = None


StoreListener = Callable[[StoreChange], None]


class ConversationStore:
    """Ordered sequence of messages; insertion order is display order."""

    def __init__(self) -> None:
        self._messages: list[Message] = []
        self._open = False
        self._listeners: list[StoreListener] = []

    # -- reads ---------------------------------------------------------------

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    @property
    def has_open_message(self) -> bool:
        """True while the trailing assistant message still accepts text."""
        return self._open

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))

    # -- writes --------------------------------------------------------------

    def append_user(self, text: str) -> Message:
        if self._open:
            raise ValueError("cannot append a user message while an assistant message is open")
        return self._append(Message(role=Role.USER, text=text))

    def append_assistant(self, text: str = "") -> Message:
        """Append an open assistant message paired with the preceding user message."""
        last = self.last
        if last is None or last.role is not Role.USER:
            raise ValueError("an assistant message must directly follow a user message")
        message = self._append(Message(role=Role.ASSISTANT, text=text))
        self._open = True
        return message

    def replace_last_text(self, text: str) -> Message:
        """Overwrite the text of the open trailing assistant message."""
        if not self._open:
            raise ValueError("no open assistant message to update")
        index = len(self._messages) - 1
        updated = dataclasses.replace(self._messages[index], text=text)
        self._messages[index] = updated
        self._emit(StoreChange(ChangeKind.UPDATED, index, updated))
        return updated

    def finalize_last(self) -> None:
        """Close the trailing assistant message; its text is immutable afterwards."""
        self._open = False

    def clear(self) -> None:
        self._messages.clear()
        self._open = False
        self._emit(StoreChange(ChangeKind.CLEARED))

    def to_transcript(self) -> str:
        """Render the conversation as plain text."""
        labels = {Role.USER: "You", Role.ASSISTANT: "Assistant"}
        return "\n\n".join(f"{labels[m.role]}: {m.text}" for m in self._messages)

    # -- observers -----------------------------------------------------------

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register *listener* for change notifications. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _append(self, message: Message) -> Message:
        self._messages.append(message)
        self._emit(StoreChange(ChangeKind.APPENDED, len(self._messages) - 1, message))
        return message

    def _emit(self, change: StoreChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.warning(
                    "[SiliconChat] Store listener failed on %s.", change.kind.value, exc_info=True
                )
