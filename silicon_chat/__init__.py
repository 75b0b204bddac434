"""
SiliconChat: a conversation session controller for on-device language models.

Sends prompts to the local Apple Foundation Model (via python-apple-fm-sdk),
streams responses into an observable conversation store, and keeps request
state consistent across cancellation and errors so any UI can render it.
"""

from .backends import AppleFMCapability, EchoCapability
from .cancellation import CancellationToken
from .controller import ErrorNotice, RequestController, RequestState
from .exceptions import (
    AppleFMSetupError,
    GenerationCancelled,
    ModelError,
    SessionCreationError,
    SiliconChatError,
    UnavailableError,
)
from .protocols import (
    FragmentMode,
    GenerationOptions,
    ModelCapability,
    ModelSession,
    UnavailabilityReason,
)
from .session import SessionManager
from .settings import ChatSettings, InMemorySettings, JsonFileSettings, SettingsProvider
from .store import ConversationStore, Message, Role

__all__ = [
    "AppleFMCapability",
    "AppleFMSetupError",
    "CancellationToken",
    "ChatSettings",
    "ConversationStore",
    "EchoCapability",
    "ErrorNotice",
    "FragmentMode",
    "GenerationCancelled",
    "GenerationOptions",
    "InMemorySettings",
    "JsonFileSettings",
    "Message",
    "ModelCapability",
    "ModelError",
    "ModelSession",
    "RequestController",
    "RequestState",
    "Role",
    "SessionCreationError",
    "SessionManager",
    "SettingsProvider",
    "SiliconChatError",
    "UnavailabilityReason",
    "UnavailableError",
]
