"""Abstract WhatsApp protocol session interface and the events it emits."""

from __future__ import annotations

import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

# Envelopes are the decoded protocol messages as plain dicts:
# {"key": {"remoteJid", "participant", "id", "fromMe", ...},
#  "message": {...}, "messageTimestamp": ..., "pushName": ...}
Envelope = dict[str, Any]


class CallStatus(StrEnum):
    OFFER = "offer"
    RINGING = "ringing"
    ACCEPT = "accept"
    REJECT = "reject"
    TIMEOUT = "timeout"
    TERMINATE = "terminate"


@dataclass(frozen=True, slots=True)
class ConnectionUpdate:
    connection: Optional[str] = None  # "connecting" | "open" | "close"
    qr: Optional[str] = None
    logged_out: bool = False
    reason: Optional[str] = None


@dataclass(frozen=True, slots=True)
class MessagesUpsert:
    messages: list[Envelope] = field(default_factory=list)
    type: str = "notify"  # "notify" for live delivery, "append" for catch-up


@dataclass(frozen=True, slots=True)
class HistorySync:
    messages: list[Envelope] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class CallEvent:
    """A call state change. ``from_jid`` is the caller; ``peer_jid`` is the other
    party, needed to file calls this account placed.
    """

    call_id: str
    from_jid: str
    status: CallStatus
    is_video: bool = False
    is_group: bool = False
    group_jid: Optional[str] = None
    timestamp: Any = None
    peer_jid: Optional[str] = None


@dataclass(frozen=True, slots=True)
class MessagesDeleted:
    """Messages deleted for everyone; each key is {"remoteJid", "id", ...}."""

    keys: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ChatsDeleted:
    jids: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ChatCleared:
    jid: str


SessionEvent = Union[
    ConnectionUpdate,
    MessagesUpsert,
    HistorySync,
    CallEvent,
    MessagesDeleted,
    ChatsDeleted,
    ChatCleared,
]
EventCallback = Callable[[SessionEvent], Awaitable[None]]


class ProtocolSession(ABC):
    """Base class for a linked-device session to WhatsApp.

    Implementations own the wire protocol and the on-disk credential bundle
    under ``session_path``; everything they observe is pushed through the
    registered event callback.
    """

    def __init__(self, session_path: str | Path):
        self.session_path = Path(session_path)
        self._event_callback: EventCallback | None = None

    def on_event(self, callback: EventCallback) -> None:
        """Register the callback invoked for every session event."""
        self._event_callback = callback

    async def emit(self, event: SessionEvent) -> None:
        if self._event_callback is not None:
            await self._event_callback(event)

    @property
    def own_jid(self) -> Optional[str]:
        return None

    @abstractmethod
    async def connect(self) -> None:
        """Open the transport, loading or creating credentials."""
        ...

    @abstractmethod
    async def end(self) -> None:
        """Close the transport. Credentials stay valid for the next connect."""
        ...

    @abstractmethod
    async def logout(self) -> None:
        """Unlink this device remotely."""
        ...

    def delete_credentials(self) -> None:
        if self.session_path.exists():
            shutil.rmtree(self.session_path)

    @abstractmethod
    async def send_text(self, jid: str, text: str) -> None:
        ...

    @abstractmethod
    async def download_media(self, envelope: Envelope) -> bytes:
        """Return the decrypted media bytes of a message."""
        ...

    @abstractmethod
    async def fetch_group_metadata(self, jid: str) -> dict[str, Any]:
        """Return at least {"subject": <group name>}."""
        ...

    @abstractmethod
    async def fetch_profile_picture_url(self, jid: str) -> Optional[str]:
        ...


SessionFactory = Callable[[Path], ProtocolSession]
