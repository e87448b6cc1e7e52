"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from wa_archiver.core.types import SortOrder


@dataclass(frozen=True, slots=True)
class NewMessage:
    """A normalized message ready to be inserted."""

    remote_jid: str
    message_id: str
    message_type: str
    timestamp: int
    content: Optional[str] = None
    sender_name: Optional[str] = None
    participant_jid: Optional[str] = None
    is_group: bool = False
    is_from_me: bool = False
    media_path: Optional[str] = None
    media_mimetype: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Message:
    id: int
    remote_jid: str
    sender_name: Optional[str]
    participant_jid: Optional[str]
    message_id: str
    message_type: str
    content: Optional[str]
    timestamp: int
    is_group: bool
    is_from_me: bool
    media_path: Optional[str]
    media_mimetype: Optional[str]
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class MessageFilter:
    remote_jid: Optional[str] = None
    search_text: Optional[str] = None
    since: Optional[int] = None  # inclusive, unix seconds
    until: Optional[int] = None  # inclusive, unix seconds
    page: int = 1
    limit: int = 50
    sort_order: Optional[SortOrder] = None


@dataclass(slots=True)
class MessagePage:
    messages: list[Message]
    total: int
    page: int
    limit: int
    sort_order: SortOrder

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


@dataclass(slots=True)
class Conversation:
    """Derived per-conversation summary; never stored."""

    remote_jid: str
    is_group: bool
    display_name: Optional[str]
    profile_picture: Optional[str]
    last_message: Optional[str]
    last_message_type: str
    last_timestamp: int
    message_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ChatMetadata:
    """Cached display name and picture of a group or contact."""

    jid: str
    name: Optional[str] = None
    profile_picture: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass(slots=True)
class AppEvent:
    id: int
    event_type: str
    remote_jid: Optional[str]
    message_id: Optional[str]
    details: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    chat_name: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class AppError:
    id: int
    error_type: str
    error_message: str
    error_stack: Optional[str]
    location: Optional[str]
    context: Any
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
