"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class ConnectionStatus(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    QR_READY = "qr_ready"


class MessageType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    VOICE = "voice"
    DOCUMENT = "document"
    STICKER = "sticker"
    CONTACT = "contact"
    CONTACTS = "contacts"
    LOCATION = "location"
    LIVE_LOCATION = "live_location"
    POLL = "poll"
    BUTTON_RESPONSE = "button_response"
    LIST_RESPONSE = "list_response"
    CALL = "call"
    VIDEO_CALL = "video_call"
    UNKNOWN = "unknown"


MEDIA_TYPES = frozenset(
    {
        MessageType.IMAGE,
        MessageType.VIDEO,
        MessageType.AUDIO,
        MessageType.VOICE,
        MessageType.DOCUMENT,
        MessageType.STICKER,
    }
)


class EventType(StrEnum):
    MESSAGE_DELETE = "message_delete"
    CHAT_DELETE = "chat_delete"
    CHAT_CLEAR = "chat_clear"


class SortOrder(StrEnum):
    ASC = "asc"
    DESC = "desc"
