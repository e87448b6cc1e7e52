"""Classification of decoded WhatsApp message payloads.

Payloads are the ``message`` part of an envelope, as a dict keyed by the
protocol's message field names (``conversation``, ``imageMessage``, ...).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from wa_archiver.core.types import MessageType

# Transport wrappers around the real payload; never a message kind of their own.
WRAPPER_KEYS = (
    "viewOnceMessage",
    "viewOnceMessageV2",
    "viewOnceMessageV2Extension",
    "ephemeralMessage",
    "documentWithCaptionMessage",
    "editedMessage",
)

# Payload fields that carry no user-visible content.
METADATA_KEYS = frozenset(
    {
        "reactionMessage",
        "senderKeyDistributionMessage",
        "protocolMessage",
        "messageContextInfo",
    }
)

REVOKE = "REVOKE"

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
    "video/3gpp": ".3gp",
    "audio/ogg": ".ogg",
    "audio/mpeg": ".mp3",
    "audio/mp4": ".m4a",
    "application/pdf": ".pdf",
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "application/vnd.ms-excel": ".xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
}


@dataclass(frozen=True, slots=True)
class MediaRef:
    """Binary content to fetch through the protocol session."""

    mimetype: Optional[str]
    default_mimetype: str

    @property
    def effective_mimetype(self) -> str:
        return self.mimetype or self.default_mimetype

    @property
    def extension(self) -> str:
        return extension_for(self.effective_mimetype)


@dataclass(frozen=True, slots=True)
class Extracted:
    message_type: MessageType
    content: str
    media: Optional[MediaRef] = None


@dataclass(frozen=True, slots=True)
class Skip:
    reason: str


Classification = Union[Extracted, Skip]


def extension_for(mimetype: Optional[str]) -> str:
    if not mimetype:
        return ".bin"
    base = mimetype.split(";", 1)[0].strip().lower()
    return _EXTENSIONS.get(base, ".bin")


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == {} or value == []


def unwrap(message: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """Strip view-once/ephemeral/document-with-caption wrappers, recursively."""
    while isinstance(message, dict):
        for key in WRAPPER_KEYS:
            inner = message.get(key)
            if isinstance(inner, dict) and isinstance(inner.get("message"), dict):
                message = inner["message"]
                break
        else:
            return message
    return None


def revoked_key(message: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """Key of the message deleted for everyone, when this is a revoke notice."""
    payload = unwrap(message)
    if not payload:
        return None
    protocol = payload.get("protocolMessage")
    if not isinstance(protocol, dict):
        return None
    if protocol.get("type") not in (REVOKE, 0):
        return None
    key = protocol.get("key")
    return key if isinstance(key, dict) and key.get("id") else None


def _number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def classify(message: Optional[dict[str, Any]]) -> Classification:
    """Map a payload to exactly one message kind, or to ``Skip``."""
    payload = unwrap(message)
    if not payload:
        return Skip("empty")

    if payload.get("conversation"):
        return Extracted(MessageType.TEXT, payload["conversation"])

    extended = payload.get("extendedTextMessage") or {}
    if extended.get("text"):
        return Extracted(MessageType.TEXT, extended["text"])

    if (image := payload.get("imageMessage")) is not None:
        return Extracted(
            MessageType.IMAGE,
            image.get("caption") or "[Image]",
            MediaRef(image.get("mimetype"), "image/jpeg"),
        )

    if (video := payload.get("videoMessage")) is not None:
        return Extracted(
            MessageType.VIDEO,
            video.get("caption") or "[Video]",
            MediaRef(video.get("mimetype"), "video/mp4"),
        )

    if (audio := payload.get("audioMessage")) is not None:
        media = MediaRef(audio.get("mimetype"), "audio/ogg")
        if audio.get("ptt"):
            return Extracted(MessageType.VOICE, "[Voice note]", media)
        return Extracted(MessageType.AUDIO, "[Audio]", media)

    if (document := payload.get("documentMessage")) is not None:
        return Extracted(
            MessageType.DOCUMENT,
            document.get("fileName") or document.get("caption") or "[Document]",
            MediaRef(document.get("mimetype"), "application/octet-stream"),
        )

    if (sticker := payload.get("stickerMessage")) is not None:
        return Extracted(
            MessageType.STICKER, "[Sticker]", MediaRef(sticker.get("mimetype"), "image/webp")
        )

    if (contact := payload.get("contactMessage")) is not None:
        return Extracted(MessageType.CONTACT, contact.get("displayName") or "[Contact]")

    if (contacts := payload.get("contactsArrayMessage")) is not None:
        count = len(contacts.get("contacts") or [])
        return Extracted(MessageType.CONTACTS, f"[{count} Contacts]")

    if (location := payload.get("locationMessage")) is not None:
        lat = _number(location.get("degreesLatitude", 0))
        lon = _number(location.get("degreesLongitude", 0))
        return Extracted(MessageType.LOCATION, f"Location: {lat}, {lon}")

    if payload.get("liveLocationMessage") is not None:
        return Extracted(MessageType.LIVE_LOCATION, "[Live Location]")

    for poll_key in ("pollCreationMessage", "pollCreationMessageV2", "pollCreationMessageV3"):
        if (poll := payload.get(poll_key)) is not None:
            return Extracted(MessageType.POLL, poll.get("name") or "[Poll]")

    if (button := payload.get("buttonsResponseMessage")) is not None:
        return Extracted(
            MessageType.BUTTON_RESPONSE, button.get("selectedDisplayText") or "[Button response]"
        )

    if (selection := payload.get("listResponseMessage")) is not None:
        return Extracted(MessageType.LIST_RESPONSE, selection.get("title") or "[List response]")

    remaining = [
        key
        for key, value in payload.items()
        if key not in METADATA_KEYS and not key.startswith("_") and not _is_empty(value)
    ]
    if not remaining:
        present = sorted(key for key in payload if key in METADATA_KEYS)
        return Skip(",".join(present) or "empty")
    return Extracted(MessageType.UNKNOWN, "[Unsupported message]")
