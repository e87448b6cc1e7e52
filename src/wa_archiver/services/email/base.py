"""Email capability: message types and the sender interface."""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True, slots=True)
class EmailAttachment:
    filename: str
    content: bytes
    mimetype: str = "application/octet-stream"
    content_id: Optional[str] = None  # set for inline images referenced as cid:<id>

    @property
    def base64_content(self) -> str:
        return base64.b64encode(self.content).decode("ascii")


@dataclass(slots=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: Optional[str] = None
    attachments: list[EmailAttachment] = field(default_factory=list)
    from_address: Optional[str] = None
    from_name: Optional[str] = None


class EmailSender(ABC):
    """Delivers an email through one provider.

    ``from_address``/``from_name`` are used when the message does not set
    its own sender.
    """

    def __init__(self, from_address: str, from_name: str = "", timeout: float = 30.0):
        self.from_address = from_address
        self.from_name = from_name
        self.timeout = timeout

    @property
    @abstractmethod
    def provider_name(self) -> str:
        ...

    @abstractmethod
    async def send(self, message: EmailMessage) -> None:
        """Send the message; raises EmailDeliveryError on failure."""
        ...

    def _sender(self, message: EmailMessage) -> tuple[str, str]:
        address = message.from_address or self.from_address
        return address, message.from_name or self.from_name or address
