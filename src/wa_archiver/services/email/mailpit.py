"""Mailpit sender for local development (https://mailpit.axllent.org/docs/api-v1/)."""

from __future__ import annotations

import httpx

from wa_archiver.exceptions import EmailDeliveryError
from wa_archiver.log import get_logger
from wa_archiver.services.email.base import EmailMessage, EmailSender

logger = get_logger(__name__)


class MailpitSender(EmailSender):
    def __init__(
        self,
        base_url: str,
        from_address: str,
        from_name: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(from_address, from_name, timeout)
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "mailpit"

    def build_payload(self, message: EmailMessage) -> dict:
        address, name = self._sender(message)
        attachments = []
        for attachment in message.attachments:
            item = {
                "Filename": attachment.filename,
                "ContentType": attachment.mimetype,
                "Content": attachment.base64_content,
            }
            if attachment.content_id:
                item["ContentID"] = attachment.content_id
            attachments.append(item)

        return {
            "From": {"Email": address, "Name": name},
            "To": [{"Email": message.to, "Name": message.to}],
            "Subject": message.subject,
            "HTML": message.html,
            "Text": message.text or "",
            "Attachments": attachments,
        }

    async def send(self, message: EmailMessage) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/api/v1/send", json=self.build_payload(message)
                )
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"Mailpit request failed: {e}") from e

        if response.is_error:
            raise EmailDeliveryError(
                f"Mailpit send failed: {response.status_code} {response.text}"
            )
        logger.info("email_sent", provider="mailpit", to=message.to, subject=message.subject)
