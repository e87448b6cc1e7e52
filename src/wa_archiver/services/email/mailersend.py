"""MailerSend sender over its REST API (https://developers.mailersend.com/api/v1/email.html)."""

from __future__ import annotations

import httpx

from wa_archiver.exceptions import EmailDeliveryError
from wa_archiver.log import get_logger
from wa_archiver.services.email.base import EmailMessage, EmailSender

logger = get_logger(__name__)

MAILERSEND_API_URL = "https://api.mailersend.com/v1/email"


class MailerSendSender(EmailSender):
    def __init__(
        self,
        api_key: str,
        from_address: str,
        from_name: str = "",
        timeout: float = 30.0,
        api_url: str = MAILERSEND_API_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(from_address, from_name, timeout)
        self._api_key = api_key
        self._api_url = api_url
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "mailersend"

    def build_payload(self, message: EmailMessage) -> dict:
        address, name = self._sender(message)
        payload: dict = {
            "from": {"email": address, "name": name},
            "to": [{"email": message.to}],
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            payload["text"] = message.text
        if message.attachments:
            attachments = []
            for attachment in message.attachments:
                item = {
                    "content": attachment.base64_content,
                    "filename": attachment.filename,
                    "disposition": "inline" if attachment.content_id else "attachment",
                }
                if attachment.content_id:
                    item["id"] = attachment.content_id
                attachments.append(item)
            payload["attachments"] = attachments
        return payload

    async def send(self, message: EmailMessage) -> None:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "X-Requested-With": "XMLHttpRequest",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self._api_url, json=self.build_payload(message), headers=headers
                )
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"MailerSend request failed: {e}") from e

        if response.is_error:
            raise EmailDeliveryError(
                f"MailerSend send failed: {response.status_code} {response.text}"
            )
        logger.info(
            "email_sent",
            provider="mailersend",
            to=message.to,
            subject=message.subject,
            message_id=response.headers.get("x-message-id"),
        )
