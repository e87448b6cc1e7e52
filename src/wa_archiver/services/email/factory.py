"""Builds the configured email sender."""

from __future__ import annotations

from wa_archiver.config import EmailConfig
from wa_archiver.log import get_logger
from wa_archiver.services.email.base import EmailSender

logger = get_logger(__name__)


def create_email_sender(config: EmailConfig) -> EmailSender | None:
    """Return the sender for ``config.provider``, or None when email is not usable."""
    match config.provider:
        case "mailpit":
            from wa_archiver.services.email.mailpit import MailpitSender

            logger.info("email_provider_selected", provider="mailpit", url=config.mailpit_url)
            return MailpitSender(
                config.mailpit_url,
                from_address=config.from_address,
                from_name=config.from_name,
                timeout=config.timeout,
            )
        case "mailersend":
            if not config.mailersend_api_key:
                logger.warning("email_provider_unconfigured", provider="mailersend", missing="api_key")
                return None
            from wa_archiver.services.email.mailersend import MailerSendSender

            logger.info("email_provider_selected", provider="mailersend")
            return MailerSendSender(
                config.mailersend_api_key,
                from_address=config.from_address,
                from_name=config.from_name,
                timeout=config.timeout,
            )
        case _:
            logger.info("email_disabled")
            return None
