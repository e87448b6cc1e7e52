"""Text commands sent to the archiver over WhatsApp by allow-listed numbers."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

from wa_archiver.config import CommandsConfig
from wa_archiver.core.jid import numbers_match
from wa_archiver.core.types import ConnectionStatus, MessageType
from wa_archiver.exceptions import EmailNotConfiguredError
from wa_archiver.log import get_logger
from wa_archiver.services.reports import ReportService
from wa_archiver.storage.models import Message
from wa_archiver.whatsapp.qr import data_url_to_png

logger = get_logger(__name__)

HELP_TEXT = """📋 *Available Commands*

*state* (or estado, status)
→ Sends health check email with system status

*csv* (or mail-csv)
→ Sends CSV with today's messages from supervised contacts

*qr*
→ Resets session and sends QR code by email

*help* (or ayuda)
→ Shows this help message"""


@dataclass(frozen=True, slots=True)
class CommandResult:
    success: bool
    message: str
    should_reply: bool = True


class SessionControl(Protocol):
    @property
    def status(self) -> ConnectionStatus: ...

    @property
    def uptime(self) -> float: ...

    async def reset_session(self) -> None: ...

    def get_qr_data_url(self) -> Optional[str]: ...


Handler = Callable[[list[str]], Awaitable[CommandResult]]


class CommandInterpreter:
    """Runs commands from allow-listed numbers in direct chats.

    A message is only considered when it is a text message someone else sent
    in a direct chat, from an allow-listed number, and at most
    ``freshness_seconds`` old. The age check keeps history replays after a
    reconnect from re-running old commands.
    """

    def __init__(
        self,
        config: CommandsConfig,
        reports: ReportService,
        session: SessionControl,
        qr_wait_seconds: float = 3.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._config = config
        self._reports = reports
        self._session = session
        self._qr_wait_seconds = qr_wait_seconds
        self._clock = clock
        self._sleep = sleep
        self._handlers: dict[str, Handler] = {}
        self._register_commands()

    def _register_commands(self) -> None:
        for name in ("state", "estado", "status"):
            self._handlers[name] = self._handle_state
        for name in ("csv", "mail-csv"):
            self._handlers[name] = self._handle_csv
        self._handlers["qr"] = self._handle_qr
        for name in ("help", "ayuda"):
            self._handlers[name] = self._handle_help

    @property
    def command_names(self) -> list[str]:
        return sorted(self._handlers)

    def is_command_number(self, jid_or_number: str) -> bool:
        allowed = self._config.allowed_numbers
        return bool(allowed) and numbers_match(jid_or_number, allowed)

    def is_fresh(self, timestamp: int) -> bool:
        return self._clock() - timestamp <= self._config.freshness_seconds

    async def handle(self, message: Message) -> CommandResult | None:
        """Apply every gate, then dispatch. None means "not a command"."""
        if message.is_from_me or message.is_group:
            return None
        if message.message_type != MessageType.TEXT or not message.content:
            return None
        if not self.is_command_number(message.remote_jid):
            return None
        if not self.is_fresh(message.timestamp):
            logger.info(
                "command_ignored_stale",
                remote_jid=message.remote_jid,
                age=int(self._clock() - message.timestamp),
            )
            return None
        return await self.dispatch(message.content, sender=message.remote_jid)

    async def dispatch(self, text: str, sender: str = "") -> CommandResult | None:
        """Parse and run a command. Unknown commands return None."""
        command_text = text.strip().lower()
        if command_text.startswith("/"):
            command_text = command_text[1:]
        parts = command_text.split()
        if not parts:
            return None

        name, args = parts[0], parts[1:]
        handler = self._handlers.get(name)
        if handler is None:
            return None

        logger.info("command_executing", command=name, sender=sender)
        try:
            return await handler(args)
        except EmailNotConfiguredError as e:
            return CommandResult(success=False, message=str(e))
        except Exception as e:
            logger.error("command_failed", command=name, error=str(e))
            return CommandResult(success=False, message=f"Error executing command: {e}")

    async def _handle_state(self, args: list[str]) -> CommandResult:
        recipient = await self._reports.send_health_check(
            str(self._session.status), self._session.uptime
        )
        return CommandResult(success=True, message=f"✅ Health check sent to {recipient}")

    async def _handle_csv(self, args: list[str]) -> CommandResult:
        recipient = await self._reports.send_supervised_csv()
        return CommandResult(success=True, message=f"✅ CSV sent to {recipient}")

    async def _handle_qr(self, args: list[str]) -> CommandResult:
        self._reports.require_recipient()

        if self._session.status == ConnectionStatus.CONNECTED:
            await self._session.reset_session()
            await self._sleep(self._qr_wait_seconds)

        qr_data_url = self._session.get_qr_data_url()
        if not qr_data_url:
            return CommandResult(
                success=False,
                message=f"⚠️ QR code not available. Current status: {self._session.status}",
            )

        recipient = await self._reports.send_qr(data_url_to_png(qr_data_url))
        return CommandResult(
            success=True,
            message=f"✅ QR code sent to {recipient}. Check your email and scan it.",
        )

    async def _handle_help(self, args: list[str]) -> CommandResult:
        return CommandResult(success=True, message=HELP_TEXT)
