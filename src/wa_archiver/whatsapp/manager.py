"""Owns the single WhatsApp session: connection state, reconnects and event dispatch."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from wa_archiver.config import WhatsAppConfig
from wa_archiver.core.tasks import BackgroundTasks
from wa_archiver.core.types import ConnectionStatus
from wa_archiver.exceptions import SessionError
from wa_archiver.ingest.normalizer import MessageNormalizer
from wa_archiver.log import get_logger
from wa_archiver.services.base import Service
from wa_archiver.services.error_log import ErrorLog
from wa_archiver.storage.models import Message
from wa_archiver.whatsapp.base import (
    CallEvent,
    ChatCleared,
    ChatsDeleted,
    ConnectionUpdate,
    HistorySync,
    MessagesDeleted,
    MessagesUpsert,
    ProtocolSession,
    SessionEvent,
    SessionFactory,
)
from wa_archiver.whatsapp.qr import png_to_data_url, render_qr_png

if TYPE_CHECKING:
    from wa_archiver.commands.interpreter import CommandInterpreter

logger = get_logger(__name__)

_CATEGORIES = ("connection", "messages", "history", "calls", "deletions")


def _category(event: SessionEvent) -> Optional[str]:
    if isinstance(event, ConnectionUpdate):
        return "connection"
    if isinstance(event, MessagesUpsert):
        return "messages"
    if isinstance(event, HistorySync):
        return "history"
    if isinstance(event, CallEvent):
        return "calls"
    if isinstance(event, (MessagesDeleted, ChatsDeleted, ChatCleared)):
        return "deletions"
    return None


class SessionManager(Service):
    """Connection state machine for the linked-device session.

    ``disconnected -> connecting -> qr_ready -> connected``. A transport
    close reconnects with exponential backoff; once max_reconnect_attempts is
    reached it waits a cooldown and starts over, indefinitely. A logged-out
    close stays disconnected until ``reset_session()``.

    Session events are routed to one queue per category (connection,
    messages, history, calls, deletions), each drained by its own worker, so
    ordering holds within a category while categories proceed independently.
    """

    def __init__(
        self,
        config: WhatsAppConfig,
        session_factory: SessionFactory,
        normalizer: MessageNormalizer,
        errors: ErrorLog,
        tasks: BackgroundTasks,
        interpreter: CommandInterpreter | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._config = config
        self._session_factory = session_factory
        self._normalizer = normalizer
        self._errors = errors
        self._tasks = tasks
        self._interpreter = interpreter
        self._sleep = sleep

        self._session: ProtocolSession | None = None
        self._status = ConnectionStatus.DISCONNECTED
        self._qr_code: Optional[str] = None
        self._logged_out = False
        self._closing = False
        self._initialized = False
        self.reconnect_attempts = 0
        self._reconnect_task: asyncio.Task | None = None
        self._started_at = time.monotonic()

        self._queues: dict[str, asyncio.Queue] = {}
        self._workers: list[asyncio.Task] = []

    @property
    def service_name(self) -> str:
        return "whatsapp"

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def qr_code(self) -> Optional[str]:
        return self._qr_code if self._status == ConnectionStatus.QR_READY else None

    @property
    def logged_out(self) -> bool:
        return self._logged_out

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started_at

    @property
    def session(self) -> ProtocolSession | None:
        return self._session

    def set_command_interpreter(self, interpreter: CommandInterpreter) -> None:
        self._interpreter = interpreter

    async def start(self) -> None:
        await self.initialize()

    async def stop(self) -> None:
        await self.disconnect()

    async def health_check(self) -> bool:
        return self._status == ConnectionStatus.CONNECTED

    async def initialize(self) -> None:
        """Start the event workers and open the session. Only the first call has an effect."""
        if self._initialized:
            return
        self._initialized = True
        self._closing = False
        Path(self._config.session_path).mkdir(parents=True, exist_ok=True)
        for name in _CATEGORIES:
            queue: asyncio.Queue = asyncio.Queue()
            self._queues[name] = queue
            self._workers.append(asyncio.create_task(self._worker(name, queue), name=f"wa-{name}"))
        await self._open_session()

    def get_qr_data_url(self) -> Optional[str]:
        """PNG data URL of the pending pairing code; None unless status is qr_ready."""
        qr = self.qr_code
        if not qr:
            return None
        return png_to_data_url(render_qr_png(qr))

    async def reset_session(self) -> None:
        """Drop the local credentials and pair again.

        The old transport is ended, not logged out, so the phone keeps the
        device link until the new pairing replaces it.
        """
        logger.info("session_reset_requested")
        self._cancel_reconnect()
        old, self._session = self._session, None
        if old is not None:
            try:
                await old.end()
            except Exception as e:
                logger.warning("session_end_failed", error=str(e))
            old.delete_credentials()
        else:
            self._session_factory(Path(self._config.session_path)).delete_credentials()

        self._status = ConnectionStatus.DISCONNECTED
        self._qr_code = None
        self._logged_out = False
        self.reconnect_attempts = 0
        logger.info("session_credentials_cleared")
        await self._open_session()

    async def disconnect(self) -> None:
        """End the transport but keep credentials, so a restart resumes the same link."""
        self._closing = True
        self._cancel_reconnect()
        session, self._session = self._session, None
        if session is not None:
            try:
                await session.end()
            except Exception as e:
                logger.warning("session_end_failed", error=str(e))
        self._status = ConnectionStatus.DISCONNECTED
        self._qr_code = None

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        self._initialized = False
        logger.info("whatsapp_disconnected")

    async def send_text(self, jid: str, text: str) -> None:
        if self._session is None:
            raise SessionError("WhatsApp session is not open")
        await self._session.send_text(jid, text)

    async def drain(self) -> None:
        """Wait until every queued session event has been handled."""
        for queue in self._queues.values():
            await queue.join()

    def next_reconnect_delay(self) -> float:
        """Advance the attempt counter and return how long to wait before reconnecting."""
        if self.reconnect_attempts >= self._config.max_reconnect_attempts:
            self.reconnect_attempts = 0
            return self._config.reconnect_cooldown
        self.reconnect_attempts += 1
        delay = self._config.reconnect_base_delay * 2 ** (self.reconnect_attempts - 1)
        return min(delay, self._config.reconnect_max_delay)

    async def _open_session(self) -> None:
        session = self._session_factory(Path(self._config.session_path))
        session.on_event(self._make_callback(session))
        self._session = session
        self._status = ConnectionStatus.CONNECTING
        logger.info("whatsapp_connecting", session_path=self._config.session_path)
        try:
            await session.connect()
        except Exception as e:
            logger.warning("whatsapp_connect_failed", error=str(e))
            if session is self._session:
                self._status = ConnectionStatus.DISCONNECTED
                self._schedule_reconnect()

    def _make_callback(self, session: ProtocolSession):
        async def _on_event(event: SessionEvent) -> None:
            category = _category(event)
            if category is None or category not in self._queues:
                return
            self._queues[category].put_nowait((session, event))

        return _on_event

    async def _worker(self, name: str, queue: asyncio.Queue) -> None:
        while True:
            session, event = await queue.get()
            try:
                await self._handle(name, session, event)
            except Exception as e:
                logger.error("session_event_failed", category=name, error=str(e))
                await self._errors.record_exception(e, location=f"whatsapp.{name}")
            finally:
                queue.task_done()

    async def _handle(self, name: str, session: ProtocolSession, event: SessionEvent) -> None:
        connected = self._status == ConnectionStatus.CONNECTED
        if isinstance(event, ConnectionUpdate):
            if session is self._session:
                await self._on_connection_update(event)
        elif isinstance(event, MessagesUpsert):
            if event.type not in ("notify", "append"):
                return
            saved = await self._normalizer.ingest_batch(event.messages, session, connected)
            if event.type == "notify":
                for message in saved:
                    self._tasks.spawn(self._run_command(message), name=f"command:{message.message_id}")
        elif isinstance(event, HistorySync):
            saved = await self._normalizer.ingest_batch(event.messages, session, connected)
            logger.info("history_sync_ingested", received=len(event.messages), saved=len(saved))
        elif isinstance(event, CallEvent):
            await self._normalizer.ingest_call(event, own_jid=session.own_jid)
        else:
            await self._normalizer.ingest_deletion(event)

    async def _on_connection_update(self, update: ConnectionUpdate) -> None:
        if update.qr:
            self._qr_code = update.qr
            self._status = ConnectionStatus.QR_READY
            logger.info("whatsapp_qr_ready")

        if update.connection == "open":
            self._status = ConnectionStatus.CONNECTED
            self._qr_code = None
            self._logged_out = False
            self.reconnect_attempts = 0
            logger.info("whatsapp_connected")
        elif update.connection == "connecting":
            if self._status != ConnectionStatus.QR_READY:
                self._status = ConnectionStatus.CONNECTING
        elif update.connection == "close":
            self._status = ConnectionStatus.DISCONNECTED
            self._qr_code = None
            if update.logged_out:
                self._logged_out = True
                logger.error(
                    "whatsapp_logged_out",
                    reason=update.reason,
                    hint="Reset the session to pair this device again",
                )
            else:
                logger.warning("whatsapp_connection_closed", reason=update.reason)
                self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closing or self._logged_out:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        delay = self.next_reconnect_delay()
        logger.info(
            "whatsapp_reconnect_scheduled",
            delay=delay,
            attempt=self.reconnect_attempts,
            max_attempts=self._config.max_reconnect_attempts,
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay), name="wa-reconnect")

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        if self._closing or self._logged_out:
            return
        old, self._session = self._session, None
        if old is not None:
            try:
                await old.end()
            except Exception as e:
                logger.debug("stale_session_end_failed", error=str(e))
        # A failed connect below schedules the next attempt from inside this task.
        self._reconnect_task = None
        await self._open_session()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None

    async def _run_command(self, message: Message) -> None:
        if self._interpreter is None:
            return
        result = await self._interpreter.handle(message)
        if result is None or not result.should_reply:
            return
        try:
            await self.send_text(message.remote_jid, result.message)
        except Exception as e:
            logger.warning("command_reply_failed", remote_jid=message.remote_jid, error=str(e))
            await self._errors.record_exception(
                e, location="whatsapp.command_reply", context={"remote_jid": message.remote_jid}
            )
