"""Shared fixtures: a temporary store, the services over it, and protocol/email fakes."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio

from wa_archiver.config import CommandsConfig, DailyReportConfig, EmailConfig
from wa_archiver.core.tasks import BackgroundTasks
from wa_archiver.ingest.normalizer import MessageNormalizer
from wa_archiver.services.email.base import EmailMessage, EmailSender
from wa_archiver.services.error_log import ErrorLog
from wa_archiver.services.event_log import EventLog
from wa_archiver.services.export import ExportService
from wa_archiver.services.reports import ReportService
from wa_archiver.storage.database import Database
from wa_archiver.storage.message_repo import MessageRepository
from wa_archiver.storage.metadata_cache import MetadataCache
from wa_archiver.storage.models import NewMessage
from wa_archiver.whatsapp.base import Envelope, ProtocolSession

# 2023-11-14T22:13:20Z
NOW = 1700000000
UTC = ZoneInfo("UTC")


def fixed_clock(ts: float = NOW):
    return lambda: datetime.fromtimestamp(ts, tz=timezone.utc)


class FakeSession(ProtocolSession):
    """In-memory protocol session driven by the tests."""

    def __init__(self, session_path: str | Path = "unused"):
        super().__init__(session_path)
        self.connect_calls = 0
        self.end_calls = 0
        self.sent: list[tuple[str, str]] = []
        self.media: dict[str, bytes] = {}
        self.media_error: Optional[Exception] = None
        self.groups: dict[str, dict[str, Any]] = {}
        self.pictures: dict[str, str] = {}
        self.connect_error: Optional[Exception] = None
        self._own_jid: Optional[str] = None

    @property
    def own_jid(self) -> Optional[str]:
        return self._own_jid

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error

    async def end(self) -> None:
        self.end_calls += 1

    async def logout(self) -> None:
        await self.end()

    async def send_text(self, jid: str, text: str) -> None:
        self.sent.append((jid, text))

    async def download_media(self, envelope: Envelope) -> bytes:
        if self.media_error is not None:
            raise self.media_error
        return self.media.get(envelope["key"]["id"], b"")

    async def fetch_group_metadata(self, jid: str) -> dict[str, Any]:
        if jid not in self.groups:
            raise LookupError(f"not a member of {jid}")
        return self.groups[jid]

    async def fetch_profile_picture_url(self, jid: str) -> Optional[str]:
        return self.pictures.get(jid)


class RecordingEmailSender(EmailSender):
    def __init__(self) -> None:
        super().__init__("reports@example.com", "Reports")
        self.sent: list[EmailMessage] = []

    @property
    def provider_name(self) -> str:
        return "recording"

    async def send(self, message: EmailMessage) -> None:
        self.sent.append(message)


def text_envelope(
    message_id: str,
    remote_jid: str = "57300@s.whatsapp.net",
    text: str = "hello",
    timestamp: Any = NOW,
    from_me: bool = False,
    push_name: Optional[str] = "Ana",
    **key_extra: Any,
) -> Envelope:
    return {
        "key": {"remoteJid": remote_jid, "id": message_id, "fromMe": from_me, **key_extra},
        "message": {"conversation": text},
        "messageTimestamp": timestamp,
        "pushName": push_name,
    }


def new_message(message_id: str, **overrides: Any) -> NewMessage:
    fields: dict[str, Any] = {
        "remote_jid": "57300@s.whatsapp.net",
        "message_id": message_id,
        "message_type": "text",
        "timestamp": NOW,
        "content": "hello",
        "sender_name": "Ana",
    }
    fields.update(overrides)
    return NewMessage(**fields)


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "messages.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def media_dir(tmp_path) -> Path:
    return tmp_path / "media"


@pytest_asyncio.fixture
async def tasks():
    background = BackgroundTasks()
    yield background
    await background.cancel_all()


@pytest.fixture
def messages(db) -> MessageRepository:
    return MessageRepository(db)


@pytest.fixture
def metadata(db, media_dir, tasks) -> MetadataCache:
    return MetadataCache(db, media_dir, tasks, clock=fixed_clock())


@pytest.fixture
def errors(db) -> ErrorLog:
    return ErrorLog(db)


@pytest.fixture
def events(db, messages, metadata) -> EventLog:
    return EventLog(db, messages, metadata)


@pytest.fixture
def normalizer(messages, metadata, errors, events, tasks, media_dir) -> MessageNormalizer:
    return MessageNormalizer(
        messages, metadata, errors, events, tasks, media_dir, clock=lambda: float(NOW)
    )


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def export(messages) -> ExportService:
    return ExportService(messages, UTC, clock=fixed_clock())


@pytest.fixture
def email_config() -> EmailConfig:
    return EmailConfig(provider="none", report_to="owner@example.com")


@pytest.fixture
def daily_config() -> DailyReportConfig:
    return DailyReportConfig(enabled=True, hour=8, minute=0, filter_numbers=["57300"])


@pytest.fixture
def commands_config() -> CommandsConfig:
    return CommandsConfig(allowed_numbers=["57300"], freshness_seconds=60)


@pytest.fixture
def reports(email_sender, email_config, daily_config, commands_config, export, messages):
    return ReportService(
        email_sender, email_config, daily_config, commands_config, export, messages
    )
