"""Tests for the WhatsApp command interpreter."""

from typing import Optional

import pytest

from wa_archiver.commands.interpreter import HELP_TEXT, CommandInterpreter
from wa_archiver.config import CommandsConfig
from wa_archiver.core.types import ConnectionStatus, MessageType
from wa_archiver.services.reports import ReportService
from wa_archiver.storage.models import Message
from wa_archiver.whatsapp.qr import png_to_data_url

from conftest import NOW


class FakeSessionControl:
    def __init__(self, status=ConnectionStatus.CONNECTED, qr: Optional[str] = None):
        self.status = status
        self.uptime = 42.0
        self.qr = qr
        self.resets = 0

    async def reset_session(self) -> None:
        self.resets += 1
        self.status = ConnectionStatus.QR_READY

    def get_qr_data_url(self) -> Optional[str]:
        return self.qr if self.status == ConnectionStatus.QR_READY else None


def _message(
    content: str = "state",
    remote_jid: str = "57300@s.whatsapp.net",
    age: int = 10,
    **overrides,
) -> Message:
    fields = dict(
        id=1,
        remote_jid=remote_jid,
        sender_name="Owner",
        participant_jid=None,
        message_id="cmd1",
        message_type=MessageType.TEXT,
        content=content,
        timestamp=NOW - age,
        is_group=False,
        is_from_me=False,
        media_path=None,
        media_mimetype=None,
        created_at="2023-11-14T22:13:10.000Z",
    )
    fields.update(overrides)
    return Message(**fields)


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def control() -> FakeSessionControl:
    return FakeSessionControl(qr=png_to_data_url(b"\x89PNG"))


@pytest.fixture
def interpreter(commands_config, reports, control) -> CommandInterpreter:
    return CommandInterpreter(
        commands_config, reports, control, clock=lambda: float(NOW), sleep=_no_sleep
    )


@pytest.mark.asyncio
async def test_fresh_state_command_replies(interpreter, email_sender):
    result = await interpreter.handle(_message("state", age=10))

    assert result.success
    assert result.should_reply
    assert result.message == "✅ Health check sent to owner@example.com"
    assert len(email_sender.sent) == 1


@pytest.mark.asyncio
async def test_stale_command_is_not_dispatched(interpreter, email_sender):
    assert await interpreter.handle(_message("state", age=120)) is None
    assert email_sender.sent == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"remote_jid": "14155550100@s.whatsapp.net"},
        {"is_from_me": True},
        {"is_group": True, "remote_jid": "57300-123@g.us"},
        {"message_type": MessageType.IMAGE},
    ],
)
async def test_gates(interpreter, overrides):
    assert await interpreter.handle(_message("state", **overrides)) is None


@pytest.mark.asyncio
async def test_empty_allow_list_disables_commands(reports, control):
    closed = CommandInterpreter(CommandsConfig(), reports, control, clock=lambda: float(NOW))
    assert await closed.handle(_message("help")) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["help", "AYUDA", "/help", "  help extra args "])
async def test_help_aliases(interpreter, text):
    result = await interpreter.dispatch(text)
    assert result.message == HELP_TEXT


@pytest.mark.asyncio
async def test_unknown_text_is_not_a_command(interpreter):
    assert await interpreter.dispatch("hello there") is None
    assert await interpreter.dispatch("   ") is None


@pytest.mark.asyncio
async def test_csv_alias(interpreter, email_sender):
    result = await interpreter.dispatch("mail-csv")
    assert result.message == "✅ CSV sent to owner@example.com"
    assert email_sender.sent[0].attachments[0].mimetype == "text/csv"


@pytest.mark.asyncio
async def test_qr_resets_connected_session_and_emails_code(interpreter, control, email_sender):
    result = await interpreter.dispatch("qr")

    assert result.success
    assert control.resets == 1
    assert email_sender.sent[0].attachments[0].content == b"\x89PNG"


@pytest.mark.asyncio
async def test_qr_without_code_reports_status(commands_config, reports):
    control = FakeSessionControl(status=ConnectionStatus.CONNECTING)
    interpreter = CommandInterpreter(commands_config, reports, control, sleep=_no_sleep)

    result = await interpreter.dispatch("qr")

    assert not result.success
    assert result.message == "⚠️ QR code not available. Current status: connecting"


@pytest.mark.asyncio
async def test_email_not_configured_becomes_failed_reply(
    commands_config, email_config, daily_config, export, messages, control
):
    reports = ReportService(None, email_config, daily_config, commands_config, export, messages)
    interpreter = CommandInterpreter(commands_config, reports, control)

    result = await interpreter.dispatch("state")

    assert not result.success
    assert result.message == "Email service not configured"
    assert control.resets == 0
    assert not (await interpreter.dispatch("qr")).success
    assert control.resets == 0


@pytest.mark.asyncio
async def test_handler_errors_become_failed_reply(interpreter, email_sender):
    async def broken(message):
        raise RuntimeError("smtp down")

    email_sender.send = broken

    result = await interpreter.dispatch("csv")

    assert not result.success
    assert result.message == "Error executing command: smtp down"
