"""Report emails shared by the scheduler, WhatsApp commands and the REST API."""

from __future__ import annotations

from html import escape
from typing import Optional

from wa_archiver.config import CommandsConfig, DailyReportConfig, EmailConfig
from wa_archiver.core.jid import user_part
from wa_archiver.core.timeutil import format_duration
from wa_archiver.core.types import ConnectionStatus
from wa_archiver.exceptions import EmailNotConfiguredError
from wa_archiver.log import get_logger
from wa_archiver.services.email.base import EmailAttachment, EmailMessage, EmailSender
from wa_archiver.services.export import ExportService
from wa_archiver.storage.message_repo import MessageRepository

logger = get_logger(__name__)

QR_CONTENT_ID = "qrcode"


def _csv_attachment(filename: str, csv_text: str) -> EmailAttachment:
    return EmailAttachment(filename=filename, content=csv_text.encode("utf-8"), mimetype="text/csv")


def _numbers_or_none(numbers: list[str]) -> str:
    return ", ".join(numbers) if numbers else "None configured"


class ReportService:
    """Composes and sends report emails.

    Every ``send_*`` method returns the recipient address, and raises
    ``EmailNotConfiguredError`` when there is no sender or no recipient.
    """

    def __init__(
        self,
        sender: Optional[EmailSender],
        email_config: EmailConfig,
        daily_config: DailyReportConfig,
        commands_config: CommandsConfig,
        export: ExportService,
        messages: MessageRepository,
    ):
        self._sender = sender
        self._email = email_config
        self._daily = daily_config
        self._commands = commands_config
        self._export = export
        self._messages = messages

    @property
    def email_enabled(self) -> bool:
        return self._sender is not None

    def require_recipient(self) -> str:
        """The configured report recipient; raises if email cannot be sent."""
        return self._require()[1]

    def _require(self, recipient: Optional[str] = None) -> tuple[EmailSender, str]:
        if self._sender is None:
            raise EmailNotConfiguredError("Email service not configured")
        recipient = recipient or self._email.report_to
        if not recipient:
            raise EmailNotConfiguredError("EMAIL_REPORT_TO not configured")
        return self._sender, recipient

    async def send_daily_report(self) -> str:
        sender, recipient = self._require()
        numbers = self._daily.filter_numbers
        csv_text = await self._export.phone_numbers_csv(numbers)
        today = self._export.today_label()
        filter_info = f"Filtered by: {', '.join(numbers)}" if numbers else "All messages included"

        await sender.send(
            EmailMessage(
                to=recipient,
                subject=f"Daily WhatsApp Messages Report - {today}",
                html=(
                    "<h2>Daily WhatsApp Messages Report</h2>"
                    f"<p>Please find attached the WhatsApp messages report for {today}.</p>"
                    f"<p><strong>{escape(filter_info)}</strong></p>"
                    "<p>This report was generated automatically.</p>"
                ),
                text=(
                    f"Daily WhatsApp Messages Report for {today}. {filter_info}. "
                    "Please see the attached CSV file."
                ),
                attachments=[_csv_attachment(f"whatsapp_messages_{today}.csv", csv_text)],
            )
        )
        logger.info("daily_report_sent", to=recipient, filtered=bool(numbers))
        return recipient

    async def send_manual_report(self, to: Optional[str] = None, include_all: bool = False) -> str:
        sender, recipient = self._require(to)
        csv_text = await (self._export.all_csv() if include_all else self._export.today_csv())
        today = self._export.today_label()

        await sender.send(
            EmailMessage(
                to=recipient,
                subject=f"WhatsApp Messages Report - {today}",
                html=(
                    "<h2>WhatsApp Messages Report</h2>"
                    f"<p>Please find attached the WhatsApp messages report for {today}.</p>"
                    "<p>This report was generated automatically.</p>"
                ),
                text=f"WhatsApp Messages Report for {today}. Please see the attached CSV file.",
                attachments=[_csv_attachment(f"whatsapp_messages_{today}.csv", csv_text)],
            )
        )
        logger.info("manual_report_sent", to=recipient, include_all=include_all)
        return recipient

    async def send_conversation(self, remote_jid: str, search_text: Optional[str] = None) -> str:
        sender, recipient = self._require()
        csv_text = await self._export.conversation_csv(remote_jid, search_text)
        today = self._export.today_label()
        contact = user_part(remote_jid)
        search_info = f' (filtered by: "{search_text}")' if search_text else ""

        await sender.send(
            EmailMessage(
                to=recipient,
                subject=f"WhatsApp Conversation Export - {contact}",
                html=(
                    "<h2>WhatsApp Conversation Export</h2>"
                    f"<p>Conversation with: <strong>{escape(contact)}</strong>"
                    f"{escape(search_info)}</p>"
                    f"<p>Export date: {today}</p>"
                    "<p>Please find the messages attached as CSV.</p>"
                ),
                text=f"WhatsApp conversation export for {contact}{search_info}. Date: {today}",
                attachments=[_csv_attachment(f"whatsapp_{contact}_{today}.csv", csv_text)],
            )
        )
        logger.info("conversation_export_sent", to=recipient, remote_jid=remote_jid)
        return recipient

    async def send_health_check(self, status: str, uptime_seconds: float) -> str:
        sender, recipient = self._require()
        conversations = await self._messages.count_conversations()
        total = await self._messages.count()
        since, _ = self._export.today_bounds()
        today_count = await self._messages.count_since(since)
        uptime = format_duration(uptime_seconds)
        icon = "✅" if status == ConnectionStatus.CONNECTED else "⚠️"
        now = self._export.local_now().strftime("%Y-%m-%d %H:%M:%S %Z")

        rows = [
            ("WhatsApp Connection", f"{icon} {status}"),
            ("Uptime", uptime),
            ("Total Conversations", str(conversations)),
            ("Total Messages", str(total)),
            ("Messages Today", str(today_count)),
        ]
        table = "".join(
            f'<tr><td style="padding: 8px; border: 1px solid #ddd;"><strong>{label}</strong></td>'
            f'<td style="padding: 8px; border: 1px solid #ddd;">{escape(value)}</td></tr>'
            for label, value in rows
        )

        await sender.send(
            EmailMessage(
                to=recipient,
                subject=f"{icon} WhatsApp Archiver - Health Check",
                html=(
                    "<h2>WhatsApp Archiver - Health Check</h2>"
                    f"<p><strong>Date:</strong> {now}</p>"
                    "<h3>Status</h3>"
                    f'<table style="border-collapse: collapse; max-width: 400px;">{table}</table>'
                    "<h3>Supervised Numbers</h3>"
                    f"<p>{escape(_numbers_or_none(self._daily.filter_numbers))}</p>"
                    "<h3>Command Numbers</h3>"
                    f"<p>{escape(_numbers_or_none(self._commands.allowed_numbers))}</p>"
                ),
                text=(
                    "WhatsApp Archiver Health Check\n\n"
                    f"Status: {status}\nUptime: {uptime}\nConversations: {conversations}\n"
                    f"Total Messages: {total}\nMessages Today: {today_count}"
                ),
            )
        )
        logger.info("health_check_sent", to=recipient, status=status)
        return recipient

    async def send_supervised_csv(self) -> str:
        sender, recipient = self._require()
        numbers = self._daily.filter_numbers
        csv_text = await self._export.phone_numbers_csv(numbers)
        today = self._export.today_label()
        description = (
            f"Messages from supervised numbers: {', '.join(numbers)}"
            if numbers
            else "All messages from today"
        )

        await sender.send(
            EmailMessage(
                to=recipient,
                subject=f"📊 WhatsApp Messages CSV - {today}",
                html=(
                    "<h2>WhatsApp Messages Export</h2>"
                    f"<p><strong>Date:</strong> {today}</p>"
                    f"<p><strong>Filter:</strong> {escape(description)}</p>"
                    "<p>Please find the CSV file attached.</p>"
                ),
                text=f"WhatsApp Messages Export\nDate: {today}\nFilter: {description}",
                attachments=[_csv_attachment(f"whatsapp_messages_{today}.csv", csv_text)],
            )
        )
        logger.info("supervised_csv_sent", to=recipient, filtered=bool(numbers))
        return recipient

    async def send_qr(self, png: bytes) -> str:
        sender, recipient = self._require()
        await sender.send(
            EmailMessage(
                to=recipient,
                subject="🔐 WhatsApp QR Code - Scan to Connect",
                html=(
                    "<h2>WhatsApp QR Code</h2>"
                    "<p>Scan this QR code with your WhatsApp app to connect:</p>"
                    "<p><strong>WhatsApp → Settings → Linked Devices → Link a Device</strong></p>"
                    f'<img src="cid:{QR_CONTENT_ID}" alt="QR Code" '
                    'style="width: 300px; height: 300px;" />'
                    "<p>This QR code expires in a few minutes. "
                    "If it expires, send the 'qr' command again.</p>"
                ),
                text="WhatsApp QR Code - Please view this email in HTML format to see the QR code.",
                attachments=[
                    EmailAttachment(
                        filename="qrcode.png",
                        content=png,
                        mimetype="image/png",
                        content_id=QR_CONTENT_ID,
                    )
                ],
            )
        )
        logger.info("qr_code_sent", to=recipient)
        return recipient
