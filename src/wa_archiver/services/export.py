"""CSV exports of archived messages."""

from __future__ import annotations

import csv
import io
from datetime import datetime, tzinfo
from typing import Callable, Iterable, Optional

from wa_archiver.core.jid import numbers_match
from wa_archiver.core.timeutil import day_bounds, epoch_to_iso, utc_now
from wa_archiver.storage.message_repo import MessageRepository, default_sort_order
from wa_archiver.storage.models import Message

CSV_HEADERS = [
    "ID",
    "Remote JID",
    "Sender Name",
    "Message ID",
    "Type",
    "Content",
    "Timestamp",
    "Is Group",
    "Created At",
]


def messages_to_csv(messages: Iterable[Message]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for msg in messages:
        writer.writerow(
            [
                msg.id,
                msg.remote_jid,
                msg.sender_name or "",
                msg.message_id,
                msg.message_type,
                msg.content or "",
                epoch_to_iso(msg.timestamp),
                "Yes" if msg.is_group else "No",
                msg.created_at,
            ]
        )
    return buffer.getvalue()


class ExportService:
    """Builds CSV documents; "today" is the current day in the configured timezone."""

    def __init__(
        self,
        messages: MessageRepository,
        tz: tzinfo,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._messages = messages
        self._tz = tz
        self._clock = clock

    def local_now(self) -> datetime:
        return self._clock().astimezone(self._tz)

    def today_label(self) -> str:
        return self.local_now().strftime("%Y-%m-%d")

    def today_bounds(self) -> tuple[int, int]:
        return day_bounds(self._tz, self._clock())

    async def all_csv(self) -> str:
        return messages_to_csv(await self._messages.list_messages())

    async def today_messages(self) -> list[Message]:
        since, until = self.today_bounds()
        return await self._messages.list_messages(since=since, until=until)

    async def today_csv(self) -> str:
        return messages_to_csv(await self.today_messages())

    async def range_csv(self, since: Optional[int], until: Optional[int]) -> str:
        return messages_to_csv(await self._messages.list_messages(since=since, until=until))

    async def conversation_messages(
        self, remote_jid: str, search_text: Optional[str] = None
    ) -> list[Message]:
        return await self._messages.list_messages(
            remote_jid=remote_jid,
            search_text=search_text,
            sort_order=default_sort_order(remote_jid, search_text),
        )

    async def conversation_csv(self, remote_jid: str, search_text: Optional[str] = None) -> str:
        return messages_to_csv(await self.conversation_messages(remote_jid, search_text))

    async def phone_numbers_csv(self, numbers: list[str]) -> str:
        """Today's messages from chats matching any of ``numbers``; all of today when empty."""
        messages = await self.today_messages()
        if numbers:
            messages = [msg for msg in messages if numbers_match(msg.remote_jid, numbers)]
        return messages_to_csv(messages)
