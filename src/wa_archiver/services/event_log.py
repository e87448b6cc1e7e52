"""Persistent log of WhatsApp-side deletions and chat clears."""

from __future__ import annotations

import json
from datetime import datetime, tzinfo
from typing import Any, Callable, Optional

from wa_archiver.core.jid import is_group_jid
from wa_archiver.core.timeutil import start_of_day, to_store_ts, utc_now
from wa_archiver.core.types import EventType
from wa_archiver.log import get_logger
from wa_archiver.storage.database import Database
from wa_archiver.storage.message_repo import MessageRepository
from wa_archiver.storage.metadata_cache import MetadataCache
from wa_archiver.storage.models import AppEvent

logger = get_logger(__name__)


class EventLog:
    """Append-only record of things that happened to archived chats.

    Deleted messages and cleared chats are never removed from the archive;
    they are noted here instead, with whatever name and number the archive
    already knows for the chat.
    """

    def __init__(
        self,
        db: Database,
        messages: MessageRepository,
        metadata: MetadataCache,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._db = db
        self._messages = messages
        self._metadata = metadata
        self._clock = clock

    async def log_message_delete(
        self,
        remote_jid: str,
        message_id: Optional[str],
        details: Optional[dict[str, Any]] = None,
    ) -> AppEvent | None:
        return await self._log(EventType.MESSAGE_DELETE, remote_jid, message_id, details)

    async def log_chat_delete(
        self, remote_jid: str, details: Optional[dict[str, Any]] = None
    ) -> AppEvent | None:
        return await self._log(EventType.CHAT_DELETE, remote_jid, None, details)

    async def log_chat_clear(
        self, remote_jid: str, details: Optional[dict[str, Any]] = None
    ) -> AppEvent | None:
        return await self._log(EventType.CHAT_CLEAR, remote_jid, None, details)

    async def _log(
        self,
        event_type: EventType,
        remote_jid: str,
        message_id: Optional[str],
        details: Optional[dict[str, Any]],
    ) -> AppEvent | None:
        try:
            enriched = dict(details or {})
            enriched.update(await self._messages.contact_hint(remote_jid))
            enriched["group_name"] = await self._metadata.group_name(remote_jid)

            cursor = await self._db.conn.execute(
                """INSERT INTO events (event_type, remote_jid, message_id, details)
                   VALUES (?, ?, ?, ?)""",
                (str(event_type), remote_jid, message_id, json.dumps(enriched, default=str)),
            )
            await self._db.conn.commit()
            logger.info(
                "event_logged",
                event_type=str(event_type),
                remote_jid=remote_jid,
                message_id=message_id,
            )
            return await self.get(cursor.lastrowid)  # type: ignore[arg-type]
        except Exception as e:
            logger.error("event_log_write_failed", event_type=str(event_type), error=str(e))
            return None

    async def get(self, event_id: int) -> AppEvent | None:
        cursor = await self._db.conn.execute("SELECT * FROM events WHERE id = ?", (event_id,))
        row = await cursor.fetchone()
        if not row:
            return None
        return (await self._with_chat_names([self._row_to_event(row)]))[0]

    async def list_events(
        self,
        page: int = 1,
        limit: int = 50,
        event_type: Optional[str] = None,
        remote_jid: Optional[str] = None,
        since: Optional[str] = None,
        until: Optional[str] = None,
    ) -> tuple[list[AppEvent], int]:
        clauses = ["1=1"]
        params: list[Any] = []
        if event_type:
            clauses.append("event_type = ?")
            params.append(event_type)
        if remote_jid:
            clauses.append("remote_jid = ?")
            params.append(remote_jid)
        if since:
            clauses.append("created_at >= ?")
            params.append(since)
        if until:
            clauses.append("created_at <= ?")
            params.append(until)
        where = " AND ".join(clauses)

        cursor = await self._db.conn.execute(
            f"SELECT COUNT(*) AS count FROM events WHERE {where}", params
        )
        total = (await cursor.fetchone())["count"]

        page = max(1, page)
        cursor = await self._db.conn.execute(
            f"""SELECT * FROM events WHERE {where}
                ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?""",
            (*params, limit, (page - 1) * limit),
        )
        events = [self._row_to_event(row) for row in await cursor.fetchall()]
        return await self._with_chat_names(events), total

    async def types(self) -> list[str]:
        cursor = await self._db.conn.execute(
            "SELECT DISTINCT event_type FROM events ORDER BY event_type"
        )
        return [row["event_type"] for row in await cursor.fetchall()]

    async def today(self, tz: tzinfo) -> list[AppEvent]:
        start = to_store_ts(start_of_day(tz, self._clock()))
        cursor = await self._db.conn.execute(
            "SELECT * FROM events WHERE created_at >= ? ORDER BY created_at DESC, id DESC",
            (start,),
        )
        events = [self._row_to_event(row) for row in await cursor.fetchall()]
        return await self._with_chat_names(events)

    async def _with_chat_names(self, events: list[AppEvent]) -> list[AppEvent]:
        names: dict[str, Optional[str]] = {}
        for event in events:
            jid = event.remote_jid
            if not jid:
                continue
            if jid not in names:
                names[jid] = await self._chat_name(jid)
            event.chat_name = names[jid]
        return events

    async def _chat_name(self, jid: str) -> Optional[str]:
        if is_group_jid(jid):
            return await self._metadata.group_name(jid)
        hint = await self._messages.contact_hint(jid)
        if hint["contact_name"]:
            return hint["contact_name"]
        entry = await self._metadata.get(jid)
        return entry.name if entry else None

    @staticmethod
    def _row_to_event(row) -> AppEvent:
        details: dict[str, Any] = {}
        if row["details"]:
            try:
                details = json.loads(row["details"])
            except ValueError:
                details = {"raw": row["details"]}
        return AppEvent(
            id=row["id"],
            event_type=row["event_type"],
            remote_jid=row["remote_jid"],
            message_id=row["message_id"],
            details=details,
            created_at=row["created_at"],
        )
