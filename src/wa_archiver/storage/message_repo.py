"""Message repository: idempotent inserts and the read-side projections."""

from __future__ import annotations

import sqlite3
from typing import Any, Optional

from wa_archiver.core.jid import is_lid_jid, phone_number, user_part
from wa_archiver.core.types import SortOrder
from wa_archiver.log import get_logger
from wa_archiver.storage.database import Database
from wa_archiver.storage.models import (
    Conversation,
    Message,
    MessageFilter,
    MessagePage,
    NewMessage,
)

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100

_CONVERSATIONS_SQL = """
WITH summary AS (
    SELECT remote_jid,
           MAX(is_group)  AS is_group,
           MAX(timestamp) AS last_timestamp,
           COUNT(*)       AS message_count
    FROM messages
    GROUP BY remote_jid
)
SELECT s.remote_jid, s.is_group, s.last_timestamp, s.message_count,
       (SELECT content FROM messages m WHERE m.remote_jid = s.remote_jid
         ORDER BY m.timestamp DESC, m.id DESC LIMIT 1) AS last_message,
       (SELECT message_type FROM messages m WHERE m.remote_jid = s.remote_jid
         ORDER BY m.timestamp DESC, m.id DESC LIMIT 1) AS last_message_type,
       (SELECT sender_name FROM messages m
         WHERE m.remote_jid = s.remote_jid AND m.is_from_me = 0
           AND m.sender_name IS NOT NULL AND m.sender_name != ''
         ORDER BY m.timestamp DESC, m.id DESC LIMIT 1) AS last_sender_name,
       g.group_name, g.profile_picture AS group_picture,
       c.contact_name, c.profile_picture AS contact_picture
FROM summary s
LEFT JOIN groups g ON g.group_jid = s.remote_jid
LEFT JOIN contacts c ON c.contact_jid = s.remote_jid
ORDER BY s.last_timestamp DESC
"""


def _is_duplicate_message_id(error: sqlite3.IntegrityError) -> bool:
    text = str(error)
    return "UNIQUE constraint failed" in text and "message_id" in text


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def default_sort_order(remote_jid: Optional[str], search_text: Optional[str]) -> SortOrder:
    """Chat order (oldest first) for a single conversation, newest first otherwise."""
    if remote_jid and not search_text:
        return SortOrder.ASC
    return SortOrder.DESC


class MessageRepository:
    """Messages are written once and never updated or deleted."""

    def __init__(self, db: Database):
        self._db = db

    async def insert(self, message: NewMessage) -> Message | None:
        """Insert a message. Returns None when the message_id is already stored."""
        try:
            cursor = await self._db.conn.execute(
                """INSERT INTO messages
                   (remote_jid, sender_name, participant_jid, message_id, message_type,
                    content, timestamp, is_group, is_from_me, media_path, media_mimetype)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    message.remote_jid,
                    message.sender_name or None,
                    message.participant_jid or None,
                    message.message_id,
                    str(message.message_type),
                    message.content,
                    message.timestamp,
                    int(message.is_group),
                    int(message.is_from_me),
                    message.media_path,
                    message.media_mimetype,
                ),
            )
        except sqlite3.IntegrityError as e:
            if _is_duplicate_message_id(e):
                logger.debug("message_duplicate", message_id=message.message_id)
                return None
            raise
        await self._db.conn.commit()
        return await self.get(cursor.lastrowid)  # type: ignore[arg-type]

    async def get(self, row_id: int) -> Message | None:
        cursor = await self._db.conn.execute("SELECT * FROM messages WHERE id = ?", (row_id,))
        row = await cursor.fetchone()
        return self._row_to_message(row) if row else None

    async def get_by_message_id(self, message_id: str) -> Message | None:
        cursor = await self._db.conn.execute(
            "SELECT * FROM messages WHERE message_id = ?", (message_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_message(row) if row else None

    async def query(self, flt: MessageFilter) -> MessagePage:
        """Paginated, filterable message listing for the web layer."""
        limit = max(1, min(flt.limit or 50, MAX_PAGE_SIZE))
        page = max(1, flt.page or 1)
        where, params = self._where(flt.remote_jid, flt.search_text, flt.since, flt.until)

        cursor = await self._db.conn.execute(
            f"SELECT COUNT(*) AS count FROM messages WHERE {where}", params
        )
        total = (await cursor.fetchone())["count"]

        sort_order = (
            SortOrder(flt.sort_order)
            if flt.sort_order
            else default_sort_order(flt.remote_jid, flt.search_text)
        )
        direction = "ASC" if sort_order == SortOrder.ASC else "DESC"
        cursor = await self._db.conn.execute(
            f"""SELECT * FROM messages WHERE {where}
                ORDER BY timestamp {direction}, id {direction}
                LIMIT ? OFFSET ?""",
            (*params, limit, (page - 1) * limit),
        )
        rows = await cursor.fetchall()
        return MessagePage(
            messages=[self._row_to_message(row) for row in rows],
            total=total,
            page=page,
            limit=limit,
            sort_order=sort_order,
        )

    async def list_messages(
        self,
        since: Optional[int] = None,
        until: Optional[int] = None,
        remote_jid: Optional[str] = None,
        search_text: Optional[str] = None,
        sort_order: SortOrder = SortOrder.DESC,
    ) -> list[Message]:
        """Unpaginated read used by exports."""
        where, params = self._where(remote_jid, search_text, since, until)
        direction = "ASC" if sort_order == SortOrder.ASC else "DESC"
        cursor = await self._db.conn.execute(
            f"SELECT * FROM messages WHERE {where} ORDER BY timestamp {direction}, id {direction}",
            params,
        )
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def conversations(self) -> list[Conversation]:
        """One row per remote_jid, most recently active first."""
        cursor = await self._db.conn.execute(_CONVERSATIONS_SQL)
        rows = await cursor.fetchall()
        conversations = []
        for row in rows:
            is_group = bool(row["is_group"])
            if is_group:
                name = row["group_name"]
                picture = row["group_picture"]
            else:
                name = row["last_sender_name"] or row["contact_name"]
                picture = row["contact_picture"]
            conversations.append(
                Conversation(
                    remote_jid=row["remote_jid"],
                    is_group=is_group,
                    display_name=name,
                    profile_picture=picture,
                    last_message=row["last_message"],
                    last_message_type=row["last_message_type"],
                    last_timestamp=row["last_timestamp"],
                    message_count=row["message_count"],
                )
            )
        return conversations

    async def latest_timestamp(self) -> int:
        cursor = await self._db.conn.execute("SELECT MAX(timestamp) AS latest FROM messages")
        row = await cursor.fetchone()
        return row["latest"] or 0

    async def count(self) -> int:
        cursor = await self._db.conn.execute("SELECT COUNT(*) AS count FROM messages")
        return (await cursor.fetchone())["count"]

    async def count_since(self, since: int) -> int:
        cursor = await self._db.conn.execute(
            "SELECT COUNT(*) AS count FROM messages WHERE timestamp >= ?", (since,)
        )
        return (await cursor.fetchone())["count"]

    async def count_conversations(self) -> int:
        cursor = await self._db.conn.execute(
            "SELECT COUNT(DISTINCT remote_jid) AS count FROM messages"
        )
        return (await cursor.fetchone())["count"]

    async def contact_hint(self, remote_jid: str) -> dict[str, Optional[str]]:
        """Best-known name and phone number for a chat, from its newest stored rows.

        Deletion events may only carry a LID, so the phone number is taken
        from the sending participant or from a phone-addressed remote_jid.
        """
        cursor = await self._db.conn.execute(
            """SELECT sender_name, participant_jid FROM messages
               WHERE remote_jid = ? AND is_from_me = 0
               ORDER BY timestamp DESC, id DESC LIMIT 1""",
            (remote_jid,),
        )
        row = await cursor.fetchone()
        if row:
            participant = row["participant_jid"]
            phone = user_part(participant) if participant and not is_lid_jid(participant) else None
            return {
                "contact_name": row["sender_name"],
                "contact_phone": phone or phone_number(remote_jid),
            }

        cursor = await self._db.conn.execute(
            "SELECT 1 FROM messages WHERE remote_jid = ? LIMIT 1", (remote_jid,)
        )
        if await cursor.fetchone():
            return {"contact_name": None, "contact_phone": phone_number(remote_jid)}
        return {"contact_name": None, "contact_phone": None}

    @staticmethod
    def _where(
        remote_jid: Optional[str],
        search_text: Optional[str],
        since: Optional[int],
        until: Optional[int],
    ) -> tuple[str, tuple[Any, ...]]:
        clauses = ["1=1"]
        params: list[Any] = []
        if remote_jid:
            clauses.append("remote_jid = ?")
            params.append(remote_jid)
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(since)
        if until is not None:
            clauses.append("timestamp <= ?")
            params.append(until)
        if search_text:
            clauses.append("content LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(search_text)}%")
        return " AND ".join(clauses), tuple(params)

    @staticmethod
    def _row_to_message(row) -> Message:
        return Message(
            id=row["id"],
            remote_jid=row["remote_jid"],
            sender_name=row["sender_name"],
            participant_jid=row["participant_jid"],
            message_id=row["message_id"],
            message_type=row["message_type"],
            content=row["content"],
            timestamp=row["timestamp"],
            is_group=bool(row["is_group"]),
            is_from_me=bool(row["is_from_me"]),
            media_path=row["media_path"],
            media_mimetype=row["media_mimetype"],
            created_at=row["created_at"],
        )
