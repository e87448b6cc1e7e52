"""Cached group/contact display names and profile pictures."""

from __future__ import annotations

import asyncio
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

import httpx

from wa_archiver.core.jid import is_group_jid
from wa_archiver.core.tasks import BackgroundTasks
from wa_archiver.core.timeutil import parse_store_ts, to_store_ts, utc_now
from wa_archiver.log import get_logger
from wa_archiver.storage.database import Database
from wa_archiver.storage.models import ChatMetadata

if TYPE_CHECKING:
    from wa_archiver.whatsapp.base import ProtocolSession

logger = get_logger(__name__)

CACHE_TTL = timedelta(hours=24)
PROFILES_SUBDIR = "profiles"


def _table_for(jid: str) -> tuple[str, str, str]:
    if is_group_jid(jid):
        return "groups", "group_jid", "group_name"
    return "contacts", "contact_jid", "contact_name"


class MetadataCache:
    """Store-backed cache of chat names and pictures.

    Entries are fresh for 24 hours. Refreshes merge into the existing row: a
    field that comes back unknown never overwrites a known value.
    """

    def __init__(
        self,
        db: Database,
        media_dir: str | Path,
        tasks: BackgroundTasks,
        ttl: timedelta = CACHE_TTL,
        clock: Callable[[], datetime] = utc_now,
        http_transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 15.0,
    ):
        self._db = db
        self._media_dir = Path(media_dir)
        self._tasks = tasks
        self._ttl = ttl
        self._clock = clock
        self._http_transport = http_transport
        self._timeout = timeout
        self._in_flight: set[str] = set()

    async def get(self, jid: str) -> ChatMetadata | None:
        table, key, name_col = _table_for(jid)
        cursor = await self._db.conn.execute(
            f"SELECT {key} AS jid, {name_col} AS name, profile_picture, updated_at "
            f"FROM {table} WHERE {key} = ?",
            (jid,),
        )
        row = await cursor.fetchone()
        if not row:
            return None
        return ChatMetadata(
            jid=row["jid"],
            name=row["name"],
            profile_picture=row["profile_picture"],
            updated_at=row["updated_at"],
        )

    async def group_name(self, jid: str) -> Optional[str]:
        if not is_group_jid(jid):
            return None
        entry = await self.get(jid)
        return entry.name if entry else None

    async def display_names(self) -> dict[str, str]:
        cursor = await self._db.conn.execute(
            """SELECT group_jid AS jid, group_name AS name FROM groups WHERE group_name IS NOT NULL
               UNION ALL
               SELECT contact_jid, contact_name FROM contacts WHERE contact_name IS NOT NULL"""
        )
        return {row["jid"]: row["name"] for row in await cursor.fetchall()}

    async def profile_pictures(self) -> dict[str, str]:
        cursor = await self._db.conn.execute(
            """SELECT group_jid AS jid, profile_picture FROM groups WHERE profile_picture IS NOT NULL
               UNION ALL
               SELECT contact_jid, profile_picture FROM contacts WHERE profile_picture IS NOT NULL"""
        )
        return {row["jid"]: row["profile_picture"] for row in await cursor.fetchall()}

    async def needs_refresh(self, jid: str) -> bool:
        entry = await self.get(jid)
        if entry is None or not entry.updated_at:
            return True
        try:
            updated = parse_store_ts(entry.updated_at)
        except ValueError:
            return True
        return self._clock() - updated > self._ttl

    async def upsert(
        self,
        jid: str,
        name: Optional[str] = None,
        profile_picture: Optional[str] = None,
    ) -> None:
        table, key, name_col = _table_for(jid)
        await self._db.conn.execute(
            f"""INSERT INTO {table} ({key}, {name_col}, profile_picture, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT({key}) DO UPDATE SET
                    {name_col} = COALESCE(excluded.{name_col}, {name_col}),
                    profile_picture = COALESCE(excluded.profile_picture, profile_picture),
                    updated_at = excluded.updated_at""",
            (jid, name or None, profile_picture or None, to_store_ts(self._clock())),
        )
        await self._db.conn.commit()

    async def refresh(self, jid: str, session: ProtocolSession) -> None:
        """Fetch the name and picture of a chat and merge them into the cache.

        Lookups fail routinely (privacy settings, left groups), so failures
        are only logged at debug level.
        """
        name: Optional[str] = None
        picture: Optional[str] = None

        if is_group_jid(jid):
            try:
                metadata = await session.fetch_group_metadata(jid)
                name = metadata.get("subject") or None
            except Exception as e:
                logger.debug("group_metadata_unavailable", jid=jid, error=str(e))

        try:
            url = await session.fetch_profile_picture_url(jid)
            if url:
                picture = await self._download_picture(jid, url)
        except Exception as e:
            logger.debug("profile_picture_unavailable", jid=jid, error=str(e))

        await self.upsert(jid, name=name, profile_picture=picture)
        logger.debug("metadata_refreshed", jid=jid, has_name=bool(name), has_picture=bool(picture))

    def schedule_refresh(self, jid: str, session: ProtocolSession) -> asyncio.Task | None:
        """Refresh in the background when stale; at most one refresh per jid at a time."""
        if not jid or jid in self._in_flight:
            return None
        self._in_flight.add(jid)
        return self._tasks.spawn(self._refresh_if_stale(jid, session), name=f"refresh:{jid}")

    async def _refresh_if_stale(self, jid: str, session: ProtocolSession) -> None:
        try:
            if await self.needs_refresh(jid):
                await self.refresh(jid, session)
        finally:
            self._in_flight.discard(jid)

    async def _download_picture(self, jid: str, url: str) -> str:
        async with httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._http_transport,
            follow_redirects=True,
        ) as client:
            response = await client.get(url)
            response.raise_for_status()

        filename = re.sub(r"[^\w.-]", "_", jid) + ".jpg"
        target_dir = self._media_dir / PROFILES_SUBDIR
        await asyncio.to_thread(target_dir.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread((target_dir / filename).write_bytes, response.content)
        return f"/media/{PROFILES_SUBDIR}/{filename}"
