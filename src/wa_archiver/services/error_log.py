"""Persistent error log: best-effort writes, paginated reads."""

from __future__ import annotations

import json
import traceback
from datetime import datetime, timedelta, tzinfo
from typing import Any, Callable, Optional

from wa_archiver.core.timeutil import start_of_day, to_store_ts, utc_now
from wa_archiver.log import get_logger
from wa_archiver.storage.database import Database
from wa_archiver.storage.models import AppError

logger = get_logger(__name__)


def _load_json(value: Optional[str]) -> Any:
    if not value:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return value


class ErrorLog:
    """Errors that happened while archiving, kept in the ``errors`` table.

    Writing never raises: a failure to record an error is only logged to the
    console.
    """

    def __init__(self, db: Database, clock: Callable[[], datetime] = utc_now):
        self._db = db
        self._clock = clock

    async def record(
        self,
        error_type: str,
        message: str,
        stack: Optional[str] = None,
        location: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> AppError | None:
        try:
            cursor = await self._db.conn.execute(
                """INSERT INTO errors (error_type, error_message, error_stack, location, context)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    error_type,
                    message,
                    stack,
                    location,
                    json.dumps(context, default=str) if context else None,
                ),
            )
            await self._db.conn.commit()
            return await self.get(cursor.lastrowid)  # type: ignore[arg-type]
        except Exception as e:
            logger.error("error_log_write_failed", error_type=error_type, error=str(e))
            return None

    async def record_exception(
        self,
        exc: BaseException,
        location: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> AppError | None:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return await self.record(
            type(exc).__name__,
            str(exc) or type(exc).__name__,
            stack=stack,
            location=location,
            context=context,
        )

    async def get(self, error_id: int) -> AppError | None:
        cursor = await self._db.conn.execute("SELECT * FROM errors WHERE id = ?", (error_id,))
        row = await cursor.fetchone()
        return self._row_to_error(row) if row else None

    async def list_errors(
        self,
        page: int = 1,
        limit: int = 50,
        error_type: Optional[str] = None,
        since: Optional[str] = None,
        until: Optional[str] = None,
    ) -> tuple[list[AppError], int]:
        """Newest first. ``since``/``until`` are ISO strings compared against created_at."""
        clauses = ["1=1"]
        params: list[Any] = []
        if error_type:
            clauses.append("error_type = ?")
            params.append(error_type)
        if since:
            clauses.append("created_at >= ?")
            params.append(since)
        if until:
            clauses.append("created_at <= ?")
            params.append(until)
        where = " AND ".join(clauses)

        cursor = await self._db.conn.execute(
            f"SELECT COUNT(*) AS count FROM errors WHERE {where}", params
        )
        total = (await cursor.fetchone())["count"]

        page = max(1, page)
        cursor = await self._db.conn.execute(
            f"""SELECT * FROM errors WHERE {where}
                ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?""",
            (*params, limit, (page - 1) * limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_error(row) for row in rows], total

    async def types(self) -> list[str]:
        cursor = await self._db.conn.execute(
            "SELECT DISTINCT error_type FROM errors ORDER BY error_type"
        )
        return [row["error_type"] for row in await cursor.fetchall()]

    async def today(self, tz: tzinfo) -> list[AppError]:
        start = to_store_ts(start_of_day(tz, self._clock()))
        cursor = await self._db.conn.execute(
            "SELECT * FROM errors WHERE created_at >= ? ORDER BY created_at DESC, id DESC",
            (start,),
        )
        return [self._row_to_error(row) for row in await cursor.fetchall()]

    async def purge_older_than(self, days: int = 30) -> int:
        cutoff = to_store_ts(self._clock() - timedelta(days=days))
        cursor = await self._db.conn.execute("DELETE FROM errors WHERE created_at < ?", (cutoff,))
        await self._db.conn.commit()
        if cursor.rowcount:
            logger.info("errors_purged", count=cursor.rowcount, days=days)
        return cursor.rowcount

    @staticmethod
    def _row_to_error(row) -> AppError:
        return AppError(
            id=row["id"],
            error_type=row["error_type"],
            error_message=row["error_message"],
            error_stack=row["error_stack"],
            location=row["location"],
            context=_load_json(row["context"]),
            created_at=row["created_at"],
        )
