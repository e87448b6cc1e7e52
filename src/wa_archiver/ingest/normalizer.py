"""Message normalizer: protocol envelopes in, canonical message rows out."""

from __future__ import annotations

import asyncio
import re
import time
from pathlib import Path
from typing import Any, Callable, Optional

from wa_archiver.core.jid import is_group_jid, is_lid_jid, is_phone_jid, normalize_jid
from wa_archiver.core.tasks import BackgroundTasks
from wa_archiver.core.types import MessageType
from wa_archiver.exceptions import MediaDownloadError
from wa_archiver.ingest.calls import CallTracker
from wa_archiver.ingest.content import MediaRef, Skip, classify, revoked_key
from wa_archiver.log import get_logger
from wa_archiver.services.error_log import ErrorLog
from wa_archiver.services.event_log import EventLog
from wa_archiver.storage.message_repo import MessageRepository
from wa_archiver.storage.metadata_cache import MetadataCache
from wa_archiver.storage.models import Message, NewMessage
from wa_archiver.whatsapp.base import (
    CallEvent,
    ChatCleared,
    ChatsDeleted,
    Envelope,
    MessagesDeleted,
    ProtocolSession,
)

logger = get_logger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^\w.-]")


def coerce_timestamp(value: Any, now: Optional[float] = None) -> int:
    """Protocol timestamp as unix seconds; falls back to ``now`` and never raises.

    Accepts ints, floats, numeric strings, 64-bit wrapper objects exposing
    ``to_number()``/``toNumber()`` and Long-style ``{"low", "high"}`` dicts.
    """
    fallback = int(now if now is not None else time.time())
    try:
        if value is None or isinstance(value, bool):
            return fallback
        if isinstance(value, (int, float)):
            result = int(value)
        elif isinstance(value, str):
            result = int(float(value.strip()))
        elif isinstance(value, dict):
            if "low" not in value:
                return fallback
            low = int(value["low"]) & 0xFFFFFFFF
            high = int(value.get("high") or 0)
            result = (high << 32) | low
        else:
            for accessor in ("to_number", "toNumber"):
                method = getattr(value, accessor, None)
                if callable(method):
                    result = int(method())
                    break
            else:
                result = int(value)
    except (TypeError, ValueError, OverflowError, ArithmeticError):
        return fallback
    return result if result > 0 else fallback


class JidAliases:
    """Maps anonymized ``@lid`` identities to their phone-number form.

    Envelopes sometimes carry both forms (``remoteJidAlt``/``senderPn``,
    ``participantAlt``/``participantPn``); every pair seen is remembered so
    later envelopes that only carry the LID still land in the same chat.
    """

    def __init__(self) -> None:
        self._lid_to_phone: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._lid_to_phone)

    def learn(self, lid: Optional[str], phone: Optional[str]) -> None:
        lid, phone = normalize_jid(lid), normalize_jid(phone)
        if is_lid_jid(lid) and is_phone_jid(phone):
            self._lid_to_phone[lid] = phone

    def canonical(self, jid: Optional[str], *alternates: Optional[str]) -> str:
        jid = normalize_jid(jid)
        if not is_lid_jid(jid):
            return jid
        for alternate in alternates:
            if is_phone_jid(alternate):
                self.learn(jid, alternate)
                return normalize_jid(alternate)
        return self._lid_to_phone.get(jid, jid)


class MessageNormalizer:
    """Converts protocol events into stored messages and log entries."""

    def __init__(
        self,
        messages: MessageRepository,
        metadata: MetadataCache,
        errors: ErrorLog,
        events: EventLog,
        tasks: BackgroundTasks,
        media_dir: str | Path,
        aliases: JidAliases | None = None,
        calls: CallTracker | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._messages = messages
        self._metadata = metadata
        self._errors = errors
        self._events = events
        self._tasks = tasks
        self._media_dir = Path(media_dir)
        self.aliases = aliases or JidAliases()
        self._calls = calls or CallTracker(clock=clock)
        self._clock = clock

    async def ingest(
        self,
        envelope: Envelope,
        session: Optional[ProtocolSession] = None,
        connected: bool = False,
    ) -> Message | None:
        """Store one envelope. Returns the new row, or None if skipped or already stored."""
        key = envelope.get("key") or {}
        payload = envelope.get("message")
        if not key.get("remoteJid") or not payload:
            return None

        remote_jid = self.aliases.canonical(
            key.get("remoteJid"), key.get("remoteJidAlt"), key.get("senderPn")
        )

        revoked = revoked_key(payload)
        if revoked is not None:
            await self._events.log_message_delete(
                remote_jid,
                revoked.get("id"),
                {
                    "deleted_by": normalize_jid(key.get("participant")) or remote_jid,
                    "from_me": bool(key.get("fromMe")),
                },
            )
            return None

        classification = classify(payload)
        if isinstance(classification, Skip):
            logger.debug("message_skipped", reason=classification.reason, remote_jid=remote_jid)
            return None

        now = self._clock()
        is_group = is_group_jid(remote_jid)
        participant_jid: Optional[str] = None
        if key.get("participant"):
            participant_jid = self.aliases.canonical(
                key.get("participant"), key.get("participantAlt"), key.get("participantPn")
            )

        message_id = key.get("id") or str(int(now * 1000))
        sender_name = envelope.get("pushName") or (participant_jid if is_group else None)

        media_path: Optional[str] = None
        media_mimetype: Optional[str] = None
        if classification.media is not None:
            # Replays of stored media messages must not download again.
            if await self._messages.get_by_message_id(message_id) is not None:
                return None
            media_mimetype = classification.media.mimetype
            media_path = await self._save_media(
                envelope, session, classification.message_type, classification.media, message_id
            )

        saved = await self._messages.insert(
            NewMessage(
                remote_jid=remote_jid,
                message_id=message_id,
                message_type=classification.message_type,
                timestamp=coerce_timestamp(envelope.get("messageTimestamp"), now),
                content=classification.content,
                sender_name=sender_name,
                participant_jid=participant_jid,
                is_group=is_group,
                is_from_me=bool(key.get("fromMe")),
                media_path=media_path,
                media_mimetype=media_mimetype,
            )
        )
        if saved is None:
            return None

        logger.info(
            "message_saved",
            message_type=saved.message_type,
            remote_jid=remote_jid,
            sender=sender_name,
        )
        if connected and session is not None:
            self._metadata.schedule_refresh(remote_jid, session)
        return saved

    async def ingest_batch(
        self,
        envelopes: list[Envelope],
        session: Optional[ProtocolSession] = None,
        connected: bool = False,
    ) -> list[Message]:
        """Ingest a batch; a failing envelope is logged and the rest still run."""
        saved: list[Message] = []
        for envelope in envelopes:
            try:
                message = await self.ingest(envelope, session, connected)
            except Exception as e:
                message_id = (envelope.get("key") or {}).get("id")
                logger.error("message_ingest_failed", message_id=message_id, error=str(e))
                await self._errors.record_exception(
                    e, location="normalizer.ingest_batch", context={"message_id": message_id}
                )
                continue
            if message is not None:
                saved.append(message)
        return saved

    async def ingest_call(self, event: CallEvent, own_jid: Optional[str] = None) -> Message | None:
        caller = self.aliases.canonical(event.from_jid)
        outgoing = bool(own_jid) and normalize_jid(own_jid) == caller
        record = self._calls.observe(event, outgoing=outgoing)
        if record is None:
            return None

        if event.is_group and event.group_jid:
            remote_jid = normalize_jid(event.group_jid)
            participant_jid: Optional[str] = caller
        elif outgoing and event.peer_jid:
            remote_jid = self.aliases.canonical(event.peer_jid)
            participant_jid = None
        else:
            remote_jid = caller
            participant_jid = None

        now = self._clock()
        timestamp = int(now) if record.ended else coerce_timestamp(event.timestamp, now)
        saved = await self._messages.insert(
            NewMessage(
                remote_jid=remote_jid,
                message_id=record.message_id,
                message_type=record.message_type,
                timestamp=timestamp,
                content=record.content,
                participant_jid=participant_jid,
                is_group=is_group_jid(remote_jid),
                is_from_me=outgoing,
            )
        )
        if saved is not None:
            logger.info("call_saved", message_id=record.message_id, content=record.content)
        return saved

    async def ingest_deletion(self, event: MessagesDeleted | ChatsDeleted | ChatCleared) -> int:
        """Record deletions in the event log. Archived rows are left untouched."""
        logged = 0
        if isinstance(event, MessagesDeleted):
            for key in event.keys:
                remote_jid = self.aliases.canonical(key.get("remoteJid"), key.get("remoteJidAlt"))
                if not remote_jid:
                    continue
                if await self._events.log_message_delete(
                    remote_jid, key.get("id"), {"from_me": bool(key.get("fromMe"))}
                ):
                    logged += 1
        elif isinstance(event, ChatsDeleted):
            for jid in event.jids:
                if await self._events.log_chat_delete(self.aliases.canonical(jid)):
                    logged += 1
        elif isinstance(event, ChatCleared):
            if await self._events.log_chat_clear(self.aliases.canonical(event.jid)):
                logged += 1
        return logged

    async def _save_media(
        self,
        envelope: Envelope,
        session: Optional[ProtocolSession],
        message_type: MessageType,
        media: MediaRef,
        message_id: str,
    ) -> Optional[str]:
        """Download and store media; None (with an error logged) when that fails."""
        safe_id = _UNSAFE_FILENAME_CHARS.sub("_", message_id)
        filename = f"{message_type}_{safe_id}{media.extension}"
        try:
            if session is None:
                raise MediaDownloadError("no protocol session available")
            data = await session.download_media(envelope)
            if not data:
                raise MediaDownloadError("empty media payload")
            await asyncio.to_thread(self._write_media, filename, data)
        except Exception as e:
            logger.warning(
                "media_download_failed",
                message_id=message_id,
                message_type=str(message_type),
                error=str(e),
            )
            self._tasks.spawn(
                self._errors.record_exception(
                    e,
                    location="normalizer.media",
                    context={
                        "message_id": message_id,
                        "message_type": str(message_type),
                        "remote_jid": (envelope.get("key") or {}).get("remoteJid"),
                    },
                ),
                name=f"error-log:{message_id}",
            )
            return None

        logger.debug("media_saved", filename=filename, size=len(data))
        return f"/media/{filename}"

    def _write_media(self, filename: str, data: bytes) -> None:
        self._media_dir.mkdir(parents=True, exist_ok=True)
        (self._media_dir / filename).write_bytes(data)
