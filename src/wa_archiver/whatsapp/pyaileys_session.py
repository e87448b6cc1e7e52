"""WhatsApp session adapter using pyaileys (async linked-device client)."""

from __future__ import annotations

from collections import OrderedDict
from pathlib import Path
from typing import Any, Callable, Optional

from google.protobuf.json_format import MessageToDict
from pyaileys import WhatsAppClient
from pyaileys.store import InMemoryStore

from wa_archiver.core.jid import is_group_jid, normalize_jid
from wa_archiver.exceptions import MediaDownloadError, SessionError
from wa_archiver.log import get_logger
from wa_archiver.whatsapp.base import (
    ConnectionUpdate,
    Envelope,
    HistorySync,
    MessagesUpsert,
    ProtocolSession,
)

logger = get_logger(__name__)

# Raw protobufs of recent messages, kept so media can be downloaded after the
# envelope has been turned into a plain dict.
_RAW_CACHE_SIZE = 500

LOGGED_OUT_STATUS = 401


def _proto_to_dict(proto: Any) -> dict[str, Any]:
    return MessageToDict(proto)


class HistoryRecordingStore(InMemoryStore):
    """Client store that also passes every stored message to a listener."""

    def __init__(self, on_message: Callable[[Any], None]):
        super().__init__()
        self._on_message = on_message

    def add_message(self, info: Any) -> Any:
        self._on_message(info)
        return super().add_message(info)


class PyaileysSession(ProtocolSession):
    """Bridges pyaileys client events to session events.

    Live messages arrive as ``message.decrypted`` and are emitted as a
    ``notify`` upsert. History sync notifications are processed by the client
    into its store; the session records those messages as they are stored and
    emits them as one ``HistorySync`` batch when the client reports the sync.
    """

    def __init__(self, session_path: str | Path):
        super().__init__(session_path)
        self._client: WhatsAppClient | None = None
        self._auth_state: Any = None
        self._raw: OrderedDict[str, Any] = OrderedDict()
        self._pending_history: list[Envelope] = []

    @property
    def own_jid(self) -> Optional[str]:
        if self._client is None:
            return None
        me = self._client.socket.auth.creds.me
        return normalize_jid(me.id) if me and me.id else None

    async def connect(self) -> None:
        self.session_path.mkdir(parents=True, exist_ok=True)
        self._client, self._auth_state = await WhatsAppClient.from_auth_folder(str(self.session_path))
        self._client.store = HistoryRecordingStore(self._collect_history)

        self._client.on("connection.update", self._on_connection_update)
        self._client.on("creds.update", self._on_creds_update)
        self._client.on("message.decrypted", self._on_message_decrypted)
        self._client.on("history.sync", self._on_history_sync)
        self._client.on("history.sync_error", self._on_history_sync_error)

        await self._client.connect()
        logger.info("pyaileys_session_connecting", session_path=str(self.session_path))

    async def end(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        await client.disconnect()
        logger.info("pyaileys_session_ended")

    async def logout(self) -> None:
        # The client has no remote unlink; the device must be removed from the phone.
        logger.warning("pyaileys_logout_local_only", hint="Remove the linked device on the phone")
        await self.end()

    async def send_text(self, jid: str, text: str) -> None:
        await self._require_client().send_text(jid, text)

    async def download_media(self, envelope: Envelope) -> bytes:
        message_id = (envelope.get("key") or {}).get("id") or ""
        raw = self._raw.get(message_id)
        if raw is None:
            raise MediaDownloadError(f"No decrypted payload kept for message {message_id}")
        return await self._require_client().download_message_media(raw)

    async def fetch_group_metadata(self, jid: str) -> dict[str, Any]:
        group = await self._require_client().socket.group_metadata(jid)
        return {"subject": getattr(group, "subject", None)}

    async def fetch_profile_picture_url(self, jid: str) -> Optional[str]:
        return await self._require_client().profile_picture_url(jid)

    def _require_client(self) -> WhatsAppClient:
        if self._client is None:
            raise SessionError("WhatsApp session is not connected")
        return self._client

    def _remember_raw(self, message_id: str, raw: Any) -> None:
        if not message_id:
            return
        self._raw[message_id] = raw
        self._raw.move_to_end(message_id)
        while len(self._raw) > _RAW_CACHE_SIZE:
            self._raw.popitem(last=False)

    def _collect_history(self, info: Any) -> None:
        raw = getattr(info, "raw", None)
        # Live and sent messages are stored with a bare Message proto.
        if raw is None or raw.DESCRIPTOR.name != "WebMessageInfo":
            return
        self._remember_raw(info.id, raw.message)
        self._pending_history.append(_proto_to_dict(raw))

    async def _on_connection_update(self, update: dict[str, Any]) -> None:
        last = update.get("lastDisconnect") or {}
        status_code = last.get("statusCode")
        error = last.get("error")
        await self.emit(
            ConnectionUpdate(
                connection=update.get("connection"),
                qr=update.get("qr"),
                logged_out=status_code == LOGGED_OUT_STATUS,
                reason=str(error) if error else None,
            )
        )

    async def _on_creds_update(self, _payload: Any) -> None:
        if self._auth_state is not None:
            await self._auth_state.save_creds()

    async def _on_message_decrypted(self, payload: dict[str, Any]) -> None:
        raw = payload.get("message")
        if raw is None:
            return
        message_id = payload.get("id") or ""
        chat_jid = payload.get("chat_jid") or ""
        sender_jid = payload.get("sender_jid")
        own = self.own_jid
        from_me = bool(own and sender_jid and normalize_jid(sender_jid) == own)

        key: dict[str, Any] = {"remoteJid": chat_jid, "id": message_id, "fromMe": from_me}
        if is_group_jid(chat_jid) and sender_jid:
            key["participant"] = sender_jid

        self._remember_raw(message_id, raw)
        envelope: Envelope = {
            "key": key,
            "message": _proto_to_dict(raw),
            "messageTimestamp": payload.get("timestamp_s"),
            "pushName": self._client.get_display_name(sender_jid) if self._client and sender_jid else None,
        }
        await self.emit(MessagesUpsert(messages=[envelope], type="notify"))

    async def _on_history_sync(self, payload: dict[str, Any]) -> None:
        messages, self._pending_history = self._pending_history, []
        logger.info(
            "pyaileys_history_sync",
            sync_type=payload.get("syncType"),
            progress=payload.get("progress"),
            messages=len(messages),
        )
        if messages:
            await self.emit(HistorySync(messages=messages))

    async def _on_history_sync_error(self, payload: dict[str, Any]) -> None:
        logger.warning("pyaileys_history_sync_failed", error=payload.get("error"))
