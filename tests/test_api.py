"""Tests for the REST API, driven in-process through httpx's ASGI transport."""

import httpx
import pytest
import pytest_asyncio

from wa_archiver.api.server import ApiContext, create_app
from wa_archiver.config import WhatsAppConfig
from wa_archiver.services.reports import ReportService
from wa_archiver.whatsapp.base import ConnectionUpdate
from wa_archiver.whatsapp.manager import SessionManager

from conftest import NOW, UTC, FakeSession, new_message


@pytest_asyncio.fixture
async def manager(tmp_path, normalizer, errors, tasks):
    sessions: list[FakeSession] = []

    def factory(path):
        sessions.append(FakeSession(path))
        return sessions[-1]

    mgr = SessionManager(
        WhatsAppConfig(session_path=str(tmp_path / "session")), factory, normalizer, errors, tasks
    )
    mgr.sessions = sessions
    yield mgr
    await mgr.disconnect()


@pytest.fixture
def ctx(messages, export, reports, manager, errors, events) -> ApiContext:
    return ApiContext(
        messages=messages,
        export=export,
        reports=reports,
        session=manager,
        errors=errors,
        events=events,
        tz=UTC,
    )


def _client(ctx: ApiContext, media_dir=None, **transport_options) -> httpx.AsyncClient:
    app = create_app(ctx, media_dir=media_dir)
    transport = httpx.ASGITransport(app=app, **transport_options)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


@pytest_asyncio.fixture
async def client(ctx):
    async with _client(ctx) as c:
        yield c


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["status"] == "healthy"
    assert body["whatsapp"] == "disconnected"
    assert body["timestamp"].startswith("2023-11-14T22:13:20")


@pytest.mark.asyncio
async def test_messages_pagination_and_limit_cap(client, messages):
    for i in range(3):
        await messages.insert(new_message(f"m{i}", timestamp=NOW + i))

    resp = await client.get("/api/messages", params={"limit": 2, "page": 2})
    body = resp.json()
    assert [m["message_id"] for m in body["data"]] == ["m0"]
    assert body["pagination"] == {"page": 2, "limit": 2, "total": 3, "total_pages": 2}
    assert body["sort_order"] == "desc"

    resp = await client.get("/api/messages", params={"limit": 1000})
    assert resp.json()["pagination"]["limit"] == 100


@pytest.mark.asyncio
async def test_messages_for_conversation_default_ascending(client, messages):
    await messages.insert(new_message("a", timestamp=NOW))
    await messages.insert(new_message("b", timestamp=NOW + 1))
    await messages.insert(new_message("c", remote_jid="57311@s.whatsapp.net"))

    resp = await client.get("/api/messages", params={"remoteJid": "57300@s.whatsapp.net"})
    body = resp.json()
    assert [m["message_id"] for m in body["data"]] == ["a", "b"]
    assert body["sort_order"] == "asc"


@pytest.mark.asyncio
async def test_conversations_and_latest_timestamp(client, messages):
    await messages.insert(new_message("a", timestamp=NOW))
    await messages.insert(new_message("b", remote_jid="57311@s.whatsapp.net", timestamp=NOW + 5))

    conversations = (await client.get("/api/conversations")).json()["data"]
    assert {c["remote_jid"] for c in conversations} == {
        "57300@s.whatsapp.net",
        "57311@s.whatsapp.net",
    }
    assert (await client.get("/api/latest-timestamp")).json()["timestamp"] == NOW + 5


@pytest.mark.asyncio
async def test_export_csv_headers(client, messages):
    await messages.insert(new_message("a"))

    resp = await client.get("/api/export-csv")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert (
        resp.headers["content-disposition"]
        == 'attachment; filename="whatsapp_messages_2023-11-14.csv"'
    )
    assert resp.text.splitlines()[0].startswith("ID,Remote JID")


@pytest.mark.asyncio
async def test_send_report(client, email_sender):
    resp = await client.post("/api/send-report", json={"to": "boss@example.com", "includeAll": True})
    assert resp.json() == {"success": True, "message": "Report sent to boss@example.com"}
    assert email_sender.sent[0].to == "boss@example.com"


@pytest.mark.asyncio
async def test_send_report_without_email(
    ctx, email_config, daily_config, commands_config, export, messages
):
    ctx.reports = ReportService(None, email_config, daily_config, commands_config, export, messages)
    async with _client(ctx) as client:
        resp = await client.post("/api/send-report", json={})
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Email service not configured"}


@pytest.mark.asyncio
async def test_send_conversation_requires_remote_jid(client):
    resp = await client.post("/api/send-conversation", json={"searchText": "hola"})
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "remoteJid is required"}


@pytest.mark.asyncio
async def test_qr_only_available_when_ready(client, manager):
    resp = await client.get("/api/whatsapp/qr")
    assert resp.status_code == 400
    assert resp.json() == {
        "success": False,
        "error": "QR code not available",
        "status": "disconnected",
    }

    await manager.initialize()
    await manager.sessions[-1].emit(ConnectionUpdate(qr="2@pairing-code"))
    await manager.drain()

    resp = await client.get("/api/whatsapp/qr")
    assert resp.status_code == 200
    assert resp.json()["qr"].startswith("data:image/png;base64,")
    status = (await client.get("/api/whatsapp/status")).json()
    assert status == {"success": True, "status": "qr_ready", "logged_out": False}


@pytest.mark.asyncio
async def test_errors_endpoints(client, errors):
    await errors.record("TypeError", "bad value", location="ingest")
    await errors.record("OSError", "disk full")

    listing = (await client.get("/api/errors", params={"error_type": "OSError"})).json()
    assert [e["error_message"] for e in listing["data"]] == ["disk full"]
    assert listing["pagination"]["total"] == 1

    assert (await client.get("/api/errors/types")).json()["data"] == ["OSError", "TypeError"]

    missing = await client.get("/api/errors/999")
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "error": "Error not found"}


@pytest.mark.asyncio
async def test_events_endpoints(client, events, messages):
    await messages.insert(new_message("a", sender_name="Ana"))
    await events.log_message_delete("57300@s.whatsapp.net", "a")

    listing = (await client.get("/api/events", params={"remote_jid": "57300@s.whatsapp.net"})).json()
    assert listing["pagination"]["total"] == 1
    event = listing["data"][0]
    assert event["event_type"] == "message_delete"
    assert event["chat_name"] == "Ana"

    one = (await client.get(f"/api/events/{event['id']}")).json()
    assert one["data"]["message_id"] == "a"
    assert (await client.get("/api/events/999")).status_code == 404


@pytest.mark.asyncio
async def test_unhandled_error_is_recorded(ctx, errors):
    async def broken():
        raise RuntimeError("database is locked")

    ctx.messages.conversations = broken
    async with _client(ctx, raise_app_exceptions=False) as client:
        resp = await client.get("/api/conversations")

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Internal server error"}
    logged, _ = await errors.list_errors()
    assert logged[0].location == "api"
    assert logged[0].context == {"path": "/api/conversations", "method": "GET"}


@pytest.mark.asyncio
async def test_media_is_served(ctx, media_dir):
    media_dir.mkdir(parents=True)
    (media_dir / "m1.jpg").write_bytes(b"jpeg")
    async with _client(ctx, media_dir=str(media_dir)) as client:
        resp = await client.get("/media/m1.jpg")
    assert resp.status_code == 200
    assert resp.content == b"jpeg"
