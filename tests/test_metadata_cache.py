"""Tests for the group/contact metadata cache."""

from datetime import timedelta

import httpx
import pytest

from wa_archiver.storage.metadata_cache import MetadataCache

from conftest import fixed_clock, NOW


@pytest.mark.asyncio
async def test_upsert_never_erases_known_values(metadata):
    await metadata.upsert("120363@g.us", name="Family", profile_picture="/media/profiles/a.jpg")
    await metadata.upsert("120363@g.us", name=None, profile_picture=None)

    entry = await metadata.get("120363@g.us")
    assert entry.name == "Family"
    assert entry.profile_picture == "/media/profiles/a.jpg"
    assert await metadata.group_name("120363@g.us") == "Family"
    assert await metadata.group_name("57300@s.whatsapp.net") is None


@pytest.mark.asyncio
async def test_contacts_and_groups_are_kept_apart(metadata):
    await metadata.upsert("57300@s.whatsapp.net", name="Ana")
    await metadata.upsert("120363@g.us", name="Family", profile_picture="/media/profiles/g.jpg")

    assert await metadata.display_names() == {
        "120363@g.us": "Family",
        "57300@s.whatsapp.net": "Ana",
    }
    assert await metadata.profile_pictures() == {"120363@g.us": "/media/profiles/g.jpg"}


@pytest.mark.asyncio
async def test_entries_go_stale_after_ttl(db, media_dir, tasks):
    writer = MetadataCache(db, media_dir, tasks, clock=fixed_clock(NOW))
    await writer.upsert("57300@s.whatsapp.net", name="Ana")

    assert await writer.needs_refresh("57311@s.whatsapp.net")
    assert not await writer.needs_refresh("57300@s.whatsapp.net")

    later = MetadataCache(
        db, media_dir, tasks, clock=fixed_clock(NOW + timedelta(hours=25).total_seconds())
    )
    assert await later.needs_refresh("57300@s.whatsapp.net")


@pytest.mark.asyncio
async def test_refresh_downloads_profile_picture(db, media_dir, tasks, session):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url == "https://pps.example/pic.jpg"
        return httpx.Response(200, content=b"jpeg-bytes")

    cache = MetadataCache(
        db, media_dir, tasks, clock=fixed_clock(), http_transport=httpx.MockTransport(handler)
    )
    session.groups["120363@g.us"] = {"subject": "Family"}
    session.pictures["120363@g.us"] = "https://pps.example/pic.jpg"

    await cache.refresh("120363@g.us", session)

    entry = await cache.get("120363@g.us")
    assert entry.name == "Family"
    assert entry.profile_picture == "/media/profiles/120363_g.us.jpg"
    assert (media_dir / "profiles" / "120363_g.us.jpg").read_bytes() == b"jpeg-bytes"


@pytest.mark.asyncio
async def test_refresh_failures_still_touch_entry(db, media_dir, tasks, session):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    cache = MetadataCache(
        db, media_dir, tasks, clock=fixed_clock(), http_transport=httpx.MockTransport(handler)
    )
    await cache.upsert("120363@g.us", name="Old name")
    session.pictures["120363@g.us"] = "https://pps.example/gone.jpg"

    await cache.refresh("120363@g.us", session)

    entry = await cache.get("120363@g.us")
    assert entry.name == "Old name"
    assert entry.profile_picture is None


@pytest.mark.asyncio
async def test_schedule_refresh_runs_once_per_jid(metadata, tasks, session):
    session.groups["120363@g.us"] = {"subject": "Family"}

    first = metadata.schedule_refresh("120363@g.us", session)
    second = metadata.schedule_refresh("120363@g.us", session)
    await tasks.drain()

    assert first is not None
    assert second is None
    assert await metadata.group_name("120363@g.us") == "Family"
    # Fresh now, so a later schedule is a no-op refresh.
    metadata.schedule_refresh("120363@g.us", session)
    session.groups["120363@g.us"] = {"subject": "Renamed"}
    await tasks.drain()
    assert await metadata.group_name("120363@g.us") == "Family"
