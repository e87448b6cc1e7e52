"""Tests for the message repository read and write paths."""

import pytest

from wa_archiver.core.types import SortOrder
from wa_archiver.storage.message_repo import MAX_PAGE_SIZE
from wa_archiver.storage.models import MessageFilter

from conftest import NOW, new_message


@pytest.mark.asyncio
async def test_duplicate_message_id_is_absorbed(messages):
    first = await messages.insert(new_message("abc1"))
    assert first is not None
    assert first.id == 1
    assert await messages.insert(new_message("abc1", content="other")) is None
    assert (await messages.get_by_message_id("abc1")).content == "hello"


@pytest.mark.asyncio
async def test_query_filters_and_default_sort(messages):
    await messages.insert(new_message("a", timestamp=NOW - 20, content="first"))
    await messages.insert(new_message("b", timestamp=NOW - 10, content="second 100%"))
    await messages.insert(new_message("c", remote_jid="57311@s.whatsapp.net", timestamp=NOW))

    conversation = await messages.query(MessageFilter(remote_jid="57300@s.whatsapp.net"))
    assert conversation.sort_order == SortOrder.ASC
    assert [m.message_id for m in conversation.messages] == ["a", "b"]

    searched = await messages.query(
        MessageFilter(remote_jid="57300@s.whatsapp.net", search_text="100%")
    )
    assert searched.sort_order == SortOrder.DESC
    assert [m.message_id for m in searched.messages] == ["b"]

    everything = await messages.query(MessageFilter())
    assert [m.message_id for m in everything.messages] == ["c", "b", "a"]

    explicit = await messages.query(MessageFilter(sort_order=SortOrder.ASC, since=NOW - 10))
    assert [m.message_id for m in explicit.messages] == ["b", "c"]


@pytest.mark.asyncio
async def test_search_returns_newest_first_unless_told_otherwise(messages):
    await messages.insert(new_message("old", timestamp=NOW - 30, content="invoice march"))
    await messages.insert(new_message("skip", timestamp=NOW - 20, content="lunch"))
    await messages.insert(new_message("new", timestamp=NOW - 10, content="invoice april"))

    searched = await messages.query(
        MessageFilter(remote_jid="57300@s.whatsapp.net", search_text="invoice")
    )
    assert searched.sort_order == SortOrder.DESC
    assert [m.message_id for m in searched.messages] == ["new", "old"]

    oldest_first = await messages.query(
        MessageFilter(
            remote_jid="57300@s.whatsapp.net", search_text="invoice", sort_order=SortOrder.ASC
        )
    )
    assert oldest_first.sort_order == SortOrder.ASC
    assert [m.message_id for m in oldest_first.messages] == ["old", "new"]


@pytest.mark.asyncio
async def test_query_clamps_page_and_limit(messages):
    for i in range(3):
        await messages.insert(new_message(f"m{i}", timestamp=NOW + i))

    page = await messages.query(MessageFilter(page=0, limit=1000))
    assert page.page == 1
    assert page.limit == MAX_PAGE_SIZE
    assert page.total == 3

    second = await messages.query(MessageFilter(page=2, limit=2))
    assert len(second.messages) == 1
    assert second.total_pages == 2


@pytest.mark.asyncio
async def test_conversations_summary(messages, metadata):
    await messages.insert(new_message("a", timestamp=NOW - 5, content="hi"))
    await messages.insert(
        new_message("b", timestamp=NOW - 1, content="me", sender_name=None, is_from_me=True)
    )
    await messages.insert(
        new_message(
            "g",
            remote_jid="120363@g.us",
            is_group=True,
            timestamp=NOW - 3,
            content="group hi",
            sender_name="Luis",
        )
    )
    await metadata.upsert("120363@g.us", name="Family", profile_picture="/media/profiles/g.jpg")

    conversations = await messages.conversations()

    assert [c.remote_jid for c in conversations] == ["57300@s.whatsapp.net", "120363@g.us"]
    direct, group = conversations
    assert direct.display_name == "Ana"
    assert direct.last_message == "me"
    assert direct.message_count == 2
    assert group.display_name == "Family"
    assert group.profile_picture == "/media/profiles/g.jpg"


@pytest.mark.asyncio
async def test_counts_and_latest_timestamp(messages):
    assert await messages.latest_timestamp() == 0
    await messages.insert(new_message("a", timestamp=NOW - 100))
    await messages.insert(new_message("b", timestamp=NOW, remote_jid="57311@s.whatsapp.net"))

    assert await messages.latest_timestamp() == NOW
    assert await messages.count() == 2
    assert await messages.count_since(NOW - 50) == 1
    assert await messages.count_conversations() == 2


@pytest.mark.asyncio
async def test_contact_hint_never_returns_lid(messages):
    await messages.insert(
        new_message("a", remote_jid="999@lid", participant_jid=None, sender_name="Eva")
    )
    assert await messages.contact_hint("999@lid") == {"contact_name": "Eva", "contact_phone": None}
    assert await messages.contact_hint("57399@s.whatsapp.net") == {
        "contact_name": None,
        "contact_phone": None,
    }

    await messages.insert(new_message("b"))
    assert await messages.contact_hint("57300@s.whatsapp.net") == {
        "contact_name": "Ana",
        "contact_phone": "57300",
    }
