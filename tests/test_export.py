"""Tests for CSV exports."""

import csv
import io

import pytest

from wa_archiver.services.export import CSV_HEADERS, messages_to_csv

from conftest import NOW, new_message


def _rows(text: str) -> list[list[str]]:
    return list(csv.reader(io.StringIO(text)))


@pytest.mark.asyncio
async def test_csv_quotes_awkward_content(messages, export):
    await messages.insert(new_message("q1", content='He said "hi", then\nleft'))

    rows = _rows(await export.all_csv())

    assert rows[0] == CSV_HEADERS
    assert rows[1][4] == "text"
    assert rows[1][5] == 'He said "hi", then\nleft'
    assert rows[1][6] == "2023-11-14T22:13:20.000Z"
    assert rows[1][7] == "No"


def test_empty_export_is_header_only():
    assert messages_to_csv([]) == ",".join(CSV_HEADERS) + "\n"


@pytest.mark.asyncio
async def test_today_and_range(messages, export):
    await messages.insert(new_message("old", timestamp=NOW - 3 * 86400))
    await messages.insert(new_message("today", timestamp=NOW))

    today_ids = [row[3] for row in _rows(await export.today_csv())[1:]]
    assert today_ids == ["today"]

    range_ids = [row[3] for row in _rows(await export.range_csv(NOW - 4 * 86400, NOW - 86400))[1:]]
    assert range_ids == ["old"]
    assert export.today_label() == "2023-11-14"


@pytest.mark.asyncio
async def test_conversation_export_applies_search(messages, export):
    await messages.insert(new_message("a", content="invoice sent", timestamp=NOW - 2))
    await messages.insert(new_message("b", content="lunch?", timestamp=NOW - 1))
    await messages.insert(new_message("c", remote_jid="57311@s.whatsapp.net", content="invoice"))

    all_ids = [m.message_id for m in await export.conversation_messages("57300@s.whatsapp.net")]
    assert all_ids == ["a", "b"]

    searched = await export.conversation_messages("57300@s.whatsapp.net", "invoice")
    assert [m.message_id for m in searched] == ["a"]


@pytest.mark.asyncio
async def test_phone_number_filter(messages, export):
    await messages.insert(new_message("a", remote_jid="573001112233@s.whatsapp.net"))
    await messages.insert(new_message("b", remote_jid="14155550100@s.whatsapp.net"))

    filtered = [row[3] for row in _rows(await export.phone_numbers_csv(["3001112233"]))[1:]]
    assert filtered == ["a"]

    unfiltered = [row[3] for row in _rows(await export.phone_numbers_csv([]))[1:]]
    assert sorted(unfiltered) == ["a", "b"]
