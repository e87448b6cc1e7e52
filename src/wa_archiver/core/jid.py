"""Helpers for WhatsApp JIDs (conversation and participant identities)."""

from __future__ import annotations

import re

USER_SERVER = "s.whatsapp.net"
LEGACY_USER_SERVER = "c.us"
LID_SERVER = "lid"
GROUP_SERVER = "g.us"

_DIGITS = re.compile(r"^\d+$")


def split_jid(jid: str) -> tuple[str, str]:
    """Return (user, server) with any ``:device`` suffix removed from the user part."""
    user, _, server = jid.partition("@")
    user = user.split(":", 1)[0]
    return user, server


def user_part(jid: str | None) -> str:
    if not jid:
        return ""
    return split_jid(jid)[0]


def normalize_jid(jid: str | None) -> str:
    """Strip device suffixes and map legacy ``c.us`` to ``s.whatsapp.net``."""
    if not jid:
        return ""
    user, server = split_jid(jid)
    if not server:
        return user
    if server == LEGACY_USER_SERVER:
        server = USER_SERVER
    return f"{user}@{server}"


def is_group_jid(jid: str | None) -> bool:
    return bool(jid) and jid.endswith("@" + GROUP_SERVER)


def is_lid_jid(jid: str | None) -> bool:
    return bool(jid) and jid.endswith("@" + LID_SERVER)


def is_phone_jid(jid: str | None) -> bool:
    if not jid:
        return False
    user, server = split_jid(jid)
    return server in (USER_SERVER, LEGACY_USER_SERVER) and bool(_DIGITS.match(user))


def phone_number(jid: str | None) -> str | None:
    """Phone number of a phone-addressed JID; None for LIDs, groups, etc."""
    if not is_phone_jid(jid):
        return None
    return user_part(jid)


def numbers_match(jid_or_number: str, candidates: list[str]) -> bool:
    """Substring match in both directions against a list of configured numbers.

    Absorbs country-code and formatting differences ("573001234567" vs
    "3001234567" vs "+57 300 123 4567").
    """
    number = re.sub(r"\D", "", user_part(jid_or_number))
    if not number:
        return False
    for candidate in candidates:
        wanted = re.sub(r"\D", "", candidate)
        if wanted and (wanted in number or number in wanted):
            return True
    return False
