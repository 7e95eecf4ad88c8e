"""
statrank.engine.names — Display Name Reconciliation
====================================================

Display names are mutable and arrive from many sources (live events,
imports, lookups).  A counter keeps the last *known-good* name, where
"good" means the name actually tells a reader something the raw ID
doesn't.

Rules for one field (user name or scope name):

1. An incoming name is invalid if it is empty after sanitising, made only
   of filler (whitespace, ``*``, ``□``), or equal to / containing the
   entity's own identifier.
2. Both valid → the one with the more recent timestamp wins.  Ties and
   missing timestamps go to the incoming name.
3. One valid → that one.
4. Neither → ``""``.  A raw ID is never stored as a name.
"""

from __future__ import annotations

import re
from datetime import datetime

_INVISIBLE = re.compile(r"[\u200B-\u200F\u2028-\u202E\u2060-\u206F\uFEFF\x00-\x1F\x7F]")
_ASTRAL = re.compile(r"[\U00010000-\U0010FFFF]")
_LONG_RUN = re.compile(r"(.)\1{9,}", re.DOTALL)
_MARKUP = re.compile(r"[<>`$()\[\]{};'\"\\=]")
_WHITESPACE = re.compile(r"\s+")
_FILLER = re.compile(r"[\s*□]+")

MAX_NAME_LENGTH = 64


def sanitize_name(value: str | None) -> str:
    """Strip invisible characters and markup, collapse runs and whitespace."""
    if value is None:
        return ""
    text = str(value)
    text = _INVISIBLE.sub("", text)
    text = _ASTRAL.sub("□", text)
    text = _LONG_RUN.sub(lambda m: m.group(1) * 3 + "…", text)
    text = _MARKUP.sub("*", text)
    text = _WHITESPACE.sub(" ", text).strip()
    return text[:MAX_NAME_LENGTH]


def clean_name(value: str | None, entity_id: str | None = None) -> str:
    """Sanitised *value*, or ``""`` when it carries no information."""
    name = sanitize_name(value)
    if not name or _FILLER.fullmatch(name):
        return ""
    if entity_id and entity_id in name:
        return ""
    return name


def reconcile(
    existing_name: str | None,
    incoming_name: str | None,
    existing_time: datetime | None,
    incoming_time: datetime | None,
    entity_id: str | None,
) -> str:
    """Pick the name to store for one entity."""
    existing = clean_name(existing_name, entity_id)
    incoming = clean_name(incoming_name, entity_id)

    if existing and incoming:
        if existing_time is not None and incoming_time is not None \
                and existing_time > incoming_time:
            return existing
        return incoming
    return incoming or existing
