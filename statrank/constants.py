"""
statrank.constants — Shared Constants
======================================

Reserved identifiers used across the engine, services and bot.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Reserved key values
# ---------------------------------------------------------------------------
# Activity sentinel for plain messages (everything else is a command name).
MESSAGE_ACTIVITY = "_message"

# Scope value for direct / private contexts with no group.
PRIVATE_SCOPE = "private"

# Separator used when merging sub-commands into their parent ("foo.bar" → "foo").
ACTIVITY_SEPARATOR = "."

# ---------------------------------------------------------------------------
# Batch sizing
# ---------------------------------------------------------------------------
DEFAULT_CHUNK_SIZE = 100

# ---------------------------------------------------------------------------
# Snapshot schedules → bucket width in hours
# ---------------------------------------------------------------------------
UPDATE_INTERVAL_HOURS: dict[str, int] = {
    "hourly": 1,
    "6h": 6,
    "12h": 12,
    "daily": 24,
}

DEFAULT_UPDATE_INTERVAL = "daily"
