"""
statrank.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` for display and scheduling settings.  Secrets
(``DATABASE_URL``, ``DISCORD_TOKEN``) stay in the environment / ``.env``.

Every key has a default, so an empty file yields a usable config.

Usage::

    from statrank.config import load_config

    cfg = load_config()                  # reads ./config.yaml by default
    print(cfg.rank_update_interval)      # "daily"
    print(cfg.bucket_hours)              # 24
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from statrank.constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_UPDATE_INTERVAL,
    UPDATE_INTERVAL_HOURS,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class StatRankConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Bot
    bot_prefix: str = "!"

    # Listing / pagination
    page_size: int = 15
    rank_page_size: int = 10
    merge_activities: bool = True  # "foo.bar" counts towards "foo"

    # Snapshots
    rank_update_interval: str = DEFAULT_UPDATE_INTERVAL

    # Capture
    record_private: bool = False  # count DMs under the "private" scope
    ignore_rules: tuple[str, ...] = field(default_factory=tuple)

    # Display filters (substring match)
    display_allowlist: tuple[str, ...] = field(default_factory=tuple)
    display_denylist: tuple[str, ...] = field(default_factory=tuple)
    rank_allowlist: tuple[str, ...] = field(default_factory=tuple)
    rank_denylist: tuple[str, ...] = field(default_factory=tuple)

    # Import
    import_chunk_size: int = DEFAULT_CHUNK_SIZE
    enable_legacy_import: bool = False

    # External name lookup
    name_lookup_timeout: float = 3.0

    @property
    def bucket_hours(self) -> int:
        """Snapshot bucket width, equal to the update interval."""
        return UPDATE_INTERVAL_HOURS[self.rank_update_interval]


def _str_tuple(raw: dict, key: str) -> tuple[str, ...]:
    value = raw.get(key) or []
    if isinstance(value, str):
        value = [value]
    return tuple(str(v) for v in value if str(v))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> StatRankConfig:
    """Read *path* and return a :class:`StatRankConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = StatRankConfig()

    interval = str(raw.get("rank_update_interval", defaults.rank_update_interval))
    if interval not in UPDATE_INTERVAL_HOURS:
        logger.warning(
            "Unknown rank_update_interval %r — falling back to %r",
            interval, DEFAULT_UPDATE_INTERVAL,
        )
        interval = DEFAULT_UPDATE_INTERVAL

    return StatRankConfig(
        bot_prefix=str(raw.get("bot_prefix", defaults.bot_prefix)),
        page_size=max(1, int(raw.get("page_size", defaults.page_size))),
        rank_page_size=max(1, int(raw.get("rank_page_size", defaults.rank_page_size))),
        merge_activities=bool(raw.get("merge_activities", defaults.merge_activities)),
        rank_update_interval=interval,
        record_private=bool(raw.get("record_private", defaults.record_private)),
        ignore_rules=_str_tuple(raw, "ignore_rules"),
        display_allowlist=_str_tuple(raw, "display_allowlist"),
        display_denylist=_str_tuple(raw, "display_denylist"),
        rank_allowlist=_str_tuple(raw, "rank_allowlist"),
        rank_denylist=_str_tuple(raw, "rank_denylist"),
        import_chunk_size=max(
            1, int(raw.get("import_chunk_size", defaults.import_chunk_size))
        ),
        enable_legacy_import=bool(
            raw.get("enable_legacy_import", defaults.enable_legacy_import)
        ),
        name_lookup_timeout=float(
            raw.get("name_lookup_timeout", defaults.name_lookup_timeout)
        ),
    )
