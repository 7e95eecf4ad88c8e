"""
statrank — Activity Counters, Rank Snapshots & Rank Deltas
============================================================
Counts messages and commands per (platform, group, user, activity), turns
the counters into paginated rankings, captures periodic per-group rank
snapshots and reports how counts and ranks moved between two points in time.

Package layout::

    statrank/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Reserved scope / activity values
    ├── errors.py          # ValidationError, ConflictError, NotFoundError, FatalError
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # Counter, snapshot and legacy-source tables
    │   └── store.py       # Narrow get/create/set/remove/upsert/drop adapter
    ├── engine/
    │   ├── clock.py       # Injectable clock + time-bucket truncation
    │   ├── identity.py    # Display-name lookup with raw-ID fallback
    │   ├── names.py       # Name sanitising + reconciliation
    │   ├── rules.py       # platform:group:user rule matching
    │   ├── text.py        # Display-width aware row formatting
    │   ├── merger.py      # Event → counter merge, batch + legacy import
    │   ├── aggregator.py  # Group / filter / sort / paginate counters
    │   ├── snapshots.py   # Periodic rank snapshot capture
    │   └── deltas.py      # Rank / count delta reports
    ├── services/
    │   └── stats_service.py  # Stat queries, lists, clear, export
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader
    │   ├── identity.py    # Discord member / guild name lookup
    │   └── cogs/
    │       ├── capture.py # on_message / command capture
    │       ├── stats.py   # /stat, /rank and maintenance commands
    │       └── tasks.py   # Snapshot loop
    └── api/
        ├── main.py        # FastAPI app
        └── routes/        # Read-only stats, rank, list and export endpoints
"""

__version__ = "0.1.0"
