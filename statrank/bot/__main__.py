"""
statrank.bot.__main__ — Entry point for ``python -m statrank.bot``
===================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Create the StatRankBot and hand it config + engine.
5. Start the bot (blocking — runs the asyncio event loop).
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from statrank.bot.core import StatRankBot
from statrank.config import load_config
from statrank.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("statrank")


def main() -> None:
    """Bootstrap and run the statrank bot."""
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    cfg = load_config(os.getenv("STATRANK_CONFIG", "config.yaml"))
    logger.info(
        "Config loaded — snapshots %s, page size %d", cfg.rank_update_interval, cfg.page_size,
    )

    engine = create_db_engine()
    init_db(engine)

    bot = StatRankBot(cfg=cfg, engine=engine)

    logger.info("Starting statrank bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
