"""
questline.bot.__main__ — Entry point for ``python -m questline.bot``
====================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Build the Tracking Gate and start its PG LISTEN/NOTIFY thread.
5. Create the QuestlineBot and hand it config + engine + gate.
6. Start the bot (blocking — runs the asyncio event loop).
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from questline.bot.core import QuestlineBot
from questline.config import load_config
from questline.database.engine import create_db_engine, init_db
from questline.engine.cache import TrackingGate

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("questline")


def main() -> None:
    """Bootstrap and run the Questline bot."""

    # 1. Environment variables (secrets).
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    # 2. Soft configuration.
    cfg = load_config()
    logger.info("Config loaded — Community: %s", cfg.community_name)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Tracking Gate + PG LISTEN/NOTIFY background thread.
    gate = TrackingGate(engine, ttl_seconds=cfg.tracking_cache_ttl_seconds)
    gate.start_listener()

    # 5. Bot.
    bot = QuestlineBot(cfg=cfg, engine=engine, gate=gate)

    # 6. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting Questline bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
