"""
questline.engine.cache — Tracking Gate with PG LISTEN/NOTIFY
=============================================================

Answers "does guild G have any enabled quest of type X?" from memory so
that the thousands of per-second activity events from a busy guild skip
the quest query entirely when nothing would track them.

Answers are cached per ``(guild_id, quest_type)`` for a fixed TTL.  Every
catalog write invalidates the affected entries synchronously in its own
process and issues ``NOTIFY quest_catalog_changed`` inside its transaction,
so the bot process drops the same entries as soon as the write commits.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import select as _select
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, text
from sqlalchemy.orm import Session

from questline.database.models import Quest

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# PG channel carrying catalog invalidations: payload "<guild_id>[:<quest_type>]"
NOTIFY_CHANNEL = "quest_catalog_changed"

# PG channel for cross-process requests (e.g. manual completion from the API)
EVENT_NOTIFY_CHANNEL = "questline_events"

# Event type the API sends for dashboard-initiated completions
MANUAL_COMPLETE_EVENT = "quest_manual_complete"

DEFAULT_TTL_SECONDS = 300


class TrackingGate:
    """Thread-safe TTL cache of per-guild quest-type tracking flags.

    Usage:
        gate = TrackingGate(engine, ttl_seconds=300)
        gate.start_listener()

        if gate.is_tracking(guild_id, "message_sent"):
            ...
        gate.invalidate(guild_id)            # after a catalog write
    """

    def __init__(
        self,
        engine: Engine,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._engine = engine
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()

        # (guild_id, quest_type) → (tracking?, expires_at)
        self._entries: dict[tuple[int, str], tuple[bool, float]] = {}

        self._listener_healthy: bool = False
        self._listener_failed: bool = False
        self._listener_thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()

        # Event notification callbacks: event_type → async callable
        self._event_callbacks: dict[str, Any] = {}
        self._event_loop: asyncio.AbstractEventLoop | None = None

    # -------------------------------------------------------------------
    # Cache primitives (thread-safe)
    # -------------------------------------------------------------------
    def get(self, guild_id: int, quest_type: str) -> bool | None:
        """Return the cached flag, or None on a miss or an expired entry."""
        key = (guild_id, quest_type)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def put(self, guild_id: int, quest_type: str, value: bool) -> None:
        with self._lock:
            self._entries[(guild_id, quest_type)] = (value, self._clock() + self._ttl)

    def invalidate(self, guild_id: int, quest_type: str | None = None) -> int:
        """Drop one entry, or every entry for *guild_id*.  Returns the count."""
        with self._lock:
            if quest_type is not None:
                return 1 if self._entries.pop((guild_id, quest_type), None) else 0
            doomed = [key for key in self._entries if key[0] == guild_id]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def expire(self) -> int:
        """Drop every expired entry.  Returns the count."""
        now = self._clock()
        with self._lock:
            doomed = [key for key, (_, exp) in self._entries.items() if now >= exp]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # -------------------------------------------------------------------
    # The gate itself (synchronous — call via run_db)
    # -------------------------------------------------------------------
    def is_tracking(self, guild_id: int, quest_type: str) -> bool:
        """True if *guild_id* has at least one enabled quest of *quest_type*.

        A store error answers False and caches nothing, so the next event
        asks again.
        """
        cached = self.get(guild_id, quest_type)
        if cached is not None:
            return cached

        try:
            with Session(self._engine) as session:
                found = session.scalar(
                    select(Quest.id)
                    .where(
                        Quest.guild_id == guild_id,
                        Quest.quest_type == quest_type,
                        Quest.enabled.is_(True),
                    )
                    .limit(1)
                )
        except Exception:
            logger.exception(
                "Tracking lookup failed for guild %s type %s", guild_id, quest_type,
            )
            return False

        tracking = found is not None
        self.put(guild_id, quest_type, tracking)
        return tracking

    # -------------------------------------------------------------------
    # Invalidation via NOTIFY
    # -------------------------------------------------------------------
    def handle_notify(self, payload: str) -> None:
        """Apply a ``"<guild_id>[:<quest_type>]"`` invalidation payload."""
        guild_part, _, quest_type = payload.strip().partition(":")
        try:
            guild_id = int(guild_part)
        except ValueError:
            logger.warning("Malformed catalog NOTIFY payload: %r — ignoring", payload)
            return
        dropped = self.invalidate(guild_id, quest_type or None)
        logger.debug("Catalog NOTIFY for %s dropped %d cache entries", payload, dropped)

    @property
    def listener_healthy(self) -> bool:
        """Return True if the LISTEN thread is alive and connected."""
        return self._listener_healthy and not self._listener_failed

    @property
    def listener_failed(self) -> bool:
        """Return True if the listener exhausted reconnect attempts."""
        return self._listener_failed

    def stop_listener(self) -> None:
        """Signal the listener thread to stop and wait for it to exit."""
        self._shutdown_event.set()
        if self._listener_thread is not None and self._listener_thread.is_alive():
            self._listener_thread.join(timeout=5)
            logger.info("PG NOTIFY listener thread stopped")

    def start_listener(self) -> None:
        """Start a background thread that LISTENs on the PG channels.

        Uses a raw psycopg2 connection + select() so the asyncio loop is
        never blocked.  Reconnects with exponential backoff + jitter and
        gives up after ten consecutive failures; the TTL still bounds
        staleness after that.
        """
        import psycopg2

        max_backoff = 60.0
        base_backoff = 1.0
        max_reconnect_attempts = 10

        def _listen_thread() -> None:
            raw_url = self._engine.url.render_as_string(hide_password=False)
            dsn = raw_url.replace("postgresql+psycopg2://", "postgresql://")
            attempt = 0

            while not self._shutdown_event.is_set():
                conn = None
                try:
                    conn = psycopg2.connect(dsn)
                    conn.set_isolation_level(0)  # autocommit
                    cur = conn.cursor()
                    cur.execute(f"LISTEN {NOTIFY_CHANNEL};")
                    cur.execute(f"LISTEN {EVENT_NOTIFY_CHANNEL};")
                    logger.info(
                        "PG LISTEN started on channels '%s', '%s'",
                        NOTIFY_CHANNEL, EVENT_NOTIFY_CHANNEL,
                    )

                    attempt = 0
                    self._listener_healthy = True

                    while not self._shutdown_event.is_set():
                        if _select.select([conn], [], [], 5.0) == ([], [], []):
                            continue
                        conn.poll()
                        while conn.notifies:
                            notify = conn.notifies.pop(0)
                            channel = notify.channel
                            payload = notify.payload or ""
                            try:
                                if channel == EVENT_NOTIFY_CHANNEL:
                                    self._dispatch_event(payload)
                                else:
                                    self.handle_notify(payload)
                            except Exception:
                                logger.exception(
                                    "Error handling NOTIFY on '%s': %s", channel, payload,
                                )

                except Exception:
                    self._listener_healthy = False
                    attempt += 1

                    if attempt >= max_reconnect_attempts:
                        logger.critical(
                            "PG LISTEN exhausted %d retries. "
                            "Cross-process cache invalidation disabled.",
                            max_reconnect_attempts,
                        )
                        self._listener_failed = True
                        break

                    backoff = min(base_backoff * (2 ** (attempt - 1)), max_backoff)
                    wait = backoff + random.uniform(0, backoff * 0.5)
                    logger.exception(
                        "PG LISTEN connection lost (attempt %d/%d). "
                        "Reconnecting in %.1fs…",
                        attempt, max_reconnect_attempts, wait,
                    )
                    if self._shutdown_event.wait(timeout=wait):
                        break
                finally:
                    if conn is not None:
                        try:
                            conn.close()
                        except Exception:
                            logger.debug("Error closing LISTEN connection", exc_info=True)

        thread = threading.Thread(target=_listen_thread, daemon=True, name="pg-notify-listener")
        self._listener_thread = thread
        thread.start()
        logger.info("PG NOTIFY listener thread started")

    def register_event_callback(
        self,
        event_type: str,
        callback: Any,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Register an async callback for events on :data:`EVENT_NOTIFY_CHANNEL`.

        *callback* is awaited on *loop* with the parsed JSON payload dict.
        """
        self._event_callbacks[event_type] = callback
        if loop is not None:
            self._event_loop = loop
        logger.info("Registered event callback for '%s'", event_type)

    def _dispatch_event(self, raw_payload: str) -> None:
        try:
            data = json.loads(raw_payload)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Invalid event payload (not JSON): %s", raw_payload)
            return

        event_type = data.get("type")
        if not event_type:
            logger.warning("Event payload missing 'type' key: %s", raw_payload)
            return

        callback = self._event_callbacks.get(event_type)
        if callback is None:
            logger.debug("No callback registered for event type '%s'", event_type)
            return

        loop = self._event_loop
        if loop is None or loop.is_closed():
            logger.warning("Cannot dispatch event '%s' — no event loop available", event_type)
            return

        asyncio.run_coroutine_threadsafe(callback(data), loop)


# ---------------------------------------------------------------------------
# NOTIFY helpers
# ---------------------------------------------------------------------------
def notify_before_commit(session: Session, guild_id: int, quest_type: str | None = None) -> None:
    """Queue a catalog invalidation NOTIFY in the current transaction.

    PostgreSQL delivers it on commit and drops it on rollback.  Other
    dialects have no NOTIFY; the in-process invalidation is all they get.
    """
    if session.get_bind().dialect.name != "postgresql":
        return
    payload = f"{int(guild_id)}:{quest_type}" if quest_type else str(int(guild_id))
    session.execute(
        text("SELECT pg_notify(:channel, :payload)"),
        {"channel": NOTIFY_CHANNEL, "payload": payload},
    )


def send_event_notify(engine: Engine, payload: dict) -> None:
    """Send a JSON event on :data:`EVENT_NOTIFY_CHANNEL`.

    Used to hand work that needs the Discord client (reward roles, DMs)
    from the API process to the bot.
    """
    if "type" not in payload:
        raise ValueError("Event payload must include a 'type' key")
    raw = json.dumps(payload, default=str)
    with engine.connect() as conn:
        conn.execute(
            text("SELECT pg_notify(:channel, :payload)"),
            {"channel": EVENT_NOTIFY_CHANNEL, "payload": raw},
        )
        conn.commit()
