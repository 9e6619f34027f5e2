"""
questline.engine.events — ActivityEvent
========================================

Every tracked member action is normalized into an :class:`ActivityEvent`
before the progress pipeline sees it.  Source-specific context (channel,
amount) rides along in ``data``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

__all__ = ["ActivityEvent"]


@dataclass(frozen=True, slots=True)
class ActivityEvent:
    """One unit of member activity for a guild.

    ``data`` carries ``increment`` (or ``amount``) and filter context such
    as ``channel_id``.
    """

    guild_id: int
    user_id: int
    quest_type: str
    data: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def increment(self) -> int:
        """How far this event moves a quest; defaults to 1."""
        raw = self.data.get("increment") or self.data.get("amount") or 1
        return max(int(raw), 0)

    @property
    def channel_id(self) -> int | None:
        raw = self.data.get("channel_id")
        return int(raw) if raw is not None else None
