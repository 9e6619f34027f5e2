"""
questline.errors — Domain Exceptions
=====================================

Raised by the service layer; the API and the admin slash command translate
them into 400/404 responses and ephemeral error messages respectively.
Gating rejections are *not* errors and never raise.
"""

from __future__ import annotations

from typing import Any


class QuestlineError(Exception):
    """Base class for Questline domain errors.

    ``details`` carries structured context for logs and API responses.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class QuestValidationError(QuestlineError, ValueError):
    """A quest or chain definition failed validation before any write."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}", {"field": field})
        self.field = field


class QuestNotFoundError(QuestlineError, LookupError):
    """The quest (or chain) does not exist in the requested guild."""

    def __init__(self, quest_id: int, guild_id: int | None = None, *, kind: str = "Quest") -> None:
        super().__init__(
            f"{kind} {quest_id} not found",
            {"id": quest_id, "guild_id": guild_id},
        )
        self.quest_id = quest_id
        self.guild_id = guild_id
