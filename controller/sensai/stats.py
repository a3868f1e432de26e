"""Session statistics aggregation."""
from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

from .models import SessionData, Stats

logger = logging.getLogger(__name__)


def average_rating(sessions: Sequence[SessionData]) -> float:
    """Mean rating rounded half-up to one decimal; 0 for no sessions."""

    if not sessions:
        return 0.0
    total = Decimal(sum(session.rating for session in sessions))
    mean = total / Decimal(len(sessions))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def recompute(sessions: Sequence[SessionData], last_recommendation: Optional[str] = None) -> Stats:
    return Stats(
        total_sessions=len(sessions),
        avg_rating=average_rating(sessions),
        last_session=sessions[-1] if sessions else None,
        last_recommendation=last_recommendation,
    )


class StatsTracker:
    """Holds the current Stats projection of the authoritative session list."""

    def __init__(self) -> None:
        self._sessions: list[SessionData] = []
        self._stats = Stats()

    @property
    def stats(self) -> Stats:
        return self._stats

    @property
    def sessions(self) -> list[SessionData]:
        return list(self._sessions)

    def apply_sessions(self, sessions: Sequence[SessionData]) -> Stats:
        """Replace the session list with the stored one and recompute."""

        self._sessions = list(sessions)
        # the recommendation belongs to the latest local save, drop it once the list is emptied elsewhere
        recommendation = self._stats.last_recommendation if self._sessions else None
        self._stats = recompute(self._sessions, recommendation)
        logger.debug("Stats recomputed: total=%d avg=%.1f", self._stats.total_sessions, self._stats.avg_rating)
        return self._stats

    def record_saved(self, session: SessionData, recommendation: Optional[str]) -> Stats:
        """Optimistically add a just-saved session until the store confirms it."""

        if not any(existing.timestamp == session.timestamp for existing in self._sessions):
            self._sessions.append(session)
        self._stats = recompute(self._sessions, recommendation or None)
        return self._stats

    def reset(self) -> Stats:
        self._sessions = []
        self._stats = Stats()
        return self._stats


__all__ = ["StatsTracker", "average_rating", "recompute"]
