"""
Session Statistics Tests
========================

Tests for rating averages and the StatsTracker projection.
"""

import pytest

from sensai.stats import StatsTracker, average_rating, recompute


class TestAverageRating:
    """Test rounding of the mean rating."""

    def test_empty_is_zero(self):
        assert average_rating([]) == 0.0

    def test_rounds_to_one_decimal(self, make_session):
        sessions = [make_session(rating=r) for r in (7, 8, 8)]
        assert average_rating(sessions) == 7.7

    def test_rounds_half_up(self, make_session):
        # 8.25 -> 8.3
        sessions = [make_session(rating=r) for r in (8, 8, 8, 9)]
        assert average_rating(sessions) == 8.3


class TestRecompute:
    """Test Stats derived from a session list."""

    def test_empty(self):
        stats = recompute([])
        assert stats.total_sessions == 0
        assert stats.avg_rating == 0.0
        assert stats.last_session is None
        assert stats.last_recommendation is None

    def test_counts_and_last_session(self, make_session):
        first, second = make_session(rating=6), make_session(rating=9)
        stats = recompute([first, second], "Try 77°C")

        assert stats.total_sessions == 2
        assert stats.avg_rating == 7.5
        assert stats.last_session == second
        assert stats.last_recommendation == "Try 77°C"

    def test_document_uses_stored_keys(self, make_session):
        document = recompute([make_session()]).to_document()
        assert set(document) == {"totalSessions", "avgRating", "lastSession", "lastRecommendation"}
        assert document["lastSession"]["timer"] == 15


class TestStatsTracker:
    """Test the tracker fed by the store subscription."""

    def test_record_saved_sets_recommendation(self, make_session):
        tracker = StatsTracker()
        stats = tracker.record_saved(make_session(rating=8), "Keep it up")

        assert stats.total_sessions == 1
        assert stats.last_recommendation == "Keep it up"

    def test_authoritative_list_keeps_recommendation(self, make_session):
        tracker = StatsTracker()
        session = make_session(rating=8)
        tracker.record_saved(session, "Keep it up")

        other_device = make_session(rating=4)
        stats = tracker.apply_sessions([session, other_device])

        assert stats.total_sessions == 2
        assert stats.avg_rating == 6.0
        assert stats.last_session == other_device
        assert stats.last_recommendation == "Keep it up"

    def test_record_saved_does_not_duplicate_confirmed_session(self, make_session):
        tracker = StatsTracker()
        session = make_session()
        tracker.apply_sessions([session])
        stats = tracker.record_saved(session, None)

        assert stats.total_sessions == 1

    def test_emptied_list_drops_recommendation(self, make_session):
        tracker = StatsTracker()
        tracker.record_saved(make_session(), "Keep it up")
        stats = tracker.apply_sessions([])

        assert stats.total_sessions == 0
        assert stats.last_recommendation is None

    def test_reset(self, make_session):
        tracker = StatsTracker()
        tracker.record_saved(make_session(), "Keep it up")
        stats = tracker.reset()

        assert stats.total_sessions == 0
        assert tracker.sessions == []

    @pytest.mark.parametrize("count", [1, 5, 12])
    def test_total_matches_list_length(self, make_session, count):
        tracker = StatsTracker()
        stats = tracker.apply_sessions([make_session() for _ in range(count)])
        assert stats.total_sessions == count
