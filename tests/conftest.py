"""
Shared fixtures for the leaderboard tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from leaderboard_engine import LeaderboardEngine
from leaderboard_models import OpportunityRecord, UserRecord

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def engine():
    return LeaderboardEngine(clock=lambda: NOW)


@pytest.fixture
def make_opp():
    counter = {"n": 0}

    def _make(attendance=None, hours=2.0, when=None, opp_id=None):
        counter["n"] += 1
        return OpportunityRecord(
            id=opp_id or f"opp{counter['n']}",
            event_date=when or NOW - timedelta(days=1),
            duration_hours=hours,
            attendance_records=attendance,
        )

    return _make


@pytest.fixture
def users():
    return [
        UserRecord(id="alice123", username="Alice"),
        UserRecord(id="bob45678", username="Bob"),
        UserRecord(id="carol999", username=""),
    ]
