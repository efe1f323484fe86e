"""
Unit tests for LeaderboardEngine.

Covers time windows, hour aggregation, name resolution, dense ranking
and the single-computation guard.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from leaderboard_engine import (
    LeaderboardEngine,
    NameCache,
    assign_dense_ranks,
    fallback_name,
    resolve_window,
)
from leaderboard_errors import AlreadyInProgress, SourceFetchFailed
from leaderboard_models import OpportunityRecord, RankedUser, TimeFilter
from record_store import InMemoryRecordStore


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestResolveWindow:
    """Calendar windows relative to now."""

    def test_total_is_unbounded(self, now):
        assert resolve_window(TimeFilter.TOTAL, now) is None

    def test_monthly_window(self, now):
        assert resolve_window(TimeFilter.MONTHLY, now) == (_utc(2025, 6, 1), _utc(2025, 7, 1))

    def test_monthly_window_in_december_rolls_year(self):
        assert resolve_window(TimeFilter.MONTHLY, _utc(2025, 12, 31, 23)) == (_utc(2025, 12, 1), _utc(2026, 1, 1))

    def test_annual_window(self, now):
        assert resolve_window(TimeFilter.ANNUALLY, now) == (_utc(2025, 1, 1), _utc(2026, 1, 1))

    def test_calendar_overflow_falls_back_to_unbounded(self):
        assert resolve_window(TimeFilter.ANNUALLY, _utc(9999, 6, 1)) is None
        assert resolve_window(TimeFilter.MONTHLY, _utc(9999, 12, 5)) is None


class TestAggregation:
    """Hours per user from present attendance."""

    def test_single_user_fallback_name(self, engine, make_opp):
        opps = [make_opp({"u1": "present"}), make_opp({"u1": "present"})]
        ranked = engine.compute(TimeFilter.TOTAL, opps, [])
        assert len(ranked) == 1
        entry = ranked[0]
        assert entry.id == "u1"
        assert entry.total_hours == 4.0
        assert entry.rank == 1
        assert entry.username == "User u1..."

    def test_status_is_case_insensitive(self, engine, make_opp):
        opps = [
            make_opp({"a": "Present"}),
            make_opp({"b": "PRESENT"}),
            make_opp({"c": "present"}),
            make_opp({"d": "absent", "e": ""}),
        ]
        ranked = engine.compute(TimeFilter.TOTAL, opps, [])
        assert sorted(u.id for u in ranked) == ["a", "b", "c"]

    def test_user_never_present_is_excluded(self, engine, make_opp):
        opps = [make_opp({"x": "absent", "y": "present"}), make_opp({"x": "Absent"})]
        ranked = engine.compute(TimeFilter.TOTAL, opps, [])
        assert [u.id for u in ranked] == ["y"]

    def test_missing_duration_and_attendance_contribute_nothing(self, engine, make_opp):
        opps = [
            make_opp({"a": "present"}, hours=None),
            make_opp(None),
            make_opp({}),
            make_opp({"b": "present"}, hours=1.5),
        ]
        ranked = engine.compute(TimeFilter.TOTAL, opps, [])
        assert [(u.id, u.total_hours) for u in ranked] == [("b", 1.5)]

    def test_negative_duration_is_clamped(self, engine, make_opp):
        opps = [make_opp({"a": "present", "b": "present"}, hours=-3.0), make_opp({"b": "present"}, hours=5.0)]
        ranked = engine.compute(TimeFilter.TOTAL, opps, [])
        assert [(u.id, u.total_hours) for u in ranked] == [("b", 5.0)]

    def test_every_total_is_positive(self, engine, make_opp):
        opps = [
            make_opp({"a": "present", "b": "absent"}, hours=0.0),
            make_opp({"c": "present"}, hours=0.25),
        ]
        ranked = engine.compute(TimeFilter.TOTAL, opps, [])
        assert all(u.total_hours > 0 for u in ranked)
        assert [u.id for u in ranked] == ["c"]


class TestTimeFilters:
    """Events outside the window do not count."""

    def test_total_includes_any_date(self, engine, make_opp):
        opps = [make_opp({"a": "present"}, when=_utc(2001, 3, 1))]
        assert [u.id for u in engine.compute(TimeFilter.TOTAL, opps, [])] == ["a"]

    def test_monthly_excludes_other_months(self, engine, make_opp):
        opps = [
            make_opp({"a": "present"}, when=_utc(2025, 5, 31, 23, 59)),
            make_opp({"b": "present"}, when=_utc(2025, 6, 1)),
            make_opp({"c": "present"}, when=_utc(2025, 7, 1)),
            make_opp({"d": "present"}, when=_utc(2024, 6, 15)),
        ]
        assert [u.id for u in engine.compute(TimeFilter.MONTHLY, opps, [])] == ["b"]

    def test_annually_excludes_other_years(self, engine, make_opp):
        opps = [
            make_opp({"a": "present"}, when=_utc(2024, 12, 31, 23)),
            make_opp({"b": "present"}, when=_utc(2025, 1, 1)),
            make_opp({"c": "present"}, when=_utc(2025, 11, 30)),
            make_opp({"d": "present"}, when=_utc(2026, 1, 1)),
        ]
        assert sorted(u.id for u in engine.compute(TimeFilter.ANNUALLY, opps, [])) == ["b", "c"]

    def test_naive_event_dates_are_utc(self, engine):
        opps = [OpportunityRecord(id="o", event_date=datetime(2025, 6, 2), duration_hours=1.0,
                                  attendance_records={"a": "present"})]
        assert [u.id for u in engine.compute(TimeFilter.MONTHLY, opps, [])] == ["a"]

    def test_overflowing_window_counts_everything(self, make_opp):
        engine = LeaderboardEngine(clock=lambda: _utc(9999, 12, 20))
        opps = [make_opp({"a": "present"}, when=_utc(2000, 1, 1))]
        assert [u.id for u in engine.compute(TimeFilter.MONTHLY, opps, [])] == ["a"]


class TestDenseRanking:
    """Ties share a rank; the next value advances by one."""

    def test_dense_ranks(self, engine, make_opp):
        hours = {"u1": 10, "u2": 10, "u3": 7, "u4": 5, "u5": 5, "u6": 5}
        opps = [make_opp({uid: "present"}, hours=h) for uid, h in hours.items()]
        ranked = engine.compute(TimeFilter.TOTAL, opps, [])
        assert [u.total_hours for u in ranked] == [10, 10, 7, 5, 5, 5]
        assert [u.rank for u in ranked] == [1, 1, 2, 3, 3, 3]

    def test_ties_ordered_by_user_id(self, engine, make_opp):
        opps = [make_opp({"zed": "present", "amy": "present", "max": "present"}, hours=3)]
        ranked = engine.compute(TimeFilter.TOTAL, opps, [])
        assert [u.id for u in ranked] == ["amy", "max", "zed"]
        assert {u.rank for u in ranked} == {1}

    def test_assign_dense_ranks_first_is_one(self):
        ranked = assign_dense_ranks([RankedUser(id="a", username="A", total_hours=0.5)])
        assert ranked[0].rank == 1

    def test_equal_shown_totals_share_rank(self, engine):
        def event(doc_id, minutes, user_id):
            return OpportunityRecord.from_document(doc_id, {
                "eventTimestamp": "2025-06-10T10:00:00Z",
                "endTimestamp": f"2025-06-10T10:{minutes:02d}:00Z",
                "attendanceRecords": {user_id: "present"},
            })

        opps = [event("six", 6, "a"), event("twelve", 12, "a"), event("eighteen", 18, "b")]
        rows = [u.to_dict() for u in engine.compute(TimeFilter.TOTAL, opps, [])]
        assert [(r["id"], r["totalHours"], r["rank"]) for r in rows] == [("a", 0.3, 1), ("b", 0.3, 1)]

    def test_opportunity_order_does_not_change_ranks(self, engine, make_opp):
        opps = [
            make_opp({"a": "present"}, hours=0.1),
            make_opp({"a": "present"}, hours=0.2),
            make_opp({"b": "present"}, hours=0.2),
            make_opp({"b": "present"}, hours=0.1),
        ]
        forward = [(u.id, u.total_hours, u.rank) for u in engine.compute(TimeFilter.TOTAL, opps, [])]
        backward = [(u.id, u.total_hours, u.rank) for u in engine.compute(TimeFilter.TOTAL, opps[::-1], [])]
        assert forward == backward == [("a", 0.3, 1), ("b", 0.3, 1)]


class TestNameResolution:
    """Display names come from the user records and are cached."""

    def test_username_from_users(self, engine, make_opp, users):
        opps = [make_opp({"alice123": "present", "bob45678": "present"}, hours=1)]
        ranked = engine.compute(TimeFilter.TOTAL, opps, users)
        assert {u.id: u.username for u in ranked} == {"alice123": "Alice", "bob45678": "Bob"}

    def test_empty_username_uses_fallback_and_is_not_cached(self, engine, make_opp, users):
        opps = [make_opp({"carol999": "present"})]
        ranked = engine.compute(TimeFilter.TOTAL, opps, users)
        assert ranked[0].username == "User caro..."
        assert "carol999" not in engine.name_cache

    def test_cached_name_survives_missing_user(self, engine, make_opp, users):
        opps = [make_opp({"alice123": "present"})]
        engine.compute(TimeFilter.TOTAL, opps, users)
        ranked = engine.compute(TimeFilter.TOTAL, opps, [])
        assert ranked[0].username == "Alice"

    def test_explicit_cache_is_used(self, engine, make_opp):
        cache = NameCache()
        cache.put("u1", "Uno")
        ranked = engine.compute(TimeFilter.TOTAL, [make_opp({"u1": "present"})], [], cache=cache)
        assert ranked[0].username == "Uno"
        assert len(engine.name_cache) == 0

    def test_fallback_name(self):
        assert fallback_name("abcdefgh") == "User abcd..."
        assert fallback_name("xy") == "User xy..."

    def test_blank_name_is_not_cached(self):
        cache = NameCache()
        assert cache.put("u", "   ") is False
        assert cache.put("u", None) is False
        assert cache.get("u") is None


class TestEngineState:
    """State recorded by compute and refresh."""

    def test_compute_records_state(self, engine, make_opp, now):
        engine.compute(TimeFilter.TOTAL, [make_opp({"a": "present"})], [])
        assert engine.last_updated_at == now
        assert engine.is_loading is False
        assert [u.id for u in engine.ranked_users] == ["a"]

    @pytest.mark.asyncio
    async def test_refresh_reads_store(self, engine):
        store = InMemoryRecordStore()
        await store.save_opportunities([
            {"id": "o1", "eventDate": "2025-06-10T10:00:00Z", "durationHours": 3, "attendanceRecords": {"alice123": "present"}},
        ])
        await store.save_users([{"id": "alice123", "username": "Alice"}])
        ranked = await engine.filter_changed(store, TimeFilter.MONTHLY)
        assert engine.selected_filter == TimeFilter.MONTHLY
        assert [(u.username, u.total_hours, u.rank) for u in ranked] == [("Alice", 3.0, 1)]

    @pytest.mark.asyncio
    async def test_refresh_fetch_failure(self, engine, make_opp):
        class BrokenStore:
            async def fetch_opportunities(self):
                raise ConnectionError("store offline")

            async def fetch_users(self):
                return []

        engine.compute(TimeFilter.TOTAL, [make_opp({"a": "present"})], [])
        with pytest.raises(SourceFetchFailed) as exc:
            await engine.refresh(BrokenStore())
        assert exc.value.detail == "store offline"
        assert "store offline" in engine.error_message
        assert engine.ranked_users == []
        assert engine.is_loading is False

    @pytest.mark.asyncio
    async def test_second_trigger_while_loading_is_rejected(self, engine, make_opp):
        release = asyncio.Event()

        class SlowStore(InMemoryRecordStore):
            async def fetch_opportunities(self):
                await release.wait()
                return await super().fetch_opportunities()

        engine.compute(TimeFilter.TOTAL, [make_opp({"a": "present"})], [])
        previous = list(engine.ranked_users)

        task = asyncio.create_task(engine.refresh(SlowStore()))
        while not engine.is_loading:
            await asyncio.sleep(0)

        with pytest.raises(AlreadyInProgress):
            engine.compute(TimeFilter.TOTAL, [make_opp({"b": "present"})], [])
        with pytest.raises(AlreadyInProgress):
            await engine.refresh(SlowStore())
        assert engine.ranked_users == previous

        release.set()
        assert await task == []
        assert engine.is_loading is False


class TestUserHours:
    """Per-user totals for the profile screen."""

    def test_user_hours_within_window(self, engine, make_opp):
        opps = [
            make_opp({"a": "present"}, hours=2, when=_utc(2025, 6, 3), opp_id="june3"),
            make_opp({"a": "PRESENT"}, hours=1.5, when=_utc(2025, 6, 10), opp_id="june10"),
            make_opp({"a": "present"}, hours=4, when=_utc(2025, 2, 1), opp_id="feb"),
            make_opp({"a": "absent"}, hours=8, when=_utc(2025, 6, 5), opp_id="absent"),
        ]
        result = engine.user_hours("a", TimeFilter.MONTHLY, opps)
        assert result.total_hours == 3.5
        assert [e.id for e in result.events] == ["june10", "june3"]

        total = engine.user_hours("a", TimeFilter.TOTAL, opps)
        assert total.total_hours == 7.5

    def test_user_hours_does_not_touch_leaderboard(self, engine, make_opp):
        engine.user_hours("a", TimeFilter.TOTAL, [make_opp({"a": "present"})])
        assert engine.ranked_users == []
        assert engine.last_updated_at is None
