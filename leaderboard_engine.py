#!/usr/bin/env python3
"""
Leaderboard Engine - agrega horas de voluntariado por usuario y asigna ranking denso.

Flujo: store -> oportunidades/usuarios -> filtro por ventana -> suma de horas
"present" -> nombres (cache) -> orden -> ranking denso.
"""

import logging
import math
import os
import threading
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from leaderboard_errors import AlreadyInProgress, SourceFetchFailed
from leaderboard_models import (
    HOURS_PRECISION,
    PRESENT_STATUS,
    OpportunityRecord,
    RankedUser,
    TimeFilter,
    UserHours,
    UserRecord,
    as_utc,
)

logger = logging.getLogger(__name__)

Window = Tuple[datetime, datetime]


def default_clock() -> datetime:
    tz_name = os.getenv("LEADERBOARD_TZ") or "UTC"
    return datetime.now(ZoneInfo(tz_name))


def resolve_window(time_filter: TimeFilter, now: datetime) -> Optional[Window]:
    """Rango [inicio, fin) del filtro relativo a `now`; None = sin límite."""
    if time_filter == TimeFilter.TOTAL:
        return None
    now = as_utc(now)
    try:
        if time_filter == TimeFilter.MONTHLY:
            start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
            if start.month == 12:
                end = start.replace(year=start.year + 1, month=1)
            else:
                end = start.replace(month=start.month + 1)
        else:
            start = now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
            end = start.replace(year=start.year + 1)
    except (OverflowError, ValueError):
        logger.warning(f"No calendar window for {time_filter.value} at {now.isoformat()}, using all time")
        return None
    return start, end


def in_window(event_date: datetime, window: Optional[Window]) -> bool:
    if window is None:
        return True
    start, end = window
    return start <= as_utc(event_date) < end


def credited_hours(opportunity: OpportunityRecord) -> float:
    hours = opportunity.duration_hours
    if hours is None or not math.isfinite(hours) or hours < 0:
        return 0.0
    return float(hours)


def fallback_name(user_id: str) -> str:
    return f"User {user_id[:4]}..."


class NameCache:
    """Cache de nombres por user id; vive lo que vive el proceso."""

    def __init__(self):
        self._names: Dict[str, str] = {}

    def get(self, user_id: str) -> Optional[str]:
        return self._names.get(user_id)

    def put(self, user_id: str, username: Optional[str]) -> bool:
        if not username or not username.strip():
            return False
        self._names[user_id] = username
        return True

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._names

    def __len__(self) -> int:
        return len(self._names)


def aggregate_hours(opportunities: Iterable[OpportunityRecord], window: Optional[Window]) -> Dict[str, float]:
    totals: Dict[str, float] = {}
    for opp in opportunities:
        if not in_window(opp.event_date, window):
            continue
        if not opp.attendance_records:
            continue
        hours = credited_hours(opp)
        for user_id, status in opp.attendance_records.items():
            if isinstance(status, str) and status.lower() == PRESENT_STATUS:
                totals[user_id] = totals.get(user_id, 0.0) + hours
    return totals


def assign_dense_ranks(users: List[RankedUser]) -> List[RankedUser]:
    # orden: horas desc, luego id asc para empates
    ordered = sorted(users, key=lambda u: (-u.total_hours, u.id))
    current_rank = 0
    previous_hours = -1.0
    for user in ordered:
        if user.total_hours != previous_hours:
            current_rank += 1
        user.rank = current_rank
        previous_hours = user.total_hours
    return ordered


class LeaderboardEngine:
    def __init__(self, clock: Optional[Callable[[], datetime]] = None, name_cache: Optional[NameCache] = None):
        self.clock = clock or default_clock
        self.name_cache = name_cache if name_cache is not None else NameCache()
        self.selected_filter = TimeFilter.TOTAL
        self.ranked_users: List[RankedUser] = []
        self.error_message: Optional[str] = None
        self.last_updated_at: Optional[datetime] = None
        self._busy = threading.Lock()

    @property
    def is_loading(self) -> bool:
        return self._busy.locked()

    def _acquire(self) -> None:
        if not self._busy.acquire(blocking=False):
            logger.info("Leaderboard computation skipped: already loading")
            raise AlreadyInProgress()

    def compute(
        self,
        time_filter: TimeFilter,
        opportunities: List[OpportunityRecord],
        users: List[UserRecord],
        cache: Optional[NameCache] = None,
    ) -> List[RankedUser]:
        self._acquire()
        try:
            return self._compute_locked(TimeFilter.parse(time_filter), opportunities, users, cache)
        finally:
            self._busy.release()

    async def refresh(self, store, time_filter: Optional[TimeFilter] = None) -> List[RankedUser]:
        """Lee snapshots del store y recalcula; el flag ocupado cubre fetch y cálculo."""
        self._acquire()
        try:
            if time_filter is not None:
                self.selected_filter = TimeFilter.parse(time_filter)
            logger.info(f"Starting leaderboard data fetch for filter: {self.selected_filter.label}")
            self.error_message = None
            try:
                opportunities = await store.fetch_opportunities()
                users = await store.fetch_users()
            except Exception as e:
                logger.error(f"Error fetching leaderboard data: {e}")
                failure = SourceFetchFailed(str(e))
                self.error_message = str(failure)
                self.ranked_users = []
                raise failure from e
            logger.info(f"Fetched {len(opportunities)} opportunities and {len(users)} users")
            return self._compute_locked(self.selected_filter, opportunities, users, None)
        finally:
            self._busy.release()

    async def filter_changed(self, store, time_filter: TimeFilter) -> List[RankedUser]:
        return await self.refresh(store, time_filter)

    def _compute_locked(
        self,
        time_filter: TimeFilter,
        opportunities: List[OpportunityRecord],
        users: List[UserRecord],
        cache: Optional[NameCache],
    ) -> List[RankedUser]:
        cache = cache if cache is not None else self.name_cache
        window = resolve_window(time_filter, self.clock())
        logger.debug(f"Window for {time_filter.value}: {window or 'All Time'}")

        totals = aggregate_hours(opportunities, window)

        users_by_id: Dict[str, UserRecord] = {}
        for u in users:
            users_by_id.setdefault(u.id, u)

        to_rank: List[RankedUser] = []
        for user_id, hours in totals.items():
            # se compara lo mismo que se muestra
            hours = round(hours, HOURS_PRECISION)
            if hours <= 0:
                continue
            name = cache.get(user_id)
            if name is None:
                record = users_by_id.get(user_id)
                if record is not None and cache.put(user_id, record.username):
                    name = record.username
            to_rank.append(RankedUser(id=user_id, username=name or fallback_name(user_id), total_hours=hours))

        ranked = assign_dense_ranks(to_rank)
        self.ranked_users = ranked
        self.last_updated_at = self.clock()
        self.error_message = None
        logger.info(f"Leaderboard updated. Filter: {time_filter.label}, Ranks: {len(ranked)}")
        return ranked

    def user_hours(
        self,
        user_id: str,
        time_filter: TimeFilter,
        opportunities: List[OpportunityRecord],
    ) -> UserHours:
        window = resolve_window(TimeFilter.parse(time_filter), self.clock())
        attended = [o for o in opportunities if in_window(o.event_date, window) and o.is_present(user_id)]
        attended.sort(key=lambda o: as_utc(o.event_date), reverse=True)
        total = round(sum(credited_hours(o) for o in attended), HOURS_PRECISION)
        return UserHours(user_id=user_id, total_hours=total, events=attended)
