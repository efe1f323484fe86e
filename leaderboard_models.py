#!/usr/bin/env python3
"""
Modelos del leaderboard: oportunidades, usuarios y filas rankeadas.
Los documentos llegan en camelCase (como en la app móvil) y se normalizan aquí.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

PRESENT_STATUS = "present"
HOURS_PRECISION = 2


class TimeFilter(str, Enum):
    MONTHLY = "monthly"
    ANNUALLY = "annually"
    TOTAL = "total"

    @property
    def label(self) -> str:
        return _FILTER_LABELS[self]

    @classmethod
    def parse(cls, value: Any) -> "TimeFilter":
        if isinstance(value, TimeFilter):
            return value
        text = str(value or "").strip().lower()
        for f in cls:
            if text in (f.value, f.label.lower()):
                return f
        raise ValueError(f"Unknown time filter: {value!r}")


_FILTER_LABELS = {
    TimeFilter.MONTHLY: "This Month",
    TimeFilter.ANNUALLY: "This Year",
    TimeFilter.TOTAL: "All Time",
}


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Acepta datetime, segundos epoch, texto ISO-8601 o {"seconds": ...}."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, dict):
        return parse_timestamp(value.get("seconds", value.get("_seconds")))
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return as_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def _parse_hours(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class OpportunityRecord:
    id: str
    event_date: datetime
    duration_hours: Optional[float] = None
    attendance_records: Optional[Dict[str, str]] = None

    def is_present(self, user_id: str) -> bool:
        status = (self.attendance_records or {}).get(user_id)
        return isinstance(status, str) and status.lower() == PRESENT_STATUS

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> Optional["OpportunityRecord"]:
        if not isinstance(data, dict):
            return None
        start = parse_timestamp(data.get("eventDate", data.get("eventTimestamp")))
        if start is None:
            return None

        hours = _parse_hours(data.get("durationHours"))
        if hours is None:
            end = parse_timestamp(data.get("endDate", data.get("endTimestamp")))
            if end is not None and end >= start:
                hours = (end - start).total_seconds() / 3600.0

        attendance = data.get("attendanceRecords")
        if isinstance(attendance, dict):
            attendance = {str(k): v for k, v in attendance.items() if isinstance(v, str)}
        else:
            attendance = None

        return cls(id=str(doc_id), event_date=start, duration_hours=hours, attendance_records=attendance)

    def to_document(self) -> Dict[str, Any]:
        return {
            "eventDate": self.event_date.isoformat(),
            "durationHours": self.duration_hours,
            "attendanceRecords": dict(self.attendance_records) if self.attendance_records is not None else None,
        }


@dataclass(frozen=True)
class UserRecord:
    id: str
    username: Optional[str] = None

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> Optional["UserRecord"]:
        if not isinstance(data, dict):
            return None
        username = data.get("username")
        return cls(id=str(doc_id), username=username if isinstance(username, str) else None)

    def to_document(self) -> Dict[str, Any]:
        return {"username": self.username}


@dataclass
class RankedUser:
    id: str
    username: str
    total_hours: float = 0.0
    rank: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rank": self.rank,
            "username": self.username,
            "totalHours": round(self.total_hours, HOURS_PRECISION),
        }


@dataclass
class UserHours:
    user_id: str
    total_hours: float = 0.0
    events: List[OpportunityRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "totalHours": round(self.total_hours, HOURS_PRECISION),
            "events": [{"id": e.id, **e.to_document()} for e in self.events],
        }
