#!/usr/bin/env python3
import os
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, DateTime, Float, String, JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime, timezone

from leaderboard_errors import FetchError
from leaderboard_models import OpportunityRecord, UserRecord, as_utc
from record_store import normalize_status, document_id

logger = logging.getLogger(__name__)


def _build_engine_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    return "sqlite:///data/leaderboard.db"


class Base(DeclarativeBase):
    pass


class Opportunity(Base):
    __tablename__ = "opportunities"
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    event_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    duration_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    attendance_records: Mapped[Optional[Dict[str, str]]] = mapped_column(JSON, nullable=True)


class User(Base):
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    username: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)


def _opportunity_to_record(o: Opportunity) -> OpportunityRecord:
    return OpportunityRecord(
        id=o.id,
        event_date=as_utc(o.event_date),
        duration_hours=o.duration_hours,
        attendance_records=dict(o.attendance_records) if o.attendance_records is not None else None,
    )


class SqlRecordStore:
    def __init__(self, url: Optional[str] = None):
        url = url or _build_engine_url()
        if url.startswith("sqlite:///") and not url.startswith("sqlite:///:memory:"):
            os.makedirs(os.path.dirname(url[len("sqlite:///"):]) or ".", exist_ok=True)
        self.engine = create_engine(url, echo=False, future=True)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, expire_on_commit=False)
        Base.metadata.create_all(self.engine)

    async def fetch_opportunities(self) -> List[OpportunityRecord]:
        try:
            with self.SessionLocal() as session:
                rows = session.query(Opportunity).all()
                return [_opportunity_to_record(o) for o in rows]
        except SQLAlchemyError as e:
            raise FetchError(f"opportunities query failed: {e}") from e

    async def fetch_users(self) -> List[UserRecord]:
        try:
            with self.SessionLocal() as session:
                return [UserRecord(id=u.id, username=u.username) for u in session.query(User).all()]
        except SQLAlchemyError as e:
            raise FetchError(f"users query failed: {e}") from e

    async def save_opportunities(self, docs: List[Dict[str, Any]]) -> Dict[str, Any]:
        saved = 0
        with self.SessionLocal() as session:
            for doc in docs or []:
                doc_id = document_id(doc)
                record = OpportunityRecord.from_document(doc_id, doc) if doc_id else None
                if record is None:
                    # sin id o sin fecha de inicio: no se guarda
                    continue
                session.merge(Opportunity(
                    id=record.id,
                    name=doc.get("name") or None,
                    event_date=record.event_date.astimezone(timezone.utc),
                    duration_hours=record.duration_hours,
                    attendance_records=record.attendance_records,
                ))
                saved += 1
            session.commit()
        return {"stored": saved}

    async def save_users(self, docs: List[Dict[str, Any]]) -> Dict[str, Any]:
        saved = 0
        with self.SessionLocal() as session:
            for doc in docs or []:
                doc_id = document_id(doc)
                if not doc_id:
                    continue
                user = UserRecord.from_document(doc_id, doc)
                session.merge(User(id=user.id, username=user.username))
                saved += 1
            session.commit()
        return {"stored": saved}

    async def record_attendance(self, opportunity_id: str, user_id: str, status: Optional[str]) -> Dict[str, Any]:
        status = normalize_status(status)
        with self.SessionLocal() as session:
            opp = session.get(Opportunity, opportunity_id)
            if opp is None:
                return {"success": False, "error": f"opportunity not found: {opportunity_id}"}
            attendance = dict(opp.attendance_records or {})
            if status is None:
                attendance.pop(user_id, None)
            else:
                attendance[user_id] = status
            # JSON no detecta mutaciones in-place: se reasigna el dict
            opp.attendance_records = attendance
            session.commit()
        return {"success": True, "status": status}
