#!/usr/bin/env python3
import os
import json
import logging
from typing import Any, Dict, List, Optional

import redis

from leaderboard_errors import FetchError
from leaderboard_models import OpportunityRecord, UserRecord

logger = logging.getLogger(__name__)

OPPORTUNITIES_KEY = "vol:opportunities"
USERS_KEY = "vol:users"
VALID_STATUSES = ("present", "absent")


def document_id(doc: Dict[str, Any]) -> str:
    if not isinstance(doc, dict):
        return ""
    return str(doc.get("id") or doc.get("documentID") or "")


def _to_opportunities(docs: Dict[str, Dict[str, Any]]) -> List[OpportunityRecord]:
    records = []
    for doc_id, data in docs.items():
        record = OpportunityRecord.from_document(doc_id, data)
        if record is None:
            logger.warning(f"Skipping opportunity {doc_id}: missing or invalid eventDate")
            continue
        records.append(record)
    return records


def _to_users(docs: Dict[str, Dict[str, Any]]) -> List[UserRecord]:
    users = []
    for doc_id, data in docs.items():
        user = UserRecord.from_document(doc_id, data)
        if user is None:
            logger.warning(f"Skipping user {doc_id}: not a document")
            continue
        users.append(user)
    return users


def _apply_attendance(doc: Dict[str, Any], user_id: str, status: Optional[str]) -> Dict[str, Any]:
    attendance = dict(doc.get("attendanceRecords") or {})
    if status is None:
        attendance.pop(user_id, None)
    else:
        attendance[user_id] = status
    doc = dict(doc)
    doc["attendanceRecords"] = attendance
    return doc


def normalize_status(status: Optional[str]) -> Optional[str]:
    if status is None:
        return None
    status = str(status).strip().lower()
    if status not in VALID_STATUSES:
        raise ValueError(f"Invalid attendance status: {status!r}")
    return status


class InMemoryRecordStore:
    def __init__(self):
        self._opportunities: Dict[str, Dict[str, Any]] = {}
        self._users: Dict[str, Dict[str, Any]] = {}

    async def fetch_opportunities(self) -> List[OpportunityRecord]:
        return _to_opportunities(self._opportunities)

    async def fetch_users(self) -> List[UserRecord]:
        return _to_users(self._users)

    async def save_opportunities(self, docs: List[Dict[str, Any]]) -> Dict[str, Any]:
        stored = 0
        for doc in docs or []:
            doc_id = document_id(doc)
            if not doc_id:
                continue
            self._opportunities[doc_id] = {k: v for k, v in doc.items() if k != "id"}
            stored += 1
        return {"stored": stored}

    async def save_users(self, docs: List[Dict[str, Any]]) -> Dict[str, Any]:
        stored = 0
        for doc in docs or []:
            doc_id = document_id(doc)
            if not doc_id:
                continue
            self._users[doc_id] = {k: v for k, v in doc.items() if k != "id"}
            stored += 1
        return {"stored": stored}

    async def record_attendance(self, opportunity_id: str, user_id: str, status: Optional[str]) -> Dict[str, Any]:
        status = normalize_status(status)
        doc = self._opportunities.get(opportunity_id)
        if doc is None:
            return {"success": False, "error": f"opportunity not found: {opportunity_id}"}
        self._opportunities[opportunity_id] = _apply_attendance(doc, user_id, status)
        return {"success": True, "status": status}


class RedisRecordStore:
    """Documentos como JSON en hashes de Redis (id -> documento)."""

    def __init__(self, url: str = "", client=None):
        self._redis = client if client is not None else redis.Redis.from_url(url, decode_responses=True)

    def _load(self, key: str) -> Dict[str, Dict[str, Any]]:
        try:
            raw = self._redis.hgetall(key) or {}
        except redis.RedisError as e:
            raise FetchError(f"redis read {key} failed: {e}") from e
        docs: Dict[str, Dict[str, Any]] = {}
        for doc_id, payload in raw.items():
            try:
                data = json.loads(payload)
            except (TypeError, ValueError):
                data = None
            if not isinstance(data, dict):
                logger.warning(f"Skipping corrupt document {key}/{doc_id}")
                continue
            docs[doc_id] = data
        return docs

    def _store(self, key: str, docs: List[Dict[str, Any]]) -> Dict[str, Any]:
        mapping = {}
        for doc in docs or []:
            doc_id = document_id(doc)
            if doc_id:
                mapping[doc_id] = json.dumps({k: v for k, v in doc.items() if k != "id"}, ensure_ascii=False, default=str)
        if mapping:
            self._redis.hset(key, mapping=mapping)
        return {"stored": len(mapping)}

    async def fetch_opportunities(self) -> List[OpportunityRecord]:
        return _to_opportunities(self._load(OPPORTUNITIES_KEY))

    async def fetch_users(self) -> List[UserRecord]:
        return _to_users(self._load(USERS_KEY))

    async def save_opportunities(self, docs: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self._store(OPPORTUNITIES_KEY, docs)

    async def save_users(self, docs: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self._store(USERS_KEY, docs)

    async def record_attendance(self, opportunity_id: str, user_id: str, status: Optional[str]) -> Dict[str, Any]:
        status = normalize_status(status)
        raw = self._redis.hget(OPPORTUNITIES_KEY, opportunity_id)
        if raw is None:
            return {"success": False, "error": f"opportunity not found: {opportunity_id}"}
        doc = json.loads(raw)
        if not isinstance(doc, dict):
            return {"success": False, "error": f"corrupt opportunity document: {opportunity_id}"}
        doc = _apply_attendance(doc, user_id, status)
        self._redis.hset(OPPORTUNITIES_KEY, opportunity_id, json.dumps(doc, ensure_ascii=False, default=str))
        return {"success": True, "status": status}


def build_record_store():
    backend = (os.getenv("LEADERBOARD_STORE") or "memory").strip().lower()
    if backend == "redis":
        url = os.getenv("REDIS_URL") or ""
        if not url:
            raise ValueError("LEADERBOARD_STORE=redis requires REDIS_URL")
        return RedisRecordStore(url)
    if backend == "sql":
        from opportunity_storage import SqlRecordStore
        return SqlRecordStore()
    if backend != "memory":
        raise ValueError(f"Unknown LEADERBOARD_STORE: {backend}")
    return InMemoryRecordStore()
