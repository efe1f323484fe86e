#!/usr/bin/env python3
"""
Volunteer Leaderboard - Agents for Life
Servidor de herramientas para el ranking de horas de voluntariado
"""

import logging
import time
from datetime import datetime
from typing import Dict, Any, List

from leaderboard_engine import LeaderboardEngine
from leaderboard_errors import AlreadyInProgress, ComputeError, SourceFetchFailed
from leaderboard_models import TimeFilter
from metrics import (
    LEADERBOARD_COMPUTE_REJECTED_TOTAL,
    LEADERBOARD_ERRORS_TOTAL,
    LEADERBOARD_RANKED_USERS,
    LEADERBOARD_REQUESTS_TOTAL,
    LEADERBOARD_TOOL_DURATION_MS,
)
from record_store import build_record_store

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class LeaderboardMCPServer:
    def __init__(self, store=None, engine: LeaderboardEngine = None):
        self.store = store if store is not None else build_record_store()
        self.engine = engine if engine is not None else LeaderboardEngine()
        self.tools = {
            "leaderboard.compute": self._compute,
            "leaderboard.get": self._get,
            "leaderboard.filters": self._filters,
            "leaderboard.user_hours": self._user_hours,
            "opportunities.save": self._save_opportunities,
            "users.save": self._save_users,
            "attendance.record": self._record_attendance,
        }
        self.stats = {
            "requests": 0,
            "errors": 0,
            "start_time": datetime.now().isoformat(),
            "tool_metrics": {}
        }

    def get_tools(self) -> List[str]:
        return list(self.tools.keys())

    async def handle_request(self, request: Dict[str, Any]) -> Dict[str, Any]:
        tool = request.get("tool", "")
        try:
            self.stats["requests"] += 1
            params = request.get("params") or {}

            if tool not in self.tools:
                return {"success": False, "error": f"Tool not found: {tool}", "available_tools": self.get_tools()}

            start = time.perf_counter()
            result = await self.tools[tool](params)
            duration_ms = (time.perf_counter() - start) * 1000.0

            # metrics
            LEADERBOARD_REQUESTS_TOTAL.labels(tool=tool).inc()
            LEADERBOARD_TOOL_DURATION_MS.labels(tool=tool).observe(duration_ms)

            tm = self.stats["tool_metrics"].setdefault(tool, {"calls": 0, "total_ms": 0.0, "avg_ms": 0.0, "last_ms": 0.0})
            tm["calls"] += 1
            tm["total_ms"] += duration_ms
            tm["last_ms"] = duration_ms
            tm["avg_ms"] = tm["total_ms"] / max(1, tm["calls"])

            return {
                "success": True,
                "result": result,
                "tool": tool,
                "duration_ms": round(duration_ms, 2),
                "timestamp": datetime.now().isoformat(),
            }
        except AlreadyInProgress as e:
            # disparo duplicado: se ignora, no cuenta como error
            LEADERBOARD_COMPUTE_REJECTED_TOTAL.inc()
            return {"success": False, "error": str(e), "kind": e.kind}
        except ComputeError as e:
            self.stats["errors"] += 1
            LEADERBOARD_ERRORS_TOTAL.labels(tool=tool or "unknown").inc()
            return {"success": False, "error": str(e), "kind": e.kind}
        except Exception as e:
            self.stats["errors"] += 1
            LEADERBOARD_ERRORS_TOTAL.labels(tool=tool or "unknown").inc()
            logger.error(f"Error: {e}")
            return {"success": False, "error": str(e)}

    def _state(self) -> Dict[str, Any]:
        engine = self.engine
        return {
            "filter": engine.selected_filter.value,
            "label": engine.selected_filter.label,
            "results": [u.to_dict() for u in engine.ranked_users],
            "count": len(engine.ranked_users),
            "is_loading": engine.is_loading,
            "error_message": engine.error_message,
            "last_updated_at": engine.last_updated_at.isoformat() if engine.last_updated_at else None,
        }

    async def _compute(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Recalcula el leaderboard completo desde el store"""
        time_filter = params.get("filter")
        ranked = await self.engine.refresh(self.store, TimeFilter.parse(time_filter) if time_filter else None)
        LEADERBOARD_RANKED_USERS.set(len(ranked))
        return self._state()

    async def _get(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return self._state()

    async def _filters(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "filters": [{"value": f.value, "label": f.label} for f in TimeFilter],
            "selected": self.engine.selected_filter.value,
        }

    async def _user_hours(self, params: Dict[str, Any]) -> Dict[str, Any]:
        user_id = str(params.get("user_id") or "")
        if not user_id:
            raise ValueError("user_id requerido")
        time_filter = TimeFilter.parse(params.get("filter") or TimeFilter.TOTAL)
        try:
            opportunities = await self.store.fetch_opportunities()
        except Exception as e:
            raise SourceFetchFailed(str(e)) from e
        return self.engine.user_hours(user_id, time_filter, opportunities).to_dict()

    async def _save_opportunities(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self.store.save_opportunities(params.get("opportunities", []))

    async def _save_users(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self.store.save_users(params.get("users", []))

    async def _record_attendance(self, params: Dict[str, Any]) -> Dict[str, Any]:
        opportunity_id = str(params.get("opportunity_id") or "")
        user_id = str(params.get("user_id") or "")
        if not opportunity_id or not user_id:
            raise ValueError("opportunity_id y user_id requeridos")
        return await self.store.record_attendance(opportunity_id, user_id, params.get("status"))


leaderboard_mcp_server = LeaderboardMCPServer()


if __name__ == "__main__":
    print("🏆 Volunteer Leaderboard Server")
    for t in leaderboard_mcp_server.get_tools():
        print(" -", t)
