#!/usr/bin/env python3
from fastapi import FastAPI, HTTPException, Response
from dotenv import load_dotenv
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from datetime import datetime
from typing import Dict, Any, Optional

from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

# Cargar variables .env si existe localmente (en producción se usan env vars)
load_dotenv()
from main import leaderboard_mcp_server

app = FastAPI(title="Volunteer Leaderboard", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/health")
async def health():
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}

@app.get("/metrics")
async def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

@app.get("/tools")
async def tools():
    return {"tools": leaderboard_mcp_server.get_tools(), "count": len(leaderboard_mcp_server.get_tools())}

@app.post("/mcp/call")
async def call(req: Dict[str, Any]):
    try:
        return await leaderboard_mcp_server.handle_request(req)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))

@app.post("/mcp/leaderboard.compute")
async def leaderboard_compute(data: Dict[str, Any]):
    return await leaderboard_mcp_server.handle_request({"tool": "leaderboard.compute", "params": data})

@app.post("/mcp/leaderboard.get")
async def leaderboard_get(data: Dict[str, Any]):
    return await leaderboard_mcp_server.handle_request({"tool": "leaderboard.get", "params": data})

@app.post("/mcp/leaderboard.filters")
async def leaderboard_filters(data: Dict[str, Any]):
    return await leaderboard_mcp_server.handle_request({"tool": "leaderboard.filters", "params": data})

@app.post("/mcp/leaderboard.user_hours")
async def leaderboard_user_hours(data: Dict[str, Any]):
    return await leaderboard_mcp_server.handle_request({"tool": "leaderboard.user_hours", "params": data})

@app.post("/mcp/opportunities.save")
async def opportunities_save(data: Dict[str, Any]):
    return await leaderboard_mcp_server.handle_request({"tool": "opportunities.save", "params": data})

@app.post("/mcp/users.save")
async def users_save(data: Dict[str, Any]):
    return await leaderboard_mcp_server.handle_request({"tool": "users.save", "params": data})

@app.post("/mcp/attendance.record")
async def attendance_record(data: Dict[str, Any]):
    return await leaderboard_mcp_server.handle_request({"tool": "attendance.record", "params": data})

@app.get("/leaderboard")
async def leaderboard(filter: Optional[str] = None):
    """Recalcula y devuelve el leaderboard.

    Parámetros:
    - filter: "monthly" | "annually" | "total" (o su etiqueta, ej. "This Month")
    """
    params = {"filter": filter} if filter else {}
    resp = await leaderboard_mcp_server.handle_request({"tool": "leaderboard.compute", "params": params})
    if resp.get("success"):
        return resp["result"]
    if resp.get("kind") == "already_in_progress":
        raise HTTPException(status_code=409, detail=resp.get("error"))
    if resp.get("kind") == "source_fetch_failed":
        raise HTTPException(status_code=502, detail=resp.get("error"))
    raise HTTPException(status_code=400, detail=resp.get("error"))


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8011, log_level="info")
