"""
Health check endpoint.

Engine, database and audit chain status. No secrets leaked. No auth required.
"""

import time

from fastapi import APIRouter

from ..deps import get_state

router = APIRouter()


@router.get("/health")
def health_check():
    state = get_state()
    now = time.time()

    response = {
        "status": "healthy",
        "version": state.version,
        "uptime_seconds": round(now - state.start_time, 2) if state.start_time else 0,
    }

    runtime = state.runtime
    if runtime is None:
        response["status"] = "degraded"
        response["engine"] = {"loaded": False}
        return response

    engine_status = {"loaded": True, "adapters": runtime.adapters.domains()}
    try:
        engine_status["audit_events"] = runtime.audit.verify_chain()["checked"]
    except Exception as e:
        engine_status["error"] = str(e)
        response["status"] = "degraded"
    response["engine"] = engine_status
    return response
