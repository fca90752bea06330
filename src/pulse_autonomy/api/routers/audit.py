"""
Audit router - read-only access to the hash-chained event log.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...runtime import AutonomyRuntime
from ..deps import get_runtime

router = APIRouter()


@router.get("/audit")
def query_audit(
    owner_id: Optional[str] = None,
    class_key: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    runtime: AutonomyRuntime = Depends(get_runtime),
):
    """Newest first."""
    events = runtime.admin.query_audit(owner_id=owner_id, class_key=class_key, event_type=event_type, limit=limit)
    return {"count": len(events), "events": events}


@router.get("/audit/verify")
def verify_audit(runtime: AutonomyRuntime = Depends(get_runtime)):
    return runtime.audit.verify_chain()
