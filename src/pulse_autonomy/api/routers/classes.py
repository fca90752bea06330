"""
Classes router - introspection and manual administration.

Manual administration is the only way out of a health lock.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from ...errors import UnknownClassError
from ...runtime import AutonomyRuntime
from ..deps import get_runtime
from ..models import AdminRequest, UserPauseRequest

router = APIRouter()


def _not_found(class_key: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Autonomy class not found: {class_key}")


@router.get("/classes")
def list_classes(
    owner_id: str = Query(..., min_length=1),
    runtime: AutonomyRuntime = Depends(get_runtime),
):
    classes = runtime.admin.list_classes(owner_id)
    return {"owner_id": owner_id, "count": len(classes), "classes": [c.to_dict() for c in classes]}


@router.get("/classes/{class_key}")
def get_class(
    class_key: str,
    owner_id: str = Query(..., min_length=1),
    runtime: AutonomyRuntime = Depends(get_runtime),
):
    try:
        return runtime.admin.get_class(owner_id, class_key).to_dict()
    except UnknownClassError:
        raise _not_found(class_key)


@router.post("/classes/{class_key}/unlock")
def unlock(class_key: str, body: AdminRequest, runtime: AutonomyRuntime = Depends(get_runtime)):
    try:
        cls = runtime.admin.clear_health_lock(body.owner_id, class_key, body.actor_id, body.reason)
    except UnknownClassError:
        raise _not_found(class_key)
    return cls.to_dict()


@router.post("/classes/{class_key}/pause")
def pause(class_key: str, body: AdminRequest, runtime: AutonomyRuntime = Depends(get_runtime)):
    try:
        cls = runtime.admin.pause_class(body.owner_id, class_key, body.actor_id, body.reason)
    except UnknownClassError:
        raise _not_found(class_key)
    return cls.to_dict()


@router.post("/classes/{class_key}/resume")
def resume(class_key: str, body: AdminRequest, runtime: AutonomyRuntime = Depends(get_runtime)):
    try:
        cls = runtime.admin.resume_class(body.owner_id, class_key, body.actor_id, body.reason)
    except UnknownClassError:
        raise _not_found(class_key)
    return cls.to_dict()


@router.post("/classes/{class_key}/user-pause")
def user_pause(class_key: str, body: UserPauseRequest, runtime: AutonomyRuntime = Depends(get_runtime)):
    try:
        cls = runtime.admin.set_user_paused(body.owner_id, class_key, body.paused, body.actor_id, body.reason)
    except UnknownClassError:
        raise _not_found(class_key)
    return cls.to_dict()
