"""
Effects router - the gate's HTTP surface.

Classify, decide, execute, confirm, revert, record outcomes and user
responses, explain. Engine calls are blocking SQLite work, so handlers
are plain functions (run in the threadpool).
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ...classifier import classify_effect
from ...errors import UnknownEffectError
from ...explain import explain_autonomy_decision
from ...models import Outcome, UserResponse
from ...runtime import AutonomyRuntime
from ...store import new_autonomy_class
from ..deps import get_runtime
from ..models import (
    ClassifyRequest,
    ConfirmRequest,
    DecideRequest,
    ExecuteRequest,
    ExplainRequest,
    OutcomeRequest,
    ResponseRequest,
    RevertRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/effects/classify")
def classify(body: ClassifyRequest):
    """Class identity for an effect. Pure; nothing is stored."""
    return classify_effect(body.effect.to_effect()).to_dict()


@router.post("/effects/decide")
def decide(body: DecideRequest, runtime: AutonomyRuntime = Depends(get_runtime)):
    decision = runtime.engine.decide_autonomy_level(
        body.effect.to_effect(), body.owner_id, is_absent=body.is_absent,
    )
    return decision.to_dict()


@router.post("/effects/execute")
def execute(body: ExecuteRequest, runtime: AutonomyRuntime = Depends(get_runtime)):
    """
    Run an effect through the Write-Authority Gate.

    Adapter failures surface as 502 after the gate has audited them.
    """
    try:
        result = runtime.gate.execute_pulse_effect(
            body.effect.to_effect(), body.owner_id, is_absent=body.is_absent,
        )
    except Exception as e:
        raise HTTPException(status_code=502, detail=f"Domain adapter failed: {e}")
    return result.to_dict()


@router.post("/effects/confirm")
def confirm(body: ConfirmRequest, runtime: AutonomyRuntime = Depends(get_runtime)):
    try:
        result = runtime.gate.confirm_pulse_effect(body.effect.to_effect(), body.owner_id)
    except Exception as e:
        raise HTTPException(status_code=502, detail=f"Domain adapter failed: {e}")
    return result.to_dict()


@router.post("/effects/{effect_id}/revert")
def revert(effect_id: str, body: RevertRequest, runtime: AutonomyRuntime = Depends(get_runtime)):
    effect = body.effect.to_effect() if body.effect else None
    try:
        result = runtime.gate.revert_pulse_effect(effect_id, effect)
    except UnknownEffectError:
        raise HTTPException(status_code=404, detail=f"Effect not applied: {effect_id}")
    except Exception as e:
        raise HTTPException(status_code=502, detail=f"Domain adapter failed: {e}")
    return result.to_dict()


@router.post("/effects/outcome")
def record_outcome(body: OutcomeRequest, runtime: AutonomyRuntime = Depends(get_runtime)):
    snapshot = runtime.feedback.record_outcome(
        body.effect.to_effect(), body.owner_id, Outcome(body.outcome.value), confirmed=body.confirmed,
    )
    return snapshot.to_dict()


@router.post("/effects/response")
def record_response(body: ResponseRequest, runtime: AutonomyRuntime = Depends(get_runtime)):
    result = runtime.feedback.record_user_response(
        body.effect.to_effect(), body.owner_id, UserResponse(body.response.value), latency_ms=body.latency_ms,
    )
    return result.to_dict()


@router.post("/effects/explain")
def explain(body: ExplainRequest, runtime: AutonomyRuntime = Depends(get_runtime)):
    """Explain the verdict against the stored class (or a fresh one)."""
    effect = body.effect.to_effect()
    classification = classify_effect(effect)
    snapshot = runtime.repo.get(body.owner_id, classification.class_key)
    if snapshot is None:
        snapshot = new_autonomy_class(body.owner_id, classification, runtime.engine.clock())

    explanation = explain_autonomy_decision(
        effect,
        snapshot,
        is_absent=body.is_absent,
        current_context_hash=runtime.engine.context_provider().hash,
        policy=runtime.policy,
    )
    return explanation.to_dict()
