"""
Pulse Autonomy REST API - Pydantic Models

Request envelopes around the engine's Effect. Responses are the engine's
own to_dict() shapes.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..models import Effect


# =============================================================================
# Enums
# =============================================================================

class EffectTypeIn(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"
    derive = "derive"


class EffectSourceIn(str, Enum):
    daily_run = "daily_run"
    voice = "voice"
    manual = "manual"
    recovery = "recovery"


class OutcomeIn(str, Enum):
    success = "success"
    reject = "reject"
    revert = "revert"
    confusion = "confusion"


class UserResponseIn(str, Enum):
    accepted = "accepted"
    rejected = "rejected"
    modified = "modified"
    ignored = "ignored"


# =============================================================================
# Effect
# =============================================================================

class EffectIn(BaseModel):
    """A candidate effect from the reasoning pipeline."""
    domain: str = Field(..., min_length=1, description="Effect domain: tasks, chef, planning, life_state, ...")
    effect_type: EffectTypeIn
    payload: Dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: EffectSourceIn = EffectSourceIn.manual
    target_ref: Optional[str] = None
    effect_id: Optional[str] = Field(default=None, description="Generated when omitted")

    def to_effect(self) -> Effect:
        return Effect.from_dict({
            "domain": self.domain,
            "effect_type": self.effect_type.value,
            "payload": self.payload,
            "confidence": self.confidence,
            "source": self.source.value,
            "target_ref": self.target_ref,
            "effect_id": self.effect_id,
        })


# =============================================================================
# Requests
# =============================================================================

class ClassifyRequest(BaseModel):
    effect: EffectIn


class OwnedEffectRequest(BaseModel):
    owner_id: str = Field(..., min_length=1)
    effect: EffectIn


class DecideRequest(OwnedEffectRequest):
    is_absent: bool = False


class ExecuteRequest(OwnedEffectRequest):
    is_absent: bool = False


class ConfirmRequest(OwnedEffectRequest):
    pass


class RevertRequest(BaseModel):
    effect: Optional[EffectIn] = Field(default=None, description="Overrides the stored effect")


class OutcomeRequest(OwnedEffectRequest):
    outcome: OutcomeIn
    confirmed: bool = False


class ResponseRequest(OwnedEffectRequest):
    response: UserResponseIn
    latency_ms: Optional[int] = Field(default=None, ge=0)


class ExplainRequest(OwnedEffectRequest):
    is_absent: bool = False


class AdminRequest(BaseModel):
    owner_id: str = Field(..., min_length=1)
    actor_id: str = "admin"
    reason: Optional[str] = Field(default=None, max_length=500)


class UserPauseRequest(AdminRequest):
    paused: bool = True
    actor_id: str = "user"
