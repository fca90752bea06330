"""
Autonomy data model.

Effects are immutable inputs from the reasoning pipeline. Autonomy classes
are the durable learned-policy records, serialized as plain dicts for the
store. Decisions and write-mode resolutions are ephemeral and only survive
as audit events.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, Optional

from .time_utils import parse_iso, to_iso, utc_now


# === ENUMS ===

class EffectType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    DERIVE = "derive"


class EffectSource(str, Enum):
    DAILY_RUN = "daily_run"
    VOICE = "voice"
    MANUAL = "manual"
    RECOVERY = "recovery"


class AutonomyLevel(IntEnum):
    """L0 observes/proposes only; L1 may auto-execute."""
    L0 = 0
    L1 = 1


class WriteMode(str, Enum):
    PROPOSED = "proposed"
    CONFIRM = "confirm"
    AUTO = "auto"


class ClassStatus(str, Enum):
    LOCKED = "locked"
    ELIGIBLE = "eligible"
    PAUSED = "paused"


class HealthState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    LOCKED = "locked"


class DecisionReason(str, Enum):
    """Closed set of decision reasons, in engine priority order."""
    ABSENCE_DAMPENING = "ABSENCE_DAMPENING"
    CLASS_PAUSED = "CLASS_PAUSED"
    CLASS_LOCKED = "CLASS_LOCKED"
    HEALTH_LOCKED = "HEALTH_LOCKED"
    HEALTH_DEGRADED = "HEALTH_DEGRADED"
    CONTEXT_DRIFT = "CONTEXT_DRIFT"
    USER_PAUSED = "USER_PAUSED"
    L1_UPGRADE = "L1_UPGRADE"
    NO_UPGRADE = "NO_UPGRADE"
    # Decision evaluation failed; most restrictive outcome
    EVALUATION_ERROR = "EVALUATION_ERROR"


class Outcome(str, Enum):
    SUCCESS = "success"
    REJECT = "reject"
    REVERT = "revert"
    CONFUSION = "confusion"
    IPP_BLOCK = "ipp_block"


class UserResponse(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    MODIFIED = "modified"
    IGNORED = "ignored"


# === EFFECT ===

@dataclass(frozen=True)
class Effect:
    """A single candidate action. Never mutated by the engine."""
    domain: str
    effect_type: EffectType
    payload: Dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0
    source: EffectSource = EffectSource.MANUAL
    target_ref: Optional[str] = None
    effect_id: str = field(default_factory=lambda: f"eff_{uuid.uuid4().hex[:12]}")

    def __post_init__(self):
        # Accept raw strings from collaborators
        if not isinstance(self.effect_type, EffectType):
            object.__setattr__(self, "effect_type", EffectType(self.effect_type))
        if not isinstance(self.source, EffectSource):
            object.__setattr__(self, "source", EffectSource(self.source))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "effect_id": self.effect_id,
            "domain": self.domain,
            "effect_type": self.effect_type.value,
            "target_ref": self.target_ref,
            "payload": dict(self.payload),
            "confidence": self.confidence,
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Effect":
        kwargs = {
            "domain": data["domain"],
            "effect_type": data["effect_type"],
            "payload": data.get("payload") or {},
            "confidence": float(data.get("confidence", 0.0)),
            "source": data.get("source", EffectSource.MANUAL.value),
            "target_ref": data.get("target_ref"),
        }
        if data.get("effect_id"):
            kwargs["effect_id"] = data["effect_id"]
        return cls(**kwargs)


# === AUTONOMY CLASS ===

@dataclass
class ClassStats:
    """Monotonic outcome counters."""
    successes: int = 0
    confirmations: int = 0
    rejections: int = 0
    reverts: int = 0
    confusion_events: int = 0
    ipp_blocks: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "successes": self.successes,
            "confirmations": self.confirmations,
            "rejections": self.rejections,
            "reverts": self.reverts,
            "confusion_events": self.confusion_events,
            "ipp_blocks": self.ipp_blocks,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ClassStats":
        data = data or {}
        return cls(
            successes=int(data.get("successes", 0)),
            confirmations=int(data.get("confirmations", 0)),
            rejections=int(data.get("rejections", 0)),
            reverts=int(data.get("reverts", 0)),
            confusion_events=int(data.get("confusion_events", 0)),
            ipp_blocks=int(data.get("ipp_blocks", 0)),
        )


@dataclass
class AutonomyClass:
    """
    Durable learned-policy unit keyed by domain:effect_type:fingerprint.

    eligibility_score is derived from stats and decay_score on every
    evaluation; the stored value is a cache for introspection only.
    """
    owner_id: str
    class_key: str
    domain: str
    effect_type: str
    fingerprint: str
    status: ClassStatus = ClassStatus.LOCKED
    eligibility_score: float = 0.0
    stats: ClassStats = field(default_factory=ClassStats)
    decay_score: float = 0.0
    context_hash: Optional[str] = None
    health_state: HealthState = HealthState.HEALTHY
    recovery_attempts: int = 0
    user_paused: bool = False
    last_success_at: Optional[datetime] = None
    last_confirmed_at: Optional[datetime] = None
    last_recovery_at: Optional[datetime] = None
    # Counter values captured at the last health transition / manual unlock
    revert_baseline: int = 0
    confusion_baseline: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "class_key": self.class_key,
            "domain": self.domain,
            "effect_type": self.effect_type,
            "fingerprint": self.fingerprint,
            "status": self.status.value,
            "eligibility_score": round(self.eligibility_score, 4),
            "stats": self.stats.to_dict(),
            "decay_score": round(self.decay_score, 4),
            "context_hash": self.context_hash,
            "health_state": self.health_state.value,
            "recovery_attempts": self.recovery_attempts,
            "user_paused": self.user_paused,
            "last_success_at": to_iso(self.last_success_at),
            "last_confirmed_at": to_iso(self.last_confirmed_at),
            "last_recovery_at": to_iso(self.last_recovery_at),
            "revert_baseline": self.revert_baseline,
            "confusion_baseline": self.confusion_baseline,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutonomyClass":
        return cls(
            owner_id=data["owner_id"],
            class_key=data["class_key"],
            domain=data.get("domain", ""),
            effect_type=data.get("effect_type", ""),
            fingerprint=data.get("fingerprint", ""),
            status=ClassStatus(data.get("status", ClassStatus.LOCKED.value)),
            eligibility_score=float(data.get("eligibility_score", 0.0)),
            stats=ClassStats.from_dict(data.get("stats")),
            decay_score=float(data.get("decay_score", 0.0)),
            context_hash=data.get("context_hash"),
            health_state=HealthState(data.get("health_state", HealthState.HEALTHY.value)),
            recovery_attempts=int(data.get("recovery_attempts", 0)),
            user_paused=bool(data.get("user_paused", False)),
            last_success_at=parse_iso(data.get("last_success_at")),
            last_confirmed_at=parse_iso(data.get("last_confirmed_at")),
            last_recovery_at=parse_iso(data.get("last_recovery_at")),
            revert_baseline=int(data.get("revert_baseline", 0)),
            confusion_baseline=int(data.get("confusion_baseline", 0)),
            created_at=parse_iso(data.get("created_at")) or utc_now(),
            updated_at=parse_iso(data.get("updated_at")) or utc_now(),
        )


# === DECISION ===

@dataclass(frozen=True)
class Decision:
    """Decision Engine output."""
    autonomy_level: AutonomyLevel
    decision_reason: DecisionReason
    class_key: str
    upgraded_write_mode: Optional[WriteMode] = None

    @property
    def is_upgrade(self) -> bool:
        return self.autonomy_level == AutonomyLevel.L1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "autonomy_level": f"L{self.autonomy_level.value}",
            "upgraded_write_mode": self.upgraded_write_mode.value if self.upgraded_write_mode else None,
            "decision_reason": self.decision_reason.value,
            "class_key": self.class_key,
        }


@dataclass(frozen=True)
class WriteModeResolution:
    """Per-attempt record; persisted once as an audit event, never updated."""
    write_mode: WriteMode
    autonomy_level: AutonomyLevel
    applied: bool
    decision_reason: Optional[DecisionReason]
    class_key: str
    domain: str
    effect_type: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "effect_type": self.effect_type,
            "write_mode": self.write_mode.value,
            "autonomy_level": f"L{self.autonomy_level.value}",
            "class_key": self.class_key,
            "decision_reason": self.decision_reason.value if self.decision_reason else None,
            "applied": self.applied,
        }
