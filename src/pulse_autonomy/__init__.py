"""
Pulse autonomy: the Autonomy Class Engine and Write-Authority Gate.

Decides, per candidate effect, whether it may execute automatically, must
be confirmed, or is blocked, and learns that permission from outcomes
without ever learning its way around a safety boundary.
"""

from .classifier import Classification, classify_effect
from .config import AutonomyPolicy, DEFAULT_POLICY, load_policy
from .decision_engine import AutonomyDecisionEngine, decide, refresh_snapshot
from .errors import AutonomyError, PolicyError, StoreError, UnknownClassError, UnknownEffectError
from .explain import AutonomyExplanation, explain_autonomy_decision
from .gate import ExecutionResult, RevertResult, WriteAuthorityGate
from .models import (
    AutonomyClass,
    AutonomyLevel,
    ClassStatus,
    Decision,
    DecisionReason,
    Effect,
    EffectSource,
    EffectType,
    HealthState,
    Outcome,
    UserResponse,
    WriteMode,
)
from .runtime import AutonomyRuntime, build_runtime
from .write_policy import resolve_write_mode

__version__ = "0.1.0"

__all__ = [
    "AutonomyClass",
    "AutonomyDecisionEngine",
    "AutonomyError",
    "AutonomyExplanation",
    "AutonomyLevel",
    "AutonomyPolicy",
    "AutonomyRuntime",
    "Classification",
    "ClassStatus",
    "DEFAULT_POLICY",
    "Decision",
    "DecisionReason",
    "Effect",
    "EffectSource",
    "EffectType",
    "ExecutionResult",
    "HealthState",
    "Outcome",
    "PolicyError",
    "RevertResult",
    "StoreError",
    "UnknownClassError",
    "UnknownEffectError",
    "UserResponse",
    "WriteAuthorityGate",
    "WriteMode",
    "build_runtime",
    "classify_effect",
    "decide",
    "explain_autonomy_decision",
    "load_policy",
    "refresh_snapshot",
    "resolve_write_mode",
]
