"""
Explainability Builder.

Reconstructs, after the fact, why an effect resolved to L0 or L1 against
a given class snapshot. Read-only: nothing is persisted and no clock is
consulted, so the stored decay is taken as-is.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import AutonomyPolicy, DEFAULT_POLICY
from .context import detect_drift
from .decision_engine import decide
from .models import AutonomyClass, ClassStatus, DecisionReason, Effect, HealthState
from .scoring import compute_eligibility_score


_SUMMARIES = {
    DecisionReason.ABSENCE_DAMPENING: "You're away, so nothing runs automatically until you're back.",
    DecisionReason.CLASS_PAUSED: "This kind of action is paused.",
    DecisionReason.CLASS_LOCKED: "This kind of action hasn't been confirmed often enough to run on its own.",
    DecisionReason.HEALTH_LOCKED: "Automation for this action is locked after repeated problems.",
    DecisionReason.HEALTH_DEGRADED: "Automation for this action is on hold while it re-earns trust.",
    DecisionReason.CONTEXT_DRIFT: "Your routine looks different from when this was learned, so it needs a check.",
    DecisionReason.USER_PAUSED: "You asked to review this kind of action yourself.",
    DecisionReason.L1_UPGRADE: "You've approved this kind of action consistently, so it ran automatically.",
    DecisionReason.NO_UPGRADE: "Confidence in this specific action wasn't high enough to run it automatically.",
    DecisionReason.EVALUATION_ERROR: "Autonomy could not be evaluated, so the safest option was used.",
}

_FOLLOW_UPS = {
    DecisionReason.CLASS_PAUSED: ["Resume the class to let it earn autonomy again"],
    DecisionReason.CLASS_LOCKED: ["Confirm similar actions to build a track record"],
    DecisionReason.HEALTH_LOCKED: ["Review recent reverts and confusion", "Clear the health lock manually"],
    DecisionReason.HEALTH_DEGRADED: ["Confirm the next recovery offer to restore health"],
    DecisionReason.CONTEXT_DRIFT: ["Confirm a few actions in the new routine"],
    DecisionReason.USER_PAUSED: ["Lift the user pause to allow automatic execution"],
    DecisionReason.L1_UPGRADE: ["Revert the action if it was wrong"],
    DecisionReason.EVALUATION_ERROR: ["Check the autonomy log for the evaluation error"],
}


@dataclass
class AutonomyExplanation:
    summary: str
    autonomy_level: str
    decision_reason: str
    class_key: str
    eligibility_score: float
    safeguards_applied: List[str] = field(default_factory=list)
    follow_up_actions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "autonomy_level": self.autonomy_level,
            "decision_reason": self.decision_reason,
            "class_key": self.class_key,
            "eligibility_score": round(self.eligibility_score, 4),
            "safeguards_applied": list(self.safeguards_applied),
            "follow_up_actions": list(self.follow_up_actions),
        }


def _safeguards(
    snapshot: AutonomyClass,
    effect: Effect,
    is_absent: bool,
    drifted: bool,
    policy: AutonomyPolicy,
) -> List[str]:
    applied = []
    if is_absent:
        applied.append("absence_dampening")
    if snapshot.status != ClassStatus.ELIGIBLE:
        applied.append(f"class_status:{snapshot.status.value}")
    if snapshot.health_state != HealthState.HEALTHY:
        applied.append(f"health:{snapshot.health_state.value}")
    if drifted:
        applied.append("context_drift")
    if snapshot.user_paused:
        applied.append("user_paused")
    if snapshot.eligibility_score < policy.eligibility_score_for_l1:
        applied.append(f"eligibility_below:{policy.eligibility_score_for_l1}")
    if effect.confidence < policy.l1_confirm_downgrade_threshold:
        applied.append(f"confidence_floor:{policy.l1_confirm_downgrade_threshold}")
    if snapshot.decay_score > 0:
        applied.append(f"decay:{snapshot.decay_score:.2f}")
    return applied


def explain_autonomy_decision(
    effect: Effect,
    class_snapshot: AutonomyClass,
    is_absent: bool = False,
    current_context_hash: Optional[str] = None,
    policy: AutonomyPolicy = DEFAULT_POLICY,
) -> AutonomyExplanation:
    """
    Explain the L0/L1 verdict for an effect against a class snapshot.

    Without a current context hash, drift is not considered.
    """
    snapshot = copy.deepcopy(class_snapshot)
    snapshot.eligibility_score = compute_eligibility_score(snapshot.stats, snapshot.decay_score, policy)
    if snapshot.status == ClassStatus.LOCKED and snapshot.stats.successes >= policy.min_successes_for_eligible:
        snapshot.status = ClassStatus.ELIGIBLE

    drifted = bool(current_context_hash) and detect_drift(snapshot.context_hash, current_context_hash)
    decision = decide(snapshot, effect.confidence, is_absent, drifted, policy)

    reason = decision.decision_reason
    summary = _SUMMARIES[reason]
    if reason == DecisionReason.NO_UPGRADE and snapshot.eligibility_score < policy.eligibility_score_for_l1:
        summary = (
            f"Trust for this action is {snapshot.eligibility_score:.0%}; "
            f"it needs {policy.eligibility_score_for_l1:.0%} to run automatically."
        )

    return AutonomyExplanation(
        summary=summary,
        autonomy_level=f"L{decision.autonomy_level.value}",
        decision_reason=reason.value,
        class_key=snapshot.class_key,
        eligibility_score=snapshot.eligibility_score,
        safeguards_applied=_safeguards(snapshot, effect, is_absent, drifted, policy),
        follow_up_actions=list(_FOLLOW_UPS.get(reason, [])),
    )
