"""
Autonomy Decision Engine.

Two layers:

- Pure functions over class snapshots. `refresh_snapshot` recomputes decay
  and eligibility, applies the locked -> eligible promotion rule and the
  health state machine. `decide` walks the safety rules in priority order.
- `AutonomyDecisionEngine`, a thin orchestrator that loads the snapshot,
  runs the pure functions inside one atomic class update, persists the
  result and audits promotions and health transitions.

Rule order (first match wins):
    absence > paused > locked > health > drift > user pause > score+confidence

Score alone never upgrades: the live effect must clear the confidence floor.
Evaluation errors never escape; they resolve to L0 / EVALUATION_ERROR.
"""

import copy
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .audit import AuditLog, EventType, Severity, build_event
from .classifier import classify_effect
from .config import AutonomyPolicy, DEFAULT_POLICY
from .context import ContextProvider, default_context_provider, detect_drift
from .health import HealthEvaluation, evaluate_health
from .models import (
    AutonomyClass,
    AutonomyLevel,
    ClassStatus,
    Decision,
    DecisionReason,
    Effect,
    HealthState,
    WriteMode,
)
from .scoring import compute_decay, compute_eligibility_score
from .store import AutonomyClassRepository
from .time_utils import Clock, utc_now

logger = logging.getLogger(__name__)


# === PURE LAYER ===

@dataclass
class RefreshResult:
    snapshot: AutonomyClass
    promoted: bool
    health: HealthEvaluation
    drifted: bool


def refresh_snapshot(
    cls: AutonomyClass,
    now: datetime,
    current_context_hash: str,
    policy: AutonomyPolicy = DEFAULT_POLICY,
) -> RefreshResult:
    """Recompute derived fields on a copy of the snapshot."""
    updated = copy.deepcopy(cls)

    updated.decay_score = compute_decay(updated.last_success_at, now, policy)
    updated.eligibility_score = compute_eligibility_score(updated.stats, updated.decay_score, policy)

    promoted = False
    if updated.status == ClassStatus.LOCKED and updated.stats.successes >= policy.min_successes_for_eligible:
        updated.status = ClassStatus.ELIGIBLE
        updated.context_hash = current_context_hash
        promoted = True

    drifted = detect_drift(updated.context_hash, current_context_hash)
    health = evaluate_health(updated, drifted, policy)
    if health.changed:
        updated.health_state = health.new_health_state
        updated.revert_baseline = updated.stats.reverts
        if health.new_health_state == HealthState.HEALTHY:
            # Trust re-earned under the current context
            updated.context_hash = current_context_hash
            drifted = False

    return RefreshResult(snapshot=updated, promoted=promoted, health=health, drifted=drifted)


def decide(
    cls: AutonomyClass,
    confidence: float,
    is_absent: bool = False,
    drifted: bool = False,
    policy: AutonomyPolicy = DEFAULT_POLICY,
) -> Decision:
    """Apply the safety rules to a refreshed snapshot."""
    key = cls.class_key

    def l0(reason: DecisionReason) -> Decision:
        return Decision(autonomy_level=AutonomyLevel.L0, decision_reason=reason, class_key=key)

    if is_absent:
        return l0(DecisionReason.ABSENCE_DAMPENING)
    if cls.status == ClassStatus.PAUSED:
        return l0(DecisionReason.CLASS_PAUSED)
    if cls.status == ClassStatus.LOCKED:
        return l0(DecisionReason.CLASS_LOCKED)
    if cls.health_state == HealthState.LOCKED:
        return l0(DecisionReason.HEALTH_LOCKED)
    if cls.health_state == HealthState.DEGRADED:
        return l0(DecisionReason.HEALTH_DEGRADED)
    if drifted:
        return l0(DecisionReason.CONTEXT_DRIFT)
    if cls.user_paused:
        return l0(DecisionReason.USER_PAUSED)

    if (
        cls.eligibility_score >= policy.eligibility_score_for_l1
        and confidence >= policy.l1_confirm_downgrade_threshold
    ):
        return Decision(
            autonomy_level=AutonomyLevel.L1,
            decision_reason=DecisionReason.L1_UPGRADE,
            class_key=key,
            upgraded_write_mode=WriteMode.AUTO,
        )

    return l0(DecisionReason.NO_UPGRADE)


# === ORCHESTRATION ===

@dataclass
class Evaluation:
    decision: Decision
    snapshot: Optional[AutonomyClass] = None


class AutonomyDecisionEngine:
    """Loads, refreshes, persists and decides for one effect at a time."""

    def __init__(
        self,
        repo: AutonomyClassRepository,
        audit: Optional[AuditLog] = None,
        policy: AutonomyPolicy = DEFAULT_POLICY,
        context_provider: ContextProvider = default_context_provider,
        clock: Clock = utc_now,
    ):
        self.repo = repo
        self.audit = audit
        self.policy = policy
        self.context_provider = context_provider
        self.clock = clock

    def refresh(self, owner_id: str, effect: Effect) -> RefreshResult:
        """Fetch or lazily create the effect's class and persist its refresh."""
        classification = classify_effect(effect)
        now = self.clock()
        context_hash = self.context_provider().hash
        captured = {}

        def mutate(cls: AutonomyClass) -> AutonomyClass:
            result = refresh_snapshot(cls, now, context_hash, self.policy)
            captured["result"] = result
            return result.snapshot

        self.repo.update(owner_id, classification.class_key, mutate, create_from=classification, now=now)
        result = captured["result"]
        self._audit_refresh(owner_id, result)
        return result

    def evaluate(self, effect: Effect, owner_id: str, is_absent: bool = False) -> Evaluation:
        class_key = "unknown"
        try:
            class_key = classify_effect(effect).class_key
            result = self.refresh(owner_id, effect)
            decision = decide(result.snapshot, effect.confidence, is_absent, result.drifted, self.policy)
        except Exception as e:
            logger.error(f"Decision evaluation failed for {class_key}: {e}", exc_info=True)
            return Evaluation(Decision(
                autonomy_level=AutonomyLevel.L0,
                decision_reason=DecisionReason.EVALUATION_ERROR,
                class_key=class_key,
            ))

        logger.info(
            f"Decision {class_key}: L{decision.autonomy_level.value} ({decision.decision_reason.value})"
        )
        return Evaluation(decision, result.snapshot)

    def decide_autonomy_level(self, effect: Effect, owner_id: str, is_absent: bool = False) -> Decision:
        return self.evaluate(effect, owner_id, is_absent).decision

    def _audit_refresh(self, owner_id: str, result: RefreshResult) -> None:
        snapshot = result.snapshot
        if result.promoted:
            logger.info(f"Class promoted to eligible: {snapshot.class_key}")
        if result.health.changed:
            logger.info(
                f"Health {snapshot.class_key}: {result.health.previous_state.value} -> "
                f"{result.health.new_health_state.value} ({result.health.reason})"
            )

        if self.audit is None:
            return

        if result.promoted:
            self.audit.append(build_event(
                EventType.CLASS_PROMOTED,
                owner_id=owner_id,
                class_key=snapshot.class_key,
                domain=snapshot.domain,
                decision=ClassStatus.ELIGIBLE.value,
                reason=f"{snapshot.stats.successes} successes",
                metadata={"eligibility_score": round(snapshot.eligibility_score, 4)},
                tags=["class"],
            ))
        if result.health.changed:
            self.audit.append(build_event(
                EventType.HEALTH_TRANSITION,
                owner_id=owner_id,
                class_key=snapshot.class_key,
                domain=snapshot.domain,
                decision=result.health.new_health_state.value,
                reason=result.health.reason,
                severity=Severity.INFO if result.health.new_health_state == HealthState.HEALTHY else Severity.WARN,
                metadata={
                    "from": result.health.previous_state.value,
                    "to": result.health.new_health_state.value,
                    "decay_score": round(snapshot.decay_score, 4),
                },
                tags=["health"],
            ))
