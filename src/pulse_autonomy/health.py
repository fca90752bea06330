"""
Health Evaluator - healthy -> degraded -> locked.

A pure function of the class snapshot. The caller persists transitions
(and moves the revert baseline when it does).

Rules, in priority order:
1. Any state -> locked when confusion events since the last manual unlock
   reach CONFUSION_LOCK_THRESHOLD.
2. locked stays locked; only manual administration clears it.
3. healthy -> degraded on decay >= DECAY_DEGRADE_THRESHOLD, context drift,
   or REVERTS_FOR_DEGRADE reverts since the last transition.
4. degraded -> locked on decay >= DECAY_SEVERE_THRESHOLD, or on any revert
   recorded while degraded.
5. degraded -> healthy once a user-confirmed success lands after the last
   recovery attempt and decay is back under the degrade bar.
6. Otherwise stable.
"""

from dataclasses import dataclass

from .config import AutonomyPolicy, DEFAULT_POLICY
from .models import AutonomyClass, HealthState


@dataclass(frozen=True)
class HealthEvaluation:
    new_health_state: HealthState
    reason: str
    previous_state: HealthState

    @property
    def changed(self) -> bool:
        return self.new_health_state != self.previous_state


def _recovered(cls: AutonomyClass, policy: AutonomyPolicy) -> bool:
    if cls.recovery_attempts <= 0 or cls.last_recovery_at is None:
        return False
    if cls.last_confirmed_at is None or cls.last_confirmed_at <= cls.last_recovery_at:
        return False
    return cls.decay_score < policy.decay_degrade_threshold


def evaluate_health(
    cls: AutonomyClass,
    drifted: bool,
    policy: AutonomyPolicy = DEFAULT_POLICY,
) -> HealthEvaluation:
    """Compute the next health state for a class snapshot."""
    current = cls.health_state
    stats = cls.stats

    def result(state: HealthState, reason: str) -> HealthEvaluation:
        return HealthEvaluation(new_health_state=state, reason=reason, previous_state=current)

    confusion = stats.confusion_events - cls.confusion_baseline
    if confusion >= policy.confusion_lock_threshold:
        if current == HealthState.LOCKED:
            return result(HealthState.LOCKED, "Locked")
        return result(HealthState.LOCKED, f"Confusion events reached {confusion}")

    if current == HealthState.LOCKED:
        return result(HealthState.LOCKED, "Locked")

    reverts_since = stats.reverts - cls.revert_baseline

    if current == HealthState.HEALTHY:
        if cls.decay_score >= policy.decay_degrade_threshold:
            return result(HealthState.DEGRADED, f"Decay {cls.decay_score:.2f} over degrade threshold")
        if drifted:
            return result(HealthState.DEGRADED, "Context drift detected")
        if reverts_since >= policy.reverts_for_degrade:
            return result(HealthState.DEGRADED, f"{reverts_since} reverts since last transition")
        return result(HealthState.HEALTHY, "Stable")

    # degraded
    if cls.decay_score >= policy.decay_severe_threshold:
        return result(HealthState.LOCKED, f"Decay {cls.decay_score:.2f} over severe threshold")
    if reverts_since > 0:
        return result(HealthState.LOCKED, "Revert recorded while degraded")
    if _recovered(cls, policy):
        return result(HealthState.HEALTHY, "Recovered after confirmed success")
    return result(HealthState.DEGRADED, "Stable")
