"""
Recovery Attempter.

Decides whether a degraded class may be tentatively re-offered to the
user. Permitting an attempt consumes one of the bounded attempts and
stamps last_recovery_at; it never touches status or health_state. The
class only returns to healthy after a user-confirmed success lands
(see health.evaluate_health).

Locked classes never recover here. Only manual administration clears them.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .audit import AuditLog, EventType, Severity, build_event
from .config import AutonomyPolicy, DEFAULT_POLICY
from .models import AutonomyClass, HealthState
from .store import AutonomyClassRepository
from .time_utils import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecoveryCheck:
    permitted: bool
    reason: str
    attempts_remaining: int = 0


def can_attempt_recovery(cls: AutonomyClass, policy: AutonomyPolicy = DEFAULT_POLICY) -> RecoveryCheck:
    """Pure eligibility check for a recovery attempt."""
    remaining = max(0, policy.max_recovery_attempts - cls.recovery_attempts)

    if cls.health_state == HealthState.LOCKED:
        return RecoveryCheck(False, "Health locked; manual unlock required", remaining)
    if cls.health_state != HealthState.DEGRADED:
        return RecoveryCheck(False, f"Class is {cls.health_state.value}, not degraded", remaining)
    if remaining <= 0:
        return RecoveryCheck(False, f"Recovery attempts exhausted ({cls.recovery_attempts})", 0)
    return RecoveryCheck(True, "Recovery attempt permitted", remaining)


class RecoveryAttempter:
    """Consumes recovery attempts and audits each verdict."""

    def __init__(
        self,
        repo: AutonomyClassRepository,
        audit: Optional[AuditLog] = None,
        policy: AutonomyPolicy = DEFAULT_POLICY,
        clock: Clock = utc_now,
    ):
        self.repo = repo
        self.audit = audit
        self.policy = policy
        self.clock = clock

    def attempt(self, owner_id: str, class_key: str) -> RecoveryCheck:
        now = self.clock()
        verdict = {}

        def mutate(cls: AutonomyClass) -> None:
            check = can_attempt_recovery(cls, self.policy)
            if check.permitted:
                cls.recovery_attempts += 1
                cls.last_recovery_at = now
                check = RecoveryCheck(True, check.reason, check.attempts_remaining - 1)
            verdict["check"] = check

        self.repo.update(owner_id, class_key, mutate, now=now)
        check = verdict["check"]

        if check.permitted:
            logger.info(f"Recovery attempt for {class_key} ({check.attempts_remaining} remaining)")
        else:
            logger.info(f"Recovery denied for {class_key}: {check.reason}")

        if self.audit is not None:
            self.audit.append(build_event(
                EventType.RECOVERY_ATTEMPTED if check.permitted else EventType.RECOVERY_DENIED,
                owner_id=owner_id,
                class_key=class_key,
                reason=check.reason,
                severity=Severity.INFO if check.permitted else Severity.WARN,
                metadata={"attempts_remaining": check.attempts_remaining},
                tags=["recovery"],
            ))
        return check
