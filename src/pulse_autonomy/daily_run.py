"""
Daily run with per-(owner, day) idempotency.

The persisted lock row is claimed before any gate call. A second trigger
for the same key (concurrent or later) observes the row and returns
"skipped" without retrying.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from .audit import ActorKind, AuditActor, AuditLog, EventType, Severity, build_event
from .gate import ExecutionResult, WriteAuthorityGate
from .models import Effect
from .store import DailyRunLockStore
from .time_utils import Clock, utc_now

logger = logging.getLogger(__name__)

# (owner_id, day) -> candidate effects from the upstream reasoning pipeline
EffectSourceFn = Callable[[str, str], Iterable[Effect]]


class RunStatus:
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class DailyRunResult:
    owner_id: str
    day: str
    status: str
    results: List[ExecutionResult] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, Any]:
        return {
            "effects": len(self.results),
            "applied": sum(1 for r in self.results if r.applied),
            "requires_confirmation": sum(1 for r in self.results if r.requires_confirmation),
            "blocked": sum(1 for r in self.results if r.blocked_reason),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "day": self.day,
            "status": self.status,
            "summary": self.summary,
            "results": [r.to_dict() for r in self.results],
        }


def run_day(moment: datetime) -> str:
    """Calendar day key (local time) for a moment."""
    return moment.astimezone().date().isoformat()


class DailyRunScheduler:
    def __init__(
        self,
        gate: WriteAuthorityGate,
        locks: DailyRunLockStore,
        audit: AuditLog,
        effect_source: EffectSourceFn,
        clock: Clock = utc_now,
    ):
        self.gate = gate
        self.locks = locks
        self.audit = audit
        self.effect_source = effect_source
        self.clock = clock

    def _audit(self, event_type: str, owner_id: str, day: str, severity: str, metadata: Dict[str, Any]) -> None:
        self.audit.append(build_event(
            event_type,
            owner_id=owner_id,
            decision=event_type.split(".")[-1],
            reason=f"daily run {day}",
            severity=severity,
            actor=AuditActor(kind=ActorKind.SYSTEM, id="daily_run"),
            metadata={"day": day, **metadata},
            tags=["daily_run"],
        ))

    def run(self, owner_id: str, day: Optional[str] = None, is_absent: bool = False) -> DailyRunResult:
        now = self.clock()
        day = day or run_day(now)

        if not self.locks.acquire(owner_id, day, now=now):
            logger.info(f"Daily run for {owner_id} on {day} already claimed; skipping")
            self._audit(EventType.DAILY_RUN_SKIPPED, owner_id, day, Severity.INFO, {})
            return DailyRunResult(owner_id=owner_id, day=day, status=RunStatus.SKIPPED)

        result = DailyRunResult(owner_id=owner_id, day=day, status=RunStatus.COMPLETED)
        try:
            for effect in self.effect_source(owner_id, day):
                result.results.append(self.gate.execute_pulse_effect(effect, owner_id, is_absent=is_absent))
        except Exception as e:
            logger.error(f"Daily run for {owner_id} on {day} failed: {e}", exc_info=True)
            result.status = RunStatus.FAILED
            self.locks.finish(owner_id, day, RunStatus.FAILED, result.summary, now=self.clock())
            self._audit(EventType.DAILY_RUN_FAILED, owner_id, day, Severity.HIGH, {"error": str(e)})
            raise

        self.locks.finish(owner_id, day, RunStatus.COMPLETED, result.summary, now=self.clock())
        self._audit(EventType.DAILY_RUN_COMPLETED, owner_id, day, Severity.INFO, result.summary)
        logger.info(f"Daily run for {owner_id} on {day} completed: {result.summary}")
        return result
