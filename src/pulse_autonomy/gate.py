"""
Write-Authority Gate
====================

The single choke point between a candidate effect and a domain adapter.

Per effect:
    1. Precondition check (fail closed, counted as an ippBlock)
    2. Confidence -> initial write mode
    3. Decision Engine, only when the initial mode is not already auto
    4. Degraded classes may be re-offered for confirmation (recovery)
    5. auto -> domain adapter; unknown domains apply nothing
    6. Success outcome + notification on successful application
    7. ALWAYS: one write-mode resolution audit event

Adapter failures propagate after they are audited; no success is
recorded for them. Confirmation re-enters at step 5. Reversal routes
to the adapter's inverse and records a revert.

Each effect id reaches an adapter at most once, and is reverted at most
once; both are claimed in the applied-effects store first.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .adapters import AdapterRegistry
from .audit import (
    ActorKind,
    AuditActor,
    AuditLog,
    EventType,
    Severity,
    build_event,
    build_resolution_event,
)
from .classifier import classify_effect
from .config import AutonomyPolicy, DEFAULT_POLICY
from .decision_engine import AutonomyDecisionEngine
from .errors import UnknownEffectError
from .feedback import FeedbackEngine
from .models import (
    AutonomyLevel,
    DecisionReason,
    Effect,
    Outcome,
    WriteMode,
    WriteModeResolution,
)
from .notifications import NotificationDispatcher, describe_effect
from .preconditions import PreconditionProbe, default_probe, run_precondition_check
from .recovery import RecoveryAttempter
from .store import AppliedEffectStore
from .time_utils import Clock, utc_now
from .write_policy import apply_upgrade, resolve_write_mode

logger = logging.getLogger(__name__)


class ApplyStatus(str, Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    DROPPED = "dropped"


@dataclass
class ExecutionResult:
    """What the caller learns about one gated effect."""
    success: bool
    write_mode: WriteMode
    applied: bool
    autonomy_level: AutonomyLevel
    decision_reason: Optional[DecisionReason]
    class_key: str
    effect_id: str
    requires_confirmation: bool = False
    recovery_offer: bool = False
    blocked_reason: Optional[str] = None
    already_applied: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "write_mode": self.write_mode.value,
            "applied": self.applied,
            "already_applied": self.already_applied,
            "autonomy_level": f"L{self.autonomy_level.value}",
            "decision_reason": self.decision_reason.value if self.decision_reason else None,
            "class_key": self.class_key,
            "effect_id": self.effect_id,
            "requires_confirmation": self.requires_confirmation,
            "recovery_offer": self.recovery_offer,
            "blocked_reason": self.blocked_reason,
        }


@dataclass
class RevertResult:
    effect_id: str
    reverted: bool
    class_key: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "effect_id": self.effect_id,
            "reverted": self.reverted,
            "class_key": self.class_key,
            "reason": self.reason,
        }


class WriteAuthorityGate:
    def __init__(
        self,
        engine: AutonomyDecisionEngine,
        feedback: FeedbackEngine,
        adapters: AdapterRegistry,
        applied_effects: AppliedEffectStore,
        audit: AuditLog,
        recovery: Optional[RecoveryAttempter] = None,
        notifier: Optional[NotificationDispatcher] = None,
        precondition_probe: PreconditionProbe = default_probe,
        policy: AutonomyPolicy = DEFAULT_POLICY,
        clock: Clock = utc_now,
    ):
        self.engine = engine
        self.feedback = feedback
        self.adapters = adapters
        self.applied_effects = applied_effects
        self.audit = audit
        self.recovery = recovery
        self.notifier = notifier or NotificationDispatcher()
        self.precondition_probe = precondition_probe
        self.policy = policy
        self.clock = clock

    # === EXECUTE ===

    def execute_pulse_effect(self, effect: Effect, owner_id: str, is_absent: bool = False) -> ExecutionResult:
        classification = classify_effect(effect)
        class_key = classification.class_key

        blocked = run_precondition_check(self.precondition_probe, owner_id)
        if blocked:
            return self._blocked(effect, owner_id, class_key, blocked)

        initial_mode = resolve_write_mode(effect.confidence, self.policy)
        write_mode = initial_mode
        level = AutonomyLevel.L0
        reason = None
        recovery_offer = False

        if initial_mode != WriteMode.AUTO:
            decision = self.engine.decide_autonomy_level(effect, owner_id, is_absent=is_absent)
            level = decision.autonomy_level
            reason = decision.decision_reason
            write_mode = apply_upgrade(initial_mode, decision)

            if reason == DecisionReason.HEALTH_DEGRADED and self.recovery is not None:
                recovery_offer = self.recovery.attempt(owner_id, class_key).permitted

        status = None
        if write_mode == WriteMode.AUTO:
            status = self._apply(effect, owner_id, class_key, write_mode, level, reason)
            if status == ApplyStatus.APPLIED:
                self._record_success(effect, owner_id, confirmed=False)
                self.notifier.notify(describe_effect(effect))
        applied = status == ApplyStatus.APPLIED
        already_applied = status == ApplyStatus.ALREADY_APPLIED
        success = status != ApplyStatus.DROPPED

        resolution = WriteModeResolution(
            write_mode=write_mode,
            autonomy_level=level,
            applied=applied,
            decision_reason=reason,
            class_key=class_key,
            domain=effect.domain,
            effect_type=effect.effect_type.value,
        )
        extra = {"initial_write_mode": initial_mode.value, "recovery_offer": recovery_offer}
        if already_applied:
            extra["already_applied"] = True
        try:
            self.audit.append(build_resolution_event(resolution, owner_id, effect.effect_id, extra=extra))
        except Exception as e:
            if not applied:
                raise
            # The adapter already applied; the caller must still learn that
            logger.error(f"Failed to audit resolution for applied effect {effect.effect_id}: {e}", exc_info=True)
        logger.info(
            f"Gate {class_key}: {write_mode.value} L{level.value} "
            f"({reason.value if reason else 'confidence'}) applied={applied}"
        )

        return ExecutionResult(
            success=success,
            write_mode=write_mode,
            applied=applied,
            autonomy_level=level,
            decision_reason=reason,
            class_key=class_key,
            effect_id=effect.effect_id,
            requires_confirmation=(write_mode == WriteMode.CONFIRM or recovery_offer) and not applied,
            recovery_offer=recovery_offer,
            already_applied=already_applied,
        )

    def _blocked(self, effect: Effect, owner_id: str, class_key: str, reason: str) -> ExecutionResult:
        logger.warning(f"Precondition block for {class_key}: {reason}")
        self.feedback.record_outcome(effect, owner_id, Outcome.IPP_BLOCK)
        self.audit.append(build_event(
            EventType.PRECONDITION_BLOCKED,
            owner_id=owner_id,
            class_key=class_key,
            domain=effect.domain,
            effect_id=effect.effect_id,
            decision="blocked",
            reason=reason,
            severity=Severity.WARN,
            tags=["gate", "precondition"],
        ))
        resolution = WriteModeResolution(
            write_mode=WriteMode.PROPOSED,
            autonomy_level=AutonomyLevel.L0,
            applied=False,
            decision_reason=None,
            class_key=class_key,
            domain=effect.domain,
            effect_type=effect.effect_type.value,
        )
        self.audit.append(build_resolution_event(
            resolution, owner_id, effect.effect_id, extra={"blocked_reason": reason},
        ))
        return ExecutionResult(
            success=False,
            write_mode=WriteMode.PROPOSED,
            applied=False,
            autonomy_level=AutonomyLevel.L0,
            decision_reason=None,
            class_key=class_key,
            effect_id=effect.effect_id,
            blocked_reason=reason,
        )

    def _apply(
        self,
        effect: Effect,
        owner_id: str,
        class_key: str,
        write_mode: WriteMode,
        level: AutonomyLevel,
        reason: Optional[DecisionReason],
    ) -> ApplyStatus:
        """
        Dispatch to the domain adapter.

        The effect id is claimed in the applied-effects store first, so a
        replayed effect never reaches the adapter twice.
        """
        adapter = self.adapters.get(effect.domain)
        if adapter is None:
            logger.warning(f"No adapter for domain '{effect.domain}'; effect {effect.effect_id} dropped")
            self.audit.append(build_event(
                EventType.UNKNOWN_DOMAIN,
                owner_id=owner_id,
                class_key=class_key,
                domain=effect.domain,
                effect_id=effect.effect_id,
                decision="dropped",
                reason=f"No adapter for domain '{effect.domain}'",
                severity=Severity.WARN,
                tags=["gate"],
            ))
            return ApplyStatus.DROPPED

        if not self.applied_effects.record(owner_id, class_key, effect, now=self.clock()):
            logger.info(f"Effect {effect.effect_id} already applied; skipping adapter")
            return ApplyStatus.ALREADY_APPLIED

        try:
            adapter.apply(effect)
        except Exception as e:
            self.applied_effects.release(effect.effect_id)
            logger.error(f"Adapter apply failed for {effect.effect_id}: {e}", exc_info=True)
            self.audit.append(build_event(
                EventType.APPLY_FAILED,
                owner_id=owner_id,
                class_key=class_key,
                domain=effect.domain,
                effect_id=effect.effect_id,
                decision=write_mode.value,
                reason=f"{type(e).__name__}: {e}",
                severity=Severity.HIGH,
                metadata={
                    "autonomy_level": f"L{level.value}",
                    "decision_reason": reason.value if reason else None,
                },
                tags=["gate", "adapter"],
            ))
            raise

        return ApplyStatus.APPLIED

    def _record_success(self, effect: Effect, owner_id: str, confirmed: bool) -> None:
        # The adapter already applied; a ledger failure must not mask that
        try:
            self.feedback.record_outcome(effect, owner_id, Outcome.SUCCESS, confirmed=confirmed)
        except Exception as e:
            logger.error(f"Failed to record success for {effect.effect_id}: {e}", exc_info=True)

    # === CONFIRM ===

    def confirm_pulse_effect(self, effect: Effect, owner_id: str) -> ExecutionResult:
        """
        Apply an effect the user confirmed. Re-enters at the adapter step.

        Confirming an effect that was already applied is a no-op: nothing
        reaches the adapter and no further success is recorded.
        """
        class_key = classify_effect(effect).class_key

        status = self._apply(effect, owner_id, class_key, WriteMode.CONFIRM, AutonomyLevel.L0, None)
        applied = status == ApplyStatus.APPLIED
        if applied:
            self._record_success(effect, owner_id, confirmed=True)
            try:
                self.audit.append(build_event(
                    EventType.CONFIRMATION_APPLIED,
                    owner_id=owner_id,
                    class_key=class_key,
                    domain=effect.domain,
                    effect_id=effect.effect_id,
                    decision=WriteMode.CONFIRM.value,
                    reason="User confirmed",
                    actor=AuditActor(kind=ActorKind.USER, id=owner_id),
                    tags=["gate", "confirm"],
                ))
            except Exception as e:
                logger.error(f"Failed to audit confirmation of {effect.effect_id}: {e}", exc_info=True)
            logger.info(f"Confirmed effect applied: {effect.effect_id} ({class_key})")

        return ExecutionResult(
            success=status != ApplyStatus.DROPPED,
            write_mode=WriteMode.CONFIRM,
            applied=applied,
            autonomy_level=AutonomyLevel.L0,
            decision_reason=None,
            class_key=class_key,
            effect_id=effect.effect_id,
            already_applied=status == ApplyStatus.ALREADY_APPLIED,
        )

    # === REVERT ===

    def revert_pulse_effect(self, effect_id: str, effect: Optional[Effect] = None) -> RevertResult:
        """
        Undo a previously applied effect through its adapter.

        The revert is claimed before the adapter runs; a declined or failed
        revert releases the claim so it can be retried.

        Raises:
            UnknownEffectError: no applied effect has this id
        """
        record = self.applied_effects.get(effect_id)
        if record is None:
            raise UnknownEffectError(effect_id)

        effect = effect or record.effect
        if record.reverted_at is not None:
            return RevertResult(effect_id, False, record.class_key, "already reverted")

        adapter = self.adapters.get(effect.domain)
        if adapter is None:
            logger.warning(f"No adapter for domain '{effect.domain}'; cannot revert {effect_id}")
            return RevertResult(effect_id, False, record.class_key, "no adapter")

        if not self.applied_effects.claim_revert(effect_id, now=self.clock()):
            return RevertResult(effect_id, False, record.class_key, "already reverted")

        try:
            outcome = adapter.revert(effect) or {}
        except Exception as e:
            self.applied_effects.release_revert(effect_id)
            logger.error(f"Adapter revert failed for {effect_id}: {e}", exc_info=True)
            self.audit.append(build_event(
                EventType.APPLY_FAILED,
                owner_id=record.owner_id,
                class_key=record.class_key,
                domain=effect.domain,
                effect_id=effect_id,
                decision="revert",
                reason=f"{type(e).__name__}: {e}",
                severity=Severity.HIGH,
                tags=["gate", "adapter", "revert"],
            ))
            raise

        if not outcome.get("reverted"):
            self.applied_effects.release_revert(effect_id)
            return RevertResult(effect_id, False, record.class_key, outcome.get("reason", "adapter declined"))

        self.feedback.record_outcome(effect, record.owner_id, Outcome.REVERT)
        self.audit.append(build_event(
            EventType.EFFECT_REVERTED,
            owner_id=record.owner_id,
            class_key=record.class_key,
            domain=effect.domain,
            effect_id=effect_id,
            decision="reverted",
            severity=Severity.WARN,
            tags=["gate", "revert"],
        ))
        logger.info(f"Effect reverted: {effect_id} ({record.class_key})")
        return RevertResult(effect_id, True, record.class_key)
