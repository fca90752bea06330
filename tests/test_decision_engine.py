"""
Decision engine tests.

Invariants covered:
1. Hard locks and absence always resolve to L0
2. Score alone never upgrades; the live confidence floor applies
3. Promotion locked -> eligible only after enough successes
4. Drift degrades health and blocks the upgrade
5. Evaluation errors resolve to L0 / EVALUATION_ERROR
"""

from datetime import timedelta

import pytest

from conftest import OWNER, seed_class, seed_eligible, task_effect
from pulse_autonomy.audit import EventType
from pulse_autonomy.classifier import classify_effect
from pulse_autonomy.decision_engine import AutonomyDecisionEngine, decide, refresh_snapshot
from pulse_autonomy.errors import StoreError
from pulse_autonomy.models import (
    AutonomyClass,
    AutonomyLevel,
    ClassStats,
    ClassStatus,
    DecisionReason,
    HealthState,
    WriteMode,
)


def eligible_snapshot(**fields):
    defaults = dict(
        owner_id="o",
        class_key="tasks:create:struct_title",
        domain="tasks",
        effect_type="create",
        fingerprint="struct_title",
        status=ClassStatus.ELIGIBLE,
        eligibility_score=1.0,
        stats=ClassStats(successes=20),
    )
    defaults.update(fields)
    return AutonomyClass(**defaults)


class TestDecideRuleOrder:
    def test_l1_upgrade(self):
        decision = decide(eligible_snapshot(), confidence=0.75)
        assert decision.autonomy_level == AutonomyLevel.L1
        assert decision.upgraded_write_mode == WriteMode.AUTO
        assert decision.decision_reason == DecisionReason.L1_UPGRADE

    def test_absence_beats_everything(self):
        decision = decide(eligible_snapshot(), confidence=1.0, is_absent=True)
        assert decision.decision_reason == DecisionReason.ABSENCE_DAMPENING
        assert decision.autonomy_level == AutonomyLevel.L0

    @pytest.mark.parametrize("status,reason", [
        (ClassStatus.PAUSED, DecisionReason.CLASS_PAUSED),
        (ClassStatus.LOCKED, DecisionReason.CLASS_LOCKED),
    ])
    def test_status_blocks(self, status, reason):
        decision = decide(eligible_snapshot(status=status), confidence=1.0)
        assert decision.decision_reason == reason
        assert decision.upgraded_write_mode is None

    def test_health_locked_at_full_score(self):
        decision = decide(eligible_snapshot(health_state=HealthState.LOCKED), confidence=1.0)
        assert (decision.autonomy_level, decision.decision_reason) == (AutonomyLevel.L0, DecisionReason.HEALTH_LOCKED)

    def test_health_degraded(self):
        decision = decide(eligible_snapshot(health_state=HealthState.DEGRADED), confidence=1.0)
        assert decision.decision_reason == DecisionReason.HEALTH_DEGRADED

    def test_drift_beats_score(self):
        decision = decide(eligible_snapshot(), confidence=1.0, drifted=True)
        assert decision.decision_reason == DecisionReason.CONTEXT_DRIFT

    def test_user_pause_beats_score(self):
        decision = decide(eligible_snapshot(user_paused=True), confidence=1.0)
        assert decision.decision_reason == DecisionReason.USER_PAUSED

    def test_confidence_floor(self):
        decision = decide(eligible_snapshot(), confidence=0.5)
        assert decision.decision_reason == DecisionReason.NO_UPGRADE

    def test_score_floor(self):
        decision = decide(eligible_snapshot(eligibility_score=0.69), confidence=0.99)
        assert decision.decision_reason == DecisionReason.NO_UPGRADE


class TestRefreshSnapshot:
    def test_promotion_stamps_context(self, clock):
        cls = eligible_snapshot(status=ClassStatus.LOCKED, stats=ClassStats(successes=5), last_success_at=clock())
        result = refresh_snapshot(cls, clock(), "ctx123")
        assert result.promoted
        assert result.snapshot.status == ClassStatus.ELIGIBLE
        assert result.snapshot.context_hash == "ctx123"
        assert result.snapshot.eligibility_score == pytest.approx(0.25)

    def test_not_promoted_below_minimum(self, clock):
        cls = eligible_snapshot(status=ClassStatus.LOCKED, stats=ClassStats(successes=4))
        result = refresh_snapshot(cls, clock(), "ctx123")
        assert not result.promoted
        assert result.snapshot.status == ClassStatus.LOCKED

    def test_paused_is_never_promoted(self, clock):
        cls = eligible_snapshot(status=ClassStatus.PAUSED, stats=ClassStats(successes=50))
        assert refresh_snapshot(cls, clock(), "ctx").snapshot.status == ClassStatus.PAUSED

    def test_input_not_mutated(self, clock):
        cls = eligible_snapshot(eligibility_score=0.123, last_success_at=clock() - timedelta(days=30))
        refresh_snapshot(cls, clock(), "ctx")
        assert cls.eligibility_score == 0.123
        assert cls.decay_score == 0.0

    def test_transition_moves_revert_baseline(self, clock):
        cls = eligible_snapshot(stats=ClassStats(successes=20, reverts=2), last_success_at=clock())
        result = refresh_snapshot(cls, clock(), None)
        assert result.snapshot.health_state == HealthState.DEGRADED
        assert result.snapshot.revert_baseline == 2


class TestEngineScenarios:
    def test_fresh_class_is_created_locked(self, runtime):
        effect = task_effect(confidence=0.75)
        decision = runtime.engine.decide_autonomy_level(effect, OWNER)

        assert decision.autonomy_level == AutonomyLevel.L0
        assert decision.decision_reason == DecisionReason.CLASS_LOCKED

        stored = runtime.repo.get(OWNER, classify_effect(effect).class_key)
        assert stored.status == ClassStatus.LOCKED
        assert stored.eligibility_score == 0.0

    def test_eligible_class_upgrades(self, runtime, clock, context_provider):
        effect = task_effect(confidence=0.75)
        seed_eligible(runtime, effect, clock, context_provider)

        decision = runtime.engine.decide_autonomy_level(effect, OWNER)
        assert decision.to_dict() == {
            "autonomy_level": "L1",
            "upgraded_write_mode": "auto",
            "decision_reason": "L1_UPGRADE",
            "class_key": classify_effect(effect).class_key,
        }

    def test_low_confidence_blocks_upgrade(self, runtime, clock, context_provider):
        effect = task_effect(confidence=0.5)
        seed_eligible(runtime, effect, clock, context_provider)
        decision = runtime.engine.decide_autonomy_level(effect, OWNER)
        assert (decision.autonomy_level, decision.decision_reason) == (AutonomyLevel.L0, DecisionReason.NO_UPGRADE)

    def test_absent_owner(self, runtime, clock, context_provider):
        effect = task_effect(confidence=1.0)
        seed_eligible(runtime, effect, clock, context_provider, successes=40)
        decision = runtime.engine.decide_autonomy_level(effect, OWNER, is_absent=True)
        assert decision.decision_reason == DecisionReason.ABSENCE_DAMPENING

    def test_health_locked_at_max_score(self, runtime, clock, context_provider):
        effect = task_effect(confidence=1.0)
        seed_eligible(runtime, effect, clock, context_provider, successes=20, health_state=HealthState.LOCKED)
        decision = runtime.engine.decide_autonomy_level(effect, OWNER)
        assert decision.decision_reason == DecisionReason.HEALTH_LOCKED

    def test_promotion_is_audited(self, runtime, clock):
        effect = task_effect(confidence=0.75)
        seed_class(runtime, effect, successes=5, last_success_at=clock())

        decision = runtime.engine.decide_autonomy_level(effect, OWNER)
        assert decision.decision_reason == DecisionReason.NO_UPGRADE

        key = classify_effect(effect).class_key
        assert runtime.repo.get(OWNER, key).status == ClassStatus.ELIGIBLE
        events = runtime.audit.query(class_key=key, event_type=EventType.CLASS_PROMOTED)
        assert len(events) == 1

    def test_drift_degrades_and_blocks(self, runtime, clock, context_provider):
        effect = task_effect(confidence=0.8)
        seed_eligible(runtime, effect, clock, context_provider, context_hash="stale0000000")

        decision = runtime.engine.decide_autonomy_level(effect, OWNER)
        assert decision.autonomy_level == AutonomyLevel.L0
        assert decision.decision_reason == DecisionReason.HEALTH_DEGRADED

        key = classify_effect(effect).class_key
        assert runtime.repo.get(OWNER, key).health_state == HealthState.DEGRADED
        transitions = runtime.audit.query(class_key=key, event_type=EventType.HEALTH_TRANSITION)
        assert transitions[0]["metadata"]["to"] == "degraded"

    def test_inactivity_decay_degrades(self, runtime, clock, context_provider):
        effect = task_effect(confidence=0.8)
        seed_eligible(runtime, effect, clock, context_provider, last_success_at=clock() - timedelta(days=20))

        decision = runtime.engine.decide_autonomy_level(effect, OWNER)
        stored = runtime.repo.get(OWNER, classify_effect(effect).class_key)
        assert decision.decision_reason == DecisionReason.HEALTH_DEGRADED
        assert stored.decay_score == pytest.approx(0.26)
        assert stored.eligibility_score == pytest.approx(0.54)

    def test_user_paused(self, runtime, clock, context_provider):
        effect = task_effect(confidence=0.8)
        seed_eligible(runtime, effect, clock, context_provider, user_paused=True)
        assert runtime.engine.decide_autonomy_level(effect, OWNER).decision_reason == DecisionReason.USER_PAUSED

    def test_owners_learn_separately(self, runtime, clock, context_provider):
        effect = task_effect(confidence=0.8)
        seed_eligible(runtime, effect, clock, context_provider)
        assert runtime.engine.decide_autonomy_level(effect, "someone_else").decision_reason == DecisionReason.CLASS_LOCKED


class BrokenRepository:
    def update(self, *args, **kwargs):
        raise StoreError("disk on fire")


class TestEvaluationErrors:
    def test_store_failure_is_most_restrictive(self, context_provider, clock):
        engine = AutonomyDecisionEngine(BrokenRepository(), context_provider=context_provider, clock=clock)
        effect = task_effect(confidence=1.0)

        decision = engine.decide_autonomy_level(effect, OWNER)
        assert decision.autonomy_level == AutonomyLevel.L0
        assert decision.decision_reason == DecisionReason.EVALUATION_ERROR
        assert decision.class_key == classify_effect(effect).class_key

    def test_context_failure_is_most_restrictive(self, runtime):
        def broken_context():
            raise RuntimeError("no clock signal")

        runtime.engine.context_provider = broken_context
        decision = runtime.engine.decide_autonomy_level(task_effect(confidence=1.0), OWNER)
        assert decision.decision_reason == DecisionReason.EVALUATION_ERROR
