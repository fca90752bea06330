"""
Health evaluator tests.

The evaluator is pure: every case is a snapshot in, a state out.
"""

from datetime import timedelta

import pytest

from conftest import FIXED_NOW
from pulse_autonomy.health import evaluate_health
from pulse_autonomy.models import AutonomyClass, ClassStats, ClassStatus, HealthState


def snapshot(health=HealthState.HEALTHY, decay=0.0, **stats_and_fields):
    stat_names = {"successes", "confirmations", "rejections", "reverts", "confusion_events", "ipp_blocks"}
    stats = ClassStats(**{k: v for k, v in stats_and_fields.items() if k in stat_names})
    fields = {k: v for k, v in stats_and_fields.items() if k not in stat_names}
    return AutonomyClass(
        owner_id="o",
        class_key="tasks:create:struct_title",
        domain="tasks",
        effect_type="create",
        fingerprint="struct_title",
        status=ClassStatus.ELIGIBLE,
        stats=stats,
        decay_score=decay,
        health_state=health,
        **fields,
    )


class TestConfusionLock:
    @pytest.mark.parametrize("state", list(HealthState))
    def test_any_state_locks(self, state):
        result = evaluate_health(snapshot(state, confusion_events=3), drifted=False)
        assert result.new_health_state == HealthState.LOCKED

    def test_counts_since_baseline(self):
        cls = snapshot(confusion_events=4, confusion_baseline=2)
        assert evaluate_health(cls, drifted=False).new_health_state == HealthState.HEALTHY


class TestLockedIsTerminal:
    def test_clean_locked_class_stays_locked(self):
        result = evaluate_health(snapshot(HealthState.LOCKED), drifted=False)
        assert result.new_health_state == HealthState.LOCKED
        assert not result.changed


class TestHealthyToDegraded:
    def test_decay(self):
        result = evaluate_health(snapshot(decay=0.2), drifted=False)
        assert result.new_health_state == HealthState.DEGRADED
        assert result.changed

    def test_drift(self):
        result = evaluate_health(snapshot(), drifted=True)
        assert result.new_health_state == HealthState.DEGRADED
        assert "drift" in result.reason.lower()

    def test_two_reverts(self):
        assert evaluate_health(snapshot(reverts=2), drifted=False).new_health_state == HealthState.DEGRADED

    def test_one_revert_is_stable(self):
        result = evaluate_health(snapshot(reverts=1), drifted=False)
        assert result.new_health_state == HealthState.HEALTHY
        assert result.reason == "Stable"

    def test_reverts_before_baseline_ignored(self):
        cls = snapshot(reverts=3, revert_baseline=2)
        assert evaluate_health(cls, drifted=False).new_health_state == HealthState.HEALTHY


class TestDegraded:
    def test_severe_decay_locks(self):
        result = evaluate_health(snapshot(HealthState.DEGRADED, decay=0.4), drifted=False)
        assert result.new_health_state == HealthState.LOCKED

    def test_moderate_decay_stays_degraded(self):
        result = evaluate_health(snapshot(HealthState.DEGRADED, decay=0.3), drifted=False)
        assert result.new_health_state == HealthState.DEGRADED
        assert not result.changed

    def test_revert_while_degraded_locks(self):
        cls = snapshot(HealthState.DEGRADED, reverts=3, revert_baseline=2)
        assert evaluate_health(cls, drifted=False).new_health_state == HealthState.LOCKED

    def test_recovers_after_confirmed_success(self):
        cls = snapshot(
            HealthState.DEGRADED,
            recovery_attempts=1,
            last_recovery_at=FIXED_NOW,
            last_confirmed_at=FIXED_NOW + timedelta(minutes=5),
        )
        result = evaluate_health(cls, drifted=True)
        assert result.new_health_state == HealthState.HEALTHY

    def test_confirmation_before_recovery_does_not_count(self):
        cls = snapshot(
            HealthState.DEGRADED,
            recovery_attempts=1,
            last_recovery_at=FIXED_NOW,
            last_confirmed_at=FIXED_NOW - timedelta(minutes=5),
        )
        assert evaluate_health(cls, drifted=False).new_health_state == HealthState.DEGRADED

    def test_no_recovery_without_attempt(self):
        cls = snapshot(HealthState.DEGRADED, last_confirmed_at=FIXED_NOW)
        assert evaluate_health(cls, drifted=False).new_health_state == HealthState.DEGRADED

    def test_no_recovery_while_decayed(self):
        cls = snapshot(
            HealthState.DEGRADED,
            decay=0.25,
            recovery_attempts=1,
            last_recovery_at=FIXED_NOW,
            last_confirmed_at=FIXED_NOW + timedelta(minutes=5),
        )
        assert evaluate_health(cls, drifted=False).new_health_state == HealthState.DEGRADED
