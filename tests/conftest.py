"""
Shared fixtures: temporary database, pinned clock and context,
recording adapters and a recording speaker.
"""

from datetime import datetime, timedelta, timezone

import pytest

from pulse_autonomy.adapters import DomainAdapter
from pulse_autonomy.classifier import classify_effect
from pulse_autonomy.config import DEFAULT_POLICY
from pulse_autonomy.context import OperatingContext
from pulse_autonomy.models import ClassStatus, Effect, EffectType, HealthState
from pulse_autonomy.runtime import build_runtime

# A Wednesday, midday UTC
FIXED_NOW = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)
OWNER = "owner_1"


class FixedClock:
    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FixedContext:
    def __init__(self, context: OperatingContext = OperatingContext("workday", "workday")):
        self.context = context

    def __call__(self) -> OperatingContext:
        return self.context


class RecordingAdapter(DomainAdapter):
    def __init__(self, domain: str, fail_apply: bool = False, revert_ok: bool = True):
        self.domain = domain
        self.fail_apply = fail_apply
        self.revert_ok = revert_ok
        self.applied = []
        self.reverted = []

    def apply(self, effect):
        if self.fail_apply:
            raise RuntimeError(f"{self.domain} backend unavailable")
        self.applied.append(effect.effect_id)

    def revert(self, effect):
        self.reverted.append(effect.effect_id)
        return {"reverted": self.revert_ok}


class RecordingSpeaker:
    def __init__(self):
        self.messages = []

    def __call__(self, text: str) -> None:
        self.messages.append(text)


def task_effect(confidence: float = 0.9, **kwargs) -> Effect:
    payload = kwargs.pop("payload", {"title": "Buy milk", "due": "2026-03-05"})
    return Effect(domain="tasks", effect_type=EffectType.CREATE, payload=payload, confidence=confidence, **kwargs)


def seed_class(runtime, effect: Effect, owner_id: str = OWNER, successes: int = 0, **fields):
    """Create or overwrite the class for an effect with the given fields."""
    classification = classify_effect(effect)

    def mutate(cls):
        cls.stats.successes = successes
        for name, value in fields.items():
            if name in ("rejections", "reverts", "confusion_events", "ipp_blocks", "confirmations"):
                setattr(cls.stats, name, value)
            else:
                setattr(cls, name, value)

    return runtime.repo.update(owner_id, classification.class_key, mutate, create_from=classification)


def seed_eligible(runtime, effect: Effect, clock: FixedClock, context: FixedContext, **fields):
    """Eligible, healthy class at score 0.8 under the current context."""
    defaults = dict(
        successes=16,
        status=ClassStatus.ELIGIBLE,
        health_state=HealthState.HEALTHY,
        last_success_at=clock(),
        context_hash=context().hash,
    )
    defaults.update(fields)
    return seed_class(runtime, effect, **defaults)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def context_provider():
    return FixedContext()


@pytest.fixture
def adapters():
    return {
        "tasks": RecordingAdapter("tasks"),
        "chef": RecordingAdapter("chef"),
        "planning": RecordingAdapter("planning"),
    }


@pytest.fixture
def speaker():
    return RecordingSpeaker()


@pytest.fixture
def runtime(tmp_path, clock, context_provider, adapters, speaker):
    rt = build_runtime(
        tmp_path / "autonomy.db",
        policy=DEFAULT_POLICY,
        adapters=list(adapters.values()),
        speaker=speaker,
        context_provider=context_provider,
        clock=clock,
        hmac_key=b"test-hmac-key",
    )
    yield rt
    rt.close()
