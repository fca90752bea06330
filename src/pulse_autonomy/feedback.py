"""
Outcome Recorder / Feedback Engine.

Feeds two separate ledgers:

1. Autonomy class stats (successes, rejections, reverts, ...). These drive
   eligibility and health.
2. Per-domain trust score. It tunes timing and confidence only, never
   authority.

HARD RULE: nothing here writes `status` or `health_state`. Promotion
happens only in the Decision Engine; locks clear only through manual
administration.

A confidence calibration ledger rides along: every judged outcome files
the effect's predicted confidence under its bucket, so the upstream
pipeline can ask for a calibrated confidence. The gate never consults it.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .classifier import classify_effect
from .config import AutonomyPolicy, DEFAULT_POLICY
from .models import AutonomyClass, Effect, Outcome, UserResponse
from .scoring import compute_eligibility_score
from .store import AutonomyClassRepository, CalibrationStore, DomainTrustStore
from .time_utils import Clock, utc_now

logger = logging.getLogger(__name__)


# Trust deltas per class outcome
OUTCOME_TRUST_DELTAS: Dict[Outcome, float] = {
    Outcome.SUCCESS: 0.02,
    Outcome.REJECT: -0.08,
    Outcome.REVERT: -0.10,
    Outcome.CONFUSION: -0.05,
    Outcome.IPP_BLOCK: 0.0,  # environment failure, not a judgment of the domain
}

# Trust deltas per user response
RESPONSE_TRUST_DELTAS: Dict[UserResponse, float] = {
    UserResponse.ACCEPTED: 0.05,
    UserResponse.MODIFIED: 0.01,
    UserResponse.REJECTED: -0.08,
    UserResponse.IGNORED: -0.02,
}

FAST_ACCEPT_MS = 30_000
FAST_ACCEPT_BONUS = 0.02
MAX_TRUST_DELTA = 0.1

# Predicted confidence -> bucket (upper bounds, exclusive)
CONFIDENCE_BUCKETS = (
    (0.5, "low"),
    (0.7, "medium"),
    (0.85, "high"),
)
TOP_BUCKET = "very_high"
MIN_CALIBRATION_SAMPLES = 10

# Actual-success value filed in the calibration ledger
_CALIBRATION_ACTUALS = {
    Outcome.SUCCESS: 1.0,
    Outcome.REJECT: 0.0,
    Outcome.REVERT: 0.0,
    Outcome.CONFUSION: 0.0,
}


def confidence_bucket(confidence: float) -> str:
    for upper, name in CONFIDENCE_BUCKETS:
        if confidence < upper:
            return name
    return TOP_BUCKET


def bounded_delta(delta: float) -> float:
    return max(-MAX_TRUST_DELTA, min(MAX_TRUST_DELTA, delta))


def apply_outcome_to_stats(
    cls: AutonomyClass,
    outcome: Outcome,
    now,
    confirmed: bool = False,
    policy: AutonomyPolicy = DEFAULT_POLICY,
) -> None:
    """Increment counters in place. Touches stats, decay and timestamps only."""
    stats = cls.stats
    if outcome == Outcome.SUCCESS:
        stats.successes += 1
        cls.decay_score = 0.0
        cls.last_success_at = now
        if confirmed:
            stats.confirmations += 1
            cls.last_confirmed_at = now
    elif outcome == Outcome.REJECT:
        stats.rejections += 1
    elif outcome == Outcome.REVERT:
        stats.reverts += 1
    elif outcome == Outcome.CONFUSION:
        stats.confusion_events += 1
    elif outcome == Outcome.IPP_BLOCK:
        stats.ipp_blocks += 1
    # Cached value for introspection; always derived
    cls.eligibility_score = compute_eligibility_score(stats, cls.decay_score, policy)


@dataclass
class ResponseResult:
    response: UserResponse
    trust_before: float
    trust_after: float
    delta: float
    snapshot: Optional[AutonomyClass] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response.value,
            "trust_before": round(self.trust_before, 4),
            "trust_after": round(self.trust_after, 4),
            "delta": round(self.delta, 4),
            "class": self.snapshot.to_dict() if self.snapshot else None,
        }


class FeedbackEngine:
    def __init__(
        self,
        repo: AutonomyClassRepository,
        trust: DomainTrustStore,
        calibration: CalibrationStore,
        policy: AutonomyPolicy = DEFAULT_POLICY,
        clock: Clock = utc_now,
    ):
        self.repo = repo
        self.trust = trust
        self.calibration = calibration
        self.policy = policy
        self.clock = clock

    def _update_class(self, effect: Effect, owner_id: str, outcome: Outcome, confirmed: bool) -> AutonomyClass:
        classification = classify_effect(effect)
        now = self.clock()
        return self.repo.update(
            owner_id,
            classification.class_key,
            lambda cls: apply_outcome_to_stats(cls, outcome, now, confirmed, self.policy),
            create_from=classification,
            now=now,
        )

    def _calibrate(self, effect: Effect, owner_id: str, outcome: Outcome) -> None:
        actual = _CALIBRATION_ACTUALS.get(outcome)
        if actual is None:
            return
        self.calibration.record(
            owner_id, effect.domain, confidence_bucket(effect.confidence), effect.confidence, actual,
        )

    def record_outcome(
        self,
        effect: Effect,
        owner_id: str,
        outcome: Outcome,
        confirmed: bool = False,
    ) -> AutonomyClass:
        """
        Record one outcome against the effect's class and domain.

        Returns the updated class snapshot.
        """
        outcome = Outcome(outcome)
        snapshot = self._update_class(effect, owner_id, outcome, confirmed)

        delta = OUTCOME_TRUST_DELTAS[outcome]
        if delta:
            self.trust.adjust(owner_id, effect.domain, bounded_delta(delta), now=self.clock())
        self._calibrate(effect, owner_id, outcome)

        logger.info(f"Outcome {outcome.value} recorded for {snapshot.class_key}")
        return snapshot

    def record_user_response(
        self,
        effect: Effect,
        owner_id: str,
        response: UserResponse,
        latency_ms: Optional[int] = None,
    ) -> ResponseResult:
        """
        Record how the user answered a surfaced effect.

        accepted counts as a confirmed success and rejected as a rejection.
        modified and ignored only move the domain trust ledger.
        """
        response = UserResponse(response)
        snapshot = None
        if response == UserResponse.ACCEPTED:
            snapshot = self._update_class(effect, owner_id, Outcome.SUCCESS, confirmed=True)
            self._calibrate(effect, owner_id, Outcome.SUCCESS)
        elif response == UserResponse.REJECTED:
            snapshot = self._update_class(effect, owner_id, Outcome.REJECT, confirmed=False)
            self._calibrate(effect, owner_id, Outcome.REJECT)

        delta = RESPONSE_TRUST_DELTAS[response]
        if response == UserResponse.ACCEPTED and latency_ms is not None and latency_ms < FAST_ACCEPT_MS:
            delta += FAST_ACCEPT_BONUS
        delta = bounded_delta(delta)

        before, after = self.trust.adjust(owner_id, effect.domain, delta, now=self.clock())
        logger.info(f"User response {response.value} on {effect.domain}: trust {before:.2f} -> {after:.2f}")
        return ResponseResult(response, before, after, delta, snapshot)

    def domain_trust(self, owner_id: str, domain: str) -> float:
        return self.trust.get(owner_id, domain)

    def suggest_confidence(self, owner_id: str, domain: str, raw_confidence: float) -> float:
        """Calibrated confidence for the upstream pipeline (advisory)."""
        bucket = self.calibration.buckets(owner_id, domain).get(confidence_bucket(raw_confidence))
        if not bucket or bucket["total_predictions"] < MIN_CALIBRATION_SAMPLES:
            return raw_confidence
        return max(0.0, min(1.0, raw_confidence - bucket["calibration_gap"]))
