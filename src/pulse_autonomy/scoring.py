"""
Eligibility Scorer + Decay Calculator.

Eligibility is a bounded [0, 1] trust score derived from outcome counters
and accrued decay. Reverts weigh twice as much as rejections: a revert
means the action already executed before it was undone.

Decay only erodes earned trust. A class that has never succeeded does not
decay; one that stops recurring loses eligibility linearly after an
inactivity grace period, up to a ceiling.
"""

from datetime import datetime
from typing import Optional

from .config import AutonomyPolicy, DEFAULT_POLICY
from .models import ClassStats


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def compute_eligibility_score(
    stats: ClassStats,
    decay_score: float,
    policy: AutonomyPolicy = DEFAULT_POLICY,
) -> float:
    """
    Weighted linear score over the class counters.

    20 net successes (default normalizer) reach 1.0 before decay.
    """
    raw = (
        stats.successes * policy.success_weight
        + stats.rejections * policy.rejection_weight
        + stats.reverts * policy.revert_weight
        + stats.confusion_events * policy.confusion_weight
        + stats.ipp_blocks * policy.ipp_block_weight
    )
    raw = max(0.0, raw)
    normalized = min(1.0, raw / policy.score_normalizer)
    return _clamp(normalized - max(0.0, decay_score))


def days_since(then: Optional[datetime], now: datetime) -> int:
    """Whole days elapsed; never negative."""
    if then is None:
        return 0
    return max(0, (now - then).days)


def compute_decay(
    last_success_at: Optional[datetime],
    now: datetime,
    policy: AutonomyPolicy = DEFAULT_POLICY,
) -> float:
    """Inactivity penalty since the last success, in [0, decay_max]."""
    if last_success_at is None:
        return 0.0

    inactive_days = days_since(last_success_at, now)
    if inactive_days <= policy.decay_inactivity_days:
        return 0.0

    overdue = inactive_days - policy.decay_inactivity_days
    return min(policy.decay_max, overdue * policy.decay_per_day)
