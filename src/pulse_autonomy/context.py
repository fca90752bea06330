"""
Context Fingerprint / Drift Detector.

Buckets the current moment into a coarse operating context and hashes it.
Drift is a safety signal only: it feeds the Health Evaluator and the
Decision Engine, never the class statistics.
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .time_utils import utc_now


# (start_hour inclusive, end_hour exclusive, bucket)
TIME_BUCKETS = (
    (5, 9, "morning"),
    (9, 17, "workday"),
    (17, 22, "evening"),
)
NIGHT_BUCKET = "night"

CONTEXT_HASH_LENGTH = 12


@dataclass(frozen=True)
class OperatingContext:
    time_bucket: str
    day_type: str  # "workday" | "weekend"
    location_category: Optional[str] = None

    @property
    def hash(self) -> str:
        return hash_context(self)


def time_of_day_bucket(moment: datetime) -> str:
    for start, end, bucket in TIME_BUCKETS:
        if start <= moment.hour < end:
            return bucket
    return NIGHT_BUCKET


def get_current_context(
    now: Optional[datetime] = None,
    location_category: Optional[str] = None,
) -> OperatingContext:
    """Bucket `now` (local time by default) into an operating context."""
    moment = now or utc_now().astimezone()
    return OperatingContext(
        time_bucket=time_of_day_bucket(moment),
        day_type="weekend" if moment.weekday() >= 5 else "workday",
        location_category=(location_category or None),
    )


def hash_context(context: OperatingContext) -> str:
    material = f"{context.time_bucket}|{context.day_type}|{context.location_category or '-'}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()[:CONTEXT_HASH_LENGTH]


def detect_drift(stored_hash: Optional[str], current_hash: str) -> bool:
    """A class without a stored context (first run) has not drifted."""
    if not stored_hash:
        return False
    return stored_hash != current_hash


# Provider signature used by the engine for dependency injection
ContextProvider = Callable[[], OperatingContext]


def default_context_provider() -> OperatingContext:
    return get_current_context()
