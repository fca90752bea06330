"""
Confidence-to-Write-Mode Policy.

The default execution posture for an effect, derived from upstream
confidence alone. Learned autonomy may only upgrade the result to auto;
it never downgrades it.
"""

from typing import Optional

from .config import AutonomyPolicy, DEFAULT_POLICY
from .models import Decision, WriteMode


def resolve_write_mode(confidence: float, policy: AutonomyPolicy = DEFAULT_POLICY) -> WriteMode:
    if confidence >= policy.auto_write_threshold:
        return WriteMode.AUTO
    if confidence >= policy.confirm_threshold:
        return WriteMode.CONFIRM
    return WriteMode.PROPOSED


def apply_upgrade(initial: WriteMode, decision: Optional[Decision]) -> WriteMode:
    """Final write mode after an (optional) Decision Engine verdict."""
    if initial == WriteMode.AUTO or decision is None:
        return initial
    if decision.is_upgrade and decision.upgraded_write_mode is not None:
        return decision.upgraded_write_mode
    return initial
