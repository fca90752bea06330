"""
Precondition / inability check.

Runs before anything else in the Write-Authority Gate. Fails closed: a
probe that raises counts as a block, never as a pass.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class BlockReason:
    """Machine-readable precondition block reasons."""
    MISSING_OWNER = "missing_owner"
    NETWORK_UNAVAILABLE = "network_unavailable"
    PERMISSION_DENIED = "permission_denied"
    COLLABORATOR_ERROR = "collaborator_error"


# Persistent blocks need out-of-band resolution; the rest are retryable
RETRYABLE_REASONS = {BlockReason.NETWORK_UNAVAILABLE, BlockReason.COLLABORATOR_ERROR}


@dataclass(frozen=True)
class PreconditionState:
    owner_present: bool = True
    network_ok: bool = True
    permission_ok: bool = True


def check_preconditions(state: PreconditionState) -> Optional[str]:
    """Blocking reason, or None when every precondition holds."""
    if not state.owner_present:
        return BlockReason.MISSING_OWNER
    if not state.network_ok:
        return BlockReason.NETWORK_UNAVAILABLE
    if not state.permission_ok:
        return BlockReason.PERMISSION_DENIED
    return None


# Probe signature: owner_id -> PreconditionState
PreconditionProbe = Callable[[str], PreconditionState]


def default_probe(owner_id: str) -> PreconditionState:
    """Owner identity only; network and permission are assumed available."""
    return PreconditionState(owner_present=bool(owner_id and str(owner_id).strip()))


def run_precondition_check(probe: PreconditionProbe, owner_id: str) -> Optional[str]:
    try:
        state = probe(owner_id)
    except Exception as e:
        logger.error(f"Precondition probe failed: {e}", exc_info=True)
        return BlockReason.COLLABORATOR_ERROR
    if not (owner_id and str(owner_id).strip()):
        return BlockReason.MISSING_OWNER
    return check_preconditions(state)
