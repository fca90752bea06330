"""
Autonomy Policy + Runtime Settings
==================================

Every threshold the engine consults lives in AutonomyPolicy. The defaults
below are the shipped policy; a YAML file named by PULSE_AUTONOMY_POLICY
may override any of them.

Policy file example:

    min_successes_for_eligible: 8
    auto_write_threshold: 0.9
    decay_per_day: 0.03

Runtime settings (database path, log directory, API keys) come from the
environment.
"""

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import PolicyError


# === ENVIRONMENT ===

POLICY_ENV = "PULSE_AUTONOMY_POLICY"
DB_ENV = "PULSE_AUTONOMY_DB"
LOG_DIR_ENV = "PULSE_LOG_DIR"
HMAC_KEY_ENV = "PULSE_AUDIT_HMAC_KEY"
API_KEYS_ENV = "PULSE_API_KEYS"
DEV_MODE_ENV = "PULSE_DEV_MODE"
QUIET_HOURS_ENV = "PULSE_QUIET_HOURS"  # "22:00-07:00"

PULSE_HOME = Path.home() / ".pulse"
DEFAULT_DB_PATH = PULSE_HOME / "autonomy.db"
DEFAULT_LOG_DIR = PULSE_HOME / "logs"


# === POLICY ===

@dataclass(frozen=True)
class AutonomyPolicy:
    """Thresholds and weights for autonomy learning."""

    # Promotion
    min_successes_for_eligible: int = 5
    eligibility_score_for_l1: float = 0.7
    l1_confirm_downgrade_threshold: float = 0.7

    # Confidence -> write mode
    auto_write_threshold: float = 0.85
    confirm_threshold: float = 0.6

    # Eligibility weights (per event)
    success_weight: float = 1.0
    rejection_weight: float = -5.0
    revert_weight: float = -10.0
    confusion_weight: float = -2.0
    ipp_block_weight: float = -2.0
    score_normalizer: float = 20.0

    # Decay ("use it or lose it")
    decay_inactivity_days: int = 7
    decay_per_day: float = 0.02
    decay_max: float = 0.5

    # Health
    decay_degrade_threshold: float = 0.2
    decay_severe_threshold: float = 0.4
    confusion_lock_threshold: int = 3
    reverts_for_degrade: int = 2

    # Recovery
    max_recovery_attempts: int = 3


DEFAULT_POLICY = AutonomyPolicy()

# Fields that must sit inside [0, 1]
_RATIO_FIELDS = {
    "eligibility_score_for_l1",
    "l1_confirm_downgrade_threshold",
    "auto_write_threshold",
    "confirm_threshold",
    "decay_per_day",
    "decay_max",
    "decay_degrade_threshold",
    "decay_severe_threshold",
}

_INT_FIELDS = {
    "min_successes_for_eligible",
    "decay_inactivity_days",
    "confusion_lock_threshold",
    "reverts_for_degrade",
    "max_recovery_attempts",
}


def validate_policy(data: Dict[str, Any]) -> List[str]:
    """
    Validate a policy override mapping.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []
    known = {f.name for f in fields(AutonomyPolicy)}

    if not isinstance(data, dict):
        return ["Policy must be a mapping"]

    for key, value in data.items():
        if key not in known:
            errors.append(f"Unknown policy key: {key}")
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{key}: must be numeric")
            continue
        if key in _INT_FIELDS and (not isinstance(value, int) or value < 0):
            errors.append(f"{key}: must be a non-negative integer")
        if key in _RATIO_FIELDS and not 0.0 <= value <= 1.0:
            errors.append(f"{key}: must be within [0, 1]")

    if errors:
        return errors  # Can't check cross-field rules on bad values

    merged = {**{f.name: getattr(DEFAULT_POLICY, f.name) for f in fields(AutonomyPolicy)}, **data}
    if merged["confirm_threshold"] > merged["auto_write_threshold"]:
        errors.append("confirm_threshold must not exceed auto_write_threshold")
    if merged["decay_degrade_threshold"] > merged["decay_severe_threshold"]:
        errors.append("decay_degrade_threshold must not exceed decay_severe_threshold")
    if merged["score_normalizer"] <= 0:
        errors.append("score_normalizer must be positive")

    return errors


def policy_from_dict(data: Optional[Dict[str, Any]]) -> AutonomyPolicy:
    """Build a policy from override values, raising PolicyError if invalid."""
    if not data:
        return DEFAULT_POLICY
    errors = validate_policy(data)
    if errors:
        raise PolicyError(errors)
    return replace(DEFAULT_POLICY, **data)


# Cache: path -> (mtime, policy)
_policy_cache: Dict[str, Tuple[float, AutonomyPolicy]] = {}


def load_policy(path: Optional[str] = None) -> AutonomyPolicy:
    """
    Load the autonomy policy, hot-reloading when the file changes.

    Falls back to DEFAULT_POLICY when no file is configured or the
    configured file does not exist.
    """
    path = path or os.environ.get(POLICY_ENV, "").strip()
    if not path:
        return DEFAULT_POLICY

    filepath = Path(path).expanduser()
    if not filepath.exists():
        return DEFAULT_POLICY

    mtime = filepath.stat().st_mtime
    cache_key = str(filepath)
    if cache_key in _policy_cache:
        cached_mtime, cached_policy = _policy_cache[cache_key]
        if cached_mtime == mtime:
            return cached_policy

    with open(filepath, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    policy = policy_from_dict(data)
    _policy_cache[cache_key] = (mtime, policy)
    return policy


# === RUNTIME SETTINGS ===

@dataclass
class Settings:
    """Environment-derived runtime settings."""
    db_path: Path = DEFAULT_DB_PATH
    log_dir: Path = DEFAULT_LOG_DIR
    api_keys: set = field(default_factory=set)
    dev_mode: bool = False
    quiet_hours: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        db_path = os.environ.get(DB_ENV, "").strip()
        log_dir = os.environ.get(LOG_DIR_ENV, "").strip()
        keys = os.environ.get(API_KEYS_ENV, "")
        quiet = os.environ.get(QUIET_HOURS_ENV, "").strip()
        return cls(
            db_path=Path(db_path).expanduser() if db_path else DEFAULT_DB_PATH,
            log_dir=Path(log_dir).expanduser() if log_dir else DEFAULT_LOG_DIR,
            api_keys={k.strip() for k in keys.split(",") if k.strip()},
            dev_mode=os.environ.get(DEV_MODE_ENV, "").lower() in ("1", "true", "yes"),
            quiet_hours=quiet or None,
        )
