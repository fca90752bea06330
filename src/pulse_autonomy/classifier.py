"""
Effect Classifier.

Maps an effect to its autonomy class key: domain:effect_type:fingerprint.
Pure and deterministic; the same payload shape always yields the same key,
otherwise class statistics would be meaningless.
"""

from dataclasses import dataclass
from typing import Any, Dict

from .models import Effect


# Domains fingerprinted by payload shape
STRUCTURAL_DOMAINS = {
    "tasks",
    "chef",
    "grocery",
    "calendar",
}

# Domains whose payload carries an explicit operation discriminator
DISCRIMINATOR_FIELDS: Dict[str, str] = {
    "planning": "action",
    "life_state": "action",
}

DEFAULT_FINGERPRINT = "default"


@dataclass(frozen=True)
class Classification:
    class_key: str
    fingerprint: str
    domain: str
    effect_type: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "class_key": self.class_key,
            "fingerprint": self.fingerprint,
            "domain": self.domain,
            "effect_type": self.effect_type,
        }


def _escape_key(key: Any) -> str:
    return str(key).replace("\\", "\\\\").replace(",", "\\,")


def structural_fingerprint(payload: Dict[str, Any]) -> str:
    """
    struct_<sorted keys>. Values never participate.

    Commas and backslashes inside a key are backslash-escaped so that a
    key containing the separator cannot collide with two separate keys.
    """
    return "struct_" + ",".join(sorted(_escape_key(k) for k in (payload or {})))


def fingerprint_payload(domain: str, payload: Dict[str, Any]) -> str:
    """Domain-specific fingerprint of an effect payload."""
    payload = payload or {}

    discriminator = DISCRIMINATOR_FIELDS.get(domain)
    if discriminator is not None:
        value = payload.get(discriminator)
        if value is not None and str(value).strip():
            return f"action_{str(value).strip().lower()}"
        # No discriminator on this payload; fall back to its shape
        return structural_fingerprint(payload)

    if domain in STRUCTURAL_DOMAINS:
        return structural_fingerprint(payload)

    return DEFAULT_FINGERPRINT


def classify_effect(effect: Effect) -> Classification:
    """Derive the stable class identity for an effect."""
    fingerprint = fingerprint_payload(effect.domain, effect.payload)
    effect_type = effect.effect_type.value
    return Classification(
        class_key=f"{effect.domain}:{effect_type}:{fingerprint}",
        fingerprint=fingerprint,
        domain=effect.domain,
        effect_type=effect_type,
    )
