"""
Audit Log
=========

One table. One schema. Every autonomy-relevant event: write-mode
resolutions, precondition blocks, health transitions, recovery attempts,
manual administration, daily runs.

Design principles:
- APPEND-ONLY: rows are never updated or deleted
- TAMPER-EVIDENT: hash chain links each event to the previous
- OPTIONALLY SIGNED: HMAC prevents recomputing hashes after tampering
- CANONICAL: stable JSON serialization for reproducible hashes

Schema version: 1
"""

import hashlib
import hmac
import json
import logging
import os
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .config import HMAC_KEY_ENV
from .models import WriteModeResolution
from .store import Database
from .time_utils import utc_now, utc_now_iso

logger = logging.getLogger(__name__)

GENESIS_HASH = "GENESIS"
SCHEMA_VERSION = 1


# ============================================================
# EVENT TYPES
# ============================================================

class EventType:
    """Standard event types for the audit log."""
    # Gate events
    WRITE_MODE_RESOLVED = "gate.write_mode_resolved"
    PRECONDITION_BLOCKED = "gate.precondition_blocked"
    UNKNOWN_DOMAIN = "gate.unknown_domain"
    APPLY_FAILED = "gate.apply_failed"
    EFFECT_REVERTED = "gate.effect_reverted"
    CONFIRMATION_APPLIED = "gate.confirmation_applied"

    # Class lifecycle
    CLASS_PROMOTED = "class.promoted"
    HEALTH_TRANSITION = "health.transition"

    # Recovery
    RECOVERY_ATTEMPTED = "recovery.attempted"
    RECOVERY_DENIED = "recovery.denied"

    # Manual administration
    HEALTH_UNLOCKED = "admin.health_unlocked"
    CLASS_PAUSED = "admin.class_paused"
    CLASS_RESUMED = "admin.class_resumed"
    USER_PAUSE_SET = "admin.user_pause_set"
    RECOVERY_RESET = "admin.recovery_reset"

    # Daily run
    DAILY_RUN_COMPLETED = "daily_run.completed"
    DAILY_RUN_SKIPPED = "daily_run.skipped"
    DAILY_RUN_FAILED = "daily_run.failed"


class Severity:
    """Event severity levels."""
    INFO = "info"
    WARN = "warn"
    HIGH = "high"
    CRITICAL = "critical"


class ActorKind:
    """Actor types."""
    ENGINE = "engine"
    USER = "user"
    ADMIN = "admin"
    SYSTEM = "system"


# ============================================================
# UNIFIED EVENT SCHEMA
# ============================================================

@dataclass
class AuditActor:
    kind: str = ActorKind.ENGINE
    id: str = "pulse"


@dataclass
class ChainInfo:
    prev: str = ""
    hash: str = ""
    sig: Optional[str] = None  # HMAC signature if key available


@dataclass
class AuditEvent:
    """Unified audit event schema."""
    # Header
    v: int = SCHEMA_VERSION
    ts: str = field(default_factory=utc_now_iso)
    event_id: str = ""
    event_type: str = ""
    severity: str = Severity.INFO
    actor: AuditActor = field(default_factory=AuditActor)

    # Subject
    owner_id: Optional[str] = None
    class_key: Optional[str] = None
    domain: Optional[str] = None
    effect_id: Optional[str] = None

    # Decision
    decision: Optional[str] = None
    reason: Optional[str] = None

    tags: List[str] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None

    # Hash chain (filled by AuditLog.append)
    chain: ChainInfo = field(default_factory=ChainInfo)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def to_canonical_dict(self) -> Dict[str, Any]:
        """Dictionary for hash computation; excludes chain.hash and chain.sig."""
        d = self.to_dict()
        chain = dict(d.get("chain", {}))
        chain.pop("hash", None)
        chain.pop("sig", None)
        if chain:
            d["chain"] = chain
        else:
            d.pop("chain", None)
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEvent":
        data = dict(data)
        actor = AuditActor(**data.pop("actor", {}))
        chain = ChainInfo(**data.pop("chain", {}))
        return cls(actor=actor, chain=chain, **data)


def generate_event_id() -> str:
    timestamp = utc_now().strftime("%Y%m%d_%H%M%S")
    return f"evt_{timestamp}_{uuid.uuid4().hex[:8]}"


# ============================================================
# CANONICAL JSON + HASH CHAIN
# ============================================================

def canonical_json(data: Dict[str, Any]) -> str:
    """Sorted keys, no whitespace, UTF-8."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def compute_payload_hash(event: AuditEvent) -> str:
    canonical = canonical_json(event.to_canonical_dict())
    return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def compute_chain_hash(prev_hash: str, payload_hash: str) -> str:
    combined = f"{prev_hash}:{payload_hash}"
    return "sha256:" + hashlib.sha256(combined.encode("utf-8")).hexdigest()


def compute_hmac_signature(chain_hash: str, hmac_key: bytes) -> str:
    sig = hmac.new(hmac_key, chain_hash.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"hmac-sha256:{sig}"


def get_hmac_key() -> Optional[bytes]:
    key_str = os.environ.get(HMAC_KEY_ENV, "").strip()
    return key_str.encode("utf-8") if key_str else None


# ============================================================
# AUDIT LOG
# ============================================================

class AuditLog:
    """Append-only, hash-chained audit events over the shared database."""

    def __init__(self, db: Database, hmac_key: Optional[bytes] = None):
        self.db = db
        self.hmac_key = hmac_key if hmac_key is not None else get_hmac_key()

    def _compute_chain(self, event: AuditEvent, prev_hash: str) -> Tuple[str, Optional[str]]:
        chain_hash = compute_chain_hash(prev_hash, compute_payload_hash(event))
        sig = compute_hmac_signature(chain_hash, self.hmac_key) if self.hmac_key else None
        return chain_hash, sig

    def append(self, event: AuditEvent) -> str:
        """Append an event. Returns the event_id."""
        if not event.event_id:
            event.event_id = generate_event_id()

        with self.db.transaction() as cur:
            cur.execute("SELECT chain_hash FROM audit_events ORDER BY seq DESC LIMIT 1")
            row = cur.fetchone()
            prev_hash = row["chain_hash"] if row else GENESIS_HASH

            event.chain.prev = prev_hash
            event.chain.hash, event.chain.sig = self._compute_chain(event, prev_hash)

            cur.execute("""
                INSERT INTO audit_events (event_id, ts, event_type, owner_id, class_key, event_json, chain_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                event.event_id, event.ts, event.event_type, event.owner_id,
                event.class_key, json.dumps(event.to_dict(), sort_keys=True, default=str),
                event.chain.hash,
            ))

        return event.event_id

    def query(
        self,
        owner_id: Optional[str] = None,
        class_key: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """Query events with filters, newest first."""
        clauses, params = [], []
        if owner_id:
            clauses.append("owner_id = ?")
            params.append(owner_id)
        if class_key:
            clauses.append("class_key = ?")
            params.append(class_key)
        if event_type:
            clauses.append("event_type = ?")
            params.append(event_type)

        sql = "SELECT event_json FROM audit_events"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY seq DESC LIMIT ?"
        params.append(int(limit))

        with self.db._cursor() as cur:
            cur.execute(sql, params)
            return [json.loads(row["event_json"]) for row in cur.fetchall()]

    def verify_chain(self) -> Dict[str, Any]:
        """
        Recompute every link. Reports the first broken event, if any.
        """
        prev_hash = GENESIS_HASH
        checked = 0

        with self.db._cursor() as cur:
            cur.execute("SELECT event_json, chain_hash FROM audit_events ORDER BY seq ASC")
            rows = cur.fetchall()

        for row in rows:
            event = AuditEvent.from_dict(json.loads(row["event_json"]))
            expected_hash, expected_sig = self._compute_chain(event, prev_hash)
            if event.chain.prev != prev_hash or event.chain.hash != expected_hash or row["chain_hash"] != expected_hash:
                logger.warning(f"Audit chain broken at {event.event_id}")
                return {"valid": False, "checked": checked, "broken_at": event.event_id, "reason": "hash mismatch"}
            if self.hmac_key and event.chain.sig != expected_sig:
                logger.warning(f"Audit signature mismatch at {event.event_id}")
                return {"valid": False, "checked": checked, "broken_at": event.event_id, "reason": "signature mismatch"}
            prev_hash = expected_hash
            checked += 1

        return {"valid": True, "checked": checked, "broken_at": None, "reason": None}


# ============================================================
# EVENT BUILDERS
# ============================================================

def build_event(
    event_type: str,
    owner_id: Optional[str] = None,
    class_key: Optional[str] = None,
    reason: Optional[str] = None,
    severity: str = Severity.INFO,
    actor: Optional[AuditActor] = None,
    domain: Optional[str] = None,
    effect_id: Optional[str] = None,
    decision: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    tags: Optional[List[str]] = None,
) -> AuditEvent:
    return AuditEvent(
        event_type=event_type,
        severity=severity,
        actor=actor or AuditActor(),
        owner_id=owner_id,
        class_key=class_key,
        domain=domain,
        effect_id=effect_id,
        decision=decision,
        reason=reason,
        metadata=metadata,
        tags=tags or [],
    )


def build_resolution_event(
    resolution: WriteModeResolution,
    owner_id: str,
    effect_id: str,
    extra: Optional[Dict[str, Any]] = None,
) -> AuditEvent:
    """Write-mode resolution for one execution attempt."""
    metadata = resolution.to_dict()
    if extra:
        metadata.update(extra)
    return build_event(
        EventType.WRITE_MODE_RESOLVED,
        owner_id=owner_id,
        class_key=resolution.class_key,
        domain=resolution.domain,
        effect_id=effect_id,
        decision=resolution.write_mode.value,
        reason=resolution.decision_reason.value if resolution.decision_reason else None,
        metadata=metadata,
        tags=["gate", "applied" if resolution.applied else "not_applied"],
    )
