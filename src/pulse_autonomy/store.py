"""
Persistent storage for autonomy state.

SQLite-backed with JSON serialization for class snapshots. Each repository
wraps one table of a shared Database; class updates run as atomic
read-modify-write transactions so concurrent effects of the same class key
never lose counter increments.
"""
from __future__ import annotations

import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from .classifier import Classification
from .errors import StoreError
from .models import AutonomyClass, Effect
from .time_utils import parse_iso, to_iso, utc_now

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS autonomy_classes (
        owner_id TEXT NOT NULL,
        class_key TEXT NOT NULL,
        value_json TEXT NOT NULL,
        updated_at_unix INTEGER NOT NULL,
        PRIMARY KEY (owner_id, class_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_events (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id TEXT NOT NULL UNIQUE,
        ts TEXT NOT NULL,
        event_type TEXT NOT NULL,
        owner_id TEXT,
        class_key TEXT,
        event_json TEXT NOT NULL,
        chain_hash TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_audit_events_class_key ON audit_events(class_key)",
    "CREATE INDEX IF NOT EXISTS idx_audit_events_owner ON audit_events(owner_id)",
    """
    CREATE TABLE IF NOT EXISTS applied_effects (
        effect_id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        class_key TEXT NOT NULL,
        effect_json TEXT NOT NULL,
        applied_at TEXT NOT NULL,
        reverted_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS daily_run_locks (
        owner_id TEXT NOT NULL,
        day TEXT NOT NULL,
        status TEXT NOT NULL,
        started_at TEXT NOT NULL,
        finished_at TEXT,
        summary_json TEXT,
        PRIMARY KEY (owner_id, day)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS domain_trust (
        owner_id TEXT NOT NULL,
        domain TEXT NOT NULL,
        score REAL NOT NULL,
        events INTEGER NOT NULL,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (owner_id, domain)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS confidence_calibration (
        owner_id TEXT NOT NULL,
        domain TEXT NOT NULL,
        bucket TEXT NOT NULL,
        predictions INTEGER NOT NULL,
        predicted_sum REAL NOT NULL,
        success_sum REAL NOT NULL,
        PRIMARY KEY (owner_id, domain, bucket)
    )
    """,
)


class Database:
    """
    Thread-safe SQLite handle with thread-local connections.

    Usage:
        db = Database("/path/to/autonomy.db")
        db.ensure_schema()
        with db.transaction() as cur:
            ...
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._local = threading.local()

    def _get_conn(self) -> sqlite3.Connection:
        """Get thread-local connection (autocommit; transactions are explicit)."""
        if getattr(self._local, "conn", None) is None:
            conn = sqlite3.connect(
                self.db_path,
                timeout=30,
                check_same_thread=False,
                isolation_level=None,
            )
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
        return self._local.conn

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Cursor for single autocommitted statements."""
        cur = self._get_conn().cursor()
        try:
            yield cur
        finally:
            cur.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """
        Exclusive write transaction (BEGIN IMMEDIATE).

        Nested use joins the outer transaction.
        """
        conn = self._get_conn()
        if conn.in_transaction:
            cur = conn.cursor()
            try:
                yield cur
            finally:
                cur.close()
            return

        cur = conn.cursor()
        try:
            cur.execute("BEGIN IMMEDIATE")
            yield cur
            cur.execute("COMMIT")
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            cur.close()

    def ensure_schema(self) -> None:
        """Create tables if not exist. Safe to call multiple times."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self.transaction() as cur:
            for statement in SCHEMA:
                cur.execute(statement)

    def close(self) -> None:
        """Close the connection for this thread."""
        if getattr(self._local, "conn", None) is not None:
            self._local.conn.close()
            self._local.conn = None


def _load_class(row: sqlite3.Row) -> AutonomyClass:
    try:
        return AutonomyClass.from_dict(json.loads(row["value_json"]))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise StoreError(f"Malformed autonomy class record: {e}") from e


def _dump(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), default=str)


class AutonomyClassRepository:
    """Autonomy class rows keyed by (owner_id, class_key). Never deleted."""

    def __init__(self, db: Database):
        self.db = db

    def _write(self, cur: sqlite3.Cursor, cls: AutonomyClass) -> None:
        cur.execute("""
            INSERT INTO autonomy_classes (owner_id, class_key, value_json, updated_at_unix)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(owner_id, class_key) DO UPDATE SET
                value_json = excluded.value_json,
                updated_at_unix = excluded.updated_at_unix
        """, (cls.owner_id, cls.class_key, _dump(cls.to_dict()), int(time.time())))

    def get(self, owner_id: str, class_key: str) -> Optional[AutonomyClass]:
        with self.db._cursor() as cur:
            cur.execute(
                "SELECT value_json FROM autonomy_classes WHERE owner_id = ? AND class_key = ?",
                (owner_id, class_key),
            )
            row = cur.fetchone()
        return _load_class(row) if row else None

    def list(self, owner_id: str) -> List[AutonomyClass]:
        with self.db._cursor() as cur:
            cur.execute(
                "SELECT value_json FROM autonomy_classes WHERE owner_id = ? ORDER BY class_key",
                (owner_id,),
            )
            rows = cur.fetchall()
        return [_load_class(row) for row in rows]

    def update(
        self,
        owner_id: str,
        class_key: str,
        mutate: Callable[[AutonomyClass], Optional[AutonomyClass]],
        create_from: Optional[Classification] = None,
        now: Optional[datetime] = None,
    ) -> AutonomyClass:
        """
        Atomic read-modify-write of one class.

        When the row is missing and create_from is given, a fresh locked
        class is created first. `mutate` may edit in place or return a
        replacement.
        """
        now = now or utc_now()
        with self.db.transaction() as cur:
            cur.execute(
                "SELECT value_json FROM autonomy_classes WHERE owner_id = ? AND class_key = ?",
                (owner_id, class_key),
            )
            row = cur.fetchone()
            if row is not None:
                cls = _load_class(row)
            elif create_from is not None:
                cls = new_autonomy_class(owner_id, create_from, now)
            else:
                raise StoreError(f"Unknown autonomy class: {owner_id}/{class_key}")

            replaced = mutate(cls)
            if replaced is not None:
                cls = replaced
            cls.updated_at = now
            self._write(cur, cls)
            return cls

    def get_or_create(
        self,
        owner_id: str,
        classification: Classification,
        now: Optional[datetime] = None,
    ) -> AutonomyClass:
        """Fetch a class, lazily creating it on first sight of its key."""
        existing = self.get(owner_id, classification.class_key)
        if existing is not None:
            return existing
        return self.update(
            owner_id, classification.class_key, lambda cls: None,
            create_from=classification, now=now,
        )


def new_autonomy_class(owner_id: str, classification: Classification, now: datetime) -> AutonomyClass:
    """Fresh classes start locked with zero eligibility."""
    return AutonomyClass(
        owner_id=owner_id,
        class_key=classification.class_key,
        domain=classification.domain,
        effect_type=classification.effect_type,
        fingerprint=classification.fingerprint,
        created_at=now,
        updated_at=now,
    )


@dataclass
class AppliedEffectRecord:
    effect: Effect
    owner_id: str
    class_key: str
    applied_at: datetime
    reverted_at: Optional[datetime] = None


class AppliedEffectStore:
    """Effects that reached a domain adapter, kept for the reversal path."""

    def __init__(self, db: Database):
        self.db = db

    def record(self, owner_id: str, class_key: str, effect: Effect, now: Optional[datetime] = None) -> bool:
        """Claim the effect id. False if it was already recorded."""
        with self.db.transaction() as cur:
            cur.execute("""
                INSERT INTO applied_effects (effect_id, owner_id, class_key, effect_json, applied_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(effect_id) DO NOTHING
            """, (effect.effect_id, owner_id, class_key, _dump(effect.to_dict()), to_iso(now or utc_now())))
            inserted = cur.rowcount == 1
        return inserted

    def release(self, effect_id: str) -> None:
        """Drop a claim whose apply never went through."""
        with self.db.transaction() as cur:
            cur.execute(
                "DELETE FROM applied_effects WHERE effect_id = ? AND reverted_at IS NULL",
                (effect_id,),
            )

    def get(self, effect_id: str) -> Optional[AppliedEffectRecord]:
        with self.db._cursor() as cur:
            cur.execute("SELECT * FROM applied_effects WHERE effect_id = ?", (effect_id,))
            row = cur.fetchone()
        if row is None:
            return None
        return AppliedEffectRecord(
            effect=Effect.from_dict(json.loads(row["effect_json"])),
            owner_id=row["owner_id"],
            class_key=row["class_key"],
            applied_at=parse_iso(row["applied_at"]),
            reverted_at=parse_iso(row["reverted_at"]),
        )

    def claim_revert(self, effect_id: str, now: Optional[datetime] = None) -> bool:
        """Stamp reverted_at if unset. False if another revert holds it."""
        with self.db.transaction() as cur:
            cur.execute(
                "UPDATE applied_effects SET reverted_at = ? WHERE effect_id = ? AND reverted_at IS NULL",
                (to_iso(now or utc_now()), effect_id),
            )
            claimed = cur.rowcount == 1
        return claimed

    def release_revert(self, effect_id: str) -> None:
        with self.db.transaction() as cur:
            cur.execute("UPDATE applied_effects SET reverted_at = NULL WHERE effect_id = ?", (effect_id,))


class DailyRunLockStore:
    """
    Persisted (owner, day) idempotency keys for the daily run.

    The row is the single source of truth: whoever inserts it owns the run.
    """

    def __init__(self, db: Database):
        self.db = db

    def acquire(self, owner_id: str, day: str, now: Optional[datetime] = None) -> bool:
        """Claim the (owner, day) slot. False if it was already claimed."""
        try:
            with self.db.transaction() as cur:
                cur.execute("""
                    INSERT INTO daily_run_locks (owner_id, day, status, started_at)
                    VALUES (?, ?, 'running', ?)
                """, (owner_id, day, to_iso(now or utc_now())))
            return True
        except sqlite3.IntegrityError:
            return False

    def finish(
        self,
        owner_id: str,
        day: str,
        status: str,
        summary: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> None:
        with self.db.transaction() as cur:
            cur.execute("""
                UPDATE daily_run_locks
                SET status = ?, finished_at = ?, summary_json = ?
                WHERE owner_id = ? AND day = ?
            """, (status, to_iso(now or utc_now()), _dump(summary or {}), owner_id, day))

    def get(self, owner_id: str, day: str) -> Optional[Dict[str, Any]]:
        with self.db._cursor() as cur:
            cur.execute(
                "SELECT * FROM daily_run_locks WHERE owner_id = ? AND day = ?",
                (owner_id, day),
            )
            row = cur.fetchone()
        if row is None:
            return None
        result = dict(row)
        result["summary"] = json.loads(result.pop("summary_json") or "{}")
        return result


NEUTRAL_TRUST = 0.5


class DomainTrustStore:
    """Per-domain trust ledger. Tunes timing and confidence, never authority."""

    def __init__(self, db: Database):
        self.db = db

    def get(self, owner_id: str, domain: str) -> float:
        with self.db._cursor() as cur:
            cur.execute(
                "SELECT score FROM domain_trust WHERE owner_id = ? AND domain = ?",
                (owner_id, domain),
            )
            row = cur.fetchone()
        return float(row["score"]) if row else NEUTRAL_TRUST

    def adjust(self, owner_id: str, domain: str, delta: float, now: Optional[datetime] = None) -> tuple[float, float]:
        """Apply a delta atomically. Returns (old_score, new_score)."""
        with self.db.transaction() as cur:
            cur.execute(
                "SELECT score, events FROM domain_trust WHERE owner_id = ? AND domain = ?",
                (owner_id, domain),
            )
            row = cur.fetchone()
            old = float(row["score"]) if row else NEUTRAL_TRUST
            events = int(row["events"]) if row else 0
            new = max(0.0, min(1.0, old + delta))
            cur.execute("""
                INSERT INTO domain_trust (owner_id, domain, score, events, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(owner_id, domain) DO UPDATE SET
                    score = excluded.score,
                    events = excluded.events,
                    updated_at = excluded.updated_at
            """, (owner_id, domain, new, events + 1, to_iso(now or utc_now())))
        return old, new

    def all(self, owner_id: str) -> Dict[str, float]:
        with self.db._cursor() as cur:
            cur.execute("SELECT domain, score FROM domain_trust WHERE owner_id = ?", (owner_id,))
            return {row["domain"]: float(row["score"]) for row in cur.fetchall()}


class CalibrationStore:
    """Predicted-confidence vs actual-success tallies per confidence bucket."""

    def __init__(self, db: Database):
        self.db = db

    def record(self, owner_id: str, domain: str, bucket: str, predicted: float, actual: float) -> None:
        with self.db.transaction() as cur:
            cur.execute("""
                INSERT INTO confidence_calibration
                    (owner_id, domain, bucket, predictions, predicted_sum, success_sum)
                VALUES (?, ?, ?, 1, ?, ?)
                ON CONFLICT(owner_id, domain, bucket) DO UPDATE SET
                    predictions = predictions + 1,
                    predicted_sum = predicted_sum + excluded.predicted_sum,
                    success_sum = success_sum + excluded.success_sum
            """, (owner_id, domain, bucket, predicted, actual))

    def buckets(self, owner_id: str, domain: str) -> Dict[str, Dict[str, float]]:
        with self.db._cursor() as cur:
            cur.execute("""
                SELECT bucket, predictions, predicted_sum, success_sum
                FROM confidence_calibration WHERE owner_id = ? AND domain = ?
            """, (owner_id, domain))
            rows = cur.fetchall()
        result = {}
        for row in rows:
            n = int(row["predictions"])
            avg_predicted = row["predicted_sum"] / n
            success_rate = row["success_sum"] / n
            result[row["bucket"]] = {
                "total_predictions": n,
                "avg_predicted": avg_predicted,
                "actual_success_rate": success_rate,
                "calibration_gap": avg_predicted - success_rate,
            }
        return result
