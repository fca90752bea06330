"""
Wiring for the autonomy engine.

Builds every component over one shared database so the REST surface, the
daily run and embedding processes see the same classes and audit chain.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .adapters import AdapterRegistry, DomainAdapter
from .admin import AutonomyAdmin
from .audit import AuditLog
from .config import AutonomyPolicy, load_policy
from .context import ContextProvider, default_context_provider
from .decision_engine import AutonomyDecisionEngine
from .feedback import FeedbackEngine
from .gate import WriteAuthorityGate
from .notifications import NotificationDispatcher, QuietHours, Speaker
from .preconditions import PreconditionProbe, default_probe
from .recovery import RecoveryAttempter
from .store import (
    AppliedEffectStore,
    AutonomyClassRepository,
    CalibrationStore,
    DailyRunLockStore,
    Database,
    DomainTrustStore,
)
from .time_utils import Clock, utc_now


@dataclass
class AutonomyRuntime:
    db: Database
    policy: AutonomyPolicy
    repo: AutonomyClassRepository
    audit: AuditLog
    engine: AutonomyDecisionEngine
    feedback: FeedbackEngine
    recovery: RecoveryAttempter
    adapters: AdapterRegistry
    applied_effects: AppliedEffectStore
    gate: WriteAuthorityGate
    admin: AutonomyAdmin
    locks: DailyRunLockStore

    def close(self) -> None:
        self.db.close()


def build_runtime(
    db_path: Path,
    policy: Optional[AutonomyPolicy] = None,
    adapters: Optional[List[DomainAdapter]] = None,
    speaker: Optional[Speaker] = None,
    quiet_hours: Optional[str] = None,
    precondition_probe: PreconditionProbe = default_probe,
    context_provider: ContextProvider = default_context_provider,
    clock: Clock = utc_now,
    hmac_key: Optional[bytes] = None,
) -> AutonomyRuntime:
    policy = policy or load_policy()

    db = Database(db_path)
    db.ensure_schema()

    repo = AutonomyClassRepository(db)
    audit = AuditLog(db, hmac_key=hmac_key)
    engine = AutonomyDecisionEngine(repo, audit, policy, context_provider, clock)
    feedback = FeedbackEngine(repo, DomainTrustStore(db), CalibrationStore(db), policy, clock)
    recovery = RecoveryAttempter(repo, audit, policy, clock)
    registry = AdapterRegistry(adapters)
    applied = AppliedEffectStore(db)
    notifier = NotificationDispatcher(
        speaker,
        QuietHours.parse(quiet_hours) if quiet_hours else None,
        clock,
    )
    gate = WriteAuthorityGate(
        engine=engine,
        feedback=feedback,
        adapters=registry,
        applied_effects=applied,
        audit=audit,
        recovery=recovery,
        notifier=notifier,
        precondition_probe=precondition_probe,
        policy=policy,
        clock=clock,
    )

    return AutonomyRuntime(
        db=db,
        policy=policy,
        repo=repo,
        audit=audit,
        engine=engine,
        feedback=feedback,
        recovery=recovery,
        adapters=registry,
        applied_effects=applied,
        gate=gate,
        admin=AutonomyAdmin(repo, audit, context_provider, clock),
        locks=DailyRunLockStore(db),
    )
