"""
Manual administration of autonomy classes.

The only way out of a locked health state, and the only writer of
`status = paused`. Every call leaves an audit event.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .audit import ActorKind, AuditActor, AuditLog, EventType, Severity, build_event
from .context import ContextProvider, default_context_provider
from .errors import UnknownClassError
from .models import AutonomyClass, ClassStatus, HealthState
from .store import AutonomyClassRepository
from .time_utils import Clock, utc_now

logger = logging.getLogger(__name__)


class AutonomyAdmin:
    def __init__(
        self,
        repo: AutonomyClassRepository,
        audit: AuditLog,
        context_provider: ContextProvider = default_context_provider,
        clock: Clock = utc_now,
    ):
        self.repo = repo
        self.audit = audit
        self.context_provider = context_provider
        self.clock = clock

    # === INTROSPECTION ===

    def list_classes(self, owner_id: str) -> List[AutonomyClass]:
        return self.repo.list(owner_id)

    def get_class(self, owner_id: str, class_key: str) -> AutonomyClass:
        cls = self.repo.get(owner_id, class_key)
        if cls is None:
            raise UnknownClassError(class_key)
        return cls

    def query_audit(
        self,
        owner_id: Optional[str] = None,
        class_key: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        return self.audit.query(owner_id=owner_id, class_key=class_key, event_type=event_type, limit=limit)

    # === MUTATIONS ===

    def _change(
        self,
        owner_id: str,
        class_key: str,
        mutate: Callable[[AutonomyClass], None],
        event_type: str,
        actor_id: str,
        reason: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AutonomyClass:
        self.get_class(owner_id, class_key)
        updated = self.repo.update(owner_id, class_key, mutate, now=self.clock())
        self.audit.append(build_event(
            event_type,
            owner_id=owner_id,
            class_key=class_key,
            domain=updated.domain,
            reason=reason,
            severity=Severity.WARN,
            actor=AuditActor(kind=ActorKind.ADMIN, id=actor_id),
            metadata=metadata,
            tags=["admin"],
        ))
        logger.info(f"{event_type} on {class_key} by {actor_id}")
        return updated

    def clear_health_lock(
        self,
        owner_id: str,
        class_key: str,
        actor_id: str = "admin",
        reason: Optional[str] = None,
    ) -> AutonomyClass:
        """
        Return a class to healthy.

        Confusion and revert baselines move to the current counters so old
        events cannot re-lock it; the context is re-stamped.
        """
        context_hash = self.context_provider().hash
        previous = {}

        def mutate(cls: AutonomyClass) -> None:
            previous["health_state"] = cls.health_state.value
            cls.health_state = HealthState.HEALTHY
            cls.confusion_baseline = cls.stats.confusion_events
            cls.revert_baseline = cls.stats.reverts
            cls.recovery_attempts = 0
            cls.context_hash = context_hash

        return self._change(
            owner_id, class_key, mutate, EventType.HEALTH_UNLOCKED, actor_id, reason,
            metadata=previous,
        )

    def pause_class(
        self,
        owner_id: str,
        class_key: str,
        actor_id: str = "admin",
        reason: Optional[str] = None,
    ) -> AutonomyClass:
        def mutate(cls: AutonomyClass) -> None:
            cls.status = ClassStatus.PAUSED

        return self._change(owner_id, class_key, mutate, EventType.CLASS_PAUSED, actor_id, reason)

    def resume_class(
        self,
        owner_id: str,
        class_key: str,
        actor_id: str = "admin",
        reason: Optional[str] = None,
    ) -> AutonomyClass:
        """paused -> locked; the Decision Engine re-promotes on its own rule."""
        def mutate(cls: AutonomyClass) -> None:
            if cls.status == ClassStatus.PAUSED:
                cls.status = ClassStatus.LOCKED

        return self._change(owner_id, class_key, mutate, EventType.CLASS_RESUMED, actor_id, reason)

    def set_user_paused(
        self,
        owner_id: str,
        class_key: str,
        paused: bool,
        actor_id: str = "user",
        reason: Optional[str] = None,
    ) -> AutonomyClass:
        def mutate(cls: AutonomyClass) -> None:
            cls.user_paused = bool(paused)

        return self._change(
            owner_id, class_key, mutate, EventType.USER_PAUSE_SET, actor_id, reason,
            metadata={"user_paused": bool(paused)},
        )

    def reset_recovery_attempts(
        self,
        owner_id: str,
        class_key: str,
        actor_id: str = "admin",
        reason: Optional[str] = None,
    ) -> AutonomyClass:
        def mutate(cls: AutonomyClass) -> None:
            cls.recovery_attempts = 0

        return self._change(owner_id, class_key, mutate, EventType.RECOVERY_RESET, actor_id, reason)
