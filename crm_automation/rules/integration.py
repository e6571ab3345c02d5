"""
Adapters from CRM occurrences to engine triggers.

The session/contact code calls AutomationIntegration when something happens
(session ended, status changed, ...). The integration loads what it needs,
builds the trigger metadata and hands off to the AutomationEngine.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol
from uuid import UUID

from crm_automation.database.exceptions import SessionNotFoundError
from crm_automation.domain.automation import AutomationTrigger, TriggerLike
from crm_automation.rules.engine import AutomationEngine, EngineResult
from crm_automation.rules.scheduled_runner import ScheduledRuleRunner, ScheduledRunSummary
from crm_automation.utils.logger import StructuredLogger, get_logger


@dataclass
class SessionSnapshot:
    """Read-only view of a conversation session."""

    id: UUID
    contact_id: UUID
    tenant_id: str
    started_at: datetime
    last_activity_at: datetime
    pipeline_id: Optional[UUID] = None
    channel_id: Optional[UUID] = None
    message_count: int = 0
    resolved: bool = False
    agent_ids: List[UUID] = field(default_factory=list)


class SessionLookup(Protocol):
    def find_by_id(self, session_id: UUID) -> Optional[SessionSnapshot]: ...


@dataclass(frozen=True)
class DelayedCheck:
    pipeline_id: UUID
    contact_id: UUID
    tenant_id: str
    run_at: datetime
    delay_minutes: int
    metadata: Dict[str, Any] = field(default_factory=dict)


class AutomationIntegration:
    def __init__(
        self,
        engine: AutomationEngine,
        sessions: SessionLookup,
        scheduled_runner: Optional[ScheduledRuleRunner] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.engine = engine
        self.sessions = sessions
        self.scheduled_runner = scheduled_runner
        self.logger = logger or get_logger(__name__)
        self._pending_checks: List[DelayedCheck] = []

    def _clock(self) -> datetime:
        return self.engine.clock()

    def _load_session(self, session_id: UUID) -> SessionSnapshot:
        session = self.sessions.find_by_id(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _minutes_since(self, instant: datetime) -> float:
        return (self._clock() - instant).total_seconds() / 60

    def _dispatch(
        self,
        session: SessionSnapshot,
        trigger: TriggerLike,
        metadata: Dict[str, Any],
    ) -> Optional[EngineResult]:
        if session.pipeline_id is None:
            self.logger.debug(
                "Session has no pipeline, skipping automation rules",
                operation="automation_integration",
                context={"session_id": str(session.id), "trigger": str(trigger)},
            )
            return None

        return self.engine.process_session_event(
            session.pipeline_id,
            trigger,
            session.id,
            session.contact_id,
            session.channel_id,
            session.tenant_id,
            metadata,
        )

    # ------------------------------------------------------------------ #
    # Session occurrences
    # ------------------------------------------------------------------ #

    def on_session_ended(self, session_id: UUID) -> Optional[EngineResult]:
        """
        Fire ``session.ended`` rules.

        Returns None when the session is not attached to a pipeline.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        session = self._load_session(session_id)
        metadata: Dict[str, Any] = {
            "session_duration_minutes": self._minutes_since(session.started_at),
            "message_count": session.message_count,
            "resolved": session.resolved,
        }
        if session.agent_ids:
            metadata["agent_id"] = str(session.agent_ids[0])
        return self._dispatch(session, AutomationTrigger.SESSION_ENDED, metadata)

    def on_session_timeout(self, session_id: UUID) -> Optional[EngineResult]:
        session = self._load_session(session_id)
        metadata = {
            "session_duration_minutes": self._minutes_since(session.started_at),
            "last_message_at": session.last_activity_at.isoformat(),
            "hours_since_last_message": self._minutes_since(session.last_activity_at) / 60,
            "message_count": session.message_count,
        }
        return self._dispatch(session, AutomationTrigger.SESSION_TIMEOUT, metadata)

    def on_session_resolved(self, session_id: UUID) -> Optional[EngineResult]:
        session = self._load_session(session_id)
        metadata: Dict[str, Any] = {
            "session_duration_minutes": self._minutes_since(session.started_at),
            "message_count": session.message_count,
        }
        if session.agent_ids:
            metadata["agent_id"] = str(session.agent_ids[0])
        return self._dispatch(session, AutomationTrigger.SESSION_RESOLVED, metadata)

    def on_no_response(
        self, session_id: UUID, hours_since_last_message: float
    ) -> Optional[EngineResult]:
        session = self._load_session(session_id)
        metadata = {
            "hours_since_last_message": hours_since_last_message,
            "last_message_at": session.last_activity_at.isoformat(),
            "message_count": session.message_count,
        }
        return self._dispatch(session, AutomationTrigger.NO_RESPONSE, metadata)

    def on_message_received(self, session_id: UUID, message_id: UUID) -> Optional[EngineResult]:
        session = self._load_session(session_id)
        metadata = {
            "message_id": str(message_id),
            "message_count": session.message_count,
        }
        return self._dispatch(session, AutomationTrigger.MESSAGE_RECEIVED, metadata)

    # ------------------------------------------------------------------ #
    # Contact occurrences
    # ------------------------------------------------------------------ #

    def on_status_changed(
        self,
        contact_id: UUID,
        pipeline_id: UUID,
        old_status_id: Optional[UUID],
        new_status_id: UUID,
        tenant_id: str,
    ) -> EngineResult:
        metadata = {
            "old_status_id": str(old_status_id) if old_status_id else None,
            "new_status_id": str(new_status_id),
        }
        return self.engine.process_contact_event(
            pipeline_id, AutomationTrigger.STATUS_CHANGED, contact_id, tenant_id, metadata
        )

    # ------------------------------------------------------------------ #
    # Time-driven
    # ------------------------------------------------------------------ #

    def schedule_delayed_check(
        self,
        pipeline_id: UUID,
        contact_id: UUID,
        tenant_id: str,
        delay_minutes: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DelayedCheck:
        """
        Queue an ``after.delay`` evaluation for a contact.

        The check fires on the first run_due_checks() call at or after
        now + delay_minutes.
        """
        if delay_minutes < 0:
            raise ValueError("delay_minutes cannot be negative")

        check = DelayedCheck(
            pipeline_id=pipeline_id,
            contact_id=contact_id,
            tenant_id=tenant_id,
            run_at=self._clock() + timedelta(minutes=delay_minutes),
            delay_minutes=delay_minutes,
            metadata=dict(metadata or {}),
        )
        self._pending_checks.append(check)
        self.logger.info(
            "Scheduling delayed follow-up check",
            operation="schedule_delayed_check",
            context={
                "pipeline_id": str(pipeline_id),
                "contact_id": str(contact_id),
                "delay_minutes": delay_minutes,
            },
        )
        return check

    @property
    def pending_checks(self) -> List[DelayedCheck]:
        return list(self._pending_checks)

    def run_due_checks(self, now: Optional[datetime] = None) -> List[EngineResult]:
        current = now or self._clock()
        due = [check for check in self._pending_checks if check.run_at <= current]
        results = []

        for check in due:
            self._pending_checks.remove(check)
            metadata = dict(check.metadata)
            metadata["delay_minutes"] = check.delay_minutes
            try:
                results.append(
                    self.engine.process_contact_event(
                        check.pipeline_id,
                        AutomationTrigger.AFTER_DELAY,
                        check.contact_id,
                        check.tenant_id,
                        metadata,
                    )
                )
            except Exception as e:
                self.logger.error(
                    "Delayed follow-up check failed",
                    operation="run_delayed_check",
                    context={"contact_id": str(check.contact_id)},
                    error=str(e),
                )
        return results

    def process_scheduled_rules(self, now: Optional[datetime] = None) -> ScheduledRunSummary:
        """Run one poll of due scheduled rules (requires a ScheduledRuleRunner)."""
        if self.scheduled_runner is None:
            raise RuntimeError("scheduled rule runner not configured")
        return self.scheduled_runner.run_due(now)
