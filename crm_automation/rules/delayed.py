"""
Delayed action hand-off.

Actions with ``delay_minutes`` > 0 are not executed by the engine; they are
handed to a DelayedActionScheduler together with the ActionContext and the
instant they become due. Durable queues live outside this package; the
in-memory queue below serves single-process deployments and tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from crm_automation.domain.automation import RuleAction
from crm_automation.rules.context import ActionContext
from crm_automation.utils.logger import StructuredLogger, get_logger
from crm_automation.utils.timezone import now_utc


class DelayedActionSchedulingError(Exception):
    """Raised when a delayed action cannot be handed off."""

    pass


@dataclass(frozen=True)
class DelayedAction:
    """A RuleAction waiting for its due instant."""

    action: RuleAction
    context: ActionContext
    run_at: datetime
    id: UUID = field(default_factory=uuid4)


class DelayedActionScheduler(ABC):
    """Accepts actions to run later. Implementations must not execute inline."""

    @abstractmethod
    def schedule(
        self, action: RuleAction, context: ActionContext, run_at: datetime
    ) -> DelayedAction:
        """Persist or enqueue ``action``; raise DelayedActionSchedulingError on failure."""


def due_time(action: RuleAction, now: Optional[datetime] = None) -> datetime:
    return (now or now_utc()) + timedelta(minutes=action.delay_minutes)


class InMemoryDelayedActionQueue(DelayedActionScheduler):
    """
    Process-local delayed action queue.

    Pending actions are lost on restart; use a durable scheduler when that
    matters.
    """

    def __init__(self, logger: Optional[StructuredLogger] = None):
        self.logger = logger or get_logger(__name__)
        self._pending: List[DelayedAction] = []

    def schedule(self, action, context, run_at):
        delayed = DelayedAction(action=action, context=context, run_at=run_at)
        self._pending.append(delayed)
        self.logger.debug(
            "Delayed action queued",
            operation="schedule_delayed_action",
            context={
                "action_type": str(action.type),
                "rule_id": str(context.rule_id),
                "run_at": run_at.isoformat(),
            },
        )
        return delayed

    @property
    def pending(self) -> List[DelayedAction]:
        return list(self._pending)

    def due(self, now: datetime) -> List[DelayedAction]:
        return sorted((d for d in self._pending if d.run_at <= now), key=lambda d: d.run_at)

    def run_due(self, registry: Any, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Execute and remove every due action through ``registry``.

        A failing action is logged and dropped; retrying it is the caller's
        decision.
        """
        current = now or now_utc()
        stats = {"executed": 0, "failed": 0}

        for delayed in self.due(current):
            self._pending.remove(delayed)
            try:
                registry.execute(delayed.action, delayed.context)
                stats["executed"] += 1
            except Exception as e:
                stats["failed"] += 1
                self.logger.error(
                    "Delayed action failed",
                    operation="run_delayed_action",
                    context={
                        "action_type": str(delayed.action.type),
                        "rule_id": str(delayed.context.rule_id),
                    },
                    error=str(e),
                )

        return stats
