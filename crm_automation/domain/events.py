"""
Domain events recorded by the Automation aggregate.

Events are buffered on the aggregate and drained explicitly by whoever
persists it (see Automation.drain_events).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4


AUTOMATION_CREATED = "automation.created"
AUTOMATION_ENABLED = "automation.enabled"
AUTOMATION_DISABLED = "automation.disabled"
AUTOMATION_RULE_TRIGGERED = "automation_rule.triggered"
AUTOMATION_RULE_EXECUTED = "automation_rule.executed"
AUTOMATION_RULE_FAILED = "automation_rule.failed"


@dataclass(frozen=True)
class DomainEvent:
    """Immutable record of something that happened to an automation rule."""

    event_type: str
    aggregate_id: UUID
    tenant_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type,
            "aggregate_id": str(self.aggregate_id),
            "tenant_id": self.tenant_id,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": dict(self.payload),
        }


def automation_created(
    automation_id: UUID,
    tenant_id: str,
    name: str,
    trigger: str,
    pipeline_id: Optional[UUID] = None,
) -> DomainEvent:
    return DomainEvent(
        event_type=AUTOMATION_CREATED,
        aggregate_id=automation_id,
        tenant_id=tenant_id,
        payload={
            "name": name,
            "trigger": trigger,
            "pipeline_id": str(pipeline_id) if pipeline_id else None,
        },
    )


def automation_enabled(automation_id: UUID, tenant_id: str) -> DomainEvent:
    return DomainEvent(AUTOMATION_ENABLED, automation_id, tenant_id)


def automation_disabled(automation_id: UUID, tenant_id: str) -> DomainEvent:
    return DomainEvent(AUTOMATION_DISABLED, automation_id, tenant_id)


def rule_triggered(
    automation_id: UUID, tenant_id: str, trigger: str, context: Dict[str, Any]
) -> DomainEvent:
    """Rule conditions matched and its actions are about to run."""
    return DomainEvent(
        AUTOMATION_RULE_TRIGGERED,
        automation_id,
        tenant_id,
        payload={"trigger": trigger, "context_keys": sorted(context.keys())},
    )


def rule_executed(
    automation_id: UUID, tenant_id: str, actions_executed: int
) -> DomainEvent:
    return DomainEvent(
        AUTOMATION_RULE_EXECUTED,
        automation_id,
        tenant_id,
        payload={"actions_executed": actions_executed},
    )


def rule_failed(automation_id: UUID, tenant_id: str, error: str) -> DomainEvent:
    return DomainEvent(
        AUTOMATION_RULE_FAILED, automation_id, tenant_id, payload={"error": error}
    )
