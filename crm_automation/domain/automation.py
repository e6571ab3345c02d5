"""
Automation aggregate.

An Automation is a tenant-scoped rule: when ``trigger`` fires for a
pipeline and every condition holds against the evaluation context, its
actions run in order. The aggregate enforces its own invariants and buffers
domain events until the caller drains them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union
from uuid import UUID, uuid4

from crm_automation.domain import events as domain_events
from crm_automation.domain.conditions import RuleCondition, evaluate_conditions
from crm_automation.domain.events import DomainEvent
from crm_automation.domain.exceptions import AutomationValidationError
from crm_automation.utils.timezone import now_utc

NIL_UUID = UUID(int=0)


class AutomationType(str, Enum):
    PIPELINE_BASED = "pipeline_based"
    FOLLOW_UP = "follow_up"
    REENGAGEMENT = "reengagement"
    ONBOARDING = "onboarding"
    EVENT = "event"
    SCHEDULED = "scheduled"
    SCHEDULED_REPORT = "scheduled_report"
    TIME_NOTIFICATION = "time_notification"
    WEBHOOK = "webhook"
    CUSTOM = "custom"

    @property
    def requires_pipeline(self) -> bool:
        return self in PIPELINE_SCOPED_TYPES


PIPELINE_SCOPED_TYPES = frozenset(
    {
        AutomationType.PIPELINE_BASED,
        AutomationType.FOLLOW_UP,
        AutomationType.REENGAGEMENT,
        AutomationType.ONBOARDING,
    }
)


class AutomationTrigger(str, Enum):
    # Session lifecycle
    SESSION_ENDED = "session.ended"
    SESSION_TIMEOUT = "session.timeout"
    SESSION_RESOLVED = "session.resolved"
    SESSION_ESCALATED = "session.escalated"
    NO_RESPONSE = "no_response.timeout"
    MESSAGE_RECEIVED = "message.received"
    # Pipeline
    STATUS_CHANGED = "status.changed"
    STAGE_COMPLETED = "stage.completed"
    # Time based
    AFTER_DELAY = "after.delay"
    SCHEDULED = "scheduled"
    # Commerce
    PURCHASE_COMPLETED = "purchase.completed"
    PAYMENT_RECEIVED = "payment.received"
    REFUND_ISSUED = "refund.issued"
    CART_ABANDONED = "cart.abandoned"
    ORDER_SHIPPED = "order.shipped"
    # Behaviour
    PAGE_VISITED = "page.visited"
    FORM_SUBMITTED = "form.submitted"
    FILE_DOWNLOADED = "file.downloaded"


class AutomationAction(str, Enum):
    SEND_MESSAGE = "send_message"
    SEND_TEMPLATE = "send_template"
    CHANGE_PIPELINE_STATUS = "change_pipeline_status"
    ASSIGN_AGENT = "assign_agent"
    ASSIGN_TO_QUEUE = "assign_to_queue"
    CREATE_TASK = "create_task"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"
    UPDATE_CUSTOM_FIELD = "update_custom_field"
    CREATE_NOTE = "create_note"
    CREATE_AGENT_REPORT = "create_agent_report"
    SEND_WEBHOOK = "send_webhook"
    TRIGGER_WORKFLOW = "trigger_workflow"
    NOTIFY_AGENT = "notify_agent"
    NOTIFY_COORDINATOR = "notify_coordinator"
    SEND_EMAIL = "send_email"


TriggerLike = Union[AutomationTrigger, str]


def coerce_trigger(value: TriggerLike) -> TriggerLike:
    """Return the matching AutomationTrigger, or the raw string for custom triggers."""
    if isinstance(value, AutomationTrigger):
        return value
    try:
        return AutomationTrigger(value)
    except ValueError:
        return value


@dataclass
class RuleAction:
    """Action to run when a rule matches. ``delay_minutes`` > 0 defers it."""

    type: str
    params: Dict[str, Any] = field(default_factory=dict)
    delay_minutes: int = 0

    @property
    def is_delayed(self) -> bool:
        return self.delay_minutes > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": str(getattr(self.type, "value", self.type)),
            "params": dict(self.params),
            "delay_minutes": self.delay_minutes,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RuleAction":
        return cls(
            type=data.get("type", ""),
            params=dict(data.get("params") or {}),
            delay_minutes=int(data.get("delay_minutes") or 0),
        )


class Automation:
    """
    Aggregate root for a single automation rule.

    Use Automation.create() for new rules (validates and records
    ``automation.created``) and Automation.reconstruct() when loading from
    storage (no validation, no events).
    """

    def __init__(
        self,
        id: UUID,
        automation_type: AutomationType,
        tenant_id: str,
        name: str,
        trigger: TriggerLike,
        pipeline_id: Optional[UUID] = None,
        description: str = "",
        conditions: Optional[List[RuleCondition]] = None,
        actions: Optional[List[RuleAction]] = None,
        priority: int = 0,
        enabled: bool = True,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        now = now_utc()
        self._id = id
        self._automation_type = automation_type
        self._tenant_id = tenant_id
        self._name = name
        self._trigger = trigger
        self._pipeline_id = pipeline_id
        self._description = description
        self._conditions: List[RuleCondition] = list(conditions or [])
        self._actions: List[RuleAction] = list(actions or [])
        self._priority = priority
        self._enabled = enabled
        self._created_at = created_at or now
        self._updated_at = updated_at or self._created_at
        self._events: List[DomainEvent] = []

    # ------------------------------------------------------------------ #
    # Factories
    # ------------------------------------------------------------------ #

    @classmethod
    def create(
        cls,
        automation_type: Union[AutomationType, str],
        tenant_id: str,
        name: str,
        trigger: TriggerLike,
        pipeline_id: Optional[UUID] = None,
    ) -> "Automation":
        """
        Create a new enabled rule with priority 0 and no conditions/actions.

        Raises:
            AutomationValidationError: If tenant_id, name, trigger or type is
                empty, the type is unknown, or a pipeline-scoped type has no
                pipeline_id
        """
        if not tenant_id:
            raise AutomationValidationError("tenant_id cannot be empty", field="tenant_id")
        if not name:
            raise AutomationValidationError("name cannot be empty", field="name")
        if not trigger:
            raise AutomationValidationError("trigger cannot be empty", field="trigger")
        if not automation_type:
            raise AutomationValidationError(
                "automation type cannot be empty", field="automation_type"
            )

        try:
            automation_type = AutomationType(automation_type)
        except ValueError as e:
            raise AutomationValidationError(
                f"invalid automation type: {automation_type}", field="automation_type"
            ) from e

        if automation_type.requires_pipeline and (pipeline_id is None or pipeline_id == NIL_UUID):
            raise AutomationValidationError(
                f"pipeline_id is required for '{automation_type.value}' automations",
                field="pipeline_id",
            )

        automation = cls(
            id=uuid4(),
            automation_type=automation_type,
            tenant_id=tenant_id,
            name=name,
            trigger=coerce_trigger(trigger),
            pipeline_id=pipeline_id,
        )
        automation._record(
            domain_events.automation_created(
                automation.id,
                tenant_id,
                name,
                automation.trigger_value,
                pipeline_id,
            )
        )
        return automation

    @classmethod
    def reconstruct(
        cls,
        id: UUID,
        automation_type: Union[AutomationType, str],
        tenant_id: str,
        name: str,
        trigger: TriggerLike,
        pipeline_id: Optional[UUID] = None,
        description: str = "",
        conditions: Optional[List[RuleCondition]] = None,
        actions: Optional[List[RuleAction]] = None,
        priority: int = 0,
        enabled: bool = True,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ) -> "Automation":
        """Rebuild a persisted rule. Does not validate and records no events."""
        return cls(
            id=id,
            automation_type=AutomationType(automation_type),
            tenant_id=tenant_id,
            name=name,
            trigger=coerce_trigger(trigger),
            pipeline_id=pipeline_id,
            description=description,
            conditions=conditions,
            actions=actions,
            priority=priority,
            enabled=enabled,
            created_at=created_at,
            updated_at=updated_at,
        )

    # ------------------------------------------------------------------ #
    # Read accessors
    # ------------------------------------------------------------------ #

    @property
    def id(self) -> UUID:
        return self._id

    @property
    def automation_type(self) -> AutomationType:
        return self._automation_type

    @property
    def tenant_id(self) -> str:
        return self._tenant_id

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def trigger(self) -> TriggerLike:
        return self._trigger

    @property
    def trigger_value(self) -> str:
        return str(getattr(self._trigger, "value", self._trigger))

    @property
    def pipeline_id(self) -> Optional[UUID]:
        return self._pipeline_id

    @property
    def conditions(self) -> List[RuleCondition]:
        return list(self._conditions)

    @property
    def actions(self) -> List[RuleAction]:
        return list(self._actions)

    @property
    def priority(self) -> int:
        return self._priority

    @property
    def enabled(self) -> bool:
        return self._enabled

    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        return self._updated_at

    # ------------------------------------------------------------------ #
    # Mutators
    # ------------------------------------------------------------------ #

    def add_condition(self, field: str, operator: str, value: Any) -> None:
        if not field:
            raise AutomationValidationError("condition field cannot be empty", field="field")
        if not operator:
            raise AutomationValidationError(
                "condition operator cannot be empty", field="operator"
            )
        self._conditions.append(RuleCondition(field=field, operator=operator, value=value))
        self._touch()

    def add_action(
        self,
        action_type: str,
        params: Optional[Dict[str, Any]] = None,
        delay_minutes: int = 0,
    ) -> None:
        if not action_type:
            raise AutomationValidationError("action type cannot be empty", field="type")
        if delay_minutes < 0:
            raise AutomationValidationError(
                "delay_minutes cannot be negative", field="delay_minutes"
            )
        self._actions.append(
            RuleAction(type=action_type, params=dict(params or {}), delay_minutes=delay_minutes)
        )
        self._touch()

    def set_conditions(self, conditions: List[RuleCondition]) -> None:
        conditions = list(conditions)
        if conditions == self._conditions:
            return
        self._conditions = conditions
        self._touch()

    def set_actions(self, actions: List[RuleAction]) -> None:
        actions = list(actions)
        if actions == self._actions:
            return
        for action in actions:
            if action.delay_minutes < 0:
                raise AutomationValidationError(
                    "delay_minutes cannot be negative", field="delay_minutes"
                )
        self._actions = actions
        self._touch()

    def update_description(self, description: str) -> None:
        if description == self._description:
            return
        self._description = description
        self._touch()

    def set_priority(self, priority: int) -> None:
        if priority < 0:
            raise AutomationValidationError("priority cannot be negative", field="priority")
        if priority == self._priority:
            return
        self._priority = priority
        self._touch()

    def enable(self) -> None:
        if self._enabled:
            return
        self._enabled = True
        self._touch()
        self._record(domain_events.automation_enabled(self._id, self._tenant_id))

    def disable(self) -> None:
        if not self._enabled:
            return
        self._enabled = False
        self._touch()
        self._record(domain_events.automation_disabled(self._id, self._tenant_id))

    # ------------------------------------------------------------------ #
    # Behaviour
    # ------------------------------------------------------------------ #

    def evaluate_conditions(self, context: Mapping[str, Any]) -> bool:
        """True when every condition holds (an empty list always matches)."""
        return evaluate_conditions(self._conditions, context)

    @property
    def domain_events(self) -> List[DomainEvent]:
        return list(self._events)

    def drain_events(self) -> List[DomainEvent]:
        drained, self._events = self._events, []
        return drained

    def clear_events(self) -> None:
        self._events = []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self._id),
            "automation_type": self._automation_type.value,
            "tenant_id": self._tenant_id,
            "pipeline_id": str(self._pipeline_id) if self._pipeline_id else None,
            "name": self._name,
            "description": self._description,
            "trigger": self.trigger_value,
            "conditions": [c.to_dict() for c in self._conditions],
            "actions": [a.to_dict() for a in self._actions],
            "priority": self._priority,
            "enabled": self._enabled,
            "created_at": self._created_at.isoformat(),
            "updated_at": self._updated_at.isoformat(),
        }

    def _touch(self) -> None:
        self._updated_at = now_utc()

    def _record(self, event: DomainEvent) -> None:
        self._events.append(event)

    def __repr__(self) -> str:
        return (
            f"Automation(id={self._id!s}, name={self._name!r}, "
            f"trigger={self.trigger_value!r}, priority={self._priority}, "
            f"enabled={self._enabled})"
        )
