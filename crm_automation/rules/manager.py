"""
Rule management for automation rules.

AutomationRuleManager is the application-facing API for creating,
updating, listing and reorganizing rules. Every rule is validated with a
RuleValidator before it is saved, and domain events are drained after each
save.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol
from uuid import UUID

import jsonschema

from crm_automation.database.exceptions import PipelineNotFoundError, RuleNotFoundError
from crm_automation.database.repository import AutomationRepository, ScheduledRuleRepository
from crm_automation.domain.automation import (
    Automation,
    AutomationTrigger,
    AutomationType,
    RuleAction,
    TriggerLike,
)
from crm_automation.domain.conditions import RuleCondition, evaluate_conditions
from crm_automation.domain.events import DomainEvent
from crm_automation.domain.exceptions import AutomationValidationError
from crm_automation.domain.schedule import ScheduledAutomationRule, ScheduledRuleConfig, ScheduleType
from crm_automation.domain.triggers import TriggerRegistry
from crm_automation.utils.logger import StructuredLogger, get_logger
from crm_automation.utils.timezone import now_utc, to_zone


# Shape of export_rule() output, enforced on import_rule()
RULE_EXPORT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["name", "trigger", "actions"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "description": {"type": "string"},
        "trigger": {"type": "string", "minLength": 1},
        "priority": {"type": "integer", "minimum": 0},
        "conditions": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["field", "operator"],
                "properties": {
                    "field": {"type": "string"},
                    "operator": {"type": "string"},
                },
            },
        },
        "actions": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["type"],
                "properties": {
                    "type": {"type": "string"},
                    "params": {"type": "object"},
                    "delay_minutes": {"type": "integer", "minimum": 0},
                },
            },
        },
    },
}


class PipelineLookup(Protocol):
    def exists(self, pipeline_id: UUID) -> bool: ...


class EventPublisher(Protocol):
    def publish(self, event: DomainEvent) -> None: ...


# ============================================================================
# Inputs / outputs
# ============================================================================


@dataclass
class CreateRuleInput:
    pipeline_id: UUID
    tenant_id: str
    name: str
    trigger: TriggerLike
    description: str = ""
    conditions: List[RuleCondition] = field(default_factory=list)
    actions: List[RuleAction] = field(default_factory=list)
    priority: int = 0
    enabled: bool = True
    automation_type: AutomationType = AutomationType.PIPELINE_BASED
    # only used when trigger is "scheduled"
    schedule: Optional[ScheduledRuleConfig] = None


@dataclass
class UpdateRuleInput:
    """Fields left as None are not changed."""

    description: Optional[str] = None
    conditions: Optional[List[RuleCondition]] = None
    actions: Optional[List[RuleAction]] = None
    priority: Optional[int] = None
    enabled: Optional[bool] = None


@dataclass
class ImportRuleInput:
    pipeline_id: UUID
    tenant_id: str
    rule_json: str
    enabled: bool = False


@dataclass
class RuleStatistics:
    total: int = 0
    enabled: int = 0
    disabled: int = 0
    by_trigger: Dict[str, int] = field(default_factory=dict)
    average_conditions: float = 0.0
    average_actions: float = 0.0


@dataclass
class BulkOperationResult:
    succeeded: List[UUID] = field(default_factory=list)
    failed: Dict[UUID, str] = field(default_factory=dict)


# ============================================================================
# Validation
# ============================================================================


class DefaultRuleValidator:
    """
    Structural checks applied before a rule is saved.

    - trigger must be known to the TriggerRegistry
    - at least one action
    - every condition has a field and an operator
    - every action has a type and a non-negative delay
    - when ``action_types`` is given (typically
      ``ActionExecutorRegistry.registered_types()``), every action type has an
      executor
    """

    def __init__(
        self,
        trigger_registry: Optional[TriggerRegistry] = None,
        action_types: Optional[Iterable[str]] = None,
    ):
        self.trigger_registry = trigger_registry or TriggerRegistry()
        self.action_types = set(action_types) if action_types is not None else None

    def validate_rule(self, rule: Automation) -> None:
        if not self.trigger_registry.is_valid_trigger(rule.trigger_value):
            raise AutomationValidationError(
                f"invalid trigger: {rule.trigger_value} (not registered)", field="trigger"
            )

        if not rule.actions:
            raise AutomationValidationError("rule must have at least one action", field="actions")

        for index, condition in enumerate(rule.conditions):
            if not condition.field:
                raise AutomationValidationError(
                    f"condition {index}: field is required", field="conditions"
                )
            if not condition.operator:
                raise AutomationValidationError(
                    f"condition {index}: operator is required", field="conditions"
                )

        for index, action in enumerate(rule.actions):
            if not action.type:
                raise AutomationValidationError(
                    f"action {index}: type is required", field="actions"
                )
            if action.delay_minutes < 0:
                raise AutomationValidationError(
                    f"action {index}: delay cannot be negative", field="actions"
                )
            action_type = str(getattr(action.type, "value", action.type))
            if self.action_types is not None and action_type not in self.action_types:
                raise AutomationValidationError(
                    f"action {index}: no executor registered for '{action_type}'",
                    field="actions",
                )

    def validate_schedule(self, schedule: ScheduledRuleConfig) -> None:
        schedule.validate()


def _detached_copy(rule: Automation) -> Automation:
    return Automation.reconstruct(
        id=rule.id,
        automation_type=rule.automation_type,
        tenant_id=rule.tenant_id,
        name=rule.name,
        trigger=rule.trigger,
        pipeline_id=rule.pipeline_id,
        description=rule.description,
        conditions=list(rule.conditions),
        actions=list(rule.actions),
        priority=rule.priority,
        enabled=rule.enabled,
        created_at=rule.created_at,
        updated_at=rule.updated_at,
    )


def _apply_update(rule: Automation, data: UpdateRuleInput) -> None:
    if data.description is not None:
        rule.update_description(data.description)
    if data.conditions is not None:
        rule.set_conditions(data.conditions)
    if data.actions is not None:
        rule.set_actions(data.actions)
    if data.priority is not None:
        rule.set_priority(data.priority)
    if data.enabled is not None:
        if data.enabled:
            rule.enable()
        else:
            rule.disable()


# ============================================================================
# Manager
# ============================================================================


class AutomationRuleManager:
    def __init__(
        self,
        repository: AutomationRepository,
        pipelines: Optional[PipelineLookup] = None,
        validator: Optional[DefaultRuleValidator] = None,
        event_publisher: Optional[EventPublisher] = None,
        logger: Optional[StructuredLogger] = None,
        schedule_timezone: str = "UTC",
    ):
        """
        Args:
            repository: Rule storage; scheduled rules additionally need a
                ScheduledRuleRepository implementation
            pipelines: Existence check for pipelines (skipped when None)
            validator: Rule validator (default: DefaultRuleValidator)
            event_publisher: Receives drained domain events after saves
            logger: Structured logger
            schedule_timezone: Zone in which schedule hours and minutes are read
        """
        self.repository = repository
        self.pipelines = pipelines
        self.validator = validator or DefaultRuleValidator()
        self.event_publisher = event_publisher
        self.logger = logger or get_logger(__name__)
        self.schedule_timezone = schedule_timezone

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _save(self, rule: Automation) -> None:
        self.repository.save(rule)
        self._publish(rule)

    def _publish(self, rule: Automation) -> None:
        events = rule.drain_events()
        if self.event_publisher is None:
            return
        for event in events:
            self.event_publisher.publish(event)

    def _require_rule(self, rule_id: UUID) -> Automation:
        rule = self.repository.find_by_id(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    # ------------------------------------------------------------------ #
    # CRUD
    # ------------------------------------------------------------------ #

    def create_rule(self, data: CreateRuleInput) -> Automation:
        """
        Create, validate and save a rule.

        Raises:
            PipelineNotFoundError: If the pipeline does not exist
            AutomationValidationError: If the rule or its schedule is invalid
        """
        if self.pipelines is not None and not self.pipelines.exists(data.pipeline_id):
            raise PipelineNotFoundError(data.pipeline_id)

        rule = Automation.create(
            data.automation_type,
            data.tenant_id,
            data.name,
            data.trigger,
            pipeline_id=data.pipeline_id,
        )
        if data.description:
            rule.update_description(data.description)
        if data.conditions:
            rule.set_conditions(data.conditions)
        if data.actions:
            rule.set_actions(data.actions)
        rule.set_priority(data.priority)
        if not data.enabled:
            rule.disable()

        self.validator.validate_rule(rule)

        scheduled = None
        if data.schedule is not None and rule.trigger_value == AutomationTrigger.SCHEDULED.value:
            self.validator.validate_schedule(data.schedule)
            if not isinstance(self.repository, ScheduledRuleRepository):
                raise AutomationValidationError(
                    "repository does not support scheduled rules", field="schedule"
                )
            scheduled = ScheduledAutomationRule(
                automation=rule,
                schedule=data.schedule,
                next_execution_at=data.schedule.next_execution(
                    to_zone(now_utc(), self.schedule_timezone)
                ),
            )
            if data.schedule.type == ScheduleType.CRON:
                self.logger.warning(
                    "Cron schedules are not supported; rule will never run",
                    operation="create_rule",
                    context={"rule_id": str(rule.id), "cron_expr": data.schedule.cron_expr},
                )

        if scheduled is not None:
            self.repository.save_scheduled(scheduled)
            self._publish(rule)
        else:
            self._save(rule)

        self.logger.info(
            "Automation rule created",
            operation="create_rule",
            context={
                "rule_id": str(rule.id),
                "pipeline_id": str(data.pipeline_id),
                "trigger": rule.trigger_value,
                "scheduled": scheduled is not None,
            },
        )
        return rule

    def update_rule(self, rule_id: UUID, data: UpdateRuleInput) -> Automation:
        """
        Apply the non-None fields of ``data`` to a rule.

        The update is checked on a copy first, so a rejected update leaves the
        stored rule untouched.

        Raises:
            RuleNotFoundError: If the rule does not exist
            AutomationValidationError: If the updated rule would be invalid
        """
        rule = self._require_rule(rule_id)

        candidate = _detached_copy(rule)
        _apply_update(candidate, data)
        self.validator.validate_rule(candidate)

        _apply_update(rule, data)
        self._save(rule)
        self.logger.info("Automation rule updated", operation="update_rule", context={"rule_id": str(rule_id)})
        return rule

    def delete_rule(self, rule_id: UUID) -> None:
        self._require_rule(rule_id)
        self.repository.delete(rule_id)
        self.logger.info("Automation rule deleted", operation="delete_rule", context={"rule_id": str(rule_id)})

    def get_rule(self, rule_id: UUID) -> Automation:
        return self._require_rule(rule_id)

    def list_rules_by_pipeline(self, pipeline_id: UUID) -> List[Automation]:
        return self.repository.find_by_pipeline(pipeline_id)

    def list_enabled_rules(self, pipeline_id: UUID) -> List[Automation]:
        return self.repository.find_enabled_by_pipeline(pipeline_id)

    def list_rules_by_tenant(self, tenant_id: str) -> List[Automation]:
        return self.repository.find_by_tenant(tenant_id)

    # ------------------------------------------------------------------ #
    # Enable / disable
    # ------------------------------------------------------------------ #

    def enable_rule(self, rule_id: UUID) -> Automation:
        rule = self._require_rule(rule_id)
        rule.enable()
        self._save(rule)
        return rule

    def disable_rule(self, rule_id: UUID) -> Automation:
        rule = self._require_rule(rule_id)
        rule.disable()
        self._save(rule)
        return rule

    def bulk_enable_rules(self, rule_ids: List[UUID]) -> BulkOperationResult:
        return self._bulk(rule_ids, self.enable_rule, "bulk_enable_rules")

    def bulk_disable_rules(self, rule_ids: List[UUID]) -> BulkOperationResult:
        return self._bulk(rule_ids, self.disable_rule, "bulk_disable_rules")

    def _bulk(self, rule_ids: List[UUID], operation, name: str) -> BulkOperationResult:
        result = BulkOperationResult()
        for rule_id in rule_ids:
            try:
                operation(rule_id)
                result.succeeded.append(rule_id)
            except Exception as e:
                result.failed[rule_id] = str(e)
                self.logger.warning(
                    "Bulk operation failed for rule",
                    operation=name,
                    context={"rule_id": str(rule_id)},
                    error=str(e),
                )
        return result

    # ------------------------------------------------------------------ #
    # Copy / export / import
    # ------------------------------------------------------------------ #

    def duplicate_rule(self, source_rule_id: UUID, new_name: str) -> Automation:
        """Copy a rule as a disabled rule one priority step lower."""
        source = self._require_rule(source_rule_id)
        if source.pipeline_id is None:
            raise AutomationValidationError("source rule has no pipeline ID", field="pipeline_id")

        return self.create_rule(
            CreateRuleInput(
                pipeline_id=source.pipeline_id,
                tenant_id=source.tenant_id,
                name=new_name,
                trigger=source.trigger,
                description=source.description + " (copy)",
                conditions=[RuleCondition(c.field, c.operator, c.value) for c in source.conditions],
                actions=[RuleAction(a.type, dict(a.params), a.delay_minutes) for a in source.actions],
                priority=source.priority + 1,
                enabled=False,
                automation_type=source.automation_type,
            )
        )

    def export_rule(self, rule_id: UUID) -> str:
        rule = self._require_rule(rule_id)
        data = {
            "name": rule.name,
            "description": rule.description,
            "trigger": rule.trigger_value,
            "conditions": [c.to_dict() for c in rule.conditions],
            "actions": [a.to_dict() for a in rule.actions],
            "priority": rule.priority,
        }
        return json.dumps(data, indent=2, ensure_ascii=False)

    def import_rule(self, data: ImportRuleInput) -> Automation:
        """
        Create a rule from export_rule() JSON.

        Raises:
            AutomationValidationError: If the JSON is malformed or does not
                match the export format
        """
        try:
            payload = json.loads(data.rule_json)
        except json.JSONDecodeError as e:
            raise AutomationValidationError(f"invalid JSON: {e}", field="rule_json") from e

        try:
            jsonschema.validate(instance=payload, schema=RULE_EXPORT_SCHEMA)
        except jsonschema.ValidationError as e:
            raise AutomationValidationError(
                f"invalid rule export: {e.message}", field="rule_json"
            ) from e

        return self.create_rule(
            CreateRuleInput(
                pipeline_id=data.pipeline_id,
                tenant_id=data.tenant_id,
                name=payload["name"],
                trigger=payload["trigger"],
                description=payload.get("description", ""),
                conditions=[RuleCondition.from_dict(c) for c in payload.get("conditions", [])],
                actions=[RuleAction.from_dict(a) for a in payload["actions"]],
                priority=payload.get("priority", 0),
                enabled=data.enabled,
            )
        )

    # ------------------------------------------------------------------ #
    # Ordering / reporting
    # ------------------------------------------------------------------ #

    def reorder_rules(self, pipeline_id: UUID, rule_order: List[UUID]) -> None:
        """Give each listed rule its list index as priority. Unknown ids are ignored."""
        rules = {rule.id: rule for rule in self.repository.find_by_pipeline(pipeline_id)}

        for new_priority, rule_id in enumerate(rule_order):
            rule = rules.get(rule_id)
            if rule is None:
                continue
            try:
                rule.set_priority(new_priority)
                self._save(rule)
            except Exception as e:
                self.logger.error(
                    "Failed to save rule with new priority",
                    operation="reorder_rules",
                    context={"rule_id": str(rule_id)},
                    error=str(e),
                )

        self.logger.info(
            "Rules reordered",
            operation="reorder_rules",
            context={"pipeline_id": str(pipeline_id), "count": len(rule_order)},
        )

    def get_rule_statistics(self, pipeline_id: UUID) -> RuleStatistics:
        rules = self.repository.find_by_pipeline(pipeline_id)
        stats = RuleStatistics(total=len(rules))

        total_conditions = 0
        total_actions = 0
        for rule in rules:
            if rule.is_enabled():
                stats.enabled += 1
            else:
                stats.disabled += 1
            stats.by_trigger[rule.trigger_value] = stats.by_trigger.get(rule.trigger_value, 0) + 1
            total_conditions += len(rule.conditions)
            total_actions += len(rule.actions)

        if rules:
            stats.average_conditions = total_conditions / len(rules)
            stats.average_actions = total_actions / len(rules)
        return stats

    def test_rule_conditions(self, rule_id: UUID, test_context: Mapping[str, Any]) -> bool:
        """Dry-run a rule's conditions against ``test_context``; no actions run."""
        rule = self._require_rule(rule_id)
        return evaluate_conditions(rule.conditions, test_context)
