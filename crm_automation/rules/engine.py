"""
Automation Engine Core Module

Given a pipeline, a trigger and the context of a domain occurrence, the
engine:
- fetches the pipeline's rules for the trigger (priority order)
- skips disabled rules
- evaluates each rule's conditions (implicit AND)
- runs matching rules' actions in order, handing delayed actions to the
  DelayedActionScheduler
- isolates failures per rule and returns a structured EngineResult

Processing is synchronous and sequential; the engine keeps no state
between calls.
"""

import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import UUID

from crm_automation.database.repository import AutomationRepository
from crm_automation.domain import events as domain_events
from crm_automation.domain.automation import (
    Automation,
    AutomationTrigger,
    RuleAction,
    TriggerLike,
)
from crm_automation.domain.events import DomainEvent
from crm_automation.domain.exceptions import AutomationValidationError
from crm_automation.rules.actions import ActionExecutorRegistry
from crm_automation.rules.context import (
    ActionContext,
    build_contact_context,
    build_session_context,
)
from crm_automation.rules.delayed import (
    DelayedActionScheduler,
    DelayedActionSchedulingError,
    due_time,
)
from crm_automation.utils.logger import StructuredLogger, get_logger
from crm_automation.utils.timezone import now_utc


@dataclass
class ActionResult:
    """Result of executing (or scheduling) one action."""

    rule_id: str
    rule_name: str
    action_type: str
    success: bool
    message: str
    error: Optional[str] = None
    delayed: bool = False
    params: Dict[str, Any] = field(default_factory=dict)
    output: Optional[Dict[str, Any]] = None


@dataclass
class RuleOutcome:
    """What happened to one enabled rule during an evaluation pass."""

    rule_id: str
    rule_name: str
    priority: int
    matched: bool = False
    executed: bool = False
    error: Optional[str] = None
    actions: List[ActionResult] = field(default_factory=list)


@dataclass
class EngineResult:
    """Summary of one evaluate_and_execute call."""

    pipeline_id: Optional[str]
    trigger: str
    rules_evaluated: int = 0
    rules_executed: int = 0
    outcomes: List[RuleOutcome] = field(default_factory=list)
    events: List[DomainEvent] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def rules_failed(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.error)

    @property
    def action_results(self) -> List[ActionResult]:
        return [result for outcome in self.outcomes for result in outcome.actions]


def _trigger_value(trigger: TriggerLike) -> str:
    return str(getattr(trigger, "value", trigger))


class AutomationEngine:
    """
    Orchestrates rule evaluation and action dispatch for a trigger.

    Example:
        engine = AutomationEngine(repository, registry, delayed_scheduler=queue)
        result = engine.process_session_event(
            pipeline_id, AutomationTrigger.SESSION_ENDED,
            session_id, contact_id, channel_id, "tenant-1",
            metadata={"message_count": 4},
        )
    """

    def __init__(
        self,
        repository: AutomationRepository,
        registry: ActionExecutorRegistry,
        delayed_scheduler: Optional[DelayedActionScheduler] = None,
        logger: Optional[StructuredLogger] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        """
        Initialize the engine.

        Args:
            repository: Source of automation rules
            registry: Executors for immediate actions
            delayed_scheduler: Receives actions with delay_minutes > 0; when
                None, delayed actions fail the rule that owns them
            logger: Structured logger (default: module logger)
            clock: Returns "now"; injectable for tests
        """
        self.repository = repository
        self.registry = registry
        self.delayed_scheduler = delayed_scheduler
        self.logger = logger or get_logger(__name__)
        self.clock = clock

    # ------------------------------------------------------------------ #
    # Core
    # ------------------------------------------------------------------ #

    def evaluate_and_execute(
        self,
        pipeline_id: UUID,
        trigger: TriggerLike,
        evaluation_context: Mapping[str, Any],
        action_context: Optional[ActionContext] = None,
    ) -> EngineResult:
        """
        Evaluate every enabled rule for (pipeline, trigger) and run matches.

        Args:
            pipeline_id: Pipeline whose rules are considered
            trigger: Trigger that fired
            evaluation_context: Field values conditions are evaluated against
            action_context: Identifiers for actions; rule id/pipeline/tenant
                are overwritten per matched rule

        Returns:
            EngineResult with per-rule outcomes

        Raises:
            RepositoryError: If the rules cannot be fetched
        """
        trigger_value = _trigger_value(trigger)
        log_context = {"pipeline_id": str(pipeline_id), "trigger": trigger_value}
        start_time = time.time()

        try:
            rules = self.repository.find_by_pipeline_and_trigger(pipeline_id, trigger)
        except Exception as e:
            self.logger.error(
                "Failed to fetch automation rules",
                operation="evaluate_and_execute",
                context=log_context,
                error=str(e),
            )
            raise

        result = EngineResult(pipeline_id=str(pipeline_id), trigger=trigger_value)

        enabled_rules = [rule for rule in rules if rule.is_enabled()]
        if not enabled_rules:
            self.logger.debug(
                "No enabled rules for trigger",
                operation="evaluate_and_execute",
                context={**log_context, "rules_found": len(rules)},
            )
            return result

        if action_context is None:
            action_context = ActionContext(
                tenant_id=str(evaluation_context.get("tenant_id", "")),
                pipeline_id=pipeline_id,
            )
        if action_context.trigger is None:
            action_context = replace(action_context, trigger=trigger_value)

        for rule in enabled_rules:
            result.rules_evaluated += 1
            try:
                outcome = self._evaluate_and_execute_rule(
                    rule, evaluation_context, action_context, result.events
                )
            except Exception as e:
                # Anything not already captured per action (e.g. a broken
                # condition payload) still must not stop the remaining rules
                outcome = RuleOutcome(
                    rule_id=str(rule.id),
                    rule_name=rule.name,
                    priority=rule.priority,
                    error=str(e),
                )
                result.events.append(domain_events.rule_failed(rule.id, rule.tenant_id, str(e)))

            if outcome.error:
                self.logger.error(
                    "Automation rule failed",
                    operation="evaluate_and_execute",
                    context={**log_context, "rule_id": outcome.rule_id, "rule_name": rule.name},
                    error=outcome.error,
                )
            if outcome.executed:
                result.rules_executed += 1
            result.outcomes.append(outcome)

        result.duration_ms = (time.time() - start_time) * 1000
        self.logger.info(
            f"Automation evaluation complete: {result.rules_executed}/{result.rules_evaluated} rules executed",
            operation="evaluate_and_execute",
            context={
                **log_context,
                "rules_evaluated": result.rules_evaluated,
                "rules_executed": result.rules_executed,
                "rules_failed": result.rules_failed,
            },
            duration_ms=result.duration_ms,
        )
        return result

    def execute_rule(
        self,
        rule: Automation,
        evaluation_context: Mapping[str, Any],
        action_context: ActionContext,
    ) -> EngineResult:
        """
        Evaluate and run a single, already loaded rule.

        Used by the scheduled rule runner so a due rule fires alone instead
        of every scheduled rule of its pipeline. Disabled rules are skipped.
        """
        result = EngineResult(
            pipeline_id=str(rule.pipeline_id) if rule.pipeline_id else None,
            trigger=rule.trigger_value,
        )
        if not rule.is_enabled():
            return result
        if action_context.trigger is None:
            action_context = replace(action_context, trigger=rule.trigger_value)

        result.rules_evaluated = 1
        outcome = self._evaluate_and_execute_rule(
            rule, evaluation_context, action_context, result.events
        )
        if outcome.executed:
            result.rules_executed = 1
        result.outcomes.append(outcome)
        return result

    def _evaluate_and_execute_rule(
        self,
        rule: Automation,
        evaluation_context: Mapping[str, Any],
        action_context: ActionContext,
        events: List[DomainEvent],
    ) -> RuleOutcome:
        outcome = RuleOutcome(rule_id=str(rule.id), rule_name=rule.name, priority=rule.priority)

        if not rule.evaluate_conditions(evaluation_context):
            self.logger.debug(
                f"Rule conditions not met: {rule.name}",
                operation="evaluate_rule",
                context={"rule_id": outcome.rule_id},
            )
            return outcome

        outcome.matched = True
        events.append(
            domain_events.rule_triggered(
                rule.id, rule.tenant_id, rule.trigger_value, dict(evaluation_context)
            )
        )
        bound_context = action_context.for_rule(rule)

        for action in rule.actions:
            action_result = self._run_action(rule, action, bound_context)
            outcome.actions.append(action_result)
            if not action_result.success:
                # remaining actions of this rule are skipped
                outcome.error = action_result.error
                events.append(
                    domain_events.rule_failed(rule.id, rule.tenant_id, action_result.error or "")
                )
                return outcome

        outcome.executed = True
        events.append(domain_events.rule_executed(rule.id, rule.tenant_id, len(outcome.actions)))
        return outcome

    def _run_action(
        self, rule: Automation, action: RuleAction, context: ActionContext
    ) -> ActionResult:
        action_type = str(getattr(action.type, "value", action.type))
        log_context = {"rule_id": str(rule.id), "action_type": action_type}

        if action.is_delayed:
            try:
                delayed = self._schedule_delayed_action(action, context)
            except Exception as e:
                self.logger.error(
                    "Failed to schedule delayed action",
                    operation="schedule_delayed_action",
                    context=log_context,
                    error=str(e),
                )
                return ActionResult(
                    rule_id=str(rule.id),
                    rule_name=rule.name,
                    action_type=action_type,
                    success=False,
                    message="Delayed action scheduling failed",
                    error=str(e),
                    delayed=True,
                    params=dict(action.params),
                )
            return ActionResult(
                rule_id=str(rule.id),
                rule_name=rule.name,
                action_type=action_type,
                success=True,
                message=f"Scheduled for {delayed.run_at.isoformat()}",
                delayed=True,
                params=dict(action.params),
            )

        try:
            output = self.registry.execute(action, context)
        except Exception as e:
            self.logger.error(
                "Action execution failed",
                operation="execute_action",
                context=log_context,
                error=str(e),
            )
            return ActionResult(
                rule_id=str(rule.id),
                rule_name=rule.name,
                action_type=action_type,
                success=False,
                message="Action execution failed",
                error=str(e),
                params=dict(action.params),
            )

        self.logger.debug("Action executed", operation="execute_action", context=log_context)
        return ActionResult(
            rule_id=str(rule.id),
            rule_name=rule.name,
            action_type=action_type,
            success=True,
            message="Action executed",
            params=dict(action.params),
            output=output,
        )

    def _schedule_delayed_action(self, action: RuleAction, context: ActionContext):
        if self.delayed_scheduler is None:
            raise DelayedActionSchedulingError("no delayed action scheduler configured")

        run_at = due_time(action, self.clock())
        delayed = self.delayed_scheduler.schedule(action, context, run_at)
        self.logger.info(
            "Delayed action scheduled",
            operation="schedule_delayed_action",
            context={
                "rule_id": str(context.rule_id),
                "action_type": str(action.type),
                "delay_minutes": action.delay_minutes,
                "scheduled_for": run_at.isoformat(),
            },
        )
        return delayed

    # ------------------------------------------------------------------ #
    # Convenience entry points
    # ------------------------------------------------------------------ #

    def process_session_event(
        self,
        pipeline_id: UUID,
        trigger: TriggerLike,
        session_id: UUID,
        contact_id: UUID,
        channel_id: Optional[UUID],
        tenant_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> EngineResult:
        """Evaluate rules for a session-scoped occurrence."""
        metadata = dict(metadata or {})
        evaluation_context = build_session_context(
            session_id, contact_id, channel_id, tenant_id, self.clock(), metadata
        )
        action_context = ActionContext(
            tenant_id=tenant_id,
            session_id=session_id,
            contact_id=contact_id,
            channel_id=channel_id,
            pipeline_id=pipeline_id,
            trigger=_trigger_value(trigger),
            metadata=metadata,
        )
        return self.evaluate_and_execute(pipeline_id, trigger, evaluation_context, action_context)

    def process_contact_event(
        self,
        pipeline_id: UUID,
        trigger: TriggerLike,
        contact_id: UUID,
        tenant_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> EngineResult:
        """Evaluate rules for a contact-scoped occurrence (no active session)."""
        metadata = dict(metadata or {})
        evaluation_context = build_contact_context(contact_id, tenant_id, self.clock(), metadata)
        action_context = ActionContext(
            tenant_id=tenant_id,
            contact_id=contact_id,
            pipeline_id=pipeline_id,
            trigger=_trigger_value(trigger),
            metadata=metadata,
        )
        return self.evaluate_and_execute(pipeline_id, trigger, evaluation_context, action_context)

    def process_scheduled_trigger(
        self, pipeline_id: UUID, metadata: Dict[str, Any]
    ) -> EngineResult:
        """
        Evaluate ``scheduled`` rules of a pipeline.

        Raises:
            AutomationValidationError: If metadata has no string tenant_id
        """
        tenant_id = metadata.get("tenant_id")
        if not isinstance(tenant_id, str) or not tenant_id:
            raise AutomationValidationError("tenant_id not found in metadata", field="tenant_id")

        evaluation_context: Dict[str, Any] = {"occurred_at": self.clock().isoformat()}
        evaluation_context.update(metadata)
        action_context = ActionContext(
            tenant_id=tenant_id,
            pipeline_id=pipeline_id,
            trigger=AutomationTrigger.SCHEDULED.value,
            metadata=dict(metadata),
        )
        return self.evaluate_and_execute(
            pipeline_id, AutomationTrigger.SCHEDULED, evaluation_context, action_context
        )
