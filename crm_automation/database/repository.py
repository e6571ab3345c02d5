"""
Repository interfaces for automation rules and an in-memory implementation.

Every query that returns several rules returns them ordered by priority
ascending (lower value runs first); ties keep creation order.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from crm_automation.domain.automation import Automation, AutomationTrigger, TriggerLike
from crm_automation.domain.schedule import ScheduledAutomationRule


def _trigger_value(trigger: TriggerLike) -> str:
    return str(getattr(trigger, "value", trigger))


def sort_by_priority(rules: List[Automation]) -> List[Automation]:
    return sorted(rules, key=lambda rule: (rule.priority, rule.created_at))


class AutomationRepository(ABC):
    """Storage port for Automation aggregates."""

    @abstractmethod
    def save(self, automation: Automation) -> None:
        """Insert or replace ``automation``."""

    @abstractmethod
    def find_by_id(self, automation_id: UUID) -> Optional[Automation]:
        """Return the rule or None if it does not exist."""

    @abstractmethod
    def find_by_pipeline(self, pipeline_id: UUID) -> List[Automation]:
        """All rules of a pipeline, by priority."""

    @abstractmethod
    def find_by_pipeline_and_trigger(
        self, pipeline_id: UUID, trigger: TriggerLike
    ) -> List[Automation]:
        """Rules of a pipeline for one trigger, by priority (enabled or not)."""

    @abstractmethod
    def find_by_tenant(self, tenant_id: str) -> List[Automation]:
        """All rules of a tenant, by priority."""

    @abstractmethod
    def delete(self, automation_id: UUID) -> bool:
        """Delete a rule. Returns False if it did not exist."""

    def find_enabled_by_pipeline(self, pipeline_id: UUID) -> List[Automation]:
        return [rule for rule in self.find_by_pipeline(pipeline_id) if rule.is_enabled()]


class ScheduledRuleRepository(ABC):
    """Storage port for ScheduledAutomationRule recurrence state."""

    @abstractmethod
    def save_scheduled(self, rule: ScheduledAutomationRule) -> None:
        """Insert or replace a scheduled rule (automation + schedule state)."""

    @abstractmethod
    def find_scheduled_by_id(self, automation_id: UUID) -> Optional[ScheduledAutomationRule]:
        """Return the scheduled rule or None."""

    @abstractmethod
    def find_due_scheduled(
        self, now: datetime, limit: Optional[int] = None
    ) -> List[ScheduledAutomationRule]:
        """
        Enabled scheduled rules with next_execution_at <= now, ordered by
        next_execution_at then priority.
        """


class InMemoryAutomationRepository(AutomationRepository, ScheduledRuleRepository):
    """
    Dict-backed repository.

    Suitable for tests and single-process embedding. Rules are stored by
    reference, so callers must save() after mutating to mirror the
    behaviour of persistent backends.
    """

    def __init__(self) -> None:
        self._rules: Dict[UUID, Automation] = {}
        self._scheduled: Dict[UUID, ScheduledAutomationRule] = {}

    def save(self, automation):
        self._rules[automation.id] = automation
        scheduled = self._scheduled.get(automation.id)
        if scheduled is not None:
            scheduled.automation = automation

    def find_by_id(self, automation_id):
        return self._rules.get(automation_id)

    def find_by_pipeline(self, pipeline_id):
        return sort_by_priority([r for r in self._rules.values() if r.pipeline_id == pipeline_id])

    def find_by_pipeline_and_trigger(self, pipeline_id, trigger):
        wanted = _trigger_value(trigger)
        return [r for r in self.find_by_pipeline(pipeline_id) if r.trigger_value == wanted]

    def find_by_tenant(self, tenant_id):
        return sort_by_priority([r for r in self._rules.values() if r.tenant_id == tenant_id])

    def delete(self, automation_id):
        self._scheduled.pop(automation_id, None)
        return self._rules.pop(automation_id, None) is not None

    def save_scheduled(self, rule):
        self._scheduled[rule.id] = rule
        self._rules[rule.id] = rule.automation

    def find_scheduled_by_id(self, automation_id):
        return self._scheduled.get(automation_id)

    def find_due_scheduled(self, now, limit=None):
        due = [
            rule
            for rule in self._scheduled.values()
            if rule.is_enabled()
            and rule.automation.trigger_value == AutomationTrigger.SCHEDULED.value
            and rule.next_execution_at is not None
            and rule.next_execution_at <= now
        ]
        due.sort(key=lambda rule: (rule.next_execution_at, rule.priority))
        return due[:limit] if limit else due
