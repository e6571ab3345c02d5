"""Domain model - automation rules, conditions and schedules."""

from .automation import (
    Automation,
    AutomationAction,
    AutomationTrigger,
    AutomationType,
    RuleAction,
)
from .conditions import (
    ConditionGroup,
    LogicOperator,
    RuleCondition,
    evaluate_condition,
    evaluate_condition_group,
)
from .events import DomainEvent
from .exceptions import (
    ActionValidationError,
    AutomationError,
    AutomationValidationError,
    ScheduleValidationError,
)
from .schedule import ScheduledAutomationRule, ScheduledRuleConfig, ScheduleType

__all__ = [
    "Automation",
    "AutomationAction",
    "AutomationTrigger",
    "AutomationType",
    "RuleAction",
    "ConditionGroup",
    "LogicOperator",
    "RuleCondition",
    "evaluate_condition",
    "evaluate_condition_group",
    "DomainEvent",
    "ActionValidationError",
    "AutomationError",
    "AutomationValidationError",
    "ScheduleValidationError",
    "ScheduledAutomationRule",
    "ScheduledRuleConfig",
    "ScheduleType",
]
