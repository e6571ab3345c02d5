"""Automation engine: actions, orchestration, rule management."""

from .actions import (
    ActionExecutionError,
    ActionExecutor,
    ActionExecutorRegistry,
    ActionServicesBundle,
    UnknownActionTypeError,
    available_actions,
    register_actions,
)
from .context import ActionContext, build_contact_context, build_session_context
from .delayed import DelayedActionScheduler, DelayedActionSchedulingError, InMemoryDelayedActionQueue
from .engine import ActionResult, AutomationEngine, EngineResult, RuleOutcome
from .integration import AutomationIntegration, SessionSnapshot
from .manager import (
    AutomationRuleManager,
    CreateRuleInput,
    DefaultRuleValidator,
    ImportRuleInput,
    RuleStatistics,
    UpdateRuleInput,
)
from .scheduled_runner import ScheduledRuleRunner, ScheduledRunSummary

__all__ = [
    "ActionExecutionError",
    "ActionExecutor",
    "ActionExecutorRegistry",
    "ActionServicesBundle",
    "UnknownActionTypeError",
    "available_actions",
    "register_actions",
    "ActionContext",
    "build_contact_context",
    "build_session_context",
    "DelayedActionScheduler",
    "DelayedActionSchedulingError",
    "InMemoryDelayedActionQueue",
    "ActionResult",
    "AutomationEngine",
    "EngineResult",
    "RuleOutcome",
    "AutomationIntegration",
    "SessionSnapshot",
    "AutomationRuleManager",
    "CreateRuleInput",
    "DefaultRuleValidator",
    "ImportRuleInput",
    "RuleStatistics",
    "UpdateRuleInput",
    "ScheduledRuleRunner",
    "ScheduledRunSummary",
]
