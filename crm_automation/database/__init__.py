"""Database module - repository pattern for automation rules."""

from .dynamodb_client import DynamoDBAutomationRepository
from .exceptions import (
    AccessDeniedError,
    NetworkError,
    NotFoundError,
    PipelineNotFoundError,
    RepositoryError,
    RuleNotFoundError,
    SessionNotFoundError,
    ThrottlingError,
)
from .repository import (
    AutomationRepository,
    InMemoryAutomationRepository,
    ScheduledRuleRepository,
)

__all__ = [
    "DynamoDBAutomationRepository",
    "AccessDeniedError",
    "NetworkError",
    "NotFoundError",
    "PipelineNotFoundError",
    "RepositoryError",
    "RuleNotFoundError",
    "SessionNotFoundError",
    "ThrottlingError",
    "AutomationRepository",
    "InMemoryAutomationRepository",
    "ScheduledRuleRepository",
]
