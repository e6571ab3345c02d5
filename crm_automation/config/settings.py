"""
Configuration loader for the automation engine.

Runtime settings come from environment variables. Seed rules can be kept
in a YAML file validated against a JSON Schema before they are turned into
Automation aggregates.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

import jsonschema
import yaml

from crm_automation.domain.automation import Automation, AutomationTrigger, RuleAction
from crm_automation.domain.conditions import RuleCondition
from crm_automation.domain.schedule import ScheduledAutomationRule, ScheduledRuleConfig
from crm_automation.utils.timezone import now_utc, to_zone

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Exception raised for configuration-related errors."""

    pass


DEFAULT_RULES_PATH = "config/automations.yaml"
DEFAULT_SCHEMA_PATH = "config/automations.schema.json"


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_number(name: str, default: str, cast=float):
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


class Settings:
    """
    Application settings, evaluated from the environment at construction.

    Environment variables:
        AUTOMATION_TABLE_NAME: DynamoDB table for rules (default "automation_rules")
        AWS_REGION: AWS region (default "us-east-1")
        WEBHOOK_TIMEOUT_SECONDS: Webhook request timeout (default 30)
        WEBHOOK_MAX_RETRIES: Webhook delivery attempts (default 3)
        DELAYED_ACTIONS_ENABLED: Queue delayed actions in-process (default true)
        SCHEDULE_TIMEZONE: Zone used to read schedule wall-clock fields (default "UTC")
        SCHEDULED_BATCH_SIZE: Max scheduled rules per poll (default unlimited)
        LOG_LEVEL: Structured logger level (default DEBUG)
        AUTOMATIONS_CONFIG_PATH / AUTOMATIONS_SCHEMA_PATH: Seed rule files
    """

    def __init__(self, region_name: Optional[str] = None):
        self.region_name = region_name or os.getenv("AWS_REGION", "us-east-1")
        self.table_name = os.getenv("AUTOMATION_TABLE_NAME", "automation_rules")
        self.webhook_timeout_seconds = _env_number("WEBHOOK_TIMEOUT_SECONDS", "30")
        self.webhook_max_retries = _env_number("WEBHOOK_MAX_RETRIES", "3", int)
        self.delayed_actions_enabled = _env_flag("DELAYED_ACTIONS_ENABLED", "true")
        self.schedule_timezone = os.getenv("SCHEDULE_TIMEZONE", "UTC")
        self.scheduled_batch_size = _env_number("SCHEDULED_BATCH_SIZE", "0", int) or None
        self.log_level = os.getenv("LOG_LEVEL", "DEBUG").upper()
        self.rules_config_path = os.getenv("AUTOMATIONS_CONFIG_PATH", DEFAULT_RULES_PATH)
        self.rules_schema_path = os.getenv("AUTOMATIONS_SCHEMA_PATH", DEFAULT_SCHEMA_PATH)
        self.automations: List[Dict[str, Any]] = []
        self.automations_schema: Dict[str, Any] = {}

        if self.webhook_max_retries < 1:
            raise ConfigurationError("WEBHOOK_MAX_RETRIES must be at least 1")

    def load_automations(
        self,
        rules_config_path: Optional[str] = None,
        schema_config_path: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Load automations from YAML configuration and validate against schema.

        Args:
            rules_config_path: Path to automations.yaml
            schema_config_path: Path to automations.schema.json

        Returns:
            The raw automation entries (also kept on ``self.automations``)

        Raises:
            FileNotFoundError: If config files not found
            ValueError: If YAML/JSON is invalid or does not match the schema
        """
        rules_config_path = rules_config_path or self.rules_config_path
        schema_config_path = schema_config_path or self.rules_schema_path

        try:
            with open(schema_config_path, "r", encoding="utf-8") as f:
                self.automations_schema = json.load(f)
                logger.debug(f"Loaded automations schema from {schema_config_path}")
        except FileNotFoundError:
            logger.error(f"Automations schema file not found: {schema_config_path}")
            raise
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in automations schema: {e}")
            raise ValueError(f"Invalid JSON in {schema_config_path}: {e}") from e

        try:
            with open(rules_config_path, "r", encoding="utf-8") as f:
                rules_config = yaml.safe_load(f)
        except FileNotFoundError:
            logger.error(f"Automations configuration file not found: {rules_config_path}")
            raise
        except yaml.YAMLError as e:
            logger.error(f"Invalid YAML in automations configuration: {e}")
            raise ValueError(f"Invalid YAML in {rules_config_path}: {e}") from e

        if not rules_config:
            logger.warning(f"Empty automations configuration: {rules_config_path}")
            self.automations = []
            return self.automations

        try:
            jsonschema.validate(instance=rules_config, schema=self.automations_schema)
        except jsonschema.ValidationError as e:
            logger.error(f"Automations configuration failed schema validation: {e.message}")
            raise ValueError(f"Automations configuration validation failed: {e.message}") from e
        except jsonschema.SchemaError as e:
            logger.error(f"Automations schema is invalid: {e.message}")
            raise ValueError(f"Automations schema is invalid: {e.message}") from e

        self.automations = rules_config.get("automations", [])
        logger.info(f"Loaded {len(self.automations)} automations from {rules_config_path}")
        return self.automations


def build_automations(
    entries: List[Dict[str, Any]],
    tz_name: str = "UTC",
) -> List[Union[Automation, ScheduledAutomationRule]]:
    """
    Turn validated YAML entries into aggregates ready to save.

    Entries with trigger ``scheduled`` and a ``schedule`` block become
    ScheduledAutomationRule instances. Their first run is computed from the
    current time in ``tz_name`` (normally ``Settings.schedule_timezone``).

    Raises:
        AutomationValidationError: If an entry violates a rule invariant
    """
    built: List[Union[Automation, ScheduledAutomationRule]] = []

    for entry in entries:
        pipeline_id = UUID(entry["pipeline_id"]) if entry.get("pipeline_id") else None
        rule = Automation.create(
            entry.get("type", "pipeline_based"),
            entry["tenant_id"],
            entry["name"],
            entry["trigger"],
            pipeline_id=pipeline_id,
        )
        rule.update_description(entry.get("description", ""))
        rule.set_conditions([RuleCondition.from_dict(c) for c in entry.get("conditions", [])])
        rule.set_actions([RuleAction.from_dict(a) for a in entry.get("actions", [])])
        rule.set_priority(entry.get("priority", 0))
        if not entry.get("enabled", True):
            rule.disable()

        schedule_data = entry.get("schedule")
        if schedule_data and rule.trigger_value == AutomationTrigger.SCHEDULED.value:
            schedule = ScheduledRuleConfig.from_dict(schedule_data)
            schedule.validate()
            built.append(
                ScheduledAutomationRule(
                    automation=rule,
                    schedule=schedule,
                    next_execution_at=schedule.next_execution(to_zone(now_utc(), tz_name)),
                )
            )
        else:
            built.append(rule)

    return built
