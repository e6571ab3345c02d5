"""
Unit tests for configuration loader (crm_automation/config/settings.py)

Tests covering:
- Settings defaults and environment overrides
- Seed automation loading with schema validation
- Building aggregates from configuration entries
"""

from pathlib import Path

import pytest
import pytz

from crm_automation.config.settings import ConfigurationError, Settings, build_automations
from crm_automation.domain.automation import Automation, AutomationTrigger
from crm_automation.domain.exceptions import AutomationValidationError, ScheduleValidationError
from crm_automation.domain.schedule import ScheduledAutomationRule, ScheduleType, sunday_weekday

CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
RULES_PATH = CONFIG_DIR / "automations.yaml"
SCHEMA_PATH = CONFIG_DIR / "automations.schema.json"

ENV_VARS = [
    "AWS_REGION",
    "AUTOMATION_TABLE_NAME",
    "WEBHOOK_TIMEOUT_SECONDS",
    "WEBHOOK_MAX_RETRIES",
    "DELAYED_ACTIONS_ENABLED",
    "SCHEDULE_TIMEZONE",
    "SCHEDULED_BATCH_SIZE",
    "LOG_LEVEL",
    "AUTOMATIONS_CONFIG_PATH",
    "AUTOMATIONS_SCHEMA_PATH",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start every test from default settings."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    def test_defaults(self):
        settings = Settings()

        assert settings.region_name == "us-east-1"
        assert settings.table_name == "automation_rules"
        assert settings.webhook_timeout_seconds == 30.0
        assert settings.webhook_max_retries == 3
        assert settings.delayed_actions_enabled is True
        assert settings.schedule_timezone == "UTC"
        assert settings.scheduled_batch_size is None
        assert settings.log_level == "DEBUG"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("AUTOMATION_TABLE_NAME", "rules-dev")
        monkeypatch.setenv("WEBHOOK_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("DELAYED_ACTIONS_ENABLED", "false")
        monkeypatch.setenv("SCHEDULE_TIMEZONE", "Asia/Seoul")
        monkeypatch.setenv("SCHEDULED_BATCH_SIZE", "25")
        monkeypatch.setenv("LOG_LEVEL", "info")

        settings = Settings(region_name="ap-northeast-2")

        assert settings.region_name == "ap-northeast-2"
        assert settings.table_name == "rules-dev"
        assert settings.webhook_timeout_seconds == 2.5
        assert settings.delayed_actions_enabled is False
        assert settings.schedule_timezone == "Asia/Seoul"
        assert settings.scheduled_batch_size == 25
        assert settings.log_level == "INFO"

    def test_invalid_number(self, monkeypatch):
        monkeypatch.setenv("WEBHOOK_MAX_RETRIES", "many")
        with pytest.raises(ConfigurationError, match="WEBHOOK_MAX_RETRIES"):
            Settings()

    def test_retries_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("WEBHOOK_MAX_RETRIES", "0")
        with pytest.raises(ConfigurationError):
            Settings()


class TestLoadAutomations:
    def test_load_bundled_configuration(self):
        entries = Settings().load_automations(str(RULES_PATH), str(SCHEMA_PATH))

        assert len(entries) == 3
        assert entries[0]["trigger"] == "session.resolved"

    def test_paths_from_environment(self, monkeypatch):
        monkeypatch.setenv("AUTOMATIONS_CONFIG_PATH", str(RULES_PATH))
        monkeypatch.setenv("AUTOMATIONS_SCHEMA_PATH", str(SCHEMA_PATH))
        assert len(Settings().load_automations()) == 3

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Settings().load_automations(str(tmp_path / "missing.yaml"), str(SCHEMA_PATH))

    def test_invalid_yaml(self, tmp_path):
        rules = tmp_path / "rules.yaml"
        rules.write_text("automations: [unclosed")

        with pytest.raises(ValueError, match="Invalid YAML"):
            Settings().load_automations(str(rules), str(SCHEMA_PATH))

    def test_invalid_schema_json(self, tmp_path):
        schema = tmp_path / "schema.json"
        schema.write_text("{not json")

        with pytest.raises(ValueError, match="Invalid JSON"):
            Settings().load_automations(str(RULES_PATH), str(schema))

    def test_schema_violation(self, tmp_path):
        rules = tmp_path / "rules.yaml"
        rules.write_text(
            """
automations:
  - name: "No actions"
    tenant_id: "t"
    trigger: session.ended
    actions: []
"""
        )

        with pytest.raises(ValueError, match="validation failed"):
            Settings().load_automations(str(rules), str(SCHEMA_PATH))

    def test_empty_file(self, tmp_path):
        rules = tmp_path / "rules.yaml"
        rules.write_text("")
        assert Settings().load_automations(str(rules), str(SCHEMA_PATH)) == []


class TestBuildAutomations:
    def test_build_bundled_configuration(self):
        built = build_automations(Settings().load_automations(str(RULES_PATH), str(SCHEMA_PATH)))

        follow_up, reengage, weekly = built
        assert isinstance(follow_up, Automation)
        assert follow_up.actions[0].delay_minutes == 30
        assert reengage.priority == 1
        assert len(reengage.actions) == 2
        assert isinstance(weekly, ScheduledAutomationRule)
        assert weekly.schedule.type == ScheduleType.WEEKLY
        assert weekly.automation.trigger == AutomationTrigger.SCHEDULED
        assert weekly.next_execution_at is not None

    def test_first_run_read_in_schedule_timezone(self):
        entries = Settings().load_automations(str(RULES_PATH), str(SCHEMA_PATH))

        weekly = build_automations(entries, "Asia/Seoul")[-1]

        local = weekly.next_execution_at.astimezone(pytz.timezone("Asia/Seoul"))
        assert (local.hour, local.minute) == (9, 0)
        assert sunday_weekday(local) == 1

    def test_disabled_entry(self):
        (rule,) = build_automations(
            [
                {
                    "name": "Off",
                    "tenant_id": "t",
                    "type": "webhook",
                    "trigger": "order.shipped",
                    "enabled": False,
                    "actions": [{"type": "send_webhook", "params": {"url": "https://x.io"}}],
                }
            ]
        )
        assert rule.enabled is False
        assert rule.pipeline_id is None

    def test_pipeline_required_for_default_type(self):
        with pytest.raises(AutomationValidationError):
            build_automations([{"name": "n", "tenant_id": "t", "trigger": "session.ended"}])

    def test_invalid_schedule(self):
        with pytest.raises(ScheduleValidationError):
            build_automations(
                [
                    {
                        "name": "n",
                        "tenant_id": "t",
                        "pipeline_id": "6f1c2f0e-8a51-4c1e-9a53-3d2f4b7c9e10",
                        "trigger": "scheduled",
                        "schedule": {"type": "monthly"},
                    }
                ]
            )
