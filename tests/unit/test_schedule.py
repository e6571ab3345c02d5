"""
Unit tests for recurrence schedules and scheduled automation rules.

Weekday numbering is 0 = Sunday. 2024-01-01 is a Monday (day_of_week=1).
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytz

from crm_automation.domain.automation import AutomationTrigger, AutomationType
from crm_automation.domain.exceptions import ScheduleValidationError
from crm_automation.domain.schedule import (
    ScheduledAutomationRule,
    ScheduledRuleConfig,
    ScheduleType,
    sunday_weekday,
)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestValidation:
    """ScheduledRuleConfig.validate"""

    @pytest.mark.parametrize(
        "config,field,message",
        [
            (ScheduledRuleConfig(type=""), "type", "schedule type cannot be empty"),
            (ScheduledRuleConfig(type="daily", hour=24), "hour", "hour must be between 0 and 23"),
            (ScheduledRuleConfig(type="daily", hour=-1), "hour", "hour must be between 0 and 23"),
            (
                ScheduledRuleConfig(type="daily", minute=60),
                "minute",
                "minute must be between 0 and 59",
            ),
            (
                ScheduledRuleConfig(type="once"),
                "start_time",
                "start_time is required for 'once' schedule",
            ),
            (
                ScheduledRuleConfig(type="weekly"),
                "day_of_week",
                "day_of_week is required for 'weekly' schedule",
            ),
            (
                ScheduledRuleConfig(type="weekly", day_of_week=7),
                "day_of_week",
                "day_of_week must be between 0 (Sunday) and 6 (Saturday)",
            ),
            (
                ScheduledRuleConfig(type="monthly"),
                "day_of_month",
                "day_of_month is required for 'monthly' schedule",
            ),
            (
                ScheduledRuleConfig(type="monthly", day_of_month=0),
                "day_of_month",
                "day_of_month must be between 1 and 31",
            ),
            (
                ScheduledRuleConfig(type="cron"),
                "cron_expr",
                "cron_expr is required for 'cron' schedule",
            ),
            (ScheduledRuleConfig(type="yearly"), "type", "invalid schedule type"),
        ],
    )
    def test_invalid_configs(self, config, field, message):
        with pytest.raises(ScheduleValidationError) as exc:
            config.validate()
        assert str(exc.value) == message
        assert exc.value.field == field

    @pytest.mark.parametrize(
        "config",
        [
            ScheduledRuleConfig(type=ScheduleType.DAILY, hour=9),
            ScheduledRuleConfig(type="weekly", day_of_week=0),
            ScheduledRuleConfig(type="monthly", day_of_month=31, hour=23, minute=59),
            ScheduledRuleConfig(type="once", start_time=utc(2024, 1, 1)),
            ScheduledRuleConfig(type="cron", cron_expr="0 9 * * 1"),
        ],
    )
    def test_valid_configs(self, config):
        config.validate()


class TestShouldRunNow:
    def test_daily_matches_hour_and_minute(self):
        config = ScheduledRuleConfig(type="daily", hour=9, minute=30)
        assert config.should_run_now(utc(2024, 1, 1, 9, 30, 45)) is True
        assert config.should_run_now(utc(2024, 1, 1, 9, 31)) is False

    def test_weekly_checks_weekday(self):
        config = ScheduledRuleConfig(type="weekly", day_of_week=1, hour=9)
        assert config.should_run_now(utc(2024, 1, 1, 9, 0)) is True
        assert config.should_run_now(utc(2024, 1, 2, 9, 0)) is False

    def test_monthly_checks_day(self):
        config = ScheduledRuleConfig(type="monthly", day_of_month=15, hour=8)
        assert config.should_run_now(utc(2024, 3, 15, 8, 0)) is True
        assert config.should_run_now(utc(2024, 3, 16, 8, 0)) is False

    def test_once_fires_within_first_minute(self):
        start = utc(2024, 1, 1, 12, 0)
        config = ScheduledRuleConfig(type="once", start_time=start)
        assert config.should_run_now(start) is True
        assert config.should_run_now(start + timedelta(seconds=59)) is True
        assert config.should_run_now(start + timedelta(minutes=1)) is False
        assert config.should_run_now(start - timedelta(seconds=1)) is False

    def test_after_end_time_never_runs(self):
        config = ScheduledRuleConfig(type="daily", hour=9, end_time=utc(2024, 1, 1))
        assert config.should_run_now(utc(2024, 1, 2, 9, 0)) is False

    def test_cron_never_runs(self):
        config = ScheduledRuleConfig(type="cron", cron_expr="* * * * *")
        assert config.should_run_now(utc(2024, 1, 1, 9, 0)) is False

    def test_sunday_weekday(self):
        assert sunday_weekday(utc(2024, 1, 7)) == 0
        assert sunday_weekday(utc(2024, 1, 6)) == 6


class TestNextExecution:
    def test_daily_later_today(self):
        config = ScheduledRuleConfig(type="daily", hour=9)
        assert config.next_execution(utc(2024, 1, 1, 8, 0)) == utc(2024, 1, 1, 9, 0)

    def test_daily_is_strictly_after(self):
        config = ScheduledRuleConfig(type="daily", hour=9)
        assert config.next_execution(utc(2024, 1, 1, 9, 0)) == utc(2024, 1, 2, 9, 0)

    def test_weekly_same_day_before_time(self):
        config = ScheduledRuleConfig(type="weekly", day_of_week=1, hour=11)
        assert config.next_execution(utc(2024, 1, 1, 10, 0)) == utc(2024, 1, 1, 11, 0)

    def test_weekly_same_day_after_time_goes_to_next_week(self):
        config = ScheduledRuleConfig(type="weekly", day_of_week=1, hour=9)
        assert config.next_execution(utc(2024, 1, 1, 10, 0)) == utc(2024, 1, 8, 9, 0)

    def test_weekly_later_in_week(self):
        config = ScheduledRuleConfig(type="weekly", day_of_week=5, hour=17, minute=15)
        assert config.next_execution(utc(2024, 1, 1, 10, 0)) == utc(2024, 1, 5, 17, 15)

    def test_monthly_this_month(self):
        config = ScheduledRuleConfig(type="monthly", day_of_month=15, hour=8)
        assert config.next_execution(utc(2024, 3, 10)) == utc(2024, 3, 15, 8, 0)

    def test_monthly_rolls_over_year(self):
        config = ScheduledRuleConfig(type="monthly", day_of_month=15, hour=8)
        assert config.next_execution(utc(2024, 12, 20)) == utc(2025, 1, 15, 8, 0)

    def test_monthly_day_clamped_to_month_end(self):
        config = ScheduledRuleConfig(type="monthly", day_of_month=31, hour=9)
        assert config.next_execution(utc(2024, 2, 10)) == utc(2024, 2, 29, 9, 0)
        assert config.next_execution(utc(2024, 1, 31, 10, 0)) == utc(2024, 2, 29, 9, 0)
        assert config.next_execution(utc(2023, 4, 1)) == utc(2023, 4, 30, 9, 0)

    def test_once_before_and_after_start(self):
        start = utc(2024, 1, 1, 12, 0)
        config = ScheduledRuleConfig(type="once", start_time=start)
        assert config.next_execution(utc(2024, 1, 1, 11, 0)) == start
        assert config.next_execution(start) is None

    def test_past_end_time_returns_none(self):
        config = ScheduledRuleConfig(type="daily", hour=9, end_time=utc(2024, 1, 1, 8, 30))
        assert config.next_execution(utc(2024, 1, 1, 8, 0)) is None

    def test_cron_returns_none(self):
        config = ScheduledRuleConfig(type="cron", cron_expr="0 9 * * *")
        assert config.next_execution(utc(2024, 1, 1)) is None

    def test_local_zone_across_dst(self):
        """Wall-clock hour is kept when the UTC offset changes overnight"""
        tz = pytz.timezone("America/New_York")
        config = ScheduledRuleConfig(type="daily", hour=9)

        after = tz.localize(datetime(2024, 3, 9, 10, 0))
        result = config.next_execution(after)

        assert (result.year, result.month, result.day, result.hour) == (2024, 3, 10, 9)
        assert result.utcoffset() == timedelta(hours=-4)
        assert result.astimezone(timezone.utc) == utc(2024, 3, 10, 13, 0)


class TestSerialization:
    def test_dict_round_trip(self):
        config = ScheduledRuleConfig(
            type=ScheduleType.WEEKLY,
            day_of_week=3,
            hour=7,
            minute=45,
            end_time=utc(2025, 1, 1),
        )
        data = config.to_dict()
        assert data["type"] == "weekly"
        assert data["end_time"] == "2025-01-01T00:00:00+00:00"
        assert ScheduledRuleConfig.from_dict(data) == config

    def test_from_dict_accepts_z_suffix(self):
        config = ScheduledRuleConfig.from_dict({"type": "once", "start_time": "2024-05-01T10:00:00Z"})
        assert config.start_time == utc(2024, 5, 1, 10, 0)


class TestScheduledAutomationRule:
    @pytest.fixture
    def rule(self):
        return ScheduledAutomationRule.create(
            uuid.uuid4(),
            "tenant-1",
            "Daily digest",
            ScheduledRuleConfig(type="daily", hour=9),
            now=utc(2024, 1, 1, 8, 0),
        )

    def test_create_builds_scheduled_pipeline_rule(self, rule):
        assert rule.automation.trigger == AutomationTrigger.SCHEDULED
        assert rule.automation.automation_type == AutomationType.PIPELINE_BASED
        assert rule.next_execution_at == utc(2024, 1, 1, 9, 0)
        assert rule.last_executed_at is None

    def test_create_rejects_invalid_schedule(self):
        with pytest.raises(ScheduleValidationError):
            ScheduledAutomationRule.create(
                uuid.uuid4(), "t", "n", ScheduledRuleConfig(type="weekly")
            )

    def test_create_reads_hour_in_zone(self):
        rule = ScheduledAutomationRule.create(
            uuid.uuid4(),
            "t",
            "Morning",
            ScheduledRuleConfig(type="daily", hour=9),
            tz_name="Asia/Seoul",
        )

        local = rule.next_execution_at.astimezone(pytz.timezone("Asia/Seoul"))
        assert (local.hour, local.minute) == (9, 0)
        assert rule.next_execution_at > datetime.now(timezone.utc)

    def test_ready_when_due(self, rule):
        assert rule.is_ready_to_execute(utc(2024, 1, 1, 8, 59)) is False
        assert rule.is_ready_to_execute(utc(2024, 1, 1, 9, 0)) is True

    def test_disabled_rule_never_ready(self, rule):
        rule.automation.disable()
        assert rule.is_ready_to_execute(utc(2024, 1, 1, 9, 0)) is False

    def test_mark_executed_advances(self, rule):
        rule.mark_executed(utc(2024, 1, 1, 9, 0, 20))
        assert rule.last_executed_at == utc(2024, 1, 1, 9, 0, 20)
        assert rule.next_execution_at == utc(2024, 1, 2, 9, 0)

    def test_once_rule_exhausts(self):
        start = utc(2024, 1, 1, 12, 0)
        rule = ScheduledAutomationRule.create(
            uuid.uuid4(),
            "t",
            "Launch",
            ScheduledRuleConfig(type="once", start_time=start),
            now=utc(2024, 1, 1),
        )
        assert rule.next_execution_at == start
        rule.mark_executed(start)
        assert rule.next_execution_at is None
