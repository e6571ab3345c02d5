"""
Recurrence schedules and scheduled automation rules.

ScheduledRuleConfig answers two questions for a time-driven rule: "should
it fire at this minute?" and "when does it fire next?". Weekday numbering
is 0 = Sunday through 6 = Saturday.

Wall-clock fields (hour, minute, day_of_week, day_of_month) are read in the
timezone of the datetime passed in, so callers choose the tenant's zone by
converting ``now`` before asking.
"""

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union
from uuid import UUID

from crm_automation.domain.automation import Automation, AutomationTrigger, AutomationType
from crm_automation.domain.exceptions import ScheduleValidationError
from crm_automation.utils.timezone import now_utc, parse_iso, to_zone


class ScheduleType(str, Enum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CRON = "cron"


def sunday_weekday(value: datetime) -> int:
    """Weekday with 0 = Sunday, matching day_of_week."""
    return value.isoweekday() % 7


def _at(day: datetime, hour: int, minute: int, day_of_month: Optional[int] = None) -> datetime:
    """Wall-clock instant on ``day``'s date, DST-correct for pytz zones."""
    naive = day.replace(tzinfo=None, hour=hour, minute=minute, second=0, microsecond=0)
    if day_of_month is not None:
        naive = naive.replace(day=day_of_month)

    tz = day.tzinfo
    if tz is None:
        return naive
    localize = getattr(tz, "localize", None)
    if localize is not None:
        # pytz zones carry a fixed offset per instance; re-localize for the new date
        return localize(naive)
    return naive.replace(tzinfo=tz)


def _clamped_day(year: int, month: int, day_of_month: int) -> int:
    return min(day_of_month, calendar.monthrange(year, month)[1])


@dataclass(frozen=True)
class ScheduledRuleConfig:
    """
    Value object describing when a scheduled rule fires.

    Attributes:
        type: once, daily, weekly, monthly or cron
        cron_expr: Cron expression (required for cron; evaluation not supported)
        start_time: Fire instant for ``once``
        end_time: No firing after this instant (optional, any type)
        day_of_week: 0 (Sunday) .. 6 (Saturday), required for weekly
        day_of_month: 1 .. 31, required for monthly
        hour: 0 .. 23
        minute: 0 .. 59
    """

    type: Union[ScheduleType, str]
    cron_expr: str = ""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    hour: int = 0
    minute: int = 0

    # ------------------------------------------------------------------ #
    # Validation
    # ------------------------------------------------------------------ #

    def validate(self) -> None:
        """
        Check the configuration, raising on the first violated rule.

        Raises:
            ScheduleValidationError: With ``field`` naming the bad attribute
        """
        if not self.type:
            raise ScheduleValidationError("schedule type cannot be empty", field="type")

        if not 0 <= self.hour <= 23:
            raise ScheduleValidationError("hour must be between 0 and 23", field="hour")

        if not 0 <= self.minute <= 59:
            raise ScheduleValidationError("minute must be between 0 and 59", field="minute")

        schedule_type = self._schedule_type()

        if schedule_type == ScheduleType.ONCE:
            if self.start_time is None:
                raise ScheduleValidationError(
                    "start_time is required for 'once' schedule", field="start_time"
                )

        elif schedule_type == ScheduleType.WEEKLY:
            if self.day_of_week is None:
                raise ScheduleValidationError(
                    "day_of_week is required for 'weekly' schedule", field="day_of_week"
                )
            if not 0 <= self.day_of_week <= 6:
                raise ScheduleValidationError(
                    "day_of_week must be between 0 (Sunday) and 6 (Saturday)",
                    field="day_of_week",
                )

        elif schedule_type == ScheduleType.MONTHLY:
            if self.day_of_month is None:
                raise ScheduleValidationError(
                    "day_of_month is required for 'monthly' schedule", field="day_of_month"
                )
            if not 1 <= self.day_of_month <= 31:
                raise ScheduleValidationError(
                    "day_of_month must be between 1 and 31", field="day_of_month"
                )

        elif schedule_type == ScheduleType.CRON:
            if not self.cron_expr:
                raise ScheduleValidationError(
                    "cron_expr is required for 'cron' schedule", field="cron_expr"
                )

        elif schedule_type is None:
            raise ScheduleValidationError("invalid schedule type", field="type")

    def _schedule_type(self) -> Optional[ScheduleType]:
        try:
            return ScheduleType(self.type)
        except ValueError:
            return None

    # ------------------------------------------------------------------ #
    # Evaluation
    # ------------------------------------------------------------------ #

    def should_run_now(self, now: datetime) -> bool:
        """True if the schedule fires at ``now`` (minute resolution)."""
        if self.end_time is not None and now > self.end_time:
            return False

        schedule_type = self._schedule_type()

        if schedule_type == ScheduleType.ONCE:
            if self.start_time is None:
                return False
            elapsed = now - self.start_time
            return timedelta(0) <= elapsed < timedelta(minutes=1)

        matches_time = now.hour == self.hour and now.minute == self.minute

        if schedule_type == ScheduleType.DAILY:
            return matches_time

        if schedule_type == ScheduleType.WEEKLY:
            return matches_time and sunday_weekday(now) == self.day_of_week

        if schedule_type == ScheduleType.MONTHLY:
            return matches_time and now.day == self.day_of_month

        # cron expressions are accepted but not evaluated
        return False

    def next_execution(self, after: datetime) -> Optional[datetime]:
        """
        Next firing instant strictly after ``after``.

        Returns None when the schedule is exhausted, is a cron schedule, or
        the next instant would fall after ``end_time``.
        """
        candidate = self._next_candidate(after)
        if candidate is None:
            return None
        if self.end_time is not None and candidate > self.end_time:
            return None
        return candidate

    def _next_candidate(self, after: datetime) -> Optional[datetime]:
        schedule_type = self._schedule_type()

        if schedule_type == ScheduleType.ONCE:
            if self.start_time is not None and after < self.start_time:
                return self.start_time
            return None

        if schedule_type == ScheduleType.DAILY:
            candidate = _at(after, self.hour, self.minute)
            if candidate <= after:
                candidate = _at(after + timedelta(days=1), self.hour, self.minute)
            return candidate

        if schedule_type == ScheduleType.WEEKLY:
            if self.day_of_week is None:
                return None
            # Eight days so "today, but the time has passed" lands on next week
            for offset in range(8):
                day = after + timedelta(days=offset)
                if sunday_weekday(day) != self.day_of_week:
                    continue
                candidate = _at(day, self.hour, self.minute)
                if candidate > after:
                    return candidate
            return None

        if schedule_type == ScheduleType.MONTHLY:
            if self.day_of_month is None:
                return None
            day = _clamped_day(after.year, after.month, self.day_of_month)
            candidate = _at(after, self.hour, self.minute, day_of_month=day)
            if candidate > after:
                return candidate

            year, month = (after.year + 1, 1) if after.month == 12 else (after.year, after.month + 1)
            first_of_next = after.replace(year=year, month=month, day=1)
            day = _clamped_day(year, month, self.day_of_month)
            return _at(first_of_next, self.hour, self.minute, day_of_month=day)

        return None

    # ------------------------------------------------------------------ #
    # Serialization
    # ------------------------------------------------------------------ #

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": str(getattr(self.type, "value", self.type)),
            "cron_expr": self.cron_expr,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "day_of_week": self.day_of_week,
            "day_of_month": self.day_of_month,
            "hour": self.hour,
            "minute": self.minute,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScheduledRuleConfig":
        raw_type = data.get("type", "")
        try:
            schedule_type: Union[ScheduleType, str] = ScheduleType(raw_type)
        except ValueError:
            schedule_type = raw_type

        def _optional_int(key: str) -> Optional[int]:
            value = data.get(key)
            return int(value) if value is not None else None

        return cls(
            type=schedule_type,
            cron_expr=data.get("cron_expr") or "",
            start_time=parse_iso(data.get("start_time")),
            end_time=parse_iso(data.get("end_time")),
            day_of_week=_optional_int("day_of_week"),
            day_of_month=_optional_int("day_of_month"),
            hour=int(data.get("hour") or 0),
            minute=int(data.get("minute") or 0),
        )


class ScheduledAutomationRule:
    """
    An Automation with trigger ``scheduled`` plus its recurrence state.

    ``next_execution_at`` caches the schedule's next instant so pollers can
    query due rules cheaply; it is None once a schedule is exhausted.
    """

    def __init__(
        self,
        automation: Automation,
        schedule: ScheduledRuleConfig,
        last_executed_at: Optional[datetime] = None,
        next_execution_at: Optional[datetime] = None,
    ):
        self.automation = automation
        self.schedule = schedule
        self.last_executed_at = last_executed_at
        self.next_execution_at = next_execution_at

    @classmethod
    def create(
        cls,
        pipeline_id: UUID,
        tenant_id: str,
        name: str,
        schedule: ScheduledRuleConfig,
        now: Optional[datetime] = None,
        tz_name: str = "UTC",
    ) -> "ScheduledAutomationRule":
        """
        Validate the schedule and create a pipeline-based scheduled rule.

        The first run is computed from ``now`` (default: the current time in
        ``tz_name``), so the schedule hour is read in that zone.

        Raises:
            ScheduleValidationError: If the schedule is invalid
            AutomationValidationError: If the automation fields are invalid
        """
        schedule.validate()

        automation = Automation.create(
            AutomationType.PIPELINE_BASED,
            tenant_id,
            name,
            AutomationTrigger.SCHEDULED,
            pipeline_id=pipeline_id,
        )
        current = now or to_zone(now_utc(), tz_name)
        return cls(
            automation=automation,
            schedule=schedule,
            next_execution_at=schedule.next_execution(current),
        )

    @classmethod
    def reconstruct(
        cls,
        automation: Automation,
        schedule: ScheduledRuleConfig,
        last_executed_at: Optional[datetime] = None,
        next_execution_at: Optional[datetime] = None,
    ) -> "ScheduledAutomationRule":
        return cls(automation, schedule, last_executed_at, next_execution_at)

    @property
    def id(self) -> UUID:
        return self.automation.id

    @property
    def tenant_id(self) -> str:
        return self.automation.tenant_id

    @property
    def pipeline_id(self) -> Optional[UUID]:
        return self.automation.pipeline_id

    @property
    def priority(self) -> int:
        return self.automation.priority

    def is_enabled(self) -> bool:
        return self.automation.is_enabled()

    def mark_executed(self, executed_at: datetime) -> None:
        self.last_executed_at = executed_at
        self.next_execution_at = self.schedule.next_execution(executed_at)

    def is_ready_to_execute(self, now: datetime) -> bool:
        if not self.automation.is_enabled():
            return False
        if self.next_execution_at is not None:
            return now >= self.next_execution_at
        return self.schedule.should_run_now(now)

    def __repr__(self) -> str:
        return (
            f"ScheduledAutomationRule(id={self.id!s}, "
            f"schedule={self.schedule.type!s}, next_execution_at={self.next_execution_at!r})"
        )
