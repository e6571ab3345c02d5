"""
Scheduled rule runner.

One call to ``run_due`` is one poll: every enabled scheduled rule whose
next execution is due fires once, then its recurrence state is advanced and
saved. A rule whose schedule is exhausted is disabled. When running or
saving a rule raises, its state is left untouched so the next poll retries.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from crm_automation.database.repository import ScheduledRuleRepository
from crm_automation.domain.schedule import ScheduledAutomationRule
from crm_automation.rules.context import ActionContext
from crm_automation.rules.engine import AutomationEngine
from crm_automation.utils.logger import StructuredLogger, get_logger, log_operation
from crm_automation.utils.timezone import now_utc


@dataclass
class ScheduledRunSummary:
    due: int = 0
    executed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    exhausted: List[str] = field(default_factory=list)


class ScheduledRuleRunner:
    def __init__(
        self,
        repository: ScheduledRuleRepository,
        engine: AutomationEngine,
        logger: Optional[StructuredLogger] = None,
        batch_size: Optional[int] = None,
    ):
        self.repository = repository
        self.engine = engine
        self.logger = logger or get_logger(__name__)
        self.batch_size = batch_size

    @log_operation("run_scheduled_rules")
    def run_due(self, now: Optional[datetime] = None) -> ScheduledRunSummary:
        """
        Run every scheduled rule due at ``now``.

        Raises:
            RepositoryError: If due rules cannot be fetched
        """
        current = now or now_utc()
        summary = ScheduledRunSummary()

        rules = self.repository.find_due_scheduled(current, limit=self.batch_size)
        summary.due = len(rules)
        if not rules:
            self.logger.debug("No scheduled rules ready to execute", operation="run_scheduled_rules")
            return summary

        self.logger.info(
            "Found scheduled rules ready to execute",
            operation="run_scheduled_rules",
            context={"count": len(rules)},
        )

        for rule in rules:
            rule_id = str(rule.id)
            if not rule.is_ready_to_execute(current):
                summary.skipped.append(rule_id)
                continue
            try:
                self._execute(rule, current)
            except Exception as e:
                summary.failed.append(rule_id)
                self.logger.error(
                    "Scheduled rule execution failed",
                    operation="run_scheduled_rule",
                    context={"rule_id": rule_id, "rule_name": rule.automation.name},
                    error=str(e),
                )
                continue

            summary.executed.append(rule_id)
            if rule.next_execution_at is None:
                summary.exhausted.append(rule_id)

        return summary

    def _execute(self, rule: ScheduledAutomationRule, executed_at: datetime) -> None:
        evaluation_context = {
            "executed_at": executed_at.isoformat(),
            "tenant_id": rule.tenant_id,
            "pipeline_id": str(rule.pipeline_id) if rule.pipeline_id else None,
        }
        action_context = ActionContext(
            tenant_id=rule.tenant_id,
            pipeline_id=rule.pipeline_id,
            metadata=dict(evaluation_context),
        )

        result = self.engine.execute_rule(rule.automation, evaluation_context, action_context)
        if result.rules_failed:
            # action failures still advance the schedule
            self.logger.warning(
                "Scheduled rule ran with failures",
                operation="run_scheduled_rule",
                context={"rule_id": str(rule.id)},
                error=result.outcomes[0].error,
            )

        previous = (rule.last_executed_at, rule.next_execution_at)
        rule.mark_executed(executed_at)
        if rule.next_execution_at is None:
            rule.automation.disable()
            self.logger.info(
                "Scheduled rule exhausted, disabled",
                operation="run_scheduled_rule",
                context={"rule_id": str(rule.id)},
            )
        else:
            self.logger.info(
                "Scheduled rule executed",
                operation="run_scheduled_rule",
                context={"rule_id": str(rule.id), "next_execution_at": rule.next_execution_at},
            )

        try:
            self.repository.save_scheduled(rule)
        except Exception:
            rule.last_executed_at, rule.next_execution_at = previous
            rule.automation.enable()
            raise
        finally:
            rule.automation.clear_events()
