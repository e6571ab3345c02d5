"""
Scheduled entry point for the automation engine.

``scheduled_handler`` is invoked once a minute (e.g. by an EventBridge
schedule). Each invocation runs one poll of due scheduled rules and any
delayed actions that came due in this warm process.
"""

import json
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Optional

import boto3

from crm_automation.config.settings import Settings
from crm_automation.database.dynamodb_client import DynamoDBAutomationRepository
from crm_automation.notifications.webhook_service import WebhookClient
from crm_automation.rules.actions import (
    ActionExecutorRegistry,
    ActionServicesBundle,
    register_actions,
)
from crm_automation.rules.delayed import InMemoryDelayedActionQueue
from crm_automation.rules.engine import AutomationEngine
from crm_automation.rules.manager import AutomationRuleManager, DefaultRuleValidator
from crm_automation.rules.scheduled_runner import ScheduledRuleRunner
from crm_automation.utils.logger import get_logger
from crm_automation.utils.timezone import now_utc, to_zone

logger = get_logger(__name__)


@dataclass
class Runtime:
    settings: Settings
    repository: DynamoDBAutomationRepository
    registry: ActionExecutorRegistry
    engine: AutomationEngine
    runner: ScheduledRuleRunner
    delayed_queue: Optional[InMemoryDelayedActionQueue]
    manager: AutomationRuleManager


_runtime: Optional[Runtime] = None


def build_runtime(
    settings: Optional[Settings] = None,
    dynamodb_resource: Optional[Any] = None,
    services: Optional[ActionServicesBundle] = None,
) -> Runtime:
    """
    Wire repository, executors, engine, runner and rule manager from settings.

    Only the webhook collaborator has a built-in implementation; the other
    collaborators come from ``services`` when the host application has them.
    """
    settings = settings or Settings()
    dynamodb = dynamodb_resource or boto3.resource("dynamodb", region_name=settings.region_name)
    repository = DynamoDBAutomationRepository(
        table_name=settings.table_name, dynamodb_resource=dynamodb
    )

    webhook_client = WebhookClient(
        timeout_seconds=settings.webhook_timeout_seconds,
        max_retries=settings.webhook_max_retries,
    )
    if services is None:
        services = ActionServicesBundle(webhook_sender=webhook_client, logger=logger)
    elif services.webhook_sender is None:
        services = replace(services, webhook_sender=webhook_client)

    registry = register_actions(ActionExecutorRegistry(), services)
    delayed_queue = InMemoryDelayedActionQueue() if settings.delayed_actions_enabled else None
    engine = AutomationEngine(repository, registry, delayed_scheduler=delayed_queue)
    runner = ScheduledRuleRunner(repository, engine, batch_size=settings.scheduled_batch_size)

    manager = AutomationRuleManager(
        repository,
        validator=DefaultRuleValidator(action_types=registry.registered_types()),
        schedule_timezone=settings.schedule_timezone,
    )

    return Runtime(settings, repository, registry, engine, runner, delayed_queue, manager)


def scheduled_handler(event, context):
    """
    Run one scheduling pass.

    Args:
        event: Scheduler event (unused)
        context: Lambda context (may be None locally)

    Returns:
        dict: statusCode 200 with a run summary, or 500 with the error
    """
    global _runtime
    start_time = time.time()

    try:
        if _runtime is None:
            _runtime = build_runtime()

        now = to_zone(now_utc(), _runtime.settings.schedule_timezone)
        logger.info(
            "Scheduled pass started",
            operation="scheduled_handler",
            context={
                "aws_request_id": getattr(context, "aws_request_id", "local") if context else "local",
                "now": now.isoformat(),
            },
        )

        summary = _runtime.runner.run_due(now)
        delayed_stats = {"executed": 0, "failed": 0}
        if _runtime.delayed_queue is not None:
            delayed_stats = _runtime.delayed_queue.run_due(_runtime.registry, now)

        duration_ms = (time.time() - start_time) * 1000
        body = {
            "scheduled_due": summary.due,
            "scheduled_executed": len(summary.executed),
            "scheduled_failed": len(summary.failed),
            "scheduled_exhausted": len(summary.exhausted),
            "delayed_executed": delayed_stats["executed"],
            "delayed_failed": delayed_stats["failed"],
            "duration_ms": round(duration_ms, 2),
        }
        logger.info("Scheduled pass complete", operation="scheduled_handler", context=body)
        return {"statusCode": 200, "body": json.dumps(body)}

    except Exception as e:
        duration_ms = (time.time() - start_time) * 1000
        logger.error(
            "Scheduled pass failed",
            operation="scheduled_handler",
            context={"error_type": type(e).__name__},
            error=str(e),
            duration_ms=duration_ms,
        )
        return {
            "statusCode": 500,
            "body": json.dumps(
                {
                    "error": "Scheduled pass failed",
                    "message": str(e),
                    "error_type": type(e).__name__,
                    "duration_ms": round(duration_ms, 2),
                }
            ),
        }


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    print(json.dumps(scheduled_handler({}, None), indent=2))
