"""
DynamoDB implementation of the automation repositories.

Table Schema:
    Partition Key: id (automation UUID as string)
    GSI pipeline_id-index: Partition Key pipeline_id
    GSI tenant_id-index:   Partition Key tenant_id

Conditions, actions and schedules are stored as JSON strings so rule
payloads keep their exact shape (DynamoDB would otherwise turn numbers
into Decimal and reject empty strings in some SDK versions).
"""

import json
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError

from crm_automation.domain.automation import (
    Automation,
    AutomationTrigger,
    RuleAction,
    TriggerLike,
)
from crm_automation.domain.conditions import RuleCondition
from crm_automation.domain.schedule import ScheduledAutomationRule, ScheduledRuleConfig
from crm_automation.utils.logger import get_logger
from crm_automation.utils.timezone import parse_iso
from .exceptions import AccessDeniedError, NetworkError, RepositoryError, ThrottlingError
from .repository import AutomationRepository, ScheduledRuleRepository, sort_by_priority


logger = get_logger(__name__)

PIPELINE_INDEX = "pipeline_id-index"
TENANT_INDEX = "tenant_id-index"

_THROTTLING_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
}


# ============================================================================
# Item mapping
# ============================================================================


def automation_to_item(automation: Automation) -> Dict[str, Any]:
    """Convert an Automation to a DynamoDB item (no None values)."""
    item: Dict[str, Any] = {
        "id": str(automation.id),
        "automation_type": automation.automation_type.value,
        "tenant_id": automation.tenant_id,
        "name": automation.name,
        "description": automation.description,
        "trigger": automation.trigger_value,
        "conditions": json.dumps([c.to_dict() for c in automation.conditions]),
        "actions": json.dumps([a.to_dict() for a in automation.actions]),
        "priority": automation.priority,
        "enabled": automation.enabled,
        "created_at": automation.created_at.isoformat(),
        "updated_at": automation.updated_at.isoformat(),
    }
    if automation.pipeline_id:
        item["pipeline_id"] = str(automation.pipeline_id)
    return item


def item_to_automation(item: Dict[str, Any]) -> Automation:
    pipeline_id = item.get("pipeline_id")
    return Automation.reconstruct(
        id=UUID(item["id"]),
        automation_type=item["automation_type"],
        tenant_id=item["tenant_id"],
        name=item["name"],
        trigger=item["trigger"],
        pipeline_id=UUID(pipeline_id) if pipeline_id else None,
        description=item.get("description", ""),
        conditions=[RuleCondition.from_dict(c) for c in json.loads(item.get("conditions", "[]"))],
        actions=[RuleAction.from_dict(a) for a in json.loads(item.get("actions", "[]"))],
        priority=int(item.get("priority", 0)),
        enabled=bool(item.get("enabled", True)),
        created_at=parse_iso(item.get("created_at")),
        updated_at=parse_iso(item.get("updated_at")),
    )


def scheduled_to_item(rule: ScheduledAutomationRule) -> Dict[str, Any]:
    item = automation_to_item(rule.automation)
    item["schedule"] = json.dumps(rule.schedule.to_dict())
    if rule.last_executed_at:
        item["last_executed_at"] = rule.last_executed_at.isoformat()
    if rule.next_execution_at:
        item["next_execution_at"] = rule.next_execution_at.isoformat()
    return item


def item_to_scheduled(item: Dict[str, Any]) -> ScheduledAutomationRule:
    return ScheduledAutomationRule.reconstruct(
        automation=item_to_automation(item),
        schedule=ScheduledRuleConfig.from_dict(json.loads(item["schedule"])),
        last_executed_at=parse_iso(item.get("last_executed_at")),
        next_execution_at=parse_iso(item.get("next_execution_at")),
    )


# ============================================================================
# Repository
# ============================================================================


class DynamoDBAutomationRepository(AutomationRepository, ScheduledRuleRepository):
    """
    Repository for automation rules in DynamoDB.

    Handles retry with exponential backoff on throttling and translates
    botocore errors into repository exceptions.
    """

    def __init__(
        self,
        table_name: str = "automation_rules",
        dynamodb_resource: Optional[Any] = None,
        max_retries: int = 3,
        backoff_base: float = 1.0,
    ):
        """
        Initialize DynamoDBAutomationRepository.

        Args:
            table_name: DynamoDB table name
            dynamodb_resource: boto3 DynamoDB resource (default: creates new)
            max_retries: Number of attempts for throttled requests
            backoff_base: Base exponential backoff multiplier (seconds)
        """
        self.table_name = table_name
        self.dynamodb = dynamodb_resource or boto3.resource("dynamodb")
        self.table = self.dynamodb.Table(table_name)
        self.max_retries = max_retries
        self.backoff_base = backoff_base

    def _call(self, operation: str, context: Dict[str, Any], func: Callable[[], Any]) -> Any:
        """
        Run ``func`` with throttling retries and error translation.

        Raises:
            ThrottlingError: If throttled after max retries
            AccessDeniedError: If IAM permissions are insufficient
            NetworkError: If the connection fails
            RepositoryError: For any other DynamoDB error
        """
        for attempt in range(self.max_retries):
            try:
                start_time = time.time()
                result = func()
                logger.info(
                    f"{operation} completed",
                    operation=operation,
                    context=context,
                    duration_ms=(time.time() - start_time) * 1000,
                )
                return result

            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code", "Unknown")

                if error_code in _THROTTLING_CODES:
                    if attempt < self.max_retries - 1:
                        wait_time = self.backoff_base * (2**attempt)
                        logger.warning(
                            f"Throttled, retrying after {wait_time}s",
                            operation=operation,
                            context=context,
                            error=error_code,
                        )
                        time.sleep(wait_time)
                        continue
                    logger.error(
                        "Throttling after max retries",
                        operation=operation,
                        context=context,
                        error=error_code,
                    )
                    raise ThrottlingError(
                        f"DynamoDB throttled after {self.max_retries} retries"
                    ) from e

                if error_code == "AccessDeniedException":
                    logger.error(
                        "Permission denied", operation=operation, context=context, error=error_code
                    )
                    raise AccessDeniedError(f"Insufficient IAM permissions: {error_code}") from e

                logger.error("DynamoDB error", operation=operation, context=context, error=str(e))
                raise RepositoryError(f"DynamoDB error: {e}") from e

            except (BotoCoreError, OSError) as e:
                logger.error("Network error", operation=operation, context=context, error=str(e))
                raise NetworkError(f"Network error: {e}") from e

        raise ThrottlingError(f"DynamoDB throttled after {self.max_retries} retries")

    def _query_all(self, **kwargs: Any) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        while True:
            response = self.table.query(**kwargs)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    def _scan_all(self, **kwargs: Any) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        while True:
            response = self.table.scan(**kwargs)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    # ------------------------------------------------------------------ #
    # AutomationRepository
    # ------------------------------------------------------------------ #

    def save(self, automation):
        context = {"rule_id": str(automation.id), "tenant_id": automation.tenant_id}
        existing = self._call(
            "get_rule",
            context,
            lambda: self.table.get_item(Key={"id": str(automation.id)}).get("Item"),
        )
        item = automation_to_item(automation)
        if existing and "schedule" in existing:
            # keep recurrence state written by save_scheduled
            for key in ("schedule", "last_executed_at", "next_execution_at"):
                if key in existing:
                    item[key] = existing[key]
        self._call("save_rule", context, lambda: self.table.put_item(Item=item))

    def find_by_id(self, automation_id):
        context = {"rule_id": str(automation_id)}
        item = self._call(
            "get_rule",
            context,
            lambda: self.table.get_item(Key={"id": str(automation_id)}).get("Item"),
        )
        if item is None:
            logger.debug("Rule not found", operation="get_rule", context=context)
            return None
        return item_to_automation(item)

    def find_by_pipeline(self, pipeline_id):
        items = self._call(
            "find_rules_by_pipeline",
            {"pipeline_id": str(pipeline_id)},
            lambda: self._query_all(
                IndexName=PIPELINE_INDEX,
                KeyConditionExpression=Key("pipeline_id").eq(str(pipeline_id)),
            ),
        )
        return sort_by_priority([item_to_automation(item) for item in items])

    def find_by_pipeline_and_trigger(self, pipeline_id, trigger: TriggerLike):
        trigger_value = str(getattr(trigger, "value", trigger))
        items = self._call(
            "find_rules_by_trigger",
            {"pipeline_id": str(pipeline_id), "trigger": trigger_value},
            lambda: self._query_all(
                IndexName=PIPELINE_INDEX,
                KeyConditionExpression=Key("pipeline_id").eq(str(pipeline_id)),
                FilterExpression=Attr("trigger").eq(trigger_value),
            ),
        )
        return sort_by_priority([item_to_automation(item) for item in items])

    def find_by_tenant(self, tenant_id):
        items = self._call(
            "find_rules_by_tenant",
            {"tenant_id": tenant_id},
            lambda: self._query_all(
                IndexName=TENANT_INDEX,
                KeyConditionExpression=Key("tenant_id").eq(tenant_id),
            ),
        )
        return sort_by_priority([item_to_automation(item) for item in items])

    def delete(self, automation_id):
        context = {"rule_id": str(automation_id)}
        response = self._call(
            "delete_rule",
            context,
            lambda: self.table.delete_item(
                Key={"id": str(automation_id)}, ReturnValues="ALL_OLD"
            ),
        )
        return bool(response.get("Attributes"))

    # ------------------------------------------------------------------ #
    # ScheduledRuleRepository
    # ------------------------------------------------------------------ #

    def save_scheduled(self, rule):
        item = scheduled_to_item(rule)
        self._call(
            "save_scheduled_rule",
            {"rule_id": str(rule.id), "tenant_id": rule.tenant_id},
            lambda: self.table.put_item(Item=item),
        )

    def find_scheduled_by_id(self, automation_id):
        item = self._call(
            "get_scheduled_rule",
            {"rule_id": str(automation_id)},
            lambda: self.table.get_item(Key={"id": str(automation_id)}).get("Item"),
        )
        if item is None or "schedule" not in item:
            return None
        return item_to_scheduled(item)

    def find_due_scheduled(self, now: datetime, limit: Optional[int] = None):
        now_iso = now.isoformat()
        items = self._call(
            "find_due_scheduled_rules",
            {"now": now_iso},
            lambda: self._scan_all(
                FilterExpression=Attr("trigger").eq(AutomationTrigger.SCHEDULED.value)
                & Attr("enabled").eq(True)
                & Attr("next_execution_at").exists()
            ),
        )
        rules = [item_to_scheduled(item) for item in items]
        # ISO strings from different offsets do not sort lexically; compare datetimes
        due = [r for r in rules if r.next_execution_at is not None and r.next_execution_at <= now]
        due.sort(key=lambda r: (r.next_execution_at, r.priority))
        return due[:limit] if limit else due
