"""
Trigger catalog: built-in triggers plus tenant-defined ``custom.*`` ones.

Rule builders use it to list available triggers and the context fields
each one provides; the rule validator uses it to reject unknown triggers.
"""

import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from crm_automation.domain.automation import AutomationTrigger
from crm_automation.domain.exceptions import AutomationValidationError

CUSTOM_PREFIX = "custom."


class TriggerCategory(str, Enum):
    SESSION = "session"
    MESSAGE = "message"
    PIPELINE = "pipeline"
    TEMPORAL = "temporal"
    TRANSACTION = "transaction"
    BEHAVIOR = "behavior"
    CUSTOM = "custom"
    WEBHOOK = "webhook"


@dataclass(frozen=True)
class TriggerParameter:
    name: str
    type: str
    description: str = ""


@dataclass(frozen=True)
class TriggerMetadata:
    code: str
    name: str
    description: str
    category: TriggerCategory
    is_system: bool = False
    parameters: Tuple[TriggerParameter, ...] = field(default_factory=tuple)


def _p(name: str, type_: str, description: str = "") -> TriggerParameter:
    return TriggerParameter(name=name, type=type_, description=description)


_SESSION_IDS = (_p("session_id", "uuid"), _p("contact_id", "uuid"))

SYSTEM_TRIGGERS: Tuple[TriggerMetadata, ...] = (
    TriggerMetadata(
        AutomationTrigger.SESSION_ENDED.value, "Session ended",
        "A session was closed normally", TriggerCategory.SESSION, True,
        _SESSION_IDS + (
            _p("session_duration_minutes", "float", "Session length in minutes"),
            _p("message_count", "int", "Messages exchanged in the session"),
            _p("resolved", "bool", "Whether the session was resolved"),
            _p("agent_id", "uuid", "First agent of the session"),
        ),
    ),
    TriggerMetadata(
        AutomationTrigger.SESSION_TIMEOUT.value, "Session timed out",
        "A session expired due to inactivity", TriggerCategory.SESSION, True,
        _SESSION_IDS + (
            _p("hours_since_last_message", "float"),
            _p("last_message_at", "timestamp"),
            _p("message_count", "int"),
        ),
    ),
    TriggerMetadata(
        AutomationTrigger.SESSION_RESOLVED.value, "Session resolved",
        "A session was marked as resolved", TriggerCategory.SESSION, True,
        _SESSION_IDS + (_p("agent_id", "uuid", "Agent who resolved it"), _p("message_count", "int")),
    ),
    TriggerMetadata(
        AutomationTrigger.SESSION_ESCALATED.value, "Session escalated",
        "A session was escalated to another level", TriggerCategory.SESSION, True,
        _SESSION_IDS + (_p("escalation_reason", "string"),),
    ),
    TriggerMetadata(
        AutomationTrigger.NO_RESPONSE.value, "No response",
        "The contact has not answered for a while", TriggerCategory.MESSAGE, True,
        _SESSION_IDS + (_p("hours_since_last_message", "float"), _p("message_count", "int")),
    ),
    TriggerMetadata(
        AutomationTrigger.MESSAGE_RECEIVED.value, "Message received",
        "A new inbound message arrived", TriggerCategory.MESSAGE, True,
        _SESSION_IDS + (_p("message_id", "uuid"), _p("message_count", "int")),
    ),
    TriggerMetadata(
        AutomationTrigger.STATUS_CHANGED.value, "Status changed",
        "The contact moved to another pipeline status", TriggerCategory.PIPELINE, True,
        (_p("contact_id", "uuid"), _p("old_status_id", "uuid"), _p("new_status_id", "uuid")),
    ),
    TriggerMetadata(
        AutomationTrigger.STAGE_COMPLETED.value, "Stage completed",
        "The contact completed a pipeline stage", TriggerCategory.PIPELINE, True,
        (_p("contact_id", "uuid"),),
    ),
    TriggerMetadata(
        AutomationTrigger.AFTER_DELAY.value, "After delay",
        "A delayed follow-up check came due", TriggerCategory.TEMPORAL, True,
        (_p("contact_id", "uuid"), _p("delay_minutes", "int")),
    ),
    TriggerMetadata(
        AutomationTrigger.SCHEDULED.value, "Scheduled",
        "A recurrence schedule fired", TriggerCategory.TEMPORAL, True,
        (_p("executed_at", "timestamp"), _p("tenant_id", "string"), _p("pipeline_id", "uuid")),
    ),
    TriggerMetadata(
        AutomationTrigger.PURCHASE_COMPLETED.value, "Purchase completed",
        "The contact completed a purchase", TriggerCategory.TRANSACTION, True,
        (_p("contact_id", "uuid"), _p("amount", "float"), _p("currency", "string")),
    ),
    TriggerMetadata(
        AutomationTrigger.PAYMENT_RECEIVED.value, "Payment received",
        "A payment from the contact was confirmed", TriggerCategory.TRANSACTION, True,
        (_p("contact_id", "uuid"), _p("amount", "float")),
    ),
    TriggerMetadata(
        AutomationTrigger.REFUND_ISSUED.value, "Refund issued",
        "A refund was issued to the contact", TriggerCategory.TRANSACTION, True,
        (_p("contact_id", "uuid"), _p("amount", "float")),
    ),
    TriggerMetadata(
        AutomationTrigger.CART_ABANDONED.value, "Cart abandoned",
        "The contact left items in the cart", TriggerCategory.TRANSACTION, True,
        (_p("contact_id", "uuid"), _p("cart_value", "float")),
    ),
    TriggerMetadata(
        AutomationTrigger.ORDER_SHIPPED.value, "Order shipped",
        "An order of the contact was shipped", TriggerCategory.TRANSACTION, True,
        (_p("contact_id", "uuid"), _p("order_id", "string")),
    ),
    TriggerMetadata(
        AutomationTrigger.PAGE_VISITED.value, "Page visited",
        "The contact visited a tracked page", TriggerCategory.BEHAVIOR, True,
        (_p("contact_id", "uuid"), _p("url", "string")),
    ),
    TriggerMetadata(
        AutomationTrigger.FORM_SUBMITTED.value, "Form submitted",
        "The contact submitted a form", TriggerCategory.BEHAVIOR, True,
        (_p("contact_id", "uuid"), _p("form_id", "string")),
    ),
    TriggerMetadata(
        AutomationTrigger.FILE_DOWNLOADED.value, "File downloaded",
        "The contact downloaded a file", TriggerCategory.BEHAVIOR, True,
        (_p("contact_id", "uuid"), _p("file_name", "string")),
    ),
)


class TriggerRegistry:
    """Thread-safe catalog of system and custom triggers."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._system: Dict[str, TriggerMetadata] = {t.code: t for t in SYSTEM_TRIGGERS}
        self._custom: Dict[str, TriggerMetadata] = {}

    def register_custom_trigger(self, trigger: TriggerMetadata) -> TriggerMetadata:
        """
        Register a tenant-defined trigger.

        Raises:
            AutomationValidationError: If the code is empty, shadows a system
                trigger, or lacks the ``custom.`` prefix
        """
        if not trigger.code:
            raise AutomationValidationError("trigger code cannot be empty", field="code")
        with self._lock:
            if trigger.code in self._system:
                raise AutomationValidationError(
                    f"cannot override system trigger: {trigger.code}", field="code"
                )
            if not trigger.code.startswith(CUSTOM_PREFIX):
                raise AutomationValidationError(
                    "custom triggers must start with 'custom.' prefix", field="code"
                )
            registered = replace(trigger, is_system=False, category=TriggerCategory.CUSTOM)
            self._custom[trigger.code] = registered
            return registered

    def unregister_custom_trigger(self, code: str) -> None:
        with self._lock:
            if code in self._system:
                raise AutomationValidationError("cannot unregister system trigger", field="code")
            self._custom.pop(code, None)

    def is_valid_trigger(self, code: str) -> bool:
        code = str(getattr(code, "value", code))
        with self._lock:
            return code in self._system or code in self._custom

    def get_trigger(self, code: str) -> Optional[TriggerMetadata]:
        with self._lock:
            return self._system.get(code) or self._custom.get(code)

    def list_system_triggers(self) -> List[TriggerMetadata]:
        with self._lock:
            return list(self._system.values())

    def list_custom_triggers(self) -> List[TriggerMetadata]:
        with self._lock:
            return list(self._custom.values())

    def list_all_triggers(self) -> List[TriggerMetadata]:
        return self.list_system_triggers() + self.list_custom_triggers()

    def list_triggers_by_category(self, category: TriggerCategory) -> List[TriggerMetadata]:
        return [t for t in self.list_all_triggers() if t.category == category]

    def parameters_for(self, code: str) -> List[TriggerParameter]:
        trigger = self.get_trigger(code)
        if trigger is None:
            raise AutomationValidationError(f"trigger not found: {code}", field="trigger")
        return list(trigger.parameters)
