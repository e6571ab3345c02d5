"""
Action executors for the automation engine.

Each action type (send_message, assign_agent, send_webhook, ...) is
handled by one ActionExecutor. Executors declare a JSON Schema for their
params, check the identifiers they need on the ActionContext, and delegate
the side effect to an injected collaborator. The ActionExecutorRegistry
dispatches by action type and wraps failures in ActionExecutionError.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol
from uuid import UUID

import jsonschema
from jinja2.sandbox import SandboxedEnvironment

from crm_automation.domain.automation import AutomationAction, RuleAction
from crm_automation.domain.exceptions import ActionValidationError
from crm_automation.rules.context import ActionContext
from crm_automation.utils.logger import StructuredLogger, get_logger, mask_url
from crm_automation.utils.timezone import now_utc


_UUID_PATTERN = r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
_TEMPLATE_MARKER = re.compile(r"\{\{|\{%")
_QUOTED_NAME = re.compile(r"'([^']+)'")

# rule params are tenant-authored; templates only see the variables passed in
_jinja_env = SandboxedEnvironment(autoescape=False, keep_trailing_newline=True)


# ============================================================================
# Collaborator interfaces
# ============================================================================


class MessageSender(Protocol):
    def send_message(self, contact_id: UUID, channel_id: UUID, content: str) -> None: ...

    def send_template(
        self,
        contact_id: UUID,
        channel_id: UUID,
        template_name: str,
        params: Dict[str, Any],
    ) -> None: ...


class PipelineStatusChanger(Protocol):
    def change_status(self, contact_id: UUID, pipeline_id: UUID, status_id: UUID) -> None: ...


class AgentAssigner(Protocol):
    def assign_agent(self, session_id: UUID, agent_id: UUID) -> None: ...


class QueueAssigner(Protocol):
    def assign_to_queue(self, session_id: UUID, queue_id: UUID) -> None: ...


class WebhookSender(Protocol):
    def send_webhook(
        self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None
    ) -> None: ...


class TagManager(Protocol):
    def add_tag(self, contact_id: UUID, tag: str) -> None: ...

    def remove_tag(self, contact_id: UUID, tag: str) -> None: ...


class CustomFieldUpdater(Protocol):
    def update_custom_field(self, contact_id: UUID, field_name: str, value: Any) -> None: ...


class WorkflowTrigger(Protocol):
    def trigger_workflow(self, workflow_name: str, input: Dict[str, Any]) -> None: ...


# ============================================================================
# Errors
# ============================================================================


class UnknownActionTypeError(LookupError):
    """Raised when no executor is registered for an action type."""

    def __init__(self, action_type: str):
        super().__init__(f"no executor registered for action type '{action_type}'")
        self.action_type = action_type


@dataclass
class ActionExecutionError(Exception):
    """
    Wraps executor exceptions with context for engine-level reporting.

    Attributes:
        executor_name: Action type whose executor failed (e.g., "send_message")
        rule_id: Id of the rule that owned the action, if known
        original_error: The exception raised by validation or the executor
        context_data: Additional context (params, tenant, ...)
    """

    executor_name: str
    rule_id: Optional[str]
    original_error: Exception
    context_data: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return (
            f"Action '{self.executor_name}' failed for rule {self.rule_id}: "
            f"{self.original_error}"
        )


# ============================================================================
# Helpers
# ============================================================================


def _require(value: Any, name: str) -> Any:
    if not value:
        raise ActionValidationError(f"{name} is required", field=name)
    return value


def _uuid_param(params: Dict[str, Any], key: str) -> UUID:
    try:
        return UUID(str(params[key]))
    except (KeyError, ValueError) as e:
        raise ActionValidationError(f"{key} must be a valid UUID", field=key) from e


def render_template(text: str, variables: Dict[str, Any]) -> str:
    """
    Render ``{{ placeholders }}`` in text with Jinja2.

    Strings without template markers are returned untouched.
    """
    if not _TEMPLATE_MARKER.search(text):
        return text
    return _jinja_env.from_string(text).render(**variables)


def _render_params(value: Any, variables: Dict[str, Any]) -> Any:
    if isinstance(value, dict):
        return {key: _render_params(item, variables) for key, item in value.items()}
    if isinstance(value, list):
        return [_render_params(item, variables) for item in value]
    if isinstance(value, str):
        return render_template(value, variables)
    return value


class CollaboratorNotConfiguredError(RuntimeError):
    """Raised when an executor's collaborator was not wired."""

    def __init__(self, collaborator: str):
        super().__init__(f"{collaborator} not configured")
        self.collaborator = collaborator


# ============================================================================
# Executor base class
# ============================================================================


class ActionExecutor(ABC):
    """
    Executes one action type.

    Subclasses set ``action_type`` and ``params_schema`` and implement
    ``execute``. ``validate`` checks params against the schema and is
    called by the registry before ``execute``.
    """

    action_type: str = ""
    params_schema: Dict[str, Any] = {"type": "object"}

    def validate(self, params: Dict[str, Any]) -> None:
        try:
            jsonschema.validate(instance=params, schema=self.params_schema)
        except jsonschema.ValidationError as e:
            field_name = e.path[0] if e.path else None
            if field_name is None and e.validator == "required":
                # "'content' is a required property"
                match = _QUOTED_NAME.match(e.message)
                field_name = match.group(1) if match else None
            raise ActionValidationError(
                f"invalid params for '{self.action_type}': {e.message}",
                field=str(field_name) if field_name is not None else None,
            ) from e

    @abstractmethod
    def execute(self, action: RuleAction, context: ActionContext) -> Optional[Dict[str, Any]]:
        """Perform the side effect. Returns optional output details."""


# ============================================================================
# Messaging executors
# ============================================================================


class SendMessageExecutor(ActionExecutor):
    """Send free-text content to the contact (Jinja2 placeholders allowed)."""

    action_type = AutomationAction.SEND_MESSAGE.value
    params_schema = {
        "type": "object",
        "required": ["content"],
        "properties": {"content": {"type": "string", "minLength": 1}},
    }

    def __init__(self, message_sender: Optional[MessageSender] = None):
        self.message_sender = message_sender

    def execute(self, action, context):
        if self.message_sender is None:
            raise CollaboratorNotConfiguredError("message sender")
        contact_id = _require(context.contact_id, "contact_id")
        channel_id = _require(context.channel_id, "channel_id")

        content = render_template(action.params["content"], context.template_variables())
        self.message_sender.send_message(contact_id, channel_id, content)
        return {"content_length": len(content)}


class SendTemplateExecutor(ActionExecutor):
    """Send a named channel template with params."""

    action_type = AutomationAction.SEND_TEMPLATE.value
    params_schema = {
        "type": "object",
        "required": ["template_name"],
        "properties": {
            "template_name": {"type": "string", "minLength": 1},
            "params": {"type": "object"},
        },
    }

    def __init__(self, message_sender: Optional[MessageSender] = None):
        self.message_sender = message_sender

    def execute(self, action, context):
        if self.message_sender is None:
            raise CollaboratorNotConfiguredError("message sender")
        contact_id = _require(context.contact_id, "contact_id")
        channel_id = _require(context.channel_id, "channel_id")

        template_name = action.params["template_name"]
        params = _render_params(action.params.get("params", {}), context.template_variables())
        self.message_sender.send_template(contact_id, channel_id, template_name, params)
        return {"template_name": template_name}


# ============================================================================
# Pipeline / assignment executors
# ============================================================================


class ChangePipelineStatusExecutor(ActionExecutor):
    action_type = AutomationAction.CHANGE_PIPELINE_STATUS.value
    params_schema = {
        "type": "object",
        "required": ["status_id"],
        "properties": {"status_id": {"type": "string", "pattern": _UUID_PATTERN}},
    }

    def __init__(self, status_changer: Optional[PipelineStatusChanger] = None):
        self.status_changer = status_changer

    def execute(self, action, context):
        if self.status_changer is None:
            raise CollaboratorNotConfiguredError("pipeline status changer")
        contact_id = _require(context.contact_id, "contact_id")
        pipeline_id = _require(context.pipeline_id, "pipeline_id")
        status_id = _uuid_param(action.params, "status_id")

        self.status_changer.change_status(contact_id, pipeline_id, status_id)
        return {"status_id": str(status_id)}


class AssignAgentExecutor(ActionExecutor):
    action_type = AutomationAction.ASSIGN_AGENT.value
    params_schema = {
        "type": "object",
        "required": ["agent_id"],
        "properties": {"agent_id": {"type": "string", "pattern": _UUID_PATTERN}},
    }

    def __init__(self, agent_assigner: Optional[AgentAssigner] = None):
        self.agent_assigner = agent_assigner

    def execute(self, action, context):
        if self.agent_assigner is None:
            raise CollaboratorNotConfiguredError("agent assigner")
        session_id = _require(context.session_id, "session_id")
        agent_id = _uuid_param(action.params, "agent_id")

        self.agent_assigner.assign_agent(session_id, agent_id)
        return {"agent_id": str(agent_id)}


class AssignToQueueExecutor(ActionExecutor):
    action_type = AutomationAction.ASSIGN_TO_QUEUE.value
    params_schema = {
        "type": "object",
        "required": ["queue_id"],
        "properties": {"queue_id": {"type": "string", "pattern": _UUID_PATTERN}},
    }

    def __init__(self, queue_assigner: Optional[QueueAssigner] = None):
        self.queue_assigner = queue_assigner

    def execute(self, action, context):
        if self.queue_assigner is None:
            raise CollaboratorNotConfiguredError("queue assigner")
        session_id = _require(context.session_id, "session_id")
        queue_id = _uuid_param(action.params, "queue_id")

        self.queue_assigner.assign_to_queue(session_id, queue_id)
        return {"queue_id": str(queue_id)}


# ============================================================================
# Contact data executors
# ============================================================================


class _TagExecutor(ActionExecutor):
    params_schema = {
        "type": "object",
        "required": ["tag"],
        "properties": {"tag": {"type": "string", "minLength": 1}},
    }

    def __init__(self, tag_manager: Optional[TagManager] = None):
        self.tag_manager = tag_manager

    @abstractmethod
    def _apply(self, contact_id: UUID, tag: str) -> None:
        """Add or remove ``tag`` on the contact."""

    def execute(self, action, context):
        if self.tag_manager is None:
            raise CollaboratorNotConfiguredError("tag manager")
        contact_id = _require(context.contact_id, "contact_id")
        tag = action.params["tag"]

        self._apply(contact_id, tag)
        return {"tag": tag}


class AddTagExecutor(_TagExecutor):
    action_type = AutomationAction.ADD_TAG.value

    def _apply(self, contact_id, tag):
        self.tag_manager.add_tag(contact_id, tag)


class RemoveTagExecutor(_TagExecutor):
    action_type = AutomationAction.REMOVE_TAG.value

    def _apply(self, contact_id, tag):
        self.tag_manager.remove_tag(contact_id, tag)


class UpdateCustomFieldExecutor(ActionExecutor):
    action_type = AutomationAction.UPDATE_CUSTOM_FIELD.value
    params_schema = {
        "type": "object",
        "required": ["field_name", "value"],
        "properties": {"field_name": {"type": "string", "minLength": 1}},
    }

    def __init__(self, field_updater: Optional[CustomFieldUpdater] = None):
        self.field_updater = field_updater

    def execute(self, action, context):
        if self.field_updater is None:
            raise CollaboratorNotConfiguredError("custom field updater")
        contact_id = _require(context.contact_id, "contact_id")

        field_name = action.params["field_name"]
        self.field_updater.update_custom_field(contact_id, field_name, action.params["value"])
        return {"field_name": field_name}


# ============================================================================
# Integration executors
# ============================================================================


class SendWebhookExecutor(ActionExecutor):
    """
    POST a JSON payload to an external URL.

    The body is the configured ``payload`` (or the context identifiers when
    none is given) plus an ``automation`` block describing the rule and the
    contact/session ids. Delivery and non-2xx handling belong to the
    WebhookSender.
    """

    action_type = AutomationAction.SEND_WEBHOOK.value
    params_schema = {
        "type": "object",
        "required": ["url"],
        "properties": {
            "url": {"type": "string", "pattern": "^https?://"},
            "payload": {"type": "object"},
            "headers": {"type": "object", "additionalProperties": {"type": "string"}},
        },
    }

    def __init__(
        self,
        webhook_sender: Optional[WebhookSender] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.webhook_sender = webhook_sender
        self.logger = logger or get_logger(__name__)

    def build_payload(self, action: RuleAction, context: ActionContext) -> Dict[str, Any]:
        payload = action.params.get("payload")
        if payload is None:
            body: Dict[str, Any] = {"trigger": context.trigger}
            body.update(context.identifiers())
        else:
            body = _render_params(dict(payload), context.template_variables())

        body["automation"] = {
            "rule_id": str(context.rule_id) if context.rule_id else None,
            "rule_name": context.rule_name,
            "tenant_id": context.tenant_id,
            "trigger": context.trigger,
            "timestamp": now_utc().isoformat(),
        }
        if context.contact_id:
            body.setdefault("contact_id", str(context.contact_id))
        if context.session_id:
            body.setdefault("session_id", str(context.session_id))
        if context.metadata:
            body.setdefault("variables", dict(context.metadata))
        return body

    def execute(self, action, context):
        if self.webhook_sender is None:
            raise CollaboratorNotConfiguredError("webhook sender")

        url = action.params["url"]
        body = self.build_payload(action, context)
        self.webhook_sender.send_webhook(url, body, action.params.get("headers"))

        self.logger.debug(
            "Webhook dispatched",
            operation="send_webhook",
            context={"url": mask_url(url), "rule_id": str(context.rule_id)},
        )
        return {"url": mask_url(url)}


class TriggerWorkflowExecutor(ActionExecutor):
    action_type = AutomationAction.TRIGGER_WORKFLOW.value
    params_schema = {
        "type": "object",
        "required": ["workflow_name"],
        "properties": {
            "workflow_name": {"type": "string", "minLength": 1},
            "input": {"type": "object"},
        },
    }

    def __init__(self, workflow_trigger: Optional[WorkflowTrigger] = None):
        self.workflow_trigger = workflow_trigger

    def execute(self, action, context):
        if self.workflow_trigger is None:
            raise CollaboratorNotConfiguredError("workflow trigger")

        workflow_name = action.params["workflow_name"]
        workflow_input = action.params.get("input")
        if workflow_input is None:
            workflow_input = {"trigger": context.trigger}
            workflow_input.update(context.identifiers())

        self.workflow_trigger.trigger_workflow(workflow_name, dict(workflow_input))
        return {"workflow_name": workflow_name}


# ============================================================================
# Registry
# ============================================================================


class ActionExecutorRegistry:
    """
    Maps action types to executors and dispatches RuleActions.

    Example:
        registry = ActionExecutorRegistry()
        registry.register(SendMessageExecutor(message_sender))
        registry.execute(RuleAction("send_message", {"content": "Hi"}), action_context)
    """

    def __init__(self, logger: Optional[StructuredLogger] = None):
        self.logger = logger or get_logger(__name__)
        self._executors: Dict[str, ActionExecutor] = {}

    def register(self, executor: ActionExecutor) -> None:
        """
        Register (or replace) the executor for its action type.

        Raises:
            TypeError: If executor is not an ActionExecutor
            ValueError: If executor has no action_type
        """
        if not isinstance(executor, ActionExecutor):
            raise TypeError(f"Executor must be an ActionExecutor, got {type(executor)}")
        if not executor.action_type:
            raise ValueError("Executor must declare an action_type")

        self._executors[executor.action_type] = executor
        self.logger.debug(
            f"Registered action executor: {executor.action_type}",
            operation="register_action",
        )

    def get(self, action_type: str) -> ActionExecutor:
        key = str(getattr(action_type, "value", action_type))
        try:
            return self._executors[key]
        except KeyError:
            raise UnknownActionTypeError(key) from None

    def has(self, action_type: str) -> bool:
        return str(getattr(action_type, "value", action_type)) in self._executors

    def registered_types(self) -> List[str]:
        return sorted(self._executors)

    def validate(self, action: RuleAction) -> None:
        """Check params without executing. Raises ActionValidationError."""
        self.get(action.type).validate(action.params)

    def execute(self, action: RuleAction, context: ActionContext) -> Optional[Dict[str, Any]]:
        """
        Validate and execute ``action``.

        Raises:
            UnknownActionTypeError: If no executor handles action.type
            ActionExecutionError: If validation or execution fails
        """
        executor = self.get(action.type)
        rule_id = str(context.rule_id) if context.rule_id else None

        try:
            executor.validate(action.params)
            return executor.execute(action, context)
        except Exception as e:
            raise ActionExecutionError(
                executor_name=executor.action_type,
                rule_id=rule_id,
                original_error=e,
                context_data={"tenant_id": context.tenant_id, "params": dict(action.params)},
            ) from e


# ============================================================================
# Wiring
# ============================================================================


@dataclass(frozen=True)
class ActionServicesBundle:
    """
    Collaborators needed by the built-in executors.

    Any of them may be None; the matching executors are still registered
    and fail with "<collaborator> not configured" when used.
    """

    message_sender: Optional[MessageSender] = None
    status_changer: Optional[PipelineStatusChanger] = None
    agent_assigner: Optional[AgentAssigner] = None
    queue_assigner: Optional[QueueAssigner] = None
    webhook_sender: Optional[WebhookSender] = None
    tag_manager: Optional[TagManager] = None
    field_updater: Optional[CustomFieldUpdater] = None
    workflow_trigger: Optional[WorkflowTrigger] = None
    logger: Optional[StructuredLogger] = None


def register_actions(
    registry: ActionExecutorRegistry, services: ActionServicesBundle
) -> ActionExecutorRegistry:
    """
    Register every built-in executor with ``registry``.

    Returns the registry so bootstrap code can chain the call.
    """
    executors: List[ActionExecutor] = [
        SendMessageExecutor(services.message_sender),
        SendTemplateExecutor(services.message_sender),
        ChangePipelineStatusExecutor(services.status_changer),
        AssignAgentExecutor(services.agent_assigner),
        AssignToQueueExecutor(services.queue_assigner),
        AddTagExecutor(services.tag_manager),
        RemoveTagExecutor(services.tag_manager),
        UpdateCustomFieldExecutor(services.field_updater),
        SendWebhookExecutor(services.webhook_sender, logger=services.logger),
        TriggerWorkflowExecutor(services.workflow_trigger),
    ]
    for executor in executors:
        registry.register(executor)

    configured = [
        name
        for name in (
            "message_sender",
            "status_changer",
            "agent_assigner",
            "queue_assigner",
            "webhook_sender",
            "tag_manager",
            "field_updater",
            "workflow_trigger",
        )
        if getattr(services, name) is not None
    ]
    registry.logger.info(
        "Action executors registered",
        operation="register_actions",
        context={"action_count": len(executors), "configured_services": configured},
    )
    return registry


# ============================================================================
# Action catalog (discovery for rule builders)
# ============================================================================


ACTION_CATALOG: List[Dict[str, Any]] = [
    {"code": "send_message", "name": "Send message", "category": "messaging",
     "description": "Send a text message to the contact", "parameters": ["content"]},
    {"code": "send_template", "name": "Send template", "category": "messaging",
     "description": "Send an approved channel template", "parameters": ["template_name", "params"]},
    {"code": "send_email", "name": "Send e-mail", "category": "messaging",
     "description": "Send an e-mail to the contact", "parameters": ["subject", "body"]},
    {"code": "change_pipeline_status", "name": "Change pipeline status", "category": "pipeline",
     "description": "Move the contact to another pipeline status", "parameters": ["status_id"]},
    {"code": "assign_agent", "name": "Assign agent", "category": "assignment",
     "description": "Assign the session to an agent", "parameters": ["agent_id"]},
    {"code": "assign_to_queue", "name": "Assign to queue", "category": "assignment",
     "description": "Route the session to a queue", "parameters": ["queue_id"]},
    {"code": "create_task", "name": "Create task", "category": "productivity",
     "description": "Create a follow-up task", "parameters": ["title", "due_in_hours"]},
    {"code": "create_note", "name": "Create note", "category": "productivity",
     "description": "Attach a note to the contact", "parameters": ["content"]},
    {"code": "create_agent_report", "name": "Create agent report", "category": "productivity",
     "description": "Generate a report for the assigned agent", "parameters": []},
    {"code": "add_tag", "name": "Add tag", "category": "contact",
     "description": "Add a tag to the contact", "parameters": ["tag"]},
    {"code": "remove_tag", "name": "Remove tag", "category": "contact",
     "description": "Remove a tag from the contact", "parameters": ["tag"]},
    {"code": "update_custom_field", "name": "Update custom field", "category": "contact",
     "description": "Set a custom field on the contact", "parameters": ["field_name", "value"]},
    {"code": "send_webhook", "name": "Send webhook", "category": "integration",
     "description": "POST a JSON payload to an external URL", "parameters": ["url", "payload", "headers"]},
    {"code": "trigger_workflow", "name": "Trigger workflow", "category": "integration",
     "description": "Start a named external workflow", "parameters": ["workflow_name", "input"]},
    {"code": "notify_agent", "name": "Notify agent", "category": "notification",
     "description": "Send an internal notification to the agent", "parameters": ["message"]},
    {"code": "notify_coordinator", "name": "Notify coordinator", "category": "notification",
     "description": "Send an internal notification to the coordinator", "parameters": ["message"]},
]


def available_actions(registry: Optional[ActionExecutorRegistry] = None) -> List[Dict[str, Any]]:
    """
    Catalog entries for every known action type.

    When a registry is given each entry carries ``executable`` telling
    whether an executor is registered for it.
    """
    entries = [dict(entry) for entry in ACTION_CATALOG]
    if registry is not None:
        for entry in entries:
            entry["executable"] = registry.has(entry["code"])
    return entries
