"""
Context builders for the automation engine.

Two contexts travel with every trigger:

- the *evaluation context*, a flat dict of field -> value that conditions
  are evaluated against, and
- the *ActionContext*, the identifiers actions need to perform side
  effects (who, where, which rule).
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Mapping, Optional
from uuid import UUID

from crm_automation.utils.timezone import now_utc


@dataclass(frozen=True)
class ActionContext:
    """
    Immutable identifiers passed to every action executor.

    The engine fills ``rule_id``, ``pipeline_id`` and ``tenant_id`` from the
    matched rule before dispatching, via ``for_rule``.

    Attributes:
        tenant_id: Owning tenant
        session_id: Conversation session, when the trigger is session-scoped
        contact_id: Contact the automation acts on
        channel_id: Channel used to reach the contact
        pipeline_id: Pipeline of the matched rule
        rule_id: Matched rule id (engine-populated)
        rule_name: Matched rule name (engine-populated)
        trigger: Trigger value that started the evaluation
        metadata: Free-form extra data, also exposed to message templates
    """

    tenant_id: str
    session_id: Optional[UUID] = None
    contact_id: Optional[UUID] = None
    channel_id: Optional[UUID] = None
    pipeline_id: Optional[UUID] = None
    rule_id: Optional[UUID] = None
    rule_name: Optional[str] = None
    trigger: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def for_rule(self, rule: Any) -> "ActionContext":
        """Copy of this context bound to ``rule``."""
        return replace(
            self,
            rule_id=rule.id,
            rule_name=rule.name,
            pipeline_id=rule.pipeline_id,
            tenant_id=rule.tenant_id,
        )

    def identifiers(self) -> Dict[str, Any]:
        """Non-empty ids as strings, for payloads and logs."""
        ids = {
            "tenant_id": self.tenant_id,
            "rule_id": self.rule_id,
            "pipeline_id": self.pipeline_id,
            "session_id": self.session_id,
            "contact_id": self.contact_id,
            "channel_id": self.channel_id,
        }
        return {key: str(value) for key, value in ids.items() if value}

    def template_variables(self) -> Dict[str, Any]:
        variables: Dict[str, Any] = dict(self.metadata)
        variables.update(self.identifiers())
        if self.rule_name:
            variables["rule_name"] = self.rule_name
        if self.trigger:
            variables["trigger"] = self.trigger
        return variables


def _with_metadata(base: Dict[str, Any], metadata: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    context = dict(base)
    if metadata:
        context.update(metadata)
    return context


def build_session_context(
    session_id: UUID,
    contact_id: UUID,
    channel_id: Optional[UUID],
    tenant_id: str,
    occurred_at: Optional[datetime] = None,
    metadata: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Evaluation context for session-scoped triggers.

    Example:
        >>> ctx = build_session_context(sid, cid, chid, "t1", metadata={"message_count": 3})
        >>> ctx["message_count"]
        3
    """
    base = {
        "session_id": str(session_id),
        "contact_id": str(contact_id),
        "channel_id": str(channel_id) if channel_id else None,
        "tenant_id": tenant_id,
        "occurred_at": (occurred_at or now_utc()).isoformat(),
    }
    return _with_metadata(base, metadata)


def build_contact_context(
    contact_id: UUID,
    tenant_id: str,
    occurred_at: Optional[datetime] = None,
    metadata: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Evaluation context for contact-scoped triggers (e.g. status.changed)."""
    base = {
        "contact_id": str(contact_id),
        "tenant_id": tenant_id,
        "occurred_at": (occurred_at or now_utc()).isoformat(),
    }
    return _with_metadata(base, metadata)
