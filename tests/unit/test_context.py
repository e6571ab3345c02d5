"""
Unit tests for evaluation contexts and ActionContext.
"""

import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from crm_automation.rules.context import (
    ActionContext,
    build_contact_context,
    build_session_context,
)

OCCURRED = datetime(2024, 3, 4, 10, 0, tzinfo=timezone.utc)


class TestBuildSessionContext:
    def test_ids_are_stringified(self):
        session_id, contact_id, channel_id = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

        ctx = build_session_context(session_id, contact_id, channel_id, "t1", occurred_at=OCCURRED)

        assert ctx == {
            "session_id": str(session_id),
            "contact_id": str(contact_id),
            "channel_id": str(channel_id),
            "tenant_id": "t1",
            "occurred_at": OCCURRED.isoformat(),
        }

    def test_missing_channel(self):
        ctx = build_session_context(uuid.uuid4(), uuid.uuid4(), None, "t1")
        assert ctx["channel_id"] is None
        assert ctx["occurred_at"]

    def test_metadata_is_merged_last(self):
        ctx = build_session_context(
            uuid.uuid4(),
            uuid.uuid4(),
            None,
            "t1",
            metadata={"message_count": 3, "tenant_id": "override"},
        )
        assert ctx["message_count"] == 3
        assert ctx["tenant_id"] == "override"


def test_build_contact_context():
    contact_id = uuid.uuid4()

    ctx = build_contact_context(contact_id, "t1", OCCURRED, {"new_status_id": "won"})

    assert ctx["contact_id"] == str(contact_id)
    assert ctx["new_status_id"] == "won"
    assert "session_id" not in ctx


class TestActionContext:
    def test_is_immutable(self):
        context = ActionContext(tenant_id="t1")
        with pytest.raises(AttributeError):
            context.tenant_id = "t2"

    def test_for_rule_binds_rule_fields(self):
        rule = SimpleNamespace(id=uuid.uuid4(), name="Thanks", pipeline_id=uuid.uuid4(), tenant_id="t9")
        context = ActionContext(tenant_id="t1", contact_id=uuid.uuid4(), trigger="session.ended")

        bound = context.for_rule(rule)

        assert bound.rule_id == rule.id
        assert bound.rule_name == "Thanks"
        assert bound.pipeline_id == rule.pipeline_id
        assert bound.tenant_id == "t9"
        assert bound.contact_id == context.contact_id
        assert context.rule_id is None

    def test_identifiers_skip_empty_values(self):
        contact_id = uuid.uuid4()
        context = ActionContext(tenant_id="t1", contact_id=contact_id)

        assert context.identifiers() == {"tenant_id": "t1", "contact_id": str(contact_id)}

    def test_template_variables(self):
        context = ActionContext(
            tenant_id="t1",
            rule_name="Thanks",
            trigger="session.resolved",
            metadata={"first_name": "Dana"},
        )

        variables = context.template_variables()

        assert variables["first_name"] == "Dana"
        assert variables["rule_name"] == "Thanks"
        assert variables["trigger"] == "session.resolved"
        assert variables["tenant_id"] == "t1"
