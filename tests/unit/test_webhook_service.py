import json
from types import SimpleNamespace

import pytest
import requests

from crm_automation.notifications.webhook_service import (
    USER_AGENT,
    WebhookClient,
    WebhookServiceError,
)
from crm_automation.utils.logger import NullLogger


URL = "https://hooks.example.com/services/T000/secret"


class HttpStub:
    """Records posts and replays status codes (or raises exceptions) in order."""

    def __init__(self, responses=None):
        self.responses = responses or []
        self.requests = []

    def post(self, url, headers=None, data=None, timeout=None):
        self.requests.append({"url": url, "headers": headers, "data": data, "timeout": timeout})
        index = min(len(self.requests) - 1, len(self.responses) - 1)
        outcome = self.responses[index] if self.responses else 200
        if isinstance(outcome, Exception):
            raise outcome
        text = "error" if outcome >= 400 else "ok"
        return SimpleNamespace(status_code=outcome, text=text)


def build_client(stub, max_retries=3):
    return WebhookClient(
        http_client=stub,
        logger=NullLogger(),
        timeout_seconds=5,
        max_retries=max_retries,
        retry_delay_seconds=0,
    )


def test_posts_json_with_default_headers():
    stub = HttpStub()

    build_client(stub).send_webhook(URL, {"rule": "r-1", "count": 2})

    request = stub.requests[0]
    assert request["url"] == URL
    assert request["headers"]["Content-Type"] == "application/json"
    assert request["headers"]["User-Agent"] == USER_AGENT
    assert request["timeout"] == 5
    assert json.loads(request["data"]) == {"rule": "r-1", "count": 2}


def test_custom_headers_are_merged():
    stub = HttpStub()

    build_client(stub).send_webhook(URL, {}, headers={"X-Signature": "abc"})

    assert stub.requests[0]["headers"]["X-Signature"] == "abc"
    assert stub.requests[0]["headers"]["Content-Type"] == "application/json"


def test_retries_server_errors_then_succeeds():
    stub = HttpStub([500, 503, 200])

    build_client(stub).send_webhook(URL, {})

    assert len(stub.requests) == 3


def test_client_error_is_not_retried():
    stub = HttpStub([404])

    with pytest.raises(WebhookServiceError) as exc:
        build_client(stub).send_webhook(URL, {})

    assert exc.value.status_code == 404
    assert len(stub.requests) == 1


def test_rate_limit_is_retried():
    stub = HttpStub([429, 204])
    build_client(stub).send_webhook(URL, {})
    assert len(stub.requests) == 2


def test_gives_up_after_max_retries():
    stub = HttpStub([502])

    with pytest.raises(WebhookServiceError, match="status 502"):
        build_client(stub, max_retries=2).send_webhook(URL, {})

    assert len(stub.requests) == 2


def test_connection_errors_are_retried():
    stub = HttpStub([requests.ConnectionError("refused"), 200])
    build_client(stub).send_webhook(URL, {})
    assert len(stub.requests) == 2


def test_connection_error_exhausted():
    stub = HttpStub([requests.Timeout("slow")])

    with pytest.raises(WebhookServiceError, match="request failed"):
        build_client(stub, max_retries=1).send_webhook(URL, {})


def test_non_json_values_are_stringified():
    stub = HttpStub()
    build_client(stub).send_webhook(URL, {"when": SimpleNamespace(x=1)})
    assert "namespace" in json.loads(stub.requests[0]["data"])["when"]
