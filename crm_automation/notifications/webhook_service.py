"""
Outbound webhook client used by the send_webhook action.

Posts JSON payloads with linear-backoff retries. Any non-2xx response is a
delivery failure.
"""

from __future__ import annotations

import json
import time
from typing import Any, Dict, Optional

import requests

from crm_automation.utils.logger import StructuredLogger, get_logger, mask_url

USER_AGENT = "crm-automation/1.0"


class WebhookServiceError(Exception):
    """Raised when a webhook could not be delivered."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class WebhookClient:
    """
    Client for delivering automation webhooks.

    Attributes:
        timeout_seconds: Per-request timeout
        max_retries: Total attempts per webhook
    """

    def __init__(
        self,
        http_client: Optional[requests.Session] = None,
        logger: Optional[StructuredLogger] = None,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        retry_delay_seconds: float = 0.5,
    ) -> None:
        """
        Initialize the webhook client.

        Args:
            http_client: Optional requests-like session (useful for testing)
            logger: Optional structured logger instance
            timeout_seconds: Request timeout
            max_retries: Number of attempts when delivering
            retry_delay_seconds: Base delay between retries (linear backoff)
        """
        self.logger = logger or get_logger(__name__)
        self.http_client = http_client or requests.Session()
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(1, max_retries)
        self.retry_delay_seconds = retry_delay_seconds

    def send_webhook(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        """
        POST ``payload`` as JSON to ``url``.

        Raises:
            WebhookServiceError: If every attempt failed or got a non-2xx reply
        """
        request_headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        if headers:
            request_headers.update(headers)

        body = json.dumps(payload, default=str)
        masked = mask_url(url)
        last_error: Optional[WebhookServiceError] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.http_client.post(
                    url, headers=request_headers, data=body, timeout=self.timeout_seconds
                )
            except requests.RequestException as exc:
                last_error = WebhookServiceError(f"request failed: {exc}")
            else:
                if 200 <= response.status_code < 300:
                    self.logger.debug(
                        "Webhook delivered",
                        operation="send_webhook",
                        context={"url": masked, "attempt": attempt, "status": response.status_code},
                    )
                    return
                last_error = WebhookServiceError(
                    f"webhook returned status {response.status_code}: {response.text[:200]}",
                    status_code=response.status_code,
                )
                # client errors will not succeed on retry (except rate limiting)
                if 400 <= response.status_code < 500 and response.status_code != 429:
                    break

            if attempt < self.max_retries:
                self.logger.warning(
                    "Webhook attempt failed, retrying",
                    operation="send_webhook",
                    context={"url": masked, "attempt": attempt},
                    error=str(last_error),
                )
                time.sleep(self.retry_delay_seconds * attempt)

        self.logger.error(
            "Webhook delivery failed",
            operation="send_webhook",
            context={"url": masked},
            error=str(last_error),
        )
        raise last_error or WebhookServiceError("webhook delivery failed")
