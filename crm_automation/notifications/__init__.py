"""Outbound notification clients."""

from .webhook_service import WebhookClient, WebhookServiceError

__all__ = ["WebhookClient", "WebhookServiceError"]
