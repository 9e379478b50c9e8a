"""Provider webhook processing."""
from payment_orchestrator.webhooks.processor import WEBHOOK_STATUS_MAP, WebhookProcessor, WebhookResult

__all__ = ["WEBHOOK_STATUS_MAP", "WebhookProcessor", "WebhookResult"]
