"""Inbound webhook handling -- authentication, parsing, audit and routing.

Provides:
- WebhookAuthenticator: HMAC-SHA256 signature verification and handshake echo
- parse_webhook_event(): board event body -> WebhookEvent
- WebhookAuditLog: best-effort delivery log in the document store
- InventoryWatcher: cache invalidation and low-stock alerts for products
- WebhookPipeline: end-to-end handling of one delivery
"""

from src.gymsync.webhooks.audit import WebhookAuditLog
from src.gymsync.webhooks.auth import WebhookAuthenticator, challenge_response, extract_signature
from src.gymsync.webhooks.events import WebhookPayloadError, parse_webhook_event
from src.gymsync.webhooks.inventory import InventoryWatcher
from src.gymsync.webhooks.pipeline import WebhookPipeline, WebhookResponse

__all__ = [
    "InventoryWatcher",
    "WebhookAuditLog",
    "WebhookAuthenticator",
    "WebhookPayloadError",
    "WebhookPipeline",
    "WebhookResponse",
    "challenge_response",
    "extract_signature",
    "parse_webhook_event",
]
