from .handlers import WebhookIngestor, WebhookResult
from .schemas import (
    DelegationCreatedEvent,
    DelegationRevokedEvent,
    PingEvent,
    webhook_event_adapter,
)
from .verify import compute_signature, verify_signature

__all__ = [
    "WebhookIngestor",
    "WebhookResult",
    "DelegationCreatedEvent",
    "DelegationRevokedEvent",
    "PingEvent",
    "webhook_event_adapter",
    "compute_signature",
    "verify_signature",
]
