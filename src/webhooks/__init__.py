"""
POS Webhooks Module
"""
from .dispatcher import WebhookDispatcher
from .events import WebhookEvent, WebhookOutcome, WebhookStatus
from .verification import compute_signature, verify_signature

__all__ = [
    "WebhookDispatcher",
    "WebhookEvent",
    "WebhookOutcome",
    "WebhookStatus",
    "compute_signature",
    "verify_signature",
]
