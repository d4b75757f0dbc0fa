"""
POS API Module
"""
from .client import (
    PosApiClient,
    PosApiError,
    PosTransportError,
    RateLimitExceededError,
)

__all__ = [
    "PosApiClient",
    "PosApiError",
    "PosTransportError",
    "RateLimitExceededError",
]
