"""Core configuration, logging, errors and store connections"""

from .config import Settings, get_settings, settings
from .exceptions import (
    CallRouterException,
    TransientError,
    LockAcquisitionTimeout,
    StoreUnavailableError,
    UpstreamUnavailableError,
    WebhookDeadlineExceeded,
    WebhookSignatureError,
    InvalidWebhookPayload,
    ConfigurationError,
    UnsupportedOutcomeError,
)

__all__ = [
    "Settings",
    "get_settings",
    "settings",
    "CallRouterException",
    "TransientError",
    "LockAcquisitionTimeout",
    "StoreUnavailableError",
    "UpstreamUnavailableError",
    "WebhookDeadlineExceeded",
    "WebhookSignatureError",
    "InvalidWebhookPayload",
    "ConfigurationError",
    "UnsupportedOutcomeError",
]
