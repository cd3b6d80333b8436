# Core modules - Config, Exceptions
from .config import settings, get_settings
from .exceptions import (
    RientroException,
    ConfigurationError,
    StoreError,
    PushDeliveryError,
    DeadlineExceededError,
    MalformedRecordError,
    TripNotFoundError,
    InvalidTransitionError,
    WebhookAuthError,
)

__all__ = [
    "settings",
    "get_settings",
    "RientroException",
    "ConfigurationError",
    "StoreError",
    "PushDeliveryError",
    "DeadlineExceededError",
    "MalformedRecordError",
    "TripNotFoundError",
    "InvalidTransitionError",
    "WebhookAuthError",
]
