# Core module: shared building blocks for every setlist-guard component.
# - Security decision records (models)
# - Log/audit sanitization
# - Security event logging and sampling (audit_log, log_throttle)
# - SQLite connection helper

from .exceptions import GuardException, InvalidConfiguration, StoreUnavailable
from .models import (
    PUBLIC_DENIAL_MESSAGE,
    AuthorizationReason,
    AuthorizationResult,
    LockoutResult,
    ResourceAction,
    ResourceOwnership,
    ResourceType,
    SecurityEvent,
    SecurityEventSeverity,
    SecurityEventType,
)
from .sanitizer import (
    sanitize_ip_address,
    sanitize_message,
    sanitize_user_id,
    sanitize_value,
)

__all__ = [
    # Models
    "PUBLIC_DENIAL_MESSAGE",
    "AuthorizationReason",
    "AuthorizationResult",
    "LockoutResult",
    "ResourceAction",
    "ResourceOwnership",
    "ResourceType",
    "SecurityEvent",
    "SecurityEventSeverity",
    "SecurityEventType",
    # Errors
    "GuardException",
    "InvalidConfiguration",
    "StoreUnavailable",
    # Sanitization
    "sanitize_ip_address",
    "sanitize_message",
    "sanitize_user_id",
    "sanitize_value",
]
