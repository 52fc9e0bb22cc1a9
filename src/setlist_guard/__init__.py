# Setlist Guard - Main Package
#
# Security decision layer for Setlist Studio: resource ownership
# authorization, progressive account lockout and an injection-safe,
# tamper-evident security audit trail.

__version__ = "0.1.0"
__author__ = "Setlist Studio Team"
__description__ = "Security decision layer for Setlist Studio"

from .authz import AuthorizationCheck, CompositeCheck, ResourceAuthorizer
from .config import GuardSettings
from .core import (
    AuthorizationResult,
    LockoutResult,
    ResourceAction,
    ResourceType,
    SecurityEvent,
    SecurityEventSeverity,
    SecurityEventType,
)
from .core.audit_log import SecurityEventLogger
from .lockout import LockoutLadder, ProgressiveLockoutPolicy

__all__ = [
    "__version__",
    "AuthorizationCheck",
    "AuthorizationResult",
    "CompositeCheck",
    "GuardSettings",
    "LockoutLadder",
    "LockoutResult",
    "ProgressiveLockoutPolicy",
    "ResourceAction",
    "ResourceAuthorizer",
    "ResourceType",
    "SecurityEvent",
    "SecurityEventLogger",
    "SecurityEventSeverity",
    "SecurityEventType",
]
