# Security decision records shared by the authorization engine, the lockout
# policy and the security event logger.
#
# AuthorizationResult and LockoutResult are ephemeral: created per call and
# consumed immediately. SecurityEvent is the only record that reaches a store,
# and only through the audit sink.

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union
from uuid import uuid4

ResourceId = Union[int, str]

# Every denial reads the same to the caller, whatever the internal reason.
PUBLIC_DENIAL_MESSAGE = "The requested resource was not found."


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResourceType(str, Enum):
    """Owned resource kinds guarded by the authorization engine."""
    SONG = "Song"
    SETLIST = "Setlist"
    SETLIST_SONG = "SetlistSong"


class ResourceAction(str, Enum):
    CREATE = "Create"
    READ = "Read"
    UPDATE = "Update"
    DELETE = "Delete"
    LIST = "List"


class AuthorizationReason(str, Enum):
    """
    Internal cause of an authorization decision.

    Kept for audit fidelity only. Callers must not branch on anything but
    ``AuthorizationResult.is_authorized``.
    """
    AUTHORIZED = "Authorized"
    NOT_FOUND = "NotFound"
    OWNERSHIP_MISMATCH = "OwnershipMismatch"
    INVALID_USER = "InvalidUser"
    SYSTEM_ERROR = "SystemError"


class SecurityEventType(str, Enum):
    AUTHENTICATION = "Authentication"
    AUTHORIZATION = "Authorization"
    ACCOUNT_LOCKOUT = "AccountLockout"
    SUSPICIOUS_ACTIVITY = "SuspiciousActivity"
    DATA_ACCESS = "DataAccess"
    VALIDATION_FAILURE = "ValidationFailure"


class SecurityEventSeverity(str, Enum):
    """
    Severity levels for security events.

    Maps to log levels:
    - LOW: routine activity (info)
    - MEDIUM: worth a look (warning)
    - HIGH: denied access, lockouts, store failures (error)
    - CRITICAL: active attack indicators (critical)
    """
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    def to_log_level(self) -> int:
        """Convert severity to a stdlib logging level."""
        level_map = {
            SecurityEventSeverity.LOW: logging.INFO,
            SecurityEventSeverity.MEDIUM: logging.WARNING,
            SecurityEventSeverity.HIGH: logging.ERROR,
            SecurityEventSeverity.CRITICAL: logging.CRITICAL,
        }
        return level_map[self]

    @property
    def always_recorded(self) -> bool:
        """High and Critical events bypass any sampling policy."""
        return self in (SecurityEventSeverity.HIGH, SecurityEventSeverity.CRITICAL)


# ── Data Models ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class ResourceOwnership:
    """Minimal ownership projection fetched per resource type."""

    id: ResourceId
    owner_id: str


@dataclass
class AuthorizationResult:
    """Outcome of one ownership check."""

    is_authorized: bool
    user_id: str
    resource_type: ResourceType
    resource_id: str
    action: ResourceAction
    reason: AuthorizationReason
    security_context: Dict[str, Any] = field(default_factory=dict)
    checked_at: datetime = field(default_factory=utcnow)

    @property
    def public_message(self) -> str:
        """Text safe to show the caller. Identical for every denial kind."""
        return "" if self.is_authorized else PUBLIC_DENIAL_MESSAGE

    @classmethod
    def _build(cls, authorized, reason, user_id, resource_type, resource_id, action):
        return cls(
            is_authorized=authorized,
            user_id=user_id if isinstance(user_id, str) else "",
            resource_type=resource_type,
            resource_id=str(resource_id),
            action=action,
            reason=reason,
            security_context={
                "user_id": user_id,
                "resource_type": resource_type.value,
                "resource_id": str(resource_id),
                "action": action.value,
                "security_check": "resource_ownership",
            },
        )

    @classmethod
    def success(cls, user_id, resource_type, resource_id, action) -> "AuthorizationResult":
        return cls._build(True, AuthorizationReason.AUTHORIZED, user_id, resource_type, resource_id, action)

    @classmethod
    def not_found(cls, user_id, resource_type, resource_id, action) -> "AuthorizationResult":
        return cls._build(False, AuthorizationReason.NOT_FOUND, user_id, resource_type, resource_id, action)

    @classmethod
    def forbidden(cls, user_id, resource_type, resource_id, action, actual_owner_id: str = "") -> "AuthorizationResult":
        result = cls._build(False, AuthorizationReason.OWNERSHIP_MISMATCH, user_id, resource_type, resource_id, action)
        if actual_owner_id:
            result.security_context["actual_owner_id"] = actual_owner_id
        return result

    @classmethod
    def invalid_user(cls, user_id, resource_type, resource_id, action) -> "AuthorizationResult":
        return cls._build(False, AuthorizationReason.INVALID_USER, user_id, resource_type, resource_id, action)

    @classmethod
    def system_error(cls, user_id, resource_type, resource_id, action) -> "AuthorizationResult":
        return cls._build(False, AuthorizationReason.SYSTEM_ERROR, user_id, resource_type, resource_id, action)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_authorized": self.is_authorized,
            "user_id": self.user_id,
            "resource_type": self.resource_type.value,
            "resource_id": self.resource_id,
            "action": self.action.value,
            "reason": self.reason.value,
            "security_context": dict(self.security_context),
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass
class LockoutResult:
    """Outcome of one login attempt as seen by the lockout policy.

    ``message`` is generic and safe to show the end user. It reads the same
    for an unknown account and a wrong password below the threshold.
    ``failed_attempts`` and ``remaining_attempts`` are for the audit trail
    and must not be shown to the caller.
    """

    is_locked_out: bool
    lockout_end: Optional[datetime] = None
    failed_attempts: int = 0
    remaining_attempts: int = 0
    message: str = ""


@dataclass
class SecurityEvent:
    """A canonical audit record. Append-only once handed to a sink."""

    event_type: SecurityEventType
    severity: SecurityEventSeverity
    description: str
    user_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    additional_context: Dict[str, Any] = field(default_factory=dict)
    correlation_id: Optional[str] = None
    event_id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "description": self.description,
            "user_id": self.user_id,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "additional_context": self.additional_context,
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecurityEvent":
        return cls(
            event_type=SecurityEventType(data["event_type"]),
            severity=SecurityEventSeverity(data["severity"]),
            description=data["description"],
            user_id=data.get("user_id"),
            resource_type=data.get("resource_type"),
            resource_id=data.get("resource_id"),
            additional_context=data.get("additional_context") or {},
            correlation_id=data.get("correlation_id"),
            event_id=data["event_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )
