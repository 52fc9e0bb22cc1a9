# Security event logging.
#
# Turns authorization and lockout outcomes, and raw security signals, into
# canonical SecurityEvent records. Every record is:
#
#   - sanitized field by field before it exists (no raw caller text in it)
#   - mirrored to a structlog JSON stream (logger "setlist_guard.security")
#   - handed to the audit sink as a fire-and-forget task
#
# Logging is advisory. A sink that raises, times out or returns False is
# reported on the fallback logger and never reaches the caller.

import asyncio
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Set

import structlog

from ..config import GuardSettings
from .log_throttle import EventSampler
from .models import (
    AuthorizationReason,
    AuthorizationResult,
    LockoutResult,
    SecurityEvent,
    SecurityEventSeverity,
    SecurityEventType,
)
from .sanitizer import (
    PLACEHOLDER,
    contains_injection,
    sanitize_ip_address,
    sanitize_message,
    sanitize_user_id,
    sanitize_value,
)

STRUCTURED_LOGGER_NAME = "setlist_guard.security"
FALLBACK_LOGGER_NAME = "setlist_guard.audit.fallback"

INJECTION_ACTIVITY = "LogInjectionAttempt"

fallback_logger = logging.getLogger(FALLBACK_LOGGER_NAME)


def configure_structlog(force: bool = False):
    """Configure structlog for JSON security events on top of stdlib logging."""
    if structlog.is_configured() and not force:
        return
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _injected_fields(fields: Mapping[str, Any], depth: int = 0) -> List[str]:
    """Names of raw string fields that carried control/CRLF/ANSI content."""
    found = []
    for name, value in fields.items():
        if isinstance(value, str):
            if contains_injection(value):
                found.append(str(name))
        elif isinstance(value, Mapping) and depth < 3:
            found.extend(f"{name}.{inner}" for inner in _injected_fields(value, depth + 1))
        elif isinstance(value, (list, tuple)) and depth < 3:
            if any(isinstance(item, str) and contains_injection(item) for item in value):
                found.append(str(name))
    return found


class SecurityEventLogger:
    """
    Canonical security event recorder.

    Args:
        sink: Audit store (``AuditSink``). None keeps events on the
            structured log only.
        settings: Message length bound, sink timeout and sampling interval.
        sampler: Override the default ``EventSampler``.
    """

    def __init__(
        self,
        sink=None,
        settings: Optional[GuardSettings] = None,
        sampler: Optional[EventSampler] = None,
    ):
        self.sink = sink
        self.settings = settings or GuardSettings()
        self.sampler = sampler or EventSampler(self.settings.sample_interval_seconds)
        self._pending: Set[asyncio.Task] = set()

        configure_structlog()
        self.logger = structlog.get_logger(STRUCTURED_LOGGER_NAME)

    # ── Core ─────────────────────────────────────────────────────────

    def log_security_event(
        self,
        event_type: SecurityEventType,
        severity: SecurityEventSeverity,
        description: str,
        user_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Any = None,
        additional_context: Any = None,
        correlation_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        check_injection: bool = True,
    ) -> Optional[SecurityEvent]:
        """
        Sanitize, record and dispatch one security event.

        Returns:
            The recorded SecurityEvent, or None when it was sampled out.
        """
        max_length = self.settings.max_message_length

        injected: List[str] = []
        if check_injection:
            injected = _injected_fields({
                "description": description,
                "user_id": user_id,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "correlation_id": correlation_id,
                "ip_address": ip_address,
            })
            if isinstance(additional_context, Mapping):
                injected.extend(f"context.{name}" for name in _injected_fields(additional_context))

        if additional_context is None:
            context: Dict[str, Any] = {}
        elif isinstance(additional_context, Mapping):
            context = sanitize_value(additional_context, max_length)
        else:
            context = {"context": sanitize_value(additional_context, max_length)}
        if not isinstance(context, dict):
            context = {"context": context}
        if ip_address is not None:
            context["ip_address"] = sanitize_ip_address(ip_address)

        event = SecurityEvent(
            event_type=event_type,
            severity=severity,
            description=sanitize_message(description, max_length),
            user_id=sanitize_user_id(user_id) if user_id is not None else None,
            resource_type=sanitize_message(resource_type, max_length) if resource_type is not None else None,
            resource_id=sanitize_message(resource_id, max_length) if resource_id is not None else None,
            additional_context=context,
            correlation_id=sanitize_message(correlation_id, 128) if correlation_id else None,
        )
        if event.correlation_id is None:
            event.correlation_id = event.event_id

        recorded = self._record(event)

        if injected:
            self.log_security_event(
                SecurityEventType.SUSPICIOUS_ACTIVITY,
                SecurityEventSeverity.MEDIUM,
                f"Suspicious activity detected: control characters neutralized in {event_type.value} event",
                user_id=event.user_id,
                resource_type="Security",
                additional_context={
                    "activity_type": INJECTION_ACTIVITY,
                    "source_event_id": event.event_id,
                    "fields": sorted(injected),
                },
                correlation_id=event.correlation_id,
                check_injection=False,
            )

        return event if recorded else None

    def _record(self, event: SecurityEvent) -> bool:
        should_record, note = self.sampler.should_record(
            event.user_id, event.description, event.severity
        )
        if not should_record:
            return False
        if note:
            event.additional_context["sampling_note"] = note

        fields = event.to_dict()
        # TimeStamper owns "timestamp" on the structured stream
        fields["occurred_at"] = fields.pop("timestamp")
        self.logger.log(event.severity.to_log_level(), "security_event", **fields)
        self._dispatch(event)
        return True

    def _dispatch(self, event: SecurityEvent):
        if self.sink is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            fallback_logger.warning(
                "No running event loop; audit event not persisted: %s",
                json.dumps(event.to_dict()),
            )
            return
        task = loop.create_task(self._append(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _append(self, event: SecurityEvent):
        try:
            stored = await asyncio.wait_for(
                self.sink.append(event), timeout=self.settings.store_timeout_seconds
            )
        except Exception as e:
            fallback_logger.error(
                "Audit sink failed (%s); event: %s", type(e).__name__, json.dumps(event.to_dict())
            )
            return
        if not stored:
            fallback_logger.error("Audit sink rejected event: %s", json.dumps(event.to_dict()))

    async def drain(self):
        """Wait for every in-flight audit write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    # ── Authorization ────────────────────────────────────────────────

    def log_authorization_outcome(
        self, result: AuthorizationResult, correlation_id: Optional[str] = None
    ) -> Optional[SecurityEvent]:
        action = result.action.value
        resource_type = result.resource_type.value
        context = dict(result.security_context)
        context["reason"] = result.reason.value

        if result.is_authorized:
            return self.log_security_event(
                SecurityEventType.AUTHORIZATION,
                SecurityEventSeverity.LOW,
                f"User successfully authorized for {action} on {resource_type}",
                user_id=result.user_id,
                resource_type=resource_type,
                resource_id=result.resource_id,
                additional_context=context,
                correlation_id=correlation_id,
            )

        if result.reason is AuthorizationReason.SYSTEM_ERROR:
            description = f"Authorization for {action} on {resource_type} failed closed: store unavailable"
        elif result.reason is AuthorizationReason.INVALID_USER:
            description = f"Authorization for {action} on {resource_type} rejected: invalid user identity"
        else:
            description = f"User attempted unauthorized {action} on {resource_type}"

        return self.log_security_event(
            SecurityEventType.AUTHORIZATION,
            SecurityEventSeverity.HIGH,
            description,
            user_id=result.user_id or PLACEHOLDER,
            resource_type=resource_type,
            resource_id=result.resource_id,
            additional_context=context,
            correlation_id=correlation_id,
        )

    def log_bulk_outcome(
        self,
        results: Mapping[Any, AuthorizationResult],
        correlation_id: Optional[str] = None,
    ) -> Optional[SecurityEvent]:
        """One summary event for a bulk check."""
        if not results:
            return None

        first = next(iter(results.values()))
        action = first.action.value
        resource_type = first.resource_type.value
        denied = {str(rid): r.reason.value for rid, r in results.items() if not r.is_authorized}

        if not denied:
            return self.log_data_access(
                first.user_id,
                resource_type,
                None,
                action,
                record_count=len(results),
                correlation_id=correlation_id,
            )

        return self.log_security_event(
            SecurityEventType.AUTHORIZATION,
            SecurityEventSeverity.HIGH,
            f"Bulk {action} on {resource_type} denied for {len(denied)} of {len(results)} resources",
            user_id=first.user_id or PLACEHOLDER,
            resource_type=resource_type,
            additional_context={
                "action": action,
                "requested": len(results),
                "denied": denied,
            },
            correlation_id=correlation_id,
        )

    def log_data_access(
        self,
        user_id: str,
        resource_type: str,
        resource_id: Any,
        action: str,
        record_count: Optional[int] = None,
        correlation_id: Optional[str] = None,
    ) -> Optional[SecurityEvent]:
        description = f"User performed {action} on {resource_type}"
        if record_count is not None:
            description += f" ({record_count} records)"
        return self.log_security_event(
            SecurityEventType.DATA_ACCESS,
            SecurityEventSeverity.LOW,
            description,
            user_id=user_id,
            resource_type=resource_type,
            resource_id=resource_id,
            additional_context={"action": action, "record_count": record_count},
            correlation_id=correlation_id,
        )

    # ── Authentication / lockout ─────────────────────────────────────

    def log_authentication_success(
        self,
        user_id: str,
        method: str = "password",
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[SecurityEvent]:
        # A fresh session starts sampling over for this user
        self.sampler.reset_user(sanitize_user_id(user_id))
        return self.log_security_event(
            SecurityEventType.AUTHENTICATION,
            SecurityEventSeverity.LOW,
            f"User successfully authenticated using {method}",
            user_id=user_id,
            resource_type="Authentication",
            additional_context={"authentication_method": method, "user_agent": user_agent},
            ip_address=ip_address,
        )

    def log_authentication_failure(
        self,
        attempted_user_id: Optional[str],
        method: str,
        failure_reason: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        extra_context: Optional[Dict[str, Any]] = None,
    ) -> Optional[SecurityEvent]:
        context = {
            "authentication_method": method,
            "failure_reason": failure_reason,
            "user_agent": user_agent,
        }
        context.update(extra_context or {})
        return self.log_security_event(
            SecurityEventType.AUTHENTICATION,
            SecurityEventSeverity.MEDIUM,
            f"Authentication failed for user {attempted_user_id or '[unknown]'}: {failure_reason}",
            user_id=attempted_user_id,
            resource_type="Authentication",
            additional_context=context,
            ip_address=ip_address,
        )

    def log_lockout_event(
        self,
        lockout_result: LockoutResult,
        user_id: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[SecurityEvent]:
        """Record a failed attempt: a lockout (High) or a counted failure (Medium)."""
        if not lockout_result.is_locked_out:
            return self.log_authentication_failure(
                user_id,
                "password",
                f"{lockout_result.remaining_attempts} attempts remaining before lockout",
                ip_address=ip_address,
                user_agent=user_agent,
                extra_context={
                    "failed_attempts": lockout_result.failed_attempts,
                    "remaining_attempts": lockout_result.remaining_attempts,
                },
            )

        context: Dict[str, Any] = {
            "failed_attempts": lockout_result.failed_attempts,
            "lockout_end": lockout_result.lockout_end,
            "user_agent": user_agent,
        }
        return self.log_security_event(
            SecurityEventType.ACCOUNT_LOCKOUT,
            SecurityEventSeverity.HIGH,
            f"Account locked due to {lockout_result.failed_attempts} failed login attempts",
            user_id=user_id,
            resource_type="UserAccount",
            resource_id=user_id,
            additional_context=context,
            ip_address=ip_address,
        )

    # ── Signals ──────────────────────────────────────────────────────

    def log_suspicious_activity(
        self,
        activity_type: str,
        description: str,
        user_id: Optional[str] = None,
        severity: SecurityEventSeverity = SecurityEventSeverity.HIGH,
        raw_context: Any = None,
        ip_address: Optional[str] = None,
    ) -> Optional[SecurityEvent]:
        return self.log_security_event(
            SecurityEventType.SUSPICIOUS_ACTIVITY,
            severity,
            f"Suspicious activity detected: {description}",
            user_id=user_id,
            resource_type="Security",
            additional_context={"activity_type": activity_type, "context": raw_context},
            ip_address=ip_address,
        )

    def log_validation_failure(
        self,
        validation_type: str,
        field_name: str,
        user_id: Optional[str] = None,
        severity: SecurityEventSeverity = SecurityEventSeverity.MEDIUM,
        raw_context: Any = None,
    ) -> Optional[SecurityEvent]:
        return self.log_security_event(
            SecurityEventType.VALIDATION_FAILURE,
            severity,
            f"Input validation failed: {validation_type} on field {field_name}",
            user_id=user_id,
            resource_type="InputValidation",
            resource_id=field_name,
            additional_context={
                "validation_type": validation_type,
                "field_name": field_name,
                "context": raw_context,
            },
        )
