"""
Progressive account lockout.

Per-account state machine driven by login outcomes:

    Active --failure (count < threshold)--> Active
    Active --failure (count >= threshold)--> Locked until now + tier(count)
    Locked --failure--> Locked, deadline recomputed from the new count
    any    --success--> counter reset; an active deadline is left to expire

Lockout duration escalates with the failure count along a ladder (5 min,
15 min, 1 h, 4 h, 12 h, 24 h by default). Attempts against accounts that do
not exist never touch a counter; they are reported as suspicious activity.
"""

import asyncio
import logging
import weakref
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Sequence

from ..config import DEFAULT_LOCKOUT_LADDER, GuardSettings, LockoutTier, validate_ladder
from ..core.audit_log import SecurityEventLogger
from ..core.models import (
    LockoutResult,
    SecurityEventSeverity,
    SecurityEventType,
    utcnow,
)

logger = logging.getLogger(__name__)

INVALID_ATTEMPT_MESSAGE = "Invalid login attempt."
UNAVAILABLE_MESSAGE = "Sign-in is temporarily unavailable. Please try again later."
UNKNOWN_ACCOUNT_ACTIVITY = "LoginAttemptUnknownAccount"


def locked_message(lockout_end: datetime) -> str:
    return (
        f"Account locked until {lockout_end:%Y-%m-%d %H:%M:%S} UTC "
        "due to repeated failed login attempts."
    )


class LockoutLadder:
    """Maps a failure count to a lockout duration."""

    def __init__(self, tiers: Sequence[LockoutTier] = DEFAULT_LOCKOUT_LADDER):
        validate_ladder(tiers)
        self.tiers = tuple(tiers)

    def duration_for(self, failed_attempts: int) -> timedelta:
        for bound, duration in self.tiers:
            if bound is None or failed_attempts <= bound:
                return duration
        # validate_ladder guarantees an open-ended last tier
        return self.tiers[-1][1]


class ProgressiveLockoutPolicy:
    """
    Escalating lockout over a ``CredentialStore``.

    Read-modify-write of one account's counter is serialized with a keyed
    asyncio.Lock on top of the store's atomic increment.

    Args:
        credential_store: ``CredentialStore`` implementation.
        event_logger: Receives authentication/lockout events.
        settings: Threshold, ladder and store deadline.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        credential_store,
        event_logger: Optional[SecurityEventLogger] = None,
        settings: Optional[GuardSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = credential_store
        self.settings = settings or GuardSettings()
        self.event_logger = event_logger or SecurityEventLogger(settings=self.settings)
        self.ladder = LockoutLadder(self.settings.lockout_ladder)
        self.threshold = self.settings.lockout_threshold
        self.clock = clock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def _call(self, coro):
        return await asyncio.wait_for(coro, timeout=self.settings.store_timeout_seconds)

    def _report_store_failure(self, operation: str, user_id: str, error: Exception, ip_address: Any):
        logger.error("Credential store failed during %s (%s)", operation, type(error).__name__)
        self.event_logger.log_security_event(
            SecurityEventType.AUTHENTICATION,
            SecurityEventSeverity.HIGH,
            f"Credential store unavailable during {operation}",
            user_id=user_id,
            resource_type="UserAccount",
            additional_context={"operation": operation, "error": type(error).__name__},
            ip_address=ip_address,
        )

    # ── Observation ──────────────────────────────────────────────────

    async def check_lockout(self, user_id: Optional[str]) -> LockoutResult:
        """
        Observe the account state before credentials are checked.

        A credential store failure reports the account as locked.
        """
        if not user_id:
            return LockoutResult(is_locked_out=False, remaining_attempts=self.threshold)

        try:
            lockout_end = await self._call(self.store.get_lockout_until(user_id))
            failed_attempts = await self._call(self.store.get_failure_count(user_id))
        except Exception as e:
            self._report_store_failure("lockout check", user_id, e, None)
            return LockoutResult(is_locked_out=True, message=UNAVAILABLE_MESSAGE)

        remaining = max(self.threshold - failed_attempts, 0)
        if lockout_end is not None and lockout_end > self.clock():
            return LockoutResult(
                is_locked_out=True,
                lockout_end=lockout_end,
                failed_attempts=failed_attempts,
                remaining_attempts=0,
                message=locked_message(lockout_end),
            )
        return LockoutResult(
            is_locked_out=False,
            failed_attempts=failed_attempts,
            remaining_attempts=remaining,
        )

    # ── Transitions ──────────────────────────────────────────────────

    async def handle_failed_login(
        self,
        user_id: Optional[str],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LockoutResult:
        """
        Count one failed attempt and lock the account at the threshold.

        ``user_id`` is None when the submitted account does not exist.
        """
        if user_id is None:
            self.event_logger.log_suspicious_activity(
                UNKNOWN_ACCOUNT_ACTIVITY,
                "login attempt for a non-existent account",
                severity=SecurityEventSeverity.HIGH,
                raw_context={"user_agent": user_agent},
                ip_address=ip_address,
            )
            return LockoutResult(is_locked_out=False, message=INVALID_ATTEMPT_MESSAGE)

        lockout_end = None
        async with self._lock_for(user_id):
            try:
                failed_attempts = await self._call(self.store.increment_failure_count(user_id))
                if failed_attempts >= self.threshold:
                    lockout_end = self.clock() + self.ladder.duration_for(failed_attempts)
                    await self._call(self.store.set_lockout_until(user_id, lockout_end))
            except Exception as e:
                self._report_store_failure("failed login", user_id, e, ip_address)
                return LockoutResult(is_locked_out=False, message=INVALID_ATTEMPT_MESSAGE)

        if lockout_end is not None:
            result = LockoutResult(
                is_locked_out=True,
                lockout_end=lockout_end,
                failed_attempts=failed_attempts,
                remaining_attempts=0,
                message=locked_message(lockout_end),
            )
        else:
            remaining = self.threshold - failed_attempts
            result = LockoutResult(
                is_locked_out=False,
                failed_attempts=failed_attempts,
                remaining_attempts=remaining,
                message=INVALID_ATTEMPT_MESSAGE,
            )

        self.event_logger.log_lockout_event(result, user_id, ip_address, user_agent)
        return result

    async def handle_successful_login(
        self,
        user_id: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LockoutResult:
        """
        Reset the failure counter. An active lockout is not lifted.

        On a credential store failure the account is reported as locked.
        """
        async with self._lock_for(user_id):
            try:
                await self._call(self.store.reset_failure_count(user_id))
                lockout_end = await self._call(self.store.get_lockout_until(user_id))
            except Exception as e:
                self._report_store_failure("successful login", user_id, e, ip_address)
                return LockoutResult(is_locked_out=True, message=UNAVAILABLE_MESSAGE)

        self.event_logger.log_authentication_success(
            user_id, ip_address=ip_address, user_agent=user_agent
        )

        if lockout_end is not None and lockout_end > self.clock():
            return LockoutResult(
                is_locked_out=True,
                lockout_end=lockout_end,
                failed_attempts=0,
                remaining_attempts=0,
                message=locked_message(lockout_end),
            )
        return LockoutResult(
            is_locked_out=False,
            failed_attempts=0,
            remaining_attempts=self.threshold,
        )
