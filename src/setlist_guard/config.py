# Runtime configuration for setlist-guard.
#
# Values come from the environment (optionally seeded from a .env file via
# python-dotenv). Every knob has a safe default; malformed values raise
# InvalidConfiguration at startup rather than silently falling back.

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, Tuple

from dotenv import load_dotenv

from .core.exceptions import InvalidConfiguration
from .core.sanitizer import DEFAULT_MAX_MESSAGE_LENGTH

logger = logging.getLogger(__name__)

ENV_PREFIX = "SETLIST_GUARD_"

# (max failures for this tier, lockout duration); None marks the open-ended tier
LockoutTier = Tuple[Optional[int], timedelta]

DEFAULT_LOCKOUT_THRESHOLD = 5
DEFAULT_LOCKOUT_LADDER: Tuple[LockoutTier, ...] = (
    (5, timedelta(minutes=5)),
    (10, timedelta(minutes=15)),
    (15, timedelta(hours=1)),
    (20, timedelta(hours=4)),
    (25, timedelta(hours=12)),
    (None, timedelta(hours=24)),
)
DEFAULT_STORE_TIMEOUT_SECONDS = 5.0
DEFAULT_SAMPLE_INTERVAL_SECONDS = 0.0

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd])\s*$", re.IGNORECASE)
_DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def parse_duration(text: str) -> timedelta:
    """Parse ``30s``, ``5m``, ``1h`` or ``2d``."""
    match = _DURATION_RE.match(text or "")
    if not match:
        raise InvalidConfiguration(f"Invalid duration: {text!r}")
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit.lower()]: int(amount)})


def parse_ladder(text: str) -> Tuple[LockoutTier, ...]:
    """
    Parse a lockout ladder such as ``5:5m,10:15m,15:1h,*:24h``.

    Each entry is ``max_failures:duration``; ``*`` is the open-ended tier
    and must come last. Without one, the last duration applies beyond the
    final bound.
    """
    tiers = []
    for raw in (text or "").split(","):
        raw = raw.strip()
        if not raw:
            continue
        bound, sep, duration = raw.partition(":")
        if not sep:
            raise InvalidConfiguration(f"Invalid lockout tier: {raw!r}")
        bound = bound.strip()
        if bound == "*":
            tiers.append((None, parse_duration(duration)))
            continue
        try:
            tiers.append((int(bound), parse_duration(duration)))
        except ValueError:
            raise InvalidConfiguration(f"Invalid lockout tier bound: {bound!r}") from None

    if tiers and tiers[-1][0] is not None:
        tiers.append((None, tiers[-1][1]))
    validate_ladder(tiers)
    return tuple(tiers)


def validate_ladder(tiers) -> None:
    """Bounds strictly increase, durations never decrease, one open tier last."""
    if not tiers:
        raise InvalidConfiguration("Lockout ladder must have at least one tier")
    previous_bound = 0
    previous_duration = timedelta(0)
    for index, (bound, duration) in enumerate(tiers):
        if bound is None and index != len(tiers) - 1:
            raise InvalidConfiguration("Open-ended lockout tier must be last")
        if bound is not None and bound <= previous_bound:
            raise InvalidConfiguration("Lockout tier bounds must strictly increase")
        if duration <= timedelta(0) or duration < previous_duration:
            raise InvalidConfiguration("Lockout durations must be positive and non-decreasing")
        previous_bound = bound if bound is not None else previous_bound
        previous_duration = duration
    if tiers[-1][0] is not None:
        raise InvalidConfiguration("Lockout ladder must end with an open-ended tier")


@dataclass
class GuardSettings:
    """Tunables shared by the authorizer, lockout policy and event logger."""

    lockout_threshold: int = DEFAULT_LOCKOUT_THRESHOLD
    lockout_ladder: Tuple[LockoutTier, ...] = field(default=DEFAULT_LOCKOUT_LADDER)
    max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH
    store_timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS
    sample_interval_seconds: float = DEFAULT_SAMPLE_INTERVAL_SECONDS
    audit_db_path: Optional[str] = None
    audit_hmac_key: Optional[str] = None

    def __post_init__(self):
        if self.lockout_threshold < 1:
            raise InvalidConfiguration("lockout_threshold must be >= 1")
        # The result carries a truncation marker, so the bound must fit it.
        if self.max_message_length < 32:
            raise InvalidConfiguration("max_message_length must be >= 32")
        if self.store_timeout_seconds <= 0:
            raise InvalidConfiguration("store_timeout_seconds must be > 0")
        if self.sample_interval_seconds < 0:
            raise InvalidConfiguration("sample_interval_seconds must be >= 0")
        validate_ladder(self.lockout_ladder)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "GuardSettings":
        """Build settings from ``SETLIST_GUARD_*`` environment variables."""
        load_dotenv(env_file)

        def _get(name: str) -> Optional[str]:
            value = os.environ.get(ENV_PREFIX + name)
            return value if value not in (None, "") else None

        def _number(name: str, cast, default):
            raw = _get(name)
            if raw is None:
                return default
            try:
                return cast(raw)
            except ValueError:
                raise InvalidConfiguration(f"{ENV_PREFIX}{name} is not a valid number: {raw!r}") from None

        ladder_text = _get("LOCKOUT_LADDER")
        settings = cls(
            lockout_threshold=_number("LOCKOUT_THRESHOLD", int, DEFAULT_LOCKOUT_THRESHOLD),
            lockout_ladder=parse_ladder(ladder_text) if ladder_text else DEFAULT_LOCKOUT_LADDER,
            max_message_length=_number("MAX_MESSAGE_LENGTH", int, DEFAULT_MAX_MESSAGE_LENGTH),
            store_timeout_seconds=_number("STORE_TIMEOUT", float, DEFAULT_STORE_TIMEOUT_SECONDS),
            sample_interval_seconds=_number("SAMPLE_INTERVAL", float, DEFAULT_SAMPLE_INTERVAL_SECONDS),
            audit_db_path=_get("AUDIT_DB"),
            audit_hmac_key=_get("AUDIT_HMAC_KEY"),
        )
        logger.debug(
            "Loaded guard settings (threshold=%d, tiers=%d, store_timeout=%.1fs)",
            settings.lockout_threshold, len(settings.lockout_ladder), settings.store_timeout_seconds,
        )
        return settings
