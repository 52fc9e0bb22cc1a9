# Lockout module: escalating account lockout after failed logins.

from .progressive_lockout import (
    INVALID_ATTEMPT_MESSAGE,
    LockoutLadder,
    ProgressiveLockoutPolicy,
)

__all__ = [
    "INVALID_ATTEMPT_MESSAGE",
    "LockoutLadder",
    "ProgressiveLockoutPolicy",
]
