"""
Security event sampling for setlist-guard.

Credential-stuffing runs and scripted probing produce long bursts of the
same Low/Medium event. This module keeps those bursts readable by:
1. Sampling per user + normalized description
2. Exponential backoff for sources that keep repeating
3. A note of how many similar events were suppressed, attached to the next
   event that does get through

High and Critical events are never sampled out.
"""

import hashlib
import re
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .models import SecurityEventSeverity

_VARIABLE_PARTS = (re.compile(r"[a-f0-9]{8,}"), re.compile(r"\d+"))


@dataclass
class SampleState:
    """Sampling state for one user/description combination."""
    last_recorded: float
    suppressed_count: int
    description_hash: str
    backoff_multiplier: float = 1.0


class EventSampler:
    """
    Rate limit repeated low-severity security events.

    An ``interval_seconds`` of 0 disables sampling entirely.
    """

    def __init__(
        self,
        interval_seconds: float = 60.0,
        max_backoff_multiplier: float = 10.0,
        max_states: int = 10_000,
    ):
        self.interval = interval_seconds
        self.max_backoff = max_backoff_multiplier
        self.max_states = max_states
        self.states: Dict[str, SampleState] = {}
        self.total_suppressed = 0

    @staticmethod
    def _description_hash(description: str) -> str:
        """Hash a description with ids and counters normalized away."""
        normalized = description.lower()
        for pattern in _VARIABLE_PARTS:
            normalized = pattern.sub("X", normalized)
        return hashlib.sha256(normalized.encode()).hexdigest()[:16]

    def should_record(
        self,
        user_id: Optional[str],
        description: str,
        severity: SecurityEventSeverity,
    ) -> Tuple[bool, Optional[str]]:
        """
        Check if an event should be recorded or sampled out.

        Returns:
            Tuple of (should_record, suppressed_note)
            - should_record: True if the event should reach the sinks
            - suppressed_note: set when earlier similar events were dropped
        """
        if severity.always_recorded or self.interval <= 0:
            return True, None

        now = time.monotonic()
        description_hash = self._description_hash(description)
        key = f"{user_id or '-'}:{description_hash}"

        state = self.states.get(key)
        if state is None:
            if len(self.states) >= self.max_states:
                self.states.clear()
            self.states[key] = SampleState(
                last_recorded=now,
                suppressed_count=0,
                description_hash=description_hash,
            )
            return True, None

        if now - state.last_recorded < self.interval * state.backoff_multiplier:
            state.suppressed_count += 1
            self.total_suppressed += 1
            if state.suppressed_count % 10 == 0:
                state.backoff_multiplier = min(state.backoff_multiplier * 1.5, self.max_backoff)
            return False, None

        note = None
        if state.suppressed_count > 0:
            note = f"[Previously suppressed {state.suppressed_count} similar events]"
        state.last_recorded = now
        state.suppressed_count = 0
        if state.backoff_multiplier > 1.0:
            state.backoff_multiplier = max(1.0, state.backoff_multiplier * 0.9)
        return True, note

    def reset_user(self, user_id: str):
        """Forget sampling state for one user."""
        prefix = f"{user_id}:"
        for key in [k for k in self.states if k.startswith(prefix)]:
            del self.states[key]
