"""
In-memory store implementations.

Used by the test suite and by single-process deployments that keep
ownership data elsewhere. Each coroutine completes without yielding, so
every mutation is atomic with respect to other tasks on the same loop.
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..core.models import ResourceId, ResourceType, SecurityEvent, utcnow


class InMemoryOwnershipStore:
    """Ownership projections kept in a dict per resource type."""

    def __init__(self, owners: Optional[Dict[ResourceType, Dict[ResourceId, str]]] = None):
        self._owners: Dict[ResourceType, Dict[ResourceId, str]] = defaultdict(dict)
        for resource_type, mapping in (owners or {}).items():
            self._owners[resource_type].update(mapping)
        self.get_owner_calls = 0
        self.get_owners_calls = 0

    def add(self, resource_type: ResourceType, resource_id: ResourceId, owner_id: str):
        self._owners[resource_type][resource_id] = owner_id

    def remove(self, resource_type: ResourceType, resource_id: ResourceId):
        self._owners[resource_type].pop(resource_id, None)

    async def get_owner(self, resource_type: ResourceType, resource_id: ResourceId) -> Optional[str]:
        self.get_owner_calls += 1
        return self._owners[resource_type].get(resource_id)

    async def get_owners(
        self, resource_type: ResourceType, resource_ids: Iterable[ResourceId]
    ) -> Dict[ResourceId, str]:
        self.get_owners_calls += 1
        table = self._owners[resource_type]
        return {rid: table[rid] for rid in resource_ids if rid in table}


class InMemoryCredentialStore:
    """Failed-login counters and lockout deadlines keyed by user id."""

    def __init__(self):
        self._failures: Dict[str, int] = {}
        self._lockouts: Dict[str, datetime] = {}

    async def increment_failure_count(self, user_id: str) -> int:
        count = self._failures.get(user_id, 0) + 1
        self._failures[user_id] = count
        return count

    async def reset_failure_count(self, user_id: str) -> None:
        self._failures[user_id] = 0

    async def get_failure_count(self, user_id: str) -> int:
        return self._failures.get(user_id, 0)

    async def is_locked_out(self, user_id: str) -> bool:
        lockout_end = self._lockouts.get(user_id)
        return lockout_end is not None and lockout_end > utcnow()

    async def set_lockout_until(self, user_id: str, lockout_end: Optional[datetime]) -> None:
        if lockout_end is None:
            self._lockouts.pop(user_id, None)
        else:
            self._lockouts[user_id] = lockout_end

    async def get_lockout_until(self, user_id: str) -> Optional[datetime]:
        return self._lockouts.get(user_id)


class InMemoryAuditSink:
    """Append-only event list."""

    def __init__(self):
        self.events: List[SecurityEvent] = []

    async def append(self, event: SecurityEvent) -> bool:
        self.events.append(event)
        return True

    def of_type(self, event_type) -> List[SecurityEvent]:
        return [e for e in self.events if e.event_type == event_type]
