# Collaborator contracts consumed by the authorization engine, the lockout
# policy and the security event logger.
#
# Implementations may raise any exception; callers treat every failure as
# "store unavailable" and fail closed. The in-memory and SQLite stores in
# this package raise StoreUnavailable.

from datetime import datetime
from typing import Dict, Iterable, Optional, Protocol, runtime_checkable

from ..core.models import ResourceId, ResourceType, SecurityEvent


@runtime_checkable
class OwnershipStore(Protocol):
    """Read-only ``{id, owner_id}`` projection per resource type."""

    async def get_owner(self, resource_type: ResourceType, resource_id: ResourceId) -> Optional[str]:
        """Owner id of one resource, or None when it does not exist."""
        ...

    async def get_owners(
        self, resource_type: ResourceType, resource_ids: Iterable[ResourceId]
    ) -> Dict[ResourceId, str]:
        """Owner ids for a batch of resources. Absent ids are omitted."""
        ...


@runtime_checkable
class CredentialStore(Protocol):
    """Per-account failed-login counters and lockout deadlines."""

    async def increment_failure_count(self, user_id: str) -> int:
        """Atomically add one failure and return the new count."""
        ...

    async def reset_failure_count(self, user_id: str) -> None:
        ...

    async def get_failure_count(self, user_id: str) -> int:
        ...

    async def is_locked_out(self, user_id: str) -> bool:
        ...

    async def set_lockout_until(self, user_id: str, lockout_end: Optional[datetime]) -> None:
        ...

    async def get_lockout_until(self, user_id: str) -> Optional[datetime]:
        ...


@runtime_checkable
class AuditSink(Protocol):
    """Append-only destination for security events."""

    async def append(self, event: SecurityEvent) -> bool:
        """Persist one event. False means the event was not stored."""
        ...
