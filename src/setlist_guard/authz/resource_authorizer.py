"""
Resource ownership authorization.

Every mutating or reading operation on a Song, Setlist or SetlistSong goes
through ResourceAuthorizer before it touches the resource. Decisions:

- fail closed: a store error or a missed deadline is a denial (SystemError)
- compare owner ids with exact string equality, no case folding or trimming
- read the same to the caller for every denial kind (see
  ``AuthorizationResult.public_message``); the reason is kept for the audit
  trail only
"""

import asyncio
import dataclasses
import logging
import re
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple, Union

from ..config import GuardSettings
from ..core.audit_log import SecurityEventLogger
from ..core.models import (
    AuthorizationResult,
    ResourceAction,
    ResourceId,
    ResourceType,
)

logger = logging.getLogger(__name__)

# Non-empty, no whitespace or control characters, bounded like identity keys
_IDENTITY_RE = re.compile(r"[^\s\x00-\x1f\x7f-\x9f]{1,450}")

ResourcePart = Tuple[ResourceType, ResourceId]


class AuthorizationCheck(NamedTuple):
    """One leg of a combined operation."""
    resource_type: ResourceType
    resource_id: ResourceId
    action: ResourceAction


class CompositeCheck(NamedTuple):
    """A combined-operation leg covering several resources under one action."""
    parts: Sequence[ResourcePart]
    action: ResourceAction


CombinedLeg = Union[AuthorizationCheck, CompositeCheck]


def is_valid_user_id(user_id: Any) -> bool:
    """True for a well-formed identity. The value is never trimmed."""
    return isinstance(user_id, str) and _IDENTITY_RE.fullmatch(user_id) is not None


class ResourceAuthorizer:
    """
    Ownership checks for single, composite, bulk and combined operations.

    Args:
        ownership_store: ``OwnershipStore`` implementation.
        event_logger: Receives one outcome event per public call. Defaults
            to a structured-log-only ``SecurityEventLogger``.
        settings: Provides the store deadline.
    """

    def __init__(
        self,
        ownership_store,
        event_logger: Optional[SecurityEventLogger] = None,
        settings: Optional[GuardSettings] = None,
    ):
        self.store = ownership_store
        self.settings = settings or GuardSettings()
        self.event_logger = event_logger or SecurityEventLogger(settings=self.settings)

    @property
    def _deadline(self) -> float:
        return self.settings.store_timeout_seconds

    # ── Single ───────────────────────────────────────────────────────

    async def _check_single(
        self,
        resource_type: ResourceType,
        resource_id: ResourceId,
        user_id: Any,
        action: ResourceAction,
    ) -> AuthorizationResult:
        if not is_valid_user_id(user_id):
            return AuthorizationResult.invalid_user(user_id, resource_type, resource_id, action)

        try:
            owner_id = await asyncio.wait_for(
                self.store.get_owner(resource_type, resource_id), timeout=self._deadline
            )
        except Exception as e:
            logger.error(
                "Ownership lookup failed for %s (%s); denying", resource_type.value, type(e).__name__
            )
            return AuthorizationResult.system_error(user_id, resource_type, resource_id, action)

        if owner_id is None:
            return AuthorizationResult.not_found(user_id, resource_type, resource_id, action)
        if not isinstance(owner_id, str) or owner_id != user_id:
            return AuthorizationResult.forbidden(
                user_id, resource_type, resource_id, action, actual_owner_id=str(owner_id)
            )
        return AuthorizationResult.success(user_id, resource_type, resource_id, action)

    async def authorize_single(
        self,
        resource_type: ResourceType,
        resource_id: ResourceId,
        user_id: Any,
        action: ResourceAction,
        correlation_id: Optional[str] = None,
    ) -> AuthorizationResult:
        """Decide whether ``user_id`` may perform ``action`` on one resource."""
        result = await self._check_single(resource_type, resource_id, user_id, action)
        self.event_logger.log_authorization_outcome(result, correlation_id=correlation_id)
        return result

    # ── Composite ────────────────────────────────────────────────────

    async def authorize_composite(
        self,
        parts: Sequence[ResourcePart],
        user_id: Any,
        action: ResourceAction,
        correlation_id: Optional[str] = None,
    ) -> AuthorizationResult:
        """
        Authorize an operation that touches several resources at once.

        All sub-checks run concurrently. The result fails closed on the first
        failing part in input order; it succeeds only when every part does.

        Raises:
            ValueError: If ``parts`` is empty.
        """
        parts = list(parts)
        if not parts:
            raise ValueError("authorize_composite requires at least one resource part")

        results: List[AuthorizationResult] = await asyncio.gather(
            *(self._check_single(rt, rid, user_id, action) for rt, rid in parts)
        )
        labels = [f"{rt.value}:{rid}" for rt, rid in parts]

        for index, part_result in enumerate(results):
            if not part_result.is_authorized:
                context = dict(part_result.security_context)
                context["failed_part"] = index
                context["composite_parts"] = labels
                result = dataclasses.replace(part_result, security_context=context)
                break
        else:
            first_type = parts[0][0]
            result = AuthorizationResult.success(
                user_id, first_type, ",".join(str(rid) for _, rid in parts), action
            )
            result.security_context["composite_parts"] = labels

        self.event_logger.log_authorization_outcome(result, correlation_id=correlation_id)
        return result

    # ── Bulk ─────────────────────────────────────────────────────────

    async def authorize_bulk(
        self,
        resource_type: ResourceType,
        resource_ids: Iterable[ResourceId],
        user_id: Any,
        action: ResourceAction,
        correlation_id: Optional[str] = None,
    ) -> Dict[ResourceId, AuthorizationResult]:
        """
        Authorize many resources of one type with a single batched lookup.

        Every input id appears in the output. An invalid user denies every
        entry without a lookup; a store failure denies every entry.
        """
        ids = list(dict.fromkeys(resource_ids))
        if not ids:
            return {}

        if not is_valid_user_id(user_id):
            results = {
                rid: AuthorizationResult.invalid_user(user_id, resource_type, rid, action)
                for rid in ids
            }
        else:
            try:
                owners = await asyncio.wait_for(
                    self.store.get_owners(resource_type, ids), timeout=self._deadline
                )
            except Exception as e:
                logger.error(
                    "Bulk ownership lookup failed for %d %s ids (%s); denying all",
                    len(ids), resource_type.value, type(e).__name__,
                )
                results = {
                    rid: AuthorizationResult.system_error(user_id, resource_type, rid, action)
                    for rid in ids
                }
            else:
                results = {}
                for rid in ids:
                    owner_id = owners.get(rid)
                    if owner_id is None:
                        results[rid] = AuthorizationResult.not_found(user_id, resource_type, rid, action)
                    elif not isinstance(owner_id, str) or owner_id != user_id:
                        results[rid] = AuthorizationResult.forbidden(
                            user_id, resource_type, rid, action, actual_owner_id=str(owner_id)
                        )
                    else:
                        results[rid] = AuthorizationResult.success(user_id, resource_type, rid, action)

        self.event_logger.log_bulk_outcome(results, correlation_id=correlation_id)
        return results

    # ── Combined ─────────────────────────────────────────────────────

    def _run_leg(self, leg: CombinedLeg, user_id: Any, correlation_id: Optional[str]):
        if isinstance(leg, CompositeCheck):
            return self.authorize_composite(leg.parts, user_id, leg.action, correlation_id=correlation_id)
        return self.authorize_single(
            leg.resource_type, leg.resource_id, user_id, leg.action, correlation_id=correlation_id
        )

    @staticmethod
    def _describe_leg(leg: CombinedLeg) -> str:
        if isinstance(leg, CompositeCheck):
            labels = ",".join(f"{rt.value}:{rid}" for rt, rid in leg.parts)
            return f"{leg.action.value} {labels}"
        return f"{leg.action.value} {leg.resource_type.value}:{leg.resource_id}"

    async def authorize_combined_operation(
        self,
        first: CombinedLeg,
        second: CombinedLeg,
        user_id: Any,
        correlation_id: Optional[str] = None,
    ) -> AuthorizationResult:
        """
        Run two independent checks concurrently; succeed only if both do.

        Each leg is an ``AuthorizationCheck`` or a ``CompositeCheck``. On
        failure the result is the failing leg's, tagged with
        ``failed_check`` = ``"first"`` or ``"second"``.
        """
        first_result, second_result = await asyncio.gather(
            self._run_leg(first, user_id, correlation_id),
            self._run_leg(second, user_id, correlation_id),
        )

        for label, check_result in (("first", first_result), ("second", second_result)):
            if not check_result.is_authorized:
                context = dict(check_result.security_context)
                context["failed_check"] = label
                return dataclasses.replace(check_result, security_context=context)

        result = AuthorizationResult.success(
            user_id,
            first_result.resource_type,
            f"{first_result.resource_id},{second_result.resource_id}",
            first.action,
        )
        result.security_context["operation"] = "combined"
        result.security_context["checks"] = [self._describe_leg(first), self._describe_leg(second)]
        return result

    async def authorize_add_song_to_setlist(
        self,
        setlist_id: ResourceId,
        song_id: ResourceId,
        user_id: Any,
        correlation_id: Optional[str] = None,
    ) -> AuthorizationResult:
        """The caller must own the setlist (update) and the song (read)."""
        return await self.authorize_combined_operation(
            AuthorizationCheck(ResourceType.SETLIST, setlist_id, ResourceAction.UPDATE),
            AuthorizationCheck(ResourceType.SONG, song_id, ResourceAction.READ),
            user_id,
            correlation_id=correlation_id,
        )
