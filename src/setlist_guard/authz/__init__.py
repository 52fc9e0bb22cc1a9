# Authorization module: resource ownership checks.

from .resource_authorizer import (
    AuthorizationCheck,
    CompositeCheck,
    ResourceAuthorizer,
    ResourcePart,
    is_valid_user_id,
)

__all__ = [
    "AuthorizationCheck",
    "CompositeCheck",
    "ResourceAuthorizer",
    "ResourcePart",
    "is_valid_user_id",
]
