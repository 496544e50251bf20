"""
Authentication and authorization dependencies.

Identity comes from the bearer token issued by the identity provider:
`sub` is the actor id and `role` is coach or student. The job entrypoints
authenticate the cron trigger with a shared secret instead.
"""
from dataclasses import dataclass
from fastapi import Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
from uuid import UUID

from core.exceptions import ForbiddenError, UnauthorizedError
from core.security import (
    ROLE_COACH,
    VALID_ROLES,
    decode_access_token,
    verify_cron_secret,
)

# auto_error=False so a missing header is a 401, not FastAPI's default 403
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    """Caller identity as asserted by the identity provider."""

    id: UUID
    role: str

    @property
    def is_coach(self) -> bool:
        return self.role == ROLE_COACH


def actor_from_claims(payload: Optional[dict]) -> Actor:
    """Build an Actor from decoded claims; claims are trusted as given."""
    if not payload:
        raise UnauthorizedError("Invalid authentication credentials")

    role = payload.get("role")
    if role not in VALID_ROLES:
        raise UnauthorizedError("Token carries no valid role")

    try:
        actor_id = UUID(str(payload.get("sub")))
    except ValueError:
        raise UnauthorizedError("Token subject is not a valid id")

    return Actor(id=actor_id, role=role)


def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Actor:
    if not credentials:
        raise UnauthorizedError("Not authenticated")
    return actor_from_claims(decode_access_token(credentials.credentials))


def require_role(allowed_roles: list[str]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/rules")
        def create_rule(actor: Actor = Depends(require_role(["coach"]))):
            ...
    """
    def role_checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed_roles:
            raise ForbiddenError(f"Requires role: {', '.join(allowed_roles)}")
        return actor

    return role_checker


def require_coach(actor: Actor = Depends(require_role([ROLE_COACH]))) -> Actor:
    return actor


def require_cron(
    x_cron_secret: Optional[str] = Header(default=None),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> None:
    """Accepts `X-Cron-Secret: <secret>` or `Authorization: Bearer <secret>`."""
    presented = x_cron_secret or (credentials.credentials if credentials else None)
    if not verify_cron_secret(presented):
        raise UnauthorizedError("Invalid cron credentials")
