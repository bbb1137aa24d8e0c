"""Caller identity as established by the upstream authorization layer.

The gateway in front of these services authenticates the session and forwards
the caller as `X-Actor-Id` / `X-Actor-Role`. Handlers only check presence and
role; they never authenticate on their own.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header

from .errors import AuthError

ROLE_CUSTOMER = "customer"
ROLE_VENDOR = "vendor"
ROLE_ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    id: str
    role: str


def get_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
) -> Actor:
    if not x_actor_id or not x_actor_id.strip() or not x_actor_role:
        raise AuthError("Missing caller identity")
    return Actor(id=x_actor_id.strip(), role=x_actor_role.strip().lower())


def _require(role: str):
    def dependency(
        x_actor_id: Optional[str] = Header(default=None),
        x_actor_role: Optional[str] = Header(default=None),
    ) -> Actor:
        actor = get_actor(x_actor_id, x_actor_role)
        if actor.role != role:
            raise AuthError(f"This action requires the {role} role")
        return actor

    return dependency


require_customer = _require(ROLE_CUSTOMER)
require_vendor = _require(ROLE_VENDOR)
require_admin = _require(ROLE_ADMIN)
