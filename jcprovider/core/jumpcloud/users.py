"""JumpCloud system user management."""
from __future__ import annotations
import re
from typing import Any, Mapping, Optional

from .pagination import ListQuery, Page, SortSpec
from .reconcile import Field, ResourceDefinition, ResourceService, ResourceState

_USERNAME_RE = re.compile(r"^[a-zA-Z0-9._-]{1,64}$")

SYSTEM_USER = ResourceDefinition(
    kind="system user",
    path="/api/systemusers",
    fields=(
        Field("username", immutable=True),
        Field("email"),
        Field("firstname"),
        Field("lastname"),
        Field("password", write_only=True),
        Field("description"),
        Field("activated", computed=True),
        Field("suspended"),
        Field("mfa_enabled", "mfa", flatten=lambda mfa: bool(mfa.get("configured")) if isinstance(mfa, dict) else bool(mfa),
              computed=True),
        Field("password_never_expires"),
        Field("sudo"),
        Field("attributes", flatten=lambda items: {a["name"]: a.get("value") for a in items if "name" in a},
              expand=lambda attrs: [{"name": k, "value": v} for k, v in sorted(attrs.items())]),
        Field("created", computed=True),
    ),
)


class UserService(ResourceService):
    """Service for managing JumpCloud system users."""

    definition = SYSTEM_USER
    sort_style = "prefix"

    def create(self, desired: Mapping[str, Any]) -> ResourceState:
        username = desired.get("username", "")
        if not _USERNAME_RE.match(username or ""):
            raise ValueError(f"Invalid username '{username}': must be 1-64 chars of letters, digits, '.', '_' or '-'")
        if not desired.get("email"):
            raise ValueError("email is required to create a system user")
        return super().create(desired)

    def get_user_by_username(self, username: str) -> Optional[ResourceState]:
        """Return the user that exactly matches the username, or None."""
        query = ListQuery(limit=10, skip=0, extra={"filter": f"username:$eq:{username}"})
        for user in self.list(query).results:
            if user.attributes.get("username") == username:
                return user
        return None


def list_users(
    client,
    search: str = "",
    limit: int = 100,
    skip: int = 0,
    sort: str = "",
) -> Page[ResourceState]:
    """Data source: one page of system users."""
    query = ListQuery(
        limit=limit,
        skip=skip,
        sort=(SortSpec.parse(sort),) if sort else (),
        sort_style=UserService.sort_style,
        extra={"search": search or None},
    )
    return UserService(client).list(query)
