"""JumpCloud user group and system group management."""
from __future__ import annotations
import re
from typing import Any, List, Mapping

from .client import Requester
from .exceptions import JumpCloudError, ReconciliationError, is_conflict, is_not_found
from .pagination import ListQuery, Page, SortSpec, iterate_pages
from .reconcile import Field, ResourceDefinition, ResourceService, ResourceState

_GROUP_NAME_RE = re.compile(r"^[a-zA-Z0-9 _.-]{1,128}$")


def _flatten_attributes(attrs: Any) -> dict:
    if not isinstance(attrs, dict):
        return {}
    return {k: v for k, v in attrs.items() if v is not None}


USER_GROUP = ResourceDefinition(
    kind="user group",
    path="/api/v2/usergroups",
    fields=(
        Field("name"),
        Field("description"),
        Field("email"),
        Field("attributes", flatten=_flatten_attributes),
        Field("member_query", "memberQuery"),
        Field("membership_method", "membershipMethod"),
        Field("type", computed=True),
    ),
)

SYSTEM_GROUP = ResourceDefinition(
    kind="system group",
    path="/api/v2/systemgroups",
    fields=(
        Field("name"),
        Field("description"),
        Field("attributes", flatten=_flatten_attributes),
        Field("member_query", "memberQuery"),
        Field("type", computed=True),
    ),
    constants={"type": "system_group"},
)


class _GroupService(ResourceService):
    """Shared group behaviour: name validation and membership edges."""

    member_type: str = ""
    sort_style = "prefix"

    def create(self, desired: Mapping[str, Any]) -> ResourceState:
        name = desired.get("name") or ""
        if not _GROUP_NAME_RE.match(name):
            raise ValueError(f"Invalid group name '{name}': must be 1-128 letters, digits, spaces, '.', '_' or '-'")
        return super().create(desired)

    def _members_path(self, group_id: str) -> str:
        return f"{self.definition.path}/{group_id}/members"

    def list_members(self, group_id: str) -> List[str]:
        """Return IDs of every member, following pagination."""
        graph = iterate_pages(self.client, self._members_path(group_id), ListQuery(limit=100, skip=0))
        return [edge["to"]["id"] for edge in graph if edge.get("to", {}).get("id")]

    def add_member(self, group_id: str, member_id: str) -> bool:
        """Add a member (idempotent).

        Returns:
            True if added, False if already a member
        """
        path = self._members_path(group_id)
        body = {"op": "add", "type": self.member_type, "id": member_id}
        try:
            self.client.do_request("POST", path, body)
        except JumpCloudError as e:
            if is_conflict(e):
                return False
            raise ReconciliationError("create", path, e) from e
        return True

    def remove_member(self, group_id: str, member_id: str) -> bool:
        """Remove a member (idempotent).

        Returns:
            True if removed, False if it was not a member
        """
        path = self._members_path(group_id)
        body = {"op": "remove", "type": self.member_type, "id": member_id}
        try:
            self.client.do_request("POST", path, body)
        except JumpCloudError as e:
            if is_not_found(e):
                return False
            raise ReconciliationError("delete", path, e) from e
        return True


class UserGroupService(_GroupService):
    """Service for managing JumpCloud user groups."""

    definition = USER_GROUP
    member_type = "user"


class SystemGroupService(_GroupService):
    """Service for managing JumpCloud system groups."""

    definition = SYSTEM_GROUP
    member_type = "system"


def _group_query(name: str, limit: int, skip: int, sort: str) -> ListQuery:
    filters = {"filter": f"name:eq:{name}"} if name else {}
    return ListQuery(
        limit=limit,
        skip=skip,
        sort=(SortSpec.parse(sort),) if sort else (),
        sort_style=_GroupService.sort_style,
        extra=filters,
    )


def list_user_groups(client: Requester, name: str = "", limit: int = 100, skip: int = 0, sort: str = "") -> Page[ResourceState]:
    """Data source: one page of user groups, optionally filtered by exact name."""
    return UserGroupService(client).list(_group_query(name, limit, skip, sort))


def list_system_groups(client: Requester, name: str = "", limit: int = 100, skip: int = 0, sort: str = "") -> Page[ResourceState]:
    """Data source: one page of system groups, optionally filtered by exact name."""
    return SystemGroupService(client).list(_group_query(name, limit, skip, sort))


def get_group_by_name(client: Requester, name: str, system: bool = False) -> ResourceState | None:
    """Return the group whose name matches exactly, or None."""
    lister = list_system_groups if system else list_user_groups
    for group in lister(client, name=name, limit=10).results:
        if group.attributes.get("name") == name:
            return group
    return None
