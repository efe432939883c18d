"""JumpCloud policy management."""
from __future__ import annotations
import logging
from typing import Any, Mapping

from .client import Requester, decode_json
from .exceptions import JumpCloudError
from .pagination import ListQuery, Page, SortSpec
from .reconcile import Field, ResourceDefinition, ResourceService, ResourceState

logger = logging.getLogger(__name__)

POLICY_TYPES = (
    "password_complexity",
    "samba_ad_password_sync",
    "password_expiration",
    "custom",
    "password_reused",
    "password_failed_attempts",
    "account_lockout_timeout",
    "mfa",
    "system_updates",
)

POLICY = ResourceDefinition(
    kind="policy",
    path="/api/v2/policies",
    fields=(
        Field("name"),
        Field("description"),
        Field("type", immutable=True),
        Field("template", immutable=True),
        Field("configurations", "configField"),
        Field("active"),
        Field("organization_id", "organizationId", computed=True),
        Field("created", computed=True),
    ),
)


class PolicyService(ResourceService):
    """Service for managing JumpCloud policies.

    The policy type and its template are fixed at creation; any change must be
    made by replacing the policy.
    """

    definition = POLICY
    sort_style = "prefix"

    def create(self, desired: Mapping[str, Any]) -> ResourceState:
        policy_type = desired.get("type")
        if policy_type not in POLICY_TYPES:
            raise ValueError(f"Invalid policy type '{policy_type}': must be one of {', '.join(POLICY_TYPES)}")
        if not desired.get("template"):
            raise ValueError("template is required to create a policy")
        return super().create(desired)

    def _refresh(self, state: ResourceState) -> None:
        super()._refresh(state)
        # Creation time lives on the metadata sub-resource; missing metadata is not fatal
        path = f"{self.definition.path}/{state.id}/metadata"
        try:
            metadata = decode_json(self.client.do_request("GET", path))
        except (JumpCloudError, ValueError) as e:
            logger.warning(f"Failed to get policy metadata for {state.id}: {e}")
            return
        if isinstance(metadata, dict) and metadata.get("created") is not None:
            state.attributes["created"] = metadata["created"]


def list_policies(
    client: Requester,
    name: str = "",
    limit: int = 100,
    skip: int = 0,
    sort: str = "",
) -> Page[ResourceState]:
    """Data source: one page of policies."""
    query = ListQuery(
        limit=limit,
        skip=skip,
        sort=(SortSpec.parse(sort),) if sort else (),
        sort_style=PolicyService.sort_style,
        extra={"filter": f"name:eq:{name}" if name else None},
    )
    return PolicyService(client).list(query)
