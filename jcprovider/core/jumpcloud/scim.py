"""JumpCloud SCIM server management.

SCIM servers are org-scoped: the owning organization travels as an orgId
query parameter on every call, in addition to the client-wide x-org-id header.
"""
from __future__ import annotations
from typing import Any, Dict, Iterable, Mapping, Optional

from .client import Requester
from .pagination import ListQuery, Page, SortSpec
from .reconcile import Field, ResourceDefinition, ResourceService, ResourceState, json_string_field

SERVER_TYPES = ("azure_ad", "okta", "generic", "one_login", "google", "idp", "workspace")
AUTH_TYPES = ("token", "basic", "oauth")
FEATURES = ("users", "groups", "provisioning")

SCIM_SERVER = ResourceDefinition(
    kind="SCIM server",
    path="/api/v2/scim/servers",
    fields=(
        Field("name"),
        Field("description"),
        Field("type", immutable=True),
        Field("base_url", "baseUrl"),
        Field("enabled"),
        Field("auth_type", "authType"),
        json_string_field("auth_config", "authConfig", write_only=True),
        Field("custom_headers", "customHeaders"),
        Field("features", expand=sorted, flatten=sorted),
        json_string_field("mappings"),
        Field("org_id", "orgId", immutable=True),
        Field("status", computed=True),
        Field("created", computed=True),
        Field("updated", computed=True),
    ),
    org_field="org_id",
)


def _prepare(desired: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate desired state and return a copy with features in canonical order."""
    if "type" in desired and desired["type"] not in SERVER_TYPES:
        raise ValueError(f"Invalid SCIM server type '{desired['type']}': must be one of {', '.join(SERVER_TYPES)}")
    if "auth_type" in desired and desired["auth_type"] not in AUTH_TYPES:
        raise ValueError(f"Invalid auth_type '{desired['auth_type']}': must be one of {', '.join(AUTH_TYPES)}")
    unknown = set(desired.get("features") or ()) - set(FEATURES)
    if unknown:
        raise ValueError(f"Unknown SCIM features: {', '.join(sorted(unknown))}")
    name = desired.get("name")
    if name is not None and not 1 <= len(name) <= 255:
        raise ValueError("SCIM server name must be 1-255 characters")
    prepared = dict(desired)
    if prepared.get("features") is not None:
        prepared["features"] = sorted(prepared["features"])
    return prepared


class ScimServerService(ResourceService):
    """Service for managing SCIM servers."""

    definition = SCIM_SERVER
    sort_style = "split"

    def create(self, desired: Mapping[str, Any]) -> ResourceState:
        for required in ("name", "type", "auth_type", "auth_config"):
            if not desired.get(required):
                raise ValueError(f"{required} is required to create a SCIM server")
        return super().create({"enabled": True, **_prepare(desired)})

    def update(self, state: ResourceState, desired: Mapping[str, Any]) -> ResourceState:
        return super().update(state, _prepare(desired))


def list_scim_servers(
    client: Requester,
    name: str = "",
    server_type: str = "",
    enabled: Optional[bool] = None,
    status: str = "",
    auth_type: str = "",
    search: str = "",
    limit: int = 100,
    skip: int = 0,
    sort: str = "name",
    sort_dir: str = "asc",
    org_id: str = "",
    features: Iterable[str] = (),
) -> Page[ResourceState]:
    """Data source: one page of SCIM servers.

    Filter names follow the list endpoint: name, type, enabled, status,
    authType, search, sort + sort_dir, orgId and repeated features.
    """
    query = ListQuery(
        limit=limit,
        skip=skip,
        sort=(SortSpec(sort, sort_dir),) if sort else (),
        sort_style=ScimServerService.sort_style,
        filters={
            "name": name or None,
            "type": server_type or None,
            "enabled": enabled,
            "status": status or None,
            "authType": auth_type or None,
            "search": search or None,
        },
        multi={"features": list(features)} if features else {},
        org_id=org_id,
    )
    return ScimServerService(client).list(query)
