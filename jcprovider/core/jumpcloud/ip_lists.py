"""JumpCloud IP list management."""
from __future__ import annotations
import ipaddress
from typing import Any, Iterable, Mapping, Optional

from .client import Requester
from .pagination import Page, SortSpec
from .reconcile import Field, ResourceDefinition, ResourceService, ResourceState

IP_LIST = ResourceDefinition(
    kind="IP list",
    path="/api/v2/ip-lists",
    fields=(
        Field("name"),
        Field("description"),
        Field("ips", flatten=list),
        Field("created", computed=True),
        Field("updated", computed=True),
    ),
    id_keys=("id", "_id"),
)


def validate_ips(entries: Iterable[str]) -> None:
    """Accept addresses, CIDR networks and first-last ranges."""
    for entry in entries:
        try:
            if "-" in entry:
                first, last = (ipaddress.ip_address(part.strip()) for part in entry.split("-", 1))
                if first.version != last.version or first > last:
                    raise ValueError
            else:
                ipaddress.ip_network(entry.strip(), strict=False)
        except ValueError:
            raise ValueError(f"Invalid IP list entry '{entry}'") from None


class IPListService(ResourceService):
    """Service for managing IP lists used by conditional access."""

    definition = IP_LIST
    sort_style = "prefix"
    bracket_filters = True
    skip_supported = False

    def create(self, desired: Mapping[str, Any]) -> ResourceState:
        if not desired.get("name"):
            raise ValueError("name is required to create an IP list")
        validate_ips(desired.get("ips") or ())
        return super().create(desired)

    def update(self, state: ResourceState, desired: Mapping[str, Any]) -> ResourceState:
        if "ips" in desired:
            validate_ips(desired["ips"] or ())
        return super().update(state, desired)


def list_ip_lists(
    client: Requester,
    filters: Optional[Mapping[str, str]] = None,
    sort: str = "",
    limit: int = 100,
    org_id: str = "",
) -> Page[ResourceState]:
    """Data source: IP lists filtered with filter[key]=value.

    Sort accepts 'field', 'field:desc' or '-field'; descending sorts are sent
    as sort=-field.
    """
    service = IPListService(client)
    query = service.make_query(
        limit=limit,
        sort=(SortSpec.parse(sort),) if sort else (),
        filters=filters,
        org_id=org_id,
    )
    return service.list(query)
