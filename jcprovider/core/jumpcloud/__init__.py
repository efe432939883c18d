"""JumpCloud API client library.

This package provides the request dispatcher and the reconciliation protocol
shared by every JumpCloud resource module.

Architecture:
- transport.py: one HTTP call, no retry
- classifier.py: HTTP status + body -> ErrorKind
- client.py: do_request() with auth headers, org scoping and retry policy
- pagination.py: list query composition and page envelope decoding
- reconcile.py: Create/Read/Update/Delete protocol over a field map
- users.py, groups.py, policies.py, scim.py, ip_lists.py: resource modules
- exceptions.py: typed exceptions for error handling

Usage:
    from jcprovider.config import load_settings
    from jcprovider.core.jumpcloud import JumpCloudClient, UserGroupService

    client = JumpCloudClient(load_settings())
    groups = UserGroupService(client)
    state = groups.create({"name": "engineering"})
    groups.update(state, {"description": "Engineering staff"})
    groups.delete(state)
"""
from .client import (
    JumpCloudClient,
    Requester,
    RetryState,
    decode_json,
    with_query,
)
from .classifier import classify, classify_response, kind_for_status, parse_retry_after
from .exceptions import (
    ErrorKind,
    RETRYABLE_KINDS,
    JumpCloudError,
    HTTPStatusError,
    JumpCloudAPIError,
    JumpCloudTransportError,
    RequestCancelledError,
    ResourceCreatedWithoutIDError,
    ImmutableFieldError,
    ReconciliationError,
    is_not_found,
    is_conflict,
)
from .transport import Transport
from .pagination import ListQuery, SortSpec, Page, decode_page, list_page, iterate_pages
from .reconcile import Field, ResourceDefinition, ResourceState, ResourceService, json_string_field
from .users import UserService, list_users
from .groups import (
    UserGroupService,
    SystemGroupService,
    list_user_groups,
    list_system_groups,
    get_group_by_name,
)
from .policies import PolicyService, list_policies
from .scim import ScimServerService, list_scim_servers
from .ip_lists import IPListService, list_ip_lists

# Resource kinds addressable from the command line
RESOURCE_SERVICES = {
    "user": UserService,
    "user_group": UserGroupService,
    "system_group": SystemGroupService,
    "policy": PolicyService,
    "scim_server": ScimServerService,
    "ip_list": IPListService,
}

__all__ = [
    # Client
    "JumpCloudClient",
    "Requester",
    "RetryState",
    "Transport",
    "decode_json",
    "with_query",

    # Classification
    "classify",
    "classify_response",
    "kind_for_status",
    "parse_retry_after",

    # Exceptions
    "ErrorKind",
    "RETRYABLE_KINDS",
    "JumpCloudError",
    "HTTPStatusError",
    "JumpCloudAPIError",
    "JumpCloudTransportError",
    "RequestCancelledError",
    "ResourceCreatedWithoutIDError",
    "ImmutableFieldError",
    "ReconciliationError",
    "is_not_found",
    "is_conflict",

    # Pagination
    "ListQuery",
    "SortSpec",
    "Page",
    "decode_page",
    "list_page",
    "iterate_pages",

    # Reconciliation
    "Field",
    "ResourceDefinition",
    "ResourceState",
    "ResourceService",
    "json_string_field",

    # Services
    "UserService",
    "UserGroupService",
    "SystemGroupService",
    "PolicyService",
    "ScimServerService",
    "IPListService",
    "RESOURCE_SERVICES",

    # Data sources
    "list_users",
    "list_user_groups",
    "list_system_groups",
    "get_group_by_name",
    "list_policies",
    "list_scim_servers",
    "list_ip_lists",
]
