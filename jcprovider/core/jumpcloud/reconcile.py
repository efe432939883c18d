"""Create/Read/Update/Delete reconciliation shared by all resource modules.

A resource module declares a ResourceDefinition (collection path plus field
map) and gets the protocol for free:

- create: POST, require an identity in the response, then read back
- read: GET; NotFound clears the local identity instead of failing
- update: reject immutable changes locally, PUT only when a mutable field
  differs from the last read, then read back
- delete: DELETE; NotFound counts as already deleted
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .client import Requester, decode_json, with_query
from .exceptions import (
    ImmutableFieldError,
    JumpCloudError,
    ReconciliationError,
    ResourceCreatedWithoutIDError,
    is_not_found,
)
from .pagination import DEFAULT_LIMIT, ListQuery, Page, SortSpec, list_page

logger = logging.getLogger(__name__)

Converter = Callable[[Any], Any]


@dataclass(frozen=True)
class Field:
    """Mapping between a local attribute and a remote JSON key.

    Attributes:
        name: Local attribute name (snake_case)
        remote: JSON key in API payloads (defaults to name)
        immutable: Fixed at creation; changing it is rejected locally
        computed: Set by the server only, never sent
        write_only: Sent but never returned (secrets); kept from desired state
        expand: Converter local -> remote
        flatten: Converter remote -> local
    """
    name: str
    remote: str = ""
    immutable: bool = False
    computed: bool = False
    write_only: bool = False
    expand: Optional[Converter] = None
    flatten: Optional[Converter] = None

    @property
    def key(self) -> str:
        return self.remote or self.name


@dataclass(frozen=True)
class ResourceDefinition:
    """Endpoint and field map for one remote resource type."""
    kind: str
    path: str
    fields: Tuple[Field, ...]
    id_keys: Tuple[str, ...] = ("_id", "id")
    constants: Mapping[str, Any] = field(default_factory=dict)
    org_field: Optional[str] = None

    def get_field(self, name: str) -> Field:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(name)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def validate_desired(self, desired: Mapping[str, Any]) -> None:
        """Reject unknown or server-computed attributes in desired state."""
        known = {f.name: f for f in self.fields}
        for name in desired:
            if name not in known:
                raise ValueError(f"Unknown attribute '{name}' for {self.kind}")
            if known[name].computed:
                raise ValueError(f"Attribute '{name}' of {self.kind} is computed and cannot be set")

    def collection_path(self, org_id: str = "") -> str:
        return with_query(self.path, {"orgId": org_id}) if org_id else self.path

    def item_path(self, resource_id: str, org_id: str = "") -> str:
        if not resource_id:
            raise ValueError(f"{self.kind} has no ID")
        path = f"{self.path}/{resource_id}"
        return with_query(path, {"orgId": org_id}) if org_id else path

    def to_payload(self, attributes: Mapping[str, Any], for_create: bool) -> Dict[str, Any]:
        """Build the JSON payload from local attributes."""
        payload: Dict[str, Any] = dict(self.constants) if for_create else {}
        for f in self.fields:
            if f.computed or f.name not in attributes:
                continue
            if f.immutable and not for_create:
                continue
            value = attributes[f.name]
            if value is None:
                continue
            payload[f.key] = f.expand(value) if f.expand else value
        return payload

    def from_remote(self, remote: Mapping[str, Any]) -> Dict[str, Any]:
        """Copy known fields from an API object into local attributes."""
        attributes: Dict[str, Any] = {}
        for f in self.fields:
            if f.write_only or f.key not in remote:
                continue
            value = remote[f.key]
            attributes[f.name] = f.flatten(value) if f.flatten and value is not None else value
        return attributes

    def identity(self, remote: Any) -> str:
        if not isinstance(remote, Mapping):
            return ""
        for key in self.id_keys:
            value = remote.get(key)
            if value:
                return str(value)
        return ""


@dataclass
class ResourceState:
    """Local mirror of a remote resource; the API stays the source of truth."""
    id: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def exists(self) -> bool:
        return bool(self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, **self.attributes}


def json_string_field(name: str, remote: str = "", **kwargs: Any) -> Field:
    """Field holding a JSON document as a string locally and an object remotely."""
    return Field(
        name,
        remote,
        expand=lambda value: json.loads(value) if isinstance(value, str) else value,
        flatten=lambda value: json.dumps(value, sort_keys=True),
        **kwargs,
    )


def _normalize(value: Any) -> Any:
    """Canonical form for change detection (JSON strings compare semantically)."""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped[:1] in ("{", "["):
            try:
                return json.loads(stripped)
            except ValueError:
                return value
    if isinstance(value, tuple):
        return list(value)
    return value


class ResourceService:
    """CRUD reconciliation for one ResourceDefinition.

    Subclasses set `definition` and may add resource-specific helpers. The
    list endpoint's query conventions are described by `sort_style`,
    `bracket_filters` and `skip_supported`.
    """

    definition: ResourceDefinition
    sort_style: str = "colon"
    bracket_filters: bool = False
    skip_supported: bool = True

    def __init__(self, client: Requester, definition: Optional[ResourceDefinition] = None):
        """Initialize resource service.

        Args:
            client: Anything with do_request(method, path, body)
            definition: Overrides the class-level definition
        """
        self.client = client
        if definition is not None:
            self.definition = definition

    # ─────────────────────────────────────────────────────────────────────
    # Protocol
    # ─────────────────────────────────────────────────────────────────────

    def create(self, desired: Mapping[str, Any]) -> ResourceState:
        """Create the resource, then read it back for server-computed fields.

        Raises:
            ResourceCreatedWithoutIDError: Response carried no identity
            ReconciliationError: POST or read-back failed
        """
        d = self.definition
        d.validate_desired(desired)
        org_id = self._org_id(desired)
        path = d.collection_path(org_id)
        payload = d.to_payload(desired, for_create=True)

        logger.info(f"Creating {d.kind}")
        try:
            created = decode_json(self.client.do_request("POST", path, payload))
        except JumpCloudError as e:
            raise ReconciliationError("create", path, e) from e

        resource_id = d.identity(created)
        if not resource_id:
            raise ResourceCreatedWithoutIDError(path)

        state = ResourceState(id=resource_id, attributes=dict(desired))
        logger.info(f"{d.kind} created (id={resource_id})")
        try:
            self._refresh(state)
        except JumpCloudError as e:
            raise ReconciliationError("create", d.item_path(resource_id, org_id), e, resource_id=resource_id) from e
        return state

    def read(self, state: ResourceState) -> ResourceState:
        """Refresh state from the API.

        A NotFound response means the resource was removed out-of-band: the
        identity and attributes are cleared and no error is raised.
        """
        d = self.definition
        path = d.item_path(state.id, self._org_id(state.attributes))
        try:
            self._refresh(state)
        except JumpCloudError as e:
            if is_not_found(e):
                logger.warning(f"{d.kind} {state.id} not found, removing from state")
                state.id = ""
                state.attributes = {}
                return state
            raise ReconciliationError("read", path, e) from e
        return state

    def update(self, state: ResourceState, desired: Mapping[str, Any]) -> ResourceState:
        """Apply desired mutable fields when they differ from the last read.

        Raises:
            ImmutableFieldError: Desired state changes a creation-only field
            ReconciliationError: PUT or read-back failed
        """
        d = self.definition
        d.validate_desired(desired)
        self.check_immutable(state, desired)

        changed = self.changed_fields(state, desired)
        if not changed:
            logger.debug(f"{d.kind} {state.id} unchanged, skipping update")
            return state

        path = d.item_path(state.id, self._org_id(state.attributes))
        merged = {**state.attributes, **desired}
        payload = d.to_payload(merged, for_create=False)

        logger.info(f"Updating {d.kind} {state.id} (changed: {', '.join(changed)})")
        try:
            self.client.do_request("PUT", path, payload)
        except JumpCloudError as e:
            raise ReconciliationError("update", path, e) from e

        for name in changed:
            state.attributes[name] = desired[name]
        try:
            self._refresh(state)
        except JumpCloudError as e:
            raise ReconciliationError("update", path, e) from e
        return state

    def delete(self, state: ResourceState) -> ResourceState:
        """Delete the resource; an already-absent resource counts as deleted."""
        d = self.definition
        if not state.id:
            return state
        path = d.item_path(state.id, self._org_id(state.attributes))

        logger.info(f"Deleting {d.kind} {state.id}")
        try:
            self.client.do_request("DELETE", path)
        except JumpCloudError as e:
            if not is_not_found(e):
                raise ReconciliationError("delete", path, e) from e
            logger.info(f"{d.kind} {state.id} already deleted")

        state.id = ""
        state.attributes = {}
        return state

    def scoped_state(self, resource_id: str, org_id: str = "") -> ResourceState:
        """State holding only an identity and, where the resource has one, its org scope."""
        org_field = self.definition.org_field
        attributes = {org_field: org_id} if org_id and org_field else {}
        return ResourceState(id=resource_id, attributes=attributes)

    def import_state(self, resource_id: str, org_id: str = "") -> ResourceState:
        """Adopt an existing remote resource by ID."""
        return self.read(self.scoped_state(resource_id, org_id))

    def list(self, query: Optional[ListQuery] = None) -> Page[ResourceState]:
        """Fetch one page of the collection (data source)."""
        d = self.definition
        return list_page(self.client, d.path, query, parser=self._parse_item)

    def make_query(
        self,
        limit: Optional[int] = DEFAULT_LIMIT,
        skip: Optional[int] = 0,
        sort: Sequence[SortSpec] = (),
        filters: Optional[Mapping[str, Any]] = None,
        org_id: str = "",
    ) -> ListQuery:
        """ListQuery shaped the way this collection's list endpoint expects."""
        return ListQuery(
            limit=limit,
            skip=skip if self.skip_supported else None,
            sort=tuple(sort),
            sort_style=self.sort_style,
            filters={} if self.bracket_filters else dict(filters or {}),
            bracket_filters=dict(filters or {}) if self.bracket_filters else {},
            org_id=org_id,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Change detection
    # ─────────────────────────────────────────────────────────────────────

    def check_immutable(self, state: ResourceState, desired: Mapping[str, Any]) -> None:
        """Raise ImmutableFieldError before any network call if needed."""
        for f in self.definition.fields:
            if not f.immutable or f.name not in desired:
                continue
            current = state.attributes.get(f.name)
            if current is None and desired[f.name] is None:
                continue
            if current is None or _normalize(current) != _normalize(desired[f.name]):
                raise ImmutableFieldError(f.name, current, desired[f.name])

    def changed_fields(self, state: ResourceState, desired: Mapping[str, Any]) -> List[str]:
        """Names of mutable fields whose desired value differs from state."""
        changed = []
        for f in self.definition.fields:
            if f.computed or f.immutable or f.name not in desired:
                continue
            if _normalize(state.attributes.get(f.name)) != _normalize(desired[f.name]):
                changed.append(f.name)
        return changed

    # ─────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────

    def _org_id(self, attributes: Mapping[str, Any]) -> str:
        org_field = self.definition.org_field
        if not org_field:
            return ""
        return attributes.get(org_field) or ""

    def _refresh(self, state: ResourceState) -> None:
        """GET the resource and merge it into state; errors propagate."""
        d = self.definition
        path = d.item_path(state.id, self._org_id(state.attributes))
        remote = decode_json(self.client.do_request("GET", path))
        if not isinstance(remote, Mapping):
            raise ValueError(f"Unexpected response for {d.kind} {state.id}: {remote!r}")

        # Immutable values the server does not echo back stay as last known
        preserved = {f.name for f in d.fields if f.write_only or (f.immutable and f.key not in remote)}
        kept = {k: v for k, v in state.attributes.items() if k in preserved and v is not None}
        org_field = d.org_field
        if org_field and state.attributes.get(org_field):
            kept.setdefault(org_field, state.attributes[org_field])
        state.attributes = {**kept, **d.from_remote(remote)}

    def _parse_item(self, item: Dict[str, Any]) -> ResourceState:
        return ResourceState(id=self.definition.identity(item), attributes=self.definition.from_remote(item))
