"""List query composition and page envelope decoding.

Data sources expose limit/skip as user-facing knobs, so the composer returns
one page per call. iterate_pages() is there for callers that want every item.
"""
from __future__ import annotations
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Sequence, Tuple, TypeVar
from urllib.parse import urlencode

from .client import Requester

T = TypeVar("T")

DEFAULT_LIMIT = 100
SORT_DIRECTIONS = ("asc", "desc")


def _render(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class SortSpec:
    """Sort key rendered as field:direction or, for some endpoints, -field."""
    field: str
    direction: str = "asc"

    def __post_init__(self) -> None:
        if self.direction not in SORT_DIRECTIONS:
            raise ValueError(f"Invalid sort direction '{self.direction}': must be 'asc' or 'desc'")

    @classmethod
    def parse(cls, text: str) -> "SortSpec":
        """Parse 'field', 'field:desc' or '-field'."""
        if text.startswith("-"):
            return cls(text[1:], "desc")
        name, _, direction = text.partition(":")
        return cls(name, direction or "asc")

    def colon_style(self) -> str:
        return f"{self.field}:{self.direction}"

    def prefix_style(self) -> str:
        return f"-{self.field}" if self.direction == "desc" else self.field


@dataclass(frozen=True)
class ListQuery:
    """Structured list parameters for a JumpCloud list endpoint.

    Attributes:
        limit: Page size
        skip: Offset of the first item
        sort: Sort keys
        sort_style: "colon" (sort=field:dir), "prefix" (sort=-field) or
            "split" (sort=field&sort_dir=dir)
        filters: Plain equality filters sent as name=value
        bracket_filters: Filters sent as filter[name]=value
        multi: Multi-valued filters sent as repeated name=value pairs
        org_id: Per-call organization scope sent as orgId
        extra: Any other parameters, passed through
    """
    limit: Optional[int] = DEFAULT_LIMIT
    skip: Optional[int] = 0
    sort: Tuple[SortSpec, ...] = ()
    sort_style: str = "colon"
    filters: Dict[str, Any] = field(default_factory=dict)
    bracket_filters: Dict[str, Any] = field(default_factory=dict)
    multi: Dict[str, Sequence[Any]] = field(default_factory=dict)
    org_id: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.limit is not None and self.limit < 0:
            raise ValueError("limit must not be negative")
        if self.skip is not None and self.skip < 0:
            raise ValueError("skip must not be negative")
        if self.sort_style not in ("colon", "prefix", "split"):
            raise ValueError(f"Unknown sort style '{self.sort_style}'")

    def params(self) -> List[Tuple[str, str]]:
        """Render to (name, value) pairs; None values are dropped."""
        pairs: List[Tuple[str, str]] = []
        for name, value in self.filters.items():
            if value is not None:
                pairs.append((name, _render(value)))
        for name, value in self.bracket_filters.items():
            if value is not None:
                pairs.append((f"filter[{name}]", _render(value)))
        for name, values in self.multi.items():
            pairs.extend((name, _render(v)) for v in values if v is not None)
        if self.sort:
            if self.sort_style == "colon":
                pairs.extend(("sort", s.colon_style()) for s in self.sort)
            elif self.sort_style == "prefix":
                pairs.append(("sort", ",".join(s.prefix_style() for s in self.sort)))
            else:
                pairs.append(("sort", self.sort[0].field))
                pairs.append(("sort_dir", self.sort[0].direction))
        if self.limit is not None:
            pairs.append(("limit", str(self.limit)))
        if self.skip is not None:
            pairs.append(("skip", str(self.skip)))
        if self.org_id:
            pairs.append(("orgId", self.org_id))
        for name, value in self.extra.items():
            if value is not None:
                pairs.append((name, _render(value)))
        return pairs

    def query_string(self) -> str:
        return urlencode(self.params())

    def build_path(self, path: str) -> str:
        """Return path with this query appended."""
        query = self.query_string()
        if not query:
            return path
        separator = "&" if "?" in path else "?"
        return f"{path}{separator}{query}"

    def next(self, page: "Page[Any]") -> Optional["ListQuery"]:
        """Query for the page after `page`, or None when there is none."""
        if not page.has_more:
            return None
        offset = page.next_offset
        if offset is None:
            offset = (self.skip or 0) + len(page.results)
        return ListQuery(
            limit=self.limit,
            skip=offset,
            sort=self.sort,
            sort_style=self.sort_style,
            filters=dict(self.filters),
            bracket_filters=dict(self.bracket_filters),
            multi=dict(self.multi),
            org_id=self.org_id,
            extra=dict(self.extra),
        )


@dataclass
class Page(Generic[T]):
    """One decoded page of a list endpoint."""
    results: List[T]
    total_count: int
    has_more: bool
    next_offset: Optional[int] = None
    next_page_url: Optional[str] = None


def decode_page(
    raw: Any,
    skip: int = 0,
    parser: Optional[Callable[[Dict[str, Any]], T]] = None,
) -> Page[T]:
    """Decode a list response envelope.

    Accepts raw bytes, a decoded {results, totalCount, hasMore?, nextOffset?}
    envelope, or a bare JSON array (some v1 endpoints).

    Args:
        raw: Response body bytes or decoded JSON
        skip: Offset the request was made with, used to derive has_more
        parser: Optional function to parse each item
    """
    if isinstance(raw, (bytes, bytearray)):
        raw = json.loads(raw.decode("utf-8")) if raw else {}

    if isinstance(raw, list):
        items: List[Any] = raw
        total = len(raw)
        envelope: Dict[str, Any] = {}
    elif isinstance(raw, dict):
        envelope = raw
        items = envelope.get("results")
        if items is None:
            items = envelope.get("data") or []
        total = envelope.get("totalCount")
        if total is None:
            total = envelope.get("total_count", len(items))
    else:
        raise ValueError(f"Unexpected list response type: {type(raw).__name__}")

    next_offset = envelope.get("nextOffset")
    next_url = envelope.get("nextPageURL") or envelope.get("next")
    has_more = envelope.get("hasMore")
    if has_more is None:
        has_more = bool(next_url) or (bool(items) and skip + len(items) < total)

    results = [parser(item) for item in items] if parser else list(items)
    return Page(
        results=results,
        total_count=int(total),
        has_more=bool(has_more),
        next_offset=int(next_offset) if next_offset is not None else None,
        next_page_url=next_url,
    )


def list_page(
    requester: Requester,
    path: str,
    query: Optional[ListQuery] = None,
    parser: Optional[Callable[[Dict[str, Any]], T]] = None,
) -> Page[T]:
    """Fetch and decode a single page."""
    query = query or ListQuery()
    raw = requester.do_request("GET", query.build_path(path))
    return decode_page(raw, skip=query.skip or 0, parser=parser)


def iterate_pages(
    requester: Requester,
    path: str,
    query: Optional[ListQuery] = None,
    parser: Optional[Callable[[Dict[str, Any]], T]] = None,
    max_pages: int = 1000,
) -> Iterator[T]:
    """Yield items across pages until has_more is false.

    Stops on an empty page even if the server claims more, and after
    max_pages to guard against offsets that never advance.
    """
    query = query or ListQuery()
    for _ in range(max_pages):
        page = list_page(requester, path, query, parser)
        yield from page.results
        if not page.results:
            return
        next_query = query.next(page)
        if next_query is None:
            return
        query = next_query
