# Overview: Search + sort + page engine shared by every list endpoint.

"""
Query/Pagination Engine

Each list endpoint declares a SortableListing: an explicit allow-list of
sort keys (key -> column), the columns searched by searchTerm, and a
default sort. Unknown sort keys never raise; they fall back to the default.

totalCount is taken from the filtered-but-unpaged query, so it stays exact
even when the requested page is past the end.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

from sqlalchemy import or_


DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _to_int(raw: Any, default: int) -> int:
    if raw is None or isinstance(raw, bool):
        return default
    if isinstance(raw, int):
        return raw
    try:
        return int(str(raw).strip())
    except ValueError:
        return default


def _first(args: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        value = args.get(name)
        if value is not None and value != "":
            return value
    return None


@dataclass
class QueryParameters:
    page_number: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    search_term: str | None = None
    sort_by: str | None = None
    sort_order: str | None = None

    def __post_init__(self):
        self.page_number = _to_int(self.page_number, 1)
        if self.page_number < 1:
            self.page_number = 1
        self.page_size = _to_int(self.page_size, DEFAULT_PAGE_SIZE)
        if self.page_size < 1:
            self.page_size = DEFAULT_PAGE_SIZE
        if self.page_size > MAX_PAGE_SIZE:
            self.page_size = MAX_PAGE_SIZE
        if self.search_term is not None:
            self.search_term = str(self.search_term).strip() or None
        if self.sort_order is not None:
            order = str(self.sort_order).strip().lower()
            self.sort_order = order if order in ("asc", "desc") else None

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "QueryParameters":
        """Build from request.args; camelCase and snake_case names are both accepted."""
        return cls(
            page_number=_first(args, "pageNumber", "page_number", "page"),
            page_size=_first(args, "pageSize", "page_size", "per_page"),
            search_term=_first(args, "searchTerm", "search_term", "q"),
            sort_by=_first(args, "sortBy", "sort_by"),
            sort_order=_first(args, "sortOrder", "sort_order"),
        )

    @property
    def offset(self) -> int:
        return (self.page_number - 1) * self.page_size


@dataclass(frozen=True)
class SortableListing:
    sort_keys: Mapping[str, Any]
    search_fields: Sequence[Any]
    default_sort: str
    default_order: str = "asc"
    tie_breaker: Any = None
    joins: Sequence[Any] = field(default_factory=tuple)

    def resolve_sort(self, params: QueryParameters) -> tuple[Any, str]:
        key = (params.sort_by or "").strip().lower()
        if key not in self.sort_keys:
            # Permissive: malformed input changes the order, never fails
            return self.sort_keys[self.default_sort], params.sort_order or self.default_order
        if key == self.default_sort:
            return self.sort_keys[key], params.sort_order or self.default_order
        return self.sort_keys[key], params.sort_order or "asc"


@dataclass
class PagedResult:
    items: list
    total_count: int
    page_number: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size else 0

    @property
    def has_previous_page(self) -> bool:
        return self.page_number > 1

    @property
    def has_next_page(self) -> bool:
        return self.page_number < self.total_pages

    def to_dict(self) -> dict:
        return {
            "items": self.items,
            "total_count": self.total_count,
            "page_number": self.page_number,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
            "has_previous_page": self.has_previous_page,
            "has_next_page": self.has_next_page,
        }


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def apply_search(query, term: str | None, fields: Sequence[Any]):
    if not term or not fields:
        return query
    pattern = f"%{_escape_like(term)}%"
    return query.filter(or_(*[f.ilike(pattern, escape="\\") for f in fields]))


def apply_sort(query, params: QueryParameters, listing: SortableListing):
    column, order = listing.resolve_sort(params)
    ordering = [column.desc() if order == "desc" else column.asc()]
    if listing.tie_breaker is not None:
        tie = listing.tie_breaker
        ordering.append(tie.desc() if order == "desc" else tie.asc())
    return query.order_by(*ordering)


def paginate(
    query,
    params: QueryParameters,
    listing: SortableListing,
    serialize: Callable[[Any], dict],
) -> dict:
    """Search, count, sort, then window. Returns the PagedResult view as a dict."""
    for target in listing.joins:
        query = query.outerjoin(*target) if isinstance(target, tuple) else query.outerjoin(target)
    query = apply_search(query, params.search_term, listing.search_fields)

    total_count = query.order_by(None).count()

    rows = (
        apply_sort(query, params, listing)
        .offset(params.offset)
        .limit(params.page_size)
        .all()
    )
    result = PagedResult(
        items=[serialize(r) for r in rows],
        total_count=total_count,
        page_number=params.page_number,
        page_size=params.page_size,
    )
    return result.to_dict()
