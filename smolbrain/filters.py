"""
Filter and pagination pipeline shared by every listing operation.

A listing is a predicate (tags any-of, inclusive time bounds, archived
exclusion, plus optional operation-specific terms) and a window (limit or
tail, with an offset). The predicate is compiled to SQL once and used both
to count all matches and to fetch the requested window, inside one read
snapshot so the total and the page agree.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence

from .errors import ValidationError
from .memory_store import MemoryStore
from .types import ARCHIVED_TAG, Page, normalize_tags, parse_time_bound

DEFAULT_LIMIT = 20


@dataclass
class Filters:
    """
    Predicate shared by all listing operations.

    Attributes:
        tags: Match memories carrying at least one of these tags
        since: Inclusive lower time bound (timestamp, date or ISO duration)
        until: Inclusive upper time bound (timestamp, date or ISO duration)
        include_archived: Include memories tagged ``archived``
    """
    tags: Sequence[str] = field(default_factory=tuple)
    since: Optional[str] = None
    until: Optional[str] = None
    include_archived: bool = False


@dataclass
class Window:
    """
    Pagination window. ``limit`` and ``tail`` are mutually exclusive.

    - limit=N: first N matches, oldest first
    - tail=N: last N matches, still returned oldest first
    - offset=K: skip K matches from the start (limit) or the end (tail)

    With neither set, ``limit`` defaults to DEFAULT_LIMIT.
    """
    limit: Optional[int] = None
    tail: Optional[int] = None
    offset: int = 0

    def __post_init__(self):
        if self.limit is not None and self.tail is not None:
            raise ValidationError("Specify either limit or tail, not both")
        for name in ("limit", "tail", "offset"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValidationError(f"{name} cannot be negative: {value}")
        if self.limit is None and self.tail is None:
            self.limit = DEFAULT_LIMIT

    @property
    def from_end(self) -> bool:
        return self.tail is not None

    @property
    def size(self) -> int:
        return self.tail if self.tail is not None else self.limit


def build_predicate(
    store: MemoryStore,
    filters: Filters,
    *,
    any_of: Sequence[Sequence[str]] = (),
    text_tokens: Sequence[str] = (),
) -> tuple[str, list]:
    """
    Compile filters into a SQL predicate over alias ``m``.

    Args:
        store: Store providing the tag and full-text clause builders
        filters: Caller filters
        any_of: Additional tag groups; each group is any-of and groups are ANDed
        text_tokens: Full-text tokens; every token must occur in content

    Raises:
        ValidationError: For malformed tags or time bounds
    """
    clauses: list[str] = []
    params: list = []

    def add(clause: tuple[str, list]) -> None:
        clauses.append(clause[0])
        params.extend(clause[1])

    tags = normalize_tags(filters.tags)
    if tags:
        add(store.any_tag_clause(tags))
    for group in any_of:
        add(store.any_tag_clause(group))

    if filters.since:
        add(("m.timestamp >= ?", [parse_time_bound(filters.since)]))
    if filters.until:
        add(("m.timestamp <= ?", [parse_time_bound(filters.until, upper=True)]))

    if not filters.include_archived:
        add(store.no_tag_clause(ARCHIVED_TAG))

    if text_tokens:
        add(store.fulltext_clause(list(text_tokens)))

    return (" AND ".join(clauses) or "1"), params


def fetch_page(store: MemoryStore, where: str, params: list, window: Window) -> Page:
    """
    Fetch one window of memories matching a predicate, with the total count.

    Results are always in ascending chronological order. Tail windows are
    selected newest-first and then reversed.
    """
    with store.snapshot():
        total = store.count_where(where, params)
        items = store.select(
            where, params,
            descending=window.from_end,
            limit=window.size,
            offset=window.offset,
        )
    if window.from_end:
        items.reverse()
    return Page(items=items, total=total, offset=window.offset)


def paginate(items: list, window: Window) -> Page:
    """
    Apply a window to an already ordered list.

    Used where ordering happens in Python (similarity ranking). Tail
    windows take from the end and keep the list's own order.
    """
    total = len(items)
    if window.from_end:
        end = max(0, total - window.offset)
        start = max(0, end - window.size)
        page = items[start:end]
    else:
        page = items[window.offset:window.offset + window.size]
    return Page(items=page, total=total, offset=window.offset)
