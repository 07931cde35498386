"""
Data types for smolbrain.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from .errors import ValidationError


# Tags with meaning to the lifecycle and task layers.
# At the storage layer they are ordinary tags.
ARCHIVED_TAG = "archived"
TASK_TAG = "task"

MAX_CONTENT_LENGTH = 1_000_000

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> str:
    """Current UTC timestamp in canonical format: YYYY-MM-DDTHH:MM:SSZ.

    All timestamps in smolbrain are UTC and compare correctly as strings.
    """
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime."""
    dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


_DURATION_RE = re.compile(
    r"^P(?:(\d+)Y)?(?:(\d+)M)?(?:(\d+)W)?(?:(\d+)D)?"
    r"(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?$"
)


def parse_time_bound(value: str, *, upper: bool = False) -> str:
    """
    Parse a --from/--to value into a canonical timestamp string.

    Accepts:
    - ISO 8601 duration relative to now: P3D, P1W, PT1H, P1DT12H
    - ISO date: 2026-01-15 (or 2026/01/15)
    - ISO timestamp: 2026-01-15T10:30:00Z, 2026-01-15T10:30

    A bare date used as an upper bound covers the whole day, so that
    ``to=2026-01-15`` includes memories stored on the 15th.

    Raises:
        ValidationError: If the value is not a recognized format
    """
    text = value.strip()

    match = _DURATION_RE.match(text.upper())
    if match and any(match.groups()):
        years, months, weeks, days, hours, minutes, seconds = (
            int(g) if g else 0 for g in match.groups()
        )
        # Approximate months/years
        delta = timedelta(
            days=years * 365 + months * 30 + weeks * 7 + days,
            hours=hours, minutes=minutes, seconds=seconds,
        )
        return (datetime.now(timezone.utc) - delta).strftime(TIMESTAMP_FORMAT)

    normalized = text.replace("/", "-")
    if len(normalized) == 10:
        try:
            day = datetime.strptime(normalized, "%Y-%m-%d")
        except ValueError:
            pass
        else:
            suffix = "T23:59:59Z" if upper else "T00:00:00Z"
            return day.strftime("%Y-%m-%d") + suffix

    try:
        dt = parse_utc_timestamp(normalized)
    except ValueError:
        raise ValidationError(
            f"Invalid date/duration format: {value!r}. "
            "Use ISO duration (P3D, PT1H, P1W), date (2026-01-15) "
            "or timestamp (2026-01-15T10:30:00Z)"
        ) from None
    return dt.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def normalize_tag(tag: str) -> str:
    """Trim a tag label. Labels are otherwise kept exactly as given."""
    if not isinstance(tag, str):
        raise ValidationError(f"Tag must be a string: {tag!r}")
    label = tag.strip()
    if not label:
        raise ValidationError("Tag cannot be empty")
    return label


def normalize_tags(tags) -> list[str]:
    """Trim and de-duplicate tags, returned sorted."""
    return sorted({normalize_tag(t) for t in (tags or ())})


def validate_content(content: str) -> str:
    """Reject empty or oversized content. Content itself is stored verbatim."""
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("Content cannot be empty")
    if len(content) > MAX_CONTENT_LENGTH:
        raise ValidationError(
            f"Content too long: {len(content)} chars (max {MAX_CONTENT_LENGTH})"
        )
    return content


@dataclass
class Memory:
    """
    A stored memory.

    Content and timestamp never change after insert. Only the tag set and
    the presence of an embedding evolve.

    Attributes:
        id: Monotonically assigned identifier, never reused
        timestamp: Creation instant (UTC, YYYY-MM-DDTHH:MM:SSZ)
        content: Text payload, stored verbatim
        tags: Tag set, lexicographically sorted
        embedding_model: Model identity of the stored vector, None if absent
    """
    id: int
    timestamp: str
    content: str
    tags: list[str] = field(default_factory=list)
    embedding_model: Optional[str] = None

    @property
    def has_embedding(self) -> bool:
        return self.embedding_model is not None

    @property
    def archived(self) -> bool:
        return ARCHIVED_TAG in self.tags

    @property
    def is_task(self) -> bool:
        return TASK_TAG in self.tags

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "content": self.content,
            "tags": list(self.tags),
        }

    def __str__(self) -> str:
        return f"[{self.id}] [{self.timestamp}] {self.content[:60]}"


@dataclass
class ScoredMemory:
    """A memory with its similarity score against a query."""
    memory: Memory
    score: float

    def to_dict(self) -> dict:
        d = self.memory.to_dict()
        d["score"] = round(self.score, 6)
        return d


@dataclass
class Page:
    """
    One window of an ordered result set.

    ``total`` is the number of matches before pagination and does not
    depend on the window that produced ``items``.
    """
    items: list
    total: int
    offset: int = 0

    @property
    def remaining(self) -> int:
        """Matches not yet shown after this page."""
        return max(0, self.total - self.offset - len(self.items))

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def to_dict(self) -> dict:
        return {
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
            "remaining": self.remaining,
        }


@dataclass
class StatusSummary:
    """Open tasks plus the most recent memories."""
    open_tasks: list[Memory]
    recent: list[Memory]
    tasks_by_status: dict[str, int] = field(default_factory=dict)
    total_memories: int = 0
    embeddings: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "open_tasks": [m.to_dict() for m in self.open_tasks],
            "recent": [m.to_dict() for m in self.recent],
            "tasks_by_status": dict(self.tasks_by_status),
            "total_memories": self.total_memories,
            "embeddings": dict(self.embeddings),
        }
