"""
Task status state machine.

A task is any memory tagged ``task``. Its status is the one tag it carries
from STATUSES. Status lives only in the tag set; this module validates
transitions and exposes a read-only view, it never stores anything itself.
Every transition between statuses is allowed, in either direction.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from .errors import ValidationError
from .types import ARCHIVED_TAG, TASK_TAG, Memory

STATUSES = ("todo", "wip", "done")
INITIAL_STATUS = "todo"
OPEN_STATUSES = ("todo", "wip")


def validate_status(status: str) -> str:
    """Return the canonical status name or raise ValidationError."""
    value = (status or "").strip().casefold()
    if value not in STATUSES:
        raise ValidationError(
            f"Unknown status {status!r}. Use one of: {', '.join(STATUSES)}"
        )
    return value


def statuses_of(tags: Iterable[str]) -> list[str]:
    """Every status tag present in ``tags``, in STATUSES order."""
    tags = set(tags)
    return [s for s in STATUSES if s in tags]


def status_of(tags: Iterable[str]) -> Optional[str]:
    """
    The status tag present in ``tags``, or None.

    Raises:
        ValidationError: If more than one status tag is present
    """
    present = statuses_of(tags)
    if len(present) > 1:
        raise ValidationError(f"Conflicting status tags: {', '.join(present)}")
    return present[0] if present else None


def transition(tags: Iterable[str], new_status: str) -> tuple[list[str], str]:
    """
    Plan a status change.

    Returns:
        (status tags to remove, status tag to add). Every status tag
        currently present is removed, including a duplicate of the target,
        so a task that somehow gained several statuses is repaired.
    """
    new_status = validate_status(new_status)
    return statuses_of(tags), new_status


def initial_tags(extra: Iterable[str]) -> list[str]:
    """Tags for a new task: ``task``, ``todo`` and the caller's tags.

    An explicit status among the caller's tags replaces ``todo``.
    """
    tags = set(extra)
    if not any(s in tags for s in STATUSES):
        tags.add(INITIAL_STATUS)
    elif len(statuses_of(tags)) > 1:
        raise ValidationError("A task can only have one status")
    tags.add(TASK_TAG)
    return sorted(tags)


@dataclass(frozen=True)
class Task:
    """Read-only projection of a task memory."""
    memory: Memory

    @classmethod
    def from_memory(cls, memory: Memory) -> Optional["Task"]:
        return cls(memory) if memory.is_task else None

    @property
    def id(self) -> int:
        return self.memory.id

    @property
    def status(self) -> Optional[str]:
        return status_of(self.memory.tags)

    @property
    def statuses(self) -> list[str]:
        """All status tags; more than one only if tags were edited by hand."""
        return statuses_of(self.memory.tags)

    @property
    def is_open(self) -> bool:
        return (
            any(s in OPEN_STATUSES for s in self.statuses)
            and ARCHIVED_TAG not in self.memory.tags
        )

    def to_dict(self) -> dict:
        d = self.memory.to_dict()
        d["status"] = self.status
        return d
