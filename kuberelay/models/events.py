"""Core change-event data structures and enumerations."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class ChangeKind(StrEnum):
    """Kind of change observed on a watched object."""

    ADDED = "added"
    UPDATED = "updated"
    DELETED = "deleted"

    @property
    def operation(self) -> str:
        """Label used for this kind in outbound envelopes."""
        return _OPERATIONS[self]


_OPERATIONS: dict[ChangeKind, str] = {
    ChangeKind.ADDED: "create",
    ChangeKind.UPDATED: "update",
    ChangeKind.DELETED: "delete",
}


@dataclass(frozen=True)
class DeletedFinalStateUnknown:
    """Delete marker emitted when the final state of an object was missed.

    Produced by an informer that noticed an object disappeared during a
    relist. ``obj`` is the last state the informer knew, which may be stale
    or absent altogether.
    """

    key: str
    obj: dict[str, Any] | None = None


@dataclass(frozen=True)
class ChangeEvent:
    """A single change flowing through the relay pipeline.

    ``obj`` is the current state (or a DeletedFinalStateUnknown marker for
    degraded deletes). ``old_obj`` is only set for UPDATED events.
    Objects are shared with other subscribers and must never be mutated.
    """

    kind: ChangeKind
    obj: Any
    old_obj: Any = None
