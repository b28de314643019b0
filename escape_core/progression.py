"""Stage progression for team escape rooms."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from escape_core.coercion import (
    Number,
    coerce_index,
    normalize_stage_indices,
    to_finite_number,
)

COMPLETE_EVENT_ID = "complete"


@dataclass(frozen=True)
class StageProgressResult:
    """Outcome of advancing a team's stage pointer."""

    is_complete: bool
    next_stage_index: int
    solved_stages: tuple[int, ...]

    def to_payload(self) -> dict[str, object]:
        """Return a JSON-serialisable view using the wire field names."""
        return {
            "isComplete": self.is_complete,
            "nextStageIndex": self.next_stage_index,
            "solvedStages": list(self.solved_stages),
        }


def advance(
    current_stage_index: Any,
    solved_stages: Any,
    requested_next_stage_index: Any,
    total_rooms: Any,
    explicit_complete: bool = False,
) -> StageProgressResult:
    """
    Compute the progression state after a team moves on from its current stage.

    A normal advance marks the stage being left as solved. Completing the room,
    either explicitly or by requesting a stage past ``total_rooms``, pins the
    pointer to the final stage and marks that stage solved instead. A
    ``total_rooms`` of zero means the room size is unknown and disables the
    overflow rule. Malformed numbers degrade to safe defaults.
    """
    current = coerce_index(current_stage_index, 1, 1)
    requested = coerce_index(requested_next_stage_index, current + 1, 1)
    rooms = coerce_index(total_rooms, 0, 0)

    is_complete = bool(explicit_complete) or (rooms > 0 and requested > rooms)
    next_stage_index = (rooms or current) if is_complete else requested
    newly_solved = next_stage_index if is_complete else current

    solved = set(normalize_stage_indices(solved_stages))
    solved.add(newly_solved)
    return StageProgressResult(
        is_complete=is_complete,
        next_stage_index=next_stage_index,
        solved_stages=tuple(sorted(solved)),
    )


def requested_next_stage(meta: Any, current_stage_index: Any) -> Number:
    """Derive the stage a team asks to move to from stage metadata.

    An explicit ``nextStageIndex`` (or the older ``nextStageOrder``) wins;
    otherwise the team moves ``advanceBy`` stages forward, one by default.
    """
    current = coerce_index(current_stage_index, 1, 1)
    base = meta if isinstance(meta, Mapping) else {}
    for key in ("nextStageIndex", "nextStageOrder"):
        value = base.get(key)
        if _is_number(value):
            return value
    step = base.get("advanceBy")
    if not _is_number(step) or to_finite_number(step) is None:
        step = 1
    return current + step


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_explicit_completion(meta: Any) -> bool:
    """Return True when stage metadata marks the stage as the room's exit."""
    if not isinstance(meta, Mapping):
        return False
    return bool(meta.get("complete")) or meta.get("eventId") == COMPLETE_EVENT_ID


__all__ = [
    "COMPLETE_EVENT_ID",
    "StageProgressResult",
    "advance",
    "is_explicit_completion",
    "requested_next_stage",
]
