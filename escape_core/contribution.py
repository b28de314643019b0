"""Per-stage contribution ledger and the "everyone must participate" gate.

The ledger lives inside a team's scene state under ``stageContributions`` and
maps a stage key to per-user action counts. A stage's contribution gate asks
two independent questions before the team may advance: did enough different
people help (``required_distinct``), and did every rostered player personally
reach ``min_actions_per_player``.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from escape_core.coercion import coerce_index, non_negative_int, to_finite_number
from escape_core.scene_state import SceneState

LOGGER = logging.getLogger(__name__)

GATE_META_KEY = "contributionGate"


@dataclass(frozen=True)
class ContributionGate:
    """Gate configuration read from stage metadata."""

    enabled: bool = True
    required_distinct: int | None = None
    min_actions_per_player: int | None = None


@dataclass(frozen=True)
class ContributionSummary:
    """Evaluation of a stage's ledger against a team roster."""

    enabled: bool
    stage_index: int
    required_distinct: int
    min_actions_per_player: int
    distinct_contributors: int
    all_players_met_minimum: bool
    by_user: dict[str, int] = field(default_factory=dict)
    missing_user_ids: tuple[str, ...] = ()

    def to_payload(self) -> dict[str, object]:
        """Return a JSON-serialisable view using the wire field names."""
        return {
            "enabled": self.enabled,
            "stageIndex": self.stage_index,
            "requiredDistinct": self.required_distinct,
            "minActionsPerPlayer": self.min_actions_per_player,
            "distinctContributors": self.distinct_contributors,
            "allPlayersMetMinimum": self.all_players_met_minimum,
            "byUser": dict(self.by_user),
            "missingUserIds": list(self.missing_user_ids),
        }


def record_contribution(
    scene_state_raw: Any,
    stage_index: Any,
    user_id: Any,
    increment_by: Any = 1,
) -> dict[str, Any]:
    """
    Log that ``user_id`` performed ``increment_by`` countable actions on a stage.

    Returns a new scene-state mapping that keeps every other key of the input
    and carries the normalised ledger. A blank user id only normalises the
    ledger. The input is never mutated.
    """
    state = SceneState.from_raw(scene_state_raw)
    user = str(user_id).strip() if user_id is not None else ""
    if not user:
        LOGGER.debug("Ignoring contribution without a user id for stage %s.", stage_index)
        return state.to_payload()

    amount = to_finite_number(increment_by)
    step = max(1, math.floor(amount)) if amount is not None and amount > 0 else 1
    updated = state.with_contribution(stage_index, user, step)
    LOGGER.debug("Recorded %d action(s) by %s on stage %s.", step, user, stage_index)
    return updated.to_payload()


def parse_contribution_gate(
    meta: Any,
    *,
    required_distinct: int,
    min_actions_per_player: int = 1,
) -> ContributionGate:
    """Read the ``contributionGate`` block of stage metadata.

    Stages without a gate block use the supplied defaults with the gate
    enabled. Inside a block, each threshold must be a number >= 0 or the
    default is used instead.
    """
    gate_raw = meta.get(GATE_META_KEY) if isinstance(meta, Mapping) else None
    if not isinstance(gate_raw, Mapping):
        return ContributionGate(
            enabled=True,
            required_distinct=required_distinct,
            min_actions_per_player=min_actions_per_player,
        )
    return ContributionGate(
        enabled=gate_raw.get("enabled") is not False,
        required_distinct=_threshold(gate_raw.get("requiredDistinct"), required_distinct),
        min_actions_per_player=_threshold(
            gate_raw.get("minActionsPerPlayer"), min_actions_per_player
        ),
    )


def _threshold(value: Any, default: int) -> int:
    number = to_finite_number(value)
    if number is None or number < 0:
        return default
    return math.floor(number)


def summarize_stage_contributions(
    scene_state_raw: Any,
    stage_index: Any,
    team_user_ids: Iterable[Any],
    gate: ContributionGate,
) -> ContributionSummary:
    """Summarise a stage's contributions for the given roster.

    Every logged contributor counts toward ``distinct_contributors``, rostered
    or not; only rostered players can be reported missing.
    """
    by_user = SceneState.from_raw(scene_state_raw).stage_counts(stage_index)
    roster = _unique_ids(team_user_ids)

    min_actions = non_negative_int(gate.min_actions_per_player, 1)
    required = non_negative_int(gate.required_distinct, len(roster))

    distinct = sum(1 for count in by_user.values() if count > 0)
    missing = tuple(user for user in roster if by_user.get(user, 0) < min_actions)
    return ContributionSummary(
        enabled=gate.enabled is not False,
        stage_index=coerce_index(stage_index, 1, 1),
        required_distinct=required,
        min_actions_per_player=min_actions,
        distinct_contributors=distinct,
        all_players_met_minimum=not missing,
        by_user=by_user,
        missing_user_ids=missing,
    )


def _unique_ids(user_ids: Iterable[Any]) -> list[str]:
    if user_ids is None or isinstance(user_ids, (str, bytes)):
        return []
    seen: list[str] = []
    for user_id in user_ids:
        cleaned = str(user_id).strip() if user_id is not None else ""
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


def is_contribution_gate_satisfied(summary: ContributionSummary) -> bool:
    """Return True when the team may advance past the summarised stage."""
    if not summary.enabled:
        return True
    if summary.distinct_contributors < summary.required_distinct:
        return False
    return summary.all_players_met_minimum


__all__ = [
    "GATE_META_KEY",
    "ContributionGate",
    "ContributionSummary",
    "is_contribution_gate_satisfied",
    "parse_contribution_gate",
    "record_contribution",
    "summarize_stage_contributions",
]
