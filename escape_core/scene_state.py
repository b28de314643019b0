"""Typed view over the per-room scene state document and its stored encodings.

Scene state is persisted as an open JSON object that puzzle designers may edit
by hand. Everything read from storage goes through the decoders in this module,
which never raise: malformed documents collapse to empty values instead.
"""

from __future__ import annotations

import json
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from typing_extensions import Final

from escape_core.coercion import coerce_index, normalize_stage_indices, to_finite_number

STAGE_CONTRIBUTIONS_KEY: Final[str] = "stageContributions"

StageLedger = dict[str, dict[str, int]]


def stage_key(stage_index: Any) -> str:
    """Return the ledger key for a stage index, clamped to stage 1."""
    return str(coerce_index(stage_index, 1, 1))


def normalize_stage_contributions(raw: Any) -> StageLedger:
    """
    Return a clean copy of a contribution ledger.

    Stage keys that are not the string form of an index >= 1 are dropped, as
    are non-mapping stage entries, blank user ids and counts that are not
    finite numbers >= 1. Stages left without contributors are removed. The
    function is idempotent.
    """
    if not isinstance(raw, Mapping):
        return {}
    ledger: StageLedger = {}
    for key, user_counts in raw.items():
        normalized_key = _normalize_stage_key(key)
        if normalized_key is None or not isinstance(user_counts, Mapping):
            continue
        counts: dict[str, int] = {}
        for user_id, count_raw in user_counts.items():
            if not isinstance(user_id, str) or not user_id.strip():
                continue
            count = to_finite_number(count_raw)
            if count is None or count < 1:
                continue
            counts[user_id] = math.floor(count)
        merged = ledger.setdefault(normalized_key, {})
        for user_id, count in counts.items():
            merged[user_id] = max(count, merged.get(user_id, 0))
    return {key: counts for key, counts in ledger.items() if counts}


def _normalize_stage_key(key: Any) -> str | None:
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return str(key) if key >= 1 else None
    if not isinstance(key, str):
        return None
    stripped = key.strip()
    if not (stripped.isascii() and stripped.isdigit()):
        return None
    try:
        index = int(stripped)
    except ValueError:
        return None
    return str(index) if index >= 1 else None


@dataclass(frozen=True)
class SceneState:
    """Scene state split into the contribution ledger and every other key."""

    stage_contributions: StageLedger = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Any) -> "SceneState":
        """Build a scene state from any value, treating non-mappings as empty."""
        base = raw if isinstance(raw, Mapping) else {}
        extra = {key: value for key, value in base.items() if key != STAGE_CONTRIBUTIONS_KEY}
        return cls(
            stage_contributions=normalize_stage_contributions(base.get(STAGE_CONTRIBUTIONS_KEY)),
            extra=extra,
        )

    def stage_counts(self, stage_index: Any) -> dict[str, int]:
        """Return a copy of the per-user counts logged for a stage."""
        return dict(self.stage_contributions.get(stage_key(stage_index), {}))

    def with_contribution(self, stage_index: Any, user_id: str, amount: int) -> "SceneState":
        """Return a new scene state with ``amount`` added to the user's count."""
        key = stage_key(stage_index)
        ledger = {stage: dict(counts) for stage, counts in self.stage_contributions.items()}
        counts = ledger.setdefault(key, {})
        counts[user_id] = max(0, counts.get(user_id, 0)) + amount
        return SceneState(stage_contributions=ledger, extra=dict(self.extra))

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON-ready document, ledger included."""
        payload = dict(self.extra)
        payload[STAGE_CONTRIBUTIONS_KEY] = {
            stage: dict(counts) for stage, counts in self.stage_contributions.items()
        }
        return payload


def safe_json_loads(text: Any, fallback: Any) -> Any:
    """Decode a JSON string, returning ``fallback`` for anything undecodable."""
    if isinstance(text, (bytes, bytearray)):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError:
            return fallback
    if not isinstance(text, str):
        return fallback
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return fallback


def decode_solved_stages(text: Any) -> list[int]:
    """Decode the stored solved-stage array."""
    decoded = safe_json_loads(text, [])
    if not isinstance(decoded, list):
        return []
    return normalize_stage_indices(decoded)


def encode_solved_stages(stages: Iterable[Any]) -> str:
    return json.dumps(normalize_stage_indices(list(stages)))


def decode_scene_state(text: Any) -> SceneState:
    """Decode the stored scene-state object."""
    return SceneState.from_raw(safe_json_loads(text, {}))


def encode_scene_state(state: SceneState | Mapping[str, Any]) -> str:
    if not isinstance(state, SceneState):
        state = SceneState.from_raw(state)
    return json.dumps(state.to_payload())


__all__ = [
    "STAGE_CONTRIBUTIONS_KEY",
    "SceneState",
    "StageLedger",
    "decode_scene_state",
    "decode_solved_stages",
    "encode_scene_state",
    "encode_solved_stages",
    "normalize_stage_contributions",
    "safe_json_loads",
    "stage_key",
]
