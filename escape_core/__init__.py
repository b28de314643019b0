"""Escape-room core logic.

Pure, I/O-free building blocks shared by the escape hub service:

- Stage progression (advancing a team's stage pointer and solved set)
- Contribution tracking (per-stage participation ledger and gate checks)
- Scene state codec (typed view over the stored scene-state document)
"""

from escape_core.contribution import (
    ContributionGate,
    ContributionSummary,
    is_contribution_gate_satisfied,
    parse_contribution_gate,
    record_contribution,
    summarize_stage_contributions,
)
from escape_core.progression import (
    StageProgressResult,
    advance,
    is_explicit_completion,
    requested_next_stage,
)
from escape_core.scene_state import (
    STAGE_CONTRIBUTIONS_KEY,
    SceneState,
    decode_scene_state,
    decode_solved_stages,
    encode_scene_state,
    encode_solved_stages,
    normalize_stage_contributions,
    safe_json_loads,
)

__all__ = [
    "STAGE_CONTRIBUTIONS_KEY",
    "ContributionGate",
    "ContributionSummary",
    "SceneState",
    "StageProgressResult",
    "advance",
    "decode_scene_state",
    "decode_solved_stages",
    "encode_scene_state",
    "encode_solved_stages",
    "is_contribution_gate_satisfied",
    "is_explicit_completion",
    "normalize_stage_contributions",
    "parse_contribution_gate",
    "record_contribution",
    "requested_next_stage",
    "safe_json_loads",
    "summarize_stage_contributions",
]
