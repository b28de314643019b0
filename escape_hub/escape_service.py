"""Team escape-room flows: starting runs, answering stages and logging actions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from escape_core.contribution import (
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
from escape_hub.catalog import Room, RoomCatalog, Stage
from escape_hub.errors import (
    BadRequestError,
    ContributionGateError,
    ForbiddenError,
    NotFoundError,
    RunStateError,
    UnauthorizedError,
)
from escape_hub.progress_store import ProgressRecord, ProgressStore
from escape_hub.settings import HubSettings

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TeamContext:
    """The room, team and acting player a request is made for."""

    room: Room
    team_id: str
    user_id: str
    roster: tuple[str, ...]

    @property
    def escape_room_id(self) -> str:
        return self.room.id


class EscapeRoomService:
    """Coordinate the escape-room core with the catalog and progress store."""

    def __init__(
        self,
        catalog: RoomCatalog,
        store: ProgressStore,
        settings: HubSettings | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._catalog = catalog
        self._store = store
        self._settings = settings or HubSettings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def resolve_context(self, room_id: str, team_id: Any, user_id: Any) -> TeamContext:
        """Resolve and authorise the acting player for a room and team."""
        user = str(user_id).strip() if user_id is not None else ""
        if not user:
            raise UnauthorizedError("Authentication required.")
        room = self._catalog.get_room(room_id)
        if room is None:
            raise NotFoundError("Escape room not found")
        team_key = str(team_id).strip() if team_id is not None else ""
        if not team_key:
            raise BadRequestError("teamId is required")
        team = self._catalog.get_team(team_key)
        if team is None:
            raise NotFoundError("Team not found")
        if user not in team.members:
            raise ForbiddenError("You are not a member of this team.")
        return TeamContext(room=room, team_id=team.id, user_id=user, roster=team.members)

    def start_run(self, ctx: TeamContext) -> ProgressRecord:
        return self._store.start_run(ctx.team_id, ctx.escape_room_id, now=self._clock())

    def get_progress(self, ctx: TeamContext) -> ProgressRecord:
        record = self._store.get(ctx.team_id, ctx.escape_room_id)
        if record is None:
            raise NotFoundError("No progress recorded for this team.")
        return record

    def fail_run(self, ctx: TeamContext) -> ProgressRecord:
        """Mark the run failed, e.g. when the room timer expires."""
        failed_at = self._clock()

        def mark_failed(record: ProgressRecord) -> tuple[ProgressRecord, ProgressRecord]:
            _ensure_active(record)
            updated = replace(record, failed_at=failed_at)
            return updated, updated

        record = self._store.update(ctx.team_id, ctx.escape_room_id, mark_failed)
        LOGGER.info("Run failed for team %s in room %s.", ctx.team_id, ctx.escape_room_id)
        return record

    def submit_answer(self, ctx: TeamContext, stage_index: Any, answer: Any) -> dict[str, Any]:
        """
        Check an answer for a stage and advance the team when it is right.

        A correct answer counts as a contribution by the submitting player on
        the team's current stage. The team only advances once the stage's
        contribution gate is satisfied; until then the contribution is kept
        and ``ContributionGateError`` reports the gate's progress.

        Raises:
            BadRequestError: For a missing stage index or a stage without an
                expected answer.
            NotFoundError: If the stage does not exist.
            RunStateError: If the run is not active or the stage is locked.
            ContributionGateError: If teammates still have to contribute.
        """
        stage = self._require_stage(ctx.room, stage_index)
        if stage.correct_answer is None or not isinstance(answer, str):
            raise BadRequestError("No answer expected for this stage")

        record = self._store.get(ctx.team_id, ctx.escape_room_id)
        if record is None:
            raise RunStateError(
                "Escape room has not been started for this team. Start from the team lobby."
            )
        _ensure_active(record)

        if not stage.accepts(answer):
            LOGGER.info(
                "Incorrect answer from %s for stage %d of room %s.",
                ctx.user_id,
                stage.order,
                ctx.escape_room_id,
            )
            return {"correct": False, "message": "Incorrect"}

        now = self._clock()

        def apply(
            current: ProgressRecord,
        ) -> tuple[ProgressRecord, StageProgressResult | ContributionSummary | None]:
            _ensure_active(current)
            stage_pointer = current.current_stage_index
            if stage.order > stage_pointer:
                raise RunStateError("Stage is locked.")
            if stage.order < stage_pointer:
                return current, None

            scene_state = record_contribution(current.scene_state, stage_pointer, ctx.user_id)
            summary = self._summarize(ctx, stage, scene_state, stage_pointer)
            if not is_contribution_gate_satisfied(summary):
                return replace(current, scene_state=scene_state), summary

            progress = advance(
                stage_pointer,
                current.solved_stages,
                requested_next_stage(stage.meta, stage_pointer),
                ctx.room.total_rooms,
                explicit_complete=is_explicit_completion(stage.meta),
            )
            updated = replace(
                current,
                current_stage_index=progress.next_stage_index,
                solved_stages=progress.solved_stages,
                scene_state=scene_state,
                completed_at=now if progress.is_complete else current.completed_at,
            )
            return updated, progress

        outcome = self._store.update(ctx.team_id, ctx.escape_room_id, apply)

        if outcome is None:
            latest = self.get_progress(ctx)
            return {
                "correct": True,
                "alreadySolved": True,
                "message": "Stage already solved",
                "nextStageIndex": latest.current_stage_index,
                "isComplete": latest.completed_at is not None,
                "solvedStages": list(latest.solved_stages),
            }

        if isinstance(outcome, ContributionSummary):
            LOGGER.info(
                "Team %s blocked on stage %d of room %s: %d/%d contributors.",
                ctx.team_id,
                outcome.stage_index,
                ctx.escape_room_id,
                outcome.distinct_contributors,
                outcome.required_distinct,
            )
            raise ContributionGateError(
                "All teammates must contribute before advancing. "
                f"Progress: {outcome.distinct_contributors}/{outcome.required_distinct} "
                f"contributors with at least {outcome.min_actions_per_player} action(s).",
                payload={"contribution": outcome.to_payload()},
            )

        if outcome.is_complete:
            LOGGER.info("Team %s completed room %s.", ctx.team_id, ctx.escape_room_id)
        else:
            LOGGER.info(
                "Team %s advanced to stage %d of room %s.",
                ctx.team_id,
                outcome.next_stage_index,
                ctx.escape_room_id,
            )
        return {
            "correct": True,
            "message": "Escape complete" if outcome.is_complete else "Correct",
            **outcome.to_payload(),
        }

    def record_action(
        self,
        ctx: TeamContext,
        stage_index: Any = None,
        increment_by: Any = 1,
    ) -> ContributionSummary:
        """Log countable actions by the acting player on a reached stage.

        Without a stage index the team's current stage is used.
        """
        if stage_index is not None and not _is_stage_index(stage_index):
            raise BadRequestError("stageIndex must be a positive integer")

        def apply(current: ProgressRecord) -> tuple[ProgressRecord, ContributionSummary]:
            _ensure_active(current)
            target = current.current_stage_index if stage_index is None else stage_index
            if target > current.current_stage_index:
                raise RunStateError("Stage is locked.")
            scene_state = record_contribution(
                current.scene_state, target, ctx.user_id, increment_by
            )
            stage = ctx.room.get_stage(target) or Stage(order=target)
            summary = self._summarize(ctx, stage, scene_state, target)
            return replace(current, scene_state=scene_state), summary

        return self._store.update(ctx.team_id, ctx.escape_room_id, apply)

    def stage_contributions(self, ctx: TeamContext, stage_index: Any) -> ContributionSummary:
        stage = self._require_stage(ctx.room, stage_index)
        record = self.get_progress(ctx)
        return self._summarize(ctx, stage, record.scene_state, stage.order)

    def _summarize(
        self,
        ctx: TeamContext,
        stage: Stage,
        scene_state: Any,
        stage_index: int,
    ) -> ContributionSummary:
        gate = parse_contribution_gate(
            stage.meta,
            required_distinct=max(1, len(ctx.roster)),
            min_actions_per_player=self._settings.min_actions_per_player,
        )
        return summarize_stage_contributions(scene_state, stage_index, ctx.roster, gate)

    @staticmethod
    def _require_stage(room: Room, stage_index: Any) -> Stage:
        if not _is_stage_index(stage_index):
            raise BadRequestError("stageIndex is required")
        stage = room.get_stage(stage_index)
        if stage is None:
            raise NotFoundError("Stage not found")
        return stage


def _is_stage_index(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def _ensure_active(record: ProgressRecord) -> None:
    if record.run_started_at is None:
        raise RunStateError("The run has not started yet.")
    if record.completed_at is not None:
        raise RunStateError("This escape room run is already complete.")
    if record.failed_at is not None:
        raise RunStateError("This escape room run has already failed and cannot be retried.")


__all__ = ["EscapeRoomService", "TeamContext"]
