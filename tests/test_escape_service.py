"""Tests for the escape-room flows that tie the core to the store."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from escape_hub.catalog import RoomCatalog
from escape_hub.errors import (
    BadRequestError,
    ContributionGateError,
    ForbiddenError,
    NotFoundError,
    RunStateError,
    UnauthorizedError,
)
from escape_hub.escape_service import EscapeRoomService, TeamContext
from escape_hub.progress_store import ProgressStore
from escape_hub.settings import HubSettings

FIXED_NOW = datetime(2025, 3, 1, 18, 30, tzinfo=timezone.utc)


def _ctx(
    service: EscapeRoomService,
    user: str,
    room: str = "vault",
    team: str = "owls",
) -> TeamContext:
    return service.resolve_context(room, team, user)


def _started(
    service: EscapeRoomService,
    user: str = "u1",
    room: str = "vault",
    team: str = "owls",
) -> TeamContext:
    ctx = _ctx(service, user, room, team)
    service.start_run(ctx)
    return ctx


def test_resolve_context_checks_room_team_and_membership(service: EscapeRoomService) -> None:
    """Only rostered players of known teams may act in known rooms."""
    ctx = _ctx(service, " u2 ")
    assert ctx.user_id == "u2"
    assert ctx.roster == ("u1", "u2", "u3", "u4")
    assert ctx.escape_room_id == "vault"

    with pytest.raises(UnauthorizedError):
        service.resolve_context("vault", "owls", "  ")
    with pytest.raises(NotFoundError):
        service.resolve_context("attic", "owls", "u1")
    with pytest.raises(BadRequestError):
        service.resolve_context("vault", None, "u1")
    with pytest.raises(NotFoundError):
        service.resolve_context("vault", "ghosts", "u1")
    with pytest.raises(ForbiddenError):
        service.resolve_context("vault", "owls", "s1")


def test_submit_requires_started_run(service: EscapeRoomService) -> None:
    """Answers are rejected until the team starts the room."""
    with pytest.raises(RunStateError):
        service.submit_answer(_ctx(service, "u1"), 1, "blue")


def test_submit_validates_stage_and_answer(service: EscapeRoomService) -> None:
    """Bad stage indices and answerless stages are client errors."""
    ctx = _started(service)

    with pytest.raises(BadRequestError):
        service.submit_answer(ctx, "1", "blue")
    with pytest.raises(BadRequestError):
        service.submit_answer(ctx, True, "blue")
    with pytest.raises(NotFoundError):
        service.submit_answer(ctx, 9, "blue")
    with pytest.raises(BadRequestError):
        service.submit_answer(ctx, 1, None)

    solo = _started(service, user="s1", room="lobby", team="solo")
    with pytest.raises(BadRequestError):
        service.submit_answer(solo, 2, "anything")


def test_wrong_answer_records_nothing(service: EscapeRoomService) -> None:
    """An incorrect answer neither advances nor counts as a contribution."""
    ctx = _started(service)

    assert service.submit_answer(ctx, 1, "red") == {"correct": False, "message": "Incorrect"}
    progress = service.get_progress(ctx)
    assert progress.current_stage_index == 1
    assert progress.scene_state["stageContributions"] == {}


def test_whole_team_must_contribute_before_advancing(service: EscapeRoomService) -> None:
    """The default gate blocks until every teammate has answered, keeping each contribution."""
    _started(service)

    for user in ("u1", "u2", "u3"):
        with pytest.raises(ContributionGateError) as excinfo:
            service.submit_answer(_ctx(service, user), 1, "  BLUE ")
        contribution = excinfo.value.payload["contribution"]
        assert contribution["requiredDistinct"] == 4
        assert user not in contribution["missingUserIds"]

    assert excinfo.value.status_code == 409
    assert excinfo.value.message == (
        "All teammates must contribute before advancing. "
        "Progress: 3/4 contributors with at least 1 action(s)."
    )
    assert excinfo.value.payload["contribution"]["missingUserIds"] == ["u4"]

    result = service.submit_answer(_ctx(service, "u4"), 1, "blue")

    assert result == {
        "correct": True,
        "message": "Correct",
        "isComplete": False,
        "nextStageIndex": 2,
        "solvedStages": [1],
    }
    progress = service.get_progress(_ctx(service, "u1"))
    assert progress.current_stage_index == 2
    assert progress.scene_state["stageContributions"]["1"] == {"u1": 1, "u2": 1, "u3": 1, "u4": 1}


def test_actions_count_toward_the_gate(service: EscapeRoomService) -> None:
    """Logged actions satisfy the gate so one correct answer can advance the team."""
    _started(service)
    for user in ("u2", "u3", "u4"):
        summary = service.record_action(_ctx(service, user))
        assert summary.stage_index == 1

    result = service.submit_answer(_ctx(service, "u1"), 1, "blue")

    assert result["nextStageIndex"] == 2


def test_stage_gate_from_metadata_and_completion(service: EscapeRoomService) -> None:
    """Stage metadata relaxes or disables the gate and the last stage completes the room."""
    _started(service)
    for user in ("u1", "u2", "u3", "u4"):
        service.record_action(_ctx(service, user))
    service.submit_answer(_ctx(service, "u1"), 1, "blue")

    with pytest.raises(ContributionGateError):
        service.submit_answer(_ctx(service, "u1"), 2, "1609")
    second = service.submit_answer(_ctx(service, "u2"), 2, "1609")
    assert second["nextStageIndex"] == 3
    assert second["solvedStages"] == [1, 2]

    final = service.submit_answer(_ctx(service, "u3"), 3, "Open Sesame")
    assert final == {
        "correct": True,
        "message": "Escape complete",
        "isComplete": True,
        "nextStageIndex": 3,
        "solvedStages": [1, 2, 3],
    }
    progress = service.get_progress(_ctx(service, "u1"))
    assert progress.completed_at == FIXED_NOW

    with pytest.raises(RunStateError):
        service.submit_answer(_ctx(service, "u4"), 3, "open sesame")
    with pytest.raises(RunStateError):
        service.record_action(_ctx(service, "u4"))


def test_explicit_completion_from_metadata(service: EscapeRoomService) -> None:
    """A stage flagged as complete ends the room immediately."""
    ctx = _started(service, user="s1", room="lobby", team="solo")

    result = service.submit_answer(ctx, 1, "hello")

    assert result["isComplete"] is True
    assert result["nextStageIndex"] == 2


def test_locked_and_already_solved_stages(service: EscapeRoomService) -> None:
    """Future stages are locked; replaying a passed stage changes nothing."""
    _started(service)
    with pytest.raises(RunStateError, match="locked"):
        service.submit_answer(_ctx(service, "u1"), 2, "1609")

    for user in ("u1", "u2", "u3", "u4"):
        service.record_action(_ctx(service, user))
    service.submit_answer(_ctx(service, "u1"), 1, "blue")
    before = service.get_progress(_ctx(service, "u1"))

    replay = service.submit_answer(_ctx(service, "u2"), 1, "blue")

    assert replay["alreadySolved"] is True
    assert replay["nextStageIndex"] == 2
    assert service.get_progress(_ctx(service, "u1")) == before


def test_record_action_validation_and_increment(service: EscapeRoomService) -> None:
    """Actions accept an increment and reject unreachable or malformed stages."""
    _started(service)
    ctx = _ctx(service, "u1")

    summary = service.record_action(ctx, stage_index=1, increment_by=3)
    assert summary.by_user == {"u1": 3}
    assert summary.distinct_contributors == 1

    with pytest.raises(BadRequestError):
        service.record_action(ctx, stage_index=0)
    with pytest.raises(RunStateError):
        service.record_action(ctx, stage_index=2)


def test_stage_contributions_summary(service: EscapeRoomService) -> None:
    """The read-only summary reflects logged actions without writing."""
    _started(service)
    service.record_action(_ctx(service, "u2"))

    summary = service.stage_contributions(_ctx(service, "u1"), 1)

    assert summary.by_user == {"u2": 1}
    assert summary.missing_user_ids == ("u1", "u3", "u4")


def test_failed_run_rejects_further_play(service: EscapeRoomService) -> None:
    """Once failed, the run accepts no more answers or actions."""
    ctx = _started(service)

    failed = service.fail_run(ctx)

    assert failed.failed_at == FIXED_NOW
    with pytest.raises(RunStateError, match="failed"):
        service.submit_answer(ctx, 1, "blue")
    with pytest.raises(RunStateError):
        service.fail_run(ctx)


def test_settings_minimum_applies_to_ungated_stages(
    catalog: RoomCatalog,
    store: ProgressStore,
) -> None:
    """The configured per-player minimum is the default for stages without a gate block."""
    strict = EscapeRoomService(
        catalog,
        store,
        HubSettings(min_actions_per_player=2),
        clock=lambda: FIXED_NOW,
    )
    ctx = strict.resolve_context("vault", "owls", "u1")
    strict.start_run(ctx)
    for user in ("u1", "u2", "u3", "u4"):
        strict.record_action(strict.resolve_context("vault", "owls", user))

    with pytest.raises(ContributionGateError) as excinfo:
        strict.submit_answer(strict.resolve_context("vault", "owls", "u4"), 1, "blue")

    assert excinfo.value.payload["contribution"]["missingUserIds"] == ["u1", "u2", "u3"]
