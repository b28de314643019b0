"""Relational persistence for team escape-room progress.

Each ``(team_id, escape_room_id)`` pair owns one row. Writes are
read-modify-write cycles that must not lose contribution increments, so
``ProgressStore.update`` serialises writers per key inside the process and
relies on an optimistic version column to detect writers in other processes.
A stale write is rolled back and the mutation re-applied to fresh data.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from threading import Lock
from typing import Any, TypeVar

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from escape_core.scene_state import (
    SceneState,
    decode_scene_state,
    decode_solved_stages,
    encode_scene_state,
    encode_solved_stages,
)
from escape_hub.errors import ProgressConflictError, RunStateError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
ProgressKey = tuple[str, str]


class Base(DeclarativeBase):
    pass


class TeamEscapeProgressRow(Base):
    __tablename__ = "team_escape_progress"

    team_id = Column(String(64), primary_key=True)
    escape_room_id = Column(String(64), primary_key=True)
    current_stage_index = Column(Integer, nullable=False, default=1)
    solved_stages = Column(Text, nullable=False, default="[]")
    scene_state = Column(Text, nullable=False, default="{}")
    run_started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<TeamEscapeProgress {self.team_id}/{self.escape_room_id} v{self.version}>"


@dataclass(frozen=True)
class ProgressRecord:
    """Decoded view of a team's progress row."""

    team_id: str
    escape_room_id: str
    current_stage_index: int = 1
    solved_stages: tuple[int, ...] = ()
    scene_state: dict[str, Any] = field(default_factory=dict)
    run_started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    version: int = 0

    @classmethod
    def from_row(cls, row: TeamEscapeProgressRow) -> "ProgressRecord":
        return cls(
            team_id=row.team_id,
            escape_room_id=row.escape_room_id,
            current_stage_index=max(1, int(row.current_stage_index or 1)),
            solved_stages=tuple(decode_solved_stages(row.solved_stages)),
            scene_state=decode_scene_state(row.scene_state).to_payload(),
            run_started_at=_as_utc(row.run_started_at),
            completed_at=_as_utc(row.completed_at),
            failed_at=_as_utc(row.failed_at),
            version=int(row.version or 0),
        )

    def to_payload(self) -> dict[str, object]:
        """Return a JSON-serialisable view using the wire field names."""
        return {
            "teamId": self.team_id,
            "escapeRoomId": self.escape_room_id,
            "currentStageIndex": self.current_stage_index,
            "solvedStages": list(self.solved_stages),
            "sceneState": self.scene_state,
            "runStartedAt": _isoformat(self.run_started_at),
            "completedAt": _isoformat(self.completed_at),
            "failedAt": _isoformat(self.failed_at),
        }


class KeyedLocks:
    """Hand out one lock per progress key.

    Locks are never evicted; keys are bounded by the catalog's teams times rooms.
    """

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[ProgressKey, Lock] = {}

    def lock_for(self, key: ProgressKey) -> Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = Lock()
            return lock


class ProgressStore:
    """Load and update team progress records."""

    def __init__(
        self,
        database_url: str,
        *,
        max_write_retries: int = 3,
        engine: Engine | None = None,
    ) -> None:
        self._engine = engine or _make_engine(database_url)
        Base.metadata.create_all(self._engine)
        self._sessions = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._max_write_retries = max(0, max_write_retries)
        self._locks = KeyedLocks()

    @property
    def engine(self) -> Engine:
        return self._engine

    def get(self, team_id: str, escape_room_id: str) -> ProgressRecord | None:
        with self._sessions() as session:
            row = session.get(TeamEscapeProgressRow, (team_id, escape_room_id))
            return ProgressRecord.from_row(row) if row is not None else None

    def start_run(
        self,
        team_id: str,
        escape_room_id: str,
        *,
        now: datetime | None = None,
    ) -> ProgressRecord:
        """Create the team's progress row if needed and stamp the run start.

        Starting an already started run leaves it untouched.
        """
        started = now or datetime.now(timezone.utc)
        key = (team_id, escape_room_id)
        with self._locks.lock_for(key):
            with self._sessions() as session:
                if session.get(TeamEscapeProgressRow, key) is None:
                    session.add(
                        TeamEscapeProgressRow(
                            team_id=team_id,
                            escape_room_id=escape_room_id,
                            current_stage_index=1,
                            solved_stages=encode_solved_stages([]),
                            scene_state=encode_scene_state(SceneState()),
                            run_started_at=started,
                        )
                    )
                    try:
                        session.commit()
                        LOGGER.info("Run started for team %s in room %s.", team_id, escape_room_id)
                    except IntegrityError:
                        session.rollback()
                        LOGGER.debug("Progress row for %s/%s created concurrently.", *key)

        def stamp(record: ProgressRecord) -> tuple[ProgressRecord, None]:
            if record.run_started_at is not None:
                return record, None
            return replace(record, run_started_at=started), None

        self.update(team_id, escape_room_id, stamp)
        record = self.get(team_id, escape_room_id)
        if record is None:
            raise RunStateError(
                "Escape room has not been started for this team. Start from the team lobby."
            )
        return record

    def update(
        self,
        team_id: str,
        escape_room_id: str,
        mutator: Callable[[ProgressRecord], tuple[ProgressRecord, T]],
    ) -> T:
        """
        Apply ``mutator`` to the stored record and persist its result.

        ``mutator`` receives the current record and returns the record to
        store together with a value handed back to the caller. It may run more
        than once when another writer commits first, so it must be free of
        side effects. Exceptions it raises abort the write.

        Raises:
            RunStateError: If no progress exists for the key.
            ProgressConflictError: If every retry hit a concurrent write.
        """
        key = (team_id, escape_room_id)
        attempts = self._max_write_retries + 1
        with self._locks.lock_for(key):
            for attempt in range(1, attempts + 1):
                with self._sessions() as session:
                    row = session.get(TeamEscapeProgressRow, key)
                    if row is None:
                        raise RunStateError(
                            "Escape room has not been started for this team. "
                            "Start from the team lobby."
                        )
                    updated, result = mutator(ProgressRecord.from_row(row))
                    _apply_to_row(row, updated)
                    try:
                        session.commit()
                    except StaleDataError:
                        session.rollback()
                        LOGGER.warning(
                            "Progress for team %s in room %s changed concurrently "
                            "(attempt %d of %d).",
                            team_id,
                            escape_room_id,
                            attempt,
                            attempts,
                        )
                        continue
                    return result
        raise ProgressConflictError(
            "Team progress changed concurrently too many times; please retry."
        )

    def dispose(self) -> None:
        self._engine.dispose()


def _make_engine(database_url: str) -> Engine:
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url)


def _apply_to_row(row: TeamEscapeProgressRow, record: ProgressRecord) -> None:
    row.current_stage_index = max(1, record.current_stage_index)
    row.solved_stages = encode_solved_stages(record.solved_stages)
    row.scene_state = encode_scene_state(record.scene_state)
    for name in ("run_started_at", "completed_at", "failed_at"):
        value = getattr(record, name)
        if _as_utc(getattr(row, name)) != value:
            setattr(row, name, value)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


__all__ = [
    "KeyedLocks",
    "ProgressRecord",
    "ProgressStore",
    "TeamEscapeProgressRow",
]
