"""Room catalog: escape rooms, their ordered stages and team rosters."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import]


@dataclass(frozen=True)
class Stage:
    """A single stage of an escape room."""

    order: int
    correct_answer: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    def accepts(self, answer: str) -> bool:
        """Compare an answer with the stage's answer, ignoring case and padding."""
        if self.correct_answer is None:
            return False
        return self.correct_answer.strip().casefold() == answer.strip().casefold()


@dataclass(frozen=True)
class Room:
    id: str
    title: str
    stages: dict[int, Stage] = field(default_factory=dict)

    @property
    def total_rooms(self) -> int:
        """Number of scenes in the room; zero leaves the room unbounded."""
        return len(self.stages)

    def get_stage(self, order: int) -> Stage | None:
        return self.stages.get(order)


@dataclass(frozen=True)
class Team:
    id: str
    members: tuple[str, ...] = ()


@dataclass(frozen=True)
class RoomCatalog:
    """Read-only lookup of rooms and teams."""

    rooms: dict[str, Room] = field(default_factory=dict)
    teams: dict[str, Team] = field(default_factory=dict)

    def get_room(self, room_id: str) -> Room | None:
        return self.rooms.get(room_id)

    def get_team(self, team_id: str) -> Team | None:
        return self.teams.get(team_id)


def load_catalog(path: Path) -> RoomCatalog:
    """Load the room catalog from a YAML file."""
    if not path.exists():
        raise FileNotFoundError(f"Room catalog '{path}' does not exist.")
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError("Room catalog file must contain a mapping.")
    return catalog_from_mapping(data)


def catalog_from_mapping(data: Mapping[str, Any]) -> RoomCatalog:
    """Validate a catalog mapping and build the lookup tables."""
    rooms: dict[str, Room] = {}
    for entry in _entries(data.get("rooms"), "rooms"):
        room = _parse_room(entry)
        if room.id in rooms:
            raise ValueError(f"Duplicate room id '{room.id}'.")
        rooms[room.id] = room

    teams: dict[str, Team] = {}
    for entry in _entries(data.get("teams"), "teams"):
        team_id = _required_id(entry.get("id"), "team id")
        if team_id in teams:
            raise ValueError(f"Duplicate team id '{team_id}'.")
        members = entry.get("members") or []
        if not isinstance(members, list):
            raise ValueError(f"Members of team '{team_id}' must be a list.")
        cleaned = [str(member).strip() for member in members if str(member).strip()]
        teams[team_id] = Team(id=team_id, members=tuple(dict.fromkeys(cleaned)))
    return RoomCatalog(rooms=rooms, teams=teams)


def _parse_room(entry: Mapping[str, Any]) -> Room:
    room_id = _required_id(entry.get("id"), "room id")
    stages: dict[int, Stage] = {}
    for stage_entry in _entries(entry.get("stages"), f"stages of room '{room_id}'"):
        order = stage_entry.get("order")
        if isinstance(order, bool) or not isinstance(order, int) or order < 1:
            raise ValueError(f"Stage order in room '{room_id}' must be an integer >= 1.")
        if order in stages:
            raise ValueError(f"Duplicate stage order {order} in room '{room_id}'.")
        meta = stage_entry.get("meta") or {}
        if not isinstance(meta, dict):
            raise ValueError(f"Stage {order} meta in room '{room_id}' must be a mapping.")
        answer = stage_entry.get("correct_answer")
        stages[order] = Stage(
            order=order,
            correct_answer=str(answer) if answer not in (None, "") else None,
            meta=meta,
        )
    return Room(id=room_id, title=str(entry.get("title") or room_id), stages=stages)


def _entries(value: Any, label: str) -> list[Mapping[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{label} must be a list.")
    for item in value:
        if not isinstance(item, Mapping):
            raise ValueError(f"Entries in {label} must be mappings.")
    return value


def _required_id(value: Any, label: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError(f"Missing {label}.")
    return str(value).strip()


__all__ = [
    "Room",
    "RoomCatalog",
    "Stage",
    "Team",
    "catalog_from_mapping",
    "load_catalog",
]
