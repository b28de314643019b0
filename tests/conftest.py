"""Shared fixtures for escape hub tests."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

import pytest

from escape_hub.catalog import RoomCatalog, catalog_from_mapping
from escape_hub.escape_service import EscapeRoomService
from escape_hub.progress_store import ProgressStore
from escape_hub.settings import HubSettings

FIXED_NOW = datetime(2025, 3, 1, 18, 30, tzinfo=timezone.utc)

CATALOG_DATA: dict[str, Any] = {
    "teams": [
        {"id": "owls", "members": ["u1", "u2", "u3", "u4"]},
        {"id": "solo", "members": ["s1"]},
    ],
    "rooms": [
        {
            "id": "vault",
            "title": "The Vault",
            "stages": [
                {"order": 1, "correct_answer": "Blue"},
                {
                    "order": 2,
                    "correct_answer": "1609",
                    "meta": {"contributionGate": {"requiredDistinct": 2, "minActionsPerPlayer": 0}},
                },
                {
                    "order": 3,
                    "correct_answer": "open sesame",
                    "meta": {"contributionGate": {"enabled": False}},
                },
            ],
        },
        {
            "id": "lobby",
            "title": "Lobby",
            "stages": [
                {"order": 1, "correct_answer": "hello", "meta": {"complete": True}},
                {"order": 2},
            ],
        },
    ],
}


@pytest.fixture()
def catalog() -> RoomCatalog:
    return catalog_from_mapping(CATALOG_DATA)


@pytest.fixture()
def database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'progress.db'}"


@pytest.fixture()
def store(database_url: str) -> Iterator[ProgressStore]:
    progress_store = ProgressStore(database_url, max_write_retries=3)
    try:
        yield progress_store
    finally:
        progress_store.dispose()


@pytest.fixture()
def settings(database_url: str) -> HubSettings:
    return HubSettings(database_url=database_url)


@pytest.fixture()
def service(catalog: RoomCatalog, store: ProgressStore, settings: HubSettings) -> EscapeRoomService:
    return EscapeRoomService(catalog, store, settings, clock=lambda: FIXED_NOW)
