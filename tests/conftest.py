"""Test configuration for the compassquest project."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

import pytest

from compassquest import (
    EngineSettings,
    InMemoryScenarioStore,
    InMemorySessionStore,
    Scenario,
    SessionEngine,
    load_scenario_from_mapping,
)

START = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

LANTERN_WOODS: Mapping[str, Any] = {
    "id": "lantern-woods",
    "title": "The Lantern Woods",
    "compass_axes": ["courage", "honesty"],
    "scenes": [
        {
            "id": "trailhead",
            "title": "The Trailhead",
            "branches": [
                {
                    "choice": "go north",
                    "next_scene_id": "bridge",
                    "echo_log": {
                        "echo_type": "bravery",
                        "description": "You stepped into the dark woods.",
                        "strength": 0.6,
                    },
                    "compass_change": {"axis": "courage", "delta": 0.5},
                },
                {
                    "choice": "tell the ranger",
                    "next_scene_id": "ranger-hut",
                    "compass_change": {"axis": "honesty", "delta": 1.0},
                },
                {
                    "choice": "pocket the map",
                    "next_scene_id": "bridge",
                    "compass_change": {"axis": "kindness", "delta": -0.5},
                },
            ],
        },
        {
            "id": "ranger-hut",
            "title": "The Ranger's Hut",
            "next_scene_id": "bridge",
        },
        {
            "id": "bridge",
            "title": "The Rope Bridge",
            "branches": [
                {
                    "choice": "cross the bridge",
                    "next_scene_id": "clearing",
                    "echo_log": {
                        "echo_type": "risk_taking",
                        "description": "The bridge swayed but held.",
                        "strength": 0.8,
                    },
                    "compass_change": {"axis": "courage", "delta": 1.0},
                },
                {
                    "choice": "turn back",
                    "next_scene_id": "trailhead",
                    "compass_change": {
                        "axis": "courage",
                        "delta": 0.5,
                        "direction": "negative",
                    },
                },
            ],
        },
        {
            "id": "clearing",
            "title": "The Moonlit Clearing",
        },
    ],
}


class FakeClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture()
def scenario() -> Scenario:
    return load_scenario_from_mapping(LANTERN_WOODS)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture()
def scenario_store(scenario: Scenario) -> InMemoryScenarioStore:
    return InMemoryScenarioStore([scenario])


@pytest.fixture()
def make_engine(
    session_store: InMemorySessionStore,
    scenario_store: InMemoryScenarioStore,
    clock: FakeClock,
) -> Any:
    """Factory fixture building engines that share the test stores and clock."""

    def _factory(settings: EngineSettings | None = None) -> SessionEngine:
        return SessionEngine(
            session_store,
            scenario_store,
            settings=settings,
            clock=clock,
        )

    return _factory


@pytest.fixture()
def engine(make_engine: Any) -> SessionEngine:
    return make_engine()


__all__ = ["FakeClock", "LANTERN_WOODS", "START"]
