"""Tests for :class:`compassquest.engine.SessionEngine`."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest

from compassquest import (
    AchievementType,
    Branch,
    CompassAxis,
    CompassChange,
    EngineSettings,
    FileScenarioStore,
    FileSessionStore,
    InMemoryScenarioStore,
    InMemorySessionStore,
    InvalidSessionStateError,
    MissingScenarioError,
    Scenario,
    ScenarioStore,
    Scene,
    SessionEngine,
    SessionStatus,
    UnknownChoiceError,
    UnknownSceneError,
)

from tests.conftest import START, FakeClock


def _two_scene_scenario() -> Scenario:
    return Scenario(
        id="short-walk",
        scenes=(
            Scene(id="A", title="Start", branches=(Branch("go north", next_scene_id="B"),)),
            Scene(id="B", title="End"),
        ),
    )


def test_start_session_stores_new_session(
    engine: SessionEngine, session_store: InMemorySessionStore
) -> None:
    async def scenario() -> None:
        session = await engine.start_session(
            "lantern-woods", session_id="s-1", account_id="acct", player_names=["Ada"]
        )

        assert session.version == 1
        assert session.current_scene_id == "trailhead"
        assert session.player_names == ("Ada",)
        assert await session_store.get("s-1") == session
        assert await engine.get_session("s-1") == session

    asyncio.run(scenario())


def test_start_session_generates_ids_and_requires_scenario(engine: SessionEngine) -> None:
    async def scenario() -> None:
        session = await engine.start_session("lantern-woods")
        assert session.id

        with pytest.raises(MissingScenarioError):
            await engine.start_session("atlantis")

    asyncio.run(scenario())


def test_choice_into_terminal_scene_completes(clock: FakeClock) -> None:
    sessions = InMemorySessionStore()
    engine = SessionEngine(
        sessions, InMemoryScenarioStore([_two_scene_scenario()]), clock=clock
    )

    async def scenario() -> None:
        await engine.start_session("short-walk", session_id="S")
        clock.advance(minutes=2)

        session = await engine.make_choice("S", "A", "go north", "B")

        assert session is not None
        assert session.status is SessionStatus.COMPLETED
        assert len(session.choice_history) == 1
        assert session.end_time == START + timedelta(minutes=2)
        assert (await sessions.get("S")) == session

    asyncio.run(scenario())


def test_make_choice_applies_consequences(engine: SessionEngine) -> None:
    async def scenario() -> None:
        await engine.start_session("lantern-woods", session_id="s-1")

        session = await engine.make_choice("s-1", "trailhead", "go north", "bridge")

        assert session is not None
        assert session.status is SessionStatus.IN_PROGRESS
        assert session.current_scene_id == "bridge"
        assert session.compass_for("courage").current_value == 0.5  # type: ignore[union-attr]
        assert [echo.echo_type for echo in session.echo_history] == ["bravery"]
        assert session.version == 2

    asyncio.run(scenario())


def test_make_choice_clamps_compass(engine: SessionEngine) -> None:
    async def scenario() -> None:
        await engine.start_session("lantern-woods", session_id="s-1")
        for _ in range(4):
            await engine.make_choice("s-1", "trailhead", "go north", "bridge")

        session = await engine.make_choice("s-1", "trailhead", "go north", "bridge")

        assert session is not None
        assert session.compass_for("courage").current_value == 2.0  # type: ignore[union-attr]

    asyncio.run(scenario())


def test_unknown_choice_leaves_session_unchanged(
    engine: SessionEngine, session_store: InMemorySessionStore
) -> None:
    async def scenario() -> None:
        before = await engine.start_session("lantern-woods", session_id="s-1")

        with pytest.raises(UnknownChoiceError):
            await engine.make_choice("s-1", "trailhead", "Go North", "bridge")
        with pytest.raises(UnknownSceneError):
            await engine.make_choice("s-1", "volcano", "go north", "bridge")

        assert await session_store.get("s-1") == before

    asyncio.run(scenario())


def test_make_choice_requires_in_progress(engine: SessionEngine) -> None:
    async def scenario() -> None:
        await engine.start_session("lantern-woods", session_id="s-1")
        paused = await engine.pause_session("s-1")
        assert paused is not None and paused.status is SessionStatus.PAUSED

        with pytest.raises(InvalidSessionStateError) as excinfo:
            await engine.make_choice("s-1", "trailhead", "go north", "bridge")

        assert excinfo.value.status is SessionStatus.PAUSED
        assert (await engine.get_session("s-1")).choice_history == ()  # type: ignore[union-attr]

    asyncio.run(scenario())


def test_missing_session_returns_none(engine: SessionEngine) -> None:
    async def scenario() -> None:
        assert await engine.make_choice("ghost", "trailhead", "go north", "bridge") is None
        assert await engine.progress_scene("ghost", "bridge") is None
        assert await engine.pause_session("ghost") is None
        assert await engine.check_achievements("ghost") == []
        assert await engine.get_session_stats("ghost") is None

    asyncio.run(scenario())


def test_missing_scenario_is_logged_as_error(
    session_store: InMemorySessionStore,
    clock: FakeClock,
    scenario: Scenario,
    caplog: pytest.LogCaptureFixture,
) -> None:
    scenarios = InMemoryScenarioStore([scenario])
    engine = SessionEngine(session_store, scenarios, clock=clock)

    async def run() -> None:
        await engine.start_session("lantern-woods", session_id="s-1")
        orphaned = SessionEngine(session_store, InMemoryScenarioStore(), clock=clock)

        with caplog.at_level(logging.ERROR, logger="compassquest.engine"):
            with pytest.raises(MissingScenarioError):
                await orphaned.make_choice("s-1", "trailhead", "go north", "bridge")

    asyncio.run(run())

    assert "missing scenario lantern-woods" in caplog.text


def test_progress_scene_resumes_without_consequences(engine: SessionEngine) -> None:
    async def scenario() -> None:
        await engine.start_session("lantern-woods", session_id="s-1")
        await engine.pause_session("s-1")

        session = await engine.progress_scene("s-1", "bridge")

        assert session is not None
        assert session.status is SessionStatus.IN_PROGRESS
        assert session.is_paused is False
        assert session.current_scene_id == "bridge"
        assert session.choice_history == ()
        assert session.echo_history == ()

        with pytest.raises(UnknownSceneError):
            await engine.progress_scene("s-1", "volcano")

    asyncio.run(scenario())


def test_progress_scene_on_completed_session_fails(engine: SessionEngine) -> None:
    async def scenario() -> None:
        await engine.start_session("lantern-woods", session_id="s-1")
        ended = await engine.end_session("s-1")
        assert ended is not None and ended.status is SessionStatus.COMPLETED

        with pytest.raises(InvalidSessionStateError):
            await engine.progress_scene("s-1", "bridge")

        session = await engine.get_session("s-1")
        assert session is not None
        assert session.choice_history == ()
        assert session.current_scene_id == "trailhead"

    asyncio.run(scenario())


def test_resume_session(engine: SessionEngine) -> None:
    async def scenario() -> None:
        await engine.start_session("lantern-woods", session_id="s-1")

        with pytest.raises(InvalidSessionStateError):
            await engine.resume_session("s-1")

        await engine.pause_session("s-1")
        resumed = await engine.resume_session("s-1")

        assert resumed is not None
        assert resumed.status is SessionStatus.IN_PROGRESS

    asyncio.run(scenario())


def test_check_achievements_is_idempotent(
    engine: SessionEngine, session_store: InMemorySessionStore
) -> None:
    async def scenario() -> None:
        await engine.start_session("lantern-woods", session_id="s-1")
        await engine.make_choice("s-1", "trailhead", "go north", "bridge")

        first = await engine.check_achievements("s-1")
        stored = await session_store.get("s-1")
        second = await engine.check_achievements("s-1")

        assert [achievement.type for achievement in first] == [AchievementType.FIRST_CHOICE]
        assert second == []
        assert stored is not None
        assert stored.achievements == tuple(first)
        assert await session_store.get("s-1") == stored

    asyncio.run(scenario())


def test_check_achievements_uses_configured_thresholds(make_engine: Any) -> None:
    engine = make_engine(EngineSettings(axis_thresholds={CompassAxis("honesty"): 1.0}))

    async def scenario() -> None:
        await engine.start_session("lantern-woods", session_id="s-1")
        await engine.make_choice("s-1", "trailhead", "tell the ranger", "ranger-hut")

        awarded = await engine.check_achievements("s-1")

        assert [str(achievement.id) for achievement in awarded] == [
            "s-1_honesty_threshold",
            "s-1_first_choice",
        ]

    asyncio.run(scenario())


def test_check_achievements_rejects_blank_ids(engine: SessionEngine) -> None:
    with pytest.raises(ValueError):
        asyncio.run(engine.check_achievements("   "))


def test_auto_track_axes_setting(make_engine: Any) -> None:
    engine = make_engine(EngineSettings(auto_track_axes=True))

    async def scenario() -> None:
        await engine.start_session("lantern-woods", session_id="s-1")
        session = await engine.make_choice("s-1", "trailhead", "pocket the map", "bridge")

        assert session is not None
        assert session.compass_for("kindness").current_value == -0.5  # type: ignore[union-attr]

    asyncio.run(scenario())


def test_recalculate_compass(engine: SessionEngine) -> None:
    async def scenario() -> None:
        await engine.start_session("lantern-woods", session_id="s-1")
        await engine.make_choice("s-1", "trailhead", "go north", "bridge")
        await engine.make_choice("s-1", "bridge", "turn back", "trailhead")

        session = await engine.recalculate_compass("s-1")

        assert session is not None
        courage = session.compass_for("courage")
        assert courage is not None
        assert courage.current_value == 0.0
        assert courage.history == (
            CompassChange("courage", 0.5),
            CompassChange("courage", -0.5),
        )

    asyncio.run(scenario())


def test_session_stats(engine: SessionEngine, clock: FakeClock) -> None:
    async def scenario() -> None:
        await engine.start_session("lantern-woods", session_id="s-1")
        clock.advance(minutes=1)
        await engine.make_choice("s-1", "trailhead", "go north", "bridge")
        clock.advance(minutes=1)
        await engine.make_choice("s-1", "bridge", "cross the bridge", "clearing")
        await engine.check_achievements("s-1")
        clock.advance(hours=1)

        stats = await engine.get_session_stats("s-1")

        assert stats is not None
        assert stats.compass_values == {"courage": 1.5, "honesty": 0.0}
        assert [echo.echo_type for echo in stats.recent_echoes] == ["risk_taking", "bravery"]
        assert stats.total_choices == 2
        assert stats.session_duration == timedelta(minutes=2)
        assert [achievement.id for achievement in stats.achievements] == ["s-1_completion"]

    asyncio.run(scenario())


def test_concurrent_choices_are_serialised(engine: SessionEngine) -> None:
    async def scenario() -> None:
        await engine.start_session("lantern-woods", session_id="s-1")

        await asyncio.gather(
            engine.make_choice("s-1", "trailhead", "go north", "bridge"),
            engine.make_choice("s-1", "trailhead", "tell the ranger", "ranger-hut"),
        )

        session = await engine.get_session("s-1")
        assert session is not None
        assert len(session.choice_history) == 2
        assert session.compass_for("courage").current_value == 0.5  # type: ignore[union-attr]
        assert session.compass_for("honesty").current_value == 1.0  # type: ignore[union-attr]
        assert session.version == 3

    asyncio.run(scenario())


class _BlockingScenarioStore(ScenarioStore):
    """Scenario store whose lookups wait until released."""

    def __init__(self, scenario: Scenario) -> None:
        self.scenario = scenario
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def get(self, scenario_id: str) -> Scenario | None:
        self.started.set()
        await self.release.wait()
        return self.scenario if scenario_id == self.scenario.id else None


def test_cancelled_choice_leaves_no_trace(
    session_store: InMemorySessionStore, clock: FakeClock, scenario: Scenario
) -> None:
    async def run() -> None:
        starter = SessionEngine(session_store, InMemoryScenarioStore([scenario]), clock=clock)
        before = await starter.start_session("lantern-woods", session_id="s-1")

        blocking = _BlockingScenarioStore(scenario)
        engine = SessionEngine(session_store, blocking, clock=clock)
        task = asyncio.create_task(
            engine.make_choice("s-1", "trailhead", "go north", "bridge")
        )
        await blocking.started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert await session_store.get("s-1") == before

    asyncio.run(run())


def test_from_settings_uses_configured_directories(
    tmp_path: Path, scenario: Scenario, clock: FakeClock
) -> None:
    settings = EngineSettings(
        session_dir=tmp_path / "sessions", scenario_dir=tmp_path / "scenarios"
    )
    FileScenarioStore(settings.scenario_dir).save(scenario)  # type: ignore[arg-type]
    engine = SessionEngine.from_settings(settings, clock=clock)

    async def run() -> None:
        await engine.start_session("lantern-woods", session_id="s-1")
        await engine.make_choice("s-1", "trailhead", "go north", "bridge")

    asyncio.run(run())

    assert isinstance(engine.sessions, FileSessionStore)
    assert (tmp_path / "sessions" / "s-1.json").exists()


def test_from_settings_defaults_to_memory() -> None:
    engine = SessionEngine.from_settings(EngineSettings())

    assert isinstance(engine.sessions, InMemorySessionStore)
    assert isinstance(engine.scenarios, InMemoryScenarioStore)


def test_completed_session_is_rejected_before_scenario_lookup(
    session_store: InMemorySessionStore,
    clock: FakeClock,
    scenario: Scenario,
    caplog: pytest.LogCaptureFixture,
) -> None:
    async def run() -> None:
        starter = SessionEngine(session_store, InMemoryScenarioStore([scenario]), clock=clock)
        await starter.start_session("lantern-woods", session_id="s-1")
        ended = await starter.end_session("s-1")
        assert ended is not None

        orphaned = SessionEngine(session_store, InMemoryScenarioStore(), clock=clock)
        with caplog.at_level(logging.WARNING, logger="compassquest.engine"):
            with pytest.raises(InvalidSessionStateError):
                await orphaned.make_choice("s-1", "trailhead", "go north", "bridge")
            with pytest.raises(InvalidSessionStateError):
                await orphaned.progress_scene("s-1", "bridge")

        assert await session_store.get("s-1") == ended

    asyncio.run(run())

    assert "missing scenario" not in caplog.text
    assert not [record for record in caplog.records if record.levelno >= logging.ERROR]


def test_find_sessions_by_account_profile_and_status(
    engine: SessionEngine, clock: FakeClock
) -> None:
    async def scenario() -> None:
        await engine.start_session(
            "lantern-woods", session_id="a-1", account_id="acct-a", profile_id="kid-1"
        )
        clock.advance(minutes=1)
        await engine.start_session(
            "lantern-woods", session_id="a-2", account_id="acct-a", profile_id="kid-2"
        )
        clock.advance(minutes=1)
        await engine.start_session(
            "lantern-woods", session_id="b-1", account_id="acct-b", profile_id="kid-3"
        )
        await engine.end_session("a-1")

        by_account = await engine.find_sessions(account_id="acct-a")
        by_profile = await engine.find_sessions(profile_id="kid-3")
        in_progress = await engine.find_sessions(
            account_id="acct-a", status=SessionStatus.IN_PROGRESS
        )

        assert [session.id for session in by_account] == ["a-1", "a-2"]
        assert [session.id for session in by_profile] == ["b-1"]
        assert [session.id for session in in_progress] == ["a-2"]
        assert await engine.find_sessions(account_id="nobody") == []

    asyncio.run(scenario())
