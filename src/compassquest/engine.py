"""Coordinator that loads, advances and stores game sessions."""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

from . import transitions
from .achievements import evaluate_achievements
from .errors import MissingScenarioError, SessionEngineError
from .persistence import (
    FileScenarioStore,
    FileSessionStore,
    InMemoryScenarioStore,
    InMemorySessionStore,
    ScenarioStore,
    SessionStore,
)
from .projection import SessionStats, build_session_stats
from .scenario import Scenario
from .session import GameSession, SessionAchievement, SessionStatus
from .settings import EngineSettings

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_session_id() -> str:
    return str(uuid.uuid4())


class SessionEngine:
    """Entry points that move a player through a scenario.

    Each operation reads the session at most once, reads its scenario at most
    once and writes the session at most once. Operations on the same session
    id are serialised through a per-session lock, and every write carries the
    version that was read so a store shared between processes rejects lost
    updates with :class:`~compassquest.errors.ConcurrentModificationError`.

    A session that does not exist yields ``None`` (or an empty list for
    :meth:`check_achievements`); rule violations raise subclasses of
    :class:`~compassquest.errors.SessionEngineError` and leave the stored
    session untouched.
    """

    def __init__(
        self,
        sessions: SessionStore,
        scenarios: ScenarioStore,
        *,
        settings: EngineSettings | None = None,
        clock: Clock | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.sessions = sessions
        self.scenarios = scenarios
        self.settings = settings or EngineSettings()
        self._thresholds = self.settings.thresholds()
        self._clock = clock or _utcnow
        self._id_factory = id_factory or _new_session_id
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    @classmethod
    def from_settings(
        cls, settings: EngineSettings | None = None, *, clock: Clock | None = None
    ) -> "SessionEngine":
        """Build an engine whose stores follow the configured directories.

        Sessions and scenarios live on disk when ``session_dir`` and
        ``scenario_dir`` are set and in process memory otherwise.
        """

        settings = settings or EngineSettings.from_env()

        sessions: SessionStore
        if settings.session_dir is not None:
            sessions = FileSessionStore(settings.session_dir)
        else:
            sessions = InMemorySessionStore()

        scenarios: ScenarioStore
        if settings.scenario_dir is not None:
            scenarios = FileScenarioStore(settings.scenario_dir)
        else:
            scenarios = InMemoryScenarioStore()

        return cls(sessions, scenarios, settings=settings, clock=clock)

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def _scenario_for(self, session: GameSession) -> Scenario:
        scenario = await self.scenarios.get(session.scenario_id)
        if scenario is None:
            logger.error(
                "Session %s references missing scenario %s",
                session.id,
                session.scenario_id,
            )
            raise MissingScenarioError(session.scenario_id, session.id)
        return scenario

    async def _update(
        self,
        session_id: str,
        operation: str,
        change: Callable[[GameSession], Awaitable[GameSession]],
    ) -> GameSession | None:
        async with self._lock_for(session_id):
            session = await self.sessions.get(session_id)
            if session is None:
                logger.warning("%s: game session not found: %s", operation, session_id)
                return None

            try:
                updated = await change(session)
            except MissingScenarioError:
                raise
            except SessionEngineError as exc:
                logger.warning("%s rejected for session %s: %s", operation, session_id, exc)
                raise

            return await self.sessions.put(updated, expected_version=session.version)

    async def get_session(self, session_id: str) -> GameSession | None:
        return await self.sessions.get(session_id)

    async def find_sessions(
        self,
        *,
        account_id: str | None = None,
        profile_id: str | None = None,
        status: SessionStatus | None = None,
    ) -> list[GameSession]:
        """Sessions of an account or profile, optionally narrowed to one status."""

        return await self.sessions.find_sessions(
            account_id=account_id, profile_id=profile_id, status=status
        )

    async def start_session(
        self,
        scenario_id: str,
        *,
        session_id: str | None = None,
        account_id: str = "",
        profile_id: str = "",
        player_names: Sequence[str] = (),
    ) -> GameSession:
        """Create and store a new session on the first scene of a scenario.

        Raises:
            MissingScenarioError: If the scenario does not exist.
            ValueError: If the scenario has no scenes.
        """

        scenario = await self.scenarios.get(scenario_id)
        if scenario is None:
            raise MissingScenarioError(scenario_id)

        session = transitions.new_session(
            scenario,
            session_id=session_id or self._id_factory(),
            now=self._clock(),
            account_id=account_id,
            profile_id=profile_id,
            player_names=player_names,
        )
        async with self._lock_for(session.id):
            stored = await self.sessions.put(session, expected_version=0)

        logger.info(
            "Started game session %s for scenario %s (account %s, profile %s)",
            stored.id,
            scenario_id,
            account_id or "-",
            profile_id or "-",
        )
        return stored

    async def make_choice(
        self, session_id: str, scene_id: str, choice_text: str, next_scene_id: str
    ) -> GameSession | None:
        """Apply the player's choice and return the updated session.

        Raises:
            InvalidSessionStateError: If the session is not in progress.
            MissingScenarioError: If the session's scenario cannot be found.
            UnknownSceneError: If ``scene_id`` is not part of the scenario.
            UnknownChoiceError: If the scene offers no branch with ``choice_text``.
        """

        async def change(session: GameSession) -> GameSession:
            transitions.require_status(session, SessionStatus.IN_PROGRESS)
            scenario = await self._scenario_for(session)
            return transitions.apply_choice(
                session,
                scenario,
                scene_id=scene_id,
                choice_text=choice_text,
                next_scene_id=next_scene_id,
                now=self._clock(),
                auto_track_axes=self.settings.auto_track_axes,
            )

        stored = await self._update(session_id, "make_choice", change)
        if stored is not None:
            logger.info(
                "Choice made in session %s: %s -> %s (status %s)",
                stored.id,
                choice_text,
                next_scene_id,
                stored.status.value,
            )
        return stored

    async def progress_scene(self, session_id: str, scene_id: str) -> GameSession | None:
        """Move the session to ``scene_id`` without recording a choice.

        Raises:
            InvalidSessionStateError: If the session is completed.
            MissingScenarioError: If the session's scenario cannot be found.
            UnknownSceneError: If ``scene_id`` is not part of the scenario.
        """

        async def change(session: GameSession) -> GameSession:
            transitions.require_status(
                session, SessionStatus.IN_PROGRESS, SessionStatus.PAUSED
            )
            scenario = await self._scenario_for(session)
            return transitions.progress_to_scene(
                session, scenario, scene_id=scene_id, now=self._clock()
            )

        stored = await self._update(session_id, "progress_scene", change)
        if stored is not None:
            logger.info("Progressed session %s to scene %s", stored.id, scene_id)
        return stored

    async def pause_session(self, session_id: str) -> GameSession | None:
        async def change(session: GameSession) -> GameSession:
            return transitions.pause(session, now=self._clock())

        stored = await self._update(session_id, "pause_session", change)
        if stored is not None:
            logger.info("Paused session %s", stored.id)
        return stored

    async def resume_session(self, session_id: str) -> GameSession | None:
        async def change(session: GameSession) -> GameSession:
            return transitions.resume(session, now=self._clock())

        stored = await self._update(session_id, "resume_session", change)
        if stored is not None:
            logger.info("Resumed session %s", stored.id)
        return stored

    async def end_session(self, session_id: str) -> GameSession | None:
        async def change(session: GameSession) -> GameSession:
            return transitions.end(session, now=self._clock())

        stored = await self._update(session_id, "end_session", change)
        if stored is not None:
            logger.info("Ended session %s", stored.id)
        return stored

    async def recalculate_compass(self, session_id: str) -> GameSession | None:
        """Rebuild every compass tracker of the session from its choice history."""

        async def change(session: GameSession) -> GameSession:
            return transitions.rebuild_compass(
                session, include_untracked=self.settings.auto_track_axes
            )

        stored = await self._update(session_id, "recalculate_compass", change)
        if stored is not None:
            logger.info("Recalculated compass values for session %s", stored.id)
        return stored

    async def check_achievements(self, session_id: str) -> list[SessionAchievement]:
        """Award and return the achievements newly unlocked by the session.

        Calling this again without an intervening state change returns an
        empty list. The session is only written when something was awarded.
        """

        async with self._lock_for(session_id):
            session = await self.sessions.get(session_id)
            if session is None:
                logger.warning("check_achievements: game session not found: %s", session_id)
                return []

            awarded = evaluate_achievements(
                session, now=self._clock(), thresholds=self._thresholds
            )
            if not awarded:
                return []

            await self.sessions.put(
                transitions.award_achievements(session, awarded),
                expected_version=session.version,
            )

        logger.info("Awarded %d achievements to session %s", len(awarded), session_id)
        return awarded

    async def get_session_stats(self, session_id: str) -> SessionStats | None:
        """Return a read-only summary of the session, or ``None`` if it is missing."""

        session = await self.sessions.get(session_id)
        if session is None:
            return None
        return build_session_stats(
            session,
            now=self._clock(),
            recent_echo_limit=self.settings.recent_echo_limit,
        )


__all__ = ["Clock", "SessionEngine"]
