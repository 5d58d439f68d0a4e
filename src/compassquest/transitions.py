"""Pure state transitions for :class:`~compassquest.session.GameSession`.

Every function takes the current aggregate and returns an updated copy; the
input is never modified. Validation failures raise before any new state is
built, so a rejected transition cannot leak a partial update.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Sequence

from .compass import CompassAxis, CompassChange, CompassTracking, replay_changes
from .errors import InvalidSessionStateError, UnknownChoiceError, UnknownSceneError
from .scenario import Scenario, Scene
from .session import (
    EchoLog,
    GameSession,
    SessionAchievement,
    SessionChoice,
    SessionStatus,
)

logger = logging.getLogger(__name__)


def new_session(
    scenario: Scenario,
    *,
    session_id: str,
    now: datetime,
    account_id: str = "",
    profile_id: str = "",
    player_names: Sequence[str] = (),
) -> GameSession:
    """Create a session positioned on the first scene of ``scenario``.

    One compass tracker starting at zero is created for each axis the
    scenario declares.
    """

    first_scene = scenario.first_scene
    if first_scene is None:
        raise ValueError(f"Scenario '{scenario.id}' has no scenes to play.")

    compass = {
        axis: CompassTracking(axis=axis, last_updated=now)
        for axis in scenario.compass_axes
    }
    return GameSession(
        id=session_id,
        scenario_id=scenario.id,
        current_scene_id=first_scene.id,
        start_time=now,
        status=SessionStatus.IN_PROGRESS,
        compass_values=compass,
        account_id=account_id,
        profile_id=profile_id,
        player_names=tuple(player_names),
        scene_count=len(scenario.scenes),
    )


def require_status(session: GameSession, *allowed: SessionStatus) -> None:
    """Raise :class:`InvalidSessionStateError` unless the status is one of ``allowed``."""

    if session.status not in allowed:
        raise InvalidSessionStateError(session.id, session.status)


def _require_scene(scenario: Scenario, scene_id: str) -> Scene:
    scene = scenario.scene(scene_id)
    if scene is None:
        raise UnknownSceneError(scenario.id, scene_id)
    return scene


def _check_scenario(session: GameSession, scenario: Scenario) -> None:
    if session.scenario_id != scenario.id:
        raise ValueError(
            f"Session '{session.id}' belongs to scenario '{session.scenario_id}', "
            f"not '{scenario.id}'."
        )


def _apply_compass_change(
    session: GameSession,
    change: CompassChange,
    *,
    now: datetime,
    auto_track_axes: bool,
) -> dict[CompassAxis, CompassTracking]:
    compass = dict(session.compass_values)
    tracking = compass.get(change.axis)
    if tracking is None:
        if not auto_track_axes:
            logger.debug(
                "Dropping compass change for untracked axis %s in session %s",
                change.axis,
                session.id,
            )
            return compass
        tracking = CompassTracking(axis=change.axis)

    compass[change.axis] = tracking.apply(change, at=now)
    return compass


def apply_choice(
    session: GameSession,
    scenario: Scenario,
    *,
    scene_id: str,
    choice_text: str,
    next_scene_id: str,
    now: datetime,
    auto_track_axes: bool = False,
) -> GameSession:
    """Resolve ``choice_text`` on ``scene_id`` and return the advanced session.

    The branch is matched by exact choice text. Its echo template (if any) is
    materialised with ``now`` as timestamp and its compass change is applied
    to the matching axis and clamped. Axes the session does not track are
    skipped unless ``auto_track_axes`` is set. The session completes when
    ``next_scene_id`` does not name a scene or names a terminal one.

    Raises:
        InvalidSessionStateError: If the session is not in progress.
        UnknownSceneError: If ``scene_id`` is not part of the scenario.
        UnknownChoiceError: If no branch carries ``choice_text``.
    """

    _check_scenario(session, scenario)
    require_status(session, SessionStatus.IN_PROGRESS)
    scene = _require_scene(scenario, scene_id)

    branch = scene.branch_for(choice_text)
    if branch is None:
        raise UnknownChoiceError(scene.id, choice_text)

    echo: EchoLog | None = None
    if branch.echo_log is not None:
        echo = EchoLog(
            echo_type=branch.echo_log.echo_type,
            description=branch.echo_log.description,
            strength=branch.echo_log.strength,
            timestamp=now,
        )

    choice = SessionChoice(
        scene_id=scene.id,
        scene_title=scene.title,
        choice_text=choice_text,
        next_scene_id=next_scene_id,
        chosen_at=now,
        echo_generated=echo,
        compass_change=branch.compass_change,
    )

    compass = session.compass_values
    if branch.compass_change is not None:
        compass = _apply_compass_change(
            session, branch.compass_change, now=now, auto_track_axes=auto_track_axes
        )

    status = session.status
    end_time = session.end_time
    next_scene = scenario.scene(next_scene_id)
    if next_scene is None or next_scene.is_terminal:
        status = SessionStatus.COMPLETED
        end_time = now

    return replace(
        session,
        choice_history=session.choice_history + (choice,),
        echo_history=session.echo_history + ((echo,) if echo is not None else ()),
        compass_values=compass,
        current_scene_id=next_scene_id,
        elapsed_time=now - session.start_time,
        status=status,
        end_time=end_time,
    )


def progress_to_scene(
    session: GameSession, scenario: Scenario, *, scene_id: str, now: datetime
) -> GameSession:
    """Reposition the session on ``scene_id`` without recording a choice.

    A paused session is resumed as part of the move.

    Raises:
        InvalidSessionStateError: If the session is completed.
        UnknownSceneError: If ``scene_id`` is not part of the scenario.
    """

    _check_scenario(session, scenario)
    require_status(session, SessionStatus.IN_PROGRESS, SessionStatus.PAUSED)
    scene = _require_scene(scenario, scene_id)

    return replace(
        session,
        current_scene_id=scene.id,
        elapsed_time=now - session.start_time,
        status=SessionStatus.IN_PROGRESS,
        is_paused=False,
        paused_at=None,
    )


def pause(session: GameSession, *, now: datetime) -> GameSession:
    require_status(session, SessionStatus.IN_PROGRESS)
    return replace(
        session,
        status=SessionStatus.PAUSED,
        is_paused=True,
        paused_at=now,
        elapsed_time=now - session.start_time,
    )


def resume(session: GameSession, *, now: datetime) -> GameSession:
    require_status(session, SessionStatus.PAUSED)
    return replace(
        session,
        status=SessionStatus.IN_PROGRESS,
        is_paused=False,
        paused_at=None,
        elapsed_time=now - session.start_time,
    )


def end(session: GameSession, *, now: datetime) -> GameSession:
    """Mark the session completed regardless of its position in the story."""

    require_status(session, SessionStatus.IN_PROGRESS, SessionStatus.PAUSED)
    return replace(
        session,
        status=SessionStatus.COMPLETED,
        end_time=now,
        elapsed_time=now - session.start_time,
        is_paused=False,
        paused_at=None,
    )


def award_achievements(
    session: GameSession, achievements: Iterable[SessionAchievement]
) -> GameSession:
    """Append ``achievements`` whose ids the session does not hold yet."""

    held = {achievement.id for achievement in session.achievements}
    additions: list[SessionAchievement] = []
    for achievement in achievements:
        if achievement.id in held:
            continue
        held.add(achievement.id)
        additions.append(achievement)

    if not additions:
        return session
    return replace(session, achievements=session.achievements + tuple(additions))


def rebuild_compass(session: GameSession, *, include_untracked: bool = False) -> GameSession:
    """Recompute every compass tracker from the recorded choice history.

    Trackers keep their starting value; axes without recorded changes fall
    back to that value with an empty history. Changes for axes the session
    does not track are ignored unless ``include_untracked`` is set.
    """

    changes: dict[CompassAxis, list[CompassChange]] = {}
    last_seen: dict[CompassAxis, datetime] = {}
    for choice in session.choice_history:
        change = choice.compass_change
        if change is None:
            continue
        if change.axis not in session.compass_values and not include_untracked:
            continue
        changes.setdefault(change.axis, []).append(change)
        last_seen[change.axis] = choice.chosen_at

    rebuilt: dict[CompassAxis, CompassTracking] = {}
    for axis in list(session.compass_values) + [
        axis for axis in changes if axis not in session.compass_values
    ]:
        existing = session.compass_values.get(axis)
        rebuilt[axis] = replay_changes(
            axis,
            changes.get(axis, ()),
            starting_value=existing.starting_value if existing else 0.0,
            last_updated=last_seen.get(
                axis, existing.last_updated if existing else None
            ),
        )

    return replace(session, compass_values=rebuilt)


__all__ = [
    "apply_choice",
    "award_achievements",
    "end",
    "new_session",
    "pause",
    "progress_to_scene",
    "rebuild_compass",
    "require_status",
    "resume",
]
