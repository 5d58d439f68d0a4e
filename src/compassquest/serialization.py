"""Conversion of sessions and scenarios to and from JSON-safe payloads."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping

from .compass import CompassAxis, CompassChange, CompassTracking
from .scenario import Branch, Scenario
from .session import (
    AchievementKind,
    AchievementType,
    CompassThreshold,
    EchoLog,
    FirstChoice,
    GameSession,
    SessionAchievement,
    SessionChoice,
    SessionComplete,
    SessionStatus,
)


def _timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_timestamp(value: object, *, field_name: str) -> datetime:
    if not isinstance(value, str):
        raise ValueError(f"Invalid session payload: {field_name} must be a timestamp")
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(
            f"Invalid session payload: {field_name} is not an ISO-8601 timestamp"
        ) from exc


def _parse_optional_timestamp(value: object, *, field_name: str) -> datetime | None:
    if value is None:
        return None
    return _parse_timestamp(value, field_name=field_name)


def _require_mapping(value: object, *, field_name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError(f"Invalid session payload: {field_name} must be an object")
    return value


def _require_list(value: object, *, field_name: str) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise ValueError(f"Invalid session payload: {field_name} must be a list")
    return list(value)


def _compass_change_payload(change: CompassChange | None) -> Dict[str, object] | None:
    if change is None:
        return None
    return {"axis": str(change.axis), "delta": change.delta}


def _compass_change_from_payload(value: object) -> CompassChange | None:
    if value is None:
        return None
    payload = _require_mapping(value, field_name="compass change")
    return CompassChange(CompassAxis(str(payload.get("axis", ""))), payload.get("delta"))


def _echo_payload(echo: EchoLog | None) -> Dict[str, object] | None:
    if echo is None:
        return None
    return {
        "echo_type": echo.echo_type,
        "description": echo.description,
        "strength": echo.strength,
        "timestamp": _timestamp(echo.timestamp),
    }


def _echo_from_payload(value: object) -> EchoLog | None:
    if value is None:
        return None
    payload = _require_mapping(value, field_name="echo")
    return EchoLog(
        echo_type=str(payload.get("echo_type", "")),
        description=str(payload.get("description", "")),
        strength=float(payload.get("strength", 0.0)),
        timestamp=_parse_timestamp(payload.get("timestamp"), field_name="echo timestamp"),
    )


def _kind_payload(kind: AchievementKind) -> Dict[str, object]:
    payload: Dict[str, object] = {"type": kind.type.value}
    if isinstance(kind, CompassThreshold):
        payload["axis"] = str(kind.axis)
        payload["threshold"] = kind.threshold
    return payload


def _kind_from_payload(value: object) -> AchievementKind:
    payload = _require_mapping(value, field_name="achievement kind")
    try:
        kind_type = AchievementType(payload.get("type"))
    except ValueError as exc:
        raise ValueError(
            f"Invalid session payload: unknown achievement type {payload.get('type')!r}"
        ) from exc

    if kind_type is AchievementType.COMPASS_THRESHOLD:
        threshold = payload.get("threshold")
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            raise ValueError("Invalid session payload: threshold must be a number")
        return CompassThreshold(CompassAxis(str(payload.get("axis", ""))), float(threshold))
    if kind_type is AchievementType.FIRST_CHOICE:
        return FirstChoice()
    return SessionComplete()


def session_to_payload(session: GameSession) -> Dict[str, object]:
    """Return a JSON-serialisable representation of ``session``."""

    return {
        "id": session.id,
        "scenario_id": session.scenario_id,
        "account_id": session.account_id,
        "profile_id": session.profile_id,
        "player_names": list(session.player_names),
        "status": session.status.value,
        "current_scene_id": session.current_scene_id,
        "start_time": _timestamp(session.start_time),
        "end_time": _timestamp(session.end_time),
        "elapsed_seconds": session.elapsed_time.total_seconds(),
        "is_paused": session.is_paused,
        "paused_at": _timestamp(session.paused_at),
        "scene_count": session.scene_count,
        "version": session.version,
        "choice_history": [
            {
                "scene_id": choice.scene_id,
                "scene_title": choice.scene_title,
                "choice_text": choice.choice_text,
                "next_scene_id": choice.next_scene_id,
                "chosen_at": _timestamp(choice.chosen_at),
                "echo_generated": _echo_payload(choice.echo_generated),
                "compass_change": _compass_change_payload(choice.compass_change),
            }
            for choice in session.choice_history
        ],
        "echo_history": [_echo_payload(echo) for echo in session.echo_history],
        "compass_values": {
            str(axis): {
                "current_value": tracking.current_value,
                "starting_value": tracking.starting_value,
                "last_updated": _timestamp(tracking.last_updated),
                "history": [
                    {"axis": str(change.axis), "delta": change.delta}
                    for change in tracking.history
                ],
            }
            for axis, tracking in sorted(session.compass_values.items())
        },
        "achievements": [
            {
                "id": str(achievement.id),
                "title": achievement.title,
                "description": achievement.description,
                "icon_name": achievement.icon_name,
                "kind": _kind_payload(achievement.kind),
                "earned_at": _timestamp(achievement.earned_at),
            }
            for achievement in session.achievements
        ],
    }


def session_from_payload(payload: Mapping[str, Any]) -> GameSession:
    """Build a :class:`GameSession` from its stored payload representation.

    Raises:
        ValueError: If the payload is missing fields or holds values of the
            wrong shape.
    """

    try:
        return _session_from_payload(payload)
    except TypeError as exc:
        raise ValueError(f"Invalid session payload: {exc}") from exc


def _session_from_payload(payload: Mapping[str, Any]) -> GameSession:
    payload = _require_mapping(payload, field_name="session")
    for key in ("id", "scenario_id", "current_scene_id", "start_time"):
        if key not in payload:
            raise ValueError(f"Invalid session payload: missing {key}")

    try:
        status = SessionStatus(payload.get("status", SessionStatus.IN_PROGRESS.value))
    except ValueError as exc:
        raise ValueError(
            f"Invalid session payload: unknown status {payload.get('status')!r}"
        ) from exc

    choices = []
    for entry in _require_list(payload.get("choice_history"), field_name="choice_history"):
        choice = _require_mapping(entry, field_name="choice")
        choices.append(
            SessionChoice(
                scene_id=str(choice.get("scene_id", "")),
                scene_title=str(choice.get("scene_title", "")),
                choice_text=str(choice.get("choice_text", "")),
                next_scene_id=str(choice.get("next_scene_id", "")),
                chosen_at=_parse_timestamp(choice.get("chosen_at"), field_name="chosen_at"),
                echo_generated=_echo_from_payload(choice.get("echo_generated")),
                compass_change=_compass_change_from_payload(choice.get("compass_change")),
            )
        )

    echoes = [
        _echo_from_payload(entry)
        for entry in _require_list(payload.get("echo_history"), field_name="echo_history")
    ]

    compass: Dict[CompassAxis, CompassTracking] = {}
    raw_compass = _require_mapping(
        payload.get("compass_values", {}), field_name="compass_values"
    )
    for axis_name, raw_tracking in raw_compass.items():
        tracking = _require_mapping(raw_tracking, field_name=f"compass '{axis_name}'")
        axis = CompassAxis(str(axis_name))
        history = tuple(
            change
            for change in (
                _compass_change_from_payload(entry)
                for entry in _require_list(
                    tracking.get("history"), field_name="compass history"
                )
            )
            if change is not None
        )
        compass[axis] = CompassTracking(
            axis=axis,
            current_value=tracking.get("current_value", 0.0),
            starting_value=tracking.get("starting_value", 0.0),
            last_updated=_parse_optional_timestamp(
                tracking.get("last_updated"), field_name="last_updated"
            ),
            history=history,
        )

    achievements = []
    for entry in _require_list(payload.get("achievements"), field_name="achievements"):
        achievement = _require_mapping(entry, field_name="achievement")
        achievements.append(
            SessionAchievement(
                id=str(achievement.get("id", "")),
                title=str(achievement.get("title", "")),
                description=str(achievement.get("description", "")),
                icon_name=str(achievement.get("icon_name", "")),
                kind=_kind_from_payload(achievement.get("kind")),
                earned_at=_parse_timestamp(
                    achievement.get("earned_at"), field_name="earned_at"
                ),
            )
        )

    elapsed = payload.get("elapsed_seconds", 0.0)
    if isinstance(elapsed, bool) or not isinstance(elapsed, (int, float)):
        raise ValueError("Invalid session payload: elapsed_seconds must be a number")

    version = payload.get("version", 0)
    if isinstance(version, bool) or not isinstance(version, int):
        raise ValueError("Invalid session payload: version must be an integer")

    return GameSession(
        id=str(payload["id"]),
        scenario_id=str(payload["scenario_id"]),
        current_scene_id=str(payload["current_scene_id"]),
        start_time=_parse_timestamp(payload["start_time"], field_name="start_time"),
        status=status,
        end_time=_parse_optional_timestamp(payload.get("end_time"), field_name="end_time"),
        elapsed_time=timedelta(seconds=elapsed),
        is_paused=bool(payload.get("is_paused", False)),
        paused_at=_parse_optional_timestamp(payload.get("paused_at"), field_name="paused_at"),
        choice_history=tuple(choices),
        echo_history=tuple(echo for echo in echoes if echo is not None),
        compass_values=compass,
        achievements=tuple(achievements),
        account_id=str(payload.get("account_id", "")),
        profile_id=str(payload.get("profile_id", "")),
        player_names=tuple(
            str(name)
            for name in _require_list(payload.get("player_names"), field_name="player_names")
        ),
        scene_count=int(payload.get("scene_count", 0)),
        version=version,
    )


def _branch_payload(branch: Branch) -> Dict[str, object]:
    payload: Dict[str, object] = {"choice": branch.choice}
    if branch.next_scene_id:
        payload["next_scene_id"] = branch.next_scene_id
    if branch.echo_log is not None:
        payload["echo_log"] = {
            "echo_type": branch.echo_log.echo_type,
            "description": branch.echo_log.description,
            "strength": branch.echo_log.strength,
        }
    if branch.compass_change is not None:
        payload["compass_change"] = _compass_change_payload(branch.compass_change)
    return payload


def scenario_to_payload(scenario: Scenario) -> Dict[str, object]:
    """Return the JSON definition accepted by ``load_scenario_from_mapping``."""

    return {
        "id": scenario.id,
        "title": scenario.title,
        "compass_axes": [str(axis) for axis in scenario.compass_axes],
        "scenes": [
            {
                "id": scene.id,
                "title": scene.title,
                "description": scene.description,
                "next_scene_id": scene.next_scene_id,
                "branches": [_branch_payload(branch) for branch in scene.branches],
            }
            for scene in scenario.scenes
        ],
    }


__all__ = ["scenario_to_payload", "session_from_payload", "session_to_payload"]
