"""Derive the achievements a session has unlocked from its current state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Mapping

from .compass import COMPASS_MAX_VALUE, CompassAxis, CompassTracking
from .session import (
    AchievementId,
    CompassThreshold,
    FirstChoice,
    GameSession,
    SessionAchievement,
    SessionComplete,
    SessionStatus,
)

DEFAULT_THRESHOLD = COMPASS_MAX_VALUE


def _validate_threshold(value: object, *, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{field_name} must be a number, got {type(value)!r}")
    if not 0 < value <= COMPASS_MAX_VALUE:
        raise ValueError(
            f"{field_name} must be greater than zero and at most {COMPASS_MAX_VALUE}"
        )
    return float(value)


@dataclass(frozen=True)
class AchievementThresholds:
    """Magnitude a compass axis must reach to earn its badge.

    ``per_axis`` overrides ``default`` for individual axes.
    """

    default: float = DEFAULT_THRESHOLD
    per_axis: Mapping[CompassAxis, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "default", _validate_threshold(self.default, field_name="threshold")
        )
        overrides = {
            CompassAxis.coerce(axis): _validate_threshold(
                value, field_name=f"threshold for '{axis}'"
            )
            for axis, value in self.per_axis.items()
        }
        object.__setattr__(self, "per_axis", MappingProxyType(overrides))

    def for_axis(self, axis: CompassAxis | str) -> float:
        return self.per_axis.get(CompassAxis.coerce(axis), self.default)


def _format_threshold(value: float) -> str:
    return f"{value:g}"


def _compass_achievement(
    session: GameSession, tracking: CompassTracking, threshold: float, now: datetime
) -> SessionAchievement:
    axis = tracking.axis
    return SessionAchievement(
        id=AchievementId.for_session(session.id, f"{axis}_threshold"),
        title=f"{axis.title()} Badge",
        description=f"Reached {axis} threshold of {_format_threshold(threshold)}",
        icon_name=f"badge_{axis}",
        kind=CompassThreshold(axis=axis, threshold=threshold),
        earned_at=now,
    )


def evaluate_achievements(
    session: GameSession,
    *,
    now: datetime,
    thresholds: AchievementThresholds | None = None,
) -> list[SessionAchievement]:
    """Return the achievements ``session`` qualifies for but does not hold yet.

    Rules run in a fixed order: compass thresholds (one per tracked axis whose
    absolute value reaches its threshold), the first-choice award when exactly
    one choice is recorded, then the completion award. Ids are derived from
    the session id so running the evaluation again after the results were
    stored produces nothing new.
    """

    limits = thresholds or AchievementThresholds()
    candidates: list[SessionAchievement] = []

    for tracking in session.compass_values.values():
        threshold = limits.for_axis(tracking.axis)
        if abs(tracking.current_value) >= threshold:
            candidates.append(_compass_achievement(session, tracking, threshold, now))

    if len(session.choice_history) == 1:
        candidates.append(
            SessionAchievement(
                id=AchievementId.for_session(session.id, "first_choice"),
                title="First Steps",
                description="Made your first choice in the adventure",
                icon_name="badge_first_choice",
                kind=FirstChoice(),
                earned_at=now,
            )
        )

    if session.status is SessionStatus.COMPLETED:
        candidates.append(
            SessionAchievement(
                id=AchievementId.for_session(session.id, "completion"),
                title="Adventure Complete",
                description="Successfully completed the adventure",
                icon_name="badge_completion",
                kind=SessionComplete(),
                earned_at=now,
            )
        )

    return [
        achievement
        for achievement in candidates
        if not session.has_achievement(achievement.id)
    ]


__all__ = ["AchievementThresholds", "DEFAULT_THRESHOLD", "evaluate_achievements"]
