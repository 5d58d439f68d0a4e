"""Read-only summaries of a session for presentation layers."""

from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel, Field, field_serializer

from .session import (
    AchievementType,
    CompassThreshold,
    EchoLog,
    GameSession,
    SessionAchievement,
)

DEFAULT_RECENT_ECHO_LIMIT = 5


class EchoResource(BaseModel):
    """Echo entry surfaced in session summaries."""

    echo_type: str
    description: str
    strength: float
    timestamp: datetime

    @field_serializer("timestamp")
    def _serialise_timestamp(self, value: datetime) -> str:
        return value.isoformat()


class AchievementResource(BaseModel):
    """Achievement entry surfaced in session summaries."""

    id: str
    title: str
    description: str
    icon_name: str
    type: AchievementType
    compass_axis: str | None = None
    threshold: float | None = None
    earned_at: datetime

    @field_serializer("earned_at")
    def _serialise_earned_at(self, value: datetime) -> str:
        return value.isoformat()


class SessionStats(BaseModel):
    """Snapshot of compass values, recent echoes and achievements."""

    session_id: str
    compass_values: dict[str, float] = Field(default_factory=dict)
    recent_echoes: list[EchoResource] = Field(default_factory=list)
    achievements: list[AchievementResource] = Field(default_factory=list)
    total_choices: int = Field(..., ge=0)
    session_duration: timedelta

    @field_serializer("session_duration")
    def _serialise_duration(self, value: timedelta) -> float:
        return value.total_seconds()


def _echo_resource(echo: EchoLog) -> EchoResource:
    return EchoResource(
        echo_type=echo.echo_type,
        description=echo.description,
        strength=echo.strength,
        timestamp=echo.timestamp,
    )


def _achievement_resource(achievement: SessionAchievement) -> AchievementResource:
    axis: str | None = None
    threshold: float | None = None
    if isinstance(achievement.kind, CompassThreshold):
        axis = str(achievement.kind.axis)
        threshold = achievement.kind.threshold

    return AchievementResource(
        id=str(achievement.id),
        title=achievement.title,
        description=achievement.description,
        icon_name=achievement.icon_name,
        type=achievement.type,
        compass_axis=axis,
        threshold=threshold,
        earned_at=achievement.earned_at,
    )


def recent_echoes(
    session: GameSession, *, limit: int = DEFAULT_RECENT_ECHO_LIMIT
) -> list[EchoLog]:
    """Return the ``limit`` newest echoes, newest first.

    Echoes sharing a timestamp keep the order in which they were recorded.
    """

    if limit < 0:
        raise ValueError("limit must be non-negative")
    # sorted() is stable with reverse=True, so ties stay in insertion order.
    ordered = sorted(session.echo_history, key=lambda echo: echo.timestamp, reverse=True)
    return ordered[:limit]


def build_session_stats(
    session: GameSession,
    *,
    now: datetime,
    recent_echo_limit: int = DEFAULT_RECENT_ECHO_LIMIT,
) -> SessionStats:
    """Build the read-only summary for ``session`` as of ``now``."""

    return SessionStats(
        session_id=session.id,
        compass_values={
            str(axis): tracking.current_value
            for axis, tracking in session.compass_values.items()
        },
        recent_echoes=[
            _echo_resource(echo)
            for echo in recent_echoes(session, limit=recent_echo_limit)
        ],
        achievements=[
            _achievement_resource(achievement) for achievement in session.achievements
        ],
        total_choices=len(session.choice_history),
        session_duration=session.total_elapsed_time(now),
    )


__all__ = [
    "AchievementResource",
    "DEFAULT_RECENT_ECHO_LIMIT",
    "EchoResource",
    "SessionStats",
    "build_session_stats",
    "recent_echoes",
]
