"""Session aggregate: position, history, compass state and achievements."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Sequence, Union

from .compass import CompassAxis, CompassChange, CompassTracking
from .scenario import _validate_text


class SessionStatus(str, Enum):
    """Lifecycle states of a game session."""

    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass(frozen=True)
class EchoLog:
    """A narrative event recorded as a consequence of a choice."""

    echo_type: str
    description: str
    strength: float
    timestamp: datetime


@dataclass(frozen=True)
class SessionChoice:
    """Record of one decision taken by the player."""

    scene_id: str
    scene_title: str
    choice_text: str
    next_scene_id: str
    chosen_at: datetime
    echo_generated: EchoLog | None = None
    compass_change: CompassChange | None = None


@dataclass(frozen=True, order=True)
class AchievementId:
    """Identifier of an achievement, unique within a session."""

    value: str

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "value", _validate_text(self.value, field_name="achievement id")
        )

    @classmethod
    def coerce(cls, value: "AchievementId | str") -> "AchievementId":
        if isinstance(value, AchievementId):
            return value
        return cls(value)

    @classmethod
    def for_session(cls, session_id: str, suffix: str) -> "AchievementId":
        """Build the deterministic id ``{session_id}_{suffix}``."""

        return cls(f"{session_id}_{suffix}")

    def __str__(self) -> str:
        return self.value


class AchievementType(str, Enum):
    """Discriminator for the supported achievement kinds."""

    COMPASS_THRESHOLD = "compass_threshold"
    FIRST_CHOICE = "first_choice"
    SESSION_COMPLETE = "session_complete"


@dataclass(frozen=True)
class CompassThreshold:
    """Awarded when an axis reaches the configured magnitude."""

    axis: CompassAxis
    threshold: float

    type = AchievementType.COMPASS_THRESHOLD

    def __post_init__(self) -> None:
        object.__setattr__(self, "axis", CompassAxis.coerce(self.axis))


@dataclass(frozen=True)
class FirstChoice:
    """Awarded once the first decision of a session has been recorded."""

    type = AchievementType.FIRST_CHOICE


@dataclass(frozen=True)
class SessionComplete:
    """Awarded when the session reaches the end of its scenario."""

    type = AchievementType.SESSION_COMPLETE


AchievementKind = Union[CompassThreshold, FirstChoice, SessionComplete]


@dataclass(frozen=True)
class SessionAchievement:
    """A recognition earned during a session."""

    id: AchievementId
    title: str
    description: str
    icon_name: str
    kind: AchievementKind
    earned_at: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", AchievementId.coerce(self.id))

    @property
    def type(self) -> AchievementType:
        return self.kind.type


@dataclass(frozen=True)
class GameSession:
    """Aggregate root describing one player's traversal of a scenario.

    Instances are immutable; the functions in :mod:`compassquest.transitions`
    return updated copies. ``version`` is bumped by the stores on every
    successful write and guards against lost updates.
    """

    id: str
    scenario_id: str
    current_scene_id: str
    start_time: datetime
    status: SessionStatus = SessionStatus.IN_PROGRESS
    end_time: datetime | None = None
    elapsed_time: timedelta = timedelta(0)
    is_paused: bool = False
    paused_at: datetime | None = None
    choice_history: Sequence[SessionChoice] = field(default_factory=tuple)
    echo_history: Sequence[EchoLog] = field(default_factory=tuple)
    compass_values: Mapping[CompassAxis, CompassTracking] = field(
        default_factory=dict
    )
    achievements: Sequence[SessionAchievement] = field(default_factory=tuple)
    account_id: str = ""
    profile_id: str = ""
    player_names: Sequence[str] = field(default_factory=tuple)
    scene_count: int = 0
    version: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", _validate_text(self.id, field_name="session id"))
        object.__setattr__(
            self, "scenario_id", _validate_text(self.scenario_id, field_name="scenario id")
        )
        object.__setattr__(self, "status", SessionStatus(self.status))
        object.__setattr__(self, "choice_history", tuple(self.choice_history))
        object.__setattr__(self, "echo_history", tuple(self.echo_history))
        object.__setattr__(self, "player_names", tuple(self.player_names))

        compass: dict[CompassAxis, CompassTracking] = {}
        for key, tracking in self.compass_values.items():
            axis = CompassAxis.coerce(key)
            if tracking.axis != axis:
                raise ValueError(
                    f"compass entry '{axis}' holds tracking for '{tracking.axis}'"
                )
            compass[axis] = tracking
        object.__setattr__(self, "compass_values", MappingProxyType(compass))

        achievements = tuple(self.achievements)
        seen: set[AchievementId] = set()
        for achievement in achievements:
            if achievement.id in seen:
                raise ValueError(f"duplicate achievement id: {achievement.id}")
            seen.add(achievement.id)
        object.__setattr__(self, "achievements", achievements)

    def has_achievement(self, achievement_id: AchievementId | str) -> bool:
        target = AchievementId.coerce(achievement_id)
        return any(achievement.id == target for achievement in self.achievements)

    def compass_for(self, axis: CompassAxis | str) -> CompassTracking | None:
        """Return the tracking record for ``axis`` if the session follows it."""

        return self.compass_values.get(CompassAxis.coerce(axis))

    def total_elapsed_time(self, now: datetime) -> timedelta:
        """Wall-clock time from the start until the end, or until ``now`` while open."""

        end = self.end_time if self.end_time is not None else now
        return end - self.start_time


__all__ = [
    "AchievementId",
    "AchievementKind",
    "AchievementType",
    "CompassThreshold",
    "EchoLog",
    "FirstChoice",
    "GameSession",
    "SessionAchievement",
    "SessionChoice",
    "SessionComplete",
    "SessionStatus",
]
