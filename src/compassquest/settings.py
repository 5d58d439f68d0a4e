"""Configuration helpers for the narrative session engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from .achievements import DEFAULT_THRESHOLD, AchievementThresholds
from .compass import CompassAxis
from .projection import DEFAULT_RECENT_ECHO_LIMIT

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def _normalise_path(value: str | None) -> Path | None:
    if value is None:
        return None

    trimmed = value.strip()
    if not trimmed:
        return None

    return Path(trimmed).expanduser()


def _parse_float(value: str | None, *, name: str, default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be a number.") from exc


def _parse_bool(value: str | None, *, name: str, default: bool) -> bool:
    if value is None or not value.strip():
        return default
    normalised = value.strip().lower()
    if normalised in _TRUE_VALUES:
        return True
    if normalised in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be one of: {', '.join(sorted(_TRUE_VALUES | _FALSE_VALUES))}.")


def _parse_positive_int(value: str | None, *, name: str, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be a positive integer.") from exc
    if parsed < 1:
        raise ValueError(f"{name} must be greater than zero.")
    return parsed


def _parse_axis_thresholds(value: str | None, *, name: str) -> dict[CompassAxis, float]:
    """Parse ``axis=value`` pairs separated by commas."""

    if value is None or not value.strip():
        return {}

    thresholds: dict[CompassAxis, float] = {}
    for entry in value.split(","):
        if not entry.strip():
            continue
        axis_name, separator, raw_threshold = entry.partition("=")
        if not separator:
            raise ValueError(f"{name} entries must look like 'axis=value', got {entry!r}.")
        thresholds[CompassAxis(axis_name)] = _parse_float(
            raw_threshold, name=f"{name} ({axis_name.strip()})", default=DEFAULT_THRESHOLD
        )
    return thresholds


@dataclass(frozen=True)
class EngineSettings:
    """Runtime settings for :class:`~compassquest.engine.SessionEngine`.

    Values are read from environment variables so deployments can tune badge
    thresholds and storage locations without code changes. Empty strings are
    treated as if the variable was unset.
    """

    achievement_threshold: float = DEFAULT_THRESHOLD
    axis_thresholds: Mapping[CompassAxis, float] = field(default_factory=dict)
    auto_track_axes: bool = False
    recent_echo_limit: int = DEFAULT_RECENT_ECHO_LIMIT
    session_dir: Path | None = None
    scenario_dir: Path | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "axis_thresholds", MappingProxyType(dict(self.axis_thresholds))
        )
        # Validates the threshold values eagerly.
        self.thresholds()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineSettings":
        """Return settings populated from ``environ``.

        Args:
            environ: Optional mapping of environment variables. When omitted,
                :data:`os.environ` is used.
        """

        source = environ if environ is not None else os.environ

        return cls(
            achievement_threshold=_parse_float(
                source.get("COMPASSQUEST_ACHIEVEMENT_THRESHOLD"),
                name="COMPASSQUEST_ACHIEVEMENT_THRESHOLD",
                default=DEFAULT_THRESHOLD,
            ),
            axis_thresholds=_parse_axis_thresholds(
                source.get("COMPASSQUEST_AXIS_THRESHOLDS"),
                name="COMPASSQUEST_AXIS_THRESHOLDS",
            ),
            auto_track_axes=_parse_bool(
                source.get("COMPASSQUEST_AUTO_TRACK_AXES"),
                name="COMPASSQUEST_AUTO_TRACK_AXES",
                default=False,
            ),
            recent_echo_limit=_parse_positive_int(
                source.get("COMPASSQUEST_RECENT_ECHO_LIMIT"),
                name="COMPASSQUEST_RECENT_ECHO_LIMIT",
                default=DEFAULT_RECENT_ECHO_LIMIT,
            ),
            session_dir=_normalise_path(source.get("COMPASSQUEST_SESSION_DIR")),
            scenario_dir=_normalise_path(source.get("COMPASSQUEST_SCENARIO_DIR")),
        )

    def thresholds(self) -> AchievementThresholds:
        return AchievementThresholds(
            default=self.achievement_threshold, per_axis=self.axis_thresholds
        )


__all__ = ["EngineSettings"]
