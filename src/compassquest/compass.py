"""Bounded per-axis score tracking for a player's moral compass."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable

COMPASS_MIN_VALUE = -2.0
COMPASS_MAX_VALUE = 2.0

_AXIS_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")

_NEGATIVE_DIRECTIONS = frozenset({"negative", "neg", "-", "down"})
_POSITIVE_DIRECTIONS = frozenset({"positive", "pos", "+", "up"})


def clamp_compass_value(value: float) -> float:
    """Clamp ``value`` into the inclusive compass range."""

    return max(COMPASS_MIN_VALUE, min(COMPASS_MAX_VALUE, value))


def _validate_number(value: object, *, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{field_name} must be a number, got {type(value)!r}")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"{field_name} must be a finite number")
    return number


@dataclass(frozen=True, order=True)
class CompassAxis:
    """Name of a character-development dimension such as ``courage``.

    Axis names are normalised to lower case and must look like identifiers
    (letters, digits and underscores, starting with a letter) so that typos
    such as stray whitespace or hyphens are caught when the axis is built
    rather than when a lookup silently misses.
    """

    name: str

    def __post_init__(self) -> None:
        if not isinstance(self.name, str):
            raise TypeError(f"axis name must be a string, got {type(self.name)!r}")

        normalised = self.name.strip().lower()
        if not _AXIS_PATTERN.match(normalised):
            raise ValueError(f"invalid compass axis name: {self.name!r}")
        object.__setattr__(self, "name", normalised)

    @classmethod
    def coerce(cls, value: "CompassAxis | str") -> "CompassAxis":
        """Return ``value`` as a :class:`CompassAxis`."""

        if isinstance(value, CompassAxis):
            return value
        return cls(value)

    def title(self) -> str:
        """Human readable form, e.g. ``self_control`` -> ``Self Control``."""

        words = re.split(r"[ _-]", self.name)
        return " ".join(word[:1].upper() + word[1:] for word in words if word)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class CompassChange:
    """A signed adjustment to a single compass axis."""

    axis: CompassAxis
    delta: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "axis", CompassAxis.coerce(self.axis))
        object.__setattr__(
            self, "delta", _validate_number(self.delta, field_name="compass delta")
        )


def apply_direction(delta: float, direction: str | None) -> float:
    """Force the sign of ``delta`` according to a direction keyword.

    Unknown or empty directions leave the delta untouched.
    """

    if direction is None or not direction.strip():
        return delta

    normalised = direction.strip().lower()
    if normalised in _NEGATIVE_DIRECTIONS:
        return -abs(delta)
    if normalised in _POSITIVE_DIRECTIONS:
        return abs(delta)
    return delta


@dataclass(frozen=True)
class CompassTracking:
    """Current value and change history for one axis of one session."""

    axis: CompassAxis
    current_value: float = 0.0
    history: tuple[CompassChange, ...] = field(default_factory=tuple)
    last_updated: datetime | None = None
    starting_value: float = 0.0

    def __post_init__(self) -> None:
        axis = CompassAxis.coerce(self.axis)
        object.__setattr__(self, "axis", axis)
        current = _validate_number(self.current_value, field_name="compass value")
        object.__setattr__(self, "current_value", clamp_compass_value(current))
        starting = _validate_number(self.starting_value, field_name="starting value")
        object.__setattr__(self, "starting_value", clamp_compass_value(starting))

        history = tuple(self.history)
        for change in history:
            if change.axis != axis:
                raise ValueError(
                    f"history entry for axis '{change.axis}' does not belong to '{axis}'"
                )
        object.__setattr__(self, "history", history)

    def apply(self, change: CompassChange, *, at: datetime) -> "CompassTracking":
        """Return a copy with ``change`` added, clamped and recorded."""

        if change.axis != self.axis:
            raise ValueError(
                f"cannot apply change for axis '{change.axis}' to '{self.axis}'"
            )

        return replace(
            self,
            current_value=clamp_compass_value(self.current_value + change.delta),
            history=self.history + (change,),
            last_updated=at,
        )


def replay_changes(
    axis: CompassAxis,
    changes: Iterable[CompassChange],
    *,
    starting_value: float = 0.0,
    last_updated: datetime | None = None,
) -> CompassTracking:
    """Rebuild a tracking record by applying ``changes`` in order.

    Each delta and each running total is clamped, matching the behaviour of
    live updates.
    """

    value = clamp_compass_value(starting_value)
    history: list[CompassChange] = []
    for change in changes:
        clamped = CompassChange(axis, clamp_compass_value(change.delta))
        value = clamp_compass_value(value + clamped.delta)
        history.append(clamped)

    return CompassTracking(
        axis=axis,
        current_value=value,
        history=tuple(history),
        last_updated=last_updated,
        starting_value=starting_value,
    )


__all__ = [
    "COMPASS_MIN_VALUE",
    "COMPASS_MAX_VALUE",
    "CompassAxis",
    "CompassChange",
    "CompassTracking",
    "apply_direction",
    "clamp_compass_value",
    "replay_changes",
]
