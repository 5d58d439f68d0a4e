"""Read-only branching story graph consumed by game sessions."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Sequence

from .compass import CompassAxis, CompassChange, apply_direction

MIN_ECHO_STRENGTH = 0.0
MAX_ECHO_STRENGTH = 1.0
MAX_BRANCH_DELTA = 1.0


def _validate_text(value: str, *, field_name: str) -> str:
    """Validate and normalise free-form text fields used by scenario elements."""

    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string, got {type(value)!r}")

    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{field_name} must be a non-empty string")

    return stripped


@dataclass(frozen=True)
class EchoTemplate:
    """Narrative echo a branch leaves behind when it is taken."""

    echo_type: str
    description: str
    strength: float

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "echo_type", _validate_text(self.echo_type, field_name="echo type")
        )
        if not isinstance(self.description, str):
            raise TypeError("echo description must be a string")
        object.__setattr__(self, "description", self.description.strip())

        if isinstance(self.strength, bool) or not isinstance(
            self.strength, (int, float)
        ):
            raise TypeError("echo strength must be a number")
        if not MIN_ECHO_STRENGTH <= self.strength <= MAX_ECHO_STRENGTH:
            raise ValueError(
                f"echo strength must be between {MIN_ECHO_STRENGTH} and {MAX_ECHO_STRENGTH}"
            )
        object.__setattr__(self, "strength", float(self.strength))


@dataclass(frozen=True)
class Branch:
    """One choice offered by a scene and the consequences attached to it.

    The ``choice`` text is kept verbatim: resolution compares it with the
    player's submitted text using exact string equality.
    """

    choice: str
    next_scene_id: str | None = None
    echo_log: EchoTemplate | None = None
    compass_change: CompassChange | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.choice, str):
            raise TypeError(f"choice must be a string, got {type(self.choice)!r}")
        if not self.choice.strip():
            raise ValueError("choice must be a non-empty string")


@dataclass(frozen=True)
class Scene:
    """A node in the scenario graph."""

    id: str
    title: str = ""
    branches: Sequence[Branch] = field(default_factory=tuple)
    next_scene_id: str | None = None
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", _validate_text(self.id, field_name="scene id"))
        object.__setattr__(self, "title", (self.title or "").strip())

        branches = tuple(self.branches)
        seen: set[str] = set()
        for branch in branches:
            if branch.choice in seen:
                raise ValueError(
                    f"Scene '{self.id}' defines duplicate choice '{branch.choice}'."
                )
            seen.add(branch.choice)
        object.__setattr__(self, "branches", branches)

        if self.next_scene_id is not None and not self.next_scene_id.strip():
            object.__setattr__(self, "next_scene_id", None)

    @property
    def is_terminal(self) -> bool:
        """Return ``True`` when the story cannot continue past this scene."""

        return not self.branches and not self.next_scene_id

    def branch_for(self, choice_text: str) -> Branch | None:
        """Return the branch whose choice text equals ``choice_text`` exactly."""

        for branch in self.branches:
            if branch.choice == choice_text:
                return branch
        return None


@dataclass(frozen=True)
class Scenario:
    """An ordered collection of scenes shared read-only by many sessions."""

    id: str
    scenes: Sequence[Scene]
    title: str = ""
    compass_axes: Sequence[CompassAxis] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "id", _validate_text(self.id, field_name="scenario id")
        )
        object.__setattr__(self, "title", (self.title or "").strip())

        scenes = tuple(self.scenes)
        index: dict[str, Scene] = {}
        for scene in scenes:
            if scene.id in index:
                raise ValueError(
                    f"Scenario '{self.id}' defines duplicate scene id '{scene.id}'."
                )
            index[scene.id] = scene
        object.__setattr__(self, "scenes", scenes)
        object.__setattr__(self, "_scene_index", MappingProxyType(index))

        axes: list[CompassAxis] = []
        for axis in self.compass_axes:
            coerced = CompassAxis.coerce(axis)
            if coerced not in axes:
                axes.append(coerced)
        object.__setattr__(self, "compass_axes", tuple(axes))

    def scene(self, scene_id: str) -> Scene | None:
        """Return the scene with ``scene_id`` or ``None`` when it does not exist."""

        return self._scene_index.get(scene_id)  # type: ignore[attr-defined]

    @property
    def first_scene(self) -> Scene | None:
        return self.scenes[0] if self.scenes else None


def _optional_string(value: Any, *, error_message: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(error_message)
    return value.strip() or None


def _echo_from_payload(
    payload: Any, *, scene_id: str, choice: str
) -> EchoTemplate | None:
    if payload is None:
        return None
    if not isinstance(payload, Mapping):
        raise ValueError(
            f"Branch '{choice}' in scene '{scene_id}' must define 'echo_log' as an object."
        )

    echo_type = payload.get("echo_type")
    description = payload.get("description", "")
    strength = payload.get("strength")
    if not isinstance(echo_type, str) or not isinstance(description, str):
        raise ValueError(
            f"Branch '{choice}' in scene '{scene_id}' must provide 'echo_type' and 'description' strings."
        )
    if isinstance(strength, bool) or not isinstance(strength, (int, float)):
        raise ValueError(
            f"Branch '{choice}' in scene '{scene_id}' must provide a numeric echo 'strength'."
        )

    try:
        return EchoTemplate(echo_type, description, strength)
    except (TypeError, ValueError) as exc:
        raise ValueError(
            f"Branch '{choice}' in scene '{scene_id}' has an invalid echo: {exc}"
        ) from exc


def _compass_change_from_payload(
    payload: Any, *, scene_id: str, choice: str
) -> CompassChange | None:
    if payload is None:
        return None
    if not isinstance(payload, Mapping):
        raise ValueError(
            f"Branch '{choice}' in scene '{scene_id}' must define 'compass_change' as an object."
        )

    axis = payload.get("axis")
    delta = payload.get("delta")
    direction = payload.get("direction")
    if not isinstance(axis, str):
        raise ValueError(
            f"Branch '{choice}' in scene '{scene_id}' must provide a compass 'axis' string."
        )
    if isinstance(delta, bool) or not isinstance(delta, (int, float)):
        raise ValueError(
            f"Branch '{choice}' in scene '{scene_id}' must provide a numeric compass 'delta'."
        )
    if direction is not None and not isinstance(direction, str):
        raise ValueError(
            f"Branch '{choice}' in scene '{scene_id}' must use a string compass 'direction'."
        )
    if abs(delta) > MAX_BRANCH_DELTA:
        raise ValueError(
            f"Branch '{choice}' in scene '{scene_id}' compass delta must be between "
            f"-{MAX_BRANCH_DELTA} and {MAX_BRANCH_DELTA}."
        )

    try:
        return CompassChange(CompassAxis(axis), apply_direction(float(delta), direction))
    except (TypeError, ValueError) as exc:
        raise ValueError(
            f"Branch '{choice}' in scene '{scene_id}' has an invalid compass change: {exc}"
        ) from exc


def load_scenario_from_mapping(definition: Mapping[str, Any]) -> Scenario:
    """Convert a parsed JSON scenario definition into a :class:`Scenario`.

    The mapping must provide ``id`` and a ``scenes`` list. Each scene has an
    ``id``, optional ``title``/``description``/``next_scene_id`` and a list of
    ``branches`` (``choice`` plus optional ``next_scene_id``, ``echo_log`` and
    ``compass_change``). Every scene reference must resolve to a scene in the
    same scenario.
    """

    if not isinstance(definition, Mapping):
        raise ValueError("Scenario definitions must be objects.")

    scenario_id = definition.get("id")
    if not isinstance(scenario_id, str) or not scenario_id.strip():
        raise ValueError("Scenario definitions require a non-empty 'id' string.")

    title = definition.get("title", "")
    if not isinstance(title, str):
        raise ValueError(f"Scenario '{scenario_id}' must use a string 'title'.")

    raw_axes = definition.get("compass_axes", [])
    if not isinstance(raw_axes, list) or not all(
        isinstance(entry, str) for entry in raw_axes
    ):
        raise ValueError(
            f"Scenario '{scenario_id}' must define 'compass_axes' as a list of strings."
        )
    try:
        axes = tuple(CompassAxis(entry) for entry in raw_axes)
    except ValueError as exc:
        raise ValueError(f"Scenario '{scenario_id}' has an invalid axis: {exc}") from exc

    raw_scenes = definition.get("scenes")
    if not isinstance(raw_scenes, list):
        raise ValueError(f"Scenario '{scenario_id}' must define a list of scenes.")

    scenes: list[Scene] = []
    pending_targets: list[tuple[str, str]] = []
    for index, scene_payload in enumerate(raw_scenes):
        if not isinstance(scene_payload, Mapping):
            raise ValueError(
                f"Scene #{index} in scenario '{scenario_id}' must be an object definition."
            )

        scene_id = scene_payload.get("id")
        if not isinstance(scene_id, str) or not scene_id.strip():
            raise ValueError(
                f"Scene #{index} in scenario '{scenario_id}' requires a non-empty 'id' string."
            )
        scene_id = scene_id.strip()

        scene_title = scene_payload.get("title", "")
        description = scene_payload.get("description", "")
        if not isinstance(scene_title, str) or not isinstance(description, str):
            raise ValueError(
                f"Scene '{scene_id}' must use strings for 'title' and 'description'."
            )

        next_scene_id = _optional_string(
            scene_payload.get("next_scene_id"),
            error_message=f"Scene '{scene_id}' must use a string 'next_scene_id'.",
        )
        if next_scene_id:
            pending_targets.append((scene_id, next_scene_id))

        raw_branches = scene_payload.get("branches", [])
        if not isinstance(raw_branches, list):
            raise ValueError(f"Scene '{scene_id}' must define a list of branches.")

        branches: list[Branch] = []
        seen_choices: set[str] = set()
        for branch_index, branch_payload in enumerate(raw_branches):
            if not isinstance(branch_payload, Mapping):
                raise ValueError(
                    f"Branch #{branch_index} in scene '{scene_id}' must be an object definition."
                )

            choice = branch_payload.get("choice")
            if not isinstance(choice, str) or not choice.strip():
                raise ValueError(
                    f"Branch #{branch_index} in scene '{scene_id}' must provide a 'choice' string."
                )
            if choice in seen_choices:
                raise ValueError(
                    f"Scene '{scene_id}' defines duplicate choice '{choice}'."
                )
            seen_choices.add(choice)

            target = _optional_string(
                branch_payload.get("next_scene_id"),
                error_message=(
                    f"Branch '{choice}' in scene '{scene_id}' must use a string 'next_scene_id'."
                ),
            )
            if target:
                pending_targets.append((scene_id, target))

            branches.append(
                Branch(
                    choice=choice,
                    next_scene_id=target,
                    echo_log=_echo_from_payload(
                        branch_payload.get("echo_log"), scene_id=scene_id, choice=choice
                    ),
                    compass_change=_compass_change_from_payload(
                        branch_payload.get("compass_change"),
                        scene_id=scene_id,
                        choice=choice,
                    ),
                )
            )

        scenes.append(
            Scene(
                id=scene_id,
                title=scene_title,
                branches=tuple(branches),
                next_scene_id=next_scene_id,
                description=description.strip(),
            )
        )

    scenario = Scenario(id=scenario_id, scenes=tuple(scenes), title=title, compass_axes=axes)

    for source, target in pending_targets:
        if scenario.scene(target) is None:
            raise ValueError(f"Scene '{source}' references unknown scene '{target}'.")

    return scenario


def load_scenario_from_file(path: str | Path) -> Scenario:
    """Load a scenario definition from a JSON file on disk."""

    data_path = Path(path)
    with data_path.open("r", encoding="utf-8") as handle:
        raw_data = json.load(handle)

    if not isinstance(raw_data, Mapping):
        raise ValueError("Scenario files must contain an object at the top level.")

    return load_scenario_from_mapping(raw_data)


__all__ = [
    "Branch",
    "EchoTemplate",
    "Scenario",
    "Scene",
    "load_scenario_from_file",
    "load_scenario_from_mapping",
]
