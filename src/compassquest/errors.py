"""Exceptions raised by the narrative session engine."""

from __future__ import annotations


class SessionEngineError(Exception):
    """Base class for every failure surfaced by the session engine."""


class InvalidSessionStateError(SessionEngineError, RuntimeError):
    """Raised when a session's status does not allow the requested transition."""

    def __init__(self, session_id: str, status: object, message: str | None = None) -> None:
        status_label = getattr(status, "value", status)
        super().__init__(
            message
            or f"Cannot update session '{session_id}' with status '{status_label}'."
        )
        self.session_id = session_id
        self.status = status


class UnknownSceneError(SessionEngineError, LookupError):
    """Raised when a scene identifier is not part of the session's scenario."""

    def __init__(self, scenario_id: str, scene_id: str) -> None:
        super().__init__(f"Scene '{scene_id}' not found in scenario '{scenario_id}'.")
        self.scenario_id = scenario_id
        self.scene_id = scene_id


class UnknownChoiceError(SessionEngineError, LookupError):
    """Raised when the choice text does not match any branch of the scene."""

    def __init__(self, scene_id: str, choice_text: str) -> None:
        super().__init__(f"Choice '{choice_text}' not found in scene '{scene_id}'.")
        self.scene_id = scene_id
        self.choice_text = choice_text


class MissingScenarioError(SessionEngineError):
    """Raised when a session references a scenario that cannot be loaded."""

    def __init__(self, scenario_id: str, session_id: str | None = None) -> None:
        if session_id is None:
            message = f"Scenario '{scenario_id}' does not exist."
        else:
            message = (
                f"Scenario '{scenario_id}' referenced by session '{session_id}' "
                "does not exist."
            )
        super().__init__(message)
        self.scenario_id = scenario_id
        self.session_id = session_id


class ConcurrentModificationError(SessionEngineError):
    """Raised when a session write is based on a stale version of the aggregate."""

    def __init__(
        self, session_id: str, expected_version: int, actual_version: int | None
    ) -> None:
        super().__init__(
            f"Session '{session_id}' was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})."
        )
        self.session_id = session_id
        self.expected_version = expected_version
        self.actual_version = actual_version


__all__ = [
    "SessionEngineError",
    "InvalidSessionStateError",
    "UnknownSceneError",
    "UnknownChoiceError",
    "MissingScenarioError",
    "ConcurrentModificationError",
]
