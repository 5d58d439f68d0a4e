"""Interactive narrative session engine for branching family adventures."""

from .achievements import AchievementThresholds, evaluate_achievements
from .compass import (
    COMPASS_MAX_VALUE,
    COMPASS_MIN_VALUE,
    CompassAxis,
    CompassChange,
    CompassTracking,
    apply_direction,
    clamp_compass_value,
)
from .engine import SessionEngine
from .errors import (
    ConcurrentModificationError,
    InvalidSessionStateError,
    MissingScenarioError,
    SessionEngineError,
    UnknownChoiceError,
    UnknownSceneError,
)
from .persistence import (
    FileScenarioStore,
    FileSessionStore,
    InMemoryScenarioStore,
    InMemorySessionStore,
    ScenarioStore,
    SessionStore,
)
from .projection import SessionStats, build_session_stats
from .scenario import (
    Branch,
    EchoTemplate,
    Scenario,
    Scene,
    load_scenario_from_file,
    load_scenario_from_mapping,
)
from .session import (
    AchievementId,
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
from .settings import EngineSettings

__all__ = [
    "COMPASS_MAX_VALUE",
    "COMPASS_MIN_VALUE",
    "CompassAxis",
    "CompassChange",
    "CompassTracking",
    "apply_direction",
    "clamp_compass_value",
    "Scenario",
    "Scene",
    "Branch",
    "EchoTemplate",
    "load_scenario_from_file",
    "load_scenario_from_mapping",
    "GameSession",
    "SessionStatus",
    "SessionChoice",
    "EchoLog",
    "SessionAchievement",
    "AchievementId",
    "AchievementType",
    "CompassThreshold",
    "FirstChoice",
    "SessionComplete",
    "AchievementThresholds",
    "evaluate_achievements",
    "SessionStats",
    "build_session_stats",
    "SessionStore",
    "ScenarioStore",
    "InMemorySessionStore",
    "InMemoryScenarioStore",
    "FileSessionStore",
    "FileScenarioStore",
    "SessionEngine",
    "EngineSettings",
    "SessionEngineError",
    "InvalidSessionStateError",
    "UnknownSceneError",
    "UnknownChoiceError",
    "MissingScenarioError",
    "ConcurrentModificationError",
]
