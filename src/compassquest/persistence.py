"""Session and scenario persistence used by the session engine."""

from __future__ import annotations

import asyncio
import json
import os
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Dict, Iterable, List

from .errors import ConcurrentModificationError
from .scenario import Scenario, load_scenario_from_mapping
from .serialization import scenario_to_payload, session_from_payload, session_to_payload
from .session import GameSession, SessionStatus


class SessionStore(ABC):
    """Interface describing how game sessions are persisted.

    Writes may carry the version the caller read. When they do, the store
    rejects the write with :class:`ConcurrentModificationError` if another
    writer got there first, instead of silently overwriting its update.
    """

    @abstractmethod
    async def get(self, session_id: str) -> GameSession | None:
        """Return the stored session or ``None`` when it does not exist."""

    @abstractmethod
    async def put(
        self, session: GameSession, *, expected_version: int | None = None
    ) -> GameSession:
        """Persist ``session`` and return the stored copy with its new version.

        Args:
            session: The aggregate to store.
            expected_version: Version the caller based its changes on. ``None``
                skips the check (last write wins); ``0`` means the session must
                not exist yet.

        Raises:
            ConcurrentModificationError: If ``expected_version`` does not match
                the stored version.
        """

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        """Remove the stored session if it exists."""

    @abstractmethod
    async def list_sessions(self) -> List[str]:
        """Return all session identifiers stored in this persistence layer."""

    async def find_sessions(
        self,
        *,
        account_id: str | None = None,
        profile_id: str | None = None,
        status: SessionStatus | None = None,
    ) -> List[GameSession]:
        """Return stored sessions matching every filter that is given.

        Results are ordered by start time, oldest first. Stores backed by a
        query engine should override this with a native lookup.
        """

        matches: List[GameSession] = []
        for session_id in await self.list_sessions():
            session = await self.get(session_id)
            if session is None:
                continue
            if account_id is not None and session.account_id != account_id:
                continue
            if profile_id is not None and session.profile_id != profile_id:
                continue
            if status is not None and session.status is not SessionStatus(status):
                continue
            matches.append(session)
        return sorted(matches, key=lambda session: session.start_time)


def _check_version(
    session_id: str, expected_version: int | None, current: GameSession | None
) -> None:
    if expected_version is None:
        return
    actual = current.version if current is not None else 0
    if actual != expected_version:
        raise ConcurrentModificationError(
            session_id, expected_version, current.version if current is not None else None
        )


class InMemorySessionStore(SessionStore):
    """Keep sessions in local process memory."""

    def __init__(self) -> None:
        self._sessions: Dict[str, GameSession] = {}
        self._write_lock = asyncio.Lock()

    async def get(self, session_id: str) -> GameSession | None:
        return self._sessions.get(_validate_identifier(session_id, "session_id"))

    async def put(
        self, session: GameSession, *, expected_version: int | None = None
    ) -> GameSession:
        key = _validate_identifier(session.id, "session_id")
        async with self._write_lock:
            _check_version(key, expected_version, self._sessions.get(key))
            stored = replace(session, version=session.version + 1)
            self._sessions[key] = stored
        return stored

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(_validate_identifier(session_id, "session_id"), None)

    async def list_sessions(self) -> List[str]:
        return sorted(self._sessions.keys())


class FileSessionStore(SessionStore):
    """Persist sessions as JSON files on disk, one document per session."""

    def __init__(self, storage_dir: Path) -> None:
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._write_lock = asyncio.Lock()

    async def get(self, session_id: str) -> GameSession | None:
        session_file = self._session_path(session_id)
        return await asyncio.to_thread(self._read, session_file)

    async def put(
        self, session: GameSession, *, expected_version: int | None = None
    ) -> GameSession:
        session_file = self._session_path(session.id)
        async with self._write_lock:
            current = await asyncio.to_thread(self._read, session_file)
            _check_version(session.id, expected_version, current)
            stored = replace(session, version=session.version + 1)
            await asyncio.to_thread(self._write, session_file, stored)
        return stored

    async def delete(self, session_id: str) -> None:
        session_file = self._session_path(session_id)
        async with self._write_lock:
            await asyncio.to_thread(session_file.unlink, missing_ok=True)

    async def list_sessions(self) -> List[str]:
        return await asyncio.to_thread(self._list_ids)

    def _list_ids(self) -> List[str]:
        return sorted(
            session_path.stem
            for session_path in self.storage_dir.glob("*.json")
            if session_path.is_file()
        )

    @staticmethod
    def _read(session_file: Path) -> GameSession | None:
        if not session_file.exists():
            return None
        payload = json.loads(session_file.read_text(encoding="utf-8"))
        return session_from_payload(payload)

    @staticmethod
    def _write(session_file: Path, session: GameSession) -> None:
        temporary = session_file.with_suffix(".json.tmp")
        temporary.write_text(
            json.dumps(session_to_payload(session), indent=2), encoding="utf-8"
        )
        os.replace(temporary, session_file)

    def _session_path(self, session_id: str) -> Path:
        validated = _validate_file_identifier(session_id, "session_id")
        return self.storage_dir / f"{validated}.json"


class ScenarioStore(ABC):
    """Read-only access to scenario graphs."""

    @abstractmethod
    async def get(self, scenario_id: str) -> Scenario | None:
        """Return the scenario or ``None`` when it does not exist."""


class InMemoryScenarioStore(ScenarioStore):
    """Serve scenarios registered in local process memory."""

    def __init__(self, scenarios: Iterable[Scenario] = ()) -> None:
        self._scenarios: Dict[str, Scenario] = {}
        for scenario in scenarios:
            self.add(scenario)

    def add(self, scenario: Scenario) -> None:
        self._scenarios[scenario.id] = scenario

    async def get(self, scenario_id: str) -> Scenario | None:
        return self._scenarios.get(_validate_identifier(scenario_id, "scenario_id"))


class FileScenarioStore(ScenarioStore):
    """Load scenarios from ``<scenario_id>.json`` files and cache them.

    Scenarios are immutable once loaded, so the cache is never invalidated.
    """

    def __init__(self, storage_dir: Path) -> None:
        self.storage_dir = Path(storage_dir)
        self._cache: Dict[str, Scenario] = {}

    async def get(self, scenario_id: str) -> Scenario | None:
        key = _validate_file_identifier(scenario_id, "scenario_id")
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        scenario_file = self.storage_dir / f"{key}.json"
        scenario = await asyncio.to_thread(self._read, scenario_file)
        if scenario is not None:
            if scenario.id != key:
                raise ValueError(
                    f"Scenario file '{scenario_file.name}' defines scenario '{scenario.id}'."
                )
            self._cache[key] = scenario
        return scenario

    def save(self, scenario: Scenario) -> None:
        """Write ``scenario`` as JSON so it can be served later."""

        key = _validate_file_identifier(scenario.id, "scenario_id")
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        (self.storage_dir / f"{key}.json").write_text(
            json.dumps(scenario_to_payload(scenario), indent=2), encoding="utf-8"
        )
        self._cache.pop(key, None)

    @staticmethod
    def _read(scenario_file: Path) -> Scenario | None:
        if not scenario_file.exists():
            return None
        payload = json.loads(scenario_file.read_text(encoding="utf-8"))
        return load_scenario_from_mapping(payload)


def _validate_identifier(identifier: str, field_name: str) -> str:
    if not isinstance(identifier, str):
        raise TypeError(f"{field_name} must be a string")
    stripped = identifier.strip()
    if not stripped:
        raise ValueError(f"{field_name} must be a non-empty string")
    return stripped


def _validate_file_identifier(identifier: str, field_name: str) -> str:
    validated = _validate_identifier(identifier, field_name)
    if Path(validated).name != validated or validated in {".", ".."}:
        raise ValueError(f"{field_name} must not contain path separators")
    return validated


__all__ = [
    "FileScenarioStore",
    "FileSessionStore",
    "InMemoryScenarioStore",
    "InMemorySessionStore",
    "ScenarioStore",
    "SessionStore",
]
