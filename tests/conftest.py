"""
Shared pytest fixtures for memsync tests.

Nothing here touches the network or spawns processes: remote calls go to an
in-memory ``FakeClient``, process inspection goes to ``FakeInspector`` and
every sleep is recorded instead of taken.
"""

import json
import logging
from pathlib import Path
from typing import Any

import pytest

from memsync.client import Document
from memsync.config import Paths, Settings
from memsync.errors import RemoteCallError


class FakeClient:
    """
    Records every ``add`` call. ``failures`` is consumed one entry per call:
    an exception instance is raised, ``None`` means succeed.
    """

    def __init__(self, failures: list[Exception | None] | None = None, on_add=None):
        self.failures = list(failures or [])
        self.added: list[Document] = []
        self.attempts: list[Document] = []
        self.timeouts: list[float] = []
        self.on_add = on_add
        self.search_response: dict[str, Any] = {"results": [], "timing": 3, "total": 0}
        self.profile_response: dict[str, Any] = {"profile": {"static": [], "dynamic": []}}
        self.queries: list[tuple[str, Any]] = []

    def add(self, document: Document, *, timeout: float) -> dict[str, Any]:
        self.attempts.append(document)
        self.timeouts.append(timeout)
        if self.on_add is not None:
            self.on_add(document)
        if self.failures:
            failure = self.failures.pop(0)
            if failure is not None:
                raise failure
        self.added.append(document)
        return {"id": f"doc-{len(self.added)}", "status": "queued"}

    def search(self, query, *, container_tag, timeout, limit=10, threshold=0.4):
        self.queries.append(("search", query))
        return self.search_response

    def profile(self, *, container_tag, timeout, query=None, threshold=0.4):
        self.queries.append(("profile", query))
        return self.profile_response


class FakeInspector:
    def __init__(self, processes: dict[int, str] | None = None):
        self.processes = dict(processes or {})

    def is_alive(self, pid: int) -> bool:
        return pid in self.processes

    def command_line(self, pid: int) -> str:
        return self.processes.get(pid, "")


class SequenceJitter:
    """Deterministic stand-in for ``random.random``."""

    def __init__(self, values: list[float]):
        self.values = list(values)

    def __call__(self) -> float:
        return self.values.pop(0) if self.values else 0.0


def status_error(status: int) -> RemoteCallError:
    return RemoteCallError(f"HTTP {status}", status_code=status)


def message_line(role: str, text: str, timestamp: Any = None) -> str:
    message: dict[str, Any] = {"role": role, "content": text}
    if timestamp is not None:
        message["timestamp"] = timestamp
    return json.dumps({"type": "message", "message": message})


def write_session(path: Path, lines: list[str], append: bool = False) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a" if append else "w", encoding="utf-8") as f:
        for line in lines:
            f.write(line + "\n")


def chat_lines(count: int, start: int = 0) -> list[str]:
    roles = ("user", "assistant")
    return [
        message_line(roles[i % 2], f"message {i}", 1760000000000 + i * 1000)
        for i in range(start, start + count)
    ]


@pytest.fixture(autouse=True)
def _restore_memsync_logger():
    logger = logging.getLogger("memsync")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.fixture()
def paths(tmp_path: Path) -> Paths:
    workspace = tmp_path / "workspace"
    return Paths(
        auth_file=tmp_path / "auth-profiles.json",
        sessions_meta=tmp_path / "sessions" / "sessions.json",
        workspace=workspace,
        state_file=workspace / "memory" / "sm-sync-state.json",
        pid_file=workspace / "memory" / "sm-daemon.pid",
        log_file=workspace / "memory" / "sm-daemon.log",
    )


@pytest.fixture()
def make_settings(paths: Paths):
    def _make(**overrides) -> Settings:
        values: dict[str, Any] = {
            "container_tag": "nn02-andrew",
            "paths": paths,
            "api_url": "https://memory.invalid",
            "batch_size": 40,
            "min_new_records": 5,
            "retry_base_delay_sec": 1.0,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture()
def sessions_index(paths: Paths):
    """Register sessions in the index: ``sessions_index({"main": "sess-1"})``."""

    def _register(sessions: dict[str, str]) -> dict[str, Path]:
        files: dict[str, Path] = {}
        meta: dict[str, Any] = {}
        for key, session_id in sessions.items():
            session_file = paths.sessions_meta.parent / f"{session_id}.jsonl"
            session_file.parent.mkdir(parents=True, exist_ok=True)
            session_file.touch()
            meta[key] = {"sessionFile": str(session_file), "sessionId": session_id}
            files[key] = session_file
        paths.sessions_meta.parent.mkdir(parents=True, exist_ok=True)
        paths.sessions_meta.write_text(json.dumps(meta), encoding="utf-8")
        return files

    return _register


@pytest.fixture()
def auth_file(paths: Paths) -> Path:
    paths.auth_file.write_text(
        json.dumps({"profiles": {"supermemory:default": {"apiKey": "sm_testkey123"}}}),
        encoding="utf-8",
    )
    return paths.auth_file
