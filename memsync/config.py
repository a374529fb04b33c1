"""
Configuration resolved once from the environment at process start.

Every component receives the frozen ``Settings`` (or just its ``Paths``)
explicitly; nothing below this module reads ``os.environ``.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .errors import ConfigError

DEFAULT_API_URL = "https://api.supermemory.ai"
DEFAULT_AUTH_PROFILE = "supermemory:default"
OPENCLAW_ROOT = Path.home() / ".openclaw"

PLACEHOLDER_TAGS = {"your-name", "your_name", "yourname", "test", "example", ""}
MIN_TAG_LENGTH = 2
MAX_RETRY_DELAY_SEC = 30.0


@dataclass(frozen=True)
class Paths:
    auth_file: Path
    sessions_meta: Path
    workspace: Path
    state_file: Path
    pid_file: Path
    log_file: Path


@dataclass(frozen=True)
class Settings:
    container_tag: str
    paths: Paths
    api_url: str = DEFAULT_API_URL
    auth_profile: str = DEFAULT_AUTH_PROFILE
    batch_size: int = 40
    poll_interval_sec: float = 120.0
    min_new_records: int = 5
    max_record_chars: int = 5000
    api_timeout_sec: float = 30.0
    retry_attempts: int = 3
    retry_base_delay_sec: float = 1.0
    retry_max_delay_sec: float = MAX_RETRY_DELAY_SEC
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            container_tag=validate_container_tag(env.get("SM_CONTAINER_TAG")),
            paths=load_paths(env),
            api_url=(env.get("SM_API_URL") or DEFAULT_API_URL).rstrip("/"),
            auth_profile=env.get("SM_AUTH_PROFILE") or DEFAULT_AUTH_PROFILE,
            batch_size=max(2, _env_int(env, "SM_BATCH_SIZE", 40)),
            poll_interval_sec=float(max(1, _env_int(env, "SM_POLL_INTERVAL_SEC", 120))),
            min_new_records=max(1, _env_int(env, "SM_MIN_NEW_MESSAGES", 5)),
            max_record_chars=max(1, _env_int(env, "SM_MAX_RECORD_CHARS", 5000)),
            api_timeout_sec=max(1, _env_int(env, "SM_API_TIMEOUT_MS", 30000)) / 1000.0,
            retry_attempts=max(1, _env_int(env, "SM_API_RETRY_ATTEMPTS", 3)),
            retry_base_delay_sec=max(0, _env_int(env, "SM_API_RETRY_BASE_DELAY_MS", 1000)) / 1000.0,
            log_level=(env.get("SM_LOG_LEVEL") or "INFO").upper(),
        )


def validate_container_tag(raw: str | None) -> str:
    if raw is None:
        raise ConfigError("SM_CONTAINER_TAG is not set. Set a unique identifier to avoid data mixing.")
    tag = raw.strip()
    if tag.lower() in PLACEHOLDER_TAGS:
        raise ConfigError(f'SM_CONTAINER_TAG="{raw}" is a placeholder value. Please set a unique identifier.')
    if len(tag) < MIN_TAG_LENGTH:
        raise ConfigError(f"SM_CONTAINER_TAG must be at least {MIN_TAG_LENGTH} characters.")
    return tag


def load_paths(environ: Mapping[str, str] | None = None) -> Paths:
    env = os.environ if environ is None else environ
    workspace = _env_path(env, "SM_WORKSPACE", OPENCLAW_ROOT / "workspace")
    memory_dir = workspace / "memory"
    return Paths(
        auth_file=_env_path(env, "SM_AUTH_PATH", OPENCLAW_ROOT / "agents" / "main" / "agent" / "auth-profiles.json"),
        sessions_meta=_env_path(env, "SM_SESSIONS_META", OPENCLAW_ROOT / "agents" / "main" / "sessions" / "sessions.json"),
        workspace=workspace,
        state_file=_env_path(env, "SM_STATE_FILE", memory_dir / "sm-sync-state.json"),
        pid_file=_env_path(env, "SM_PID_FILE", memory_dir / "sm-daemon.pid"),
        log_file=_env_path(env, "SM_LOG_FILE", memory_dir / "sm-daemon.log"),
    )


def load_api_key(settings: Settings) -> str:
    """Read the API key for the configured profile from the auth-profiles file."""
    path = settings.paths.auth_file
    try:
        auth = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Cannot read auth file {path}: {exc.strerror or exc}") from exc
    except ValueError as exc:
        raise ConfigError(f"Auth file {path} is not valid JSON: {exc}") from exc

    profiles = auth.get("profiles") if isinstance(auth, dict) else None
    profile = profiles.get(settings.auth_profile) if isinstance(profiles, dict) else None
    api_key = profile.get("apiKey") if isinstance(profile, dict) else None
    if not isinstance(api_key, str) or not api_key.strip():
        raise ConfigError(f"No {settings.auth_profile} profile found in {path}")
    return api_key.strip()


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_path(env: Mapping[str, str], name: str, default: Path) -> Path:
    raw = env.get(name)
    if raw and raw.strip():
        return Path(raw.strip()).expanduser()
    return default
