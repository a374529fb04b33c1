"""
Durable per-source sync progress.

On disk::

    {"sources": {"<key>": {"lastLine": 120, "batchCount": 3}},
     "totalSynced": 80, "lastSyncTime": 1760000000000}

Loading never fails: a missing or unreadable file yields an empty state.
Saving writes a sibling temp file and renames it over the target, so a
reader sees either the old or the new document.
"""

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .scrub import scrub

logger = logging.getLogger(__name__)


@dataclass
class SourceProgress:
    last_line: int = 0
    batch_count: int = 0

    def advance_to(self, line: int) -> None:
        """Move the cursor forward; never backwards."""
        if line > self.last_line:
            self.last_line = line

    def to_dict(self) -> dict[str, int]:
        return {"lastLine": self.last_line, "batchCount": self.batch_count}

    @classmethod
    def from_dict(cls, raw: Any) -> "SourceProgress":
        if not isinstance(raw, dict):
            return cls()
        return cls(last_line=_as_int(raw.get("lastLine")), batch_count=_as_int(raw.get("batchCount")))


@dataclass
class SyncState:
    sources: dict[str, SourceProgress] = field(default_factory=dict)
    total_synced: int = 0
    last_sync_time: int = 0

    def progress_for(self, key: str) -> SourceProgress:
        if key not in self.sources:
            self.sources[key] = SourceProgress()
        return self.sources[key]

    def mark_synced(self, now_ms: int | None = None) -> None:
        self.last_sync_time = int(time.time() * 1000) if now_ms is None else now_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "sources": {key: progress.to_dict() for key, progress in self.sources.items()},
            "totalSynced": self.total_synced,
            "lastSyncTime": self.last_sync_time,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "SyncState":
        if not isinstance(raw, dict):
            return cls()
        # older state files keyed progress under "sessions"
        sources_raw = raw.get("sources")
        if not isinstance(sources_raw, dict):
            sources_raw = raw.get("sessions")
        sources: dict[str, SourceProgress] = {}
        if isinstance(sources_raw, dict):
            for key, value in sources_raw.items():
                sources[str(key)] = SourceProgress.from_dict(value)
        return cls(
            sources=sources,
            total_synced=_as_int(raw.get("totalSynced")),
            last_sync_time=_as_int(raw.get("lastSyncTime")),
        )


class StateStore:
    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> SyncState:
        if not self.path.exists():
            return SyncState()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("State load failed (%s): %s", self.path, scrub(str(exc)))
            return SyncState()
        return SyncState.from_dict(raw)

    def save(self, state: SyncState) -> bool:
        text = json.dumps(state.to_dict(), indent=2)
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent))
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
            return True
        except OSError as exc:
            logger.error("State save failed (%s): %s", self.path, scrub(str(exc)))
            return False
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

    def read_raw(self) -> dict[str, Any] | None:
        """Best-effort read for display; ``None`` when absent or mid-write."""
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        return raw if isinstance(raw, dict) else None


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return max(0, int(value))
    return 0
