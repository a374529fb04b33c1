"""
Conversation sources: discovery from the session index and incremental
reading of the per-session JSONL logs.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

from .scrub import scrub

logger = logging.getLogger(__name__)

CHAT_ROLES = ("user", "assistant")
HEARTBEAT_TEXT = "HEARTBEAT_OK"
HEARTBEAT_PROMPT_PREFIX = "Read HEARTBEAT.md"


@dataclass(frozen=True)
class Source:
    key: str
    session_id: str
    path: Path


@dataclass(frozen=True)
class Record:
    role: str
    text: str
    timestamp: Any
    line: int


def discover_sources(sessions_meta: Path) -> list[Source]:
    """List sessions from the index whose log file currently exists."""
    try:
        meta = json.loads(Path(sessions_meta).read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.warning("Sessions index not found: %s", sessions_meta)
        return []
    except (OSError, ValueError) as exc:
        logger.warning("Sessions index unreadable (%s): %s", sessions_meta, scrub(str(exc)))
        return []
    if not isinstance(meta, dict):
        logger.warning("Sessions index has unexpected shape: %s", sessions_meta)
        return []

    sources: list[Source] = []
    for key, entry in meta.items():
        if not isinstance(entry, dict):
            continue
        session_file = entry.get("sessionFile")
        if not isinstance(session_file, str) or not session_file:
            continue
        path = Path(session_file).expanduser()
        if not path.exists():
            continue
        session_id = entry.get("sessionId")
        sources.append(Source(key=str(key), session_id=str(session_id or key), path=path))
    return sources


def read_records(path: Path, after_line: int, max_chars: int = 5000) -> tuple[list[Record], int]:
    """
    Return qualifying records after line *after_line* and the last line number
    consumed. A final line without a newline is still being written and is left
    for the next read.
    """
    records: list[Record] = []
    consumed = after_line
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        for line_no, raw in _complete_lines(f):
            consumed = line_no
            if line_no <= after_line:
                continue
            record = parse_record(raw, line_no, max_chars)
            if record is not None:
                records.append(record)
    return records, max(consumed, after_line)


def parse_record(raw: str, line_no: int, max_chars: int = 5000) -> Record | None:
    line = raw.strip()
    if not line:
        return None
    try:
        data = json.loads(line)
    except (ValueError, RecursionError):
        return None
    if not isinstance(data, dict) or data.get("type") != "message":
        return None
    message = data.get("message")
    if not isinstance(message, dict):
        return None
    role = message.get("role")
    if role not in CHAT_ROLES:
        return None

    text = _message_text(message.get("content"))
    if not text.strip() or text == HEARTBEAT_TEXT or text.startswith(HEARTBEAT_PROMPT_PREFIX):
        return None

    timestamp = message.get("timestamp") or data.get("timestamp")
    return Record(role=role, text=text[:max_chars], timestamp=timestamp, line=line_no)


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            part.get("text", "")
            for part in content
            if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str)
        ]
        return "\n".join(parts)
    if content is None:
        return ""
    return json.dumps(content, ensure_ascii=False)


def _complete_lines(f) -> Iterator[tuple[int, str]]:
    for line_no, raw in enumerate(f, start=1):
        if not raw.endswith("\n"):
            return
        yield line_no, raw
