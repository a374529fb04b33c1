"""
MCP server exposing the memory index to agents.

Run as a stdio server:
    python -m memsync.mcp_server

Configuration comes from the same SM_* environment variables as the daemon.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from mcp.server.fastmcp import FastMCP

from .client import Document, HttpMemoryClient
from .config import Settings, load_api_key, load_paths
from .control import Controller
from .recall import Recall, format_profile
from .retry import CallExecutor
from .scrub import scrub
from .state import StateStore

mcp = FastMCP("Memory Recall Server")


@dataclass
class _Runtime:
    settings: Settings
    recall: Recall


# Lazily initialised so importing the module never needs credentials.
_runtime: _Runtime | None = None


def _get_runtime() -> _Runtime:
    global _runtime
    if _runtime is None:
        settings = Settings.from_env()
        client = HttpMemoryClient(settings.api_url, load_api_key(settings))
        _runtime = _Runtime(settings=settings, recall=Recall(settings, client, CallExecutor.from_settings(settings)))
    return _runtime


def _normalize_tags(tags: list[str] | str | None) -> list[str]:
    if tags is None:
        return []
    if isinstance(tags, list):
        return [str(t).strip() for t in tags if str(t).strip()]
    raw = str(tags).strip()
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
        if isinstance(parsed, list):
            return [str(t).strip() for t in parsed if str(t).strip()]
    except ValueError:
        pass
    return [part.strip() for part in raw.split(",") if part.strip()]


def _safe_slug(value: str) -> str:
    s = re.sub(r"[^a-zA-Z0-9._-]+", "_", (value or "").strip().lower())
    s = s.strip("._-")
    return (s or "note")[:120]


@mcp.tool()
def recall_memory(query: str, limit: int = 10) -> str:
    """
    Search indexed conversations and notes for context relevant to a query.
    """
    query = (query or "").strip()
    if not query:
        return "Query cannot be empty."
    try:
        return _get_runtime().recall.recall(query, limit=max(1, min(int(limit), 50)))
    except Exception as e:
        return f"Failed to query memory: {scrub(str(e) or repr(e))}"


@mcp.tool()
def memory_profile(query: str = "") -> str:
    """
    Return the static and dynamic profile facts, optionally focused on a query.
    """
    try:
        profile = _get_runtime().recall.profile((query or "").strip() or None)
    except Exception as e:
        return f"Failed to fetch profile: {scrub(str(e) or repr(e))}"
    return "\n".join(format_profile(profile))


@mcp.tool()
def save_memory_note(title: str, content: str, tags: list[str] | str | None = None) -> str:
    """
    Save a conversation summary or key conclusions to the memory index.
    """
    title = (title or "").strip()
    content = (content or "").strip()
    if not title:
        return "Failed to save memory: title cannot be empty."
    if not content:
        return "Failed to save memory: content cannot be empty."

    tag_list = _normalize_tags(tags)
    custom_id = f"note-{_safe_slug(title)}"
    try:
        runtime = _get_runtime()
    except Exception as e:
        return f"Failed to save memory: {scrub(str(e) or repr(e))}"
    document = Document(
        content=f"# {title}\n\nTags: {', '.join(tag_list)}\nDate: {datetime.now().isoformat()}\n\n{content}\n",
        container_tag=runtime.settings.container_tag,
        custom_id=custom_id,
        metadata={"type": "manual_note", "title": title, "tags": ",".join(tag_list)},
    )
    recall = runtime.recall
    try:
        recall.executor.execute(lambda timeout: recall.client.add(document, timeout=timeout), "Note upload")
    except Exception as e:
        return f"Failed to save memory: {scrub(str(e) or repr(e))}"
    return f"Saved memory note {custom_id}"


@mcp.tool()
def sync_status() -> str:
    """
    Report whether the sync daemon is alive and what it has synced so far.
    """
    paths = load_paths()
    controller = Controller(paths)
    pid = controller.read_pid()
    report: dict[str, Any] = {
        "checked_at": datetime.now().isoformat(),
        "daemon": {"running": controller.is_daemon_running(pid), "pid": pid},
        "state": StateStore(paths.state_file).read_raw(),
    }
    return json.dumps(report, ensure_ascii=False, indent=2)


def main() -> None:
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
