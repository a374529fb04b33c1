"""
One-shot upload of the workspace memory notes: ``MEMORY.md`` and the most
recent ``memory/YYYY-MM-DD.md`` daily files. Custom ids are fixed per file,
so re-running overwrites the indexed copy instead of duplicating it.
"""

import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping

from .client import Document, HttpMemoryClient, MemoryClient
from .config import Settings, load_api_key
from .errors import ConfigError
from .logs import configure_logging
from .retry import CallExecutor
from .scrub import scrub

logger = logging.getLogger(__name__)

MEMORY_FILE_NAME = "MEMORY.md"
DAILY_NOTE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})\.md$")
MAX_DAILY_NOTES = 14


@dataclass(frozen=True)
class Note:
    path: Path
    custom_id: str
    metadata: dict[str, str]


def collect_notes(workspace: Path, max_daily: int = MAX_DAILY_NOTES) -> list[Note]:
    notes: list[Note] = []
    memory_file = workspace / MEMORY_FILE_NAME
    if memory_file.is_file():
        notes.append(Note(memory_file, "memory-md-main", {"type": "long_term_memory", "file": MEMORY_FILE_NAME}))

    memory_dir = workspace / "memory"
    if memory_dir.is_dir():
        daily = sorted((p for p in memory_dir.iterdir() if DAILY_NOTE_RE.match(p.name)), key=lambda p: p.name, reverse=True)
        for path in daily[:max_daily]:
            date = DAILY_NOTE_RE.match(path.name).group(1)
            notes.append(Note(path, f"daily-{date}", {"type": "daily_memory", "date": date, "file": path.name}))
    return notes


def sync_notes(settings: Settings, client: MemoryClient, executor: CallExecutor) -> int:
    """Upload every non-empty note; return how many were synced."""
    synced = 0
    for note in collect_notes(settings.paths.workspace):
        try:
            content = note.path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            logger.error("Failed to read %s: %s", note.path.name, scrub(str(exc)))
            continue
        if not content:
            continue

        document = Document(
            content=content,
            container_tag=settings.container_tag,
            custom_id=note.custom_id,
            metadata=note.metadata,
        )
        logger.info("Syncing %s...", note.path.name)
        try:
            executor.execute(lambda timeout: client.add(document, timeout=timeout), f"{note.path.name} upload")
        except Exception as exc:
            logger.error("Failed to sync %s: %s", note.path.name, scrub(str(exc) or repr(exc)))
            continue
        logger.info("Synced %s", note.path.name)
        synced += 1
    return synced


def main(
    environ: Mapping[str, str] | None = None,
    client_factory: Callable[[Settings, str], MemoryClient] | None = None,
) -> int:
    configure_logging(None)
    try:
        settings = Settings.from_env(environ)
        api_key = load_api_key(settings)
    except ConfigError as exc:
        logger.error("Config error: %s", scrub(str(exc)))
        return 1

    factory = client_factory or (lambda s, key: HttpMemoryClient(s.api_url, key))
    client = factory(settings, api_key)
    try:
        synced = sync_notes(settings, client, CallExecutor.from_settings(settings))
    finally:
        close = getattr(client, "close", None)
        if callable(close):
            close()
    print(f"Synced {synced} files")
    return 0


if __name__ == "__main__":
    sys.exit(main())
