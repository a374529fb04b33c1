"""
Incremental batching of conversation sources into idempotent uploads.

For each source the batcher reads the records past the stored cursor, skips
the source when too few have accumulated, and uploads the rest in fixed-size
batches keyed by ``session-<id>-batch-<n>``. Progress is persisted after
every confirmed batch; a failed batch aborts that source for this pass and
leaves the unsent records behind the cursor for the next one.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from .client import Document, MemoryClient
from .config import Settings
from .retry import CallExecutor
from .scrub import scrub
from .sources import Record, Source, discover_sources, read_records
from .state import StateStore, SyncState

logger = logging.getLogger(__name__)


def batch_custom_id(session_id: str, batch_index: int) -> str:
    return f"session-{session_id}-batch-{batch_index}"


def format_timestamp(value: Any) -> str | None:
    """Render epoch milliseconds or an ISO string as UTC ISO-8601, ``None`` if unusable."""
    dt = _parse_timestamp(value)
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(raw)
        except ValueError:
            return None
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return None


@dataclass(frozen=True)
class Batch:
    source: Source
    index: int
    records: tuple[Record, ...]

    @property
    def custom_id(self) -> str:
        return batch_custom_id(self.source.session_id, self.index)

    @property
    def last_line(self) -> int:
        return self.records[-1].line

    def render(self) -> str:
        lines = []
        for record in self.records:
            ts = format_timestamp(record.timestamp) or "unknown"
            lines.append(f"[{ts}] [{record.role}]: {record.text}")
        return "\n\n".join(lines)

    def session_date(self, today: Callable[[], datetime]) -> str:
        first = _parse_timestamp(self.records[0].timestamp)
        dt = first if first is not None else today()
        return dt.astimezone(timezone.utc).date().isoformat()

    def to_document(self, container_tag: str, today: Callable[[], datetime]) -> Document:
        return Document(
            content=self.render(),
            container_tag=container_tag,
            custom_id=self.custom_id,
            metadata={
                "type": "conversation",
                "session_key": self.source.key,
                "session_id": self.source.session_id,
                "batch_id": str(self.index),
                "session_date": self.session_date(today),
                "message_count": str(len(self.records)),
            },
        )


def plan_batches(records: list[Record], batch_size: int, min_tail: int) -> list[list[Record]]:
    """
    Split *records* into consecutive chunks of *batch_size*. A trailing short
    chunk is kept only when it has at least ``max(min_tail, 2)`` records;
    otherwise it waits for more records to accumulate.
    """
    chunks: list[list[Record]] = []
    for start in range(0, len(records), batch_size):
        chunk = records[start:start + batch_size]
        if len(chunk) < 2:
            continue
        if len(chunk) < batch_size and len(chunk) < max(min_tail, 2):
            continue
        chunks.append(chunk)
    return chunks


@dataclass
class PassReport:
    sources_seen: int = 0
    sources_skipped: int = 0
    batches_uploaded: int = 0
    records_uploaded: int = 0
    failures: int = 0


class IncrementalBatcher:
    def __init__(
        self,
        settings: Settings,
        client: MemoryClient,
        executor: CallExecutor,
        store: StateStore,
        stop_event: threading.Event | None = None,
        discover: Callable[[Path], list[Source]] = discover_sources,
        today: Callable[[], datetime] | None = None,
    ):
        self.settings = settings
        self.client = client
        self.executor = executor
        self.store = store
        self._stop_event = stop_event
        self._discover = discover
        self._today = today or (lambda: datetime.now(timezone.utc))

    def run_pass(self, state: SyncState) -> PassReport:
        report = PassReport()
        sources = self._discover(self.settings.paths.sessions_meta)
        if not sources:
            logger.warning("No sessions to sync")
            return report

        for source in sources:
            if self._stopping():
                logger.info("Stop requested, ending pass early")
                break
            report.sources_seen += 1
            self.sync_source(source, state, report)
        return report

    def sync_source(self, source: Source, state: SyncState, report: PassReport) -> None:
        try:
            self._sync_source(source, state, report)
        except Exception as exc:
            report.failures += 1
            logger.error("%s: sync failed, skipping source this pass: %s", source.key, scrub(str(exc) or repr(exc)))

    def _sync_source(self, source: Source, state: SyncState, report: PassReport) -> None:
        progress = state.progress_for(source.key)
        try:
            records, lines_read = read_records(source.path, progress.last_line, self.settings.max_record_chars)
        except FileNotFoundError:
            logger.warning("%s: session file disappeared (%s), skipping", source.key, source.path)
            report.sources_skipped += 1
            return
        except OSError as exc:
            logger.warning("%s: cannot read %s: %s", source.key, source.path, scrub(str(exc)))
            report.sources_skipped += 1
            return

        minimum = self.settings.min_new_records
        if len(records) < minimum:
            logger.info("%s: %d new (need %d)", source.key, len(records), minimum)
            report.sources_skipped += 1
            return

        chunks = plan_batches(records, self.settings.batch_size, minimum)
        uploaded = 0
        reached = progress.last_line
        for chunk in chunks:
            if self._stopping():
                break
            batch = Batch(source=source, index=progress.batch_count + 1, records=tuple(chunk))
            if not self._upload(batch, report):
                break
            progress.batch_count = batch.index
            state.total_synced += len(chunk)
            uploaded += len(chunk)
            reached = batch.last_line
            progress.advance_to(reached)
            self.store.save(state)

        # Everything qualifying went out, so trailing filtered lines are consumed too.
        cursor = lines_read if uploaded == len(records) else reached
        progress.advance_to(cursor)
        state.mark_synced()
        self.store.save(state)

    def _upload(self, batch: Batch, report: PassReport) -> bool:
        key = batch.source.key
        document = batch.to_document(self.settings.container_tag, self._today)
        logger.info("Batch #%d %s (%d msgs)...", batch.index, key, len(batch.records))
        try:
            self.executor.execute(
                lambda timeout: self.client.add(document, timeout=timeout),
                f"Batch #{batch.index} upload",
            )
        except Exception as exc:
            report.failures += 1
            logger.error("%s: batch #%d failed, deferring rest of source: %s", key, batch.index, scrub(str(exc) or repr(exc)))
            return False
        report.batches_uploaded += 1
        report.records_uploaded += len(batch.records)
        logger.info("Batch #%d %s done (%d msgs)", batch.index, key, len(batch.records))
        return True

    def _stopping(self) -> bool:
        return self._stop_event is not None and self._stop_event.is_set()
