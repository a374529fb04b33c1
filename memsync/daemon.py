"""
Memory Auto-Sync Daemon

Runs one incremental batching pass over every known conversation, sleeps for
the poll interval, and repeats until SIGTERM/SIGINT. The sync state is loaded
once; the single live instance is what every save writes, including the one
made from the signal handler, so progress from an in-flight pass survives
shutdown.
"""

import logging
import os
import signal
import sys
import threading
from typing import Callable

from . import __version__
from .batcher import IncrementalBatcher, PassReport
from .client import HttpMemoryClient, MemoryClient
from .config import Settings, load_api_key
from .errors import ConfigError
from .logs import configure_logging
from .retry import CallExecutor
from .scrub import scrub
from .state import StateStore, SyncState

logger = logging.getLogger(__name__)


class Daemon:
    def __init__(
        self,
        settings: Settings,
        client: MemoryClient,
        store: StateStore | None = None,
        executor: CallExecutor | None = None,
        batcher: IncrementalBatcher | None = None,
        stop_event: threading.Event | None = None,
    ):
        self.settings = settings
        self.stop_event = stop_event or threading.Event()
        self.store = store or StateStore(settings.paths.state_file)
        self.executor = executor or CallExecutor.from_settings(settings, cancel_event=self.stop_event)
        self.batcher = batcher or IncrementalBatcher(
            settings, client, self.executor, self.store, stop_event=self.stop_event
        )
        self.state: SyncState = self.store.load()
        self.passes = 0

    # -- signals ----------------------------------------------------------
    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self.handle_signal)
        signal.signal(signal.SIGINT, self.handle_signal)

    def handle_signal(self, signum, _frame) -> None:
        logger.info("Received signal %s, shutting down.", signum)
        self.shutdown()

    def shutdown(self) -> None:
        """Persist the live state and ask the loop to stop."""
        self.stop_event.set()
        self.store.save(self.state)

    # -- loop -------------------------------------------------------------
    def run_once(self) -> PassReport | None:
        self.passes += 1
        try:
            report = self.batcher.run_pass(self.state)
        except Exception as exc:
            logger.exception("Unhandled error in sync pass: %s", scrub(str(exc)))
            return None
        self.heartbeat(report)
        return report

    def run_forever(self, max_passes: int | None = None) -> None:
        while not self.stop_event.is_set():
            self.run_once()
            if max_passes is not None and self.passes >= max_passes:
                break
            self.stop_event.wait(self.settings.poll_interval_sec)
        self.store.save(self.state)
        logger.info("Daemon shutdown complete. Synced %d messages total.", self.state.total_synced)

    def heartbeat(self, report: PassReport) -> None:
        logger.info(
            "♥ pass=%d sources=%d skipped=%d batches=%d messages=%d failures=%d total_synced=%d",
            self.passes,
            report.sources_seen,
            report.sources_skipped,
            report.batches_uploaded,
            report.records_uploaded,
            report.failures,
            self.state.total_synced,
        )


def main(
    environ=None,
    client_factory: Callable[[Settings, str], MemoryClient] | None = None,
) -> int:
    os.umask(0o077)
    try:
        settings = Settings.from_env(environ)
    except ConfigError as exc:
        configure_logging(None)
        logger.error("%s", exc)
        return 1

    configure_logging(settings.paths.log_file, settings.log_level)
    logger.info("Starting memory auto-sync daemon v%s (pid %d)", __version__, os.getpid())
    logger.info("API URL: %s  container: %s", settings.api_url, settings.container_tag)
    logger.info(
        "Batch=%d MinNew=%d Poll=%ds Timeout=%.1fs Retries=%d BaseDelay=%.1fs",
        settings.batch_size,
        settings.min_new_records,
        settings.poll_interval_sec,
        settings.api_timeout_sec,
        settings.retry_attempts,
        settings.retry_base_delay_sec,
    )

    try:
        api_key = load_api_key(settings)
    except ConfigError as exc:
        logger.error("Auth error: %s", scrub(str(exc)))
        return 1

    factory = client_factory or (lambda s, key: HttpMemoryClient(s.api_url, key))
    client = factory(settings, api_key)
    logger.info("Client ready")
    try:
        daemon = Daemon(settings, client)
        daemon.install_signal_handlers()
        daemon.run_forever()
    finally:
        close = getattr(client, "close", None)
        if callable(close):
            close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
