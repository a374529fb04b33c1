"""
Daemon control: start / stop / restart / status / logs / check.

The PID file is trusted only while the process it names is alive *and* its
command line identifies it as the sync daemon, so a PID reused by an
unrelated process is treated as stale and the file is removed before any
decision is made.
"""

import argparse
import json
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Callable, Protocol, TextIO

from .config import Paths, load_paths
from .state import StateStore

DAEMON_MODULE = "memsync.daemon"
START_GRACE_SEC = 0.5
STOP_WAIT_SEC = 5
KILL_GRACE_SEC = 0.5
LOG_POLL_SEC = 0.5


class ProcessInspector(Protocol):
    def is_alive(self, pid: int) -> bool: ...

    def command_line(self, pid: int) -> str: ...


class SystemProcessInspector:
    def is_alive(self, pid: int) -> bool:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        except OSError:
            return False
        return True

    def command_line(self, pid: int) -> str:
        try:
            raw = Path(f"/proc/{pid}/cmdline").read_bytes()
            return raw.replace(b"\0", b" ").decode("utf-8", errors="replace").strip()
        except OSError:
            pass
        # no procfs (macOS)
        try:
            proc = subprocess.run(
                ["ps", "-o", "command=", "-p", str(pid)],
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (OSError, subprocess.SubprocessError):
            return ""
        return proc.stdout.strip() if proc.returncode == 0 else ""


def spawn_detached(command: list[str], stderr_path: Path) -> int:
    with open(os.devnull, "rb") as devnull, open(stderr_path, "ab") as err:
        proc = subprocess.Popen(
            command,
            stdin=devnull,
            stdout=subprocess.DEVNULL,
            stderr=err,
            start_new_session=True,
            close_fds=True,
        )
    return proc.pid


class Controller:
    def __init__(
        self,
        paths: Paths,
        inspector: ProcessInspector | None = None,
        spawn: Callable[[list[str], Path], int] = spawn_detached,
        kill: Callable[[int, int], None] = os.kill,
        sleep: Callable[[float], None] = time.sleep,
        command: list[str] | None = None,
        marker: str = DAEMON_MODULE,
        out: TextIO | None = None,
    ):
        self.paths = paths
        self.inspector = inspector or SystemProcessInspector()
        self._spawn = spawn
        self._kill = kill
        self._sleep = sleep
        self.command = command or [sys.executable, "-m", DAEMON_MODULE]
        self.marker = marker
        self._out = out

    # -- liveness marker ---------------------------------------------------
    def read_pid(self) -> int | None:
        try:
            raw = self.paths.pid_file.read_text(encoding="utf-8").strip()
        except OSError:
            return None
        try:
            pid = int(raw)
        except ValueError:
            return None
        return pid if pid > 0 else None

    def is_daemon_running(self, pid: int | None) -> bool:
        if not pid or not self.inspector.is_alive(pid):
            return False
        return self.marker in self.inspector.command_line(pid)

    def valid_pid(self, quiet: bool = False) -> int | None:
        """Return the daemon PID if the marker is valid; otherwise clear it."""
        if not self.paths.pid_file.exists():
            return None
        pid = self.read_pid()
        if self.is_daemon_running(pid):
            return pid
        if not quiet:
            self._echo(f"Cleaning stale PID file (PID: {pid if pid else '?'} not running)")
        self._remove_pid_file()
        return None

    def _write_pid_file(self, pid: int) -> None:
        self.paths.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.paths.pid_file.write_text(f"{pid}\n", encoding="utf-8")

    def _remove_pid_file(self) -> None:
        try:
            self.paths.pid_file.unlink()
        except FileNotFoundError:
            pass

    # -- commands ----------------------------------------------------------
    def start(self) -> int:
        existing = self.valid_pid()
        if existing:
            self._echo(f"Already running (PID: {existing})")
            return 0

        log_file = self.paths.log_file
        log_file.parent.mkdir(parents=True, exist_ok=True)
        stderr_path = log_file.with_name(log_file.name + ".stderr")
        try:
            pid = self._spawn(self.command, stderr_path)
        except OSError as exc:
            self._echo(f"Failed to start daemon: {exc}")
            return 1
        self._write_pid_file(pid)

        self._sleep(START_GRACE_SEC)
        if self.is_daemon_running(self.read_pid()):
            self._echo(f"Started (PID: {pid})")
            return 0
        self._echo(f"Failed to start daemon (check logs: {log_file}, {stderr_path})")
        self._remove_pid_file()
        return 1

    def stop(self) -> int:
        pid = self.valid_pid()
        if not pid:
            self._echo("Not running")
            return 0

        self._signal(pid, signal.SIGTERM)
        waited = 0
        while self.is_daemon_running(pid) and waited < STOP_WAIT_SEC:
            self._sleep(1)
            waited += 1

        if self.is_daemon_running(pid):
            self._echo(f"Force killing PID {pid}...")
            self._signal(pid, signal.SIGKILL)
            self._sleep(KILL_GRACE_SEC)

        self._remove_pid_file()
        self._echo("Stopped")
        return 0

    def restart(self) -> int:
        self.stop()
        self._sleep(1)
        return self.start()

    def status(self) -> int:
        pid = self.valid_pid()
        if not pid:
            self._echo("Not running")
            return 0
        self._echo(f"Running (PID: {pid})")
        state = StateStore(self.paths.state_file).read_raw()
        if state is not None:
            self._echo("State:")
            self._echo(json.dumps(state, indent=2))
        return 0

    def check(self) -> int:
        return 0 if self.valid_pid(quiet=True) else 1

    def logs(self, follow: bool = True, lines: int = 10) -> int:
        log_file = self.paths.log_file
        if not log_file.exists():
            self._echo(f"Log file not found: {log_file}")
            return 1
        try:
            with open(log_file, "r", encoding="utf-8", errors="replace") as f:
                for line in f.readlines()[-lines:] if lines > 0 else []:
                    self._write(line)
                while follow:
                    line = f.readline()
                    if line:
                        self._write(line)
                    else:
                        self._sleep(LOG_POLL_SEC)
        except KeyboardInterrupt:
            pass
        return 0

    # -- helpers -----------------------------------------------------------
    def _signal(self, pid: int, signum: int) -> None:
        try:
            self._kill(pid, signum)
        except ProcessLookupError:
            pass

    def _echo(self, message: str) -> None:
        self._write(message + "\n")

    def _write(self, text: str) -> None:
        out = self._out or sys.stdout
        out.write(text)
        out.flush()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="memsync-ctl",
        description="Control the memory auto-sync daemon.",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("start", help="Start the daemon (with stale PID cleanup).")
    sub.add_parser("stop", help="Stop the daemon (graceful, with fallback to force kill).")
    sub.add_parser("restart", help="Restart the daemon.")
    sub.add_parser("status", help="Show daemon status and sync state.")
    p_logs = sub.add_parser("logs", help="Follow log output.")
    p_logs.add_argument("-n", "--lines", type=int, default=10, help="Lines of history to show first (default: 10).")
    p_logs.add_argument("--no-follow", action="store_true", help="Print recent lines and exit.")
    sub.add_parser("check", help="Silent liveness check (exit 0 if running).")
    return parser


def main(argv: list[str] | None = None, controller: Controller | None = None) -> int:
    args = _build_parser().parse_args(argv)
    ctl = controller or Controller(load_paths())

    if args.command == "start":
        return ctl.start()
    if args.command == "stop":
        return ctl.stop()
    if args.command == "restart":
        return ctl.restart()
    if args.command == "status":
        return ctl.status()
    if args.command == "logs":
        return ctl.logs(follow=not args.no_follow, lines=args.lines)
    if args.command == "check":
        return ctl.check()
    return 1


if __name__ == "__main__":
    sys.exit(main())
