"""Scheduler daemon for the periodic crawl policies.

No external scheduler library is required: uses stdlib ``time``,
``signal``, and ``subprocess`` only.

Typical usage via the CLI::

    wowosint start-scheduler

Or import directly::

    from wow_osint.scheduler import SchedulerDaemon
    daemon = SchedulerDaemon(cadences=default_cadences(config.scheduler))
    daemon.start()  # blocks until Ctrl-C

Tasks executed (cadences from ``[scheduler]`` in the config):
  - **sweep-credentials** : circuit-breaker sweep and token refresh
  - **schedule realms**   : connected-realm index resync
  - **schedule auctions** : stale connected-realm auction houses
  - **schedule commodity**: region-wide commodity snapshot
  - **schedule characters** / **schedule guilds**: bulk entity resync

Each task is invoked as a subprocess (the installed CLI), so each run has
its own process, logging, and exit code. A failure in one run is logged
but does not stop the daemon.
"""

from __future__ import annotations

import logging
import platform
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from wow_osint.config import SchedulerConfig

log = logging.getLogger(__name__)


# ── Helpers ───────────────────────────────────────────────────────────────────


def _find_cli_exe() -> str:
    """Locate the wow-osint CLI executable inside the active virtual env.

    Tries ``wowosint`` (alias) before ``wow-osint``, and adds ``.exe``
    suffix on Windows. Raises ``RuntimeError`` if neither is found.
    """
    scripts_dir = Path(sys.executable).parent
    candidates = (
        ["wowosint.exe", "wow-osint.exe", "wowosint", "wow-osint"]
        if platform.system() == "Windows"
        else ["wowosint", "wow-osint"]
    )
    for name in candidates:
        candidate = scripts_dir / name
        if candidate.exists():
            return str(candidate)
    raise RuntimeError(
        f"Could not find wow-osint executable in {scripts_dir}. "
        "Run: pip install -e ."
    )


@dataclass
class Cadence:
    """One periodic CLI task."""

    label: str
    args: list[str]
    every: timedelta
    next_run: Optional[datetime] = None

    def is_due(self, now: datetime) -> bool:
        return self.next_run is None or now >= self.next_run


def default_cadences(config: "SchedulerConfig") -> list[Cadence]:
    """The crawl tasks and their cadences from ``[scheduler]``."""
    return [
        Cadence("sweep-credentials", ["sweep-credentials"],
                timedelta(minutes=config.credential_sweep_minutes)),
        Cadence("schedule-realms", ["schedule", "realms"],
                timedelta(minutes=config.realm_resync_minutes)),
        Cadence("schedule-auctions", ["schedule", "auctions"],
                timedelta(minutes=config.auction_resync_minutes)),
        Cadence("schedule-commodity", ["schedule", "commodity"],
                timedelta(minutes=config.commodity_resync_minutes)),
        Cadence("schedule-characters", ["schedule", "characters"],
                timedelta(minutes=config.character_resync_minutes)),
        Cadence("schedule-guilds", ["schedule", "guilds"],
                timedelta(minutes=config.guild_resync_minutes)),
    ]


# ── Daemon ────────────────────────────────────────────────────────────────────


class SchedulerDaemon:
    """Runs every ``Cadence`` whenever it falls due.

    Parameters
    ----------
    cadences:
        Tasks to run; see ``default_cadences``.
    config_path:
        Forwarded to every CLI sub-command as ``--config``.
    tick_seconds:
        Seconds between due-checks.
    skip_initial:
        When *True*, wait one full cadence before the first run of each
        task instead of running everything immediately.
    cli_exe:
        Full path to the CLI executable. Auto-detected from the active
        virtual environment when *None*.
    """

    def __init__(
        self,
        cadences: list[Cadence],
        config_path: Optional[str] = None,
        tick_seconds: int = 30,
        skip_initial: bool = False,
        cli_exe: Optional[str] = None,
    ) -> None:
        self.cadences = cadences
        self.config_path = config_path
        self.tick_seconds = tick_seconds
        self.skip_initial = skip_initial
        self.cli_exe = cli_exe or _find_cli_exe()
        self._running = False

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _run_cmd(self, args: list[str], label: str) -> bool:
        """Run a CLI sub-command. Returns ``True`` on success (exit code 0).

        Timeout is 3600 s per task.
        """
        cmd = [self.cli_exe] + args
        if self.config_path:
            cmd += ["--config", self.config_path]
        log.info("[%s] Running: %s", label, " ".join(cmd))
        try:
            result = subprocess.run(cmd, timeout=3600)
            if result.returncode == 0:
                log.info("[%s] Completed successfully (exit 0).", label)
                return True
            log.error("[%s] Exited with code %d.", label, result.returncode)
            return False
        except subprocess.TimeoutExpired:
            log.error("[%s] Timed out after 3600 s.", label)
            return False
        except OSError as exc:
            log.error("[%s] Could not start: %s", label, exc, exc_info=True)
            return False

    def run_due(self, now: Optional[datetime] = None) -> list[str]:
        """Run every due task once and reschedule it. Returns the labels run."""
        now = now or datetime.now()
        ran = []
        for cadence in self.cadences:
            if not cadence.is_due(now):
                continue
            self._run_cmd(cadence.args, cadence.label)
            cadence.next_run = datetime.now() + cadence.every
            ran.append(cadence.label)
            log.info(
                "[%s] Next run: %s",
                cadence.label, cadence.next_run.isoformat(timespec="seconds"),
            )
        return ran

    # ── Main loop ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the daemon. Blocks until Ctrl-C (or SIGTERM on Linux/macOS)."""
        if self.skip_initial:
            start = datetime.now()
            for cadence in self.cadences:
                cadence.next_run = start + cadence.every

        log.info(
            "Scheduler started. tasks=%s tick=%ds",
            ",".join(c.label for c in self.cadences), self.tick_seconds,
        )

        self._running = True

        def _shutdown(signum, frame):  # noqa: ANN001
            log.info("Signal %d received; stopping scheduler.", signum)
            self._running = False

        signal.signal(signal.SIGINT, _shutdown)
        if platform.system() != "Windows":
            signal.signal(signal.SIGTERM, _shutdown)

        while self._running:
            self.run_due()
            time.sleep(self.tick_seconds)

        log.info("Scheduler stopped.")
