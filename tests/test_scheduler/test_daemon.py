"""Tests for the scheduler daemon's cadences and subprocess dispatch."""

from __future__ import annotations

import subprocess
from datetime import datetime, timedelta

import pytest

from wow_osint.config import SchedulerConfig
from wow_osint.scheduler import Cadence, SchedulerDaemon, default_cadences


@pytest.fixture
def daemon() -> SchedulerDaemon:
    cadences = [
        Cadence("fast", ["schedule", "auctions"], timedelta(minutes=10)),
        Cadence("slow", ["schedule", "realms"], timedelta(days=1)),
    ]
    return SchedulerDaemon(cadences, config_path="cfg.toml", cli_exe="wow-osint")


class TestCadence:
    def test_never_run_is_due(self):
        assert Cadence("x", [], timedelta(minutes=1)).is_due(datetime(2026, 1, 1))

    def test_due_at_next_run(self):
        at = datetime(2026, 1, 1, 12)
        cadence = Cadence("x", [], timedelta(minutes=1), next_run=at)
        assert not cadence.is_due(at - timedelta(seconds=1))
        assert cadence.is_due(at)

    def test_default_cadences_follow_config(self):
        cadences = {c.label: c for c in default_cadences(SchedulerConfig(auction_resync_minutes=7))}
        assert cadences["schedule-auctions"].every == timedelta(minutes=7)
        assert cadences["schedule-realms"].every == timedelta(days=1)
        assert cadences["schedule-commodity"].args == ["schedule", "commodity"]
        assert cadences["sweep-credentials"].args == ["sweep-credentials"]
        assert len(cadences) == 6


class TestRunDue:
    def test_runs_due_tasks_then_waits(self, daemon, monkeypatch):
        calls: list[list[str]] = []
        monkeypatch.setattr(daemon, "_run_cmd", lambda args, label: calls.append(args) or True)

        now = datetime.now()
        assert daemon.run_due(now) == ["fast", "slow"]
        assert daemon.run_due(now) == []
        assert calls == [["schedule", "auctions"], ["schedule", "realms"]]

    def test_only_elapsed_cadence_runs(self, daemon, monkeypatch):
        monkeypatch.setattr(daemon, "_run_cmd", lambda args, label: True)
        daemon.run_due()
        assert daemon.run_due(datetime.now() + timedelta(minutes=11)) == ["fast"]

    def test_failed_task_is_still_rescheduled(self, daemon, monkeypatch):
        monkeypatch.setattr(daemon, "_run_cmd", lambda args, label: False)
        daemon.run_due()
        assert all(c.next_run is not None for c in daemon.cadences)


class TestRunCmd:
    def test_forwards_config_path(self, daemon, monkeypatch):
        seen = {}

        def fake_run(cmd, timeout):
            seen["cmd"] = cmd
            return subprocess.CompletedProcess(cmd, 0)

        monkeypatch.setattr(subprocess, "run", fake_run)
        assert daemon._run_cmd(["schedule", "guilds"], "guilds")
        assert seen["cmd"] == ["wow-osint", "schedule", "guilds", "--config", "cfg.toml"]

    def test_nonzero_exit_is_failure(self, daemon, monkeypatch):
        monkeypatch.setattr(subprocess, "run", lambda cmd, timeout: subprocess.CompletedProcess(cmd, 2))
        assert not daemon._run_cmd(["schedule", "guilds"], "guilds")

    def test_start_failure_is_logged_not_raised(self, daemon, monkeypatch):
        def boom(cmd, timeout):
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr(subprocess, "run", boom)
        assert not daemon._run_cmd(["schedule", "guilds"], "guilds")
