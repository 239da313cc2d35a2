"""
Tests for fleet/supervisor.py - process registry and name matching.

Instances run a fake launcher script that stays in the foreground, so its
command line carries the instance directory (and thus the server name).
"""

import subprocess
import time
from pathlib import Path
from types import SimpleNamespace

import pytest

from fleet import supervisor as supervisor_module
from fleet.errors import LifecycleError
from fleet.registry import find_fleet
from fleet.supervisor import find_processes, name_pattern
from fleet.types import ServerState


SUFFIX = "a1b2c3d4"


def test_name_pattern_does_not_match_longer_index():
    pattern = name_pattern("fleet-x-1")
    assert pattern.search("/home/u/unrealircd-fleet-x-1/bin/unrealircd")
    assert pattern.search("fleet-x-1")
    assert not pattern.search("/home/u/unrealircd-fleet-x-10/bin/unrealircd")
    assert not pattern.search("/home/u/unrealircd-fleet-x-12")


def test_start_registers_and_stop_clears(parent_dir: Path, make_fleet_layout, supervisor):
    instance = make_fleet_layout(SUFFIX, 1, installed=True)[0]
    name = f"fleet-{SUFFIX}-1"

    handle = supervisor.start(instance, name)

    assert supervisor.get(name) is handle
    assert supervisor.is_running(name)
    assert handle.log_path == instance / "logs" / "supervisor.log"
    assert "UnrealIRCd starting" in handle.log_path.read_text()

    signalled = supervisor.stop(name)
    assert handle.pid in signalled
    assert supervisor.get(name) is None
    assert not supervisor.is_running(name)


def test_start_refuses_when_already_running(parent_dir: Path, make_fleet_layout, supervisor):
    instance = make_fleet_layout(SUFFIX, 1, installed=True)[0]
    supervisor.start(instance, f"fleet-{SUFFIX}-1")

    with pytest.raises(LifecycleError, match="already running"):
        supervisor.start(instance, f"fleet-{SUFFIX}-1")


def test_start_validates_binary_and_config(parent_dir: Path, make_fleet_layout, supervisor):
    instance = make_fleet_layout(SUFFIX, 1)[0]
    with pytest.raises(LifecycleError, match="binary not found"):
        supervisor.start(instance, f"fleet-{SUFFIX}-1")

    installed = make_fleet_layout("other", 1, installed=True)[0]
    (installed / "conf" / "unrealircd.conf").unlink()
    with pytest.raises(LifecycleError, match="configuration not found"):
        supervisor.start(installed, "fleet-other-1")


def test_start_failure_reports_output(parent_dir: Path, make_fleet_layout, supervisor):
    instance = make_fleet_layout(SUFFIX, 1, installed=True)[0]
    (instance / "conf" / "unrealircd.conf").write_text("BROKEN\n")

    with pytest.raises(LifecycleError) as exc_info:
        supervisor.start(instance, f"fleet-{SUFFIX}-1")

    assert "exit status 1" in str(exc_info.value)
    assert "config file has errors" in exc_info.value.output
    assert supervisor.get(f"fleet-{SUFFIX}-1") is None


def test_dead_registry_entry_is_invalidated(parent_dir: Path, make_fleet_layout, supervisor):
    instance = make_fleet_layout(SUFFIX, 1, installed=True)[0]
    name = f"fleet-{SUFFIX}-1"
    handle = supervisor.start(instance, name)

    handle.process.kill()
    handle.process.wait()

    assert not supervisor.is_running(name)
    assert supervisor.get(name) is None


def test_name_matching_recovers_unregistered_process(parent_dir: Path, make_fleet_layout, supervisor):
    instance = make_fleet_layout(SUFFIX, 1, installed=True)[0]
    name = f"fleet-{SUFFIX}-1"
    # Started outside this supervisor, as after a restart of the tool
    proc = subprocess.Popen([str(instance / "unrealircd"), "start"], cwd=instance,
                            stdout=subprocess.DEVNULL, start_new_session=True)
    try:
        time.sleep(0.3)
        found = [p.pid for p in find_processes(name)]
        assert proc.pid in found
        assert supervisor.is_running(name)
        assert not find_processes(f"fleet-{SUFFIX}-11")

        assert proc.pid in supervisor.stop(name)
        proc.wait(timeout=5)
        assert not supervisor.is_running(name)
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()


def test_stop_also_signals_daemon_outside_launcher_tree(parent_dir: Path, make_fleet_layout, supervisor):
    instance = make_fleet_layout(SUFFIX, 1, installed=True)[0]
    name = f"fleet-{SUFFIX}-1"
    handle = supervisor.start(instance, name)
    # Same server, but not a descendant of the registered launcher
    daemon = subprocess.Popen([str(instance / "unrealircd"), "start"], cwd=instance,
                              stdout=subprocess.DEVNULL, start_new_session=True)
    try:
        time.sleep(0.3)
        signalled = supervisor.stop(name)

        assert handle.pid in signalled
        assert daemon.pid in signalled
        daemon.wait(timeout=5)
        assert not supervisor.is_running(name)
    finally:
        if daemon.poll() is None:
            daemon.kill()
            daemon.wait()


def test_find_processes_excludes_own_pid(parent_dir: Path, make_fleet_layout, monkeypatch):
    instance = make_fleet_layout(SUFFIX, 1, installed=True)[0]
    proc = subprocess.Popen([str(instance / "unrealircd"), "start"], cwd=instance,
                            stdout=subprocess.DEVNULL, start_new_session=True)
    try:
        time.sleep(0.3)
        assert [p.pid for p in find_processes(f"fleet-{SUFFIX}-1")] == [proc.pid]

        monkeypatch.setattr(supervisor_module, "os", SimpleNamespace(getpid=lambda: proc.pid))
        assert find_processes(f"fleet-{SUFFIX}-1") == []
    finally:
        proc.kill()
        proc.wait()


def test_fleet_wide_operations(parent_dir: Path, make_fleet_layout, supervisor):
    make_fleet_layout(SUFFIX, 3, installed=True)
    fleet = find_fleet(parent_dir, SUFFIX)
    messages = []

    handles = supervisor.start_all(fleet, report=lambda m, **kw: messages.append(m))
    assert len(handles) == 3
    assert set(supervisor.status_all(fleet).values()) == {ServerState.RUNNING}

    supervisor.stop(fleet.server_name(2))
    states = supervisor.status_all(fleet)
    assert states == {1: ServerState.RUNNING, 2: ServerState.STOPPED, 3: ServerState.RUNNING}

    results = supervisor.stop_all(fleet)
    assert results[fleet.server_name(2)] == []
    assert set(supervisor.status_all(fleet).values()) == {ServerState.STOPPED}
    assert any("Starting fleet-a1b2c3d4-1" in m for m in messages)


def test_start_all_stops_at_first_failure(parent_dir: Path, make_fleet_layout, supervisor):
    dirs = make_fleet_layout(SUFFIX, 3, installed=True)
    (dirs[1] / "conf" / "unrealircd.conf").write_text("BROKEN\n")
    fleet = find_fleet(parent_dir, SUFFIX)

    with pytest.raises(LifecycleError):
        supervisor.start_all(fleet)

    assert supervisor.is_running(fleet.server_name(1))
    assert not supervisor.is_running(fleet.server_name(3))


def test_unprovisioned_state(parent_dir: Path, make_fleet_layout, supervisor):
    make_fleet_layout(SUFFIX, 2)
    fleet = find_fleet(parent_dir, SUFFIX)
    assert supervisor.status_all(fleet) == {1: ServerState.UNPROVISIONED, 2: ServerState.UNPROVISIONED}
