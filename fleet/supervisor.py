"""
Process Supervisor - start, stop and status of fleet instances.

Each started instance is recorded in an in-memory registry:

    server name -> ProcessHandle(pid, instance dir, log path, ...)

The registry is the first thing consulted by stop() and is_running(); dead
entries are dropped as soon as they are noticed. When there is no entry
(typically because this tool was restarted while the fleet kept running),
processes are found by matching the server name against command lines.
stop() always adds the name-matched processes to the registered one and
its children.
Installed instances run from ``<parent>/unrealircd-fleet-<suffix>-<N>/``,
so the server name ``fleet-<suffix>-<N>`` is part of the daemon's path.

Matching requires the name to be followed by a non-digit, so fleet-x-1
never matches fleet-x-10. Unrelated processes that happen to carry the
same name in their command line would still match.

Liveness is observed, not tracked: a crashed instance is simply STOPPED.
"""

import logging
import os
import re
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import psutil

from fleet.build import binary_path, is_provisioned
from fleet.errors import LifecycleError
from fleet.naming import CONFIG_RELPATH
from fleet.progress import EventKind, Reporter, null_reporter
from fleet.settings import SupervisorSettings
from fleet.types import FleetDescriptor, ServerState

logger = logging.getLogger("fleet.supervisor")

LOG_NAME = "supervisor.log"


def name_pattern(server_name: str) -> "re.Pattern[str]":
    return re.compile(re.escape(server_name) + r"(?!\d)")


def find_processes(server_name: str) -> List[psutil.Process]:
    """Live processes whose command line carries `server_name`."""
    pattern = name_pattern(server_name)
    own_pid = os.getpid()
    matches = []
    for proc in psutil.process_iter(["pid", "cmdline"]):
        try:
            if proc.info["pid"] == own_pid:
                continue
            cmdline = " ".join(proc.info["cmdline"] or [])
            if cmdline and pattern.search(cmdline) and proc.status() != psutil.STATUS_ZOMBIE:
                matches.append(proc)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    return matches


@dataclass
class ProcessHandle:
    server_name: str
    pid: int
    instance_dir: Path
    log_path: Path
    started_at: float = field(default_factory=time.time)
    process: Optional[subprocess.Popen] = field(default=None, repr=False, compare=False)

    def alive(self) -> bool:
        if self.process is not None and self.process.poll() is not None:
            return False
        try:
            proc = psutil.Process(self.pid)
            return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    def to_dict(self) -> Dict:
        return {
            "server_name": self.server_name,
            "pid": self.pid,
            "instance_dir": str(self.instance_dir),
            "log_path": str(self.log_path),
            "started_at": self.started_at,
        }


def _read_from(path: Path, offset: int) -> str:
    try:
        with open(path, "r", errors="replace") as f:
            f.seek(offset)
            return f.read()
    except OSError as e:
        return f"(could not read {path}: {e})"


class ProcessSupervisor:
    """Owns the process registry for every instance it has started."""

    def __init__(self, settings: Optional[SupervisorSettings] = None):
        self.settings = settings or SupervisorSettings()
        self._registry: Dict[str, ProcessHandle] = {}

    @property
    def handles(self) -> Dict[str, ProcessHandle]:
        return dict(self._registry)

    def get(self, server_name: str) -> Optional[ProcessHandle]:
        return self._registry.get(server_name)

    # -------------------------------------------------------------------------
    # Single instance
    # -------------------------------------------------------------------------

    def is_running(self, server_name: str) -> bool:
        handle = self._registry.get(server_name)
        if handle is not None:
            if handle.alive():
                return True
            logger.debug(f"{server_name}: registered pid {handle.pid} is gone")
            del self._registry[server_name]

        return bool(find_processes(server_name))

    def start(self, instance_dir: Path, server_name: str) -> ProcessHandle:
        """
        Launch ``<instance>/unrealircd start`` detached and register it.

        Raises LifecycleError when the instance is already running, is not
        fully installed, or exits with an error during the grace period.
        """
        instance_dir = Path(instance_dir)
        if self.is_running(server_name):
            raise LifecycleError(server_name, "already running")

        binary = binary_path(instance_dir)
        if not binary.exists():
            raise LifecycleError(server_name, f"binary not found at {binary}")
        config = instance_dir / CONFIG_RELPATH
        if not config.exists():
            raise LifecycleError(server_name, f"configuration not found at {config}")

        log_path = instance_dir / "logs" / LOG_NAME
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a") as log:
            log.write(f"\n{'=' * 60}\n")
            log.write(f"Starting {server_name} at {time.strftime('%Y-%m-%d %H:%M:%S')}\n")
            log.write(f"Command: {binary} start\n")
            log.write(f"{'=' * 60}\n\n")
            log.flush()
            offset = log.tell()

            try:
                process = subprocess.Popen(
                    [str(binary), "start"],
                    cwd=instance_dir,
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
            except OSError as e:
                raise LifecycleError(server_name, f"failed to launch {binary}: {e}")

        time.sleep(self.settings.grace_period_s)
        returncode = process.poll()

        if returncode is None:
            pid = process.pid
        elif returncode == 0:
            # Launcher daemonized and exited; find the daemon itself
            matches = find_processes(server_name)
            if not matches:
                raise LifecycleError(
                    server_name,
                    "exited immediately after start",
                    output=_read_from(log_path, offset),
                )
            pid = matches[0].pid
            process = None
        else:
            raise LifecycleError(
                server_name,
                f"start failed with exit status {returncode}",
                output=_read_from(log_path, offset),
            )

        handle = ProcessHandle(
            server_name=server_name,
            pid=pid,
            instance_dir=instance_dir,
            log_path=log_path,
            process=process,
        )
        self._registry[server_name] = handle
        logger.info(f"Started {server_name} (pid {pid}, log {log_path})")
        return handle

    def _terminate(self, procs: List[psutil.Process]) -> List[int]:
        signalled = []
        for proc in procs:
            try:
                proc.terminate()
                signalled.append(proc.pid)
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied as e:
                logger.warning(f"Not allowed to signal pid {proc.pid}: {e}")

        _, alive = psutil.wait_procs(procs, timeout=self.settings.stop_timeout_s)
        for proc in alive:
            try:
                logger.warning(f"pid {proc.pid} ignored SIGTERM, killing")
                proc.kill()
            except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
                logger.warning(f"Could not kill pid {proc.pid}: {e}")
        return signalled

    def stop(self, server_name: str) -> List[int]:
        """
        Best-effort stop. Returns the pids that were signalled.

        Never raises for per-process failures; those are logged.
        """
        handle = self._registry.pop(server_name, None)
        procs: List[psutil.Process] = []

        if handle is not None and handle.alive():
            try:
                proc = psutil.Process(handle.pid)
                procs = [proc] + proc.children(recursive=True)
            except psutil.NoSuchProcess:
                procs = []

        # Daemons reparented away from the launcher are only found by name
        known = {proc.pid for proc in procs}
        procs.extend(proc for proc in find_processes(server_name) if proc.pid not in known)

        if not procs:
            logger.info(f"{server_name}: not running")
            return []

        signalled = self._terminate(procs)
        if handle is not None and handle.process is not None:
            handle.process.poll()
        logger.info(f"Stopped {server_name} (signalled {signalled})")
        return signalled

    def state(self, instance_dir: Path, server_name: str) -> ServerState:
        if not is_provisioned(instance_dir):
            return ServerState.UNPROVISIONED
        if self.is_running(server_name):
            return ServerState.RUNNING
        return ServerState.STOPPED

    # -------------------------------------------------------------------------
    # Fleet-wide (sequential)
    # -------------------------------------------------------------------------

    def start_all(self, fleet: FleetDescriptor, report: Reporter = null_reporter) -> List[ProcessHandle]:
        """Start every instance in order; the first failure stops the run."""
        started = []
        for index, build_dir in zip(fleet.indices, fleet.build_dirs):
            name = fleet.server_name(index)
            if self.is_running(name):
                report(f"{name} is already running", index=index)
                continue
            report(f"Starting {name}...", index=index)
            try:
                handle = self.start(build_dir, name)
            except LifecycleError as e:
                report(e.details(), kind=EventKind.OUTPUT, index=index)
                logger.error(f"start_all aborted at {name}: {e}")
                raise
            started.append(handle)
            report(f"{name} started (pid {handle.pid})", index=index)
        return started

    def stop_all(self, fleet: FleetDescriptor, report: Reporter = null_reporter) -> Dict[str, List[int]]:
        """Stop every instance; failures are logged and skipped."""
        results = {}
        for index in fleet.indices:
            name = fleet.server_name(index)
            report(f"Stopping {name}...", index=index)
            try:
                results[name] = self.stop(name)
            except psutil.Error as e:
                logger.error(f"Stopping {name} failed: {e}")
                report(f"Stopping {name} failed: {e}", kind=EventKind.OUTPUT, index=index)
                results[name] = []
        return results

    def status_all(self, fleet: FleetDescriptor) -> Dict[int, ServerState]:
        states = {}
        for index, build_dir in zip(fleet.indices, fleet.build_dirs):
            name = fleet.server_name(index)
            try:
                states[index] = self.state(build_dir, name)
            except psutil.Error as e:
                logger.error(f"Status of {name} unknown: {e}")
                states[index] = ServerState.STOPPED
        return states
