#!/usr/bin/env python3
"""
Fleet CLI - headless fleet provisioning and lifecycle.

Usage:
    python -m fleet --dev-test-fleet 3          # Build and link a 3 server fleet
    python -m fleet --list                      # Show fleets under the parent dir
    python -m fleet --status 1a2b3c4d           # Per-server state and ports
    python -m fleet --start 1a2b3c4d            # Start all servers (stops at first failure)
    python -m fleet --start 1a2b3c4d --server 2 # Start one server
    python -m fleet --stop 1a2b3c4d             # Stop all servers (best effort)
    python -m fleet --delete 1a2b3c4d --yes     # Stop and remove the whole fleet

Exit status: 0 success, 1 operation failed, 2 usage error.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from core.paths import get_project_dir
from fleet.errors import FleetError
from fleet.identity import identity_for
from fleet.linker import linked_hostnames, neighbors
from fleet.naming import parse_hostname
from fleet.progress import BackgroundTask, EventKind, ProgressQueue
from fleet.provisioner import MAX_SERVERS, MIN_SERVERS, create_fleet
from fleet.registry import delete_fleet, discover_fleets, find_fleet
from fleet.settings import FleetSettings, load_settings
from fleet.supervisor import ProcessSupervisor
from fleet.types import FleetDescriptor, ServerState

logger = logging.getLogger("fleet.cli")


def server_count(value: str) -> int:
    """argparse type for --dev-test-fleet."""
    try:
        count = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid server count: {value!r}")
    if count < MIN_SERVERS or count > MAX_SERVERS:
        raise argparse.ArgumentTypeError(
            f"server count must be between {MIN_SERVERS} and {MAX_SERVERS}, got {count}"
        )
    return count


def server_index(value: str) -> int:
    try:
        index = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid server index: {value!r}")
    if index < 1:
        raise argparse.ArgumentTypeError(f"server index must be >= 1, got {index}")
    return index


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="unreal-fleet",
        description="UnrealIRCd test fleet manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  unreal-fleet --dev-test-fleet 3            # Provision a linked 3 server fleet
  unreal-fleet --list                        # List fleets
  unreal-fleet --start 1a2b3c4d              # Start every server of a fleet
  unreal-fleet --stop 1a2b3c4d --server 2    # Stop server 2 only
        """,
    )

    actions = parser.add_mutually_exclusive_group(required=True)
    actions.add_argument("--dev-test-fleet", type=server_count, metavar="N",
                         help=f"Provision a fleet of N servers ({MIN_SERVERS}-{MAX_SERVERS}) and exit")
    actions.add_argument("--list", action="store_true", help="List discovered fleets")
    actions.add_argument("--status", metavar="SUFFIX", help="Show server states of a fleet")
    actions.add_argument("--start", metavar="SUFFIX", help="Start a fleet's servers")
    actions.add_argument("--stop", metavar="SUFFIX", help="Stop a fleet's servers")
    actions.add_argument("--delete", metavar="SUFFIX", help="Stop and delete a fleet")

    parser.add_argument("--server", type=server_index, metavar="N", help="Limit --start/--stop to server N")
    parser.add_argument("--yes", action="store_true", help="Confirm --delete")
    parser.add_argument("--parent-dir", help="Directory holding fleet directories")
    parser.add_argument("--config", help="Settings YAML (default: configs/fleet.yaml)")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    return parser


# =============================================================================
# Commands
# =============================================================================

def run_provision(count: int, settings: FleetSettings, parent_dir: Optional[str]) -> int:
    """Provision on a background task and print its progress as it arrives."""
    events = ProgressQueue()
    task = BackgroundTask(
        lambda report: create_fleet(count, settings, report, parent_dir=parent_dir),
        events,
        name="provision-fleet",
    )
    task.start()

    try:
        for event in events.iter_events():
            if event.kind == EventKind.ERROR:
                print(f"Error: {event.message}", file=sys.stderr)
            elif event.kind == EventKind.DONE:
                fleet = event.payload
                print(f"\nFleet {fleet.suffix} ready: {len(fleet.build_dirs)} servers")
            else:
                print(event.message, flush=True)
    except KeyboardInterrupt:
        task.cancel()
        print("\nDetached; running build commands continue in the background.", file=sys.stderr)
        return 1

    task.join()
    return 0 if task.error is None else 1


def print_fleets(fleets: List[FleetDescriptor]):
    if not fleets:
        print("No fleets found")
        return
    print(f"\n{'SUFFIX':<12} {'SERVERS':>7}  {'VERSION':<10} SOURCE")
    print("-" * 70)
    for fleet in fleets:
        count = f"{len(fleet.build_dirs)}/{fleet.server_count}"
        print(f"{fleet.suffix:<12} {count:>7}  {fleet.version or '-':<10} {fleet.source_dir}")


def configured_links(fleet: FleetDescriptor, index: int) -> str:
    """
    Neighbors a server's config actually links to, read from the file.

    Chain neighbors without a link block are listed as missing, so a
    partially linked fleet shows where the network is split.
    """
    config = fleet.config_path(index)
    if not config.is_file():
        return "-"
    linked = []
    for remote in linked_hostnames(config.read_text()):
        parsed = parse_hostname(remote)
        linked.append(str(parsed[1]) if parsed is not None else remote)
    missing = [str(n) for n in neighbors(index, fleet.server_count) if str(n) not in linked]
    text = ",".join(linked) or "-"
    if missing:
        text += f" (missing {','.join(missing)})"
    return text


def print_status(fleet: FleetDescriptor, supervisor: ProcessSupervisor):
    states = supervisor.status_all(fleet)
    icons = {
        ServerState.RUNNING: "●",
        ServerState.STOPPED: "○",
        ServerState.UNPROVISIONED: "?",
    }
    print(f"\nFleet {fleet.suffix} ({fleet.ports.name} ports)")
    print("=" * 60)
    for index, state in states.items():
        identity = identity_for(index, fleet.suffix, fleet.ports)
        links = configured_links(fleet, index)
        print(
            f"  [{icons[state]}] {identity.server_name:<24} sid {identity.network_id}  "
            f"ports {identity.client_port}/{identity.tls_port}/{identity.server_port}  "
            f"links {links:<8} {state.value}"
        )
    running = sum(1 for s in states.values() if s == ServerState.RUNNING)
    print(f"\n{running}/{len(states)} running")


def run_start(fleet: FleetDescriptor, supervisor: ProcessSupervisor, index: Optional[int]) -> int:
    if index is not None:
        handle = supervisor.start(fleet.instance_dir(index), fleet.server_name(index))
        print(f"{handle.server_name} started (pid {handle.pid})")
        return 0
    handles = supervisor.start_all(fleet, report=lambda message, **_: print(message))
    print(f"\nStarted {len(handles)} server(s)")
    return 0


def run_stop(fleet: FleetDescriptor, supervisor: ProcessSupervisor, index: Optional[int]) -> int:
    if index is not None:
        name = fleet.server_name(index)
        pids = supervisor.stop(name)
        print(f"{name}: {'stopped ' + str(pids) if pids else 'not running'}")
        return 0
    results = supervisor.stop_all(fleet, report=lambda message, **_: print(message))
    stopped = sum(1 for pids in results.values() if pids)
    print(f"\nStopped {stopped} server(s)")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.server is not None and not (args.start or args.stop):
        parser.error("--server only applies to --start and --stop")
    if args.delete and not args.yes:
        parser.error("--delete requires --yes")

    load_dotenv(get_project_dir() / ".env")
    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        settings = load_settings(args.config)
    except (OSError, ValueError, TypeError) as e:
        print(f"Error: could not load settings: {e}", file=sys.stderr)
        return 1

    if args.dev_test_fleet is not None:
        return run_provision(args.dev_test_fleet, settings, args.parent_dir)

    parent_dir = settings.resolve_parent_dir(args.parent_dir)

    if args.list:
        print_fleets(discover_fleets(parent_dir, settings.product))
        return 0

    suffix = args.status or args.start or args.stop or args.delete
    supervisor = ProcessSupervisor(settings.supervisor)
    try:
        fleet = find_fleet(parent_dir, suffix, settings.product)
        if fleet is None:
            print(f"Error: no fleet '{suffix}' in {parent_dir}", file=sys.stderr)
            return 1
        if args.server is not None and args.server not in fleet.indices:
            print(f"Error: fleet {suffix} has no server {args.server}", file=sys.stderr)
            return 1

        if args.status:
            print_status(fleet, supervisor)
            return 0
        if args.start:
            return run_start(fleet, supervisor, args.server)
        if args.stop:
            return run_stop(fleet, supervisor, args.server)

        supervisor.stop_all(fleet)
        removed = delete_fleet(fleet, report=lambda message, **_: print(message))
        print(f"Deleted fleet {suffix} ({len(removed)} directories)")
        return 0

    except FleetError as e:
        print(f"Error: {e.details()}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
