"""
Fleet - UnrealIRCd test fleet provisioning and lifecycle.

A fleet is N independently built and configured UnrealIRCd instances sharing
one source tree, linked into a chain (1 - 2 - ... - N) for testing server to
server linking and netsplits.

Components:
    - identity.py: index -> network id, hostname, ports
    - composer.py: per-server unrealircd.conf from the example config
    - linker.py: chain link blocks between neighbor configs
    - source.py: download and unpack the daemon source
    - build.py: Config / make / make pem / make install per instance
    - registry.py: rediscover fleets from directory names
    - supervisor.py: start / stop / status of instance processes
    - provisioner.py: the whole create-fleet flow
    - cli.py: command line entry point

Usage:
    # Provision a 3 server fleet
    python3 -m fleet --dev-test-fleet 3

    # From code
    from fleet.provisioner import create_fleet
    fleet = create_fleet(3)
"""

from fleet.errors import FleetError
from fleet.types import FleetDescriptor, ServerIdentity, ServerState

__all__ = ["FleetError", "FleetDescriptor", "ServerIdentity", "ServerState"]
