"""
Fleet Provisioner - creates a complete, linked fleet of N instances.

    acquire source -> build instance 1..N (sequential) -> link chain -> done

Provisioning is not best-effort: the first failure propagates with its own
error type (AcquisitionError, BuildStepError, ConfigTemplateError,
LinkError). Partial state stays on disk for inspection; only an explicit
delete removes it. The manifest is rewritten after every step so it always
reflects the last one that completed.

Usage:
    from fleet.provisioner import create_fleet
    fleet = create_fleet(3)
    print(fleet.source_dir, fleet.build_dirs)
"""

import logging
from pathlib import Path
from typing import Optional

from fleet.build import BuildPipeline
from fleet.errors import FleetError, LinkError
from fleet.identity import identity_for
from fleet.linker import TopologyLinker
from fleet.manifest import BuildState, FleetManifest, write_manifest
from fleet.naming import instance_dir_name, new_suffix, source_dir_name
from fleet.progress import Reporter, null_reporter
from fleet.settings import FleetSettings
from fleet.source import SourceAcquirer
from fleet.types import FleetDescriptor

logger = logging.getLogger("fleet.provisioner")

MIN_SERVERS = 2
MAX_SERVERS = 1000


def validate_count(count: int, minimum: int = MIN_SERVERS, maximum: int = MAX_SERVERS) -> int:
    """Raise ValueError unless minimum <= count <= maximum."""
    if isinstance(count, bool) or not isinstance(count, int):
        raise ValueError(f"Server count must be an integer, got {count!r}")
    if count < minimum or count > maximum:
        raise ValueError(f"Server count must be between {minimum} and {maximum}, got {count}")
    return count


def allocate_suffix(parent_dir: Path, product: str, attempts: int = 10) -> str:
    """A fresh suffix whose source directory does not exist yet."""
    for _ in range(attempts):
        suffix = new_suffix()
        if not (parent_dir / source_dir_name(product, suffix)).exists() and \
                not (parent_dir / instance_dir_name(product, suffix, 1)).exists():
            return suffix
    raise FleetError(f"Could not allocate an unused fleet suffix in {parent_dir}")


def create_fleet(
    count: int,
    settings: Optional[FleetSettings] = None,
    report: Reporter = null_reporter,
    acquirer: Optional[SourceAcquirer] = None,
    pipeline: Optional[BuildPipeline] = None,
    parent_dir: Optional[Path] = None,
) -> FleetDescriptor:
    """Provision, build and link a fleet of `count` servers."""
    settings = settings or FleetSettings()
    validate_count(count, settings.min_servers, settings.max_servers)

    parent_dir = settings.resolve_parent_dir(parent_dir)
    parent_dir.mkdir(parents=True, exist_ok=True)
    product = settings.product
    ports = settings.resolve_ports()
    suffix = allocate_suffix(parent_dir, product)

    fleet = FleetDescriptor(
        suffix=suffix,
        source_dir=parent_dir / source_dir_name(product, suffix),
        server_count=count,
        product=product,
        ports=ports,
    )
    logger.info(f"Creating fleet {suffix} with {count} servers in {parent_dir} ({ports.name} ports)")
    report(f"Creating test fleet with {count} servers...")
    report(f"Fleet ID: {suffix}")

    # Source
    acquirer = acquirer or SourceAcquirer(settings.source)
    release = acquirer.acquire(fleet.source_dir, report)
    fleet.version = release.version

    manifest = FleetManifest(suffix=suffix, server_count=count, product=product, ports=ports, version=release.version)
    write_manifest(manifest, fleet.source_dir)

    # Instances, strictly one at a time against the shared tree
    pipeline = pipeline or BuildPipeline(settings.build, network_name=settings.network_name)
    for index in range(1, count + 1):
        build_dir = fleet.instance_dir(index)
        report(f"Building server {index} of {count} in {build_dir}", index=index)
        try:
            pipeline.provision_instance(
                fleet.source_dir,
                build_dir,
                identity_for(index, suffix, ports),
                count,
                report,
            )
        except FleetError:
            manifest.mark(index, BuildState.FAILED)
            write_manifest(manifest, fleet.source_dir)
            raise
        fleet.build_dirs.append(build_dir)
        manifest.mark(index, BuildState.BUILT)
        write_manifest(manifest, fleet.source_dir)

    # Topology
    report("Linking servers together...")
    linker = TopologyLinker(suffix, ports, settings.link)
    link_report = linker.link_fleet(count, [fleet.config_path(i) for i in range(1, count + 1)], report)
    manifest.edges = list(link_report.linked)
    write_manifest(manifest, fleet.source_dir)
    if not link_report.ok:
        raise LinkError(f"Linking fleet {suffix} failed:\n{link_report.summary()}", report=link_report)

    report(f"Test fleet created successfully with {count} servers")
    report(f"Source: {fleet.source_dir}")
    for index, build_dir in enumerate(fleet.build_dirs, start=1):
        report(f"Server {index}: {build_dir}", index=index)
    logger.info(f"Fleet {suffix} ready")
    return fleet
