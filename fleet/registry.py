"""
Fleet Registry - rediscovers fleets from the parent directory.

Every call is a fresh scan of the parent directory's immediate children;
nothing is cached. Names are parsed with fleet.naming, so anything that
does not round-trip through the convention (including instance names with
a malformed index) is ignored.

A fleet is reported only when its source tree exists and at least one
instance directory is present. When the source tree holds a manifest, its
version and port scheme are attached to the descriptor.
"""

import logging
import shutil
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional

from fleet.errors import FleetError
from fleet.manifest import read_manifest
from fleet.naming import parse_dir_name, source_dir_name, validate_suffix
from fleet.progress import Reporter, null_reporter
from fleet.types import FleetDescriptor

logger = logging.getLogger("fleet.registry")


def discover_fleets(parent_dir: Path, product: str = "unrealircd") -> List[FleetDescriptor]:
    """All valid fleets under `parent_dir`, ordered by suffix."""
    parent_dir = Path(parent_dir)
    if not parent_dir.is_dir():
        logger.debug(f"Fleet parent directory {parent_dir} does not exist")
        return []

    sources: Dict[str, Path] = {}
    instances: Dict[str, Dict[int, Path]] = defaultdict(dict)

    for entry in parent_dir.iterdir():
        if not entry.is_dir():
            continue
        parsed = parse_dir_name(product, entry.name)
        if parsed is None:
            continue
        suffix, index = parsed
        if index is None:
            sources[suffix] = entry
        else:
            instances[suffix][index] = entry

    fleets = []
    for suffix in sorted(sources):
        by_index = instances.get(suffix)
        if not by_index:
            logger.debug(f"Skipping fleet {suffix}: no instance directories")
            continue

        ordered = sorted(by_index)
        descriptor = FleetDescriptor(
            suffix=suffix,
            source_dir=sources[suffix],
            build_dirs=[by_index[i] for i in ordered],
            server_count=ordered[-1],
            product=product,
        )

        manifest = read_manifest(descriptor.source_dir)
        if manifest is not None:
            descriptor.version = manifest.version
            descriptor.ports = manifest.ports

        if not descriptor.is_complete:
            logger.warning(
                f"Fleet {suffix} has {len(ordered)} of {descriptor.server_count} instance directories"
            )
        fleets.append(descriptor)

    orphans = sorted(set(instances) - set(sources))
    for suffix in orphans:
        logger.debug(f"Skipping instances of fleet {suffix}: source tree missing")

    return fleets


def find_fleet(parent_dir: Path, suffix: str, product: str = "unrealircd") -> Optional[FleetDescriptor]:
    validate_suffix(suffix)
    for fleet in discover_fleets(parent_dir, product):
        if fleet.suffix == suffix:
            return fleet
    return None


def delete_fleet(fleet: FleetDescriptor, report: Reporter = null_reporter) -> List[Path]:
    """
    Remove a fleet's source tree and every instance directory.

    Stops at the first directory that cannot be removed and raises
    FleetError; whatever was removed before that stays removed. Running
    instances must be stopped by the caller first.
    """
    expected = Path(fleet.source_dir).parent / source_dir_name(fleet.product, fleet.suffix)
    if Path(fleet.source_dir) != expected:
        raise FleetError(f"Refusing to delete {fleet.source_dir}: not a fleet source directory")

    removed = []
    for path in [fleet.source_dir] + list(fleet.build_dirs):
        path = Path(path)
        if not path.exists():
            continue
        report(f"Removing {path}")
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise FleetError(f"Failed to remove {path}: {e}")
        removed.append(path)

    logger.info(f"Deleted fleet {fleet.suffix} ({len(removed)} directories)")
    return removed
