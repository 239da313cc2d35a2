"""
Fleet manifest - small structured record kept inside the source tree.

    <source dir>/fleet-manifest.json

Written atomically after acquisition, after each instance build and after
linking, so a crash leaves the last completed step on disk. Holds the port
scheme, the identity table with per-instance build state, and the edge
table (index pairs only, never link secrets).

The directory layout stays authoritative: discovery uses the manifest for
metadata and ordering only, and fleets without one are still found.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from core.atomic_ops import write_json_atomic
from fleet.identity import identity_for
from fleet.types import FLEET_PORTS, PortScheme

logger = logging.getLogger("fleet.manifest")

MANIFEST_NAME = "fleet-manifest.json"
MANIFEST_FORMAT = 1


class BuildState(str, Enum):
    PENDING = "pending"
    BUILT = "built"
    FAILED = "failed"


def manifest_path(source_dir: Path) -> Path:
    return Path(source_dir) / MANIFEST_NAME


@dataclass
class FleetManifest:
    suffix: str
    server_count: int
    product: str = "unrealircd"
    ports: PortScheme = FLEET_PORTS
    version: Optional[str] = None
    states: Dict[int, BuildState] = field(default_factory=dict)
    edges: List[Tuple[int, int]] = field(default_factory=list)
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    updated_at: Optional[str] = None

    def __post_init__(self):
        for index in range(1, self.server_count + 1):
            self.states.setdefault(index, BuildState.PENDING)

    def mark(self, index: int, state: BuildState):
        self.states[index] = state

    def built_indices(self) -> List[int]:
        return sorted(i for i, s in self.states.items() if s == BuildState.BUILT)

    def to_dict(self) -> Dict[str, Any]:
        servers = []
        for index in range(1, self.server_count + 1):
            entry = identity_for(index, self.suffix, self.ports).to_dict()
            entry["state"] = self.states.get(index, BuildState.PENDING).value
            servers.append(entry)
        return {
            "format": MANIFEST_FORMAT,
            "suffix": self.suffix,
            "product": self.product,
            "version": self.version,
            "server_count": self.server_count,
            "ports": self.ports.to_dict(),
            "servers": servers,
            "edges": [list(edge) for edge in self.edges],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FleetManifest":
        states = {int(s["index"]): BuildState(s.get("state", "pending")) for s in data.get("servers", [])}
        return cls(
            suffix=data["suffix"],
            server_count=int(data["server_count"]),
            product=data.get("product", "unrealircd"),
            ports=PortScheme.from_dict(data["ports"]) if data.get("ports") else FLEET_PORTS,
            version=data.get("version"),
            states=states,
            edges=[(int(a), int(b)) for a, b in data.get("edges", [])],
            created_at=data.get("created_at") or datetime.now().isoformat(),
            updated_at=data.get("updated_at"),
        )


def write_manifest(manifest: FleetManifest, source_dir: Path) -> Path:
    manifest.updated_at = datetime.now().isoformat()
    path = manifest_path(source_dir)
    write_json_atomic(manifest.to_dict(), path)
    return path


def read_manifest(source_dir: Path) -> Optional[FleetManifest]:
    """Load the manifest, or None when absent or unreadable."""
    path = manifest_path(source_dir)
    if not path.exists():
        return None
    try:
        with open(path) as f:
            return FleetManifest.from_dict(json.load(f))
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.warning(f"Ignoring unreadable manifest {path}: {e}")
        return None
