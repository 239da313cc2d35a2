"""
Fleet Types - Shared data structures for fleet provisioning and management.

These types are passed between the provisioner, the registry, the linker and
the supervisor. None of them is persisted directly: fleets are rediscovered
from directory names and identities are re-derived from instance indices.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from fleet.naming import CONFIG_RELPATH, instance_dir_name, parse_dir_name, server_name


class ServerState(str, Enum):
    """Observed state of one instance."""
    UNPROVISIONED = "unprovisioned"   # No instance directory / binary
    STOPPED = "stopped"               # Provisioned, not running (also covers crashed)
    RUNNING = "running"


@dataclass(frozen=True)
class PortScheme:
    """Base ports for one fleet. Port for index i is base + i - 1."""
    name: str
    client_base: int
    tls_base: int
    server_base: int

    def client_port(self, index: int) -> int:
        return self.client_base + index - 1

    def tls_port(self, index: int) -> int:
        return self.tls_base + index - 1

    def server_port(self, index: int) -> int:
        return self.server_base + index - 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "client_base": self.client_base,
            "tls_base": self.tls_base,
            "server_base": self.server_base,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PortScheme":
        return cls(
            name=data.get("name", "custom"),
            client_base=int(data["client_base"]),
            tls_base=int(data["tls_base"]),
            server_base=int(data["server_base"]),
        )


# Offsets far from the IRC defaults so a fleet can run next to a real server
FLEET_PORTS = PortScheme(name="fleet", client_base=16667, tls_base=26697, server_base=36900)
LEGACY_PORTS = PortScheme(name="legacy", client_base=6667, tls_base=6697, server_base=6660)

PORT_SCHEMES: Dict[str, PortScheme] = {
    FLEET_PORTS.name: FLEET_PORTS,
    LEGACY_PORTS.name: LEGACY_PORTS,
}


@dataclass(frozen=True)
class ServerIdentity:
    """Network identity of one instance. Derived, never stored on its own."""
    index: int
    suffix: str
    network_id: str
    server_name: str
    hostname: str
    client_port: int
    tls_port: int
    server_port: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "network_id": self.network_id,
            "server_name": self.server_name,
            "hostname": self.hostname,
            "client_port": self.client_port,
            "tls_port": self.tls_port,
            "server_port": self.server_port,
        }


@dataclass(frozen=True)
class LinkEdge:
    """One outgoing connection directive injected into one neighbor's config.

    The block describes server ``to_index`` and is written into the config
    of server ``from_index``.
    """
    from_index: int
    to_index: int
    password: str
    server_port: int
    remote_name: str
    autoconnect: bool = False


@dataclass
class StepResult:
    """Outcome of one build tool chain command."""
    step: str
    command: List[str]
    returncode: Optional[int]
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class FleetDescriptor:
    """A fleet as seen on disk: one source tree plus ordered instance dirs."""
    suffix: str
    source_dir: Path
    build_dirs: List[Path] = field(default_factory=list)
    server_count: int = 0
    product: str = "unrealircd"
    version: Optional[str] = None
    ports: PortScheme = FLEET_PORTS

    @property
    def indices(self) -> List[int]:
        """Instance indices present, in build_dirs order."""
        return [parse_dir_name(self.product, d.name)[1] for d in self.build_dirs]

    @property
    def is_valid(self) -> bool:
        return self.source_dir.is_dir() and len(self.build_dirs) > 0

    @property
    def is_complete(self) -> bool:
        """True when every index 1..server_count has a directory."""
        return len(self.build_dirs) == self.server_count

    def server_name(self, index: int) -> str:
        return server_name(self.suffix, index)

    def instance_dir(self, index: int) -> Path:
        return self.source_dir.parent / instance_dir_name(self.product, self.suffix, index)

    def config_path(self, index: int) -> Path:
        return self.instance_dir(index) / CONFIG_RELPATH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suffix": self.suffix,
            "product": self.product,
            "version": self.version,
            "source_dir": str(self.source_dir),
            "build_dirs": [str(d) for d in self.build_dirs],
            "server_count": self.server_count,
            "ports": self.ports.to_dict(),
        }
