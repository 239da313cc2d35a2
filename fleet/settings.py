"""
Fleet Settings - YAML-backed configuration for provisioning and supervision.

Every field has a default, so configs/fleet.yaml is optional. Values may use
${VAR} / ${VAR:-default} environment expansion; a .env file in the project
root is loaded by the CLI before settings are read.

Usage:
    from fleet.settings import load_settings
    settings = load_settings()                  # configs/fleet.yaml or defaults
    settings = load_settings("my-fleet.yaml")
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

from core.config_loader import dict_to_dataclass, load_yaml
from core.paths import get_config_dir, get_fleet_parent_dir, resolve_path
from fleet.types import PORT_SCHEMES, PortScheme

logger = logging.getLogger("fleet.settings")

DEFAULT_SETTINGS_FILE = "fleet.yaml"


@dataclass
class SourceSettings:
    """Where the daemon source comes from."""
    release_index_url: str = "https://www.unrealircd.org/downloads/list.json"
    channel: str = "Stable"
    archive: Optional[str] = None       # local .tar.gz instead of downloading
    source_tree: Optional[str] = None   # already unpacked tree to copy
    timeout_s: float = 60.0


@dataclass
class BuildSettings:
    """Values written to config.settings plus pipeline switches."""
    defperm: str = "0600"
    ssldir: str = ""
    remoteinc: str = "0"
    nickname_history: str = "2000"
    geoip: str = "classic"
    max_connections: str = "auto"
    sanitizer: str = ""
    extra_params: str = ""
    clean_between_instances: bool = True
    strict_clean: bool = False
    step_timeout_s: Optional[float] = None


@dataclass
class SupervisorSettings:
    grace_period_s: float = 2.0
    stop_timeout_s: float = 5.0


@dataclass
class LinkSettings:
    hostname: str = "127.0.0.1"
    link_class: str = "servers"
    tls: bool = True


@dataclass
class FleetSettings:
    parent_dir: Optional[str] = None
    product: str = "unrealircd"
    network_name: str = "TestFleet"
    port_scheme: str = "fleet"
    ports: Optional[Dict[str, Any]] = None
    min_servers: int = 2
    max_servers: int = 1000
    source: SourceSettings = field(default_factory=SourceSettings)
    build: BuildSettings = field(default_factory=BuildSettings)
    supervisor: SupervisorSettings = field(default_factory=SupervisorSettings)
    link: LinkSettings = field(default_factory=LinkSettings)

    def resolve_parent_dir(self, override: Optional[str] = None) -> Path:
        """An explicit override (command line, relative to cwd) beats environment and file."""
        if override:
            return resolve_path(str(override), base=Path.cwd())
        return get_fleet_parent_dir(self.parent_dir)

    def resolve_ports(self) -> PortScheme:
        """Explicit `ports` bases win over the named scheme."""
        if self.ports:
            data = dict(self.ports)
            data.setdefault("name", "custom")
            return PortScheme.from_dict(data)
        if self.port_scheme not in PORT_SCHEMES:
            raise ValueError(
                f"Unknown port scheme '{self.port_scheme}'. "
                f"Available: {', '.join(sorted(PORT_SCHEMES))}"
            )
        return PORT_SCHEMES[self.port_scheme]


def load_settings(path: Optional[Union[str, Path]] = None) -> FleetSettings:
    """
    Load settings from YAML.

    With no path, configs/fleet.yaml is used when present and defaults
    otherwise. An explicit path must exist.
    """
    if path is None:
        default_path = get_config_dir() / DEFAULT_SETTINGS_FILE
        if not default_path.exists():
            logger.debug(f"No settings file at {default_path}, using defaults")
            return FleetSettings()
        path = default_path

    data = load_yaml(path)
    settings = dict_to_dataclass(data, FleetSettings)
    logger.debug(f"Loaded settings from {path}")
    return settings
