"""
Topology linking - wires a fleet into a chain of server links.

Server i links only to i-1 and i+1:

    1 ── 2 ── 3 ── ... ── N

For every adjacent pair both configs get a ``link`` block describing the
other side, with one shared secret per pair. The lower-index side carries
``autoconnect`` so each link is dialled from exactly one end. All outgoing
connections go to 127.0.0.1 whatever the derived hostnames are.

There are no redundant links: stopping an interior server splits the
network in two.

Per pair, either both blocks are written or neither is; a failed pair is
recorded in the LinkReport and the remaining pairs are still attempted.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from core.atomic_ops import write_text_atomic
from fleet.composer import random_token
from fleet.errors import LinkError
from fleet.identity import identity_for
from fleet.progress import EventKind, Reporter, null_reporter
from fleet.settings import LinkSettings
from fleet.types import FLEET_PORTS, LinkEdge, PortScheme, ServerIdentity

logger = logging.getLogger("fleet.linker")

LINK_HEADER_RE = re.compile(r"^\s*link\s+(fleet-[A-Za-z0-9]+-\d+\.test)\s*\{", re.MULTILINE)

PASSWORD_LENGTH = 32


def chain_pairs(server_count: int) -> List[Tuple[int, int]]:
    """Adjacent index pairs (i, i+1) for a chain of `server_count` servers."""
    return [(i, i + 1) for i in range(1, server_count)]


def neighbors(index: int, server_count: int) -> List[int]:
    result = []
    if index > 1:
        result.append(index - 1)
    if index < server_count:
        result.append(index + 1)
    return result


def edges_for_pair(
    lower: ServerIdentity,
    upper: ServerIdentity,
    password: str,
) -> Tuple[LinkEdge, LinkEdge]:
    """The two directed edges of one link: (block in lower's config, block in upper's)."""
    down = LinkEdge(
        from_index=lower.index,
        to_index=upper.index,
        password=password,
        server_port=upper.server_port,
        remote_name=upper.hostname,
        autoconnect=True,
    )
    up = LinkEdge(
        from_index=upper.index,
        to_index=lower.index,
        password=password,
        server_port=lower.server_port,
        remote_name=lower.hostname,
        autoconnect=False,
    )
    return down, up


def render_link_block(edge: LinkEdge, settings: Optional[LinkSettings] = None) -> str:
    """UnrealIRCd link { } block for one directed edge."""
    settings = settings or LinkSettings()
    options = []
    if settings.tls:
        options.append("tls;")
    if edge.autoconnect:
        options.append("autoconnect;")
    options_line = f"\t\toptions {{ {' '.join(options)} }}\n" if options else ""

    return (
        f"// Fleet link: server {edge.from_index} -> server {edge.to_index}\n"
        f"link {edge.remote_name} {{\n"
        f"\tincoming {{\n"
        f"\t\tmask *;\n"
        f"\t}}\n"
        f"\toutgoing {{\n"
        f"\t\thostname \"{settings.hostname}\";\n"
        f"\t\tport {edge.server_port};\n"
        f"{options_line}"
        f"\t}}\n"
        f"\tpassword \"{edge.password}\";\n"
        f"\tclass {settings.link_class};\n"
        f"}};\n"
    )


def linked_hostnames(config_text: str) -> List[str]:
    """Remote names of every fleet link block in a config, in order."""
    return LINK_HEADER_RE.findall(config_text)


def count_link_blocks(config_text: str) -> int:
    return len(linked_hostnames(config_text))


@dataclass
class EdgeFailure:
    pair: Tuple[int, int]
    error: str


@dataclass
class LinkReport:
    """Outcome of a linking pass."""
    server_count: int
    linked: List[Tuple[int, int]] = field(default_factory=list)
    failures: List[EdgeFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def injected(self) -> Dict[int, int]:
        """Blocks injected per server index."""
        counts = {i: 0 for i in range(1, self.server_count + 1)}
        for lower, upper in self.linked:
            counts[lower] += 1
            counts[upper] += 1
        return counts

    def summary(self) -> str:
        lines = [f"{len(self.linked)}/{len(self.linked) + len(self.failures)} links written"]
        for failure in self.failures:
            lines.append(f"  link {failure.pair[0]}<->{failure.pair[1]} failed: {failure.error}")
        return "\n".join(lines)


class TopologyLinker:
    """Injects chain link blocks into already materialized configs."""

    def __init__(
        self,
        suffix: str,
        ports: PortScheme = FLEET_PORTS,
        settings: Optional[LinkSettings] = None,
        secret: Callable[[int], str] = random_token,
    ):
        self.suffix = suffix
        self.ports = ports
        self.settings = settings or LinkSettings()
        self._secret = secret

    def check_configs(self, config_paths: Sequence[Path]):
        """Every config must exist and be writable before anything is touched."""
        problems = []
        for index, path in enumerate(config_paths, start=1):
            path = Path(path)
            if not path.is_file():
                problems.append(f"server {index}: config not found at {path}")
            elif not os.access(path, os.R_OK | os.W_OK) or not os.access(path.parent, os.W_OK):
                problems.append(f"server {index}: config not writable at {path}")
        if problems:
            raise LinkError("Cannot link fleet:\n  " + "\n  ".join(problems))

    def _write_pair(self, lower_path: Path, upper_path: Path, down: LinkEdge, up: LinkEdge):
        lower_before = lower_path.read_text()
        upper_before = upper_path.read_text()

        write_text_atomic(lower_before + "\n" + render_link_block(down, self.settings), lower_path)
        try:
            write_text_atomic(upper_before + "\n" + render_link_block(up, self.settings), upper_path)
        except OSError:
            try:
                write_text_atomic(lower_before, lower_path)
            except OSError as restore_error:
                logger.error(f"Could not restore {lower_path} after failed link write: {restore_error}")
            raise

    def link_fleet(
        self,
        server_count: int,
        config_paths: Sequence[Path],
        report: Reporter = null_reporter,
    ) -> LinkReport:
        """
        Link servers 1..server_count, config_paths[i-1] being server i's config.

        Raises LinkError before writing anything when a config is missing or
        unwritable; afterwards failures are collected per pair.
        """
        if len(config_paths) != server_count:
            raise LinkError(f"Expected {server_count} config paths, got {len(config_paths)}")

        self.check_configs(config_paths)
        result = LinkReport(server_count=server_count)

        for lower, upper in chain_pairs(server_count):
            down, up = edges_for_pair(
                identity_for(lower, self.suffix, self.ports),
                identity_for(upper, self.suffix, self.ports),
                self._secret(PASSWORD_LENGTH),
            )
            try:
                self._write_pair(Path(config_paths[lower - 1]), Path(config_paths[upper - 1]), down, up)
            except OSError as e:
                result.failures.append(EdgeFailure(pair=(lower, upper), error=str(e)))
                report(f"Linking server {lower} <-> {upper} failed: {e}", kind=EventKind.OUTPUT, index=lower)
                logger.error(f"Link {lower}<->{upper} failed: {e}")
                continue

            result.linked.append((lower, upper))
            report(f"Added link block from server {upper} to server {lower}", index=lower)
            report(f"Added link block from server {lower} to server {upper}", index=upper)

        logger.info(f"Linked fleet {self.suffix}: {result.summary()}")
        return result
