"""
Naming conventions - deterministic names for fleet directories and servers.

The directory layout under the parent directory is the fleet's only record:

    <parent>/<product>-fleet-<suffix>        shared source tree
    <parent>/<product>-fleet-<suffix>-<N>    instance N (install prefix)

Suffixes are restricted to ASCII letters and digits so that a source-tree
name can never be mistaken for an instance name.
"""

import re
import secrets
from pathlib import PurePath
from typing import Optional, Tuple

from fleet.errors import InvalidFleetName

BINARY_NAME = "unrealircd"
CONFIG_RELPATH = PurePath("conf") / "unrealircd.conf"
EXAMPLE_CONF_RELPATH = PurePath("doc") / "conf" / "examples" / "example.conf"

_SUFFIX_RE = re.compile(r"^[A-Za-z0-9]+$")


def new_suffix() -> str:
    """Random 8 hex character fleet suffix."""
    return secrets.token_hex(4)


def is_valid_suffix(suffix: str) -> bool:
    return bool(suffix) and _SUFFIX_RE.match(suffix) is not None


def validate_suffix(suffix: str) -> str:
    if not is_valid_suffix(suffix):
        raise InvalidFleetName(
            f"Invalid fleet suffix {suffix!r}: only letters and digits are allowed"
        )
    return suffix


def source_dir_name(product: str, suffix: str) -> str:
    return f"{product}-fleet-{suffix}"


def instance_dir_name(product: str, suffix: str, index: int) -> str:
    return f"{product}-fleet-{suffix}-{index}"


def server_name(suffix: str, index: int) -> str:
    """Name used as hostname stem and as the process-match key."""
    return f"fleet-{suffix}-{index}"


def hostname(suffix: str, index: int) -> str:
    return f"{server_name(suffix, index)}.test"


_HOSTNAME_RE = re.compile(r"^fleet-([A-Za-z0-9]+)-([1-9]\d*)\.test$")


def parse_hostname(name: str) -> Optional[Tuple[str, int]]:
    """(suffix, index) for a fleet server hostname, None for anything else."""
    match = _HOSTNAME_RE.match(name)
    if match is None:
        return None
    return match.group(1), int(match.group(2))


def parse_dir_name(product: str, name: str) -> Optional[Tuple[str, Optional[int]]]:
    """
    Parse a directory name against the convention.

    Returns (suffix, None) for a source tree, (suffix, index) for an instance,
    or None when the name does not belong to any fleet (including instance
    names with a malformed index).
    """
    prefix = f"{product}-fleet-"
    if not name.startswith(prefix):
        return None

    rest = name[len(prefix):]
    suffix, sep, tail = rest.partition("-")
    if not is_valid_suffix(suffix):
        return None
    if not sep:
        return suffix, None
    if not tail.isdigit() or not tail.isascii():
        return None

    index = int(tail)
    if index < 1 or str(index) != tail:
        return None
    return suffix, index
