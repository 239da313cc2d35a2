"""
Identity allocation - maps an instance index to its network identity.

Pure and deterministic: the same (index, suffix, ports) always yields the
same ServerIdentity, which is how identities are recovered after the fact.

Network ids (UnrealIRCd SIDs) are three characters:
    1..999      "001".."999"
    1000..      digit + two letters: 1000 -> "0AA", 1001 -> "0AB", 1676 -> "1AA"

Unique up to index 7759. Past that the leading digit grows to two characters
and ids stop being valid SIDs; this is not guarded beyond a warning.
"""

import logging

from fleet.naming import hostname, server_name
from fleet.types import FLEET_PORTS, PortScheme, ServerIdentity

logger = logging.getLogger("fleet.identity")

LETTER_PAIRS = 26 * 26
MAX_UNIQUE_INDEX = 1000 + 10 * LETTER_PAIRS - 1


def network_id(index: int) -> str:
    """Three character network id for a 1-based instance index."""
    if index < 1:
        raise ValueError(f"Instance index must be >= 1, got {index}")

    if index <= 999:
        return f"{index:03d}"

    adjusted = index - 1000
    prefix = adjusted // LETTER_PAIRS
    pair = adjusted % LETTER_PAIRS
    first = chr(ord("A") + pair // 26)
    second = chr(ord("A") + pair % 26)
    return f"{prefix}{first}{second}"


def identity_for(index: int, suffix: str, ports: PortScheme = FLEET_PORTS) -> ServerIdentity:
    """Derive the full identity of instance `index` in fleet `suffix`."""
    if index > MAX_UNIQUE_INDEX:
        logger.warning(f"Index {index} exceeds {MAX_UNIQUE_INDEX}; network ids may collide")

    return ServerIdentity(
        index=index,
        suffix=suffix,
        network_id=network_id(index),
        server_name=server_name(suffix, index),
        hostname=hostname(suffix, index),
        client_port=ports.client_port(index),
        tls_port=ports.tls_port(index),
        server_port=ports.server_port(index),
    )
