"""
Config composition - renders one instance's unrealircd.conf.

The example configuration shipped with the daemon source is turned into a
structured template: each known default literal is replaced by a named
``{{token}}`` and the tokens are then resolved from a lookup table built from
the instance's identity. A template that has lost one of the mandatory
literals fails loudly instead of silently keeping the default value.

Templates written directly with ``{{token}}`` placeholders are accepted too.

Usage:
    from fleet.composer import compose
    text = compose(example_conf_text, identity, total_servers=3)
"""

import logging
import re
import secrets
import string
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Union

from fleet.errors import ConfigTemplateError
from fleet.types import ServerIdentity

logger = logging.getLogger("fleet.composer")

TOKEN_RE = re.compile(r"\{\{\s*([a-z0-9_]+)\s*\}\}")

SECRET_ALPHABET = string.ascii_letters + string.digits

DEFAULT_NETWORK_NAME = "TestFleet"
DEFAULT_KLINE_ADDRESS = "fake@email.com"
DEFAULT_OPER_NAME = "testoper"

Value = Union[str, Callable[[], str]]


@dataclass(frozen=True)
class Placeholder:
    """A default literal in the example config and the token it becomes.

    Only the `value` part of `literal` is tokenized, so ``port 6667;``
    becomes ``port {{client_port}};``.
    """
    name: str
    literal: str
    value: Optional[str] = None
    mandatory: bool = True
    secret: bool = False

    @property
    def token(self) -> str:
        return "{{" + self.name + "}}"

    def tokenized(self) -> str:
        value = self.value if self.value is not None else self.literal
        return self.literal.replace(value, self.token)


# Order matters: "ExampleNET Server" must be consumed before "ExampleNET".
PLACEHOLDERS = (
    Placeholder("server_info", "ExampleNET Server", mandatory=False),
    Placeholder("hostname", "irc.example.org"),
    Placeholder("network_name", "ExampleNET"),
    Placeholder("client_port", "port 6667;", "6667"),
    Placeholder("tls_port", "port 6697;", "6697"),
    Placeholder("server_port", "port 6900;", "6900"),
    Placeholder("sid", 'sid "001";', "001"),
    Placeholder("kline_address", "set.this.to.email.address", mandatory=False),
    Placeholder("oper_name", "bobsmith", mandatory=False),
    Placeholder("oper_password", "$argon2id..etc..", mandatory=False, secret=True),
    Placeholder("cloak_key_1", "Oozahho1raezoh0iMee4ohch3cohs3ooDiu8Ohy0eeFee4",
                mandatory=False, secret=True),
    Placeholder("cloak_key", "and another one", secret=True),
)

SECRET_NAMES = frozenset(p.name for p in PLACEHOLDERS if p.secret)


def random_token(length: int) -> str:
    """Random letters+digits, guaranteed to contain all three classes."""
    while True:
        token = "".join(secrets.choice(SECRET_ALPHABET) for _ in range(length))
        if (length < 3 or (any(c.islower() for c in token)
                           and any(c.isupper() for c in token)
                           and any(c.isdigit() for c in token))):
            return token


class ConfigTemplate:
    """A config document with ``{{name}}`` placeholders."""

    def __init__(self, text: str):
        self.text = text

    @classmethod
    def from_example(
        cls,
        example_text: str,
        placeholders: Iterable[Placeholder] = PLACEHOLDERS,
    ) -> "ConfigTemplate":
        """Tokenize the default literals of an example config."""
        text = example_text
        missing: List[str] = []

        for placeholder in placeholders:
            if placeholder.literal in text:
                text = text.replace(placeholder.literal, placeholder.tokenized())
            elif placeholder.token in text:
                continue
            elif placeholder.mandatory:
                missing.append(placeholder.name)
            else:
                logger.warning(
                    f"Optional placeholder '{placeholder.name}' "
                    f"({placeholder.literal!r}) not found in template"
                )

        if missing:
            raise ConfigTemplateError(
                "Config template is missing mandatory placeholders: " + ", ".join(missing),
                missing=missing,
            )
        return cls(text)

    @property
    def tokens(self) -> List[str]:
        """Token names in document order (with repeats)."""
        return [m.group(1) for m in TOKEN_RE.finditer(self.text)]

    def render(self, values: Dict[str, Value]) -> str:
        """
        Resolve every token. Callable values are invoked once per occurrence,
        so repeated secret tokens each get their own value.
        """
        unresolved: List[str] = []

        def replacer(match: "re.Match") -> str:
            name = match.group(1)
            if name not in values:
                unresolved.append(name)
                return match.group(0)
            value = values[name]
            return value() if callable(value) else value

        rendered = TOKEN_RE.sub(replacer, self.text)
        if unresolved:
            names = sorted(set(unresolved))
            raise ConfigTemplateError(
                "Config template has unresolved placeholders: " + ", ".join(names),
                missing=names,
            )
        return rendered


def placeholder_values(
    identity: ServerIdentity,
    network_name: str = DEFAULT_NETWORK_NAME,
    secret: Callable[[int], str] = random_token,
) -> Dict[str, Value]:
    """Lookup table for one instance."""
    values: Dict[str, Value] = {
        "server_info": f"Test IRC Server {identity.index}",
        "hostname": identity.hostname,
        "network_name": network_name,
        "client_port": str(identity.client_port),
        "tls_port": str(identity.tls_port),
        "server_port": str(identity.server_port),
        "sid": identity.network_id,
        "kline_address": DEFAULT_KLINE_ADDRESS,
        "oper_name": DEFAULT_OPER_NAME,
        "oper_password": lambda: secret(24),
        "cloak_key_1": lambda: secret(80),
        "cloak_key": lambda: secret(80),
    }

    for name, value in values.items():
        if isinstance(value, str) and ("{{" in value or "}}" in value):
            raise ConfigTemplateError(f"Value for '{name}' contains a template token: {value!r}")

    return values


def header(identity: ServerIdentity, total_servers: int) -> str:
    return (
        f"// Test fleet server configuration - {identity.server_name}\n"
        f"// Auto-generated for server {identity.index} of {total_servers}\n\n"
    )


def compose(
    template_text: str,
    identity: ServerIdentity,
    total_servers: int,
    network_name: str = DEFAULT_NETWORK_NAME,
    secret: Callable[[int], str] = random_token,
) -> str:
    """Render the runtime configuration of one instance."""
    template = ConfigTemplate.from_example(template_text)
    values = placeholder_values(identity, network_name=network_name, secret=secret)
    return header(identity, total_servers) + template.render(values)
