"""YAML configuration loader with environment variable support."""

import os
import re
from dataclasses import fields, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Type, TypeVar, Union, get_type_hints

import yaml

T = TypeVar('T')

_ENV_PATTERN = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')


def expand_env_vars(value: Any) -> Any:
    """
    Recursively expand environment variables in strings.

    Supports:
    - ${VAR} - required variable
    - ${VAR:-default} - variable with default
    """
    if isinstance(value, str):
        def replacer(match):
            var_name = match.group(1)
            default = match.group(2)
            env_value = os.environ.get(var_name)
            if env_value is not None:
                return env_value
            if default is not None:
                return default
            # Return original if no value and no default
            return match.group(0)

        return _ENV_PATTERN.sub(replacer, value)

    elif isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [expand_env_vars(v) for v in value]

    return value


def load_yaml(path: Union[Path, str]) -> dict:
    """Load a YAML file with environment variable expansion."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Config file {path} is not valid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(data).__name__}")

    return expand_env_vars(data)


def dict_to_dataclass(data: dict, cls: Type[T]) -> T:
    """Convert a dict to a dataclass instance. Unknown keys are ignored."""
    if not is_dataclass(cls):
        raise TypeError(f"{cls} is not a dataclass")

    hints = get_type_hints(cls)
    field_names = {f.name for f in fields(cls)}
    filtered = {}

    for key, value in data.items():
        if key not in field_names:
            continue

        field_type = hints.get(key)

        # Handle Enum conversion
        if isinstance(field_type, type) and issubclass(field_type, Enum):
            if isinstance(value, str):
                value = field_type(value)

        # Handle nested dataclass
        elif is_dataclass(field_type):
            if value is None:
                continue
            if not isinstance(value, dict):
                raise TypeError(
                    f"{cls.__name__}.{key} must be a mapping, got {type(value).__name__}"
                )
            value = dict_to_dataclass(value, field_type)

        filtered[key] = value

    return cls(**filtered)
