#!/usr/bin/env python3
"""
Central path configuration for the fleet tools.

This module provides path utilities that:
1. Support environment variable overrides (FLEET_PARENT_DIR, FLEET_CONFIG_DIR)
2. Auto-detect the project root (for configs/)
3. Provide consistent paths across all modules

Usage:
    from core.paths import get_fleet_parent_dir, resolve_path

    parent = get_fleet_parent_dir()   # where fleet directories live
    path = resolve_path("~/fleets")   # home expansion
"""

import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def get_project_dir() -> Path:
    """Repository root (the directory holding configs/)."""
    return PROJECT_ROOT


def get_config_dir() -> Path:
    """Directory holding YAML settings (FLEET_CONFIG_DIR or <project>/configs)."""
    env_path = os.environ.get("FLEET_CONFIG_DIR")
    if env_path:
        return Path(env_path).expanduser()
    return PROJECT_ROOT / "configs"


def resolve_path(path_spec: str, base: Optional[Path] = None) -> Path:
    """
    Resolve a path specification.

    Supports:
    - ~/path - Home expansion
    - $VAR/path - Environment expansion
    - /absolute - Unchanged
    - relative - Relative to `base` (default: project root)
    """
    expanded = os.path.expandvars(path_spec)

    if expanded.startswith("~"):
        return Path(expanded).expanduser()

    path = Path(expanded)
    if path.is_absolute():
        return path

    return (base or PROJECT_ROOT) / path


def get_fleet_parent_dir(configured: Optional[str] = None) -> Path:
    """
    Directory scanned for and populated with fleet directories.

    Resolution order:
    1. FLEET_PARENT_DIR environment variable (relative to the working directory)
    2. `configured` value from settings (relative to the project root)
    3. The user's home directory
    """
    env_path = os.environ.get("FLEET_PARENT_DIR")
    if env_path:
        return resolve_path(env_path, base=Path.cwd())
    if configured:
        return resolve_path(configured)
    return Path.home()
