#!/usr/bin/env python3
"""
Atomic Operations Utility
Write-to-temp-then-rename helpers so that a config file or fleet manifest is
either fully old or fully new, never half written.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional


def _replace_atomic(payload: str, path: Path, suffix: str, mode: Optional[int]) -> None:
    path = Path(path)

    # Temp file must live in the same directory (same filesystem) for rename to be atomic
    temp_fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.tmp.",
        suffix=suffix,
    )

    try:
        with os.fdopen(temp_fd, "w") as f:
            f.write(payload)

        if mode is None and path.exists():
            mode = path.stat().st_mode & 0o777
        os.chmod(temp_path, mode if mode is not None else 0o644)

        os.replace(temp_path, path)

    except BaseException:
        try:
            os.unlink(temp_path)
        except FileNotFoundError:
            pass
        raise


def write_text_atomic(content: str, path: Path, mode: Optional[int] = None) -> None:
    """
    Write a text file atomically.

    Keeps the permissions of an existing file unless `mode` is given.
    """
    _replace_atomic(content, path, ".txt", mode)


def write_json_atomic(data: Dict[str, Any], path: Path) -> None:
    """Write a JSON document atomically (indent=2, trailing newline)."""
    _replace_atomic(json.dumps(data, indent=2) + "\n", path, ".json", None)
