"""
Core utilities shared by the fleet tools.

- paths.py: project root, config dir and fleet parent dir resolution
- config_loader.py: YAML loading with ${VAR} expansion into dataclasses
- atomic_ops.py: temp-file-and-rename writes for configs and manifests
"""

__version__ = "0.1.0"
