"""Input handling module.

This module handles:
- Artifact validation (existence, readability, size, extension)
- Script path and glob resolution with deterministic ordering
- Logical name assignment for artifacts
"""

from bacpac_imagegen.inputs.naming import assign_identities, sanitize_name
from bacpac_imagegen.inputs.resolve import resolve_paths, resolve_scripts
from bacpac_imagegen.inputs.validate import validate_artifacts

__all__ = [
    "assign_identities",
    "resolve_paths",
    "resolve_scripts",
    "sanitize_name",
    "validate_artifacts",
]
