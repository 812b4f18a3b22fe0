"""Artifact validation.

Every artifact must exist, be a readable regular file with non-zero
length, and carry an allowed extension. The first failure aborts the
whole pipeline; nothing is validated partially.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from pathlib import Path

from bacpac_imagegen.errors import (
    InvalidExtensionError,
    MissingArtifactError,
    NoArtifactsProvidedError,
    UnreadableArtifactError,
)
from bacpac_imagegen.log import ComponentLogger, get_logger

# Exports smaller than this are almost certainly truncated
SUSPICIOUS_SIZE_BYTES = 1024


def normalize_extensions(extensions: Sequence[str]) -> list[str]:
    """Lower-case extensions and ensure a leading dot."""
    normalized = []
    for ext in extensions:
        ext = ext.strip().lower()
        if not ext:
            continue
        normalized.append(ext if ext.startswith(".") else f".{ext}")
    return normalized


def has_allowed_extension(path: Path, extensions: Sequence[str]) -> bool:
    """Check a path's final suffix against an allow-list (case-insensitive)."""
    return path.suffix.lower() in normalize_extensions(extensions)


def validate_artifact(
    path: Path,
    allowed_extensions: Sequence[str],
    logger: ComponentLogger | None = None,
) -> tuple[Path, int]:
    """Validate a single artifact.

    Args:
        path: Artifact path.
        allowed_extensions: Allowed file extensions.
        logger: Component logger.

    Returns:
        Tuple of (absolute path, size in bytes).

    Raises:
        MissingArtifactError: If the path is missing or not a file.
        InvalidExtensionError: If the extension is not allowed.
        UnreadableArtifactError: If the file cannot be read or is empty.
    """
    log = logger or get_logger("validator")

    if not path.exists() or not path.is_file():
        raise MissingArtifactError(str(path))

    allowed = normalize_extensions(allowed_extensions)
    if not has_allowed_extension(path, allowed):
        raise InvalidExtensionError(str(path), allowed)

    if not os.access(path, os.R_OK):
        raise UnreadableArtifactError(str(path), "permission denied")

    try:
        size_bytes = path.stat().st_size
        with path.open("rb") as f:
            f.read(1)
    except OSError as e:
        raise UnreadableArtifactError(str(path), str(e)) from e

    if size_bytes == 0:
        raise UnreadableArtifactError(str(path), "file is empty")

    if size_bytes < SUSPICIOUS_SIZE_BYTES:
        log.warning(
            "Artifact %s appears to be too small (%d bytes)",
            path.name,
            size_bytes,
            properties={"path": str(path), "size_bytes": size_bytes},
        )

    return path.resolve(), size_bytes


def validate_artifacts(
    paths: Sequence[str | Path],
    allowed_extensions: Sequence[str],
    logger: ComponentLogger | None = None,
) -> list[tuple[Path, int]]:
    """Validate all artifacts, in input order.

    Args:
        paths: Artifact paths.
        allowed_extensions: Allowed file extensions.
        logger: Component logger.

    Returns:
        List of (absolute path, size in bytes) tuples.

    Raises:
        NoArtifactsProvidedError: If ``paths`` is empty.
        ValidationError: From validate_artifact() for the first bad artifact.
    """
    log = logger or get_logger("validator")

    if not paths:
        raise NoArtifactsProvidedError()

    validated = []
    for raw in paths:
        path, size_bytes = validate_artifact(Path(raw), allowed_extensions, log)
        log.debug(
            "Validated artifact %s (%d bytes)",
            path,
            size_bytes,
        )
        validated.append((path, size_bytes))

    log.info("Validated %d artifact(s)", len(validated))
    return validated


__all__ = [
    "SUSPICIOUS_SIZE_BYTES",
    "has_allowed_extension",
    "normalize_extensions",
    "validate_artifact",
    "validate_artifacts",
]
