"""Logical name assignment for artifacts.

A logical name is both the imported database name and the artifact's
file name inside the build context. Explicit names win; otherwise the
name is derived from the file name. Collisions are fatal.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from pathlib import Path

from bacpac_imagegen.errors import (
    DuplicateLogicalNameError,
    InvalidLogicalNameError,
)
from bacpac_imagegen.log import ComponentLogger, get_logger
from bacpac_imagegen.types import LOGICAL_NAME_PATTERN, ArtifactReference

_INVALID_CHARS = re.compile(r"[^A-Za-z0-9_]")


def sanitize_name(filename: str) -> str:
    """Derive a logical name from a file name.

    The final extension is dropped and every character outside
    ``[A-Za-z0-9_]`` becomes ``_``.

    Args:
        filename: Base file name, e.g. ``prod-db.2024.bacpac``.

    Returns:
        Sanitized name, e.g. ``prod_db_2024``.
    """
    return _INVALID_CHARS.sub("_", Path(filename).stem)


def _explicit_name(names: Sequence[str] | None, index: int) -> str | None:
    if names is None or index >= len(names):
        return None
    name = names[index].strip()
    if not name:
        raise InvalidLogicalNameError(
            f"Explicit name at position {index + 1} is empty", index=index
        )
    if not LOGICAL_NAME_PATTERN.match(name):
        raise InvalidLogicalNameError(
            f"Explicit name {name!r} may only contain letters, digits and '_'",
            index=index,
        )
    return name


def resolve_logical_names(
    sources: Sequence[tuple[str, str]],
    names: Sequence[str] | None = None,
) -> list[tuple[str, bool]]:
    """Work out logical names from file names alone.

    Args:
        sources: (source label, file name) pairs in input order. The label
            (a path or URL) is only used in error messages.
        names: Optional explicit names aligned by index.

    Returns:
        (logical name, explicit) pairs in input order.

    Raises:
        InvalidLogicalNameError: If an explicit name is empty or malformed,
            or more names than artifacts were given.
        DuplicateLogicalNameError: If two artifacts share a logical name.
    """
    if names is not None and len(names) > len(sources):
        raise InvalidLogicalNameError(
            f"{len(names)} names given for {len(sources)} artifact(s)"
        )

    resolved: list[tuple[str, bool]] = []
    owners: dict[str, str] = {}

    for index, (source, filename) in enumerate(sources):
        explicit = _explicit_name(names, index)
        logical_name = explicit if explicit is not None else sanitize_name(filename)

        # Database names are case-insensitive in the target engine
        key = logical_name.lower()
        if key in owners:
            raise DuplicateLogicalNameError(logical_name, owners[key], source)
        owners[key] = source
        resolved.append((logical_name, explicit is not None))

    return resolved


def assign_identities(
    validated: Sequence[tuple[Path, int]],
    names: Sequence[str] | None = None,
    logger: ComponentLogger | None = None,
) -> tuple[ArtifactReference, ...]:
    """Assign a logical name to each validated artifact.

    Args:
        validated: (path, size) tuples from the validator, in input order.
        names: Optional explicit names aligned by index.
        logger: Component logger.

    Returns:
        ArtifactReference tuple in input order.

    Raises:
        InvalidLogicalNameError: If an explicit name is empty or malformed,
            or more names than artifacts were given.
        DuplicateLogicalNameError: If two artifacts share a logical name.
    """
    log = logger or get_logger("identity")
    resolved = resolve_logical_names(
        [(str(path), path.name) for path, _ in validated], names
    )

    references: list[ArtifactReference] = []
    for (path, size_bytes), (logical_name, explicit) in zip(validated, resolved):
        log.debug(
            "Assigned %s -> %s (%s)",
            path.name,
            logical_name,
            "explicit" if explicit else "derived",
        )
        references.append(
            ArtifactReference(
                source_path=path,
                logical_name=logical_name,
                size_bytes=size_bytes,
                extension=path.suffix.lower(),
            )
        )

    log.info(
        "Assigned logical names: %s",
        ", ".join(r.logical_name for r in references),
    )
    return tuple(references)


__all__ = ["assign_identities", "resolve_logical_names", "sanitize_name"]
