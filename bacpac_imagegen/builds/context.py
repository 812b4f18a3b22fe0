"""Build context assembly.

This module handles:
- Creating a fresh, uniquely named temporary context directory
- Copying artifacts and scripts under their canonical names
- Verifying every copy by length
- Removing the context on every exit path

The context is exclusively owned by one pipeline invocation and is never
reused; a crashed run leaves a uniquely named directory behind rather
than a half-populated shared one.
"""

from __future__ import annotations

import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from bacpac_imagegen.errors import ContextAssemblyError
from bacpac_imagegen.log import ComponentLogger, get_logger
from bacpac_imagegen.types import BuildContext, BuildPlan

CONTEXT_PREFIX = "bacpac-imagegen-"

DOCKERIGNORE = "build-manifest.json\n"


def copy_verified(source: Path, dest: Path) -> int:
    """Copy a file and verify the copy's length.

    Args:
        source: Source file.
        dest: Destination path (parent must exist).

    Returns:
        Number of bytes copied.

    Raises:
        ContextAssemblyError: If the copy fails or lengths differ.
    """
    try:
        expected = source.stat().st_size
        shutil.copyfile(source, dest)
        actual = dest.stat().st_size
    except OSError as e:
        raise ContextAssemblyError(f"Failed to copy {source} -> {dest}: {e}") from e

    if actual != expected:
        raise ContextAssemblyError(
            f"Copy of {source} is incomplete: {actual} of {expected} bytes"
        )
    return actual


def create_context_dir(tmp_dir: Path | None = None) -> Path:
    """Create a fresh, uniquely named context directory."""
    if tmp_dir is not None:
        tmp_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    return Path(
        tempfile.mkdtemp(
            prefix=f"{CONTEXT_PREFIX}{stamp}-",
            dir=str(tmp_dir) if tmp_dir else None,
        )
    )


def populate_context(
    context: BuildContext,
    plan: BuildPlan,
    logger: ComponentLogger | None = None,
) -> None:
    """Copy artifacts and scripts into a context directory.

    Raises:
        ContextAssemblyError: If any copy fails.
    """
    log = logger or get_logger("context")

    context.artifacts_dir.mkdir()
    context.scripts_dir.mkdir()

    for artifact in plan.artifacts:
        dest = context.artifacts_dir / artifact.target_name
        size = copy_verified(artifact.source_path, dest)
        log.debug(
            "Staged artifact %s -> artifacts/%s",
            artifact.source_path,
            artifact.target_name,
            properties={"size_bytes": size},
        )

    for script in plan.scripts:
        copy_verified(script.source_path, context.scripts_dir / script.target_name)
        log.debug("Staged script %s -> scripts/%s", script.source_path, script.target_name)

    (context.root / ".dockerignore").write_text(DOCKERIGNORE, encoding="utf-8")

    log.info(
        "Assembled build context with %d artifact(s) and %d script(s)",
        len(plan.artifacts),
        len(plan.scripts),
        properties={"context": str(context.root)},
    )


def remove_context(root: Path, logger: ComponentLogger | None = None) -> None:
    """Remove a context directory, logging rather than raising on failure."""
    log = logger or get_logger("context")
    try:
        shutil.rmtree(root)
        log.debug("Removed build context %s", root)
    except FileNotFoundError:
        pass
    except OSError as e:
        log.warning("Failed to remove build context %s: %s", root, e)


@contextmanager
def build_context(
    plan: BuildPlan,
    tmp_dir: Path | None = None,
    keep: bool = False,
    logger: ComponentLogger | None = None,
) -> Iterator[BuildContext]:
    """Materialize a build context for the duration of a block.

    Args:
        plan: Validated build plan.
        tmp_dir: Parent directory override.
        keep: Keep the directory afterwards (debugging only).
        logger: Component logger.

    Yields:
        BuildContext for the populated directory.

    Raises:
        ContextAssemblyError: If the directory cannot be populated.
    """
    log = logger or get_logger("context")

    try:
        root = create_context_dir(tmp_dir)
    except OSError as e:
        raise ContextAssemblyError(f"Failed to create build context: {e}") from e

    context = BuildContext(root=root)
    try:
        populate_context(context, plan, log)
        yield context
    finally:
        if keep:
            log.info("Keeping build context at %s", root)
        else:
            remove_context(root, log)


__all__ = [
    "CONTEXT_PREFIX",
    "build_context",
    "copy_verified",
    "create_context_dir",
    "populate_context",
    "remove_context",
]
