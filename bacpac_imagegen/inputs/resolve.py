"""Path resolution for script inputs.

Entries are either literal paths or glob patterns. Output order is
lexicographic by absolute path; script numbering depends on it.
Unresolvable entries are reported as diagnostics, never as errors.
"""

from __future__ import annotations

import glob
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from bacpac_imagegen.inputs.validate import has_allowed_extension
from bacpac_imagegen.log import ComponentLogger, get_logger
from bacpac_imagegen.types import ScriptReference

GLOB_CHARS = frozenset("*?[")


@dataclass
class ResolutionResult:
    """Resolved paths plus per-entry diagnostics."""

    paths: list[Path] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)


def is_glob(entry: str) -> bool:
    """Return True if an entry contains glob metacharacters."""
    return any(c in GLOB_CHARS for c in entry)


def _expand_glob(entry: str, extensions: Sequence[str]) -> list[Path]:
    matches = glob.glob(str(Path(entry).expanduser()), recursive=True)
    return [
        Path(m).resolve()
        for m in matches
        if Path(m).is_file() and has_allowed_extension(Path(m), extensions)
    ]


def resolve_paths(
    entries: Sequence[str],
    extensions: Sequence[str],
    logger: ComponentLogger | None = None,
) -> ResolutionResult:
    """Resolve literal paths and glob patterns into a sorted file list.

    Args:
        entries: Literal paths or glob patterns.
        extensions: Extensions that glob matches must carry.
        logger: Component logger.

    Returns:
        ResolutionResult with de-duplicated paths sorted by full path.
    """
    log = logger or get_logger("resolver")
    result = ResolutionResult()
    resolved: set[Path] = set()

    for entry in entries:
        if not entry or not entry.strip():
            continue

        if is_glob(entry):
            matches = _expand_glob(entry, extensions)
            if not matches:
                message = f"Pattern matched no files: {entry}"
                result.diagnostics.append(message)
                log.warning(message, properties={"entry": entry})
                continue
            log.debug("Pattern %s matched %d file(s)", entry, len(matches))
            resolved.update(matches)
            continue

        path = Path(entry).expanduser()
        if not path.is_file():
            message = f"Script not found, skipping: {entry}"
            result.diagnostics.append(message)
            log.warning(message, properties={"entry": entry})
            continue
        resolved.add(path.resolve())

    result.paths = sorted(resolved, key=lambda p: str(p))
    log.info(
        "Resolved %d script(s) from %d entr%s",
        len(result.paths),
        len(entries),
        "y" if len(entries) == 1 else "ies",
    )
    return result


def assign_script_order(paths: Sequence[Path]) -> tuple[ScriptReference, ...]:
    """Number resolved scripts 1..n in the given (sorted) order."""
    return tuple(
        ScriptReference(source_path=path, execution_order=index)
        for index, path in enumerate(paths, start=1)
    )


def resolve_scripts(
    entries: Sequence[str],
    extensions: Sequence[str],
    logger: ComponentLogger | None = None,
) -> tuple[ScriptReference, ...]:
    """Resolve script entries and assign execution order.

    An empty result means no scripts were supplied.
    """
    result = resolve_paths(entries, extensions, logger)
    return assign_script_order(result.paths)


__all__ = [
    "ResolutionResult",
    "assign_script_order",
    "is_glob",
    "resolve_paths",
    "resolve_scripts",
]
