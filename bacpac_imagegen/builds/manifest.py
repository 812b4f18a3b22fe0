"""Build manifest generation.

The manifest is an audit record written next to the build context. It is
never consumed by later pipeline steps.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from bacpac_imagegen.log import ComponentLogger, get_logger
from bacpac_imagegen.types import BuildPlan

BYTES_PER_MB = 1024 * 1024


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with a ``Z`` suffix."""
    return (
        moment.astimezone(timezone.utc)
        .isoformat(timespec="seconds")
        .replace("+00:00", "Z")
    )


def generate_manifest(
    plan: BuildPlan,
    timestamp: datetime | None = None,
) -> dict[str, Any]:
    """Generate the manifest for a build plan.

    Args:
        plan: Validated build plan.
        timestamp: Build time (default: now).

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    moment = timestamp or datetime.now(timezone.utc)
    return {
        "imageReference": plan.image.reference,
        "artifacts": [
            {
                "sourceFile": str(a.source_path),
                "targetFile": f"artifacts/{a.target_name}",
                "logicalName": a.logical_name,
                "sizeMB": round(a.size_bytes / BYTES_PER_MB, 2),
            }
            for a in plan.artifacts
        ],
        "scriptCount": len(plan.scripts),
        "buildTimestamp": format_timestamp(moment),
        "mountPath": plan.mount_path,
    }


def write_manifest(
    manifest: dict[str, Any],
    output_path: Path,
    logger: ComponentLogger | None = None,
) -> Path:
    """Write a manifest to a JSON file.

    Args:
        manifest: Manifest dictionary.
        output_path: Output file path.
        logger: Component logger.

    Returns:
        Path to the written manifest file.
    """
    log = logger or get_logger("manifest")
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2)
        f.write("\n")

    log.debug("Wrote manifest to %s", output_path)
    return output_path


__all__ = ["format_timestamp", "generate_manifest", "write_manifest"]
