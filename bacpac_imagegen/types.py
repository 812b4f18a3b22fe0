"""Shared type definitions for bacpac_imagegen.

This module contains dataclasses, enums, and constants shared across
subpackages to avoid circular imports.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

# Build argument carrying the database secret into the importer stage
SECRET_BUILD_ARG = "SA_PASSWORD"

# Environment variable the runtime entrypoint reads the secret from
SECRET_RUNTIME_ENV = "MSSQL_SA_PASSWORD"

LOGICAL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")


class ArtifactKind(str, Enum):
    """Kind of input file handled by the pipeline."""

    BINARY_ARTIFACT = "binary-artifact"
    SCRIPT = "script"


class PublishOutcome(str, Enum):
    """Outcome of a single push attempt."""

    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable-failure"
    FATAL_FAILURE = "fatal-failure"


@dataclass(frozen=True)
class ArtifactReference:
    """A validated artifact with its assigned logical name."""

    source_path: Path
    logical_name: str
    size_bytes: int
    extension: str
    kind: ArtifactKind = ArtifactKind.BINARY_ARTIFACT

    def __post_init__(self) -> None:
        if self.size_bytes <= 0:
            raise ValueError(f"Artifact {self.source_path} is empty")
        if not LOGICAL_NAME_PATTERN.match(self.logical_name):
            raise ValueError(f"Invalid logical name: {self.logical_name!r}")

    @property
    def target_name(self) -> str:
        """File name inside the build context's artifacts directory."""
        return f"{self.logical_name}{self.extension}"


@dataclass(frozen=True)
class ScriptReference:
    """A resolved script with its 1-based execution order."""

    source_path: Path
    execution_order: int

    def __post_init__(self) -> None:
        if self.execution_order < 1:
            raise ValueError("execution_order is 1-based")

    @property
    def target_name(self) -> str:
        """Zero-padded file name preserving order under lexical sort."""
        return f"{self.execution_order:03d}_{self.source_path.name}"


@dataclass(frozen=True)
class ImageRef:
    """A local image name and tag."""

    name: str
    tag: str

    @property
    def reference(self) -> str:
        return f"{self.name}:{self.tag}"

    def __str__(self) -> str:
        return self.reference


@dataclass(frozen=True)
class BuildPlan:
    """Validated, in-memory description of what will be rendered and built.

    The secret value is never part of the plan; only the name of the
    build argument that carries it.
    """

    image: ImageRef
    artifacts: tuple[ArtifactReference, ...]
    scripts: tuple[ScriptReference, ...] = ()
    build_args: dict[str, str] = field(default_factory=dict)
    mount_path: str = "/var/opt/mssql/scripts"
    base_image: str = "mcr.microsoft.com/mssql/server:2022-latest"
    secret_arg: str = SECRET_BUILD_ARG
    startup_grace_seconds: int = 15
    engine_ready_timeout: int = 120

    def __post_init__(self) -> None:
        if not self.artifacts:
            raise ValueError("A build plan needs at least one artifact")
        seen: set[str] = set()
        for artifact in self.artifacts:
            key = artifact.logical_name.lower()
            if key in seen:
                raise ValueError(f"Duplicate logical name: {artifact.logical_name}")
            seen.add(key)
        orders = [s.execution_order for s in self.scripts]
        if any(b <= a for a, b in zip(orders, orders[1:])):
            raise ValueError("Script execution order must be strictly increasing")

    @property
    def build_variables(self) -> dict[str, str]:
        """Build-time variable names and their placeholders.

        The secret is always present as a placeholder so that generated
        output never contains a literal value.
        """
        variables = {self.secret_arg: f"${{{self.secret_arg}}}"}
        variables.update(self.build_args)
        return variables


@dataclass(frozen=True)
class BuildContext:
    """Paths inside a materialized build context directory."""

    root: Path

    @property
    def artifacts_dir(self) -> Path:
        return self.root / "artifacts"

    @property
    def scripts_dir(self) -> Path:
        return self.root / "scripts"

    @property
    def dockerfile(self) -> Path:
        return self.root / "Dockerfile"

    @property
    def entrypoint(self) -> Path:
        return self.root / "entrypoint.sh"

    @property
    def manifest_path(self) -> Path:
        return self.root / "build-manifest.json"


@dataclass
class ImageInfo:
    """Local image details reported by the build engine."""

    reference: str
    image_id: str
    size_bytes: int


@dataclass
class PublishAttempt:
    """Record of a single push attempt."""

    image_reference: str
    attempt_number: int
    outcome: PublishOutcome
    error: str | None = None


@dataclass
class FetchResult:
    """Result of an object storage fetch."""

    url: str
    path: Path
    strategy: str
    size_bytes: int


__all__ = [
    "LOGICAL_NAME_PATTERN",
    "SECRET_BUILD_ARG",
    "SECRET_RUNTIME_ENV",
    "ArtifactKind",
    "ArtifactReference",
    "BuildContext",
    "BuildPlan",
    "FetchResult",
    "ImageInfo",
    "ImageRef",
    "PublishAttempt",
    "PublishOutcome",
    "ScriptReference",
]
