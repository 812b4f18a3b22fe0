"""Build runner for executing the container build engine.

This module handles:
- Composing `docker build` (or compatible) commands from a plan
- Executing builds with subprocess and capturing output
- Enforcing build timeouts
- Verifying that the built image really exists

The secret is handed to the engine through the child environment and a
value-less ``--build-arg``, so it never appears in argv or in logs.
"""

from __future__ import annotations

import os
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from bacpac_imagegen.errors import (
    BUILD_TIMEOUT,
    ENGINE_UNAVAILABLE,
    BuildFailedError,
    BuildVerificationFailedError,
)
from bacpac_imagegen.log import ComponentLogger, get_logger
from bacpac_imagegen.types import BuildContext, BuildPlan, ImageInfo

# Lines of engine output repeated in the error log on failure
OUTPUT_TAIL_LINES = 20


@dataclass
class BuildResult:
    """Result of a build execution.

    Attributes:
        image: Verified image details.
        command: The command that was executed (secret-free).
        output: Combined engine output.
        started_at: Build start time.
        finished_at: Build finish time.
    """

    image: ImageInfo
    command: str
    output: str
    started_at: datetime
    finished_at: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


def compose_build_command(
    engine: str,
    plan: BuildPlan,
    context: BuildContext,
    no_cache: bool = False,
) -> list[str]:
    """Compose the build command for a plan.

    Args:
        engine: Build engine executable.
        plan: Validated build plan.
        context: Materialized build context.
        no_cache: Disable the engine's layer cache.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [
        engine,
        "build",
        "--file",
        str(context.dockerfile),
        "--tag",
        plan.image.reference,
        # Value comes from the environment
        "--build-arg",
        plan.secret_arg,
    ]

    for name, value in plan.build_args.items():
        cmd.extend(["--build-arg", f"{name}={value}"])

    if no_cache:
        cmd.append("--no-cache")

    cmd.append(str(context.root))
    return cmd


def _tail(output: str, lines: int = OUTPUT_TAIL_LINES) -> str:
    return "\n".join(output.splitlines()[-lines:])


class BuildExecutor:
    """Drive the build engine and verify its result.

    Args:
        engine: Build engine executable (docker, podman).
        build_timeout: Seconds before the build is killed (None = no limit).
        command_timeout: Timeout for short engine calls.
        logger: Component logger.
    """

    def __init__(
        self,
        engine: str = "docker",
        build_timeout: int | None = 3600,
        command_timeout: int = 120,
        logger: ComponentLogger | None = None,
    ) -> None:
        self.engine = engine
        self.build_timeout = build_timeout
        self.command_timeout = command_timeout
        self.logger = logger or get_logger("executor")

    def run_build(
        self,
        plan: BuildPlan,
        context: BuildContext,
        secret: str,
        no_cache: bool = False,
        log_path: Path | None = None,
    ) -> BuildResult:
        """Build the image and verify it exists.

        Args:
            plan: Validated build plan.
            context: Build context containing the generated Dockerfile.
            secret: Database secret injected as a build argument.
            no_cache: Disable the engine's layer cache.
            log_path: Optional file receiving the full engine output.

        Returns:
            BuildResult with the verified image.

        Raises:
            BuildFailedError: If the engine fails, times out or cannot start.
            BuildVerificationFailedError: If the image is missing afterwards.
        """
        cmd = compose_build_command(self.engine, plan, context, no_cache)
        cmd_str = shlex.join(cmd)
        self.logger.info(
            "Executing build: %s",
            cmd_str,
            properties={"image": plan.image.reference, "no_cache": no_cache},
        )

        env = dict(os.environ)
        env[plan.secret_arg] = secret

        started_at = datetime.now(timezone.utc)
        try:
            result = subprocess.run(
                cmd,
                cwd=context.root,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.build_timeout,
                env=env,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            output = e.output or ""
            if isinstance(output, bytes):
                output = output.decode("utf-8", errors="replace")
            self._write_log(log_path, cmd_str, output)
            raise BuildFailedError(
                f"Build timed out after {self.build_timeout} seconds",
                output=output,
                exit_code=-1,
                code=BUILD_TIMEOUT,
            ) from e
        except OSError as e:
            raise BuildFailedError(
                f"Failed to execute {self.engine}: {e}",
                code=ENGINE_UNAVAILABLE,
            ) from e

        finished_at = datetime.now(timezone.utc)
        output = result.stdout or ""
        self._write_log(log_path, cmd_str, output)

        if result.returncode != 0:
            self.logger.error(
                "Build failed with exit code %d:\n%s",
                result.returncode,
                _tail(output),
            )
            raise BuildFailedError(
                f"Build failed with exit code {result.returncode}",
                output=output,
                exit_code=result.returncode,
            )

        image = self.verify_image(plan.image.reference)
        build = BuildResult(
            image=image,
            command=cmd_str,
            output=output,
            started_at=started_at,
            finished_at=finished_at,
        )
        self.logger.info(
            "Built %s",
            plan.image.reference,
            properties={
                "image_id": image.image_id,
                "size_bytes": image.size_bytes,
                "seconds": round(build.duration_seconds, 1),
            },
        )
        return build

    def inspect_image(self, reference: str) -> ImageInfo | None:
        """Ask the engine for a local image's id and size.

        Returns:
            ImageInfo, or None if the engine does not know the image.
        """
        try:
            result = subprocess.run(
                [self.engine, "image", "inspect", "--format", "{{.Id}} {{.Size}}", reference],
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.debug("Image inspect failed for %s: %s", reference, e)
            return None

        if result.returncode != 0:
            return None

        parts = result.stdout.strip().split()
        if len(parts) != 2 or not parts[1].isdigit():
            self.logger.debug("Unexpected inspect output: %r", result.stdout)
            return None
        return ImageInfo(reference=reference, image_id=parts[0], size_bytes=int(parts[1]))

    def verify_image(self, reference: str) -> ImageInfo:
        """Confirm a freshly built image exists and is non-empty.

        Raises:
            BuildVerificationFailedError: If it does not.
        """
        info = self.inspect_image(reference)
        if info is None:
            raise BuildVerificationFailedError(reference, "engine has no such image")
        if info.size_bytes <= 0:
            raise BuildVerificationFailedError(reference, "image size is zero")
        return info

    def _write_log(self, log_path: Path | None, cmd_str: str, output: str) -> None:
        if log_path is None:
            return
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("w", encoding="utf-8") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write("# " + "=" * 70 + "\n\n")
            log_file.write(output)
        self.logger.debug("Wrote build log to %s", log_path)


__all__ = [
    "BuildExecutor",
    "BuildResult",
    "compose_build_command",
]
