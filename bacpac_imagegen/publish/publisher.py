"""Image publishing with bounded exponential-backoff retry.

Each requested tag is applied locally and pushed. A failed push is retried
after ``base ** attempt * unit`` seconds until the attempt limit is
reached. A remote existence check follows each successful push, but its
failure is only a warning: the push engine's success is authoritative.
"""

from __future__ import annotations

import shlex
import subprocess
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from bacpac_imagegen.errors import (
    ENGINE_UNAVAILABLE,
    PublishError,
    PublishExhaustedError,
)
from bacpac_imagegen.log import ComponentLogger, get_logger
from bacpac_imagegen.types import PublishAttempt, PublishOutcome


@dataclass
class PublishResult:
    """Result of publishing one image under one or more tags."""

    references: list[str] = field(default_factory=list)
    attempts: list[PublishAttempt] = field(default_factory=list)


def backoff_delay(attempt: int, base: int = 2, unit: float = 5.0) -> float:
    """Return the wait after a failed attempt (1-based)."""
    return float(base**attempt) * unit


def unique_tags(primary: str, aliases: Sequence[str] = ()) -> list[str]:
    """Primary tag first, then aliases, without duplicates."""
    tags: list[str] = []
    for tag in (primary, *aliases):
        tag = tag.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


class Publisher:
    """Tag and push images to a remote repository.

    Args:
        engine: Container engine executable.
        max_attempts: Maximum push attempts per tag.
        backoff_base: Exponential base.
        backoff_unit: Seconds multiplied by ``base ** attempt``.
        push_timeout: Timeout for one push attempt.
        command_timeout: Timeout for tag and inspect calls.
        sleep: Sleep function (injectable for tests).
        logger: Component logger.
    """

    def __init__(
        self,
        engine: str = "docker",
        max_attempts: int = 3,
        backoff_base: int = 2,
        backoff_unit: float = 5.0,
        push_timeout: int = 1800,
        command_timeout: int = 120,
        sleep: Callable[[float], None] = time.sleep,
        logger: ComponentLogger | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.engine = engine
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_unit = backoff_unit
        self.push_timeout = push_timeout
        self.command_timeout = command_timeout
        self.sleep = sleep
        self.logger = logger or get_logger("publisher")

    def _run(self, cmd: list[str], timeout: int) -> subprocess.CompletedProcess[str]:
        self.logger.debug("Running: %s", shlex.join(cmd))
        return subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout,
            check=False,
        )

    def tag_image(self, local_ref: str, remote_ref: str) -> None:
        """Apply a remote tag to a local image.

        Raises:
            PublishError: If tagging fails.
        """
        try:
            result = self._run([self.engine, "tag", local_ref, remote_ref], self.command_timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise PublishError(f"Failed to tag {local_ref} as {remote_ref}: {e}") from e
        if result.returncode != 0:
            raise PublishError(
                f"Failed to tag {local_ref} as {remote_ref}: {result.stdout.strip()}"
            )

    def push_with_retry(self, remote_ref: str) -> list[PublishAttempt]:
        """Push one reference, retrying with exponential backoff.

        Returns:
            Attempt records, the last one successful.

        Raises:
            PublishError: If the engine cannot be executed at all.
            PublishExhaustedError: If every attempt failed.
        """
        attempts: list[PublishAttempt] = []
        last_error = ""

        for attempt in range(1, self.max_attempts + 1):
            self.logger.info(
                "Pushing %s (attempt %d/%d)",
                remote_ref,
                attempt,
                self.max_attempts,
            )
            try:
                result = self._run([self.engine, "push", remote_ref], self.push_timeout)
                succeeded = result.returncode == 0
                last_error = "" if succeeded else result.stdout.strip()
            except subprocess.TimeoutExpired:
                succeeded = False
                last_error = f"push timed out after {self.push_timeout}s"
            except OSError as e:
                attempts.append(
                    PublishAttempt(remote_ref, attempt, PublishOutcome.FATAL_FAILURE, str(e))
                )
                raise PublishError(
                    f"Failed to execute {self.engine}: {e}", code=ENGINE_UNAVAILABLE
                ) from e

            if succeeded:
                attempts.append(PublishAttempt(remote_ref, attempt, PublishOutcome.SUCCESS))
                self.logger.info("Pushed %s", remote_ref, properties={"attempt": attempt})
                return attempts

            attempts.append(
                PublishAttempt(
                    remote_ref, attempt, PublishOutcome.RETRYABLE_FAILURE, last_error
                )
            )
            if attempt == self.max_attempts:
                break

            delay = backoff_delay(attempt, self.backoff_base, self.backoff_unit)
            self.logger.warning(
                "Push of %s failed, retrying in %.0fs",
                remote_ref,
                delay,
                properties={"attempt": attempt, "error": last_error[-500:]},
            )
            self.sleep(delay)

        raise PublishExhaustedError(remote_ref, self.max_attempts, last_error[-500:])

    def verify_remote(self, remote_ref: str) -> bool:
        """Best-effort check that the pushed reference is visible remotely."""
        try:
            result = self._run(
                [self.engine, "manifest", "inspect", remote_ref], self.command_timeout
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.warning("Could not verify %s in the registry: %s", remote_ref, e)
            return False

        if result.returncode != 0:
            self.logger.warning(
                "Could not verify %s in the registry: %s",
                remote_ref,
                result.stdout.strip()[-500:],
            )
            return False
        self.logger.debug("Verified %s in the registry", remote_ref)
        return True

    def publish(
        self,
        local_ref: str,
        repository: str,
        tags: Sequence[str] = (),
    ) -> PublishResult:
        """Tag and push a local image under every requested tag.

        Args:
            local_ref: Local image reference (``name:tag``).
            repository: Remote repository (``registry/namespace/name``).
            tags: Tags to publish; defaults to the local tag.

        Returns:
            PublishResult listing pushed references and all attempts.

        Raises:
            PublishError: If tagging fails.
            PublishExhaustedError: If a push exhausts its attempts.
        """
        if not tags:
            _, sep, local_tag = local_ref.rpartition(":")
            tags = [local_tag if sep and "/" not in local_tag else "latest"]

        result = PublishResult()
        for tag in unique_tags(tags[0], tags[1:]):
            remote_ref = f"{repository}:{tag}"
            self.tag_image(local_ref, remote_ref)
            result.attempts.extend(self.push_with_retry(remote_ref))
            self.verify_remote(remote_ref)
            result.references.append(remote_ref)

        self.logger.info(
            "Published %s",
            local_ref,
            properties={"references": result.references},
        )
        return result


__all__ = ["PublishResult", "Publisher", "backoff_delay", "unique_tags"]
