"""Build plan construction and secret policy.

A BuildPlan is the validated, in-memory description that the synthesizer
renders. Image references are checked here so that a bad name fails
before any context is assembled.
"""

from __future__ import annotations

import os
import re
import sys
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING

from bacpac_imagegen.errors import (
    INVALID_IMAGE_REFERENCE,
    InsecureSecretError,
    ValidationError,
)
from bacpac_imagegen.log import ComponentLogger, get_logger
from bacpac_imagegen.types import (
    SECRET_BUILD_ARG,
    ArtifactReference,
    BuildPlan,
    ImageRef,
    ScriptReference,
)

if TYPE_CHECKING:
    from bacpac_imagegen.config import Settings

# Well-known insecure secret, for disposable local testing only
DEFAULT_INSECURE_SECRET = "YourStrong@Passw0rd123"

# Environment variables that mark a non-interactive CI session
CI_ENV_VARS = ("CI", "BUILD_ID", "GITHUB_ACTIONS", "TF_BUILD", "GITLAB_CI")

_NAME_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*"
IMAGE_NAME_PATTERN = re.compile(
    rf"^(?:[A-Za-z0-9.-]+(?::[0-9]+)?/)?{_NAME_COMPONENT}(?:/{_NAME_COMPONENT})*$"
)
IMAGE_TAG_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
BUILD_ARG_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_image_ref(name: str, tag: str) -> ImageRef:
    """Validate an image name and tag.

    Raises:
        ValidationError: If either part is malformed.
    """
    if not name or not IMAGE_NAME_PATTERN.match(name):
        raise ValidationError(
            f"Invalid image name: {name!r}",
            code=INVALID_IMAGE_REFERENCE,
        )
    if not tag or not IMAGE_TAG_PATTERN.match(tag):
        raise ValidationError(
            f"Invalid image tag: {tag!r}",
            code=INVALID_IMAGE_REFERENCE,
        )
    return ImageRef(name=name, tag=tag)


def parse_build_args(pairs: Sequence[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` strings into a mapping.

    Raises:
        ValidationError: If a pair is malformed.
    """
    result: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not BUILD_ARG_PATTERN.match(key):
            raise ValidationError(
                f"Build argument must look like KEY=VALUE, got {pair!r}",
                code="invalid_build_arg",
            )
        result[key] = value
    return result


def is_interactive_session(environ: Mapping[str, str] | None = None) -> bool:
    """Return True when attached to a terminal and not running under CI."""
    env = os.environ if environ is None else environ
    if any(env.get(var) for var in CI_ENV_VARS):
        return False
    try:
        return sys.stdin.isatty()
    except (AttributeError, ValueError):
        return False


def resolve_secret(
    secret: str | None,
    allow_insecure_default: bool = False,
    interactive: bool | None = None,
    logger: ComponentLogger | None = None,
) -> str:
    """Return the database secret to inject at build time.

    The well-known default is only reachable when explicitly allowed and
    the session is interactive; CI and other non-interactive sessions
    must always supply a secret.

    Raises:
        InsecureSecretError: If no secret is available.
    """
    log = logger or get_logger("pipeline")

    if secret:
        return secret

    if not allow_insecure_default:
        raise InsecureSecretError(
            "pass --secret or set BACPAC_IMG_SECRET "
            "(the insecure default is disabled)"
        )

    if interactive is None:
        interactive = is_interactive_session()
    if not interactive:
        raise InsecureSecretError(
            "the insecure default is never used in non-interactive or CI sessions"
        )

    log.warning(
        "Using the well-known default secret; the image is only fit for local testing"
    )
    return DEFAULT_INSECURE_SECRET


def create_build_plan(
    image_name: str,
    tag: str,
    artifacts: Sequence[ArtifactReference],
    scripts: Sequence[ScriptReference] = (),
    build_args: Mapping[str, str] | None = None,
    settings: Settings | None = None,
) -> BuildPlan:
    """Create a validated build plan.

    Args:
        image_name: Local image name.
        tag: Local image tag.
        artifacts: Named artifacts in import order.
        scripts: Ordered scripts.
        build_args: Extra build-time variables.
        settings: Settings providing base image, mount path and timings.

    Returns:
        BuildPlan instance.

    Raises:
        ValidationError: If the image reference or build args are invalid.
    """
    image = validate_image_ref(image_name, tag)

    extras = dict(build_args or {})
    if SECRET_BUILD_ARG in extras:
        raise ValidationError(
            f"{SECRET_BUILD_ARG} is reserved for the database secret",
            code="invalid_build_arg",
        )

    options: dict[str, object] = {}
    if settings is not None:
        options = {
            "mount_path": settings.mount_path,
            "base_image": settings.base_image,
            "startup_grace_seconds": settings.startup_grace_seconds,
            "engine_ready_timeout": settings.engine_ready_timeout,
        }

    return BuildPlan(
        image=image,
        artifacts=tuple(artifacts),
        scripts=tuple(scripts),
        build_args=dict(sorted(extras.items())),
        **options,  # type: ignore[arg-type]
    )


__all__ = [
    "CI_ENV_VARS",
    "DEFAULT_INSECURE_SECRET",
    "create_build_plan",
    "is_interactive_session",
    "parse_build_args",
    "resolve_secret",
    "validate_image_ref",
]
