"""Build service module.

This module provides the high-level pipeline API:
- prepare_plan(): validate inputs, resolve scripts, name artifacts
- render_plan(): synthesize build files without touching the engine
- run_pipeline(): fetch, validate, assemble, synthesize, build, verify,
  and optionally publish

The pipeline is strictly sequential and all-or-nothing. Temporary
directories (downloads and the build context) are removed on every exit
path before an error propagates.
"""

from __future__ import annotations

import tempfile
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from bacpac_imagegen.builds.context import build_context
from bacpac_imagegen.builds.manifest import generate_manifest, write_manifest
from bacpac_imagegen.builds.plan import create_build_plan, validate_image_ref
from bacpac_imagegen.builds.runner import BuildExecutor, BuildResult
from bacpac_imagegen.builds.synth import (
    render_dockerfile,
    render_entrypoint,
    write_build_files,
)
from bacpac_imagegen.config import get_settings
from bacpac_imagegen.errors import NoArtifactsProvidedError, ValidationError
from bacpac_imagegen.inputs.naming import assign_identities, resolve_logical_names
from bacpac_imagegen.inputs.resolve import assign_script_order, resolve_paths
from bacpac_imagegen.inputs.validate import validate_artifacts
from bacpac_imagegen.log import ComponentLogger, get_logger
from bacpac_imagegen.publish.publisher import Publisher, PublishResult
from bacpac_imagegen.storage.fetch import (
    AzCliStorageBackend,
    StorageBackend,
    fetch_blob,
    is_remote_reference,
    parse_blob_url,
)
from bacpac_imagegen.types import BuildPlan, FetchResult

if TYPE_CHECKING:
    from bacpac_imagegen.builds.request import BuildRequestSchema
    from bacpac_imagegen.config import Settings


@dataclass
class PreparedPlan:
    """A validated plan plus resolution diagnostics."""

    plan: BuildPlan
    diagnostics: list[str] = field(default_factory=list)


@dataclass
class PipelineResult:
    """Outcome of a successful pipeline run."""

    plan: BuildPlan
    build: BuildResult
    manifest: dict[str, Any]
    publish: PublishResult | None = None
    fetched: list[FetchResult] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly summary."""
        return {
            "image": self.plan.image.reference,
            "image_id": self.build.image.image_id,
            "size_bytes": self.build.image.size_bytes,
            "duration_seconds": round(self.build.duration_seconds, 1),
            "manifest": self.manifest,
            "published": self.publish.references if self.publish else [],
            "fetched": [
                {"url": f.url, "strategy": f.strategy, "size_bytes": f.size_bytes}
                for f in self.fetched
            ],
            "diagnostics": self.diagnostics,
        }


def prepare_plan(
    request: BuildRequestSchema,
    settings: Settings,
    artifact_paths: list[str] | None = None,
    logger: ComponentLogger | None = None,
) -> PreparedPlan:
    """Validate inputs and build a plan.

    Args:
        request: Build request.
        settings: Effective settings.
        artifact_paths: Local artifact paths replacing request.artifacts
            (used once remote artifacts have been fetched).
        logger: Pipeline logger.

    Returns:
        PreparedPlan with the plan and script diagnostics.

    Raises:
        ValidationError: For any invalid input.
    """
    log = logger or get_logger("pipeline")
    paths = request.artifacts if artifact_paths is None else artifact_paths

    validated = validate_artifacts(
        paths, settings.artifact_extensions, log.child("validator")
    )
    resolution = resolve_paths(
        request.scripts, settings.script_extensions, log.child("resolver")
    )
    scripts = assign_script_order(resolution.paths)
    if not scripts:
        log.info("No scripts supplied")
    artifacts = assign_identities(validated, request.names, log.child("identity"))

    plan = create_build_plan(
        image_name=request.image_name,
        tag=request.tag,
        artifacts=artifacts,
        scripts=scripts,
        build_args=request.build_args,
        settings=settings,
    )
    return PreparedPlan(plan=plan, diagnostics=resolution.diagnostics)


def render_plan(
    request: BuildRequestSchema,
    settings: Settings | None = None,
    logger: ComponentLogger | None = None,
) -> tuple[BuildPlan, str, str]:
    """Render the Dockerfile and entrypoint for a request without building.

    Returns:
        Tuple of (plan, dockerfile text, entrypoint text).

    Raises:
        ValidationError: For invalid inputs or remote artifacts.
    """
    settings = settings or get_settings()
    remote = [a for a in request.artifacts if is_remote_reference(a)]
    if remote:
        raise ValidationError(
            "Rendering a plan requires local artifacts; fetch remote ones first",
            code="remote_artifact",
            details={"artifacts": remote},
        )
    prepared = prepare_plan(request, settings, logger=logger)
    plan = prepared.plan
    return plan, render_dockerfile(plan), render_entrypoint(plan)


def _prevalidate(
    request: BuildRequestSchema,
    settings: Settings,
    log: ComponentLogger,
) -> None:
    """Reject bad local inputs before any external call is made."""
    if not request.artifacts:
        raise NoArtifactsProvidedError()
    validate_image_ref(request.image_name, request.tag)

    local = [a for a in request.artifacts if not is_remote_reference(a)]
    validated = iter(
        validate_artifacts(local, settings.artifact_extensions, log.child("validator"))
        if local
        else []
    )

    # Logical names are checked from file names so bad names fail before downloads
    sources: list[tuple[str, str]] = []
    for entry in request.artifacts:
        if is_remote_reference(entry):
            sources.append((entry, parse_blob_url(entry).filename))
        else:
            path, _ = next(validated)
            sources.append((str(path), path.name))
    resolve_logical_names(sources, request.names)


def fetch_remote_artifacts(
    entries: list[str],
    download_dir: Path,
    backend: StorageBackend,
    settings: Settings,
    client: httpx.Client | None = None,
    logger: ComponentLogger | None = None,
) -> tuple[list[str], list[FetchResult]]:
    """Replace blob URLs with local copies, preserving order.

    Each download lands in its own numbered subdirectory and keeps the
    blob's file name, so derived logical names follow the blob name.

    Returns:
        Tuple of (local paths, fetch results).
    """
    log = logger or get_logger("fetcher")
    paths: list[str] = []
    fetched: list[FetchResult] = []
    for index, entry in enumerate(entries, start=1):
        if not is_remote_reference(entry):
            paths.append(entry)
            continue
        ref = parse_blob_url(entry)
        dest = download_dir / f"{index:03d}" / ref.filename
        result = fetch_blob(
            entry,
            dest,
            backend,
            client=client,
            token_lifetime=timedelta(minutes=settings.sas_expiry_minutes),
            timeout=settings.fetch_timeout,
            logger=log,
        )
        fetched.append(result)
        paths.append(str(result.path))
    return paths, fetched


def run_pipeline(
    request: BuildRequestSchema,
    secret: str,
    settings: Settings | None = None,
    executor: BuildExecutor | None = None,
    publisher: Publisher | None = None,
    storage_backend: StorageBackend | None = None,
    http_client: httpx.Client | None = None,
    keep_context: bool = False,
    manifest_out: Path | None = None,
    log_path: Path | None = None,
    logger: ComponentLogger | None = None,
) -> PipelineResult:
    """Run the full build pipeline.

    Args:
        request: Build request.
        secret: Database secret injected at build time.
        settings: Effective settings (default: from environment).
        executor: Build executor (default: from settings).
        publisher: Publisher (default: from settings; used only when
            ``request.push_repository`` is set).
        storage_backend: Backend for remote artifacts (default: az CLI).
        http_client: HTTPX client for token downloads.
        keep_context: Keep the build context after the run.
        manifest_out: Extra location for a copy of the manifest.
        log_path: File receiving the full build engine output.
        logger: Pipeline logger.

    Returns:
        PipelineResult for the verified (and possibly published) image.

    Raises:
        ImagegenError: For any fatal condition, after cleanup.
    """
    settings = settings or get_settings()
    log = logger or get_logger("pipeline")

    _prevalidate(request, settings, log)

    executor = executor or BuildExecutor(
        engine=settings.build_engine,
        build_timeout=settings.build_timeout,
        command_timeout=settings.engine_command_timeout,
        logger=log.child("executor"),
    )

    if settings.tmp_dir is not None:
        settings.tmp_dir.mkdir(parents=True, exist_ok=True)

    with tempfile.TemporaryDirectory(
        prefix="bacpac-imagegen-fetch-",
        dir=str(settings.tmp_dir) if settings.tmp_dir else None,
    ) as download_dir:
        fetched: list[FetchResult] = []
        artifact_paths = list(request.artifacts)
        if any(is_remote_reference(a) for a in artifact_paths):
            backend = storage_backend or AzCliStorageBackend(
                cli=settings.storage_cli,
                timeout=settings.fetch_timeout,
                logger=log.child("fetcher"),
            )
            artifact_paths, fetched = fetch_remote_artifacts(
                artifact_paths,
                Path(download_dir),
                backend,
                settings,
                client=http_client,
                logger=log.child("fetcher"),
            )

        prepared = prepare_plan(request, settings, artifact_paths, log)
        plan = prepared.plan

        with build_context(
            plan, settings.tmp_dir, keep=keep_context, logger=log.child("context")
        ) as context:
            write_build_files(plan, context)
            log.child("synth").info(
                "Rendered Dockerfile and entrypoint",
                properties={
                    "databases": [a.logical_name for a in plan.artifacts],
                    "scripts": len(plan.scripts),
                },
            )

            manifest = generate_manifest(plan)
            write_manifest(manifest, context.manifest_path, log.child("manifest"))
            if manifest_out is not None:
                write_manifest(manifest, manifest_out, log.child("manifest"))

            build = executor.run_build(
                plan, context, secret, no_cache=request.no_cache, log_path=log_path
            )

    result = PipelineResult(
        plan=plan,
        build=build,
        manifest=manifest,
        fetched=fetched,
        diagnostics=prepared.diagnostics,
    )

    if request.push_repository:
        publisher = publisher or Publisher(
            engine=settings.build_engine,
            max_attempts=settings.publish_max_attempts,
            backoff_base=settings.publish_backoff_base,
            backoff_unit=settings.publish_backoff_unit,
            push_timeout=settings.push_timeout,
            command_timeout=settings.engine_command_timeout,
            logger=log.child("publisher"),
        )
        result.publish = publisher.publish(
            plan.image.reference, request.push_repository, request.publish_tags
        )

    log.info(
        "Pipeline completed for %s",
        plan.image.reference,
        properties={"published": result.publish.references if result.publish else []},
    )
    return result


__all__ = [
    "PipelineResult",
    "PreparedPlan",
    "fetch_remote_artifacts",
    "prepare_plan",
    "render_plan",
    "run_pipeline",
]
