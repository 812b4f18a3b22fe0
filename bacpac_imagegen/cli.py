"""Thin CLI wrapper for bacpac_imagegen.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules. Every fatal condition
is logged once at CRITICAL level and exits with code 1.
"""

import json
from pathlib import Path
from typing import Annotated, Any, NoReturn

import typer
from rich.console import Console
from rich.markup import escape

from bacpac_imagegen import __version__
from bacpac_imagegen.config import Settings, get_settings, print_settings_json
from bacpac_imagegen.errors import ImagegenError
from bacpac_imagegen.log import configure_logging, get_logger

app = typer.Typer(
    name="bacpac-imagegen",
    help="BACPAC Image Generator - build runnable database images from BACPAC exports",
    no_args_is_help=True,
)
console = Console()
logger = get_logger("cli")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"bacpac-imagegen version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override the configured log level"),
    ] = None,
    json_logs: Annotated[
        bool,
        typer.Option("--json-logs", help="Emit log lines as JSON"),
    ] = False,
) -> None:
    """BACPAC Image Generator - build runnable database images from BACPAC exports."""
    settings = get_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=json_logs or settings.log_format == "json",
    )


def _print_raw(text: str) -> None:
    """Print machine-readable text without wrapping or markup."""
    console.print(text, soft_wrap=True, markup=False, highlight=False)


def _print_json(payload: dict[str, Any]) -> None:
    _print_raw(json.dumps(payload, indent=2, default=str))


def _fail(error: Exception, json_output: bool = False) -> NoReturn:
    """Log a fatal condition and exit with code 1."""
    if isinstance(error, ImagegenError):
        logger.critical(error.message, properties=error.to_dict())
        payload: dict[str, Any] = {"success": False, **error.to_dict()}
    else:
        logger.critical(
            "Unexpected error: %s", error, properties={"code": "internal_error"}
        )
        payload = {"success": False, "code": "internal_error", "message": str(error)}

    if json_output:
        _print_json(payload)
    else:
        console.print(f"[red]Error: {escape(payload['message'])}[/red]")
    raise typer.Exit(code=1) from None


def _apply_overrides(settings: Settings, tmp_dir: Path | None) -> Settings:
    if tmp_dir is not None:
        settings = settings.model_copy(update={"tmp_dir": tmp_dir})
    return settings


def _load_request(
    request_file: Path | None,
    image_name: str | None,
    tag: str | None,
    artifacts: list[str] | None,
    names: list[str] | None,
    scripts: list[str] | None,
    build_args: list[str] | None,
    no_cache: bool,
    push: str | None = None,
    extra_tags: list[str] | None = None,
) -> Any:
    from pydantic import ValidationError as SchemaError

    from bacpac_imagegen.builds.plan import parse_build_args
    from bacpac_imagegen.builds.request import BuildRequestSchema, load_request
    from bacpac_imagegen.errors import ValidationError

    overrides: dict[str, Any] = {
        "image_name": image_name,
        "tag": tag,
        "artifacts": artifacts or None,
        "names": names or None,
        "scripts": scripts or None,
        "build_args": parse_build_args(build_args) if build_args else None,
        "no_cache": no_cache or None,
        "push_repository": push,
        "extra_tags": extra_tags or None,
    }
    if request_file is not None:
        return load_request(request_file, overrides)

    if not image_name or not tag:
        raise ValidationError(
            "IMAGE_NAME and TAG are required without --request",
            code="missing_argument",
        )
    try:
        return BuildRequestSchema.model_validate(
            {k: v for k, v in overrides.items() if v is not None}
        )
    except SchemaError as e:
        raise ValidationError(str(e), code="invalid_request") from e


ImageNameArg = Annotated[
    str | None, typer.Argument(help="Image name (optional with --request)")
]
TagArg = Annotated[str | None, typer.Argument(help="Image tag (optional with --request)")]
ArtifactOpt = Annotated[
    list[str] | None,
    typer.Option("--artifact", "-a", help="BACPAC path or blob URL (repeatable)"),
]
NameOpt = Annotated[
    list[str] | None,
    typer.Option("--name", "-n", help="Database name for the artifact at the same position"),
]
ScriptOpt = Annotated[
    list[str] | None,
    typer.Option("--script", "-s", help="SQL script path or glob (repeatable)"),
]
BuildArgOpt = Annotated[
    list[str] | None,
    typer.Option("--build-arg", help="Extra build-time variable KEY=VALUE"),
]
RequestOpt = Annotated[
    Path | None,
    typer.Option("--request", "-r", help="YAML/JSON build request file"),
]
TmpDirOpt = Annotated[
    Path | None,
    typer.Option("--tmp-dir", help="Parent directory for temporary build contexts"),
]
JsonOpt = Annotated[bool, typer.Option("--json", help="Output as JSON")]


@app.command()
def build(
    image_name: ImageNameArg = None,
    tag: TagArg = None,
    artifacts: ArtifactOpt = None,
    names: NameOpt = None,
    scripts: ScriptOpt = None,
    build_args: BuildArgOpt = None,
    request_file: RequestOpt = None,
    secret: Annotated[
        str | None,
        typer.Option(
            "--secret",
            envvar="BACPAC_IMG_SECRET",
            help="Database admin password used during import",
        ),
    ] = None,
    allow_insecure_default: Annotated[
        bool,
        typer.Option(
            "--allow-insecure-default",
            help="Use the well-known default password (interactive sessions only)",
        ),
    ] = False,
    no_cache: Annotated[
        bool, typer.Option("--no-cache", help="Disable the build engine cache")
    ] = False,
    push: Annotated[
        str | None,
        typer.Option("--push", help="Remote repository to publish to after building"),
    ] = None,
    extra_tags: Annotated[
        list[str] | None,
        typer.Option("--extra-tag", help="Additional tag to publish (repeatable)"),
    ] = None,
    tmp_dir: TmpDirOpt = None,
    keep_context: Annotated[
        bool,
        typer.Option("--keep-context", help="Keep the build context for debugging"),
    ] = False,
    manifest_out: Annotated[
        Path | None,
        typer.Option("--manifest-out", help="Write a copy of the build manifest here"),
    ] = None,
    build_log: Annotated[
        Path | None,
        typer.Option("--build-log", help="Write the build engine output here"),
    ] = None,
    json_output: JsonOpt = False,
) -> None:
    """Build an image from BACPAC artifacts, optionally publishing it."""
    from bacpac_imagegen.builds.plan import resolve_secret
    from bacpac_imagegen.builds.service import run_pipeline

    settings = _apply_overrides(get_settings(), tmp_dir)

    try:
        request = _load_request(
            request_file,
            image_name,
            tag,
            artifacts,
            names,
            scripts,
            build_args,
            no_cache,
            push,
            extra_tags,
        )
        resolved_secret = resolve_secret(
            secret,
            allow_insecure_default=allow_insecure_default
            or settings.allow_insecure_default_secret,
        )
        result = run_pipeline(
            request,
            resolved_secret,
            settings=settings,
            keep_context=keep_context,
            manifest_out=manifest_out,
            log_path=build_log,
        )
    except Exception as e:  # noqa: BLE001
        _fail(e, json_output)

    if json_output:
        _print_json({"success": True, **result.to_dict()})
        return

    size_mb = result.build.image.size_bytes / (1024 * 1024)
    console.print(f"[green]Built {result.plan.image.reference}[/green] ({size_mb:.1f} MB)")
    for artifact in result.plan.artifacts:
        console.print(f"  Database: {artifact.logical_name} <- {artifact.source_path.name}")
    if result.plan.scripts:
        console.print(f"  Scripts:  {len(result.plan.scripts)}")
    for diagnostic in result.diagnostics:
        console.print(f"  [yellow]{diagnostic}[/yellow]")
    if result.publish:
        for reference in result.publish.references:
            console.print(f"  Published: {reference}")


@app.command()
def plan(
    image_name: ImageNameArg = None,
    tag: TagArg = None,
    artifacts: ArtifactOpt = None,
    names: NameOpt = None,
    scripts: ScriptOpt = None,
    build_args: BuildArgOpt = None,
    request_file: RequestOpt = None,
    output_dir: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write Dockerfile and entrypoint.sh here"),
    ] = None,
    json_output: JsonOpt = False,
) -> None:
    """Render the Dockerfile and entrypoint without building."""
    from bacpac_imagegen.builds.service import render_plan

    try:
        request = _load_request(
            request_file, image_name, tag, artifacts, names, scripts, build_args, False
        )
        build_plan, dockerfile, entrypoint = render_plan(request, get_settings())
        if output_dir is not None:
            output_dir.mkdir(parents=True, exist_ok=True)
            (output_dir / "Dockerfile").write_text(dockerfile, encoding="utf-8")
            entrypoint_path = output_dir / "entrypoint.sh"
            entrypoint_path.write_text(entrypoint, encoding="utf-8")
            entrypoint_path.chmod(0o755)
    except Exception as e:  # noqa: BLE001
        _fail(e, json_output)

    if json_output:
        output = {
            "image": build_plan.image.reference,
            "databases": [a.logical_name for a in build_plan.artifacts],
            "scripts": [s.target_name for s in build_plan.scripts],
            "build_variables": build_plan.build_variables,
            "dockerfile": dockerfile,
            "entrypoint": entrypoint,
        }
        _print_json(output)
    elif output_dir is not None:
        console.print(f"[green]Wrote Dockerfile and entrypoint.sh to {output_dir}[/green]")
    else:
        typer.echo(dockerfile)
        typer.echo(entrypoint)


@app.command()
def publish(
    image_ref: Annotated[str, typer.Argument(help="Local image reference name:tag")],
    repository: Annotated[str, typer.Argument(help="Remote repository")],
    tags: Annotated[
        list[str] | None,
        typer.Option("--tag", "-t", help="Tag to publish (repeatable; default: local tag)"),
    ] = None,
    json_output: JsonOpt = False,
) -> None:
    """Tag and push a local image with retry."""
    from bacpac_imagegen.publish.publisher import Publisher

    settings = get_settings()
    publisher = Publisher(
        engine=settings.build_engine,
        max_attempts=settings.publish_max_attempts,
        backoff_base=settings.publish_backoff_base,
        backoff_unit=settings.publish_backoff_unit,
        push_timeout=settings.push_timeout,
        command_timeout=settings.engine_command_timeout,
        logger=get_logger("publisher"),
    )
    try:
        result = publisher.publish(image_ref, repository, tags or [])
    except Exception as e:  # noqa: BLE001
        _fail(e, json_output)

    if json_output:
        output = {
            "success": True,
            "references": result.references,
            "attempts": [
                {
                    "image_reference": a.image_reference,
                    "attempt_number": a.attempt_number,
                    "outcome": a.outcome.value,
                }
                for a in result.attempts
            ],
        }
        _print_json(output)
    else:
        for reference in result.references:
            console.print(f"[green]Published {reference}[/green]")


@app.command()
def fetch(
    url: Annotated[str, typer.Argument(help="Blob URL")],
    dest: Annotated[Path, typer.Argument(help="Destination file")],
    json_output: JsonOpt = False,
) -> None:
    """Download a blob using the authentication fallback chain."""
    from datetime import timedelta

    from bacpac_imagegen.storage.fetch import AzCliStorageBackend, fetch_blob

    settings = get_settings()
    backend = AzCliStorageBackend(
        cli=settings.storage_cli,
        timeout=settings.fetch_timeout,
        logger=get_logger("fetcher"),
    )
    try:
        result = fetch_blob(
            url,
            dest,
            backend,
            token_lifetime=timedelta(minutes=settings.sas_expiry_minutes),
            timeout=settings.fetch_timeout,
            logger=get_logger("fetcher"),
        )
    except Exception as e:  # noqa: BLE001
        _fail(e, json_output)

    if json_output:
        output = {
            "success": True,
            "url": result.url,
            "path": str(result.path),
            "strategy": result.strategy,
            "size_bytes": result.size_bytes,
        }
        _print_json(output)
    else:
        console.print(
            f"[green]Fetched {result.path}[/green] "
            f"({result.size_bytes} bytes via {result.strategy})"
        )


@app.command()
def config(
    json_output: JsonOpt = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        _print_raw(print_settings_json(settings))
        return

    tmp_dir_display = str(settings.tmp_dir) if settings.tmp_dir else "(system default)"
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Build:[/bold]")
    console.print(f"  Build engine:        {settings.build_engine}")
    console.print(f"  Base image:          {settings.base_image}")
    console.print(f"  Mount path:          {settings.mount_path}")
    console.print(f"  Temp directory:      {tmp_dir_display}")
    console.print(f"  Artifact extensions: {', '.join(settings.artifact_extensions)}")
    console.print(f"  Script extensions:   {', '.join(settings.script_extensions)}")
    console.print()
    console.print("[bold]Publishing:[/bold]")
    console.print(f"  Max attempts:        {settings.publish_max_attempts}")
    console.print(
        f"  Backoff:             {settings.publish_backoff_base}^n x "
        f"{settings.publish_backoff_unit}s"
    )
    console.print()
    console.print("[bold]Storage:[/bold]")
    console.print(f"  Storage CLI:         {settings.storage_cli}")
    console.print(f"  Token lifetime:      {settings.sas_expiry_minutes} min")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Build timeout:       {settings.build_timeout}")
    console.print(f"  Push timeout:        {settings.push_timeout}")
    console.print(f"  Fetch timeout:       {settings.fetch_timeout}")
    console.print()
    console.print(f"  Log level:           {settings.log_level}")
