"""Dockerfile and entrypoint synthesis.

This module handles:
- Rendering the two-stage Dockerfile (importer + runtime) from a BuildPlan
- Rendering the POSIX entrypoint that runs mounted SQL scripts at start
- Writing both into a build context

Rendering is pure: the same plan always produces byte-identical text,
which keeps the engine's layer cache effective. The runtime stage copies
only the engine data directory; BACPAC files never reach it.
"""

from __future__ import annotations

from pathlib import Path

from bacpac_imagegen.types import (
    SECRET_RUNTIME_ENV,
    ArtifactReference,
    BuildContext,
    BuildPlan,
)

HEADER = "# Generated by bacpac-imagegen. Do not edit."

# Engine layout inside the base image
ENGINE_BINARY = "/opt/mssql/bin/sqlservr"
SQLCMD = "/opt/mssql-tools18/bin/sqlcmd"
SQLPACKAGE = "/opt/sqlpackage/sqlpackage"
SQLPACKAGE_URL = "https://aka.ms/sqlpackage-linux"
IMPORT_DIR = "/var/opt/mssql/backup"
DATA_DIR = "/var/opt/mssql/data"
ENGINE_USER = "mssql"
ENGINE_PORT = 1433
ENTRYPOINT_PATH = "/usr/local/bin/entrypoint.sh"
SCRIPT_PATTERN = "*.sql"

IMPORTER_STAGE = "importer"


def _run(commands: list[str]) -> list[str]:
    """Format shell commands as one RUN instruction with continuations."""
    lines = [f"RUN {commands[0]}"]
    lines.extend(f"    {command}" for command in commands[1:])
    return [f"{line} \\" for line in lines[:-1]] + [lines[-1]]


def _install_commands() -> list[str]:
    return [
        "apt-get update &&",
        "apt-get install -y --no-install-recommends ca-certificates curl unzip libunwind8 &&",
        f"curl -fsSL -o /tmp/sqlpackage.zip {SQLPACKAGE_URL} &&",
        f"mkdir -p {Path(SQLPACKAGE).parent} &&",
        f"unzip -q /tmp/sqlpackage.zip -d {Path(SQLPACKAGE).parent} &&",
        f"chmod +x {SQLPACKAGE} &&",
        "rm -rf /tmp/sqlpackage.zip /var/lib/apt/lists/*",
    ]


def _wait_commands(plan: BuildPlan) -> list[str]:
    return [
        "ready=0;",
        f"for i in $(seq 1 {plan.engine_ready_timeout}); do",
        f'    if {SQLCMD} -S localhost -U sa -P "${plan.secret_arg}" -C -Q "SELECT 1" >/dev/null 2>&1; then',
        "        ready=1; break;",
        "    fi;",
        "    sleep 1;",
        "done;",
        f'[ "$ready" -eq 1 ] || {{ echo "Engine not ready after {plan.engine_ready_timeout}s" >&2; exit 1; }};',
    ]


def _import_commands(plan: BuildPlan, artifact: ArtifactReference) -> list[str]:
    """Import one artifact into a database named after it, then verify it."""
    name = artifact.logical_name
    return [
        f'echo "Importing {artifact.target_name} into database {name}";',
        f"{SQLPACKAGE} /Action:Import",
        f"    /SourceFile:{IMPORT_DIR}/{artifact.target_name}",
        "    /TargetServerName:localhost",
        f"    /TargetDatabaseName:{name}",
        "    /TargetUser:sa",
        f'    "/TargetPassword:${plan.secret_arg}"',
        "    /TargetTrustServerCertificate:true;",
        f'{SQLCMD} -S localhost -U sa -P "${plan.secret_arg}" -C -h -1',
        f"    -Q \"SET NOCOUNT ON; SELECT name FROM sys.databases WHERE name = N'{name}'\"",
        f'    | grep -q "{name}" || {{ echo "Database {name} missing after import" >&2; exit 1; }};',
    ]


def _shutdown_commands(plan: BuildPlan) -> list[str]:
    return [
        f'{SQLCMD} -S localhost -U sa -P "${plan.secret_arg}" -C -Q "SHUTDOWN WITH NOWAIT" >/dev/null 2>&1 || true;',
        "wait",
    ]


def _importer_stage(plan: BuildPlan) -> list[str]:
    lines = [
        f"FROM {plan.base_image} AS {IMPORTER_STAGE}",
        "",
        f"ARG {plan.secret_arg}",
    ]
    lines.extend(f"ARG {name}" for name in plan.build_args)
    lines.extend(
        [
            "ENV ACCEPT_EULA=Y",
            "",
            "USER root",
            *_run(_install_commands()),
            "",
            f"COPY --chown={ENGINE_USER}:root artifacts/ {IMPORT_DIR}/",
            "",
            f"USER {ENGINE_USER}",
        ]
    )

    commands = [
        "set -e;",
        f'MSSQL_SA_PASSWORD="${plan.secret_arg}" {ENGINE_BINARY} >/tmp/engine-import.log 2>&1 &',
        *_wait_commands(plan),
    ]
    for artifact in plan.artifacts:
        commands.extend(_import_commands(plan, artifact))
    commands.extend(_shutdown_commands(plan))
    lines.extend(_run(commands))
    return lines


def _runtime_stage(plan: BuildPlan) -> list[str]:
    databases = ",".join(a.logical_name for a in plan.artifacts)
    lines = [
        f"FROM {plan.base_image}",
        "",
        "ENV ACCEPT_EULA=Y",
        f'LABEL org.bacpac-imagegen.databases="{databases}"',
        "",
        f"COPY --from={IMPORTER_STAGE} --chown={ENGINE_USER}:root {DATA_DIR} {DATA_DIR}",
        f"COPY --chown={ENGINE_USER}:root entrypoint.sh {ENTRYPOINT_PATH}",
    ]
    if plan.scripts:
        lines.append(f"COPY --chown={ENGINE_USER}:root scripts/ {plan.mount_path}/")
    lines.extend(
        [
            "",
            f'VOLUME ["{plan.mount_path}"]',
            f"EXPOSE {ENGINE_PORT}",
            f"USER {ENGINE_USER}",
            f'ENTRYPOINT ["{ENTRYPOINT_PATH}"]',
        ]
    )
    return lines


def render_dockerfile(plan: BuildPlan) -> str:
    """Render the two-stage Dockerfile for a plan.

    Args:
        plan: Validated build plan.

    Returns:
        Dockerfile text ending with a newline.
    """
    lines = [
        "# syntax=docker/dockerfile:1",
        HEADER,
        "",
        "# Stage 1: import every artifact into the engine's data directory",
        *_importer_stage(plan),
        "",
        "# Stage 2: runtime image with imported data only",
        *_runtime_stage(plan),
    ]
    return "\n".join(lines) + "\n"


def render_entrypoint(plan: BuildPlan) -> str:
    """Render the runtime entrypoint script for a plan.

    The script starts the engine in the background, waits a fixed grace
    period, runs every script in the mount path in byte order stopping
    the container on the first failure, then waits on the engine.

    Args:
        plan: Validated build plan.

    Returns:
        POSIX shell script text.
    """
    lines = [
        "#!/bin/sh",
        HEADER,
        "set -u",
        "",
        f'MOUNT_PATH="{plan.mount_path}"',
        f"GRACE_PERIOD={plan.startup_grace_seconds}",
        f'SQLCMD="{SQLCMD}"',
        "",
        "log() {",
        "    printf '[%s] %s\\n' \"$(date -u '+%Y-%m-%dT%H:%M:%SZ')\" \"$1\"",
        "}",
        "",
        f'if [ -z "${{{SECRET_RUNTIME_ENV}:-}}" ]; then',
        f'    log "ERROR: {SECRET_RUNTIME_ENV} must be set"',
        "    exit 1",
        "fi",
        "",
        'log "Starting database engine"',
        f"{ENGINE_BINARY} &",
        "ENGINE_PID=$!",
        "",
        "trap 'log \"Received shutdown signal\"; kill -TERM \"$ENGINE_PID\" 2>/dev/null; "
        "wait \"$ENGINE_PID\"; exit 0' TERM INT",
        "",
        'sleep "$GRACE_PERIOD"',
        "",
        'if [ -d "$MOUNT_PATH" ] && [ -n "$(ls -A "$MOUNT_PATH" 2>/dev/null)" ]; then',
        "    LC_ALL=C",
        "    export LC_ALL",
        f'    for script in "$MOUNT_PATH"/{SCRIPT_PATTERN}; do',
        '        [ -f "$script" ] || continue',
        '        log "Executing script: $(basename "$script")"',
        f'        if ! "$SQLCMD" -S localhost -U sa -P "${SECRET_RUNTIME_ENV}" -C -b -i "$script"; then',
        '            log "ERROR: script failed: $(basename "$script")"',
        '            kill -TERM "$ENGINE_PID" 2>/dev/null',
        "            exit 1",
        "        fi",
        "    done",
        "else",
        '    log "No scripts found in $MOUNT_PATH"',
        "fi",
        "",
        'log "Database engine ready"',
        'wait "$ENGINE_PID"',
    ]
    return "\n".join(lines) + "\n"


def write_build_files(plan: BuildPlan, context: BuildContext) -> tuple[Path, Path]:
    """Write the Dockerfile and entrypoint into a build context.

    Args:
        plan: Validated build plan.
        context: Materialized build context.

    Returns:
        Tuple of (dockerfile path, entrypoint path).
    """
    context.dockerfile.write_text(render_dockerfile(plan), encoding="utf-8")
    context.entrypoint.write_text(render_entrypoint(plan), encoding="utf-8")
    context.entrypoint.chmod(0o755)
    return context.dockerfile, context.entrypoint


__all__ = [
    "IMPORTER_STAGE",
    "IMPORT_DIR",
    "render_dockerfile",
    "render_entrypoint",
    "write_build_files",
]
