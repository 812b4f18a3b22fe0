"""Configuration settings for bacpac_imagegen.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the BACPAC_IMG_ prefix.
    CLI flags can override these at runtime. The database secret is
    deliberately not a setting; it is read explicitly by the CLI.
    """

    model_config = SettingsConfigDict(
        env_prefix="BACPAC_IMG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    tmp_dir: Path | None = Field(
        default=None,
        description="Parent directory for build contexts (uses system default if not set)",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["text", "json"] = Field(
        default="text",
        description="Log line format",
    )

    # Build engine
    build_engine: str = Field(
        default="docker",
        description="Container build engine executable (docker, podman)",
    )
    base_image: str = Field(
        default="mcr.microsoft.com/mssql/server:2022-latest",
        description="Base image for both the importer and runtime stages",
    )
    mount_path: str = Field(
        default="/var/opt/mssql/scripts",
        description="Mount point scanned for SQL scripts at container start",
    )
    startup_grace_seconds: int = Field(
        default=15,
        ge=0,
        description="Wait after starting the engine before running scripts",
    )
    engine_ready_timeout: int = Field(
        default=120,
        ge=10,
        description="Seconds the importer stage waits for the engine to accept connections",
    )

    # Inputs
    artifact_extensions: list[str] = Field(
        default_factory=lambda: [".bacpac"],
        description="Allowed artifact file extensions",
    )
    script_extensions: list[str] = Field(
        default_factory=lambda: [".sql"],
        description="Allowed script file extensions",
    )
    allow_insecure_default_secret: bool = Field(
        default=False,
        description="Permit the well-known default secret in interactive sessions",
    )

    # Publishing
    publish_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum push attempts per tag",
    )
    publish_backoff_base: int = Field(
        default=2,
        ge=1,
        description="Exponential backoff base",
    )
    publish_backoff_unit: float = Field(
        default=5.0,
        ge=0,
        description="Backoff unit in seconds (delay = base**attempt * unit)",
    )

    # Object storage
    storage_cli: str = Field(
        default="az",
        description="Storage management CLI executable",
    )
    sas_expiry_minutes: int = Field(
        default=60,
        ge=1,
        le=1440,
        description="Lifetime of generated read-only capability tokens",
    )

    # Timeouts (in seconds)
    build_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for the build engine invocation",
    )
    engine_command_timeout: int = Field(
        default=120,
        ge=5,
        description="Timeout for short engine calls (inspect, tag)",
    )
    push_timeout: int = Field(
        default=1800,
        ge=60,
        description="Timeout for a single push attempt",
    )
    fetch_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for object storage downloads",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
