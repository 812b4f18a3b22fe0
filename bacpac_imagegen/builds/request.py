"""Build request schema and file loading.

A build request gathers every pipeline input in one document so that a
build can be described in a YAML or JSON file and replayed. CLI flags
override file values.
"""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from bacpac_imagegen.errors import RequestFileError
from bacpac_imagegen.storage.fetch import is_remote_reference


class BuildRequestSchema(BaseModel):
    """Schema for a build request.

    Attributes:
        image_name: Local image name.
        tag: Local image tag.
        artifacts: Artifact paths or blob URLs, in import order.
        names: Optional logical names aligned with artifacts by index.
        scripts: Script paths or glob patterns.
        build_args: Extra build-time variables.
        no_cache: Disable the engine's layer cache.
        push_repository: Remote repository to publish to.
        extra_tags: Additional tags to publish.
    """

    model_config = ConfigDict(extra="forbid")

    image_name: str = Field(description="Local image name")
    tag: str = Field(default="latest", description="Local image tag")
    artifacts: list[str] = Field(default_factory=list)
    names: list[str] | None = Field(default=None)
    scripts: list[str] = Field(default_factory=list)
    build_args: dict[str, str] = Field(default_factory=dict)
    no_cache: bool = Field(default=False)
    push_repository: str | None = Field(default=None)
    extra_tags: list[str] = Field(default_factory=list)

    @field_validator("image_name", "tag")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject blank image names and tags."""
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @property
    def publish_tags(self) -> list[str]:
        """Primary tag followed by extra tags."""
        return [self.tag, *self.extra_tags]


def _rebase(entry: str, base_dir: Path) -> str:
    if is_remote_reference(entry) or Path(entry).expanduser().is_absolute():
        return entry
    return str(base_dir / entry)


def load_request_data(path: Path) -> dict[str, Any]:
    """Load a YAML or JSON request file as a mapping.

    Raises:
        RequestFileError: If the file cannot be read or is not a mapping.
    """
    try:
        with open(path, encoding="utf-8") as f:
            if path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise RequestFileError(str(path), "file not found") from e
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise RequestFileError(str(path), str(e)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise RequestFileError(
            str(path), f"expected a mapping, got {type(data).__name__}"
        )
    return data


def load_request(path: Path, overrides: dict[str, Any] | None = None) -> BuildRequestSchema:
    """Load and validate a build request file.

    Relative artifact and script paths are resolved against the file's
    directory. Non-None ``overrides`` replace file values.

    Raises:
        RequestFileError: If loading or validation fails.
    """
    data = load_request_data(path)
    base_dir = path.resolve().parent
    for key in ("artifacts", "scripts"):
        if isinstance(data.get(key), list):
            data[key] = [_rebase(str(e), base_dir) for e in data[key]]

    data.update({k: v for k, v in (overrides or {}).items() if v is not None})

    try:
        return BuildRequestSchema.model_validate(data)
    except ValidationError as e:
        raise RequestFileError(str(path), str(e)) from e


__all__ = ["BuildRequestSchema", "load_request", "load_request_data"]
