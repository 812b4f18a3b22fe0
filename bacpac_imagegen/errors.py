"""Exception hierarchy for bacpac_imagegen.

Every error carries a stable ``code`` so that callers parsing structured
log output can tell failure causes apart; the process exit code is 1 for
all of them.
"""

from __future__ import annotations

from typing import Any

# Error code constants
NO_ARTIFACTS = "no_artifacts"
MISSING_ARTIFACT = "missing_artifact"
UNREADABLE_ARTIFACT = "unreadable_artifact"
INVALID_EXTENSION = "invalid_extension"
DUPLICATE_LOGICAL_NAME = "duplicate_logical_name"
INVALID_LOGICAL_NAME = "invalid_logical_name"
INVALID_IMAGE_REFERENCE = "invalid_image_reference"
INSECURE_SECRET = "insecure_secret"
INVALID_REQUEST = "invalid_request"
CONTEXT_ASSEMBLY = "context_assembly"
BUILD_FAILED = "build_failed"
BUILD_TIMEOUT = "build_timeout"
ENGINE_UNAVAILABLE = "engine_unavailable"
BUILD_VERIFICATION_FAILED = "build_verification_failed"
TAG_FAILED = "tag_failed"
PUBLISH_EXHAUSTED = "publish_exhausted"
FETCH_EXHAUSTED = "fetch_exhausted"
STRATEGY_FAILED = "strategy_failed"
INVALID_STORAGE_REFERENCE = "invalid_storage_reference"


class ImagegenError(Exception):
    """Base error for all pipeline failures."""

    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging and JSON output."""
        result: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(ImagegenError):
    """Raised when inputs are rejected before any external call is made."""

    def __init__(
        self,
        message: str,
        code: str = "validation",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=code, details=details)


class NoArtifactsProvidedError(ValidationError):
    """Raised when the artifact list is empty."""

    def __init__(self) -> None:
        super().__init__("At least one artifact is required", code=NO_ARTIFACTS)


class MissingArtifactError(ValidationError):
    """Raised when an artifact path does not exist or is not a file."""

    def __init__(self, path: str) -> None:
        super().__init__(
            f"Artifact not found: {path}",
            code=MISSING_ARTIFACT,
            details={"path": path},
        )
        self.path = path


class UnreadableArtifactError(ValidationError):
    """Raised when an artifact cannot be read or is empty."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(
            f"Artifact is not usable: {path} ({reason})",
            code=UNREADABLE_ARTIFACT,
            details={"path": path, "reason": reason},
        )
        self.path = path


class InvalidExtensionError(ValidationError):
    """Raised when an artifact extension is not in the allow-list."""

    def __init__(self, path: str, allowed: list[str]) -> None:
        super().__init__(
            f"Artifact {path} has an unsupported extension (allowed: {', '.join(allowed)})",
            code=INVALID_EXTENSION,
            details={"path": path, "allowed": allowed},
        )
        self.path = path


class InvalidLogicalNameError(ValidationError):
    """Raised when an explicit logical name is empty or malformed."""

    def __init__(self, message: str, index: int | None = None) -> None:
        super().__init__(
            message,
            code=INVALID_LOGICAL_NAME,
            details={"index": index} if index is not None else None,
        )


class DuplicateLogicalNameError(ValidationError):
    """Raised when two artifacts resolve to the same logical name."""

    def __init__(self, name: str, first: str, second: str) -> None:
        super().__init__(
            f"Logical name '{name}' is used by both {first} and {second}",
            code=DUPLICATE_LOGICAL_NAME,
            details={"logical_name": name, "sources": [first, second]},
        )
        self.name = name


class InsecureSecretError(ValidationError):
    """Raised when no secret is given and the insecure default is not allowed."""

    def __init__(self, reason: str) -> None:
        super().__init__(
            f"No database secret supplied: {reason}",
            code=INSECURE_SECRET,
        )


class RequestFileError(ValidationError):
    """Raised when a build request file cannot be loaded."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(
            f"Invalid build request {path}: {reason}",
            code=INVALID_REQUEST,
            details={"path": path},
        )


class StorageReferenceError(ValidationError):
    """Raised when an object storage URL cannot be parsed."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(
            f"Invalid storage reference {url}: {reason}",
            code=INVALID_STORAGE_REFERENCE,
            details={"url": url},
        )


class ContextAssemblyError(ImagegenError):
    """Raised when the build context cannot be materialized."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=CONTEXT_ASSEMBLY)


class BuildFailedError(ImagegenError):
    """Raised when the build engine fails; carries its captured output."""

    def __init__(
        self,
        message: str,
        output: str = "",
        exit_code: int | None = None,
        code: str = BUILD_FAILED,
    ) -> None:
        super().__init__(message, code=code, details={"exit_code": exit_code})
        self.output = output
        self.exit_code = exit_code


class BuildVerificationFailedError(ImagegenError):
    """Raised when the engine reported success but the image is missing."""

    def __init__(self, reference: str, reason: str) -> None:
        super().__init__(
            f"Image {reference} not found after a successful build: {reason}",
            code=BUILD_VERIFICATION_FAILED,
            details={"image": reference},
        )
        self.reference = reference


class PublishError(ImagegenError):
    """Raised when tagging an image for a remote repository fails."""

    def __init__(self, message: str, code: str = TAG_FAILED) -> None:
        super().__init__(message, code=code)


class PublishExhaustedError(PublishError):
    """Raised when every push attempt for a reference has failed."""

    def __init__(self, reference: str, attempts: int, last_error: str) -> None:
        super().__init__(
            f"Failed to push {reference} after {attempts} attempt(s): {last_error}",
            code=PUBLISH_EXHAUSTED,
        )
        self.details = {"image": reference, "attempts": attempts}
        self.reference = reference
        self.attempts = attempts


class StrategyFailedError(ImagegenError):
    """Raised by a single fetch strategy; the fetcher moves on to the next."""

    def __init__(self, strategy: str, reason: str) -> None:
        super().__init__(f"{strategy}: {reason}", code=STRATEGY_FAILED)
        self.strategy = strategy
        self.reason = reason


class FetchExhaustedError(ImagegenError):
    """Raised when all fetch strategies have failed."""

    def __init__(self, url: str, failures: dict[str, str]) -> None:
        summary = "; ".join(f"{name}: {reason}" for name, reason in failures.items())
        super().__init__(
            f"All fetch strategies failed for {url} ({summary})",
            code=FETCH_EXHAUSTED,
            details={"url": url, "failures": failures},
        )
        self.failures = failures


__all__ = [
    "BuildFailedError",
    "BuildVerificationFailedError",
    "ContextAssemblyError",
    "DuplicateLogicalNameError",
    "FetchExhaustedError",
    "ImagegenError",
    "InsecureSecretError",
    "InvalidExtensionError",
    "InvalidLogicalNameError",
    "MissingArtifactError",
    "NoArtifactsProvidedError",
    "PublishError",
    "PublishExhaustedError",
    "RequestFileError",
    "StorageReferenceError",
    "StrategyFailedError",
    "UnreadableArtifactError",
    "ValidationError",
]
