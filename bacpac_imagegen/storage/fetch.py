"""Object storage fetch with an ordered authentication fallback chain.

This module handles:
- Parsing blob URLs into account/container/blob references
- Fetching a blob with three strategies, tried in order:
  1. ambient identity (most auditable, least available)
  2. shared account key fetched via the management API
  3. a one-hour, read-only, object-scoped capability token (SAS)
     used over a direct HTTPS download
- Reporting every strategy failure when all of them fail

Each strategy is an independent function over a FetchRequest; the driver
walks the tuple and stops at the first success.
"""

from __future__ import annotations

import os
import shlex
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Protocol

import httpx

from bacpac_imagegen.errors import (
    FetchExhaustedError,
    ImagegenError,
    StorageReferenceError,
    StrategyFailedError,
)
from bacpac_imagegen.log import ComponentLogger, get_logger
from bacpac_imagegen.types import FetchResult

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

# Default lifetime of generated capability tokens
TOKEN_LIFETIME = timedelta(hours=1)

STRATEGY_AMBIENT = "ambient-identity"
STRATEGY_SHARED_KEY = "shared-key"
STRATEGY_CAPABILITY_TOKEN = "capability-token"


class StorageCommandError(ImagegenError):
    """Raised when a storage backend call fails."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="storage_command_failed")


@dataclass(frozen=True)
class BlobReference:
    """Location of one object in blob storage."""

    account: str
    container: str
    blob: str
    url: str

    @property
    def filename(self) -> str:
        return self.blob.rsplit("/", 1)[-1]


def is_remote_reference(entry: str) -> bool:
    """Return True if an artifact entry points at object storage."""
    return entry.lower().startswith("https://")


def parse_blob_url(url: str) -> BlobReference:
    """Parse ``https://<account>.<host>/<container>/<blob>``.

    Any query string (e.g. an existing token) is dropped.

    Raises:
        StorageReferenceError: If the URL is not a blob URL.
    """
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as e:
        raise StorageReferenceError(url, str(e)) from e

    if parsed.scheme != "https":
        raise StorageReferenceError(url, "only https URLs are supported")
    host = parsed.host
    if not host or "." not in host:
        raise StorageReferenceError(url, "missing storage account host")

    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) < 2:
        raise StorageReferenceError(url, "expected /<container>/<blob>")

    return BlobReference(
        account=host.split(".", 1)[0],
        container=parts[0],
        blob="/".join(parts[1:]),
        url=url.split("#", 1)[0].split("?", 1)[0],
    )


class StorageBackend(Protocol):
    """Management-plane operations the fetcher depends on."""

    def download_with_identity(self, ref: BlobReference, dest: Path) -> None: ...

    def get_account_key(self, account: str) -> str: ...

    def download_with_key(self, ref: BlobReference, key: str, dest: Path) -> None: ...

    def generate_read_token(
        self, ref: BlobReference, expiry: datetime, key: str | None = None
    ) -> str: ...


def format_expiry(moment: datetime) -> str:
    """Format a token expiry the way the storage CLI expects."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%MZ")


class AzCliStorageBackend:
    """StorageBackend implemented with the ``az`` CLI.

    Account keys are passed through the child environment, never argv.
    """

    def __init__(
        self,
        cli: str = "az",
        timeout: int = 3600,
        logger: ComponentLogger | None = None,
    ) -> None:
        self.cli = cli
        self.timeout = timeout
        self.logger = logger or get_logger("fetcher")

    def _run(self, args: list[str], key: str | None = None) -> str:
        cmd = [self.cli, *args, "--only-show-errors"]
        env = None
        if key is not None:
            env = dict(os.environ)
            env["AZURE_STORAGE_KEY"] = key
        self.logger.debug("Running: %s", shlex.join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise StorageCommandError(f"{args[0]} timed out after {self.timeout}s") from e
        except OSError as e:
            raise StorageCommandError(f"Failed to execute {self.cli}: {e}") from e

        if result.returncode != 0:
            raise StorageCommandError(
                result.stderr.strip() or f"exit code {result.returncode}"
            )
        return result.stdout.strip()

    def _blob_args(self, ref: BlobReference) -> list[str]:
        return [
            "--account-name",
            ref.account,
            "--container-name",
            ref.container,
            "--name",
            ref.blob,
        ]

    def download_with_identity(self, ref: BlobReference, dest: Path) -> None:
        self._run(
            ["storage", "blob", "download", *self._blob_args(ref), "--file", str(dest),
             "--auth-mode", "login"]
        )

    def get_account_key(self, account: str) -> str:
        key = self._run(
            ["storage", "account", "keys", "list", "--account-name", account,
             "--query", "[0].value", "--output", "tsv"]
        )
        if not key:
            raise StorageCommandError(f"No account key returned for {account}")
        return key

    def download_with_key(self, ref: BlobReference, key: str, dest: Path) -> None:
        self._run(
            ["storage", "blob", "download", *self._blob_args(ref), "--file", str(dest),
             "--auth-mode", "key"],
            key=key,
        )

    def generate_read_token(
        self, ref: BlobReference, expiry: datetime, key: str | None = None
    ) -> str:
        args = [
            "storage", "blob", "generate-sas", *self._blob_args(ref),
            "--permissions", "r",
            "--expiry", format_expiry(expiry),
            "--https-only",
            "--output", "tsv",
        ]
        if key is None:
            # User delegation token signed by the ambient identity
            args.extend(["--as-user", "--auth-mode", "login"])
        token = self._run(args, key=key)
        if not token:
            raise StorageCommandError("Empty token returned")
        return token.strip('"')


@dataclass
class FetchRequest:
    """Everything a strategy needs to fetch one blob."""

    reference: BlobReference
    dest: Path
    backend: StorageBackend
    client: httpx.Client
    token_lifetime: timedelta = TOKEN_LIFETIME
    timeout: float = 3600


def fetch_with_identity(request: FetchRequest) -> None:
    """Strategy 1: read the blob with the process's ambient identity."""
    try:
        request.backend.download_with_identity(request.reference, request.dest)
    except ImagegenError as e:
        raise StrategyFailedError(STRATEGY_AMBIENT, e.message) from e


def fetch_with_shared_key(request: FetchRequest) -> None:
    """Strategy 2: read the blob authenticated with the account key."""
    try:
        key = request.backend.get_account_key(request.reference.account)
        request.backend.download_with_key(request.reference, key, request.dest)
    except ImagegenError as e:
        raise StrategyFailedError(STRATEGY_SHARED_KEY, e.message) from e


def download_with_token(
    client: httpx.Client,
    url: str,
    token: str,
    dest: Path,
    timeout: float = 3600,
) -> int:
    """Stream ``url?token`` to ``dest``.

    Returns:
        Number of bytes written.

    Raises:
        StrategyFailedError: On HTTP, timeout or network errors.
    """
    try:
        with client.stream("GET", f"{url}?{token}", timeout=timeout) as response:
            response.raise_for_status()
            total_bytes = 0
            dest.parent.mkdir(parents=True, exist_ok=True)
            with dest.open("wb") as f:
                for chunk in response.iter_bytes(DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)
                    total_bytes += len(chunk)
            return total_bytes
    except httpx.HTTPStatusError as e:
        raise StrategyFailedError(
            STRATEGY_CAPABILITY_TOKEN,
            f"HTTP {e.response.status_code} {e.response.reason_phrase}",
        ) from e
    except httpx.TimeoutException as e:
        raise StrategyFailedError(STRATEGY_CAPABILITY_TOKEN, "download timed out") from e
    except httpx.RequestError as e:
        raise StrategyFailedError(STRATEGY_CAPABILITY_TOKEN, f"network error: {e}") from e


def fetch_with_capability_token(request: FetchRequest) -> None:
    """Strategy 3: mint a short-lived read-only token and download directly."""
    backend = request.backend
    expiry = datetime.now(timezone.utc) + request.token_lifetime

    try:
        key: str | None = backend.get_account_key(request.reference.account)
    except (ImagegenError, OSError, LookupError):
        # Sign with the ambient identity instead
        key = None

    try:
        token = backend.generate_read_token(request.reference, expiry, key)
    except ImagegenError as e:
        raise StrategyFailedError(STRATEGY_CAPABILITY_TOKEN, e.message) from e

    download_with_token(
        request.client, request.reference.url, token, request.dest, request.timeout
    )


def _failure_reason(error: Exception) -> str:
    if isinstance(error, StrategyFailedError):
        return error.reason
    if isinstance(error, ImagegenError):
        return error.message
    return f"{type(error).__name__}: {error}"


@dataclass(frozen=True)
class FetchStrategy:
    """A named authentication strategy."""

    name: str
    func: Callable[[FetchRequest], None]


DEFAULT_STRATEGIES: tuple[FetchStrategy, ...] = (
    FetchStrategy(STRATEGY_AMBIENT, fetch_with_identity),
    FetchStrategy(STRATEGY_SHARED_KEY, fetch_with_shared_key),
    FetchStrategy(STRATEGY_CAPABILITY_TOKEN, fetch_with_capability_token),
)


def fetch_blob(
    url: str,
    dest: Path,
    backend: StorageBackend,
    client: httpx.Client | None = None,
    strategies: Sequence[FetchStrategy] = DEFAULT_STRATEGIES,
    token_lifetime: timedelta = TOKEN_LIFETIME,
    timeout: float = 3600,
    logger: ComponentLogger | None = None,
) -> FetchResult:
    """Fetch a blob to a local file, trying each strategy in order.

    Args:
        url: Blob URL.
        dest: Destination file path.
        backend: Storage management backend.
        client: HTTPX client for token downloads (created if omitted).
        strategies: Ordered strategies to try.
        token_lifetime: Lifetime of generated capability tokens.
        timeout: Download timeout in seconds.
        logger: Component logger.

    Returns:
        FetchResult naming the strategy that succeeded.

    Raises:
        StorageReferenceError: If the URL cannot be parsed.
        FetchExhaustedError: If every strategy failed.
    """
    log = logger or get_logger("fetcher")
    reference = parse_blob_url(url)
    dest.parent.mkdir(parents=True, exist_ok=True)

    owns_client = client is None
    http = client or httpx.Client(follow_redirects=True)
    failures: dict[str, str] = {}

    try:
        for strategy in strategies:
            log.debug("Trying %s for %s", strategy.name, reference.url)
            request = FetchRequest(
                reference=reference,
                dest=dest,
                backend=backend,
                client=http,
                token_lifetime=token_lifetime,
                timeout=timeout,
            )
            try:
                strategy.func(request)
                if not dest.is_file() or dest.stat().st_size == 0:
                    raise StrategyFailedError(strategy.name, "downloaded file is empty")
            except Exception as e:
                # Any collaborator failure moves the chain to the next strategy
                reason = _failure_reason(e)
                failures[strategy.name] = reason
                dest.unlink(missing_ok=True)
                log.warning(
                    "Fetch strategy %s failed: %s",
                    strategy.name,
                    reason,
                    properties={"url": reference.url},
                )
                continue

            size_bytes = dest.stat().st_size
            log.info(
                "Fetched %s using %s",
                reference.url,
                strategy.name,
                properties={"size_bytes": size_bytes, "dest": str(dest)},
            )
            return FetchResult(
                url=reference.url,
                path=dest,
                strategy=strategy.name,
                size_bytes=size_bytes,
            )
    finally:
        if owns_client:
            http.close()

    raise FetchExhaustedError(reference.url, failures)


__all__ = [
    "DEFAULT_STRATEGIES",
    "STRATEGY_AMBIENT",
    "STRATEGY_CAPABILITY_TOKEN",
    "STRATEGY_SHARED_KEY",
    "AzCliStorageBackend",
    "BlobReference",
    "FetchRequest",
    "FetchStrategy",
    "StorageBackend",
    "StorageCommandError",
    "download_with_token",
    "fetch_blob",
    "fetch_with_capability_token",
    "fetch_with_identity",
    "fetch_with_shared_key",
    "format_expiry",
    "is_remote_reference",
    "parse_blob_url",
]
