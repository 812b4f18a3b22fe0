"""Tests for storage/fetch.py module.

Storage management calls go through a fake backend; token downloads are
mocked with respx.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest
import respx

from bacpac_imagegen.errors import (
    FetchExhaustedError,
    StorageReferenceError,
    StrategyFailedError,
)
from bacpac_imagegen.storage.fetch import (
    STRATEGY_AMBIENT,
    STRATEGY_CAPABILITY_TOKEN,
    STRATEGY_SHARED_KEY,
    AzCliStorageBackend,
    BlobReference,
    FetchStrategy,
    StorageCommandError,
    download_with_token,
    fetch_blob,
    fetch_with_capability_token,
    format_expiry,
    is_remote_reference,
    parse_blob_url,
)

BLOB_URL = "https://acct.blob.core.windows.net/exports/2024/app.bacpac"
TOKEN = "sv=2022-11-02&sp=r&sig=abc"
CONTENT = b"bacpac" * 1024


class FakeBackend:
    """StorageBackend double with per-operation failures."""

    def __init__(
        self,
        identity_fails: bool = True,
        key_fails: bool = True,
        token_fails: bool = False,
        write_empty: bool = False,
    ) -> None:
        self.identity_fails = identity_fails
        self.key_fails = key_fails
        self.token_fails = token_fails
        self.write_empty = write_empty
        self.calls: list[str] = []
        self.token_requests: list[tuple[datetime, str | None]] = []

    def download_with_identity(self, ref: BlobReference, dest: Path) -> None:
        self.calls.append("identity")
        if self.identity_fails:
            dest.write_bytes(b"partial")
            raise StorageCommandError("AuthorizationPermissionMismatch")
        dest.write_bytes(b"" if self.write_empty else CONTENT)

    def get_account_key(self, account: str) -> str:
        self.calls.append("key")
        if self.key_fails:
            raise StorageCommandError("AuthorizationFailed")
        return "account-key"

    def download_with_key(self, ref: BlobReference, key: str, dest: Path) -> None:
        self.calls.append("key-download")
        dest.write_bytes(CONTENT)

    def generate_read_token(
        self, ref: BlobReference, expiry: datetime, key: str | None = None
    ) -> str:
        self.calls.append("token")
        self.token_requests.append((expiry, key))
        if self.token_fails:
            raise StorageCommandError("cannot sign token")
        return TOKEN


class TestParseBlobUrl:
    """Tests for parse_blob_url."""

    def test_parse(self) -> None:
        """Should split account, container and blob."""
        ref = parse_blob_url(BLOB_URL)

        assert ref.account == "acct"
        assert ref.container == "exports"
        assert ref.blob == "2024/app.bacpac"
        assert ref.filename == "app.bacpac"
        assert ref.url == BLOB_URL

    def test_drops_query(self) -> None:
        """Should drop an existing token from the URL."""
        assert parse_blob_url(f"{BLOB_URL}?sig=old").url == BLOB_URL

    @pytest.mark.parametrize(
        "url",
        [
            "http://acct.blob.core.windows.net/c/app.bacpac",
            "https://acct.blob.core.windows.net/onlycontainer",
            "https://localhost/c/app.bacpac",
        ],
    )
    def test_invalid(self, url: str) -> None:
        """Should reject non-blob URLs."""
        with pytest.raises(StorageReferenceError) as exc_info:
            parse_blob_url(url)
        assert exc_info.value.code == "invalid_storage_reference"

    def test_is_remote_reference(self) -> None:
        """Should only treat https URLs as remote."""
        assert is_remote_reference(BLOB_URL)
        assert not is_remote_reference("/data/app.bacpac")


class TestFetchBlob:
    """Tests for the fetch fallback chain."""

    @respx.mock
    def test_identity_succeeds(self, tmp_path: Path) -> None:
        """Should stop at the first strategy that works."""
        backend = FakeBackend(identity_fails=False)
        dest = tmp_path / "app.bacpac"

        with httpx.Client() as client:
            result = fetch_blob(BLOB_URL, dest, backend, client=client)

        assert result.strategy == STRATEGY_AMBIENT
        assert backend.calls == ["identity"]
        assert dest.read_bytes() == CONTENT

    @respx.mock
    def test_falls_back_to_shared_key(self, tmp_path: Path) -> None:
        """Should use the account key when identity access is denied."""
        backend = FakeBackend(identity_fails=True, key_fails=False)
        dest = tmp_path / "app.bacpac"

        with httpx.Client() as client:
            result = fetch_blob(BLOB_URL, dest, backend, client=client)

        assert result.strategy == STRATEGY_SHARED_KEY
        assert backend.calls == ["identity", "key", "key-download"]
        assert dest.read_bytes() == CONTENT

    @respx.mock
    def test_falls_back_to_capability_token(self, tmp_path: Path) -> None:
        """Should download with a short-lived token when both others fail."""
        route = respx.get(url__startswith=BLOB_URL).mock(
            return_value=httpx.Response(200, content=CONTENT)
        )
        backend = FakeBackend(identity_fails=True, key_fails=True)
        dest = tmp_path / "app.bacpac"
        before = datetime.now(timezone.utc)

        with httpx.Client() as client:
            result = fetch_blob(BLOB_URL, dest, backend, client=client)

        assert result.strategy == STRATEGY_CAPABILITY_TOKEN
        assert result.size_bytes == len(CONTENT)
        assert dest.read_bytes() == CONTENT
        assert route.called
        assert str(route.calls.last.request.url).endswith(TOKEN)

        expiry, key = backend.token_requests[0]
        assert key is None
        assert before + timedelta(minutes=59) < expiry <= datetime.now(
            timezone.utc
        ) + timedelta(hours=1)

    @respx.mock
    def test_builtin_errors_fall_through(self, tmp_path: Path) -> None:
        """Should treat any backend exception as that strategy's failure."""
        respx.get(url__startswith=BLOB_URL).mock(
            return_value=httpx.Response(200, content=CONTENT)
        )

        class DeniedBackend(FakeBackend):
            def download_with_identity(self, ref: BlobReference, dest: Path) -> None:
                self.calls.append("identity")
                raise PermissionError("403 AuthorizationPermissionMismatch")

            def get_account_key(self, account: str) -> str:
                self.calls.append("key")
                raise KeyError(account)

        backend = DeniedBackend()
        dest = tmp_path / "app.bacpac"

        with httpx.Client() as client:
            result = fetch_blob(BLOB_URL, dest, backend, client=client)

        assert result.strategy == STRATEGY_CAPABILITY_TOKEN
        assert backend.calls == ["identity", "key", "key", "token"]
        assert backend.token_requests[0][1] is None
        assert dest.read_bytes() == CONTENT

    def test_builtin_error_reasons_recorded(self, tmp_path: Path) -> None:
        """Should name the exception type in the exhaustion report."""
        backend = MagicMock()
        backend.download_with_identity.side_effect = PermissionError("denied")
        strategies = (
            FetchStrategy(
                STRATEGY_AMBIENT,
                lambda r: r.backend.download_with_identity(r.reference, r.dest),
            ),
        )

        with pytest.raises(FetchExhaustedError) as exc_info:
            fetch_blob(
                BLOB_URL,
                tmp_path / "app.bacpac",
                backend,
                client=MagicMock(),
                strategies=strategies,
            )

        assert exc_info.value.failures == {STRATEGY_AMBIENT: "PermissionError: denied"}

    @respx.mock
    def test_all_strategies_fail(self, tmp_path: Path) -> None:
        """Should report every failure when the chain is exhausted."""
        respx.get(url__startswith=BLOB_URL).mock(return_value=httpx.Response(403))
        backend = FakeBackend(identity_fails=True, key_fails=True)
        dest = tmp_path / "app.bacpac"

        with httpx.Client() as client:
            with pytest.raises(FetchExhaustedError) as exc_info:
                fetch_blob(BLOB_URL, dest, backend, client=client)

        failures = exc_info.value.failures
        assert list(failures) == [
            STRATEGY_AMBIENT,
            STRATEGY_SHARED_KEY,
            STRATEGY_CAPABILITY_TOKEN,
        ]
        assert "403" in failures[STRATEGY_CAPABILITY_TOKEN]
        assert exc_info.value.code == "fetch_exhausted"
        assert not dest.exists()

    @respx.mock
    def test_token_generation_failure(self, tmp_path: Path) -> None:
        """Should record token signing failures."""
        backend = FakeBackend(identity_fails=True, key_fails=True, token_fails=True)

        with httpx.Client() as client:
            with pytest.raises(FetchExhaustedError) as exc_info:
                fetch_blob(BLOB_URL, tmp_path / "app.bacpac", backend, client=client)

        assert "cannot sign token" in exc_info.value.failures[STRATEGY_CAPABILITY_TOKEN]

    def test_empty_download_counts_as_failure(self, tmp_path: Path) -> None:
        """Should move on when a strategy produced an empty file."""
        backend = FakeBackend(identity_fails=False, write_empty=True)
        strategies = (
            FetchStrategy(
                STRATEGY_AMBIENT,
                lambda r: r.backend.download_with_identity(r.reference, r.dest),
            ),
        )

        with pytest.raises(FetchExhaustedError) as exc_info:
            fetch_blob(
                BLOB_URL,
                tmp_path / "app.bacpac",
                backend,
                client=MagicMock(),
                strategies=strategies,
            )

        assert "empty" in exc_info.value.failures[STRATEGY_AMBIENT]

    def test_custom_token_lifetime(self, tmp_path: Path) -> None:
        """Should pass the configured lifetime to token generation."""
        backend = FakeBackend(identity_fails=True, key_fails=False)
        dest = tmp_path / "app.bacpac"

        with patch(
            "bacpac_imagegen.storage.fetch.download_with_token",
            side_effect=lambda client, url, token, d, timeout: d.write_bytes(CONTENT),
        ):
            strategies = (FetchStrategy(STRATEGY_CAPABILITY_TOKEN, fetch_with_capability_token),)
            fetch_blob(
                BLOB_URL,
                dest,
                backend,
                client=MagicMock(),
                strategies=strategies,
                token_lifetime=timedelta(minutes=5),
            )

        expiry, key = backend.token_requests[0]
        assert key == "account-key"
        assert expiry <= datetime.now(timezone.utc) + timedelta(minutes=5)


class TestDownloadWithToken:
    """Tests for download_with_token."""

    @respx.mock
    def test_download(self, tmp_path: Path) -> None:
        """Should stream the body to disk."""
        respx.get(url__startswith=BLOB_URL).mock(
            return_value=httpx.Response(200, content=CONTENT)
        )
        dest = tmp_path / "out" / "app.bacpac"

        with httpx.Client() as client:
            size = download_with_token(client, BLOB_URL, TOKEN, dest)

        assert size == len(CONTENT)
        assert dest.read_bytes() == CONTENT

    @respx.mock
    def test_network_error(self, tmp_path: Path) -> None:
        """Should wrap network errors as a strategy failure."""
        respx.get(url__startswith=BLOB_URL).mock(side_effect=httpx.ConnectError("refused"))

        with httpx.Client() as client:
            with pytest.raises(StrategyFailedError) as exc_info:
                download_with_token(client, BLOB_URL, TOKEN, tmp_path / "x")

        assert exc_info.value.strategy == STRATEGY_CAPABILITY_TOKEN


class TestAzCliStorageBackend:
    """Tests for AzCliStorageBackend command construction."""

    def _completed(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> MagicMock:
        result = MagicMock()
        result.returncode = returncode
        result.stdout = stdout
        result.stderr = stderr
        return result

    def test_key_passed_through_environment(self, tmp_path: Path) -> None:
        """Should never put the account key in argv."""
        ref = parse_blob_url(BLOB_URL)
        with patch("subprocess.run", return_value=self._completed()) as mock_run:
            AzCliStorageBackend().download_with_key(ref, "s3cr3t-key", tmp_path / "x")

        cmd = mock_run.call_args.args[0]
        assert "s3cr3t-key" not in cmd
        assert mock_run.call_args.kwargs["env"]["AZURE_STORAGE_KEY"] == "s3cr3t-key"
        assert cmd[:4] == ["az", "storage", "blob", "download"]

    def test_user_delegation_token(self) -> None:
        """Should sign with the ambient identity when no key is available."""
        ref = parse_blob_url(BLOB_URL)
        expiry = datetime(2024, 5, 1, 13, 0, tzinfo=timezone.utc)
        with patch("subprocess.run", return_value=self._completed(stdout='"sig=1"\n')) as mock_run:
            token = AzCliStorageBackend().generate_read_token(ref, expiry)

        cmd = mock_run.call_args.args[0]
        assert token == "sig=1"
        assert "--as-user" in cmd
        assert cmd[cmd.index("--permissions") + 1] == "r"
        assert cmd[cmd.index("--expiry") + 1] == "2024-05-01T13:00Z"
        assert "--https-only" in cmd

    def test_command_failure(self) -> None:
        """Should raise StorageCommandError with stderr."""
        with patch(
            "subprocess.run", return_value=self._completed(1, stderr="AuthorizationFailed")
        ):
            with pytest.raises(StorageCommandError, match="AuthorizationFailed"):
                AzCliStorageBackend().get_account_key("acct")

    def test_format_expiry(self) -> None:
        """Should format expiry in UTC minutes."""
        moment = datetime(2024, 5, 1, 15, 30, tzinfo=timezone(timedelta(hours=2)))
        assert format_expiry(moment) == "2024-05-01T13:30Z"
