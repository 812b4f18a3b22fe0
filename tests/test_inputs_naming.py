"""Tests for inputs/naming.py module."""

from pathlib import Path

import pytest

from bacpac_imagegen.errors import DuplicateLogicalNameError, InvalidLogicalNameError
from bacpac_imagegen.inputs.naming import (
    assign_identities,
    resolve_logical_names,
    sanitize_name,
)


class TestSanitizeName:
    """Tests for sanitize_name."""

    @pytest.mark.parametrize(
        ("filename", "expected"),
        [
            ("app.bin", "app"),
            ("Sales.bacpac", "Sales"),
            ("prod-db.2024.bacpac", "prod_db_2024"),
            ("my db (copy).bacpac", "my_db__copy_"),
            ("noext", "noext"),
        ],
    )
    def test_sanitize(self, filename: str, expected: str) -> None:
        """Should drop the extension and replace invalid characters."""
        assert sanitize_name(filename) == expected


class TestAssignIdentities:
    """Tests for assign_identities."""

    def test_derived_names(self) -> None:
        """Should derive names from file names and lower-case extensions."""
        refs = assign_identities(
            [(Path("/d/Sales.BACPAC"), 10), (Path("/d/hr-data.bacpac"), 20)]
        )

        assert [r.logical_name for r in refs] == ["Sales", "hr_data"]
        assert [r.target_name for r in refs] == ["Sales.bacpac", "hr_data.bacpac"]
        assert [r.size_bytes for r in refs] == [10, 20]

    def test_explicit_names_override_by_index(self) -> None:
        """Should use explicit names first and derive the rest."""
        refs = assign_identities(
            [(Path("/d/x.bacpac"), 1), (Path("/d/y.bacpac"), 1)],
            names=["Billing"],
        )

        assert [r.logical_name for r in refs] == ["Billing", "y"]

    def test_explicit_name_used_verbatim(self) -> None:
        """Should not alter a valid explicit name."""
        refs = assign_identities([(Path("/d/x.bacpac"), 1)], names=["Mixed_Case_1"])

        assert refs[0].logical_name == "Mixed_Case_1"

    def test_duplicate_derived_names(self) -> None:
        """Should reject two artifacts deriving the same name."""
        with pytest.raises(DuplicateLogicalNameError) as exc_info:
            assign_identities(
                [(Path("/a/app.bacpac"), 1), (Path("/b/app.bacpac"), 1)]
            )
        assert exc_info.value.code == "duplicate_logical_name"
        assert exc_info.value.name == "app"

    def test_duplicate_differs_by_case(self) -> None:
        """Should treat names that differ only by case as duplicates."""
        with pytest.raises(DuplicateLogicalNameError):
            assign_identities(
                [(Path("/a/Sales.bacpac"), 1), (Path("/b/x.bacpac"), 1)],
                names=["Sales", "SALES"],
            )

    def test_explicit_collides_with_derived(self) -> None:
        """Should reject an explicit name equal to a derived one."""
        with pytest.raises(DuplicateLogicalNameError):
            assign_identities(
                [(Path("/a/x.bacpac"), 1), (Path("/b/y.bacpac"), 1)],
                names=["y"],
            )

    def test_blank_explicit_name(self) -> None:
        """Should reject a blank explicit name."""
        with pytest.raises(InvalidLogicalNameError):
            assign_identities([(Path("/a/x.bacpac"), 1)], names=["  "])

    def test_malformed_explicit_name(self) -> None:
        """Should reject explicit names with invalid characters."""
        with pytest.raises(InvalidLogicalNameError) as exc_info:
            assign_identities([(Path("/a/x.bacpac"), 1)], names=["bad-name"])
        assert exc_info.value.details == {"index": 0}

    def test_too_many_names(self) -> None:
        """Should reject more names than artifacts."""
        with pytest.raises(InvalidLogicalNameError):
            assign_identities([(Path("/a/x.bacpac"), 1)], names=["a", "b"])


class TestResolveLogicalNames:
    """Tests for resolve_logical_names."""

    def test_names_from_file_names(self) -> None:
        """Should derive names without touching the filesystem."""
        resolved = resolve_logical_names(
            [
                ("https://acct.blob.core.windows.net/c/Orders.bacpac", "Orders.bacpac"),
                ("/data/app.bin", "app.bin"),
            ],
            ["Billing"],
        )

        assert resolved == [("Billing", True), ("app", False)]

    def test_duplicate_reports_both_sources(self) -> None:
        """Should name both colliding sources, URLs included."""
        url = "https://acct.blob.core.windows.net/c/app.bacpac"

        with pytest.raises(DuplicateLogicalNameError) as exc_info:
            resolve_logical_names([("/data/App.bacpac", "App.bacpac"), (url, "app.bacpac")])

        assert exc_info.value.details["sources"] == ["/data/App.bacpac", url]
