"""Tests for builds/context.py module."""

from pathlib import Path
from unittest.mock import patch

import pytest

from bacpac_imagegen.builds.context import (
    CONTEXT_PREFIX,
    build_context,
    copy_verified,
    create_context_dir,
    remove_context,
)
from bacpac_imagegen.errors import ContextAssemblyError
from bacpac_imagegen.types import ArtifactReference, BuildPlan, ImageRef, ScriptReference


@pytest.fixture
def plan(make_file) -> BuildPlan:
    artifact = make_file("prod-db.bacpac", size=3000)
    script = make_file("seed.sql", content=b"SELECT 1;\n")
    return BuildPlan(
        image=ImageRef("app", "v1"),
        artifacts=(
            ArtifactReference(
                source_path=artifact,
                logical_name="Prod",
                size_bytes=3000,
                extension=".bacpac",
            ),
        ),
        scripts=(ScriptReference(script, 1),),
    )


class TestCopyVerified:
    """Tests for copy_verified."""

    def test_copies(self, make_file, tmp_path: Path) -> None:
        """Should copy the file and return its length."""
        source = make_file("a.bacpac", size=1500)
        dest = tmp_path / "copy.bacpac"

        assert copy_verified(source, dest) == 1500
        assert dest.read_bytes() == source.read_bytes()

    def test_missing_source(self, tmp_path: Path) -> None:
        """Should wrap copy failures in ContextAssemblyError."""
        with pytest.raises(ContextAssemblyError) as exc_info:
            copy_verified(tmp_path / "missing", tmp_path / "dest")
        assert exc_info.value.code == "context_assembly"

    def test_length_mismatch(self, make_file, tmp_path: Path) -> None:
        """Should reject a copy whose length differs from the source."""
        source = make_file("a.bacpac", size=1500)
        dest = tmp_path / "copy.bacpac"

        def truncated_copy(src: Path, dst: Path) -> None:
            Path(dst).write_bytes(b"x" * 10)

        with patch("shutil.copyfile", side_effect=truncated_copy):
            with pytest.raises(ContextAssemblyError, match="incomplete"):
                copy_verified(source, dest)


class TestCreateContextDir:
    """Tests for create_context_dir."""

    def test_unique_directories(self, tmp_path: Path) -> None:
        """Should create a fresh directory on every call."""
        first = create_context_dir(tmp_path)
        second = create_context_dir(tmp_path)

        assert first != second
        assert first.name.startswith(CONTEXT_PREFIX)
        assert first.parent == tmp_path
        assert list(first.iterdir()) == []


class TestBuildContext:
    """Tests for the build_context context manager."""

    def test_layout(self, plan: BuildPlan, tmp_path: Path) -> None:
        """Should stage artifacts and scripts under canonical names."""
        with build_context(plan, tmp_path / "ctx") as context:
            assert (context.artifacts_dir / "Prod.bacpac").stat().st_size == 3000
            assert (context.scripts_dir / "001_seed.sql").read_bytes() == b"SELECT 1;\n"
            assert (context.root / ".dockerignore").read_text() == "build-manifest.json\n"

    def test_removed_on_success(self, plan: BuildPlan, tmp_path: Path) -> None:
        """Should remove the directory after a normal exit."""
        with build_context(plan, tmp_path) as context:
            root = context.root

        assert not root.exists()

    def test_removed_on_failure(self, plan: BuildPlan, tmp_path: Path) -> None:
        """Should remove the directory when the block raises."""
        with pytest.raises(RuntimeError):
            with build_context(plan, tmp_path) as context:
                root = context.root
                raise RuntimeError("build failed")

        assert not root.exists()

    def test_removed_on_assembly_failure(self, plan: BuildPlan, tmp_path: Path) -> None:
        """Should remove a half-populated directory when a copy fails."""
        parent = tmp_path / "ctx"
        with patch(
            "bacpac_imagegen.builds.context.copy_verified",
            side_effect=ContextAssemblyError("disk full"),
        ):
            with pytest.raises(ContextAssemblyError):
                with build_context(plan, parent):
                    pass

        assert list(parent.iterdir()) == []

    def test_keep(self, plan: BuildPlan, tmp_path: Path) -> None:
        """Should keep the directory when asked to."""
        with build_context(plan, tmp_path, keep=True) as context:
            root = context.root

        assert root.exists()

    def test_remove_missing_is_quiet(self, tmp_path: Path) -> None:
        """Should ignore an already removed directory."""
        remove_context(tmp_path / "gone")
