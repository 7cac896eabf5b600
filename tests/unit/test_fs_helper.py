"""Unit tests for the filesystem and git collaborators."""

from __future__ import annotations

import hashlib
import subprocess
import tarfile
import zipfile
from pathlib import Path
from unittest.mock import patch

import pytest

from action_publisher.fs_helper import (
    LocalFileOperations,
    create_archives,
    create_temp_dir,
    ensure_tag_and_ref_checked_out,
    is_action_repo,
    remove_dir,
    stage_action_files,
)
from action_publisher.oci.errors import CheckoutMismatchError, CollaboratorError

SHA = "0123456789abcdef0123456789abcdef01234567"
OTHER_SHA = "fedcba9876543210fedcba9876543210fedcba98"


@pytest.fixture
def action_dir(tmp_path: Path) -> Path:
    """A small action repository checkout."""
    root = tmp_path / "action"
    (root / "src").mkdir(parents=True)
    (root / ".git").mkdir()
    (root / ".github" / "workflows").mkdir(parents=True)
    (root / "action.yml").write_text("name: hello\nruns:\n  using: node20\n  main: src/index.js\n")
    (root / "src" / "index.js").write_text("console.log('hello')\n")
    (root / "README.md").write_text("# hello\n")
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
    (root / ".github" / "workflows" / "release.yml").write_text("on: release\n")
    return root


class TestTempDirs:
    """Tests for temp directory management."""

    @pytest.mark.requirement("fs-temp-dirs")
    def test_create_temp_dir_is_unique(self, tmp_path: Path) -> None:
        """Test each call creates a new directory under the base."""
        first = create_temp_dir(tmp_path / "runner-temp", "staging")
        second = create_temp_dir(tmp_path / "runner-temp", "staging")

        assert first != second
        assert first.is_dir() and second.is_dir()
        assert first.parent == tmp_path / "runner-temp"
        assert first.name.startswith("staging-")

    @pytest.mark.requirement("fs-temp-dirs")
    def test_remove_dir(self, tmp_path: Path) -> None:
        """Test directories are removed with their contents."""
        target = create_temp_dir(tmp_path, "archives")
        (target / "file.txt").write_text("x")

        remove_dir(target)
        remove_dir(target)

        assert not target.exists()


class TestStaging:
    """Tests for staging the action tree."""

    @pytest.mark.requirement("fs-staging")
    def test_excludes_git_directories(self, action_dir: Path, tmp_path: Path) -> None:
        """Test .git and .github are not staged."""
        staging = create_temp_dir(tmp_path, "staging")

        stage_action_files(action_dir, staging)

        assert (staging / "action.yml").is_file()
        assert (staging / "src" / "index.js").is_file()
        assert not (staging / ".git").exists()
        assert not (staging / ".github").exists()

    @pytest.mark.requirement("fs-staging")
    def test_missing_source(self, tmp_path: Path) -> None:
        """Test staging a missing directory fails."""
        with pytest.raises(CollaboratorError, match="does not exist"):
            stage_action_files(tmp_path / "missing", tmp_path / "staging")

    @pytest.mark.requirement("fs-staging")
    @pytest.mark.parametrize("name", ["action.yml", "action.yaml"])
    def test_is_action_repo(self, tmp_path: Path, name: str) -> None:
        """Test both action metadata file names are recognised."""
        assert not is_action_repo(tmp_path)
        (tmp_path / name).write_text("name: x\n")
        assert is_action_repo(tmp_path)


class TestArchives:
    """Tests for archive creation."""

    @pytest.mark.requirement("fs-archives")
    def test_archive_names_and_metadata(self, action_dir: Path, tmp_path: Path) -> None:
        """Test archive names, sizes and digests."""
        staging = create_temp_dir(tmp_path, "staging")
        stage_action_files(action_dir, staging)
        archive_dir = create_temp_dir(tmp_path, "archives")

        archives = create_archives(staging, archive_dir, "octo-org/hello-action", "1.0.0")

        assert archives.zip_file.path == archive_dir / "octo-org-hello-action_1.0.0.zip"
        assert archives.tar_file.path == archive_dir / "octo-org-hello-action_1.0.0.tar.gz"
        for metadata in (archives.zip_file, archives.tar_file):
            content = metadata.path.read_bytes()
            assert metadata.size == len(content)
            assert metadata.sha256 == f"sha256:{hashlib.sha256(content).hexdigest()}"

    @pytest.mark.requirement("fs-archives")
    def test_archive_contents(self, action_dir: Path, tmp_path: Path) -> None:
        """Test both archives hold the staged files in sorted order."""
        staging = create_temp_dir(tmp_path, "staging")
        stage_action_files(action_dir, staging)
        archive_dir = create_temp_dir(tmp_path, "archives")

        archives = create_archives(staging, archive_dir, "octo-org/hello-action", "1.0.0")

        expected = ["README.md", "action.yml", "src/index.js"]
        with zipfile.ZipFile(archives.zip_file.path) as zf:
            assert zf.namelist() == expected
            assert zf.read("src/index.js") == b"console.log('hello')\n"
        with tarfile.open(archives.tar_file.path, "r:gz") as tf:
            assert tf.getnames() == expected

    @pytest.mark.requirement("fs-archives")
    def test_archives_are_reproducible(self, action_dir: Path, tmp_path: Path) -> None:
        """Test archiving the same tree twice gives identical digests."""
        staging = create_temp_dir(tmp_path, "staging")
        stage_action_files(action_dir, staging)

        first = create_archives(staging, create_temp_dir(tmp_path, "a"), "o/r", "1.0.0")
        second = create_archives(staging, create_temp_dir(tmp_path, "b"), "o/r", "1.0.0")

        assert first.zip_file.sha256 == second.zip_file.sha256
        assert first.tar_file.sha256 == second.tar_file.sha256


def _rev_parse_results(head: str, tag: str) -> list[subprocess.CompletedProcess[str]]:
    return [
        subprocess.CompletedProcess(["git"], 0, stdout=f"{head}\n", stderr=""),
        subprocess.CompletedProcess(["git"], 0, stdout=f"{tag}\n", stderr=""),
    ]


class TestCheckout:
    """Tests for ensure_tag_and_ref_checked_out."""

    @pytest.mark.requirement("fs-checkout")
    def test_head_and_tag_match(self, tmp_path: Path) -> None:
        """Test no error when HEAD and the tag resolve to the expected commit."""
        with patch(
            "action_publisher.fs_helper.subprocess.run",
            side_effect=_rev_parse_results(SHA, SHA),
        ) as mock_run:
            ensure_tag_and_ref_checked_out("refs/tags/v1.0.0", SHA, tmp_path)

        revs = [call.args[0][-1] for call in mock_run.call_args_list]
        assert revs == ["HEAD", "refs/tags/v1.0.0^{commit}"]

    @pytest.mark.requirement("fs-checkout")
    def test_head_mismatch(self, tmp_path: Path) -> None:
        """Test a different HEAD is rejected."""
        with patch(
            "action_publisher.fs_helper.subprocess.run",
            side_effect=_rev_parse_results(OTHER_SHA, SHA),
        ):
            with pytest.raises(CheckoutMismatchError) as exc_info:
                ensure_tag_and_ref_checked_out("refs/tags/v1.0.0", SHA, tmp_path)

        assert exc_info.value.expected == SHA
        assert exc_info.value.actual == OTHER_SHA

    @pytest.mark.requirement("fs-checkout")
    def test_tag_mismatch(self, tmp_path: Path) -> None:
        """Test a tag pointing elsewhere is rejected."""
        with patch(
            "action_publisher.fs_helper.subprocess.run",
            side_effect=_rev_parse_results(SHA, OTHER_SHA),
        ):
            with pytest.raises(CheckoutMismatchError, match="refs/tags/v1.0.0 points to"):
                ensure_tag_and_ref_checked_out("refs/tags/v1.0.0", SHA, tmp_path)

    @pytest.mark.requirement("fs-checkout")
    def test_unknown_ref(self, tmp_path: Path) -> None:
        """Test an unresolvable ref is reported."""
        error = subprocess.CalledProcessError(1, ["git"], stderr="")
        with patch("action_publisher.fs_helper.subprocess.run", side_effect=error):
            with pytest.raises(CheckoutMismatchError, match="Could not resolve HEAD"):
                ensure_tag_and_ref_checked_out("refs/tags/v1.0.0", SHA, tmp_path)

    @pytest.mark.requirement("fs-checkout")
    def test_local_file_operations_delegates(self, tmp_path: Path) -> None:
        """Test LocalFileOperations calls the module functions."""
        with patch("action_publisher.fs_helper.ensure_tag_and_ref_checked_out") as mock_check:
            LocalFileOperations().ensure_tag_and_ref_checked_out("refs/tags/v1", SHA, str(tmp_path))

        mock_check.assert_called_once_with("refs/tags/v1", SHA, str(tmp_path))
