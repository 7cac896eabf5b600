"""Filesystem and git collaborators for the publish pipeline.

These helpers stage the action tree into a temporary directory, produce the
zip and tar.gz archives with their sizes and digests, and confirm that the
working tree is checked out at the release commit.

Archives are reproducible: entries are sorted, timestamps are fixed and the
gzip header carries no mtime, so re-running a release produces identical
blobs and the registry's existence check can skip them.
"""

from __future__ import annotations

import gzip
import hashlib
import os
import shutil
import stat
import subprocess
import tarfile
import tempfile
import zipfile
from pathlib import Path
from typing import Protocol

import structlog

from action_publisher.oci.errors import ArchiveError, CheckoutMismatchError, CollaboratorError
from action_publisher.schemas.oci import Archives, FileMetadata

logger = structlog.get_logger(__name__)

ACTION_FILENAMES = ("action.yml", "action.yaml")
EXCLUDED_DIRECTORIES = (".git", ".github")
ARCHIVE_TIMESTAMP = (1980, 1, 1, 0, 0, 0)
"""Fixed zip entry timestamp (earliest value the zip format allows)."""
GIT_TIMEOUT_SECONDS = 60
_CHUNK_SIZE = 1024 * 1024


def create_temp_dir(base_dir: str | Path, name: str) -> Path:
    """Create a fresh, uniquely named directory under ``base_dir``.

    Args:
        base_dir: Parent directory (created if missing).
        name: Prefix for the new directory, e.g. ``staging``.

    Returns:
        Path to the new directory.
    """
    base = Path(base_dir)
    base.mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix=f"{name}-", dir=base))
    logger.debug("temp_dir_created", path=str(path))
    return path


def remove_dir(path: str | Path) -> None:
    """Remove a directory tree. Missing directories are ignored."""
    target = Path(path)
    if target.exists():
        shutil.rmtree(target)
        logger.debug("temp_dir_removed", path=str(target))


def is_action_repo(path: str | Path) -> bool:
    """Check whether ``path`` contains an action metadata file."""
    root = Path(path)
    return any((root / name).is_file() for name in ACTION_FILENAMES)


def stage_action_files(source_dir: str | Path, staging_dir: str | Path) -> None:
    """Copy the action tree into the staging directory.

    ``.git`` and ``.github`` directories are left out of the package.

    Raises:
        CollaboratorError: If the source is missing or the copy fails.
    """
    source = Path(source_dir)
    if not source.is_dir():
        raise CollaboratorError(f"Action path {source} does not exist or is not a directory.")

    try:
        shutil.copytree(
            source,
            staging_dir,
            symlinks=True,
            ignore=shutil.ignore_patterns(*EXCLUDED_DIRECTORIES),
            dirs_exist_ok=True,
        )
    except (OSError, shutil.Error) as e:
        raise CollaboratorError(f"Failed to stage action files from {source}: {e}") from e

    logger.info("action_files_staged", source=str(source), staging=str(staging_dir))


def _archive_base_name(repository: str, version: str) -> str:
    return f"{repository.replace('/', '-')}_{version}"


def _iter_files(root: Path) -> list[Path]:
    """Every file and symlink under ``root``, sorted by relative path."""
    entries = [
        path for path in root.rglob("*") if path.is_symlink() or path.is_file()
    ]
    return sorted(entries, key=lambda p: p.relative_to(root).as_posix())


def file_metadata(path: Path) -> FileMetadata:
    """Compute the size and sha256 digest of a file."""
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return FileMetadata(path=path, size=path.stat().st_size, sha256=f"sha256:{digest.hexdigest()}")


def _write_zip(source: Path, destination: Path) -> None:
    with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for path in _iter_files(source):
            arcname = path.relative_to(source).as_posix()
            info = zipfile.ZipInfo(arcname, date_time=ARCHIVE_TIMESTAMP)
            info.compress_type = zipfile.ZIP_DEFLATED
            if path.is_symlink():
                info.external_attr = (stat.S_IFLNK | 0o777) << 16
                archive.writestr(info, os.readlink(path))
            else:
                mode = path.stat().st_mode
                info.external_attr = (stat.S_IFREG | stat.S_IMODE(mode)) << 16
                archive.writestr(info, path.read_bytes())


def _tar_filter(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.mtime = 0
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    return info


def _write_tar_gz(source: Path, destination: Path) -> None:
    with destination.open("wb") as raw, gzip.GzipFile(
        filename="", mode="wb", fileobj=raw, mtime=0
    ) as gz, tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as archive:
        for path in _iter_files(source):
            archive.add(
                path,
                arcname=path.relative_to(source).as_posix(),
                recursive=False,
                filter=_tar_filter,
            )


def create_archives(
    source_dir: str | Path,
    archive_dir: str | Path,
    repository: str,
    version: str,
) -> Archives:
    """Create the zip and tar.gz archives of a staged action.

    Args:
        source_dir: Staged action tree.
        archive_dir: Directory to write the archives into.
        repository: Repository (owner/name), used for the archive names.
        version: Version being published, used for the archive names.

    Returns:
        Archives with size and digest for each file.

    Raises:
        ArchiveError: If either archive cannot be written.
    """
    source = Path(source_dir)
    base_name = _archive_base_name(repository, version)
    zip_path = Path(archive_dir) / f"{base_name}.zip"
    tar_path = Path(archive_dir) / f"{base_name}.tar.gz"

    try:
        _write_zip(source, zip_path)
        _write_tar_gz(source, tar_path)
        archives = Archives(zip_file=file_metadata(zip_path), tar_file=file_metadata(tar_path))
    except (OSError, tarfile.TarError, zipfile.BadZipFile) as e:
        raise ArchiveError(f"Failed to create archives for {repository}@{version}: {e}") from e

    logger.info(
        "archives_created",
        zip_path=str(zip_path),
        zip_size=archives.zip_file.size,
        tar_path=str(tar_path),
        tar_size=archives.tar_file.size,
    )
    return archives


def _rev_parse(workspace: str | Path, rev: str) -> str:
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--verify", "--quiet", rev],
            cwd=workspace,
            capture_output=True,
            text=True,
            check=True,
            timeout=GIT_TIMEOUT_SECONDS,
        )
    except FileNotFoundError as e:
        raise CollaboratorError("git is not installed or not on PATH.") from e
    except subprocess.CalledProcessError as e:
        raise CheckoutMismatchError(f"Could not resolve {rev} in {workspace}.") from e
    except subprocess.TimeoutExpired as e:
        raise CollaboratorError(f"git rev-parse {rev} timed out.") from e
    return result.stdout.strip()


def ensure_tag_and_ref_checked_out(ref: str, sha: str, workspace: str | Path) -> None:
    """Confirm the working tree and the tag both point at the release commit.

    Args:
        ref: Tag ref being released, e.g. ``refs/tags/v1.0.0``.
        sha: Commit the workflow was triggered for.
        workspace: Repository working tree.

    Raises:
        CheckoutMismatchError: If HEAD or the tag resolve to another commit.
    """
    head = _rev_parse(workspace, "HEAD")
    if head != sha:
        raise CheckoutMismatchError(
            f"The checked out commit {head} does not match the expected commit {sha}.",
            expected=sha,
            actual=head,
        )

    tag_commit = _rev_parse(workspace, f"{ref}^{{commit}}")
    if tag_commit != sha:
        raise CheckoutMismatchError(
            f"The ref {ref} points to {tag_commit}, not the expected commit {sha}.",
            expected=sha,
            actual=tag_commit,
        )
    logger.debug("checkout_verified", ref=ref, sha=sha)


class FileOperations(Protocol):
    """Filesystem collaborators used by the publish orchestrator."""

    def ensure_tag_and_ref_checked_out(self, ref: str, sha: str, workspace: str) -> None: ...

    def create_temp_dir(self, base_dir: str, name: str) -> Path: ...

    def stage_action_files(self, source_dir: str | Path, staging_dir: Path) -> None: ...

    def is_action_repo(self, path: Path) -> bool: ...

    def create_archives(
        self, source_dir: Path, archive_dir: Path, repository: str, version: str
    ) -> Archives: ...

    def remove_dir(self, path: Path) -> None: ...


class LocalFileOperations:
    """FileOperations backed by the local filesystem and git."""

    def ensure_tag_and_ref_checked_out(self, ref: str, sha: str, workspace: str) -> None:
        ensure_tag_and_ref_checked_out(ref, sha, workspace)

    def create_temp_dir(self, base_dir: str, name: str) -> Path:
        return create_temp_dir(base_dir, name)

    def stage_action_files(self, source_dir: str | Path, staging_dir: Path) -> None:
        stage_action_files(source_dir, staging_dir)

    def is_action_repo(self, path: Path) -> bool:
        return is_action_repo(path)

    def create_archives(
        self, source_dir: Path, archive_dir: Path, repository: str, version: str
    ) -> Archives:
        return create_archives(source_dir, archive_dir, repository, version)

    def remove_dir(self, path: Path) -> None:
        remove_dir(path)


__all__ = [
    "FileOperations",
    "LocalFileOperations",
    "create_archives",
    "create_temp_dir",
    "ensure_tag_and_ref_checked_out",
    "file_metadata",
    "is_action_repo",
    "remove_dir",
    "stage_action_files",
]
