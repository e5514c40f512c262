"""Zip packaging and extraction of working tree files."""

import io
import logging
import os
import shutil
import stat
import tempfile
import zipfile
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import IO, Iterable, Union

from ..exceptions import ExtractError, PackageError
from ..models import UploadFile
from ..utils import sha256_bytes

logger = logging.getLogger(__name__)

PACKAGE_NAME = "package.zip"

# Mode for directory entries, with the directory bit set
_DIR_MODE = stat.S_IFDIR | 0o755


def _parent_dirs(paths: Iterable[str]) -> list[str]:
    dirs: set[str] = set()
    for path in paths:
        for parent in PurePosixPath(path).parents:
            if str(parent) != ".":
                dirs.add(str(parent))
    return sorted(dirs)


def _normalize(path: str) -> str:
    normalized = PurePosixPath(path.replace("\\", "/"))
    if normalized.is_absolute() or ".." in normalized.parts:
        raise PackageError(f"Refusing to package path outside the tree: {path}")
    return normalized.as_posix()


def write_package(root: Path, paths: Iterable[str], target: Path) -> int:
    """Write the given files of ``root`` into a zip archive at ``target``.

    Directory entries are added for every parent directory, and each file's
    permission bits are stored in the entry header.

    Args:
        root: Working tree root
        paths: Relative paths of the files to include
        target: Archive file to create

    Returns:
        Number of file entries written

    Raises:
        PackageError: If a file cannot be read or the archive cannot be written
    """
    file_paths = sorted({_normalize(p) for p in paths})
    try:
        with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for directory in _parent_dirs(file_paths):
                info = zipfile.ZipInfo(directory + "/")
                info.external_attr = (_DIR_MODE << 16) | 0x10
                zf.writestr(info, b"")

            for relative_path in file_paths:
                source = root / relative_path
                try:
                    st = source.stat()
                    data = source.read_bytes()
                except OSError as e:
                    raise PackageError(f"Cannot read {relative_path}: {e}") from e
                # Files older than 1980 are stored with the earliest zip date
                info = zipfile.ZipInfo.from_file(
                    source, arcname=relative_path, strict_timestamps=False
                )
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = (st.st_mode & 0xFFFF) << 16
                zf.writestr(info, data)
    except OSError as e:
        raise PackageError(f"Cannot write archive {target}: {e}") from e

    logger.debug(f"Packaged {len(file_paths)} file(s) into {target}")
    return len(file_paths)


@contextmanager
def create_package(root: Path, paths: Iterable[str]) -> Generator[Path, None, None]:
    """Build a temporary archive of ``paths`` and remove it afterwards.

    Examples:
        >>> with create_package(root, ["meta/User/User.define.json"]) as archive:
        ...     files = read_upload_files(archive)

    Raises:
        PackageError: If the archive cannot be created
    """
    tmp_dir = Path(tempfile.mkdtemp(prefix="geelato-push-"))
    try:
        archive = tmp_dir / PACKAGE_NAME
        write_package(root, paths, archive)
        yield archive
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)


def _safe_target(target: Path, name: str) -> Path:
    destination = (target / name).resolve()
    base = target.resolve()
    if destination != base and base not in destination.parents:
        raise ExtractError(f"Archive entry escapes target directory: {name}")
    return destination


def extract_package(
    archive: Union[Path, IO[bytes]], target: Path
) -> dict[str, str]:
    """Extract an archive into ``target``, overwriting existing files.

    Entries are written one by one. When a write fails, the entries before
    it stay on disk; nothing is rolled back.

    Args:
        archive: Archive path or binary file object
        target: Directory to extract into (created if missing)

    Returns:
        Mapping of extracted file path (relative, POSIX) to content hash

    Raises:
        ExtractError: If the archive is invalid or an entry cannot be written
    """
    extracted: dict[str, str] = {}
    try:
        zf = zipfile.ZipFile(archive)
    except (OSError, zipfile.BadZipFile) as e:
        raise ExtractError(f"Invalid archive: {e}") from e

    with zf:
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ExtractError(f"Cannot create {target}: {e}") from e

        for info in zf.infolist():
            name = info.filename.replace("\\", "/")
            destination = _safe_target(target, name)
            mode = (info.external_attr >> 16) & 0o777
            try:
                if info.is_dir():
                    destination.mkdir(parents=True, exist_ok=True)
                    continue
                destination.parent.mkdir(parents=True, exist_ok=True)
                data = zf.read(info)
                # Replace rather than open a read-only file left by an earlier pull
                destination.unlink(missing_ok=True)
                destination.write_bytes(data)
                if mode:
                    os.chmod(destination, mode)
            except (OSError, zipfile.BadZipFile) as e:
                raise ExtractError(f"Cannot extract {name}: {e}") from e
            extracted[PurePosixPath(name).as_posix()] = sha256_bytes(data)

    logger.debug(f"Extracted {len(extracted)} file(s) into {target}")
    return extracted


def read_package_bytes(data: bytes, target: Path) -> dict[str, str]:
    """Extract an archive held in memory."""
    return extract_package(io.BytesIO(data), target)


def read_upload_files(archive: Path) -> list[UploadFile]:
    """List the file entries of a package with their content and hash.

    Raises:
        PackageError: If the archive cannot be read
    """
    files: list[UploadFile] = []
    try:
        with zipfile.ZipFile(archive) as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                data = zf.read(info)
                files.append(
                    UploadFile(path=info.filename, content=data, hash=sha256_bytes(data))
                )
    except (OSError, zipfile.BadZipFile) as e:
        raise PackageError(f"Cannot read package {archive}: {e}") from e
    return files
