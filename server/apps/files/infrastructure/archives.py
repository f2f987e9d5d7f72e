"""Archive extraction into a destination directory."""

import logging
import os
import tarfile
import zipfile
import zlib
from collections.abc import Sequence
from pathlib import Path
from typing import Final, Protocol, final

from server.apps.files.exceptions import UnsupportedArchiveError

logger = logging.getLogger(__name__)

StrPath = str | os.PathLike[str]

# Corrupt archive contents, as opposed to I/O errors on the destination
_EXTRACTION_ERRORS: Final = (
    zipfile.BadZipFile,
    tarfile.TarError,
    zlib.error,
    EOFError,
)


class ArchiveBackend(Protocol):
    """Archive format that can be opened and fully extracted."""

    def can_open(self, archive_path: StrPath) -> bool:
        """Tell whether the file is a readable archive of this format."""

    def extract(self, archive_path: StrPath, destination: StrPath) -> None:
        """Extract every member of the archive into destination."""


@final
class ZipArchiveBackend:
    """ZIP support through the zipfile module."""

    def can_open(self, archive_path: StrPath) -> bool:
        """Check the ZIP end-of-central-directory record.

        Args:
            archive_path: Path to the archive.

        Returns:
            True if the file looks like a ZIP archive.
        """
        try:
            return zipfile.is_zipfile(archive_path)
        except OSError:
            return False

    def extract(self, archive_path: StrPath, destination: StrPath) -> None:
        """Extract all members.

        zipfile drops absolute paths and '..' components from member
        names, so nothing is written outside of destination.

        Args:
            archive_path: Path to the archive.
            destination: Directory to extract into.
        """
        with zipfile.ZipFile(archive_path) as archive:
            archive.extractall(destination)


@final
class TarArchiveBackend:
    """Tar support (plain, gzip, bz2, xz) through the tarfile module."""

    def can_open(self, archive_path: StrPath) -> bool:
        """Check whether tarfile can read the archive.

        Args:
            archive_path: Path to the archive.

        Returns:
            True if the file is a readable tar archive.
        """
        try:
            return tarfile.is_tarfile(archive_path)
        except OSError:
            return False

    def extract(self, archive_path: StrPath, destination: StrPath) -> None:
        """Extract all members with the 'data' filter.

        The filter rejects absolute paths, links pointing outside of
        destination and special files.

        Args:
            archive_path: Path to the archive.
            destination: Directory to extract into.
        """
        with tarfile.open(archive_path) as archive:
            archive.extractall(destination, filter='data')


DEFAULT_BACKENDS: Final[tuple[ArchiveBackend, ...]] = (
    ZipArchiveBackend(),
    TarArchiveBackend(),
)


def extract_archive(
    archive_path: StrPath,
    destination: StrPath,
    backends: Sequence[ArchiveBackend] | None = None,
) -> bool:
    """Extract an archive into a directory.

    Args:
        archive_path: Path to the archive file.
        destination: Directory to extract into, created if missing.
        backends: Archive backends to try in order. Defaults to ZIP
            followed by tar.

    Returns:
        True on success, False if the archive is missing or not a
        regular file, cannot be opened by any backend or is corrupt.

    Raises:
        UnsupportedArchiveError: If no backend is available at all.
    """
    if not os.path.isfile(archive_path):
        logger.warning('Archive is not a file: %s', archive_path)
        return False

    Path(destination).mkdir(parents=True, exist_ok=True)

    if backends is None:
        backends = DEFAULT_BACKENDS
    if not backends:
        raise UnsupportedArchiveError('No archive support available')

    for backend in backends:
        if not backend.can_open(archive_path):
            continue
        try:
            backend.extract(archive_path, destination)
        except _EXTRACTION_ERRORS as error:
            logger.warning(
                'Failed to extract archive %s: %s',
                archive_path,
                error,
            )
            return False
        logger.info('Extracted archive %s into %s', archive_path, destination)
        return True

    logger.warning('Unrecognized archive format: %s', archive_path)
    return False
