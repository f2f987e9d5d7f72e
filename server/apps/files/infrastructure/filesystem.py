"""Recursive directory tree operations.

None of these functions lock anything: callers that need a consistent
view while another request mutates the same subtree must serialize
access themselves.
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Final

from server.apps.files.exceptions import DirectoryNotFoundError

logger = logging.getLogger(__name__)

# Empty page that stops naive web servers from listing the directory
_INDEX_FILENAME: Final = 'index.html'

DirectoryStructure = Mapping[str, 'DirectoryStructure']
StrPath = str | os.PathLike[str]


def create_structure(
    structure: DirectoryStructure,
    base_dir: StrPath,
) -> None:
    """Create a nested directory structure below a base directory.

    Existing directories are kept as they are, so running this twice
    with the same structure is harmless. Every directory gets an empty
    index.html file.

    Args:
        structure: Mapping of folder name to its own subfolder mapping,
            e.g. {'photos': {'thumbs': {}}, 'documents': {}}.
        base_dir: Directory in which the structure is created.
    """
    base_path = Path(base_dir)
    for name, children in structure.items():
        folder = base_path / name
        if not folder.exists():
            folder.mkdir()
            logger.debug('Created directory: %s', folder)
        (folder / _INDEX_FILENAME).touch()

        if children:
            create_structure(children, folder)


def tree_size(
    directory: StrPath,
    create_if_missing: bool = False,  # noqa: FBT001, FBT002
) -> int:
    """Get the disk usage of a directory in bytes.

    Sizes are read from a fresh directory scan on every call, so files
    changed since the last walk are reported with their current size.
    Symlinked directories are not followed.

    Args:
        directory: Path to the directory.
        create_if_missing: Create an empty directory (and report 0)
            instead of failing when it does not exist.

    Returns:
        Total size of all files below the directory.

    Raises:
        DirectoryNotFoundError: If the path is not a directory. A missing
            path is created instead when create_if_missing is set.
    """
    if not os.path.isdir(directory):
        if create_if_missing and not os.path.lexists(directory):
            os.mkdir(directory)
            logger.info('Created missing directory: %s', directory)
            return 0
        raise DirectoryNotFoundError(f'Not a directory: {directory}')

    total = 0
    with os.scandir(directory) as entries:
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                total += tree_size(entry.path)
            elif entry.is_file():
                total += entry.stat().st_size
    return total


def remove_tree(
    path: StrPath,
    strict: bool = False,  # noqa: FBT001, FBT002
) -> bool:
    """Delete a file, or a directory and everything below it.

    Members are removed depth-first before the directory itself.
    Removing the top directory is best-effort: a failure there is
    logged and reported as False, unless ``strict`` is set.

    Args:
        path: File or directory to delete.
        strict: Raise instead of returning False when the final
            directory removal fails.

    Returns:
        True if the path was removed, False if it did not exist or the
        final directory removal failed.

    Raises:
        OSError: If a member file cannot be deleted, or (strict mode
            only) if the directory itself cannot be removed.
    """
    if os.path.islink(path) or os.path.isfile(path):
        os.remove(path)
        return True
    if not os.path.isdir(path):
        return False

    with os.scandir(path) as entries:
        members = [entry.path for entry in entries]
    for member in members:
        remove_tree(member, strict=strict)

    try:
        os.rmdir(path)
    except OSError:
        if strict:
            raise
        logger.warning('Could not remove directory: %s', path, exc_info=True)
        return False
    return True
