"""Filename normalization and sanitization utilities.

Two sanitizing modes are offered:

- ``sanitize_filename`` removes a fixed list of dangerous substrings
  (``../``, ``./`` and optionally ``/``). It is a blocklist heuristic,
  not a path grammar: it keeps every other character as-is.
- ``strict_filename`` keeps only an allowlist of characters and should be
  preferred when the original name does not need to be preserved.
"""

from typing import Final

from django.core.exceptions import SuspiciousFileOperation
from django.utils.text import get_valid_filename

from server.apps.files.exceptions import InvalidFilenameError

_PATH_SEPARATOR: Final = '/'
_EXTENSION_SEPARATOR: Final = '.'

# Removed in this order, each one everywhere in the string
_TRAVERSAL_TOKENS: Final = ('../', './')

# Whitespace and NUL, stripped from both ends
_TRIM_CHARACTERS: Final = ' \t\n\r\0\x0b'

_EXTENSION_ALIASES: Final = {'jpeg': 'jpg'}

_SIZE_UNITS: Final = ('B', 'KB', 'MB', 'GB', 'TB', 'PB')
_SIZE_STEP: Final = 1024


def get_file_extension(filename: str) -> str:
    """Get file extension from filename.

    The extension is whatever follows the last dot, so hidden files
    like '.bashrc' report 'bashrc'.

    Args:
        filename: Filename (e.g., 'document.pdf').

    Returns:
        Extension without dot, lowercase (e.g., 'pdf').
        Returns empty string if no extension.
    """
    _, separator, extension = filename.rpartition(_EXTENSION_SEPARATOR)
    if not separator:
        return ''
    return extension.lower()


def split_filename(filename: str) -> tuple[str, str]:
    """Split the basename of a path into stem and raw extension.

    Args:
        filename: Filename or path (e.g., 'photos/Photo.JPEG').

    Returns:
        Tuple of (stem, extension), e.g. ('Photo', 'JPEG').
        Extension is empty if the basename has no dot.
    """
    basename = filename.rsplit(_PATH_SEPARATOR, 1)[-1]
    stem, separator, extension = basename.rpartition(_EXTENSION_SEPARATOR)
    if not separator:
        return basename, ''
    return stem, extension


def normalize_filename(filename: str) -> str:
    """Create a normalized filename for storing a new file.

    The result is meant to name a new file, not to refer back to the
    original one: the extension is lowercased, 'jpeg' becomes 'jpg'
    and the whole name is sanitized. A name without an extension comes
    back with a trailing dot ('README' -> 'README.').

    Args:
        filename: Untrusted input filename.

    Returns:
        Normalized, sanitized filename.

    Raises:
        InvalidFilenameError: If filename is empty.
    """
    if not filename:
        raise InvalidFilenameError('Filename cannot be empty')

    stem, extension = split_filename(filename)
    extension = extension.lower()
    extension = _EXTENSION_ALIASES.get(extension, extension)

    return sanitize_filename(f'{stem}.{extension}')


def sanitize_filename(
    filename: str,
    allow_subdirectories: bool = False,  # noqa: FBT001, FBT002
) -> str:
    """Remove directory traversal sequences from a filename.

    Strips surrounding whitespace and one leading slash, then removes
    every '../' and './' (and every '/' unless subdirectories are
    allowed). This is plain substring removal, so odd inputs such as
    '.../' still leave dots behind.

    Args:
        filename: Untrusted filename or relative path.
        allow_subdirectories: Keep '/' so that forward paths survive.

    Returns:
        Sanitized string.
    """
    sanitized = filename.strip(_TRIM_CHARACTERS)
    if sanitized.startswith(_PATH_SEPARATOR):
        sanitized = sanitized[1:]

    replacements = list(_TRAVERSAL_TOKENS)
    if not allow_subdirectories:
        replacements.append(_PATH_SEPARATOR)

    for token in replacements:
        sanitized = sanitized.replace(token, '')
    return sanitized


def strict_filename(filename: str) -> str:
    """Allowlist-based filename cleanup.

    Uses Django's get_valid_filename: spaces become underscores and
    anything that is not alphanumeric, dash, underscore or dot is
    dropped. Path separators never survive.

    Args:
        filename: Untrusted filename.

    Returns:
        Filename made only of allowed characters.

    Raises:
        InvalidFilenameError: If nothing usable is left.
    """
    try:
        return get_valid_filename(filename)
    except SuspiciousFileOperation as error:
        raise InvalidFilenameError(
            f'Could not derive a valid filename from {filename!r}',
        ) from error


def human_readable_size(num_bytes: int) -> str:
    """Convert bytes into a human-readable format.

    Examples: 1024 -> '1KB', 1536 -> '1.5KB', 1048576 -> '1MB'.

    Args:
        num_bytes: Number of bytes.

    Returns:
        Size rounded to two decimals with a unit suffix.
    """
    size: float = num_bytes
    for unit in _SIZE_UNITS[:-1]:
        if size < _SIZE_STEP:
            return f'{_format_number(size)}{unit}'
        size /= _SIZE_STEP
    return f'{_format_number(size)}{_SIZE_UNITS[-1]}'


def _format_number(size: float) -> str:
    rounded = round(size, 2)
    if rounded == int(rounded):
        return str(int(rounded))
    return str(rounded)
