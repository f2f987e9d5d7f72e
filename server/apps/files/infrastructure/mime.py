"""MIME type detection for stored and uploaded files.

Types are resolved by inspecting content first, since the name and
declared type of an upload come from an untrusted client. Detectors are
tried in priority order and the first one that answers wins; when none
of them can (missing libmagic, unknown signature, unreadable file) the
extension table is consulted, which is also what filename-only lookups
use.
"""

import enum
import logging
import mimetypes
from collections.abc import Iterable, Mapping
from os import PathLike, fspath
from typing import Final, Protocol, final

import filetype

from server.apps.files.exceptions import MimeDetectionError
from server.apps.files.infrastructure.filenames import get_file_extension

logger = logging.getLogger(__name__)

UNKNOWN_MIME_TYPE: Final = 'application/octet-stream'

_MIME_SEPARATOR: Final = '/'
_PARAMETER_SEPARATOR: Final = ';'

StrPath = str | PathLike[str]


class MediaType(enum.StrEnum):
    """Coarse category of a MIME type (the part before the slash)."""

    APPLICATION = 'application'
    AUDIO = 'audio'
    IMAGE = 'image'
    MESSAGE = 'message'
    MULTIPART = 'multipart'
    TEXT = 'text'
    VIDEO = 'video'


class MimeDetector(Protocol):
    """Content inspection strategy used by MimeResolver."""

    def detect(self, path: StrPath) -> str:
        """Detect the MIME type of a file on disk.

        Raises:
            MimeDetectionError: If the type cannot be determined.
        """


def strip_parameters(mime_type: str) -> str:
    """Drop a ';'-delimited parameter suffix and lowercase the rest.

    'Text/Plain; charset=utf-8' becomes 'text/plain'.
    """
    return mime_type.split(_PARAMETER_SEPARATOR, 1)[0].strip().lower()


def media_type_of(mime_type: str) -> MediaType | None:
    """Get the general media type from a MIME type.

    Args:
        mime_type: MIME type such as 'image/png'.

    Returns:
        MediaType for the part before the slash, or None if the MIME
        type is malformed (no slash, more than one slash, or an
        unknown category).
    """
    parts = mime_type.split(_MIME_SEPARATOR)
    if len(parts) != 2:
        return None
    try:
        return MediaType(parts[0])
    except ValueError:
        return None


@final
class MagicDetector:
    """Detect MIME types with libmagic through python-magic."""

    def detect(self, path: StrPath) -> str:
        """Detect MIME type from file content.

        Args:
            path: Path to the file.

        Returns:
            MIME type reported by libmagic.

        Raises:
            MimeDetectionError: If libmagic is unavailable or fails.
        """
        try:
            import magic  # noqa: WPS433
        except ImportError as error:
            # python-magic raises ImportError when libmagic is missing
            raise MimeDetectionError('libmagic is not available') from error

        try:
            mime_type = magic.from_file(fspath(path), mime=True)
        except (magic.MagicException, OSError) as error:
            raise MimeDetectionError(str(error)) from error

        if not mime_type:
            raise MimeDetectionError('libmagic returned no type')
        return mime_type


@final
class SignatureDetector:
    """Detect MIME types from magic-byte signatures with filetype."""

    def detect(self, path: StrPath) -> str:
        """Detect MIME type from the file signature.

        Args:
            path: Path to the file.

        Returns:
            MIME type matching the leading bytes of the file.

        Raises:
            MimeDetectionError: If no signature matches or the file
                cannot be read.
        """
        try:
            mime_type = filetype.guess_mime(fspath(path))
        except OSError as error:
            raise MimeDetectionError(str(error)) from error

        if mime_type is None:
            raise MimeDetectionError('No known file signature matched')
        return mime_type


@final
class ExtensionTable:
    """Read-only mapping from file extension to MIME type.

    Backed by the default table shipped with the mimetypes module, so
    results do not depend on the host's /etc/mime.types. Extra entries
    can be layered on top with ``overrides``.
    """

    def __init__(self, overrides: Mapping[str, str] | None = None) -> None:
        """Initialize the table.

        Args:
            overrides: Optional extension -> MIME type entries taking
                precedence over the defaults.
        """
        registry = mimetypes.MimeTypes()
        common_map, strict_map = registry.types_map
        self._types = {**common_map, **strict_map}
        for extension, mime_type in (overrides or {}).items():
            self._types[self._key(extension)] = mime_type

    def lookup(self, extension: str) -> str | None:
        """Find the MIME type for an extension.

        Args:
            extension: Extension with or without leading dot, any case.

        Returns:
            MIME type, or None if the extension is not mapped.
        """
        if not extension:
            return None
        return self._types.get(self._key(extension))

    def _key(self, extension: str) -> str:
        return '.' + extension.lstrip('.').lower()


@final
class MimeResolver:
    """Resolve MIME types through a fallback chain of detectors."""

    def __init__(
        self,
        detectors: Iterable[MimeDetector] | None = None,
        table: ExtensionTable | None = None,
    ) -> None:
        """Initialize resolver.

        Args:
            detectors: Content detectors in priority order. Defaults to
                libmagic followed by signature matching.
            table: Extension table used as the last resort.
        """
        if detectors is None:
            detectors = (MagicDetector(), SignatureDetector())
        self._detectors = tuple(detectors)
        self._table = table or ExtensionTable()

    def resolve_from_content(self, path: StrPath) -> str:
        """Determine the MIME type of a file by inspecting it.

        Never raises: if every detector fails the extension table is
        used, and if that has no entry either the unknown type is
        returned.

        Args:
            path: Path to the file.

        Returns:
            MIME type without parameters (e.g., 'image/png').
        """
        for detector in self._detectors:
            try:
                mime_type = detector.detect(path)
            except MimeDetectionError as error:
                logger.debug(
                    '%s could not detect type of %s: %s',
                    type(detector).__name__,
                    path,
                    error,
                )
                continue
            except Exception:
                # Injected detectors may fail in any way
                logger.warning(
                    '%s failed on %s',
                    type(detector).__name__,
                    path,
                    exc_info=True,
                )
                continue
            return strip_parameters(mime_type)

        return self.resolve_from_filename(fspath(path))

    def resolve_from_filename(self, filename: str) -> str:
        """Estimate the MIME type from a filename only.

        Does not touch the disk, so the result may not reflect what is
        actually in the file.

        Args:
            filename: Filename or path.

        Returns:
            MIME type without parameters.
        """
        return self.resolve_from_extension(get_file_extension(filename))

    def resolve_from_extension(self, extension: str) -> str:
        """Look up the MIME type of an extension.

        Args:
            extension: Extension, case-insensitive.

        Returns:
            MIME type without parameters, or UNKNOWN_MIME_TYPE.
        """
        mime_type = self._table.lookup(extension)
        if mime_type is None:
            return UNKNOWN_MIME_TYPE
        return strip_parameters(mime_type)


_default_resolver = MimeResolver()


def get_default_resolver() -> MimeResolver:
    """Get the shared resolver (libmagic, signatures, extension table)."""
    return _default_resolver


def detect_mime_type(path: StrPath) -> str:
    """Detect MIME type of a file with the default resolver.

    Args:
        path: Path to the file.

    Returns:
        MIME type string (e.g., 'image/jpeg', 'application/pdf').
        Returns 'application/octet-stream' if type cannot be determined.
    """
    return _default_resolver.resolve_from_content(path)


def guess_mime_type(filename: str) -> str:
    """Guess MIME type from a filename with the default resolver.

    Args:
        filename: Filename with extension.

    Returns:
        MIME type string, 'application/octet-stream' if unknown.
    """
    return _default_resolver.resolve_from_filename(filename)
