"""Uploaded file moving through the upload pipeline."""

import logging
import os
import secrets
import tempfile
from contextlib import suppress
from typing import Any, Final, final

from django.conf import settings
from django.core.files.move import file_move_safe
from django.core.files.uploadedfile import UploadedFile as RawUpload

from server.apps.files.exceptions import UploadSaveError
from server.apps.files.infrastructure.filenames import get_file_extension
from server.apps.files.infrastructure.mime import (
    MediaType,
    MimeResolver,
    get_default_resolver,
    media_type_of,
)

logger = logging.getLogger(__name__)

_STAGING_SUFFIX: Final = '.upload'
_PARTIAL_SUFFIX: Final = '.part'
_PARTIAL_TOKEN_BYTES: Final = 8

StrPath = str | os.PathLike[str]


@final
class UploadedFile:
    """A received upload, from staging area to its final location.

    The client-declared name, size and content type are kept for
    reference only: the size is measured from the staged bytes and the
    MIME type is re-detected from content.

    Attributes:
        original_name: Filename declared by the client.
        declared_size: Size declared by the client, in bytes.
        stored_location: Where the bytes currently live. Points to the
            staging file until save() succeeds.
        size: Actual size of the staged bytes.
        resolved_type: MIME type detected from content.
    """

    def __init__(
        self,
        raw_upload: RawUpload,
        resolver: MimeResolver | None = None,
    ) -> None:
        """Stage the upload and inspect it.

        Args:
            raw_upload: Django uploaded file (e.g. from request.FILES).
            resolver: MIME resolver, defaults to the shared one.
        """
        self.original_name: str = raw_upload.name or ''
        self.declared_size: int = int(raw_upload.size or 0)
        self.stored_location: str = _stage(raw_upload)
        self.size: int = os.path.getsize(self.stored_location)

        resolver = resolver or get_default_resolver()
        self.resolved_type: str = resolver.resolve_from_content(
            self.stored_location,
        )
        self._saved = False

        logger.debug(
            'Staged upload %s at %s (%d bytes, %s)',
            self.original_name,
            self.stored_location,
            self.size,
            self.resolved_type,
        )

    @property
    def media_type(self) -> MediaType | None:
        """Media type of the detected MIME type, None if malformed."""
        return media_type_of(self.resolved_type)

    @property
    def original_extension(self) -> str:
        """Lowercase extension of the client-declared filename."""
        return get_file_extension(self.original_name)

    @property
    def is_saved(self) -> bool:
        """Whether the file has been moved to its final location."""
        return self._saved

    def save(self, destination: StrPath) -> None:
        """Move the staged bytes to their final location.

        The bytes are first moved next to the destination under a
        temporary name, then renamed over it, so the destination never
        holds a partially written file.

        Args:
            destination: Full path (including filename) to save to.

        Raises:
            UploadSaveError: If the file was already saved or the move
                fails.
        """
        if self._saved:
            raise UploadSaveError(
                f'Upload already saved to {self.stored_location}',
            )

        destination = os.fspath(destination)
        token = secrets.token_hex(_PARTIAL_TOKEN_BYTES)
        partial = f'{destination}.{token}{_PARTIAL_SUFFIX}'
        try:
            file_move_safe(self.stored_location, partial)
            if settings.FILE_UPLOAD_PERMISSIONS is not None:
                os.chmod(partial, settings.FILE_UPLOAD_PERMISSIONS)
            os.replace(partial, destination)
        except OSError as error:
            with suppress(FileNotFoundError):
                os.remove(partial)
            raise UploadSaveError(
                f'Could not save upload to {destination}: {error}',
            ) from error

        self.stored_location = destination
        self._saved = True

    def discard(self) -> None:
        """Delete the staged bytes of a file that will not be saved."""
        if self._saved:
            return
        try:
            os.remove(self.stored_location)
        except FileNotFoundError:
            return
        logger.debug('Discarded staged upload: %s', self.stored_location)

    def as_dict(self) -> dict[str, Any]:
        """Export the file descriptor for the calling layer.

        Returns:
            Mapping with 'origname', 'size', 'mime' and 'file' keys.
        """
        return {
            'origname': self.original_name,
            'size': self.size,
            'mime': self.resolved_type,
            'file': self.stored_location,
        }


def _stage(raw_upload: RawUpload) -> str:
    """Get a path on disk holding the uploaded bytes.

    Uploads Django already streamed to a temporary file are used in
    place. In-memory uploads are written to FILE_UPLOAD_TEMP_DIR, keeping
    the original extension at the end of the name as Django does for its
    own temporary uploads.
    """
    if hasattr(raw_upload, 'temporary_file_path'):
        raw_upload.flush()
        return raw_upload.temporary_file_path()

    extension = os.path.splitext(raw_upload.name or '')[1]
    descriptor, staged = tempfile.mkstemp(
        suffix=f'{_STAGING_SUFFIX}{extension}',
        dir=settings.FILE_UPLOAD_TEMP_DIR,
    )
    with os.fdopen(descriptor, 'wb') as staging_file:
        for chunk in raw_upload.chunks():
            staging_file.write(chunk)
    return staged
