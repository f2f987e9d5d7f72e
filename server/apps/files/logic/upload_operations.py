"""Business logic for receiving, validating and saving uploads.

An upload goes through these steps:

    received -> typed -> validated -> quota checked -> saved | rejected

Rejected uploads never leave bytes behind: the staged file is deleted
before the error propagates.

The quota check and the save are two separate steps. Two concurrent
uploads against the same budget can both pass the check and together
exceed it. Use quota_operations.upload_with_quota when the budget is a
persistent per-user counter that has to hold strictly.
"""

import logging
import os
import secrets
from collections.abc import Callable, Mapping
from typing import Any, Final, final

from django.core.files.uploadedfile import UploadedFile as RawUpload

from server.apps.files.exceptions import (
    BadRequestError,
    QuotaExceededError,
    UploadSaveError,
    UploadValidationError,
)
from server.apps.files.infrastructure.mime import MimeResolver
from server.apps.files.infrastructure.uploaded_file import UploadedFile
from server.apps.files.logic.restrictions import (
    NO_RESTRICTIONS,
    QuotaContext,
    RestrictionAxis,
    UploadRestrictions,
    get_default_restrictions,
)

logger = logging.getLogger(__name__)

_UNIQUE_NAME_BYTES: Final = 16

PostProcessHook = Callable[[UploadedFile], object]


def _no_postprocess(uploaded: UploadedFile) -> None:
    """Default hook: leave the saved file untouched."""


@final
class FileUploader:
    """Validate uploads against restrictions and save them to disk."""

    def __init__(
        self,
        restrictions: UploadRestrictions | Mapping[str, Any] | None = None,
        resolver: MimeResolver | None = None,
        postprocess: PostProcessHook | None = None,
    ) -> None:
        """Initialize uploader.

        Args:
            restrictions: Preset or raw configuration mapping. No
                restrictions by default.
            resolver: MIME resolver used to type incoming files.
            postprocess: Called with every successfully saved file,
                e.g. to generate thumbnails. Errors it raises propagate.
        """
        self._restrictions = NO_RESTRICTIONS
        if restrictions is not None:
            self.set_restrictions(restrictions)
        self._resolver = resolver
        self._postprocess = postprocess or _no_postprocess

    @classmethod
    def from_settings(
        cls,
        resolver: MimeResolver | None = None,
        postprocess: PostProcessHook | None = None,
    ) -> 'FileUploader':
        """Create an uploader restricted by the UPLOAD_RESTRICTIONS setting.

        Args:
            resolver: MIME resolver used to type incoming files.
            postprocess: Hook called with every saved file.

        Returns:
            New FileUploader instance.
        """
        return cls(
            restrictions=get_default_restrictions(),
            resolver=resolver,
            postprocess=postprocess,
        )

    @property
    def restrictions(self) -> UploadRestrictions:
        """Currently active restrictions."""
        return self._restrictions

    def set_restrictions(
        self,
        restrictions: UploadRestrictions | Mapping[str, Any],
    ) -> None:
        """Replace all restrictions.

        Args:
            restrictions: Preset value, or a configuration mapping parsed
                with UploadRestrictions.from_config (unknown keys and
                wrongly typed values are ignored).
        """
        if isinstance(restrictions, UploadRestrictions):
            self._restrictions = restrictions
        else:
            self._restrictions = UploadRestrictions.from_config(restrictions)

    def validate(self, uploaded: UploadedFile) -> None:
        """Check an uploaded file against the restrictions.

        Axes are checked in order: size, media type, MIME type,
        extension. The first violation is raised.

        Args:
            uploaded: File to check.

        Raises:
            UploadValidationError: If a restriction is violated.
        """
        restrictions = self._restrictions

        if restrictions.max_size is not None:
            if uploaded.size > restrictions.max_size:
                raise UploadValidationError(
                    RestrictionAxis.MAX_SIZE,
                    uploaded.size,
                )

        if restrictions.allowed_media_types is not None:
            if uploaded.media_type not in restrictions.allowed_media_types:
                raise UploadValidationError(
                    RestrictionAxis.MEDIA_TYPE,
                    uploaded.media_type,
                )

        if restrictions.allowed_mime_types is not None:
            if uploaded.resolved_type not in restrictions.allowed_mime_types:
                raise UploadValidationError(
                    RestrictionAxis.MIME_TYPE,
                    uploaded.resolved_type,
                )

        if restrictions.allowed_extensions is not None:
            extension = uploaded.original_extension
            if extension not in restrictions.allowed_extensions:
                raise UploadValidationError(
                    RestrictionAxis.EXTENSION,
                    extension,
                )

    def handle_upload(
        self,
        raw_upload: RawUpload | None,
        save_dir: str | os.PathLike[str],
        save_filename: str | None = None,
        quota: QuotaContext | None = None,
    ) -> UploadedFile:
        """Receive an uploaded file, validate it, save it and post-process.

        Same as receive() followed by postprocess().

        Args:
            raw_upload: File received from the client.
            save_dir: Existing, writable directory to save into.
            save_filename: Name to save the file as. Used verbatim, so
                callers must sanitize it first. A unique name keeping
                the original extension is generated when omitted.
            quota: Optional budget the file has to fit into.

        Returns:
            The saved file, stored_location pointing at its new path.

        Raises:
            BadRequestError: If no file was received or save_dir is
                invalid or not writable.
            UploadValidationError: If a restriction is violated.
            QuotaExceededError: If the file does not fit the quota.
            UploadSaveError: If the file cannot be written.
        """
        uploaded = self.receive(raw_upload, save_dir, save_filename, quota)
        self.postprocess(uploaded)
        return uploaded

    def receive(
        self,
        raw_upload: RawUpload | None,
        save_dir: str | os.PathLike[str],
        save_filename: str | None = None,
        quota: QuotaContext | None = None,
    ) -> UploadedFile:
        """Validate and save an upload without running the hook.

        Lets callers book the saved file (e.g. charge a quota counter)
        before post-processing starts.

        Args:
            raw_upload: File received from the client.
            save_dir: Existing, writable directory to save into.
            save_filename: Pre-sanitized name to save the file as.
            quota: Optional budget the file has to fit into.

        Returns:
            The saved file.

        Raises:
            BadRequestError: If no file was received or save_dir is
                invalid or not writable.
            UploadValidationError: If a restriction is violated.
            QuotaExceededError: If the file does not fit the quota.
            UploadSaveError: If the file cannot be written.
        """
        if raw_upload is None:
            raise BadRequestError('No file received')
        self._check_save_dir(save_dir)

        uploaded = UploadedFile(raw_upload, resolver=self._resolver)

        try:
            self.validate(uploaded)
            self._check_quota(uploaded, quota)
        except (UploadValidationError, QuotaExceededError) as error:
            logger.warning(
                'Rejected upload %s: %s',
                uploaded.original_name,
                error,
            )
            uploaded.discard()
            raise

        filename = save_filename or self._generate_filename(uploaded)
        destination = os.path.join(save_dir, filename)
        try:
            uploaded.save(destination)
        except UploadSaveError:
            logger.exception('Failed to save upload: %s', destination)
            uploaded.discard()
            raise

        logger.info(
            'Saved upload %s as %s (%d bytes, %s)',
            uploaded.original_name,
            destination,
            uploaded.size,
            uploaded.resolved_type,
        )
        return uploaded

    def postprocess(self, uploaded: UploadedFile) -> None:
        """Run the post-process hook on a saved file.

        Args:
            uploaded: File returned by receive().
        """
        self._postprocess(uploaded)

    def _check_save_dir(self, save_dir: str | os.PathLike[str]) -> None:
        is_path = isinstance(save_dir, str | os.PathLike)
        if not is_path or not os.fspath(save_dir):
            raise BadRequestError('Invalid save path received')
        if not os.path.isdir(save_dir) or not os.access(save_dir, os.W_OK):
            raise BadRequestError('Could not write to save path')

    def _check_quota(
        self,
        uploaded: UploadedFile,
        quota: QuotaContext | None,
    ) -> None:
        if quota is None or quota.has_space_for(uploaded.size):
            return
        raise QuotaExceededError(
            quota_bytes=quota.limit,
            used_bytes=quota.current_usage,
            required_bytes=uploaded.size,
        )

    def _generate_filename(self, uploaded: UploadedFile) -> str:
        filename = secrets.token_hex(_UNIQUE_NAME_BYTES)
        extension = uploaded.original_extension
        if extension:
            filename = f'{filename}.{extension}'
        return filename
