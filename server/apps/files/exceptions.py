"""Exceptions for files app."""


class FilesError(Exception):
    """Base class for all errors raised by the files app."""


class BadRequestError(FilesError):
    """Raised when an upload request is malformed or cannot be stored."""


class UploadValidationError(FilesError):
    """Raised when an uploaded file violates a configured restriction."""

    def __init__(self, axis: str, value: object) -> None:
        """Initialize UploadValidationError.

        Args:
            axis: Name of the violated restriction axis (e.g. 'maxsize').
            value: Offending value found on the uploaded file.
        """
        self.axis = axis
        self.value = value
        super().__init__(
            f'Upload rejected by {axis} restriction: {value!r}',
        )


class QuotaExceededError(FilesError):
    """Raised when upload would exceed user's storage quota."""

    def __init__(
        self,
        quota_bytes: int,
        used_bytes: int,
        required_bytes: int,
    ) -> None:
        """Initialize QuotaExceededError.

        Args:
            quota_bytes: Total quota limit in bytes.
            used_bytes: Currently used bytes.
            required_bytes: Bytes needed for the operation.
        """
        self.quota_bytes = quota_bytes
        self.used_bytes = used_bytes
        self.required_bytes = required_bytes

        available = quota_bytes - used_bytes
        super().__init__(
            f'Quota exceeded: need {required_bytes} bytes, '
            f'only {available} bytes available '
            f'(quota: {quota_bytes}, used: {used_bytes})',
        )


class DirectoryNotFoundError(FilesError, FileNotFoundError):
    """Raised when a directory expected to exist is missing."""


class UploadSaveError(FilesError, OSError):
    """Raised when uploaded bytes cannot be persisted."""


class UnsupportedArchiveError(FilesError):
    """Raised when no archive backend is available at all."""


class InvalidFilenameError(FilesError, ValueError):
    """Raised when a filename is empty or has no usable characters."""


class MimeDetectionError(FilesError):
    """Raised by a MIME detector that cannot produce a result."""
