"""Business logic for storage quota operations."""

import logging
import os
from typing import Any

from django.core.files.uploadedfile import UploadedFile as RawUpload
from django.db import transaction
from django.db.models import F  # noqa: WPS347

from server.apps.files.infrastructure.filesystem import (
    remove_tree,
    tree_size,
)
from server.apps.files.infrastructure.uploaded_file import UploadedFile
from server.apps.files.logic.restrictions import QuotaContext
from server.apps.files.logic.upload_operations import FileUploader
from server.apps.files.models import UserQuota

# User type for Django's dynamic user model
_User = Any

# Field name constant to avoid string literal over-use
_USED_BYTES_FIELD = 'used_bytes'  # noqa: WPS226

logger = logging.getLogger(__name__)


def get_or_create_quota(user: _User) -> UserQuota:
    """Get or create quota for user (on-demand creation).

    Args:
        user: User to get quota for.

    Returns:
        UserQuota instance for the user.
    """
    quota, created = UserQuota.objects.get_or_create(user=user)
    if created:
        logger.info(
            'Created quota for user %s: %d bytes',
            user.username,
            quota.quota_bytes,
        )
    return quota


def get_quota_context(user: _User) -> QuotaContext:
    """Get the current usage and limit of a user.

    Args:
        user: User to get the budget for.

    Returns:
        QuotaContext to pass to FileUploader.handle_upload.
    """
    return get_or_create_quota(user).as_context()


def increment_usage(user: _User, size_bytes: int) -> None:
    """Atomically increment user's storage usage.

    Args:
        user: User to increment usage for.
        size_bytes: Bytes to add to usage.
    """
    with transaction.atomic():
        updated = UserQuota.objects.filter(user=user).update(
            used_bytes=F(_USED_BYTES_FIELD) + size_bytes,
        )

        if updated == 0:
            # Quota doesn't exist yet, create it
            quota = get_or_create_quota(user)
            quota.used_bytes = size_bytes
            quota.save(update_fields=[_USED_BYTES_FIELD])

    logger.debug(
        'Incremented usage for user %s by %d bytes',
        user.username,
        size_bytes,
    )


def decrement_usage(user: _User, size_bytes: int) -> None:
    """Atomically decrement user's storage usage.

    Prevents negative values by clamping to 0.

    Args:
        user: User to decrement usage for.
        size_bytes: Bytes to subtract from usage.
    """
    with transaction.atomic():
        try:
            quota = UserQuota.objects.select_for_update().get(user=user)
        except UserQuota.DoesNotExist:
            logger.debug(
                'No quota exists for user %s, skipping decrement',
                user.username,
            )
            return

        new_usage = max(0, quota.used_bytes - size_bytes)
        quota.used_bytes = new_usage
        quota.save(update_fields=[_USED_BYTES_FIELD])

    logger.debug(
        'Decremented usage for user %s by %d bytes (new: %d)',
        user.username,
        size_bytes,
        new_usage,
    )


def recalculate_usage(user: _User, directory: str | os.PathLike[str]) -> int:
    """Recalculate user's storage usage from the files on disk.

    Useful for fixing inconsistencies after files were added or removed
    outside of the upload pipeline.

    Args:
        user: User to recalculate usage for.
        directory: The user's upload directory, created if missing.

    Returns:
        New calculated usage in bytes.
    """
    total = tree_size(directory, create_if_missing=True)

    with transaction.atomic():
        quota = get_or_create_quota(user)
        old_usage = quota.used_bytes
        quota.used_bytes = total
        quota.save(update_fields=[_USED_BYTES_FIELD])

    logger.info(
        'Recalculated usage for user %s: %d -> %d bytes',
        user.username,
        old_usage,
        total,
    )

    return total


def upload_with_quota(
    uploader: FileUploader,
    user: _User,
    raw_upload: RawUpload | None,
    save_dir: str | os.PathLike[str],
    save_filename: str | None = None,
) -> UploadedFile:
    """Save an upload and charge it to the user's quota.

    The quota row stays locked from the check until usage is updated,
    so concurrent uploads of the same user cannot overshoot the limit
    together. The uploader's post-process hook runs only after the file
    has been charged: if the hook fails, the file stays saved and
    counted.

    Args:
        uploader: Uploader holding the restrictions to apply.
        user: User the upload is charged to.
        raw_upload: File received from the client.
        save_dir: Directory to save into.
        save_filename: Optional pre-sanitized filename.

    Returns:
        The saved file.

    Raises:
        QuotaExceededError: If the file does not fit the quota.
        Exception: Anything FileUploader raises, including errors of
            its post-process hook.
    """
    get_or_create_quota(user)

    with transaction.atomic():
        quota = UserQuota.objects.select_for_update().get(user=user)
        uploaded = uploader.receive(
            raw_upload,
            save_dir,
            save_filename,
            quota=quota.as_context(),
        )

        try:
            increment_usage(user, uploaded.size)
        except Exception:
            # Rollback: the bytes are on disk but were never charged
            logger.exception(
                'Quota update failed, removing saved upload: %s',
                uploaded.stored_location,
            )
            remove_tree(uploaded.stored_location)
            raise

    logger.info(
        'Charged %d bytes to user %s for %s',
        uploaded.size,
        user.username,
        uploaded.stored_location,
    )

    uploader.postprocess(uploaded)
    return uploaded


def remove_upload(user: _User, path: str | os.PathLike[str]) -> bool:
    """Delete a saved upload and release its bytes from the user's quota.

    Args:
        user: User the upload was charged to.
        path: Uploaded file, or a directory of uploads.

    Returns:
        True if the path was removed completely, False if it did not
        exist or its top directory could not be removed.
    """
    if os.path.isdir(path):
        size_bytes = tree_size(path)
    elif os.path.isfile(path):
        size_bytes = os.path.getsize(path)
    else:
        logger.debug('Nothing to remove for user %s: %s', user.username, path)
        return False

    removed = remove_tree(path)
    # Members are gone even when the final rmdir failed
    decrement_usage(user, size_bytes)

    logger.info(
        'Removed %s for user %s, released %d bytes',
        path,
        user.username,
        size_bytes,
    )
    return removed
