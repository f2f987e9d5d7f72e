"""Tests for the upload pipeline."""

import os
import re

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile

from server.apps.files.exceptions import (
    BadRequestError,
    QuotaExceededError,
    UploadSaveError,
    UploadValidationError,
)
from server.apps.files.infrastructure.mime import MediaType, MimeResolver
from server.apps.files.infrastructure.uploaded_file import UploadedFile
from server.apps.files.logic.restrictions import (
    IMAGE_RESTRICTIONS,
    QuotaContext,
    UploadRestrictions,
)
from server.apps.files.logic.upload_operations import FileUploader


def _assert_nothing_left(upload_dir, staging_dir):
    assert os.listdir(upload_dir) == []
    assert os.listdir(staging_dir) == []


def test_handle_upload_saves_file(upload_dir, staging_dir, text_upload):
    """Test an unrestricted upload is saved under a generated name."""
    uploaded = FileUploader().handle_upload(text_upload(size=20), upload_dir)

    saved_name = os.path.basename(uploaded.stored_location)
    assert re.fullmatch(r'[0-9a-f]{32}\.txt', saved_name)
    assert os.listdir(upload_dir) == [saved_name]
    assert os.listdir(staging_dir) == []
    assert uploaded.is_saved
    assert uploaded.size == 20


def test_handle_upload_generated_name_lowercases_extension(
    upload_dir,
    text_upload,
):
    """Test generated names keep the original extension in lowercase."""
    uploaded = FileUploader().handle_upload(
        text_upload(name='NOTES.TXT'),
        upload_dir,
    )

    assert uploaded.stored_location.endswith('.txt')


def test_handle_upload_generated_name_without_extension(
    upload_dir,
    text_upload,
):
    """Test no dot is appended when the original has no extension."""
    uploaded = FileUploader().handle_upload(
        text_upload(name='Makefile'),
        upload_dir,
    )

    assert re.fullmatch(
        '[0-9a-f]{32}',
        os.path.basename(uploaded.stored_location),
    )


def test_handle_upload_uses_given_filename(upload_dir, text_upload):
    """Test the caller's filename is used verbatim."""
    uploaded = FileUploader().handle_upload(
        text_upload(),
        upload_dir,
        save_filename='My Notes.TXT',
    )

    assert uploaded.stored_location == os.path.join(upload_dir, 'My Notes.TXT')
    assert (upload_dir / 'My Notes.TXT').exists()


def test_handle_upload_disk_backed(upload_dir, temporary_upload, png_bytes):
    """Test uploads Django streamed to disk are moved into place."""
    raw = temporary_upload('photo.PNG', png_bytes, content_type='image/png')
    uploader = FileUploader(restrictions=IMAGE_RESTRICTIONS)

    uploaded = uploader.handle_upload(raw, upload_dir)

    assert uploaded.resolved_type == 'image/png'
    assert os.path.dirname(uploaded.stored_location) == str(upload_dir)
    with open(uploaded.stored_location, 'rb') as saved:
        assert saved.read() == png_bytes


def test_handle_upload_max_size(upload_dir, staging_dir, text_upload):
    """Test oversized uploads are rejected and cleaned up."""
    uploader = FileUploader(restrictions={'max_size': 100})

    with pytest.raises(UploadValidationError) as exc_info:
        uploader.handle_upload(text_upload(size=150), upload_dir)

    assert exc_info.value.axis == 'maxsize'
    assert exc_info.value.value == 150
    _assert_nothing_left(upload_dir, staging_dir)


def test_handle_upload_at_max_size(upload_dir, text_upload):
    """Test a file exactly at the size limit is accepted."""
    uploader = FileUploader(restrictions={'max_size': 100})

    uploaded = uploader.handle_upload(text_upload(size=100), upload_dir)

    assert uploaded.size == 100


def test_handle_upload_rejects_disguised_file(
    upload_dir,
    staging_dir,
    png_bytes,
):
    """Test an image named like a text file fails the media type check."""
    uploader = FileUploader(restrictions={'allowed_media_types': ['text']})
    raw = SimpleUploadedFile('notes.txt', png_bytes, content_type='text/plain')

    with pytest.raises(UploadValidationError) as exc_info:
        uploader.handle_upload(raw, upload_dir)

    assert exc_info.value.axis == 'mediatype'
    assert exc_info.value.value == MediaType.IMAGE
    _assert_nothing_left(upload_dir, staging_dir)


def test_handle_upload_mime_type(upload_dir, staging_dir, png_bytes):
    """Test MIME type restriction uses the detected type."""
    uploader = FileUploader(restrictions={'allowed_mime_types': ['image/gif']})
    raw = SimpleUploadedFile('a.gif', png_bytes, content_type='image/gif')

    with pytest.raises(UploadValidationError) as exc_info:
        uploader.handle_upload(raw, upload_dir)

    assert exc_info.value.axis == 'mimetype'
    assert exc_info.value.value == 'image/png'
    _assert_nothing_left(upload_dir, staging_dir)


def test_handle_upload_extension(upload_dir, staging_dir, png_bytes):
    """Test extension restriction uses the original filename."""
    uploader = FileUploader(restrictions=IMAGE_RESTRICTIONS)
    raw = SimpleUploadedFile('image.webp', png_bytes)

    with pytest.raises(UploadValidationError) as exc_info:
        uploader.handle_upload(raw, upload_dir)

    assert exc_info.value.axis == 'extension'
    assert exc_info.value.value == 'webp'
    _assert_nothing_left(upload_dir, staging_dir)


def test_validation_stops_at_first_axis(text_upload):
    """Test size is checked before the other axes."""
    uploader = FileUploader(restrictions={
        'allowed_extensions': ['png'],
        'allowed_media_types': ['image'],
        'max_size': 1,
    })
    uploaded = UploadedFile(text_upload(size=10))

    with pytest.raises(UploadValidationError) as exc_info:
        uploader.validate(uploaded)

    assert exc_info.value.axis == 'maxsize'
    uploaded.discard()


def test_validate_without_restrictions(text_upload):
    """Test validation passes trivially when nothing is configured."""
    uploaded = UploadedFile(text_upload())

    FileUploader().validate(uploaded)

    uploaded.discard()


def test_handle_upload_quota_exceeded(upload_dir, staging_dir, text_upload):
    """Test uploads that overflow the quota are rejected."""
    quota = QuotaContext(current_usage=90, limit=100)

    with pytest.raises(QuotaExceededError) as exc_info:
        FileUploader().handle_upload(
            text_upload(size=20),
            upload_dir,
            quota=quota,
        )

    assert exc_info.value.quota_bytes == 100
    assert exc_info.value.used_bytes == 90
    assert exc_info.value.required_bytes == 20
    _assert_nothing_left(upload_dir, staging_dir)


def test_handle_upload_within_quota(upload_dir, text_upload):
    """Test uploads that fit the quota are saved."""
    quota = QuotaContext(current_usage=90, limit=100)

    uploaded = FileUploader().handle_upload(
        text_upload(size=5),
        upload_dir,
        quota=quota,
    )

    assert os.path.exists(uploaded.stored_location)


def test_handle_upload_validation_before_quota(upload_dir, text_upload):
    """Test restriction failures are reported before quota failures."""
    uploader = FileUploader(restrictions={'max_size': 10})
    quota = QuotaContext(current_usage=100, limit=100)

    with pytest.raises(UploadValidationError):
        uploader.handle_upload(text_upload(size=20), upload_dir, quota=quota)


def test_handle_upload_no_file(upload_dir):
    """Test a missing upload is a bad request."""
    with pytest.raises(BadRequestError, match='No file received'):
        FileUploader().handle_upload(None, upload_dir)


@pytest.mark.parametrize('save_dir', ['', None, 42])
def test_handle_upload_invalid_save_dir(save_dir, staging_dir, text_upload):
    """Test empty or non-path save directories are bad requests."""
    with pytest.raises(BadRequestError, match='Invalid save path'):
        FileUploader().handle_upload(text_upload(), save_dir)

    assert os.listdir(staging_dir) == []


def test_handle_upload_missing_save_dir(tmp_path, text_upload):
    """Test a directory that does not exist is a bad request."""
    with pytest.raises(BadRequestError, match='Could not write'):
        FileUploader().handle_upload(text_upload(), tmp_path / 'missing')


def test_handle_upload_unwritable_save_dir(
    upload_dir,
    text_upload,
    monkeypatch,
):
    """Test an unwritable directory is a bad request."""
    monkeypatch.setattr(os, 'access', lambda path, mode: False)

    with pytest.raises(BadRequestError, match='Could not write'):
        FileUploader().handle_upload(text_upload(), upload_dir)


def test_handle_upload_save_failure(upload_dir, staging_dir, text_upload):
    """Test persistence failures are reported and leave no files."""
    with pytest.raises(UploadSaveError):
        FileUploader().handle_upload(
            text_upload(),
            upload_dir,
            save_filename='no/such/dir.txt',
        )

    _assert_nothing_left(upload_dir, staging_dir)


def test_handle_upload_calls_postprocess(upload_dir, text_upload):
    """Test the post-process hook receives the saved file."""
    received = []

    def postprocess(uploaded):
        received.append((uploaded.stored_location, uploaded.is_saved))

    uploader = FileUploader(postprocess=postprocess)

    uploaded = uploader.handle_upload(text_upload(), upload_dir)

    assert received == [(uploaded.stored_location, True)]


def test_handle_upload_postprocess_errors_propagate(upload_dir, text_upload):
    """Test hook failures are not swallowed."""
    def postprocess(uploaded):
        raise RuntimeError('thumbnail generation failed')

    uploader = FileUploader(postprocess=postprocess)

    with pytest.raises(RuntimeError, match='thumbnail'):
        uploader.handle_upload(text_upload(), upload_dir)

    assert len(os.listdir(upload_dir)) == 1


def test_set_restrictions_replaces_previous(upload_dir, text_upload):
    """Test restrictions are rebuilt from scratch."""
    uploader = FileUploader(restrictions={'max_size': 1})

    uploader.set_restrictions({'allowed_extensions': ['txt']})

    assert uploader.restrictions == UploadRestrictions(
        allowed_extensions=frozenset({'txt'}),
    )
    uploader.handle_upload(text_upload(size=50), upload_dir)


def test_set_restrictions_accepts_preset():
    """Test a preset value can be passed directly."""
    uploader = FileUploader()

    uploader.set_restrictions(IMAGE_RESTRICTIONS)

    assert uploader.restrictions is IMAGE_RESTRICTIONS


def test_from_settings(settings):
    """Test uploader built from the UPLOAD_RESTRICTIONS setting."""
    settings.UPLOAD_RESTRICTIONS = {'max_size': 512}

    uploader = FileUploader.from_settings()

    assert uploader.restrictions == UploadRestrictions(max_size=512)


def test_receive_skips_postprocess(upload_dir, text_upload):
    """Test receive saves the file and leaves the hook to the caller."""
    received = []
    uploader = FileUploader(postprocess=received.append)

    uploaded = uploader.receive(text_upload(), upload_dir)

    assert uploaded.is_saved
    assert received == []

    uploader.postprocess(uploaded)

    assert received == [uploaded]


class _UppercaseDetector:
    """Detector reporting its answer in upper case."""

    def detect(self, path):
        return 'IMAGE/PNG'


def test_mime_type_restriction_ignores_case(upload_dir, png_bytes):
    """Test detected and allowed MIME types compare case-insensitively."""
    uploader = FileUploader(
        restrictions={'allowed_mime_types': ['Image/Png']},
        resolver=MimeResolver(detectors=[_UppercaseDetector()]),
    )
    raw = SimpleUploadedFile('a.png', png_bytes)

    uploaded = uploader.handle_upload(raw, upload_dir)

    assert uploaded.resolved_type == 'image/png'
