"""Shared fixtures for files app tests."""

import struct
import zlib

import pytest
from django.contrib.auth import get_user_model
from django.core.files.uploadedfile import (
    SimpleUploadedFile,
    TemporaryUploadedFile,
)

User = get_user_model()


def _png_chunk(chunk_type: bytes, payload: bytes) -> bytes:
    checksum = zlib.crc32(chunk_type + payload)
    return (
        struct.pack('>I', len(payload))
        + chunk_type
        + payload
        + struct.pack('>I', checksum)
    )


@pytest.fixture
def user(db):
    """Create test user.

    Returns:
        User instance for testing.
    """
    return User.objects.create_user(
        username='testuser',
        password='testpass123',
        email='test@example.com',
    )


@pytest.fixture(autouse=True)
def staging_dir(tmp_path, settings):
    """Stage uploads in a per-test temporary directory.

    Returns:
        Path where in-memory uploads are staged.
    """
    staging = tmp_path / 'staging'
    staging.mkdir()
    settings.FILE_UPLOAD_TEMP_DIR = str(staging)
    return staging


@pytest.fixture
def upload_dir(tmp_path):
    """Empty, writable directory uploads are saved into.

    Returns:
        Path to the save directory.
    """
    directory = tmp_path / 'uploads'
    directory.mkdir()
    return directory


@pytest.fixture
def png_bytes():
    """Minimal valid 1x1 PNG image.

    Returns:
        PNG file content.
    """
    header = struct.pack('>IIBBBBB', 1, 1, 8, 0, 0, 0, 0)
    pixels = zlib.compress(b'\x00\x00')
    return b''.join((
        b'\x89PNG\r\n\x1a\n',
        _png_chunk(b'IHDR', header),
        _png_chunk(b'IDAT', pixels),
        _png_chunk(b'IEND', b''),
    ))


@pytest.fixture
def text_upload():
    """Factory for in-memory plain text uploads.

    Returns:
        Callable building a SimpleUploadedFile of the requested size.
    """
    def factory(name='notes.txt', size=20):
        content = (b'hello world\n' * (size // 12 + 1))[:size]
        return SimpleUploadedFile(name, content, content_type='text/plain')

    return factory


@pytest.fixture
def temporary_upload(staging_dir):
    """Factory for disk-backed uploads, like Django streams large files.

    Yields:
        Callable building a TemporaryUploadedFile with given content.
    """
    created = []

    def factory(name, content, content_type='application/octet-stream'):
        upload = TemporaryUploadedFile(
            name,
            content_type,
            len(content),
            None,
        )
        upload.write(content)
        upload.seek(0)
        created.append(upload)
        return upload

    yield factory

    for upload in created:
        upload.close()
