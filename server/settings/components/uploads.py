"""Upload and local file storage settings."""

from server.settings.components import BASE_DIR, config

# Root of all upload directories
UPLOAD_ROOT = config(
    'UPLOAD_ROOT',
    default=str(BASE_DIR.joinpath('media')),
)

# Where uploads are staged before validation, None means system default
FILE_UPLOAD_TEMP_DIR = config('FILE_UPLOAD_TEMP_DIR', default='') or None

FILE_UPLOAD_PERMISSIONS = 0o644

# Project-wide restrictions, read by get_default_restrictions().
# Unknown keys are ignored, see UploadRestrictions.from_config.
UPLOAD_RESTRICTIONS = {
    'max_size': config('UPLOAD_MAX_SIZE', cast=int, default=50 * 1024 * 1024),
}

# Directories created by `manage.py provision_upload_dirs`
UPLOAD_DIRECTORY_STRUCTURE = {
    'files': {},
    'images': {
        'thumbnails': {},
    },
    'tmp': {},
}
