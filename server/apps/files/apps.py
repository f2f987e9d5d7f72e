"""Django app configuration for the upload handling app."""

from django.apps import AppConfig


class FilesConfig(AppConfig):
    """Upload validation, storage quotas and directory tools."""

    name = 'server.apps.files'
    label = 'files'
    verbose_name = 'Uploads'
