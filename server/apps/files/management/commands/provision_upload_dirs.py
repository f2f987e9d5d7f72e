"""Management command to create the upload directory structure."""

import logging
import os
from typing import Any

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from server.apps.files.infrastructure.filenames import human_readable_size
from server.apps.files.infrastructure.filesystem import (
    create_structure,
    tree_size,
)

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Create UPLOAD_DIRECTORY_STRUCTURE below UPLOAD_ROOT."""

    help = 'Create the upload directory structure and report its size'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--base-dir',
            default=None,
            help='Directory to provision (default: UPLOAD_ROOT)',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be created without creating it',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the provisioning command.

        Args:
            args: Positional arguments (unused).
            options: Command options.

        Raises:
            CommandError: If the base directory does not exist.
        """
        base_dir = options['base_dir'] or settings.UPLOAD_ROOT
        structure = settings.UPLOAD_DIRECTORY_STRUCTURE

        if options['dry_run']:
            for path in _flatten(structure):
                self.stdout.write(f'Would create: {base_dir}/{path}')
            return

        if not os.path.isdir(base_dir):
            raise CommandError(f'Directory does not exist: {base_dir}')

        create_structure(structure, base_dir)
        logger.info('Provisioned upload directories in %s', base_dir)

        size = tree_size(base_dir)
        self.stdout.write(
            self.style.SUCCESS(
                f'Provisioned {base_dir} ({human_readable_size(size)} used)',
            ),
        )


def _flatten(structure: dict[str, Any], prefix: str = '') -> list[str]:
    paths = []
    for name, children in structure.items():
        path = f'{prefix}{name}'
        paths.append(path)
        paths.extend(_flatten(children or {}, f'{path}/'))
    return paths
