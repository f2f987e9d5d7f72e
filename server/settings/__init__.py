"""
Main entry point for the Django settings.

Settings are split into components (see ``server/settings/components``)
and glued together with ``django-split-settings``. Values that differ
between environments are read with ``python-decouple`` from
``config/.env`` or the process environment.
"""

from split_settings.tools import include, optional

_base_settings = (
    'components/common.py',
    'components/logging.py',
    'components/uploads.py',
    # Local overrides, never committed:
    optional('environments/local.py'),
)

# Include settings:
include(*_base_settings)
