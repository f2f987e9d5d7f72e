"""Upload restrictions and quota context."""

import dataclasses
import enum
import logging
from collections.abc import Callable, Collection, Mapping
from typing import Any, Final

from django.conf import settings

from server.apps.files.infrastructure.mime import MediaType

logger = logging.getLogger(__name__)


class RestrictionAxis(enum.StrEnum):
    """Restriction axes, in the order uploads are checked against them."""

    MAX_SIZE = 'maxsize'
    MEDIA_TYPE = 'mediatype'
    MIME_TYPE = 'mimetype'
    EXTENSION = 'extension'


@dataclasses.dataclass(frozen=True, slots=True)
class QuotaContext:
    """Storage budget an upload has to fit into.

    Attributes:
        current_usage: Bytes already used.
        limit: Maximum number of bytes allowed.
    """

    current_usage: int
    limit: int

    def has_space_for(self, size_bytes: int) -> bool:
        """Check if there's enough space for the given size.

        Args:
            size_bytes: Size to check in bytes.

        Returns:
            True if there's enough space, False otherwise.
        """
        return self.current_usage + size_bytes <= self.limit


@dataclasses.dataclass(frozen=True, slots=True)
class UploadRestrictions:
    """Constraints an uploaded file has to satisfy.

    None on an axis means the axis is not restricted.

    Attributes:
        max_size: Maximum size in bytes.
        allowed_media_types: Accepted media types (e.g. image).
        allowed_mime_types: Accepted MIME types (e.g. 'image/png').
        allowed_extensions: Accepted lowercase extensions, no dot.
    """

    max_size: int | None = None
    allowed_media_types: frozenset[MediaType] | None = None
    allowed_mime_types: frozenset[str] | None = None
    allowed_extensions: frozenset[str] | None = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'UploadRestrictions':
        """Build restrictions from a loosely typed configuration.

        Only known keys are read, under either their attribute name
        ('max_size') or their axis name ('maxsize'). Unknown keys and
        values of the wrong type are skipped so that configuration
        written for newer versions still loads.

        Args:
            config: Mapping such as
                {'max_size': 1024, 'allowed_extensions': ['png']}.

        Returns:
            New UploadRestrictions instance.
        """
        values: dict[str, Any] = {}
        for key, raw_value in config.items():
            field_name = _CONFIG_KEYS.get(key)
            if field_name is None:
                logger.debug('Ignoring unknown upload restriction: %s', key)
                continue

            parsed = _PARSERS[field_name](raw_value)
            if parsed is None:
                logger.debug(
                    'Ignoring invalid value for upload restriction %s: %r',
                    key,
                    raw_value,
                )
                continue
            values[field_name] = parsed
        return cls(**values)

    def is_empty(self) -> bool:
        """Whether no axis is restricted."""
        return all(
            getattr(self, field.name) is None
            for field in dataclasses.fields(self)
        )


def _parse_max_size(raw_value: object) -> int | None:
    if isinstance(raw_value, bool) or not isinstance(raw_value, int):
        return None
    return raw_value


def _parse_strings(raw_value: object) -> frozenset[str] | None:
    if isinstance(raw_value, str | bytes) or not isinstance(
        raw_value,
        Collection,
    ):
        return None
    if not all(isinstance(item, str) for item in raw_value):
        return None
    return frozenset(raw_value)


def _parse_media_types(raw_value: object) -> frozenset[MediaType] | None:
    strings = _parse_strings(raw_value)
    if strings is None:
        return None
    try:
        return frozenset(MediaType(item) for item in strings)
    except ValueError:
        return None


def _parse_mime_types(raw_value: object) -> frozenset[str] | None:
    strings = _parse_strings(raw_value)
    if strings is None:
        return None
    return frozenset(item.lower() for item in strings)


def _parse_extensions(raw_value: object) -> frozenset[str] | None:
    strings = _parse_strings(raw_value)
    if strings is None:
        return None
    return frozenset(item.lstrip('.').lower() for item in strings)


_CONFIG_KEYS: Final = {
    'max_size': 'max_size',
    'allowed_media_types': 'allowed_media_types',
    'allowed_mime_types': 'allowed_mime_types',
    'allowed_extensions': 'allowed_extensions',
    RestrictionAxis.MAX_SIZE.value: 'max_size',
    RestrictionAxis.MEDIA_TYPE.value: 'allowed_media_types',
    RestrictionAxis.MIME_TYPE.value: 'allowed_mime_types',
    RestrictionAxis.EXTENSION.value: 'allowed_extensions',
}

_PARSERS: Final[dict[str, Callable[[object], Any]]] = {
    'max_size': _parse_max_size,
    'allowed_media_types': _parse_media_types,
    'allowed_mime_types': _parse_mime_types,
    'allowed_extensions': _parse_extensions,
}

NO_RESTRICTIONS: Final = UploadRestrictions()

IMAGE_RESTRICTIONS: Final = UploadRestrictions(
    allowed_media_types=frozenset({MediaType.IMAGE}),
    allowed_extensions=frozenset({
        'jpeg',
        'jpg',
        'gif',
        'png',
        'tiff',
        'bmp',
        'tif',
    }),
)


def get_default_restrictions() -> UploadRestrictions:
    """Build restrictions from the UPLOAD_RESTRICTIONS setting.

    Returns:
        Restrictions configured for the project, empty if unset.
    """
    config = getattr(settings, 'UPLOAD_RESTRICTIONS', None) or {}
    return UploadRestrictions.from_config(config)
