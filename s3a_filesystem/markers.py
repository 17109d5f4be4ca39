from __future__ import annotations
"""Maintenance of zero-length directory marker objects."""
import logging

from .backend import ObjectStore
from .errors import BackendError, NotFoundError
from .models import DIRECTORY_SUFFIX, represents_directory
from .paths import PathTranslator, parent
from .status import MetadataResolver

LOGGER = logging.getLogger(__name__)


def marker_key(key: str) -> str:
    return key if key.endswith(DIRECTORY_SUFFIX) else key + DIRECTORY_SUFFIX


class DirectoryMarkerManager:
    """Keeps a marker present exactly for directories without children.

    The repair walks are best-effort: store failures are logged and ignored.
    """

    def __init__(self, store: ObjectStore, translator: PathTranslator, resolver: MetadataResolver):
        self._store = store
        self._translator = translator
        self._resolver = resolver

    def create_marker(self, key: str) -> None:
        LOGGER.debug("Creating directory marker %s", marker_key(key))
        self._store.put_object(marker_key(key), b"", content_length=0)

    def remove_marker(self, key: str) -> None:
        LOGGER.debug("Deleting directory marker %s", marker_key(key))
        self._store.delete_object(marker_key(key))

    def ensure_parent_not_marked(self, path: str) -> None:
        """Clear markers above a newly written ``path``.

        Every ancestor up to the root is checked: an empty directory may sit
        above levels that did not exist before the write.
        """

        current = parent(self._translator.absolute(path))
        while current is not None:
            key = self._translator.path_to_key(current)
            if not key:
                break
            try:
                meta = self._store.head_object(marker_key(key))
            except NotFoundError:
                pass
            except BackendError:
                LOGGER.debug("While checking directory marker for %s", key, exc_info=True)
            else:
                if represents_directory(marker_key(key), meta.content_length):
                    try:
                        self.remove_marker(key)
                    except BackendError:
                        LOGGER.debug("While deleting directory marker for %s", key, exc_info=True)
            current = parent(current)

    def ensure_marked_if_empty(self, path: str | None) -> None:
        """Recreate markers for ``path`` and its ancestors while they are empty."""

        current = self._translator.absolute(path) if path is not None else None
        while current is not None:
            key = self._translator.path_to_key(current)
            if not key:
                break
            try:
                if self._resolver.exists(current):
                    break
                LOGGER.debug("Creating new fake directory at %s", current)
                self.create_marker(key)
            except BackendError:
                LOGGER.debug("While creating directory marker for %s", key, exc_info=True)
                break
            current = parent(current)
