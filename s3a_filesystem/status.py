from __future__ import annotations
"""Resolves what a path denotes in the flat object store."""
import logging

from .backend import ObjectStore
from .errors import NotFoundError
from .models import DIRECTORY_SUFFIX, FileStatus, represents_directory
from .paths import PathTranslator

LOGGER = logging.getLogger(__name__)


class MetadataResolver:
    """Determines whether a path is a file, a directory, or missing."""

    def __init__(self, store: ObjectStore, translator: PathTranslator, *, block_size: int):
        self._store = store
        self._translator = translator
        self._block_size = block_size

    def get_file_status(self, path: str) -> FileStatus:
        """Return the status of ``path``.

        Checks, in order: the exact key, the key with a trailing separator,
        and a one-item listing under the key's prefix.

        Raises:
            NotFoundError: when nothing exists at or under the path.
            BackendRejectedError | BackendError: when a lookup fails.
        """

        absolute = self._translator.absolute(path)
        key = self._translator.path_to_key(absolute)
        LOGGER.debug("Getting path status for %s (%s)", absolute, key)

        if key:
            try:
                meta = self._store.head_object(key)
            except NotFoundError:
                pass
            else:
                if represents_directory(key, meta.content_length):
                    LOGGER.debug("Found exact file: fake directory")
                    return FileStatus.directory(absolute, empty=True)
                LOGGER.debug("Found exact file: normal file")
                return self._file_status(absolute, meta.content_length, meta.last_modified)

            if not key.endswith(DIRECTORY_SUFFIX):
                marker_key = key + DIRECTORY_SUFFIX
                try:
                    meta = self._store.head_object(marker_key)
                except NotFoundError:
                    pass
                else:
                    if represents_directory(marker_key, meta.content_length):
                        LOGGER.debug("Found file (with /): fake directory")
                        return FileStatus.directory(absolute, empty=True)
                    LOGGER.warning("Found file (with /): real file? should not happen: %s", key)
                    return self._file_status(absolute, meta.content_length, meta.last_modified)

        prefix = key
        if prefix and not prefix.endswith(DIRECTORY_SUFFIX):
            prefix += DIRECTORY_SUFFIX
        try:
            page = self._store.list_objects(prefix, delimiter=DIRECTORY_SUFFIX, max_keys=1)
        except NotFoundError:
            pass
        else:
            if not page.is_empty:
                LOGGER.debug(
                    "Found path as directory (with /): %d/%d",
                    len(page.common_prefixes),
                    len(page.summaries),
                )
                return FileStatus.directory(absolute, empty=False)
            if not key:
                LOGGER.debug("Found root directory")
                return FileStatus.directory(absolute, empty=True)

        LOGGER.debug("Not Found: %s", absolute)
        raise NotFoundError(f"No such file or directory: {absolute}")

    def exists(self, path: str) -> bool:
        try:
            self.get_file_status(path)
        except NotFoundError:
            return False
        return True

    def _file_status(self, path, length, modification_time) -> FileStatus:
        return FileStatus.file(
            path,
            length=length,
            modification_time=modification_time,
            block_size=self._block_size,
        )
