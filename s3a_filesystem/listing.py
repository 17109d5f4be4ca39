from __future__ import annotations
"""Directory listings built from prefix/delimiter queries."""
import logging
from typing import Iterator

from .backend import ObjectStore
from .models import (
    DIRECTORY_SUFFIX,
    LEGACY_FOLDER_SUFFIX,
    FileStatus,
    ListingPage,
    ObjectSummary,
    represents_directory,
)
from .paths import PathTranslator
from .status import MetadataResolver

LOGGER = logging.getLogger(__name__)


class ListingEngine:
    """Merges object summaries and common prefixes into filesystem entries."""

    def __init__(
        self,
        store: ObjectStore,
        translator: PathTranslator,
        resolver: MetadataResolver,
        *,
        max_keys: int,
        block_size: int,
    ):
        self._store = store
        self._translator = translator
        self._resolver = resolver
        self._max_keys = max_keys
        self._block_size = block_size

    def iter_pages(self, prefix: str, *, delimiter: str | None = None) -> Iterator[ListingPage]:
        """Yield every page of the listing under ``prefix``."""

        token: str | None = None
        while True:
            page = self._store.list_objects(
                prefix,
                delimiter=delimiter,
                max_keys=self._max_keys,
                continuation_token=token,
            )
            yield page
            if not page.is_truncated or not page.continuation_token:
                break
            LOGGER.debug("Listing of %s truncated - getting next batch", prefix or "/")
            token = page.continuation_token

    def iter_objects(self, prefix: str) -> Iterator[ObjectSummary]:
        """Yield every object whose key starts with ``prefix``, at any depth."""

        for page in self.iter_pages(prefix):
            yield from page.summaries

    def list_status(self, path: str) -> list[FileStatus]:
        """List the entries of a directory, or the status of a file.

        Raises:
            NotFoundError: when the path does not exist.
        """

        absolute = self._translator.absolute(path)
        LOGGER.debug("List status for path: %s", absolute)
        status = self._resolver.get_file_status(absolute)
        if not status.is_directory:
            LOGGER.debug("Adding: rd (not a dir): %s", absolute)
            return [status]

        key = self._translator.path_to_key(absolute)
        prefix = key + DIRECTORY_SUFFIX if key else ""
        results: list[FileStatus] = []
        for page in self.iter_pages(prefix, delimiter=DIRECTORY_SUFFIX):
            for summary in page.summaries:
                entry_path = self._translator.key_to_path(summary.key)
                if entry_path == absolute or summary.key.endswith(LEGACY_FOLDER_SUFFIX):
                    LOGGER.debug("Ignoring: %s", entry_path)
                    continue
                if represents_directory(summary.key, summary.size):
                    results.append(FileStatus.directory(entry_path, empty=True))
                    LOGGER.debug("Adding: fd: %s", entry_path)
                else:
                    results.append(
                        FileStatus.file(
                            entry_path,
                            length=summary.size,
                            modification_time=summary.last_modified,
                            block_size=self._block_size,
                        )
                    )
                    LOGGER.debug("Adding: fi: %s", entry_path)

            for common_prefix in page.common_prefixes:
                entry_path = self._translator.key_to_path(common_prefix)
                if entry_path == absolute:
                    continue
                results.append(FileStatus.directory(entry_path, empty=False))
                LOGGER.debug("Adding: rd: %s", entry_path)
        return results
