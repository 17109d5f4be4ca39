from __future__ import annotations
"""Recursive deletion by enumerate-then-batch-delete."""
import logging

from .backend import MAX_ENTRIES_TO_DELETE, ObjectStore
from .errors import NotEmptyDirectoryError, NotFoundError
from .listing import ListingEngine
from .markers import DirectoryMarkerManager, marker_key
from .paths import PathTranslator, parent
from .status import MetadataResolver

LOGGER = logging.getLogger(__name__)


class BatchDeleter:
    """Collects keys and deletes them in batches of at most 1000.

    With ``multi_object_delete`` off, each batch is removed with single deletes.
    """

    def __init__(self, store: ObjectStore, *, multi_object_delete: bool, batch_size: int = MAX_ENTRIES_TO_DELETE):
        self._store = store
        self._multi_object_delete = multi_object_delete
        self._batch_size = min(batch_size, MAX_ENTRIES_TO_DELETE)
        self._pending: list[str] = []
        self.deleted = 0

    @property
    def pending(self) -> list[str]:
        return list(self._pending)

    def add(self, key: str) -> None:
        self._pending.append(key)
        if len(self._pending) >= self._batch_size:
            self.flush()

    def discard(self, key: str) -> None:
        self._pending = [pending for pending in self._pending if pending != key]

    def flush(self) -> None:
        if not self._pending:
            return
        keys, self._pending = self._pending, []
        if self._multi_object_delete:
            self._store.delete_objects(keys)
        else:
            for key in keys:
                self._store.delete_object(key)
        self.deleted += len(keys)


class DeleteEngine:
    """Deletes files and directories, repairing markers afterwards."""

    def __init__(
        self,
        store: ObjectStore,
        translator: PathTranslator,
        resolver: MetadataResolver,
        listing: ListingEngine,
        markers: DirectoryMarkerManager,
        *,
        multi_object_delete: bool,
    ):
        self._store = store
        self._translator = translator
        self._resolver = resolver
        self._listing = listing
        self._markers = markers
        self._multi_object_delete = multi_object_delete

    def new_batch(self) -> BatchDeleter:
        return BatchDeleter(self._store, multi_object_delete=self._multi_object_delete)

    def delete(self, path: str, recursive: bool) -> bool:
        """Delete ``path``; return False when it does not exist or is the root.

        Raises:
            NotEmptyDirectoryError: when a populated directory is deleted
                without ``recursive``.
        """

        absolute = self._translator.absolute(path)
        LOGGER.debug("Delete path %s - recursive %s", absolute, recursive)
        try:
            status = self._resolver.get_file_status(absolute)
        except NotFoundError:
            LOGGER.debug("Couldn't delete %s - does not exist", absolute)
            return False

        key = self._translator.path_to_key(absolute)
        if status.is_directory:
            LOGGER.debug("delete: Path is a directory: %s", absolute)
            if not recursive and not status.is_empty_directory:
                raise NotEmptyDirectoryError(
                    f"Path is a folder: {absolute} and it is not an empty directory"
                )
            if not key:
                LOGGER.info("Cannot delete the root directory")
                return False

            if status.is_empty_directory:
                LOGGER.debug("Deleting fake empty directory %s", marker_key(key))
                self._store.delete_object(marker_key(key))
            else:
                prefix = marker_key(key)
                LOGGER.debug("Getting objects for directory prefix %s to delete", prefix)
                batch = self.new_batch()
                for summary in self._listing.iter_objects(prefix):
                    LOGGER.debug("Got object to delete %s", summary.key)
                    batch.add(summary.key)
                batch.flush()
                LOGGER.debug("Deleted %d object(s) under %s", batch.deleted, prefix)
        else:
            LOGGER.debug("delete: Path is a file")
            self._store.delete_object(key)

        self._markers.ensure_marked_if_empty(parent(absolute))
        return True
