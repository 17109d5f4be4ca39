from __future__ import annotations
"""Move emulation by server-side copy followed by delete."""
import logging
from typing import Callable

from .backend import ObjectStore
from .delete import BatchDeleter
from .errors import IllegalRenameTargetError, NotFoundError
from .listing import ListingEngine
from .markers import DirectoryMarkerManager, marker_key
from .models import FileStatus
from .paths import PathTranslator, basename, child, parent
from .status import MetadataResolver
from .transfers import TransferManager

LOGGER = logging.getLogger(__name__)


class RenameEngine:
    """Renames files and directories.

    Directory renames copy every object under the source prefix and delete
    the originals in batches; nothing is rolled back when a copy fails midway.
    """

    def __init__(
        self,
        store: ObjectStore,
        translator: PathTranslator,
        resolver: MetadataResolver,
        listing: ListingEngine,
        markers: DirectoryMarkerManager,
        transfers: TransferManager,
        new_batch: Callable[[], BatchDeleter],
    ):
        self._store = store
        self._translator = translator
        self._resolver = resolver
        self._listing = listing
        self._markers = markers
        self._transfers = transfers
        self._new_batch = new_batch

    def rename(self, src: str, dst: str) -> bool:
        """Rename ``src`` to ``dst``.

        Returns False when the rename is not possible: a missing source, the
        root on either side, a file destination for a directory, a non-empty
        destination directory, a missing destination parent or a destination
        nested under the source. Backend errors propagate.
        """

        src_path = self._translator.absolute(src)
        dst_path = self._translator.absolute(dst)
        LOGGER.debug("Rename path %s to %s", src_path, dst_path)

        src_key = self._translator.path_to_key(src_path)
        dst_key = self._translator.path_to_key(dst_path)
        if not src_key or not dst_key:
            LOGGER.debug("rename: source %r or dest %r is empty", src_key, dst_key)
            return False

        try:
            src_status = self._resolver.get_file_status(src_path)
        except NotFoundError:
            LOGGER.error("rename: src not found %s", src_path)
            return False

        if src_key == dst_key:
            LOGGER.debug("rename: src and dst refer to the same file or directory: %s", dst_path)
            return src_status.is_file

        try:
            dst_status = self._check_destination(src_path, src_status, dst_path)
            if src_status.is_directory:
                self._check_not_nested(src_key, dst_key)
        except IllegalRenameTargetError as exc:
            LOGGER.debug("rename: %s", exc)
            return False

        if src_status.is_file:
            target = dst_path
            if dst_status is not None and dst_status.is_directory:
                target = child(dst_path, basename(src_path))
            LOGGER.debug("rename: renaming file %s to %s", src_path, target)
            self._copy(src_key, self._translator.path_to_key(target), src_status.length)
            self._store.delete_object(src_key)
        else:
            target = dst_path
            LOGGER.debug("rename: renaming directory %s to %s", src_path, dst_path)
            self._rename_directory(src_key, dst_key, dst_status)

        if parent(src_path) != parent(target):
            self._markers.ensure_parent_not_marked(target)
            self._markers.ensure_marked_if_empty(parent(src_path))
        return True

    def _check_destination(self, src_path: str, src_status: FileStatus, dst_path: str) -> FileStatus | None:
        try:
            dst_status = self._resolver.get_file_status(dst_path)
        except NotFoundError:
            LOGGER.debug("rename: destination path %s not found", dst_path)
            self._check_destination_parent(dst_path)
            return None

        if src_status.is_directory and dst_status.is_file:
            raise IllegalRenameTargetError(f"source {src_path} is a directory and dest {dst_path} is a file")
        if dst_status.is_directory and not dst_status.is_empty_directory:
            raise IllegalRenameTargetError(f"dest {dst_path} is a non-empty directory")
        return dst_status

    def _check_destination_parent(self, dst_path: str) -> None:
        dst_parent = parent(dst_path)
        if dst_parent is None or not self._translator.path_to_key(dst_parent):
            return
        try:
            parent_status = self._resolver.get_file_status(dst_parent)
        except NotFoundError as exc:
            raise IllegalRenameTargetError(f"dest {dst_path} has no parent {dst_parent}") from exc
        if not parent_status.is_directory:
            raise IllegalRenameTargetError(f"parent {dst_parent} of dest {dst_path} is not a directory")

    @staticmethod
    def _check_not_nested(src_key: str, dst_key: str) -> None:
        if marker_key(dst_key).startswith(marker_key(src_key)):
            raise IllegalRenameTargetError(
                f"cannot rename a directory {src_key} to a subdirectory of self: {dst_key}"
            )

    def _rename_directory(self, src_key: str, dst_key: str, dst_status: FileStatus | None) -> None:
        src_prefix = marker_key(src_key)
        dst_prefix = marker_key(dst_key)
        batch = self._new_batch()
        if dst_status is not None and dst_status.is_empty_directory:
            batch.add(dst_prefix)

        for summary in self._listing.iter_objects(src_prefix):
            new_key = dst_prefix + summary.key[len(src_prefix):]
            self._copy(summary.key, new_key, summary.size)
            if new_key == dst_prefix:
                # The source marker became the destination marker.
                batch.discard(dst_prefix)
            batch.add(summary.key)
        batch.flush()

    def _copy(self, src_key: str, dst_key: str, size: int) -> None:
        self._transfers.copy(src_key, dst_key, size).wait_for_result()
