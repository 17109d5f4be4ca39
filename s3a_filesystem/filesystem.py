from __future__ import annotations
"""Hierarchical filesystem view of a single S3 bucket."""
from datetime import datetime, timedelta, timezone
import getpass
import logging
import os
from typing import Callable, Optional
from urllib.parse import urlsplit

from .backend import S3ObjectStore, create_s3_client
from .credentials import build_credentials_provider, load_credentials
from .delete import DeleteEngine
from .errors import AlreadyExistsError, BackendRejectedError, NotFoundError
from .keychain import KeychainStore
from .listing import ListingEngine
from .markers import DirectoryMarkerManager
from .models import FileStatus, FileSystemStatistics
from .paths import PathTranslator, parent
from .rename import RenameEngine
from .settings import FileSystemSettings
from .status import MetadataResolver
from .streams import S3FastOutputStream, S3InputStream, S3OutputStream
from .transfers import PoolFactory, TransferManager, create_transfer_config, thread_pool_factory

LOGGER = logging.getLogger(__name__)

SCHEME = "s3a"
TRANSFER_POOL_PREFIX = "s3a-transfer-shared"


def default_working_directory() -> str:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        LOGGER.debug("Could not determine the current user name", exc_info=True)
        return "/"
    return f"/user/{user}"


class S3FileSystem:
    """Presents a bucket as a directory tree.

    Directories are implied by key prefixes. A directory without children is
    kept visible by a zero-length marker object named ``<key>/``.
    """

    def __init__(
        self,
        uri: str,
        settings: FileSystemSettings | None = None,
        *,
        client_factory: Callable[..., object] | None = None,
        pool_factory: PoolFactory | None = None,
        keychain: KeychainStore | None = None,
    ):
        self.settings = settings or FileSystemSettings()
        parts = urlsplit(uri)
        if not parts.hostname:
            raise ValueError(f"Invalid filesystem URI, no bucket: {uri}")
        self._bucket = parts.hostname
        self._uri = f"{parts.scheme or SCHEME}://{self._bucket}"
        self._translator = PathTranslator(self._bucket, default_working_directory(), parts.scheme or SCHEME)
        self._statistics = FileSystemStatistics()
        self._closed = False
        self._transfers: Optional[TransferManager] = None
        self._store: Optional[S3ObjectStore] = None

        provider = build_credentials_provider(
            uri,
            self._uri,
            self.settings,
            keychain=keychain or KeychainStore(self.settings.secret_store_service),
        )
        credentials = load_credentials(provider)
        client = create_s3_client(self.settings, credentials, client_factory)
        self._store = S3ObjectStore(
            client,
            self._bucket,
            statistics=self._statistics,
            server_side_encryption=self.settings.server_side_encryption_algorithm,
            canned_acl=self.settings.canned_acl,
        )
        try:
            self._initialize(pool_factory or thread_pool_factory)
        except BaseException:
            self.close()
            raise

    def _initialize(self, pool_factory: PoolFactory) -> None:
        store = self._store
        if not store.bucket_exists():
            raise NotFoundError(f"Bucket {self._bucket} does not exist")

        self._resolver = MetadataResolver(store, self._translator, block_size=self.settings.block_size)
        self._listing = ListingEngine(
            store,
            self._translator,
            self._resolver,
            max_keys=self.settings.max_paging_keys,
            block_size=self.settings.block_size,
        )
        self._markers = DirectoryMarkerManager(store, self._translator, self._resolver)
        self._deleter = DeleteEngine(
            store,
            self._translator,
            self._resolver,
            self._listing,
            self._markers,
            multi_object_delete=self.settings.multi_object_delete,
        )
        self._transfers = TransferManager(
            store,
            create_transfer_config(self.settings),
            executor_cls=pool_factory(TRANSFER_POOL_PREFIX),
        )
        self._renamer = RenameEngine(
            store,
            self._translator,
            self._resolver,
            self._listing,
            self._markers,
            self._transfers,
            self._deleter.new_batch,
        )

        if self.settings.purge_existing_multipart:
            self._purge_multipart_uploads()

    def _purge_multipart_uploads(self) -> None:
        before = datetime.now(timezone.utc) - timedelta(seconds=self.settings.purge_existing_multipart_age)
        try:
            aborted = self._store.abort_stale_multipart_uploads(before)
        except BackendRejectedError as exc:
            if exc.status_code != 403:
                raise
            LOGGER.debug("Failed to purge multipart uploads against %s, FS may be read only", self._bucket)
        else:
            LOGGER.debug("Aborted %d multipart upload(s) started before %s", aborted, before)

    @property
    def uri(self) -> str:
        return self._uri

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def statistics(self) -> FileSystemStatistics:
        return self._statistics

    @property
    def working_directory(self) -> str:
        return self._translator.working_directory

    @working_directory.setter
    def working_directory(self, path: str) -> None:
        self._translator.working_directory = path

    def get_default_block_size(self) -> int:
        return self.settings.block_size

    def qualify(self, path: str) -> str:
        return self._translator.qualify(path)

    def get_file_status(self, path: str) -> FileStatus:
        return self._resolver.get_file_status(path)

    def exists(self, path: str) -> bool:
        return self._resolver.exists(path)

    def is_directory(self, path: str) -> bool:
        try:
            return self.get_file_status(path).is_directory
        except NotFoundError:
            return False

    def is_file(self, path: str) -> bool:
        try:
            return self.get_file_status(path).is_file
        except NotFoundError:
            return False

    def list_status(self, path: str) -> list[FileStatus]:
        return self._listing.list_status(path)

    def mkdirs(self, path: str) -> bool:
        """Create ``path`` as a directory.

        Raises:
            AlreadyExistsError: when the path or one of its ancestors is a file.
        """

        absolute = self._translator.absolute(path)
        LOGGER.debug("Making directory: %s", absolute)
        try:
            status = self.get_file_status(absolute)
        except NotFoundError:
            pass
        else:
            if status.is_directory:
                return True
            raise AlreadyExistsError(f"Path is a file: {absolute}")

        current = parent(absolute)
        while current is not None:
            try:
                status = self.get_file_status(current)
            except NotFoundError:
                pass
            else:
                if status.is_file:
                    raise AlreadyExistsError(
                        f"Can't make directory for path '{current}' since it is a file."
                    )
            current = parent(current)

        self._markers.create_marker(self._translator.path_to_key(absolute))
        self._markers.ensure_parent_not_marked(absolute)
        return True

    def create(self, path: str, overwrite: bool = True):
        """Open ``path`` for writing; the object is uploaded when the stream closes.

        Raises:
            AlreadyExistsError: when the path is a directory, or exists and
                ``overwrite`` is False.
        """

        absolute = self._translator.absolute(path)
        try:
            status = self.get_file_status(absolute)
        except NotFoundError:
            pass
        else:
            if status.is_directory:
                raise AlreadyExistsError(f"{absolute} is a directory")
            if not overwrite:
                raise AlreadyExistsError(f"{absolute} already exists")
            LOGGER.debug("Overwriting file %s", absolute)

        key = self._translator.path_to_key(absolute)
        if self.settings.fast_upload:
            return S3FastOutputStream(
                self._store, key, self._transfers.part_size, on_complete=self._finished_write
            )
        return S3OutputStream(
            self._transfers,
            key,
            buffer_dir=self.settings.buffer_dir,
            on_complete=self._finished_write,
        )

    def open(self, path: str) -> S3InputStream:
        """Open a file for reading.

        Raises:
            NotFoundError: when the path is missing or is a directory.
        """

        absolute = self._translator.absolute(path)
        status = self.get_file_status(absolute)
        if status.is_directory:
            raise NotFoundError(f"Can't open {absolute} because it is a directory")
        LOGGER.debug("Opening '%s' for reading.", absolute)
        return S3InputStream(
            self._store,
            self._translator.path_to_key(absolute),
            status.length,
            readahead_range=self.settings.readahead_range,
        )

    def rename(self, src: str, dst: str) -> bool:
        return self._renamer.rename(src, dst)

    def delete(self, path: str, recursive: bool = False) -> bool:
        return self._deleter.delete(path, recursive)

    def copy_from_local_file(
        self,
        src: str,
        dst: str,
        *,
        overwrite: bool = False,
        delete_source: bool = False,
    ) -> None:
        """Upload the local file ``src`` to ``dst``.

        Raises:
            AlreadyExistsError: when ``dst`` exists and ``overwrite`` is False.
            FileNotFoundError: when ``src`` does not exist locally.
        """

        absolute = self._translator.absolute(dst)
        if not overwrite and self.exists(absolute):
            raise AlreadyExistsError(f"{absolute} already exists")
        LOGGER.debug("Copying local file from %s to %s", src, absolute)

        key = self._translator.path_to_key(absolute)
        size = os.path.getsize(src)
        self._transfers.upload_file(key, src, size).wait_for_result()
        self._finished_write(key)
        if delete_source:
            os.remove(src)

    def _finished_write(self, key: str) -> None:
        self._markers.ensure_parent_not_marked(self._translator.key_to_path(key))

    def close(self) -> None:
        """Release the worker pool and the client; later calls do nothing."""

        if self._closed:
            return
        self._closed = True
        if self._transfers is not None:
            self._transfers.shutdown()
            self._transfers = None
        if self._store is not None:
            self._store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self) -> str:
        return (
            f"S3FileSystem(uri={self._uri!r}, working_directory={self.working_directory!r}, "
            f"multipart_size={self.settings.multipart_size}, "
            f"multipart_threshold={self.settings.multipart_threshold}, "
            f"statistics={self._statistics!r})"
        )
