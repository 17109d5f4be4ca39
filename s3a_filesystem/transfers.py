from __future__ import annotations
"""Managed uploads and server-side copies built on s3transfer."""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from functools import partial
import logging
import math
import os
from typing import Any, Callable, Iterable, Optional

from boto3.s3.transfer import TransferConfig
from s3transfer.exceptions import CancelledError
from s3transfer.manager import TransferManager as S3TransferManager
from s3transfer.subscribers import BaseSubscriber
from s3transfer.utils import ChunksizeAdjuster

from .backend import S3ObjectStore, translate_errors
from .errors import TransferCancelledError
from .models import FileSystemStatistics
from .settings import FileSystemSettings

LOGGER = logging.getLogger(__name__)


class ProgressEventType(Enum):
    TRANSFER_STARTED = "started"
    BYTES_TRANSFERRED = "bytes_transferred"
    TRANSFER_COMPLETED = "completed"
    TRANSFER_FAILED = "failed"
    TRANSFER_CANCELED = "canceled"


@dataclass(frozen=True)
class ProgressEvent:
    event_type: ProgressEventType
    bytes_transferred: int = 0


ProgressListener = Callable[[ProgressEvent], None]
ExecutorFactory = Callable[..., Any]
PoolFactory = Callable[[str], ExecutorFactory]


def thread_pool_factory(name_prefix: str) -> ExecutorFactory:
    """Return the executor class s3transfer builds its bounded pools from."""

    return partial(ThreadPoolExecutor, thread_name_prefix=name_prefix)


def create_transfer_config(settings: FileSystemSettings) -> TransferConfig:
    """Size the shared transfer pools and the multipart split from ``settings``."""

    max_threads = settings.max_threads or (os.cpu_count() or 1) * 8
    config = TransferConfig(
        multipart_threshold=settings.multipart_threshold,
        multipart_chunksize=settings.multipart_size,
        max_concurrency=max_threads,
        use_threads=True,
    )
    config.max_request_queue_size = max_threads * settings.max_total_tasks
    LOGGER.debug(
        "Transfer pools use %d thread(s) and a queue of %d",
        max_threads,
        config.max_request_queue_size,
    )
    return config


def part_count(size: int, config: TransferConfig) -> int:
    """Number of parts a multipart transfer of ``size`` bytes is split into."""

    part_size = ChunksizeAdjuster().adjust_chunksize(config.multipart_chunksize, size)
    return max(1, math.ceil(size / part_size))


class _ProgressSubscriber(BaseSubscriber):
    def __init__(
        self,
        transfer: "PendingTransfer",
        *,
        size: int | None = None,
        etag: str | None = None,
        cancel_requested: Callable[[], bool] | None = None,
    ):
        self._transfer = transfer
        self._size = size
        self._etag = etag
        self._cancel_requested = cancel_requested

    def on_queued(self, future, **kwargs):
        self._transfer.fire(ProgressEvent(ProgressEventType.TRANSFER_STARTED))
        if self._size is not None:
            future.meta.provide_transfer_size(self._size)
        if self._etag is not None:
            future.meta.provide_object_etag(self._etag)

    def on_progress(self, future, bytes_transferred, **kwargs):
        self._transfer.fire(ProgressEvent(ProgressEventType.BYTES_TRANSFERRED, bytes_transferred))
        if self._cancel_requested is not None and self._cancel_requested():
            future.cancel()


class PendingTransfer:
    """An in-flight upload or copy running on the shared transfer pools."""

    def __init__(
        self,
        description: str,
        operation: str,
        key: str,
        *,
        requests: int = 1,
        statistics: FileSystemStatistics | None = None,
        listeners: Iterable[ProgressListener] = (),
    ):
        self.description = description
        self._operation = operation
        self._key = key
        self._requests = requests
        self._statistics = statistics
        self._listeners = list(listeners)
        self._future = None

    def attach(self, future) -> "PendingTransfer":
        self._future = future
        return self

    def add_progress_listener(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def cancel(self) -> None:
        """Ask the transfer to stop; a started multipart upload is aborted."""

        if self._future is not None:
            self._future.cancel()

    def done(self) -> bool:
        return self._future is not None and self._future.done()

    def wait_for_result(self) -> Any:
        """Block until the transfer finishes.

        Raises:
            TransferCancelledError: when the transfer is cancelled or the
                waiting thread is interrupted.
            BackendError: when the store fails the transfer.
        """

        try:
            with translate_errors(self._operation, self._key):
                result = self._future.result()
        except KeyboardInterrupt as exc:
            # TransferFuture.result() has already cancelled the transfer.
            self.fire(ProgressEvent(ProgressEventType.TRANSFER_CANCELED))
            raise TransferCancelledError(f"Interrupted {self.description}, cancelling") from exc
        except CancelledError as exc:
            self.fire(ProgressEvent(ProgressEventType.TRANSFER_CANCELED))
            raise TransferCancelledError(f"Interrupted {self.description}, cancelling") from exc
        except BaseException:
            self.fire(ProgressEvent(ProgressEventType.TRANSFER_FAILED))
            raise
        if self._statistics is not None:
            self._statistics.increment_write_ops(self._requests)
        self.fire(ProgressEvent(ProgressEventType.TRANSFER_COMPLETED))
        return result

    def fire(self, event: ProgressEvent) -> None:
        for listener in list(self._listeners):
            listener(event)


class TransferManager:
    """Chooses between single-shot and multipart transfers by object size.

    The work runs on an s3transfer manager whose pools are shared by every
    transfer of one filesystem.
    """

    def __init__(
        self,
        store: S3ObjectStore,
        config: TransferConfig,
        *,
        executor_cls: Optional[ExecutorFactory] = None,
    ):
        self._store = store
        self.config = config
        self._manager = S3TransferManager(store.client, config, executor_cls=executor_cls)

    @property
    def part_size(self) -> int:
        return self.config.multipart_chunksize

    @property
    def multipart_threshold(self) -> int:
        return self.config.multipart_threshold

    def _requests(self, size: int) -> int:
        if size < self.multipart_threshold:
            return 1
        # Every part plus the completion request.
        return part_count(size, self.config) + 1

    def upload_file(
        self,
        key: str,
        source_path: str,
        size: int,
        *,
        listeners: Iterable[ProgressListener] = (),
        cancel_requested: Callable[[], bool] | None = None,
    ) -> PendingTransfer:
        """Start uploading a local file to ``key``."""

        transfer = PendingTransfer(
            f"uploading {source_path} to {key}",
            "PutObject",
            key,
            requests=self._requests(size),
            statistics=self._store.statistics,
            listeners=listeners,
        )
        subscriber = _ProgressSubscriber(transfer, size=size, cancel_requested=cancel_requested)
        LOGGER.debug("Uploading %d byte(s) from %s to %s", size, source_path, key)
        future = self._manager.upload(
            source_path,
            self._store.bucket,
            key,
            extra_args=self._store.write_arguments(),
            subscribers=[subscriber],
        )
        return transfer.attach(future)

    def copy(
        self,
        src_key: str,
        dst_key: str,
        size: int,
        *,
        listeners: Iterable[ProgressListener] = (),
        cancel_requested: Callable[[], bool] | None = None,
    ) -> PendingTransfer:
        """Start a server-side copy, cloning the source's known metadata fields."""

        LOGGER.debug("copyFile %s -> %s", src_key, dst_key)
        source = self._store.head_object(src_key)
        extra_args = self._store.write_arguments(source.copy_arguments())
        extra_args["MetadataDirective"] = "REPLACE"
        transfer = PendingTransfer(
            f"copying {src_key} to {dst_key}",
            "CopyObject",
            src_key,
            requests=self._requests(size),
            statistics=self._store.statistics,
            listeners=listeners,
        )
        subscriber = _ProgressSubscriber(
            transfer, size=size, etag=source.etag, cancel_requested=cancel_requested
        )
        future = self._manager.copy(
            {"Bucket": self._store.bucket, "Key": src_key},
            self._store.bucket,
            dst_key,
            extra_args=extra_args,
            subscribers=[subscriber],
        )
        return transfer.attach(future)

    def shutdown(self) -> None:
        """Wait for in-flight transfers, then stop the pools."""

        self._manager.shutdown()
