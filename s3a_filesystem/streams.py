from __future__ import annotations
"""Output streams that upload on close and a ranged input stream."""
import logging
import os
import tempfile
from typing import Callable, Iterable, Optional

from .backend import ObjectStore
from .errors import BackendError, S3FileSystemError, TransferCancelledError
from .transfers import ProgressEvent, ProgressEventType, ProgressListener, TransferManager

LOGGER = logging.getLogger(__name__)

CompletionCallback = Callable[[str], None]


class _StreamBase:
    def __init__(self, key: str):
        self.key = key
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def readable(self) -> bool:
        return False

    def writable(self) -> bool:
        return False

    def seekable(self) -> bool:
        return False

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError(f"I/O operation on closed stream for {self.key}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class S3OutputStream(_StreamBase):
    """Buffers writes in a local temporary file and uploads it on close."""

    def __init__(
        self,
        transfers: TransferManager,
        key: str,
        *,
        buffer_dir: str | None = None,
        on_complete: CompletionCallback | None = None,
        listeners: Iterable[ProgressListener] = (),
    ):
        super().__init__(key)
        self._transfers = transfers
        self._on_complete = on_complete
        self._listeners = tuple(listeners)
        if buffer_dir:
            os.makedirs(buffer_dir, exist_ok=True)
        fd, self._buffer_path = tempfile.mkstemp(prefix="output-", suffix=".tmp", dir=buffer_dir or None)
        self._buffer = os.fdopen(fd, "wb")
        LOGGER.debug("OutputStream for key '%s' writing to tempfile: %s", key, self._buffer_path)

    def writable(self) -> bool:
        return True

    def write(self, data: bytes) -> int:
        self._check_open()
        return self._buffer.write(data)

    def flush(self) -> None:
        self._check_open()
        self._buffer.flush()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._buffer.close()
            size = os.path.getsize(self._buffer_path)
            LOGGER.debug("OutputStream for key '%s' closed. Now beginning upload of %d bytes", self.key, size)
            self._transfers.upload_file(
                self.key, self._buffer_path, size, listeners=self._listeners
            ).wait_for_result()
            if self._on_complete is not None:
                self._on_complete(self.key)
        finally:
            try:
                os.remove(self._buffer_path)
            except OSError:
                LOGGER.warning("Could not delete temporary file %s", self._buffer_path)
        LOGGER.debug("OutputStream for key '%s' upload complete", self.key)


class S3FastOutputStream(_StreamBase):
    """Uploads parts from memory while the caller is still writing.

    Each full part is sent as soon as it is buffered, so at most one part is
    held in memory. Data smaller than one part is sent with a single PUT on
    close. Any failure aborts the multipart upload.
    """

    def __init__(
        self,
        store: ObjectStore,
        key: str,
        part_size: int,
        *,
        on_complete: CompletionCallback | None = None,
        listeners: Iterable[ProgressListener] = (),
    ):
        super().__init__(key)
        self._store = store
        self._part_size = part_size
        self._on_complete = on_complete
        self._listeners = tuple(listeners)
        self._buffer = bytearray()
        self._upload_id: Optional[str] = None
        self._parts: list[tuple[int, str]] = []

    def writable(self) -> bool:
        return True

    def write(self, data: bytes) -> int:
        self._check_open()
        self._buffer.extend(data)
        while len(self._buffer) >= self._part_size:
            part = bytes(self._buffer[: self._part_size])
            del self._buffer[: self._part_size]
            self._guarded(self._upload_part, part)
        return len(data)

    def flush(self) -> None:
        self._check_open()

    def _upload_part(self, part: bytes) -> None:
        if self._upload_id is None:
            LOGGER.debug("Initiating multipart upload for %s", self.key)
            self._upload_id = self._store.create_multipart_upload(self.key)
            self._fire(ProgressEvent(ProgressEventType.TRANSFER_STARTED))
        part_number = len(self._parts) + 1
        etag = self._store.upload_part(self.key, self._upload_id, part_number, part)
        self._parts.append((part_number, etag))
        self._fire(ProgressEvent(ProgressEventType.BYTES_TRANSFERRED, len(part)))

    def _guarded(self, step: Callable[..., None], *args) -> None:
        try:
            step(*args)
        except KeyboardInterrupt as exc:
            self._fail(ProgressEventType.TRANSFER_CANCELED)
            raise TransferCancelledError(f"Interrupted uploading to {self.key}, cancelling") from exc
        except BaseException:
            self._fail(ProgressEventType.TRANSFER_FAILED)
            raise

    def _fail(self, event_type: ProgressEventType) -> None:
        self._closed = True
        self._buffer.clear()
        self._abort_upload()
        self._fire(ProgressEvent(event_type))

    def _abort_upload(self) -> None:
        if self._upload_id is None:
            return
        upload_id, self._upload_id = self._upload_id, None
        try:
            self._store.abort_multipart_upload(self.key, upload_id)
        except BackendError:
            LOGGER.warning("Failed to abort multipart upload %s to %s", upload_id, self.key, exc_info=True)

    def _fire(self, event: ProgressEvent) -> None:
        for listener in self._listeners:
            listener(event)

    def abort(self) -> None:
        """Discard buffered data and abort any multipart upload in progress."""

        if self._closed:
            return
        self._fail(ProgressEventType.TRANSFER_CANCELED)
        LOGGER.debug("Aborted upload to %s", self.key)

    def _finish(self) -> None:
        if self._upload_id is None:
            LOGGER.debug("Uploading %d byte(s) to %s in a single request", len(self._buffer), self.key)
            self._store.put_object(self.key, bytes(self._buffer), content_length=len(self._buffer))
        else:
            if self._buffer:
                self._upload_part(bytes(self._buffer))
            self._store.complete_multipart_upload(self.key, self._upload_id, self._parts)
            self._upload_id = None
        self._buffer.clear()

    def close(self) -> None:
        if self._closed:
            return
        self._guarded(self._finish)
        self._closed = True
        self._fire(ProgressEvent(ProgressEventType.TRANSFER_COMPLETED))
        if self._on_complete is not None:
            self._on_complete(self.key)
        LOGGER.debug("Upload complete for %s", self.key)


class S3InputStream(_StreamBase):
    """Reads an object through ranged GETs.

    A forward seek within ``readahead_range`` skips bytes on the open
    response; other seeks reopen the object at the new position.
    """

    def __init__(self, store: ObjectStore, key: str, length: int, *, readahead_range: int = 0):
        super().__init__(key)
        self._store = store
        self.length = length
        self._readahead_range = readahead_range
        self._pos = 0
        self._stream_pos = 0
        self._body = None

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        return self._pos

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        self._check_open()
        if whence == os.SEEK_SET:
            target = offset
        elif whence == os.SEEK_CUR:
            target = self._pos + offset
        elif whence == os.SEEK_END:
            target = self.length + offset
        else:
            raise ValueError(f"Invalid whence: {whence}")
        if target < 0:
            raise S3FileSystemError(f"Cannot seek to a negative offset: {target}")
        self._pos = target
        return self._pos

    def read(self, size: int = -1) -> bytes:
        self._check_open()
        if self._pos >= self.length:
            return b""
        if size is None or size < 0:
            size = self.length - self._pos
        size = min(size, self.length - self._pos)
        if size == 0:
            return b""

        self._position_body()
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self._body.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        data = b"".join(chunks)
        self._pos += len(data)
        self._stream_pos = self._pos
        return data

    def readall(self) -> bytes:
        return self.read(-1)

    def _position_body(self) -> None:
        if self._body is not None:
            skip = self._pos - self._stream_pos
            if skip == 0:
                return
            if 0 < skip <= self._readahead_range:
                LOGGER.debug("Skipping %d byte(s) forward in %s", skip, self.key)
                skipped = self._body.read(skip)
                self._stream_pos += len(skipped)
                if self._stream_pos == self._pos:
                    return
            self._close_body()
        LOGGER.debug("Opening %s at position %d", self.key, self._pos)
        self._body = self._store.get_object(self.key, start=self._pos, end=self.length - 1)
        self._stream_pos = self._pos

    def _close_body(self) -> None:
        if self._body is not None:
            close = getattr(self._body, "close", None)
            if close is not None:
                close()
            self._body = None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._close_body()
