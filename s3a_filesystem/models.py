from __future__ import annotations
"""Data models describing filesystem entries and store responses."""
from dataclasses import dataclass, field
from datetime import datetime
import threading
from typing import Any, Optional

DIRECTORY_SUFFIX = "/"
LEGACY_FOLDER_SUFFIX = "_$folder$"


def represents_directory(key: str, size: int | None) -> bool:
    """Return True when ``key``/``size`` describe a directory marker object."""

    return bool(key) and key.endswith(DIRECTORY_SUFFIX) and not size


@dataclass(frozen=True)
class FileStatus:
    """Point-in-time view of a path, recomputed on every query."""

    path: str
    is_directory: bool
    is_empty_directory: Optional[bool] = None
    length: int = 0
    modification_time: Optional[datetime] = None
    block_size: int = 0

    @property
    def is_file(self) -> bool:
        return not self.is_directory

    @classmethod
    def directory(cls, path: str, *, empty: bool) -> "FileStatus":
        return cls(path=path, is_directory=True, is_empty_directory=empty)

    @classmethod
    def file(
        cls,
        path: str,
        *,
        length: int,
        modification_time: Optional[datetime],
        block_size: int,
    ) -> "FileStatus":
        return cls(
            path=path,
            is_directory=False,
            length=length,
            modification_time=modification_time,
            block_size=block_size,
        )


@dataclass(frozen=True)
class ObjectSummary:
    """A single object returned by a listing."""

    key: str
    size: int = 0
    last_modified: Optional[datetime] = None


@dataclass
class ListingPage:
    """Represents a single page of a prefix/delimiter listing."""

    summaries: list[ObjectSummary] = field(default_factory=list)
    common_prefixes: list[str] = field(default_factory=list)
    is_truncated: bool = False
    continuation_token: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.summaries and not self.common_prefixes


# Header fields carried over when an object is copied, keyed by the
# attribute name and mapped to the CopyObject/CreateMultipartUpload parameter.
_COPYABLE_FIELDS = {
    "cache_control": "CacheControl",
    "content_disposition": "ContentDisposition",
    "content_encoding": "ContentEncoding",
    "content_language": "ContentLanguage",
    "content_type": "ContentType",
    "expires": "Expires",
    "server_side_encryption": "ServerSideEncryption",
    "sse_kms_key_id": "SSEKMSKeyId",
}


@dataclass
class ObjectMetadata:
    """Metadata about a single stored object."""

    key: str
    content_length: int = 0
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None
    cache_control: Optional[str] = None
    content_disposition: Optional[str] = None
    content_encoding: Optional[str] = None
    content_language: Optional[str] = None
    content_type: Optional[str] = None
    expires: Optional[datetime] = None
    server_side_encryption: Optional[str] = None
    sse_kms_key_id: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_head_response(cls, key: str, response: dict[str, Any]) -> "ObjectMetadata":
        return cls(
            key=key,
            content_length=int(response.get("ContentLength") or 0),
            last_modified=response.get("LastModified"),
            etag=response.get("ETag"),
            cache_control=response.get("CacheControl"),
            content_disposition=response.get("ContentDisposition"),
            content_encoding=response.get("ContentEncoding"),
            content_language=response.get("ContentLanguage"),
            content_type=response.get("ContentType"),
            expires=response.get("Expires"),
            server_side_encryption=response.get("ServerSideEncryption"),
            sse_kms_key_id=response.get("SSEKMSKeyId"),
            metadata=dict(response.get("Metadata") or {}),
        )

    def copy_arguments(self) -> dict[str, Any]:
        """Return request parameters for a copy, cloning only fields that are set.

        Derived headers such as the ETag, length or last-modified time are never
        propagated; the destination recomputes them.
        """

        arguments: dict[str, Any] = {}
        for attribute, parameter in _COPYABLE_FIELDS.items():
            value = getattr(self, attribute)
            if value is not None:
                arguments[parameter] = value
        if self.metadata:
            arguments["Metadata"] = dict(self.metadata)
        return arguments


class FileSystemStatistics:
    """Thread-safe counters of store operations."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._read_ops = 0
        self._write_ops = 0

    @property
    def read_ops(self) -> int:
        return self._read_ops

    @property
    def write_ops(self) -> int:
        return self._write_ops

    def increment_read_ops(self, count: int = 1) -> None:
        with self._lock:
            self._read_ops += count

    def increment_write_ops(self, count: int = 1) -> None:
        with self._lock:
            self._write_ops += count

    def __repr__(self) -> str:
        return f"FileSystemStatistics(read_ops={self._read_ops}, write_ops={self._write_ops})"
