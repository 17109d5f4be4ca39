from __future__ import annotations
"""Object-store adapter over a boto3 S3 client."""
from contextlib import contextmanager
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version
import logging
from typing import Any, BinaryIO, Callable, Iterator, Optional, Protocol, Union

import boto3
from botocore import UNSIGNED
from botocore.client import Config
from botocore.credentials import Credentials
from botocore.exceptions import BotoCoreError, ClientError

from .errors import BackendError, BackendRejectedError, NotFoundError
from .models import FileSystemStatistics, ListingPage, ObjectMetadata, ObjectSummary
from .settings import FileSystemSettings

LOGGER = logging.getLogger(__name__)

DIST_NAME = "pys3a"
MAX_ENTRIES_TO_DELETE = 1000
NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket", "NoSuchUpload"}

Body = Union[bytes, BinaryIO]


class ObjectStore(Protocol):
    """Primitive operations the filesystem emulation is built from."""

    bucket: str
    statistics: FileSystemStatistics

    def head_object(self, key: str) -> ObjectMetadata: ...

    def list_objects(
        self,
        prefix: str,
        *,
        delimiter: str | None = None,
        max_keys: int = 1000,
        continuation_token: str | None = None,
    ) -> ListingPage: ...

    def get_object(self, key: str, *, start: int = 0, end: int | None = None) -> Any: ...

    def put_object(self, key: str, body: Body = b"", *, content_length: int | None = None) -> None: ...

    def delete_object(self, key: str) -> None: ...

    def delete_objects(self, keys: list[str]) -> None: ...

    def create_multipart_upload(self, key: str, metadata: dict[str, Any] | None = None) -> str: ...

    def upload_part(self, key: str, upload_id: str, part_number: int, body: Body) -> str: ...

    def complete_multipart_upload(self, key: str, upload_id: str, parts: list[tuple[int, str]]) -> None: ...

    def abort_multipart_upload(self, key: str, upload_id: str) -> None: ...

    def abort_stale_multipart_uploads(self, before: datetime) -> int: ...


def package_version() -> str:
    try:
        return version(DIST_NAME)
    except PackageNotFoundError:
        return "0"


def _status_code(exc: ClientError) -> Optional[int]:
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return int(status) if status is not None else None


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code") or "")


def is_not_found(exc: ClientError) -> bool:
    status = _status_code(exc)
    if status is not None:
        return status == 404
    return _error_code(exc) in NOT_FOUND_CODES


def _log_rejection(target: str, exc: ClientError) -> None:
    error = exc.response.get("Error", {})
    metadata = exc.response.get("ResponseMetadata", {})
    LOGGER.info("%s: request was rejected by the store: %s", target, exc)
    LOGGER.info("HTTP Status Code: %s", metadata.get("HTTPStatusCode"))
    LOGGER.info("Error Code: %s", error.get("Code"))
    LOGGER.info("Error Message: %s", error.get("Message"))
    LOGGER.info("Request ID: %s", metadata.get("RequestId"))


@contextmanager
def translate_errors(operation: str, target: str) -> Iterator[None]:
    """Map botocore failures onto the filesystem error taxonomy.

    404 becomes :class:`NotFoundError`, any other 4xx becomes
    :class:`BackendRejectedError` (logged), everything else :class:`BackendError`.
    """

    try:
        yield
    except ClientError as exc:
        status = _status_code(exc)
        code = _error_code(exc)
        if is_not_found(exc):
            raise NotFoundError(f"{operation} {target}: not found") from exc
        if status is not None and 400 <= status < 500:
            _log_rejection(target, exc)
            raise BackendRejectedError(
                f"{operation} {target}: {exc}", status_code=status, error_code=code
            ) from exc
        raise BackendError(f"{operation} {target}: {exc}", status_code=status, error_code=code) from exc
    except BotoCoreError as exc:
        LOGGER.info(
            "%s: the client could not communicate with the store, "
            "such as not being able to access the network: %s",
            target,
            exc,
        )
        raise BackendError(f"{operation} {target}: {exc}") from exc


def build_client_config(
    settings: FileSystemSettings,
    *,
    anonymous: bool = False,
) -> Config:
    """Translate connection settings into a botocore client configuration.

    Raises:
        ValueError: when the proxy settings are inconsistent.
    """

    options: dict[str, Any] = {
        "max_pool_connections": settings.max_connections,
        "retries": {"max_attempts": settings.max_error_retries, "mode": "standard"},
        "connect_timeout": settings.establish_timeout / 1000.0,
        "read_timeout": settings.socket_timeout / 1000.0,
        "user_agent_extra": _user_agent(settings),
    }
    if anonymous:
        options["signature_version"] = UNSIGNED
    elif settings.signing_algorithm.strip():
        LOGGER.debug("Signer override = %s", settings.signing_algorithm)
        options["signature_version"] = settings.signing_algorithm.strip()
    else:
        options["signature_version"] = "s3v4"
    proxies = _proxy_settings(settings)
    if proxies:
        options["proxies"] = proxies
    if settings.path_style_access:
        LOGGER.debug("Enabling path style access!")
        options["s3"] = {"addressing_style": "path"}
    if settings.region:
        options["region_name"] = settings.region
    return Config(**options)


def _user_agent(settings: FileSystemSettings) -> str:
    user_agent = f"{DIST_NAME}/{package_version()}"
    prefix = settings.user_agent_prefix.strip()
    if prefix:
        user_agent = f"{prefix}, {user_agent}"
    LOGGER.debug("Using User-Agent: %s", user_agent)
    return user_agent


def _proxy_settings(settings: FileSystemSettings) -> dict[str, str]:
    host = settings.proxy_host.strip()
    port = settings.proxy_port
    if not host:
        if port >= 0:
            message = "Proxy error: proxy_port set without proxy_host"
            LOGGER.error(message)
            raise ValueError(message)
        return {}
    if port < 0:
        port = 443 if settings.secure_connections else 80
        LOGGER.warning("Proxy host set without port. Using default %d", port)
    username = settings.proxy_username
    password = settings.proxy_password
    if (username is None) != (password is None):
        message = "Proxy error: proxy_username or proxy_password set without the other."
        LOGGER.error(message)
        raise ValueError(message)
    credentials = f"{username}:{password}@" if username is not None else ""
    url = f"http://{credentials}{host}:{port}"
    LOGGER.debug("Using proxy server %s:%s as user %s", host, port, username)
    return {"http": url, "https": url}


def endpoint_url(settings: FileSystemSettings) -> str | None:
    endpoint = settings.endpoint.strip()
    if not endpoint:
        return None
    if "://" not in endpoint:
        scheme = "https" if settings.secure_connections else "http"
        endpoint = f"{scheme}://{endpoint}"
    return endpoint


def create_s3_client(
    settings: FileSystemSettings,
    credentials: Credentials | None,
    client_factory: Callable[..., object] | None = None,
):
    """Create the S3 client; ``credentials`` of None produces an unsigned client.

    Raises:
        ValueError: on an unusable endpoint or proxy configuration.
    """

    factory = client_factory or boto3.client
    kwargs: dict[str, Any] = {
        "use_ssl": settings.secure_connections,
        "config": build_client_config(settings, anonymous=credentials is None),
    }
    endpoint = endpoint_url(settings)
    if endpoint:
        kwargs["endpoint_url"] = endpoint
    if credentials is not None:
        frozen = credentials.get_frozen_credentials()
        kwargs["aws_access_key_id"] = frozen.access_key
        kwargs["aws_secret_access_key"] = frozen.secret_key
        if frozen.token:
            kwargs["aws_session_token"] = frozen.token
    try:
        return factory("s3", **kwargs)
    except ValueError as exc:
        message = f"Incorrect endpoint: {exc}"
        LOGGER.error(message)
        raise ValueError(message) from exc


class S3ObjectStore:
    """Thin, typed wrapper over the boto3 client calls for one bucket."""

    def __init__(
        self,
        client,
        bucket: str,
        *,
        statistics: FileSystemStatistics | None = None,
        server_side_encryption: str | None = None,
        canned_acl: str | None = None,
    ):
        self._client = client
        self.bucket = bucket
        self.statistics = statistics or FileSystemStatistics()
        self._server_side_encryption = (server_side_encryption or "").strip() or None
        self._canned_acl = (canned_acl or "").strip() or None

    @property
    def client(self):
        return self._client

    def write_arguments(self, metadata: dict[str, Any] | None = None) -> dict[str, Any]:
        arguments = dict(metadata or {})
        if self._server_side_encryption:
            arguments["ServerSideEncryption"] = self._server_side_encryption
        if self._canned_acl:
            arguments["ACL"] = self._canned_acl
        return arguments

    def bucket_exists(self) -> bool:
        """Return whether the bucket exists; a forbidden bucket still exists."""

        try:
            with translate_errors("HeadBucket", self.bucket):
                self._client.head_bucket(Bucket=self.bucket)
        except NotFoundError:
            return False
        except BackendRejectedError as exc:
            if exc.status_code != 403:
                raise
            LOGGER.debug("Bucket %s exists but access is forbidden", self.bucket)
        return True

    def head_object(self, key: str) -> ObjectMetadata:
        with translate_errors("HeadObject", key):
            response = self._client.head_object(Bucket=self.bucket, Key=key)
        self.statistics.increment_read_ops()
        return ObjectMetadata.from_head_response(key, response)

    def list_objects(
        self,
        prefix: str,
        *,
        delimiter: str | None = None,
        max_keys: int = 1000,
        continuation_token: str | None = None,
    ) -> ListingPage:
        list_params: dict[str, Any] = {"Bucket": self.bucket, "MaxKeys": max_keys}
        if prefix:
            list_params["Prefix"] = prefix
        if delimiter:
            list_params["Delimiter"] = delimiter
        if continuation_token:
            list_params["ContinuationToken"] = continuation_token

        with translate_errors("ListObjectsV2", prefix or "/"):
            response = self._client.list_objects_v2(**list_params)
        self.statistics.increment_read_ops()
        summaries = [
            ObjectSummary(
                key=obj["Key"],
                size=int(obj.get("Size") or 0),
                last_modified=obj.get("LastModified"),
            )
            for obj in response.get("Contents", [])
        ]
        prefixes = [common["Prefix"] for common in response.get("CommonPrefixes", [])]
        truncated = bool(response.get("IsTruncated", False))
        return ListingPage(
            summaries=summaries,
            common_prefixes=prefixes,
            is_truncated=truncated,
            continuation_token=response.get("NextContinuationToken") if truncated else None,
        )

    def get_object(self, key: str, *, start: int = 0, end: int | None = None):
        """Return a streaming body for ``key`` from byte ``start`` (to ``end``, inclusive)."""

        request: dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        if start or end is not None:
            request["Range"] = f"bytes={start}-{'' if end is None else end}"
        with translate_errors("GetObject", key):
            response = self._client.get_object(**request)
        self.statistics.increment_read_ops()
        return response["Body"]

    def put_object(self, key: str, body: Body = b"", *, content_length: int | None = None) -> None:
        request = self.write_arguments()
        request.update({"Bucket": self.bucket, "Key": key, "Body": body})
        if content_length is not None:
            request["ContentLength"] = content_length
        LOGGER.debug("Put object %s", key)
        with translate_errors("PutObject", key):
            self._client.put_object(**request)
        self.statistics.increment_write_ops()

    def delete_object(self, key: str) -> None:
        LOGGER.debug("Delete object %s", key)
        with translate_errors("DeleteObject", key):
            self._client.delete_object(Bucket=self.bucket, Key=key)
        self.statistics.increment_write_ops()

    def delete_objects(self, keys: list[str]) -> None:
        """Delete up to :data:`MAX_ENTRIES_TO_DELETE` keys in one request.

        Raises:
            BackendRejectedError: when the store reports per-key failures.
        """

        if not keys:
            return
        if len(keys) > MAX_ENTRIES_TO_DELETE:
            raise ValueError(f"Cannot delete more than {MAX_ENTRIES_TO_DELETE} keys per request")
        request = {
            "Bucket": self.bucket,
            "Delete": {"Objects": [{"Key": key} for key in keys], "Quiet": True},
        }
        LOGGER.debug("Delete %d objects", len(keys))
        with translate_errors("DeleteObjects", keys[0]):
            response = self._client.delete_objects(**request)
        self.statistics.increment_write_ops()
        errors = response.get("Errors") or []
        if errors:
            failed = ", ".join(f"{error.get('Key')} ({error.get('Code')})" for error in errors)
            raise BackendRejectedError(
                f"DeleteObjects failed for {len(errors)} key(s): {failed}",
                error_code=errors[0].get("Code"),
            )

    def create_multipart_upload(self, key: str, metadata: dict[str, Any] | None = None) -> str:
        request = self.write_arguments(metadata)
        request.update({"Bucket": self.bucket, "Key": key})
        LOGGER.debug("Create multipart upload to %s", key)
        with translate_errors("CreateMultipartUpload", key):
            response = self._client.create_multipart_upload(**request)
        return response["UploadId"]

    def upload_part(self, key: str, upload_id: str, part_number: int, body: Body) -> str:
        LOGGER.debug("Upload part %d of %s to %s", part_number, upload_id, key)
        with translate_errors("UploadPart", key):
            response = self._client.upload_part(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=body,
            )
        self.statistics.increment_write_ops()
        return response["ETag"]

    def complete_multipart_upload(self, key: str, upload_id: str, parts: list[tuple[int, str]]) -> None:
        ordered = sorted(parts)
        LOGGER.debug("Complete multipart upload %s to %s with %d part(s)", upload_id, key, len(ordered))
        with translate_errors("CompleteMultipartUpload", key):
            self._client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={
                    "Parts": [{"PartNumber": number, "ETag": etag} for number, etag in ordered]
                },
            )
        self.statistics.increment_write_ops()

    def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        LOGGER.debug("Abort multipart upload %s to %s", upload_id, key)
        with translate_errors("AbortMultipartUpload", key):
            self._client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)

    def abort_stale_multipart_uploads(self, before: datetime) -> int:
        """Abort every multipart upload initiated before ``before``; return the count."""

        aborted = 0
        request: dict[str, Any] = {"Bucket": self.bucket}
        while True:
            with translate_errors("ListMultipartUploads", self.bucket):
                response = self._client.list_multipart_uploads(**request)
            self.statistics.increment_read_ops()
            for upload in response.get("Uploads", []):
                initiated = upload.get("Initiated")
                if initiated is not None and initiated < before:
                    self.abort_multipart_upload(upload["Key"], upload["UploadId"])
                    aborted += 1
            if not response.get("IsTruncated"):
                break
            request["KeyMarker"] = response.get("NextKeyMarker")
            request["UploadIdMarker"] = response.get("NextUploadIdMarker")
        LOGGER.debug("Aborted %d stale multipart upload(s) in %s", aborted, self.bucket)
        return aborted

    def close(self) -> None:
        close = getattr(self._client, "close", None)
        if callable(close):
            close()
