from __future__ import annotations
"""Filesystem configuration and its JSON persistence."""

from dataclasses import asdict, dataclass, fields
import json
import logging
from pathlib import Path
from typing import Any, Mapping, Optional

LOGGER = logging.getLogger(__name__)

MIN_MULTIPART_SIZE = 5 * 1024 * 1024
SIZE_UNIT_FACTORS = {
    "": 1,
    "B": 1,
    "K": 1024,
    "KB": 1024,
    "M": 1024 * 1024,
    "MB": 1024 * 1024,
    "G": 1024 * 1024 * 1024,
    "GB": 1024 * 1024 * 1024,
}
TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}

# Deprecated configuration keys and the fields they feed.
DEPRECATED_KEYS = {
    "awsAccessKeyId": "legacy_access_key",
    "awsSecretAccessKey": "legacy_secret_key",
}

# Lower bounds enforced by from_mapping(); values below raise ValueError.
_MINIMUMS = {
    "max_connections": 1,
    "max_error_retries": 0,
    "establish_timeout": 0,
    "socket_timeout": 0,
    "max_paging_keys": 1,
    "block_size": 1,
    "readahead_range": 0,
    "core_threads": 0,
    "max_threads": 0,
    "keepalive_time": 0,
    "max_total_tasks": 1,
    "purge_existing_multipart_age": 0,
}
_SIZE_FIELDS = {"multipart_size", "multipart_threshold", "block_size", "readahead_range"}


@dataclass
class FileSystemSettings:
    """Configuration consumed by :class:`~s3a_filesystem.filesystem.S3FileSystem`."""

    max_connections: int = 15
    secure_connections: bool = True
    max_error_retries: int = 10
    establish_timeout: int = 50000
    socket_timeout: int = 200000
    signing_algorithm: str = ""
    proxy_host: str = ""
    proxy_port: int = -1
    proxy_username: Optional[str] = None
    proxy_password: Optional[str] = None
    user_agent_prefix: str = ""
    credentials_provider: str = ""
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    legacy_access_key: Optional[str] = None
    legacy_secret_key: Optional[str] = None
    secret_store_service: str = "pys3a"
    endpoint: str = ""
    region: Optional[str] = None
    path_style_access: bool = False
    max_paging_keys: int = 5000
    multipart_size: int = 100 * 1024 * 1024
    multipart_threshold: int = 2147483647
    block_size: int = 32 * 1024 * 1024
    multi_object_delete: bool = True
    readahead_range: int = 64 * 1024
    core_threads: int = 15
    max_threads: int = 256
    keepalive_time: int = 60
    max_total_tasks: int = 1000
    purge_existing_multipart: bool = False
    purge_existing_multipart_age: int = 14400
    server_side_encryption_algorithm: Optional[str] = None
    canned_acl: str = ""
    fast_upload: bool = False
    buffer_dir: Optional[str] = None

    def __post_init__(self) -> None:
        if self.multipart_size < MIN_MULTIPART_SIZE:
            LOGGER.error("multipart_size must be at least 5 MB")
            self.multipart_size = MIN_MULTIPART_SIZE
        if self.multipart_threshold < MIN_MULTIPART_SIZE:
            LOGGER.error("multipart_threshold must be at least 5 MB")
            self.multipart_threshold = MIN_MULTIPART_SIZE

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "FileSystemSettings":
        """Build settings from a flat key/value mapping.

        Raises:
            ValueError: when a value cannot be parsed or is below its minimum.
        """

        known = {item.name: item for item in fields(cls)}
        values: dict[str, Any] = {}
        for key, raw in mapping.items():
            name = DEPRECATED_KEYS.get(key, key)
            if name not in known:
                LOGGER.debug("Ignoring unknown setting '%s'", key)
                continue
            if raw is None:
                continue
            default = known[name].default
            values[name] = _coerce(name, raw, default)

        for name, minimum in _MINIMUMS.items():
            if values.get(name) is not None and values[name] < minimum:
                raise ValueError(
                    f"Value of {name}: {values[name]} is below the minimum value {minimum}"
                )
        return cls(**values)

    def to_mapping(self) -> dict[str, Any]:
        return asdict(self)


def parse_size(value: object) -> int:
    """Parse ``value`` as a byte count, accepting K/M/G suffixes."""

    if isinstance(value, bool):
        raise ValueError(f"Invalid size: {value!r}")
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    digits = text.rstrip("KMGB")
    unit = text[len(digits):]
    factor = SIZE_UNIT_FACTORS.get(unit)
    if factor is None:
        raise ValueError(f"Invalid size unit in {value!r}")
    try:
        amount = int(digits.strip())
    except ValueError:
        raise ValueError(f"Invalid size: {value!r}") from None
    return amount * factor


def parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean: {value!r}")


def _coerce(name: str, raw: object, default: object) -> Any:
    try:
        if name in _SIZE_FIELDS:
            return parse_size(raw)
        if isinstance(default, bool):
            return parse_bool(raw)
        if isinstance(default, int):
            return int(str(raw).strip())
    except ValueError as exc:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from exc
    return str(raw).strip()


class SettingsStorage:
    """JSON-backed persistence for :class:`FileSystemSettings`."""

    def __init__(self, storage_path: str | Path | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".pys3a_settings.json"
        self._path = Path(storage_path)

    def load(self) -> FileSystemSettings:
        """Load settings, falling back to defaults for a missing or corrupt file.

        Raises:
            ValueError: when the file holds a value that fails validation.
        """

        if not self._path.exists():
            return FileSystemSettings()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            LOGGER.warning("Unreadable settings file %s, using defaults", self._path)
            return FileSystemSettings()
        if not isinstance(data, dict):
            return FileSystemSettings()
        return FileSystemSettings.from_mapping(data)

    def save(self, settings: FileSystemSettings) -> None:
        payload = settings.to_mapping()
        # Secrets belong in the keychain, never in the settings file.
        for name in ("access_key", "secret_key", "legacy_access_key", "legacy_secret_key", "proxy_password"):
            payload.pop(name, None)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
