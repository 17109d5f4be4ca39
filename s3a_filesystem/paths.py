from __future__ import annotations
"""Mapping between hierarchical paths and object-store keys."""
import posixpath
from urllib.parse import urlsplit

SEPARATOR = "/"
ROOT = "/"


def normalize_path(path: str) -> str:
    """Return ``path`` as an absolute, normalized path without a trailing separator."""

    if "://" in path:
        path = urlsplit(path).path or ROOT
    normalized = posixpath.normpath(SEPARATOR + path.lstrip(SEPARATOR))
    # normpath keeps a leading double slash.
    return SEPARATOR + normalized.lstrip(SEPARATOR)


def parent(path: str) -> str | None:
    normalized = normalize_path(path)
    if normalized == ROOT:
        return None
    return posixpath.dirname(normalized)


def basename(path: str) -> str:
    return posixpath.basename(normalize_path(path))


def child(path: str, name: str) -> str:
    cleaned = name.strip().strip(SEPARATOR)
    if not cleaned:
        raise ValueError("Child name cannot be empty")
    return normalize_path(posixpath.join(normalize_path(path), cleaned))


def is_root(path: str) -> bool:
    return normalize_path(path) == ROOT


class PathTranslator:
    """Converts paths to keys and back, resolving relative paths."""

    def __init__(self, bucket: str, working_directory: str = ROOT, scheme: str = "s3a"):
        self._bucket = bucket
        self._scheme = scheme
        self._working_directory = normalize_path(working_directory)

    @property
    def working_directory(self) -> str:
        return self._working_directory

    @working_directory.setter
    def working_directory(self, path: str) -> None:
        self._working_directory = self.absolute(path)

    def absolute(self, path: str) -> str:
        if "://" in path or path.startswith(SEPARATOR):
            return normalize_path(path)
        return normalize_path(posixpath.join(self._working_directory, path))

    def path_to_key(self, path: str) -> str:
        return self.absolute(path)[1:]

    def key_to_path(self, key: str) -> str:
        return normalize_path(SEPARATOR + key)

    def qualify(self, path: str) -> str:
        return f"{self._scheme}://{self._bucket}{self.absolute(path)}"
