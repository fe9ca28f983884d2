"""The content-addressable store of package files and manifests."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from allegro.hashing import shard_prefix, write_file_atomic

CURRENT_STORE_VERSION = 1

_log = logging.getLogger(__name__)

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_TIME_RE = re.compile(
    r"(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})"
)


class StoreError(Exception):
    """Raised when the store cannot be read or written."""


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset() or timedelta(0)
    if offset == timedelta(0):
        return text + "Z"
    minutes = int(offset.total_seconds()) // 60
    sign = "+" if minutes >= 0 else "-"
    hours, mins = divmod(abs(minutes), 60)
    return f"{text}{sign}{hours:02d}:{mins:02d}"


def _parse_time(value: Any) -> datetime:
    if value is None:
        return _ZERO_TIME
    if not isinstance(value, str):
        raise TypeError(f"timestamp: expected a string, got {type(value).__name__}")
    match = _TIME_RE.fullmatch(value)
    if not match:
        raise ValueError(f"invalid timestamp {value!r}")
    base, fraction, zone = match.groups()
    parsed = datetime.strptime(base, "%Y-%m-%dT%H:%M:%S")
    if fraction:
        parsed = parsed.replace(microsecond=int(fraction[:6].ljust(6, "0")))
    if zone == "Z":
        tz = timezone.utc
    else:
        sign = 1 if zone[0] == "+" else -1
        tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
    return parsed.replace(tzinfo=tz)


def _require_object(data: Any, what: str) -> dict:
    if not isinstance(data, dict):
        raise TypeError(f"{what}: expected a JSON object, got {type(data).__name__}")
    return data


def _str(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"field {key!r}: expected a string")
    return value


def _int(data: dict, key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"field {key!r}: expected an integer")
    return value


def _bool(data: dict, key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise TypeError(f"field {key!r}: expected a boolean")
    return value


@dataclass
class FileEntry:
    """One file of a package manifest."""

    path: str
    hash: str
    size: int = 0
    executable: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "FileEntry":
        data = _require_object(data, "file entry")
        return cls(
            path=_str(data, "path"),
            hash=_str(data, "hash"),
            size=_int(data, "size"),
            executable=_bool(data, "executable"),
        )

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "hash": self.hash,
            "size": self.size,
            "executable": self.executable,
        }


@dataclass
class Manifest:
    """The list of files stored for one package version."""

    name: str
    version: str
    dist_hash: str = ""
    files: list[FileEntry] = field(default_factory=list)
    stored_at: datetime = _ZERO_TIME

    @classmethod
    def from_dict(cls, data: dict) -> "Manifest":
        data = _require_object(data, "manifest")
        files = data.get("files")
        if files is None:
            files = []
        if not isinstance(files, list):
            raise TypeError("field 'files': expected a list")
        return cls(
            name=_str(data, "name"),
            version=_str(data, "version"),
            dist_hash=_str(data, "dist_hash"),
            files=[FileEntry.from_dict(item) for item in files],
            stored_at=_parse_time(data.get("stored_at")),
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "dist_hash": self.dist_hash,
            "files": [entry.to_dict() for entry in self.files],
            "stored_at": _format_time(self.stored_at),
        }


@dataclass
class StoreMetadata:
    """Contents of allegro.json beside the store."""

    store_version: int
    created_at: datetime = _ZERO_TIME

    @classmethod
    def from_dict(cls, data: dict) -> "StoreMetadata":
        data = _require_object(data, "store metadata")
        return cls(
            store_version=_int(data, "store_version"),
            created_at=_parse_time(data.get("created_at")),
        )

    def to_dict(self) -> dict:
        return {
            "store_version": self.store_version,
            "created_at": _format_time(self.created_at),
        }


def _write_json_atomic(path: str, value: dict) -> None:
    data = json.dumps(value, indent=2).encode("utf-8")
    write_file_atomic(path, data, 0o644)


@dataclass
class Store:
    """A content-addressable store rooted at a directory."""

    root: str

    def __post_init__(self) -> None:
        self.root = os.fspath(self.root)

    def ensure_directories(self) -> None:
        """Create files/, packages/ and tmp/ under the root."""
        for sub in ("files", "packages", "tmp"):
            directory = os.path.join(self.root, sub)
            try:
                os.makedirs(directory, exist_ok=True)
            except OSError as exc:
                raise StoreError(f"create store dir {directory}: {exc}") from exc

    def metadata_path(self) -> str:
        """Path of allegro.json, next to the store root."""
        return os.path.join(os.path.dirname(self.root), "allegro.json")

    def ensure_metadata(self) -> None:
        """Create allegro.json if missing; reject stores newer than supported."""
        path = self.metadata_path()
        try:
            with open(path, "rb") as fh:
                raw = fh.read()
        except FileNotFoundError:
            meta = StoreMetadata(CURRENT_STORE_VERSION, datetime.now(timezone.utc))
            _write_json_atomic(path, meta.to_dict())
            return
        except OSError as exc:
            raise StoreError(f"read store metadata: {exc}") from exc

        try:
            meta = StoreMetadata.from_dict(json.loads(raw))
        except (TypeError, ValueError) as exc:
            raise StoreError(f"parse store metadata: {exc}") from exc
        if meta.store_version > CURRENT_STORE_VERSION:
            raise StoreError(
                f"store version {meta.store_version} is newer than this binary supports "
                f"(max {CURRENT_STORE_VERSION}); upgrade allegro"
            )

    def file_path(self, hash: str) -> str:
        """Store path for a content hash."""
        return os.path.join(self.root, "files", shard_prefix(hash), hash)

    def file_exists(self, hash: str) -> bool:
        return os.path.exists(self.file_path(hash))

    def store_file(self, src_path: str | os.PathLike, hash: str, executable: bool) -> None:
        """Move a file into the store with read-only permissions."""
        src_path = os.fspath(src_path)
        if self.file_exists(hash):
            return
        dst = self.file_path(hash)
        try:
            os.makedirs(os.path.dirname(dst), exist_ok=True)
        except OSError as exc:
            raise StoreError(f"create shard dir: {exc}") from exc

        # Permissions go on before the rename so the file lands read-only.
        try:
            os.chmod(src_path, 0o555 if executable else 0o444)
        except OSError as exc:
            raise StoreError(f"chmod src file: {exc}") from exc

        try:
            os.rename(src_path, dst)
        except OSError as exc:
            if self.file_exists(hash):
                # Another writer stored identical content first.
                try:
                    os.remove(src_path)
                except OSError as rm_exc:
                    _log.warning("failed to clean up temp file %s: %s", src_path, rm_exc)
                return
            raise StoreError(f"store file rename: {exc}") from exc

    def manifest_path(self, name: str, version: str) -> str:
        return os.path.join(self.root, "packages", name, version + ".json")

    def manifest_exists(self, name: str, version: str) -> bool:
        return os.path.exists(self.manifest_path(name, version))

    def read_manifest(self, name: str, version: str) -> Manifest:
        try:
            with open(self.manifest_path(name, version), "rb") as fh:
                raw = fh.read()
        except OSError as exc:
            raise StoreError(f"read manifest {name}@{version}: {exc}") from exc
        try:
            return Manifest.from_dict(json.loads(raw))
        except (TypeError, ValueError) as exc:
            raise StoreError(f"parse manifest {name}@{version}: {exc}") from exc

    def write_manifest(self, manifest: Manifest) -> None:
        """Write a manifest atomically."""
        path = self.manifest_path(manifest.name, manifest.version)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
        except OSError as exc:
            raise StoreError(f"create manifest dir: {exc}") from exc
        _write_json_atomic(path, manifest.to_dict())

    def tmp_dir(self) -> str:
        return os.path.join(self.root, "tmp")