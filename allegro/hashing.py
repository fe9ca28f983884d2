"""Content hashing, atomic writes and store location."""

from __future__ import annotations

import contextlib
import hashlib
import os
import tempfile
from pathlib import Path

_HASH_PREFIX = "sha256:"
_CHUNK = 1 << 16


def hash_file(path: str | os.PathLike) -> str:
    """SHA-256 hex digest of a file's content."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def hash_bytes(data: bytes) -> str:
    """SHA-256 hex digest of a byte string."""
    return hashlib.sha256(data).hexdigest()


def shard_prefix(hash: str) -> str:
    """The first two characters of a hash, used as the shard directory."""
    return hash[:2]


def strip_hash_prefix(value: str) -> str:
    """Remove a leading "sha256:" from a manifest hash value."""
    if len(value) > len(_HASH_PREFIX) and value.startswith(_HASH_PREFIX):
        return value[len(_HASH_PREFIX):]
    return value


def write_file_atomic(path: str | os.PathLike, data: bytes, perm: int) -> None:
    """Write data through a synced temporary file renamed over path."""
    path = os.fspath(path)
    directory = os.path.dirname(path) or "."
    fd, tmp_path = tempfile.mkstemp(
        prefix=os.path.basename(path), suffix=".tmp", dir=directory
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_path, perm)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.remove(tmp_path)
        raise


def resolve_store_path(flag_value: str, env_value: str) -> str:
    """Store directory: flag value, then environment value, then ~/.allegro/store."""
    if flag_value:
        return flag_value
    if env_value:
        return env_value
    try:
        home = str(Path.home())
    except (RuntimeError, KeyError):
        return os.path.join(".", ".allegro", "store")
    return os.path.join(home, ".allegro", "store")