"""The registry of projects that use the shared store."""

from __future__ import annotations

import contextlib
import dataclasses
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from allegro.cas import _format_time, _parse_time
from allegro.hashing import write_file_atomic

try:
    import fcntl
except ImportError:  # Windows has no flock
    fcntl = None

_log = logging.getLogger(__name__)

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


class RegistryError(Exception):
    """Raised when the project registry cannot be read, locked or written."""


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


@dataclass
class ProjectEntry:
    """One project known to the registry."""

    path: str
    last_install: datetime = _ZERO_TIME
    lock_hash: str = ""
    packages: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "ProjectEntry":
        data = _require_object(data, "project")
        packages = data.get("packages")
        if packages is None:
            packages = {}
        if not isinstance(packages, dict) or not all(
            isinstance(v, str) for v in packages.values()
        ):
            raise TypeError("field 'packages': expected an object of strings")
        return cls(
            path=_str(data, "path"),
            last_install=_parse_time(data.get("last_install")),
            lock_hash=_str(data, "lock_hash"),
            packages=dict(packages),
        )

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "last_install": _format_time(self.last_install),
            "lock_hash": self.lock_hash,
            "packages": dict(self.packages),
        }


@dataclass
class ProjectRegistry:
    """Contents of projects.json."""

    projects: list[ProjectEntry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "ProjectRegistry":
        data = _require_object(data, "registry")
        projects = data.get("projects")
        if projects is None:
            projects = []
        if not isinstance(projects, list):
            raise TypeError("field 'projects': expected a list")
        return cls(projects=[ProjectEntry.from_dict(item) for item in projects])

    def to_dict(self) -> dict:
        return {"projects": [entry.to_dict() for entry in self.projects]}


def default_registry_path() -> str:
    """~/.allegro/projects.json, or a relative fallback without a home directory."""
    try:
        home = str(Path.home())
    except (RuntimeError, KeyError):
        return os.path.join(".", ".allegro", "projects.json")
    return os.path.join(home, ".allegro", "projects.json")


def read_registry(path: str | os.PathLike) -> ProjectRegistry:
    """Read the registry; a missing file gives an empty registry."""
    try:
        with open(path, "rb") as fh:
            raw = fh.read()
    except FileNotFoundError:
        return ProjectRegistry()
    except OSError as exc:
        raise RegistryError(f"read registry: {exc}") from exc
    try:
        return ProjectRegistry.from_dict(json.loads(raw))
    except (TypeError, ValueError) as exc:
        raise RegistryError(f"corrupt projects.json: {exc}") from exc


def write_registry(path: str | os.PathLike, registry: ProjectRegistry) -> None:
    """Write the registry atomically."""
    data = json.dumps(registry.to_dict(), indent=2).encode("utf-8")
    try:
        write_file_atomic(path, data, 0o644)
    except OSError as exc:
        raise RegistryError(f"write registry: {exc}") from exc


@contextlib.contextmanager
def registry_lock(path: str | os.PathLike) -> Iterator[None]:
    """Hold an exclusive lock on projects.lock beside the registry file."""
    lock_path = os.path.join(os.path.dirname(os.fspath(path)), "projects.lock")
    if fcntl is None:
        _log.warning("file locking not available on Windows; registry access unprotected")
        yield
        return

    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_RDWR, 0o644)
    except OSError as exc:
        raise RegistryError(f"create projects lock: {exc}") from exc
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
        except OSError as exc:
            raise RegistryError(f"acquire projects lock: {exc}") from exc
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def register_project(path: str | os.PathLike, entry: ProjectEntry) -> None:
    """Add or replace a project entry, stamping it with the current time."""
    with registry_lock(path):
        registry = read_registry(path)
        stamped = dataclasses.replace(entry, last_install=datetime.now(timezone.utc))

        for index, existing in enumerate(registry.projects):
            if existing.path == stamped.path:
                registry.projects[index] = stamped
                break
        else:
            registry.projects.append(stamped)

        directory = os.path.dirname(os.fspath(path))
        if directory:
            try:
                os.makedirs(directory, exist_ok=True)
            except OSError as exc:
                raise RegistryError(f"create registry dir: {exc}") from exc
        write_registry(path, registry)