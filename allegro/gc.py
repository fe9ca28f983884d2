"""Pruning store content that no registered project uses."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterator

from allegro.cas import Manifest
from allegro.hashing import strip_hash_prefix
from allegro.registry import (
    ProjectEntry,
    RegistryError,
    read_registry,
    registry_lock,
    write_registry,
)

_log = logging.getLogger(__name__)


@dataclass
class GCResult:
    """What a garbage collection run did."""

    manifests_pruned: int = 0
    files_pruned: int = 0
    bytes_freed: int = 0
    stale_warned: int = 0
    projects_removed: int = 0

    def __str__(self) -> str:
        return (
            f"Pruned {self.manifests_pruned} manifests, {self.files_pruned} files. "
            f"Freed {self.bytes_freed // (1024 * 1024)} MiB. "
            f"{self.stale_warned} stale projects warned."
        )


class GCError(Exception):
    """Raised when garbage collection stops; carries the partial result."""

    def __init__(self, message: str, result: GCResult) -> None:
        super().__init__(message)
        self.result = result


def _walk_files(root: str) -> Iterator[str]:
    def fail(exc: OSError) -> None:
        raise exc

    for current, dirs, files in os.walk(root, onerror=fail):
        dirs.sort()
        for name in sorted(files):
            yield os.path.join(current, name)


def _project_missing(path: str) -> bool:
    try:
        os.stat(path)
    except FileNotFoundError:
        return True
    except OSError:
        return False
    return False


def _prune_manifests(packages_dir: str, referenced: set[str], result: GCResult) -> set[str]:
    hashes: set[str] = set()
    try:
        for path in _walk_files(packages_dir):
            if os.path.splitext(path)[1] != ".json":
                continue
            try:
                with open(path, "rb") as fh:
                    raw = fh.read()
            except OSError as exc:
                raise GCError(f"manifest walk: read manifest {path}: {exc}", result) from exc
            try:
                manifest = Manifest.from_dict(json.loads(raw))
            except (TypeError, ValueError) as exc:
                # Aborting keeps files that this package may still reference.
                raise GCError(
                    f"manifest walk: corrupt manifest {path}: {exc} "
                    "(aborting GC to prevent data loss)",
                    result,
                ) from exc

            if f"{manifest.name}@{manifest.version}" not in referenced:
                try:
                    os.remove(path)
                except OSError as exc:
                    _log.warning("failed to remove manifest %s: %s", path, exc)
                result.manifests_pruned += 1
            else:
                hashes.update(strip_hash_prefix(entry.hash) for entry in manifest.files)
    except OSError as exc:
        raise GCError(f"manifest walk: {exc}", result) from exc
    return hashes


def _prune_files(files_dir: str, hashes: set[str], result: GCResult) -> None:
    try:
        for path in _walk_files(files_dir):
            if os.path.basename(path) in hashes:
                continue
            result.bytes_freed += os.lstat(path).st_size
            try:
                os.remove(path)
            except OSError as exc:
                _log.warning("failed to remove CAS file %s: %s", path, exc)
            result.files_pruned += 1
    except OSError as exc:
        raise GCError(f"CAS file walk: {exc}", result) from exc


def _collect(
    store_path: str, registry_path: str, stale_days: int, dry_run: bool, result: GCResult
) -> None:
    registry = read_registry(registry_path)
    cutoff = datetime.now(timezone.utc) - timedelta(days=stale_days)
    kept: list[ProjectEntry] = []

    for project in registry.projects:
        if _project_missing(project.path):
            _log.info("removing project %s (directory no longer exists)", project.path)
            result.projects_removed += 1
            continue
        if project.last_install < cutoff:
            _log.warning(
                "stale project %s (last installed %s) — run 'allegro install' "
                "in that project to refresh",
                project.path,
                project.last_install.date().isoformat(),
            )
            result.stale_warned += 1
        kept.append(project)

    if dry_run:
        return

    registry.projects = kept
    write_registry(registry_path, registry)

    referenced = {
        f"{name}@{version}" for project in kept for name, version in project.packages.items()
    }
    hashes = _prune_manifests(os.path.join(store_path, "packages"), referenced, result)
    _prune_files(os.path.join(store_path, "files"), hashes, result)


def garbage_collect(
    store_path: str | os.PathLike,
    registry_path: str | os.PathLike,
    stale_days: int,
    dry_run: bool,
) -> GCResult:
    """Drop vanished projects, warn about stale ones, prune unused store content."""
    result = GCResult()
    store_path = os.fspath(store_path)
    registry_path = os.fspath(registry_path)
    try:
        with registry_lock(registry_path):
            _collect(store_path, registry_path, stale_days, dry_run, result)
    except RegistryError as exc:
        raise GCError(str(exc), result) from exc
    return result