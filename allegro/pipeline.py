"""Install planning and the steps that put package archives into the store."""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator

from allegro.cas import FileEntry, Manifest, Store
from allegro.extract import (
    EmptyArchiveError,
    ExtractError,
    extract_by_type,
    strip_top_level_dir,
)
from allegro.hashing import hash_bytes, hash_file
from allegro.lockfile import Package

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SkippedPackage:
    """A package left out of the install, with the reason why."""

    name: str
    reason: str


@dataclass
class InstallPlan:
    """Which packages to download, which are cached and which are skipped."""

    new_packages: list[Package] = field(default_factory=list)
    cached_packages: list[Package] = field(default_factory=list)
    skipped_packages: list[SkippedPackage] = field(default_factory=list)
    all_packages: list[Package] = field(default_factory=list)


def build_plan(store: Store, packages: Iterable[Package]) -> InstallPlan:
    """Sort packages into new, cached and skipped ones."""
    plan = InstallPlan()
    for pkg in packages:
        if pkg.dist is None:
            plan.skipped_packages.append(SkippedPackage(pkg.name, "dist is null"))
            continue
        if pkg.dist.type == "path":
            plan.skipped_packages.append(SkippedPackage(pkg.name, "dist type is path"))
            continue
        plan.all_packages.append(pkg)
        if store.manifest_exists(pkg.name, pkg.version):
            plan.cached_packages.append(pkg)
        else:
            plan.new_packages.append(pkg)
    return plan


def has_shebang(path: str | os.PathLike) -> bool:
    """True if the file starts with "#!"."""
    try:
        with open(path, "rb") as fh:
            return fh.read(2) == b"#!"
    except OSError:
        return False


def _walk_files(root: str) -> Iterator[str]:
    """Regular files under root in lexical path order."""
    with os.scandir(root) as it:
        entries = sorted(it, key=lambda entry: entry.name)
    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            yield from _walk_files(entry.path)
        else:
            yield entry.path


def store_extracted_files(
    store: Store, directory: str | os.PathLike, package: Package, archive_data: bytes
) -> Manifest:
    """Move every extracted file into the store and describe them in a manifest.

    A file is executable when the package declares it as a bin file or when
    it starts with a shebang; archive permission bits are not trusted.
    """
    directory = os.fspath(directory)
    bin_files = {os.path.normpath(entry) for entry in package.bin}
    manifest = Manifest(
        name=package.name,
        version=package.version,
        dist_hash="sha256:" + hash_bytes(archive_data),
        files=[],
        stored_at=datetime.now(timezone.utc),
    )

    for path in _walk_files(directory):
        rel_path = os.path.relpath(path, directory)
        size = os.stat(path).st_size
        digest = hash_file(path)
        executable = os.path.normpath(rel_path) in bin_files or has_shebang(path)
        store.store_file(path, digest, executable)
        manifest.files.append(
            FileEntry(path=rel_path, hash="sha256:" + digest, size=size, executable=executable)
        )
    return manifest


def extract_package(store: Store, data: bytes, package: Package) -> Manifest:
    """Extract a downloaded archive, store its files and write its manifest."""
    if package.dist is None:
        raise ExtractError(f"cannot extract {package.name}: no dist info")

    os.makedirs(store.tmp_dir(), exist_ok=True)
    tmp_dir = tempfile.mkdtemp(dir=store.tmp_dir())
    try:
        try:
            extract_by_type(data, package.dist.type, tmp_dir, package.name)
        except ExtractError as exc:
            raise ExtractError(
                f"archive extraction failed for {package.name}: {exc}"
            ) from exc

        try:
            strip_top_level_dir(tmp_dir)
        except EmptyArchiveError as exc:
            raise EmptyArchiveError(
                f"archive extraction failed for {package.name}: {exc}"
            ) from exc
        except (ExtractError, OSError) as exc:
            raise ExtractError(f"strip top-level for {package.name}: {exc}") from exc

        manifest = store_extracted_files(store, tmp_dir, package, data)
        store.write_manifest(manifest)
        return manifest
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)


def atomic_swap(vendor_dir: str | os.PathLike, vendor_tmp: str | os.PathLike) -> None:
    """Replace vendor_dir with vendor_tmp, restoring the old tree on failure."""
    vendor_dir = os.fspath(vendor_dir)
    vendor_tmp = os.fspath(vendor_tmp)
    vendor_old = vendor_dir + ".allegro.old"

    shutil.rmtree(vendor_old, ignore_errors=True)

    if os.path.exists(vendor_dir):
        try:
            os.rename(vendor_dir, vendor_old)
        except OSError as exc:
            raise OSError(exc.errno, f"rename vendor to old: {exc}") from exc

    try:
        os.rename(vendor_tmp, vendor_dir)
    except OSError as exc:
        if os.path.exists(vendor_old):
            try:
                os.rename(vendor_old, vendor_dir)
            except OSError as rb_exc:
                _log.warning("failed to restore old vendor: %s", rb_exc)
        raise OSError(exc.errno, f"rename tmp to vendor: {exc}") from exc

    shutil.rmtree(vendor_old, ignore_errors=True)


def read_composer_json(project_dir: str | os.PathLike) -> dict[str, Any]:
    """The project's composer.json as a dict, or an empty dict if unreadable."""
    path = os.path.join(os.fspath(project_dir), "composer.json")
    try:
        with open(path, "rb") as fh:
            data = json.loads(fh.read())
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}