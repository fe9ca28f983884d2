"""Checking a vendor tree against the manifests in the store."""

from __future__ import annotations

import os
import stat
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping, Optional

from allegro.cas import FileEntry, Store, StoreError
from allegro.hashing import hash_file, strip_hash_prefix


class IssueType(str, Enum):
    """Kinds of verification problems."""

    MISSING = "missing"
    MODIFIED = "modified"
    PERMISSION = "permission"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class VerifyIssue:
    """One problem found in the vendor tree."""

    package: str
    file: str
    type: IssueType
    detail: str
    executable: bool = False


@dataclass
class VerifyResult:
    """The outcome of a verification run."""

    total_packages: int = 0
    total_files: int = 0
    issues: list[VerifyIssue] = field(default_factory=list)
    ok_packages: int = 0
    fail_packages: int = 0


def _check_file(
    vendor_dir: str, package: str, entry: FileEntry, reg_perm: int, exec_perm: int
) -> Optional[VerifyIssue]:
    path = os.path.join(vendor_dir, package, entry.path)

    def issue(kind: IssueType, detail: str) -> VerifyIssue:
        return VerifyIssue(package, entry.path, kind, detail, entry.executable)

    try:
        info = os.stat(path)
    except OSError:
        return issue(IssueType.MISSING, "file not found")

    expected_hash = strip_hash_prefix(entry.hash)
    try:
        actual_hash = hash_file(path)
    except OSError as exc:
        return issue(IssueType.MODIFIED, f"hash error: {exc}")
    if actual_hash != expected_hash:
        return issue(
            IssueType.MODIFIED, f"expected {expected_hash[:8]}, got {actual_hash[:8]}"
        )

    expected_perm = exec_perm if entry.executable else reg_perm
    actual_perm = stat.S_IMODE(info.st_mode) & 0o777
    if actual_perm != expected_perm:
        return issue(IssueType.PERMISSION, f"expected {expected_perm:o}, got {actual_perm:o}")
    return None


def verify_vendor(
    vendor_dir: str | os.PathLike,
    store: Store,
    link_strategy: str,
    packages: Mapping[str, str],
    plugin_packages: Iterable[str] = (),
    workers: int = 1,
) -> VerifyResult:
    """Check every installed package's files for presence, content and mode.

    Composer-plugin packages are copied and may change their own files, so
    they count as fine without being checked.
    """
    vendor_dir = os.fspath(vendor_dir)
    if link_strategy == "hardlink":
        reg_perm, exec_perm = 0o444, 0o555
    else:
        reg_perm, exec_perm = 0o644, 0o755
    plugins = set(plugin_packages)
    result = VerifyResult()

    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        for name, version in packages.items():
            result.total_packages += 1
            if name in plugins:
                result.ok_packages += 1
                continue

            try:
                manifest = store.read_manifest(name, version)
            except StoreError:
                result.issues.append(
                    VerifyIssue(name, "", IssueType.MISSING, "manifest missing from store")
                )
                result.fail_packages += 1
                continue

            result.total_files += len(manifest.files)
            found = [
                issue
                for issue in pool.map(
                    lambda entry: _check_file(vendor_dir, name, entry, reg_perm, exec_perm),
                    manifest.files,
                )
                if issue is not None
            ]
            if found:
                result.issues.extend(found)
                result.fail_packages += 1
            else:
                result.ok_packages += 1

    return result