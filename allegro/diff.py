"""Comparing installed packages with the packages a lock file asks for."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping

from allegro.lockfile import Package


@dataclass(frozen=True)
class PackageUpdate:
    """A package whose version changes."""

    name: str
    old_version: str
    new_version: str


@dataclass
class PackageDiff:
    """Differences between installed and desired packages."""

    added: list[Package] = field(default_factory=list)
    removed: list[Package] = field(default_factory=list)
    updated: list[PackageUpdate] = field(default_factory=list)
    unchanged: list[Package] = field(default_factory=list)


def compute_diff(
    old_packages: Mapping[str, str], new_packages: Iterable[Package]
) -> PackageDiff:
    """Compare installed name->version pairs with the desired packages.

    Names are compared without regard to case.
    """
    old = {name.lower(): (name, version) for name, version in old_packages.items()}
    diff = PackageDiff()
    seen: set[str] = set()

    for pkg in new_packages:
        key = pkg.name.lower()
        seen.add(key)
        entry = old.get(key)
        if entry is None:
            diff.added.append(pkg)
        elif entry[1] != pkg.version:
            diff.updated.append(PackageUpdate(pkg.name, entry[1], pkg.version))
        else:
            diff.unchanged.append(pkg)

    diff.removed = [
        Package(name=name, version=version)
        for key, (name, version) in old.items()
        if key not in seen
    ]
    return diff


def is_noop(
    state_lock_hash: str, current_lock_hash: str, state_dev: bool, current_dev: bool
) -> bool:
    """True when vendor is up to date: same lock hash and same dev flag."""
    return state_lock_hash == current_lock_hash and state_dev == current_dev