"""Reading composer.lock files and selecting the packages to install."""

from __future__ import annotations

import hashlib
import json
import os
from dataclasses import dataclass, field
from typing import Any, Optional

_PLATFORM_NAMES = frozenset({"php", "php-64bit", "hhvm"})
_PLATFORM_PREFIXES = ("ext-", "lib-")


class LockFileError(Exception):
    """Raised when composer.lock cannot be read or understood."""


def _get_str(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"field {key!r}: expected a string, got {type(value).__name__}")
    return value


def _get_dict(data: dict, key: str) -> dict:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise TypeError(f"field {key!r}: expected an object, got {type(value).__name__}")
    return dict(value)


def _get_str_dict(data: dict, key: str) -> dict[str, str]:
    mapping = _get_dict(data, key)
    for name, value in mapping.items():
        if not isinstance(value, str):
            raise TypeError(f"field {key!r}: value for {name!r} is not a string")
    return mapping


def _get_str_list(data: dict, key: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise TypeError(f"field {key!r}: expected a list of strings")
    return list(value)


def _require_object(data: Any, what: str) -> dict:
    if not isinstance(data, dict):
        raise TypeError(f"{what}: expected a JSON object, got {type(data).__name__}")
    return data


@dataclass
class Dist:
    """Where a package's archive can be downloaded from."""

    type: str = ""
    url: str = ""
    reference: str = ""
    shasum: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "Dist":
        data = _require_object(data, "dist")
        return cls(
            type=_get_str(data, "type"),
            url=_get_str(data, "url"),
            reference=_get_str(data, "reference"),
            shasum=_get_str(data, "shasum"),
        )

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "url": self.url,
            "reference": self.reference,
            "shasum": self.shasum,
        }


@dataclass
class Autoload:
    """A package's autoload configuration."""

    psr4: dict[str, Any] = field(default_factory=dict)
    psr0: dict[str, Any] = field(default_factory=dict)
    classmap: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Autoload":
        data = _require_object(data, "autoload")
        return cls(
            psr4=_get_dict(data, "psr-4"),
            psr0=_get_dict(data, "psr-0"),
            classmap=_get_str_list(data, "classmap"),
            files=_get_str_list(data, "files"),
        )

    def to_dict(self) -> dict:
        out: dict[str, Any] = {}
        if self.psr4:
            out["psr-4"] = dict(self.psr4)
        if self.psr0:
            out["psr-0"] = dict(self.psr0)
        if self.classmap:
            out["classmap"] = list(self.classmap)
        if self.files:
            out["files"] = list(self.files)
        return out


@dataclass
class Package:
    """One package entry of composer.lock."""

    name: str = ""
    version: str = ""
    version_normalized: str = ""
    type: str = ""
    dist: Optional[Dist] = None
    autoload: Optional[Autoload] = None
    extra: dict[str, Any] = field(default_factory=dict)
    description: str = ""
    bin: list[str] = field(default_factory=list)
    notification_url: str = ""
    require: dict[str, str] = field(default_factory=dict)
    replace: dict[str, str] = field(default_factory=dict)
    provide: dict[str, str] = field(default_factory=dict)
    source: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "Package":
        data = _require_object(data, "package")
        dist = data.get("dist")
        autoload = data.get("autoload")
        return cls(
            name=_get_str(data, "name"),
            version=_get_str(data, "version"),
            version_normalized=_get_str(data, "version_normalized"),
            type=_get_str(data, "type"),
            dist=None if dist is None else Dist.from_dict(dist),
            autoload=None if autoload is None else Autoload.from_dict(autoload),
            extra=_get_dict(data, "extra"),
            description=_get_str(data, "description"),
            bin=_get_str_list(data, "bin"),
            notification_url=_get_str(data, "notification-url"),
            require=_get_str_dict(data, "require"),
            replace=_get_str_dict(data, "replace"),
            provide=_get_str_dict(data, "provide"),
            source=_get_dict(data, "source"),
        )

    def to_dict(self) -> dict:
        out: dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "version_normalized": self.version_normalized,
            "type": self.type,
            "dist": None if self.dist is None else self.dist.to_dict(),
        }
        if self.autoload is not None:
            out["autoload"] = self.autoload.to_dict()
        if self.extra:
            out["extra"] = dict(self.extra)
        if self.description:
            out["description"] = self.description
        if self.bin:
            out["bin"] = list(self.bin)
        if self.notification_url:
            out["notification-url"] = self.notification_url
        if self.require:
            out["require"] = dict(self.require)
        if self.replace:
            out["replace"] = dict(self.replace)
        if self.provide:
            out["provide"] = dict(self.provide)
        if self.source:
            out["source"] = dict(self.source)
        return out


def _package_list(data: dict, key: str) -> list[Package]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError(f"field {key!r}: expected a list")
    return [Package.from_dict(item) for item in value]


@dataclass
class ComposerLock:
    """The root of a composer.lock file."""

    packages: list[Package] = field(default_factory=list)
    packages_dev: list[Package] = field(default_factory=list)
    content_hash: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "ComposerLock":
        data = _require_object(data, "composer.lock")
        return cls(
            packages=_package_list(data, "packages"),
            packages_dev=_package_list(data, "packages-dev"),
            content_hash=_get_str(data, "content-hash"),
        )


def parse_lock_file(path: str | os.PathLike) -> ComposerLock:
    """Read and parse a composer.lock file."""
    try:
        with open(path, "rb") as fh:
            raw = fh.read()
    except FileNotFoundError as exc:
        raise LockFileError("composer.lock not found. Run `composer install` first.") from exc
    except PermissionError as exc:
        raise LockFileError("composer.lock: permission denied") from exc
    except OSError as exc:
        raise LockFileError(f"read composer.lock: {exc}") from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LockFileError(
            f"invalid composer.lock JSON at line {exc.lineno}, column {exc.colno}: {exc.msg}"
        ) from exc
    except ValueError as exc:
        raise LockFileError(f"invalid composer.lock JSON: {exc}") from exc

    try:
        return ComposerLock.from_dict(data)
    except (TypeError, ValueError) as exc:
        raise LockFileError(f"invalid composer.lock JSON: {exc}") from exc


def is_platform_package(name: str) -> bool:
    """True for php, hhvm, ext-* and lib-* pseudo-packages."""
    return name in _PLATFORM_NAMES or name.startswith(_PLATFORM_PREFIXES)


def filter_installable(packages: list[Package]) -> list[Package]:
    """Drop platform pseudo-packages."""
    return [pkg for pkg in packages if not is_platform_package(pkg.name)]


def merge_packages(lock: ComposerLock) -> list[Package]:
    """Runtime and dev packages together, without platform pseudo-packages."""
    return filter_installable(lock.packages) + filter_installable(lock.packages_dev)


def dev_package_names(lock: ComposerLock) -> list[str]:
    """Names from packages-dev, without platform pseudo-packages."""
    return [pkg.name for pkg in lock.packages_dev if not is_platform_package(pkg.name)]


def is_dev_package(name: str, lock: ComposerLock) -> bool:
    """Whether a package name appears in packages-dev."""
    return any(pkg.name == name for pkg in lock.packages_dev)


def compute_lock_hash(path: str | os.PathLike) -> str:
    """Return "sha256:<hex>" of the raw file bytes."""
    try:
        with open(path, "rb") as fh:
            raw = fh.read()
    except OSError as exc:
        raise LockFileError(f"compute lock hash: {exc}") from exc
    return "sha256:" + hashlib.sha256(raw).hexdigest()