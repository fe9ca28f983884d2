"""Unpacking package archives into a directory."""

from __future__ import annotations

import gzip
import io
import logging
import lzma
import os
import stat
import tarfile
import zipfile
import zlib
from typing import BinaryIO

MAX_EXTRACTED_ENTRY = 512 << 20  # per-entry cap against archive bombs

_CHUNK = 1 << 16
_TAR_READ_ERRORS = (
    tarfile.TarError,
    EOFError,
    zlib.error,
    gzip.BadGzipFile,
    lzma.LZMAError,
)
_ZIP_READ_ERRORS = (
    zipfile.BadZipFile,
    zlib.error,
    EOFError,
    RuntimeError,
    NotImplementedError,
)

_log = logging.getLogger(__name__)


class ExtractError(Exception):
    """Raised when an archive cannot be unpacked."""


class EmptyArchiveError(ExtractError):
    """Raised when an archive holds no files."""

    def __init__(self, message: str = "empty archive (no files after extraction)") -> None:
        super().__init__(message)


def _is_inside_dir(path: str, dest_dir: str) -> bool:
    clean_path = os.path.normpath(path)
    clean_dest = os.path.normpath(dest_dir) + os.sep
    return (clean_path + os.sep).startswith(clean_dest)


def _target_path(dest_dir: str, name: str) -> str:
    # A leading separator keeps the entry under dest_dir rather than replacing it.
    return os.path.normpath(os.path.join(dest_dir, name.lstrip("/\\")))


def _copy_limited(src: BinaryIO, dst: BinaryIO, limit: int = MAX_EXTRACTED_ENTRY) -> None:
    remaining = limit
    while remaining > 0:
        chunk = src.read(min(_CHUNK, remaining))
        if not chunk:
            break
        dst.write(chunk)
        remaining -= len(chunk)


def _zip_mode(info: zipfile.ZipInfo) -> int:
    if info.create_system == 3:  # Unix creator: high bits hold st_mode
        return info.external_attr >> 16
    return 0


def extract_zip(data: bytes, dest_dir: str | os.PathLike) -> None:
    """Extract a zip archive into dest_dir, skipping links and unsafe entries."""
    dest_dir = os.fspath(dest_dir)
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except (zipfile.BadZipFile, ValueError) as exc:
        raise ExtractError(f"open zip: {exc}") from exc

    with archive:
        for info in archive.infolist():
            mode = _zip_mode(info)
            if info.is_dir() or stat.S_ISDIR(mode):
                continue
            if stat.S_ISLNK(mode):
                _log.warning("skipping symlink %s", info.filename)
                continue
            if stat.S_IFMT(mode) and not stat.S_ISREG(mode):
                _log.warning("skipping special file %s (mode %o)", info.filename, mode)
                continue

            path = _target_path(dest_dir, info.filename)
            if not _is_inside_dir(path, dest_dir):
                _log.warning("skipping path-traversal entry %s", info.filename)
                continue

            os.makedirs(os.path.dirname(path), exist_ok=True)
            try:
                with archive.open(info) as src, open(path, "wb") as dst:
                    _copy_limited(src, dst)
            except _ZIP_READ_ERRORS as exc:
                raise ExtractError(f"read zip entry {info.filename}: {exc}") from exc


def _extract_tar_link(member: tarfile.TarInfo, dest_dir: str, path: str) -> None:
    """Write a hard-link entry as an independent copy of its target."""
    target = _target_path(dest_dir, member.linkname)
    with open(path, "wb") as dst:
        if _is_inside_dir(target, dest_dir) and os.path.isfile(target):
            with open(target, "rb") as src:
                _copy_limited(src, dst)


def extract_tar(stream: BinaryIO, dest_dir: str | os.PathLike) -> None:
    """Extract a tar stream into dest_dir, keeping only regular files and hard links."""
    dest_dir = os.fspath(dest_dir)
    try:
        archive = tarfile.open(fileobj=stream, mode="r|")
    except _TAR_READ_ERRORS as exc:
        raise ExtractError(f"read tar: {exc}") from exc

    with archive:
        while True:
            try:
                member = archive.next()
            except _TAR_READ_ERRORS as exc:
                raise ExtractError(f"read tar: {exc}") from exc
            if member is None:
                break

            if member.type not in (tarfile.REGTYPE, tarfile.AREGTYPE, tarfile.LNKTYPE):
                _log.warning("skipping %s (type %r)", member.name, member.type)
                continue

            path = _target_path(dest_dir, member.name)
            if not _is_inside_dir(path, dest_dir):
                _log.warning("skipping path-traversal entry %s", member.name)
                continue

            os.makedirs(os.path.dirname(path), exist_ok=True)
            if member.type == tarfile.LNKTYPE:
                _extract_tar_link(member, dest_dir, path)
                continue

            try:
                src = archive.extractfile(member)
                with open(path, "wb") as dst:
                    if src is not None:
                        _copy_limited(src, dst)
            except _TAR_READ_ERRORS as exc:
                raise ExtractError(f"read tar: {exc}") from exc


def extract_gzip(data: bytes, dest_dir: str | os.PathLike) -> None:
    """Decompress gzip data and extract the tar inside."""
    if data[:2] != b"\x1f\x8b":
        raise ExtractError("open gzip: invalid header")
    with gzip.GzipFile(fileobj=io.BytesIO(data)) as stream:
        extract_tar(stream, dest_dir)


def extract_xz(data: bytes, dest_dir: str | os.PathLike) -> None:
    """Decompress xz data and extract the tar inside."""
    try:
        raw = lzma.decompress(data)
    except lzma.LZMAError as exc:
        raise ExtractError(f"xz decompress: {exc}") from exc
    try:
        extract_tar(io.BytesIO(raw), dest_dir)
    except ExtractError as exc:
        raise ExtractError(f"xz+tar extract: {exc}") from exc


def strip_top_level_dir(directory: str | os.PathLike) -> None:
    """Move the contents of a single top-level directory up one level."""
    directory = os.fspath(directory)
    with os.scandir(directory) as it:
        entries = list(it)

    if not entries:
        raise EmptyArchiveError()
    if len(entries) != 1 or not entries[0].is_dir(follow_symlinks=False):
        return

    top = entries[0].path
    for name in sorted(os.listdir(top)):
        try:
            os.rename(os.path.join(top, name), os.path.join(directory, name))
        except OSError as exc:
            raise ExtractError(f"strip top-level: rename {name}: {exc}") from exc
    os.rmdir(top)


def extract_by_type(
    data: bytes, dist_type: str, dest_dir: str | os.PathLike, package_name: str
) -> None:
    """Extract an archive according to its dist type."""
    kind = dist_type.lower()
    if kind == "zip":
        extract_zip(data, dest_dir)
    elif kind == "tar":
        extract_tar(io.BytesIO(data), dest_dir)
    elif kind == "gzip":
        extract_gzip(data, dest_dir)
    elif kind == "xz":
        extract_xz(data, dest_dir)
    else:
        raise ExtractError(f"unsupported dist type: {dist_type} for package {package_name}")