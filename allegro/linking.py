"""Placing store files into a vendor tree in parallel."""

from __future__ import annotations

import logging
import os
import stat
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable

from allegro.cas import Manifest, Store
from allegro.hashing import strip_hash_prefix

HARDLINK = "hardlink"

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinkOp:
    """One file to place: store path, vendor path and executability."""

    src: str
    dst: str
    executable: bool = False


def collect_directories(ops: Iterable[LinkOp]) -> list[str]:
    """Unique parent directories of the destinations, parents first."""
    return sorted({os.path.dirname(op.dst) for op in ops})


def collect_link_ops(
    store: Store, package_name: str, manifest: Manifest, vendor_tmp: str
) -> list[LinkOp]:
    """Link operations for every file of a package manifest."""
    return [
        LinkOp(
            src=store.file_path(strip_hash_prefix(entry.hash)),
            dst=os.path.join(vendor_tmp, package_name, entry.path),
            executable=entry.executable,
        )
        for entry in manifest.files
    ]


def _fix_permissions(op: LinkOp, strategy: str) -> None:
    if strategy == HARDLINK:
        # A shared inode may have had its mode changed by an earlier run.
        expected = 0o555 if op.executable else 0o444
        try:
            if stat.S_IMODE(os.stat(op.src).st_mode) & 0o777 != expected:
                os.chmod(op.src, expected)
        except OSError:
            pass
    else:
        perm = 0o755 if op.executable else 0o644
        try:
            os.chmod(op.dst, perm)
        except OSError as exc:
            _log.warning("chmod %s: %s", op.dst, exc)


def parallel_link(
    ops: list[LinkOp],
    link_file: Callable[[str, str], object],
    strategy: str,
    workers: int,
) -> None:
    """Create destination directories, then link files on a thread pool.

    The first failure stops further work and is raised.
    """
    workers = max(1, workers)
    for directory in collect_directories(ops):
        os.makedirs(directory, exist_ok=True)

    cancelled = threading.Event()
    errors: list[BaseException] = []
    lock = threading.Lock()

    def run(op: LinkOp) -> None:
        if cancelled.is_set():
            return
        try:
            link_file(op.src, op.dst)
        except Exception as exc:
            with lock:
                if not errors:
                    errors.append(exc)
            cancelled.set()
            return
        _fix_permissions(op, strategy)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        list(pool.map(run, ops))

    if errors:
        raise errors[0]