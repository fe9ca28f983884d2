"""Running Composer for dependency resolution and scripts."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from typing import Sequence

_RESOLVE_FLAGS = ("--no-install", "--no-scripts", "--no-interaction")


class ComposerError(Exception):
    """Raised when a Composer command cannot start or fails."""


@dataclass
class ComposerRunner:
    """Runs a Composer binary inside a project directory."""

    composer_path: str
    project_dir: str

    def run(self, *args: str) -> None:
        """Run composer with args; output goes to this process's streams."""
        command = [os.fspath(self.composer_path), *args]
        try:
            completed = subprocess.run(command, cwd=self.project_dir, check=False)
        except OSError as exc:
            raise ComposerError(f"run {self.composer_path}: {exc}") from exc
        if completed.returncode != 0:
            raise ComposerError(f"exit status {completed.returncode}")


def composer_resolve(composer_path: str, project_dir: str, args: Sequence[str]) -> None:
    """Run a Composer command that resolves dependencies without installing."""
    ComposerRunner(composer_path, project_dir).run(*args, *_RESOLVE_FLAGS)


def composer_update(
    composer_path: str, project_dir: str, packages: Sequence[str], no_dev: bool
) -> None:
    """composer update [packages...] without installing."""
    args = ["update", *packages]
    if no_dev:
        args.append("--no-dev")
    composer_resolve(composer_path, project_dir, args)


def composer_require(
    composer_path: str, project_dir: str, package: str, constraint: str
) -> None:
    """composer require <package> [constraint] without installing."""
    args = ["require", package]
    if constraint:
        args.append(constraint)
    composer_resolve(composer_path, project_dir, args)


def composer_remove(composer_path: str, project_dir: str, package: str) -> None:
    """composer remove <package> without installing."""
    composer_resolve(composer_path, project_dir, ["remove", package])


def composer_generate_lock(composer_path: str, project_dir: str) -> None:
    """Produce composer.lock through composer update without installing."""
    composer_resolve(composer_path, project_dir, ["update"])


def composer_run_script(composer_path: str, project_dir: str, event: str) -> None:
    """composer run-script <event>."""
    try:
        ComposerRunner(composer_path, project_dir).run("run-script", event, "--no-interaction")
    except ComposerError as exc:
        raise ComposerError(f"composer script {event} failed: {exc}") from exc