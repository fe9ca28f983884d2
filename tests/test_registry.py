import json
import os
from datetime import datetime, timedelta, timezone

import pytest

from allegro.registry import (
    ProjectEntry,
    ProjectRegistry,
    RegistryError,
    default_registry_path,
    read_registry,
    register_project,
    registry_lock,
    write_registry,
)


def test_project_entry_roundtrip():
    entry = ProjectEntry(
        path="/Users/dev/laravel-app",
        last_install=datetime(2026, 4, 6, 8, 0, 0, tzinfo=timezone.utc),
        lock_hash="sha256:abc",
        packages={"monolog/monolog": "3.9.0"},
    )
    assert ProjectEntry.from_dict(entry.to_dict()) == entry


def test_project_entry_json_keys():
    entry = ProjectEntry(
        path="/app",
        last_install=datetime(2026, 4, 6, 8, 0, 0, tzinfo=timezone.utc),
        lock_hash="sha256:abc",
        packages={"a/b": "1.0"},
    )
    assert entry.to_dict() == {
        "path": "/app",
        "last_install": "2026-04-06T08:00:00Z",
        "lock_hash": "sha256:abc",
        "packages": {"a/b": "1.0"},
    }


def test_project_registry_json_roundtrip():
    registry = ProjectRegistry(
        projects=[
            ProjectEntry(path="/app1", lock_hash="sha256:a", packages={"a/b": "1.0"}),
            ProjectEntry(path="/app2", lock_hash="sha256:b", packages={"c/d": "2.0"}),
        ]
    )
    restored = ProjectRegistry.from_dict(json.loads(json.dumps(registry.to_dict())))
    assert len(restored.projects) == 2
    assert restored.projects[0].path == "/app1"
    assert restored == registry


def test_default_registry_path():
    path = default_registry_path()
    assert ".allegro" in path
    assert path.endswith("projects.json")


def test_register_project_and_upsert(tmp_path):
    path = tmp_path / "projects.json"
    entry = ProjectEntry(path="/app/test", lock_hash="sha256:abc", packages={"a/b": "1.0"})
    register_project(path, entry)
    registry = read_registry(path)
    assert [p.path for p in registry.projects] == ["/app/test"]

    entry.lock_hash = "sha256:def"
    register_project(path, entry)
    registry = read_registry(path)
    assert len(registry.projects) == 1
    assert registry.projects[0].lock_hash == "sha256:def"


def test_register_keeps_other_projects(tmp_path):
    path = tmp_path / "projects.json"
    register_project(path, ProjectEntry(path="/app1", lock_hash="v1"))
    register_project(path, ProjectEntry(path="/app2", lock_hash="v2"))
    register_project(path, ProjectEntry(path="/app1", lock_hash="v3"))
    registry = read_registry(path)
    assert [(p.path, p.lock_hash) for p in registry.projects] == [("/app1", "v3"), ("/app2", "v2")]


def test_register_stamps_last_install(tmp_path):
    path = tmp_path / "projects.json"
    register_project(path, ProjectEntry(path="/app1"))
    stamped = read_registry(path).projects[0].last_install
    assert abs(datetime.now(timezone.utc) - stamped) < timedelta(minutes=1)


def test_register_in_missing_directory_fails(tmp_path):
    with pytest.raises(RegistryError, match="projects lock"):
        register_project(tmp_path / "missing" / "projects.json", ProjectEntry(path="/a"))


def test_read_registry_missing(tmp_path):
    registry = read_registry(tmp_path / "nope" / "projects.json")
    assert registry.projects == []


def test_read_registry_corrupt(tmp_path):
    path = tmp_path / "projects.json"
    path.write_text("{bad")
    with pytest.raises(RegistryError, match="corrupt projects.json"):
        read_registry(path)


def test_write_then_read(tmp_path):
    path = tmp_path / "projects.json"
    registry = ProjectRegistry([ProjectEntry(path="/x", packages={"p/q": "2.0"})])
    write_registry(path, registry)
    assert read_registry(path) == registry


def test_registry_lock_creates_lock_file(tmp_path):
    path = tmp_path / "projects.json"
    with registry_lock(path):
        assert os.listdir(tmp_path) == ["projects.lock"]
    assert os.listdir(tmp_path) == ["projects.lock"]
    assert read_registry(path).projects == []