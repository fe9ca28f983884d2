import os
from datetime import datetime, timezone

import pytest

from allegro.cas import FileEntry, Manifest, Store
from allegro.hashing import hash_bytes
from allegro.verify import IssueType, verify_vendor

CONTENT = b"<?php class Logger {}"
PACKAGES = {"monolog/monolog": "3.9.0"}


@pytest.fixture
def setup(tmp_path):
    store = Store(str(tmp_path / "store"))
    store.ensure_directories()
    digest = hash_bytes(CONTENT)
    tmp_file = os.path.join(store.tmp_dir(), "test")
    with open(tmp_file, "wb") as fh:
        fh.write(CONTENT)
    store.store_file(tmp_file, digest, False)
    store.write_manifest(
        Manifest(
            name="monolog/monolog",
            version="3.9.0",
            files=[FileEntry("src/Logger.php", "sha256:" + digest, len(CONTENT), False)],
            stored_at=datetime.now(timezone.utc),
        )
    )
    vendor = tmp_path / "vendor"
    target = vendor / "monolog" / "monolog" / "src" / "Logger.php"
    target.parent.mkdir(parents=True)
    target.write_bytes(CONTENT)
    os.chmod(target, 0o644)
    return str(vendor), store, target


def test_all_ok(setup):
    vendor, store, _ = setup
    result = verify_vendor(vendor, store, "copy", PACKAGES, (), 1)
    assert result.ok_packages == 1
    assert result.fail_packages == 0
    assert result.issues == []
    assert result.total_files == 1
    assert result.total_packages == 1


def test_missing_file(setup):
    vendor, store, target = setup
    target.unlink()
    result = verify_vendor(vendor, store, "copy", PACKAGES, (), 1)
    assert result.fail_packages == 1
    assert [i.type for i in result.issues] == [IssueType.MISSING]
    assert result.issues[0].detail == "file not found"


def test_modified_file(setup):
    vendor, store, target = setup
    target.write_bytes(b"MODIFIED")
    result = verify_vendor(vendor, store, "copy", PACKAGES, (), 1)
    assert result.fail_packages == 1
    assert result.issues[0].type == "modified"
    expected = hash_bytes(CONTENT)[:8]
    assert result.issues[0].detail == f"expected {expected}, got {hash_bytes(b'MODIFIED')[:8]}"


def test_permission_mismatch(setup):
    vendor, store, target = setup
    os.chmod(target, 0o755)
    result = verify_vendor(vendor, store, "copy", PACKAGES, (), 1)
    assert result.issues[0].type == IssueType.PERMISSION
    assert result.issues[0].detail == "expected 644, got 755"


def test_hardlink_expects_read_only(setup):
    vendor, store, target = setup
    os.chmod(target, 0o444)
    assert verify_vendor(vendor, store, "hardlink", PACKAGES, (), 2).fail_packages == 0
    result = verify_vendor(vendor, store, "copy", PACKAGES, (), 2)
    assert result.issues[0].detail == "expected 644, got 444"


def test_plugin_packages_skipped(setup):
    vendor, store, target = setup
    target.write_bytes(b"changed by plugin")
    result = verify_vendor(vendor, store, "copy", PACKAGES, ["monolog/monolog"], 1)
    assert result.ok_packages == 1
    assert result.issues == []
    assert result.total_files == 0


def test_missing_manifest(tmp_path):
    store = Store(str(tmp_path / "store"))
    store.ensure_directories()
    vendor = tmp_path / "vendor"
    vendor.mkdir()
    result = verify_vendor(str(vendor), store, "copy", {"nonexistent/pkg": "1.0.0"}, (), 1)
    assert result.fail_packages == 1
    assert result.issues[0].detail == "manifest missing from store"


def test_missing_file_with_unknown_hash(tmp_path):
    store = Store(str(tmp_path / "store"))
    store.ensure_directories()
    store.write_manifest(
        Manifest(name="a/b", version="1.0", files=[FileEntry("gone.php", "sha256:abc123", 10)])
    )
    vendor = tmp_path / "vendor"
    (vendor / "a" / "b").mkdir(parents=True)
    result = verify_vendor(str(vendor), store, "copy", {"a/b": "1.0"}, (), 1)
    assert any(i.type == "missing" and i.file == "gone.php" for i in result.issues)