import json

import pytest

from allegro.lockfile import (
    Autoload,
    ComposerLock,
    Dist,
    LockFileError,
    Package,
    compute_lock_hash,
    dev_package_names,
    filter_installable,
    is_dev_package,
    is_platform_package,
    merge_packages,
    parse_lock_file,
)


def test_parse_lock_file(tmp_path):
    path = tmp_path / "composer.lock"
    path.write_text(
        """{
        "packages": [
            {"name":"monolog/monolog","version":"3.9.0","version_normalized":"3.9.0.0","type":"library",
             "dist":{"type":"zip","url":"https://example.com/m.zip","reference":"abc","shasum":""}},
            {"name":"php","version":"8.3.0"}
        ],
        "packages-dev": [
            {"name":"phpunit/phpunit","version":"10.0.0"}
        ],
        "content-hash":"abc123"
    }"""
    )
    lock = parse_lock_file(path)
    assert len(lock.packages) == 2
    assert len(lock.packages_dev) == 1
    assert lock.content_hash == "abc123"
    assert lock.packages[0].dist == Dist("zip", "https://example.com/m.zip", "abc", "")
    assert lock.packages[1].dist is None


def test_parse_lock_file_missing():
    with pytest.raises(LockFileError, match="not found"):
        parse_lock_file("/nonexistent/composer.lock")


def test_parse_lock_file_invalid_json(tmp_path):
    path = tmp_path / "composer.lock"
    path.write_text("{invalid")
    with pytest.raises(LockFileError, match="line 1"):
        parse_lock_file(path)


def test_parse_lock_file_invalid_json_multiline(tmp_path):
    path = tmp_path / "composer.lock"
    path.write_bytes(b'{\n  "bad\n}')
    with pytest.raises(LockFileError) as info:
        parse_lock_file(path)
    assert "line" in str(info.value)


def test_parse_lock_file_wrong_shape(tmp_path):
    path = tmp_path / "composer.lock"
    path.write_text('{"packages": "nope"}')
    with pytest.raises(LockFileError, match="invalid composer.lock JSON"):
        parse_lock_file(path)


def test_platform_packages_excluded(tmp_path):
    path = tmp_path / "composer.lock"
    path.write_text(
        """{"packages":[
        {"name":"monolog/monolog","version":"3.9.0","dist":{"type":"zip","url":"http://x","reference":"a","shasum":""}},
        {"name":"php","version":"8.3.0"},
        {"name":"ext-json","version":"*"},
        {"name":"lib-libxml","version":"*"},
        {"name":"laravel/framework","version":"11.0.0","dist":{"type":"zip","url":"http://x","reference":"b","shasum":""}}
    ],"packages-dev":[],"content-hash":"test"}"""
    )
    merged = merge_packages(parse_lock_file(path))
    assert [p.name for p in merged] == ["monolog/monolog", "laravel/framework"]
    assert not any(is_platform_package(p.name) for p in merged)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("php", True),
        ("php-64bit", True),
        ("hhvm", True),
        ("ext-json", True),
        ("ext-mbstring", True),
        ("lib-libxml", True),
        ("monolog/monolog", False),
        ("laravel/framework", False),
    ],
)
def test_is_platform_package(name, expected):
    assert is_platform_package(name) is expected


def test_filter_installable():
    packages = [Package(name=n) for n in ("monolog/monolog", "php", "ext-json", "laravel/framework")]
    result = filter_installable(packages)
    assert [p.name for p in result] == ["monolog/monolog", "laravel/framework"]


def test_merge_packages():
    lock = ComposerLock(
        packages=[Package(name="a/b"), Package(name="php")],
        packages_dev=[Package(name="c/d"), Package(name="ext-json")],
    )
    assert [p.name for p in merge_packages(lock)] == ["a/b", "c/d"]


def test_dev_package_names():
    lock = ComposerLock(packages_dev=[Package(name="phpunit/phpunit"), Package(name="ext-xdebug")])
    assert dev_package_names(lock) == ["phpunit/phpunit"]


def test_dev_package_names_three():
    lock = ComposerLock(
        packages_dev=[
            Package(name="phpunit/phpunit"),
            Package(name="ext-xdebug"),
            Package(name="mockery/mockery"),
        ]
    )
    assert dev_package_names(lock) == ["phpunit/phpunit", "mockery/mockery"]


def test_is_dev_package():
    lock = ComposerLock(packages_dev=[Package(name="phpunit/phpunit")])
    assert is_dev_package("phpunit/phpunit", lock) is True
    assert is_dev_package("monolog/monolog", lock) is False


def test_compute_lock_hash(tmp_path):
    path = tmp_path / "composer.lock"
    path.write_text('{"packages":[]}')
    digest = compute_lock_hash(path)
    assert digest.startswith("sha256:")
    assert len(digest) == 7 + 64


def test_compute_lock_hash_deterministic(tmp_path):
    path = tmp_path / "composer.lock"
    path.write_text("{}")
    assert compute_lock_hash(path) == compute_lock_hash(path)
    assert compute_lock_hash(path) == (
        "sha256:44136fa355b3678a1146ad16f7e8649e94fb4fc21fe77e8310c060f61caaff8a"
    )


def test_compute_lock_hash_missing():
    with pytest.raises(LockFileError, match="compute lock hash"):
        compute_lock_hash("/nonexistent/composer.lock")


def test_package_json_round_trip():
    raw = {
        "name": "monolog/monolog",
        "version": "3.9.0",
        "version_normalized": "3.9.0.0",
        "type": "library",
        "dist": {
            "type": "zip",
            "url": "https://example.com/monolog.zip",
            "reference": "abc123",
            "shasum": "",
        },
        "autoload": {"psr-4": {"Monolog\\": "src/"}},
        "bin": ["bin/console"],
        "description": "Logging library",
    }
    pkg = Package.from_dict(raw)
    assert pkg.name == "monolog/monolog"
    assert pkg.dist is not None and pkg.dist.type == "zip"
    assert pkg.bin == ["bin/console"]
    assert pkg.autoload == Autoload(psr4={"Monolog\\": "src/"})

    out = pkg.to_dict()
    assert out["autoload"] == {"psr-4": {"Monolog\\": "src/"}}
    assert "extra" not in out
    roundtrip = Package.from_dict(json.loads(json.dumps(out)))
    assert roundtrip == pkg


def test_package_to_dict_keeps_null_dist():
    out = Package(name="a/b", version="1.0").to_dict()
    assert out == {
        "name": "a/b",
        "version": "1.0",
        "version_normalized": "",
        "type": "",
        "dist": None,
    }


def test_dist_empty_shasum():
    dist = Dist.from_dict({"type": "zip", "url": "https://x.com/a.zip", "reference": "abc", "shasum": ""})
    assert dist.shasum == ""
    assert dist.to_dict()["reference"] == "abc"


def test_composer_lock_struct():
    lock = ComposerLock.from_dict(
        {
            "packages": [{"name": "a/b", "version": "1.0.0"}],
            "packages-dev": [{"name": "c/d", "version": "2.0.0"}],
            "content-hash": "abc123",
        }
    )
    assert len(lock.packages) == 1
    assert len(lock.packages_dev) == 1
    assert lock.packages_dev[0].version == "2.0.0"


def test_composer_lock_null_lists():
    lock = ComposerLock.from_dict({"packages": None})
    assert lock.packages == []
    assert lock.packages_dev == []