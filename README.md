# allegro

A library of building blocks for installing Composer dependencies from a
shared, content-addressable store (CAS). Each file is kept once, under its
SHA-256 digest, and package manifests record which files make up each
package version.

## Install

Install the package with pip. The `test` extra adds pytest for running the
test suite.

## Modules

- `allegro.lockfile`: reads `composer.lock` into `ComposerLock`, `Package`,
  `Dist` and `Autoload` objects (`parse_lock_file`). `merge_packages`,
  `filter_installable`, `dev_package_names` and `is_dev_package` select
  packages; platform pseudo-packages (`php`, `php-64bit`, `hhvm`, `ext-*`,
  `lib-*`) are left out. `compute_lock_hash` returns `"sha256:<hex>"` of the
  file bytes. Problems raise `LockFileError`, with line and column for
  invalid JSON.
- `allegro.hashing`: `hash_file`, `hash_bytes`, `shard_prefix`,
  `strip_hash_prefix`, `write_file_atomic` (synced temporary file renamed
  into place) and `resolve_store_path` (flag value, then environment value,
  then `~/.allegro/store`).
- `allegro.cas`: the `Store`, with `files/`, `packages/` and `tmp/` under its
  root. Files live at `files/<first two hex chars>/<hash>` and are made
  read-only (`0444`, or `0555` when executable) before they are moved in.
  `Manifest`, `FileEntry` and `StoreMetadata` are stored as JSON;
  `ensure_metadata` rejects a store version newer than 1. Errors raise
  `StoreError`.
- `allegro.extract`: unpacks `zip`, `tar`, `gzip` and `xz` archives
  (`extract_by_type`), skipping symlinks, special files and entries that
  would land outside the target directory, and capping each entry at
  512 MiB. `strip_top_level_dir` moves the contents of a lone top-level
  directory up and raises `EmptyArchiveError` for an empty one.
- `allegro.registry`: the project registry (`projects.json`, by default
  under `~/.allegro/`). `register_project` adds or replaces an entry by path
  and stamps it with the current time, under an exclusive lock on
  `projects.lock` where the platform offers `flock`.
- `allegro.gc`: `garbage_collect` drops projects whose directory no longer
  exists, warns about projects not installed within `stale_days`, and
  unless `dry_run` is set removes manifests and store files no kept project
  references. It returns a `GCResult`; failures raise `GCError` carrying the
  partial result. A corrupt manifest stops the run before any file is
  deleted.
- `allegro.diff`: `compute_diff` compares installed name/version pairs with
  the locked packages (names compared without regard to case) and returns a
  `PackageDiff`; `is_noop` is true when lock hash and dev flag both match.
- `allegro.linking`: `collect_link_ops` turns a manifest into `LinkOp`s and
  `parallel_link` creates the directories, then calls a link function you
  supply on a thread pool, stopping at the first error. With the
  `"hardlink"` strategy it restores the store file's read-only mode;
  otherwise it sets `0644`/`0755` on the placed file.
- `allegro.verify`: `verify_vendor` checks each package's files in a vendor
  tree for missing files, changed content and wrong permissions, and
  returns a `VerifyResult` of `VerifyIssue`s.
- `allegro.composer`: runs Composer for resolution only (`update`,
  `require`, `remove`, adding `--no-install --no-scripts --no-interaction`)
  and for `run-script`. A failing command raises `ComposerError`.
- `allegro.pipeline`: `build_plan` sorts packages into new, cached and
  skipped (no dist, or dist type `path`); `extract_package` extracts an
  archive, stores its files and writes the manifest; `atomic_swap` replaces
  `vendor/` and restores the old tree if the swap fails;
  `read_composer_json` and `has_shebang` are small helpers.

## Example

```python
from allegro.cas import Store
from allegro.diff import compute_diff
from allegro.hashing import resolve_store_path
from allegro.lockfile import merge_packages, parse_lock_file
from allegro.pipeline import build_plan
from allegro.verify import verify_vendor

lock = parse_lock_file("composer.lock")
store = Store(resolve_store_path("", ""))
store.ensure_directories()
store.ensure_metadata()

plan = build_plan(store, merge_packages(lock))
print(len(plan.new_packages), "to download,", len(plan.cached_packages), "cached")

diff = compute_diff({"monolog/monolog": "3.8.0"}, plan.all_packages)
for update in diff.updated:
    print(update.name, update.old_version, "->", update.new_version)

result = verify_vendor("vendor", store, "copy", {"monolog/monolog": "3.9.0"})
print(result.ok_packages, "ok,", result.fail_packages, "failing")
```

## Garbage collection

```python
from allegro.gc import garbage_collect
from allegro.registry import default_registry_path

result = garbage_collect("/home/me/.allegro/store", default_registry_path(), 90, False)
print(result)
```

## What it does not do

This is a library without a command-line tool. It does not download
archives, so a caller has to fetch package data and hand it to
`extract_package`. It provides no hardlink, reflink or copy routines of its
own: `parallel_link` takes the link function as an argument. It does not
generate autoloaders, `installed.json`/`installed.php` or bin proxies, and
does not record a vendor state file; `verify_vendor` takes the link
strategy and package list directly.