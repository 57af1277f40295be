from __future__ import annotations

import os
import time

import pytest

from zebraci.cache import DependencyCache, compute_cache_key
from zebraci.model import PipelineConfig


def _populate(home):
    (home / "registry").mkdir(parents=True)
    (home / "registry" / "index").write_text("crates")
    return home


def test_key_changes_with_lock_file(tmp_path):
    config = PipelineConfig()
    (tmp_path / "Cargo.lock").write_text("v1")
    key1, _ = compute_cache_key(config, repo_root=tmp_path, toolchain="rustc 1.44.0")
    (tmp_path / "Cargo.lock").write_text("v2")
    key2, _ = compute_cache_key(config, repo_root=tmp_path, toolchain="rustc 1.44.0")
    assert key1 != key2


def test_key_changes_with_toolchain(tmp_path):
    config = PipelineConfig()
    key1, _ = compute_cache_key(config, repo_root=tmp_path, toolchain="rustc 1.44.0")
    key2, manifest = compute_cache_key(config, repo_root=tmp_path, toolchain="rustc 1.45.0")
    assert key1 != key2
    assert manifest["payload"]["missing"] == ["Cargo.lock", "Cargo.toml"]


def test_save_then_restore(tmp_path):
    store = DependencyCache(tmp_path / "cache")
    home = _populate(tmp_path / "home")
    store.save("k1", {"key": "k1"}, home)

    target = tmp_path / "restored"
    hit = store.restore("k1", target)

    assert hit.hit
    assert hit.manifest == {"key": "k1"}
    assert (target / "registry" / "index").read_text() == "crates"


def test_restore_miss(tmp_path):
    store = DependencyCache(tmp_path / "cache")
    hit = store.restore("absent", tmp_path / "home")
    assert not hit.hit
    assert hit.reason == "miss"


def test_corrupt_archive_is_a_miss(tmp_path):
    store = DependencyCache(tmp_path / "cache")
    store.artifact_path("bad").write_bytes(b"not a tarball")
    store.manifest_path("bad").write_text("{}")
    hit = store.restore("bad", tmp_path / "home")
    assert not hit.hit
    assert hit.reason.startswith("restore failed")


def test_prune_keeps_newest(tmp_path):
    store = DependencyCache(tmp_path / "cache")
    home = _populate(tmp_path / "home")
    now = time.time()
    for i, key in enumerate(["old", "mid", "new"]):
        art = store.save(key, {}, home)
        os.utime(art, (now + i, now + i))

    removed = store.prune(keep=2)

    assert removed == ["old"]
    assert store.keys() == ["new", "mid"]
    assert not store.manifest_path("old").exists()


def test_prune_keeps_at_least_one(tmp_path):
    store = DependencyCache(tmp_path / "cache")
    store.save("only", {}, _populate(tmp_path / "home"))
    with pytest.raises(ValueError):
        store.prune(keep=0)
    assert store.keys() == ["only"]
