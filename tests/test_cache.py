import os

from matrixci.cache import CacheManager, CacheStore, compute_key, hash_files


def test_key_is_a_pure_function_of_inputs(tmp_path):
    (tmp_path / "Cargo.lock").write_bytes(b"version = 3\n")
    a = compute_key("Linux", ["Cargo.lock"], prefix="cargo-registry", repo_root=tmp_path)
    b = compute_key("Linux", ["Cargo.lock"], prefix="cargo-registry", repo_root=tmp_path)
    assert a == b
    assert a.startswith("Linux-cargo-registry-")


def test_key_changes_with_one_byte(tmp_path):
    lock = tmp_path / "Cargo.lock"
    lock.write_bytes(b"version = 3\n")
    before = compute_key("Linux", ["Cargo.lock"], repo_root=tmp_path)
    lock.write_bytes(b"version = 4\n")
    assert compute_key("Linux", ["Cargo.lock"], repo_root=tmp_path) != before


def test_key_depends_on_platform_and_input_boundaries():
    assert compute_key("Linux", [b"x"]) != compute_key("Windows", [b"x"])
    assert compute_key("Linux", [b"ab", b"c"]) != compute_key("Linux", [b"a", b"bc"])


def test_missing_input_differs_from_empty_file(tmp_path):
    (tmp_path / "empty.lock").write_bytes(b"")
    assert compute_key("Linux", ["empty.lock"], repo_root=tmp_path) != compute_key(
        "Linux", ["absent.lock"], repo_root=tmp_path
    )


def test_hash_files_is_stable_and_sorted(tmp_path):
    (tmp_path / "b.lock").write_text("b")
    (tmp_path / "a.lock").write_text("a")
    assert hash_files(tmp_path, ["*.lock"]) == hash_files(tmp_path, ["a.lock", "b.lock"])
    assert hash_files(tmp_path, ["nothing-*.lock"]) == ""


def test_miss_save_hit_round_trip(tmp_path):
    ws = tmp_path / "ws"
    target = ws / "target"
    (target / "debug").mkdir(parents=True)
    (target / "debug" / "app").write_text("binary")

    manager = CacheManager(CacheStore(tmp_path / "cache"), ws)
    first = manager.restore("target", "Linux-build-abc")
    assert not first.hit

    assert manager.save("target", "Linux-build-abc", first)

    (target / "debug" / "app").unlink()
    second = manager.restore("target", "Linux-build-abc")
    assert second.hit
    assert (target / "debug" / "app").read_text() == "binary"


def test_save_skipped_after_hit_on_same_key(tmp_path):
    ws = tmp_path / "ws"
    (ws / "target").mkdir(parents=True)
    (ws / "target" / "f").write_text("1")
    store = CacheStore(tmp_path / "cache")
    manager = CacheManager(store, ws)
    manager.save("target", "k")

    hit = manager.restore("target", "k")
    assert hit.hit
    assert not manager.save("target", "k", hit)
    assert manager.save("target", "k2", hit)


def test_save_of_missing_path_is_a_noop(tmp_path):
    manager = CacheManager(CacheStore(tmp_path / "cache"), tmp_path)
    assert not manager.save("does-not-exist", "k")
    assert not manager.store.exists("k")


def test_single_file_path_restores_in_place(tmp_path):
    ws = tmp_path / "ws"
    ws.mkdir()
    (ws / "tool.bin").write_text("v1")
    manager = CacheManager(CacheStore(tmp_path / "cache"), ws)
    manager.save("tool.bin", "k")
    (ws / "tool.bin").unlink()
    assert manager.restore("tool.bin", "k").hit
    assert (ws / "tool.bin").read_text() == "v1"


def test_corrupt_archive_is_a_miss(tmp_path):
    store = CacheStore(tmp_path / "cache")
    store.put("k", b"not a tarball")
    hit = CacheManager(store, tmp_path).restore("target", "k")
    assert not hit.hit
    assert "restore failed" in hit.reason


def test_prune_keeps_newest(tmp_path):
    store = CacheStore(tmp_path / "cache")
    for i, key in enumerate(["old", "mid", "new"]):
        store.put(key, b"blob")
        os.utime(store.artifact_path(key), (1000 + i, 1000 + i))
    removed = store.prune(keep=2)
    assert removed == ["old"]
    assert store.exists("new") and store.exists("mid")
    assert not store.exists("old")
