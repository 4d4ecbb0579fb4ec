"""Tests for builds/cache_key.py and builds/cache.py.

Tests canonical compile inputs, key determinism, toolchain probing and the
content-addressed binary cache.
"""

import json
import threading

from conftest import FakeRunner

from release_matrix.builds.cache import ENTRY_METADATA, CompilerCache
from release_matrix.builds.cache_key import (
    CACHE_KEY_SCHEMA_VERSION,
    CompileInputs,
    compute_cache_key,
    create_compile_inputs,
    detect_toolchain_version,
)
from release_matrix.catalog.schema import DEFAULT_ARCHITECTURES
from release_matrix.catalog.service import VariantPlan

AMD64, ARM64 = DEFAULT_ARCHITECTURES

PLAN = VariantPlan(
    name="cnosdb",
    build_packages=("main", "client"),
    binary_names=("cnosdb", "cnosdb-cli"),
    image_descriptor="docker/Dockerfile",
)


class TestCompileInputs:
    def test_normalized(self):
        """Inputs should carry sorted names and a trimmed toolchain version."""
        inputs = create_compile_inputs(PLAN, AMD64, "rustc 1.80.0\n", "abc")
        assert inputs.schema_version == CACHE_KEY_SCHEMA_VERSION
        assert inputs.toolchain_version == "rustc 1.80.0"
        assert inputs.build_packages == ["client", "main"]
        assert inputs.binary_names == ["cnosdb", "cnosdb-cli"]
        assert inputs.triple == "x86_64-unknown-linux-gnu"
        assert inputs.linker is None

    def test_to_dict_is_json_serializable(self):
        """to_dict output should survive a JSON round trip."""
        inputs = create_compile_inputs(PLAN, ARM64, "v", "abc", linker="gcc")
        data = json.loads(json.dumps(inputs.to_dict()))
        assert data["linker"] == "gcc"


class TestComputeCacheKey:
    """Tests for compute_cache_key."""

    def test_format(self):
        """Cache keys should be a sha256 hex digest with a scheme prefix."""
        key = compute_cache_key(CompileInputs())
        assert key.startswith("sha256:")
        assert len(key) == len("sha256:") + 64

    def test_deterministic(self):
        """Equal inputs should give equal keys."""
        a = compute_cache_key(create_compile_inputs(PLAN, AMD64, "v", "abc"))
        b = compute_cache_key(create_compile_inputs(PLAN, AMD64, "v", "abc"))
        assert a == b

    def test_package_order_irrelevant(self):
        """Reordering the build packages should not change the key."""
        reordered = VariantPlan(
            name="cnosdb",
            build_packages=("client", "main"),
            binary_names=("cnosdb-cli", "cnosdb"),
            image_descriptor="docker/Dockerfile",
        )
        a = compute_cache_key(create_compile_inputs(PLAN, AMD64, "v", "abc"))
        b = compute_cache_key(create_compile_inputs(reordered, AMD64, "v", "abc"))
        assert a == b

    def test_each_dimension_changes_key(self):
        """Changing any single input should change the key."""
        base = compute_cache_key(create_compile_inputs(PLAN, AMD64, "v1", "abc"))
        assert base != compute_cache_key(create_compile_inputs(PLAN, AMD64, "v2", "abc"))
        assert base != compute_cache_key(create_compile_inputs(PLAN, AMD64, "v1", "abd"))
        assert base != compute_cache_key(create_compile_inputs(PLAN, ARM64, "v1", "abc"))


class TestDetectToolchainVersion:
    def test_success(self, tmp_path):
        """The toolchain version output should be returned stripped."""
        runner = FakeRunner(toolchain_version="rustc 1.80.0\nhost: x86_64\n")
        assert detect_toolchain_version(runner, tmp_path) == (
            "rustc 1.80.0\nhost: x86_64"
        )
        assert runner.commands("rustc", "--version")

    def test_failure_returns_none(self, tmp_path):
        """A failing version command should yield None."""
        runner = FakeRunner(fail=lambda cmd: cmd[0] == "rustc")
        assert detect_toolchain_version(runner, tmp_path) is None


class TestCompilerCache:
    """Tests for CompilerCache."""

    def make_binaries(self, tmp_path):
        out = tmp_path / "out"
        out.mkdir()
        (out / "a").write_bytes(b"binary-a")
        (out / "b").write_bytes(b"binary-b")
        return {"a": out / "a", "b": out / "b"}

    def test_miss(self, tmp_path):
        """An unknown key should not be found or restored."""
        cache = CompilerCache(tmp_path / "cache")
        assert cache.lookup("sha256:00", ["a"]) is None
        assert not cache.restore("sha256:00", ["a"], tmp_path / "dest")

    def test_store_and_restore(self, tmp_path):
        """Stored binaries should be restored byte for byte."""
        cache = CompilerCache(tmp_path / "cache")
        files = self.make_binaries(tmp_path)
        assert cache.store("sha256:abcd", files, metadata={"triple": "x"})

        entry = cache.entry_dir("sha256:abcd")
        assert entry == tmp_path / "cache" / "binaries" / "abcd"
        meta = json.loads((entry / ENTRY_METADATA).read_text())
        assert meta == {"cache_key": "sha256:abcd", "triple": "x"}

        dest = tmp_path / "dest"
        assert cache.restore("sha256:abcd", ["a", "b"], dest)
        assert (dest / "a").read_bytes() == b"binary-a"
        assert (dest / "b").read_bytes() == b"binary-b"

    def test_incomplete_entry_is_miss(self, tmp_path):
        """An entry lacking a requested binary should count as a miss."""
        cache = CompilerCache(tmp_path / "cache")
        cache.store("sha256:abcd", self.make_binaries(tmp_path))
        assert cache.lookup("sha256:abcd", ["a", "c"]) is None

    def test_existing_entry_kept(self, tmp_path):
        """Storing an existing key should keep the first entry."""
        cache = CompilerCache(tmp_path / "cache")
        files = self.make_binaries(tmp_path)
        cache.store("sha256:abcd", files)
        files["a"].write_bytes(b"changed")
        assert cache.store("sha256:abcd", files)
        assert (cache.entry_dir("sha256:abcd") / "a").read_bytes() == b"binary-a"

    def test_no_temporary_directories_left(self, tmp_path):
        """A completed store should leave no temporary directories."""
        cache = CompilerCache(tmp_path / "cache")
        cache.store("sha256:abcd", self.make_binaries(tmp_path))
        leftovers = [p.name for p in cache.entries_dir.iterdir() if p.name.startswith(".")]
        assert leftovers == []

    def test_concurrent_writers(self, tmp_path):
        """Concurrent stores of one key should leave a single valid entry."""
        cache = CompilerCache(tmp_path / "cache")
        files = self.make_binaries(tmp_path)
        results: list[bool] = []

        def writer():
            results.append(cache.store("sha256:abcd", files))

        threads = [threading.Thread(target=writer) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results == [True] * 4
        assert cache.lookup("sha256:abcd", ["a", "b"]) is not None

    def test_store_failure_is_not_fatal(self, tmp_path):
        """A failed store should return False and cache nothing."""
        cache = CompilerCache(tmp_path / "cache")
        assert not cache.store("sha256:abcd", {"a": tmp_path / "missing"})
        assert cache.lookup("sha256:abcd", ["a"]) is None
