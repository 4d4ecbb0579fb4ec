"""Shared fixtures for release_matrix tests.

FakeRunner stands in for the toolchain and the image backend: it records
every command, fabricates binaries for build commands and can be told to
fail selected commands.
"""

import shlex
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import pytest

from release_matrix.config import Settings
from release_matrix.credentials import RegistrySession
from release_matrix.gate import Invocation
from release_matrix.runner import CommandResult

# Binaries each package of the built-in catalog produces
PACKAGE_BINARIES = {
    "main": ["cnosdb"],
    "client": ["cnosdb-cli"],
    "meta": ["cnosdb-meta"],
}


@dataclass
class RecordedCall:
    """One command seen by FakeRunner."""

    command: list[str]
    cwd: Path
    env: dict[str, str]
    input_text: str | None
    log_path: Path | None

    @property
    def line(self) -> str:
        return shlex.join(self.command)


def _never(cmd: list[str]) -> bool:
    return False


class FakeRunner:
    """In-memory CommandRunner.

    Picklable when ``fail`` is a module-level function, so it can be handed
    to process workers. Calls made in a worker process are recorded on the
    worker's copy only.
    """

    def __init__(
        self,
        fail: Callable[[list[str]], bool] | None = None,
        withhold: set[str] | None = None,
        toolchain_version: str = "rustc 1.80.0 (051478957 2024-07-21)",
    ) -> None:
        self.calls: list[RecordedCall] = []
        self.fail = fail or _never
        self.withhold = withhold or set()
        self.toolchain_version = toolchain_version
        self._lock = threading.Lock()

    def __getstate__(self) -> dict:
        state = self.__dict__.copy()
        del state["_lock"]
        return state

    def __setstate__(self, state: dict) -> None:
        self.__dict__.update(state)
        self._lock = threading.Lock()

    def run(
        self,
        command: Sequence[str],
        cwd: Path,
        env: Mapping[str, str] | None = None,
        input_text: str | None = None,
        log_path: Path | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        cmd = list(command)
        with self._lock:
            self.calls.append(
                RecordedCall(cmd, Path(cwd), dict(env or {}), input_text, log_path)
            )
        now = datetime.now(timezone.utc)
        if self.fail(cmd):
            return CommandResult(shlex.join(cmd), 101, "error", now, now, log_path)

        output = ""
        if cmd[:2] == ["cargo", "build"]:
            self._produce(cmd, dict(env or {}))
        elif cmd[:2] == ["rustc", "--version"]:
            output = self.toolchain_version
        return CommandResult(shlex.join(cmd), 0, output, now, now, log_path)

    def _produce(self, cmd: list[str], env: dict[str, str]) -> None:
        triple = cmd[cmd.index("--target") + 1]
        out_dir = Path(env["CARGO_TARGET_DIR"]) / triple / "release"
        out_dir.mkdir(parents=True, exist_ok=True)
        packages = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "--package"]
        for package in packages:
            for name in PACKAGE_BINARIES.get(package, [package]):
                if name in self.withhold:
                    continue
                (out_dir / name).write_text(f"{triple}:{name}\n")

    def commands(self, *prefix: str) -> list[list[str]]:
        """Recorded commands starting with ``prefix``."""
        n = len(prefix)
        return [c.command for c in self.calls if tuple(c.command[:n]) == prefix]

    def calls_for(self, *prefix: str) -> list[RecordedCall]:
        n = len(prefix)
        return [c for c in self.calls if tuple(c.command[:n]) == prefix]


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    """Source checkout with the image descriptors of the built-in catalog."""
    src = tmp_path / "src"
    (src / "docker").mkdir(parents=True)
    (src / "docker" / "Dockerfile").write_text("FROM scratch\n")
    (src / "docker" / "Dockerfile_meta").write_text("FROM scratch\n")
    return src


@pytest.fixture
def settings(tmp_path: Path, source_dir: Path) -> Settings:
    return Settings(
        source_dir=source_dir,
        workspace_dir=tmp_path / "work",
        cache_dir=tmp_path / "cache",
        parallelism="thread",
        registry_namespace="cnosdb",
        registry_username="release-bot",
        registry_password="s3cret-token",
        compiler_cache_enabled=False,
        compiler_wrapper=None,
    )


@pytest.fixture
def invocation() -> Invocation:
    return Invocation(
        tag="v1.2.3",
        source_commit="0123abcd",
        project_identity="cnosdb/cnosdb",
        source_branch="refs/heads/main",
    )


@pytest.fixture
def session() -> RegistrySession:
    return RegistrySession(registry=None, username="release-bot")
