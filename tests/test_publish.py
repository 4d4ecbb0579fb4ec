"""Tests for publish.py module.

Tests image tag formatting, command composition and backend failures.
"""

import pytest
from conftest import FakeRunner

from release_matrix.catalog.schema import DEFAULT_ARCHITECTURES
from release_matrix.catalog.service import DEFAULT_CATALOG, get_variant, resolve_variant
from release_matrix.errors import CommandExecutionError, ConfigurationError, PublishError
from release_matrix.publish import (
    PublishContext,
    compose_publish_command,
    descriptor_path,
    format_image_tag,
    provenance_arg,
    publish,
)


@pytest.fixture
def plan():
    return resolve_variant(get_variant(DEFAULT_CATALOG, "cnosdb"))


class TestFormatImageTag:
    """The tag suffix is always community-<tag>."""

    @pytest.mark.parametrize(
        ("tag", "expected"),
        [
            ("v1.2.3", "cnosdb/cnosdb:community-v1.2.3"),
            ("nightly", "cnosdb/cnosdb:community-nightly"),
        ],
    )
    def test_suffix(self, tag, expected):
        """Tags should be <namespace>/<variant>:community-<tag>."""
        assert format_image_tag("cnosdb", "cnosdb", tag) == expected

    def test_custom_namespace_and_prefix(self):
        """Namespace and prefix should be configurable."""
        assert format_image_tag("acme", "meta", "1", prefix="") == "acme/meta:1"


class TestComposePublishCommand:
    def test_full_command(self, tmp_path):
        """The publish command should match the documented form."""
        cmd = compose_publish_command(
            descriptor=tmp_path / "docker" / "Dockerfile",
            platforms=["linux/amd64", "linux/arm64"],
            image_tag="cnosdb/cnosdb:community-v1",
            source_commit="abc123",
            context_dir=tmp_path / "ctx",
        )
        assert cmd == [
            "docker",
            "buildx",
            "build",
            "-f",
            str(tmp_path / "docker" / "Dockerfile"),
            "--platform",
            "linux/amd64,linux/arm64",
            "-t",
            "cnosdb/cnosdb:community-v1",
            "--build-arg=git_hash=abc123",
            str(tmp_path / "ctx"),
            "--push",
        ]

    def test_builder_and_no_push(self, tmp_path):
        """A builder should be named and --push omitted on request."""
        cmd = compose_publish_command(
            descriptor=tmp_path / "Dockerfile",
            platforms=["linux/amd64"],
            image_tag="a/b:c",
            source_commit="abc",
            context_dir=tmp_path,
            builder="multiarch",
            push=False,
        )
        assert cmd[3:5] == ["--builder", "multiarch"]
        assert "--push" not in cmd

    def test_provenance_arg(self):
        """The provenance build argument should carry the commit."""
        assert provenance_arg("deadbeef") == "git_hash=deadbeef"


class TestDescriptorPath:
    def test_exists(self, plan, source_dir):
        """An existing descriptor should resolve inside the source tree."""
        assert descriptor_path(plan, source_dir) == source_dir / "docker" / "Dockerfile"

    def test_missing(self, plan, tmp_path):
        """A missing descriptor should raise ConfigurationError."""
        with pytest.raises(ConfigurationError, match="descriptor"):
            descriptor_path(plan, tmp_path)


class TestPublish:
    """Tests for publish."""

    def make_ctx(self, runner, source_dir, tmp_path):
        return PublishContext(
            runner=runner,
            source_dir=source_dir,
            registry_namespace="cnosdb",
            log_dir=tmp_path / "logs",
        )

    def test_single_multi_platform_invocation(
        self, plan, invocation, session, source_dir, tmp_path
    ):
        """One backend call should cover every platform."""
        runner = FakeRunner()
        image = publish(
            plan,
            list(DEFAULT_ARCHITECTURES),
            [],
            invocation,
            session,
            tmp_path / "ctx",
            self.make_ctx(runner, source_dir, tmp_path),
        )

        (cmd,) = runner.commands("docker", "buildx", "build")
        assert cmd[cmd.index("--platform") + 1] == "linux/amd64,linux/arm64"
        assert cmd[cmd.index("-t") + 1] == "cnosdb/cnosdb:community-v1.2.3"
        assert "--build-arg=git_hash=0123abcd" in cmd
        assert cmd[-1] == "--push"
        assert image.tag == "cnosdb/cnosdb:community-v1.2.3"
        assert image.platforms == ["linux/amd64", "linux/arm64"]
        assert image.provenance == "git_hash=0123abcd"
        assert runner.calls[0].log_path == tmp_path / "logs" / "publish.log"

    def test_backend_failure(self, plan, invocation, session, source_dir, tmp_path):
        """A backend failure should raise PublishError."""
        runner = FakeRunner(fail=lambda cmd: cmd[:2] == ["docker", "buildx"])
        with pytest.raises(PublishError) as exc:
            publish(
                plan,
                list(DEFAULT_ARCHITECTURES),
                [],
                invocation,
                session,
                tmp_path / "ctx",
                self.make_ctx(runner, source_dir, tmp_path),
            )
        assert exc.value.code == "publish_failed"
        assert exc.value.exit_code == 101

    def test_backend_cannot_start(self, plan, invocation, session, source_dir, tmp_path):
        """A backend that cannot start should raise PublishError."""
        class BrokenRunner(FakeRunner):
            def run(self, command, cwd, **kwargs):
                raise CommandExecutionError("docker: not found")

        with pytest.raises(PublishError, match="docker: not found"):
            publish(
                plan,
                list(DEFAULT_ARCHITECTURES),
                [],
                invocation,
                session,
                tmp_path / "ctx",
                self.make_ctx(BrokenRunner(), source_dir, tmp_path),
            )
