"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

from release_matrix.config import Settings, get_settings, print_settings_json

CLEAN_ENV_KEYS = (
    "RUSTC_WRAPPER",
    "SCCACHE_GHA_ENABLED",
    "DOCKERHUB_USERNAME",
    "DOCKERHUB_TOKEN",
)


def clean_env() -> dict[str, str]:
    return {
        k: v
        for k, v in os.environ.items()
        if k not in CLEAN_ENV_KEYS and not k.startswith("RELEASE_MATRIX_")
    }


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        with patch.dict(os.environ, clean_env(), clear=True):
            settings = Settings()

        assert settings.cache_dir == Path.home() / ".cache" / "release-matrix"
        assert settings.registry_namespace == "cnosdb"
        assert settings.tag_prefix == "community-"
        assert settings.expected_repository == "cnosdb/cnosdb"
        assert settings.expected_ref == "refs/heads/main"
        assert settings.parallelism == "process"
        assert settings.compiler_cache_enabled is False
        assert settings.compiler_wrapper is None
        assert settings.registry_password is None
        assert settings.build_timeout is None

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from prefixed environment variables."""
        with patch.dict(
            os.environ,
            {
                "RELEASE_MATRIX_LOG_LEVEL": "DEBUG",
                "RELEASE_MATRIX_PARALLELISM": "thread",
                "RELEASE_MATRIX_MAX_PARALLEL_VARIANTS": "4",
                "RELEASE_MATRIX_REGISTRY_NAMESPACE": "example",
            },
        ):
            settings = Settings()
            assert settings.log_level == "DEBUG"
            assert settings.parallelism == "thread"
            assert settings.max_parallel_variants == 4
            assert settings.registry_namespace == "example"

    def test_ci_variables(self) -> None:
        """Well-known CI variables feed the toolchain and registry settings."""
        env = clean_env()
        env.update(
            {
                "RUSTC_WRAPPER": "sccache",
                "SCCACHE_GHA_ENABLED": "true",
                "DOCKERHUB_USERNAME": "bot",
                "DOCKERHUB_TOKEN": "hunter2",
            }
        )
        with patch.dict(os.environ, env, clear=True):
            settings = Settings()
        assert settings.compiler_wrapper == "sccache"
        assert settings.compiler_cache_enabled is True
        assert settings.registry_username == "bot"
        assert settings.registry_password is not None
        assert settings.registry_password.get_secret_value() == "hunter2"

    def test_field_names_accepted(self) -> None:
        """Field names should be accepted next to the CI aliases."""
        settings = Settings(compiler_wrapper="ccache", registry_username="me")
        assert settings.compiler_wrapper == "ccache"
        assert settings.registry_username == "me"


class TestGetSettings:
    def test_returns_settings(self) -> None:
        """get_settings should return a Settings instance."""
        assert isinstance(get_settings(), Settings)


class TestPrintSettingsJson:
    def test_valid_json(self) -> None:
        """The settings dump should be valid JSON."""
        output = print_settings_json(Settings())
        data = json.loads(output)
        assert "workspace_dir" in data
        assert "registry_namespace" in data

    def test_secret_masked(self) -> None:
        """The settings dump should mask the password."""
        settings = Settings(registry_password="hunter2")
        output = print_settings_json(settings)
        assert "hunter2" not in output
