"""Tests for credentials.py module."""

import pytest
from conftest import FakeRunner
from pydantic import SecretStr

from release_matrix.config import Settings
from release_matrix.credentials import (
    RegistryCredentials,
    compose_login_command,
    external_session,
    login,
)
from release_matrix.errors import AuthenticationError, CommandExecutionError

CREDS = RegistryCredentials(username="bot", password=SecretStr("hunter2"))


class TestRegistryCredentials:
    def test_from_settings(self):
        """Credentials should be read from settings."""
        settings = Settings(
            registry_username="bot", registry_password="hunter2", registry="ghcr.io"
        )
        creds = RegistryCredentials.from_settings(settings)
        assert creds.username == "bot"
        assert creds.password.get_secret_value() == "hunter2"
        assert creds.registry == "ghcr.io"

    def test_missing(self):
        """Missing credentials should raise AuthenticationError."""
        settings = Settings(registry_username=None, registry_password=None)
        with pytest.raises(AuthenticationError) as exc:
            RegistryCredentials.from_settings(settings)
        assert exc.value.code == "auth_failed"

    def test_repr_hides_secret(self):
        """repr should not reveal the password."""
        assert "hunter2" not in repr(CREDS)


class TestComposeLoginCommand:
    def test_password_not_in_command(self):
        """The password should be sent on stdin, not argv."""
        cmd = compose_login_command(CREDS)
        assert cmd == ["docker", "login", "--username", "bot", "--password-stdin"]
        assert "hunter2" not in cmd

    def test_registry(self):
        """A registry host should be the last argument."""
        creds = RegistryCredentials("bot", SecretStr("x"), registry="ghcr.io")
        assert compose_login_command(creds)[-1] == "ghcr.io"


class TestLogin:
    """Tests for login."""

    def test_success(self, tmp_path):
        """A successful login should return a session."""
        runner = FakeRunner()
        session = login(CREDS, runner, cwd=tmp_path)

        assert session.username == "bot"
        assert not session.external
        (call,) = runner.calls
        assert call.input_text == "hunter2"
        assert "hunter2" not in call.line
        assert call.log_path is None

    def test_failure(self, tmp_path):
        """A rejected login should raise AuthenticationError."""
        runner = FakeRunner(fail=lambda cmd: cmd[1] == "login")
        with pytest.raises(AuthenticationError) as exc:
            login(CREDS, runner, cwd=tmp_path)
        assert exc.value.exit_code == 101
        assert "hunter2" not in str(exc.value)

    def test_cannot_start(self, tmp_path):
        """A backend that cannot start should raise AuthenticationError."""
        class BrokenRunner(FakeRunner):
            def run(self, command, cwd, **kwargs):
                raise CommandExecutionError("docker: not found")

        with pytest.raises(AuthenticationError, match="could not run"):
            login(CREDS, BrokenRunner(), cwd=tmp_path)


class TestExternalSession:
    def test_external(self):
        """An external session should reuse the configured username."""
        session = external_session(Settings(registry_username="bot"))
        assert session.external
        assert session.username == "bot"
