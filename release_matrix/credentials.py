"""Registry credentials and login.

Login happens once per run, before any variant starts. The resulting
RegistrySession is passed explicitly to the image publisher. The secret is
written to the login command's stdin and never appears in a command line,
a log file or a build argument.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic import SecretStr

from release_matrix.config import Settings
from release_matrix.errors import AuthenticationError, CommandExecutionError
from release_matrix.runner import CommandRunner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistryCredentials:
    """Registry username and token."""

    username: str
    password: SecretStr
    registry: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> RegistryCredentials:
        """Read credentials from settings.

        Raises:
            AuthenticationError: If username or password is missing.
        """
        if not settings.registry_username or settings.registry_password is None:
            raise AuthenticationError(
                "Registry credentials are not configured "
                "(DOCKERHUB_USERNAME / DOCKERHUB_TOKEN)"
            )
        return cls(
            username=settings.registry_username,
            password=settings.registry_password,
            registry=settings.registry,
        )


@dataclass(frozen=True)
class RegistrySession:
    """Proof that the backend is logged in to the registry.

    Attributes:
        registry: Registry host (None for the backend default).
        username: Account the session belongs to.
        external: True when login was established outside this run.
    """

    registry: str | None
    username: str | None
    external: bool = False


def compose_login_command(
    credentials: RegistryCredentials, docker_command: str = "docker"
) -> list[str]:
    """Compose the login command; the password is read from stdin."""
    cmd = [docker_command, "login", "--username", credentials.username]
    cmd.append("--password-stdin")
    if credentials.registry:
        cmd.append(credentials.registry)
    return cmd


def login(
    credentials: RegistryCredentials,
    runner: CommandRunner,
    cwd: Path,
    docker_command: str = "docker",
) -> RegistrySession:
    """Log the image backend in to the registry.

    Args:
        credentials: Username and secret.
        runner: Command runner.
        cwd: Working directory for the login command.
        docker_command: Backend executable.

    Returns:
        RegistrySession for the image publisher.

    Raises:
        AuthenticationError: If login fails for any reason.
    """
    cmd = compose_login_command(credentials, docker_command)
    target = credentials.registry or "default registry"
    logger.info("Logging in to %s as %s", target, credentials.username)

    try:
        result = runner.run(
            cmd,
            cwd=cwd,
            input_text=credentials.password.get_secret_value(),
        )
    except CommandExecutionError as e:
        raise AuthenticationError(f"Registry login could not run: {e}") from e

    if not result.success:
        raise AuthenticationError(
            f"Registry login to {target} failed with exit code {result.exit_code}",
            exit_code=result.exit_code,
        )

    logger.info("Registry login succeeded")
    return RegistrySession(
        registry=credentials.registry,
        username=credentials.username,
    )


def external_session(settings: Settings) -> RegistrySession:
    """Session for a backend that is already logged in."""
    return RegistrySession(
        registry=settings.registry,
        username=settings.registry_username,
        external=True,
    )


__all__ = [
    "RegistryCredentials",
    "RegistrySession",
    "compose_login_command",
    "external_session",
    "login",
]
