"""Error definitions for release_matrix.

Every error carries a stable ``code`` so outcomes can be reported and
handled programmatically. Run-global errors (gate denial, registry login)
abort before any variant starts; the rest are fatal to one variant only.
"""

# Error code constants
GATE_DENIED = "gate_denied"
AUTH_FAILED = "auth_failed"
CONFIGURATION_ERROR = "configuration"
TOOLCHAIN_ERROR = "toolchain_failed"
ARTIFACT_MISSING = "artifact_missing"
STAGING_ERROR = "staging_failed"
PUBLISH_ERROR = "publish_failed"
EXECUTION_ERROR = "execution_error"
INTERNAL_ERROR = "internal_error"


class ReleaseError(Exception):
    """Base error for release operations."""

    def __init__(self, message: str, code: str = INTERNAL_ERROR) -> None:
        super().__init__(message)
        self.code = code


class GateDenied(ReleaseError):
    """Raised when the invocation context is not authorized.

    This skips the whole run; it is not a failure.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(f"Release skipped: {reason}", code=GATE_DENIED)
        self.reason = reason


class AuthenticationError(ReleaseError):
    """Raised when registry login fails."""

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message, code=AUTH_FAILED)
        self.exit_code = exit_code


class ConfigurationError(ReleaseError):
    """Raised when a catalog entry has no build or descriptor mapping."""

    def __init__(self, message: str, variant: str | None = None) -> None:
        super().__init__(message, code=CONFIGURATION_ERROR)
        self.variant = variant


class ToolchainError(ReleaseError):
    """Raised when a compiler invocation exits non-zero."""

    def __init__(
        self,
        message: str,
        triple: str | None = None,
        exit_code: int | None = None,
        log_path: str | None = None,
    ) -> None:
        super().__init__(message, code=TOOLCHAIN_ERROR)
        self.triple = triple
        self.exit_code = exit_code
        self.log_path = log_path


class ArtifactMissingError(ReleaseError):
    """Raised when an expected binary is absent after a successful compile."""

    def __init__(self, missing: list[str]) -> None:
        super().__init__(
            f"Expected binaries missing after build: {', '.join(missing)}",
            code=ARTIFACT_MISSING,
        )
        self.missing = missing


class StagingError(ReleaseError):
    """Raised when the workspace or staged layout cannot be written."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=STAGING_ERROR)


class PublishError(ReleaseError):
    """Raised when the image build or push fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        log_path: str | None = None,
    ) -> None:
        super().__init__(message, code=PUBLISH_ERROR)
        self.exit_code = exit_code
        self.log_path = log_path


class CommandExecutionError(ReleaseError):
    """Raised when an external command cannot be started or times out."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = EXECUTION_ERROR,
    ) -> None:
        super().__init__(message, code=code)
        self.exit_code = exit_code


__all__ = [
    "ARTIFACT_MISSING",
    "AUTH_FAILED",
    "CONFIGURATION_ERROR",
    "EXECUTION_ERROR",
    "GATE_DENIED",
    "INTERNAL_ERROR",
    "PUBLISH_ERROR",
    "STAGING_ERROR",
    "TOOLCHAIN_ERROR",
    "ArtifactMissingError",
    "AuthenticationError",
    "CommandExecutionError",
    "ConfigurationError",
    "GateDenied",
    "PublishError",
    "ReleaseError",
    "StagingError",
    "ToolchainError",
]
