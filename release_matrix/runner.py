"""Command runner for external tools.

This module handles:
- The CommandRunner capability used by the compile and publish stages
- Executing commands with subprocess
- Capturing stdout/stderr to log files
- Passing secrets on stdin instead of the command line

Stages only depend on the CommandRunner protocol so they can be exercised
with a fake runner.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from release_matrix.errors import CommandExecutionError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of a command execution.

    Attributes:
        command: The command that was executed (shell-quoted).
        exit_code: Process exit code.
        output: Captured combined stdout/stderr (empty when logged to file).
        started_at: Start time.
        finished_at: Finish time.
        log_path: Log file the output was written to, if any.
    """

    command: str
    exit_code: int
    output: str
    started_at: datetime
    finished_at: datetime
    log_path: Path | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class CommandRunner(Protocol):
    """Capability to run an external command and observe its outcome."""

    def run(
        self,
        command: Sequence[str],
        cwd: Path,
        env: Mapping[str, str] | None = None,
        input_text: str | None = None,
        log_path: Path | None = None,
        timeout: int | None = None,
    ) -> CommandResult: ...


def merge_env(env_override: Mapping[str, str] | None) -> dict[str, str] | None:
    """Overlay variables on the current process environment.

    Args:
        env_override: Variables to set; None keeps the inherited environment.

    Returns:
        Full environment for subprocess, or None to inherit.
    """
    if not env_override:
        return None
    env = dict(os.environ)
    env.update(env_override)
    return env


class SubprocessRunner:
    """CommandRunner backed by subprocess.run.

    When ``log_path`` is given, output is streamed to the log file with a
    header and footer; otherwise it is captured and returned.
    """

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
        cmd_str = shlex.join(cmd)
        logger.info("Executing: %s", cmd_str)
        logger.debug("Working directory: %s", cwd)

        started_at = datetime.now(timezone.utc)
        output = ""

        try:
            if log_path is not None:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                with log_path.open("w") as log_file:
                    log_file.write(f"# Command: {cmd_str}\n")
                    log_file.write(f"# Started: {started_at.isoformat()}\n")
                    log_file.write(f"# CWD: {cwd}\n")
                    log_file.write("# " + "=" * 70 + "\n\n")
                    log_file.flush()

                    result = subprocess.run(
                        cmd,
                        cwd=cwd,
                        input=input_text,
                        stdout=log_file,
                        stderr=subprocess.STDOUT,
                        text=True,
                        timeout=timeout,
                        env=merge_env(env),
                        check=False,
                    )
            else:
                result = subprocess.run(
                    cmd,
                    cwd=cwd,
                    input=input_text,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    timeout=timeout,
                    env=merge_env(env),
                    check=False,
                )
                output = result.stdout or ""

        except subprocess.TimeoutExpired as e:
            message = f"Command timed out after {timeout} seconds: {cmd_str}"
            logger.error(message)
            if log_path is not None:
                with log_path.open("a") as log_file:
                    log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
            raise CommandExecutionError(
                message, exit_code=-1, code="timeout"
            ) from e

        except OSError as e:
            message = f"Failed to execute {cmd[0]}: {e}"
            logger.error(message)
            raise CommandExecutionError(message) from e

        finished_at = datetime.now(timezone.utc)
        exit_code = result.returncode

        if log_path is not None:
            with log_path.open("a") as log_file:
                log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
                log_file.write(f"# Exit code: {exit_code}\n")
                duration = (finished_at - started_at).total_seconds()
                log_file.write(f"# Duration: {duration:.1f}s\n")

        if exit_code != 0:
            logger.error(
                "Command failed with exit code %d: %s", exit_code, cmd_str
            )

        return CommandResult(
            command=cmd_str,
            exit_code=exit_code,
            output=output,
            started_at=started_at,
            finished_at=finished_at,
            log_path=log_path,
        )


__all__ = ["CommandResult", "CommandRunner", "SubprocessRunner", "merge_env"]
