"""Runner for external tool invocations.

This module handles:
- Executing external tools (make, git, magiskboot, avbtool, openssl)
- Capturing stdout/stderr to log files or memory
- Enforcing timeouts
- Checking that required tools are present before a run
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import stat
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from kernel_repack.errors import MissingDependencyError, ToolExecutionError

logger = logging.getLogger(__name__)

# System tools the full build needs on PATH
SYSTEM_TOOLS = ("git", "tar", "make", "python3", "openssl")


@dataclass
class ToolResult:
    """Result of a tool execution.

    Attributes:
        command: The command that was executed, shell-quoted.
        exit_code: Process exit code.
        stdout: Captured standard output (empty when logged to a file).
        stderr: Captured standard error (empty when logged to a file).
        log_path: Log file receiving the output, if any.
        duration: Wall-clock duration in seconds.
    """

    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    log_path: Path | None = None
    duration: float = 0.0


def _prepare_env(env_override: dict[str, str] | None) -> dict[str, str] | None:
    if not env_override:
        return None
    env = dict(os.environ)
    env.update(env_override)
    return env


def run_tool(
    cmd: Sequence[str | os.PathLike[str]],
    *,
    cwd: Path | None = None,
    env_override: dict[str, str] | None = None,
    log_path: Path | None = None,
    timeout: int | None = None,
) -> ToolResult:
    """Run an external tool and fail on a non-zero exit.

    When ``log_path`` is given, stdout and stderr are appended to that file
    with a header and footer block; otherwise they are captured as text.

    Args:
        cmd: Command and arguments.
        cwd: Working directory.
        env_override: Environment variables layered over os.environ.
        log_path: Optional log file for the tool output.
        timeout: Timeout in seconds (None = no timeout).

    Returns:
        ToolResult of the successful invocation.

    Raises:
        ToolExecutionError: If the tool exits non-zero, times out or
            cannot be started.
    """
    args = [str(c) for c in cmd]
    cmd_str = shlex.join(args)
    logger.debug("Executing: %s (cwd=%s)", cmd_str, cwd or Path.cwd())

    env = _prepare_env(env_override)
    started_at = datetime.now(timezone.utc)

    try:
        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with log_path.open("a") as log_file:
                log_file.write(f"# Command: {cmd_str}\n")
                log_file.write(f"# Started: {started_at.isoformat()}\n")
                log_file.write(f"# CWD: {cwd or Path.cwd()}\n")
                log_file.write("# " + "=" * 70 + "\n\n")
                log_file.flush()

                result = subprocess.run(
                    args,
                    cwd=cwd,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    timeout=timeout,
                    env=env,
                    check=False,
                )
            stdout = stderr = ""
        else:
            result = subprocess.run(
                args,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=env,
                check=False,
            )
            stdout, stderr = result.stdout or "", result.stderr or ""

    except subprocess.TimeoutExpired as e:
        message = f"{args[0]} timed out after {timeout} seconds"
        logger.error(message)
        if log_path is not None:
            with log_path.open("a") as log_file:
                log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
        raise ToolExecutionError(
            message,
            exit_code=-1,
            log_path=str(log_path) if log_path else None,
            code="tool_timeout",
        ) from e
    except OSError as e:
        message = f"Failed to execute {args[0]}: {e}"
        logger.error(message)
        raise ToolExecutionError(message, code="execution_error") from e

    finished_at = datetime.now(timezone.utc)
    duration = (finished_at - started_at).total_seconds()

    if log_path is not None:
        with log_path.open("a") as log_file:
            log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
            log_file.write(f"# Exit code: {result.returncode}\n")
            log_file.write(f"# Duration: {duration:.1f}s\n\n")

    if result.returncode != 0:
        detail = f"See log: {log_path}" if log_path else stderr.strip()
        message = f"{cmd_str} failed with exit code {result.returncode}"
        logger.error("%s. %s", message, detail)
        raise ToolExecutionError(
            f"{message}. {detail}" if detail else message,
            exit_code=result.returncode,
            log_path=str(log_path) if log_path else None,
        )

    return ToolResult(
        command=cmd_str,
        exit_code=result.returncode,
        stdout=stdout,
        stderr=stderr,
        log_path=log_path,
        duration=duration,
    )


def check_dependencies(
    system_tools: Sequence[str] = SYSTEM_TOOLS,
    tool_files: Sequence[Path] = (),
) -> None:
    """Verify that every required external tool is available.

    System tools must be on PATH; toolchain binaries must exist as files and
    are made executable when they are not.

    Args:
        system_tools: Command names looked up on PATH.
        tool_files: Paths to toolchain binaries shipped in the work tree.

    Raises:
        MissingDependencyError: On the first missing tool.
    """
    for tool in system_tools:
        if shutil.which(tool) is None:
            raise MissingDependencyError(
                f"System tool '{tool}' is not installed.",
                hint=(
                    "Install it using your system's package manager "
                    f"(e.g., 'sudo apt install {tool}')."
                ),
            )
    logger.info("All required system tools are installed.")

    for tool_path in tool_files:
        if not tool_path.is_file():
            raise MissingDependencyError(
                f"Required tool '{tool_path}' not found.",
                hint=(
                    "Make sure the toolchains directory is populated. If you are "
                    "using Git submodules, run: "
                    "git submodule update --init --recursive"
                ),
            )
        mode = tool_path.stat().st_mode
        if not mode & stat.S_IXUSR:
            tool_path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            logger.debug("Made %s executable", tool_path)
    logger.info("All required toolchain binaries are present.")


__all__ = [
    "SYSTEM_TOOLS",
    "ToolResult",
    "check_dependencies",
    "run_tool",
]
