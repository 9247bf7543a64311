"""Error taxonomy for kernel_repack.

Every error carries a machine-readable ``code`` in addition to the message,
so the CLI and the pipeline report can classify failures without string
matching.
"""

from __future__ import annotations


class RepackError(Exception):
    """Base error for all pipeline failures."""

    def __init__(self, message: str, code: str = "repack_error") -> None:
        super().__init__(message)
        self.code = code


class MissingDependencyError(RepackError):
    """Raised when a required external tool is not available."""

    def __init__(
        self,
        message: str,
        hint: str | None = None,
        code: str = "missing_dependency",
    ) -> None:
        super().__init__(message, code=code)
        self.hint = hint


class ToolchainNotFoundError(MissingDependencyError):
    """Raised when no usable compiler toolchain could be located."""

    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(message, hint=hint, code="toolchain_not_found")


class MissingInputError(RepackError):
    """Raised when a required input file or directory is absent."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message, code="missing_input")
        self.path = path


class InvalidConfigurationError(RepackError):
    """Raised for an unrecognized branch, variant or configuration file."""

    def __init__(self, message: str, code: str = "invalid_configuration") -> None:
        super().__init__(message, code=code)


class ToolExecutionError(RepackError):
    """Raised when an external tool exits non-zero or cannot be started."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        log_path: str | None = None,
        code: str = "tool_failure",
    ) -> None:
        super().__init__(message, code=code)
        self.exit_code = exit_code
        self.log_path = log_path


class ToolOutputParseError(RepackError):
    """Raised when an expected field is missing from a tool's output."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, code="parse_failure")
        self.field = field


class DownloadError(RepackError):
    """Raised when fetching the toolchain archive fails."""

    def __init__(self, message: str, code: str = "download_error") -> None:
        super().__init__(message, code=code)


def is_fatal(error: RepackError) -> bool:
    """Return True if the error must abort the whole run.

    Missing per-variant input only skips the variant. Unknown variants are
    rejected during discovery and never reach this point. Every other error
    (tool or parse failures, missing dependencies, an unrecognized branch)
    is fatal.
    """
    return not isinstance(error, MissingInputError)


__all__ = [
    "DownloadError",
    "InvalidConfigurationError",
    "MissingDependencyError",
    "MissingInputError",
    "RepackError",
    "ToolExecutionError",
    "ToolOutputParseError",
    "ToolchainNotFoundError",
    "is_fatal",
]
