from __future__ import annotations

from typing import List, Optional, Sequence

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_VALIDATION = 2
EXIT_UNSUPPORTED_PLATFORM = 3
EXIT_CHECKSUM = 4
EXIT_RESOLUTION = 5
EXIT_DOWNLOAD = 6
EXIT_FILESYSTEM = 7
EXIT_SERVICE = 8
EXIT_VERIFY_WARN = 9
EXIT_INTERRUPTED = 130


class InstallerError(RuntimeError):
    """Base for every fatal installer condition."""

    exit_code = EXIT_FAILURE


class ParseError(InstallerError):
    """A malformed answers-document line. Callers log and skip it."""

    def __init__(self, message: str, *, line_no: Optional[int] = None) -> None:
        super().__init__(message)
        self.line_no = line_no

    def __str__(self) -> str:
        msg = super().__str__()
        if self.line_no is None:
            return msg
        return f"line {self.line_no}: {msg}"


class ValidationError(InstallerError):
    exit_code = EXIT_VALIDATION

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class ValidationFailed(InstallerError):
    """All validation errors found for one mode, reported together."""

    exit_code = EXIT_VALIDATION

    def __init__(self, errors: Sequence[ValidationError]) -> None:
        self.errors: List[ValidationError] = list(errors)
        lines = "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(f"Validation failed ({len(self.errors)} issue(s)):\n{lines}")


class ResolutionError(InstallerError):
    exit_code = EXIT_RESOLUTION


class UnsupportedPlatformError(InstallerError):
    exit_code = EXIT_UNSUPPORTED_PLATFORM


class DownloadError(InstallerError):
    exit_code = EXIT_DOWNLOAD


class ChecksumMismatchError(InstallerError):
    exit_code = EXIT_CHECKSUM


class FilesystemError(InstallerError):
    exit_code = EXIT_FILESYSTEM


class ServiceIntegrationError(InstallerError):
    exit_code = EXIT_SERVICE


class PortConflictWarning(UserWarning):
    """Something already listens on the backend port. Fatal only if the operator declines."""

    def __init__(self, port: int, listeners: Sequence[str]) -> None:
        self.port = port
        self.listeners = list(listeners)
        super().__init__(f"Port {port} appears to be in use")


class Cancelled(Exception):
    """Operator answered 'q' at a choice prompt."""
