"""Error hierarchy shared by localstacker providers and workflows.

Every failure surfaced to the CLI derives from :class:`LocalstackerError`.
Each subclass carries a short ``kind`` label (recorded in the operations
log) and the :class:`~localstacker.exit_codes.ExitCode` the CLI should
terminate with.
"""
from __future__ import annotations

from .exit_codes import ExitCode


class LocalstackerError(RuntimeError):
    """Base class for all localstacker failures."""

    kind = "error"
    exit_code = ExitCode.PROVIDER


class ValidationError(LocalstackerError):
    """Raised when user input is rejected before any side effect."""

    kind = "validation"
    exit_code = ExitCode.VALIDATION


class DomainNotFoundError(LocalstackerError):
    """Raised when a domain is not present in the registry."""

    kind = "not-found"
    exit_code = ExitCode.VALIDATION


class AlreadyExistsError(LocalstackerError):
    """Raised when a strict create collides with an existing domain."""

    kind = "already-exists"
    exit_code = ExitCode.VALIDATION


class PrivilegeError(LocalstackerError):
    """Raised when the caller lacks the privilege a workflow requires."""

    kind = "permission"
    exit_code = ExitCode.ENVIRONMENT


class ExternalToolError(LocalstackerError):
    """Raised when an external program is missing or exits non-zero."""

    kind = "external-tool"
    exit_code = ExitCode.PROVIDER


class FilesystemError(LocalstackerError):
    """Raised when a filesystem read, write, copy or removal fails."""

    kind = "io"
    exit_code = ExitCode.ENVIRONMENT


class TemplateError(LocalstackerError):
    """Raised when a proxy configuration template cannot be rendered."""

    kind = "template"
    exit_code = ExitCode.VALIDATION


__all__ = [
    "AlreadyExistsError",
    "DomainNotFoundError",
    "ExternalToolError",
    "FilesystemError",
    "LocalstackerError",
    "PrivilegeError",
    "TemplateError",
    "ValidationError",
]
