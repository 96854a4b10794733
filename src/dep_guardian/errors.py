"""Exception taxonomy for the analysis engine.

Contents
--------
* :class:`DependencyGuardianError` - Base class carrying an :class:`ErrorKind`
* :class:`ValidationError` - Malformed input, never retried
* :class:`NotFoundError` - The registry has no such package
* :class:`NetworkError` - Transport failure after retries were exhausted
* :class:`CacheError` - Cache persistence failure

System Role
-----------
Per-package failures are caught by the analyzer and turned into error
records; only validation errors on top-level input reach the caller.
"""

from __future__ import annotations

from .models import ErrorKind


class DependencyGuardianError(Exception):
    """Base class for all engine errors.

    Attributes:
        kind: Machine-readable error category.
        package: Package name the error relates to, when there is one.
    """

    kind: ErrorKind = ErrorKind.NETWORK

    def __init__(self, message: str, *, package: str | None = None) -> None:
        super().__init__(message)
        self.package = package


class ValidationError(DependencyGuardianError, ValueError):
    """Raised for malformed input such as an empty package name."""

    kind = ErrorKind.VALIDATION


class NotFoundError(DependencyGuardianError):
    """Raised when the registry reports that a package does not exist."""

    kind = ErrorKind.NOT_FOUND


class NetworkError(DependencyGuardianError):
    """Raised when the registry could not be reached or answered with an error.

    Attributes:
        status_code: HTTP status of the last response, if any.
        attempts: Number of attempts made before giving up.
    """

    kind = ErrorKind.NETWORK

    def __init__(
        self,
        message: str,
        *,
        package: str | None = None,
        status_code: int | None = None,
        attempts: int = 1,
    ) -> None:
        super().__init__(message, package=package)
        self.status_code = status_code
        self.attempts = attempts


class CacheError(DependencyGuardianError):
    """Raised (and logged) when the cache file cannot be read or written."""

    kind = ErrorKind.CACHE


__all__ = [
    "CacheError",
    "DependencyGuardianError",
    "NetworkError",
    "NotFoundError",
    "ValidationError",
]
