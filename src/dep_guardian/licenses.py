"""License validation and allow-list checks.

Purpose
-------
Decide whether the license string a package publishes is a valid SPDX
license expression and whether it is permitted by a caller-supplied
allow-list.

Contents
--------
* :func:`canonical_license` - SPDX-normalised form of a license string
* :func:`normalize_allowed_licenses` - validate and normalise an allow-list
* :func:`is_license_allowed` - check a license against an allow-list

System Role
-----------
Used by the analyzer to annotate each dependency record. Validation uses
the SPDX license list bundled with ``packaging``, so no network access is
needed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from packaging.licenses import InvalidLicenseExpression, canonicalize_license_expression

from .errors import ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


def canonical_license(value: str | None) -> str | None:
    """Return the canonical SPDX expression, or None when it is not one.

    Example:
        >>> canonical_license("mit")
        'MIT'
        >>> canonical_license("SEE LICENSE IN LICENSE.md") is None
        True
    """
    if not value or not value.strip():
        return None
    try:
        return str(canonicalize_license_expression(value))
    except InvalidLicenseExpression:
        logger.debug("Not an SPDX license expression: %r", value)
        return None


def normalize_allowed_licenses(allowed: Iterable[str]) -> frozenset[str]:
    """Canonicalise every allow-list entry.

    Raises:
        ValidationError: If an entry is not a valid SPDX expression.
    """
    normalized: set[str] = set()
    for entry in allowed:
        canonical = canonical_license(entry)
        if canonical is None:
            raise ValidationError(f"Invalid SPDX license in allow-list: {entry!r}")
        normalized.add(canonical)
    return frozenset(normalized)


def is_license_allowed(value: str | None, allowed: frozenset[str] | None) -> bool | None:
    """Check the license ``value`` against a normalised allow-list.

    Returns:
        None without an allow-list. Otherwise True only for a valid SPDX
        expression whose canonical form is on the list; missing and
        non-SPDX licenses are never allowed.
    """
    if allowed is None:
        return None
    canonical = canonical_license(value)
    return canonical is not None and canonical in allowed


__all__ = [
    "canonical_license",
    "is_license_allowed",
    "normalize_allowed_licenses",
]
