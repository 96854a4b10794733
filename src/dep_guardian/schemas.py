"""Pydantic schemas for external data boundaries.

Purpose
-------
Define Pydantic models for data that crosses system boundaries:
- Input: npm registry packuments, package.json, ``npm ls --json`` output,
  package-lock.json, the persisted cache file
- Output: JSON serialization of analysis results

These models handle validation, coercion, and serialization at the edges
while internal business logic uses lightweight dataclasses.

Data Flow Pattern
-----------------
External Input → Pydantic (validate) → Dataclass (domain) → Pydantic (serialize) → External Output
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import DependencyGroup, ErrorKind, UpdateClass


def _license_text(value: Any) -> str | None:
    """Normalize the shapes npm has used for license fields over time.

    Handles ``"MIT"``, ``{"type": "MIT"}`` and ``[{"type": "MIT"}, ...]``.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict):
        return _license_text(value.get("type"))
    if isinstance(value, list):
        names = [name for item in value if (name := _license_text(item))]
        if not names:
            return None
        return names[0] if len(names) == 1 else f"({' OR '.join(names)})"
    return None


# ════════════════════════════════════════════════════════════════════════════
# Registry input
# ════════════════════════════════════════════════════════════════════════════


class PackumentVersionSchema(BaseModel):
    """Schema for one entry of a packument's ``versions`` map."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    version: str | None = None
    license: str | None = None
    licenses: str | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)

    @field_validator("license", "licenses", mode="before")
    @classmethod
    def _normalize_license(cls, value: Any) -> str | None:
        return _license_text(value)

    @field_validator("dependencies", mode="before")
    @classmethod
    def _drop_invalid_dependencies(cls, value: Any) -> dict[str, str]:
        if not isinstance(value, dict):
            return {}
        return {str(k): v for k, v in value.items() if isinstance(v, str)}

    @property
    def effective_license(self) -> str | None:
        return self.license or self.licenses


class PackumentSchema(BaseModel):
    """Schema for an npm registry package document (packument)."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    name: str | None = None
    dist_tags: dict[str, str] = Field(default_factory=dict, alias="dist-tags")
    versions: dict[str, PackumentVersionSchema] = Field(default_factory=dict)
    time: dict[str, str] = Field(default_factory=dict)
    license: str | None = None

    @field_validator("license", mode="before")
    @classmethod
    def _normalize_license(cls, value: Any) -> str | None:
        return _license_text(value)

    @field_validator("dist_tags", "time", mode="before")
    @classmethod
    def _keep_string_values(cls, value: Any) -> dict[str, str]:
        if not isinstance(value, dict):
            return {}
        return {str(k): v for k, v in value.items() if isinstance(v, str)}


# ════════════════════════════════════════════════════════════════════════════
# Project input
# ════════════════════════════════════════════════════════════════════════════


class PackageJsonSchema(BaseModel):
    """Schema for the parts of package.json the analyzer reads."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    name: str | None = None
    version: str | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)
    dev_dependencies: dict[str, str] = Field(default_factory=dict, alias="devDependencies")


class NpmLsNodeSchema(BaseModel):
    """Schema for a node of ``npm ls --json`` output (also lockfile v1)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str | None = None
    version: str | None = None
    dependencies: dict[str, NpmLsNodeSchema] = Field(default_factory=dict)
    requires: dict[str, str] = Field(default_factory=dict)


class LockPackageSchema(BaseModel):
    """Schema for one entry of a lockfile v2/v3 ``packages`` map."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    name: str | None = None
    version: str | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)
    optional_dependencies: dict[str, str] = Field(
        default_factory=dict, alias="optionalDependencies"
    )
    dev_dependencies: dict[str, str] = Field(default_factory=dict, alias="devDependencies")


class LockfileSchema(BaseModel):
    """Schema for package-lock.json."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    name: str | None = None
    lockfile_version: int = Field(default=1, alias="lockfileVersion")
    packages: dict[str, LockPackageSchema] = Field(default_factory=dict)
    dependencies: dict[str, NpmLsNodeSchema] = Field(default_factory=dict)


# ════════════════════════════════════════════════════════════════════════════
# Cache persistence
# ════════════════════════════════════════════════════════════════════════════


class CacheEntrySchema(BaseModel):
    """Schema for one persisted cache entry."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    key: str
    value: Any
    expires_at: float


class CacheFileSchema(BaseModel):
    """Schema for the persisted cache file."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    format: int = 1
    entries: list[CacheEntrySchema] = Field(default_factory=list)


# ════════════════════════════════════════════════════════════════════════════
# Output
# ════════════════════════════════════════════════════════════════════════════


class DependencyRecordSchema(BaseModel):
    """Pydantic schema for serializing one analysis record to JSON."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    name: str = Field(description="The name of the package")
    declared_range: str = Field(description="Range declared in the manifest")
    group: DependencyGroup = Field(description="Manifest section")
    resolved_version: str | None = Field(description="Installed or base version")
    wanted_version: str | None = Field(description="Highest version satisfying the range")
    latest_version: str | None = Field(description="Latest published version")
    update_class: UpdateClass = Field(description="Update tier")
    license: str | None = Field(description="License of the resolved version")
    license_valid: bool | None = Field(default=None, description="License is a valid SPDX expression")
    license_allowed: bool | None = Field(default=None, description="License is on the allow-list")
    error: str | None = Field(default=None, description="Failure description")
    error_kind: ErrorKind | None = Field(default=None, description="Failure category")


class AnalysisErrorSchema(BaseModel):
    """Pydantic schema for a per-package failure."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    name: str
    kind: ErrorKind
    message: str


class AnalysisResultSchema(BaseModel):
    """Pydantic schema for complete analysis result serialization."""

    model_config = ConfigDict(frozen=True)

    records: list[DependencyRecordSchema] = Field(default_factory=list)
    errors: list[AnalysisErrorSchema] = Field(default_factory=list)
    total: int = 0
    major_count: int = 0
    minor_count: int = 0
    patch_count: int = 0
    current_count: int = 0
    unknown_count: int = 0
    error_count: int = 0
    license_violation_count: int = 0


class DuplicateVersionSchema(BaseModel):
    """Pydantic schema for a duplicate-version finding."""

    model_config = ConfigDict(frozen=True)

    name: str
    versions: list[str]


class StructureResultSchema(BaseModel):
    """Pydantic schema for structural findings."""

    model_config = ConfigDict(frozen=True)

    cycles: list[list[str]] = Field(default_factory=list)
    duplicates: list[DuplicateVersionSchema] = Field(default_factory=list)


class CacheStatsSchema(BaseModel):
    """Pydantic schema for cache statistics."""

    model_config = ConfigDict(frozen=True)

    hits: int = 0
    misses: int = 0
    errors: int = 0
    size: int = 0


__all__ = [
    "AnalysisErrorSchema",
    "AnalysisResultSchema",
    "CacheEntrySchema",
    "CacheFileSchema",
    "CacheStatsSchema",
    "DependencyRecordSchema",
    "DuplicateVersionSchema",
    "LockPackageSchema",
    "LockfileSchema",
    "NpmLsNodeSchema",
    "PackageJsonSchema",
    "PackumentSchema",
    "PackumentVersionSchema",
    "StructureResultSchema",
]
