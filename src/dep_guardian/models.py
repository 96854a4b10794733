"""Domain models for dependency analysis (dataclasses).

Purpose
-------
Define core data structures for the dependency analysis domain layer.
These are pure dataclasses used for internal business logic.

For external data serialization, use the Pydantic schemas in schemas.py.

Contents
--------
* :class:`UpdateClass` - Semantic-versioning tier separating two versions
* :class:`PackageManifest` - Declared dependencies of a project
* :class:`RegistryMetadata` - Package metadata as published by the registry
* :class:`RegistryResult` - Found / not-found / failed outcome of a lookup
* :class:`DependencyRecord` - One row of analysis output
* :class:`AnalysisResult` - Complete analysis result
* :class:`DependencyGraph` - Directed "depends on" graph
* :class:`StructureResult` - Cycles and duplicate installed versions
* :class:`CacheEntry` / :class:`CacheStats` - Cache store bookkeeping

Data Flow Pattern
-----------------
External Input → Pydantic (validate) → Dataclass (domain) → Pydantic (serialize) → Output

System Role
-----------
Provides the canonical data structures that flow through the analysis pipeline.
These dataclasses are dependency-free and used for pure business logic.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping


class UpdateClass(str, Enum):
    """Tier of the update separating an installed version from a candidate.

    Attributes:
        CURRENT: Both versions are equal.
        PATCH: Only the patch component (or pre-release tag) differs.
        MINOR: The minor component is the most significant difference.
        MAJOR: The major component differs.
        UNKNOWN: Either version could not be parsed or compared.
    """

    CURRENT = "current"
    PATCH = "patch"
    MINOR = "minor"
    MAJOR = "major"
    UNKNOWN = "unknown"


class DependencyGroup(str, Enum):
    """The package.json section a dependency was declared in."""

    DIRECT = "dependencies"
    DEV = "devDependencies"


class FetchStatus(str, Enum):
    """Outcome of a registry lookup."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    FAILED = "failed"


class ErrorKind(str, Enum):
    """Category of a per-package failure."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    NETWORK = "network"
    CACHE = "cache"


@dataclass(frozen=True, slots=True)
class ManifestEntry:
    """A single declared dependency.

    Attributes:
        name: Package name as written in the manifest.
        declared_range: Version range as written (e.g. ``^1.2.0``).
        group: Section the entry was declared in.
    """

    name: str
    declared_range: str
    group: DependencyGroup = DependencyGroup.DIRECT


def _empty_ranges() -> dict[str, str]:
    """Return an empty name → range mapping for dataclass defaults."""
    return {}


@dataclass(frozen=True, slots=True)
class PackageManifest:
    """Immutable snapshot of a project's declared dependencies.

    Direct and dev groups are kept apart so callers can decide whether dev
    dependencies take part in an analysis run.

    Attributes:
        name: Project name, or None when the manifest does not declare one.
        dependencies: Ordered mapping of package name to declared range.
        dev_dependencies: Ordered mapping of dev package name to declared range.
    """

    name: str | None = None
    dependencies: Mapping[str, str] = field(default_factory=_empty_ranges)
    dev_dependencies: Mapping[str, str] = field(default_factory=_empty_ranges)

    def entries(self, *, include_dev: bool = False) -> Iterator[ManifestEntry]:
        """Yield direct entries first, then dev entries, in declaration order."""
        for name, declared in self.dependencies.items():
            yield ManifestEntry(name, declared, DependencyGroup.DIRECT)
        if include_dev:
            for name, declared in self.dev_dependencies.items():
                yield ManifestEntry(name, declared, DependencyGroup.DEV)

    def size(self, *, include_dev: bool = False) -> int:
        """Return the number of entries an analysis run will produce."""
        extra = len(self.dev_dependencies) if include_dev else 0
        return len(self.dependencies) + extra


@dataclass(frozen=True, slots=True)
class VersionInfo:
    """Per-version registry data.

    Attributes:
        license: SPDX identifier or free-form license text, if published.
        published_at: ISO-8601 publish timestamp, if published.
    """

    license: str | None = None
    published_at: str | None = None


def _empty_versions() -> dict[str, VersionInfo]:
    """Return an empty version mapping for dataclass defaults."""
    return {}


@dataclass(frozen=True, slots=True)
class RegistryMetadata:
    """Read-only registry record for one package.

    Attributes:
        name: Package name.
        latest_version: Version the ``latest`` dist-tag points to, or None
            when the registry returned no tags.
        versions: Mapping of published version to its per-version data.
        license: Package-level license, used when a version has none.
    """

    name: str
    latest_version: str | None = None
    versions: Mapping[str, VersionInfo] = field(default_factory=_empty_versions)
    license: str | None = None

    def license_for(self, *versions: str | None) -> str | None:
        """Return the first license found among the given versions.

        Falls back to the package-level license when none of the versions
        carries one.
        """
        for version in versions:
            if version is None:
                continue
            info = self.versions.get(version)
            if info is not None and info.license:
                return info.license
        return self.license


@dataclass(frozen=True, slots=True)
class RegistryResult:
    """Structured outcome of a registry lookup.

    Presentation layers use :attr:`status` to tell "this package does not
    exist" apart from "the registry could not be reached".

    Attributes:
        name: Package name that was looked up.
        status: Found, not found, or failed after retries.
        metadata: Registry metadata when found.
        error: Human-readable failure description when not found or failed.
        error_kind: Failure category when not found or failed.
    """

    name: str
    status: FetchStatus
    metadata: RegistryMetadata | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def is_found(self) -> bool:
        """Return True when metadata is available."""
        return self.status is FetchStatus.FOUND and self.metadata is not None


@dataclass(frozen=True, slots=True)
class DependencyRecord:
    """One row of analysis output.

    When :attr:`error` is set, the version and license fields are None and
    :attr:`update_class` is ``unknown``; otherwise the record is fully
    populated.

    Attributes:
        name: Package name.
        declared_range: Range declared in the manifest.
        group: Manifest section of the declaration.
        resolved_version: Installed version, or the range's base version.
        wanted_version: Highest published version satisfying the range.
        latest_version: Version of the ``latest`` dist-tag.
        update_class: Tier separating resolved and latest versions.
        license: License of the resolved version.
        license_valid: Whether the license is a valid SPDX expression.
        license_allowed: Whether the license is on the allow-list; None
            when no allow-list was given.
        error: Failure description when resolution failed.
        error_kind: Failure category when resolution failed.
    """

    name: str
    declared_range: str
    group: DependencyGroup = DependencyGroup.DIRECT
    resolved_version: str | None = None
    wanted_version: str | None = None
    latest_version: str | None = None
    update_class: UpdateClass = UpdateClass.UNKNOWN
    license: str | None = None
    license_valid: bool | None = None
    license_allowed: bool | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def is_outdated(self) -> bool:
        """Return True for major, minor and patch records."""
        return self.update_class in (UpdateClass.MAJOR, UpdateClass.MINOR, UpdateClass.PATCH)


@dataclass(frozen=True, slots=True)
class AnalysisError:
    """A per-package failure collected during an analysis run."""

    name: str
    kind: ErrorKind
    message: str


def _empty_record_list() -> list[DependencyRecord]:
    """Return an empty DependencyRecord list for dataclass defaults."""
    return []


def _empty_error_list() -> list[AnalysisError]:
    """Return an empty AnalysisError list for dataclass defaults."""
    return []


@dataclass(slots=True)
class AnalysisResult:
    """Complete result of analyzing a manifest.

    ``records`` holds exactly one entry per analyzed manifest entry, in
    manifest order.
    """

    records: list[DependencyRecord] = field(default_factory=_empty_record_list)
    errors: list[AnalysisError] = field(default_factory=_empty_error_list)

    @property
    def total(self) -> int:
        return len(self.records)

    def count(self, update_class: UpdateClass) -> int:
        """Count successful records of the given update class."""
        return sum(1 for r in self.records if r.error is None and r.update_class is update_class)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def outdated(self) -> list[DependencyRecord]:
        """Records with a major, minor or patch update available."""
        return [r for r in self.records if r.is_outdated]

    @property
    def license_violations(self) -> list[DependencyRecord]:
        """Records whose license is not on the allow-list."""
        return [r for r in self.records if r.license_allowed is False]


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A cached value and its absolute expiry timestamp."""

    key: str
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        """An entry read at or after its expiry is a miss."""
        return now >= self.expires_at


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Cache introspection counters."""

    hits: int = 0
    misses: int = 0
    errors: int = 0
    size: int = 0

    @property
    def hit_ratio(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


@dataclass(frozen=True, slots=True)
class DependencyGraph:
    """Directed dependency graph; an edge ``A → B`` means A depends on B.

    Attributes:
        adjacency: Ordered mapping of node to the nodes it depends on. Every
            edge target is also a key.
    """

    adjacency: Mapping[str, tuple[str, ...]]

    @property
    def nodes(self) -> tuple[str, ...]:
        return tuple(self.adjacency)

    def successors(self, node: str) -> tuple[str, ...]:
        return self.adjacency.get(node, ())

    @property
    def edge_count(self) -> int:
        return sum(len(targets) for targets in self.adjacency.values())


@dataclass(frozen=True, slots=True)
class DuplicateVersion:
    """A package installed at more than one distinct version."""

    name: str
    versions: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class InstallTree:
    """Transitive install data extracted from ``npm ls`` or a lockfile.

    Attributes:
        graph: Dependency graph of the installed packages.
        occurrences: Every installed version instance per package name.
        top_level: Version installed directly under the project's
            ``node_modules`` (what the project itself loads) per name.
    """

    graph: DependencyGraph
    occurrences: Mapping[str, tuple[str, ...]]
    top_level: Mapping[str, str] = field(default_factory=_empty_ranges)

    def installed_versions(self) -> dict[str, str]:
        """Return the version the project loads for each installed package.

        Top-level installs win; packages only installed in nested
        ``node_modules`` report their first occurrence.
        """
        versions = {name: found[0] for name, found in self.occurrences.items() if found}
        versions.update(self.top_level)
        return versions


def _empty_cycles() -> list[list[str]]:
    """Return an empty cycle list for dataclass defaults."""
    return []


def _empty_duplicates() -> list[DuplicateVersion]:
    """Return an empty duplicate list for dataclass defaults."""
    return []


@dataclass(slots=True)
class StructureResult:
    """Structural findings for a dependency graph."""

    cycles: list[list[str]] = field(default_factory=_empty_cycles)
    duplicates: list[DuplicateVersion] = field(default_factory=_empty_duplicates)

    @property
    def is_healthy(self) -> bool:
        return not self.cycles and not self.duplicates


__all__ = [
    "AnalysisError",
    "AnalysisResult",
    "CacheEntry",
    "CacheStats",
    "DependencyGraph",
    "DependencyGroup",
    "DependencyRecord",
    "DuplicateVersion",
    "ErrorKind",
    "FetchStatus",
    "InstallTree",
    "ManifestEntry",
    "PackageManifest",
    "RegistryMetadata",
    "RegistryResult",
    "StructureResult",
    "UpdateClass",
    "VersionInfo",
]
