"""Core analyzer that evaluates dependencies and reports their health.

Purpose
-------
Orchestrate the dependency analysis pipeline: take a manifest, resolve
registry metadata for every entry (cached, throttled, retried), classify
each update, attach license data, and run the structural checks.

Contents
--------
* :class:`AnalysisOptions` - Validated run options
* :class:`Analyzer` - Stateful analyzer owning a registry client and its cache
* :func:`build_record` - Turn one manifest entry and lookup into a record
* :func:`analyze_manifest` - One-call API for a package.json path or manifest
* :func:`write_report_json` - Write a result as JSON

System Role
-----------
The central component that coordinates all other modules to produce
the final analysis results. This is the main entry point for the library.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import ValidationError
from .graph_analyzer import analyze_graph, build_graph, graph_from_manifest
from .licenses import canonical_license, is_license_allowed, normalize_allowed_licenses
from .manifest import load_manifest
from .models import (
    AnalysisError,
    AnalysisResult,
    CacheStats,
    DependencyGraph,
    DependencyRecord,
    ErrorKind,
    InstallTree,
    ManifestEntry,
    PackageManifest,
    RegistryResult,
    StructureResult,
    UpdateClass,
)
from .rate_limiter import RateLimit
from .registry_client import DEFAULT_REGISTRY_URL, DEFAULT_TIMEOUT, RegistryClient, create_metadata_cache
from .schemas import (
    AnalysisErrorSchema,
    AnalysisResultSchema,
    CacheStatsSchema,
    DependencyRecordSchema,
    DuplicateVersionSchema,
    StructureResultSchema,
)
from .version_resolver import classify, clean, max_satisfying

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

UNKNOWN_LICENSE = "UNKNOWN"


@dataclass(frozen=True, slots=True)
class AnalysisOptions:
    """Options for an analysis run.

    Attributes:
        include_dev: Analyze devDependencies as well.
        cache_ttl: Seconds a registry response stays fresh.
        max_retries: Retries after the first attempt for transient failures.
        retry_delay: Base backoff delay in seconds.
        rate_limit: Request budget per window.
        timeout: Per-request timeout in seconds.
        registry_url: npm-compatible registry base URL.
        cache_path: File for cache persistence across runs; None keeps the
            cache in memory.
        allowed_licenses: SPDX licenses permitted for dependencies; None
            disables the allow-list check. Entries are canonicalised.
    """

    include_dev: bool = False
    cache_ttl: float = 3600.0
    max_retries: int = 3
    retry_delay: float = 1.0
    rate_limit: RateLimit = field(default_factory=RateLimit)
    timeout: float = DEFAULT_TIMEOUT
    registry_url: str = DEFAULT_REGISTRY_URL
    cache_path: Path | None = None
    allowed_licenses: frozenset[str] | None = None

    def __post_init__(self) -> None:
        """Validate option ranges and normalise the license allow-list."""
        if self.timeout <= 0:
            raise ValidationError(f"timeout must be positive, got {self.timeout}")
        if self.cache_ttl < 0:
            raise ValidationError(f"cache_ttl must not be negative, got {self.cache_ttl}")
        if self.max_retries < 0:
            raise ValidationError(f"max_retries must not be negative, got {self.max_retries}")
        if self.rate_limit.count <= 0 or self.rate_limit.window <= 0:
            raise ValidationError(f"rate_limit must be positive, got {self.rate_limit}")
        if self.allowed_licenses is not None:
            object.__setattr__(self, "allowed_licenses", normalize_allowed_licenses(self.allowed_licenses))


def _error_record(entry: ManifestEntry, message: str, kind: ErrorKind) -> DependencyRecord:
    return DependencyRecord(
        name=entry.name,
        declared_range=entry.declared_range,
        group=entry.group,
        update_class=UpdateClass.UNKNOWN,
        error=message,
        error_kind=kind,
    )


def build_record(
    entry: ManifestEntry,
    result: RegistryResult,
    installed_version: str | None = None,
    allowed_licenses: frozenset[str] | None = None,
) -> DependencyRecord:
    """Create the analysis record for one manifest entry.

    Args:
        entry: The declared dependency.
        result: Registry lookup outcome for the entry's package.
        installed_version: Version actually installed, when known.
        allowed_licenses: Normalised allow-list; None skips the check.

    Returns:
        An error record when the lookup failed, otherwise a fully
        populated record.
    """
    if not result.is_found or result.metadata is None:
        return _error_record(entry, result.error or "Unknown registry failure", result.error_kind or ErrorKind.NETWORK)

    metadata = result.metadata
    resolved = installed_version or clean(entry.declared_range) or entry.declared_range
    latest = metadata.latest_version
    license_name = metadata.license_for(resolved, latest) or UNKNOWN_LICENSE
    return DependencyRecord(
        name=entry.name,
        declared_range=entry.declared_range,
        group=entry.group,
        resolved_version=resolved,
        wanted_version=max_satisfying(metadata.versions, entry.declared_range),
        latest_version=latest,
        update_class=classify(resolved, latest),
        license=license_name,
        license_valid=canonical_license(license_name) is not None,
        license_allowed=is_license_allowed(license_name, allowed_licenses),
    )


def _collect_errors(records: Iterable[DependencyRecord]) -> list[AnalysisError]:
    return [
        AnalysisError(name=r.name, kind=r.error_kind or ErrorKind.NETWORK, message=r.error)
        for r in records
        if r.error is not None
    ]


@dataclass
class Analyzer:
    """Stateful analyzer; the registry client and its cache live across runs.

    Attributes:
        options: Run options.
        client: Registry client to use; built from ``options`` when not supplied.
        registry: The registry client in use.
    """

    options: AnalysisOptions = field(default_factory=AnalysisOptions)
    client: RegistryClient | None = None
    registry: RegistryClient = field(init=False)

    def __post_init__(self) -> None:
        """Create the registry client and its cache from the options."""
        if self.client is not None:
            self.registry = self.client
            return
        opts = self.options
        self.registry = RegistryClient(
            registry_url=opts.registry_url,
            timeout=opts.timeout,
            max_retries=opts.max_retries,
            retry_delay=opts.retry_delay,
            rate_limit=opts.rate_limit,
            cache=create_metadata_cache(opts.cache_path, opts.cache_ttl),
            cache_ttl=opts.cache_ttl,
        )

    async def analyze_async(
        self,
        manifest: PackageManifest | None,
        installed: Mapping[str, str] | None = None,
    ) -> AnalysisResult:
        """Analyze a manifest asynchronously.

        Args:
            manifest: Declared dependencies.
            installed: Optional installed versions by package name; when a
                package is missing here its range's base version is used.

        Returns:
            One record per manifest entry, in manifest order, and the
            per-package errors.

        Raises:
            ValidationError: If no manifest is given.
        """
        if manifest is None:
            raise ValidationError("No manifest provided")
        installed = installed or {}
        entries = list(manifest.entries(include_dev=self.options.include_dev))
        logger.info("Analyzing %d dependencies", len(entries))

        if self.options.cache_path is not None:
            self.registry.load_cache()
        try:
            lookups = await self.registry.lookup_many(entry.name for entry in entries)
        finally:
            await self.registry.aclose()
            if self.options.cache_path is not None:
                self.registry.persist_cache()

        allowed = self.options.allowed_licenses
        records = [build_record(entry, lookups[entry.name], installed.get(entry.name), allowed) for entry in entries]
        result = AnalysisResult(records=records, errors=_collect_errors(records))
        logger.info(
            "Analysis finished: %d outdated, %d errors",
            len(result.outdated),
            result.error_count,
        )
        return result

    def analyze(
        self,
        manifest: PackageManifest | None,
        installed: Mapping[str, str] | None = None,
    ) -> AnalysisResult:
        """Synchronous wrapper for analyze_async.

        Args:
            manifest: Declared dependencies.
            installed: Optional installed versions by package name.

        Returns:
            Complete analysis result.
        """
        return asyncio.run(self.analyze_async(manifest, installed))

    def analyze_structure(
        self,
        source: PackageManifest | DependencyGraph | InstallTree | Mapping[str, Iterable[str]] | None,
        occurrences: Mapping[str, Iterable[str]] | None = None,
    ) -> StructureResult:
        """Detect cycles and duplicate installed versions.

        Args:
            source: A manifest (direct edges only), a graph, an installed
                tree, or a transitive adjacency mapping.
            occurrences: Installed versions per package; taken from the
                installed tree when ``source`` is one.

        Raises:
            ValidationError: If no source is given.
        """
        if source is None:
            raise ValidationError("No manifest or graph provided")
        if isinstance(source, InstallTree):
            graph = source.graph
            occurrences = occurrences if occurrences is not None else source.occurrences
        elif isinstance(source, PackageManifest):
            graph = graph_from_manifest(source, include_dev=self.options.include_dev)
        elif isinstance(source, DependencyGraph):
            graph = source
        elif isinstance(source, Mapping):
            graph = build_graph(source)
        else:
            raise ValidationError(f"Unsupported structure source: {type(source).__name__}")

        logger.debug("Analyzing structure of %d nodes, %d edges", len(graph.nodes), graph.edge_count)
        return analyze_graph(graph, occurrences)

    def stats(self) -> CacheStats:
        """Cache statistics of the registry client."""
        return self.registry.cache_stats()


def create_analyzer(options: AnalysisOptions | None = None) -> Analyzer:
    """Create an Analyzer instance with the given options."""
    return Analyzer(options=options or AnalysisOptions())


def analyze_manifest(
    manifest: PackageManifest | Path | str,
    options: AnalysisOptions | None = None,
    *,
    installed: Mapping[str, str] | None = None,
) -> AnalysisResult:
    """Analyze a manifest or a package.json path and return the full result.

    This is the main API function for the library.

    Example:
        >>> result = analyze_manifest("package.json")  # doctest: +SKIP
        >>> for record in result.outdated:  # doctest: +SKIP
        ...     print(f"{record.name}: {record.resolved_version} -> {record.latest_version}")  # doctest: +SKIP
    """
    if not isinstance(manifest, PackageManifest):
        manifest = load_manifest(manifest)
    return create_analyzer(options).analyze(manifest, installed)


def record_to_dict(record: DependencyRecord) -> dict[str, object]:
    """Convert a DependencyRecord to a dictionary for JSON serialization."""
    schema = DependencyRecordSchema(
        name=record.name,
        declared_range=record.declared_range,
        group=record.group,
        resolved_version=record.resolved_version,
        wanted_version=record.wanted_version,
        latest_version=record.latest_version,
        update_class=record.update_class,
        license=record.license,
        license_valid=record.license_valid,
        license_allowed=record.license_allowed,
        error=record.error,
        error_kind=record.error_kind,
    )
    return schema.model_dump()


def result_to_dict(result: AnalysisResult) -> dict[str, object]:
    """Convert an AnalysisResult, with summary counts, to a dictionary."""
    schema = AnalysisResultSchema(
        records=[DependencyRecordSchema.model_validate(record_to_dict(r)) for r in result.records],
        errors=[AnalysisErrorSchema(name=e.name, kind=e.kind, message=e.message) for e in result.errors],
        total=result.total,
        major_count=result.count(UpdateClass.MAJOR),
        minor_count=result.count(UpdateClass.MINOR),
        patch_count=result.count(UpdateClass.PATCH),
        current_count=result.count(UpdateClass.CURRENT),
        unknown_count=result.count(UpdateClass.UNKNOWN),
        error_count=result.error_count,
        license_violation_count=len(result.license_violations),
    )
    return schema.model_dump(mode="json")


def structure_to_dict(result: StructureResult) -> dict[str, object]:
    """Convert a StructureResult to a dictionary."""
    schema = StructureResultSchema(
        cycles=result.cycles,
        duplicates=[DuplicateVersionSchema(name=d.name, versions=list(d.versions)) for d in result.duplicates],
    )
    return schema.model_dump()


def stats_to_dict(stats: CacheStats) -> dict[str, object]:
    """Convert cache statistics to a dictionary."""
    return CacheStatsSchema(hits=stats.hits, misses=stats.misses, errors=stats.errors, size=stats.size).model_dump()


def write_report_json(result: AnalysisResult, output_path: Path | str) -> None:
    """Write an analysis result to a JSON file.

    Uses Pydantic for type-safe JSON serialization at the output boundary.

    Raises:
        ValidationError: If output_path is a directory.
    """
    path = Path(output_path).resolve()

    if path.is_dir():
        raise ValidationError(f"Output path must be a file, not a directory: {path}")

    path.parent.mkdir(parents=True, exist_ok=True)

    with path.open("w", encoding="utf-8") as f:
        json.dump(result_to_dict(result), f, indent=2)

    logger.info("Wrote %d records to %s", result.total, path)


__all__ = [
    "AnalysisOptions",
    "Analyzer",
    "analyze_manifest",
    "build_record",
    "create_analyzer",
    "record_to_dict",
    "result_to_dict",
    "stats_to_dict",
    "structure_to_dict",
    "write_report_json",
]
