"""Public package surface for npm dependency analysis.

This package resolves npm registry metadata for the dependencies a
package.json declares, classifies how far behind each one is, reports
licenses, and detects dependency cycles and duplicate installed versions.
Registry lookups are cached, rate limited and retried.

Main API
--------
* :func:`analyze_manifest` - Analyze a package.json and return all records
* :class:`Analyzer` - Stateful analyzer with a persistent registry cache
* :class:`RegistryClient` - Async npm registry client
* :class:`CacheStore` - TTL cache with single-flight fetches
* :func:`classify` - Update tier between two versions
* :func:`detect_cycles` / :func:`detect_duplicate_versions` - Structural checks
"""

from __future__ import annotations

from .__init__conf__ import print_info
from .analyzer import (
    AnalysisOptions,
    Analyzer,
    analyze_manifest,
    build_record,
    create_analyzer,
    result_to_dict,
    structure_to_dict,
    write_report_json,
)
from .cache_store import CacheStore
from .config import get_analyzer_settings, get_config
from .errors import (
    CacheError,
    DependencyGuardianError,
    NetworkError,
    NotFoundError,
    ValidationError,
)
from .graph_analyzer import (
    analyze_graph,
    build_graph,
    detect_cycles,
    detect_duplicate_versions,
)
from .licenses import canonical_license, is_license_allowed
from .manifest import load_install_tree, load_manifest
from .models import (
    AnalysisError,
    AnalysisResult,
    CacheStats,
    DependencyGraph,
    DependencyGroup,
    DependencyRecord,
    DuplicateVersion,
    ErrorKind,
    FetchStatus,
    InstallTree,
    PackageManifest,
    RegistryMetadata,
    RegistryResult,
    StructureResult,
    UpdateClass,
)
from .rate_limiter import RateLimit, SlidingWindowRateLimiter
from .registry_client import RegistryClient
from .retry import RetryPolicy
from .version_resolver import classify, compare, max_satisfying, parse, satisfies_range

__all__ = [
    "AnalysisError",
    "AnalysisOptions",
    "AnalysisResult",
    "Analyzer",
    "CacheError",
    "CacheStats",
    "CacheStore",
    "DependencyGraph",
    "DependencyGroup",
    "DependencyGuardianError",
    "DependencyRecord",
    "DuplicateVersion",
    "ErrorKind",
    "FetchStatus",
    "InstallTree",
    "NetworkError",
    "NotFoundError",
    "PackageManifest",
    "RateLimit",
    "RegistryClient",
    "RegistryMetadata",
    "RegistryResult",
    "RetryPolicy",
    "SlidingWindowRateLimiter",
    "StructureResult",
    "UpdateClass",
    "ValidationError",
    "analyze_graph",
    "analyze_manifest",
    "build_graph",
    "build_record",
    "canonical_license",
    "classify",
    "compare",
    "create_analyzer",
    "detect_cycles",
    "detect_duplicate_versions",
    "get_analyzer_settings",
    "get_config",
    "is_license_allowed",
    "load_install_tree",
    "load_manifest",
    "max_satisfying",
    "parse",
    "print_info",
    "result_to_dict",
    "satisfies_range",
    "structure_to_dict",
    "write_report_json",
]
