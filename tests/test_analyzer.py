"""Analyzer stories: a manifest becomes one record per dependency.

The Analyzer looks up every manifest entry through the registry client,
classifies the update, attaches the license, and keeps per-package
failures as error records instead of aborting the run. The registry is
served by ``httpx.MockTransport``.
"""

from __future__ import annotations

import json
from pathlib import Path
from types import MappingProxyType
from typing import Any

import httpx
import pytest

from dep_guardian import analyzer as analyzer_mod
from dep_guardian.analyzer import (
    AnalysisOptions,
    Analyzer,
    analyze_manifest,
    build_record,
    create_analyzer,
    record_to_dict,
    result_to_dict,
    stats_to_dict,
    structure_to_dict,
    write_report_json,
)
from dep_guardian.errors import ValidationError
from dep_guardian.graph_analyzer import build_graph
from dep_guardian.manifest import load_install_tree
from dep_guardian.models import (
    DependencyGroup,
    ErrorKind,
    FetchStatus,
    ManifestEntry,
    PackageManifest,
    RegistryMetadata,
    RegistryResult,
    UpdateClass,
    VersionInfo,
)
from dep_guardian.rate_limiter import RateLimit
from dep_guardian.registry_client import RegistryClient, create_metadata_cache

TESTDATA_DIR = Path(__file__).parent / "testdata"


def packument(name: str, latest: str, versions: dict[str, str | None]) -> dict[str, Any]:
    return {
        "name": name,
        "dist-tags": {"latest": latest},
        "versions": {v: {"version": v, "license": lic} for v, lic in versions.items()},
    }


REGISTRY: dict[str, dict[str, Any]] = {
    "depA": packument("depA", "2.0.0", {"1.0.0": "MIT", "2.0.0": "MIT"}),
    "depB": packument("depB", "1.4.0", {"1.2.0": "ISC", "1.3.0": "ISC", "1.4.0": "ISC"}),
    "depC": packument("depC", "3.0.1", {"3.0.0": None, "3.0.1": None}),
    "depD": packument("depD", "0.9.0", {"0.9.0": "Apache-2.0"}),
}


class FakeRegistry:
    def __init__(self, documents: dict[str, dict[str, Any]]) -> None:
        self.documents = documents
        self.calls: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        name = request.url.path.lstrip("/")
        self.calls.append(name)
        if name in self.documents:
            return httpx.Response(200, json=self.documents[name])
        return httpx.Response(404)


async def _no_sleep(seconds: float) -> None:
    return None


def make_analyzer(
    registry: FakeRegistry,
    *,
    include_dev: bool = False,
    cache_path: Path | None = None,
) -> Analyzer:
    options = AnalysisOptions(include_dev=include_dev, cache_path=cache_path, retry_delay=0.0)
    client = RegistryClient(
        registry_url="https://registry.test",
        rate_limit=RateLimit(1000, 60.0),
        cache=create_metadata_cache(cache_path),
        transport=httpx.MockTransport(registry),
        sleep=_no_sleep,
    )
    return Analyzer(options=options, client=client)


def manifest_of(dependencies: dict[str, str], dev: dict[str, str] | None = None) -> PackageManifest:
    return PackageManifest(
        name="app",
        dependencies=MappingProxyType(dependencies),
        dev_dependencies=MappingProxyType(dev or {}),
    )


# ════════════════════════════════════════════════════════════════════════════
# AnalysisOptions
# ════════════════════════════════════════════════════════════════════════════


@pytest.mark.os_agnostic
def test_options_have_documented_defaults() -> None:
    options = AnalysisOptions()

    assert options.include_dev is False
    assert options.cache_ttl == 3600.0
    assert options.max_retries == 3
    assert options.rate_limit == RateLimit(100, 60.0)


@pytest.mark.os_agnostic
@pytest.mark.parametrize(
    "overrides",
    [
        {"timeout": 0},
        {"cache_ttl": -1},
        {"max_retries": -1},
        {"rate_limit": RateLimit(0, 60.0)},
    ],
)
def test_options_reject_out_of_range_values(overrides: dict[str, Any]) -> None:
    with pytest.raises(ValidationError):
        AnalysisOptions(**overrides)


@pytest.mark.os_agnostic
def test_options_canonicalize_allowed_licenses() -> None:
    options = AnalysisOptions(allowed_licenses=frozenset({"mit", "apache-2.0"}))

    assert options.allowed_licenses == frozenset({"MIT", "Apache-2.0"})


@pytest.mark.os_agnostic
def test_options_reject_invalid_allowed_license() -> None:
    with pytest.raises(ValidationError):
        AnalysisOptions(allowed_licenses=frozenset({"not a license"}))


@pytest.mark.os_agnostic
def test_analyzer_builds_registry_client_from_options() -> None:
    analyzer = Analyzer(options=AnalysisOptions(registry_url="https://mirror.test/", timeout=5.0, max_retries=1))

    assert analyzer.registry.registry_url == "https://mirror.test"
    assert analyzer.registry.timeout == 5.0
    assert analyzer.registry.retry_policy.max_retries == 1


@pytest.mark.os_agnostic
def test_analyzer_uses_supplied_registry_client() -> None:
    client = RegistryClient(registry_url="https://registry.test")

    assert Analyzer(client=client).registry is client


# ════════════════════════════════════════════════════════════════════════════
# build_record
# ════════════════════════════════════════════════════════════════════════════


def _found(name: str, latest: str, versions: dict[str, str | None], license: str | None = None) -> RegistryResult:
    metadata = RegistryMetadata(
        name=name,
        latest_version=latest,
        versions={v: VersionInfo(license=lic) for v, lic in versions.items()},
        license=license,
    )
    return RegistryResult(name=name, status=FetchStatus.FOUND, metadata=metadata)


@pytest.mark.os_agnostic
def test_build_record_uses_range_base_as_resolved_version() -> None:
    entry = ManifestEntry("depB", "^1.2.0")

    record = build_record(entry, _found("depB", "1.4.0", {"1.2.0": "ISC", "1.4.0": "ISC"}))

    assert record.resolved_version == "1.2.0"
    assert record.wanted_version == "1.4.0"
    assert record.update_class is UpdateClass.MINOR


@pytest.mark.os_agnostic
def test_build_record_prefers_installed_version() -> None:
    entry = ManifestEntry("depB", "^1.2.0")

    record = build_record(entry, _found("depB", "1.4.0", {"1.4.0": "ISC"}), installed_version="1.4.0")

    assert record.resolved_version == "1.4.0"
    assert record.update_class is UpdateClass.CURRENT


@pytest.mark.os_agnostic
def test_build_record_falls_back_to_package_license() -> None:
    record = build_record(ManifestEntry("x", "1.0.0"), _found("x", "1.0.0", {"1.0.0": None}, license="BSD-3-Clause"))

    assert record.license == "BSD-3-Clause"


@pytest.mark.os_agnostic
def test_build_record_marks_missing_license_unknown() -> None:
    record = build_record(ManifestEntry("x", "1.0.0"), _found("x", "1.0.0", {"1.0.0": None}))

    assert record.license == "UNKNOWN"


@pytest.mark.os_agnostic
def test_build_record_flags_spdx_validity() -> None:
    valid = build_record(ManifestEntry("x", "1.0.0"), _found("x", "1.0.0", {"1.0.0": "MIT"}))
    missing = build_record(ManifestEntry("y", "1.0.0"), _found("y", "1.0.0", {"1.0.0": None}))

    assert valid.license_valid is True
    assert missing.license_valid is False
    assert valid.license_allowed is None


@pytest.mark.os_agnostic
def test_build_record_checks_license_against_allow_list() -> None:
    allowed = frozenset({"MIT"})

    permitted = build_record(ManifestEntry("x", "1.0.0"), _found("x", "1.0.0", {"1.0.0": "MIT"}), allowed_licenses=allowed)
    refused = build_record(ManifestEntry("y", "1.0.0"), _found("y", "1.0.0", {"1.0.0": "ISC"}), allowed_licenses=allowed)

    assert permitted.license_allowed is True
    assert refused.license_allowed is False


@pytest.mark.os_agnostic
def test_build_record_with_tag_range_is_unknown() -> None:
    record = build_record(ManifestEntry("x", "latest"), _found("x", "1.0.0", {"1.0.0": "MIT"}))

    assert record.resolved_version == "latest"
    assert record.update_class is UpdateClass.UNKNOWN
    assert record.error is None


@pytest.mark.os_agnostic
def test_build_record_turns_failure_into_error_record() -> None:
    failure = RegistryResult(
        name="ghost", status=FetchStatus.NOT_FOUND, error="Package ghost not found", error_kind=ErrorKind.NOT_FOUND
    )

    record = build_record(ManifestEntry("ghost", "^1.0.0", DependencyGroup.DEV), failure)

    assert record.error == "Package ghost not found"
    assert record.error_kind is ErrorKind.NOT_FOUND
    assert record.group is DependencyGroup.DEV
    assert record.resolved_version is None
    assert record.latest_version is None
    assert record.license is None
    assert record.update_class is UpdateClass.UNKNOWN


# ════════════════════════════════════════════════════════════════════════════
# Analyzer.analyze
# ════════════════════════════════════════════════════════════════════════════


@pytest.mark.os_agnostic
def test_exact_version_behind_latest_major_is_major() -> None:
    analyzer = make_analyzer(FakeRegistry(REGISTRY))

    result = analyzer.analyze(manifest_of({"depA": "1.0.0"}))

    (record,) = result.records
    assert record.name == "depA"
    assert record.resolved_version == "1.0.0"
    assert record.latest_version == "2.0.0"
    assert record.update_class is UpdateClass.MAJOR
    assert record.license == "MIT"


@pytest.mark.os_agnostic
def test_records_follow_manifest_order() -> None:
    analyzer = make_analyzer(FakeRegistry(REGISTRY))

    result = analyzer.analyze(manifest_of({"depD": "^0.9.0", "depA": "1.0.0", "depB": "^1.2.0"}))

    assert [r.name for r in result.records] == ["depD", "depA", "depB"]


@pytest.mark.os_agnostic
def test_one_record_per_entry_even_when_lookups_fail() -> None:
    analyzer = make_analyzer(FakeRegistry(REGISTRY))
    manifest = manifest_of({"depA": "1.0.0", "ghost": "^1.0.0", "depC": "~3.0.0"})

    result = analyzer.analyze(manifest)

    assert result.total == manifest.size()
    assert result.error_count == 1
    assert result.errors[0].name == "ghost"
    assert result.errors[0].kind is ErrorKind.NOT_FOUND
    assert result.records[1].error is not None
    assert result.records[2].update_class is UpdateClass.PATCH
    assert result.records[2].license == "UNKNOWN"


class BrokenRegistry(FakeRegistry):
    """Serves an undecodable body for ``bad`` and a redirect loop for ``loop``."""

    def __call__(self, request: httpx.Request) -> httpx.Response:
        name = request.url.path.lstrip("/")
        if name == "bad":
            self.calls.append(name)
            return httpx.Response(200, content=b'{"name": "\xff\xfe"}')
        if name == "loop":
            self.calls.append(name)
            return httpx.Response(302, headers={"Location": str(request.url)})
        return super().__call__(request)


@pytest.mark.os_agnostic
def test_broken_registry_answers_become_error_records() -> None:
    analyzer = make_analyzer(BrokenRegistry(REGISTRY))
    manifest = manifest_of({"depA": "1.0.0", "bad": "1.0.0", "loop": "1.0.0"})

    result = analyzer.analyze(manifest)

    assert [r.name for r in result.records] == ["depA", "bad", "loop"]
    assert result.records[0].update_class is UpdateClass.MAJOR
    assert {e.name: e.kind for e in result.errors} == {"bad": ErrorKind.NETWORK, "loop": ErrorKind.NETWORK}


@pytest.mark.os_agnostic
def test_dev_dependencies_are_skipped_by_default() -> None:
    analyzer = make_analyzer(FakeRegistry(REGISTRY))

    result = analyzer.analyze(manifest_of({"depA": "1.0.0"}, dev={"depB": "^1.2.0"}))

    assert [r.name for r in result.records] == ["depA"]


@pytest.mark.os_agnostic
def test_dev_dependencies_are_analyzed_on_request() -> None:
    analyzer = make_analyzer(FakeRegistry(REGISTRY), include_dev=True)

    result = analyzer.analyze(manifest_of({"depA": "1.0.0"}, dev={"depB": "^1.2.0"}))

    assert [(r.name, r.group) for r in result.records] == [
        ("depA", DependencyGroup.DIRECT),
        ("depB", DependencyGroup.DEV),
    ]


@pytest.mark.os_agnostic
def test_installed_versions_override_declared_ranges() -> None:
    analyzer = make_analyzer(FakeRegistry(REGISTRY))

    result = analyzer.analyze(manifest_of({"depB": "^1.2.0"}), installed={"depB": "1.3.0"})

    assert result.records[0].resolved_version == "1.3.0"
    assert result.records[0].update_class is UpdateClass.MINOR


@pytest.mark.os_agnostic
def test_empty_manifest_yields_empty_result() -> None:
    analyzer = make_analyzer(FakeRegistry(REGISTRY))

    result = analyzer.analyze(manifest_of({}))

    assert result.total == 0
    assert result.errors == []


@pytest.mark.os_agnostic
def test_missing_manifest_is_rejected() -> None:
    analyzer = make_analyzer(FakeRegistry(REGISTRY))

    with pytest.raises(ValidationError):
        analyzer.analyze(None)


@pytest.mark.os_agnostic
def test_second_run_is_served_from_cache() -> None:
    registry = FakeRegistry(REGISTRY)
    analyzer = make_analyzer(registry)
    manifest = manifest_of({"depA": "1.0.0", "depB": "^1.2.0"})

    analyzer.analyze(manifest)
    analyzer.analyze(manifest)

    assert sorted(registry.calls) == ["depA", "depB"]
    assert analyzer.stats().hits == 2


@pytest.mark.os_agnostic
def test_cache_path_persists_between_analyzers(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    manifest = manifest_of({"depA": "1.0.0"})
    make_analyzer(FakeRegistry(REGISTRY), cache_path=path).analyze(manifest)

    offline = FakeRegistry({})
    result = make_analyzer(offline, cache_path=path).analyze(manifest)

    assert offline.calls == []
    assert result.records[0].latest_version == "2.0.0"


@pytest.mark.os_agnostic
def test_outdated_lists_only_update_tiers() -> None:
    analyzer = make_analyzer(FakeRegistry(REGISTRY))

    result = analyzer.analyze(manifest_of({"depA": "1.0.0", "depD": "0.9.0"}))

    assert [r.name for r in result.outdated] == ["depA"]
    assert result.count(UpdateClass.CURRENT) == 1


# ════════════════════════════════════════════════════════════════════════════
# Analyzer.analyze_structure
# ════════════════════════════════════════════════════════════════════════════


@pytest.mark.os_agnostic
def test_structure_of_adjacency_mapping() -> None:
    analyzer = create_analyzer()

    result = analyzer.analyze_structure({"a": ["b"], "b": ["a"]})

    assert result.cycles == [["a", "b", "a"]]


@pytest.mark.os_agnostic
def test_structure_of_graph_with_occurrences() -> None:
    analyzer = create_analyzer()

    result = analyzer.analyze_structure(build_graph({"a": ["b"]}), {"b": ["1.0.0", "1.0.1"]})

    assert result.cycles == []
    assert [d.versions for d in result.duplicates] == [("1.0.0", "1.0.1")]


@pytest.mark.os_agnostic
def test_structure_of_install_tree_uses_its_occurrences() -> None:
    tree = load_install_tree(TESTDATA_DIR / "package-lock.json")

    result = create_analyzer().analyze_structure(tree)

    assert [d.name for d in result.duplicates] == ["ms"]


@pytest.mark.os_agnostic
def test_structure_of_manifest_is_acyclic() -> None:
    result = create_analyzer().analyze_structure(manifest_of({"a": "1.0.0"}))

    assert result.is_healthy is True


@pytest.mark.os_agnostic
def test_structure_without_source_is_rejected() -> None:
    with pytest.raises(ValidationError):
        create_analyzer().analyze_structure(None)


# ════════════════════════════════════════════════════════════════════════════
# Serialization
# ════════════════════════════════════════════════════════════════════════════


@pytest.mark.os_agnostic
def test_record_to_dict_uses_plain_values() -> None:
    record = build_record(ManifestEntry("depA", "1.0.0"), _found("depA", "2.0.0", {"1.0.0": "MIT"}))

    data = record_to_dict(record)

    assert data["update_class"] == "major"
    assert data["group"] == "dependencies"
    assert data["error"] is None


@pytest.mark.os_agnostic
def test_result_to_dict_includes_counts() -> None:
    analyzer = make_analyzer(FakeRegistry(REGISTRY))
    result = analyzer.analyze(manifest_of({"depA": "1.0.0", "ghost": "1.0.0"}))

    data = result_to_dict(result)

    assert data["total"] == 2
    assert data["major_count"] == 1
    assert data["error_count"] == 1
    assert data["errors"] == [{"name": "ghost", "kind": "not_found", "message": "Package ghost not found"}]


@pytest.mark.os_agnostic
def test_license_allow_list_reports_violations() -> None:
    registry = FakeRegistry(REGISTRY)
    options = AnalysisOptions(allowed_licenses=frozenset({"MIT", "Apache-2.0"}), retry_delay=0.0)
    client = RegistryClient(
        registry_url="https://registry.test",
        rate_limit=RateLimit(1000, 60.0),
        transport=httpx.MockTransport(registry),
        sleep=_no_sleep,
    )
    analyzer = Analyzer(options=options, client=client)

    result = analyzer.analyze(manifest_of({"depA": "1.0.0", "depB": "^1.2.0", "depC": "~3.0.0", "depD": "0.9.0"}))

    assert [r.name for r in result.license_violations] == ["depB", "depC"]
    assert result_to_dict(result)["license_violation_count"] == 2


@pytest.mark.os_agnostic
def test_structure_to_dict_lists_versions() -> None:
    result = create_analyzer().analyze_structure(build_graph({"a": []}), {"a": ["2.0.0", "1.0.0"]})

    assert structure_to_dict(result) == {"cycles": [], "duplicates": [{"name": "a", "versions": ["1.0.0", "2.0.0"]}]}


@pytest.mark.os_agnostic
def test_write_report_json_creates_file(tmp_path: Path) -> None:
    analyzer = make_analyzer(FakeRegistry(REGISTRY))
    result = analyzer.analyze(manifest_of({"depA": "1.0.0"}))
    output = tmp_path / "reports" / "deps.json"

    write_report_json(result, output)

    data = json.loads(output.read_text(encoding="utf-8"))
    assert data["records"][0]["latest_version"] == "2.0.0"


@pytest.mark.os_agnostic
def test_write_report_json_rejects_directory(tmp_path: Path) -> None:
    analyzer = make_analyzer(FakeRegistry(REGISTRY))
    result = analyzer.analyze(manifest_of({}))

    with pytest.raises(ValidationError):
        write_report_json(result, tmp_path)


@pytest.mark.os_agnostic
def test_stats_to_dict_reports_cache_counters() -> None:
    analyzer = make_analyzer(FakeRegistry(REGISTRY))
    manifest = manifest_of({"depA": "1.0.0"})
    analyzer.analyze(manifest)
    analyzer.analyze(manifest)

    assert stats_to_dict(analyzer.stats()) == {"hits": 1, "misses": 1, "errors": 0, "size": 1}


# ════════════════════════════════════════════════════════════════════════════
# analyze_manifest
# ════════════════════════════════════════════════════════════════════════════


@pytest.mark.os_agnostic
def test_analyze_manifest_loads_package_json_path(monkeypatch: pytest.MonkeyPatch) -> None:
    documents = {
        "express": packument("express", "5.0.0", {"4.18.2": "MIT", "5.0.0": "MIT"}),
        "lodash": packument("lodash", "4.17.21", {"4.17.21": "MIT"}),
        "left-pad": packument("left-pad", "1.3.0", {"1.3.0": "WTFPL"}),
    }
    registry = FakeRegistry(documents)
    monkeypatch.setattr(analyzer_mod, "create_analyzer", lambda options=None: make_analyzer(registry))

    result = analyze_manifest(TESTDATA_DIR / "package.json")

    assert [r.name for r in result.records] == ["express", "lodash", "left-pad"]
    assert result.count(UpdateClass.MAJOR) == 1
    assert result.error_count == 0
