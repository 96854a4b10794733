"""Manifest stories: project files become immutable analysis inputs."""

from __future__ import annotations

import json
import shutil
from pathlib import Path

import pytest

from dep_guardian.errors import ValidationError
from dep_guardian.manifest import (
    install_tree_from_document,
    load_install_tree,
    load_manifest,
    manifest_from_mapping,
)
from dep_guardian.models import DependencyGroup

TESTDATA_DIR = Path(__file__).parent / "testdata"


# ════════════════════════════════════════════════════════════════════════════
# load_manifest
# ════════════════════════════════════════════════════════════════════════════


@pytest.mark.os_agnostic
def test_load_manifest_reads_both_groups() -> None:
    manifest = load_manifest(TESTDATA_DIR / "package.json")

    assert manifest.name == "storefront"
    assert dict(manifest.dependencies) == {"express": "^4.18.2", "lodash": "~4.17.20", "left-pad": "1.3.0"}
    assert dict(manifest.dev_dependencies) == {"jest": "^29.0.0"}


@pytest.mark.os_agnostic
def test_load_manifest_accepts_project_directory(tmp_path: Path) -> None:
    shutil.copy(TESTDATA_DIR / "package.json", tmp_path / "package.json")

    manifest = load_manifest(tmp_path)

    assert manifest.name == "storefront"


@pytest.mark.os_agnostic
def test_load_manifest_preserves_declaration_order() -> None:
    manifest = load_manifest(TESTDATA_DIR / "package.json")

    names = [entry.name for entry in manifest.entries(include_dev=True)]

    assert names == ["express", "lodash", "left-pad", "jest"]


@pytest.mark.os_agnostic
def test_manifest_entries_carry_their_group() -> None:
    manifest = load_manifest(TESTDATA_DIR / "package.json")

    groups = {entry.name: entry.group for entry in manifest.entries(include_dev=True)}

    assert groups["express"] is DependencyGroup.DIRECT
    assert groups["jest"] is DependencyGroup.DEV


@pytest.mark.os_agnostic
def test_manifest_size_counts_dev_only_on_request() -> None:
    manifest = load_manifest(TESTDATA_DIR / "package.json")

    assert manifest.size() == 3
    assert manifest.size(include_dev=True) == 4


@pytest.mark.os_agnostic
def test_loaded_manifest_is_read_only() -> None:
    manifest = load_manifest(TESTDATA_DIR / "package.json")

    with pytest.raises(TypeError):
        manifest.dependencies["new"] = "1.0.0"  # type: ignore[index]


@pytest.mark.os_agnostic
def test_load_manifest_raises_on_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ValidationError, match="not found"):
        load_manifest(tmp_path / "package.json")


@pytest.mark.os_agnostic
def test_load_manifest_raises_on_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "package.json"
    path.write_text("{ broken", encoding="utf-8")

    with pytest.raises(ValidationError, match="Invalid JSON"):
        load_manifest(path)


# ════════════════════════════════════════════════════════════════════════════
# manifest_from_mapping
# ════════════════════════════════════════════════════════════════════════════


@pytest.mark.os_agnostic
def test_manifest_without_dependency_sections_is_empty() -> None:
    manifest = manifest_from_mapping({"name": "empty"})

    assert manifest.size(include_dev=True) == 0


@pytest.mark.os_agnostic
def test_manifest_rejects_non_object_document() -> None:
    with pytest.raises(ValidationError):
        manifest_from_mapping(["not", "an", "object"])


@pytest.mark.os_agnostic
def test_manifest_rejects_non_string_range() -> None:
    with pytest.raises(ValidationError):
        manifest_from_mapping({"dependencies": {"lodash": 4}})


@pytest.mark.os_agnostic
def test_manifest_rejects_empty_package_name() -> None:
    with pytest.raises(ValidationError, match="Empty package name"):
        manifest_from_mapping({"devDependencies": {" ": "1.0.0"}})


# ════════════════════════════════════════════════════════════════════════════
# Installed trees
# ════════════════════════════════════════════════════════════════════════════


@pytest.mark.os_agnostic
def test_load_install_tree_reads_lockfile_from_directory(tmp_path: Path) -> None:
    shutil.copy(TESTDATA_DIR / "package-lock.json", tmp_path / "package-lock.json")

    tree = load_install_tree(tmp_path)

    assert tree.installed_versions()["express"] == "4.18.2"


@pytest.mark.os_agnostic
def test_load_install_tree_reads_npm_ls_output() -> None:
    tree = load_install_tree(TESTDATA_DIR / "npm-ls.json")

    assert "lodash" in tree.graph.nodes


@pytest.mark.os_agnostic
def test_install_tree_document_detection_uses_lockfile_version() -> None:
    document = json.loads((TESTDATA_DIR / "cyclic-lock.json").read_text(encoding="utf-8"))

    tree = install_tree_from_document(document)

    assert tree.graph.successors("gamma") == ("alpha",)


@pytest.mark.os_agnostic
def test_install_tree_document_must_be_an_object() -> None:
    with pytest.raises(ValidationError):
        install_tree_from_document([])
