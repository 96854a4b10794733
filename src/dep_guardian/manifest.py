"""Reader for package.json manifests and installed dependency trees.

Purpose
-------
Turn the project files an npm project ships with into the immutable
inputs of an analysis run.

Contents
--------
* :func:`load_manifest` - Read package.json from a file or project directory
* :func:`manifest_from_mapping` - Validate an already parsed package.json
* :func:`load_install_tree` - Read ``npm ls --json`` output or package-lock.json

System Role
-----------
The first stage of the analysis pipeline. Everything downstream works on
:class:`PackageManifest` and :class:`InstallTree` snapshots.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any

from pydantic import ValidationError as SchemaValidationError

from .errors import ValidationError
from .graph_analyzer import install_tree_from_lockfile, install_tree_from_npm_ls
from .models import InstallTree, PackageManifest
from .schemas import PackageJsonSchema

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "package.json"
LOCKFILE_FILENAME = "package-lock.json"


def _read_json(path: Path) -> Any:
    """Read a JSON document, mapping failures to :class:`ValidationError`."""
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError as exc:
        raise ValidationError(f"{path.name} not found at {path}") from exc
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Invalid JSON in {path}: {exc}") from exc
    except OSError as exc:
        raise ValidationError(f"Cannot read {path}: {exc}") from exc


def _check_names(ranges: dict[str, str], section: str) -> None:
    for name in ranges:
        if not name.strip():
            raise ValidationError(f"Empty package name in {section}")


def manifest_from_mapping(data: Any) -> PackageManifest:
    """Validate a parsed package.json document.

    Args:
        data: The decoded JSON document.

    Returns:
        Immutable manifest snapshot.

    Raises:
        ValidationError: If the document is not an object, a range is not a
            string, or a package name is empty.
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid package.json format: expected a JSON object")
    try:
        schema = PackageJsonSchema.model_validate(data)
    except SchemaValidationError as exc:
        raise ValidationError(f"Invalid package.json format: {exc}") from exc

    _check_names(schema.dependencies, "dependencies")
    _check_names(schema.dev_dependencies, "devDependencies")
    return PackageManifest(
        name=schema.name,
        dependencies=MappingProxyType(dict(schema.dependencies)),
        dev_dependencies=MappingProxyType(dict(schema.dev_dependencies)),
    )


def load_manifest(path: Path | str) -> PackageManifest:
    """Load package.json from a file path or a project directory.

    Raises:
        ValidationError: If the file is missing, unreadable or malformed.
    """
    path = Path(path)
    if path.is_dir():
        path = path / MANIFEST_FILENAME
    manifest = manifest_from_mapping(_read_json(path))
    logger.info(
        "Loaded %s: %d dependencies, %d dev dependencies",
        path,
        len(manifest.dependencies),
        len(manifest.dev_dependencies),
    )
    return manifest


def install_tree_from_document(data: Any) -> InstallTree:
    """Detect whether ``data`` is a lockfile or ``npm ls`` output and parse it."""
    if not isinstance(data, dict):
        raise ValidationError("Invalid install tree: expected a JSON object")
    if "lockfileVersion" in data:
        return install_tree_from_lockfile(data)
    return install_tree_from_npm_ls(data)


def load_install_tree(path: Path | str) -> InstallTree:
    """Load an installed tree from package-lock.json or saved ``npm ls --json`` output.

    A directory argument means its package-lock.json.

    Raises:
        ValidationError: If the file is missing, unreadable or malformed.
    """
    path = Path(path)
    if path.is_dir():
        path = path / LOCKFILE_FILENAME
    tree = install_tree_from_document(_read_json(path))
    logger.info("Loaded install tree from %s: %d packages", path, len(tree.graph.nodes))
    return tree


__all__ = [
    "LOCKFILE_FILENAME",
    "MANIFEST_FILENAME",
    "install_tree_from_document",
    "load_install_tree",
    "load_manifest",
    "manifest_from_mapping",
]
