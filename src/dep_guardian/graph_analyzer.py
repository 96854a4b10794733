"""Structural analysis of dependency graphs.

Purpose
-------
Build a directed "depends on" graph from a manifest, an adjacency map or an
installed tree, and find cycles and packages installed at more than one
version.

Contents
--------
* :func:`build_graph` - Graph from a transitive adjacency map
* :func:`graph_from_manifest` - Graph of a manifest's direct edges
* :func:`install_tree_from_npm_ls` - Graph and versions from ``npm ls --json``
* :func:`install_tree_from_lockfile` - Graph and versions from package-lock.json
* :func:`detect_cycles` - Simple cycles via iterative three-colour DFS
* :func:`detect_duplicate_versions` - Names with several installed versions
* :func:`analyze_graph` - Both checks in one call

System Role
-----------
Stateless: graphs are rebuilt for every query because the dependency set
can change between calls.
"""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import TYPE_CHECKING, Any

from .errors import ValidationError
from .models import DependencyGraph, DuplicateVersion, InstallTree, StructureResult
from .schemas import LockfileSchema, LockPackageSchema, NpmLsNodeSchema
from .version_resolver import ordering_key

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from .models import PackageManifest

logger = logging.getLogger(__name__)

ROOT_NODE = "<root>"
_NODE_MODULES = "node_modules/"


class _Color(IntEnum):
    WHITE = 0  # not visited
    GRAY = 1  # on the current path
    BLACK = 2  # fully explored


def build_graph(adjacency: Mapping[str, Iterable[str]]) -> DependencyGraph:
    """Build a graph from ``name -> dependencies``.

    Edge targets missing from the mapping become leaf nodes; duplicate
    edges are collapsed.
    """
    nodes: dict[str, list[str]] = {}
    for source, targets in adjacency.items():
        edges = nodes.setdefault(source, [])
        for target in targets:
            if target not in edges:
                edges.append(target)
    for targets in list(nodes.values()):
        for target in targets:
            nodes.setdefault(target, [])
    return DependencyGraph(adjacency={name: tuple(edges) for name, edges in nodes.items()})


def graph_from_manifest(manifest: PackageManifest, *, include_dev: bool = False) -> DependencyGraph:
    """Graph with one root node depending on every declared package."""
    root = manifest.name or ROOT_NODE
    names = [entry.name for entry in manifest.entries(include_dev=include_dev)]
    return build_graph({root: names})


def _canonical_rotation(cycle: list[str]) -> tuple[str, ...]:
    """Rotation-independent identity of a cycle (without the closing node)."""
    start = cycle.index(min(cycle))
    return tuple(cycle[start:] + cycle[:start])


def detect_cycles(graph: DependencyGraph) -> list[list[str]]:
    """Return every cycle closed by a back edge, as ``[a, ..., a]`` paths.

    Depth-first traversal keeps the current path; reaching a node that is
    on the path emits the sub-path from that node back to itself. Fully
    explored nodes are never entered again, so the cost is linear in the
    number of edges. The traversal uses an explicit stack.

    Example:
        >>> g = build_graph({"a": ["b"], "b": ["c"], "c": ["a"]})
        >>> detect_cycles(g)
        [['a', 'b', 'c', 'a']]
    """
    color = dict.fromkeys(graph.nodes, _Color.WHITE)
    cycles: list[list[str]] = []
    seen: set[tuple[str, ...]] = set()
    done = object()

    for root in graph.nodes:
        if color[root] is not _Color.WHITE:
            continue
        path = [root]
        position = {root: 0}
        color[root] = _Color.GRAY
        pending = [iter(graph.successors(root))]

        while pending:
            child = next(pending[-1], done)
            if child is done:
                pending.pop()
                node = path.pop()
                del position[node]
                color[node] = _Color.BLACK
                continue

            state = color.get(child, _Color.WHITE)
            if state is _Color.GRAY:
                cycle = path[position[child] :]
                identity = _canonical_rotation(cycle)
                if identity not in seen:
                    seen.add(identity)
                    cycles.append([*cycle, child])
            elif state is _Color.WHITE:
                color[child] = _Color.GRAY
                position[child] = len(path)
                path.append(child)
                pending.append(iter(graph.successors(child)))

    if cycles:
        logger.info("Found %d dependency cycles", len(cycles))
    return cycles


def detect_duplicate_versions(occurrences: Mapping[str, Iterable[str]]) -> list[DuplicateVersion]:
    """Report every package installed at more than one distinct version.

    Operates on resolved (installed) versions only.

    Example:
        >>> detect_duplicate_versions({"pkgA": ["1.0.0", "1.0.0"], "pkgB": ["2.0.0"]})
        []
        >>> detect_duplicate_versions({"pkgA": ["1.0.0", "1.0.1"]})
        [DuplicateVersion(name='pkgA', versions=('1.0.0', '1.0.1'))]
    """
    duplicates: list[DuplicateVersion] = []
    for name, versions in occurrences.items():
        distinct = {v for v in versions if v}
        if len(distinct) > 1:
            duplicates.append(DuplicateVersion(name=name, versions=tuple(sorted(distinct, key=ordering_key))))
    return duplicates


def analyze_graph(
    graph: DependencyGraph,
    occurrences: Mapping[str, Iterable[str]] | None = None,
) -> StructureResult:
    """Run cycle and duplicate-version detection."""
    return StructureResult(
        cycles=detect_cycles(graph),
        duplicates=detect_duplicate_versions(occurrences or {}),
    )


# ════════════════════════════════════════════════════════════════════════════
# Installed trees
# ════════════════════════════════════════════════════════════════════════════


def _collect_nested(root_name: str, children: Mapping[str, NpmLsNodeSchema]) -> InstallTree:
    """Walk a nested ``name -> {version, dependencies}`` tree."""
    adjacency: dict[str, list[str]] = {root_name: list(children)}
    occurrences: dict[str, list[str]] = {}
    stack: list[tuple[str, Mapping[str, NpmLsNodeSchema]]] = [(root_name, children)]

    while stack:
        parent, nested = stack.pop()
        for name, node in nested.items():
            if name not in adjacency[parent]:
                adjacency[parent].append(name)
            edges = adjacency.setdefault(name, [])
            for dep in (*node.dependencies, *node.requires):
                if dep not in edges:
                    edges.append(dep)
            if node.version:
                occurrences.setdefault(name, []).append(node.version)
            if node.dependencies:
                stack.append((name, node.dependencies))

    return InstallTree(
        graph=build_graph(adjacency),
        occurrences={name: tuple(versions) for name, versions in occurrences.items()},
        top_level={name: node.version for name, node in children.items() if node.version},
    )


def install_tree_from_npm_ls(document: Mapping[str, Any]) -> InstallTree:
    """Extract graph and installed versions from ``npm ls --json --all`` output.

    Raises:
        ValidationError: If the document does not have the expected shape.
    """
    try:
        root = NpmLsNodeSchema.model_validate(document)
    except ValueError as exc:
        raise ValidationError(f"Invalid npm ls document: {exc}") from exc
    return _collect_nested(root.name or ROOT_NODE, root.dependencies)


def _package_name(path: str, entry: LockPackageSchema) -> str:
    if entry.name:
        return entry.name
    index = path.rfind(_NODE_MODULES)
    return path[index + len(_NODE_MODULES) :] if index != -1 else path


def _is_top_level(path: str) -> bool:
    return path.startswith(_NODE_MODULES) and f"/{_NODE_MODULES}" not in path


def _resolve_location(path: str, dependency: str, packages: Mapping[str, LockPackageSchema]) -> str | None:
    """Find where Node's resolution would load ``dependency`` from ``path``."""
    base = path
    while True:
        candidate = f"{base}/{_NODE_MODULES}{dependency}" if base else f"{_NODE_MODULES}{dependency}"
        if candidate in packages:
            return candidate
        if not base:
            return None
        index = base.rfind(f"/{_NODE_MODULES}")
        base = base[:index] if index != -1 else ""


def install_tree_from_lockfile(document: Mapping[str, Any]) -> InstallTree:
    """Extract graph and installed versions from package-lock.json.

    Lockfile v2/v3 ``packages`` maps are resolved the way Node resolves
    ``node_modules``; v1 lockfiles fall back to their nested
    ``dependencies``/``requires`` tree.

    Raises:
        ValidationError: If the document does not have the expected shape.
    """
    try:
        lockfile = LockfileSchema.model_validate(document)
    except ValueError as exc:
        raise ValidationError(f"Invalid package-lock document: {exc}") from exc

    root_name = lockfile.name or ROOT_NODE
    if not lockfile.packages:
        return _collect_nested(root_name, lockfile.dependencies)

    packages = lockfile.packages
    adjacency: dict[str, list[str]] = {root_name: []}
    occurrences: dict[str, list[str]] = {}
    top_level: dict[str, str] = {}

    for path, entry in packages.items():
        name = root_name if path == "" else _package_name(path, entry)
        edges = adjacency.setdefault(name, [])
        if path and entry.version:
            occurrences.setdefault(name, []).append(entry.version)
            if _is_top_level(path):
                top_level[name] = entry.version
        declared = [*entry.dependencies, *entry.optional_dependencies]
        if path == "":
            declared.extend(entry.dev_dependencies)
        for dependency in declared:
            location = _resolve_location(path, dependency, packages)
            target = _package_name(location, packages[location]) if location else dependency
            if target not in edges:
                edges.append(target)

    return InstallTree(
        graph=build_graph(adjacency),
        occurrences={name: tuple(versions) for name, versions in occurrences.items()},
        top_level=top_level,
    )


__all__ = [
    "ROOT_NODE",
    "analyze_graph",
    "build_graph",
    "detect_cycles",
    "detect_duplicate_versions",
    "graph_from_manifest",
    "install_tree_from_lockfile",
    "install_tree_from_npm_ls",
]
