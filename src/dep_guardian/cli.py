"""Command-line entry points.

Purpose
-------
Expose the analysis facade as the ``dep-guardian`` command: dependency
freshness reports, structural checks, configuration display and cache
maintenance.

Contents
--------
* :func:`cli` – click command group
* :func:`main` – console-script entry point

System Role
-----------
Thin adapter over :mod:`dep_guardian.analyzer`. Commands parse arguments,
load settings via :mod:`dep_guardian.config` and print results; library
errors become click errors with exit status 1.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import click

from . import __init__conf__
from .analyzer import create_analyzer, result_to_dict, stats_to_dict, structure_to_dict, write_report_json
from .config import get_analyzer_settings
from .config_show import display_config, display_settings
from .errors import DependencyGuardianError
from .manifest import LOCKFILE_FILENAME, MANIFEST_FILENAME, load_install_tree, load_manifest
from .models import AnalysisResult, CacheStats, InstallTree, PackageManifest
from .registry_client import create_metadata_cache

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format=_LOG_FORMAT)


def _echo_summary(result: AnalysisResult, stats: CacheStats) -> None:
    click.echo(f"Analyzed {result.total} dependencies: {len(result.outdated)} outdated, {result.error_count} errors", err=True)
    click.echo(
        f"Cache: {stats.hits} hits, {stats.misses} misses, {stats.errors} errors, {stats.size} entries",
        err=True,
    )
    for record in result.license_violations:
        click.echo(f"License not allowed: {record.name} ({record.license})", err=True)


def _structure_source(path: Path) -> PackageManifest | InstallTree:
    """Pick the richest input available at ``path``.

    A directory prefers its lockfile and falls back to package.json. Any
    file not named package.json is read as a lockfile or ``npm ls --json``
    output.
    """
    if path.is_dir():
        if (path / LOCKFILE_FILENAME).is_file():
            return load_install_tree(path)
        return load_manifest(path)
    if path.name == MANIFEST_FILENAME:
        return load_manifest(path)
    return load_install_tree(path)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__init__conf__.version, prog_name=__init__conf__.shell_command)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging on stderr")
def cli(verbose: bool) -> None:
    """Analyze npm dependencies for updates, licenses and structural problems."""
    _configure_logging(verbose)


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path), default=".")
@click.option("--dev/--no-dev", default=None, help="Include devDependencies (default from config)")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), help="Write the JSON report to a file")
@click.option(
    "--installed",
    type=click.Path(exists=True, path_type=Path),
    help="package-lock.json or saved `npm ls --json` output with installed versions",
)
@click.option("--no-cache", is_flag=True, help="Do not load or persist the registry cache")
@click.option(
    "--allow-license",
    "allow_licenses",
    multiple=True,
    help="SPDX license permitted for dependencies; repeat to allow several (replaces the configured list)",
)
def analyze(
    path: Path,
    dev: bool | None,
    output: Path | None,
    installed: Path | None,
    no_cache: bool,
    allow_licenses: tuple[str, ...],
) -> None:
    """Report update tiers and licenses for the dependencies in PATH."""
    settings = get_analyzer_settings()
    logger.debug("Effective settings: %s", settings)
    overrides: dict[str, object] = {}
    if dev is not None:
        overrides["include_dev"] = dev
    if no_cache:
        overrides["cache_path"] = None
    if allow_licenses:
        overrides["allowed_licenses"] = frozenset(allow_licenses)

    try:
        manifest = load_manifest(path)
        installed_versions = load_install_tree(installed).installed_versions() if installed else None
        analyzer = create_analyzer(settings.to_options(**overrides))
        result = analyzer.analyze(manifest, installed_versions)
    except DependencyGuardianError as exc:
        raise click.ClickException(str(exc)) from exc

    if output is not None:
        write_report_json(result, output)
        click.echo(f"Report written to {output}", err=True)
    else:
        click.echo(json.dumps(result_to_dict(result), indent=2))
    _echo_summary(result, analyzer.stats())


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path), default=".")
def structure(path: Path) -> None:
    """Detect dependency cycles and duplicate installed versions in PATH."""
    try:
        source = _structure_source(path)
        result = create_analyzer(get_analyzer_settings().to_options()).analyze_structure(source)
    except DependencyGuardianError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(json.dumps(structure_to_dict(result), indent=2))
    if not result.is_healthy:
        click.echo(f"Found {len(result.cycles)} cycles and {len(result.duplicates)} duplicated packages", err=True)


@cli.command("config")
@click.option("--format", "fmt", type=click.Choice(["human", "json"], case_sensitive=False), default="human")
@click.option("--section", help="Show only this section, e.g. analyzer or cache")
@click.option("--effective", is_flag=True, help="Show resolved settings including native env overrides")
def config_command(fmt: str, section: str | None, effective: bool) -> None:
    """Show the merged configuration."""
    if effective:
        display_settings(format=fmt)
    else:
        display_config(format=fmt, section=section)


@cli.command("cache-stats")
def cache_stats() -> None:
    """Print the number of live entries in the persisted registry cache."""
    settings = get_analyzer_settings()
    cache = create_metadata_cache(settings.cache_path, settings.cache_ttl)
    cache.load()
    click.echo(json.dumps(stats_to_dict(cache.stats()), indent=2))


@cli.command("cache-clear")
def cache_clear() -> None:
    """Remove every entry from the persisted registry cache."""
    settings = get_analyzer_settings()
    if settings.cache_path is None:
        click.echo("Cache persistence is disabled; nothing to clear")
        return
    cache = create_metadata_cache(settings.cache_path, settings.cache_ttl)
    removed = cache.load()
    cache.flush()
    if not cache.persist():
        raise click.ClickException(f"Could not write {settings.cache_path}")
    click.echo(f"Removed {removed} cached entries from {settings.cache_path}")


@cli.command()
def info() -> None:
    """Print package metadata."""
    __init__conf__.print_info()


def main() -> None:
    """Console-script entry point."""
    cli(prog_name=__init__conf__.shell_command)


__all__ = [
    "cli",
    "main",
]
