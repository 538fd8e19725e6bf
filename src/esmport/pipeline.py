"""Orchestrator: read the app's package lists → convert → order → write app files."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from esmport import fs
from esmport.analysis import DependencyCycle, dependency_cycles, strong_dependency_graph
from esmport.catalog import RegistryClient
from esmport.config import JobOptions, load_options
from esmport.job import ConversionJob
from esmport.load_order import (
    app_globals,
    final_package_list_for_arch,
    manifest_reader,
    render_dependencies_module,
)
from esmport.model import LoadOrderEntry
from esmport.names import split_constraint

logger = logging.getLogger(__name__)

APP_SIDES = ("client", "server")


@dataclass
class ConversionReport:
    converted: list[str] = field(default_factory=list)
    cycles: list[DependencyCycle] = field(default_factory=list)
    load_orders: dict[str, list[LoadOrderEntry]] = field(default_factory=dict)


def read_package_list(path: Path) -> list[str]:
    """Entries of a ``.meteor/packages`` or ``.meteor/versions`` file; ``#`` starts a comment."""
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return []
    entries = []
    for line in lines:
        line = line.split("#", 1)[0].strip()
        if line:
            entries.append(line)
    return entries


def modules_dirs(options: JobOptions) -> list[Path]:
    return [*options.output_dirs().values(), options.project_dir / "node_modules"]


async def update_app_manifest(project_dir: Path, job: ConversionJob, names: Iterable[str]) -> None:
    """Point the app's ``package.json`` dependencies at the converted packages."""
    path = project_dir / "package.json"
    manifest = await fs.read_json_if_exists(path)
    if manifest is None:
        logger.debug("No package.json in %s, not adding dependencies", project_dir)
        return
    dependencies = dict(manifest.get("dependencies") or {})
    for name in names:
        package = job.get(split_constraint(name)[0])
        if package is None or not package.should_be_written:
            continue
        folder = package.output_folder(job.output_dirs)
        dependencies[package.node_name] = "file:" + Path(os.path.relpath(folder, project_dir)).as_posix()
    manifest["dependencies"] = dict(sorted(dependencies.items()))
    await fs.write_json(path, manifest)


async def write_dependencies_modules(
    project_dir: Path,
    load_orders: dict[str, list[LoadOrderEntry]],
    dirs: Iterable[Path],
) -> None:
    """Write ``<side>/dependencies.js`` for each side in *load_orders*."""
    read = manifest_reader(dirs)
    for side, entries in load_orders.items():
        manifests = {}
        for entry in entries:
            manifest = await read(entry.name)
            if manifest is not None:
                manifests[entry.name] = manifest
        globals_map, conditional_map = app_globals(entries, manifests, side)
        path = project_dir / side / "dependencies.js"
        await fs.write_text(path, render_dependencies_module(entries, globals_map, conditional_map))
        logger.info("Generated %s", path)


async def load_orders_for(packages: Iterable[str], options: JobOptions) -> dict[str, list[LoadOrderEntry]]:
    names = [split_constraint(spec)[0] for spec in packages]
    dirs = modules_dirs(options)
    return {side: await final_package_list_for_arch(names, side, dirs) for side in APP_SIDES}


async def convert_app(
    options: JobOptions,
    packages: list[str],
    versioned: list[str],
    *,
    write_dependencies: bool = False,
    registry: RegistryClient | None = None,
) -> ConversionReport:
    job = ConversionJob(options, registry=registry)
    try:
        await job.convert_packages(packages, versioned)
    finally:
        await job.close()

    report = ConversionReport(converted=job.converted_package_names())
    logger.debug("Converted %d packages", len(report.converted))

    report.cycles = dependency_cycles(strong_dependency_graph(job.packages))
    for cycle in report.cycles:
        logger.warning("Dependency cycle: %s", cycle)

    report.load_orders = await load_orders_for(packages, options)
    for side, entries in report.load_orders.items():
        logger.debug("%s load order: %s", side, [entry.name for entry in entries])

    if write_dependencies:
        await write_dependencies_modules(options.project_dir, report.load_orders, modules_dirs(options))
    await update_app_manifest(options.project_dir, job, packages)
    return report


def app_package_lists(project_dir: Path) -> tuple[list[str], list[str]]:
    """The app's requested packages and its pinned ``name@version`` list."""
    meteor_dir = project_dir / ".meteor"
    return read_package_list(meteor_dir / "packages"), read_package_list(meteor_dir / "versions")


def run(
    project_dir: Path,
    *,
    packages: list[str] | None = None,
    write_dependencies: bool = False,
    **overrides,
) -> ConversionReport:
    """Run the full conversion for an app (or an explicit package list)."""
    project_dir = Path(project_dir).resolve()
    options = load_options(project_dir, **overrides)
    app_packages, versioned = app_package_lists(project_dir)
    if packages is None:
        packages = app_packages
    if not packages:
        logger.warning("Nothing to convert in %s", project_dir)
    logger.debug("Packages: %s", packages)
    return asyncio.run(
        convert_app(options, list(packages), versioned, write_dependencies=write_dependencies)
    )


def load_order(project_dir: Path, *, packages: list[str] | None = None, **overrides) -> dict[str, list[LoadOrderEntry]]:
    """Load order of already converted packages, per side, without converting."""
    project_dir = Path(project_dir).resolve()
    options = load_options(project_dir, **overrides)
    if packages is None:
        packages = app_package_lists(project_dir)[0]
    return asyncio.run(load_orders_for(packages, options))
