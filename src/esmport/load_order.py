"""Flatten converted packages into an ordered list of side-effecting imports.

Legacy apps load every package eagerly in a fixed order and rely on the
globals each one sets.  The converted app reproduces that with a generated
``dependencies.js`` per side (client, server).

Ordering is decided per package, not per dependency edge: a package's strong
dependencies (and any weak ones that are part of the graph anyway) come
before it, its unordered and implied dependencies after it.  The legacy
tool flattens at the edge level, so the two can disagree for unusual graphs.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from pathlib import Path

from esmport import fs
from esmport.arch import arch_applies, arch_lineage, canonical_arch
from esmport.catalog import MANIFEST_KEY
from esmport.model import DependencyRecord, LoadOrderEntry, Use
from esmport.names import from_node_name, package_dir, to_node_name

logger = logging.getLogger(__name__)

# Per web architecture globals are only assigned when the matching bundle runs.
CONDITIONAL_ARCHS = {
    "web.browser": "Meteor.isModern",
    "web.browser.legacy": "!Meteor.isModern",
}

# Export conditions of a whole package that the app checks at runtime.  A
# production-only package is not imported at all.
PACKAGE_CONDITIONS = {"development": "Meteor.isDevelopment"}

EXPORT_OPTION_CONDITIONS = {
    "debugOnly": "Meteor.isDevelopment",
    "prodOnly": "Meteor.isProduction",
}


def _relevant(declared: list[str] | None, arch: str) -> bool:
    """A use matters to *arch* when scoped to it, an ancestor, or a descendant."""
    if arch_applies(declared, arch):
        return True
    target = canonical_arch(arch)
    return any(target in arch_lineage(name) for name in declared or ())


def dependency_record(
    uses: Iterable[Use],
    arch: str,
    *,
    is_lazy: bool = False,
    prod_only: bool = False,
) -> DependencyRecord:
    """Summarize the edges of *uses* that apply to *arch*, keeping declaration order."""
    record = DependencyRecord(is_lazy=is_lazy, prod_only=prod_only)
    for use in uses:
        if use.test_only or not _relevant(use.archs, arch):
            continue
        if use.weak:
            bucket = record.preload
        elif use.unordered:
            bucket = record.unordered
        else:
            bucket = record.strong
        node_name = to_node_name(use.name)
        if node_name not in bucket:
            bucket.append(node_name)
    return record


def record_from_manifest(manifest: Mapping, arch: str) -> DependencyRecord:
    extension = manifest.get(MANIFEST_KEY) or {}
    main_export = (manifest.get("exports") or {}).get(".") or {}
    return dependency_record(
        (Use.from_manifest(entry) for entry in extension.get("uses", [])),
        arch,
        is_lazy=bool(extension.get("lazy")),
        prod_only=isinstance(main_export, dict) and "production" in main_export,
    )


def build_load_order(roots: Iterable[str], records: Mapping[str, DependencyRecord]) -> list[LoadOrderEntry]:
    """Depth-first flattening of *records* starting from *roots* (node names).

    Every package appears once.  A weak (preload) dependency is only followed
    when it has a record, i.e. something else pulled it into the graph.
    Names without a record (plain npm packages) are skipped.
    """
    order: list[LoadOrderEntry] = []
    visited: set[str] = set()

    def visit(name: str) -> None:
        if name in visited:
            return
        visited.add(name)
        record = records.get(name)
        if record is None:
            return
        for dependency in record.strong:
            visit(dependency)
        for dependency in record.preload:
            if dependency in records:
                visit(dependency)
        order.append(LoadOrderEntry(name, is_lazy=record.is_lazy, prod_only=record.prod_only))
        for dependency in record.unordered:
            visit(dependency)

    for root in roots:
        visit(root)
    return order


async def collect_records(
    roots: Iterable[str],
    arch: str,
    read_manifest: Callable[[str], Awaitable[dict | None]],
) -> dict[str, DependencyRecord]:
    """Read the manifests reachable from *roots* over strong and unordered edges."""
    records: dict[str, DependencyRecord] = {}
    seen: set[str] = set()
    pending = list(roots)
    while pending:
        name = pending.pop(0)
        if name in seen:
            continue
        seen.add(name)
        manifest = await read_manifest(name)
        if manifest is None or MANIFEST_KEY not in manifest:
            logger.debug("No converted manifest for %s", name)
            continue
        record = record_from_manifest(manifest, arch)
        records[name] = record
        pending.extend(record.strong)
        pending.extend(record.unordered)
    return records


def manifest_reader(modules_dirs: Iterable[Path]) -> Callable[[str], Awaitable[dict | None]]:
    """Reader that looks for a package in each of *modules_dirs* in turn.

    A directory may be laid out like ``node_modules`` (``@meteor/tracker``) or
    like a conversion output folder (``tracker``).
    """
    modules_dirs = list(dict.fromkeys(modules_dirs))

    async def read(node_name: str) -> dict | None:
        relative = dict.fromkeys([node_name, package_dir(from_node_name(node_name))])
        for modules_dir in modules_dirs:
            for rel in relative:
                manifest = await fs.read_json_if_exists(modules_dir / rel / "package.json")
                if manifest is not None:
                    return manifest
        return None

    return read


async def final_package_list_for_arch(
    packages: Iterable[str],
    arch: str,
    modules_dirs: Iterable[Path],
) -> list[LoadOrderEntry]:
    """Load order for the legacy *packages* an app uses, on one side."""
    roots = [to_node_name(name) for name in packages]
    records = await collect_records(roots, arch, manifest_reader(modules_dirs))
    return build_load_order(roots, records)


def _guards(manifest: Mapping, symbol: str) -> list[str] | None:
    """Conditions the app checks before assigning *symbol*; ``None`` when it never does.

    Test-only exports and packages only exist in test builds.  Debug-only
    exports and development-only packages need ``Meteor.isDevelopment``,
    prod-only exports ``Meteor.isProduction``.
    """
    main_export = (manifest.get("exports") or {}).get(".")
    conditions = main_export if isinstance(main_export, dict) else {}
    options = ((manifest.get(MANIFEST_KEY) or {}).get("exportOptions") or {}).get(symbol) or {}
    if "test" in conditions or options.get("testOnly"):
        return None
    guards = [guard for condition, guard in PACKAGE_CONDITIONS.items() if condition in conditions]
    for option, guard in EXPORT_OPTION_CONDITIONS.items():
        if options.get(option) and guard not in guards:
            guards.append(guard)
    return guards


def app_globals(
    entries: Iterable[LoadOrderEntry],
    manifests: Mapping[str, Mapping],
    arch: str,
) -> tuple[dict[str, list[str]], dict[str, dict[str, list[str]]]]:
    """Globals each package in the load order sets on *arch*.

    Returns ``(globals_map, conditional_map)``.  Implied packages' exports are
    attributed to the implying package.  *conditional_map* maps a package to
    ``{JavaScript condition: symbols}`` for exports that are only assigned
    when the condition holds: exports declared for one web architecture on
    the client, debug-only or prod-only exports, and exports of
    development-only packages.  Test-only exports are left out.
    """
    globals_map: dict[str, list[str]] = {}
    conditional_map: dict[str, dict[str, list[str]]] = {}

    def collect(node_name: str, into: dict[str, list[str]], seen: set[str]) -> None:
        if node_name in seen:
            return
        seen.add(node_name)
        manifest = manifests.get(node_name)
        if manifest is None:
            return
        extension = manifest.get(MANIFEST_KEY) or {}
        for entry in extension.get("implies", []):
            implied = Use.from_manifest(entry)
            if _relevant(implied.archs, arch):
                collect(to_node_name(implied.name), into, seen)
        for symbol in (extension.get("exportedVars") or {}).get(arch, []):
            guards = _guards(manifest, symbol)
            if guards is None:
                logger.debug("%s: skipping test-only global %s", node_name, symbol)
            elif symbol not in into:
                into[symbol] = guards

    for entry in entries:
        found: dict[str, list[str]] = {}
        collect(entry.name, found, set())
        globals_map[entry.name] = [symbol for symbol, guards in found.items() if not guards]
        conditional: dict[str, list[str]] = {}
        for symbol, guards in found.items():
            if guards:
                conditional.setdefault(" && ".join(guards), []).append(symbol)
        if arch == "client" and entry.name in manifests:
            manifest = manifests[entry.name]
            exported = (manifest.get(MANIFEST_KEY) or {}).get("exportedVars") or {}
            for web_arch, guard in CONDITIONAL_ARCHS.items():
                for symbol in exported.get(web_arch) or ():
                    guards = _guards(manifest, symbol)
                    if guards is not None:
                        conditional.setdefault(" && ".join([guard, *guards]), []).append(symbol)
        if conditional:
            conditional_map[entry.name] = conditional
    return globals_map, conditional_map


def render_dependencies_module(
    entries: Iterable[LoadOrderEntry],
    globals_map: Mapping[str, list[str]],
    conditional_map: Mapping[str, Mapping[str, list[str]]],
) -> str:
    """Source of an app's ``dependencies.js``: imports first, then global assignments."""
    imports: list[str] = []
    assignments: list[str] = []
    for index, entry in enumerate(entries):
        if entry.is_lazy:
            imports.append(f'import "{entry.name}/__defineOnly.js";')
            continue
        if entry.prod_only:
            logger.warning(
                "prod-only package %s is not imported; add a conditional import yourself if you need its globals",
                entry.name,
            )
            continue
        names = globals_map.get(entry.name) or []
        conditionals = conditional_map.get(entry.name) or {}
        if not names and not conditionals:
            imports.append(f'import "{entry.name}";')
            continue
        alias = f"__package_{index}"
        imports.append(f'import * as {alias} from "{entry.name}";')
        lines = [f"globalThis.{name} = {alias}.{name};" for name in names]
        for condition, symbols in conditionals.items():
            lines.append(f"if ({condition}) {{")
            lines.extend(f"  globalThis.{name} = {alias}.{name};" for name in symbols)
            lines.append("}")
        assignments.append("\n".join(lines))
    return "\n".join([*imports, *assignments]) + "\n"
