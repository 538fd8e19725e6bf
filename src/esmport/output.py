"""Materialize a loaded package as a directory of ES modules."""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from esmport import fs
from esmport.arch import LEAF_ARCHS
from esmport.js import content
from esmport.js.imports import exported_names, has_default_export, relative_imports, resolve_module_file
from esmport.js.parser import parse_module
from esmport.js.rewrite import (
    GLOBALS_FILE,
    globals_module_specifier,
    resolve_file_globals,
    rewrite_module,
)
from esmport.js.scope import ModuleScopeInfo, analyze
from esmport.model import SourceKind
from esmport.names import from_node_name

if TYPE_CHECKING:
    from esmport.package import LegacyPackage

logger = logging.getLogger(__name__)

_UNWRAPPED = ("require", "module", "Npm", "Assets")


def normalize_file(path: str) -> str:
    """``lib/a.js``, ``./lib/../lib/a.js`` -> ``./lib/a.js``."""
    return "./" + posixpath.normpath(path.lstrip("/"))


@dataclass
class ImportTree:
    """Every source file reachable from a package's entry files."""

    archs_for_files: dict[str, set[str]] = field(default_factory=dict)
    exported: dict[str, list[str]] = field(default_factory=dict)
    sources: dict[str, str] = field(default_factory=dict)
    scopes: dict[str, ModuleScopeInfo] = field(default_factory=dict)

    def all_globals(self) -> set[str]:
        return {name for info in self.scopes.values() for name in info.free}

    def assigned_globals(self) -> set[str]:
        return {name for info in self.scopes.values() for name in info.assigned}


async def build_import_tree(package: LegacyPackage, folder: Path, *, skip: set[str] = frozenset()) -> ImportTree:
    """Follow relative ``import``/``export from`` edges per active leaf architecture.

    Files listed in *skip* are neither recorded nor analyzed again.
    """
    folder = folder.resolve()
    tree = ImportTree()
    edges: dict[str, list[str]] = {}
    for arch in package.archs.active_leaf_archs():
        roots = []
        main = arch.get_main_module()
        if main:
            roots.append(main)
        roots.extend(item for item in arch.get_imports() if item.startswith(".") and item.endswith(".js"))
        queue = [(folder / normalize_file(root)).resolve() for root in roots]
        seen: set[Path] = set()
        while queue:
            path = queue.pop(0)
            if path in seen:
                continue
            seen.add(path)
            if path.suffix not in (".js", ".mjs", ".cjs") or not path.is_file():
                continue
            rel = "./" + path.relative_to(folder).as_posix()
            if rel in skip:
                continue
            tree.archs_for_files.setdefault(rel, set()).add(arch.name)
            if rel not in tree.sources:
                source = await fs.read_text(path)
                parsed = parse_module(source, path=path, warned=package.job.parse_warnings)
                tree.sources[rel] = source
                tree.exported[rel] = exported_names(parsed)
                tree.scopes[rel] = analyze(parsed, is_common=package.is_common)
                edges[rel] = relative_imports(parsed)
            for specifier in edges[rel]:
                target = resolve_module_file(path, specifier)
                if target is not None and target.is_relative_to(folder):
                    queue.append(target)
    return tree


def _imported_arch_names(package: LegacyPackage) -> list[str]:
    return list(dict.fromkeys([*LEAF_ARCHS, *(arch.name for arch in package.archs.active_leaf_archs())]))


async def rewrite_files(
    package: LegacyPackage,
    folder: Path,
    tree: ImportTree,
    package_globals: set[str],
) -> dict[str, dict[str, str]]:
    """Rewrite every file of *tree* in place; returns the imported-globals maps."""
    imported = package.imported_globals_maps(tree.all_globals(), _imported_arch_names(package))
    job = package.job

    def exports_for(specifier: str, arch: str) -> list[str]:
        dependency = job.get(from_node_name(specifier))
        return list(dependency.effective_exports(arch)) if dependency is not None else []

    def is_common_package(specifier: str) -> bool:
        return job.options.is_commonjs(from_node_name(specifier))

    for rel, info in tree.scopes.items():
        resolution = resolve_file_globals(
            info.free,
            tree.archs_for_files.get(rel, set()),
            imported,
            package_globals,
            globals_module=globals_module_specifier(rel[2:]),
            is_common_package=is_common_package,
            exports_for=exports_for,
        )
        if resolution.is_empty():
            continue
        source = tree.sources[rel]
        path = folder / rel[2:]
        rewritten = rewrite_module(
            source, resolution, is_common=package.is_common, path=path, warned=job.parse_warnings
        )
        if rewritten != source:
            await fs.write_text(path, rewritten)
    return imported


def _unimported(names: set[str], imported: dict[str, dict[str, str]]) -> set[str]:
    return {name for name in names if not any(name in arch_map for arch_map in imported.values())}


async def write_globals(package: LegacyPackage, folder: Path, names: set[str]) -> None:
    """Write ``__globals.js`` and the ``#module`` / ``#assets`` shims it needs."""
    has = {name: name in names for name in (*_UNWRAPPED, "exports")}
    own = [name for name in names if name not in _UNWRAPPED]
    server = package.archs.find("server")
    if server is not None and server.get_main_module():
        if has["exports"]:
            logger.warning("%s: ES module uses exports, this probably won't work", package.name)
        elif has["require"]:
            logger.warning("%s: ES module uses require, this might not work", package.name)

    if has["Assets"]:
        package.imports_map["#assets"] = {
            "node": f"./{package.file_prefix}__server_assets.js",
            "default": f"./{content.NOOP_FILE_NAME}",
        }
        await fs.write_text(folder / f"{package.file_prefix}__server_assets.js", content.SERVER_ASSETS_FILE)

    uses_module = has["module"] or has["Npm"] or has["require"]
    if uses_module and not package.is_common:
        package.imports_map["#module"] = {"node": "./__server_module.js", "default": "./__client_module.js"}
        await fs.write_text(folder / "__client_module.js", content.CLIENT_MODULE_FILE)
        await fs.write_text(folder / "__server_module.js", content.SERVER_MODULE_FILE)

    await fs.write_text(
        folder / GLOBALS_FILE,
        content.globals_module(
            sorted(own),
            is_common=package.is_common,
            has_module=has["module"],
            has_npm=has["Npm"],
            has_require=has["require"],
            has_assets=has["Assets"],
        ),
    )


async def _main_has_default(folder: Path, main: str, warned: set[str]) -> bool:
    path = folder / normalize_file(main)
    if path.suffix != ".js" or not await fs.exists(path):
        return False
    return has_default_export(parse_module(await fs.read_text(path), path=path, warned=warned))


async def write_entry_points(package: LegacyPackage, folder: Path) -> None:
    """One ``<prefix>__<arch>.js`` per active leaf architecture, plus stubs."""
    prefix = package.file_prefix
    if package.is_lazy:
        await fs.write_text(folder / f"{prefix}__defineOnly.js", content.define_only(package.name))
    for arch in package.archs.active_leaf_archs():
        if package.is_test and arch.is_noop(False):
            continue
        imports = arch.get_imports()
        exports = arch.get_exports()
        provided: dict[str, list[str]] = {}
        for item in imports:
            if item.startswith("."):
                continue
            dependency = package.job.get(from_node_name(item))
            if dependency is None:
                continue
            supplied = dependency.effective_exports(arch.name)
            symbols = [symbol for symbol in dict.fromkeys(exports) if symbol in supplied]
            if symbols:
                provided[item] = symbols
        main = arch.get_main_module()
        main_block = None
        if main:
            has_default = await _main_has_default(folder, main, package.job.parse_warnings)
            main_block = content.main_module_block(package.name, main, has_default=has_default)
        await fs.write_text(
            folder / f"{prefix}__{arch.name}.js",
            content.entry_point(
                content.import_lines(imports, is_common=package.is_common),
                main_block,
                content.export_block(package.name, exports, provided, is_common=package.is_common),
            ),
        )
        if not package.is_common:
            await fs.write_text(folder / f"{prefix}__{arch.name}.cjs", content.cjs_stub(package.name))


async def copy_sources(package: LegacyPackage, folder: Path) -> None:
    if package.kind is SourceKind.ARCHIVE:
        for dest, src in package.archive_resources.items():
            await fs.copy_file(package.folder / src, folder / dest)
    else:
        await fs.copy_tree(package.folder, folder)


async def materialize(package: LegacyPackage, folder: Path, *, convert_tests: bool = False) -> None:
    """Write *package* into *folder*.

    Sources are copied, every reachable file is rewritten so its package
    globals are explicit, and the entry points, globals module and
    ``package.json`` are generated.
    """
    await copy_sources(package, folder)

    tree = await build_import_tree(package, folder)
    for arch in package.archs.all():
        main = arch.get_main_module(just_own=True)
        if main and normalize_file(main) in tree.exported:
            known = set(arch.get_exports())
            package.add_exports(
                [name for name in tree.exported[normalize_file(main)] if name not in known],
                [arch.name],
            )

    package_globals = tree.assigned_globals()
    imported = await rewrite_files(package, folder, tree, package_globals)
    globals_names = set(package.exported_vars()) | _unimported(tree.all_globals(), imported) | package_globals

    test = package.test_package
    if convert_tests and test is not None and test.has_tests:
        test_tree = await build_import_tree(test, folder, skip=set(tree.archs_for_files))
        test_globals = test_tree.assigned_globals()
        test_imported = await rewrite_files(test, folder, test_tree, test_globals | package_globals)
        globals_names |= test_globals | _unimported(test_tree.all_globals(), test_imported)
        await write_entry_points(test, folder)

    if globals_names:
        await write_globals(package, folder, globals_names)
    await fs.write_text(folder / content.NOOP_FILE_NAME, content.NOOP_FILE)
    await write_entry_points(package, folder)
    await fs.write_json(folder / "package.json", package.to_manifest(convert_tests=convert_tests))
