"""The in-memory descriptor of one legacy package.

A :class:`LegacyPackage` is populated from one of three sources (a
``package.js`` declaration, the manifest of an already converted package, or
a pre-built archive), resolves its dependency edges through the owning
conversion job, and finally writes itself out through :mod:`esmport.output`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Protocol

from esmport import fs, output
from esmport.arch import DEFAULT_CLIENT_ARCHS, ArchitectureTree
from esmport.catalog import MANIFEST_KEY
from esmport.config import JobOptions
from esmport.declaration import evaluate_declaration
from esmport.errors import ConversionError, DeclarationError, annotate
from esmport.load_order import dependency_record
from esmport.model import DependencyRecord, PackageSource, SourceKind, Use, VersionRecord
from esmport.names import TEST_SUFFIX, from_node_name, package_dir, split_constraint, to_node_name
from esmport.versions import coerce, normalize_version, to_semver_range

logger = logging.getLogger(__name__)

# Files without an explicit arch list that only make sense on the client.
CLIENT_ONLY_EXTENSIONS = (".html", ".less", ".css")

# Archive build arch -> architecture it populates.
ARCHIVE_BUILDS = {
    "client": "client",
    "web.browser": "web.browser",
    "web.browser.legacy": "web.browser.legacy",
    "web.cordova": "web.cordova",
    "os": "server",
}

EXPORT_OPTIONS = ("testOnly", "debugOnly", "prodOnly")


class PackageJob(Protocol):
    """What a package needs from the job that owns it."""

    options: JobOptions

    def get(self, name: str) -> LegacyPackage | None: ...

    async def ensure_package(self, spec: str, requester: str | None = None) -> LegacyPackage: ...


class LegacyPackage:
    def __init__(self, name: str, job: PackageJob, *, is_test: bool = False) -> None:
        self.name = name
        self.node_name = to_node_name(name)
        self.job = job
        self.is_test = is_test
        self.file_prefix = "__test" if is_test else ""

        self.version: str | None = None
        self.description: str | None = None
        self.export_condition: str | None = None
        self.source: PackageSource | None = None
        self.kind: SourceKind | None = None
        self.archs = ArchitectureTree()

        self.uses: list[Use] = []
        self.implies: list[Use] = []
        self.export_options: dict[str, dict[str, bool]] = {}
        self.npm_dependencies: dict[str, str] = {}
        self.optional_dependencies: dict[str, str] = {}
        self.strong_dependencies: dict[str, None] = {}
        self.weak_dependencies: dict[str, None] = {}
        self.dependencies_to_ensure: dict[str, None] = {}
        # node name -> npm range, or None for "whatever version gets loaded"
        self.legacy_dependencies: dict[str, str | None] = {}
        self.peer_dependencies: dict[str, str | None] = {}
        self.imports_map: dict[str, dict[str, str]] = {}
        self.archive_resources: dict[str, str] = {}
        self.dependents: dict[str, LegacyPackage] = {}

        self.is_lazy = False
        self.has_tests = False
        self.is_fully_loaded = False
        self.should_be_written = False
        self.load_error: BaseException | None = None
        self.declared = asyncio.Event()

        self._write_lock = asyncio.Lock()
        self._written = False
        self._cancelled = False
        self.test_package: LegacyPackage | None = None
        if not is_test:
            self.test_package = LegacyPackage(f"{name}{TEST_SUFFIX}", job, is_test=True)

    def __repr__(self) -> str:
        return f"LegacyPackage({self.name!r}, version={self.version!r})"

    # properties

    @property
    def is_common(self) -> bool:
        return self.job.options.is_commonjs(self.name)

    @property
    def folder(self) -> Path | None:
        return self.source.folder if self.source is not None else None

    @property
    def is_local_or_shared(self) -> bool:
        return self.kind in (SourceKind.LOCAL, SourceKind.SHARED)

    def output_folder(self, output_dirs: Mapping[SourceKind, Path]) -> Path:
        return output_dirs[self.kind or SourceKind.OTHER] / package_dir(self.name)

    def _target(self, opts: Mapping[str, Any] | None) -> LegacyPackage:
        if opts and opts.get("testOnly") and self.test_package is not None:
            self.has_tests = True
            self.test_package.has_tests = True
            return self.test_package
        return self

    # declaration

    def set_basic(
        self,
        *,
        name: str | None = None,
        version: str | None = None,
        description: str | None = None,
        prod_only: bool = False,
        dev_only: bool = False,
        test_only: bool = False,
    ) -> None:
        if sum(bool(flag) for flag in (prod_only, dev_only, test_only)) > 1:
            raise DeclarationError(f"{self.name}: a package can be only one of prod-only, dev-only or test-only")
        if name and name != self.name:
            self.name = name
            self.node_name = to_node_name(name)
            if self.test_package is not None:
                self.test_package.name = f"{name}{TEST_SUFFIX}"
                self.test_package.node_name = to_node_name(self.test_package.name)
        self.description = description
        self.version = normalize_version(str(version)) if version else None
        if self.test_package is not None:
            self.test_package.version = self.version
        if prod_only:
            self.export_condition = "production"
        elif test_only:
            self.export_condition = "test"
        elif dev_only:
            self.export_condition = "development"

    def add_exports(
        self,
        symbols: Iterable[str],
        archs: Iterable[str] | None = None,
        opts: Mapping[str, Any] | None = None,
    ) -> None:
        targets = self.archs.select(archs)
        flags = {key: True for key in EXPORT_OPTIONS if opts and opts.get(key)}
        for symbol in symbols:
            for arch in targets:
                arch.add_export(symbol)
            if flags:
                self.export_options.setdefault(symbol, {}).update(flags)

    def add_npm_deps(self, dependencies: Mapping[str, str]) -> None:
        self.npm_dependencies.update(dependencies)

    def add_import(
        self,
        item: str,
        archs: Iterable[str] | None = None,
        opts: Mapping[str, Any] | None = None,
    ) -> None:
        target = self._target(opts)
        if target is not self:
            target.add_import(item, archs)
            return
        archs = list(archs or ())
        if not archs and item.endswith(CLIENT_ONLY_EXTENSIONS):
            archs = list(DEFAULT_CLIENT_ARCHS)
        for arch in self.archs.select(archs):
            arch.add_import(item)

    def add_assets(self, files: Iterable[str], archs: Iterable[str] | None = None) -> None:
        targets = self.archs.select(archs)
        for file in files:
            for arch in targets:
                arch.add_asset(file)

    def add_dependencies(
        self,
        specs: Iterable[str],
        archs: Iterable[str] | None = None,
        opts: Mapping[str, Any] | None = None,
    ) -> None:
        """Record ``api.use`` edges.

        Strong edges gate loading and add a side-effecting import; weak edges
        only affect ordering; unordered edges load after this package.
        """
        target = self._target(opts)
        opts = {key: value for key, value in (opts or {}).items() if key != "testOnly"}
        if target is not self:
            target.add_dependencies(specs, archs, opts)
            return
        archs = list(archs or ())
        weak = bool(opts.get("weak"))
        unordered = bool(opts.get("unordered"))
        targets = self.archs.select(archs)
        for spec in specs:
            name, constraint = split_constraint(spec)
            if self.job.options.is_excluded(name):
                continue
            self.uses.append(Use(name, constraint, archs or None, weak=weak, unordered=unordered))
            node_name = to_node_name(name)
            if weak:
                for arch in targets:
                    arch.add_preload_package(node_name)
                self.weak_dependencies.setdefault(spec)
            elif unordered:
                for arch in targets:
                    arch.add_unordered_package(node_name)
            else:
                self.dependencies_to_ensure.setdefault(spec)
                self.strong_dependencies.setdefault(spec)
            if not weak:
                bucket = self.peer_dependencies if unordered else self.legacy_dependencies
                bucket[node_name] = to_semver_range(constraint) if constraint else None
            if not weak and not unordered:
                self.add_import(node_name, archs)

    def add_implies(self, specs: Iterable[str], archs: Iterable[str] | None = None) -> None:
        """Record ``api.imply``: required, loaded after, exports passed through."""
        specs = list(specs)
        archs = list(archs or ())
        self.add_dependencies(specs, archs, {"unordered": True})
        targets = self.archs.select(archs)
        for spec in specs:
            name, constraint = split_constraint(spec)
            if self.job.options.is_excluded(name):
                continue
            self.dependencies_to_ensure.setdefault(spec)
            for arch in targets:
                arch.add_implied_package(name)
            self.implies.append(Use(name, constraint, archs or None))

    def set_main_module(
        self,
        file: str,
        archs: Iterable[str] | None = None,
        opts: Mapping[str, Any] | None = None,
    ) -> None:
        target = self._target(opts)
        if target is not self:
            target.set_main_module(file, archs)
            return
        if opts and opts.get("lazy"):
            self.is_lazy = True
        for arch in self.archs.select(archs):
            arch.set_main_module(output.normalize_file(file))

    # loading

    async def read_declaration(self, source: PackageSource) -> None:
        """Evaluate ``package.js`` into this descriptor without resolving anything."""
        self.source = source
        self.kind = source.kind
        if self.test_package is not None:
            self.test_package.source = source
            self.test_package.kind = source.kind
        text = await fs.read_text(source.declaration)
        try:
            evaluate_declaration(text, DeclarationAdapter(self), path=source.declaration)
        except ConversionError as exc:
            raise annotate(exc, f"problem parsing {self.name}") from exc
        used = {use.name for use in self.uses}
        for implicit in self.job.options.implicit_dependencies:
            if implicit != self.name and implicit not in used:
                self.add_dependencies([implicit])
        if self.version is None:
            logger.debug("%s declares no version", self.name)

    async def load_from_declaration(self, source: PackageSource) -> None:
        await self.read_declaration(source)
        self.declared.set()
        await self.ensure_packages()
        if self.job.options.convert_tests and self.has_tests and self.test_package is not None:
            try:
                await self.test_package.ensure_packages()
            except ConversionError as exc:
                logger.warning("%s: test package problem: %s", self.name, exc)
        self.is_fully_loaded = True
        self.should_be_written = True
        self._add_implied_imports()

    def _add_implied_imports(self) -> None:
        """Packages implied by a direct dependency become imports of this one."""
        for node_name in list(self.legacy_dependencies):
            dependency = self.job.get(from_node_name(node_name))
            if dependency is None:
                continue
            for arch in list(self.archs.all()):
                for implied in dependency.implied_packages(arch.name):
                    self.add_import(to_node_name(implied), [arch.name])

    def read_manifest(self, manifest: Mapping[str, Any]) -> bool:
        """Populate from a converted package's manifest; ``False`` if it has no dependency list."""
        extension = manifest.get(MANIFEST_KEY) or {}
        self.set_basic(
            name=from_node_name(manifest["name"]),
            version=manifest.get("version"),
            description=manifest.get("description"),
        )
        options = extension.get("exportOptions", {})
        for arch, symbols in extension.get("exportedVars", {}).items():
            for symbol in symbols:
                self.add_exports([symbol], [arch], options.get(symbol))
        self.is_lazy = bool(extension.get("lazy"))
        if "uses" not in extension:
            logger.warning("%s has no %s.uses in its manifest", manifest["name"], MANIFEST_KEY)
            return False
        for entry in extension["uses"]:
            use = Use.from_manifest(entry)
            if use.test_only:
                continue
            self.uses.append(use)
            node_name = to_node_name(use.name)
            version_range = to_semver_range(use.constraint) if use.constraint else None
            targets = self.archs.select(use.archs)
            if use.weak:
                self.weak_dependencies.setdefault(use.spec)
                for arch in targets:
                    arch.add_preload_package(node_name)
            elif use.unordered:
                self.peer_dependencies[node_name] = version_range
                for arch in targets:
                    arch.add_unordered_package(node_name)
            else:
                self.strong_dependencies.setdefault(use.spec)
                self.dependencies_to_ensure.setdefault(use.name)
                self.legacy_dependencies[node_name] = version_range
        for entry in extension.get("implies", []):
            implied = Use.from_manifest(entry)
            self.implies.append(implied)
            self.dependencies_to_ensure.setdefault(implied.name)
            for arch in self.archs.select(implied.archs):
                arch.add_implied_package(implied.name)
        return True

    async def load_from_manifest(self, manifest: Mapping[str, Any], kind: SourceKind = SourceKind.OTHER) -> bool:
        self.kind = kind
        self.is_fully_loaded = True
        if not self.read_manifest(manifest):
            self.is_fully_loaded = False
            return False
        self.declared.set()
        await self.ensure_packages()
        return True

    async def read_archive(self, folder: Path) -> None:
        """Populate from a pre-built ``isopack.json`` archive."""
        self.source = PackageSource(folder / "isopack.json", SourceKind.ARCHIVE)
        self.kind = SourceKind.ARCHIVE
        data = await fs.read_json(folder / "isopack.json")
        isopack = data.get("isopack-2") or data.get("isopack-1")
        if isopack is None:
            raise DeclarationError(f"{self.name}: {folder} holds no isopack metadata")
        self.set_basic(
            name=isopack.get("name") or self.name,
            version=isopack.get("version"),
            description=isopack.get("summary"),
            prod_only=bool(isopack.get("prodOnly")),
            dev_only=bool(isopack.get("devOnly")),
            test_only=bool(isopack.get("testOnly")),
        )
        builds = [dict(build) for build in isopack.get("builds", []) if build.get("arch") in ARCHIVE_BUILDS]
        # a lone web.browser build serves every client
        if not any(build["arch"] == "web.browser.legacy" for build in builds):
            for build in builds:
                if build["arch"] == "web.browser":
                    build["arch"] = "client"
        for build in builds:
            build_json = await fs.read_json(folder / build["path"])
            await self._read_archive_build(folder, build_json, ARCHIVE_BUILDS[build["arch"]])

    async def _read_archive_build(self, folder: Path, build: Mapping[str, Any], arch: str) -> None:
        for use in build.get("uses", []):
            spec = f"{use['package']}@{use['constraint']}" if use.get("constraint") else use["package"]
            self.add_dependencies([spec], [arch], {"weak": use.get("weak"), "unordered": use.get("unordered")})
        for implied in build.get("implies", []):
            spec = f"{implied['package']}@{implied['constraint']}" if implied.get("constraint") else implied["package"]
            self.add_implies([spec], [arch])

        for resource in build.get("resources", []):
            kind = resource.get("type")
            path = resource.get("path")
            if not path and kind == "prelink":
                path = resource.get("servePath")
            if not path and kind != "source":
                path = "/".join((resource.get("servePath") or "").split("/")[3:])
            if not path:
                continue
            if kind in ("source", "prelink") and path.startswith("/packages/"):
                path = path.replace("/packages/", f"/{arch}/", 1)
            path = path.lstrip("/")
            file_options = resource.get("fileOptions") or {}
            if file_options.get("mainModule"):
                self.set_main_module(path, [arch], {"lazy": file_options.get("lazy")})
            elif kind in ("source", "prelink") and not file_options.get("lazy"):
                self.add_import(output.normalize_file(path), [arch])
            elif kind == "asset":
                self.add_assets([path], [arch])
            if resource.get("file"):
                self.archive_resources[path] = resource["file"]

        if build.get("node_modules"):
            shrinkwrap = await fs.read_json_if_exists(folder / build["node_modules"] / ".npm-shrinkwrap.json")
            for name, info in ((shrinkwrap or {}).get("dependencies") or {}).items():
                self.npm_dependencies[name] = info.get("version")
        for declared in build.get("declaredExports", []):
            self.add_exports([declared["name"]], [arch])

    async def load_from_archive(self, folder: Path) -> None:
        await self.read_archive(folder)
        self.is_fully_loaded = True
        self.should_be_written = True
        self.declared.set()
        await self.ensure_packages()

    async def ensure_packages(self) -> None:
        """Resolve every recorded edge through the job.

        A failing strong dependency propagates with this package's name
        attached; a failing weak dependency is logged and skipped.
        """

        async def strong(spec: str) -> None:
            try:
                await self.job.ensure_package(spec, requester=self.name)
            except ConversionError as exc:
                raise annotate(exc, f"couldn't ensure {spec} of {self.name}") from exc

        async def weak(spec: str) -> None:
            try:
                await self.job.ensure_package(spec, requester=self.name)
            except ConversionError as exc:
                logger.warning("%s: weak dependency %s is unavailable: %s", self.name, spec, exc)

        await asyncio.gather(
            *(strong(spec) for spec in self.dependencies_to_ensure),
            *(weak(spec) for spec in self.weak_dependencies),
        )

        for spec in self.strong_dependencies:
            name, _ = split_constraint(spec)
            dependency = self.job.get(name)
            if dependency is None:
                continue
            dependency.dependents[self.name] = self
            if self.is_common and not dependency.is_common:
                node_name = to_node_name(name)
                for arch in self.archs.all():
                    if node_name in arch.get_imports(just_own=True):
                        arch.add_preload_package(node_name)

    # views

    def implied_packages(self, arch_name: str) -> list[str]:
        arch = self.archs.nearest(arch_name)
        return arch.get_implied_packages() if arch is not None else []

    def exported_vars(self, arch_name: str | None = None) -> list[str]:
        if arch_name is None:
            return list(dict.fromkeys(symbol for arch in self.archs.all() for symbol in arch.get_exports()))
        arch = self.archs.nearest(arch_name)
        return arch.get_exports() if arch is not None else []

    def effective_exports(self, arch_name: str, _seen: set[str] | None = None) -> dict[str, str]:
        """Symbols importing this package provides on *arch_name*, each mapped to
        the node name it is imported from; implied packages pass theirs through."""
        seen = _seen if _seen is not None else set()
        seen.add(self.name)
        provided: dict[str, str] = {}
        for implied in self.implied_packages(arch_name):
            if implied in seen:
                continue
            package = self.job.get(implied)
            if package is not None:
                provided.update(package.effective_exports(arch_name, seen))
        for symbol in self.exported_vars(arch_name):
            provided[symbol] = self.node_name
        return provided

    def imported_globals_maps(self, names: Iterable[str], arch_names: Iterable[str]) -> dict[str, dict[str, str]]:
        """For each architecture, which dependency provides each of *names*."""
        names = set(names)
        static = self.job.options.static_imports
        dependencies = []
        for node_name in self.legacy_dependencies:
            dependency = self.job.get(from_node_name(node_name))
            if dependency is None:
                logger.debug("%s: %s is not loaded, its exports are unknown", self.name, node_name)
                continue
            dependencies.append(dependency)

        maps: dict[str, dict[str, str]] = {}
        for arch_name in arch_names:
            exported: dict[str, str] = {}
            for dependency in dependencies:
                exported.update(dependency.effective_exports(arch_name))
            arch_map: dict[str, str] = {}
            for name in sorted(names):
                provider = static.get(name)
                if provider and to_node_name(provider) != self.node_name:
                    arch_map[name] = to_node_name(provider)
                if name in exported:
                    arch_map[name] = exported[name]
            maps[arch_name] = arch_map
        return maps

    def dependency_record(self, arch: str) -> DependencyRecord:
        return dependency_record(
            self.uses,
            arch,
            is_lazy=self.is_lazy,
            prod_only=self.export_condition == "production",
        )

    def version_record(self) -> VersionRecord:
        return VersionRecord(
            name=self.name,
            version=self.version or "0.0.0",
            uses=[use for use in self.uses if not use.test_only],
            implies=list(self.implies),
            local_path=str(self.folder) if self.is_local_or_shared and self.folder else None,
        )

    # manifest

    def _resolve_placeholders(self, dependencies: Mapping[str, str | None]) -> dict[str, str]:
        resolved = {}
        for name, version in dependencies.items():
            if version is None:
                dependency = self.job.get(from_node_name(name))
                if dependency is None or dependency.version is None:
                    continue
                version = dependency.version
            resolved[name] = version
        return resolved

    def _use_entries(self, uses: Iterable[Use]) -> list[dict]:
        entries = []
        for use in uses:
            entry = use.to_manifest()
            if "constraint" not in entry:
                dependency = self.job.get(use.name)
                if dependency is not None and dependency.version:
                    entry["constraint"] = dependency.version
            entries.append(entry)
        return entries

    def manifest_exports(self) -> dict:
        conditions: dict[str, Any] = {}
        for arch in self.archs.leaf_archs():
            base = f"./{self.file_prefix}__{arch.get_active_arch().name}"
            conditions[arch.export_name] = {
                "import": f"{base}.js",
                "require": f"{base}.js" if self.is_common else f"{base}.cjs",
            }
        conditions["default"] = "./__noop.js"
        if self.export_condition:
            return {self.export_condition: conditions, "default": "./__noop.js"}
        return conditions

    def to_manifest(self, *, convert_tests: bool = False) -> dict:
        test = self.test_package
        with_tests = convert_tests and self.has_tests and test is not None
        exports: dict[str, Any] = {}
        if self.has_tests and test is not None:
            exports["./__test.js"] = test.manifest_exports()
        exports["."] = self.manifest_exports()
        exports["./*"] = "./*"

        extension: dict[str, Any] = {
            "assets": {
                arch.name: arch.get_assets(just_own=True)
                for arch in self.archs.all()
                if arch.get_assets(just_own=True)
            },
            "exportedVars": {
                arch.name: arch.get_exports(just_own=True)
                for arch in self.archs.all()
                if arch.get_exports(just_own=True)
            },
        }
        if self.export_options:
            extension["exportOptions"] = self.export_options
        if self.is_lazy:
            extension["lazy"] = True
        extension["uses"] = self._use_entries(self.uses)
        extension["implies"] = self._use_entries(self.implies)
        if with_tests:
            extension["testUses"] = [dict(entry, testOnly=True) for entry in self._use_entries(test.uses)]

        manifest: dict[str, Any] = {"name": self.node_name}
        if self.version:
            manifest["version"] = str(coerce(self.version) or self.version)
        if self.description:
            manifest["description"] = self.description
        manifest.update(
            {
                "type": "commonjs" if self.is_common else "module",
                "dependencies": self._resolve_placeholders(self.npm_dependencies),
                "devDependencies": (
                    self._resolve_placeholders({**test.npm_dependencies, **test.legacy_dependencies})
                    if with_tests
                    else {}
                ),
                "peerDependencies": self._resolve_placeholders(
                    {**self.peer_dependencies, **self.legacy_dependencies}
                ),
                "optionalDependencies": self._resolve_placeholders(self.optional_dependencies),
                "exports": exports,
                "imports": self.imports_map,
                MANIFEST_KEY: extension,
            }
        )
        return manifest

    # output

    async def write(self, output_dirs: Mapping[SourceKind, Path], convert_tests: bool = False) -> None:
        """Materialize this package once; concurrent callers wait for the same write."""
        async with self._write_lock:
            if self._written or self._cancelled:
                return
            self._written = True
            if not self.should_be_written:
                return
            folder = self.output_folder(output_dirs)
            try:
                await output.materialize(self, folder, convert_tests=convert_tests)
            except ConversionError as exc:
                raise annotate(exc, f"{self.name} ({folder})") from exc
            logger.debug("Wrote %s to %s", self.name, folder)

    def allow_rebuild(self) -> None:
        self._written = False

    @property
    def is_written(self) -> bool:
        return self._written

    async def cancel_and_delete(self, output_dirs: Mapping[SourceKind, Path]) -> None:
        self._cancelled = True
        async with self._write_lock:
            await fs.remove_tree(self.output_folder(output_dirs))


class DeclarationAdapter:
    """Routes declaration calls to a :class:`LegacyPackage`."""

    def __init__(self, package: LegacyPackage) -> None:
        self.package = package

    def describe(self, info: dict[str, Any]) -> None:
        self.package.set_basic(
            name=info.get("name") or self.package.name,
            version=info.get("version"),
            description=info.get("summary"),
            prod_only=bool(info.get("prodOnly")),
            dev_only=bool(info.get("devOnly")),
            test_only=bool(info.get("testOnly")),
        )

    def npm_depends(self, dependencies: dict[str, str]) -> None:
        self.package.add_npm_deps(dependencies)

    def versions_from(self, release: Any) -> None:
        logger.debug("%s: ignoring versionsFrom(%r)", self.package.name, release)

    def use(self, packages: list[str], archs: list[str], opts: dict[str, Any], *, test: bool) -> None:
        if test:
            opts = dict(opts, testOnly=True)
        self.package.add_dependencies(packages, archs, opts)

    def imply(self, packages: list[str], archs: list[str], *, test: bool) -> None:
        if test:
            self.package._target({"testOnly": True}).add_implies(packages, archs)
        else:
            self.package.add_implies(packages, archs)

    def export(self, symbols: list[str], archs: list[str], opts: dict[str, Any], *, test: bool) -> None:
        if not test:
            self.package.add_exports(symbols, archs, opts)

    def add_files(self, files: list[str], archs: list[str], opts: dict[str, Any], *, test: bool) -> None:
        for file in files:
            self.package.add_import(output.normalize_file(file), archs, {"testOnly": test})

    def add_assets(self, files: list[str], archs: list[str], *, test: bool) -> None:
        self.package._target({"testOnly": test}).add_assets(files, archs)

    def main_module(self, file: str, archs: list[str], opts: dict[str, Any], *, test: bool) -> None:
        self.package.set_main_module(file, archs, dict(opts, testOnly=test))
