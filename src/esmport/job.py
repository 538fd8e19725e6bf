"""One end-to-end conversion run over a set of requested packages.

The job owns the name -> :class:`LegacyPackage` map.  Loading a package is
memoized as one :class:`asyncio.Task` per name, so every requester of a name,
including the ones taking part in a dependency cycle, shares a single load.

A requester normally waits for the whole load of its dependency.  When that
would close a cycle of waits (A waits for B, which waits for A), it waits
only until the dependency's declaration has been read; the remaining work is
finished by whoever started it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from pathlib import Path

from esmport import fs
from esmport.catalog import MANIFEST_KEY, Catalog, RegistryClient
from esmport.config import JobOptions
from esmport.declaration import declared_name
from esmport.errors import ConversionError, MissingPackageError, VersionMismatchError
from esmport.model import PackageSource, SourceKind
from esmport.names import archive_dir, is_test_name, package_dir, split_constraint, strip_test_suffix, to_node_name
from esmport.package import LegacyPackage
from esmport.versions import calculate_versions, raise_for_conflicts, satisfies, sort_versions

logger = logging.getLogger(__name__)


class ConversionJob:
    def __init__(self, options: JobOptions, *, registry: RegistryClient | None = None) -> None:
        self.options = options
        self.registry = registry if registry is not None else RegistryClient(options)
        self.output_dirs = options.output_dirs()
        self._packages: dict[str, LegacyPackage] = {}
        self._tasks: dict[str, tuple[LegacyPackage, asyncio.Task]] = {}
        # requester -> names it is currently waiting on
        self._waits: dict[str, set[str]] = {}
        self._pinned: dict[str, str] = {}
        self._folders: dict[str, PackageSource] | None = None
        self._folder_lock = asyncio.Lock()
        # files already reported as needing the lenient parser
        self.parse_warnings: set[str] = set()

    async def close(self) -> None:
        await self.registry.aclose()

    # package map

    def get(self, name: str) -> LegacyPackage | None:
        if is_test_name(name):
            base = self._packages.get(strip_test_suffix(name))
            return base.test_package if base is not None else None
        return self._packages.get(name)

    @property
    def packages(self) -> dict[str, LegacyPackage]:
        return dict(self._packages)

    def has(self, name: str) -> bool:
        return name in self._packages

    def delete(self, name: str) -> None:
        self._packages.pop(name, None)
        self._tasks.pop(name, None)

    def converted_package_names(self) -> list[str]:
        return [
            name
            for name, package in self._packages.items()
            if package.should_be_written and package.is_written
        ]

    # source lookup

    async def source_folders(self) -> dict[str, PackageSource]:
        """Declared package name -> source folder; scanned once per job."""
        async with self._folder_lock:
            if self._folders is None:
                folders: dict[str, PackageSource] = {}
                for root, kind in self.options.source_folders():
                    for child in await fs.list_dirs(root):
                        declaration = child / "package.js"
                        if not await fs.exists(declaration):
                            continue
                        name = declared_name(await fs.read_text(declaration)) or child.name
                        folders.setdefault(name, PackageSource(declaration, kind))
                logger.debug("Found %d package folders", len(folders))
                self._folders = folders
        return self._folders

    def _usable_manifest(self, manifest: dict | None, constraint: str | None) -> bool:
        if not manifest or "uses" not in (manifest.get(MANIFEST_KEY) or {}):
            return False
        return constraint is None or satisfies(manifest.get("version") or "0.0.0", constraint)

    async def converted_manifest(self, name: str, constraint: str | None = None) -> dict | None:
        """Manifest of an already converted *name*, on disk or in the registry."""
        for folder in dict.fromkeys(self.output_dirs.values()):
            manifest = await fs.read_json_if_exists(folder / package_dir(name) / "package.json")
            if self._usable_manifest(manifest, constraint):
                return manifest
        manifest = await self.registry.manifest(to_node_name(name), constraint)
        if self._usable_manifest(manifest, constraint):
            return manifest
        return None

    async def archive_folder(self, name: str, constraint: str | None = None) -> Path | None:
        """Folder of the best pre-built archive of *name*, if any."""
        candidates = {}
        for folder in await fs.list_dirs(self.options.archive_dir / archive_dir(name)):
            if await fs.exists(folder / "isopack.json"):
                candidates[folder.name] = folder
        versions = [
            version for version in candidates
            if constraint is None or satisfies(version, constraint)
        ]
        if not versions:
            return None
        return candidates[sort_versions(versions)[-1]]

    # loading

    def warm_package(self, spec: str) -> LegacyPackage | None:
        """Create the descriptor for *spec*; ``None`` when there is nothing new to do."""
        name, _ = split_constraint(spec)
        if self.options.is_excluded(name) or name in self._packages:
            return None
        package = LegacyPackage(name, self)
        self._packages[name] = package
        return package

    async def load_package(self, package: LegacyPackage, constraint: str | None = None) -> None:
        name = package.name
        folders = await self.source_folders()
        source = folders.get(name)
        if source is not None and source.kind in (SourceKind.LOCAL, SourceKind.SHARED):
            await package.load_from_declaration(source)
            return
        if not self.options.should_refresh(name):
            manifest = await self.converted_manifest(name, constraint)
            if manifest is not None and await package.load_from_manifest(manifest):
                logger.debug("Using converted %s@%s", name, package.version)
                return
        if source is not None:
            await package.load_from_declaration(source)
            return
        folder = await self.archive_folder(name, constraint)
        if folder is not None:
            await package.load_from_archive(folder)
            return
        spec = f"{name}@{constraint}" if constraint else name
        raise MissingPackageError(f"couldn't find {spec} in any package folder, registry or archive")

    async def _load(self, name: str, package: LegacyPackage, constraint: str | None) -> LegacyPackage:
        try:
            await self.load_package(package, constraint)
        except Exception as exc:
            package.load_error = exc
            package.declared.set()
            if self._packages.get(name) is package:
                del self._packages[name]
            raise
        package.declared.set()
        logger.debug("Loaded %s", name)
        return package

    def _reaches(self, start: str, target: str) -> bool:
        stack = [start]
        seen: set[str] = set()
        while stack:
            current = stack.pop()
            if current == target:
                return True
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._waits.get(current, ()))
        return False

    async def ensure_package(self, spec: str, requester: str | None = None) -> LegacyPackage:
        """Load *spec* (``name`` or ``name@constraint``) once and check its version."""
        name, constraint = split_constraint(spec)
        if name not in self._tasks:
            package = self._packages.get(name)
            if package is None:
                package = LegacyPackage(name, self)
                self._packages[name] = package
            task = asyncio.ensure_future(self._load(name, package, self._pinned.get(name, constraint)))
            self._tasks[name] = (package, task)
        package, task = self._tasks[name]
        # a test package is declared and ensured inside its base package's load
        waiter = strip_test_suffix(requester) if requester is not None else None

        if waiter is not None and self._reaches(name, waiter):
            await package.declared.wait()
            if package.load_error is not None:
                raise package.load_error
        elif waiter is not None:
            self._waits.setdefault(waiter, set()).add(name)
            try:
                await asyncio.shield(task)
            finally:
                self._waits[waiter].discard(name)
        else:
            await asyncio.shield(task)

        if constraint and package.version:
            if not satisfies(package.version, constraint, allow_older=package.is_local_or_shared):
                raise VersionMismatchError(
                    f"{name}@{package.version} does not satisfy {constraint}"
                    + (f" requested by {requester}" if requester else "")
                )
        return package

    async def _settle(self) -> None:
        """Wait until no load task is running and collect their outcomes."""
        while True:
            pending = [task for _, task in self._tasks.values() if not task.done()]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)
        for _, task in self._tasks.values():
            if not task.cancelled():
                task.exception()

    # catalog

    async def build_catalog(self) -> Catalog:
        """Catalog of local declarations plus converted and registry manifests."""
        catalog = Catalog(self.options, self.registry)
        for name, source in (await self.source_folders()).items():
            if source.kind not in (SourceKind.LOCAL, SourceKind.SHARED):
                continue
            scratch = LegacyPackage(name, self)
            await scratch.read_declaration(source)
            catalog.add_local(scratch.version_record())
            if scratch.has_tests and scratch.test_package is not None:
                catalog.add_local(scratch.test_package.version_record())
        return catalog

    # writing

    async def _write(self, package: LegacyPackage) -> None:
        if self.options.skip_non_local and not package.is_local_or_shared:
            existing = package.output_folder(self.output_dirs) / "package.json"
            if await fs.exists(existing):
                logger.debug("Keeping existing output of %s", package.name)
                return
        await package.write(self.output_dirs, self.options.convert_tests)

    async def write_all(self) -> None:
        packages = [
            package
            for package in list(self._packages.values())
            if package.is_fully_loaded and package.should_be_written
        ]
        await asyncio.gather(*(self._write(package) for package in packages))

    async def convert_packages(self, names: Iterable[str], versioned_names: Iterable[str] = ()) -> list[LegacyPackage]:
        """Load *names* and everything they depend on, then write each package once.

        *versioned_names* (``name@version``) pin the version loaded for a name
        without requesting it.  With ``check_versions`` the whole graph is
        resolved through the catalog first and conflicts abort the run.
        """
        names = list(names)
        versioned_names = list(versioned_names)
        if self.options.check_versions:
            catalog = await self.build_catalog()
            resolution = await calculate_versions([*names, *versioned_names], catalog)
            raise_for_conflicts(resolution)
            self._pinned.update(
                {name: version for name, version in resolution.final.items() if not version.startswith("file:")}
            )
        else:
            for spec in versioned_names:
                name, version = split_constraint(spec)
                if version:
                    self._pinned[name] = version

        for spec in [*versioned_names, *names]:
            self.warm_package(spec)
        requested = [spec for spec in names if not self.options.is_excluded(split_constraint(spec)[0])]
        try:
            packages = await asyncio.gather(*(self.ensure_package(spec) for spec in requested))
        except ConversionError:
            await self._settle()
            raise
        await self._settle()
        await self.write_all()
        return list(packages)

    async def reconvert(self, name: str) -> LegacyPackage:
        """Reload and rewrite *name*, then rewrite the packages that depend on it."""
        old = self._packages.get(name)
        if old is None:
            raise MissingPackageError(f"{name} is not part of this conversion")
        self.delete(name)
        self.warm_package(name)
        package = await self.ensure_package(name)
        package.dependents.update(old.dependents)
        await self._write(package)
        for dependent in list(package.dependents.values()):
            dependent.allow_rebuild()
            await self._write(dependent)
        return package
