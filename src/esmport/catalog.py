"""Read-only view of the package versions available to a conversion job.

Records come from three places, in priority order:

* local package declarations (authoritative, whatever version they carry),
* manifests of packages already converted into one of the output folders,
* the package registry (``GET <registry>/<name>`` packuments).
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from esmport import fs
from esmport.config import JobOptions
from esmport.errors import MissingPackageError
from esmport.model import Use, VersionRecord
from esmport.names import from_node_name, is_test_name, package_dir, strip_test_suffix, to_node_name
from esmport.versions import satisfies, sort_versions

logger = logging.getLogger(__name__)

MANIFEST_KEY = "meteor"


def record_from_manifest(manifest: dict) -> VersionRecord:
    """Version record described by a converted package's manifest."""
    extension = manifest.get(MANIFEST_KEY) or {}
    return VersionRecord(
        name=from_node_name(manifest["name"]),
        version=manifest.get("version") or "0.0.0",
        uses=[Use.from_manifest(entry) for entry in extension.get("uses", [])],
        implies=[Use.from_manifest(entry) for entry in extension.get("implies", [])],
    )


class RegistryClient:
    """Fetches package documents from an npm-compatible registry."""

    def __init__(
        self,
        options: JobOptions,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.options = options
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._packuments: dict[str, asyncio.Task] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    async def _fetch(self, node_name: str) -> dict | None:
        registry = self.options.registry_for(node_name)
        if not registry:
            return None
        url = f"{registry.rstrip('/')}/{node_name.replace('/', '%2f')}"
        client = await self._get_client()
        r = await client.get(url, headers={"Accept": "application/json"})
        if r.status_code == 404:
            logger.debug("%s is not in %s", node_name, registry)
            return None
        r.raise_for_status()
        return r.json()

    async def packument(self, node_name: str) -> dict | None:
        task = self._packuments.get(node_name)
        if task is None:
            task = asyncio.ensure_future(self._fetch(node_name))
            self._packuments[node_name] = task
        return await task

    async def manifest(self, node_name: str, constraint: str | None = None) -> dict | None:
        """Manifest of the highest published version matching *constraint*."""
        doc = await self.packument(node_name)
        if not doc:
            return None
        versions = doc.get("versions") or {}
        if not versions:
            return None
        if constraint is None:
            latest = (doc.get("dist-tags") or {}).get("latest")
            if latest in versions:
                return versions[latest]
            return versions[sort_versions(versions)[-1]]
        matching = [version for version in versions if satisfies(version, constraint)]
        if not matching:
            return None
        return versions[sort_versions(matching)[-1]]

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class Catalog:
    def __init__(self, options: JobOptions, registry: RegistryClient | None = None) -> None:
        self.options = options
        self.registry = registry
        self._local: dict[str, VersionRecord] = {}
        self._remote: dict[str, dict[str, VersionRecord]] = {}
        self._scanned: set[str] = set()

    def add_local(self, record: VersionRecord) -> None:
        self._local[record.name] = record

    def _add_remote(self, record: VersionRecord) -> None:
        self._remote.setdefault(record.name, {})[record.version] = record

    async def _scan_converted(self, name: str) -> None:
        if name in self._scanned:
            return
        self._scanned.add(name)
        for folder in dict.fromkeys(self.options.output_dirs().values()):
            manifest = await fs.read_json_if_exists(folder / package_dir(name) / "package.json")
            if manifest and manifest.get(MANIFEST_KEY) is not None:
                self._add_remote(record_from_manifest(manifest))

    def _local_record(self, name: str) -> VersionRecord | None:
        if is_test_name(name):
            if name not in self._local:
                raise MissingPackageError(
                    f"{name}: test packages need local source for {strip_test_suffix(name)}"
                )
        return self._local.get(name)

    async def get_sorted_version_records(self, name: str) -> list[VersionRecord]:
        """Every known record for *name*, oldest first."""
        local = self._local_record(name)
        if local is not None:
            return [local]
        await self._scan_converted(name)
        records = self._remote.get(name, {})
        return [records[version] for version in sort_versions(records)]

    async def get_version(self, name: str, version: str) -> VersionRecord | None:
        for record in await self.get_sorted_version_records(name):
            if record.version == version:
                return record
        return None

    async def best_version(self, name: str, constraint: str | None = None) -> VersionRecord | None:
        """Highest record satisfying *constraint*; local sources always win."""
        local = self._local_record(name)
        if local is not None:
            return local
        records = await self.get_sorted_version_records(name)
        matching = [
            record for record in records
            if constraint is None or satisfies(record.version, constraint)
        ]
        if matching:
            return matching[-1]
        if self.registry is None:
            return None
        manifest = await self.registry.manifest(to_node_name(name), constraint)
        if manifest is None or manifest.get(MANIFEST_KEY) is None:
            return None
        record = record_from_manifest(manifest)
        self._add_remote(record)
        return record
