import asyncio
import json

import httpx
import pytest

from esmport.catalog import Catalog, RegistryClient, record_from_manifest
from esmport.errors import MissingPackageError
from esmport.model import Use, VersionRecord


def packument(name, versions, latest=None):
    return {
        "name": name,
        "dist-tags": {"latest": latest or versions[-1]},
        "versions": {
            version: {"name": name, "version": version, "meteor": {"uses": [{"name": "@meteor/base"}]}}
            for version in versions
        },
    }


def serve(documents, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(str(request.url))
        for name, doc in documents.items():
            if str(request.url).lower().endswith(name.replace("/", "%2f")):
                return httpx.Response(200, json=doc)
        return httpx.Response(404, json={"error": "not found"})

    return httpx.MockTransport(handler)


def registry_client(options, documents, seen=None):
    client = httpx.AsyncClient(transport=serve(documents, seen))
    return RegistryClient(options(registry="https://registry.test"), client=client), client


def test_registry_picks_highest_matching_version(options):
    documents = {"@meteor/delta": packument("@meteor/delta", ["1.0.0", "1.3.0", "2.0.0"], latest="1.3.0")}

    async def main():
        registry, client = registry_client(options, documents)
        try:
            matching = await registry.manifest("@meteor/delta", "1.0.0")
            latest = await registry.manifest("@meteor/delta")
            missing = await registry.manifest("@meteor/delta", "3.0.0")
            return matching, latest, missing
        finally:
            await client.aclose()

    matching, latest, missing = asyncio.run(main())
    assert matching["version"] == "1.3.0"
    assert latest["version"] == "1.3.0"
    assert missing is None


def test_registry_404_and_fetch_once(options):
    seen = []
    documents = {"@meteor/delta": packument("@meteor/delta", ["1.0.0"])}

    async def main():
        registry, client = registry_client(options, documents, seen)
        try:
            await asyncio.gather(registry.packument("@meteor/delta"), registry.packument("@meteor/delta"))
            return await registry.manifest("@meteor/ghost")
        finally:
            await client.aclose()

    assert asyncio.run(main()) is None
    assert len(seen) == 2


def test_scoped_registry_is_preferred(options):
    registry = RegistryClient(options(registry="https://default.test", scoped_registries={"@iron": "https://iron.test"}))
    assert registry.options.registry_for("@iron/router") == "https://iron.test"
    assert registry.options.registry_for("@meteor/tracker") == "https://default.test"
    assert registry.options.registry_for("lodash") == "https://default.test"


def test_record_from_manifest():
    record = record_from_manifest(
        {
            "name": "@iron/router",
            "version": "1.1.2",
            "meteor": {"uses": [{"name": "@meteor/tracker", "constraint": "1.0.0"}], "implies": []},
        }
    )
    assert record == VersionRecord("iron:router", "1.1.2", uses=[Use("tracker", "1.0.0")])


def test_local_record_always_wins(options):
    catalog = Catalog(options())
    catalog.add_local(VersionRecord("delta", "0.5.0", local_path="/somewhere"))
    record = asyncio.run(catalog.best_version("delta", "1.0.0"))
    assert record.version == "0.5.0"


def test_converted_manifests_are_versions(app, options):
    opts = options()
    folder = opts.output_dir / "delta"
    folder.mkdir(parents=True)
    (folder / "package.json").write_text(
        json.dumps({"name": "@meteor/delta", "version": "1.2.0", "meteor": {"uses": []}}),
        encoding="utf-8",
    )
    catalog = Catalog(opts)
    records = asyncio.run(catalog.get_sorted_version_records("delta"))
    assert [record.version for record in records] == ["1.2.0"]
    assert asyncio.run(catalog.get_version("delta", "1.2.0")) is records[0]
    assert asyncio.run(catalog.best_version("delta", "2.0.0")) is None


def test_registry_fallback(options):
    documents = {"@meteor/delta": packument("@meteor/delta", ["1.0.0", "2.0.0"])}

    async def main():
        registry, client = registry_client(options, documents)
        try:
            catalog = Catalog(registry.options, registry)
            return await catalog.best_version("delta", "2.0.0")
        finally:
            await client.aclose()

    record = asyncio.run(main())
    assert record.version == "2.0.0"
    assert record.uses == [Use("base")]


def test_test_package_needs_local_source(options):
    catalog = Catalog(options())
    with pytest.raises(MissingPackageError):
        asyncio.run(catalog.best_version("alpha--test--"))
