import asyncio
import json
import logging

import httpx
import pytest

from esmport.analysis import dependency_cycles, strong_dependency_graph
from esmport.catalog import RegistryClient
from esmport.errors import MissingPackageError, VersionConflictError, VersionMismatchError
from esmport.job import ConversionJob
from esmport.model import SourceKind

ALPHA = """
Package.describe({ name: "alpha", version: "1.0.0" });
Package.onUse(function (api) {
  api.use("beta");
  api.addFiles("alpha.js");
  api.export("Alpha");
});
"""

BETA = """
Package.describe({ name: "beta", version: "1.0.0" });
Package.onUse(function (api) {
  api.addFiles("beta.js");
  api.export("Beta");
});
"""


def declaration(name, *uses, version="1.0.0"):
    lines = [f'Package.describe({{ name: "{name}", version: "{version}" }});', "Package.onUse(function (api) {"]
    lines.extend(f"  api.use({use});" for use in uses)
    lines.append(f'  api.addFiles("{name}.js");')
    lines.append("});")
    return "\n".join(lines) + "\n"


def convert(options, names, versioned=(), registry=None):
    async def main():
        job = ConversionJob(options, registry=registry)
        try:
            await job.convert_packages(names, versioned)
        finally:
            await job.close()
        return job

    return asyncio.run(main())


def test_converts_package_and_dependency(app, make_package, options):
    make_package("alpha", ALPHA, {"alpha.js": "Alpha = { beta: Beta };\n"})
    make_package("beta", BETA, {"beta.js": "Beta = 1;\n"})

    job = convert(options(), ["alpha"])
    assert job.converted_package_names() == ["alpha", "beta"]

    out = app / "npm-packages" / "alpha"
    for name in ("alpha.js", "__globals.js", "__client.js", "__server.js", "__server.cjs", "__noop.js"):
        assert (out / name).is_file(), name
    alpha = (out / "alpha.js").read_text()
    assert 'import { Beta } from "@meteor/beta";' in alpha
    assert "__package_globals__.Alpha = { beta: Beta };" in alpha

    manifest = json.loads((out / "package.json").read_text())
    assert manifest["name"] == "@meteor/alpha"
    assert manifest["type"] == "module"
    assert manifest["peerDependencies"] == {"@meteor/beta": "1.0.0"}
    assert manifest["meteor"]["exportedVars"] == {"client": ["Alpha"], "server": ["Alpha"]}

    server = (out / "__server.js").read_text()
    assert 'import "@meteor/beta";' in server
    assert 'import "./alpha.js";' in server
    assert "export { Alpha };" in server

    beta = (app / "npm-packages" / "beta" / "beta.js").read_text()
    assert beta == 'import __package_globals__ from "./__globals.js";\n__package_globals__.Beta = 1;\n'


def test_missing_weak_dependency_only_warns(app, make_package, options, caplog):
    make_package("alpha", declaration("alpha", '"ghost", { weak: true }'), {"alpha.js": "Alpha = 1;\n"})
    with caplog.at_level(logging.WARNING, logger="esmport"):
        job = convert(options(), ["alpha"])
    assert "weak dependency ghost is unavailable" in caplog.text
    assert not job.has("ghost")
    assert (app / "npm-packages" / "alpha" / "package.json").is_file()


def test_dependency_cycle_completes(app, make_package, options):
    make_package("alpha", declaration("alpha", '"beta"'), {"alpha.js": "Alpha = 1;\n"})
    make_package("beta", declaration("beta", '"alpha"'), {"beta.js": "Beta = 2;\n"})

    job = convert(options(), ["alpha"])
    assert sorted(job.converted_package_names()) == ["alpha", "beta"]
    (cycle,) = dependency_cycles(strong_dependency_graph(job.packages))
    assert str(cycle) == "alpha -> beta -> alpha"
    assert job.get("beta").dependents["alpha"] is job.get("alpha")
    assert job.get("alpha").dependents["beta"] is job.get("beta")


def test_strong_version_mismatch_is_fatal(app, make_package, options):
    make_package("alpha", declaration("alpha", '"beta@2.0.0"'), {"alpha.js": "Alpha = 1;\n"})
    make_package("beta", declaration("beta", version="1.0.0"), {"beta.js": "Beta = 2;\n"})

    with pytest.raises(VersionMismatchError) as info:
        convert(options(), ["alpha"])
    assert "couldn't ensure beta@2.0.0 of alpha" in str(info.value)
    assert not (app / "npm-packages").exists()


def test_missing_strong_dependency_is_fatal(app, make_package, options):
    make_package("alpha", declaration("alpha", '"ghost"'), {"alpha.js": "Alpha = 1;\n"})

    with pytest.raises(MissingPackageError) as info:
        convert(options(), ["alpha"])
    assert "couldn't ensure ghost of alpha" in str(info.value)
    assert "couldn't find ghost" in str(info.value)


def test_version_conflicts_abort_before_writing(app, make_package, options):
    def handler(request):
        if "delta" in str(request.url):
            return httpx.Response(
                200,
                json={
                    "name": "@meteor/delta",
                    "versions": {
                        version: {"name": "@meteor/delta", "version": version, "meteor": {"uses": []}}
                        for version in ("1.0.0", "2.0.0")
                    },
                },
            )
        return httpx.Response(404)

    make_package("alpha", declaration("alpha", '"delta@1.0.0"'), {"alpha.js": "Alpha = 1;\n"})
    make_package("beta", declaration("beta", '"delta@2.0.0"'), {"beta.js": "Beta = 1;\n"})
    opts = options(registry="https://registry.test", check_versions=True)

    async def main():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        job = ConversionJob(opts, registry=RegistryClient(opts, client=client))
        try:
            await job.convert_packages(["alpha", "beta"])
        finally:
            await client.aclose()

    with pytest.raises(VersionConflictError) as info:
        asyncio.run(main())
    assert "^1.0.0" in info.value.conflicts["delta"]
    assert "^2.0.0" in info.value.conflicts["delta"]
    assert not (app / "npm-packages").exists()


def test_excluded_and_versioned_names(app, make_package, options):
    make_package("alpha", ALPHA, {"alpha.js": "Alpha = Beta;\n"})
    make_package("beta", BETA, {"beta.js": "Beta = 1;\n"})

    job = convert(options(), ["alpha", "isobuild:compiler-plugin"], ["beta@1.0.0"])
    assert not job.has("isobuild:compiler-plugin")
    assert job.get("beta").version == "1.0.0"


def test_existing_output_is_reused(app, make_package, options):
    make_package("alpha", ALPHA, {"alpha.js": "Alpha = Beta;\n"})
    make_package("beta", BETA, {"beta.js": "Beta = 1;\n"})
    convert(options(), ["alpha"])

    # beta now only exists as converted output
    (app / "packages" / "beta" / "package.js").unlink()
    job = convert(options(), ["alpha"])
    beta = job.get("beta")
    assert beta.version == "1.0.0"
    assert not beta.should_be_written
    assert beta.exported_vars("server") == ["Beta"]


def test_reconvert_rewrites_dependents(app, make_package, options):
    make_package("alpha", ALPHA, {"alpha.js": "Alpha = Beta;\n"})
    beta_dir = make_package("beta", BETA, {"beta.js": "Beta = 1;\n"})

    async def main():
        job = ConversionJob(options())
        try:
            await job.convert_packages(["alpha"])
            (beta_dir / "beta.js").write_text("Beta = 2;\nExtra = 3;\n", encoding="utf-8")
            package = await job.reconvert("beta")
        finally:
            await job.close()
        return job, package

    job, package = asyncio.run(main())
    assert package is job.get("beta")
    assert "alpha" in package.dependents
    beta = (app / "npm-packages" / "beta" / "beta.js").read_text()
    assert "__package_globals__.Extra = 3;" in beta
    assert job.get("alpha").is_written


def test_reconvert_unknown_package(options):
    async def main():
        job = ConversionJob(options())
        try:
            await job.reconvert("ghost")
        finally:
            await job.close()

    with pytest.raises(MissingPackageError):
        asyncio.run(main())


def write_archive(root, name, source):
    """A pre-built ``os``/``web.browser`` archive of *name* exporting its capitalized name."""
    archive = root / name / "1.0.0"
    for arch in ("os", "web.browser"):
        (archive / arch).mkdir(parents=True, exist_ok=True)
        (archive / arch / f"{name}.js").write_text(source, encoding="utf-8")
        build = {
            "resources": [{"type": "source", "path": f"{name}.js", "file": f"{arch}/{name}.js"}],
            "declaredExports": [{"name": name.capitalize()}],
        }
        (archive / f"{arch}.json").write_text(json.dumps(build), encoding="utf-8")
    isopack = {
        "isopack-2": {
            "name": name,
            "version": "1.0.0",
            "builds": [{"arch": "os", "path": "os.json"}, {"arch": "web.browser", "path": "web.browser.json"}],
        }
    }
    (archive / "isopack.json").write_text(json.dumps(isopack), encoding="utf-8")


def test_archive_fallback(app, make_package, options):
    write_archive(app / "archive", "gamma", "Gamma = 3;\n")
    make_package("alpha", declaration("alpha", '"gamma"'), {"alpha.js": "Alpha = Gamma;\n"})

    job = convert(options(archive_dir=app / "archive"), ["alpha"])
    gamma = job.get("gamma")
    assert gamma.kind is SourceKind.ARCHIVE
    assert gamma.exported_vars("web.browser") == ["Gamma"]
    out = app / "npm-packages" / "gamma"
    assert (out / "gamma.js").read_text() == (
        'import __package_globals__ from "./__globals.js";\n__package_globals__.Gamma = 3;\n'
    )
    alpha = (app / "npm-packages" / "alpha" / "alpha.js").read_text()
    assert 'import { Gamma } from "@meteor/gamma";' in alpha


@pytest.mark.parametrize("force_refresh", [True, {"gamma"}])
def test_force_refresh_ignores_converted_output(app, make_package, options, force_refresh):
    write_archive(app / "archive", "gamma", "Gamma = 3;\n")
    make_package("alpha", declaration("alpha", '"gamma"'), {"alpha.js": "Alpha = Gamma;\n"})
    convert(options(archive_dir=app / "archive"), ["alpha"])

    write_archive(app / "archive", "gamma", "Gamma = 4;\n")
    job = convert(options(archive_dir=app / "archive"), ["alpha"])
    assert not job.get("gamma").should_be_written
    assert "Gamma = 3;" in (app / "npm-packages" / "gamma" / "gamma.js").read_text()

    job = convert(options(archive_dir=app / "archive", force_refresh=force_refresh), ["alpha"])
    gamma = job.get("gamma")
    assert gamma.kind is SourceKind.ARCHIVE
    assert gamma.should_be_written
    assert "__package_globals__.Gamma = 4;" in (app / "npm-packages" / "gamma" / "gamma.js").read_text()


def test_force_refresh_of_other_names_keeps_converted_output(app, make_package, options):
    write_archive(app / "archive", "gamma", "Gamma = 3;\n")
    make_package("alpha", declaration("alpha", '"gamma"'), {"alpha.js": "Alpha = Gamma;\n"})
    convert(options(archive_dir=app / "archive"), ["alpha"])

    job = convert(options(archive_dir=app / "archive", force_refresh={"delta"}), ["alpha"])
    assert not job.get("gamma").should_be_written


def test_skip_non_local_keeps_existing_output(app, make_package, options):
    write_archive(app / "archive", "gamma", "Gamma = 3;\n")
    make_package("alpha", declaration("alpha", '"gamma"'), {"alpha.js": "Alpha = Gamma;\n"})
    convert(options(archive_dir=app / "archive"), ["alpha"])

    write_archive(app / "archive", "gamma", "Gamma = 4;\n")
    (app / "packages" / "alpha" / "alpha.js").write_text("Alpha = [Gamma];\n", encoding="utf-8")
    opts = options(archive_dir=app / "archive", force_refresh=True, skip_non_local=True)
    job = convert(opts, ["alpha"])
    assert job.get("gamma").should_be_written
    assert "Gamma = 3;" in (app / "npm-packages" / "gamma" / "gamma.js").read_text()
    # local packages are still written
    assert "Alpha = [Gamma];" in (app / "npm-packages" / "alpha" / "alpha.js").read_text()
