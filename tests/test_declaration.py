from textwrap import dedent

import pytest

from esmport.declaration import declared_name, evaluate_declaration
from esmport.errors import DeclarationError


class RecordingApi:
    def __init__(self):
        self.calls = []

    def describe(self, info):
        self.calls.append(("describe", info))

    def npm_depends(self, dependencies):
        self.calls.append(("npm_depends", dependencies))

    def versions_from(self, release):
        self.calls.append(("versions_from", release))

    def use(self, packages, archs, opts, *, test):
        self.calls.append(("use", packages, archs, opts, test))

    def imply(self, packages, archs, *, test):
        self.calls.append(("imply", packages, archs, test))

    def export(self, symbols, archs, opts, *, test):
        self.calls.append(("export", symbols, archs, opts, test))

    def add_files(self, files, archs, opts, *, test):
        self.calls.append(("add_files", files, archs, opts, test))

    def add_assets(self, files, archs, *, test):
        self.calls.append(("add_assets", files, archs, test))

    def main_module(self, file, archs, opts, *, test):
        self.calls.append(("main_module", file, archs, opts, test))


DECLARATION = """
const VERSION = "1.2.3";
var both = ["client", "server"];
const helper = require("./helper");

Package.describe({
  name: "me:pkg",
  version: VERSION,
  summary: 'A ' + "package",
  "documentation": null,
});

Npm.depends({ lodash: "4.17.21" });
Package.registerBuildPlugin({ name: "x", sources: ["plugin.js"] });

Package.onUse(function (api) {
  api.versionsFrom("2.3");
  api.use(["tracker", `ddp@1.0.0`], both);
  api.use("reactive-var", { weak: true });
  api.imply("ejson", "server");
  api.export(["Thing"], "client", { testOnly: false });
  api.addFiles(["a.js", "b.js"], "client");
  api.addAssets("data.json", "server");
  api.mainModule("main.js", "server", { lazy: true });
  console.log("ignored");
});

Package.onTest((api) => {
  api.use(["me:pkg", "tinytest"]);
  api.addFiles("tests.js");
});
"""


def test_replays_declaration_calls():
    api = RecordingApi()
    evaluate_declaration(dedent(DECLARATION), api, path="package.js")
    assert api.calls == [
        ("describe", {"name": "me:pkg", "version": "1.2.3", "summary": "A package", "documentation": None}),
        ("npm_depends", {"lodash": "4.17.21"}),
        ("versions_from", "2.3"),
        ("use", ["tracker", "ddp@1.0.0"], ["client", "server"], {}, False),
        ("use", ["reactive-var"], [], {"weak": True}, False),
        ("imply", ["ejson"], ["server"], False),
        ("export", ["Thing"], ["client"], {"testOnly": False}, False),
        ("add_files", ["a.js", "b.js"], ["client"], {}, False),
        ("add_assets", ["data.json"], ["server"], False),
        ("main_module", "main.js", ["server"], {"lazy": True}, False),
        ("use", ["me:pkg", "tinytest"], [], {}, True),
        ("add_files", ["tests.js"], [], {}, True),
    ]


def test_unsupported_argument_reports_line():
    source = 'Package.describe({ name: "a" });\nPackage.onUse(function (api) {\n  api.use(deps());\n});\n'
    with pytest.raises(DeclarationError, match=r"package.js:3"):
        evaluate_declaration(source, RecordingApi(), path="package.js")


def test_non_literal_binding_fails_only_when_used():
    source = 'const where = process.env.WHERE;\nPackage.onUse(function (api) { api.use("a", where); });\n'
    with pytest.raises(DeclarationError, match="not bound to a literal"):
        evaluate_declaration(source, RecordingApi())


def test_template_with_substitution_and_member_access():
    source = """
    const pkg = { name: "tracker", version: "1.0.0" };
    Package.onUse(api => { api.use(`${pkg.name}@${pkg.version}`); });
    """
    api = RecordingApi()
    evaluate_declaration(dedent(source), api)
    assert api.calls == [("use", ["tracker@1.0.0"], [], {}, False)]


def test_on_use_needs_a_function():
    with pytest.raises(DeclarationError):
        evaluate_declaration("Package.onUse(42);", RecordingApi())


def test_declared_name():
    assert declared_name('Package.describe({\n  name: "iron:router",\n  version: "1.0.0"\n});') == "iron:router"
    assert declared_name("Package.describe({ summary: 'none' });") is None
