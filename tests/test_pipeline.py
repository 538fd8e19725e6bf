import json

import pytest

from esmport.cli import main
from esmport.pipeline import load_order, read_package_list, run

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


@pytest.fixture
def two_packages(make_package):
    make_package("alpha", ALPHA, {"alpha.js": "Alpha = Beta;\n"})
    make_package("beta", BETA, {"beta.js": "Beta = 1;\n"})


def test_read_package_list(tmp_path):
    path = tmp_path / "packages"
    path.write_text("# app packages\nalpha\n\nbeta@1.0.0 # pinned\n", encoding="utf-8")
    assert read_package_list(path) == ["alpha", "beta@1.0.0"]
    assert read_package_list(tmp_path / "missing") == []


def test_run_uses_app_package_list(app, two_packages):
    meteor_dir = app / ".meteor"
    meteor_dir.mkdir()
    (meteor_dir / "packages").write_text("alpha\n", encoding="utf-8")
    (meteor_dir / "versions").write_text("alpha@1.0.0\nbeta@1.0.0\n", encoding="utf-8")
    (app / "package.json").write_text(json.dumps({"name": "app", "dependencies": {"react": "18.0.0"}}))

    report = run(app)
    assert report.converted == ["alpha", "beta"]
    assert report.cycles == []
    assert [entry.name for entry in report.load_orders["client"]] == ["@meteor/beta", "@meteor/alpha"]

    manifest = json.loads((app / "package.json").read_text())
    assert manifest["dependencies"] == {"@meteor/alpha": "file:npm-packages/alpha", "react": "18.0.0"}


def test_write_dependencies_modules(app, two_packages):
    run(app, packages=["alpha"], write_dependencies=True)
    assert (app / "client" / "dependencies.js").read_text() == (
        'import * as __package_0 from "@meteor/beta";\n'
        'import * as __package_1 from "@meteor/alpha";\n'
        "globalThis.Beta = __package_0.Beta;\n"
        "globalThis.Alpha = __package_1.Alpha;\n"
    )
    assert (app / "server" / "dependencies.js").is_file()


def test_debug_only_export_is_guarded_in_dependencies_module(app, make_package):
    make_package(
        "logging",
        """
        Package.describe({ name: "logging", version: "1.0.0" });
        Package.onUse(function (api) {
          api.addFiles("logging.js");
          api.export("Log");
          api.export("Dbg", ["client", "server"], { debugOnly: true });
        });
        """,
        {"logging.js": "Log = 1;\nDbg = 2;\n"},
    )
    run(app, packages=["logging"], write_dependencies=True)
    assert (app / "server" / "dependencies.js").read_text() == (
        'import * as __package_0 from "@meteor/logging";\n'
        "globalThis.Log = __package_0.Log;\n"
        "if (Meteor.isDevelopment) {\n"
        "  globalThis.Dbg = __package_0.Dbg;\n"
        "}\n"
    )


def test_load_order_without_converting(app, two_packages):
    run(app, packages=["alpha"])
    orders = load_order(app, packages=["alpha"])
    assert [entry.name for entry in orders["server"]] == ["@meteor/beta", "@meteor/alpha"]


def test_cli_convert(app, two_packages, capsys):
    main(["convert", str(app), "-p", "alpha", "-o", "out"])
    assert capsys.readouterr().out.split() == ["alpha", "beta"]
    assert (app / "out" / "alpha" / "package.json").is_file()


def test_cli_load_order(app, two_packages, capsys):
    main(["convert", str(app), "-p", "alpha"])
    capsys.readouterr()
    main(["load-order", str(app), "-p", "alpha", "--arch", "client"])
    assert capsys.readouterr().out == "client:\n  @meteor/beta\n  @meteor/alpha\n"


def test_cli_missing_package_exits(app, capsys):
    with pytest.raises(SystemExit) as info:
        main(["convert", str(app), "-p", "ghost"])
    assert info.value.code == 1
