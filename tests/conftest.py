from __future__ import annotations

from pathlib import Path
from textwrap import dedent

import pytest

from esmport.config import JobOptions


@pytest.fixture
def app(tmp_path, monkeypatch) -> Path:
    """An empty app folder with a private home directory."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("METEOR_PACKAGE_DIRS", raising=False)
    project = tmp_path / "app"
    project.mkdir()
    return project


@pytest.fixture
def make_package(app):
    """Write ``packages/<folder>/package.js`` plus source files into the app."""

    def _make(folder: str, declaration: str, files: dict[str, str] | None = None) -> Path:
        root = app / "packages" / folder
        root.mkdir(parents=True, exist_ok=True)
        (root / "package.js").write_text(dedent(declaration), encoding="utf-8")
        for name, content in (files or {}).items():
            path = root / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(dedent(content), encoding="utf-8")
        return root

    return _make


@pytest.fixture
def options(app):
    def _options(**kwargs) -> JobOptions:
        return JobOptions(project_dir=app, **kwargs)

    return _options


class FakeJob:
    """Just enough of a conversion job for descriptor-level tests."""

    def __init__(self, options: JobOptions | None = None) -> None:
        self.options = options or JobOptions()
        self.packages = {}
        self.ensured = []
        self.parse_warnings = set()

    def get(self, name):
        return self.packages.get(name)

    async def ensure_package(self, spec, requester=None):
        self.ensured.append((spec, requester))
        name = spec.split("@", 1)[0]
        return self.packages.get(name)


@pytest.fixture
def fake_job(app):
    return FakeJob(JobOptions(project_dir=app))
