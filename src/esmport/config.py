"""Conversion options and their on-disk configuration sources.

Options are read from ``.esmport.toml`` (an ``[esmport]`` table) or, failing
that, from ``[tool.esmport]`` in ``pyproject.toml``.  Scoped registries are
read from ``~/.npmrc`` and the project's ``.npmrc``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path

from esmport.model import SourceKind
from esmport.names import strip_test_suffix

logger = logging.getLogger(__name__)

# Legacy packages that are emitted as CommonJS instead of ES modules.
DEFAULT_COMMONJS_PACKAGES = frozenset(
    {
        "jquery",
        "underscore",
        "softwarerero:accounts-t9n",
        "ecmascript-runtime-client",
        "package-version-parser",
    }
)

# Build-tool pseudo packages that never have a runtime counterpart.
DEFAULT_EXCLUDED_PACKAGES = frozenset(
    {
        "isobuild:compiler-plugin",
        "isobuild:minifier-plugin",
        "isobuild:linter-plugin",
        "isobuild:isopack-2",
        "isobuild:dynamic-import",
        "isobuild:prod-only",
    }
)


@dataclass
class JobOptions:
    """Everything a :class:`~esmport.job.ConversionJob` needs to know."""

    project_dir: Path = field(default_factory=Path.cwd)
    local_dir: Path | None = None
    shared_dir: Path | None = None
    package_dirs: list[Path] = field(default_factory=list)
    archive_dir: Path | None = None
    output_dir: Path | None = None
    output_shared_dir: Path | None = None
    output_local_dir: Path | None = None
    registry: str | None = None
    scoped_registries: dict[str, str] = field(default_factory=dict)
    commonjs_packages: frozenset[str] = DEFAULT_COMMONJS_PACKAGES
    exclude_packages: frozenset[str] = DEFAULT_EXCLUDED_PACKAGES
    implicit_dependencies: list[str] = field(default_factory=list)
    static_imports: dict[str, str] = field(default_factory=dict)
    check_versions: bool = False
    force_refresh: bool | frozenset[str] = False
    convert_tests: bool = False
    skip_non_local: bool = False

    def __post_init__(self) -> None:
        self.project_dir = Path(self.project_dir).resolve()
        if self.local_dir is None:
            self.local_dir = self.project_dir / "packages"
        if self.shared_dir is None and os.environ.get("METEOR_PACKAGE_DIRS"):
            self.shared_dir = Path(os.environ["METEOR_PACKAGE_DIRS"])
        if self.output_dir is None:
            self.output_dir = self.project_dir / "npm-packages"
        if self.archive_dir is None:
            self.archive_dir = Path.home() / ".meteor" / "packages"
        for name in ("local_dir", "shared_dir", "output_dir", "output_shared_dir", "output_local_dir", "archive_dir"):
            value = getattr(self, name)
            if value is not None:
                setattr(self, name, self._resolve(value))
        self.package_dirs = [self._resolve(path) for path in self.package_dirs]
        if isinstance(self.force_refresh, (list, tuple, set)):
            self.force_refresh = frozenset(self.force_refresh)

    def _resolve(self, path: Path | str) -> Path:
        path = Path(path).expanduser()
        return path if path.is_absolute() else (self.project_dir / path).resolve()

    def is_commonjs(self, name: str) -> bool:
        return strip_test_suffix(name) in self.commonjs_packages

    def is_excluded(self, name: str) -> bool:
        return name in self.exclude_packages

    def should_refresh(self, name: str) -> bool:
        if isinstance(self.force_refresh, frozenset):
            return name in self.force_refresh
        return bool(self.force_refresh)

    def output_dirs(self) -> dict[SourceKind, Path]:
        general = self.output_dir
        return {
            SourceKind.ARCHIVE: general,
            SourceKind.OTHER: general,
            SourceKind.LOCAL: self.output_local_dir or general,
            SourceKind.SHARED: self.output_shared_dir or general,
        }

    def source_folders(self) -> list[tuple[Path, SourceKind]]:
        """Declaration folders in priority order: local, shared, then the rest."""
        folders = [(self.local_dir, SourceKind.LOCAL)]
        if self.shared_dir is not None:
            folders.append((self.shared_dir, SourceKind.SHARED))
        folders.extend((path, SourceKind.OTHER) for path in self.package_dirs)
        return folders

    def registry_for(self, node_name: str) -> str | None:
        """Registry URL for a scoped package, falling back to the default registry."""
        if node_name.startswith("@"):
            scope = node_name.split("/", 1)[0]
            if scope in self.scoped_registries:
                return self.scoped_registries[scope]
        return self.registry


def read_npmrc(project_dir: Path) -> dict[str, str]:
    """Collect ``key=value`` pairs from the user and project ``.npmrc`` files."""
    values: dict[str, str] = {}
    for path in (Path.home() / ".npmrc", project_dir / ".npmrc"):
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError:
            continue
        for line in lines:
            line = line.strip()
            if not line or line.startswith(("#", ";")) or "=" not in line:
                continue
            key, value = (part.strip() for part in line.split("=", 1))
            values[key] = value
    return values


def scoped_registries(npmrc: dict[str, str]) -> dict[str, str]:
    return {
        key[: -len(":registry")]: value
        for key, value in npmrc.items()
        if key.startswith("@") and key.endswith(":registry")
    }


def read_config(project_dir: Path) -> dict:
    """Read the raw ``esmport`` table from .esmport.toml or pyproject.toml."""
    import tomllib

    esmport_toml = project_dir / ".esmport.toml"
    if esmport_toml.exists():
        try:
            with open(esmport_toml, "rb") as f:
                data = tomllib.load(f)
            return data.get("esmport", {})
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning("Could not read %s: %s", esmport_toml, e)

    pyproject = project_dir / "pyproject.toml"
    if pyproject.exists():
        try:
            with open(pyproject, "rb") as f:
                data = tomllib.load(f)
            return data.get("tool", {}).get("esmport", {})
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning("Could not read %s: %s", pyproject, e)

    return {}


def load_options(project_dir: Path, **overrides) -> JobOptions:
    """Build :class:`JobOptions` from config files, with keyword *overrides* winning."""
    project_dir = Path(project_dir).resolve()
    raw = read_config(project_dir)
    known = {f.name for f in fields(JobOptions)}
    values: dict = {}
    for key, value in raw.items():
        name = key.replace("-", "_")
        if name not in known:
            logger.warning("Ignoring unknown esmport option %r", key)
            continue
        values[name] = value

    for name in ("commonjs_packages", "exclude_packages"):
        if name in values:
            values[name] = frozenset(values[name])
    for name in ("local_dir", "shared_dir", "archive_dir", "output_dir", "output_shared_dir", "output_local_dir"):
        if name in values:
            values[name] = Path(values[name])
    if "package_dirs" in values:
        values["package_dirs"] = [Path(path) for path in values["package_dirs"]]

    registries = scoped_registries(read_npmrc(project_dir))
    registries.update(values.get("scoped_registries", {}))
    values["scoped_registries"] = registries
    if "registry" not in values:
        values["registry"] = read_npmrc(project_dir).get("registry")

    values.update({key: value for key, value in overrides.items() if value is not None})
    values["project_dir"] = project_dir
    return JobOptions(**values)
