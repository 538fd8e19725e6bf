"""Data model shared by the descriptor, the job and the graph builders."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from esmport.names import from_node_name, to_node_name


class SourceKind(Enum):
    """Where a package's declaration was found; selects its output directory."""

    LOCAL = "local"
    SHARED = "shared"
    ARCHIVE = "archive"
    OTHER = "other"


@dataclass
class PackageSource:
    """A folder holding a ``package.js`` declaration."""

    declaration: Path
    kind: SourceKind

    @property
    def folder(self) -> Path:
        return self.declaration.parent


@dataclass
class Use:
    """One dependency edge as declared by ``api.use`` / ``api.imply``."""

    name: str
    constraint: str | None = None
    archs: list[str] | None = None
    weak: bool = False
    unordered: bool = False
    test_only: bool = False

    @property
    def spec(self) -> str:
        return f"{self.name}@{self.constraint}" if self.constraint else self.name

    def to_manifest(self) -> dict:
        entry: dict = {"name": to_node_name(self.name)}
        if self.constraint:
            entry["constraint"] = self.constraint
        if self.archs:
            entry["archs"] = list(self.archs)
        if self.weak:
            entry["weak"] = True
        if self.unordered:
            entry["unordered"] = True
        if self.test_only:
            entry["testOnly"] = True
        return entry

    @classmethod
    def from_manifest(cls, entry: dict) -> Use:
        return cls(
            name=from_node_name(entry["name"]),
            constraint=entry.get("constraint"),
            archs=entry.get("archs") or None,
            weak=bool(entry.get("weak")),
            unordered=bool(entry.get("unordered")),
            test_only=bool(entry.get("testOnly")),
        )


@dataclass
class VersionRecord:
    """Version metadata of one package version, as seen by the resolver."""

    name: str
    version: str
    uses: list[Use] = field(default_factory=list)
    implies: list[Use] = field(default_factory=list)
    local_path: str | None = None


@dataclass
class DependencyRecord:
    """Per-architecture dependency summary of one package for load ordering.

    ``strong`` and ``preload`` load before the package, ``unordered``
    (including implied packages) after it.  All lists hold node names in
    declaration order.
    """

    strong: list[str] = field(default_factory=list)
    preload: list[str] = field(default_factory=list)
    unordered: list[str] = field(default_factory=list)
    is_lazy: bool = False
    prod_only: bool = False


@dataclass
class LoadOrderEntry:
    """One package in a flattened side-effecting import sequence."""

    name: str
    is_lazy: bool = False
    prod_only: bool = False
