"""Version comparison and transitive version resolution.

Legacy version semantics differ from semver in one important way: legacy
packages treat ``0.x`` releases like any other major line, so two versions
are *compatible* whenever their major components match.  Constraints are
converted to semver ranges only for display and registry queries.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import semver

from esmport.errors import MissingPackageError, VersionConflictError
from esmport.names import split_constraint

if TYPE_CHECKING:
    from esmport.catalog import Catalog

logger = logging.getLogger(__name__)

_COERCE_RE = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?")
_ALTERNATIVES_RE = re.compile(r"\s*\|\|\s*")


def normalize_version(version: str) -> str:
    """Legacy wrap numbers (``1.2.3_1``) become semver prereleases."""
    return version.replace("_", "-", 1)


def coerce(version: str) -> semver.Version | None:
    """Loosely parse the first ``major[.minor[.patch]]`` group in *version*."""
    match = _COERCE_RE.search(version)
    if match is None:
        return None
    major, minor, patch = (int(part) if part else 0 for part in match.groups())
    return semver.Version(major, minor, patch)


def alternatives(constraint: str) -> list[str]:
    return [part for part in _ALTERNATIVES_RE.split(constraint.strip()) if part]


def to_semver_range(constraint: str) -> str:
    """Convert a legacy constraint (``1.2.0 || 2.0.0``) to a semver range."""
    ranges = []
    for part in alternatives(constraint):
        if part.startswith("^"):
            ranges.append(part)
        elif part.startswith("="):
            ranges.append(part[1:])
        elif part.startswith("0"):
            ranges.append("0.x")
        else:
            ranges.append(f"^{part}")
    return " || ".join(ranges)


def compatible(version: str, constraint: str) -> bool:
    """True when *version* shares a major line with any alternative of *constraint*."""
    loaded = coerce(version)
    if loaded is None:
        return False
    for part in alternatives(constraint):
        requested = coerce(part)
        if requested is not None and requested.major == loaded.major:
            return True
    return False


def satisfies(version: str, constraint: str, *, allow_older: bool = False) -> bool:
    """Compatible and, unless *allow_older*, not older than the constraint base."""
    loaded = coerce(version)
    if loaded is None:
        return False
    for part in alternatives(constraint):
        requested = coerce(part)
        if requested is None or requested.major != loaded.major:
            continue
        if allow_older or loaded >= requested:
            return True
    return False


def _sort_key(version: str) -> tuple[semver.Version, bool, str]:
    return coerce(version) or semver.Version(0), version[:1].isdigit(), version


def sort_versions(versions: Iterable[str]) -> list[str]:
    """Ascending order by coerced version; a concrete version sorts above a
    range with the same base, remaining ties by the raw string."""
    return sorted(set(versions), key=_sort_key)


@dataclass
class VersionResolution:
    """Outcome of :func:`resolve_versions`.

    ``final`` maps each strongly requested name to the chosen version (or a
    ``file:`` path for local sources); ``conflicts`` maps each name that
    could not be reconciled to every version requested for it.
    """

    final: dict[str, str] = field(default_factory=dict)
    conflicts: dict[str, list[str]] = field(default_factory=dict)


def resolve_versions(
    strong: Mapping[str, Iterable[str]],
    weak: Mapping[str, Iterable[str]] | None = None,
    local: Mapping[str, str] | None = None,
) -> VersionResolution:
    """Pick one version per name; the result does not depend on input order."""
    weak = weak or {}
    local = local or {}
    requested: dict[str, set[str]] = {name: set(versions) for name, versions in strong.items()}
    for name, versions in weak.items():
        if name in requested:
            requested[name].update(versions)

    resolution = VersionResolution()
    for name in sorted(requested):
        versions = sort_versions(requested[name])
        if name in local:
            resolution.final[name] = f"file:{local[name]}"
            continue
        if not versions:
            continue
        if len(versions) == 1:
            resolution.final[name] = versions[0]
            continue
        matching = [
            version
            for version in versions
            if all(compatible(version, other) for other in versions)
        ]
        if not matching:
            resolution.conflicts[name] = versions
            continue
        resolution.final[name] = matching[-1]
    return resolution


def raise_for_conflicts(resolution: VersionResolution) -> None:
    if resolution.conflicts:
        raise VersionConflictError(dict(resolution.conflicts))


async def calculate_versions(requests: Iterable[str], catalog: Catalog) -> VersionResolution:
    """Walk the transitive graph of *requests* through *catalog* and resolve it.

    Strong and weak edges both contribute requested versions; unordered edges
    and test-only edges are not followed.  Implied packages inherit the
    weakness of the edge that reached the implying package.
    """
    strong: dict[str, set[str]] = {}
    weak: dict[str, set[str]] = {}
    local: dict[str, str] = {}
    expanded: set[tuple[str, str, bool]] = set()

    async def visit(name: str, constraint: str | None, is_weak: bool) -> None:
        versions = (weak if is_weak else strong).setdefault(name, set())
        if constraint:
            versions.add(to_semver_range(constraint))
        record = await catalog.best_version(name, constraint)
        if record is None:
            if is_weak:
                logger.debug("No version of weak dependency %s found", name)
                return
            spec = f"{name}@{constraint}" if constraint else name
            raise MissingPackageError(f"Couldn't resolve {spec}")
        versions.add(record.version)
        if record.local_path:
            local[name] = record.local_path
        key = (name, record.version, is_weak)
        if key in expanded:
            return
        expanded.add(key)
        for use in record.uses:
            if use.unordered or use.test_only:
                continue
            await visit(use.name, use.constraint, use.weak)
        for implied in record.implies:
            await visit(implied.name, implied.constraint, is_weak)

    for spec in requests:
        name, constraint = split_constraint(spec)
        await visit(name, constraint, False)

    return resolve_versions(strong, weak, local)
