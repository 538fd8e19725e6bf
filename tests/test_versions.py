import asyncio
import itertools

import pytest
import semver

from esmport.errors import MissingPackageError, VersionConflictError
from esmport.model import Use, VersionRecord
from esmport.versions import (
    calculate_versions,
    coerce,
    compatible,
    normalize_version,
    raise_for_conflicts,
    resolve_versions,
    satisfies,
    sort_versions,
    to_semver_range,
)


def test_coerce_and_normalize():
    assert coerce("1.2.3_1") == semver.Version(1, 2, 3)
    assert coerce("^2.0") == semver.Version(2, 0, 0)
    assert coerce("nope") is None
    assert normalize_version("1.2.3_1") == "1.2.3-1"


def test_satisfies_same_major_not_older():
    assert satisfies("1.2.0", "1.0.0")
    assert not satisfies("0.9.0", "1.0.0")
    assert not satisfies("2.0.0", "1.0.0")
    assert satisfies("1.0.0", "1.5.0", allow_older=True)
    assert satisfies("2.1.0", "1.0.0 || 2.0.0")
    assert compatible("0.3.0", "0.9.0")


def test_to_semver_range():
    assert to_semver_range("1.2.0") == "^1.2.0"
    assert to_semver_range("=1.2.0") == "1.2.0"
    assert to_semver_range("0.3.1") == "0.x"
    assert to_semver_range("1.0.0 || 2.0.0") == "^1.0.0 || ^2.0.0"


def test_sort_prefers_concrete_versions():
    assert sort_versions(["2.0.0", "^1.0.0", "1.0.0", "1.10.0"]) == ["^1.0.0", "1.0.0", "1.10.0", "2.0.0"]


def test_highest_compatible_version_wins():
    resolution = resolve_versions({"x": {"^1.0.0", "1.2.0", "1.4.0"}})
    assert resolution.final == {"x": "1.4.0"}
    assert resolution.conflicts == {}


def test_conflicts_are_all_collected():
    resolution = resolve_versions({"delta": {"^1.0.0", "^2.0.0"}, "eps": {"1.0.0", "3.0.0"}, "ok": {"1.0.0"}})
    assert resolution.conflicts == {"delta": ["^1.0.0", "^2.0.0"], "eps": ["1.0.0", "3.0.0"]}
    assert resolution.final == {"ok": "1.0.0"}
    with pytest.raises(VersionConflictError) as info:
        raise_for_conflicts(resolution)
    assert set(info.value.conflicts) == {"delta", "eps"}


def test_local_sources_win():
    resolution = resolve_versions({"x": {"^1.0.0", "^2.0.0"}}, local={"x": "/app/packages/x"})
    assert resolution.final == {"x": "file:/app/packages/x"}
    assert resolution.conflicts == {}


def test_weak_requests_only_fold_into_strong_ones():
    resolution = resolve_versions({"x": {"1.0.0"}}, weak={"x": {"1.3.0"}, "y": {"1.0.0"}})
    assert resolution.final == {"x": "1.3.0"}


def test_resolution_does_not_depend_on_input_order():
    requests = [("a", "1.0.0"), ("a", "1.1.0"), ("b", "^2.0.0"), ("b", "2.5.0"), ("c", "1.0.0"), ("c", "2.0.0")]
    outcomes = set()
    for ordering in itertools.permutations(requests):
        strong = {}
        for name, version in ordering:
            strong.setdefault(name, []).append(version)
        resolution = resolve_versions(strong)
        outcomes.add((tuple(sorted(resolution.final.items())), tuple(sorted(resolution.conflicts))))
    assert len(outcomes) == 1


class StaticCatalog:
    def __init__(self, records):
        self.records = records
        self.asked = []

    async def best_version(self, name, constraint=None):
        self.asked.append(name)
        return self.records.get(name)


def test_calculate_versions_walks_strong_weak_and_implied_edges():
    catalog = StaticCatalog(
        {
            "app": VersionRecord(
                "app",
                "1.0.0",
                uses=[
                    Use("a", "1.0.0"),
                    Use("b", weak=True),
                    Use("later", unordered=True),
                    Use("tinytest", test_only=True),
                ],
            ),
            "a": VersionRecord("a", "1.2.0", implies=[Use("c", "2.0.0")]),
            "b": VersionRecord("b", "1.0.0"),
            "c": VersionRecord("c", "2.1.0", local_path="/pkgs/c"),
        }
    )
    resolution = asyncio.run(calculate_versions(["app"], catalog))
    assert resolution.final == {"app": "1.0.0", "a": "1.2.0", "c": "file:/pkgs/c"}
    assert "later" not in catalog.asked
    assert "tinytest" not in catalog.asked
    assert "b" in catalog.asked


def test_missing_strong_dependency_is_fatal():
    catalog = StaticCatalog({"app": VersionRecord("app", "1.0.0", uses=[Use("ghost", "1.0.0")])})
    with pytest.raises(MissingPackageError):
        asyncio.run(calculate_versions(["app"], catalog))


def test_missing_weak_dependency_is_skipped():
    catalog = StaticCatalog({"app": VersionRecord("app", "1.0.0", uses=[Use("ghost", weak=True)])})
    resolution = asyncio.run(calculate_versions(["app"], catalog))
    assert resolution.final == {"app": "1.0.0"}
