"""Dependency cycles among the packages of a conversion job.

Only strong uses count: weak uses never load the other package, so they
cannot close a cycle.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from esmport.names import split_constraint

if TYPE_CHECKING:
    from esmport.package import LegacyPackage


@dataclass(frozen=True)
class DependencyCycle:
    """A group of packages that transitively depend on each other.

    ``members`` is sorted.  ``loop`` is the shortest chain of uses leading
    from the first member back to itself, so the same cycle always reads
    the same way.
    """

    members: tuple[str, ...]
    loop: tuple[str, ...]

    def __str__(self) -> str:
        text = " -> ".join([*self.loop, self.loop[0]])
        others = len(self.members) - len(self.loop)
        return f"{text} (+{others} more)" if others else text


def strong_dependency_graph(packages: Mapping[str, LegacyPackage]) -> dict[str, list[str]]:
    """Package name -> loaded packages it strongly depends on.

    Version constraints are dropped; uses of packages the job never loaded
    (excluded names, unavailable weak uses) are left out.
    """
    graph = {}
    for name, package in packages.items():
        targets = (split_constraint(spec)[0] for spec in package.strong_dependencies)
        graph[name] = sorted({target for target in targets if target in packages and target != name})
    return graph


def _components(graph: Mapping[str, Iterable[str]]) -> list[list[str]]:
    """Tarjan's strongly connected components over an explicit frame stack."""
    order: dict[str, int] = {}
    low: dict[str, int] = {}
    pending: list[str] = []
    on_pending: set[str] = set()
    found: list[list[str]] = []

    def enter(name: str) -> None:
        order[name] = low[name] = len(order)
        pending.append(name)
        on_pending.add(name)
        frames.append((name, iter(graph[name])))

    for root in graph:
        if root in order:
            continue
        frames: list = []
        enter(root)
        while frames:
            name, successors = frames[-1]
            for target in successors:
                if target not in graph:
                    continue
                if target not in order:
                    enter(target)
                    break
                if target in on_pending:
                    low[name] = min(low[name], order[target])
            else:
                frames.pop()
                if frames:
                    parent = frames[-1][0]
                    low[parent] = min(low[parent], low[name])
                if low[name] == order[name]:
                    component = []
                    while True:
                        member = pending.pop()
                        on_pending.discard(member)
                        component.append(member)
                        if member == name:
                            break
                    found.append(component)
    return found


def _shortest_loop(start: str, members: set[str], graph: Mapping[str, Iterable[str]]) -> tuple[str, ...]:
    """Breadth-first search inside *members* for the shortest way back to *start*."""
    previous: dict[str, str] = {}
    queue = deque([start])
    while queue:
        current = queue.popleft()
        for target in sorted(graph[current]):
            if target == start:
                loop = [current]
                while loop[-1] != start:
                    loop.append(previous[loop[-1]])
                return tuple(reversed(loop))
            if target in members and target not in previous:
                previous[target] = current
                queue.append(target)
    raise ValueError(f"{start} is not on a cycle")


def dependency_cycles(graph: Mapping[str, Iterable[str]]) -> list[DependencyCycle]:
    """Every group of mutually dependent packages in *graph*, sorted by first member.

    *graph* maps each package name to the names it depends on (see
    :func:`strong_dependency_graph`).  Edges to names missing from *graph*
    are ignored.
    """
    cycles = []
    for component in _components(graph):
        if len(component) < 2:
            continue
        members = tuple(sorted(component))
        loop = _shortest_loop(members[0], set(members), graph)
        cycles.append(DependencyCycle(members=members, loop=loop))
    return sorted(cycles, key=lambda cycle: cycle.members)
