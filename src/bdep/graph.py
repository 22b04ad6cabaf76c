# Copyright 2026 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""Dependency graph, build order and build layers.

Key Concepts (ELI5)::

    ┌─────────────────────────┬─────────────────────────────────────────────┐
    │ Concept                 │ ELI5 Explanation                            │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Dependency graph        │ "Who needs what". If app depends on lib,   │
    │                         │ draw an arrow app → lib.                   │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Topological sort        │ An order where every package comes after   │
    │                         │ everything it depends on.                  │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Layers                  │ Groups that can build at the same time.    │
    │                         │ Layer 0 has no in-scope deps, layer N only │
    │                         │ depends on layers before it.               │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Cycle                   │ a → b → a. Neither can build first, so the │
    │                         │ run stops before building anything.        │
    └─────────────────────────┴─────────────────────────────────────────────┘

Edge direction::

    Forward edges (``edges``): dependent → dependency
    Reverse edges (``reverse_edges``): dependency → dependent

    lib-a ──→ core ←── lib-b

    edges['lib-a'] = ['core']
    reverse_edges['core'] = ['lib-a', 'lib-b']

Data flow::

    collect_dependencies()     build_graph()          topo_sort()        build_layers()
    ┌──────────────────┐   ┌─────────────────┐   ┌──────────────┐   ┌───────────────┐
    │ name → Package   │──→│ forward+reverse │──→│ Kahn order   │──→│ [[core],      │
    │ (closure)        │   │ adjacency       │   │ list[str]    │   │  [a, b],[app]]│
    └──────────────────┘   └─────────────────┘   └──────────────┘   └───────────────┘
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field

from bdep.errors import CycleDetectedError, LayeringError
from bdep.logging import get_logger
from bdep.workspace import Package

logger = get_logger(__name__)


@dataclass
class DependencyGraph:
    """A directed graph over the packages of one run.

    ``edges`` and ``reverse_edges`` are exact transposes of each other
    and only mention names that are keys of ``packages``.

    Attributes:
        packages: Mapping from package name to :class:`Package`, in
            discovery order.
        edges: Dependent → sorted list of its dependencies.
        reverse_edges: Dependency → sorted list of its dependents.
    """

    packages: dict[str, Package] = field(default_factory=dict)
    edges: dict[str, list[str]] = field(default_factory=dict)
    reverse_edges: dict[str, list[str]] = field(default_factory=dict)

    @property
    def names(self) -> list[str]:
        """Sorted list of all package names in the graph."""
        return sorted(self.packages)

    def __len__(self) -> int:
        """Return the number of packages in the graph."""
        return len(self.packages)


def build_graph(packages: Mapping[str, Package]) -> DependencyGraph:
    """Build the dependency graph for a set of packages.

    A declared dependency becomes an edge only if it names a member of
    ``packages``. Anything else is an external package and is dropped.
    Duplicate declarations collapse into one edge.

    Args:
        packages: Name → :class:`Package`, typically the result of
            :func:`~bdep.workspace.collect_dependencies`.

    Returns:
        A :class:`DependencyGraph` with forward and reverse edges.
    """
    graph = DependencyGraph()
    forward: dict[str, set[str]] = {}
    reverse: dict[str, set[str]] = {}

    for name, pkg in packages.items():
        graph.packages[name] = pkg
        forward[name] = set()
        reverse[name] = set()

    for name, pkg in packages.items():
        for dep_name in pkg.internal_deps:
            if dep_name in packages:
                forward[name].add(dep_name)
                reverse[dep_name].add(name)

    for name in graph.packages:
        graph.edges[name] = sorted(forward[name])
        graph.reverse_edges[name] = sorted(reverse[name])

    logger.debug(
        'built_dependency_graph',
        packages=len(graph),
        edges=sum(len(deps) for deps in graph.edges.values()),
    )
    return graph


def detect_cycles(graph: DependencyGraph) -> list[list[str]]:
    """Find cycles with a colored depth-first search.

    Returns:
        One closed path per back edge found, e.g. ``['a', 'b', 'a']``.
        A package depending on itself yields ``['a', 'a']``. Empty if
        the graph is acyclic.
    """
    _white, _gray, _black = 0, 1, 2
    color: dict[str, int] = {name: _white for name in graph.packages}
    parent: dict[str, str | None] = {name: None for name in graph.packages}
    cycles: list[list[str]] = []

    for root in sorted(graph.packages):
        if color[root] != _white:
            continue
        color[root] = _gray
        # Frames are (node, unvisited neighbors).
        stack: list[tuple[str, Iterator[str]]] = [(root, iter(graph.edges.get(root, [])))]
        while stack:
            node, neighbors = stack[-1]
            for neighbor in neighbors:
                if color[neighbor] == _gray:
                    cycle = [neighbor]
                    current = node
                    while current != neighbor:
                        cycle.append(current)
                        p = parent.get(current)
                        if p is None:
                            break
                        current = p
                    cycle.append(neighbor)
                    cycle.reverse()
                    cycles.append(cycle)
                elif color[neighbor] == _white:
                    parent[neighbor] = node
                    color[neighbor] = _gray
                    stack.append((neighbor, iter(graph.edges.get(neighbor, []))))
                    break
            else:
                color[node] = _black
                stack.pop()

    if cycles:
        logger.warning('cycles_detected', count=len(cycles))
    return cycles


def topo_sort(graph: DependencyGraph) -> list[str]:
    """Order packages so that every dependency precedes its dependents.

    Kahn's algorithm. A package's count starts at its number of
    dependencies. Packages with a zero count are seeded in discovery
    order and popped first-in first-out; callers must not rely on the
    order among packages that are ready at the same time.

    Raises:
        CycleDetectedError: If some packages can never become ready.
            ``packages`` names every package left unplaced, which may
            include dependents of the cycle as well as its members.
    """
    remaining = {name: len(graph.edges[name]) for name in graph.packages}
    ready: deque[str] = deque(name for name, count in remaining.items() if count == 0)
    order: list[str] = []

    while ready:
        name = ready.popleft()
        order.append(name)
        for dependent in graph.reverse_edges.get(name, []):
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                ready.append(dependent)

    if len(order) != len(graph):
        placed = set(order)
        unresolved = [name for name in graph.packages if name not in placed]
        raise CycleDetectedError(unresolved, detect_cycles(graph))

    logger.debug('topo_sort_complete', packages=len(order))
    return order


def build_layers(order: Sequence[str], graph: DependencyGraph) -> list[list[str]]:
    """Partition a topological order into layers of independent packages.

    Each pass collects every remaining package whose dependencies are
    all in earlier layers. Packages keep their relative ``order``
    within a layer.

    Args:
        order: A topological order of every package in ``graph``.
        graph: The graph ``order`` was computed from.

    Raises:
        LayeringError: If a pass assigns nothing, meaning ``order`` is
            not a complete topological order of ``graph``.
    """
    assigned: set[str] = set()
    remaining = list(order)
    layers: list[list[str]] = []

    while remaining:
        layer = [name for name in remaining if all(dep in assigned for dep in graph.edges.get(name, []))]
        if not layer:
            raise LayeringError(remaining)
        layers.append(layer)
        assigned.update(layer)
        remaining = [name for name in remaining if name not in assigned]

    logger.info('build_layers_computed', layers=len(layers), packages=len(assigned))
    return layers


def compute_layers(graph: DependencyGraph) -> list[list[str]]:
    """Shorthand for ``build_layers(topo_sort(graph), graph)``."""
    return build_layers(topo_sort(graph), graph)


__all__ = [
    'DependencyGraph',
    'build_graph',
    'build_layers',
    'compute_layers',
    'detect_cycles',
    'topo_sort',
]
