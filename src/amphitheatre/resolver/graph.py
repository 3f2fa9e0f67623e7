#!/usr/bin/env python3
"""
Dependency resolution for actors of a Playbook.

Builds an arena of nodes indexed by actor name (adjacency lists of names,
never object references), validates it, detects cycles with a three-colour
depth-first traversal and groups actors into layers. Every actor in layer
``i`` depends only on actors in layers ``< i``, so a layer can be processed
concurrently.

Resolution is pure: no I/O, and identical input yields identical layers.
Ties are broken by ascending actor name.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from amphitheatre.core.errors import (
    CycleDetectedError,
    UnknownDependencyError,
    ValidationError,
)
from amphitheatre.resources.types import ActorSpec


class _Color(Enum):
    WHITE = 0  # unvisited
    GREY = 1  # on the current DFS path
    BLACK = 2  # fully explored


@dataclass
class DependencyGraph:
    """Directed graph over actor names; edges point from actor to dependency."""

    edges: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_actors(cls, actors: Iterable[ActorSpec]) -> "DependencyGraph":
        """
        Build the graph, validating names and references.

        Raises:
            ValidationError: Duplicate actor name.
            UnknownDependencyError: Dependency on an undeclared actor.
        """
        edges: Dict[str, List[str]] = {}
        specs = list(actors)
        for spec in specs:
            if spec.name in edges:
                raise ValidationError(f"Duplicate actor name: {spec.name}")
            edges[spec.name] = sorted(set(spec.dependencies))

        for name in sorted(edges):
            for dep in edges[name]:
                if dep not in edges:
                    raise UnknownDependencyError(actor=name, missing=dep)
        return cls(edges=edges)

    @property
    def nodes(self) -> List[str]:
        return sorted(self.edges)

    def dependencies(self, name: str) -> List[str]:
        return self.edges[name]

    def find_cycle(self) -> Optional[List[str]]:
        """
        Return the members of the first cycle found, or None.

        The traversal order is ascending by name, so the reported cycle is
        deterministic. Only nodes on the cycle itself are returned, not the
        path that led into it.
        """
        color = {name: _Color.WHITE for name in self.edges}

        for root in self.nodes:
            if color[root] is not _Color.WHITE:
                continue
            path: List[str] = [root]
            # Explicit stack of (node, iterator over its dependencies)
            stack = [(root, iter(self.edges[root]))]
            color[root] = _Color.GREY
            while stack:
                node, deps = stack[-1]
                advanced = False
                for dep in deps:
                    if color[dep] is _Color.GREY:
                        return sorted(path[path.index(dep):])
                    if color[dep] is _Color.WHITE:
                        color[dep] = _Color.GREY
                        path.append(dep)
                        stack.append((dep, iter(self.edges[dep])))
                        advanced = True
                        break
                if not advanced:
                    color[node] = _Color.BLACK
                    path.pop()
                    stack.pop()
        return None

    def layers(self) -> List[List[str]]:
        """
        Group nodes into dependency layers.

        Raises:
            CycleDetectedError: If the graph is not acyclic.
        """
        cycle = self.find_cycle()
        if cycle is not None:
            raise CycleDetectedError(cycle)

        depth: Dict[str, int] = {}

        def layer_of(name: str) -> int:
            if name not in depth:
                deps = self.edges[name]
                depth[name] = 1 + max((layer_of(d) for d in deps), default=-1)
            return depth[name]

        # Iterative warm-up in dependency order keeps recursion shallow
        for name in self._postorder():
            layer_of(name)

        grouped: Dict[int, List[str]] = {}
        for name in self.nodes:
            grouped.setdefault(depth[name], []).append(name)
        return [grouped[i] for i in sorted(grouped)]

    def _postorder(self) -> List[str]:
        seen = set()
        order: List[str] = []
        for root in self.nodes:
            if root in seen:
                continue
            stack = [(root, iter(self.edges[root]))]
            seen.add(root)
            while stack:
                node, deps = stack[-1]
                for dep in deps:
                    if dep not in seen:
                        seen.add(dep)
                        stack.append((dep, iter(self.edges[dep])))
                        break
                else:
                    order.append(node)
                    stack.pop()
        return order


def resolve(actors: Iterable[ActorSpec]) -> List[List[str]]:
    """
    Resolve the execution layers of a set of actors.

    Args:
        actors: Actor specifications of one Playbook

    Returns:
        Ordered layers of actor names, names sorted within each layer

    Raises:
        ValidationError: Duplicate actor names
        UnknownDependencyError: Reference to an undeclared actor
        CycleDetectedError: The dependencies form a cycle
    """
    return DependencyGraph.from_actors(actors).layers()
