"""
Unit tests for dependency resolution.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import pytest

from amphitheatre.core.errors import (
    CycleDetectedError,
    ResolutionError,
    UnknownDependencyError,
    ValidationError,
)
from amphitheatre.resolver.graph import DependencyGraph, resolve
from amphitheatre.resources.types import ActorSpec


def actor(name, *deps):
    return ActorSpec(name=name, image=f"amp/{name}", dependencies=list(deps))


class TestLayers:
    """Layer assignment."""

    def test_dependency_goes_first(self):
        assert resolve([actor("b", "a"), actor("a")]) == [["a"], ["b"]]

    def test_independent_actors_share_a_layer_sorted_by_name(self):
        assert resolve([actor("zeta"), actor("alpha"), actor("mid")]) == [["alpha", "mid", "zeta"]]

    def test_diamond(self):
        actors = [
            actor("api", "db", "cache"),
            actor("db"),
            actor("cache"),
            actor("web", "api"),
        ]
        assert resolve(actors) == [["cache", "db"], ["api"], ["web"]]

    def test_layer_is_longest_path(self):
        actors = [actor("a"), actor("b", "a"), actor("c", "a", "b")]
        assert resolve(actors) == [["a"], ["b"], ["c"]]

    def test_every_dependency_in_an_earlier_layer(self):
        actors = [
            actor("e", "c", "d"),
            actor("d", "a"),
            actor("c", "b"),
            actor("b", "a"),
            actor("a"),
            actor("f"),
        ]
        layers = resolve(actors)
        position = {name: i for i, layer in enumerate(layers) for name in layer}
        for spec in actors:
            for dep in spec.dependencies:
                assert position[dep] < position[spec.name]

    def test_deterministic_regardless_of_declaration_order(self):
        actors = [actor("c", "a"), actor("b", "a"), actor("a"), actor("d", "b", "c")]
        first = resolve(actors)
        assert resolve(list(reversed(actors))) == first
        assert resolve(actors) == first

    def test_repeated_dependency_is_harmless(self):
        assert resolve([actor("a"), actor("b", "a", "a")]) == [["a"], ["b"]]

    def test_empty(self):
        assert resolve([]) == []


class TestInvalidGraphs:
    """Cycles and dangling references."""

    def test_two_node_cycle_reports_exactly_its_members(self):
        actors = [actor("a"), actor("b", "a", "c"), actor("c", "b")]
        with pytest.raises(CycleDetectedError) as exc_info:
            resolve(actors)
        assert exc_info.value.members == ["b", "c"]
        assert "b, c" in str(exc_info.value)

    def test_cycle_excludes_path_leading_into_it(self):
        actors = [actor("a", "b"), actor("b", "c"), actor("c", "d"), actor("d", "c")]
        with pytest.raises(CycleDetectedError) as exc_info:
            resolve(actors)
        assert exc_info.value.members == ["c", "d"]

    def test_self_cycle(self):
        with pytest.raises(CycleDetectedError) as exc_info:
            resolve([actor("a", "a")])
        assert exc_info.value.members == ["a"]

    def test_cycle_is_a_resolution_error_and_not_recoverable(self):
        with pytest.raises(ResolutionError) as exc_info:
            resolve([actor("a", "b"), actor("b", "a")])
        assert exc_info.value.recoverable is False

    def test_unknown_dependency(self):
        with pytest.raises(UnknownDependencyError) as exc_info:
            resolve([actor("a", "ghost")])
        assert exc_info.value.actor == "a"
        assert exc_info.value.missing == "ghost"

    def test_duplicate_actor_names(self):
        with pytest.raises(ValidationError, match="Duplicate actor name: a"):
            resolve([actor("a"), actor("a")])


class TestDependencyGraph:
    """Graph queries."""

    def test_dependencies(self):
        graph = DependencyGraph.from_actors([actor("a"), actor("b", "a"), actor("c", "a", "b")])
        assert graph.dependencies("c") == ["a", "b"]
        assert graph.nodes == ["a", "b", "c"]

    def test_find_cycle_none_for_acyclic_graph(self):
        graph = DependencyGraph.from_actors([actor("a"), actor("b", "a")])
        assert graph.find_cycle() is None

    def test_deep_chain(self):
        names = [f"n{i:04d}" for i in range(2000)]
        actors = [actor(names[0])] + [actor(names[i], names[i - 1]) for i in range(1, len(names))]
        layers = resolve(actors)
        assert len(layers) == len(names)
        assert layers[-1] == [names[-1]]
