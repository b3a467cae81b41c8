"""Tests for JobNode and PipelineGraph."""

from __future__ import annotations

import pytest

from hexci.kernel.domain.dag import JobNode, PipelineGraph
from hexci.kernel.domain.pipeline import JobSpec
from hexci.kernel.exceptions import (
    CyclicDependencyError,
    DuplicateJobError,
    UnknownDependencyError,
)


def _node(name: str, *deps: str) -> JobNode:
    return JobNode(name, JobSpec(name=name), deps=frozenset(deps))


def _diamond() -> PipelineGraph:
    return PipelineGraph(
        [_node("a"), _node("b", "a"), _node("c", "a"), _node("d", "b", "c")]
    )


class TestJobNode:
    def test_template_defaults_to_name(self) -> None:
        assert _node("build").template == "build"
        spec = JobSpec(name="build (linux)", template="build")
        assert JobNode("build (linux)", spec).template == "build"

    def test_repr(self) -> None:
        assert repr(_node("b", "a")) == "JobNode('b', deps=['a'])"


class TestConstruction:
    def test_duplicate_node(self) -> None:
        with pytest.raises(DuplicateJobError) as exc_info:
            PipelineGraph([_node("a"), _node("a")])
        assert exc_info.value.job == "a"

    def test_unknown_dependency(self) -> None:
        with pytest.raises(UnknownDependencyError) as exc_info:
            PipelineGraph([_node("a"), _node("b", "ghost")])
        assert exc_info.value.job == "b"
        assert exc_info.value.dependency == "ghost"

    def test_cycle_lists_members(self) -> None:
        with pytest.raises(CyclicDependencyError) as exc_info:
            PipelineGraph([_node("a", "c"), _node("b", "a"), _node("c", "b"), _node("d")])
        cycle = exc_info.value.cycle
        assert set(cycle) == {"a", "b", "c"}
        assert cycle[0] == cycle[-1]
        for member in ("a", "b", "c"):
            assert member in str(exc_info.value)

    def test_self_dependency_is_a_cycle(self) -> None:
        with pytest.raises(CyclicDependencyError):
            PipelineGraph([_node("a", "a")])

    def test_nodes_are_read_only(self) -> None:
        graph = _diamond()
        with pytest.raises(TypeError):
            graph.nodes["e"] = _node("e")  # type: ignore[index]


class TestQueries:
    def test_ready_set_progression(self) -> None:
        graph = _diamond()
        assert graph.ready_set(set()) == ["a"]
        assert graph.ready_set({"a"}) == ["b", "c"]
        assert graph.ready_set({"a", "b"}) == ["c"]
        assert graph.ready_set({"a", "b", "c"}) == ["d"]
        assert graph.ready_set({"a", "b", "c", "d"}) == []

    def test_waves(self) -> None:
        assert _diamond().waves() == [["a"], ["b", "c"], ["d"]]

    def test_edges(self) -> None:
        graph = _diamond()
        assert graph.dependencies("d") == frozenset({"b", "c"})
        assert graph.dependents("a") == frozenset({"b", "c"})
        assert graph.dependents("d") == frozenset()
        assert graph.transitive_dependents("a") == {"b", "c", "d"}

    def test_unknown_name(self) -> None:
        with pytest.raises(KeyError):
            _diamond().dependencies("zzz")
        with pytest.raises(KeyError):
            _diamond().dependents("zzz")

    def test_detect_cycle_static(self) -> None:
        assert PipelineGraph.detect_cycle({"a": {"b"}, "b": {"a"}}) == ["a", "b", "a"]
        assert PipelineGraph.detect_cycle({"a": set(), "b": {"a"}}) is None

    def test_container_protocol(self) -> None:
        graph = _diamond()
        assert len(graph) == 4
        assert "a" in graph
        assert "z" not in graph
        assert sorted(graph) == ["a", "b", "c", "d"]
        assert str(graph) == "PipelineGraph(4 jobs: a, b, c, d)"
