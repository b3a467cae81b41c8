"""Tests for building a validated graph from a pipeline definition."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from hexci.kernel.domain.dag import PipelineGraph
from hexci.kernel.domain.pipeline import PipelineDefinition
from hexci.kernel.exceptions import (
    CyclicDependencyError,
    DuplicateJobError,
    UnknownDependencyError,
    ValidationError,
)
from hexci.kernel.orchestration.graph_builder import build_graph, validate_name

MakeGraph = Callable[[dict[str, Any]], PipelineGraph]

STEP = [{"run": "true"}]


class TestBuildGraph:
    def test_waves(self, make_graph: MakeGraph) -> None:
        graph = make_graph(
            {
                "jobs": {
                    "build": {"steps": STEP},
                    "test": {"needs": "build", "steps": STEP},
                    "lint": {"needs": "build", "steps": STEP},
                    "deploy": {"needs": ["test", "lint"], "steps": STEP},
                }
            }
        )
        assert graph.waves() == [["build"], ["lint", "test"], ["deploy"]]
        assert graph.definition is not None
        assert graph.definition.name == "ci"

    def test_cycle_reports_members(self, make_graph: MakeGraph) -> None:
        with pytest.raises(CyclicDependencyError) as exc_info:
            make_graph(
                {
                    "jobs": {
                        "a": {"needs": "c", "steps": STEP},
                        "b": {"needs": "a", "steps": STEP},
                        "c": {"needs": "b", "steps": STEP},
                    }
                }
            )
        assert set(exc_info.value.cycle) == {"a", "b", "c"}
        assert "a" in str(exc_info.value)
        assert "c" in str(exc_info.value)

    def test_unknown_dependency(self, make_graph: MakeGraph) -> None:
        with pytest.raises(UnknownDependencyError) as exc_info:
            make_graph({"jobs": {"test": {"needs": "build", "steps": STEP}}})
        assert (exc_info.value.job, exc_info.value.dependency) == ("test", "build")

    def test_duplicate_job_names(self) -> None:
        definition = PipelineDefinition.model_validate(
            {"name": "ci", "jobs": [{"name": "a", "steps": STEP}, {"name": "a", "steps": STEP}]}
        )
        with pytest.raises(DuplicateJobError):
            build_graph(definition)

    def test_job_without_steps(self, make_graph: MakeGraph) -> None:
        with pytest.raises(ValidationError, match="at least one step"):
            make_graph({"jobs": {"empty": {}}})

    def test_duplicate_step_ids(self, make_graph: MakeGraph) -> None:
        steps = [{"id": "x", "run": "a"}, {"id": "x", "run": "b"}]
        with pytest.raises(ValidationError, match="unique"):
            make_graph({"jobs": {"build": {"steps": steps}}})

    def test_malformed_concurrency_group(self, make_graph: MakeGraph) -> None:
        with pytest.raises(ValidationError, match="concurrency_group"):
            make_graph({"jobs": {"deploy": {"concurrency": "prod env!", "steps": STEP}}})

    def test_malformed_rendered_group(self, make_graph: MakeGraph) -> None:
        job = {
            "strategy": {"matrix": {"region": ["eu west"]}},
            "concurrency": "deploy-${{ matrix.region }}",
            "steps": STEP,
        }
        with pytest.raises(ValidationError):
            make_graph({"jobs": {"deploy": job}})

    def test_malformed_deployment_environment(self, make_graph: MakeGraph) -> None:
        with pytest.raises(ValidationError, match="deployment.environment"):
            make_graph(
                {
                    "jobs": {"build": {"steps": STEP}},
                    "deployment": {"service": "web", "version": "1", "environment": "pro d"},
                }
            )

    def test_matrix_nodes(self, make_graph: MakeGraph) -> None:
        graph = make_graph(
            {
                "jobs": {
                    "test": {"strategy": {"matrix": {"py": ["3.11", "3.12"]}}, "steps": STEP},
                    "report": {"needs": "test", "if": "always()", "steps": STEP},
                }
            }
        )
        assert sorted(graph) == ["report", "test (3.11)", "test (3.12)"]
        assert graph.dependencies("report") == frozenset({"test (3.11)", "test (3.12)"})
        assert graph.nodes["test (3.12)"].template == "test"


class TestValidateName:
    @pytest.mark.parametrize("name", ["production", "eu-west-1", "team/app", "v1.2_rc"])
    def test_valid(self, name: str) -> None:
        validate_name("group", name)

    @pytest.mark.parametrize("name", ["", "-lead", "has space", "semi;colon", "x" * 200])
    def test_invalid(self, name: str) -> None:
        with pytest.raises(ValidationError):
            validate_name("group", name)
