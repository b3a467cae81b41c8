"""Tests for matrix expansion."""

from __future__ import annotations

import pytest

from hexci.kernel.domain.pipeline import JobSpec, MatrixStrategy
from hexci.kernel.exceptions import ValidationError
from hexci.kernel.orchestration.matrix import expand_matrix, expansion_name, matrix_combinations


def _job(name: str, strategy: dict | None = None, **fields: object) -> JobSpec:
    data: dict = {"name": name, "steps": [{"run": "make"}], **fields}
    if strategy is not None:
        data["strategy"] = strategy
    return JobSpec.model_validate(data)


class TestCombinations:
    def test_cross_product(self) -> None:
        strategy = MatrixStrategy(dimensions={"os": ["linux", "mac"], "py": ["3.11", "3.12"]})
        assert matrix_combinations(strategy) == [
            {"os": "linux", "py": "3.11"},
            {"os": "linux", "py": "3.12"},
            {"os": "mac", "py": "3.11"},
            {"os": "mac", "py": "3.12"},
        ]

    def test_exclude(self) -> None:
        strategy = MatrixStrategy(
            dimensions={"os": ["linux", "mac"], "py": ["3.11", "3.12"]},
            exclude=[{"os": "mac"}],
        )
        assert [c["os"] for c in matrix_combinations(strategy)] == ["linux", "linux"]

    def test_include_extends_matching_combinations(self) -> None:
        strategy = MatrixStrategy(
            dimensions={"os": ["linux", "mac"]},
            include=[{"os": "linux", "experimental": True}],
        )
        assert matrix_combinations(strategy) == [
            {"os": "linux", "experimental": True},
            {"os": "mac"},
        ]

    def test_include_adds_new_combination(self) -> None:
        strategy = MatrixStrategy(dimensions={"os": ["linux"]}, include=[{"os": "windows"}])
        assert matrix_combinations(strategy) == [{"os": "linux"}, {"os": "windows"}]

    def test_include_only(self) -> None:
        strategy = MatrixStrategy(include=[{"target": "arm"}, {"target": "x86"}])
        assert matrix_combinations(strategy) == [{"target": "arm"}, {"target": "x86"}]


class TestExpansion:
    def test_expansion_name(self) -> None:
        assert expansion_name("build", {"os": "linux", "py": "3.12"}) == "build (linux, 3.12)"

    def test_jobs_are_expanded_with_matrix_values(self) -> None:
        jobs = expand_matrix(
            [
                _job(
                    "build",
                    {"matrix": {"os": ["linux", "mac"]}},
                    concurrency="build-${{ matrix.os }}",
                    **{"runs-on": "${{ matrix.os }}-latest"},
                )
            ]
        )
        assert [job.name for job in jobs] == ["build (linux)", "build (mac)"]
        assert jobs[0].template == "build"
        assert jobs[0].matrix_values == {"os": "linux"}
        assert jobs[0].concurrency_group == "build-linux"
        assert jobs[1].runs_on == "mac-latest"

    def test_step_references_are_left_for_run_time(self) -> None:
        jobs = expand_matrix(
            [_job("build", {"matrix": {"os": ["linux"]}}, environment="${{ steps.x.outputs.env }}")]
        )
        assert jobs[0].environment == "${{ steps.x.outputs.env }}"

    def test_needs_on_matrix_job_fans_in(self) -> None:
        jobs = expand_matrix(
            [
                _job("build", {"matrix": {"os": ["linux", "mac"]}}),
                _job("package", needs=["build", "lint"]),
                _job("lint"),
            ]
        )
        package = next(job for job in jobs if job.name == "package")
        assert package.needs == ["build (linux)", "build (mac)", "lint"]

    def test_matrix_job_keeps_its_own_needs(self) -> None:
        jobs = expand_matrix(
            [_job("setup"), _job("test", {"matrix": {"py": ["3.11", "3.12"]}}, needs=["setup"])]
        )
        assert [job.needs for job in jobs if job.template == "test"] == [["setup"], ["setup"]]

    def test_empty_matrix_rejected(self) -> None:
        with pytest.raises(ValidationError, match="no jobs"):
            expand_matrix([_job("build", {"matrix": {"os": []}})])

    def test_plain_jobs_untouched(self) -> None:
        job = _job("lint")
        assert expand_matrix([job]) == [job]
