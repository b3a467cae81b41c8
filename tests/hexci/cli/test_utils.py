"""Tests for CLI helper utilities."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from hexci.cli.utils import apply_health_defaults, format_duration, get_config, load_pipeline
from hexci.kernel.config import HealthCheckDefaults, HexCIConfig
from hexci.kernel.exceptions import ConfigurationError


class TestApplyHealthDefaults:
    def test_fills_missing_fields(self) -> None:
        data = {"deployment": {"service": "web", "health_check": {"url": "http://x", "retries": 7}}}

        result = apply_health_defaults(data, HealthCheckDefaults(interval=2.0, timeout=1.0))

        policy = result["deployment"]["health_check"]
        assert policy["retries"] == 7
        assert policy["interval"] == 2.0
        assert policy["timeout"] == 1.0
        assert data["deployment"]["health_check"] == {"url": "http://x", "retries": 7}

    def test_hyphenated_keys_win(self) -> None:
        data = {
            "deployment": {
                "service": "web",
                "staging-health-check": {"url": "http://x", "start-period": 30},
            }
        }

        result = apply_health_defaults(data, HealthCheckDefaults())

        policy = result["deployment"]["staging-health-check"]
        assert policy["start-period"] == 30
        assert "start_period" not in policy

    def test_without_deployment(self) -> None:
        data = {"name": "ci", "jobs": {}}

        assert apply_health_defaults(data, HealthCheckDefaults()) is data


class TestLoadPipeline:
    def test_name_defaults_to_file_stem(self, tmp_path: Path) -> None:
        path = tmp_path / "nightly.yaml"
        path.write_text("jobs:\n  build:\n    steps:\n      - run: make\n", encoding="utf-8")

        definition = load_pipeline(path)

        assert definition.name == "nightly"
        assert [job.name for job in definition.jobs] == ["build"]

    def test_applies_configured_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "release.yaml"
        path.write_text(
            "name: release\n"
            "jobs:\n  build:\n    steps:\n      - run: make\n"
            "deployment:\n  service: web\n  version: '1'\n"
            "  health_check:\n    url: http://web/health\n",
            encoding="utf-8",
        )

        definition = load_pipeline(path, HealthCheckDefaults(retries=9))

        assert definition.deployment is not None
        assert definition.deployment.health_check.retries == 9

    @pytest.mark.parametrize(
        "content",
        [
            "jobs: [unclosed\n",
            "- just\n- a list\n",
            "name: ci\nunknown_section: true\n",
        ],
    )
    def test_invalid_documents(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text(content, encoding="utf-8")

        with pytest.raises(ConfigurationError):
            load_pipeline(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            load_pipeline(tmp_path / "missing.yaml")


class TestHelpers:
    def test_get_config_from_context(self) -> None:
        config = HexCIConfig(secrets={"TOKEN": "x"})

        assert get_config(SimpleNamespace(obj={"config": config})) is config

    @pytest.mark.parametrize(
        ("started", "completed", "expected"),
        [(None, None, "-"), (10.0, None, "-"), (10.0, 12.5, "2.5s"), (1.0, 4.0, "3.0s")],
    )
    def test_format_duration(
        self, started: float | None, completed: float | None, expected: str
    ) -> None:
        assert format_duration(started, completed) == expected
