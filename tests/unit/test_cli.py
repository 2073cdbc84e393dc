"""Tests for the metasynth command line."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from metasynth import __version__
from metasynth.cli import app
from metasynth.logging import reset_logging

runner = CliRunner()


@pytest.fixture(autouse=True)
def _detach_cli_handlers():
    """Drop handlers bound to CliRunner streams after each invocation."""
    yield
    reset_logging()


@pytest.fixture
def input_file(tmp_path: Path) -> Path:
    """Pool-effects request with three 2x2 studies."""
    path = tmp_path / "studies.json"
    path.write_text(
        json.dumps(
            {
                "measure": "OR",
                "studies": [
                    {
                        "study_id": "s1",
                        "events_treatment": 10,
                        "total_treatment": 100,
                        "events_control": 20,
                        "total_control": 100,
                    },
                    {
                        "study_id": "s2",
                        "events_treatment": 15,
                        "total_treatment": 120,
                        "events_control": 25,
                        "total_control": 118,
                    },
                    {
                        "study_id": "s3",
                        "events_treatment": 30,
                        "total_treatment": 200,
                        "events_control": 28,
                        "total_control": 190,
                    },
                ],
            }
        )
    )
    return path


class TestRunCommand:
    """Tests for 'metasynth run'."""

    def test_writes_output_file(self, input_file: Path, tmp_path: Path) -> None:
        output = tmp_path / "pooled.json"

        result = runner.invoke(app, ["run", "pool_effects", str(input_file), "-o", str(output)])

        assert result.exit_code == 0
        data = json.loads(output.read_text())
        assert data["pooled"]["study_count"] == 3
        assert data["pooled"]["confidence_interval"]["level"] == pytest.approx(0.95)

    def test_alpha_option(self, input_file: Path, tmp_path: Path) -> None:
        output = tmp_path / "pooled.json"

        result = runner.invoke(
            app, ["run", "pool_effects", str(input_file), "--alpha", "0.1", "-o", str(output)]
        )

        assert result.exit_code == 0
        data = json.loads(output.read_text())
        assert data["pooled"]["confidence_interval"]["level"] == pytest.approx(0.9)

    def test_prints_json_without_output_file(self, input_file: Path) -> None:
        result = runner.invoke(app, ["run", "assess_heterogeneity", str(input_file)])

        assert result.exit_code == 0
        assert "i_squared" in result.output

    def test_unknown_operation(self, input_file: Path) -> None:
        result = runner.invoke(app, ["run", "meta_regression", str(input_file)])

        assert result.exit_code == 1
        assert "unknown_operation" in result.output

    def test_engine_error(self, tmp_path: Path) -> None:
        path = tmp_path / "one.json"
        path.write_text(
            json.dumps(
                {"measure": "MD", "studies": [{"study_id": "x", "effect": 1.0, "standard_error": 0.2}]}
            )
        )

        result = runner.invoke(app, ["run", "assess_heterogeneity", str(path)])

        assert result.exit_code == 1
        assert "insufficient_data" in result.output

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        result = runner.invoke(app, ["run", "pool_effects", str(path)])

        assert result.exit_code == 1
        assert "Error reading" in result.output

    def test_invalid_alpha(self, input_file: Path) -> None:
        result = runner.invoke(app, ["run", "pool_effects", str(input_file), "--alpha", "2"])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


class TestInfoCommands:
    """Tests for 'metasynth operations' and 'metasynth version'."""

    def test_operations(self) -> None:
        result = runner.invoke(app, ["operations"])

        assert result.exit_code == 0
        assert "pool_effects" in result.output

    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output
