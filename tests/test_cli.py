"""Tests for the stitchgrid command-line interface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner
from PIL import Image

from stitchgrid.cli import main
from stitchgrid.project import ProjectStore


@pytest.fixture
def cli_runner() -> CliRunner:
    """Fixture providing a Click CLI runner."""
    return CliRunner()


@pytest.fixture
def red_blue_png(tmp_path: Path) -> Path:
    """20x20 PNG: left half red, right half blue."""
    img = Image.new("RGB", (20, 20), (0, 0, 255))
    img.paste((255, 0, 0), (0, 0, 10, 20))
    path = tmp_path / "red_blue.png"
    img.save(path)
    return path


@pytest.fixture
def custom_catalog(tmp_path: Path) -> Path:
    path = tmp_path / "threads.json"
    path.write_text(
        json.dumps(
            [
                {"code": "K1", "name": "Coal", "hex": "#000000"},
                {"code": "W1", "name": "Chalk", "hex": "#FFFFFF"},
            ]
        ),
        encoding="utf-8",
    )
    return path


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def test_cli_help_flag(cli_runner: CliRunner) -> None:
    result = cli_runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    assert "generate" in result.output
    assert "match" in result.output
    assert "catalog" in result.output


def test_generate_help(cli_runner: CliRunner) -> None:
    result = cli_runner.invoke(main, ["generate", "--help"])
    assert result.exit_code == 0
    assert "--max-colors" in result.output
    assert "--fit-aspect" in result.output


# ---------------------------------------------------------------------------
# generate
# ---------------------------------------------------------------------------


class TestGenerateCommand:
    def test_writes_all_outputs(
        self, cli_runner: CliRunner, red_blue_png: Path, tmp_path: Path
    ) -> None:
        out = tmp_path / "out"
        result = cli_runner.invoke(
            main,
            [
                "generate",
                str(red_blue_png),
                "-k", "3",
                "-W", "10",
                "-H", "10",
                "-o", str(out / "chart.png"),
                "--chart", str(out / "chart.txt"),
                "--project", str(out / "project.json"),
                "--metrics", str(out / "metrics.json"),
            ],
        )  # fmt: skip
        assert result.exit_code == 0, result.output

        with Image.open(out / "chart.png") as chart_img:
            assert chart_img.size == (100, 100)

        chart_text = (out / "chart.txt").read_text(encoding="utf-8")
        assert "Legend (2 colors)" in chart_text

        snapshot = ProjectStore(out / "project.json").load()
        assert snapshot is not None
        assert snapshot.settings.max_colors == 3
        assert len(snapshot.palette) == 2

        metrics = json.loads((out / "metrics.json").read_text())
        assert metrics["runs_completed"] == 1
        assert metrics["run_finished_at_epoch"] is not None
        assert set(metrics["stage_duration_ms"]) == {
            "quantizing",
            "matching",
            "recoloring",
            "grid_mapping",
        }

    def test_config_file_and_custom_catalog(
        self,
        cli_runner: CliRunner,
        red_blue_png: Path,
        custom_catalog: Path,
        tmp_path: Path,
    ) -> None:
        config = tmp_path / "run.yaml"
        config.write_text(
            "settings:\n"
            "  max_colors: 2\n"
            "  grid_width: 10\n"
            "  grid_height: 10\n"
            f"catalog_path: {custom_catalog.name}\n",
            encoding="utf-8",
        )
        chart = tmp_path / "chart.txt"
        result = cli_runner.invoke(
            main, ["generate", str(red_blue_png), "-c", str(config), "--chart", str(chart)]
        )
        assert result.exit_code == 0, result.output
        text = chart.read_text(encoding="utf-8")
        assert "K1" in text or "W1" in text

    def test_invalid_setting_fails(
        self, cli_runner: CliRunner, red_blue_png: Path
    ) -> None:
        result = cli_runner.invoke(main, ["generate", str(red_blue_png), "-k", "1"])
        assert result.exit_code == 1
        assert "Generation failed" in result.output

    def test_unsupported_image_fails(
        self, cli_runner: CliRunner, tmp_path: Path
    ) -> None:
        bmp = tmp_path / "img.bmp"
        Image.new("RGB", (4, 4)).save(bmp)
        result = cli_runner.invoke(main, ["generate", str(bmp)])
        assert result.exit_code == 1
        assert "Unsupported" in result.output

    def test_missing_image(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        result = cli_runner.invoke(main, ["generate", str(tmp_path / "nope.png")])
        assert result.exit_code == 2


# ---------------------------------------------------------------------------
# match / catalog
# ---------------------------------------------------------------------------


class TestMatchCommand:
    def test_top_matches(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(main, ["match", "255", "255", "255", "-n", "2"])
        assert result.exit_code == 0, result.output
        assert "B5200" in result.output

    def test_custom_catalog(self, cli_runner: CliRunner, custom_catalog: Path) -> None:
        result = cli_runner.invoke(
            main, ["match", "10", "10", "10", "--catalog", str(custom_catalog)]
        )
        assert result.exit_code == 0, result.output
        assert "K1" in result.output

    def test_out_of_range_channel(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(main, ["match", "300", "0", "0"])
        assert result.exit_code == 2


class TestCatalogCommand:
    def test_search(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(main, ["catalog", "snow"])
        assert result.exit_code == 0
        assert "B5200" in result.output

    def test_no_results(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(main, ["catalog", "zzzz-no-such-thread"])
        assert result.exit_code == 0
        assert "No threads match" in result.output
