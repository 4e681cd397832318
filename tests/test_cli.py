"""Command line interface tests."""

import sys

import pytest
from click.testing import CliRunner
from loguru import logger

from ops.run_pipeline import ConfigOverride, cli


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    # CliRunner closes the stream the CLI attached its sink to
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def runner():
    return CliRunner()


def test_run_exports_layers(runner, cz_project):
    result = runner.invoke(cli, ["--config", str(cz_project / "config.yaml"), "run"])

    assert result.exit_code == 0, result.output
    out = cz_project / "out"
    assert (out / "density_2011.geojson").exists()
    assert (out / "density_2021.geojson").exists()
    assert (out / "density_legend.json").exists()
    assert "Exported 2 years" in result.output


def test_run_is_the_default_command(runner, cz_project):
    result = runner.invoke(cli, ["--config", str(cz_project / "config.yaml")])

    assert result.exit_code == 0, result.output
    assert (cz_project / "out" / "density_2021.geojson").exists()


def test_dry_run_processes_nothing(runner, cz_project):
    result = runner.invoke(cli, ["--config", str(cz_project / "config.yaml"), "run", "--dry-run"])

    assert result.exit_code == 0, result.output
    assert "boundaries:" in result.output
    assert not (cz_project / "out").exists()


def test_override_changes_output(runner, cz_project):
    result = runner.invoke(
        cli,
        ["--config", str(cz_project / "config.yaml"), "--set", "output.stem=zsj", "run"],
    )

    assert result.exit_code == 0, result.output
    assert (cz_project / "out" / "zsj_2021.geojson").exists()


def test_unsupported_crs_exits_with_error(runner, cz_project):
    result = runner.invoke(
        cli, ["--config", str(cz_project / "config.yaml"), "--set", "source.crs=EPSG:4326", "run"]
    )
    assert result.exit_code == 1


def test_missing_input_exits_with_error(runner, cz_project):
    (cz_project / "data" / "zsj.geojson").unlink()
    result = runner.invoke(cli, ["--config", str(cz_project / "config.yaml"), "run"])
    assert result.exit_code == 1


@pytest.mark.parametrize(
    "args, expected",
    [
        (["--zoom", "12"], "4 of 4 features visible"),
        (["--zoom", "7", "--year", "2011"], "1 of 4 features visible"),
        (["--zoom", "12", "--bbox", "0", "0", "1", "1"], "0 of 4 features visible"),
    ],
)
def test_preview_counts_visible_features(runner, cz_project, args, expected):
    result = runner.invoke(cli, ["--config", str(cz_project / "config.yaml"), "preview", *args])

    assert result.exit_code == 0, result.output
    assert expected in result.output


def test_log_file_is_written(runner, cz_project):
    log_file = cz_project / "pipeline.log"
    result = runner.invoke(
        cli,
        ["--config", str(cz_project / "config.yaml"), "--log-file", str(log_file), "run", "--dry-run"],
    )

    assert result.exit_code == 0, result.output
    logger.remove()
    assert "DRY RUN" in log_file.read_text(encoding="utf-8")


def test_malformed_override_is_a_usage_error(runner, cz_project):
    result = runner.invoke(cli, ["--config", str(cz_project / "config.yaml"), "--set", "nokey"])
    assert result.exit_code == 2


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("viewport.min_zoom=10", ("viewport.min_zoom", 10)),
        ("viewport.buffer_fraction=0.25", ("viewport.buffer_fraction", 0.25)),
        ("source.crs=EPSG:27700", ("source.crs", "EPSG:27700")),
        ("lod.bands=[[10, 0.5]]", ("lod.bands", [[10, 0.5]])),
        ("output.stem=", ("output.stem", "")),
    ],
)
def test_override_values_are_typed(raw, expected):
    assert ConfigOverride().convert(raw, None, None) == expected


def test_verbose_dry_run_logs_config_summary(runner, cz_project):
    log_file = cz_project / "pipeline.log"
    result = runner.invoke(
        cli,
        ["--config", str(cz_project / "config.yaml"), "-v", "--log-file", str(log_file), "run", "--dry-run"],
    )

    assert result.exit_code == 0, result.output
    logger.remove()
    text = log_file.read_text(encoding="utf-8")
    assert "Configuration Summary" in text
    assert "Palette: 4 colors" in text
