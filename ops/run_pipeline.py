#!/usr/bin/env python3
"""
Population Density Choropleth Pipeline with Click CLI

Runs the offline stages (load boundaries, reproject, aggregate population,
precompute per-year colors) and exports one web-ready GeoJSON per year plus
a legend. Configuration values can be overridden from the command line
without editing config.yaml.

Usage:
    choropleth-pipeline [OPTIONS] [COMMAND]

    # Run with the default config (ops/config.yaml or ./config.yaml):
    choropleth-pipeline

    # Another dataset convention and CRS:
    choropleth-pipeline --set source.crs=EPSG:27700 --set source.join_key=uk_lad

    # Check what the interactive map would draw:
    choropleth-pipeline preview --zoom 9.5 --bbox 14.3 50.0 14.6 50.2 --year 2021

    # Verbose logging:
    choropleth-pipeline --verbose
"""

import os
import sys
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click
import yaml
from loguru import logger

from choropleth.features import BBox
from choropleth.geo_io import collection_metadata, export_years, load_boundaries
from choropleth.pipeline import ChoroplethPipeline, PreparedChoropleth
from choropleth.population_io import load_population_table
from ops.config_loader import Config


class ConfigContext:
    """Holds the resolved config and any command line overrides."""

    def __init__(self, config_file: Optional[str] = None):
        self.config_file = config_file
        self.overrides: Dict[str, Any] = {}
        self.temp_config_path: Optional[Path] = None
        self.config: Optional[Config] = None

    def add_override(self, key: str, value: Any):
        """Add a configuration override using dot notation."""
        keys = key.split(".")
        current = self.overrides
        for k in keys[:-1]:
            current = current.setdefault(k, {})
        current[keys[-1]] = value
        logger.debug(f"🔧 Config override: {key} = {value}")

    def get_config(self) -> Config:
        """Get config with overrides applied."""
        base = Config(self.config_file)
        if not self.overrides:
            return base

        with open(base.config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}

        self._apply_nested_override(config_data, self.overrides)

        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            yaml.safe_dump(config_data, f)
            self.temp_config_path = Path(f.name)

        return Config(str(self.temp_config_path), project_root_override=base.project_root)

    def cleanup(self):
        """Clean up temporary config file."""
        if self.temp_config_path and self.temp_config_path.exists():
            self.temp_config_path.unlink()
            logger.debug(f"Cleaned up temporary config: {self.temp_config_path}")

    def _apply_nested_override(self, base_dict: Dict, override_dict: Dict):
        for key, value in override_dict.items():
            if isinstance(value, dict) and isinstance(base_dict.get(key), dict):
                self._apply_nested_override(base_dict[key], value)
            else:
                base_dict[key] = value


class ConfigOverride(click.ParamType):
    """KEY=VALUE config override; the value is parsed as YAML (numbers, booleans, lists)."""

    name = "config_override"

    def convert(self, value, param, ctx) -> Tuple[str, Any]:
        if isinstance(value, tuple):
            return value
        if "=" not in value:
            self.fail(f"Invalid format: {value}. Use KEY=VALUE", param, ctx)

        key, val = value.split("=", 1)
        if not key.strip():
            self.fail(f"Empty key in override: {value}", param, ctx)

        try:
            parsed_val = yaml.safe_load(val) if val else val
        except yaml.YAMLError:
            parsed_val = val

        return key.strip(), parsed_val


@click.group(invoke_without_command=True)
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to config.yaml (default: PIPELINE_CONFIG_PATH, ./config.yaml, ops/config.yaml)",
)
@click.option(
    "--set",
    "config_overrides",
    multiple=True,
    type=ConfigOverride(),
    help="Set config values using dot notation (e.g., viewport.buffer_fraction=0.2)",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable DEBUG level logging")
@click.option(
    "--trace", is_flag=True, help="Enable TRACE level logging for deep debugging (maximum detail)"
)
@click.option("--log-file", type=str, help="Also log to specified file")
@click.pass_context
def cli(ctx, **kwargs):
    """
    Population Density Choropleth Pipeline

    \b
    Examples:
      choropleth-pipeline                                       # Run with default config
      choropleth-pipeline --config my.yaml run --dry-run        # Show resolved inputs
      choropleth-pipeline --set output.precision=5              # Override a setting
      choropleth-pipeline preview --zoom 8 --bbox -3 53 0 55    # Count visible features
    """
    setup_logging(verbose=kwargs.get("verbose", False), enable_trace=kwargs.get("trace", False))

    if kwargs.get("log_file"):
        log_file = kwargs["log_file"]
        log_level = (
            "TRACE" if kwargs.get("trace") else ("DEBUG" if kwargs.get("verbose") else "INFO")
        )
        logger.add(
            log_file,
            level=log_level,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}",
            rotation="10 MB",
            retention="7 days",
        )
        logger.info(f"📄 Also logging to file: {log_file}")

    logger.info("🗺️ Population Density Choropleth Pipeline")
    logger.debug(f"🔧 CLI arguments received: {kwargs}")

    config_ctx = ConfigContext(kwargs.get("config_file"))
    ctx.obj = config_ctx
    ctx.call_on_close(config_ctx.cleanup)

    for key, value in kwargs["config_overrides"]:
        config_ctx.add_override(key, value)

    try:
        config_ctx.config = config_ctx.get_config()
        logger.info(f"📋 Config: {config_ctx.config.config_path}")
    except Exception as e:
        handle_critical_error(e, "loading configuration")
        logger.info("💡 Make sure config.yaml exists and is valid")
        ctx.exit(1)

    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


def build_pipeline(config: Config) -> ChoroplethPipeline:
    """Pipeline parameters from config; raises on any invalid setting."""
    return ChoroplethPipeline(
        crs=config.get_crs(),
        join_key=config.get_join_key(),
        palette=config.get_palette(),
        no_data_color=config.get_no_data_color(),
        zoom_bands=config.get_zoom_bands(),
        viewport_buffer=float(config.get("viewport.buffer_fraction")),
        viewport_min_zoom=float(config.get("viewport.min_zoom")),
    )


def prepare_from_config(config: Config) -> PreparedChoropleth:
    """Load both inputs named in config and run the offline stages."""
    pipeline = build_pipeline(config)

    boundaries_path = config.get_input_path("boundaries")
    population_path = config.get_input_path("population_csv")
    for path, description in ((boundaries_path, "Boundaries"), (population_path, "Population table")):
        if not path.exists():
            raise FileNotFoundError(f"{description} not found: {path}")

    boundaries = load_boundaries(boundaries_path, pipeline.crs)
    population = load_population_table(
        population_path, pipeline.join_key, delimiter=config.get("population.delimiter")
    )
    return pipeline.prepare(boundaries, population)


@cli.command()
@click.option("--dry-run", is_flag=True, help="Show resolved inputs and settings without processing")
@click.pass_context
def run(ctx, dry_run):
    """Prepare the choropleth and export per-year GeoJSON plus legend."""
    config: Config = ctx.obj.config

    if dry_run:
        show_dry_run_info(config)
        return

    start_time = time.time()
    try:
        prepared = prepare_from_config(config)

        metadata = collection_metadata(prepared.features)
        logger.info(
            f"📐 {metadata['feature_count']:,} features, "
            f"{metadata['null_counts']['area_km2']:,} without area"
        )

        written = export_years(
            prepared.years,
            config.get_output_dir(),
            stem=str(config.get("output.stem")),
            precision=config.get("output.precision"),
        )
    except Exception as e:
        handle_critical_error(e, "running the choropleth pipeline")
        ctx.exit(1)

    elapsed = time.time() - start_time
    logger.success(f"🎉 Pipeline completed in {elapsed:.1f}s")
    for path in written:
        logger.info(f"  📄 {path}")
    click.echo(f"Exported {len(prepared.years)} years to {config.get_output_dir()}")


@cli.command()
@click.option("--zoom", type=float, required=True, help="Map zoom level")
@click.option(
    "--bbox",
    type=float,
    nargs=4,
    metavar="WEST SOUTH EAST NORTH",
    default=None,
    help="Viewport in degrees; no culling when omitted",
)
@click.option("--year", type=str, default=None, help="Year layer (default: latest)")
@click.pass_context
def preview(ctx, zoom, bbox, year):
    """Report how many features the map would draw at a zoom and viewport."""
    config: Config = ctx.obj.config

    try:
        prepared = prepare_from_config(config)
        viewport = BBox(*bbox) if bbox else None
        layer = prepared.features_for_year(year)
        visible = prepared.view.visible(layer, zoom, viewport)
    except Exception as e:
        handle_critical_error(e, "previewing the choropleth")
        ctx.exit(1)

    selected = year or prepared.population.latest_year
    logger.info(f"🔍 Zoom {zoom}, year {selected}: {len(visible):,}/{len(layer):,} features visible")
    click.echo(f"{len(visible)} of {len(layer)} features visible")


def show_dry_run_info(config: Config):
    """Show dry run information."""
    logger.info("🔍 DRY RUN MODE - Nothing will be processed")
    logger.info("=" * 60)

    logger.info("Configuration Summary:")
    logger.info(f"  🗺️ Source CRS: {config.get('source.crs')}")
    logger.info(f"  🔑 Join key: {config.get('source.join_key')}")

    for key in ("boundaries", "population_csv"):
        try:
            path = config.get_input_path(key)
            logger.info(f"  📄 {key}: {path} {'✅' if path.exists() else '❌'}")
            click.echo(f"{key}: {path}")
        except ValueError as e:
            logger.warning(f"Could not resolve {key}: {e}")

    logger.info(f"  📁 Output: {config.project_root / str(config.get('output.directory'))}")
    config.print_config_summary()


def setup_logging(verbose: bool = False, enable_trace: bool = False) -> None:
    """
    Configure loguru logging with appropriate levels.

    Args:
        verbose: If True, set log level to DEBUG
        enable_trace: If True, enable TRACE level logging for deep debugging
    """
    logger.remove()

    if enable_trace:
        log_level = "TRACE"
        log_format = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
    elif verbose:
        log_level = "DEBUG"
        log_format = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
    else:
        log_level = "INFO"
        log_format = (
            "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
        )

    logger.add(
        sys.stderr,
        format=log_format,
        level=log_level,
        colorize=True,
        backtrace=enable_trace,
        diagnose=enable_trace,
    )

    os.environ["LOGURU_LEVEL"] = log_level

    if verbose:
        logger.debug("🔧 Verbose logging enabled (DEBUG level)")
    if enable_trace:
        logger.trace("🔍 Trace logging enabled - maximum detail mode")

    logger.success("📋 Logging system initialized")


def handle_critical_error(error: Exception, context: str = "") -> None:
    """
    Handle critical errors with optional trace logging.

    Args:
        error: The exception that occurred
        context: Additional context about where the error occurred
    """
    enable_trace = os.environ.get("LOGURU_LEVEL", "INFO") == "TRACE"

    if enable_trace:
        logger.trace("💥 TRACE MODE: Analyzing critical error with full context")
        logger.trace(f"Error context: {context}")
        logger.trace(f"Error type: {type(error).__name__}")
        logger.opt(exception=error).trace("Full traceback:")

    logger.critical(f"💥 CRITICAL ERROR: {context}")
    logger.critical(f"Exception: {type(error).__name__}: {error}")

    if not enable_trace:
        logger.info("💡 For detailed debugging, run with --trace flag")


if __name__ == "__main__":
    cli()
