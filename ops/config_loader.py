"""
Configuration Loader for the Choropleth Pipeline

This module provides a centralized way to load and access configuration
settings from the config.yaml file. The choropleth package itself never
reads configuration; everything it needs is resolved here and passed in.

Usage:
    from ops import Config

    config = Config()
    boundaries = config.get_input_path('boundaries')
    output_dir = config.get_output_dir()
    bands = config.get_zoom_bands()
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml  # type: ignore[import-untyped]
from loguru import logger

from choropleth.colors import DENSITY_COLORS, NO_DATA_COLOR, validate_color, validate_palette
from choropleth.features import RGBA
from choropleth.lod import ZoomBands
from choropleth.population import JoinKey, get_join_key
from choropleth.reprojection import CrsDescriptor, get_crs

PACKAGED_CONFIG = Path(__file__).parent / "config.yaml"


class Config:
    """Configuration manager for the choropleth pipeline."""

    # Default values that can be overridden in config
    DEFAULTS: Dict[str, Any] = {
        "source": {"crs": "EPSG:5514", "join_key": "cz_zsj"},
        "population": {"delimiter": None},
        "colors": {
            "palette": [list(c) for c in DENSITY_COLORS],
            "no_data": list(NO_DATA_COLOR),
        },
        "lod": {
            "full_detail_zoom": 11,
            "bands": [[10, 0.5], [9, 0.2], [8, 0.08], [7, 0.03], [6, 0.01]],
            "floor_fraction": 0.005,
        },
        "viewport": {"buffer_fraction": 0.1, "min_zoom": 9},
        "output": {
            "directory": "data/processed",
            "stem": "population_density",
            "precision": 6,
        },
    }

    def __init__(
        self,
        config_file: Optional[Union[str, Path]] = None,
        project_root_override: Optional[Union[str, Path]] = None,
    ):
        """
        Initialize configuration manager.

        Args:
            config_file: Path to config file. If None, looks for:
                        1. Environment variable PIPELINE_CONFIG_PATH
                        2. config.yaml in current directory
                        3. config.yaml shipped next to this module
            project_root_override: Base directory for relative input/output paths
        """
        if config_file is None:
            env_config = os.environ.get("PIPELINE_CONFIG_PATH")
            if env_config and Path(env_config).exists():
                config_file = env_config
                logger.debug(f"Using config from environment: {config_file}")
            elif Path("config.yaml").exists():
                config_file = "config.yaml"
            elif PACKAGED_CONFIG.exists():
                config_file = PACKAGED_CONFIG
                logger.debug("Using packaged ops/config.yaml")
            else:
                raise FileNotFoundError(
                    "No config.yaml found. Check current directory or set PIPELINE_CONFIG_PATH"
                )

        self.config_path = Path(config_file).resolve()
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")
        self.config_dir = self.config_path.parent

        if project_root_override:
            self.project_root = Path(project_root_override).resolve()
            logger.debug(f"Using project root override: {self.project_root}")
        elif os.environ.get("PROJECT_ROOT_OVERRIDE"):
            self.project_root = Path(os.environ["PROJECT_ROOT_OVERRIDE"]).resolve()
            logger.debug(f"Using project root from environment: {self.project_root}")
        else:
            self.project_root = self._find_project_root()

        logger.debug(f"Loading config from: {self.config_path}")
        logger.debug(f"Project root: {self.project_root}")

        with open(self.config_path, "r", encoding="utf-8") as f:
            self.data = yaml.safe_load(f) or {}

        if not isinstance(self.data, dict):
            raise ValueError(f"Config file must hold a mapping: {self.config_path}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation, falling back to DEFAULTS.

        Args:
            key_path: Dot-separated path to the configuration value
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key_path.split(".")

        value: Any = self.data
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                value = None
                break

        if value is None:
            value = self.DEFAULTS
            for key in keys:
                if isinstance(value, dict) and key in value:
                    value = value[key]
                else:
                    return default

        return value

    def get_input_path(self, filename_key: str) -> Path:
        """
        Get full path to an input file, joined with the project root.

        Args:
            filename_key: Key for the filename in input_files

        Returns:
            Absolute path (not checked for existence)
        """
        relative_path_str = self.data.get("input_files", {}).get(filename_key)
        if not relative_path_str:
            raise ValueError(
                f"Input filename key '{filename_key}' not found in config: input_files"
            )
        return self.project_root / relative_path_str

    def get_output_dir(self) -> Path:
        """Output directory for exported layers, created if missing."""
        output_dir = self.project_root / str(self.get("output.directory"))
        output_dir.mkdir(parents=True, exist_ok=True)
        return output_dir

    def get_crs(self) -> CrsDescriptor:
        return get_crs(str(self.get("source.crs")))

    def get_join_key(self) -> JoinKey:
        return get_join_key(str(self.get("source.join_key")))

    def get_palette(self) -> Tuple[RGBA, ...]:
        return validate_palette(self.get("colors.palette"))

    def get_no_data_color(self) -> RGBA:
        return validate_color(self.get("colors.no_data"))

    def get_zoom_bands(self) -> ZoomBands:
        """ZoomBands from the lod section; raises ValueError on a malformed table."""
        raw_bands: List[Any] = self.get("lod.bands")
        try:
            bands = tuple((float(z), float(f)) for z, f in raw_bands)
        except (TypeError, ValueError) as e:
            raise ValueError(f"lod.bands must be a list of [zoom, fraction] pairs: {raw_bands!r}") from e

        return ZoomBands(
            full_detail_zoom=float(self.get("lod.full_detail_zoom")),
            bands=bands,
            floor_fraction=float(self.get("lod.floor_fraction")),
        )

    def validate_input_files(self) -> Dict[str, bool]:
        """Check existence of every configured input file."""
        results = {}
        for file_key in self.data.get("input_files", {}):
            try:
                results[file_key] = self.get_input_path(file_key).exists()
            except ValueError:
                results[file_key] = False
        return results

    def print_config_summary(self) -> None:
        """Log a summary of the resolved configuration."""
        logger.debug("🔧 Configuration Summary:")
        logger.debug(f"  📁 Config file: {self.config_path}")
        logger.debug(f"  🗺️ Source CRS: {self.get('source.crs')}")
        logger.debug(f"  🔑 Join key: {self.get('source.join_key')}")
        logger.debug(f"  🎨 Palette: {len(self.get('colors.palette'))} colors")

        logger.debug("📊 Input Files:")
        for file_key, exists in self.validate_input_files().items():
            status = "✅" if exists else "❌"
            logger.debug(f"  {status} {file_key}")

    def _find_project_root(self) -> Path:
        """Find the project root directory by looking for characteristic files/directories."""
        current = self.config_path.parent
        project_markers = ["choropleth", "data", "ops", "pyproject.toml", ".git"]

        for _ in range(5):
            markers_found = sum(1 for marker in project_markers if (current / marker).exists())
            if markers_found >= 2:
                return current

            parent = current.parent
            if parent == current:
                break
            current = parent

        # config shipped in ops/ belongs to the parent project
        if self.config_path.parent.name == "ops":
            return self.config_path.parent.parent

        logger.warning(
            f"Could not reliably detect project root, using config directory: {self.config_path.parent}"
        )
        return self.config_path.parent
