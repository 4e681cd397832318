"""
Operations package for the Choropleth Pipeline

This package centralizes the operational tools around the core
``choropleth`` package:
- Configuration management
- Pipeline orchestration (click CLI)

The Config class is exposed at the package level for convenient imports:
    from ops import Config
"""

from .config_loader import Config

__all__ = ["Config"]
