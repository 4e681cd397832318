"""
Choropleth package for StatecraftAI Maps

Population density choropleths from projected boundary files: reprojection
with planar areas, population aggregation, per-year quantile coloring, and
the zoom/viewport filters used by the interactive map.
"""

__version__ = "0.1.0"

from .colors import (
    DENSITY_COLORS,
    NO_DATA_COLOR,
    ColorBucketScale,
    PrecomputedYears,
    precompute_by_year,
    quantile_thresholds,
)
from .features import BBox, BoundaryCollection, BoundaryFeature
from .lod import DEFAULT_ZOOM_BANDS, LodSortCache, ZoomBands, ZoomFilter, filter_by_zoom
from .pipeline import ChoroplethPipeline, MapView, PreparedChoropleth
from .population import (
    CZ_ZSJ,
    UK_LAD,
    JoinKey,
    PopulationTable,
    aggregate,
    augment_with_population,
    get_join_key,
)
from .reprojection import (
    CrsDescriptor,
    UnsupportedCRSError,
    get_crs,
    project_point,
    reproject_collection,
    reproject_feature,
)
from .viewport import filter_by_viewport

__all__ = [
    "BBox",
    "BoundaryFeature",
    "BoundaryCollection",
    "CrsDescriptor",
    "UnsupportedCRSError",
    "get_crs",
    "project_point",
    "reproject_feature",
    "reproject_collection",
    "JoinKey",
    "CZ_ZSJ",
    "UK_LAD",
    "get_join_key",
    "PopulationTable",
    "aggregate",
    "augment_with_population",
    "DENSITY_COLORS",
    "NO_DATA_COLOR",
    "ColorBucketScale",
    "PrecomputedYears",
    "quantile_thresholds",
    "precompute_by_year",
    "ZoomBands",
    "DEFAULT_ZOOM_BANDS",
    "LodSortCache",
    "ZoomFilter",
    "filter_by_zoom",
    "filter_by_viewport",
    "ChoroplethPipeline",
    "PreparedChoropleth",
    "MapView",
]
