"""
geo_io.py - Boundary loading and choropleth export

Loads raw boundary collections (GeoJSON directly, any other vector format
through geopandas), summarises feature sets with geopandas for logging and
metadata, and writes one web-ready GeoJSON per year plus a legend sidecar.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import geopandas as gpd
import pandas as pd
from loguru import logger
from shapely.geometry import shape

from .colors import PrecomputedYears
from .features import DERIVED_FIELDS, BoundaryCollection, BoundaryFeature
from .reprojection import get_crs


def load_boundaries(
    path: Union[str, Path], crs: str, area_key: Optional[str] = None
) -> BoundaryCollection:
    """
    Load a raw boundary file and tag it with the caller's source CRS.

    The CRS is never guessed from the data; an unsupported one fails here,
    before any work is done.

    Args:
        path: GeoJSON, Shapefile, GeoPackage...
        crs: Source CRS identifier (must be supported)
        area_key: Optional property already holding area in km²

    Returns:
        BoundaryCollection in the source CRS
    """
    descriptor = get_crs(crs)
    path = Path(path)
    logger.info(f"🗺️ Loading boundaries from {path}")

    if path.suffix.lower() in (".geojson", ".json"):
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if data.get("type") == "Feature":
            data = {"type": "FeatureCollection", "features": [data]}
    else:
        gdf = gpd.read_file(path)
        logger.debug(f"  📍 File CRS reported by reader: {gdf.crs}")
        data = json.loads(gdf.to_json())

    collection = BoundaryCollection.from_geojson(data, crs=descriptor.code, area_key=area_key)
    logger.success(f"  ✅ Loaded {len(collection):,} features ({descriptor.code})")
    return collection


def _shape_or_none(feature: BoundaryFeature):
    if not feature.geometry:
        return None
    try:
        return shape(feature.geometry)
    except Exception as e:
        logger.debug(f"    ⚠️ Unbuildable geometry for feature {feature.id!r}: {e}")
        return None


def features_to_geodataframe(
    features: Sequence[BoundaryFeature], crs: str = "EPSG:4326"
) -> gpd.GeoDataFrame:
    """GeoDataFrame of features with derived fields as columns (color as a list)."""
    records = []
    for feature in features:
        record = dict(feature.properties)
        record["area_km2"] = feature.area_km2
        record["population"] = feature.population
        record["density"] = feature.density
        record["has_population_data"] = feature.has_population_data
        record["color"] = list(feature.color) if feature.color is not None else None
        records.append(record)

    geometries = [_shape_or_none(f) for f in features]
    return gpd.GeoDataFrame(pd.DataFrame.from_records(records), geometry=geometries, crs=crs)


def collection_metadata(features: Sequence[BoundaryFeature], crs: str = "EPSG:4326") -> Dict[str, Any]:
    """
    Summary of a feature set: counts, geometry types, bounds, derived-field gaps.
    """
    if not features:
        return {
            "feature_count": 0,
            "geometry_types": {},
            "bounds": None,
            "null_counts": {name: 0 for name in DERIVED_FIELDS},
        }

    gdf = features_to_geodataframe(features, crs=crs)
    has_geometry = gdf.geometry.notna() & ~gdf.geometry.is_empty
    bounds = gdf.loc[has_geometry].total_bounds if has_geometry.any() else None

    return {
        "feature_count": int(len(gdf)),
        "geometry_types": {
            str(k): int(v) for k, v in gdf.geometry.geom_type.value_counts().items()
        },
        "bounds": (
            {
                "minx": float(bounds[0]),
                "miny": float(bounds[1]),
                "maxx": float(bounds[2]),
                "maxy": float(bounds[3]),
            }
            if bounds is not None
            else None
        ),
        "null_counts": {name: int(gdf[name].isna().sum()) for name in DERIVED_FIELDS},
    }


def _json_default(value: Any) -> Any:
    # numpy scalars sneak in from pandas-built source properties
    if hasattr(value, "item"):
        return value.item()
    return str(value)


def export_years(
    precomputed: PrecomputedYears,
    output_dir: Union[str, Path],
    stem: str = "population_density",
    precision: Optional[int] = 6,
) -> List[Path]:
    """
    Write one GeoJSON FeatureCollection per year and a legend sidecar.

    Args:
        precomputed: Color-stamped features per year
        output_dir: Directory for the output files (created if missing)
        stem: File name prefix
        precision: Decimals kept for coordinates and float properties

    Returns:
        Paths written, years first, legend last
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"💾 Exporting {len(precomputed)} yearly layers to {output_dir}")

    written: List[Path] = []
    for year, features in precomputed.items():
        path = output_dir / f"{stem}_{year}.geojson"
        collection = {
            "type": "FeatureCollection",
            "name": f"{stem}_{year}",
            "features": [f.to_geojson(precision) for f in features],
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(collection, f, default=_json_default, separators=(",", ":"))
        logger.debug(f"  📅 {year}: {len(features):,} features → {path.name}")
        written.append(path)

    legend_path = output_dir / f"{stem}_legend.json"
    legend = {
        year: {
            "thresholds": list(scale.thresholds),
            "buckets": scale.legend(),
            "no_data_color": list(scale.no_data_color),
        }
        for year, scale in precomputed.scales.items()
    }
    with open(legend_path, "w", encoding="utf-8") as f:
        json.dump(legend, f, indent=2)
    written.append(legend_path)

    logger.success(f"  ✅ Wrote {len(written)} files")
    return written
