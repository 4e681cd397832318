"""
reprojection.py

Reprojection and Area Engine for the choropleth pipeline.

Boundary datasets arrive in a national projected grid. Area has to be
measured in those planar metres (area measured on longitude/latitude degrees
is meaningless), and only afterwards are the vertices converted to WGS84 for
display. This module does both in one pass per feature:

1. Planar area with the shoelace formula: outer ring minus holes, summed
   over the polygons of a multi-polygon, converted to km².
2. Vertex-by-vertex reprojection through a pyproj Transformer, keeping the
   exact nesting of the coordinate arrays (rings stay rings, vertex counts
   never change).

Supported source systems are fixed descriptors with hard-coded projection
constants. Anything else is refused up front: silently returning projected
metres as if they were degrees would poison every density and every map.

Usage:
    from choropleth.reprojection import reproject_collection

    wgs84 = reproject_collection(collection)      # collection.crs == "EPSG:5514"
"""

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from loguru import logger
from pyproj import CRS, Transformer

from .features import BoundaryCollection, BoundaryFeature

GEOGRAPHIC_CRS = "EPSG:4326"


class UnsupportedCRSError(ValueError):
    """Raised when reprojection is requested from a CRS this engine does not implement."""


@dataclass(frozen=True)
class CrsDescriptor:
    """
    A supported planar source CRS.

    Attributes:
        code: Identifier such as ``EPSG:27700``
        name: Human readable name for logs
        proj_string: PROJ definition with the fixed projection constants
        units_per_km: Projected units in one kilometre (1000 for metres)
    """

    code: str
    name: str
    proj_string: str
    units_per_km: float = 1000.0
    _transformers: Dict[str, Transformer] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    @property
    def crs(self) -> CRS:
        return CRS.from_proj4(self.proj_string)

    def _transformer(self, direction: str) -> Transformer:
        if direction not in self._transformers:
            if direction == "forward":
                transformer = Transformer.from_crs(self.crs, GEOGRAPHIC_CRS, always_xy=True)
            else:
                transformer = Transformer.from_crs(GEOGRAPHIC_CRS, self.crs, always_xy=True)
            self._transformers[direction] = transformer
            logger.debug(f"🌐 Built {direction} transformer for {self.code} ({self.name})")
        return self._transformers[direction]

    @property
    def to_geographic(self) -> Transformer:
        """Projected (x, y) → geographic (lon, lat)."""
        return self._transformer("forward")

    @property
    def from_geographic(self) -> Transformer:
        """Geographic (lon, lat) → projected (x, y)."""
        return self._transformer("inverse")


BRITISH_NATIONAL_GRID = CrsDescriptor(
    code="EPSG:27700",
    name="OSGB36 / British National Grid",
    proj_string=(
        "+proj=tmerc +lat_0=49 +lon_0=-2 +k=0.9996012717 +x_0=400000 +y_0=-100000 "
        "+ellps=airy +towgs84=446.448,-125.157,542.06,0.15,0.247,0.842,-20.489 "
        "+units=m +no_defs"
    ),
)

S_JTSK_KROVAK = CrsDescriptor(
    code="EPSG:5514",
    name="S-JTSK / Krovak East North",
    proj_string=(
        "+proj=krovak +lat_0=49.5 +lon_0=24.83333333333333 +alpha=30.28813972222222 "
        "+k=0.9999 +x_0=0 +y_0=0 +a=6377397.155 +b=6356078.963 "
        "+towgs84=570.69,85.69,462.84,4.99821,1.58676,5.2611,3.56 +units=m +no_defs"
    ),
)

SUPPORTED_CRS: Dict[str, CrsDescriptor] = {
    BRITISH_NATIONAL_GRID.code: BRITISH_NATIONAL_GRID,
    S_JTSK_KROVAK.code: S_JTSK_KROVAK,
}


def get_crs(identifier: Union[str, CrsDescriptor]) -> CrsDescriptor:
    """
    Resolve a CRS identifier to a supported descriptor.

    Args:
        identifier: Descriptor, or code like ``EPSG:5514`` / ``epsg:5514`` / ``5514``

    Returns:
        The matching CrsDescriptor

    Raises:
        UnsupportedCRSError: if the identifier is not one of SUPPORTED_CRS
    """
    if isinstance(identifier, CrsDescriptor):
        return identifier

    text = str(identifier).strip().upper()
    if text and not text.startswith("EPSG:"):
        text = f"EPSG:{text}"

    descriptor = SUPPORTED_CRS.get(text)
    if descriptor is None:
        raise UnsupportedCRSError(
            f"Unsupported source CRS '{identifier}'. "
            f"Supported: {', '.join(sorted(SUPPORTED_CRS))}"
        )
    return descriptor


# ---------------------------------------------------------------------------
# Area
# ---------------------------------------------------------------------------


def ring_signed_area(ring: Sequence[Sequence[float]]) -> float:
    """Signed shoelace area of a ring in squared projected units."""
    coords = np.asarray(ring, dtype=float)
    if coords.ndim != 2 or coords.shape[0] == 0 or coords.shape[1] < 2:
        raise ValueError("ring must be a non-empty sequence of (x, y) positions")
    x = coords[:, 0]
    y = coords[:, 1]
    return float(np.sum(x[:-1] * y[1:] - x[1:] * y[:-1]) / 2.0)


def polygon_area(rings: Sequence[Sequence[Sequence[float]]]) -> float:
    """Outer ring area minus the area of every hole, in squared projected units."""
    if not rings:
        raise ValueError("polygon has no rings")
    area = abs(ring_signed_area(rings[0]))
    for hole in rings[1:]:
        area -= abs(ring_signed_area(hole))
    return area


def geometry_area_km2(
    geometry: Optional[Dict[str, Any]], units_per_km: float = 1000.0
) -> Optional[float]:
    """
    Planar area of a Polygon or MultiPolygon in km².

    Returns None for other geometry types and for geometry the shoelace
    formula cannot handle (empty rings, non-numeric coordinates).
    """
    if not geometry:
        return None

    geom_type = geometry.get("type")
    coordinates = geometry.get("coordinates")
    try:
        if geom_type == "Polygon":
            area = polygon_area(coordinates)
        elif geom_type == "MultiPolygon":
            area = sum(polygon_area(polygon) for polygon in coordinates)
        else:
            return None
    except (TypeError, ValueError, IndexError):
        return None

    area_km2 = abs(area) / (units_per_km * units_per_km)
    return area_km2 if math.isfinite(area_km2) else None


# ---------------------------------------------------------------------------
# Reprojection
# ---------------------------------------------------------------------------


def _is_position(value: Any) -> bool:
    return (
        isinstance(value, (list, tuple))
        and len(value) >= 2
        and isinstance(value[0], (int, float))
        and not isinstance(value[0], bool)
    )


def reproject_coordinates(coords: Any, transformer: Transformer) -> Any:
    """
    Map every position of a nested coordinate array through ``transformer``.

    Nesting depth, ordering and vertex counts are preserved; extra ordinates
    (z, m) are carried through untouched. A ring is transformed as one
    vectorised call.

    Raises:
        TypeError / ValueError: on non-numeric or ragged coordinates
    """
    if _is_position(coords):
        x, y = transformer.transform(coords[0], coords[1])
        if not (math.isfinite(x) and math.isfinite(y)):
            raise ValueError(f"position {coords!r} could not be transformed")
        return [x, y, *coords[2:]]

    if not isinstance(coords, (list, tuple)):
        raise TypeError(f"Unexpected coordinate value: {coords!r}")

    if coords and _is_position(coords[0]):
        array = np.asarray(coords, dtype=float)
        if array.ndim != 2:
            raise ValueError("ragged coordinate ring")
        x, y = transformer.transform(array[:, 0], array[:, 1])
        if not (np.isfinite(x).all() and np.isfinite(y).all()):
            raise ValueError("ring could not be transformed")
        array = array.copy()
        array[:, 0] = x
        array[:, 1] = y
        return array.tolist()

    return [reproject_coordinates(c, transformer) for c in coords]


def reproject_feature(
    feature: BoundaryFeature, crs: Union[str, CrsDescriptor]
) -> BoundaryFeature:
    """
    Reproject one feature to WGS84, measuring its area before conversion.

    A feature without geometry is returned unchanged. A feature whose
    coordinates cannot be transformed keeps its original geometry and gets
    ``area_km2 = None``; the rest of the collection is unaffected.
    """
    descriptor = get_crs(crs)
    if not feature.geometry:
        return feature

    area_km2 = geometry_area_km2(feature.geometry, descriptor.units_per_km)

    try:
        coordinates = reproject_coordinates(
            feature.geometry.get("coordinates"), descriptor.to_geographic
        )
    except (TypeError, ValueError, IndexError) as e:
        logger.debug(f"    ⚠️ Could not reproject feature {feature.id!r}: {e}")
        return replace(feature, area_km2=None)

    geometry = {**feature.geometry, "coordinates": coordinates}
    return replace(feature, geometry=geometry, area_km2=area_km2, approx_bbox=None)


def reproject_collection(
    collection: BoundaryCollection, crs: Optional[Union[str, CrsDescriptor]] = None
) -> BoundaryCollection:
    """
    Reproject a whole collection to WGS84 with per-feature planar areas.

    Args:
        collection: Features in a supported projected CRS
        crs: Source CRS; defaults to ``collection.crs``

    Returns:
        New collection tagged EPSG:4326, same feature order

    Raises:
        UnsupportedCRSError: if the source CRS is not supported
    """
    descriptor = get_crs(crs if crs is not None else collection.crs)
    logger.info(
        f"🔄 Reprojecting {len(collection.features):,} features from "
        f"{descriptor.code} ({descriptor.name}) to {GEOGRAPHIC_CRS}"
    )

    features = tuple(reproject_feature(f, descriptor) for f in collection.features)

    without_area = sum(1 for f in features if f.geometry and f.area_km2 is None)
    if without_area:
        logger.warning(f"  ⚠️ {without_area:,} features have no computable area")

    logger.success(f"  ✅ Reprojected {len(features):,} features")
    return BoundaryCollection(features=features, crs=GEOGRAPHIC_CRS, metadata=collection.metadata)


def project_point(lon: float, lat: float, crs: Union[str, CrsDescriptor]) -> Tuple[float, float]:
    """Geographic (lon, lat) → projected (x, y) in ``crs``."""
    x, y = get_crs(crs).from_geographic.transform(lon, lat)
    return float(x), float(y)


def geographic_point(x: float, y: float, crs: Union[str, CrsDescriptor]) -> Tuple[float, float]:
    """Projected (x, y) in ``crs`` → geographic (lon, lat)."""
    lon, lat = get_crs(crs).to_geographic.transform(x, y)
    return float(lon), float(lat)


def supported_codes() -> List[str]:
    return sorted(SUPPORTED_CRS)
