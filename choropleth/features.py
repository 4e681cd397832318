"""
features.py

Boundary feature model for the choropleth pipeline.

A boundary feature is a polygon or multi-polygon plus an opaque bag of source
properties. The pipeline never inspects those properties except through a
key name supplied by the caller (the join key). Everything the pipeline
derives (area, population, density, data flag, color) lives in typed fields
of the feature itself, so downstream code never has to guess at property
names.

Features are frozen. Augmenting a feature for a given year produces a new
value with ``dataclasses.replace``; nothing is shared between year variants
except the immutable geometry.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

RGBA = Tuple[int, int, int, int]

DERIVED_FIELDS = ("area_km2", "population", "density", "has_population_data", "color")


@dataclass(frozen=True)
class BBox:
    """Axis-aligned bounding box in geographic degrees."""

    west: float
    south: float
    east: float
    north: float

    @property
    def width(self) -> float:
        return self.east - self.west

    def expanded(self, fraction: float) -> "BBox":
        """
        Grow the box outward by ``fraction`` of its width on every side.

        The width is used for the vertical buffer too, so a viewport keeps a
        uniform margin in degrees.
        """
        if fraction < 0:
            raise ValueError(f"Buffer fraction must be non-negative, got {fraction}")
        buffer = self.width * fraction
        return BBox(
            west=self.west - buffer,
            south=self.south - buffer,
            east=self.east + buffer,
            north=self.north + buffer,
        )

    def intersects(self, other: "BBox") -> bool:
        return not (
            self.east < other.west
            or self.west > other.east
            or self.north < other.south
            or self.south > other.north
        )

    def contains(self, other: "BBox") -> bool:
        return (
            self.west <= other.west
            and self.south <= other.south
            and self.east >= other.east
            and self.north >= other.north
        )


def _sample_ring(ring: Any) -> Iterable[Tuple[float, float]]:
    # first, middle and last vertex only
    n = len(ring)
    if n == 0:
        return ()
    indices = {0, n // 2, n - 1}
    return ((float(ring[i][0]), float(ring[i][1])) for i in sorted(indices))


def approximate_bbox(geometry: Optional[Mapping[str, Any]]) -> Optional[BBox]:
    """
    Fast approximate bounding box of a Polygon or MultiPolygon geometry.

    Only the first, middle and last vertex of every ring are sampled. The
    result may under-estimate the true extent of a ring, but it is never
    empty for a non-empty ring.

    Args:
        geometry: GeoJSON geometry mapping

    Returns:
        BBox, or None when no coordinate could be sampled
    """
    if not geometry:
        return None

    geom_type = geometry.get("type")
    coordinates = geometry.get("coordinates")
    if geom_type == "Polygon":
        polygons = [coordinates]
    elif geom_type == "MultiPolygon":
        polygons = coordinates
    else:
        return None

    xs = []
    ys = []
    try:
        for polygon in polygons or ():
            for ring in polygon or ():
                for x, y in _sample_ring(ring):
                    xs.append(x)
                    ys.append(y)
    except (TypeError, ValueError, IndexError, KeyError):
        return None

    if not xs:
        return None
    if not all(math.isfinite(v) for v in xs + ys):
        return None

    return BBox(west=min(xs), south=min(ys), east=max(xs), north=max(ys))


@dataclass(frozen=True)
class BoundaryFeature:
    """
    A boundary polygon with its opaque source properties and derived fields.

    Invariant: ``density`` is None if and only if ``population`` is None or
    ``area_km2`` is None or not positive.
    """

    geometry: Optional[Dict[str, Any]]
    properties: Mapping[str, Any] = field(default_factory=dict)
    id: Optional[Any] = None
    area_km2: Optional[float] = None
    population: Optional[float] = None
    density: Optional[float] = None
    has_population_data: bool = False
    color: Optional[RGBA] = None
    approx_bbox: Optional[BBox] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        # sampled once per geometry; replace() carries it to every year variant
        if self.approx_bbox is None:
            object.__setattr__(self, "approx_bbox", approximate_bbox(self.geometry))

    @classmethod
    def from_geojson(
        cls, feature: Mapping[str, Any], area_key: Optional[str] = None
    ) -> "BoundaryFeature":
        """
        Build a feature from a GeoJSON Feature mapping.

        Args:
            feature: GeoJSON Feature
            area_key: Optional property holding an already computed area in km²

        Returns:
            BoundaryFeature with source properties copied verbatim
        """
        properties = dict(feature.get("properties") or {})
        area_km2 = None
        if area_key is not None:
            area_km2 = _finite_or_none(properties.get(area_key))

        return cls(
            geometry=feature.get("geometry"),
            properties=properties,
            id=feature.get("id"),
            area_km2=area_km2,
        )

    def code(self, key: str) -> Optional[str]:
        """Join-key value of this feature as a stripped string, or None."""
        value = self.properties.get(key)
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    def with_population(self, population: Optional[float]) -> "BoundaryFeature":
        """Return a copy carrying ``population`` and the density derived from it."""
        density = None
        if population is not None and self.area_km2 is not None and self.area_km2 > 0:
            density = population / self.area_km2

        return replace(
            self,
            population=population,
            density=density,
            has_population_data=population is not None,
            color=None,
        )

    def with_color(self, color: RGBA) -> "BoundaryFeature":
        return replace(self, color=tuple(color))

    def to_geojson(self, precision: Optional[int] = None) -> Dict[str, Any]:
        """
        Render back to a GeoJSON Feature with derived fields as properties.

        Args:
            precision: Optional number of decimals for coordinates and floats

        Returns:
            GeoJSON Feature mapping
        """
        properties = dict(self.properties)
        properties["area_km2"] = _round(self.area_km2, precision)
        properties["population"] = self.population
        properties["density"] = _round(self.density, precision)
        properties["has_population_data"] = self.has_population_data
        if self.color is not None:
            properties["color"] = list(self.color)

        geometry = self.geometry
        if geometry is not None and precision is not None:
            geometry = {
                **geometry,
                "coordinates": round_coordinates(geometry.get("coordinates"), precision),
            }

        result: Dict[str, Any] = {"type": "Feature", "geometry": geometry, "properties": properties}
        if self.id is not None:
            result["id"] = self.id
        return result


@dataclass(frozen=True)
class BoundaryCollection:
    """An ordered, immutable set of boundary features in one CRS."""

    features: Tuple[BoundaryFeature, ...]
    crs: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.features)

    def __iter__(self):
        return iter(self.features)

    @classmethod
    def from_geojson(
        cls, collection: Mapping[str, Any], crs: str, area_key: Optional[str] = None
    ) -> "BoundaryCollection":
        """
        Build a collection from a GeoJSON FeatureCollection mapping.

        Foreign members other than ``type``, ``features`` and ``crs`` are kept
        as metadata.
        """
        features = tuple(
            BoundaryFeature.from_geojson(f, area_key=area_key)
            for f in collection.get("features") or ()
        )
        metadata = {
            k: v for k, v in collection.items() if k not in ("type", "features", "crs")
        }
        return cls(features=features, crs=crs, metadata=metadata)

    def to_geojson(self, precision: Optional[int] = None) -> Dict[str, Any]:
        return {
            "type": "FeatureCollection",
            **dict(self.metadata),
            "features": [f.to_geojson(precision) for f in self.features],
        }


def round_coordinates(coords: Any, precision: int) -> Any:
    """Round every number in a nested coordinate array, keeping its nesting."""
    if isinstance(coords, (int, float)) and not isinstance(coords, bool):
        return round(float(coords), precision)
    if isinstance(coords, (list, tuple)):
        return [round_coordinates(c, precision) for c in coords]
    return coords


def _round(value: Optional[float], precision: Optional[int]) -> Optional[float]:
    if value is None or precision is None:
        return value
    return round(value, precision)


def _finite_or_none(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None
