"""
colors.py

Per-Year Color Precomputation for the choropleth pipeline.

Colors come from rank-based quantile buckets: thresholds are picked by
position in the sorted list of densities, not by value range, so each
bucket holds roughly the same number of areas however skewed the density
distribution is. Thresholds are rebuilt for every year on its own values;
the same density can land in different buckets in different years.
"""

import math
from collections.abc import Mapping as MappingABC
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from .features import RGBA, BoundaryFeature
from .population import augment_with_population, normalise_label, year_sort_key

NO_DATA_COLOR: RGBA = (180, 180, 180, 120)

# 20-step sequential blue scale, white → navy, alpha rising with density
DENSITY_COLORS: Tuple[RGBA, ...] = (
    (255, 255, 255, 200),
    (240, 248, 255, 200),
    (222, 235, 247, 205),
    (200, 221, 240, 205),
    (188, 210, 232, 210),
    (173, 200, 227, 212),
    (158, 190, 220, 214),
    (140, 180, 214, 216),
    (123, 169, 208, 218),
    (107, 160, 203, 220),
    (92, 150, 198, 223),
    (78, 140, 192, 226),
    (64, 130, 186, 229),
    (50, 115, 177, 232),
    (40, 100, 165, 234),
    (30, 85, 153, 237),
    (22, 70, 142, 240),
    (15, 58, 125, 242),
    (10, 45, 108, 244),
    (5, 30, 90, 246),
)


def validate_color(color: Any) -> RGBA:
    """Coerce a color to an RGBA tuple of ints in 0..255."""
    try:
        channels = tuple(int(c) for c in color)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid RGBA color {color!r}") from e
    if len(channels) != 4 or any(c < 0 or c > 255 for c in channels):
        raise ValueError(f"Invalid RGBA color {color!r}: expected 4 channels in 0..255")
    return channels  # type: ignore[return-value]


def validate_palette(palette: Iterable[Any]) -> Tuple[RGBA, ...]:
    """Check a palette is a non-empty ordered sequence of RGBA colors."""
    colors = tuple(validate_color(c) for c in palette)
    if not colors:
        raise ValueError("Color palette must contain at least one color")
    return colors


def quantile_thresholds(values: Iterable[float], bucket_count: int) -> List[float]:
    """
    Rank-based thresholds for ``bucket_count`` buckets.

    Threshold ``i`` (1 ≤ i < bucket_count) is the sorted value at index
    ``floor(i * n / bucket_count)``, clamped to the last index. Non-finite
    values are ignored; no finite values means no thresholds.
    """
    finite = np.sort(np.array([v for v in values if v is not None and math.isfinite(v)], dtype=float))
    n = len(finite)
    if n == 0:
        return []
    return [
        float(finite[min(n - 1, (i * n) // bucket_count)]) for i in range(1, bucket_count)
    ]


@dataclass(frozen=True)
class ColorBucketScale:
    """N colors, N - 1 ascending thresholds, and a fixed no-data color."""

    colors: Tuple[RGBA, ...]
    thresholds: Tuple[float, ...] = ()
    no_data_color: RGBA = NO_DATA_COLOR

    @classmethod
    def from_values(
        cls,
        values: Iterable[Optional[float]],
        palette: Sequence[Any] = DENSITY_COLORS,
        no_data_color: Any = NO_DATA_COLOR,
    ) -> "ColorBucketScale":
        colors = validate_palette(palette)
        thresholds = quantile_thresholds(values, len(colors))
        return cls(colors=colors, thresholds=tuple(thresholds), no_data_color=validate_color(no_data_color))

    def bucket_index(self, value: Optional[float]) -> Optional[int]:
        """Smallest bucket whose threshold ``value`` does not exceed; None for no data."""
        if value is None or not math.isfinite(value):
            return None
        bucket = int(np.searchsorted(self.thresholds, value, side="left"))
        return min(bucket, len(self.colors) - 1)

    def color_for(self, value: Optional[float]) -> RGBA:
        bucket = self.bucket_index(value)
        if bucket is None:
            return self.no_data_color
        return self.colors[bucket]

    def legend(self) -> List[Dict[str, Any]]:
        """
        Legend entries, one per bucket.

        Each entry holds the bucket index, its color, and the value range it
        covers (``lower`` exclusive, ``upper`` inclusive; open ends are None).
        Without thresholds every value falls in bucket 0.
        """
        entries = []
        bounds: List[Optional[float]] = [None, *self.thresholds, None]
        for i, color in enumerate(self.colors):
            if i >= len(bounds) - 1:
                break
            entries.append(
                {"bucket": i, "lower": bounds[i], "upper": bounds[i + 1], "color": list(color)}
            )
        return entries


@dataclass(frozen=True)
class PrecomputedYears(MappingABC):
    """Year → color-stamped features, with the color scale used for each year."""

    features_by_year: Mapping[str, Tuple[BoundaryFeature, ...]] = field(default_factory=dict)
    scales: Mapping[str, ColorBucketScale] = field(default_factory=dict)

    def __getitem__(self, year: str) -> Tuple[BoundaryFeature, ...]:
        return self.features_by_year[normalise_label(year)]

    def __iter__(self) -> Iterator[str]:
        return iter(self.features_by_year)

    def __len__(self) -> int:
        return len(self.features_by_year)

    @property
    def years(self) -> List[str]:
        return list(self.features_by_year)


def color_features(
    features: Sequence[BoundaryFeature], scale: ColorBucketScale
) -> Tuple[BoundaryFeature, ...]:
    """Stamp each feature with the color its density maps to."""
    return tuple(f.with_color(scale.color_for(f.density)) for f in features)


def precompute_by_year(
    features: Sequence[BoundaryFeature],
    population_by_year: Mapping[str, Mapping[str, float]],
    palette: Sequence[Any] = DENSITY_COLORS,
    join_key_property: str = "uzemi_kod",
    no_data_color: Any = NO_DATA_COLOR,
) -> PrecomputedYears:
    """
    Augment and color the feature set once per year.

    For every year: join that year's population, collect the finite
    densities, build rank-based thresholds from them, and stamp every
    feature with its bucket color (no-data gray when density is None).

    Args:
        features: Reprojected features with area
        population_by_year: Year → (area code → population)
        palette: Ordered RGBA colors, lowest density first
        join_key_property: Boundary property holding the area code
        no_data_color: Color for features without density

    Returns:
        PrecomputedYears mapping, years in calendar order

    Raises:
        ValueError: if the palette or no-data color is invalid
    """
    colors = validate_palette(palette)
    no_data = validate_color(no_data_color)

    features_by_year: Dict[str, Tuple[BoundaryFeature, ...]] = {}
    scales: Dict[str, ColorBucketScale] = {}

    tables = sorted(
        (
            (normalise_label(year), table)
            for year, table in population_by_year.items()
            if normalise_label(year) is not None
        ),
        key=lambda item: year_sort_key(item[0]),
    )
    logger.info(f"🎨 Precomputing colors for {len(tables)} years ({len(colors)} buckets)")

    for year, table in tables:
        augmented = augment_with_population(features, table, join_key_property)
        scale = ColorBucketScale.from_values(
            (f.density for f in augmented), palette=colors, no_data_color=no_data
        )
        features_by_year[year] = color_features(augmented, scale)
        scales[year] = scale

        with_data = sum(1 for f in augmented if f.density is not None)
        logger.debug(f"  📅 {year}: {with_data:,}/{len(augmented):,} features with density")

    return PrecomputedYears(features_by_year=features_by_year, scales=scales)
