"""
lod.py

Zoom-Adaptive Level-of-Detail filter.

Below full-detail zoom only a prefix of the features, sorted by area
descending, is handed to the renderer: the largest areas are the ones worth
showing at a glance, and taking a prefix of one fixed order means the
visible set only ever grows as the user zooms in.

Sorting tens of thousands of features on every pan/zoom event is too slow,
so the sorted order is memoized in a single-slot ``LodSortCache`` keyed on
the identity of the feature sequence. Filtering the same sequence again at a
different zoom only recomputes the prefix length.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from loguru import logger

from .features import BoundaryFeature


@dataclass(frozen=True)
class ZoomBands:
    """
    Zoom → fraction of the area-sorted features to keep.

    Attributes:
        full_detail_zoom: At or above this zoom nothing is filtered
        bands: (min_zoom, fraction) pairs, highest zoom first; lower bound inclusive
        floor_fraction: Fraction below the lowest band
    """

    full_detail_zoom: float = 11
    bands: Tuple[Tuple[float, float], ...] = (
        (10, 0.50),
        (9, 0.20),
        (8, 0.08),
        (7, 0.03),
        (6, 0.01),
    )
    floor_fraction: float = 0.005

    def __post_init__(self):
        zooms = [z for z, _ in self.bands]
        if zooms != sorted(zooms, reverse=True):
            raise ValueError(f"Zoom bands must be ordered highest zoom first: {zooms}")
        if zooms and zooms[0] >= self.full_detail_zoom:
            raise ValueError("Zoom bands must lie below full_detail_zoom")

        fractions = [f for _, f in self.bands] + [self.floor_fraction]
        if any(not (0 < f <= 1) for f in fractions):
            raise ValueError(f"Zoom band fractions must be in (0, 1]: {fractions}")
        if fractions != sorted(fractions, reverse=True):
            raise ValueError(f"Zoom band fractions must not grow as zoom decreases: {fractions}")

    def fraction_for(self, zoom: float) -> float:
        if zoom >= self.full_detail_zoom:
            return 1.0
        for min_zoom, fraction in self.bands:
            if zoom >= min_zoom:
                return fraction
        return self.floor_fraction


DEFAULT_ZOOM_BANDS = ZoomBands()


def _rankable(feature: BoundaryFeature) -> bool:
    area = feature.area_km2
    return area is not None and math.isfinite(area) and area > 0


def sort_by_area(features: Sequence[BoundaryFeature]) -> Tuple[BoundaryFeature, ...]:
    """Features with a positive finite area, largest first; ties keep input order."""
    ranked = [f for f in features if _rankable(f)]
    ranked.sort(key=lambda f: f.area_km2, reverse=True)
    return tuple(ranked)


class LodSortCache:
    """
    Single-slot memo of the area-descending order of one feature sequence.

    The slot is a single ``(features, sorted)`` tuple swapped in one
    assignment, so a concurrent reader sees either the previous entry or the
    new one. Identity, not equality, decides a hit.
    """

    def __init__(self):
        self._entry: Optional[Tuple[Sequence[BoundaryFeature], Tuple[BoundaryFeature, ...]]] = None
        self.hits = 0
        self.misses = 0

    def sorted_for(self, features: Sequence[BoundaryFeature]) -> Tuple[BoundaryFeature, ...]:
        entry = self._entry
        if entry is not None and entry[0] is features:
            self.hits += 1
            return entry[1]

        self.misses += 1
        ordered = sort_by_area(features)
        self._entry = (features, ordered)
        logger.debug(f"🗂️ LOD cache rebuilt: {len(ordered):,}/{len(features):,} rankable features")
        return ordered

    def invalidate(self) -> None:
        self._entry = None

    @property
    def is_empty(self) -> bool:
        return self._entry is None


def keep_count(sorted_count: int, fraction: float) -> int:
    """``max(1, floor(sorted_count * fraction))``, or 0 when nothing is rankable."""
    if sorted_count == 0:
        return 0
    return max(1, int(math.floor(sorted_count * fraction)))


def filter_by_zoom(
    features: Sequence[BoundaryFeature],
    zoom: float,
    cache: Optional[LodSortCache] = None,
    bands: ZoomBands = DEFAULT_ZOOM_BANDS,
) -> Sequence[BoundaryFeature]:
    """
    Subset of ``features`` appropriate for ``zoom``.

    At or above full-detail zoom the input is returned as is. Below it the
    result is a prefix of the area-descending order; features without a
    positive finite area are left out.

    Args:
        features: Feature sequence (its identity keys the cache)
        zoom: Current map zoom
        cache: Sort memo to reuse across calls; None sorts every time
        bands: Zoom → fraction table

    Returns:
        The input itself, or a tuple prefix of its area-sorted order
    """
    if zoom >= bands.full_detail_zoom:
        return features

    ordered = cache.sorted_for(features) if cache is not None else sort_by_area(features)
    count = keep_count(len(ordered), bands.fraction_for(zoom))
    return ordered[:count]


class ZoomFilter:
    """Stateful zoom filter owning one sort cache; what an interactive view holds on to."""

    def __init__(self, bands: ZoomBands = DEFAULT_ZOOM_BANDS, cache: Optional[LodSortCache] = None):
        self.bands = bands
        self.cache = cache if cache is not None else LodSortCache()

    def __call__(self, features: Sequence[BoundaryFeature], zoom: float) -> Sequence[BoundaryFeature]:
        return filter_by_zoom(features, zoom, cache=self.cache, bands=self.bands)

    def invalidate(self) -> None:
        self.cache.invalidate()
