"""
viewport.py

Viewport Culling filter.

At zoom 9 and above the LOD filter lets most features through, so features
far outside the screen are dropped before they reach the renderer. Each
feature's extent is its approximate bounding box, sampled once per geometry
(see ``BoundaryFeature.approx_bbox``) and tested against the viewport grown
by a buffer so that areas straddling the screen edge are kept.
"""

import time
from typing import List, Sequence

from loguru import logger

from .features import BBox, BoundaryFeature

VIEWPORT_MIN_ZOOM = 9
VIEWPORT_BUFFER_FRACTION = 0.1
SLOW_FILTER_MS = 10.0


def filter_by_viewport(
    features: Sequence[BoundaryFeature],
    viewport: BBox,
    zoom: float,
    buffer_fraction: float = VIEWPORT_BUFFER_FRACTION,
    min_zoom: float = VIEWPORT_MIN_ZOOM,
) -> Sequence[BoundaryFeature]:
    """
    Features whose approximate bounding box meets the buffered viewport.

    Below ``min_zoom`` the input is returned unchanged. Features with no
    sampleable coordinate are dropped.

    Args:
        features: Zoom-filtered features in geographic coordinates
        viewport: Visible map area
        zoom: Current map zoom
        buffer_fraction: Growth of the viewport on every side, as a fraction of its width
        min_zoom: Zoom from which culling applies

    Returns:
        The input itself, or a list of the retained features in input order
    """
    if zoom < min_zoom:
        return features

    expanded = viewport.expanded(buffer_fraction)

    start = time.perf_counter()
    visible: List[BoundaryFeature] = []
    for feature in features:
        bbox = feature.approx_bbox
        if bbox is not None and bbox.intersects(expanded):
            visible.append(feature)
    elapsed_ms = (time.perf_counter() - start) * 1000

    if elapsed_ms > SLOW_FILTER_MS:
        logger.warning(
            f"⏱️ Slow viewport filtering: {elapsed_ms:.1f}ms for {len(features):,} features"
        )

    return visible
