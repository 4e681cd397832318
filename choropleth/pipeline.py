"""
pipeline.py - Choropleth pipeline orchestration

Offline preparation (reproject, aggregate, precompute per-year colors) and
the interactive per-frame filtering (zoom LOD, then viewport culling) wired
together:

    pipeline = ChoroplethPipeline(crs="EPSG:5514", join_key="cz_zsj")
    prepared = pipeline.prepare(boundaries, population_rows)
    layer = prepared.features_for_year("2021")
    visible = prepared.view.visible(layer, zoom=9.5, bbox=BBox(14.3, 50.0, 14.6, 50.2))
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, Tuple, Union

from loguru import logger

from .colors import DENSITY_COLORS, NO_DATA_COLOR, PrecomputedYears, precompute_by_year, validate_color, validate_palette
from .features import BBox, BoundaryCollection, BoundaryFeature
from .lod import DEFAULT_ZOOM_BANDS, ZoomBands, ZoomFilter
from .population import JoinKey, PopulationTable, Rows, aggregate_with_key, get_join_key, normalise_label
from .reprojection import CrsDescriptor, get_crs, reproject_collection
from .viewport import VIEWPORT_BUFFER_FRACTION, VIEWPORT_MIN_ZOOM, filter_by_viewport


class MapView:
    """
    Per-frame filtering for an interactive map.

    Owns the LOD sort cache. Keep one view per feature layer; switching the
    layer (a new year) rebuilds the cache on the next call.
    """

    def __init__(
        self,
        zoom_bands: ZoomBands = DEFAULT_ZOOM_BANDS,
        viewport_buffer: float = VIEWPORT_BUFFER_FRACTION,
        viewport_min_zoom: float = VIEWPORT_MIN_ZOOM,
    ):
        if viewport_buffer < 0:
            raise ValueError(f"Viewport buffer must be non-negative, got {viewport_buffer}")
        self.zoom_filter = ZoomFilter(bands=zoom_bands)
        self.viewport_buffer = viewport_buffer
        self.viewport_min_zoom = viewport_min_zoom

    def visible(
        self, features: Sequence[BoundaryFeature], zoom: float, bbox: Optional[BBox] = None
    ) -> Sequence[BoundaryFeature]:
        """Features to render at ``zoom`` inside ``bbox`` (no culling without a bbox)."""
        detailed = self.zoom_filter(features, zoom)
        if bbox is None:
            return detailed
        return filter_by_viewport(
            detailed,
            bbox,
            zoom,
            buffer_fraction=self.viewport_buffer,
            min_zoom=self.viewport_min_zoom,
        )

    def invalidate(self) -> None:
        self.zoom_filter.invalidate()


@dataclass(frozen=True)
class PreparedChoropleth:
    """Everything the interactive loop needs, computed once."""

    features: Tuple[BoundaryFeature, ...]
    population: PopulationTable
    years: PrecomputedYears
    view: MapView = field(compare=False)

    def features_for_year(self, year: Optional[Any] = None) -> Tuple[BoundaryFeature, ...]:
        """
        Color-stamped features for ``year``.

        None selects the latest year. An unknown year (or no population data
        at all) yields the reprojected features without population.
        """
        if year is None:
            year = self.population.latest_year
        label = normalise_label(year)
        if label is not None and label in self.years:
            return self.years[label]
        logger.debug(f"📅 No precomputed layer for year {year!r}, using bare features")
        return self.features


class ChoroplethPipeline:
    """
    Population density choropleth for one dataset convention.

    Palette, colors and CRS are checked when the pipeline is built so that a
    misconfiguration fails before any data is read.

    Args:
        crs: Source CRS of the boundaries
        join_key: Join-key convention name or descriptor
        palette: Ordered RGBA colors, lowest density first
        no_data_color: Color for features without density
        zoom_bands: Zoom → kept-fraction table
        viewport_buffer: Viewport growth on every side, as a fraction of its width
        viewport_min_zoom: Zoom from which viewport culling applies
    """

    def __init__(
        self,
        crs: Union[str, CrsDescriptor],
        join_key: Union[str, JoinKey],
        palette: Sequence[Any] = DENSITY_COLORS,
        no_data_color: Any = NO_DATA_COLOR,
        zoom_bands: ZoomBands = DEFAULT_ZOOM_BANDS,
        viewport_buffer: float = VIEWPORT_BUFFER_FRACTION,
        viewport_min_zoom: float = VIEWPORT_MIN_ZOOM,
    ):
        self.crs = get_crs(crs)
        self.join_key = get_join_key(join_key)
        self.palette = validate_palette(palette)
        self.no_data_color = validate_color(no_data_color)
        if viewport_buffer < 0:
            raise ValueError(f"Viewport buffer must be non-negative, got {viewport_buffer}")
        self.zoom_bands = zoom_bands
        self.viewport_buffer = viewport_buffer
        self.viewport_min_zoom = viewport_min_zoom

    def new_view(self) -> MapView:
        return MapView(
            zoom_bands=self.zoom_bands,
            viewport_buffer=self.viewport_buffer,
            viewport_min_zoom=self.viewport_min_zoom,
        )

    def prepare(
        self,
        boundaries: BoundaryCollection,
        population_rows: Union[Rows, PopulationTable],
    ) -> PreparedChoropleth:
        """
        Run the offline stages: reproject, aggregate, precompute colors.

        Inputs are not modified; running it twice on the same inputs gives
        equal results.

        Args:
            boundaries: Raw boundaries in this pipeline's source CRS
            population_rows: Raw population rows, or an already aggregated table

        Returns:
            PreparedChoropleth ready for the interactive loop
        """
        logger.info(
            f"🚀 Preparing choropleth: {len(boundaries):,} boundaries, "
            f"{self.crs.code}, join on '{self.join_key.property_name}'"
        )

        reprojected = reproject_collection(boundaries, self.crs)

        if isinstance(population_rows, PopulationTable):
            population = population_rows
        else:
            population = aggregate_with_key(population_rows, self.join_key)

        years = precompute_by_year(
            reprojected.features,
            population,
            palette=self.palette,
            join_key_property=self.join_key.property_name,
            no_data_color=self.no_data_color,
        )

        if population.years:
            latest = years[population.latest_year]
            matched = sum(1 for f in latest if f.has_population_data)
            logger.success(
                f"✅ Prepared {len(years)} years; {matched:,}/{len(latest):,} features "
                f"matched in {population.latest_year}"
            )
        else:
            logger.warning("⚠️ No population data aggregated; every feature will be no-data")

        return PreparedChoropleth(
            features=reprojected.features,
            population=population,
            years=years,
            view=self.new_view(),
        )
