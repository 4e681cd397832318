"""End-to-end pipeline tests."""

import pytest

from choropleth.colors import NO_DATA_COLOR
from choropleth.features import BBox
from choropleth.lod import ZoomBands
from choropleth.pipeline import ChoroplethPipeline, MapView
from choropleth.population import aggregate_with_key
from choropleth.reprojection import UnsupportedCRSError

PALETTE_4 = [(255, 255, 255, 200), (160, 190, 220, 215), (60, 120, 180, 230), (5, 30, 90, 246)]


@pytest.fixture
def pipeline():
    return ChoroplethPipeline(crs="EPSG:5514", join_key="cz_zsj", palette=PALETTE_4)


@pytest.fixture
def prepared(pipeline, cz_boundaries, cz_population_rows):
    return pipeline.prepare(cz_boundaries, cz_population_rows)


def test_prepare_computes_area_density_and_colors(prepared):
    layer = prepared.features_for_year("2021")

    assert [f.area_km2 for f in layer] == pytest.approx([2.0, 1.0, 0.25, 4.0])
    assert layer[0].density == pytest.approx(75.0)
    assert layer[1].density == pytest.approx(200.0)
    assert layer[2].density == pytest.approx(160.0)
    assert layer[3].density is None
    assert layer[3].color == NO_DATA_COLOR

    scale = prepared.years.scales["2021"]
    assert scale.bucket_index(layer[0].density) < scale.bucket_index(layer[2].density)
    assert scale.bucket_index(layer[2].density) < scale.bucket_index(layer[1].density)


def test_features_are_in_geographic_coordinates(prepared):
    lon, lat = prepared.features[0].geometry["coordinates"][0][0]
    assert lon == pytest.approx(14.42076, abs=1e-3)
    assert lat == pytest.approx(50.08804, abs=1e-3)
    assert prepared.features[0].population is None


def test_year_selection(prepared):
    assert prepared.features_for_year() is prepared.years["2021"]
    assert prepared.features_for_year(2011) is prepared.years["2011"]
    assert prepared.features_for_year("1999") is prepared.features


def test_float_year_selects_the_same_layer(prepared):
    assert prepared.features_for_year(2021.0) is prepared.years["2021"]
    assert prepared.features_for_year(" 2011 ") is prepared.years["2011"]
    assert prepared.features_for_year(float("nan")) is prepared.features


def test_prepare_is_idempotent_and_leaves_inputs_alone(pipeline, cz_boundaries, cz_population_rows):
    before = cz_boundaries.to_geojson()
    first = pipeline.prepare(cz_boundaries, cz_population_rows)
    second = pipeline.prepare(cz_boundaries, cz_population_rows)

    assert first.years == second.years
    assert first.features == second.features
    assert cz_boundaries.to_geojson() == before


def test_prepare_accepts_aggregated_table(pipeline, cz_boundaries, cz_population_rows):
    table = aggregate_with_key(cz_population_rows, "cz_zsj")
    prepared = pipeline.prepare(cz_boundaries, table)
    assert prepared.population is table


def test_prepare_without_population(pipeline, cz_boundaries):
    prepared = pipeline.prepare(cz_boundaries, [])
    assert len(prepared.years) == 0
    assert prepared.features_for_year() is prepared.features


def test_view_applies_lod_then_viewport(prepared):
    layer = prepared.features_for_year("2021")
    west, south = layer[3].approx_bbox.west, layer[3].approx_bbox.south

    assert len(prepared.view.visible(layer, 12)) == 4
    # zoom 7 keeps the single largest area, the 4 km² unit
    assert list(prepared.view.visible(layer, 7)) == [layer[3]]

    near_largest = BBox(west, south, west + 0.001, south + 0.001)
    assert prepared.view.visible(layer, 12, near_largest) == [layer[3]]
    assert prepared.view.visible(layer, 12, BBox(0.0, 0.0, 1.0, 1.0)) == []
    # below culling zoom the viewport is ignored
    assert list(prepared.view.visible(layer, 8, BBox(0.0, 0.0, 1.0, 1.0))) == [layer[3]]


def test_view_cache_follows_the_layer(prepared):
    view = prepared.view
    view.invalidate()
    view.visible(prepared.years["2021"], 7)
    view.visible(prepared.years["2021"], 8)
    view.visible(prepared.years["2011"], 8)

    cache = view.zoom_filter.cache
    assert (cache.hits, cache.misses) == (1, 2)


@pytest.mark.parametrize(
    "kwargs, error",
    [
        ({"crs": "EPSG:4326"}, UnsupportedCRSError),
        ({"join_key": "nope"}, ValueError),
        ({"palette": []}, ValueError),
        ({"no_data_color": (1, 2, 3)}, ValueError),
        ({"viewport_buffer": -0.5}, ValueError),
    ],
)
def test_misconfiguration_fails_at_construction(kwargs, error):
    params = {"crs": "EPSG:27700", "join_key": "uk_lad", **kwargs}
    with pytest.raises(error):
        ChoroplethPipeline(**params)


def test_map_view_uses_custom_bands(prepared):
    view = MapView(zoom_bands=ZoomBands(full_detail_zoom=8, bands=((7, 0.5),), floor_fraction=0.25))
    layer = prepared.features_for_year("2021")

    assert view.visible(layer, 8) is layer
    assert len(view.visible(layer, 7)) == 2
    assert len(view.visible(layer, 3)) == 1
