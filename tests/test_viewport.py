"""Viewport culling tests."""

import time

import pytest

from choropleth.colors import precompute_by_year
from choropleth.features import BBox, BoundaryFeature, approximate_bbox
from choropleth.reprojection import reproject_feature
from choropleth.viewport import filter_by_viewport
from conftest import square, synthetic_features

VIEWPORT = BBox(west=14.0, south=50.0, east=15.0, north=50.5)


def _square_feature(lon, lat, size=0.01, **properties):
    return BoundaryFeature(
        geometry={"type": "Polygon", "coordinates": [square(lon, lat, size)]},
        properties=properties,
        area_km2=1.0,
    )


def test_below_min_zoom_is_a_no_op():
    features = [_square_feature(0.0, 0.0), _square_feature(14.5, 50.2)]
    for zoom in (0, 5, 8, 8.99):
        assert filter_by_viewport(features, VIEWPORT, zoom) is features


@pytest.mark.parametrize("zoom", [9, 10, 14])
def test_feature_inside_viewport_is_kept(zoom):
    inside = _square_feature(14.5, 50.2)
    outside = _square_feature(20.0, 45.0)
    assert VIEWPORT.contains(inside.approx_bbox)
    assert not VIEWPORT.contains(outside.approx_bbox)

    assert filter_by_viewport([inside, outside], VIEWPORT, zoom) == [inside]


def test_buffer_keeps_features_just_outside_the_edge():
    # viewport width 1 degree, so the buffer is 0.1 degree on every side
    near = _square_feature(15.05, 50.2)
    beyond = _square_feature(15.2, 50.2)
    above = _square_feature(14.5, 50.55)

    result = filter_by_viewport([near, beyond, above], VIEWPORT, 10)
    assert result == [near, above]
    assert filter_by_viewport([near], VIEWPORT, 10, buffer_fraction=0.0) == []


def test_straddling_feature_is_kept():
    straddling = _square_feature(13.9, 50.4, size=0.3)
    assert filter_by_viewport([straddling], VIEWPORT, 10) == [straddling]


def test_multipolygon_with_one_part_inside_is_kept():
    feature = BoundaryFeature(
        geometry={
            "type": "MultiPolygon",
            "coordinates": [[square(30.0, 30.0, 0.01)], [square(14.5, 50.2, 0.01)]],
        }
    )
    assert filter_by_viewport([feature], VIEWPORT, 10) == [feature]


def test_features_without_sampleable_geometry_are_dropped():
    features = [
        BoundaryFeature(geometry=None),
        BoundaryFeature(geometry={"type": "Polygon", "coordinates": []}),
        BoundaryFeature(geometry={"type": "Point", "coordinates": [14.5, 50.2]}),
    ]
    assert filter_by_viewport(features, VIEWPORT, 10) == []


def test_approximate_bbox_samples_first_middle_last():
    ring = [[0, 0], [5, -5], [10, 0], [5, 5], [0, 0]]
    bbox = approximate_bbox({"type": "Polygon", "coordinates": [ring]})
    assert bbox == BBox(west=0.0, south=0.0, east=10.0, north=0.0)


def test_negative_buffer_raises():
    with pytest.raises(ValueError):
        VIEWPORT.expanded(-0.1)


def test_bbox_contains():
    assert VIEWPORT.contains(BBox(14.1, 50.1, 14.9, 50.4))
    assert VIEWPORT.contains(VIEWPORT)
    assert not VIEWPORT.contains(BBox(13.9, 50.1, 14.9, 50.4))


def test_bbox_is_carried_to_year_variants():
    base = _square_feature(14.5, 50.2, uzemi_kod="A")
    precomputed = precompute_by_year([base], {"2011": {"A": 5}, "2021": {}})

    for year in ("2011", "2021"):
        assert precomputed[year][0].approx_bbox is base.approx_bbox
    assert base.with_population(3.0).with_color((0, 0, 0, 0)).approx_bbox is base.approx_bbox


def test_bbox_follows_reprojected_geometry(prague_krovak):
    x, y = prague_krovak
    projected = BoundaryFeature(geometry={"type": "Polygon", "coordinates": [square(x, y, 100)]})

    reprojected = reproject_feature(projected, "EPSG:5514")

    assert reprojected.approx_bbox.west == pytest.approx(14.42076, abs=1e-3)
    assert reprojected.approx_bbox != projected.approx_bbox


def test_first_frame_on_a_new_year_layer_is_fast():
    base = synthetic_features(5_000, seed=3)
    codes = {f.properties["code"]: 10.0 for f in base}
    precomputed = precompute_by_year(base, {"2021": codes, "2022": {}})
    viewport = BBox(west=14.0, south=49.5, east=16.0, north=50.5)

    for year in ("2021", "2022"):
        start = time.perf_counter()
        result = filter_by_viewport(precomputed[year], viewport, 10)
        elapsed_ms = (time.perf_counter() - start) * 1000

        assert 0 < len(result) < len(base)
        assert elapsed_ms < 20
