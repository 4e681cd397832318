"""Shared fixtures for the choropleth test suite."""

import json
import random
from pathlib import Path
from typing import Any, Dict, List

import pytest

from choropleth.features import BoundaryCollection, BoundaryFeature
from choropleth.reprojection import project_point

PRAGUE = (14.42076, 50.08804)


def square(x0: float, y0: float, size: float) -> List[List[float]]:
    """Closed counter-clockwise square ring."""
    return [[x0, y0], [x0 + size, y0], [x0 + size, y0 + size], [x0, y0 + size], [x0, y0]]


def polygon_feature(ring: List[List[float]], **properties: Any) -> Dict[str, Any]:
    return {
        "type": "Feature",
        "properties": properties,
        "geometry": {"type": "Polygon", "coordinates": [ring]},
    }


@pytest.fixture
def prague_krovak():
    """Prague city centre in EPSG:5514."""
    return project_point(*PRAGUE, "EPSG:5514")


@pytest.fixture
def cz_boundaries(prague_krovak) -> BoundaryCollection:
    """
    Four Prague settlement units in Krovak metres.

    Areas: 2 km², 1 km², 0.25 km² and 4 km²; the last one has no census row.
    """
    x, y = prague_krovak
    features = [
        polygon_feature(square(x, y, 1000 * 2 ** 0.5), uzemi_kod="100001", nazev="A"),
        polygon_feature(square(x + 3000, y, 1000), uzemi_kod="100002", nazev="B"),
        polygon_feature(square(x + 6000, y, 500), uzemi_kod="100003", nazev="C"),
        polygon_feature(square(x + 9000, y, 2000), uzemi_kod="100004", nazev="D"),
    ]
    return BoundaryCollection.from_geojson(
        {"type": "FeatureCollection", "name": "zsj", "features": features}, crs="EPSG:5514"
    )


CZ_CSV = """\
"idhod";"hodnota";"ukaz_kod";"uzemi_kod";"uzemi_txt";"sldb_rok"
"1";"100";"3162";"100001";"Staré Město";"2021"
"2";"50";"3162";"100001";"Staré Město";"2021"
"3";"200";"3162";"100002";"Josefov";"2021"
"4";"120";"3162";"100001";"Staré Město";"2011"
"5";"180";"3162";"100002";"Josefov";"2011"
"6";"9999";"3169";"100001";"Staré Město";"2021"
"7";"40";"3162";"100003";"Karlín";"2021"
"8";"";"3162";"100003";"Karlín";"2011"
"""


@pytest.fixture
def cz_population_rows() -> List[Dict[str, str]]:
    header, *lines = CZ_CSV.strip().splitlines()
    columns = [c.strip('"') for c in header.split(";")]
    return [dict(zip(columns, (v.strip('"') for v in line.split(";")))) for line in lines]


@pytest.fixture
def cz_population_csv(tmp_path) -> Path:
    path = tmp_path / "sldb2021_obyv.csv"
    path.write_text(CZ_CSV, encoding="utf-8")
    return path


@pytest.fixture
def cz_project(tmp_path, cz_boundaries, cz_population_csv) -> Path:
    """A project directory with inputs and a config.yaml pointing at them."""
    (tmp_path / "data").mkdir()
    (tmp_path / "pyproject.toml").write_text("", encoding="utf-8")
    boundaries_path = tmp_path / "data" / "zsj.geojson"
    boundaries_path.write_text(json.dumps(cz_boundaries.to_geojson()), encoding="utf-8")

    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "\n".join(
            [
                "source:",
                '  crs: "EPSG:5514"',
                '  join_key: "cz_zsj"',
                "input_files:",
                '  boundaries: "data/zsj.geojson"',
                f'  population_csv: "{cz_population_csv.name}"',
                "colors:",
                "  palette:",
                "    - [255, 255, 255, 200]",
                "    - [160, 190, 220, 215]",
                "    - [60, 120, 180, 230]",
                "    - [5, 30, 90, 246]",
                "output:",
                '  directory: "out"',
                '  stem: "density"',
                "  precision: 5",
                "",
            ]
        ),
        encoding="utf-8",
    )
    return tmp_path


def synthetic_features(count: int, seed: int = 7) -> List[BoundaryFeature]:
    """Small geographic squares over central Europe with random areas."""
    rng = random.Random(seed)
    features = []
    for i in range(count):
        lon = rng.uniform(12.0, 19.0)
        lat = rng.uniform(48.5, 51.0)
        size = rng.uniform(0.001, 0.02)
        features.append(
            BoundaryFeature(
                geometry={"type": "Polygon", "coordinates": [square(lon, lat, size)]},
                properties={"code": str(i)},
                area_km2=rng.uniform(0.01, 50.0),
            )
        )
    return features


@pytest.fixture(scope="session")
def many_features() -> List[BoundaryFeature]:
    return synthetic_features(40_000)
