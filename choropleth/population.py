"""
population.py

Population Aggregator for the choropleth pipeline.

Raw population tables list one row per area, year and breakdown (age band,
sex, indicator...). ``aggregate`` collapses them into a year-indexed table
of one total per area code, and ``augment_with_population`` joins one year of
that table onto boundary features, deriving density from the planar area.

Join conventions differ between datasets (column names, which property on
the boundary holds the code, which indicator rows to keep). They are
captured as ``JoinKey`` descriptors so the aggregation itself exists once.
"""

import math
from collections.abc import Mapping as MappingABC
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd
from loguru import logger

from .features import BoundaryFeature

Rows = Union[pd.DataFrame, Iterable[Mapping[str, Any]]]


@dataclass(frozen=True)
class JoinKey:
    """
    How population rows are matched to boundary features.

    Attributes:
        property_name: Boundary property holding the area code
        code_column: Population column holding the area code
        year_column: Population column holding the year
        value_column: Population column holding the count
        filter_column: Optional indicator column restricting which rows count
        filter_value: Required value of ``filter_column``
        name_column: Optional column with the area's display name
        where: Extra (column, value) equality filters
    """

    property_name: str
    code_column: str
    year_column: str
    value_column: str
    filter_column: Optional[str] = None
    filter_value: Optional[str] = None
    name_column: Optional[str] = None
    where: Tuple[Tuple[str, str], ...] = ()


# Czech census (SLDB 2021) basic settlement units, indicator 3162 = usual residents
CZ_ZSJ = JoinKey(
    property_name="uzemi_kod",
    code_column="uzemi_kod",
    year_column="sldb_rok",
    value_column="hodnota",
    filter_column="ukaz_kod",
    filter_value="3162",
    name_column="uzemi_txt",
)

# ONS sub-national projections by local authority district (wide table, melted)
UK_LAD = JoinKey(
    property_name="LAD23CD",
    code_column="AREA_CODE",
    year_column="year",
    value_column="value",
    name_column="AREA_NAME",
    where=(("COMPONENT", "Population"), ("SEX", "persons")),
)

JOIN_KEYS: Dict[str, JoinKey] = {
    "cz_zsj": CZ_ZSJ,
    "uk_lad": UK_LAD,
}


def get_join_key(name: Union[str, JoinKey]) -> JoinKey:
    """Look up a registered join-key convention by name."""
    if isinstance(name, JoinKey):
        return name
    key = JOIN_KEYS.get(str(name).strip().lower())
    if key is None:
        raise ValueError(f"Unknown join key '{name}'. Known: {', '.join(sorted(JOIN_KEYS))}")
    return key


def year_sort_key(year: str) -> Tuple[int, float, str]:
    """Calendar order for year labels; non-numeric labels sort after all years."""
    try:
        return (0, float(year), year)
    except (TypeError, ValueError):
        return (1, math.inf, str(year))


def normalise_label(value: Any) -> Optional[str]:
    """Stripped string form of a code or year label (2021.0 → "2021"); None when empty."""
    if value is None:
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        if value.is_integer():
            value = int(value)
    text = str(value).strip().strip('"').strip()
    return text or None


@dataclass(frozen=True)
class PopulationTable(MappingABC):
    """
    Year → (area code → population), years in calendar order.

    Behaves as a read-only mapping. ``rows_scanned`` counts every input row,
    ``rows_used`` only rows that contributed to a total.
    """

    by_year: Mapping[str, Mapping[str, float]] = field(default_factory=dict)
    names: Mapping[str, str] = field(default_factory=dict)
    rows_scanned: int = 0
    rows_used: int = 0

    def __getitem__(self, year: Any) -> Mapping[str, float]:
        return self.by_year[normalise_label(year)]

    def __iter__(self) -> Iterator[str]:
        return iter(self.by_year)

    def __len__(self) -> int:
        return len(self.by_year)

    def __contains__(self, year: object) -> bool:
        return normalise_label(year) in self.by_year

    @property
    def years(self) -> List[str]:
        return list(self.by_year)

    @property
    def latest_year(self) -> Optional[str]:
        return self.years[-1] if self.by_year else None


def _as_frame(rows: Rows) -> pd.DataFrame:
    if isinstance(rows, pd.DataFrame):
        return rows
    return pd.DataFrame.from_records(list(rows))


def aggregate(
    rows: Rows,
    join_key_column: str,
    year_column: str,
    value_column: str,
    filter_column: Optional[str] = None,
    filter_value: Optional[Any] = None,
    *,
    where: Sequence[Tuple[str, Any]] = (),
    name_column: Optional[str] = None,
) -> PopulationTable:
    """
    Sum population rows per (year, area code).

    Rows with a missing code or year, or with a non-finite value, are skipped
    silently. When ``filter_column`` is given only rows whose value in that
    column equals ``filter_value`` are summed.

    Args:
        rows: DataFrame or iterable of row mappings
        join_key_column: Column with the area code
        year_column: Column with the year
        value_column: Column with the numeric count
        filter_column: Optional indicator column
        filter_value: Required indicator value
        where: Extra (column, value) equality filters
        name_column: Optional column with area display names

    Returns:
        PopulationTable with years sorted in calendar order
    """
    frame = _as_frame(rows)
    rows_scanned = len(frame)
    if frame.empty:
        return PopulationTable(rows_scanned=rows_scanned)

    missing = [c for c in (join_key_column, year_column, value_column) if c not in frame.columns]
    if missing:
        logger.warning(f"  ⚠️ Population table is missing required columns: {missing}")
        return PopulationTable(rows_scanned=rows_scanned)

    mask = pd.Series(True, index=frame.index)

    filters: List[Tuple[str, Any]] = list(where)
    if filter_column is not None:
        filters.insert(0, (filter_column, filter_value))

    for column, required in filters:
        if required is None:
            continue
        if column not in frame.columns:
            logger.warning(f"  ⚠️ Filter column '{column}' not found, filter not applied")
            continue
        wanted = normalise_label(required)
        mask &= frame[column].map(normalise_label) == wanted

    codes = frame[join_key_column].map(normalise_label)
    years = frame[year_column].map(normalise_label)
    values = pd.to_numeric(frame[value_column], errors="coerce").astype(float)

    mask &= codes.notna() & years.notna() & values.map(math.isfinite)

    used = pd.DataFrame({"year": years[mask], "code": codes[mask], "value": values[mask]})
    totals = used.groupby(["year", "code"], sort=False)["value"].sum()

    by_year: Dict[str, Dict[str, float]] = {}
    for year in sorted(used["year"].unique(), key=year_sort_key):
        by_year[year] = {}
    for (year, code), total in totals.items():
        by_year[year][code] = float(total)

    names: Dict[str, str] = {}
    if name_column is not None and name_column in frame.columns:
        labels = frame.loc[mask, name_column].map(normalise_label)
        for code, label in zip(codes[mask], labels):
            if label:
                names[code] = label

    dropped = rows_scanned - int(mask.sum())
    logger.info(
        f"📊 Aggregated {int(mask.sum()):,}/{rows_scanned:,} population rows into "
        f"{len(by_year)} years ({dropped:,} rows skipped)"
    )

    return PopulationTable(
        by_year=by_year, names=names, rows_scanned=rows_scanned, rows_used=int(mask.sum())
    )


def aggregate_with_key(rows: Rows, join_key: Union[str, JoinKey]) -> PopulationTable:
    """``aggregate`` driven by a JoinKey descriptor."""
    key = get_join_key(join_key)
    return aggregate(
        rows,
        key.code_column,
        key.year_column,
        key.value_column,
        key.filter_column,
        key.filter_value,
        where=key.where,
        name_column=key.name_column,
    )


def augment_with_population(
    features: Sequence[BoundaryFeature],
    population_by_code: Mapping[str, float],
    join_key_property: str,
) -> Tuple[BoundaryFeature, ...]:
    """
    Attach one year's population to every feature.

    Pure: returns new feature values, inputs are untouched. Features whose
    code has no entry get ``population = None`` and ``has_population_data =
    False``; density is only set when the area is known and positive.

    Args:
        features: Boundary features (typically reprojected, with area)
        population_by_code: Area code → population for the selected year
        join_key_property: Boundary property holding the area code

    Returns:
        Tuple of augmented features in input order
    """
    augmented = []
    for feature in features:
        code = feature.code(join_key_property)
        population = population_by_code.get(code) if code is not None else None
        if population is not None and not math.isfinite(population):
            population = None
        augmented.append(feature.with_population(population))
    return tuple(augmented)
