"""
population_io.py - Population table readers

Thin pandas adapters that turn delimited population files into rows for
``population.aggregate``. Two layouts are handled:

- long tables with one row per area/year/breakdown (Czech census export,
  semicolon-delimited, quoted)
- wide tables with one column per year (ONS projections), melted to long
  ``year``/``value`` rows first
"""

import re
from pathlib import Path
from typing import List, Optional, Sequence, Union

import pandas as pd
from loguru import logger

from .population import JoinKey, PopulationTable, aggregate_with_key, get_join_key, year_sort_key

YEAR_COLUMN = re.compile(r"^\d{4}$")


def read_population_csv(path: Union[str, Path], delimiter: Optional[str] = None) -> pd.DataFrame:
    """
    Read a delimited population table with every column as text.

    Args:
        path: CSV file path
        delimiter: Field delimiter; detected by pandas when None

    Returns:
        DataFrame with cleaned column names (quotes and whitespace stripped)
    """
    path = Path(path)
    logger.info(f"📄 Reading population table {path.name} (delimiter {delimiter or 'detected'!r})")

    # sep=None sniffs the delimiter, which needs the python engine
    frame = pd.read_csv(
        path,
        sep=delimiter or None,
        engine="c" if delimiter else "python",
        dtype=str,
        keep_default_na=False,
        encoding="utf-8-sig",
    )
    frame.columns = [str(c).replace('"', "").strip() for c in frame.columns]
    logger.info(f"  ✅ Loaded {len(frame):,} rows, {len(frame.columns)} columns")
    return frame


def year_columns(frame: pd.DataFrame) -> List[str]:
    """Four-digit year columns of a wide table, in calendar order."""
    return sorted((c for c in frame.columns if YEAR_COLUMN.match(str(c))), key=year_sort_key)


def melt_year_columns(
    frame: pd.DataFrame,
    id_columns: Optional[Sequence[str]] = None,
    year_name: str = "year",
    value_name: str = "value",
) -> pd.DataFrame:
    """
    Convert one-column-per-year data to long rows.

    Args:
        frame: Wide table
        id_columns: Columns kept on every row; defaults to all non-year columns
        year_name: Name of the resulting year column
        value_name: Name of the resulting value column

    Returns:
        Long DataFrame with ``year_name`` and ``value_name`` columns
    """
    years = year_columns(frame)
    if id_columns is None:
        id_columns = [c for c in frame.columns if c not in years]
    return frame.melt(
        id_vars=list(id_columns), value_vars=years, var_name=year_name, value_name=value_name
    )


def latest_year(source: Union[pd.DataFrame, PopulationTable]) -> Optional[str]:
    """Last calendar year among a wide table's year columns or a table's years."""
    if isinstance(source, PopulationTable):
        return source.latest_year
    years = year_columns(source)
    return years[-1] if years else None


def load_population_table(
    path: Union[str, Path], join_key: Union[str, JoinKey], delimiter: Optional[str] = None
) -> PopulationTable:
    """
    Read a population file and aggregate it with a join-key convention.

    Wide tables are melted when the convention's year column is missing but
    four-digit year columns are present.
    """
    key = get_join_key(join_key)
    frame = read_population_csv(path, delimiter)

    if key.year_column not in frame.columns and year_columns(frame):
        logger.info(f"  🔁 Melting {len(year_columns(frame))} year columns to long rows")
        frame = melt_year_columns(frame, year_name=key.year_column, value_name=key.value_column)

    return aggregate_with_key(frame, key)
