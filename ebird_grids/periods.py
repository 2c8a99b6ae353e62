"""
Temporal binning of observations into fixed time periods.

The year axis is partitioned by an ordered table of ``(label, start, end)``
rows (``config.TIME_PERIODS`` or an external CSV). Each year maps to exactly
one period or, when it lies outside the table, to none and the observation
is excluded.
"""

import math

import numpy as np
import pandas as pd

from ebird_grids import config
from ebird_grids.logging_config import get_pipeline_logger, log_row_filter

log = get_pipeline_logger(__name__)

PERIOD_TABLE_COLUMNS = ["label", "start", "end"]


def load_period_table(path=None):
    """Load and validate the time-period partition.

    Parameters
    ----------
    path : str, optional
        CSV with columns ``label,start,end``. An empty ``start`` on the first
        row means unbounded below. Defaults to ``config.TIME_PERIODS``.

    Returns
    -------
    pd.DataFrame
        Columns label (str), start (Int64, nullable), end (Int64).

    Raises
    ------
    ValueError
        If the table is empty, has duplicate labels, or is not an ordered,
        contiguous, non-overlapping partition.
    KeyError
        If a required column is missing.
    """
    if path is None:
        table = pd.DataFrame(config.TIME_PERIODS, columns=PERIOD_TABLE_COLUMNS)
    else:
        table = pd.read_csv(path, dtype={"label": str})
        missing = set(PERIOD_TABLE_COLUMNS) - set(table.columns)
        if missing:
            raise KeyError(f"Period table {path} missing columns: {sorted(missing)}")
        table = table[PERIOD_TABLE_COLUMNS]

    if table.empty:
        raise ValueError("Period table is empty")

    table = table.copy()
    table["label"] = table["label"].astype(str)
    table["start"] = pd.to_numeric(table["start"], errors="raise").astype("Int64")
    table["end"] = pd.to_numeric(table["end"], errors="raise").astype("Int64")

    if table["end"].isna().any():
        raise ValueError("Every period needs an end year")
    if table["label"].duplicated().any():
        dupes = table.loc[table["label"].duplicated(), "label"].tolist()
        raise ValueError(f"Duplicate period labels: {dupes}")
    if table["start"].iloc[1:].isna().any():
        raise ValueError("Only the first period may have an open start")

    for i, row in enumerate(table.itertuples(index=False)):
        if pd.notna(row.start) and row.start > row.end:
            raise ValueError(f"Period {row.label!r} starts after it ends")
        if i > 0:
            prev_end = table["end"].iloc[i - 1]
            if row.start != prev_end + 1:
                raise ValueError(
                    f"Period {row.label!r} starts at {row.start}, expected "
                    f"{prev_end + 1} (periods must be ordered and contiguous)"
                )

    return table.reset_index(drop=True)


def period_labels(table=None):
    """Ordered list of period labels."""
    if table is None:
        table = load_period_table()
    return table["label"].tolist()


def _bin_edges(table):
    first_start = table["start"].iloc[0]
    lower = -math.inf if pd.isna(first_start) else float(first_start) - 1
    return [lower] + [float(e) for e in table["end"]]


def period_for_year(year, table=None):
    """Return the period label for a single year, or None when unmapped.

    >>> period_for_year(1999)
    'pre2000'
    >>> period_for_year(2007)
    '2007-2010'
    """
    if table is None:
        table = load_period_table()
    if year is None or pd.isna(year):
        return None
    year = int(year)
    for row in table.itertuples(index=False):
        if (pd.isna(row.start) or year >= row.start) and year <= row.end:
            return row.label
    return None


def assign_periods(years, table=None):
    """Vectorised year → period lookup.

    Uses right-closed intervals so that ``(prev_end, end]`` maps to each
    label, matching ``period_for_year``.

    Parameters
    ----------
    years : array-like
        Integer years. Missing or non-numeric values map to NA.
    table : pd.DataFrame, optional
        Output of ``load_period_table``.

    Returns
    -------
    pd.Series
        Ordered categorical of period labels; NA for unmapped years.
    """
    if table is None:
        table = load_period_table()
    index = years.index if isinstance(years, pd.Series) else None
    numeric = pd.to_numeric(pd.Series(years, index=index), errors="coerce")
    return pd.cut(
        numeric.astype(float),
        bins=_bin_edges(table),
        labels=table["label"].tolist(),
        right=True,
        ordered=True,
    ).rename("period")


def add_period_column(df, date_col="observation_date", table=None,
                      step_name="assign_periods"):
    """Add ``year`` and ``period`` columns and drop rows with no period.

    Parameters
    ----------
    df : pd.DataFrame
        Must contain *date_col* (datetime-like or ISO date strings).

    Returns
    -------
    pd.DataFrame
        Copy of *df* restricted to mapped years.
    """
    if table is None:
        table = load_period_table()
    out = df.copy()
    out["year"] = pd.to_datetime(out[date_col], errors="coerce").dt.year
    out["period"] = assign_periods(out["year"], table)

    rows_in = len(out)
    out = out[out["period"].notna()].copy()
    out["year"] = out["year"].astype(np.int64)
    log_row_filter(log, step_name, rows_in, len(out), "year outside period table")
    return out
