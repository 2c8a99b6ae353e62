"""
Reporting-proportion aggregation over grid cells and time periods.

For a categorical dimension (species, protocol type, ...) and each
(cell, period):

    nchk  = distinct checklists in the cell/period
    nrep  = distinct checklists in the cell/period reporting the value
    p_rep = nrep / nchk

Counts are by checklist id, never by row, since one checklist contributes a
row per species. A value that was never reported in a cell/period has no
proportion: after completion to the full cross product it is carried as
<NA> (nullable dtypes), never as 0, because presence-only data cannot
support an explicit zero.
"""

import pandas as pd

from ebird_grids.logging_config import get_pipeline_logger

log = get_pipeline_logger(__name__)

CELL_KEYS = ["x", "y", "period"]


def count_checklists(df, by=None):
    """Distinct checklist count per group → ``nchk`` (Int64)."""
    by = list(by or CELL_KEYS)
    out = (
        df.groupby(by, observed=True, sort=True)["checklist_id"]
        .nunique()
        .rename("nchk")
        .reset_index()
    )
    out["nchk"] = out["nchk"].astype("Int64")
    return out


def count_reports(df, dimension, by=None):
    """Distinct checklists reporting each dimension value → ``nrep`` (Int64)."""
    by = list(by or CELL_KEYS)
    out = (
        df.dropna(subset=[dimension])
        .groupby(by + [dimension], observed=True, sort=True)["checklist_id"]
        .nunique()
        .rename("nrep")
        .reset_index()
    )
    out["nrep"] = out["nrep"].astype("Int64")
    return out


def aggregate_reporting(observations, dimension, checklists=None, by=None):
    """Sparse reporting table: one row per observed (cell, period, value).

    Parameters
    ----------
    observations : pd.DataFrame
        Gridded, period-binned rows with ``checklist_id`` and *dimension*.
    dimension : str
        Categorical column to report on.
    checklists : pd.DataFrame, optional
        Gridded checklist table used for ``nchk``. Defaults to
        *observations* itself.
    by : list[str], optional
        Cell/period key columns. Default ``CELL_KEYS``.

    Returns
    -------
    pd.DataFrame
        Columns ``by + [dimension, "nchk", "nrep", "p_rep"]``.

    Raises
    ------
    ValueError
        If a report falls in a cell/period with no checklists, or if
        ``nrep`` exceeds ``nchk`` (inconsistent effort table).
    """
    by = list(by or CELL_KEYS)
    effort = observations if checklists is None else checklists

    nchk = count_checklists(effort, by)
    nrep = count_reports(observations, dimension, by)

    agg = nrep.merge(nchk, on=by, how="left", validate="many_to_one")
    if agg["nchk"].isna().any():
        n_bad = int(agg["nchk"].isna().sum())
        raise ValueError(
            f"{n_bad} '{dimension}' reports fall in cell/periods with no checklists"
        )
    if (agg["nrep"] > agg["nchk"]).any():
        raise ValueError(f"nrep exceeds nchk for '{dimension}'; effort table is incomplete")

    agg["p_rep"] = (agg["nrep"] / agg["nchk"]).astype("Float64")
    agg = agg[by + [dimension, "nchk", "nrep", "p_rep"]]

    log.info(
        "Aggregated '%s': %d rows over %d cell/periods, %d values",
        dimension, len(agg), len(nchk), agg[dimension].nunique(),
    )
    return agg


def complete_reporting(agg, dimension, pairs=None, by=None):
    """Expand to the full (cell, period) × value cross product.

    Combinations absent from *agg* get ``nrep`` and ``p_rep`` of <NA> and
    ``reported = False``; ``nchk`` is filled from the cell/period.

    Parameters
    ----------
    agg : pd.DataFrame
        Output of ``aggregate_reporting``.
    pairs : pd.DataFrame, optional
        Cell/period table with ``nchk`` (output of ``count_checklists``).
        Use it to include cell/periods where nothing was reported.
        Defaults to the pairs present in *agg*.

    Returns
    -------
    pd.DataFrame
        ``n_pairs × n_values`` rows.
    """
    by = list(by or CELL_KEYS)
    if pairs is None:
        pairs = agg[by + ["nchk"]].drop_duplicates(subset=by)
    else:
        pairs = pairs[by + ["nchk"]].drop_duplicates(subset=by)

    values = pd.DataFrame({dimension: pd.unique(agg[dimension].dropna())})
    full = pairs.merge(values, how="cross")

    filled = full.merge(
        agg[by + [dimension, "nrep", "p_rep"]],
        on=by + [dimension],
        how="left",
        validate="one_to_one",
    )
    filled["nrep"] = filled["nrep"].astype("Int64")
    filled["p_rep"] = filled["p_rep"].astype("Float64")
    filled["reported"] = filled["p_rep"].notna()

    log.debug(
        "Completed '%s': %d pairs × %d values = %d rows (%d unreported)",
        dimension, len(pairs), len(values), len(filled),
        int((~filled["reported"]).sum()),
    )
    return filled.sort_values(by + [dimension]).reset_index(drop=True)


def drop_unreported(filled):
    """Keep only rows with reporting evidence (non-missing ``p_rep``)."""
    return filled[filled["p_rep"].notna()].reset_index(drop=True)


def grid_counts_by_period(reporting, dimension):
    """Cells with reporting evidence per (value, period).

    Returns
    -------
    pd.DataFrame
        Columns dimension, period, n_cells, n_checklists_reporting,
        mean_p_rep.
    """
    evidence = drop_unreported(reporting)
    out = (
        evidence.groupby([dimension, "period"], observed=True, sort=True)
        .agg(
            n_cells=("x", "size"),
            n_checklists_reporting=("nrep", "sum"),
            mean_p_rep=("p_rep", "mean"),
        )
        .reset_index()
    )
    out["n_cells"] = out["n_cells"].astype("int64")
    return out


def grid_counts_by_value(reporting, dimension):
    """Distinct cells and periods with reporting evidence per value."""
    evidence = drop_unreported(reporting)
    cells = (
        evidence.drop_duplicates([dimension, "x", "y"])
        .groupby(dimension, sort=True)
        .size()
        .rename("n_cells")
    )
    periods = (
        evidence.groupby(dimension, sort=True)["period"]
        .nunique()
        .rename("n_periods")
    )
    return (
        pd.concat([cells, periods], axis=1)
        .reset_index()
        .sort_values(["n_cells", dimension], ascending=[False, True])
        .reset_index(drop=True)
    )


def checklist_effort_summary(checklists):
    """Per-period effort: checklists, occupied cells, median effort values."""
    by_period = checklists.groupby("period", observed=True, sort=True)
    summary = by_period.agg(
        n_checklists=("checklist_id", "nunique"),
        median_duration_minutes=("duration_minutes", "median"),
        median_effort_distance_km=("effort_distance_km", "median"),
        median_number_observers=("number_observers", "median"),
    )
    summary["n_cells"] = (
        checklists.drop_duplicates(["period", "x", "y"])
        .groupby("period", observed=True, sort=True)
        .size()
    )
    return summary.reset_index()
