"""
Pipeline step functions.

Each function is a discrete, testable stage with explicit inputs and
outputs. Frames are passed between stages as arguments and return values;
boilerplate (timing, error handling, logging) is handled by ``run_step()``.
"""

import os

import pandas as pd

from ebird_grids import config
from ebird_grids.aggregation import (
    aggregate_reporting,
    checklist_effort_summary,
    complete_reporting,
    count_checklists,
    drop_unreported,
    grid_counts_by_period,
    grid_counts_by_value,
)
from ebird_grids.gridding import assign_grid_cells, clip_to_region, load_region_boundary
from ebird_grids.ingest import build_working_set
from ebird_grids.logging_config import get_pipeline_logger, log_row_filter
from ebird_grids.periods import add_period_column, load_period_table
from ebird_grids.step_runner import frame_summary, run_step

log = get_pipeline_logger(__name__)

# Checklist-level columns carried onto observation rows after gridding.
_CELL_COLUMNS = ["checklist_id", "x", "y", "period", "year"]


def grid_working_set(observations, checklists, boundary, period_table,
                     cell_size=None, crs=None, counts=None):
    """Clip, bin and grid checklists, then attach cells to observations.

    Location and date are properties of the checklist, so gridding runs on
    the checklist table and observation rows inherit ``x``, ``y``,
    ``period`` and ``year`` through an inner join on ``checklist_id``.
    Observations whose checklist is outside the region or period table are
    dropped by that join.

    Returns
    -------
    tuple[pd.DataFrame, pd.DataFrame]
        ``(gridded_observations, gridded_checklists)``
    """
    chk = clip_to_region(checklists, boundary)
    if counts is not None:
        counts.in_region = int(observations["checklist_id"].isin(chk["checklist_id"]).sum())

    chk = add_period_column(chk, table=period_table)
    chk = assign_grid_cells(chk, cell_size=cell_size, crs=crs)

    obs = observations.drop(
        columns=[c for c in ("x", "y", "period", "year") if c in observations.columns]
    ).merge(chk[_CELL_COLUMNS], on="checklist_id", how="inner", validate="many_to_one")
    log_row_filter(log, "grid_observations", len(observations), len(obs),
                   "checklist outside region or period table")
    if counts is not None:
        counts.in_period_range = len(obs)

    return obs.reset_index(drop=True), chk.reset_index(drop=True)


def step_load_period_table(period_table_path: str | None = None) -> tuple:
    """Load and validate the time-period table (config default or CSV)."""

    def _work():
        return load_period_table(period_table_path)

    return run_step(
        "load_period_table", _work,
        input_summary={"period_table_path": period_table_path or "config"},
        output_summary_fn=lambda t: {"periods": t["label"].tolist()},
    )


def step_load_boundary(boundary_path: str) -> tuple:
    """Load and dissolve the study-region boundary."""

    def _work():
        return load_region_boundary(boundary_path)

    return run_step(
        "load_boundary", _work,
        input_summary={"boundary_path": boundary_path},
        output_summary_fn=lambda gdf: {"bounds": [round(b, 3) for b in gdf.total_bounds]},
    )


def step_build_working_set(
    ebd_path: str,
    species_list_path: str,
    sampling_path: str | None = None,
    chunksize: int | None = None,
) -> tuple:
    """Read raw EBD files and reduce them to the cleaned working set."""

    def _work():
        return build_working_set(
            ebd_path, species_list_path, sampling_path=sampling_path,
            chunksize=chunksize,
        )

    return run_step(
        "build_working_set", _work,
        input_summary={
            "ebd_path": ebd_path,
            "species_list_path": species_list_path,
            "sampling_path": sampling_path,
        },
        output_summary_fn=lambda res: {
            "observations": len(res[0]),
            "checklists": len(res[1]),
            **res[2].to_dict(),
        },
    )


def step_grid_and_bin(
    observations: pd.DataFrame,
    checklists: pd.DataFrame,
    boundary,
    period_table: pd.DataFrame,
    cell_size: int,
    counts=None,
) -> tuple:
    """Clip to region, assign time periods and grid cells."""

    def _work():
        return grid_working_set(
            observations, checklists, boundary, period_table,
            cell_size=cell_size, counts=counts,
        )

    return run_step(
        "grid_and_bin", _work,
        input_summary={
            "observations": len(observations),
            "checklists": len(checklists),
            "cell_size_m": cell_size,
        },
        output_summary_fn=lambda res: {
            "observations": len(res[0]),
            "checklists": len(res[1]),
            "cells": len(res[1][["x", "y"]].drop_duplicates()),
            "periods": int(res[1]["period"].nunique()),
        },
    )


def step_reporting(
    rows: pd.DataFrame, checklists: pd.DataFrame, dimension: str
) -> tuple:
    """Aggregate reporting proportions for *dimension* and complete the table.

    Returns the completed table (all cell/period × value rows, unreported
    combinations flagged with ``reported = False``).
    """

    def _work():
        if dimension not in rows.columns:
            raise KeyError(f"Dimension '{dimension}' not in input columns")
        sparse = aggregate_reporting(rows, dimension, checklists=checklists)
        pairs = count_checklists(checklists)
        return complete_reporting(sparse, dimension, pairs=pairs)

    return run_step(
        f"reporting_{dimension}", _work,
        input_summary={"rows": len(rows), "checklists": len(checklists)},
        output_summary_fn=lambda df: {
            "rows": len(df),
            "reported_rows": int(df["reported"].sum()),
            "values": int(df[dimension].nunique()),
        },
    )


def step_export_tables(
    reporting: pd.DataFrame, dimension: str, results_dir: str
) -> tuple:
    """Write reporting evidence and grid-count summaries for one dimension."""

    def _work():
        os.makedirs(results_dir, exist_ok=True)
        paths = []

        evidence = drop_unreported(reporting).drop(columns=["reported"])
        path = os.path.join(results_dir, f"{dimension}_reporting_by_cell.csv")
        evidence.to_csv(path, index=False)
        paths.append(path)

        path = os.path.join(results_dir, f"{dimension}_grid_counts_by_period.csv")
        grid_counts_by_period(reporting, dimension).to_csv(path, index=False)
        paths.append(path)

        path = os.path.join(results_dir, f"{dimension}_grid_counts_by_value.csv")
        grid_counts_by_value(reporting, dimension).to_csv(path, index=False)
        paths.append(path)

        for p in paths:
            log.info("Saved: %s", p)
        return paths

    return run_step(
        f"export_{dimension}", _work,
        input_summary={"rows": len(reporting)},
        output_summary_fn=lambda paths: {"files": len(paths)},
    )


def step_effort_summary(checklists: pd.DataFrame, counts, results_dir: str) -> tuple:
    """Per-period effort summary and the filter audit trail."""

    def _work():
        os.makedirs(results_dir, exist_ok=True)
        summary = checklist_effort_summary(checklists)
        summary_path = os.path.join(results_dir, "checklist_effort_by_period.csv")
        summary.to_csv(summary_path, index=False)

        paths = [summary_path]
        if counts is not None:
            counts_path = os.path.join(results_dir, "filter_counts.csv")
            pd.DataFrame(
                list(counts.to_dict().items()), columns=["stage", "rows"]
            ).to_csv(counts_path, index=False)
            paths.append(counts_path)
            log.info("Retained %.1f%% of raw rows", counts.pct_retained)
        return paths

    return run_step(
        "effort_summary", _work,
        input_summary=frame_summary(checklists),
        output_summary_fn=lambda paths: {"files": len(paths)},
    )


def step_pairwise_comparison(checklists: pd.DataFrame, results_dir: str) -> tuple:
    """Pairwise Mann-Whitney comparisons of effort between periods and protocols."""
    from ebird_grids.comparison import pairwise_period_comparison

    def _work():
        os.makedirs(results_dir, exist_ok=True)
        frames = []
        for grouping in ("period", "protocol_type"):
            if grouping not in checklists.columns:
                continue
            res = pairwise_period_comparison(checklists, group_col=grouping)
            res.insert(0, "grouping", grouping)
            frames.append(res)
        result = pd.concat(frames, ignore_index=True)
        path = os.path.join(results_dir, "pairwise_effort_comparison.csv")
        result.to_csv(path, index=False)
        log.info("Saved: %s (%d comparisons)", path, len(result))
        return result

    return run_step(
        "pairwise_comparison", _work,
        input_summary=frame_summary(checklists),
        output_summary_fn=lambda df: {
            "comparisons": len(df),
            "significant": int(df["significant"].astype(bool).sum()) if len(df) else 0,
        },
    )


def step_figures(
    reporting_by_dimension: dict,
    checklists: pd.DataFrame,
    boundary,
    figs_dir: str,
    cell_size: int,
) -> tuple:
    """Render maps, histograms and violin plots from the aggregate tables."""
    from ebird_grids import visualization as viz

    def _work():
        os.makedirs(figs_dir, exist_ok=True)
        paths = []

        effort = count_checklists(checklists)
        paths.append(viz.plot_faceted_grid_maps(
            effort, "nchk", "period", boundary,
            os.path.join(figs_dir, "checklists_per_cell_by_period.png"),
            title="Checklists per cell", cell_size=cell_size,
        ))

        species = reporting_by_dimension.get("species")
        if species is not None:
            evidence = drop_unreported(species)
            top = grid_counts_by_value(species, "species")["species"].head(
                config.MAP_TOP_SPECIES
            )
            for name in top:
                slug = name.lower().replace(" ", "_")
                paths.append(viz.plot_faceted_grid_maps(
                    evidence[evidence["species"] == name], "p_rep", "period",
                    boundary, os.path.join(figs_dir, f"p_rep_{slug}.png"),
                    title=f"Reporting proportion: {name}", cell_size=cell_size,
                ))

        protocols = reporting_by_dimension.get("protocol_type")
        if protocols is not None:
            # Pool periods on the completed table so nchk covers every
            # period of the cell, not only those where the protocol occurs.
            pooled = (
                protocols.groupby(["x", "y", "protocol_type"], as_index=False)
                .agg(nrep=("nrep", "sum"), nchk=("nchk", "sum"))
            )
            pooled = pooled[pooled["nrep"] > 0].copy()
            pooled["p_rep"] = (pooled["nrep"] / pooled["nchk"]).astype(float)
            paths.append(viz.plot_faceted_grid_maps(
                pooled, "p_rep", "protocol_type", boundary,
                os.path.join(figs_dir, "p_rep_by_protocol.png"),
                title="Share of checklists by protocol (all periods)",
                cell_size=cell_size,
            ))

        paths.append(viz.plot_effort_histograms(
            checklists, os.path.join(figs_dir, "effort_histograms.png"),
        ))
        for col in config.EFFORT_COLUMNS:
            if col not in checklists.columns:
                continue
            try:
                paths.append(viz.plot_violins(
                    checklists, col, "period",
                    os.path.join(figs_dir, f"violin_{col}_by_period.png"),
                ))
            except ValueError as e:
                log.warning("Skipping violin plot for %s: %s", col, e)
        return paths

    return run_step(
        "figures", _work,
        input_summary={"dimensions": sorted(reporting_by_dimension)},
        output_summary_fn=lambda paths: {"figures": len(paths)},
    )
