#!/usr/bin/env python3
"""
Pipeline runner with validation gates.

Runs the batch pipeline end to end:

    raw EBD → working set → gridded + binned → reporting tables →
    CSV exports → figures

with Pandera schema validation after each table-producing stage, NaN
tracking between stages, an optional cache of the gridded working set, and
a PipelineRunResult saved as ``pipeline_run.json``.

Usage:
    python3 -m ebird_grids.pipeline_runner \\
        --ebd data/ebd_IN_relJun-2022.txt.gz \\
        --sampling data/ebd_sampling_IN_relJun-2022.txt.gz \\
        --species-list data/species_list.csv \\
        --boundary data/india_boundary.geojson

    # Coarser grid, abort on schema violations, no figures
    python3 -m ebird_grids.pipeline_runner --cell-size 50000 \\
        --strict-validation --skip-figures
"""

import argparse
import json
import os
import time

from ebird_grids import config
from ebird_grids.cache_manager import CacheManager, input_fingerprint
from ebird_grids.logging_config import get_pipeline_logger, set_run_id, setup_logging
from ebird_grids.pipeline_types import PipelineRunResult, StepResult, StepStatus
from ebird_grids.schemas import (
    ObservationSchema,
    ReportingSchema,
    gridded_schema,
    validate_schema,
)

log = get_pipeline_logger(__name__)


# ── NaN tracking helper ──────────────────────────────────────────────────


def track_nan_counts(df, step_name, prev_nan_counts=None):
    """Track NaN counts per column and warn when they grow between steps.

    Returns
    -------
    dict
        Column → NaN count mapping for this step.
    """
    if df is None:
        return {}

    nan_counts = df.isna().sum().to_dict()
    nan_counts = {k: int(v) for k, v in nan_counts.items() if v > 0}

    if nan_counts:
        log.debug(
            "[%s] NaN counts: %s", step_name, nan_counts,
            extra={"step_name": step_name, "nan_summary": nan_counts},
        )

    if prev_nan_counts:
        for col, count in nan_counts.items():
            prev = prev_nan_counts.get(col, 0)
            if count > prev:
                log.warning(
                    "[%s] NaN count increased for '%s': %d → %d (+%d)",
                    step_name, col, prev, count, count - prev,
                )

    return nan_counts


def _gate(df, schema, step_name, strict):
    """Run a validation gate; return False if the run must stop."""
    try:
        for w in validate_schema(df, schema, step_name, strict=strict):
            log.warning(w)
    except ValueError as e:
        log.error("Validation failed after %s: %s", step_name, e)
        return False
    return True


def _finish(pipeline_result, start_time, reason=None):
    if reason:
        log.error("Pipeline aborted at %s", reason)
    pipeline_result.total_time_seconds = time.time() - start_time
    return pipeline_result


# ── Pipeline ─────────────────────────────────────────────────────────────


def run_pipeline(args):
    """Run the full pipeline.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command-line arguments.

    Returns
    -------
    PipelineRunResult
    """
    from ebird_grids.pipeline_steps import (
        step_build_working_set,
        step_effort_summary,
        step_export_tables,
        step_figures,
        step_grid_and_bin,
        step_load_boundary,
        step_load_period_table,
        step_pairwise_comparison,
        step_reporting,
    )

    strict = getattr(args, "strict_validation", False)
    cell_size = args.cell_size
    dirs = config.get_output_dirs(args.output_dir)

    inputs = {
        "ebd": args.ebd,
        "sampling": args.sampling,
        "species_list": args.species_list,
        "boundary": args.boundary,
        "period_table": args.period_table,
    }
    pipeline_result = PipelineRunResult(
        run_dir=args.output_dir,
        input_files=inputs,
        cell_size_m=cell_size,
        dimensions=list(config.REPORTING_DIMENSIONS),
    )
    start_time = time.time()

    # Step 1: Time periods
    result, period_table = step_load_period_table(args.period_table)
    pipeline_result.step_results.append(result)
    if not result.ok:
        return _finish(pipeline_result, start_time, "load_period_table")
    pipeline_result.periods = period_table["label"].tolist()

    # Step 2: Region boundary
    result, boundary = step_load_boundary(args.boundary)
    pipeline_result.step_results.append(result)
    if not result.ok:
        return _finish(pipeline_result, start_time, "load_boundary")

    # Steps 3-4: Working set → gridded tables (cached)
    cache = None if args.no_cache else CacheManager(cache_dir=dirs["cache"])
    cache_params = {}
    observations = checklists = None
    counts = None

    missing = [p for p in inputs.values() if p and not os.path.exists(p)]
    if cache is not None and missing:
        # Let the step that reads the file record the failure.
        log.warning("Cache disabled for this run; missing inputs: %s", missing)
        cache = None

    if cache is not None:
        cache_params = {
            "inputs": input_fingerprint(*inputs.values()),
            "cell_size": cell_size,
            "crs": config.EQUAL_AREA_CRS,
            "periods": ",".join(pipeline_result.periods),
        }
        observations = cache.get("gridded_observations", **cache_params)
        checklists = cache.get("gridded_checklists", **cache_params)

    if observations is not None and checklists is not None:
        pipeline_result.step_results.append(StepResult(
            step_name="grid_and_bin",
            status=StepStatus.SKIPPED.value,
            output_summary={
                "source": "cache",
                "observations": len(observations),
                "checklists": len(checklists),
            },
        ))
    else:
        result, working_set = step_build_working_set(
            args.ebd, args.species_list, sampling_path=args.sampling,
        )
        pipeline_result.step_results.append(result)
        if not result.ok:
            return _finish(pipeline_result, start_time, "build_working_set")
        raw_obs, raw_chk, counts = working_set
        del working_set

        if not _gate(raw_obs, ObservationSchema, "build_working_set", strict):
            return _finish(pipeline_result, start_time, "build_working_set validation")

        result, gridded = step_grid_and_bin(
            raw_obs, raw_chk, boundary, period_table, cell_size, counts=counts,
        )
        pipeline_result.step_results.append(result)
        del raw_obs, raw_chk
        if not result.ok:
            return _finish(pipeline_result, start_time, "grid_and_bin")
        observations, checklists = gridded

        if cache is not None:
            cache.put("gridded_observations", observations, **cache_params)
            cache.put("gridded_checklists", checklists, **cache_params)

    if not _gate(checklists, gridded_schema(cell_size, unique_checklists=True),
                 "grid_and_bin", strict):
        return _finish(pipeline_result, start_time, "grid_and_bin validation")
    track_nan_counts(checklists, "grid_and_bin")

    # Step 5: Reporting tables per dimension
    reporting = {}
    for dimension in config.REPORTING_DIMENSIONS:
        # Checklist-level dimensions (protocol) are counted on the checklist table.
        rows = checklists if dimension in checklists.columns else observations
        result, filled = step_reporting(rows, checklists, dimension)
        pipeline_result.step_results.append(result)
        if not result.ok:
            return _finish(pipeline_result, start_time, f"reporting_{dimension}")
        if not _gate(filled, ReportingSchema, f"reporting_{dimension}", strict):
            return _finish(pipeline_result, start_time, f"reporting_{dimension} validation")
        # Unreported combinations are <NA> by construction; log without delta.
        track_nan_counts(filled, f"reporting_{dimension}")
        reporting[dimension] = filled

    # Free observation rows; everything downstream uses aggregates.
    del observations

    # Step 6: CSV exports
    for dimension, filled in reporting.items():
        result, paths = step_export_tables(filled, dimension, dirs["results"])
        pipeline_result.step_results.append(result)
        if result.ok:
            pipeline_result.output_files.extend(paths)

    # ── Non-critical steps (log warning, continue on failure) ────────

    result, paths = step_effort_summary(checklists, counts, dirs["results"])
    pipeline_result.step_results.append(result)
    if result.ok:
        pipeline_result.output_files.extend(paths)
    else:
        log.warning("Effort summary failed: %s", result.error)

    result, _ = step_pairwise_comparison(checklists, dirs["results"])
    pipeline_result.step_results.append(result)
    if result.ok:
        pipeline_result.output_files.append(
            os.path.join(dirs["results"], "pairwise_effort_comparison.csv")
        )
    else:
        log.warning("Pairwise comparison failed: %s", result.error)

    if not args.skip_figures:
        result, paths = step_figures(
            reporting, checklists, boundary, dirs["figs"], cell_size,
        )
        pipeline_result.step_results.append(result)
        if result.ok:
            pipeline_result.output_files.extend(paths)
        else:
            log.warning("Figures failed: %s", result.error)

    if cache is not None:
        log.info("Cache stats: %s", cache.get_stats())

    return _finish(pipeline_result, start_time)


# ── Main entry point ─────────────────────────────────────────────────────


def save_pipeline_result(pipeline_result, output_dir):
    """Save PipelineRunResult as JSON for provenance."""
    os.makedirs(output_dir, exist_ok=True)
    result_path = os.path.join(output_dir, "pipeline_run.json")
    with open(result_path, "w") as f:
        json.dump(pipeline_result.to_dict(), f, indent=2, default=str)
    log.info("Pipeline result saved: %s", result_path)
    return result_path


def _positive_int(text):
    value = int(text)
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {text}")
    return value


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Grid eBird checklists and compute reporting proportions"
    )
    parser.add_argument(
        "--ebd",
        default=config.DEFAULT_EBD_PATH,
        help="eBird Basic Dataset observation file (tab-delimited, .txt or .gz)",
    )
    parser.add_argument(
        "--sampling",
        default=None,
        help="EBD sampling-event file; if omitted checklists are derived "
             "from observations",
    )
    parser.add_argument(
        "--species-list",
        default=config.DEFAULT_SPECIES_LIST_PATH,
        dest="species_list",
        help="CSV whitelist with a scientific-name column",
    )
    parser.add_argument(
        "--boundary",
        default=config.DEFAULT_BOUNDARY_PATH,
        help="Study-region boundary (any vector format)",
    )
    parser.add_argument(
        "--period-table",
        default=None,
        dest="period_table",
        help="CSV (label,start,end) overriding the built-in time periods",
    )
    parser.add_argument(
        "--output-dir",
        default=config.DEFAULT_OUTPUT_DIR,
        dest="output_dir",
        help="Root for results/, figs/ and data/.cache/",
    )
    parser.add_argument(
        "--cell-size",
        type=_positive_int,
        default=config.GRID_CELL_SIZE_M,
        dest="cell_size",
        help="Grid cell size in metres (default: from config)",
    )
    parser.add_argument(
        "--strict-validation",
        action="store_true",
        dest="strict_validation",
        help="Abort on schema violations instead of logging warnings",
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        dest="no_cache",
        help="Always rebuild the gridded working set",
    )
    parser.add_argument(
        "--skip-figures",
        action="store_true",
        dest="skip_figures",
        help="Write CSV tables only",
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    run_id = set_run_id()
    setup_logging(run_dir=args.output_dir)

    log.info("eBird grid pipeline (run_id=%s)", run_id)
    result = run_pipeline(args)
    save_pipeline_result(result, args.output_dir)

    log.info("Pipeline complete in %.1fs", result.total_time_seconds)
    if result.failed_steps:
        log.warning("Failed steps: %s", [s.step_name for s in result.failed_steps])
        return 1
    log.info("All steps succeeded.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
