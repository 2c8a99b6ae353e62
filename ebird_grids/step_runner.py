"""
Generic step executor for pipeline stages.

Every stage provides a work function and metadata; ``run_step()`` adds
timing, structured logging and StepResult construction, and turns a
failure into an error result so the runner can decide whether to abort.
"""

import traceback
from datetime import datetime, timezone
from typing import TypeVar, Callable

import pandas as pd
import pandera as pa

from ebird_grids.logging_config import StepTimer, get_pipeline_logger, log_step_summary
from ebird_grids.pipeline_types import StepResult, StepStatus

T = TypeVar("T")

log = get_pipeline_logger(__name__)

_DEFAULT_EXPECTED = (
    FileNotFoundError,
    ValueError,
    KeyError,
    pd.errors.EmptyDataError,
    pd.errors.MergeError,
    pa.errors.SchemaError,
)


def frame_summary(df: pd.DataFrame) -> dict:
    """Row/column summary used as a default output summary."""
    return {"rows": len(df), "columns": len(df.columns)}


def run_step(
    step_name: str,
    fn: Callable[..., T],
    *args,
    input_summary: dict | None = None,
    output_summary_fn: Callable[[T], dict] | None = None,
    expected_exceptions: tuple[type[Exception], ...] = _DEFAULT_EXPECTED,
    **kwargs,
) -> tuple[StepResult, T | None]:
    """Execute a pipeline step with standardised error handling and timing.

    Parameters
    ----------
    step_name : str
        Name stored in StepResult for provenance.
    fn : Callable
        The work function.  Called as ``fn(*args, **kwargs)``.
    input_summary : dict, optional
        Metadata about inputs (logged in StepResult).
    output_summary_fn : callable, optional
        Receives *fn*'s return value and produces an output-summary dict.
        Skipped when *fn* raises or returns None.
    expected_exceptions : tuple
        Exception types logged as known failures (no "unexpectedly").

    Returns
    -------
    tuple[StepResult, T | None]
    """
    result_data = None
    error_tb = None

    with StepTimer() as timer:
        try:
            result_data = fn(*args, **kwargs)
        except expected_exceptions as exc:
            error_tb = traceback.format_exc()
            log.error("%s failed: %s", step_name, exc, exc_info=True)
        except Exception:
            error_tb = traceback.format_exc()
            log.error("%s failed unexpectedly", step_name, exc_info=True)

    completed_at = datetime.now(timezone.utc).isoformat()

    if error_tb:
        log_step_summary(log, step_name, StepStatus.ERROR.value,
                         timing_seconds=timer.elapsed)
        return StepResult(
            step_name=step_name,
            status=StepStatus.ERROR.value,
            error=error_tb,
            timing_seconds=timer.elapsed,
            completed_at=completed_at,
        ), None

    out_summary = {}
    if output_summary_fn is not None and result_data is not None:
        out_summary = output_summary_fn(result_data)

    log_step_summary(
        log, step_name, StepStatus.SUCCESS.value,
        input_summary=input_summary or {},
        output_summary=out_summary,
        timing_seconds=timer.elapsed,
    )
    return StepResult(
        step_name=step_name,
        status=StepStatus.SUCCESS.value,
        input_summary=input_summary or {},
        output_summary=out_summary,
        timing_seconds=timer.elapsed,
        completed_at=completed_at,
    ), result_data
