"""
Pandera DataFrame schemas for pipeline validation gates.

Checked between stages so a malformed intermediate table is reported at the
stage that produced it rather than as a confusing failure further down.

Usage:
    from ebird_grids.schemas import ReportingSchema, validate_schema
    warnings = validate_schema(df, ReportingSchema, "species_reporting")
"""

import pandera as pa
from pandera import Column, Check, DataFrameSchema

from ebird_grids import config


# ── Cleaned observations ────────────────────────────────────────────────

ObservationSchema = DataFrameSchema(
    columns={
        "checklist_id": Column(str, nullable=False),
        "species": Column(str, nullable=False),
        "longitude": Column(float, Check.in_range(-180.0, 180.0), nullable=True),
        "latitude": Column(float, Check.in_range(-90.0, 90.0), nullable=True),
        "observation_date": Column("datetime64[ns]", nullable=True, coerce=True),
    },
    strict=False,
    coerce=False,
    name="ObservationSchema",
)


# ── Gridded + binned checklists ─────────────────────────────────────────

def gridded_schema(cell_size=None, unique_checklists=False):
    """Schema for gridded rows: x/y are multiples of *cell_size*."""
    cell_size = config.GRID_CELL_SIZE_M if cell_size is None else cell_size
    if cell_size <= 0:
        raise ValueError(f"cell_size must be positive, got {cell_size}")
    on_grid = Check(lambda s: s % cell_size == 0, name=f"multiple_of_{cell_size}")
    return DataFrameSchema(
        columns={
            "checklist_id": Column(str, nullable=False, unique=unique_checklists),
            "x": Column(int, on_grid, nullable=False),
            "y": Column(int, on_grid, nullable=False),
            "period": Column(nullable=False),
            "year": Column(int, nullable=False),
        },
        strict=False,
        coerce=False,
        name="GriddedSchema",
    )


# ── Reporting tables (sparse or completed) ──────────────────────────────

def _nrep_le_nchk(df):
    return (df["nrep"] <= df["nchk"]).fillna(True).astype(bool)


def _p_rep_consistent(df):
    expected = df["nrep"] / df["nchk"]
    return ((df["p_rep"] - expected).abs() < 1e-9).fillna(True).astype(bool)


ReportingSchema = DataFrameSchema(
    columns={
        "x": Column(int, nullable=False),
        "y": Column(int, nullable=False),
        "period": Column(nullable=False),
        "nchk": Column("Int64", Check.greater_than_or_equal_to(1), nullable=False),
        "nrep": Column("Int64", Check.greater_than_or_equal_to(0), nullable=True),
        "p_rep": Column("Float64", Check.in_range(0.0, 1.0), nullable=True),
    },
    checks=[
        Check(_nrep_le_nchk, name="nrep_le_nchk"),
        Check(_p_rep_consistent, name="p_rep_equals_nrep_over_nchk"),
    ],
    strict=False,
    coerce=False,
    name="ReportingSchema",
)


# ── Convenience validation function ─────────────────────────────────────

def validate_schema(df, schema, step_name, strict=False):
    """Validate a DataFrame against a Pandera schema.

    Parameters
    ----------
    df : pd.DataFrame
    schema : pa.DataFrameSchema
    step_name : str
        Pipeline step name for messages.
    strict : bool
        If True, raise on failure. If False, return warnings list.

    Returns
    -------
    list[str]
        Validation warning messages (empty if all pass).

    Raises
    ------
    ValueError
        Only if strict=True and validation fails.
    """
    warnings_list = []

    if df is None:
        msg = f"[{step_name}] DataFrame is None"
        if strict:
            raise ValueError(msg)
        return [msg]

    if len(df) == 0:
        msg = f"[{step_name}] DataFrame is empty (0 rows)"
        if strict:
            raise ValueError(msg)
        return [msg]

    try:
        schema.validate(df, lazy=True)
    except pa.errors.SchemaErrors as exc:
        for failure in exc.failure_cases.itertuples():
            msg = (
                f"[{step_name}] Schema violation: "
                f"column='{failure.column}' check='{failure.check}' "
                f"failure_case={failure.failure_case}"
            )
            warnings_list.append(msg)

        if strict:
            raise ValueError(
                f"[{step_name}] Schema validation failed with "
                f"{len(warnings_list)} errors"
            ) from exc

    return warnings_list
