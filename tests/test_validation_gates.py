"""
Tests for Pandera schema validation gates.

Verifies that:
- Schemas reject invalid data (missing columns, off-grid cells, bad proportions)
- validate_schema() returns warnings in lenient mode
- validate_schema() raises in strict mode
"""

import numpy as np
import pandas as pd
import pytest

from ebird_grids.schemas import (
    ObservationSchema,
    ReportingSchema,
    gridded_schema,
    validate_schema,
)


# ── ObservationSchema ───────────────────────────────────────────────────


class TestObservationSchema:

    def _valid_df(self):
        return pd.DataFrame({
            "checklist_id": ["S1", "S2"],
            "species": ["Corvus splendens", "Passer domesticus"],
            "longitude": [77.0, 77.5],
            "latitude": [20.0, 20.5],
            "observation_date": pd.to_datetime(["2015-03-01", "2016-01-01"]),
        })

    def test_valid_data_passes(self):
        assert validate_schema(self._valid_df(), ObservationSchema, "test") == []

    def test_latitude_out_of_range(self):
        df = self._valid_df()
        df.loc[0, "latitude"] = 120.0
        warnings = validate_schema(df, ObservationSchema, "test")
        assert any("latitude" in w for w in warnings)

    def test_missing_column(self):
        df = self._valid_df().drop(columns=["species"])
        warnings = validate_schema(df, ObservationSchema, "test")
        assert len(warnings) > 0

    def test_missing_coordinates_allowed(self):
        df = self._valid_df()
        df.loc[0, "longitude"] = np.nan
        assert validate_schema(df, ObservationSchema, "test") == []


# ── Gridded schema ──────────────────────────────────────────────────────


class TestGriddedSchema:

    def _valid_df(self):
        return pd.DataFrame({
            "checklist_id": ["S1", "S2"],
            "x": np.array([0, 25000], dtype=np.int64),
            "y": np.array([-50000, 25000], dtype=np.int64),
            "period": ["2015", "2016"],
            "year": np.array([2015, 2016], dtype=np.int64),
        })

    def test_valid_data_passes(self):
        assert validate_schema(self._valid_df(), gridded_schema(25000), "test") == []

    def test_off_grid_rejected(self):
        df = self._valid_df()
        df.loc[1, "x"] = 12345
        warnings = validate_schema(df, gridded_schema(25000), "test")
        assert any("multiple_of_25000" in w for w in warnings)

    def test_cell_size_parameter(self):
        df = self._valid_df()
        assert validate_schema(df, gridded_schema(50000), "test") != []

    def test_unique_checklists(self):
        df = self._valid_df()
        df.loc[1, "checklist_id"] = "S1"
        assert validate_schema(df, gridded_schema(25000), "test") == []
        assert validate_schema(
            df, gridded_schema(25000, unique_checklists=True), "test",
        ) != []

    def test_zero_cell_size_rejected(self):
        with pytest.raises(ValueError):
            gridded_schema(0)


# ── ReportingSchema ─────────────────────────────────────────────────────


class TestReportingSchema:

    def _valid_df(self):
        return pd.DataFrame({
            "x": np.array([0, 0, 25000], dtype=np.int64),
            "y": np.array([0, 0, 0], dtype=np.int64),
            "period": ["2015", "2015", "2015"],
            "species": ["A", "B", "B"],
            "nchk": pd.array([2, 2, 1], dtype="Int64"),
            "nrep": pd.array([2, 1, None], dtype="Int64"),
            "p_rep": pd.array([1.0, 0.5, None], dtype="Float64"),
        })

    def test_valid_data_passes(self):
        assert validate_schema(self._valid_df(), ReportingSchema, "test") == []

    def test_p_rep_out_of_range(self):
        df = self._valid_df()
        df["nrep"] = pd.array([3, 1, None], dtype="Int64")
        df["p_rep"] = pd.array([1.5, 0.5, None], dtype="Float64")
        warnings = validate_schema(df, ReportingSchema, "test")
        assert any("p_rep" in w for w in warnings)
        assert any("nrep_le_nchk" in w for w in warnings)

    def test_inconsistent_p_rep(self):
        df = self._valid_df()
        df["p_rep"] = pd.array([1.0, 0.25, None], dtype="Float64")
        warnings = validate_schema(df, ReportingSchema, "test")
        assert any("p_rep_equals_nrep_over_nchk" in w for w in warnings)

    def test_zero_nchk_rejected(self):
        df = self._valid_df()
        df["nchk"] = pd.array([2, 2, 0], dtype="Int64")
        warnings = validate_schema(df, ReportingSchema, "test")
        assert any("nchk" in w for w in warnings)

    def test_strict_raises(self):
        df = self._valid_df()
        df["p_rep"] = pd.array([1.0, 0.25, None], dtype="Float64")
        with pytest.raises(ValueError, match="Schema validation failed"):
            validate_schema(df, ReportingSchema, "test", strict=True)


# ── validate_schema edge cases ──────────────────────────────────────────


class TestValidateSchemaEdgeCases:

    def test_none_lenient(self):
        warnings = validate_schema(None, ReportingSchema, "test")
        assert "None" in warnings[0]

    def test_none_strict(self):
        with pytest.raises(ValueError):
            validate_schema(None, ReportingSchema, "test", strict=True)

    def test_empty_lenient(self):
        warnings = validate_schema(pd.DataFrame(), ReportingSchema, "test")
        assert "empty" in warnings[0]

    def test_empty_strict(self):
        with pytest.raises(ValueError, match="empty"):
            validate_schema(pd.DataFrame(), ReportingSchema, "test", strict=True)
