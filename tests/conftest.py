"""
Shared fixtures for eBird grid pipeline tests.

Provides a synthetic study region, small gridded tables, and raw EBD-format
text files written to temporary directories, so each test module can check
pipeline logic against inputs whose expected outputs are known by hand.
"""

import os
import tempfile

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box

from ebird_grids import config


# ---------------------------------------------------------------------------
# Constants for synthetic test geometry
# ---------------------------------------------------------------------------
# Square study region inside Maharashtra
WEST, SOUTH, EAST, NORTH = 76.0, 19.0, 78.0, 21.0
MID_LON = (WEST + EAST) / 2  # 77.0

CROW = "Corvus splendens"
SPARROW = "Passer domesticus"


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory that is cleaned up after test."""
    with tempfile.TemporaryDirectory(prefix="ebird_test_") as d:
        yield d


@pytest.fixture
def region_gdf():
    """Single square region polygon in WGS84."""
    return gpd.GeoDataFrame(
        {"name": ["Region"], "geometry": [box(WEST, SOUTH, EAST, NORTH)]},
        crs="EPSG:4326",
    )


@pytest.fixture
def two_part_region_gdf():
    """Region split into two adjacent rectangles (dissolves to one square)."""
    return gpd.GeoDataFrame(
        {
            "name": ["West", "East"],
            "geometry": [box(WEST, SOUTH, MID_LON, NORTH), box(MID_LON, SOUTH, EAST, NORTH)],
        },
        crs="EPSG:4326",
    )


@pytest.fixture
def boundary_file(tmp_dir, two_part_region_gdf):
    path = os.path.join(tmp_dir, "region.geojson")
    two_part_region_gdf.to_file(path, driver="GeoJSON")
    return path


# ---------------------------------------------------------------------------
# Gridded tables
# ---------------------------------------------------------------------------

@pytest.fixture
def gridded_observations():
    """Observation rows already gridded and binned.

    Cell (0, 0) in 2015 has checklists C1 (crow, sparrow) and C2 (crow).
    Cell (25000, 0) in 2015 has C3 (crow only).
    """
    return pd.DataFrame({
        "checklist_id": ["C1", "C1", "C2", "C3"],
        "species": [CROW, SPARROW, CROW, CROW],
        "x": [0, 0, 0, 25000],
        "y": [0, 0, 0, 0],
        "period": ["2015", "2015", "2015", "2015"],
    })


@pytest.fixture
def gridded_checklists():
    """Checklist table matching ``gridded_observations`` plus C4 (no reports)."""
    return pd.DataFrame({
        "checklist_id": ["C1", "C2", "C3", "C4"],
        "x": [0, 0, 25000, 0],
        "y": [0, 0, 0, 0],
        "period": ["2015", "2015", "2015", "2015"],
        "protocol_type": ["Stationary", "Traveling", "Traveling", "Traveling"],
        "duration_minutes": [30.0, 60.0, 90.0, 120.0],
        "effort_distance_km": [0.0, 1.5, 2.0, 4.0],
        "number_observers": [1.0, 2.0, 1.0, 3.0],
    })


# ---------------------------------------------------------------------------
# Raw EBD files
# ---------------------------------------------------------------------------

def _ebd_record(species, checklist, lon, lat, date, category="species",
                group="", protocol="Traveling", duration=30.0, distance=1.0,
                observers=1.0):
    """One raw EBD row keyed by the raw EBD header names."""
    return {
        "COMMON NAME": "",
        "SCIENTIFIC NAME": species,
        "CATEGORY": category,
        "SAMPLING EVENT IDENTIFIER": checklist,
        "GROUP IDENTIFIER": group,
        "LONGITUDE": lon,
        "LATITUDE": lat,
        "OBSERVATION DATE": date,
        "PROTOCOL TYPE": protocol,
        "DURATION MINUTES": duration,
        "EFFORT DISTANCE KM": distance,
        "NUMBER OBSERVERS": observers,
    }


# Ten raw rows:
#   S1, S2  same point, 2015           -> one cell, period 2015
#   S3      2005                       -> period 2000-2006
#   S4      outside the region         -> clipped
#   S5      2023                       -> beyond the last period
#   S7, S8  one shared group checklist -> S8 collapsed
# plus a spuh (category filter) and Pavo cristatus (not whitelisted).
EBD_RECORDS = [
    _ebd_record(CROW, "S1", 77.0, 20.0, "2015-03-01", protocol="Stationary", distance=0.0),
    _ebd_record(SPARROW, "S1", 77.0, 20.0, "2015-03-01", protocol="Stationary", distance=0.0),
    _ebd_record("Corvus sp.", "S1", 77.0, 20.0, "2015-03-01", category="spuh",
                protocol="Stationary", distance=0.0),
    _ebd_record(CROW, "S2", 77.0, 20.0, "2015-06-01", duration=60.0, observers=2.0),
    _ebd_record("Pavo cristatus", "S2", 77.0, 20.0, "2015-06-01", duration=60.0,
                observers=2.0),
    _ebd_record(SPARROW, "S3", 77.5, 20.5, "2005-01-01", duration=45.0),
    _ebd_record(CROW, "S4", 79.5, 20.0, "2015-03-01"),
    _ebd_record(CROW, "S5", 77.0, 20.0, "2023-01-01"),
    _ebd_record(SPARROW, "S7", 77.2, 19.5, "2018-01-01", group="G1", observers=2.0),
    _ebd_record(SPARROW, "S8", 77.2, 19.5, "2018-01-01", group="G1", observers=2.0),
]


def _sampling_record(record):
    """Drop the species columns from a raw EBD row."""
    return {k: v for k, v in record.items()
            if k not in ("COMMON NAME", "SCIENTIFIC NAME", "CATEGORY")}


SAMPLING_RECORDS = [_sampling_record(r) for r in EBD_RECORDS] + [
    # Checklist in the 2015 cell that reported nothing on the whitelist.
    _sampling_record(_ebd_record("", "S10", 77.0, 20.0, "2015-09-01", duration=15.0)),
]


def _write_tsv(path, records):
    pd.DataFrame(records).to_csv(path, sep="\t", index=False)
    return path


@pytest.fixture
def ebd_file(tmp_dir):
    return _write_tsv(os.path.join(tmp_dir, "ebd.txt"), EBD_RECORDS)


@pytest.fixture
def sampling_file(tmp_dir):
    # Built from EBD_RECORDS, so S1 and S2 appear more than once.
    return _write_tsv(os.path.join(tmp_dir, "ebd_sampling.txt"), SAMPLING_RECORDS)


@pytest.fixture
def species_list_file(tmp_dir):
    path = os.path.join(tmp_dir, "species_list.csv")
    pd.DataFrame({
        config.SPECIES_LIST_COLUMN: [CROW, SPARROW],
        "common_name": ["House Crow", "House Sparrow"],
    }).to_csv(path, index=False)
    return path


@pytest.fixture
def period_table():
    from ebird_grids.periods import load_period_table
    return load_period_table()
