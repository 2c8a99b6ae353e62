"""
Centralized configuration for the India eBird grid analysis.

All gridding parameters, time-period definitions, input schema mappings,
and output paths are defined here so that every pipeline stage reads the
same values.
"""

import os

# ─── INPUT PATHS ─────────────────────────────────────────────────────────
DATA_DIR = "data"
DEFAULT_EBD_PATH = os.path.join(DATA_DIR, "ebd_IN_relJun-2022.txt.gz")
DEFAULT_SAMPLING_PATH = os.path.join(DATA_DIR, "ebd_sampling_IN_relJun-2022.txt.gz")
DEFAULT_SPECIES_LIST_PATH = os.path.join(DATA_DIR, "species_list.csv")
DEFAULT_BOUNDARY_PATH = os.path.join(DATA_DIR, "india_boundary.geojson")

# Whitelist CSV column holding the scientific name.
SPECIES_LIST_COLUMN = "scientific_name"

# ─── OUTPUT PATHS ────────────────────────────────────────────────────────
DEFAULT_OUTPUT_DIR = "."
OUTPUT_DIRS = {
    "results": "results",
    "figs": "figs",
    "cache": os.path.join("data", ".cache"),
}

# ─── SPATIAL GRID ────────────────────────────────────────────────────────
# Source coordinates are geographic WGS84.
GEOGRAPHIC_CRS = "EPSG:4326"

# Lambert azimuthal equal-area projection centred on the Indian
# subcontinent. Cell areas are constant across the study region.
EQUAL_AREA_CENTER = {"lon": 80.0, "lat": 23.0}
EQUAL_AREA_CRS = (
    f"+proj=laea +lat_0={EQUAL_AREA_CENTER['lat']} "
    f"+lon_0={EQUAL_AREA_CENTER['lon']} "
    "+x_0=0 +y_0=0 +datum=WGS84 +units=m +no_defs"
)

GRID_CELL_SIZE_M = 25_000  # 25 km square cells

# ─── TIME PERIODS ────────────────────────────────────────────────────────
# Fixed, ordered partition of the year axis. Historical data is sparse so
# early periods are wide; from 2013 onward there is enough data for annual
# buckets. ``start=None`` means unbounded below. Years after the last
# period's end are unmapped and excluded.
STUDY_LAST_YEAR = 2022

TIME_PERIODS = [
    {"label": "pre2000", "start": None, "end": 1999},
    {"label": "2000-2006", "start": 2000, "end": 2006},
    {"label": "2007-2010", "start": 2007, "end": 2010},
    {"label": "2011-2012", "start": 2011, "end": 2012},
] + [
    {"label": str(y), "start": y, "end": y}
    for y in range(2013, STUDY_LAST_YEAR + 1)
]

# ─── EBIRD BASIC DATASET (EBD) SCHEMA ────────────────────────────────────
# Raw EBD header → pipeline column name.
EBD_COLUMNS = {
    "SCIENTIFIC NAME": "species",
    "CATEGORY": "category",
    "SAMPLING EVENT IDENTIFIER": "checklist_id",
    "GROUP IDENTIFIER": "group_identifier",
    "LONGITUDE": "longitude",
    "LATITUDE": "latitude",
    "OBSERVATION DATE": "observation_date",
    "PROTOCOL TYPE": "protocol_type",
    "DURATION MINUTES": "duration_minutes",
    "EFFORT DISTANCE KM": "effort_distance_km",
    "NUMBER OBSERVERS": "number_observers",
}

# The sampling-event file has no species-level columns.
SAMPLING_COLUMNS = {
    k: v for k, v in EBD_COLUMNS.items()
    if v not in ("species", "category")
}

# eBird taxonomic categories that resolve to a countable species.
SPECIES_CATEGORIES = ["species", "issf"]

# Columns describing checklist effort; used for histograms and comparisons.
EFFORT_COLUMNS = ["duration_minutes", "effort_distance_km", "number_observers"]

# Rows per chunk when streaming the EBD text file (keeps memory bounded).
EBD_CHUNK_SIZE = 500_000

# ─── ANALYSIS ────────────────────────────────────────────────────────────
# Categorical dimensions the aggregator is run over.
REPORTING_DIMENSIONS = ["species", "protocol_type"]

# Significance level for pairwise comparisons after Holm correction.
PAIRWISE_ALPHA = 0.05

# ─── VISUALIZATION PARAMETERS ────────────────────────────────────────────
MAP_DPI = 300
MAP_CMAP = "viridis"
FACET_COLUMNS = 4
HISTOGRAM_BINS = 50

# Most widespread species (by occupied cells) drawn as per-period maps.
MAP_TOP_SPECIES = 4

# Effort values above these quantiles are clipped in histograms so the
# long tail does not flatten the plot.
HISTOGRAM_CLIP_QUANTILE = 0.99

# ─── CACHE ───────────────────────────────────────────────────────────────
CACHE_MAX_AGE_DAYS = 30


def get_output_dirs(root=None):
    """Return (and create) the output directory layout under ``root``.

    Returns
    -------
    dict
        Keys ``results``, ``figs``, ``cache`` mapped to absolute-or-relative
        paths rooted at *root*.
    """
    root = root or DEFAULT_OUTPUT_DIR
    dirs = {key: os.path.join(root, sub) for key, sub in OUTPUT_DIRS.items()}
    for path in dirs.values():
        os.makedirs(path, exist_ok=True)
    return dirs
