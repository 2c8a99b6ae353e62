"""
Spatial gridding of point observations.

Observations are first restricted to the study region with a containment
test against the boundary polygon, then reprojected to a Lambert azimuthal
equal-area plane and snapped to square cells of fixed size. A cell is
identified by its integer centre coordinates (x, y) in metres.
"""

import geopandas as gpd
import numpy as np
import pandas as pd

from ebird_grids import config
from ebird_grids.logging_config import get_pipeline_logger, log_row_filter

log = get_pipeline_logger(__name__)


def load_region_boundary(path):
    """Read the study-region boundary and dissolve it to a single polygon.

    Parameters
    ----------
    path : str
        Any vector format geopandas can read (GeoJSON, shapefile, GPKG).

    Returns
    -------
    gpd.GeoDataFrame
        One row, CRS ``config.GEOGRAPHIC_CRS``.
    """
    gdf = gpd.read_file(path)
    if gdf.empty:
        raise ValueError(f"Boundary file {path} contains no features")
    if gdf.crs is None:
        log.warning("Boundary %s has no CRS; assuming %s", path, config.GEOGRAPHIC_CRS)
        gdf = gdf.set_crs(config.GEOGRAPHIC_CRS)
    gdf = gdf.to_crs(config.GEOGRAPHIC_CRS)
    region = gdf[["geometry"]].dissolve()
    log.info("Loaded region boundary from %s (%d features dissolved)", path, len(gdf))
    return region.reset_index(drop=True)


def clip_to_region(df, boundary, lon_col="longitude", lat_col="latitude",
                   step_name="clip_to_region"):
    """Keep only rows whose coordinates fall within the region boundary.

    Rows with missing coordinates are dropped as well. The boundary is
    dissolved first so a point matches at most once.

    Returns
    -------
    pd.DataFrame
        Subset of *df* (same columns, original index order).
    """
    rows_in = len(df)
    has_coords = df[lon_col].notna() & df[lat_col].notna()
    candidates = df[has_coords]

    points = gpd.GeoDataFrame(
        index=candidates.index,
        geometry=gpd.points_from_xy(candidates[lon_col], candidates[lat_col]),
        crs=config.GEOGRAPHIC_CRS,
    )
    region = boundary.to_crs(config.GEOGRAPHIC_CRS)[["geometry"]].dissolve()

    joined = gpd.sjoin(points, region, how="inner", predicate="within")
    inside = candidates.index.isin(joined.index)
    out = candidates[inside]

    log_row_filter(log, step_name, rows_in, len(out), "outside region boundary")
    return out


def project_points(lon, lat, crs=None):
    """Reproject geographic coordinates to the equal-area plane.

    Parameters
    ----------
    lon, lat : array-like
        Longitudes and latitudes in degrees (WGS84).
    crs : str, optional
        Target CRS. Default: ``config.EQUAL_AREA_CRS``.

    Returns
    -------
    tuple[np.ndarray, np.ndarray]
        Projected x and y in metres.
    """
    crs = crs or config.EQUAL_AREA_CRS
    points = gpd.GeoSeries(
        gpd.points_from_xy(np.asarray(lon, dtype=float), np.asarray(lat, dtype=float)),
        crs=config.GEOGRAPHIC_CRS,
    ).to_crs(crs)
    return points.x.to_numpy(), points.y.to_numpy()


def snap_to_grid(values, cell_size=None):
    """Round projected coordinates to the nearest multiple of ``cell_size``.

    ``np.round`` rounds halves to even, so a coordinate exactly halfway
    between two cell centres is assigned deterministically.

    Returns
    -------
    np.ndarray
        int64 coordinates.
    """
    cell_size = config.GRID_CELL_SIZE_M if cell_size is None else cell_size
    if cell_size <= 0:
        raise ValueError(f"cell_size must be positive, got {cell_size}")
    values = np.asarray(values, dtype=float)
    return (np.round(values / cell_size) * cell_size).astype(np.int64)


def assign_grid_cells(df, cell_size=None, crs=None,
                      lon_col="longitude", lat_col="latitude"):
    """Add integer ``x`` and ``y`` grid-cell columns to *df*.

    *df* must already be restricted to rows with valid coordinates (see
    ``clip_to_region``).
    """
    if df[[lon_col, lat_col]].isna().any().any():
        raise ValueError("assign_grid_cells received rows with missing coordinates")
    cell_size = config.GRID_CELL_SIZE_M if cell_size is None else cell_size
    out = df.copy()
    if out.empty:
        out["x"] = pd.Series(dtype=np.int64)
        out["y"] = pd.Series(dtype=np.int64)
        return out
    px, py = project_points(out[lon_col], out[lat_col], crs=crs)
    out["x"] = snap_to_grid(px, cell_size)
    out["y"] = snap_to_grid(py, cell_size)
    log.debug("Gridded %d rows into %d cells", len(out),
              len(out[["x", "y"]].drop_duplicates()))
    return out
