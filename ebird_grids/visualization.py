"""
Static figures for gridded reporting tables and checklist effort.

Map types:
  A. Single grid map (cell value as fill colour, region outline)
  B. Faceted grid maps (one panel per time period or dimension value)
  C. Effort histograms (duration, distance, observers)
  D. Violin plots of a value across groups

Every function writes one file and returns its path. Figures use the Agg
backend and config.MAP_DPI.
"""

import os

import geopandas as gpd
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.colors import Normalize
from shapely.geometry import box

from ebird_grids import config
from ebird_grids.logging_config import get_pipeline_logger

log = get_pipeline_logger(__name__)


def _save(fig, output_path):
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    fig.savefig(output_path, dpi=config.MAP_DPI, bbox_inches="tight")
    plt.close(fig)
    log.info("Saved figure: %s", output_path)
    return output_path


def cells_to_geodataframe(df, cell_size=None, crs=None):
    """Square polygons for each (x, y) cell centre in *df*.

    Returns
    -------
    gpd.GeoDataFrame
        *df* columns plus geometry, in the equal-area CRS.
    """
    cell_size = config.GRID_CELL_SIZE_M if cell_size is None else cell_size
    crs = crs or config.EQUAL_AREA_CRS
    half = cell_size / 2
    geoms = [
        box(x - half, y - half, x + half, y + half)
        for x, y in zip(df["x"].to_numpy(), df["y"].to_numpy())
    ]
    return gpd.GeoDataFrame(df.reset_index(drop=True), geometry=geoms, crs=crs)


def _draw_cells(ax, cells, value_col, boundary, norm, cmap, cell_size):
    gdf = cells_to_geodataframe(cells, cell_size=cell_size)
    values = pd.to_numeric(gdf[value_col], errors="coerce").astype(float)
    gdf = gdf.assign(**{value_col: values})
    gdf.plot(ax=ax, column=value_col, cmap=cmap, norm=norm, linewidth=0,
             missing_kwds={"color": "#dddddd"})
    if boundary is not None:
        boundary.to_crs(gdf.crs).boundary.plot(ax=ax, color="#333333", linewidth=0.5)
    ax.set_aspect("equal")
    ax.set_axis_off()


def plot_grid_map(cells, value_col, boundary, output_path, title="",
                  cmap=None, vmin=None, vmax=None, cell_size=None):
    """Choropleth of one value per grid cell.

    Parameters
    ----------
    cells : pd.DataFrame
        Must contain ``x``, ``y`` and *value_col*.
    boundary : gpd.GeoDataFrame or None
        Region outline drawn on top.
    """
    cmap = cmap or config.MAP_CMAP
    values = pd.to_numeric(cells[value_col], errors="coerce").astype(float)
    norm = Normalize(
        vmin=np.nanmin(values) if vmin is None else vmin,
        vmax=np.nanmax(values) if vmax is None else vmax,
    )

    fig, ax = plt.subplots(figsize=(10, 11))
    _draw_cells(ax, cells, value_col, boundary, norm, cmap, cell_size)
    sm = plt.cm.ScalarMappable(cmap=cmap, norm=norm)
    sm.set_array([])
    fig.colorbar(sm, ax=ax, shrink=0.6, label=value_col)
    if title:
        ax.set_title(title, fontsize=13)
    return _save(fig, output_path)


def plot_faceted_grid_maps(table, value_col, facet_col, boundary, output_path,
                           title="", facets=None, ncols=None, cmap=None,
                           cell_size=None):
    """Grid maps in a panel per *facet_col* value, sharing one colour scale.

    Parameters
    ----------
    table : pd.DataFrame
        Rows with ``x``, ``y``, *facet_col* and *value_col*.
    facets : list, optional
        Facet values and order. Defaults to categorical order (or sorted
        unique values) of *facet_col*, restricted to values present.
    """
    cmap = cmap or config.MAP_CMAP
    ncols = ncols or config.FACET_COLUMNS
    if facets is None:
        col = table[facet_col]
        if isinstance(col.dtype, pd.CategoricalDtype):
            present = set(col.dropna().unique())
            facets = [c for c in col.cat.categories if c in present]
        else:
            facets = sorted(col.dropna().unique())
    if not facets:
        raise ValueError(f"No values in '{facet_col}' to facet on")

    values = pd.to_numeric(table[value_col], errors="coerce").astype(float)
    norm = Normalize(vmin=np.nanmin(values), vmax=np.nanmax(values))

    nrows = int(np.ceil(len(facets) / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(4 * ncols, 4.5 * nrows),
                             squeeze=False)
    for i, ax in enumerate(axes.flat):
        if i >= len(facets):
            ax.set_axis_off()
            continue
        facet = facets[i]
        subset = table[table[facet_col] == facet]
        _draw_cells(ax, subset, value_col, boundary, norm, cmap, cell_size)
        ax.set_title(f"{facet} (n={len(subset)})", fontsize=10)

    sm = plt.cm.ScalarMappable(cmap=cmap, norm=norm)
    sm.set_array([])
    fig.colorbar(sm, ax=axes.ravel().tolist(), shrink=0.5, label=value_col)
    if title:
        fig.suptitle(title, fontsize=14)
    return _save(fig, output_path)


def plot_effort_histograms(checklists, output_path, columns=None, bins=None):
    """One histogram per effort column, long tail clipped at a quantile."""
    columns = [c for c in (columns or config.EFFORT_COLUMNS) if c in checklists.columns]
    if not columns:
        raise KeyError("No effort columns present for histograms")
    bins = bins or config.HISTOGRAM_BINS

    fig, axes = plt.subplots(1, len(columns), figsize=(5 * len(columns), 4),
                             squeeze=False)
    for ax, col in zip(axes.flat, columns):
        values = checklists[col].dropna().astype(float)
        if values.empty:
            ax.text(0.5, 0.5, "no data", transform=ax.transAxes,
                    ha="center", va="center", color="#666666")
        else:
            upper = values.quantile(config.HISTOGRAM_CLIP_QUANTILE)
            ax.hist(values.clip(upper=upper), bins=bins, color="#4c72b0",
                    edgecolor="white", linewidth=0.3)
        ax.set_xlabel(col.replace("_", " "))
        ax.set_ylabel("checklists")
    fig.tight_layout()
    return _save(fig, output_path)


def plot_violins(df, value_col, group_col, output_path, title=""):
    """Violin plot of *value_col* per *group_col*.

    Groups need at least two distinct values; a constant group has no
    density to draw and is left out.
    """
    col = df[group_col]
    if isinstance(col.dtype, pd.CategoricalDtype):
        order = list(col.cat.categories)
    else:
        order = sorted(col.dropna().unique())

    groups, labels = [], []
    for g in order:
        values = df.loc[col == g, value_col].dropna().to_numpy(dtype=float)
        if np.unique(values).size >= 2:
            groups.append(values)
            labels.append(str(g))
    if not groups:
        raise ValueError(f"No group of '{group_col}' has two distinct '{value_col}' values")

    fig, ax = plt.subplots(figsize=(max(6, 0.6 * len(groups) + 2), 5))
    parts = ax.violinplot(groups, showmedians=True)
    for body in parts["bodies"]:
        body.set_facecolor("#4c72b0")
        body.set_alpha(0.6)
    ax.set_xticks(range(1, len(labels) + 1))
    ax.set_xticklabels(labels, rotation=45, ha="right")
    ax.set_xlabel(group_col.replace("_", " "))
    ax.set_ylabel(value_col.replace("_", " "))
    if title:
        ax.set_title(title)
    fig.tight_layout()
    return _save(fig, output_path)
