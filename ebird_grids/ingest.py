"""
Loading and cleaning of eBird Basic Dataset (EBD) text files.

The EBD is a large tab-delimited export (often gzip-compressed). Only the
columns in ``config.EBD_COLUMNS`` are read, in chunks, and renamed to
snake_case pipeline names. The raw frame is discarded once the working set
of observations and checklists has been derived from it.
"""

import csv
import gc
import os

import pandas as pd

from ebird_grids import config
from ebird_grids.logging_config import get_pipeline_logger, log_row_filter
from ebird_grids.pipeline_types import FilterCounts

log = get_pipeline_logger(__name__)

_DTYPES = {
    "SCIENTIFIC NAME": str,
    "CATEGORY": str,
    "SAMPLING EVENT IDENTIFIER": str,
    "GROUP IDENTIFIER": str,
    "PROTOCOL TYPE": str,
    "LONGITUDE": float,
    "LATITUDE": float,
    "DURATION MINUTES": float,
    "EFFORT DISTANCE KM": float,
    "NUMBER OBSERVERS": float,
}


def _read_ebd_table(path, columns, chunksize, chunk_filter=None):
    """Stream an EBD-format file, keeping only *columns* (raw name → new name)."""
    if not os.path.isfile(path):
        raise FileNotFoundError(f"EBD file not found: {path}")

    header = pd.read_csv(path, sep="\t", nrows=0).columns
    usecols = [c for c in columns if c in header]
    missing = [c for c in columns if c not in header and columns[c] != "group_identifier"]
    if missing:
        raise KeyError(f"{path} is missing required EBD columns: {missing}")

    frames = []
    total = 0
    for chunk in pd.read_csv(
        path, sep="\t", usecols=usecols, chunksize=chunksize,
        dtype={c: _DTYPES[c] for c in usecols if c in _DTYPES},
        quoting=csv.QUOTE_NONE,  # EBD comments contain unbalanced quotes
        on_bad_lines="warn",
    ):
        chunk = chunk.rename(columns=columns)
        total += len(chunk)
        if chunk_filter is not None:
            chunk = chunk_filter(chunk)
        frames.append(chunk)
        log.debug("  %s: %d rows read", os.path.basename(path), total)

    if not frames:
        raise pd.errors.EmptyDataError(f"No rows in {path}")

    df = pd.concat(frames, ignore_index=True)
    if "group_identifier" not in df.columns:
        df["group_identifier"] = pd.Series(pd.NA, index=df.index, dtype="string")
    df["observation_date"] = pd.to_datetime(df["observation_date"], errors="coerce")
    log.info("Read %d rows from %s (%d kept)", total, path, len(df))
    return df, total


def read_observations(path, chunksize=None, categories=None):
    """Read the species-level EBD file.

    Only rows whose taxonomic ``category`` is in *categories* (default
    ``config.SPECIES_CATEGORIES``) are kept, filtering chunk by chunk so
    spuhs, slashes and hybrids never reach memory together.

    Returns
    -------
    tuple[pd.DataFrame, int]
        Observations and the raw row count before the category filter.
    """
    chunksize = chunksize or config.EBD_CHUNK_SIZE
    categories = categories or config.SPECIES_CATEGORIES

    def _keep_species(chunk):
        return chunk[chunk["category"].str.lower().isin(categories)]

    return _read_ebd_table(path, config.EBD_COLUMNS, chunksize, _keep_species)


def read_sampling_events(path, chunksize=None):
    """Read the checklist-level sampling-event file (one row per checklist)."""
    chunksize = chunksize or config.EBD_CHUNK_SIZE
    df, _ = _read_ebd_table(path, config.SAMPLING_COLUMNS, chunksize)
    return df.drop_duplicates(subset="checklist_id").reset_index(drop=True)


def read_species_whitelist(path, column=None):
    """Return the set of scientific names in the whitelist CSV."""
    column = column or config.SPECIES_LIST_COLUMN
    df = pd.read_csv(path)
    if column not in df.columns:
        raise KeyError(f"Species list {path} has no '{column}' column")
    names = set(df[column].dropna().astype(str).str.strip())
    log.info("Species whitelist: %d names from %s", len(names), path)
    return names


def apply_species_whitelist(observations, names, step_name="species_whitelist"):
    """Inner-join observations against the whitelist; others are dropped."""
    whitelist = pd.DataFrame({"species": sorted(names)})
    out = observations.merge(whitelist, on="species", how="inner")
    log_row_filter(log, step_name, len(observations), len(out), "species not in whitelist")
    return out


def group_representatives(checklists):
    """Map each ``group_identifier`` to the checklist id that stands for it.

    The lexicographically first ``checklist_id`` of the group is chosen.
    """
    grouped = checklists.dropna(subset=["group_identifier"])
    return grouped.groupby("group_identifier", sort=True)["checklist_id"].min()


def collapse_group_checklists(df, representatives=None, step_name="collapse_groups"):
    """Collapse shared group checklists so each birding event counts once.

    Checklists shared among observers carry the same ``group_identifier``.
    Every row of a group is relabelled with the group's representative id
    (see ``group_representatives``), then duplicates are dropped: per
    species for observation rows, per checklist otherwise. The reports of
    all copies are kept, so a species recorded on only one copy still
    counts for the group. Ungrouped rows are untouched.

    Parameters
    ----------
    df : pd.DataFrame
        Observation rows or a checklist table.
    representatives : pd.Series, optional
        ``group_identifier`` → representative id. Pass the mapping built
        from the checklist table when collapsing observations, so both
        tables keep the same id. Defaults to the mapping from *df*.
    """
    rows_in = len(df)
    grouped = df["group_identifier"].notna()
    if not grouped.any():
        return df
    if representatives is None:
        representatives = group_representatives(df)

    kept_id = df["group_identifier"].map(representatives)
    kept_id = kept_id.where(kept_id.notna(), df["checklist_id"])
    key = ["checklist_id", "species"] if "species" in df.columns else ["checklist_id"]

    out = df.assign(checklist_id=kept_id, _own=df["checklist_id"] == kept_id)
    # A representative's own row wins over a copy's row for the same key.
    out = out.sort_values("_own", ascending=False, kind="stable")
    out = out[~(out.duplicated(subset=key) & grouped.reindex(out.index))]
    out = out.sort_index().drop(columns="_own")

    log_row_filter(log, step_name, rows_in, len(out), "duplicate group checklist copies")
    return out.reset_index(drop=True)


def checklists_from_observations(observations):
    """Derive one row per checklist from observation rows."""
    cols = [c for c in config.SAMPLING_COLUMNS.values() if c in observations.columns]
    return (
        observations[cols]
        .drop_duplicates(subset="checklist_id")
        .reset_index(drop=True)
    )


def build_working_set(ebd_path, species_list_path, sampling_path=None,
                      chunksize=None):
    """Derive the cleaned working set from raw EBD files.

    Steps: category filter (during read) → species whitelist → group
    checklist collapse, driven by the checklist table. The raw observation
    frame is released before returning to keep peak memory near the size
    of the working set.

    Returns
    -------
    tuple[pd.DataFrame, pd.DataFrame, FilterCounts]
        ``(observations, checklists, counts)``. Checklists come from the
        sampling-event file when given (so checklists with no whitelisted
        species still count as effort), otherwise from the observations.
    """
    counts = FilterCounts()

    raw, counts.raw_rows = read_observations(ebd_path, chunksize=chunksize)
    counts.after_category = len(raw)

    names = read_species_whitelist(species_list_path)
    observations = apply_species_whitelist(raw, names)
    counts.after_whitelist = len(observations)
    del raw
    gc.collect()

    # The checklist table decides which copy of a group survives; the
    # observations follow it so the two tables always join.
    if sampling_path:
        sampling = read_sampling_events(sampling_path, chunksize=chunksize)
        representatives = group_representatives(sampling)
        checklists = collapse_group_checklists(
            sampling, representatives, step_name="collapse_groups_sampling",
        )
        observations = collapse_group_checklists(observations, representatives)
        unknown = ~observations["checklist_id"].isin(checklists["checklist_id"])
        if unknown.any():
            log.warning(
                "%d observation rows reference checklists absent from %s",
                int(unknown.sum()), sampling_path,
            )
    else:
        observations = collapse_group_checklists(observations)
        checklists = checklists_from_observations(observations)
    counts.after_group_collapse = len(observations)

    log.info(
        "Working set: %d observations, %d checklists, %d species",
        len(observations), len(checklists), observations["species"].nunique(),
    )
    return observations, checklists, counts
