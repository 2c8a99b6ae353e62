"""
File-based snapshots of expensive intermediate tables.

Reading and gridding the full EBD dominates run time, so the gridded
working set is cached under a key derived from the input files (path, size,
mtime) and the grid/period parameters. A changed input produces a new key.
"""

import hashlib
import json
import os
import time

import pandas as pd

from ebird_grids import config
from ebird_grids.logging_config import get_pipeline_logger

log = get_pipeline_logger(__name__)


def input_fingerprint(*paths):
    """Stable description of input files for use as a cache parameter."""
    parts = []
    for path in paths:
        if not path:
            continue
        st = os.stat(path)
        parts.append(f"{os.path.abspath(path)}:{st.st_size}:{int(st.st_mtime)}")
    return "|".join(parts)


class CacheManager:
    """CSV + JSON-metadata cache keyed by a hash of operation parameters.

    Categorical columns are recorded in the metadata with their category
    order so a cached frame round-trips with the same dtypes.
    """

    def __init__(self, cache_dir=None, max_age_days=None):
        self.cache_dir = cache_dir or config.OUTPUT_DIRS["cache"]
        self.max_age_days = (
            config.CACHE_MAX_AGE_DAYS if max_age_days is None else max_age_days
        )
        os.makedirs(self.cache_dir, exist_ok=True)
        self._stats = {"hits": 0, "misses": 0}

    def _make_key(self, operation, **params):
        payload = {"op": operation}
        for k, v in sorted(params.items()):
            payload[k] = str(v)
        raw = json.dumps(payload, sort_keys=True)
        return hashlib.sha256(raw.encode()).hexdigest()[:16]

    def _cache_paths(self, key):
        csv_path = os.path.join(self.cache_dir, f"{key}.csv")
        meta_path = os.path.join(self.cache_dir, f"{key}.meta.json")
        return csv_path, meta_path

    def get(self, operation, **params):
        """Retrieve a cached DataFrame, or None if absent or expired."""
        key = self._make_key(operation, **params)
        csv_path, meta_path = self._cache_paths(key)

        if not os.path.exists(csv_path) or not os.path.exists(meta_path):
            self._stats["misses"] += 1
            return None

        with open(meta_path) as f:
            meta = json.load(f)

        age_days = (time.time() - meta.get("created", 0)) / 86400
        if age_days > self.max_age_days:
            log.debug("Cache expired for %s (%.1f days old)", operation, age_days)
            self._stats["misses"] += 1
            return None

        string_cols = {c: str for c in meta.get("string_columns", [])}
        df = pd.read_csv(csv_path, dtype=string_cols or None)
        for col in meta.get("datetime_columns", []):
            df[col] = pd.to_datetime(df[col])
        for col, categories in meta.get("categoricals", {}).items():
            df[col] = pd.Categorical(
                df[col].astype(str), categories=categories, ordered=True
            )

        log.info("Cache hit: %s [%s] (%d rows)", operation, key, len(df))
        self._stats["hits"] += 1
        return df

    def put(self, operation, df, **params):
        """Store a DataFrame in the cache."""
        key = self._make_key(operation, **params)
        csv_path, meta_path = self._cache_paths(key)

        df.to_csv(csv_path, index=False)
        categoricals = {
            col: [str(c) for c in df[col].cat.categories]
            for col in df.columns
            if isinstance(df[col].dtype, pd.CategoricalDtype)
        }
        meta = {
            "operation": operation,
            "params": {k: str(v) for k, v in params.items()},
            "created": time.time(),
            "rows": len(df),
            "categoricals": categoricals,
            "datetime_columns": [
                c for c in df.columns if pd.api.types.is_datetime64_any_dtype(df[c])
            ],
            "string_columns": [
                c for c in df.columns
                if c not in categoricals and (
                    pd.api.types.is_object_dtype(df[c])
                    or pd.api.types.is_string_dtype(df[c])
                )
            ],
        }
        with open(meta_path, "w") as f:
            json.dump(meta, f, indent=2)

        log.debug("Cached %d rows for %s [%s]", len(df), operation, key)

    def get_stats(self):
        """Return cache hit/miss statistics."""
        total = self._stats["hits"] + self._stats["misses"]
        hit_rate = self._stats["hits"] / total * 100 if total > 0 else 0
        return {
            "hits": self._stats["hits"],
            "misses": self._stats["misses"],
            "hit_rate_pct": round(hit_rate, 1),
        }
