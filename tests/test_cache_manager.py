"""
Tests for ebird_grids/cache_manager.py.

The cached gridded working set must come back with the dtypes the
downstream stages rely on: string checklist ids, datetimes, and the
ordered period categorical.
"""

import os

import pandas as pd
import pytest

from ebird_grids.cache_manager import CacheManager, input_fingerprint


def _gridded():
    return pd.DataFrame({
        "checklist_id": ["007", "S2", "S3"],
        "x": [0, 25000, 25000],
        "y": [0, 0, -25000],
        "period": pd.Categorical(["2015", "pre2000", "2015"],
                                 categories=["pre2000", "2015", "2016"],
                                 ordered=True),
        "observation_date": pd.to_datetime(["2015-03-01", "1998-01-01", "2015-06-01"]),
        "duration_minutes": [30.0, None, 60.0],
    })


@pytest.fixture
def cache(tmp_dir):
    return CacheManager(cache_dir=os.path.join(tmp_dir, "cache"))


class TestCacheRoundTrip:

    def test_miss_then_hit(self, cache):
        assert cache.get("gridded", cell_size=25000) is None
        cache.put("gridded", _gridded(), cell_size=25000)
        assert cache.get("gridded", cell_size=25000) is not None
        assert cache.get_stats() == {"hits": 1, "misses": 1, "hit_rate_pct": 50.0}

    def test_string_ids_preserved(self, cache):
        cache.put("gridded", _gridded(), cell_size=25000)
        df = cache.get("gridded", cell_size=25000)
        assert df["checklist_id"].iloc[0] == "007"

    def test_categorical_order_restored(self, cache):
        cache.put("gridded", _gridded(), cell_size=25000)
        df = cache.get("gridded", cell_size=25000)
        assert isinstance(df["period"].dtype, pd.CategoricalDtype)
        assert df["period"].cat.ordered
        assert list(df["period"].cat.categories) == ["pre2000", "2015", "2016"]
        assert list(df["period"].astype(str)) == ["2015", "pre2000", "2015"]

    def test_datetimes_restored(self, cache):
        cache.put("gridded", _gridded(), cell_size=25000)
        df = cache.get("gridded", cell_size=25000)
        assert pd.api.types.is_datetime64_any_dtype(df["observation_date"])

    def test_integer_cells(self, cache):
        cache.put("gridded", _gridded(), cell_size=25000)
        df = cache.get("gridded", cell_size=25000)
        assert pd.api.types.is_integer_dtype(df["x"])
        assert list(df["y"]) == [0, 0, -25000]

    def test_different_params_miss(self, cache):
        cache.put("gridded", _gridded(), cell_size=25000)
        assert cache.get("gridded", cell_size=50000) is None

    def test_expired_entry_miss(self, tmp_dir):
        cache = CacheManager(cache_dir=os.path.join(tmp_dir, "cache"), max_age_days=-1)
        cache.put("gridded", _gridded(), cell_size=25000)
        assert cache.get("gridded", cell_size=25000) is None


class TestInputFingerprint:

    def test_changes_with_file_content(self, tmp_dir):
        path = os.path.join(tmp_dir, "input.txt")
        with open(path, "w") as f:
            f.write("a")
        before = input_fingerprint(path)
        with open(path, "w") as f:
            f.write("abc")
        assert input_fingerprint(path) != before

    def test_none_paths_skipped(self, tmp_dir):
        path = os.path.join(tmp_dir, "input.txt")
        with open(path, "w") as f:
            f.write("a")
        assert input_fingerprint(path, None) == input_fingerprint(path)
