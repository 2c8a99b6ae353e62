"""
Pairwise distribution comparisons between groups (time periods, protocols).

Effort and reporting-proportion distributions are strongly skewed, so
groups are compared with the two-sided Mann-Whitney U test. P-values are
Holm-adjusted across all pairs and the rank-biserial correlation is
reported as effect size.

All functions are pure (no I/O, no side effects).
"""

from itertools import combinations

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.multitest import multipletests

from ebird_grids import config

RESULT_COLUMNS = [
    "group_a", "group_b", "n_a", "n_b", "median_a", "median_b",
    "u_statistic", "p_value", "p_adjusted", "rank_biserial", "significant",
]


def rank_biserial(u_statistic, n_a, n_b):
    """Rank-biserial correlation from a Mann-Whitney U statistic.

    Ranges from -1 to 1; positive when group A tends to exceed group B.
    """
    if n_a == 0 or n_b == 0:
        return np.nan
    return 2.0 * u_statistic / (n_a * n_b) - 1.0


def pairwise_comparison(df, value_col, group_col, alpha=None, min_group_size=2):
    """Mann-Whitney U test for every pair of groups.

    Parameters
    ----------
    df : pd.DataFrame
    value_col : str
        Numeric column compared between groups; NaN values are ignored.
    group_col : str
        Grouping column. Categorical order is preserved in the output.
    alpha : float, optional
        Significance level after Holm correction. Default
        ``config.PAIRWISE_ALPHA``.
    min_group_size : int
        Groups with fewer non-missing values are left out.

    Returns
    -------
    pd.DataFrame
        One row per pair with columns ``RESULT_COLUMNS``. Empty when fewer
        than two groups qualify.
    """
    alpha = config.PAIRWISE_ALPHA if alpha is None else alpha

    samples = {}
    for name, grp in df.groupby(group_col, observed=True, sort=True):
        values = grp[value_col].dropna().to_numpy(dtype=float)
        if len(values) >= min_group_size:
            samples[name] = values

    rows = []
    for a, b in combinations(samples, 2):
        xa, xb = samples[a], samples[b]
        u_stat, p_value = stats.mannwhitneyu(xa, xb, alternative="two-sided")
        rows.append({
            "group_a": a,
            "group_b": b,
            "n_a": len(xa),
            "n_b": len(xb),
            "median_a": float(np.median(xa)),
            "median_b": float(np.median(xb)),
            "u_statistic": float(u_stat),
            "p_value": float(p_value),
            "rank_biserial": rank_biserial(u_stat, len(xa), len(xb)),
        })

    if not rows:
        return pd.DataFrame(columns=RESULT_COLUMNS)

    result = pd.DataFrame(rows)
    reject, p_adj, _, _ = multipletests(result["p_value"], alpha=alpha, method="holm")
    result["p_adjusted"] = p_adj
    result["significant"] = reject
    return result[RESULT_COLUMNS]


def pairwise_period_comparison(checklists, value_cols=None, group_col="period",
                               alpha=None):
    """Run ``pairwise_comparison`` for each effort column, stacked.

    Returns
    -------
    pd.DataFrame
        ``RESULT_COLUMNS`` plus a leading ``variable`` column.
    """
    value_cols = value_cols or config.EFFORT_COLUMNS
    frames = []
    for col in value_cols:
        if col not in checklists.columns:
            continue
        res = pairwise_comparison(checklists, col, group_col, alpha=alpha)
        if not res.empty:
            res.insert(0, "variable", col)
            frames.append(res)
    if not frames:
        return pd.DataFrame(columns=["variable"] + RESULT_COLUMNS)
    return pd.concat(frames, ignore_index=True)
