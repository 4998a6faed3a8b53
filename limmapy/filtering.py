"""
Gene filtering for limmapy.

CPM-threshold filtering of low-expression genes, plus edgeR-style
filterByExpr for group-size-aware filtering.
"""

import numpy as np
from .expression import cpm


def _counts_and_lib_size(y, lib_size):
    if isinstance(y, dict) and 'counts' in y:
        counts = y['counts']
        if lib_size is None:
            lib_size = y['samples']['lib.size'].values
    else:
        counts = np.asarray(y, dtype=np.float64)
    if counts.ndim == 1:
        counts = counts.reshape(-1, 1)
    if lib_size is None:
        lib_size = counts.sum(axis=0)
    return counts, np.asarray(lib_size, dtype=np.float64)


def filter_by_cpm(y, min_cpm=0.5, min_samples=2, lib_size=None):
    """Keep genes expressed above a CPM threshold in enough samples.

    Gene g is retained iff ``cpm[g, s] > min_cpm`` for at least
    ``min_samples`` samples s. CPM uses the raw library sizes (column sums,
    or lib.size for a DGEList), so re-filtering a filtered matrix keeps every
    gene.

    Parameters
    ----------
    y : array-like or DGEList
        Count matrix or DGEList.
    min_cpm : float
        CPM threshold (strict).
    min_samples : int
        Minimum number of samples above the threshold.
    lib_size : array-like, optional
        Library sizes.

    Returns
    -------
    ndarray of bool, True for genes to keep, in gene order.
    """
    counts, lib_size = _counts_and_lib_size(y, lib_size)
    if min_samples < 1:
        raise ValueError("min_samples must be at least 1")
    cpm_vals = cpm(counts, lib_size=lib_size)
    return np.sum(cpm_vals > min_cpm, axis=1) >= min_samples


def filter_by_expr(y, design=None, group=None, lib_size=None,
                   min_count=10, min_total_count=15, large_n=10, min_prop=0.7):
    """Filter low-expressed genes using group-size-aware CPM cutoffs.

    Parameters
    ----------
    y : array-like or DGEList
        Count matrix or DGEList.
    design : array-like, optional
        Design matrix.
    group : array-like, optional
        Group factor.
    lib_size : array-like, optional
        Library sizes.
    min_count : float
        Minimum count threshold, converted to CPM at the median library size.
    min_total_count : float
        Minimum total count across all samples.
    large_n : int
        Large sample size threshold.
    min_prop : float
        Minimum proportion for large groups.

    Returns
    -------
    ndarray of bool, True for genes to keep.
    """
    if isinstance(y, dict) and 'counts' in y:
        samples = y['samples']
        if design is None and group is None:
            group = samples['group'].to_numpy()
        if lib_size is None:
            lib_size = (samples['lib.size'] * samples['norm.factors']).to_numpy()
    counts, lib_size = _counts_and_lib_size(y, lib_size)

    if group is not None:
        n_min = np.unique(np.asarray(group), return_counts=True)[1].min()
    elif design is not None:
        n_min = 1.0 / _hat_values(np.asarray(design, dtype=np.float64)).max()
    else:
        n_min = counts.shape[1]
    if n_min > large_n:
        n_min = large_n + (n_min - large_n) * min_prop

    cutoff = min_count / np.median(lib_size) * 1e6
    n_expressed = (cpm(counts, lib_size=lib_size) >= cutoff).sum(axis=1)
    # 1e-14 absorbs rounding in n_min from the hat values
    return (n_expressed >= n_min - 1e-14) & (counts.sum(axis=1) >= min_total_count - 1e-14)


def _hat_values(design):
    """Compute hat/leverage values for a design matrix."""
    Q, R = np.linalg.qr(design)
    return np.sum(Q ** 2, axis=1)
