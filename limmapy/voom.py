"""
voom transformation of RNA-seq counts for linear modelling.

Law, Chen, Shi & Smyth (2014), Genome Biology 15:R29. Counts are converted
to log2-CPM, a lowess trend of sqrt(residual standard deviation) against
average log count size is fitted, and the trend is evaluated at each fitted
value to give observation-level precision weights.
"""

import warnings

import numpy as np
import pandas as pd
from statsmodels.nonparametric.smoothers_lowess import lowess as sm_lowess

from .classes import EList
from .dgelist import get_norm_lib_sizes
from .errors import DataError
from .linear_model import lm_fit

_EPS = 1e-8


def _voom_input(counts, lib_size):
    """Counts matrix, library sizes, gene table and sample table from any input."""
    genes = None
    targets = None
    if isinstance(counts, dict) and 'counts' in counts:
        y = counts
        if lib_size is None:
            lib_size = get_norm_lib_sizes(y)
        genes = y.get('genes')
        targets = y['samples']
        counts = y['counts']
        col_names = [str(s) for s in targets.index]
        row_names = [str(g) for g in genes.index] if genes is not None else None
    elif isinstance(counts, pd.DataFrame):
        col_names = [str(c) for c in counts.columns]
        row_names = [str(r) for r in counts.index]
    else:
        col_names = None
        row_names = None

    counts = np.asarray(counts, dtype=np.float64)
    if counts.ndim != 2:
        raise DataError("counts must be a 2D matrix shaped (genes, samples)")
    if not np.all(np.isfinite(counts)) or np.any(counts < 0):
        raise DataError("Negative or non-finite counts not allowed")
    ngenes, nsamples = counts.shape
    if row_names is None:
        row_names = [str(i + 1) for i in range(ngenes)]
    if col_names is None:
        col_names = [f"Sample{j + 1}" for j in range(nsamples)]
    if genes is None:
        genes = pd.DataFrame(index=row_names)
    if targets is None:
        targets = pd.DataFrame(index=col_names)

    if lib_size is None:
        lib_size = counts.sum(axis=0)
    lib_size = np.asarray(lib_size, dtype=np.float64)
    if len(lib_size) != nsamples:
        raise DataError("length of lib_size doesn't match number of samples")
    if np.any(lib_size <= 0):
        raise DataError("library sizes must be positive")
    targets = targets.copy()
    targets['lib.size'] = lib_size
    return counts, lib_size, genes, targets, row_names, col_names


def voom(counts, design=None, lib_size=None, span=0.5):
    """Transform counts to log2-CPM with mean-variance precision weights.

    Parameters
    ----------
    counts : DGEList, DataFrame, or array-like
        Counts (genes x samples). For a DGEList the effective library sizes
        lib.size * norm.factors are used.
    design : DataFrame or array-like, optional
        Design matrix (samples x coefficients). Defaults to intercept only.
    lib_size : array-like, optional
        Library sizes, overriding those of the DGEList.
    span : float
        Lowess span for the mean-variance trend.

    Returns
    -------
    EList with E (DataFrame of log2-CPM), weights, design, genes and
    targets (with the library sizes used).
    """
    counts, lib_size, genes, targets, row_names, col_names = _voom_input(counts, lib_size)
    ngenes, nsamples = counts.shape

    E = np.log2((counts + 0.5) / (lib_size[np.newaxis, :] + 1) * 1e6)
    E = pd.DataFrame(E, index=row_names, columns=col_names)

    fit = lm_fit(E, design=design)
    design = fit['design']
    df_residual = fit['df.residual']
    sigma = fit['sigma']

    out = EList()
    out['E'] = E
    out['genes'] = genes
    out['targets'] = targets
    out['design'] = design

    has_rep = df_residual > 0
    if np.sum(has_rep) < 2:
        warnings.warn("The experimental design has no replication. Setting weights to 1.")
        out['weights'] = np.ones((ngenes, nsamples))
        return out

    amean = fit['Amean']
    sx = amean + np.mean(np.log2(lib_size + 1)) - np.log2(1e6)
    sy = np.sqrt(sigma)

    all_zero = counts.sum(axis=1) == 0
    keep = has_rep & ~all_zero & np.isfinite(sy)
    if np.sum(keep) < 2:
        warnings.warn("Too few informative genes to fit a mean-variance trend. "
                      "Setting weights to 1.")
        out['weights'] = np.ones((ngenes, nsamples))
        return out

    trend = sm_lowess(sy[keep], sx[keep], frac=span, it=3, return_sorted=True)
    trend_x, idx = np.unique(trend[:, 0], return_index=True)
    trend_y = trend[idx, 1]

    X = design.to_numpy()
    fitted = fit['coefficients'].to_numpy() @ X.T
    fitted_cpm = 2.0 ** fitted
    fitted_count = 1e-6 * fitted_cpm * (lib_size[np.newaxis, :] + 1)
    fitted_logcount = np.log2(fitted_count)

    if len(trend_x) < 2:
        sqrt_sd = np.full(fitted_logcount.shape, trend_y[0])
    else:
        sqrt_sd = np.interp(fitted_logcount, trend_x, trend_y)
    sqrt_sd = np.maximum(sqrt_sd, _EPS)
    out['weights'] = 1.0 / sqrt_sd ** 4
    out['voom.xy'] = (sx, sy)
    out['voom.line'] = (trend_x, trend_y)
    return out
