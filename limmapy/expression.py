"""
Expression value computation for limmapy.

Counts per million on the natural or log2 scale.
"""

import numpy as np
from .errors import DataError
from .utils import add_prior_count


def cpm(y, lib_size=None, log=False, prior_count=2, normalized_lib_sizes=True):
    """Counts per million.

    ``cpm[g, s] = count[g, s] / lib_size[s] * 1e6``.

    Parameters
    ----------
    y : array-like or DGEList
        Count matrix or DGEList.
    lib_size : array-like, optional
        Library sizes. Defaults to column sums, or for a DGEList to
        lib.size (times norm.factors if ``normalized_lib_sizes``).
    log : bool
        Return log2-CPM?
    prior_count : float
        Average count added to each observation on the log scale.
    normalized_lib_sizes : bool
        Use normalized library sizes (for DGEList input).

    Returns
    -------
    ndarray of CPM values.
    """
    if isinstance(y, dict) and 'counts' in y:
        dge = y
        ls = dge['samples']['lib.size'].values
        if normalized_lib_sizes:
            ls = ls * dge['samples']['norm.factors'].values
        return _cpm_default(dge['counts'], lib_size=ls, log=log,
                            prior_count=prior_count)

    return _cpm_default(y, lib_size=lib_size, log=log, prior_count=prior_count)


def _cpm_default(y, lib_size=None, log=False, prior_count=2):
    """Core CPM calculation."""
    y = np.asarray(y, dtype=np.float64)
    if y.ndim == 1:
        y = y.reshape(-1, 1)
    if y.size == 0:
        return y.copy()
    ymin = np.nanmin(y)
    if np.isnan(ymin):
        raise DataError("NA counts not allowed")
    if ymin < 0:
        raise DataError("Negative counts not allowed")

    if lib_size is None:
        lib_size = y.sum(axis=0)
    lib_size = np.asarray(lib_size, dtype=np.float64)
    if len(lib_size) != y.shape[1]:
        raise DataError("Length of lib_size differs from number of libraries")
    if np.any(lib_size <= 0):
        raise DataError("library sizes should be greater than zero")

    if log:
        out = add_prior_count(y, lib_size=lib_size, prior_count=prior_count)
        lib_aug = np.exp(out['offset'])
        return np.log2(out['y'] / lib_aug[np.newaxis, :] * 1e6)
    return y / lib_size[np.newaxis, :] * 1e6


def ave_log_cpm(y, lib_size=None, prior_count=2):
    """Average log2-CPM for each gene."""
    return np.mean(cpm(y, lib_size=lib_size, log=True, prior_count=prior_count), axis=1)
