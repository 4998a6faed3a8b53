"""
Utility functions for limmapy.

Prior-count augmentation for log-scale expression, formula-based design
matrices, and small numeric helpers shared across modules.
"""

import numpy as np
import pandas as pd


def add_prior_count(y, lib_size=None, offset=None, prior_count=1):
    """Add library-size-adjusted prior counts.

    The prior count added to each library is proportional to its size,
    scaled so that the average library receives ``prior_count``; the
    library sizes are increased by twice the added prior.

    Returns
    -------
    dict with 'y' (adjusted counts) and 'offset' (adjusted log library sizes).
    """
    y = np.asarray(y, dtype=np.float64)
    if y.ndim == 1:
        y = y.reshape(1, -1)

    if offset is None:
        if lib_size is None:
            lib_size = y.sum(axis=0)
        offset = np.log(np.asarray(lib_size, dtype=np.float64))
    offset = np.atleast_1d(np.asarray(offset, dtype=np.float64))

    lib = np.exp(offset)
    prior_count = np.atleast_1d(np.asarray(prior_count, dtype=np.float64))
    if prior_count.size == 1:
        scaled_prior = np.tile(prior_count[0] * lib / np.mean(lib), (y.shape[0], 1))
    elif len(prior_count) == y.shape[0]:
        scaled_prior = prior_count[:, np.newaxis] * (lib / np.mean(lib))[np.newaxis, :]
    else:
        raise ValueError("prior_count must be a scalar or have one value per gene")

    y_aug = y + scaled_prior
    offset_aug = np.log(lib + 2.0 * scaled_prior.mean(axis=0))
    return {'y': y_aug, 'offset': offset_aug}


def model_matrix(formula, data=None):
    """Create a design matrix from an R-style formula.

    Uses patsy to parse the formula, matching R's ``model.matrix``.

    Parameters
    ----------
    formula : str
        R-style formula, e.g. ``'~ 0 + group'`` or ``'~ genotype * treatment'``.
    data : DataFrame or dict
        Sample-level data. Column names are used as variables in the formula.

    Returns
    -------
    DataFrame
        Design matrix (samples x coefficients), dtype float64, indexed like
        ``data``.

    Examples
    --------
    >>> df = pd.DataFrame({'group': ['A', 'A', 'B', 'B']})
    >>> model_matrix('~ 0 + group', df).values
    array([[1., 0.],
           [1., 0.],
           [0., 1.],
           [0., 1.]])
    """
    import patsy

    if data is None:
        raise ValueError("data must be provided for formula-based design")
    if isinstance(data, dict):
        data = pd.DataFrame(data)
    if not isinstance(data, pd.DataFrame):
        raise TypeError("data must be a DataFrame or dict")

    design = patsy.dmatrix(formula, data=data, return_type='dataframe',
                           NA_action='raise')
    design = design.astype(np.float64)
    design.index = data.index
    return design

