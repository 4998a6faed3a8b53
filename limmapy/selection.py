"""
Gene-set selection across contrasts.

A gene is selected when it is called significant in at least one of the
chosen contrasts and its absolute log-fold-change reaches the threshold in
at least one of them. The two conditions may be met by different
contrasts.
"""

import numpy as np
import pandas as pd

from .results import decide_tests


def select_genes(fit, contrasts=None, lfc=1.0, p_value=0.05, adjust_method='BH',
                 tests=None):
    """Genes significant in any contrast with a large fold change in any contrast.

    Parameters
    ----------
    fit : MArrayLM
        Output of e_bayes().
    contrasts : list of str, optional
        Contrasts to consider. Defaults to all contrasts in the fit.
    lfc : float
        Minimum absolute log2-fold-change.
    p_value : float
        Adjusted p-value threshold for the significance calls.
    adjust_method : str
        Multiple testing adjustment, applied per contrast over all genes.
    tests : DataFrame, optional
        Precomputed decide_tests() output to reuse.

    Returns
    -------
    pd.Index of gene identifiers, in fit gene order. May be empty.
    """
    if contrasts is None:
        contrasts = fit.coef_names
    elif isinstance(contrasts, str):
        contrasts = [contrasts]
    contrasts = list(contrasts)
    if not contrasts:
        return pd.Index([], dtype=object, name='gene')

    missing = [c for c in contrasts if c not in fit.coef_names]
    if missing:
        raise KeyError(f"Contrasts not found in fit: {', '.join(missing)}")

    if tests is None:
        tests = decide_tests(fit, p_value=p_value, adjust_method=adjust_method,
                             coef=contrasts)
    significant = (tests[contrasts].to_numpy() != 0).any(axis=1)

    logfc = fit['coefficients'][contrasts].to_numpy()
    with np.errstate(invalid='ignore'):
        large = (np.abs(logfc) >= lfc).any(axis=1)

    genes = fit['coefficients'].index[significant & large]
    return pd.Index(list(genes), dtype=object, name='gene')
