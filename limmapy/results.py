"""
Results tables and significance calls for limmapy fits.

Per-contrast multiple testing adjustment, up/down classification and
top-table export for moderated fits returned by e_bayes().
"""

import numpy as np
import pandas as pd
import warnings
from statsmodels.stats.multitest import multipletests

from .annotation import ANNOTATION_COLUMNS

TOP_TABLE_COLUMNS = ('logFC', 'AveExpr', 't', 'P.Value', 'adj.P.Val', 'B', 'status')

STATUS_LABELS = {-1: 'down', 0: 'not-significant', 1: 'up'}

_ADJUST_METHODS = {
    'BH': 'fdr_bh', 'fdr': 'fdr_bh', 'BY': 'fdr_by',
    'holm': 'holm', 'hochberg': 'simes-hochberg',
    'hommel': 'hommel', 'bonferroni': 'bonferroni',
}


def p_adjust(p, method='BH'):
    """Adjust p-values for multiple testing.

    NaN p-values are left out of the adjustment and stay NaN.

    Parameters
    ----------
    p : array-like
        Raw p-values.
    method : str
        'BH' (or 'fdr'), 'BY', 'holm', 'hochberg', 'hommel', 'bonferroni'
        or 'none'.

    Returns
    -------
    ndarray of adjusted p-values in [0, 1].
    """
    p = np.asarray(p, dtype=np.float64)
    if method == 'none':
        return p.copy()
    sm_method = _ADJUST_METHODS.get(method)
    if sm_method is None:
        raise ValueError(f"method must be one of {list(_ADJUST_METHODS) + ['none']}")

    adj = np.full_like(p, np.nan)
    valid = ~np.isnan(p)
    if valid.any():
        _, adj[valid], _, _ = multipletests(p[valid], method=sm_method)
    return adj


def _require_moderated(fit):
    if fit.get('p.value') is None:
        raise ValueError("Need to run e_bayes first")


def _coef_names(fit, coef):
    names = fit.coef_names
    if coef is None:
        return names
    if isinstance(coef, (str, int, np.integer)):
        coef = [coef]
    out = []
    for c in coef:
        if isinstance(c, (int, np.integer)):
            out.append(names[c])
        elif c in names:
            out.append(c)
        else:
            raise KeyError(f"Contrast '{c}' not found in fit (available: {', '.join(names)})")
    return out


def adjusted_p_values(fit, adjust_method='BH'):
    """Adjusted p-values per contrast, as a DataFrame shaped like fit['p.value']."""
    _require_moderated(fit)
    pv = fit['p.value']
    adj = np.column_stack([p_adjust(pv[c].to_numpy(), adjust_method) for c in pv.columns])
    return pd.DataFrame(adj, index=pv.index, columns=pv.columns)


def decide_tests(fit, p_value=0.05, lfc=0, adjust_method='BH', coef=None):
    """Classify each gene as up (1), down (-1) or not significant (0).

    Each contrast is adjusted separately. A gene is called when its
    adjusted p-value is at most ``p_value``; the sign of its log-fold-change
    gives the direction. Genes with ``|logFC| < lfc`` are not called.
    Genes with NaN statistics are never called.

    Returns
    -------
    DataFrame of int (genes x contrasts).
    """
    _require_moderated(fit)
    names = _coef_names(fit, coef)
    adj = adjusted_p_values(fit, adjust_method)[names].to_numpy()
    logfc = fit['coefficients'][names].to_numpy()

    with np.errstate(invalid='ignore'):
        sig = (adj <= p_value) & ~np.isnan(adj)
        calls = np.where(sig, np.sign(logfc), 0).astype(np.int64)
        if lfc > 0:
            calls[np.abs(logfc) < lfc] = 0

    n_nan = int(np.isnan(adj).sum())
    if n_nan:
        warnings.warn(f"{n_nan} tests with undefined p-values classified as not significant")

    return pd.DataFrame(calls, index=fit['coefficients'].index, columns=names)


def summarize_tests(tests):
    """Count down, not-significant and up calls for each contrast."""
    rows = {}
    for code, label in STATUS_LABELS.items():
        rows[label] = (tests == code).sum(axis=0)
    return pd.DataFrame(rows).T


def _order(tab, gene_ids, sort_by):
    ids = np.array(gene_ids, dtype=str)
    if sort_by in ('P', 'p', 'P.Value'):
        return np.lexsort((ids, tab['P.Value'].to_numpy()))
    if sort_by == 'B':
        return np.lexsort((ids, -tab['B'].to_numpy()))
    if sort_by == 'logFC':
        return np.lexsort((ids, -np.abs(tab['logFC'].to_numpy())))
    if sort_by == 't':
        return np.lexsort((ids, -np.abs(tab['t'].to_numpy())))
    if sort_by == 'AveExpr':
        return np.lexsort((ids, -tab['AveExpr'].to_numpy()))
    if sort_by == 'none':
        return np.arange(len(tab))
    raise ValueError("sort_by must be one of 'P', 'B', 'logFC', 't', 'AveExpr', 'none'")


def top_table(fit, coef=0, n=None, sort_by='P', adjust_method='BH',
              p_value=0.05, lfc=0):
    """Table of genes ranked for one contrast.

    Parameters
    ----------
    fit : MArrayLM
        Output of e_bayes().
    coef : int or str
        Contrast (column) to report.
    n : int, optional
        Number of rows to return. Defaults to all genes.
    sort_by : str
        'P' (raw p-value ascending), 'B', 'logFC', 't', 'AveExpr' or 'none'.
        Ties are broken by gene identifier ascending.
    adjust_method : str
        Multiple testing adjustment across all genes for this contrast.
    p_value, lfc : float
        Thresholds for the status column.

    Returns
    -------
    DataFrame indexed by gene identifier with gene annotation columns (when
    present) followed by TOP_TABLE_COLUMNS.
    """
    _require_moderated(fit)
    name = _coef_names(fit, coef)[0]
    gene_ids = list(fit['coefficients'].index)

    logfc = fit['coefficients'][name].to_numpy()
    raw_p = fit['p.value'][name].to_numpy()
    adj_p = p_adjust(raw_p, adjust_method)
    with np.errstate(invalid='ignore'):
        calls = np.where((adj_p <= p_value) & ~np.isnan(adj_p), np.sign(logfc), 0)
        if lfc > 0:
            calls[np.abs(logfc) < lfc] = 0

    tab = pd.DataFrame({
        'logFC': logfc,
        'AveExpr': np.asarray(fit['Amean'], dtype=np.float64),
        't': fit['t'][name].to_numpy(),
        'P.Value': raw_p,
        'adj.P.Val': adj_p,
        'B': fit['lods'][name].to_numpy(),
        'status': [STATUS_LABELS[int(c)] for c in calls],
    }, index=gene_ids)

    genes = fit.get('genes')
    if genes is not None and genes.shape[1] > 0:
        ann = genes.copy()
        ann.index = gene_ids
        lead = [c for c in ANNOTATION_COLUMNS if c in ann.columns]
        ann = ann[lead + [c for c in ann.columns if c not in lead]]
        ann = ann.drop(columns=[c for c in ann.columns if c in TOP_TABLE_COLUMNS])
        tab = pd.concat([ann, tab], axis=1)

    tab = tab.iloc[_order(tab, gene_ids, sort_by)]
    if n is not None:
        tab = tab.iloc[:n]
    tab.index.name = 'gene'
    return tab
