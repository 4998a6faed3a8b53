"""
Diagnostic plots for limmapy.

Mean-difference, volcano, PCA, voom mean-variance and sigma-versus-average
plots. Every function returns ``(fig, ax)``.
"""

import numpy as np

from .results import STATUS_LABELS

_STATUS_COLORS = {'down': 'blue', 'not-significant': 'grey', 'up': 'red'}


def _contrast_values(fit, coef):
    names = fit.coef_names
    name = names[coef] if isinstance(coef, (int, np.integer)) else coef
    if name not in names:
        raise KeyError(f"Contrast '{name}' not found in fit")
    return name


def _scatter_by_status(ax, x, y, status, s=4):
    if status is None:
        ax.scatter(x, y, s=s, alpha=0.5, c='black')
        return
    status = np.asarray(status)
    if status.dtype.kind in 'iuf':
        status = np.array([STATUS_LABELS[int(v)] for v in status])
    for label in ('not-significant', 'down', 'up'):
        mask = status == label
        if np.any(mask):
            ax.scatter(x[mask], y[mask], s=s, alpha=0.6,
                       c=_STATUS_COLORS[label], label=f"{label} ({int(mask.sum())})")
    ax.legend(loc='best', fontsize=8)


def plot_md(fit, coef=0, status=None, xlab='Average log-expression',
            ylab='log-fold-change', main=None):
    """Mean-difference plot of one contrast.

    Parameters
    ----------
    fit : MArrayLM
    coef : int or str
        Contrast to plot.
    status : array-like, optional
        Per-gene calls, either -1/0/1 or status labels, used for colouring.
    """
    import matplotlib.pyplot as plt

    name = _contrast_values(fit, coef)
    x = np.asarray(fit['Amean'], dtype=np.float64)
    y = fit['coefficients'][name].to_numpy()

    fig, ax = plt.subplots(figsize=(8, 6))
    _scatter_by_status(ax, x, y, status)
    ax.axhline(y=0, color='black', linestyle='--', linewidth=0.5)
    ax.set_xlabel(xlab)
    ax.set_ylabel(ylab)
    ax.set_title(main if main is not None else name)
    plt.tight_layout()
    return fig, ax


def volcano_plot(table, lfc=None, p_value=None, label_top=0, main=None):
    """Volcano plot from a top_table() result.

    Parameters
    ----------
    table : DataFrame
        Must contain logFC and P.Value; status is used for colouring when
        present.
    lfc : float, optional
        Draw vertical lines at +/- lfc.
    p_value : float, optional
        Draw a horizontal line at -log10(p_value).
    label_top : int
        Annotate this many genes with the smallest p-values.
    """
    import matplotlib.pyplot as plt

    x = table['logFC'].to_numpy()
    with np.errstate(divide='ignore'):
        y = -np.log10(table['P.Value'].to_numpy())

    fig, ax = plt.subplots(figsize=(8, 6))
    _scatter_by_status(ax, x, y, table['status'] if 'status' in table.columns else None)
    if lfc is not None:
        ax.axvline(x=lfc, color='black', linestyle=':', linewidth=0.5)
        ax.axvline(x=-lfc, color='black', linestyle=':', linewidth=0.5)
    if p_value is not None:
        ax.axhline(y=-np.log10(p_value), color='black', linestyle=':', linewidth=0.5)

    if label_top > 0:
        labels = table['SYMBOL'] if 'SYMBOL' in table.columns else table.index.to_series()
        order = np.argsort(table['P.Value'].to_numpy(), kind='stable')[:label_top]
        for i in order:
            ax.annotate(str(labels.iloc[i]), (x[i], y[i]),
                        textcoords='offset points', xytext=(3, 3), fontsize=7)

    ax.set_xlabel('log2 fold change')
    ax.set_ylabel('-log10 P-value')
    if main:
        ax.set_title(main)
    plt.tight_layout()
    return fig, ax


def plot_mds(y, top=500, groups=None, labels=None, dims=(1, 2), prior_count=2, main=None):
    """Principal component plot of the most variable log-CPM genes.

    Parameters
    ----------
    y : DGEList, EList, or array-like
        Counts (log-CPM is computed), voom output (E is used), or a
        log-expression matrix.
    top : int
        Number of highest-variance genes used.
    groups : array-like, optional
        Group per sample, for colouring. Defaults to the DGEList groups.
    labels : list, optional
        Sample labels.
    dims : tuple of int
        Principal components to plot (1-based).
    """
    import matplotlib.pyplot as plt
    from .expression import cpm

    if isinstance(y, dict) and 'counts' in y:
        logx = cpm(y, log=True, prior_count=prior_count)
        if labels is None:
            labels = [str(s) for s in y['samples'].index]
        if groups is None:
            groups = y['samples']['group'].astype(str).to_numpy()
    elif isinstance(y, dict) and 'E' in y:
        logx = np.asarray(y['E'], dtype=np.float64)
        if labels is None and y.get('targets') is not None:
            labels = [str(s) for s in y['targets'].index]
    else:
        logx = np.asarray(y, dtype=np.float64)

    nsamples = logx.shape[1]
    if labels is None:
        labels = [f'S{i + 1}' for i in range(nsamples)]
    if max(dims) > nsamples:
        raise ValueError(f"Only {nsamples} samples; cannot plot component {max(dims)}")

    var = np.var(logx, axis=1)
    top_idx = np.argsort(-var, kind='stable')[:min(top, len(var))]
    x = logx[top_idx].T
    x = x - x.mean(axis=0)
    u, s, _ = np.linalg.svd(x, full_matrices=False)
    scores = u * s
    explained = s ** 2 / np.sum(s ** 2) * 100 if np.sum(s ** 2) > 0 else np.zeros_like(s)

    d1, d2 = dims[0] - 1, dims[1] - 1
    fig, ax = plt.subplots(figsize=(8, 6))
    if groups is not None:
        groups = np.asarray(groups).astype(str)
        for g in sorted(set(groups)):
            mask = groups == g
            ax.scatter(scores[mask, d1], scores[mask, d2], s=50, label=g)
        ax.legend(loc='best', fontsize=8)
    else:
        ax.scatter(scores[:, d1], scores[:, d2], s=50)
    for i, label in enumerate(labels):
        ax.annotate(label, (scores[i, d1], scores[i, d2]),
                    textcoords='offset points', xytext=(5, 5), fontsize=8)

    ax.set_xlabel(f'PC{dims[0]} ({explained[d1]:.1f}%)')
    ax.set_ylabel(f'PC{dims[1]} ({explained[d2]:.1f}%)')
    if main:
        ax.set_title(main)
    plt.tight_layout()
    return fig, ax


def plot_voom(elist, main='voom: Mean-variance trend'):
    """Mean-variance trend fitted by voom()."""
    import matplotlib.pyplot as plt

    if elist.get('voom.xy') is None:
        raise ValueError("EList has no mean-variance trend; voom weights were set to 1")
    sx, sy = elist['voom.xy']
    lx, ly = elist['voom.line']

    fig, ax = plt.subplots(figsize=(8, 6))
    ax.scatter(sx, sy, s=2, alpha=0.4, c='black')
    ax.plot(lx, ly, c='red', linewidth=1.5)
    ax.set_xlabel('log2( count size + 0.5 )')
    ax.set_ylabel('Sqrt( standard deviation )')
    ax.set_title(main)
    plt.tight_layout()
    return fig, ax


def plot_sa(fit, main='Final model: Mean-variance trend'):
    """Residual standard deviation against average log-expression.

    The square root of the prior variance is drawn when the fit has been
    moderated by e_bayes().
    """
    import matplotlib.pyplot as plt

    x = np.asarray(fit['Amean'], dtype=np.float64)
    with np.errstate(invalid='ignore'):
        y = np.sqrt(np.asarray(fit['sigma'], dtype=np.float64))

    fig, ax = plt.subplots(figsize=(8, 6))
    ax.scatter(x, y, s=2, alpha=0.4, c='black')
    s2_prior = fit.get('s2.prior')
    if s2_prior is not None:
        s2_prior = np.atleast_1d(np.asarray(s2_prior, dtype=np.float64))
        if len(s2_prior) == 1:
            ax.axhline(y=s2_prior[0] ** 0.25, color='blue', linewidth=1)
        else:
            o = np.argsort(x)
            ax.plot(x[o], s2_prior[o] ** 0.25, c='blue', linewidth=1)
    ax.set_xlabel('Average log-expression')
    ax.set_ylabel('sqrt(sigma)')
    ax.set_title(main)
    plt.tight_layout()
    return fig, ax
