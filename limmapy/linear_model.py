"""
Linear model fitting for limmapy.

Genewise least-squares fits of log-expression on a design matrix (lmFit) and
re-parametrisation of the fit in terms of contrasts (contrasts.fit).

Unweighted fits are solved for all genes at once. Fits with precision
weights are solved gene by gene; the genes are split into contiguous
blocks that may be fitted in a process pool and are reassembled in the
original gene order.
"""

from concurrent.futures import ProcessPoolExecutor
import warnings

import numpy as np
import pandas as pd
from scipy import linalg as sla

from .classes import MArrayLM
from .design import make_contrasts
from .errors import ConfigurationError, DataError
from .utils import model_matrix


def _as_expression(obj):
    """Unpack an EList, DataFrame or matrix into (E, weights, genes, targets, design)."""
    if isinstance(obj, dict) and 'E' in obj:
        E = obj['E']
        weights = obj.get('weights')
        genes = obj.get('genes')
        targets = obj.get('targets')
        design = obj.get('design')
    else:
        E = obj
        weights = None
        genes = None
        targets = None
        design = None

    row_names = None
    col_names = None
    if isinstance(E, pd.DataFrame):
        row_names = [str(r) for r in E.index]
        col_names = [str(c) for c in E.columns]
    elif genes is not None:
        row_names = [str(r) for r in genes.index]
    E = np.asarray(E, dtype=np.float64)
    if E.ndim != 2:
        raise DataError("expression values must be a 2D array shaped (genes, samples)")
    if row_names is None:
        row_names = [str(i + 1) for i in range(E.shape[0])]
    if col_names is None:
        if targets is not None:
            col_names = [str(s) for s in targets.index]
        else:
            col_names = [f"Sample{j + 1}" for j in range(E.shape[1])]
    if genes is None:
        genes = pd.DataFrame(index=row_names)
    return E, weights, genes, targets, design, row_names, col_names


def _resolve_design(design, n_samples, targets, col_names):
    """Resolve the design argument to a float DataFrame (samples x coefficients)."""
    if design is None:
        return pd.DataFrame({'Intercept': np.ones(n_samples)}, index=col_names)
    if isinstance(design, str):
        if targets is None:
            raise ConfigurationError(
                "Formula design requires sample information (EList targets)")
        design = model_matrix(design, targets)
    if isinstance(design, pd.DataFrame):
        out = design.astype(np.float64)
    else:
        arr = np.asarray(design, dtype=np.float64)
        if arr.ndim == 1:
            arr = arr.reshape(-1, 1)
        out = pd.DataFrame(arr, columns=[f"coef{k + 1}" for k in range(arr.shape[1])])
    if out.shape[0] != n_samples:
        raise ConfigurationError(
            f"Design has {out.shape[0]} rows but the expression matrix has {n_samples} samples")
    if not np.all(np.isfinite(out.to_numpy())):
        raise ConfigurationError("Design matrix contains non-finite values")
    out.columns = [str(c) for c in out.columns]
    if len(set(out.columns)) != out.shape[1]:
        raise ConfigurationError("Design column names must be unique")
    out.index = col_names
    return out


def _check_estimable(X, coef_names):
    """Raise DataError if the design does not have full column rank."""
    n, p = X.shape
    if n < p:
        raise DataError(
            f"Model is not identifiable: {n} samples for {p} design columns")
    _, R, piv = sla.qr(X, mode='economic', pivoting=True)
    d = np.abs(np.diag(R))
    tol = (d[0] if d.size else 0.0) * max(n, p) * np.finfo(np.float64).eps
    rank = int(np.sum(d > tol))
    if rank < p:
        bad = [coef_names[k] for k in sorted(piv[rank:])]
        raise DataError(f"Coefficients not estimable: {', '.join(bad)}")


def _fit_block(E, W, X):
    """Weighted least squares fit of each row of E. Runs in worker processes."""
    ngenes = E.shape[0]
    n, p = X.shape
    coef = np.empty((ngenes, p))
    stdev = np.empty((ngenes, p))
    sigma = np.empty(ngenes)
    df = n - p
    eye = np.eye(p)
    for g in range(ngenes):
        sw = np.sqrt(W[g])
        xw = X * sw[:, np.newaxis]
        yw = E[g] * sw
        Q, R = np.linalg.qr(xw)
        beta = sla.solve_triangular(R, Q.T @ yw)
        r_inv = sla.solve_triangular(R, eye)
        resid = yw - xw @ beta
        coef[g] = beta
        stdev[g] = np.sqrt(np.sum(r_inv ** 2, axis=1))
        sigma[g] = np.sqrt(np.sum(resid ** 2) / df) if df > 0 else np.nan
    return coef, stdev, sigma


def _fit_weighted(E, W, X, n_jobs):
    ngenes = E.shape[0]
    if n_jobs is None or n_jobs < 1:
        raise ValueError("n_jobs must be a positive integer")
    if n_jobs == 1 or ngenes < 2 * n_jobs:
        return _fit_block(E, W, X)

    blocks = np.array_split(np.arange(ngenes), n_jobs)
    blocks = [b for b in blocks if len(b)]
    with ProcessPoolExecutor(max_workers=n_jobs) as executor:
        parts = list(executor.map(_fit_block,
                                  [E[b] for b in blocks],
                                  [W[b] for b in blocks],
                                  [X] * len(blocks)))
    coef = np.vstack([c for c, _, _ in parts])
    stdev = np.vstack([s for _, s, _ in parts])
    sigma = np.concatenate([s for _, _, s in parts])
    return coef, stdev, sigma


def lm_fit(object, design=None, weights=None, n_jobs=1):
    """Fit a linear model to each gene.

    Parameters
    ----------
    object : EList, DataFrame, or array-like
        Log-expression values (genes x samples). An EList supplies its
        own precision weights, gene annotation and (optionally) design.
    design : DataFrame, array-like, or str, optional
        Design matrix (samples x coefficients), or an R-style formula
        evaluated against the EList targets. Defaults to the EList design,
        else an intercept-only model.
    weights : array-like, optional
        Precision weights (genes x samples), overriding EList weights.
        Must be positive and finite.
    n_jobs : int
        Worker processes for the genewise weighted fits. Output gene order
        and values do not depend on n_jobs.

    Returns
    -------
    MArrayLM with coefficients, stdev.unscaled, sigma, df.residual,
    cov.coefficients, Amean, design and genes.

    Raises
    ------
    DataError
        If there are fewer samples than design columns, the design is rank
        deficient, or any expression value or weight is non-finite.
    ConfigurationError
        If the design does not have one row per sample.
    """
    E, el_weights, genes, targets, el_design, row_names, col_names = _as_expression(object)
    ngenes, nsamples = E.shape

    if design is None:
        design = el_design
    design = _resolve_design(design, nsamples, targets, col_names)
    X = design.to_numpy()
    coef_names = list(design.columns)
    _check_estimable(X, coef_names)

    finite = np.isfinite(E)
    if not np.all(finite):
        bad = int(np.where(~finite.all(axis=1))[0][0])
        raise DataError(f"Non-finite expression values for gene '{row_names[bad]}'")

    if weights is None:
        weights = el_weights
    if weights is not None:
        W = np.asarray(weights, dtype=np.float64)
        if W.ndim == 1:
            if len(W) == nsamples:
                W = np.tile(W, (ngenes, 1))
            elif len(W) == ngenes:
                W = np.tile(W[:, np.newaxis], (1, nsamples))
        if W.shape != E.shape:
            raise DataError("weights must have the same shape as the expression matrix")
        if not np.all(np.isfinite(W)) or np.any(W <= 0):
            bad = int(np.where(~(np.isfinite(W) & (W > 0)).all(axis=1))[0][0])
            raise DataError(f"Weights must be positive and finite (gene '{row_names[bad]}')")
    else:
        W = None

    cov = np.linalg.inv(X.T @ X)
    df = nsamples - X.shape[1]
    if df == 0:
        warnings.warn("No residual degrees of freedom in linear model fits")

    if W is None:
        coef = E @ (X @ cov)
        resid = E - coef @ X.T
        with np.errstate(invalid='ignore', divide='ignore'):
            sigma = np.sqrt(np.sum(resid ** 2, axis=1) / df) if df > 0 \
                else np.full(ngenes, np.nan)
        stdev = np.tile(np.sqrt(np.diag(cov)), (ngenes, 1))
    else:
        coef, stdev, sigma = _fit_weighted(E, W, X, n_jobs)

    fit = MArrayLM()
    fit['coefficients'] = pd.DataFrame(coef, index=row_names, columns=coef_names)
    fit['stdev.unscaled'] = pd.DataFrame(stdev, index=row_names, columns=coef_names)
    fit['sigma'] = sigma
    fit['df.residual'] = np.full(ngenes, float(df))
    fit['cov.coefficients'] = pd.DataFrame(cov, index=coef_names, columns=coef_names)
    fit['Amean'] = E.mean(axis=1)
    fit['design'] = design
    fit['contrasts'] = None
    fit['genes'] = genes
    fit['weighted'] = W is not None
    return fit


def contrasts_fit(fit, contrasts):
    """Compute estimated coefficients and standard errors for contrasts.

    The effect for a contrast c is ``coefficients @ c``. Its unscaled
    standard error is ``sqrt(c' V c)`` where V is the unscaled coefficient
    covariance. For weighted fits V is rebuilt per gene from stdev.unscaled
    and the correlation of cov.coefficients, which is exact whenever the
    design columns are orthogonal (as for a group-means design).

    Parameters
    ----------
    fit : MArrayLM
        Output of lm_fit().
    contrasts : DataFrame, dict, or array-like
        Coefficients x contrasts weight matrix, or a mapping accepted by
        make_contrasts().

    Returns
    -------
    New MArrayLM; moderated statistics from any earlier e_bayes() are dropped.

    Raises
    ------
    ConfigurationError
        If the contrasts refer to coefficients that are not in the fit.
    """
    coef_names = fit.coef_names
    if isinstance(contrasts, dict):
        contrasts = make_contrasts(contrasts, coef_names)
    elif isinstance(contrasts, pd.DataFrame):
        missing = [str(g) for g in contrasts.index if str(g) not in coef_names]
        if missing:
            raise ConfigurationError(
                f"Contrast rows not found among fit coefficients: {', '.join(missing)}")
        contrasts = contrasts.copy()
        contrasts.index = [str(g) for g in contrasts.index]
        contrasts = contrasts.reindex(coef_names, fill_value=0.0)
    else:
        arr = np.asarray(contrasts, dtype=np.float64)
        if arr.ndim == 1:
            arr = arr.reshape(-1, 1)
        if arr.shape[0] != len(coef_names):
            raise ConfigurationError(
                "Number of rows of contrast matrix must match number of coefficients in fit")
        contrasts = pd.DataFrame(arr, index=coef_names,
                                 columns=[f"contrast{k + 1}" for k in range(arr.shape[1])])
    contrasts = contrasts.astype(np.float64)
    if not np.all(np.isfinite(contrasts.to_numpy())):
        raise ConfigurationError("Contrast weights must be finite")

    C = contrasts.to_numpy()
    beta = fit['coefficients'].to_numpy()
    stdev = fit['stdev.unscaled'].to_numpy()
    cov = fit['cov.coefficients'].to_numpy()

    new_cov = C.T @ cov @ C
    if not fit.get('weighted', False):
        new_stdev = np.tile(np.sqrt(np.diag(new_cov)), (beta.shape[0], 1))
    else:
        off_diag = cov - np.diag(np.diag(cov))
        if np.all(np.abs(off_diag) < 1e-14):
            new_stdev = np.sqrt((stdev ** 2) @ (C ** 2))
        else:
            d = np.sqrt(np.diag(cov))
            corr = cov / np.outer(d, d)
            new_stdev = np.empty((beta.shape[0], C.shape[1]))
            for g in range(beta.shape[0]):
                U = stdev[g][:, np.newaxis] * C
                new_stdev[g] = np.sqrt(np.sum(U * (corr @ U), axis=0))

    out = fit._copy()
    for key in ('t', 'p.value', 'lods', 's2.prior', 'df.prior', 's2.post',
                'df.total', 'proportion', 'var.prior'):
        out.pop(key, None)

    names = list(contrasts.columns)
    out['coefficients'] = pd.DataFrame(beta @ C, index=fit['coefficients'].index, columns=names)
    out['stdev.unscaled'] = pd.DataFrame(new_stdev, index=fit['coefficients'].index, columns=names)
    out['cov.coefficients'] = pd.DataFrame(new_cov, index=names, columns=names)
    if fit.get('contrasts') is not None:
        out['contrasts'] = fit['contrasts'] @ contrasts
    else:
        out['contrasts'] = contrasts
    return out
