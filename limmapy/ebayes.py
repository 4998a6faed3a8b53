"""
Empirical Bayes moderation of linear model fits.

Implements the moderated t-statistic of Smyth (2004), Statistical
Applications in Genetics and Molecular Biology 3(1), Article 3, as in
limma's squeezeVar(), fitFDist() and eBayes().

The genewise residual variances s2 are modelled as
``s2 ~ s0^2 * chi2(d0) / d0``. The hyperparameters d0 and s0^2 are found
by matching the first two moments of ``log(s2) + logmdigamma(d/2)``.
Posterior variances are ``(d0*s0^2 + d*s2) / (d0 + d)`` and the moderated
t-statistic ``coef / (stdev.unscaled * sqrt(s2.post))`` follows a t
distribution on ``d + d0`` degrees of freedom.
"""

import numpy as np
import pandas as pd
import warnings
from scipy import stats
from scipy.special import digamma, polygamma

from .errors import DataError


def logmdigamma(x):
    """Compute log(x) - digamma(x) without cancellation for large x."""
    x = np.asarray(x, dtype=np.float64)
    scalar = x.ndim == 0
    x = np.atleast_1d(x)
    out = np.full(x.shape, np.nan)
    with np.errstate(invalid='ignore', divide='ignore'):
        small = (x > 0) & (x < 10)
        out[small] = np.log(x[small]) - digamma(x[small])
        large = x >= 10
        z = x[large]
        z2 = 1.0 / (z * z)
        out[large] = 1.0 / (2 * z) + z2 * (1.0 / 12 - z2 * (1.0 / 120 - z2 * (
            1.0 / 252 - z2 * (1.0 / 240 - z2 / 132))))
        out[np.isposinf(x)] = 0.0
    return float(out[0]) if scalar else out


def trigamma_inverse(x):
    """Solve trigamma(y) = x for y by Newton iteration."""
    x = np.asarray(x, dtype=np.float64)
    scalar = x.ndim == 0
    x = np.atleast_1d(x).copy()
    y = np.full(x.shape, np.nan)

    big = x > 1e7
    tiny = (x < 1e-6) & (x > 0)
    y[big] = 1.0 / np.sqrt(x[big])
    y[tiny] = 1.0 / x[tiny]
    todo = (x > 0) & ~big & ~tiny
    if np.any(todo):
        xt = x[todo]
        yt = 0.5 + 1.0 / xt
        for _ in range(50):
            tri = polygamma(1, yt)
            dif = tri * (1 - tri / xt) / polygamma(2, yt)
            yt = yt + dif
            if np.max(-dif / yt) < 1e-8:
                break
        else:
            warnings.warn("Iteration limit exceeded in trigamma_inverse")
        y[todo] = yt
    return float(y[0]) if scalar else y


def natural_spline_basis(x, df):
    """Natural cubic spline basis with intercept, df columns.

    Internal knots are placed at equally spaced quantiles of x and the
    boundary knots at its range, using the truncated power representation
    of Hastie, Tibshirani & Friedman (2009), eqs. 5.4-5.5.
    """
    x = np.asarray(x, dtype=np.float64)
    lo, hi = np.min(x), np.max(x)
    if df <= 2 or lo == hi:
        return np.column_stack([np.ones(len(x)), x])[:, :max(df, 1)]

    inner = np.quantile(x, np.linspace(0, 1, df)[1:-1])
    knots = np.concatenate([[lo], inner, [hi]])

    def d(k):
        return (np.maximum(x - knots[k], 0) ** 3
                - np.maximum(x - hi, 0) ** 3) / (hi - knots[k])

    last = d(len(knots) - 2)
    cols = [np.ones(len(x)), x] + [d(k) - last for k in range(len(knots) - 2)]
    return np.column_stack(cols)


def _hyperparameters(e, df1, n_params):
    """Prior degrees of freedom from the residual moments of e."""
    n = len(e)
    if n > n_params:
        evar = np.sum(e ** 2) / (n - n_params)
    else:
        evar = 0.0
    evar = evar - np.mean(polygamma(1, df1 / 2))
    if evar > 0:
        d0 = 2 * trigamma_inverse(evar)
        if d0 > 1e15:
            d0 = np.inf
        return d0
    return np.inf


def fit_f_dist(x, df1, covariate=None):
    """Moment estimation of a scaled F distribution.

    Estimates the scale s0^2 and the denominator degrees of freedom d0
    such that ``x / s0^2 ~ F(df1, d0)``.

    Parameters
    ----------
    x : ndarray
        Genewise residual variances (zeros allowed).
    df1 : ndarray
        Residual degrees of freedom, same length as x.
    covariate : ndarray, optional
        If given, log(s0^2) is a natural spline trend in the covariate.

    Returns
    -------
    dict with 'scale' (float, or ndarray if covariate given) and 'df2'.
    """
    x = np.asarray(x, dtype=np.float64)
    df1 = np.broadcast_to(np.asarray(df1, dtype=np.float64), x.shape)
    n = len(x)
    if n == 0:
        return {'scale': np.nan, 'df2': np.nan}
    if n == 1:
        return {'scale': float(x[0]), 'df2': 0.0}

    x = np.maximum(x, 0)
    m = np.median(x)
    if m == 0:
        warnings.warn("More than half of residual variances are exactly zero: "
                      "eBayes unreliable")
        m = 1.0
    elif np.any(x == 0):
        warnings.warn("Zero sample variances detected, have been offset away from zero")
    x = np.maximum(x, 1e-5 * m)

    e = np.log(x) + logmdigamma(df1 / 2)

    if covariate is None:
        emean = np.mean(e)
        d0 = _hyperparameters(e - emean, df1, 1)
        if np.isfinite(d0):
            scale = float(np.exp(emean - logmdigamma(d0 / 2)))
        else:
            scale = float(np.mean(x))
        return {'scale': scale, 'df2': d0}

    covariate = np.asarray(covariate, dtype=np.float64)
    spline_df = 1 + int(n >= 3) + int(n >= 6) + int(n >= 30)
    spline_df = min(spline_df, len(np.unique(covariate)))
    if spline_df < 2:
        out = fit_f_dist(x, df1)
        return {'scale': np.full(n, out['scale']), 'df2': out['df2']}

    basis = natural_spline_basis(covariate, spline_df)
    beta, _, rank, _ = np.linalg.lstsq(basis, e, rcond=None)
    emean = basis @ beta
    d0 = _hyperparameters(e - emean, df1, rank)
    if np.isfinite(d0):
        scale = np.exp(emean - logmdigamma(d0 / 2))
    else:
        scale = np.exp(emean)
    return {'scale': scale, 'df2': d0}


def posterior_var(var, df, var_prior, df_prior):
    """Posterior genewise variances given a scaled inverse-chi2 prior."""
    var = np.asarray(var, dtype=np.float64)
    df = np.asarray(df, dtype=np.float64)
    if np.isinf(df_prior):
        return np.broadcast_to(np.asarray(var_prior, dtype=np.float64), var.shape).copy()
    total = df + df_prior
    with np.errstate(invalid='ignore', divide='ignore'):
        post = (df * var + df_prior * np.asarray(var_prior)) / total
    post = np.where(total > 0, post, var)
    return post


def squeeze_var(var, df, covariate=None):
    """Squeeze genewise variances toward a common or trended prior.

    Parameters
    ----------
    var : array-like
        Genewise residual variances.
    df : array-like or float
        Residual degrees of freedom.
    covariate : array-like, optional
        Average log-expression, for a trended prior.

    Returns
    -------
    dict with keys var_post, var_prior, df_prior.
    """
    var = np.asarray(var, dtype=np.float64).copy()
    n = len(var)
    if n == 0:
        raise DataError("var is empty")
    df = np.broadcast_to(np.asarray(df, dtype=np.float64), var.shape).copy()
    if n < 3:
        return {'var_post': var, 'var_prior': var.copy(), 'df_prior': 0.0}

    var[df == 0] = 0
    ok = np.isfinite(var) & (df > 0)
    if not np.any(ok):
        raise DataError("No residual degrees of freedom in linear model fits")

    if covariate is not None:
        covariate = np.asarray(covariate, dtype=np.float64)
        fit = fit_f_dist(var[ok], df[ok], covariate=covariate[ok])
        var_prior = np.empty(n)
        var_prior[ok] = fit['scale']
        if not np.all(ok):
            order = np.argsort(covariate[ok])
            var_prior[~ok] = np.interp(covariate[~ok], covariate[ok][order],
                                       np.asarray(fit['scale'])[order])
    else:
        fit = fit_f_dist(var[ok], df[ok])
        var_prior = fit['scale']

    df_prior = fit['df2']
    if np.isnan(df_prior):
        df_prior = 0.0
    return {'var_post': posterior_var(var, df, var_prior, df_prior),
            'var_prior': var_prior, 'df_prior': df_prior}


def tmixture_vector(tstat, stdev_unscaled, df, proportion, v0_lim=None):
    """Estimate the prior variance of non-zero coefficients from the top t-statistics."""
    tstat = np.asarray(tstat, dtype=np.float64)
    stdev_unscaled = np.asarray(stdev_unscaled, dtype=np.float64)
    df = np.broadcast_to(np.asarray(df, dtype=np.float64), tstat.shape)

    keep = np.isfinite(tstat)
    tstat = tstat[keep]
    stdev_unscaled = stdev_unscaled[keep]
    df = df[keep]

    ngenes = len(tstat)
    ntarget = int(np.ceil(proportion / 2 * ngenes))
    if ntarget < 1:
        return np.nan

    p = max(ntarget / ngenes, proportion)
    tstat = np.abs(tstat)
    max_df = np.max(df)
    low = df < max_df
    if np.any(low):
        log_tail = stats.t.logsf(tstat[low], df[low])
        # Tail areas below the smallest positive double map to its quantile, not inf
        tail = np.maximum(np.exp(log_tail), np.finfo(np.float64).tiny)
        tstat[low] = stats.t.isf(tail, max_df)

    top = np.argsort(-tstat, kind='stable')[:ntarget]
    tstat = tstat[top]
    v1 = stdev_unscaled[top] ** 2
    r = np.arange(1, ntarget + 1)
    p0 = 2 * stats.t.sf(tstat, max_df)
    ptarget = ((r - 0.5) / ngenes - (1 - p) * p0) / p
    v0 = np.zeros(ntarget)
    pos = ptarget > p0
    if np.any(pos):
        qtarget = stats.t.isf(ptarget[pos] / 2, max_df)
        v0[pos] = v1[pos] * ((tstat[pos] / qtarget) ** 2 - 1)
    if v0_lim is not None:
        v0 = np.clip(v0, v0_lim[0], v0_lim[1])
    return float(np.mean(v0))


def e_bayes(fit, proportion=0.01, stdev_coef_lim=(0.1, 4), trend=False):
    """Empirical Bayes moderated t-statistics.

    The shrinkage parameters are estimated once from all genes before any
    per-gene statistic is finalized.

    Parameters
    ----------
    fit : MArrayLM
        Output of lm_fit() or contrasts_fit().
    proportion : float
        Assumed proportion of genes that are differentially expressed,
        used for the B-statistic.
    stdev_coef_lim : tuple of float
        Limits on the prior standard deviation of log fold changes.
    trend : bool
        Trend the prior variance on average log-expression.

    Returns
    -------
    New MArrayLM with s2.prior, df.prior, s2.post, df.total, t, p.value,
    lods, var.prior and proportion added.

    Notes
    -----
    Genes with zero residual variance get a positive posterior variance
    whenever d0 > 0. Genes whose statistic cannot be computed carry NaN.
    """
    if fit.get('coefficients') is None or fit.get('sigma') is None:
        raise ValueError("fit must contain coefficients and sigma, as returned by lm_fit")
    if not 0 < proportion < 1:
        raise ValueError("proportion must be between 0 and 1")

    coef = fit['coefficients']
    stdev = fit['stdev.unscaled']
    sigma = np.asarray(fit['sigma'], dtype=np.float64)
    df_residual = np.asarray(fit['df.residual'], dtype=np.float64)
    if np.all(df_residual == 0):
        raise DataError("No residual degrees of freedom in linear model fits")
    if not np.any(np.isfinite(sigma)):
        raise DataError("No finite residual standard deviations")

    covariate = None
    if trend:
        covariate = np.asarray(fit.get('Amean'), dtype=np.float64) \
            if fit.get('Amean') is not None else None
        if covariate is None:
            raise ValueError("Need Amean component in fit to estimate trend")

    sv = squeeze_var(sigma ** 2, df_residual, covariate=covariate)
    df_prior = sv['df_prior']
    s2_post = sv['var_post']

    beta = coef.to_numpy()
    u = stdev.to_numpy()
    with np.errstate(invalid='ignore', divide='ignore'):
        t = beta / u / np.sqrt(s2_post)[:, np.newaxis]

    df_pooled = np.sum(df_residual[np.isfinite(sigma)])
    df_total = np.minimum(df_residual + df_prior, df_pooled)
    p_value = 2 * stats.t.sf(np.abs(t), df_total[:, np.newaxis])

    n_nan = int(np.isnan(p_value).any(axis=1).sum())
    if n_nan:
        warnings.warn(f"{n_nan} genes have undefined moderated statistics")

    # B-statistic
    s2_prior = np.atleast_1d(np.asarray(sv['var_prior'], dtype=np.float64))
    var_prior_lim = np.asarray(stdev_coef_lim, dtype=np.float64) ** 2 / np.median(s2_prior)
    var_prior = np.array([
        tmixture_vector(t[:, j], u[:, j], df_total, proportion, var_prior_lim)
        for j in range(t.shape[1])
    ])
    if np.any(np.isnan(var_prior)):
        var_prior[np.isnan(var_prior)] = 1.0 / np.median(s2_prior)
        warnings.warn("Estimation of var.prior failed - set to default value")

    r = (u ** 2 + var_prior[np.newaxis, :]) / u ** 2
    t2 = t ** 2
    dft = df_total[:, np.newaxis]
    with np.errstate(invalid='ignore', divide='ignore'):
        if np.isinf(df_prior) or df_prior > 1e6:
            kernel = t2 * (1 - 1 / r) / 2
        else:
            kernel = (1 + dft) / 2 * np.log((t2 + dft) / (t2 / r + dft))
        lods = np.log(proportion / (1 - proportion)) - np.log(r) / 2 + kernel

    index = coef.index
    columns = coef.columns
    out = fit._copy()
    out['s2.prior'] = sv['var_prior']
    out['df.prior'] = df_prior
    out['s2.post'] = s2_post
    out['df.total'] = df_total
    out['t'] = pd.DataFrame(t, index=index, columns=columns)
    out['p.value'] = pd.DataFrame(p_value, index=index, columns=columns)
    out['lods'] = pd.DataFrame(lods, index=index, columns=columns)
    out['var.prior'] = var_prior
    out['proportion'] = proportion
    return out
