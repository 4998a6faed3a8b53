"""
Library composition normalization for limmapy.

Trimmed mean of M-values (TMM, TMMwsp), relative log expression (RLE) and
upper-quartile scale factors. Factors are rescaled to multiply to one and
are stored in DGEList samples['norm.factors'].
"""

import numpy as np
import warnings
from scipy.stats import rankdata

from .errors import DataError

NORM_METHODS = ('TMM', 'TMMwsp', 'RLE', 'upperquartile', 'none')


def calc_norm_factors(counts, lib_size=None, method='TMM', ref_column=None,
                      logratio_trim=0.3, sum_trim=0.05, do_weighting=True,
                      a_cutoff=-1e10, p=0.75):
    """Calculate normalization factors for a count matrix.

    Parameters
    ----------
    counts : array-like or DGEList
        Count matrix (genes x samples), or DGEList object.
    lib_size : array-like, optional
        Library sizes. Defaults to column sums, or samples['lib.size'] for
        a DGEList.
    method : str
        One of NORM_METHODS.
    ref_column : int, optional
        Reference library for TMM and TMMwsp. By default the library whose
        upper quartile is closest to the mean upper quartile.
    logratio_trim, sum_trim : float
        Fractions trimmed from each end of the M and A distributions.
    do_weighting : bool
        Weight M-values by their inverse asymptotic variance.
    a_cutoff : float
        Genes with average log abundance at or below this are ignored.
    p : float
        Quantile for the upperquartile method.

    Returns
    -------
    A DGEList copy with samples['norm.factors'] replaced, or, for a matrix
    input, an ndarray of positive factors whose product is one.
    """
    options = dict(method=method, ref_column=ref_column, logratio_trim=logratio_trim,
                   sum_trim=sum_trim, do_weighting=do_weighting, a_cutoff=a_cutoff, p=p)
    if isinstance(counts, dict) and 'counts' in counts:
        y = counts._copy()
        if lib_size is None:
            lib_size = y['samples']['lib.size'].to_numpy()
        y['samples'] = y['samples'].copy()
        y['samples']['norm.factors'] = _norm_factors(y['counts'], lib_size, **options)
        return y
    return _norm_factors(counts, lib_size, **options)


def _norm_factors(x, lib_size, method, ref_column, logratio_trim, sum_trim,
                  do_weighting, a_cutoff, p):
    x = np.asarray(x, dtype=np.float64)
    if np.isnan(x).any():
        raise DataError("NA counts not permitted")
    nsamples = x.shape[1]

    lib_size = x.sum(axis=0) if lib_size is None else np.asarray(lib_size, dtype=np.float64)
    if lib_size.shape != (nsamples,):
        raise DataError("length of lib_size doesn't match number of samples")
    if not np.all(np.isfinite(lib_size) & (lib_size > 0)):
        raise DataError("library sizes must be positive to compute normalization factors")

    if method == 'TMMwzp':
        method = 'TMMwsp'
    if method not in NORM_METHODS:
        raise ValueError(f"method must be one of {NORM_METHODS}")

    x = x[(x > 0).any(axis=1)]
    if x.shape[0] == 0 or nsamples == 1:
        method = 'none'

    if method in ('TMM', 'TMMwsp'):
        if ref_column is None:
            ref_column = _reference_library(x, lib_size, prefer_sqrt=method == 'TMMwsp')
        pair_factor = _tmm_pair if method == 'TMM' else _tmmwsp_pair
        f = np.array([
            pair_factor(x[:, i], x[:, ref_column], lib_size[i], lib_size[ref_column],
                        logratio_trim, sum_trim, do_weighting, a_cutoff)
            for i in range(nsamples)
        ])
    elif method == 'RLE':
        f = _rle_factors(x) / lib_size
    elif method == 'upperquartile':
        f = _quantile_factors(x, lib_size, p)
    else:
        f = np.ones(nsamples)

    bad = np.where(~np.isfinite(f) | (f <= 0))[0]
    if len(bad):
        raise DataError(
            f"{method} normalization produced non-positive factors for sample "
            f"column(s) {', '.join(str(i) for i in bad)}")
    return f / np.exp(np.mean(np.log(f)))


def _reference_library(x, lib_size, prefer_sqrt=False):
    """Index of the library used as TMM reference."""
    sqrt_total = np.sqrt(x).sum(axis=0)
    if prefer_sqrt:
        return int(np.argmax(sqrt_total))
    uq = _quantile_factors(x, lib_size, 0.75, warn=False)
    if np.median(uq) < 1e-20:
        return int(np.argmax(sqrt_total))
    return int(np.argmin(np.abs(uq - uq.mean())))


def _rle_factors(x):
    """Median ratio to the geometric mean gene (Anders & Huber 2010)."""
    with np.errstate(divide='ignore'):
        geo = np.exp(np.log(x).mean(axis=1))
    usable = geo > 0
    if not usable.any():
        raise DataError("RLE normalization needs at least one gene with no zero counts")
    return np.median(x[usable] / geo[usable, np.newaxis], axis=0)


def _quantile_factors(x, lib_size, p=0.75, warn=True):
    q = np.quantile(x, p, axis=0)
    if warn and q.min() == 0:
        warnings.warn("One or more quantiles are zero")
    return q / lib_size


def _m_and_a(obs, ref, lib_obs, lib_ref):
    """Log-ratio M and average log abundance A of two libraries."""
    with np.errstate(divide='ignore', invalid='ignore'):
        lo = np.log2(obs / lib_obs)
        lr = np.log2(ref / lib_ref)
    return lo - lr, (lo + lr) / 2


def _tmm_pair(obs, ref, lib_obs, lib_ref, logratio_trim, sum_trim, do_weighting, a_cutoff):
    """TMM factor of one library against the reference (Robinson & Oshlack 2010)."""
    M, A = _m_and_a(obs, ref, lib_obs, lib_ref)
    with np.errstate(divide='ignore', invalid='ignore'):
        v = (lib_obs - obs) / lib_obs / obs + (lib_ref - ref) / lib_ref / ref

    use = np.isfinite(M) & np.isfinite(A) & (A > a_cutoff)
    M, A, v = M[use], A[use], v[use]
    if M.size == 0 or np.abs(M).max() < 1e-6:
        return 1.0

    n = M.size
    lo_m = int(n * logratio_trim) + 1
    lo_a = int(n * sum_trim) + 1
    rm = rankdata(M)
    ra = rankdata(A)
    trimmed = (rm >= lo_m) & (rm <= n + 1 - lo_m) & (ra >= lo_a) & (ra <= n + 1 - lo_a)
    if not trimmed.any():
        return 1.0

    log_f = np.nan
    if do_weighting:
        w = 1 / v[trimmed]
        if np.isfinite(w.sum()) and w.sum() > 0:
            log_f = np.sum(w * M[trimmed]) / w.sum()
    if not np.isfinite(log_f):
        log_f = M[trimmed].mean()
    return 2 ** log_f


def _pair_singletons(obs, ref):
    """Drop double zeros and pair genes seen in only one library by size."""
    seen_obs = obs > 1e-14
    seen_ref = ref > 1e-14
    both = seen_obs & seen_ref
    only_obs = seen_obs & ~seen_ref
    only_ref = seen_ref & ~seen_obs
    n_pairs = min(only_obs.sum(), only_ref.sum())

    single = only_obs | only_ref
    paired_obs = np.sort(obs[single])[::-1][:n_pairs]
    paired_ref = np.sort(ref[single])[::-1][:n_pairs]
    return (np.concatenate([obs[both], paired_obs]),
            np.concatenate([ref[both], paired_ref]))


def _tmmwsp_pair(obs, ref, lib_obs, lib_ref, logratio_trim, sum_trim, do_weighting,
                 a_cutoff):
    """TMM with singleton pairing, for libraries with many zero counts."""
    obs, ref = _pair_singletons(obs, ref)
    n = obs.size
    if n == 0:
        return 1.0

    M, A = _m_and_a(obs, ref, lib_obs, lib_ref)
    if np.abs(M[np.isfinite(M)]).max() < 1e-6:
        return 1.0

    # Ties in M are broken by the log-ratio of shrunk proportions
    M_shrunk = np.log2((obs + 0.5) / (lib_obs + 0.5)) - np.log2((ref + 0.5) / (lib_ref + 0.5))
    lo_m = int(n * logratio_trim) + 1
    lo_a = int(n * sum_trim) + 1
    in_m = np.zeros(n, dtype=bool)
    in_m[np.lexsort((M_shrunk, M))[lo_m:n - lo_m]] = True
    in_a = np.zeros(n, dtype=bool)
    in_a[np.argsort(A)[lo_a:n - lo_a]] = True
    trimmed = in_m & in_a
    if not trimmed.any():
        return 1.0

    if not do_weighting:
        return 2 ** M[trimmed].mean()
    p_obs = obs[trimmed] / lib_obs
    p_ref = ref[trimmed] / lib_ref
    v = (1 - p_obs) / p_obs / lib_obs + (1 - p_ref) / p_ref / lib_ref
    w = (1 + 1e-6) / (v + 1e-6)
    return 2 ** (np.sum(w * M[trimmed]) / w.sum())
