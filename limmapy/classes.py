"""
Core data classes for limmapy.

DGEList (counts), EList (log-expression with precision weights) and MArrayLM
(linear model fit) as dict subclasses with attribute access, two-index
subsetting, and display.
"""

import numpy as np
import pandas as pd
from copy import deepcopy


class _LimmaBase(dict):
    """Base class providing dict-like access, subsetting, and display."""

    _main = 'counts'

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

    def __setattr__(self, name, value):
        self[name] = value

    def __delattr__(self, name):
        try:
            del self[name]
        except KeyError:
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

    @property
    def shape(self):
        if self._main in self and self[self._main] is not None:
            return self[self._main].shape
        return None

    def __repr__(self):
        cls = type(self).__name__
        components = list(self.keys())
        s = self.shape
        if s is not None:
            return f"{cls} with {s[0]} rows and {s[1]} columns\nComponents: {', '.join(components)}"
        return f"{cls}\nComponents: {', '.join(components)}"

    def _copy(self):
        """Deep copy of the object."""
        return deepcopy(self)

    def to_dataframe(self):
        """Main matrix as a DataFrame labelled by gene and column names."""
        x = self[self._main]
        if isinstance(x, pd.DataFrame):
            return x.copy()
        return pd.DataFrame(x, index=_get_rownames(self), columns=_get_colnames(self))

    def _split_key(self, key):
        if isinstance(key, tuple) and len(key) == 2:
            return key
        raise IndexError("Two subscripts required")

    def _subset(self, i_idx, j_idx):
        """Copy with gene (i) and sample (j) subsets applied to every component."""
        out = self._copy()
        for k in getattr(self, '_IJ', ()):
            if out.get(k) is not None:
                out[k] = _subset_matrix_or_df(out[k], i_idx, j_idx)
        for k in getattr(self, '_IX', ()):
            if out.get(k) is not None:
                out[k] = _subset_matrix_or_df(out[k], i_idx)
        if j_idx is not None:
            for k in getattr(self, '_JX', ()):
                if out.get(k) is not None:
                    out[k] = _subset_matrix_or_df(out[k], j_idx).copy()
        return out


def _get_rownames(obj):
    """Get row names from the genes table or a labelled main matrix."""
    if obj.get('genes') is not None:
        return list(obj['genes'].index)
    x = obj.get(obj._main) if hasattr(obj, '_main') else None
    if isinstance(x, pd.DataFrame):
        return list(x.index)
    return None


def _get_colnames(obj):
    """Get column names from the samples/targets table."""
    for key in ('samples', 'targets'):
        if obj.get(key) is not None:
            return list(obj[key].index)
    x = obj.get(obj._main) if hasattr(obj, '_main') else None
    if isinstance(x, pd.DataFrame):
        return list(x.columns)
    return None


def _subset_matrix_or_df(x, i=None, j=None):
    """Subset a matrix, DataFrame, or vector by row (i) and/or column (j)."""
    if x is None:
        return None
    if isinstance(x, pd.DataFrame):
        if i is not None and j is not None:
            return x.iloc[i, j]
        elif i is not None:
            return x.iloc[i]
        elif j is not None:
            return x.iloc[:, j]
        return x
    if isinstance(x, np.ndarray):
        if x.ndim == 2:
            if i is not None and j is not None:
                if isinstance(i, slice) or isinstance(j, slice):
                    return x[i, :][:, j]
                return x[np.ix_(np.atleast_1d(i), np.atleast_1d(j))]
            elif i is not None:
                return x[i] if isinstance(i, slice) else x[np.atleast_1d(i)]
            elif j is not None:
                return x[:, j] if isinstance(j, slice) else x[:, np.atleast_1d(j)]
        elif x.ndim == 1:
            if i is not None:
                return x[i] if isinstance(i, slice) else x[np.atleast_1d(i)]
        return x
    return x


def _resolve_index(idx, names):
    """Resolve index to integer array. Supports bool, int, str, slice."""
    if idx is None:
        return None
    if isinstance(idx, slice):
        return idx
    if isinstance(idx, (pd.Series, pd.Index)):
        idx = idx.to_numpy()
    idx = np.atleast_1d(idx)
    if idx.dtype == bool:
        return np.where(idx)[0]
    if idx.dtype.kind in ('U', 'S', 'O') and names is not None:
        lookup = {}
        for k, name in enumerate(names):
            lookup.setdefault(name, k)
        result = []
        for name in idx:
            if name not in lookup:
                raise KeyError(f"Name '{name}' not found")
            result.append(lookup[name])
        return np.array(result, dtype=int)
    return idx.astype(int)


class DGEList(_LimmaBase):
    """Digital gene expression data list.

    Attributes
    ----------
    counts : ndarray
        Matrix of counts (genes x samples).
    samples : DataFrame
        One row per sample, indexed by sample name, with columns group,
        lib.size, norm.factors followed by the sample descriptor factors.
    genes : DataFrame
        Indexed by gene identifier. Annotation columns (SYMBOL, ENTREZID,
        GENENAME) are added by annotate_genes().
    """

    _main = 'counts'
    _IJ = {'counts'}
    _IX = {'genes'}
    _JX = {'samples'}

    def __getitem__(self, key):
        if isinstance(key, str):
            return super().__getitem__(key)
        i, j = self._split_key(key)

        i_idx = _resolve_index(i, _get_rownames(self))
        j_idx = _resolve_index(j, _get_colnames(self))

        out = self._subset(i_idx, j_idx)

        # Drop empty group levels after column subsetting
        if j_idx is not None and 'samples' in out and 'group' in out['samples'].columns:
            grp = out['samples']['group']
            if hasattr(grp, 'cat'):
                out['samples']['group'] = grp.cat.remove_unused_categories()

        return out

    @property
    def nrow(self):
        if 'counts' in self:
            return self['counts'].shape[0]
        return 0

    @property
    def ncol(self):
        if 'counts' in self:
            return self['counts'].shape[1]
        return 0

    def __len__(self):
        return self.nrow


class EList(_LimmaBase):
    """Log-expression values with optional precision weights.

    Attributes
    ----------
    E : DataFrame or ndarray
        log2-CPM values (genes x samples).
    weights : ndarray or None
        Precision weights, same shape as E.
    genes : DataFrame or None
    targets : DataFrame or None
        Sample information, one row per column of E.
    design : DataFrame or None
    """

    _main = 'E'
    _IJ = {'E', 'weights'}
    _IX = {'genes'}
    _JX = {'targets', 'design'}

    def __getitem__(self, key):
        if isinstance(key, str):
            return super().__getitem__(key)
        i, j = self._split_key(key)

        i_idx = _resolve_index(i, _get_rownames(self))
        j_idx = _resolve_index(j, _get_colnames(self))

        return self._subset(i_idx, j_idx)

    @property
    def nrow(self):
        return self['E'].shape[0] if self.get('E') is not None else 0

    @property
    def ncol(self):
        return self['E'].shape[1] if self.get('E') is not None else 0


class MArrayLM(_LimmaBase):
    """Linear model fit for a batch of genes.

    Attributes
    ----------
    coefficients : DataFrame
        Genes x coefficients (or contrasts after contrasts_fit).
    stdev.unscaled : DataFrame
        Unscaled standard errors, same shape as coefficients.
    sigma : ndarray
        Residual standard deviation per gene.
    df.residual : ndarray
        Residual degrees of freedom per gene.
    cov.coefficients : DataFrame
        Unscaled covariance of the coefficients for the unweighted design.
    Amean : ndarray
        Average log-expression per gene.
    design : DataFrame
    contrasts : DataFrame or None
        Coefficients x contrasts weight matrix applied by contrasts_fit.
    genes : DataFrame or None

    After e_bayes: s2.prior, df.prior, s2.post, df.total, t, p.value, lods,
    proportion.
    """

    _main = 'coefficients'
    _IX = {'coefficients', 'stdev.unscaled', 't', 'p.value', 'lods', 'genes'}
    _I = {'sigma', 'df.residual', 'Amean', 's2.post', 'df.total', 's2.prior',
          'df.prior'}

    def __getitem__(self, key):
        if isinstance(key, str):
            return super().__getitem__(key)
        i, j = self._split_key(key)

        out = self._copy()
        i_idx = _resolve_index(i, _get_rownames(self))
        j_idx = _resolve_index(j, self.coef_names)

        for k in self._IX:
            if out.get(k) is not None:
                jj = j_idx if k != 'genes' else None
                out[k] = _subset_matrix_or_df(out[k], i_idx, jj)
        for k in self._I:
            x = out.get(k)
            if isinstance(x, np.ndarray) and x.ndim == 1 and len(x) == self.nrow:
                out[k] = _subset_matrix_or_df(x, i_idx)
        if j_idx is not None:
            if out.get('contrasts') is not None:
                out['contrasts'] = _subset_matrix_or_df(out['contrasts'], j=j_idx)
            if out.get('cov.coefficients') is not None:
                out['cov.coefficients'] = out['cov.coefficients'].iloc[j_idx, j_idx]
            if isinstance(out.get('var.prior'), np.ndarray):
                out['var.prior'] = out['var.prior'][j_idx]
        return out

    @property
    def nrow(self):
        if self.get('coefficients') is not None:
            return self['coefficients'].shape[0]
        return 0

    @property
    def coef_names(self):
        if self.get('coefficients') is not None:
            return list(self['coefficients'].columns)
        return None

    @property
    def gene_ids(self):
        if self.get('coefficients') is not None:
            return list(self['coefficients'].index)
        return None
