"""
DGEList construction and accessors.

Builds the count container from a gene x sample table and a sample
descriptor table, matching descriptors to count columns by sample name.
"""

import numpy as np
import pandas as pd
import warnings
from .classes import DGEList
from .errors import DataError


def _drop_empty_levels(x):
    """Drop unused levels from a categorical/factor variable."""
    if hasattr(x, 'cat'):
        return x.cat.remove_unused_categories()
    return pd.Categorical(x)


def _unique_names(names, what):
    names = [str(n) for n in names]
    seen = set()
    dup = []
    for n in names:
        if n in seen and n not in dup:
            dup.append(n)
        seen.add(n)
    if dup:
        raise DataError(f"Duplicated {what} names: {', '.join(dup[:10])}")
    return names


def _match_samples(samples, col_names):
    """Reorder a descriptor table so that its rows follow the count columns."""
    samples = pd.DataFrame(samples).copy()
    samples.index = [str(s) for s in samples.index]
    _unique_names(samples.index, 'sample descriptor')

    missing = [s for s in col_names if s not in samples.index]
    if missing:
        raise DataError(f"No sample descriptor for count column(s): {', '.join(missing)}")
    extra = [s for s in samples.index if s not in set(col_names)]
    if extra:
        raise DataError(f"Sample descriptor(s) without a count column: {', '.join(extra)}")
    return samples.loc[col_names]


def make_dgelist(counts, samples=None, group=None, genes=None, lib_size=None,
                 norm_factors=None, remove_zeros=False, annotation_columns=None):
    """Construct a DGEList object from components.

    Parameters
    ----------
    counts : array-like or DataFrame
        Matrix of counts (genes x samples). A DataFrame supplies gene
        identifiers (index) and sample names (columns).
    samples : DataFrame, optional
        Sample descriptors, one row per sample. Rows are matched to count
        columns by index label.
    group : array-like, optional
        Group memberships. Defaults to samples['group'] when present.
    genes : DataFrame, optional
        Gene-level annotation, one row per gene.
    lib_size : array-like, optional
        Library sizes. Defaults to column sums.
    norm_factors : array-like, optional
        Normalization factors. Defaults to all ones.
    remove_zeros : bool
        Whether to remove rows with all zero counts.
    annotation_columns : list, optional
        For DataFrame counts, which columns are annotation (not counts).
        Non-numeric leading columns are detected automatically.

    Returns
    -------
    DGEList

    Raises
    ------
    DataError
        On missing, negative or non-finite counts, duplicated gene or sample
        names, or sample descriptors that do not match the count columns.
    """
    row_names = None
    col_names = None

    if isinstance(counts, pd.DataFrame):
        if annotation_columns is not None:
            if isinstance(annotation_columns, str):
                ann_cols = [annotation_columns]
            else:
                ann_cols = list(annotation_columns)
        else:
            # Auto-detect non-numeric columns
            numeric_mask = counts.dtypes.apply(lambda dt: np.issubdtype(dt, np.number))
            ann_cols = []
            if not numeric_mask.all():
                non_numeric = counts.columns[~numeric_mask]
                last_idx = counts.columns.get_loc(non_numeric[-1])
                ann_cols = counts.columns[:last_idx + 1].tolist()
        if ann_cols:
            ann = counts[ann_cols].copy()
            genes = ann if genes is None else pd.concat([ann, pd.DataFrame(genes)], axis=1)
            counts = counts.drop(columns=ann_cols)
        row_names = [str(r) for r in counts.index]
        col_names = [str(c) for c in counts.columns]

    try:
        counts = np.asarray(counts, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise DataError(f"Counts must be numeric: {exc}") from exc
    if counts.ndim == 1:
        counts = counts.reshape(-1, 1)

    if counts.size == 0:
        raise DataError("'counts' must contain at least one value")
    if np.any(np.isnan(counts)):
        bad = np.where(np.isnan(counts).any(axis=1))[0][0]
        raise DataError(f"NA counts not allowed (first at row {bad})")
    if np.any(counts < 0):
        raise DataError("Negative counts not allowed")
    if not np.all(np.isfinite(counts)):
        raise DataError("Infinite counts not allowed")

    ntags, nlib = counts.shape

    if col_names is None:
        if samples is not None and len(pd.DataFrame(samples)) == nlib:
            col_names = [str(s) for s in pd.DataFrame(samples).index]
        else:
            col_names = [f"Sample{i+1}" for i in range(nlib)]
    if row_names is None:
        if genes is not None and len(pd.DataFrame(genes)) == ntags:
            row_names = [str(g) for g in pd.DataFrame(genes).index]
        else:
            row_names = [str(i+1) for i in range(ntags)]
    col_names = _unique_names(col_names, 'sample')
    row_names = _unique_names(row_names, 'gene')

    # Library sizes
    if lib_size is None:
        lib_size = counts.sum(axis=0)
        if np.min(lib_size) <= 0:
            warnings.warn("At least one library size is zero")
    else:
        lib_size = np.asarray(lib_size, dtype=np.float64)
        if len(lib_size) != nlib:
            raise DataError("length of 'lib_size' must equal number of samples")
        if np.any(np.isnan(lib_size)) or np.any(lib_size < 0):
            raise DataError("library sizes must be non-negative numbers")

    # Normalization factors
    if norm_factors is None:
        norm_factors = np.ones(nlib)
    else:
        norm_factors = np.asarray(norm_factors, dtype=np.float64)
        if len(norm_factors) != nlib:
            raise DataError("Length of 'norm_factors' must equal number of columns in 'counts'")
        if np.any(~np.isfinite(norm_factors)) or np.any(norm_factors <= 0):
            raise DataError("norm factors must be positive and finite")

    if samples is not None:
        samples = _match_samples(samples, col_names)

    # Group
    if group is None and samples is not None and 'group' in samples.columns:
        group = samples['group'].values
    if samples is not None:
        samples = samples.drop(columns=[c for c in ('group', 'lib.size', 'norm.factors')
                                        if c in samples.columns])

    if group is None:
        group = pd.Categorical([1] * nlib)
    else:
        if len(group) != nlib:
            raise DataError("Length of 'group' must equal number of columns in 'counts'")
        group = _drop_empty_levels(pd.Categorical(group))

    sam = pd.DataFrame({
        'group': group,
        'lib.size': lib_size,
        'norm.factors': norm_factors
    }, index=col_names)
    if samples is not None:
        for col in samples.columns:
            sam[col] = samples[col].values

    x = DGEList()
    x['counts'] = counts
    x['samples'] = sam

    if genes is not None:
        genes = pd.DataFrame(genes).copy()
        if len(genes) != ntags:
            raise DataError("Counts and genes have different numbers of rows")
    else:
        genes = pd.DataFrame(index=row_names)
    genes.index = row_names
    x['genes'] = genes

    if remove_zeros:
        all_zeros = np.sum(counts > 0, axis=1) == 0
        if np.any(all_zeros):
            x = x[~all_zeros, :]
            warnings.warn(f"Removing {int(np.sum(all_zeros))} rows with all zero counts")

    return x


def get_norm_lib_sizes(y, log=False):
    """Effective (normalized) library sizes, lib.size * norm.factors."""
    if isinstance(y, dict) and 'samples' in y:
        els = y['samples']['lib.size'].values * y['samples']['norm.factors'].values
    else:
        els = np.asarray(y, dtype=np.float64).sum(axis=0)
    if log:
        els = np.log(els)
    return els
