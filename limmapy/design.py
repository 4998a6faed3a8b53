"""
Design matrices and contrasts for group-means models.

Samples are assigned to groups by joining their factor values; the design
is a one-hot group-means matrix without intercept whose columns are the
sorted group labels. Contrasts are explicit weight vectors over those
groups.
"""

import numpy as np
import pandas as pd

from .errors import ConfigurationError, DataError
from .utils import model_matrix


def group_labels(samples, factors, sep='_'):
    """Derive group labels by joining factor values in a fixed field order.

    Parameters
    ----------
    samples : DataFrame
        Sample descriptors, one row per sample.
    factors : list of str
        Factor columns, in the order they are joined.
    sep : str
        Separator placed between factor values.

    Returns
    -------
    Series of str indexed like ``samples``.
    """
    if isinstance(factors, str):
        factors = [factors]
    factors = list(factors)
    if not factors:
        raise ConfigurationError("At least one factor is needed to define groups")
    missing = [f for f in factors if f not in samples.columns]
    if missing:
        raise ConfigurationError(f"Sample descriptors have no factor column(s): {', '.join(missing)}")

    values = samples[factors]
    na = values.isna().any(axis=1)
    if na.any():
        bad = [str(s) for s in values.index[na.to_numpy()]]
        raise DataError(f"Missing factor values for sample(s): {', '.join(bad)}")

    labels = values.astype(str).agg(sep.join, axis=1)
    labels.name = 'group'
    return labels


def model_matrix_groups(groups):
    """One-hot group-means design matrix.

    Parameters
    ----------
    groups : array-like or Series
        Group label per sample.

    Returns
    -------
    DataFrame (samples x groups) with exactly one 1 per row and columns in
    sorted group order.
    """
    if isinstance(groups, pd.Series):
        index = groups.index
    else:
        index = pd.RangeIndex(len(groups))
    labels = [str(g) for g in groups]
    levels = sorted(set(labels))
    data = pd.DataFrame({'group': pd.Categorical(labels, categories=levels)}, index=index)
    design = model_matrix('~ 0 + group', data)
    if design.shape[1] != len(levels):
        raise ConfigurationError("Group-means design does not have one column per group")
    design.columns = levels
    return design


def design_from_samples(samples, factors, sep='_'):
    """Group labels and group-means design for a sample descriptor table.

    Returns
    -------
    (design, groups) : (DataFrame, Series)
    """
    groups = group_labels(samples, factors, sep=sep)
    design = model_matrix_groups(groups)
    check_design_groups(design, groups)
    return design, groups


def check_design_groups(design, groups):
    """Check that every sample's group is a column of the design.

    Raises
    ------
    ConfigurationError
        Naming the first group label missing from the design.
    """
    if len(groups) != design.shape[0]:
        raise ConfigurationError("Design has a different number of rows than there are samples")
    columns = set(str(c) for c in design.columns)
    for sample, g in zip(getattr(groups, 'index', range(len(groups))), groups):
        if str(g) not in columns:
            raise ConfigurationError(
                f"Group '{g}' of sample '{sample}' is not a column of the design")


def contrast_between(numerator, denominator):
    """Weights contrasting the average of two sets of groups.

    ``contrast_between(['KO_Drug'], ['KO_Vehicle', 'WT_Vehicle'])`` gives
    ``{'KO_Drug': 1, 'KO_Vehicle': -0.5, 'WT_Vehicle': -0.5}``.
    """
    if isinstance(numerator, str):
        numerator = [numerator]
    if isinstance(denominator, str):
        denominator = [denominator]
    weights = {}
    for g in numerator:
        weights[g] = weights.get(g, 0.0) + 1.0 / len(numerator)
    for g in denominator:
        weights[g] = weights.get(g, 0.0) - 1.0 / len(denominator)
    return weights


def make_contrasts(contrasts, levels):
    """Build a contrast matrix from explicit group weights.

    Parameters
    ----------
    contrasts : dict
        Mapping of contrast name to ``{group label: weight}``. Groups not
        named get weight 0.
    levels : DataFrame or sequence of str
        The design matrix (its columns are used) or the group labels.

    Returns
    -------
    DataFrame (groups x contrasts) of weights.

    Raises
    ------
    ConfigurationError
        If a contrast names a group that is not a design column, has a
        non-finite weight, or is all zero.
    """
    if isinstance(levels, pd.DataFrame):
        levels = list(levels.columns)
    levels = [str(g) for g in levels]
    if len(set(levels)) != len(levels):
        raise ConfigurationError("Design columns must be unique")
    if isinstance(contrasts, pd.DataFrame):
        contrasts = {name: contrasts[name].to_dict() for name in contrasts.columns}
    if not contrasts:
        raise ConfigurationError("No contrasts given")

    mat = pd.DataFrame(0.0, index=levels, columns=[str(c) for c in contrasts])
    mat.index.name = 'Levels'
    mat.columns.name = 'Contrasts'
    for name, weights in contrasts.items():
        name = str(name)
        if not isinstance(weights, dict):
            raise ConfigurationError(
                f"Contrast '{name}' must map group labels to weights")
        for group, w in weights.items():
            if str(group) not in mat.index:
                raise ConfigurationError(
                    f"Contrast '{name}' refers to group '{group}', which is not in the design "
                    f"(groups: {', '.join(levels)})")
            try:
                w = float(w)
            except (TypeError, ValueError):
                raise ConfigurationError(f"Contrast '{name}' has a non-numeric weight for '{group}'")
            if not np.isfinite(w):
                raise ConfigurationError(f"Contrast '{name}' has a non-finite weight for '{group}'")
            mat.loc[str(group), name] += w
        if np.all(mat[name].to_numpy() == 0):
            raise ConfigurationError(f"Contrast '{name}' has all zero weights")
    return mat
