"""
File input and output for limmapy.

Delimited count and sample tables, JSON contrast definitions, and export
of per-contrast result tables.
"""

import json
import os
import re

import numpy as np
import pandas as pd

from .errors import ConfigurationError, DataError
from .results import top_table


def _sep_for(path, sep):
    if sep is not None:
        return sep
    return ',' if str(path).lower().endswith('.csv') else '\t'


def read_counts(path, sep=None):
    """Read a gene x sample count table.

    The first column holds gene identifiers. Leading non-numeric columns
    are kept as gene annotation; the remaining columns are samples.

    Returns
    -------
    (counts, genes) : (DataFrame, DataFrame or None)
        Integer-valued counts indexed by gene, and annotation columns (None
        if there are none).
    """
    tab = pd.read_csv(path, sep=_sep_for(path, sep), index_col=0)
    tab.index = tab.index.astype(str)
    if tab.index.has_duplicates:
        dup = tab.index[tab.index.duplicated()][0]
        raise DataError(f"Repeated gene identifier '{dup}' in {path}")

    n_ann = 0
    for col in tab.columns:
        if pd.api.types.is_numeric_dtype(tab[col]):
            break
        n_ann += 1
    genes = tab.iloc[:, :n_ann].copy() if n_ann else None
    counts = tab.iloc[:, n_ann:]
    counts.columns = [str(c) for c in counts.columns]
    if counts.shape[1] == 0:
        raise DataError(f"No numeric sample columns found in {path}")
    return counts, genes


def read_samples(path, index_col=0, sep=None):
    """Read a sample descriptor table, one row per sample."""
    tab = pd.read_csv(path, sep=_sep_for(path, sep), index_col=index_col, dtype=str)
    tab.index = tab.index.astype(str)
    if tab.index.has_duplicates:
        dup = tab.index[tab.index.duplicated()][0]
        raise DataError(f"Repeated sample name '{dup}' in {path}")
    return tab


def read_contrasts(path):
    """Read contrast definitions from a JSON object.

    The file maps contrast names to ``{group label: weight}`` objects, e.g.
    ``{"KO_vs_WT": {"KO_Vehicle": 1, "WT_Vehicle": -1}}``.
    """
    try:
        with open(path) as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in contrast file {path}: {exc}") from exc
    if not isinstance(data, dict) or not data:
        raise ConfigurationError(f"Contrast file {path} must contain a non-empty JSON object")
    for name, weights in data.items():
        if not isinstance(weights, dict):
            raise ConfigurationError(f"Contrast '{name}' must map group labels to weights")
    return data


def _safe_filename(name):
    return re.sub(r'[^A-Za-z0-9._-]+', '_', str(name)).strip('_') or 'contrast'


def write_top_tables(fit, directory, sep='\t', p_value=0.05, lfc=0, adjust_method='BH'):
    """Write one ranked result table per contrast.

    Returns
    -------
    dict mapping contrast name to the written file path.
    """
    ext = '.csv' if sep == ',' else '.tsv'
    paths = {}
    owners = {}
    for name in fit.coef_names:
        path = os.path.join(directory, f"top_table_{_safe_filename(name)}{ext}")
        if path in owners:
            raise ConfigurationError(
                f"Contrasts '{owners[path]}' and '{name}' would both be written to {path}")
        owners[path] = name
        paths[name] = path

    os.makedirs(directory, exist_ok=True)
    for name, path in paths.items():
        tab = top_table(fit, coef=name, p_value=p_value, lfc=lfc,
                        adjust_method=adjust_method)
        tab.to_csv(path, sep=sep, na_rep='NA')
    return paths


def write_gene_list(genes, path):
    """Write gene identifiers one per line."""
    with open(path, 'w') as fh:
        for g in np.asarray(genes, dtype=str):
            fh.write(f"{g}\n")
    return path


def read_annotation(path, sep=None):
    """Read a symbol annotation table with SYMBOL, ENTREZID and GENENAME columns."""
    tab = pd.read_csv(path, sep=_sep_for(path, sep), dtype=str)
    if 'SYMBOL' not in tab.columns:
        raise DataError(f"Annotation table {path} has no SYMBOL column")
    return tab.where(tab.notna(), None)
