"""
End-to-end differential expression run.

Filter and normalize counts, build the group-means design and contrasts,
fit and moderate the linear models, classify genes per contrast and select
the gene set reported downstream. Stages run strictly in sequence; any
ConfigurationError or DataError aborts the run.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from .annotation import annotate_genes, exclude_gene_classes
from .classes import EList
from .config import PipelineConfig
from .design import check_design_groups, design_from_samples, make_contrasts
from .dgelist import get_norm_lib_sizes, make_dgelist
from .ebayes import e_bayes
from .errors import ConfigurationError, DataError
from .filtering import filter_by_cpm
from .linear_model import contrasts_fit, lm_fit
from .normalization import calc_norm_factors
from .results import decide_tests, summarize_tests, top_table
from .selection import select_genes
from .voom import voom

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Every intermediate and final product of run_pipeline()."""

    dgelist: Any
    design: pd.DataFrame
    contrasts: pd.DataFrame
    elist: Any
    fit: Any
    tests: pd.DataFrame
    tables: Dict[str, pd.DataFrame] = field(default_factory=dict)
    selected: Optional[pd.Index] = None
    config: Optional[PipelineConfig] = None

    def summary(self) -> pd.DataFrame:
        """Down / not-significant / up counts per contrast."""
        return summarize_tests(self.tests)


def log_expression(y):
    """Unweighted log2-CPM EList on the voom scale."""
    lib_size = get_norm_lib_sizes(y)
    E = np.log2((y['counts'] + 0.5) / (lib_size[np.newaxis, :] + 1) * 1e6)
    out = EList()
    out['E'] = pd.DataFrame(E, index=y['genes'].index, columns=y['samples'].index)
    out['weights'] = None
    out['genes'] = y['genes']
    out['targets'] = y['samples']
    return out


def _annotated(y):
    genes = y.get('genes')
    return genes is not None and 'GENENAME' in genes.columns


def run_pipeline(counts, samples, contrasts, config=None, annotation=None, genes=None):
    """Run the full differential expression pipeline.

    Parameters
    ----------
    counts : DataFrame
        Gene x sample counts; columns are sample names.
    samples : DataFrame
        Sample descriptors indexed by sample name, holding the factor
        columns named in ``config.factors``.
    contrasts : dict or DataFrame
        Mapping of contrast name to ``{group label: weight}``.
    config : PipelineConfig, optional
    annotation : DataFrame, mapping or callable, optional
        Symbol annotation source passed to annotate_genes(). Gene classes
        are excluded only when annotation (a GENENAME column) is available.
    genes : DataFrame, optional
        Gene annotation already aligned with the count rows.

    Returns
    -------
    PipelineResult
    """
    if config is None:
        config = PipelineConfig()
    config.validate()

    # Design and contrasts are checked before any counts are processed
    y = make_dgelist(counts, samples=samples, genes=genes)
    design, groups = design_from_samples(y['samples'], config.factors, sep=config.group_sep)
    contrast_matrix = make_contrasts(contrasts, design)
    if config.select_contrasts is not None:
        unknown = [c for c in config.select_contrasts if c not in contrast_matrix.columns]
        if unknown:
            raise ConfigurationError(
                f"select_contrasts names unknown contrast(s): {', '.join(unknown)}")
    logger.info("Design: %d samples in %d groups (%s); %d contrasts",
                design.shape[0], design.shape[1], ', '.join(design.columns),
                contrast_matrix.shape[1])
    y['samples']['group'] = pd.Categorical(groups.to_numpy())

    ngenes = y.nrow
    keep = filter_by_cpm(y, min_cpm=config.min_cpm, min_samples=config.min_samples)
    y = y[keep, :]
    logger.info("CPM filter (cpm > %g in >= %d samples): kept %d of %d genes",
                config.min_cpm, config.min_samples, y.nrow, ngenes)
    if y.nrow == 0:
        raise DataError("No genes pass the expression filter")

    if annotation is not None:
        y = annotate_genes(y, annotation)
    if config.exclude_classes and _annotated(y):
        before = y.nrow
        y = exclude_gene_classes(y, patterns=config.exclude_classes)
        logger.info("Excluded %d genes in classes: %s", before - y.nrow,
                    ', '.join(config.exclude_classes))
    elif config.exclude_classes:
        logger.debug("No GENENAME annotation; gene class exclusion skipped")

    y = calc_norm_factors(y, method=config.norm_method)
    logger.info("%s normalization factors: %s", config.norm_method,
                ', '.join(f"{f:.3f}" for f in y['samples']['norm.factors']))

    design = design.loc[y['samples'].index]
    check_design_groups(design, y['samples']['group'].astype(str))
    if config.use_voom:
        elist = voom(y, design=design)
        logger.info("voom precision weights computed for %d genes", elist.nrow)
    else:
        elist = log_expression(y)

    fit = lm_fit(elist, design=design, n_jobs=config.n_jobs)
    fit = contrasts_fit(fit, contrast_matrix)
    fit = e_bayes(fit, trend=config.trend)
    logger.info("Empirical Bayes prior: df.prior=%.3g, median s2.prior=%.3g",
                fit['df.prior'], float(np.median(np.atleast_1d(fit['s2.prior']))))

    tests = decide_tests(fit, p_value=config.p_value, lfc=0,
                         adjust_method=config.adjust_method)
    for name, row in summarize_tests(tests).T.iterrows():
        logger.info("%s: %d down, %d not significant, %d up", name,
                    row['down'], row['not-significant'], row['up'])

    tables = {
        name: top_table(fit, coef=name, p_value=config.p_value,
                        adjust_method=config.adjust_method)
        for name in fit.coef_names
    }
    selected = select_genes(fit, contrasts=config.select_contrasts, lfc=config.lfc,
                            p_value=config.p_value, adjust_method=config.adjust_method,
                            tests=tests)
    logger.info("Selected %d genes (|logFC| >= %g)", len(selected), config.lfc)

    return PipelineResult(dgelist=y, design=design, contrasts=contrast_matrix,
                          elist=elist, fit=fit, tests=tests, tables=tables,
                          selected=selected, config=config)
