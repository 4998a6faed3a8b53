"""
limmapy: linear models and empirical Bayes moderation for RNA-seq counts.

CPM filtering, annotation, TMM normalization, voom precision weights,
genewise linear models with contrasts, moderated t-statistics and
gene-set selection across contrasts.
"""

__version__ = "0.1.0"

# --- Errors ---
from .errors import LimmaPyError, ConfigurationError, DataError

# --- Classes ---
from .classes import DGEList, EList, MArrayLM

# --- DGEList construction & accessors ---
from .dgelist import make_dgelist, get_norm_lib_sizes

# --- Expression ---
from .expression import cpm, ave_log_cpm

# --- Filtering ---
from .filtering import filter_by_cpm, filter_by_expr

# --- Annotation ---
from .annotation import (
    ANNOTATION_COLUMNS,
    EXCLUDED_GENE_CLASSES,
    lookup_annotation,
    annotate_genes,
    gene_class_mask,
    exclude_gene_classes,
    fetch_annotation_biomart,
)

# --- Normalization ---
from .normalization import calc_norm_factors

# --- Design and contrasts ---
from .design import (
    group_labels,
    model_matrix_groups,
    design_from_samples,
    check_design_groups,
    contrast_between,
    make_contrasts,
)

# --- Linear models ---
from .voom import voom
from .linear_model import lm_fit, contrasts_fit
from .ebayes import e_bayes, squeeze_var, fit_f_dist, logmdigamma, trigamma_inverse

# --- Results ---
from .results import (
    TOP_TABLE_COLUMNS,
    STATUS_LABELS,
    p_adjust,
    decide_tests,
    summarize_tests,
    top_table,
)
from .selection import select_genes

# --- I/O ---
from .io import (
    read_counts,
    read_samples,
    read_contrasts,
    read_annotation,
    write_top_tables,
    write_gene_list,
)

# --- Visualization ---
from .visualization import plot_md, volcano_plot, plot_mds, plot_voom, plot_sa

# --- Pipeline ---
from .config import PipelineConfig, load_config
from .pipeline import PipelineResult, run_pipeline

# --- Utilities ---
from .utils import model_matrix
