"""Tests for multiple testing, significance calls and top tables."""

import numpy as np
import pandas as pd
import pytest

import limmapy as lp


def moderated_fit(logfc, pvalues, genes=None, amean=None):
    """Hand-built moderated fit with one column per contrast."""
    logfc = pd.DataFrame(logfc)
    index = logfc.index
    fit = lp.MArrayLM()
    fit['coefficients'] = logfc
    fit['p.value'] = pd.DataFrame(pvalues, index=index)
    fit['t'] = np.sign(logfc) * 2.0
    fit['lods'] = -np.log(fit['p.value'])
    fit['Amean'] = np.full(len(index), 5.0) if amean is None else np.asarray(amean)
    fit['genes'] = pd.DataFrame(index=index) if genes is None else genes
    return fit


@pytest.fixture
def eb_fit(expr_groups):
    E, design = expr_groups
    fit = lp.contrasts_fit(lp.lm_fit(E, design), {'BvsA': {'B': 1, 'A': -1}})
    return lp.e_bayes(fit)


class TestPAdjust:

    def test_bh_bounds_and_order(self, rng):
        p = rng.uniform(size=200)
        adj = lp.p_adjust(p)
        assert np.all((adj >= 0) & (adj <= 1))
        assert np.all(adj >= p)
        order = np.argsort(p)
        assert np.all(np.diff(adj[order]) >= 0)

    def test_bh_known_values(self):
        adj = lp.p_adjust([0.01, 0.02, 0.03, 0.04])
        np.testing.assert_allclose(adj, [0.04, 0.04, 0.04, 0.04])

    def test_nan_left_out(self):
        adj = lp.p_adjust([0.01, np.nan, 0.04])
        assert np.isnan(adj[1])
        np.testing.assert_allclose(adj[[0, 2]], [0.02, 0.04])

    def test_bonferroni(self):
        np.testing.assert_allclose(lp.p_adjust([0.1, 0.5], 'bonferroni'), [0.2, 1.0])

    def test_none(self):
        np.testing.assert_array_equal(lp.p_adjust([0.3, 0.7], 'none'), [0.3, 0.7])

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            lp.p_adjust([0.1], 'magic')


class TestDecideTests:

    def test_sign_and_threshold(self):
        fit = moderated_fit(
            {'c1': [2.0, -1.5, 0.1, 3.0]},
            {'c1': [1e-6, 1e-5, 0.5, 0.9]},
        )
        tests = lp.decide_tests(fit)
        assert list(tests['c1']) == [1, -1, 0, 0]
        assert tests['c1'].dtype == np.int64

    def test_boundary_is_called(self):
        fit = moderated_fit({'c1': [1.0]}, {'c1': [0.05]})
        assert lp.decide_tests(fit, p_value=0.05)['c1'].iloc[0] == 1

    def test_lfc_threshold(self):
        fit = moderated_fit({'c1': [0.5, 2.0]}, {'c1': [1e-6, 1e-6]})
        assert list(lp.decide_tests(fit, lfc=1)['c1']) == [0, 1]

    def test_contrasts_adjusted_separately(self):
        fit = moderated_fit(
            {'c1': [1.0, 1.0], 'c2': [1.0, 1.0]},
            {'c1': [0.03, 0.04], 'c2': [0.03, 0.9]},
        )
        tests = lp.decide_tests(fit)
        assert list(tests['c1']) == [1, 1]
        assert list(tests['c2']) == [0, 0]

    def test_nan_never_called(self):
        fit = moderated_fit({'c1': [1.0, np.nan]}, {'c1': [1e-8, np.nan]})
        with pytest.warns(UserWarning, match="undefined"):
            tests = lp.decide_tests(fit)
        assert list(tests['c1']) == [1, 0]

    def test_requires_moderation(self, expr_groups):
        E, design = expr_groups
        with pytest.raises(ValueError, match="e_bayes"):
            lp.decide_tests(lp.lm_fit(E, design))

    def test_summary_counts(self, eb_fit):
        tests = lp.decide_tests(eb_fit)
        summary = lp.summarize_tests(tests)
        assert list(summary.index) == ['down', 'not-significant', 'up']
        assert summary['BvsA'].sum() == 50
        assert summary.loc['up', 'BvsA'] >= 5


class TestTopTable:

    def test_column_schema(self, eb_fit):
        tab = lp.top_table(eb_fit)
        assert tuple(tab.columns) == lp.TOP_TABLE_COLUMNS
        assert tab.index.name == 'gene'
        assert len(tab) == 50

    def test_sorted_by_p_value(self, eb_fit):
        tab = lp.top_table(eb_fit, coef='BvsA')
        assert np.all(np.diff(tab['P.Value'].to_numpy()) >= 0)
        assert set(tab.index[:5]) == {'g0', 'g1', 'g2', 'g3', 'g4'}
        assert set(tab['status'].iloc[:5]) == {'up'}

    def test_ties_broken_by_gene_id(self):
        fit = moderated_fit(
            {'c1': [1.0, 1.0, 1.0]},
            {'c1': [0.01, 0.01, 0.001]},
        )
        fit['coefficients'].index = ['geneB', 'geneA', 'geneC']
        fit['p.value'].index = fit['coefficients'].index
        tab = lp.top_table(fit)
        assert list(tab.index) == ['geneC', 'geneA', 'geneB']

    def test_n_rows(self, eb_fit):
        assert len(lp.top_table(eb_fit, n=7)) == 7

    def test_annotation_columns_lead(self):
        genes = pd.DataFrame({'length': [100, 200], 'SYMBOL': ['Actb', 'Gapdh']},
                             index=['g1', 'g2'])
        fit = moderated_fit({'c1': [1.0, -1.0]}, {'c1': [0.2, 0.01]}, genes=genes)
        fit['coefficients'].index = ['g1', 'g2']
        fit['p.value'].index = ['g1', 'g2']
        tab = lp.top_table(fit)
        assert list(tab.columns[:2]) == ['SYMBOL', 'length']
        assert list(tab.index) == ['g2', 'g1']
        assert tab.loc['g2', 'status'] == 'down'

    def test_sort_by_logfc(self):
        fit = moderated_fit({'c1': [0.5, -3.0, 1.0]}, {'c1': [0.01, 0.5, 0.2]})
        tab = lp.top_table(fit, sort_by='logFC')
        assert list(tab['logFC']) == [-3.0, 1.0, 0.5]

    def test_unknown_contrast(self, eb_fit):
        with pytest.raises(KeyError, match="nope"):
            lp.top_table(eb_fit, coef='nope')

    def test_bad_sort(self, eb_fit):
        with pytest.raises(ValueError):
            lp.top_table(eb_fit, sort_by='gene')
