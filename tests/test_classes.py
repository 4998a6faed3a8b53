"""Tests for EList and MArrayLM containers."""

import numpy as np
import pandas as pd

import limmapy as lp


class TestEList:

    def test_subset_rows_and_columns(self, counts8, samples8):
        y = lp.make_dgelist(counts8, samples=samples8)
        v = lp.voom(y)
        sub = v[:5, ['S1', 'S3']]
        assert sub['E'].shape == (5, 2)
        assert sub['weights'].shape == (5, 2)
        assert list(sub['targets'].index) == ['S1', 'S3']
        assert sub.nrow == 5
        assert sub.ncol == 2

    def test_attribute_access(self):
        el = lp.EList()
        el.E = np.zeros((3, 2))
        assert el['E'].shape == (3, 2)
        assert el.shape == (3, 2)


class TestMArrayLM:

    def test_subset_genes_and_contrasts(self, expr_groups):
        E, design = expr_groups
        fit = lp.lm_fit(E, design)
        fit = lp.contrasts_fit(fit, {'BvsA': {'B': 1, 'A': -1}, 'B': {'B': 1}})
        fit = lp.e_bayes(fit)

        sub = fit[:10, 'BvsA']
        assert sub.coef_names == ['BvsA']
        assert sub['t'].shape == (10, 1)
        assert len(sub['sigma']) == 10
        assert list(sub['contrasts'].columns) == ['BvsA']
        assert sub['cov.coefficients'].shape == (1, 1)

    def test_gene_ids(self, expr_groups):
        E, design = expr_groups
        fit = lp.lm_fit(E, design)
        assert fit.nrow == 50
        assert fit.coef_names == ['A', 'B']
        assert list(fit['coefficients'].index)[:2] == ['g0', 'g1']

    def test_repr_mentions_components(self, expr_groups):
        E, design = expr_groups
        fit = lp.lm_fit(E, design)
        text = repr(fit)
        assert text.startswith('MArrayLM with 50 rows and 2 columns')
        assert 'coefficients' in text

    def test_to_dataframe(self, expr_groups):
        E, design = expr_groups
        fit = lp.lm_fit(E, design)
        df = fit.to_dataframe()
        assert isinstance(df, pd.DataFrame)
        assert df.shape == (50, 2)
