"""Tests for genewise linear model fits and contrasts."""

import numpy as np
import pandas as pd
import pytest

import limmapy as lp


class TestLmFit:

    def test_matches_least_squares(self, expr_groups):
        E, design = expr_groups
        fit = lp.lm_fit(E, design)
        X = design.to_numpy()
        beta, _, _, _ = np.linalg.lstsq(X, E.to_numpy().T, rcond=None)
        np.testing.assert_allclose(fit['coefficients'].to_numpy(), beta.T)

        resid = E.to_numpy() - beta.T @ X.T
        sigma = np.sqrt((resid ** 2).sum(axis=1) / 4)
        np.testing.assert_allclose(fit['sigma'], sigma)
        np.testing.assert_array_equal(fit['df.residual'], np.full(50, 4.0))
        np.testing.assert_allclose(fit['stdev.unscaled'].to_numpy(),
                                   np.full((50, 2), np.sqrt(1 / 3)))
        np.testing.assert_allclose(fit['Amean'], E.to_numpy().mean(axis=1))

    def test_group_means(self, expr_groups):
        E, design = expr_groups
        fit = lp.lm_fit(E, design)
        np.testing.assert_allclose(fit['coefficients']['A'], E.iloc[:, :3].mean(axis=1))
        np.testing.assert_allclose(fit['coefficients']['B'], E.iloc[:, 3:].mean(axis=1))

    def test_zero_variance_gene(self, expr_groups):
        E, design = expr_groups
        E = E.copy()
        E.iloc[0] = 5.0
        fit = lp.lm_fit(E, design)
        assert fit['sigma'][0] == pytest.approx(0.0, abs=1e-10)
        np.testing.assert_allclose(fit['coefficients'].iloc[0], [5.0, 5.0])

    def test_fewer_samples_than_coefficients(self):
        E = np.ones((3, 2))
        design = np.eye(2)[[0, 1]]
        design = np.hstack([design, np.ones((2, 1))])
        with pytest.raises(lp.DataError, match="identifiable"):
            lp.lm_fit(E, design)

    def test_rank_deficient_design(self, expr_groups):
        E, design = expr_groups
        design = design.copy()
        design['C'] = design['A'] + design['B']
        with pytest.raises(lp.DataError, match="not estimable"):
            lp.lm_fit(E, design)

    def test_non_finite_expression_names_gene(self, expr_groups):
        E, design = expr_groups
        E = E.copy()
        E.iloc[7, 2] = np.inf
        with pytest.raises(lp.DataError, match="g7"):
            lp.lm_fit(E, design)

    def test_design_rows_must_match(self, expr_groups):
        E, design = expr_groups
        with pytest.raises(lp.ConfigurationError):
            lp.lm_fit(E, design.iloc[:5])

    def test_no_residual_df_warns(self):
        E = np.arange(8, dtype=float).reshape(4, 2)
        with pytest.warns(UserWarning, match="residual degrees of freedom"):
            fit = lp.lm_fit(E, np.eye(2))
        assert np.all(np.isnan(fit['sigma']))

    def test_intercept_default(self, expr_groups):
        E, _ = expr_groups
        fit = lp.lm_fit(E)
        assert fit.coef_names == ['Intercept']


class TestWeightedFit:

    def test_unit_weights_match_unweighted(self, expr_groups):
        E, design = expr_groups
        fit0 = lp.lm_fit(E, design)
        fit1 = lp.lm_fit(E, design, weights=np.ones(E.shape))
        np.testing.assert_allclose(fit1['coefficients'], fit0['coefficients'])
        np.testing.assert_allclose(fit1['sigma'], fit0['sigma'])
        np.testing.assert_allclose(fit1['stdev.unscaled'], fit0['stdev.unscaled'])

    def test_weighted_least_squares(self, expr_groups, rng):
        E, design = expr_groups
        W = rng.uniform(0.5, 2, size=E.shape)
        fit = lp.lm_fit(E, design, weights=W)
        X = design.to_numpy()
        g = 3
        Xw = X * np.sqrt(W[g])[:, None]
        yw = E.to_numpy()[g] * np.sqrt(W[g])
        beta = np.linalg.solve(Xw.T @ Xw, Xw.T @ yw)
        np.testing.assert_allclose(fit['coefficients'].iloc[g], beta)
        cov = np.linalg.inv(Xw.T @ Xw)
        np.testing.assert_allclose(fit['stdev.unscaled'].iloc[g], np.sqrt(np.diag(cov)))

    def test_parallel_fit_is_bit_identical(self, expr_groups, rng):
        E, design = expr_groups
        W = rng.uniform(0.5, 2, size=E.shape)
        serial = lp.lm_fit(E, design, weights=W, n_jobs=1)
        parallel = lp.lm_fit(E, design, weights=W, n_jobs=3)
        np.testing.assert_array_equal(serial['coefficients'].to_numpy(),
                                      parallel['coefficients'].to_numpy())
        np.testing.assert_array_equal(serial['sigma'], parallel['sigma'])
        assert list(serial['coefficients'].index) == list(parallel['coefficients'].index)

    def test_non_positive_weights_rejected(self, expr_groups):
        E, design = expr_groups
        W = np.ones(E.shape)
        W[4, 1] = 0
        with pytest.raises(lp.DataError, match="g4"):
            lp.lm_fit(E, design, weights=W)


class TestContrastsFit:

    def test_effect_and_standard_error(self, expr_groups):
        E, design = expr_groups
        fit = lp.lm_fit(E, design)
        cfit = lp.contrasts_fit(fit, {'BvsA': {'B': 1, 'A': -1}})
        expected = fit['coefficients']['B'] - fit['coefficients']['A']
        np.testing.assert_allclose(cfit['coefficients']['BvsA'], expected)
        np.testing.assert_allclose(cfit['stdev.unscaled']['BvsA'], np.sqrt(2 / 3))
        np.testing.assert_allclose(cfit['sigma'], fit['sigma'])

    def test_weighted_standard_error(self, expr_groups, rng):
        E, design = expr_groups
        W = rng.uniform(0.5, 2, size=E.shape)
        fit = lp.lm_fit(E, design, weights=W)
        cfit = lp.contrasts_fit(fit, {'BvsA': {'B': 1, 'A': -1}})
        u = fit['stdev.unscaled'].to_numpy()
        np.testing.assert_allclose(cfit['stdev.unscaled']['BvsA'],
                                   np.sqrt(u[:, 0] ** 2 + u[:, 1] ** 2))

    def test_input_not_mutated(self, expr_groups):
        E, design = expr_groups
        fit = lp.lm_fit(E, design)
        before = fit['coefficients'].copy()
        lp.contrasts_fit(fit, {'BvsA': {'B': 1, 'A': -1}})
        pd.testing.assert_frame_equal(fit['coefficients'], before)
        assert fit['contrasts'] is None

    def test_unknown_group(self, expr_groups):
        E, design = expr_groups
        fit = lp.lm_fit(E, design)
        with pytest.raises(lp.ConfigurationError, match="C"):
            lp.contrasts_fit(fit, {'CvsA': {'C': 1, 'A': -1}})

    def test_matrix_contrasts(self, expr_groups):
        E, design = expr_groups
        fit = lp.lm_fit(E, design)
        C = pd.DataFrame({'diff': [-1.0, 1.0]}, index=['A', 'B'])
        cfit = lp.contrasts_fit(fit, C)
        assert cfit.coef_names == ['diff']
