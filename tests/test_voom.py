"""Tests for voom precision weights."""

import numpy as np
import pandas as pd
import pytest

import limmapy as lp


@pytest.fixture
def design8(samples8):
    design, _ = lp.design_from_samples(samples8, ['genotype', 'treatment'])
    return design


class TestVoom:

    def test_log_cpm_values(self, counts8, design8):
        v = lp.voom(counts8, design8)
        lib = counts8.sum(axis=0).to_numpy()
        expected = np.log2((counts8.to_numpy() + 0.5) / (lib + 1) * 1e6)
        np.testing.assert_allclose(v['E'].to_numpy(), expected)
        assert list(v['E'].index) == list(counts8.index)
        np.testing.assert_allclose(v['targets']['lib.size'], lib)

    def test_weights_positive_finite(self, counts8, design8):
        v = lp.voom(counts8, design8)
        assert v['weights'].shape == counts8.shape
        assert np.all(np.isfinite(v['weights']))
        assert np.all(v['weights'] > 0)

    def test_low_counts_get_lower_weight(self, counts8, design8):
        v = lp.voom(counts8, design8)
        mean_w = v['weights'].mean(axis=1)
        low = counts8.mean(axis=1).to_numpy() < 50
        high = counts8.mean(axis=1).to_numpy() > 1000
        assert mean_w[low].mean() < mean_w[high].mean()

    def test_effective_library_sizes_from_dgelist(self, counts8, design8):
        y = lp.calc_norm_factors(lp.make_dgelist(counts8))
        v = lp.voom(y, design8)
        np.testing.assert_allclose(v['targets']['lib.size'], lp.get_norm_lib_sizes(y))

    def test_trend_stored(self, counts8, design8):
        v = lp.voom(counts8, design8)
        sx, sy = v['voom.xy']
        assert len(sx) == len(sy) == 200
        trend_x, _ = v['voom.line']
        assert np.all(np.diff(trend_x) > 0)

    def test_no_replication_gives_unit_weights(self, counts8):
        design = pd.DataFrame(np.eye(8), index=counts8.columns,
                              columns=[f"c{i}" for i in range(8)])
        with pytest.warns(UserWarning, match="no replication"):
            v = lp.voom(counts8, design)
        np.testing.assert_array_equal(v['weights'], np.ones(counts8.shape))

    def test_weighted_fit_runs(self, counts8, design8):
        v = lp.voom(counts8, design8)
        fit = lp.lm_fit(v)
        assert fit['weighted']
        assert fit.coef_names == list(design8.columns)

    def test_negative_counts(self, design8):
        counts = -np.ones((5, 8))
        with pytest.raises(lp.DataError):
            lp.voom(counts, design8.to_numpy())

    def test_lib_size_length(self, counts8, design8):
        with pytest.raises(lp.DataError):
            lp.voom(counts8, design8, lib_size=[1e6] * 3)
