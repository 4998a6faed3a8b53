"""Shared fixtures for limmapy tests."""

import numpy as np
import pandas as pd
import pytest


@pytest.fixture
def rng():
    """Seeded random number generator for reproducibility."""
    return np.random.RandomState(42)


@pytest.fixture
def samples8():
    """Genotype x treatment descriptors, 2 replicates per group."""
    names = [f"S{i + 1}" for i in range(8)]
    return pd.DataFrame({
        'genotype': ['WT', 'WT', 'WT', 'WT', 'KO', 'KO', 'KO', 'KO'],
        'treatment': ['Vehicle', 'Vehicle', 'Drug', 'Drug'] * 2,
    }, index=names)


@pytest.fixture
def counts8(rng, samples8):
    """200 genes x 8 samples; Gene1-Gene10 are 4-fold up in KO_Drug."""
    ngenes = 200
    base = np.exp(rng.uniform(np.log(20), np.log(2000), size=ngenes))
    mu = np.repeat(base[:, None], 8, axis=1)
    ko_drug = ((samples8['genotype'] == 'KO') & (samples8['treatment'] == 'Drug')).to_numpy()
    mu[:10, ko_drug] *= 4
    noise = rng.gamma(shape=20, scale=1 / 20, size=mu.shape)
    counts = rng.poisson(mu * noise).astype(np.float64)
    return pd.DataFrame(counts, index=[f"Gene{i + 1}" for i in range(ngenes)],
                        columns=samples8.index)


@pytest.fixture
def contrasts8():
    return {
        'KO_vs_WT_Drug': {'KO_Drug': 1, 'WT_Drug': -1},
        'Drug_vs_Vehicle_KO': {'KO_Drug': 1, 'KO_Vehicle': -1},
        'Interaction': {'KO_Drug': 1, 'KO_Vehicle': -1, 'WT_Drug': -1, 'WT_Vehicle': 1},
    }


@pytest.fixture
def four_gene_counts():
    """Gene1 differs about 4-fold between groups A and B; the rest do not."""
    return pd.DataFrame(
        [[100, 104, 400, 410],
         [900, 1100, 1100, 900],
         [1000, 1200, 1000, 1200],
         [1100, 900, 950, 1050]],
        index=['gene1', 'gene2', 'gene3', 'gene4'],
        columns=['a1', 'a2', 'b1', 'b2'], dtype=np.float64)


@pytest.fixture
def four_gene_samples():
    return pd.DataFrame({'group': ['A', 'A', 'B', 'B']}, index=['a1', 'a2', 'b1', 'b2'])


@pytest.fixture
def expr_groups(rng):
    """Log-expression for 50 genes x 6 samples in groups A, A, A, B, B, B."""
    E = rng.normal(8, 0.5, size=(50, 6))
    E[:5, 3:] += 3
    design = pd.DataFrame({'A': [1, 1, 1, 0, 0, 0], 'B': [0, 0, 0, 1, 1, 1]},
                          index=[f"s{i}" for i in range(6)], dtype=np.float64)
    E = pd.DataFrame(E, index=[f"g{i}" for i in range(50)], columns=design.index)
    return E, design
