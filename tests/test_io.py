"""Tests for I/O functions: count, sample, contrast and annotation tables, result export."""

import json

import numpy as np
import pandas as pd
import pytest

import limmapy as lp


@pytest.fixture
def eb_fit(expr_groups):
    E, design = expr_groups
    fit = lp.lm_fit(E, design)
    contrasts = {'B vs A': {'B': 1, 'A': -1}, 'A-only': {'A': 1}}
    return lp.e_bayes(lp.contrasts_fit(fit, contrasts))


class TestReadCounts:

    def test_annotation_columns_split(self, tmp_path):
        path = tmp_path / 'counts.tsv'
        path.write_text("gene\tsymbol\tS1\tS2\n"
                        "ENSG1\tActb\t10\t20\n"
                        "ENSG2\tGapdh\t0\t5\n")
        counts, genes = lp.read_counts(path)
        assert list(counts.columns) == ['S1', 'S2']
        assert list(counts.index) == ['ENSG1', 'ENSG2']
        np.testing.assert_array_equal(counts.to_numpy(), [[10, 20], [0, 5]])
        assert list(genes['symbol']) == ['Actb', 'Gapdh']

    def test_csv_without_annotation(self, tmp_path):
        path = tmp_path / 'counts.csv'
        path.write_text("gene,S1,S2\nA,1,2\nB,3,4\n")
        counts, genes = lp.read_counts(path)
        assert genes is None
        assert counts.shape == (2, 2)

    def test_duplicate_gene(self, tmp_path):
        path = tmp_path / 'counts.tsv'
        path.write_text("gene\tS1\nA\t1\nA\t2\n")
        with pytest.raises(lp.DataError, match="'A'"):
            lp.read_counts(path)

    def test_no_numeric_columns(self, tmp_path):
        path = tmp_path / 'counts.tsv'
        path.write_text("gene\tsymbol\nA\tx\n")
        with pytest.raises(lp.DataError):
            lp.read_counts(path)


class TestReadSamplesAndContrasts:

    def test_read_samples_as_strings(self, tmp_path):
        path = tmp_path / 'samples.tsv'
        path.write_text("sample\tgenotype\tdose\nS1\tWT\t1\nS2\tKO\t2\n")
        samples = lp.read_samples(path)
        assert list(samples.index) == ['S1', 'S2']
        assert samples.loc['S2', 'dose'] == '2'

    def test_duplicate_sample(self, tmp_path):
        path = tmp_path / 'samples.tsv'
        path.write_text("sample\tgenotype\nS1\tWT\nS1\tKO\n")
        with pytest.raises(lp.DataError, match="S1"):
            lp.read_samples(path)

    def test_read_contrasts(self, tmp_path, contrasts8):
        path = tmp_path / 'contrasts.json'
        path.write_text(json.dumps(contrasts8))
        assert lp.read_contrasts(path) == contrasts8

    @pytest.mark.parametrize('text', ['{', '[]', '{}', '{"c": [1, -1]}'])
    def test_bad_contrasts(self, tmp_path, text):
        path = tmp_path / 'contrasts.json'
        path.write_text(text)
        with pytest.raises(lp.ConfigurationError):
            lp.read_contrasts(path)

    def test_read_annotation(self, tmp_path):
        path = tmp_path / 'annotation.csv'
        path.write_text("SYMBOL,ENTREZID,GENENAME\nActb,11461,actin beta\nXist,,\n")
        ann = lp.read_annotation(path)
        assert ann.loc[0, 'ENTREZID'] == '11461'
        assert ann.loc[1, 'GENENAME'] is None

    def test_annotation_requires_symbol(self, tmp_path):
        path = tmp_path / 'annotation.csv'
        path.write_text("ENTREZID,GENENAME\n1,x\n")
        with pytest.raises(lp.DataError, match="SYMBOL"):
            lp.read_annotation(path)


class TestWriteResults:

    def test_write_top_tables(self, tmp_path, eb_fit):
        paths = lp.write_top_tables(eb_fit, tmp_path / 'out')
        assert set(paths) == {'B vs A', 'A-only'}
        assert paths['B vs A'].endswith('top_table_B_vs_A.tsv')
        tab = pd.read_csv(paths['B vs A'], sep='\t', index_col=0)
        assert tab.index.name == 'gene'
        assert tuple(tab.columns) == lp.TOP_TABLE_COLUMNS
        assert len(tab) == 50

    def test_colliding_contrast_names_raise(self, tmp_path, expr_groups):
        E, design = expr_groups
        fit = lp.lm_fit(E, design)
        contrasts = {'B/A': {'B': 1, 'A': -1}, 'B_A': {'B': 1, 'A': -1}}
        eb = lp.e_bayes(lp.contrasts_fit(fit, contrasts))
        out = tmp_path / 'out'
        with pytest.raises(lp.ConfigurationError, match="'B/A' and 'B_A'"):
            lp.write_top_tables(eb, out)
        assert not out.exists()

    def test_write_gene_list(self, tmp_path):
        path = lp.write_gene_list(pd.Index(['g2', 'g10'], name='gene'), tmp_path / 'genes.txt')
        with open(path) as fh:
            assert fh.read() == "g2\ng10\n"

    def test_write_empty_gene_list(self, tmp_path):
        path = lp.write_gene_list(pd.Index([], dtype=object), tmp_path / 'genes.txt')
        with open(path) as fh:
            assert fh.read() == ""
