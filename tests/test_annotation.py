"""Tests for symbol annotation and gene-class exclusion."""

import sys

import numpy as np
import pandas as pd
import pytest

import limmapy as lp


@pytest.fixture
def annotation_table():
    return pd.DataFrame({
        'SYMBOL': ['Actb', 'mt-Co1', 'Rpl13', 'Gm12345', 'Gapdh'],
        'ENTREZID': ['11461', '17708', '270106', '100000', '14433'],
        'GENENAME': ['actin, beta',
                     'cytochrome c oxidase I, Mitochondrial',
                     'ribosomal protein L13',
                     'predicted gene, PSEUDOGENE',
                     'glyceraldehyde-3-phosphate dehydrogenase'],
    })


@pytest.fixture
def symbol_dgelist():
    counts = pd.DataFrame(np.full((6, 2), 100.0),
                          index=['Gapdh', 'Unknown1', 'mt-Co1', 'Actb', 'Rpl13', 'Gm12345'],
                          columns=['x', 'y'])
    return lp.make_dgelist(counts)


class TestLookupAnnotation:

    def test_order_and_misses(self, annotation_table):
        out = lp.lookup_annotation(['Gapdh', 'Nope', 'Actb'], annotation_table)
        assert list(out['SYMBOL']) == ['Gapdh', 'Nope', 'Actb']
        assert out.loc['Gapdh', 'ENTREZID'] == '14433'
        assert out.loc['Nope', 'ENTREZID'] is None
        assert out.loc['Nope', 'GENENAME'] is None

    def test_mapping_source(self):
        source = {'Actb': {'ENTREZID': '11461', 'GENENAME': 'actin, beta'}}
        out = lp.lookup_annotation(['Actb', 'Zzz'], source)
        assert out.loc['Actb', 'GENENAME'] == 'actin, beta'
        assert out.loc['Zzz', 'GENENAME'] is None

    def test_callable_source(self):
        def lookup(symbol):
            if symbol == 'Actb':
                return {'ENTREZID': '11461', 'GENENAME': 'actin, beta'}
            return None

        out = lp.lookup_annotation(['Zzz', 'Actb'], lookup)
        assert list(out['ENTREZID']) == [None, '11461']

    def test_duplicate_symbols_keep_first(self):
        source = pd.DataFrame({'SYMBOL': ['A', 'A'], 'ENTREZID': ['1', '2'],
                               'GENENAME': ['first', 'second']})
        out = lp.lookup_annotation(['A'], source)
        assert out.loc['A', 'ENTREZID'] == '1'


class TestAnnotateGenes:

    def test_rows_track_counts(self, symbol_dgelist, annotation_table):
        with pytest.warns(UserWarning, match="1 of 6"):
            y = lp.annotate_genes(symbol_dgelist, annotation_table)
        assert list(y['genes'].index) == list(symbol_dgelist['genes'].index)
        assert list(y['genes']['SYMBOL']) == list(symbol_dgelist['genes'].index)
        assert y['genes'].loc['Unknown1', 'GENENAME'] is None
        assert y.shape == (6, 2)

    def test_input_not_modified(self, symbol_dgelist, annotation_table):
        with pytest.warns(UserWarning):
            lp.annotate_genes(symbol_dgelist, annotation_table)
        assert 'GENENAME' not in symbol_dgelist['genes'].columns


class TestExcludeGeneClasses:

    def test_mask_case_insensitive(self):
        names = ['Mitochondrial ribosomal protein', 'actin', None, 'processed PSEUDOGENE']
        assert list(lp.gene_class_mask(names)) == [True, False, False, True]

    def test_null_names_never_excluded(self):
        assert not lp.gene_class_mask([None, np.nan]).any()

    def test_exclusion(self, symbol_dgelist, annotation_table):
        with pytest.warns(UserWarning):
            y = lp.annotate_genes(symbol_dgelist, annotation_table)
        out = lp.exclude_gene_classes(y)
        assert list(out['genes'].index) == ['Gapdh', 'Unknown1', 'Actb']

    def test_custom_patterns(self, symbol_dgelist, annotation_table):
        with pytest.warns(UserWarning):
            y = lp.annotate_genes(symbol_dgelist, annotation_table)
        out = lp.exclude_gene_classes(y, patterns=['actin'])
        assert 'Actb' not in out['genes'].index
        assert out.nrow == 5

    def test_requires_annotation(self, symbol_dgelist):
        with pytest.raises(ValueError, match="GENENAME"):
            lp.exclude_gene_classes(symbol_dgelist)


class TestFetchAnnotationBiomart:

    def test_missing_pybiomart(self, monkeypatch):
        monkeypatch.setitem(sys.modules, 'pybiomart', None)
        with pytest.raises(ImportError, match="pybiomart"):
            lp.fetch_annotation_biomart('Mm')
