"""
Gene annotation and gene-class exclusion for limmapy.

Annotation is keyed by gene symbol and attached to DGEList['genes'] with
the columns SYMBOL, ENTREZID and GENENAME. Symbols without a match keep
null annotation fields; rows are never dropped or reordered.
"""

import numpy as np
import pandas as pd
import warnings

ANNOTATION_COLUMNS = ('SYMBOL', 'ENTREZID', 'GENENAME')

# Gene classes removed before modelling, matched case-insensitively as
# substrings of GENENAME.
EXCLUDED_GENE_CLASSES = ('mitochondrial', 'ribosomal', 'pseudogene')

_BIOMART_DATASETS = {
    'Hs': 'hsapiens_gene_ensembl',
    'Mm': 'mmusculus_gene_ensembl',
    'Rn': 'rnorvegicus_gene_ensembl',
    'Dm': 'dmelanogaster_gene_ensembl',
    'Dr': 'drerio_gene_ensembl',
}


def _lookup_table(annotation):
    """Normalize a DataFrame or mapping source to a symbol-indexed DataFrame."""
    if isinstance(annotation, pd.DataFrame):
        tab = annotation.copy()
        if 'SYMBOL' in tab.columns:
            tab = tab.set_index('SYMBOL', drop=False)
        else:
            tab['SYMBOL'] = tab.index.astype(str)
    else:
        records = {}
        for symbol, info in dict(annotation).items():
            if info is None:
                continue
            records[str(symbol)] = dict(info)
        tab = pd.DataFrame.from_dict(records, orient='index')
        tab['SYMBOL'] = tab.index.astype(str)
    tab.index = tab.index.astype(str)
    tab = tab[~tab.index.duplicated(keep='first')]
    for col in ANNOTATION_COLUMNS:
        if col not in tab.columns:
            tab[col] = None
    return tab


def lookup_annotation(symbols, annotation):
    """Resolve gene symbols against an annotation source.

    Parameters
    ----------
    symbols : sequence of str
        Gene symbols, in the order of the count matrix rows.
    annotation : DataFrame, mapping, or callable
        DataFrame indexed by symbol (or with a SYMBOL column) holding
        ENTREZID and GENENAME; a mapping of symbol to a dict of those fields;
        or a callable ``symbol -> dict | None``.

    Returns
    -------
    DataFrame with columns SYMBOL, ENTREZID, GENENAME, one row per input
    symbol in input order. Misses have null ENTREZID and GENENAME.
    """
    symbols = [str(s) for s in symbols]

    if callable(annotation) and not isinstance(annotation, (pd.DataFrame, dict)):
        rows = []
        for sym in symbols:
            info = annotation(sym)
            info = dict(info) if info is not None else {}
            rows.append({
                'SYMBOL': sym,
                'ENTREZID': info.get('ENTREZID'),
                'GENENAME': info.get('GENENAME'),
            })
        out = pd.DataFrame(rows, columns=list(ANNOTATION_COLUMNS))
    else:
        tab = _lookup_table(annotation)
        out = tab.reindex(symbols)[['ENTREZID', 'GENENAME']]
        out.insert(0, 'SYMBOL', symbols)

    out.index = symbols
    out = out.astype(object).where(pd.notna(out), None)
    return out


def annotate_genes(y, annotation, symbol_column=None):
    """Attach SYMBOL, ENTREZID and GENENAME annotation to a DGEList.

    Parameters
    ----------
    y : DGEList
    annotation : DataFrame, mapping, or callable
        See lookup_annotation().
    symbol_column : str, optional
        Column of y['genes'] holding gene symbols. Defaults to the gene
        identifiers (row names).

    Returns
    -------
    DGEList copy with annotation columns added to 'genes'.
    """
    out = y._copy()
    genes = out['genes'].copy()
    if symbol_column is None:
        symbols = list(genes.index)
    else:
        symbols = genes[symbol_column].astype(str).tolist()

    ann = lookup_annotation(symbols, annotation)
    for col in ANNOTATION_COLUMNS:
        genes[col] = ann[col].values

    n_miss = int(pd.isna(genes['GENENAME']).sum())
    if n_miss:
        warnings.warn(f"{n_miss} of {len(genes)} genes have no annotation match")
    out['genes'] = genes
    return out


def gene_class_mask(names, patterns=EXCLUDED_GENE_CLASSES):
    """Flag gene names containing any excluded class pattern.

    Matching is a case-insensitive substring test; null names never match.

    Returns
    -------
    ndarray of bool, True for genes to exclude.
    """
    names = pd.Series(list(names), dtype=object)
    hit = np.zeros(len(names), dtype=bool)
    notnull = names.notna().to_numpy()
    lowered = names[notnull].astype(str).str.lower()
    for pattern in patterns:
        hit[notnull] |= lowered.str.contains(str(pattern).lower(), regex=False).to_numpy()
    return hit


def exclude_gene_classes(y, patterns=EXCLUDED_GENE_CLASSES, name_column='GENENAME'):
    """Remove genes whose annotated name matches an excluded class.

    Returns
    -------
    DGEList without the matching genes; the order of the remaining genes is
    preserved.
    """
    genes = y.get('genes')
    if genes is None or name_column not in genes.columns:
        raise ValueError(f"genes table has no '{name_column}' column; run annotate_genes first")
    drop = gene_class_mask(genes[name_column], patterns=patterns)
    return y[~drop, :]


def fetch_annotation_biomart(species='Mm', host='http://www.ensembl.org'):
    """Fetch a symbol annotation table from Ensembl BioMart.

    Requires the ``pybiomart`` package.

    Returns
    -------
    DataFrame indexed by SYMBOL with columns SYMBOL, ENTREZID, GENENAME.
    """
    try:
        from pybiomart import Server
    except ImportError:
        raise ImportError(
            "pybiomart package required to fetch annotation from Ensembl. "
            "Install with: pip install pybiomart\n"
            "Alternatively, pass a DataFrame with columns SYMBOL, ENTREZID, GENENAME."
        )

    dataset_name = _BIOMART_DATASETS.get(species)
    if dataset_name is None:
        raise ValueError(
            f"Unknown species code '{species}'. Known: {list(_BIOMART_DATASETS)}"
        )

    server = Server(host=host)
    dataset = server.marts['ENSEMBL_MART_ENSEMBL'].datasets[dataset_name]
    result = dataset.query(attributes=[
        'external_gene_name',
        'entrezgene_id',
        'description',
    ])
    result.columns = ['SYMBOL', 'ENTREZID', 'GENENAME']
    result = result.dropna(subset=['SYMBOL'])
    # Strip the "[Source:...]" suffix Ensembl appends to descriptions
    result['GENENAME'] = result['GENENAME'].str.replace(r'\s*\[Source:.*\]$', '', regex=True)
    entrez = result['ENTREZID'].astype('Int64')
    result['ENTREZID'] = entrez.astype(str).astype(object).where(entrez.notna(), None)
    result = result.drop_duplicates(subset=['SYMBOL'], keep='first')
    return result.set_index('SYMBOL', drop=False)
