import pandas as pd

from mangrove_16s.utils.taxonomy import (
    clean_label, import_taxonomy_tsv, normalize_taxonomy, parse_taxstring
)


def test_clean_label():
    assert clean_label('p__Proteobacteria') == 'Proteobacteria'
    assert clean_label(' Chloroflexi ') == 'Chloroflexi'
    assert clean_label(None) == 'Unknown'
    assert clean_label(float('nan')) == 'Unknown'
    assert clean_label('g__') == 'Unknown'
    assert clean_label('unclassified') == 'Unknown'


def test_parse_prefixed_taxstring():
    parsed = parse_taxstring('d__Bacteria; p__Desulfobacterota; c__Desulfobacteria; g__Desulfosarcina')
    assert parsed['Kingdom'] == 'Bacteria'
    assert parsed['Phylum'] == 'Desulfobacterota'
    assert parsed['Class'] == 'Desulfobacteria'
    assert parsed['Order'] == 'Unknown'
    assert parsed['Genus'] == 'Desulfosarcina'
    assert parsed['Species'] == 'Unknown'


def test_parse_positional_taxstring():
    parsed = parse_taxstring('Bacteria;Chloroflexi;Anaerolineae')
    assert parsed['Kingdom'] == 'Bacteria'
    assert parsed['Class'] == 'Anaerolineae'
    assert parsed['Family'] == 'Unknown'


def test_normalize_qiime_export():
    df = pd.DataFrame({
        'Feature ID': ['asv1', 'asv2'],
        'Taxon': ['d__Bacteria; p__Chloroflexi', 'd__Archaea'],
        'Confidence': [0.99, 0.8],
    })
    taxonomy = normalize_taxonomy(df)
    assert taxonomy.index.tolist() == ['asv1', 'asv2']
    assert taxonomy.index.name == 'taxon'
    assert taxonomy.loc['asv2', 'Phylum'] == 'Unknown'
    assert taxonomy.loc['asv1', 'Phylum'] == 'Chloroflexi'


def test_normalize_dada2_columns():
    df = pd.DataFrame(
        {'domain': ['Bacteria'], 'phylum': ['Bacteroidota'], 'genus': [None]},
        index=['ACGT'],
    )
    taxonomy = normalize_taxonomy(df)
    assert taxonomy.loc['ACGT', 'Kingdom'] == 'Bacteria'
    assert taxonomy.loc['ACGT', 'Phylum'] == 'Bacteroidota'
    assert taxonomy.loc['ACGT', 'Genus'] == 'Unknown'


def test_import_taxonomy_tsv(tmp_path):
    path = tmp_path / 'taxonomy.tsv'
    path.write_text(
        "Feature ID\tTaxon\tConfidence\n"
        "asv1\td__Bacteria; p__Firmicutes; g__Bacillus\t0.9\n"
    )
    taxonomy = import_taxonomy_tsv(path)
    assert taxonomy.loc['asv1', 'Genus'] == 'Bacillus'
