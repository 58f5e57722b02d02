import pandas as pd
import pytest

from mangrove_16s.metadata.samples import SampleMetadata, depth_group


def test_values_canonicalised():
    frame = pd.DataFrame(
        {'zone': ['fringe', 'BASIN', ' Impaired '], 'season': ['Dry', 'flood', 'FLOOD'],
         'depth': ['5', 20.0, 40]},
        index=['a', 'b', 'c'],
    )
    metadata = SampleMetadata(frame)
    df = metadata.frame
    assert df['zone'].tolist() == ['Fringe', 'Basin', 'Impaired']
    assert df['season'].tolist() == ['dry', 'flood', 'flood']
    assert df['depth'].tolist() == [5, 20, 40]
    assert df['depth_group'].tolist() == ['5', '20-40', '20-40']


def test_value_outside_domain_raises():
    frame = pd.DataFrame({'zone': ['Fringe', 'Estuary']}, index=['a', 'b'])
    with pytest.raises(ValueError, match="Estuary"):
        SampleMetadata(frame)


def test_depth_outside_domain_raises():
    with pytest.raises(ValueError):
        SampleMetadata(pd.DataFrame({'depth': [10]}, index=['a']))


def test_duplicate_sample_ids_raise():
    frame = pd.DataFrame({'zone': ['Fringe', 'Basin']}, index=['a', 'a'])
    with pytest.raises(ValueError, match="Duplicate"):
        SampleMetadata(frame)


def test_missing_values_allowed_and_excluded():
    frame = pd.DataFrame(
        {'zone': ['Fringe', None, 'Basin'], 'season': ['dry', 'dry', None],
         'depth': [5, 20, None]},
        index=['a', 'b', 'c'],
    )
    metadata = SampleMetadata(frame)
    assert metadata.complete_cases(['zone']) == ['a', 'c']
    assert metadata.complete_cases(['zone', 'season']) == ['a']
    assert pd.isna(metadata.row('c')['depth_group'])


def test_levels_follow_domain_order(metadata):
    assert metadata.levels('zone') == ['Fringe', 'Basin', 'Impaired']
    assert metadata.levels('depth') == [5, 20, 40]
    fringe_basin = [s for s in metadata.sample_ids if not s.startswith('I')]
    assert metadata.levels('zone', fringe_basin) == ['Fringe', 'Basin']


def test_frame_is_a_copy(metadata):
    df = metadata.frame
    df.loc[:, 'zone'] = 'Basin'
    assert metadata.levels('zone') == ['Fringe', 'Basin', 'Impaired']


def test_subset_preserves_order(metadata):
    ids = metadata.sample_ids[::-1][:4]
    assert metadata.subset(ids).sample_ids == ids


def test_unknown_column_raises(metadata):
    with pytest.raises(KeyError):
        metadata.complete_cases(['salinity'])


def test_depth_group():
    assert depth_group(5) == '5'
    assert depth_group(40) == '20-40'
    assert pd.isna(depth_group(None))


def test_from_tsv(tmp_path):
    path = tmp_path / 'sample-metadata.tsv'
    path.write_text(
        "#SampleID\tZone\tSeason\tDepth\n"
        "#q2:types\tcategorical\tcategorical\tnumeric\n"
        "S1\tFringe\tdry\t5\n"
        "S2\tImpaired\tflood\t40\n"
    )
    metadata = SampleMetadata.from_tsv(path)
    assert metadata.sample_ids == ['S1', 'S2']
    assert metadata.row('S2')['depth'] == 40
    assert metadata.row('S2')['depth_group'] == '20-40'


def test_from_tsv_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        SampleMetadata.from_tsv(tmp_path / 'missing.tsv')
