from pathlib import Path

import pytest
import yaml

from mangrove_16s import constants
from mangrove_16s.config import DEFAULT_CONFIG, Config, get_config, merge_config


def test_merge_config_is_recursive():
    merged = merge_config(DEFAULT_CONFIG, {'stats': {'permutations': 99}})
    assert merged['stats']['permutations'] == 99
    assert merged['stats']['alpha'] == constants.DEFAULT_ALPHA
    assert DEFAULT_CONFIG['stats']['permutations'] == constants.DEFAULT_PERMUTATIONS


def test_get_config_resolves_relative_paths(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump({
        'inputs': {'table': './data/table.tsv', 'taxonomy': '/abs/taxonomy.tsv'},
        'filtering': {'prevalence_threshold': 0.05},
    }))
    config = get_config(path)
    assert Path(config['inputs']['table']) == (tmp_path / 'data' / 'table.tsv').resolve()
    assert config['inputs']['taxonomy'] == '/abs/taxonomy.tsv'
    assert config['filtering']['prevalence_threshold'] == 0.05
    assert config['filtering']['rank'] == constants.DEFAULT_PREVALENCE_RANK


def test_get_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        get_config(tmp_path / 'absent.yaml')


def test_shipped_config_loads():
    config = get_config(constants.DEFAULT_CONFIG)
    assert config['stats']['factors'] == ['zone', 'season', 'depth_group']
    assert len(config['differential_abundance']['contrasts']) == 3


def test_config_accessors():
    config = Config({'stats': {'enabled': False, 'designs': None}})
    assert not config.is_enabled('stats')
    assert config.is_enabled('filtering')
    assert config.get_parameter('stats', 'designs', ['zone']) == ['zone']
    assert config.get_parameter('stats', 'permutations') == constants.DEFAULT_PERMUTATIONS
    assert not config.is_enabled('unknown_module')
