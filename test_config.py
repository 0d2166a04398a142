"""
Tests for YAML configuration loading.
"""
from pathlib import Path

import pytest
import yaml

from mbio_report import constants
from mbio_report.config import (
    AnalysisSettings, ReportConfig, config_from_dict, get_config, resolve_relative_paths
)


def _write(tmp_path: Path, config: dict) -> Path:
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump(config))
    return path


def test_defaults():
    settings = AnalysisSettings()
    assert settings.min_rel_abundance == 0.01
    assert settings.saturation_limit == 0.4
    assert settings.permutations == 999
    assert settings.terms == ('sex', 'score')


def test_get_config_resolves_relative_paths(tmp_path):
    path = _write(tmp_path, {
        'inputs': {'metadata': './meta.tsv', 'abundance': '../counts.biom'},
        'settings': {'permutations': 49, 'taxon_metrics': ['braycurtis']},
        'output_dir': './out',
    })
    config = get_config(path)
    assert isinstance(config, ReportConfig)
    assert config.inputs.metadata == (tmp_path / 'meta.tsv').resolve()
    assert config.inputs.abundance == (tmp_path.parent / 'counts.biom').resolve()
    assert config.inputs.imaging is None
    assert config.settings.permutations == 49
    assert config.settings.taxon_metrics == ('braycurtis',)
    assert config.output_dir == (tmp_path / 'out').resolve()
    assert config.log_dir == constants.DEFAULT_LOG_DIR


def test_config_is_immutable(tmp_path):
    config = get_config(_write(tmp_path, {'inputs': {'metadata': 'm', 'abundance': 'a'}}))
    with pytest.raises(AttributeError):
        config.settings.seed = 3


@pytest.mark.parametrize('config', [
    {'inputs': {'metadata': 'm', 'abundance': 'a'}, 'plots': {}},
    {'inputs': {'metadata': 'm', 'abundance': 'a'}, 'settings': {'n_permutations': 9}},
    {'inputs': {'metadata': 'm', 'abundance': 'a', 'pictures': 'p'}},
    {'settings': {}},
])
def test_unknown_or_missing_keys(config):
    with pytest.raises(ValueError):
        config_from_dict(config)


@pytest.mark.parametrize('settings', [
    {'permutations': 0},
    {'min_rel_abundance': 1.5},
    {'saturation_limit': 0},
    {'mantel_method': 'kendall'},
])
def test_invalid_settings(settings):
    with pytest.raises(ValueError):
        AnalysisSettings(**settings)


def test_resolve_relative_paths_recurses(tmp_path):
    resolved = resolve_relative_paths({'a': {'b': './x'}, 'c': 'plain'}, tmp_path)
    assert resolved['a']['b'] == str((tmp_path / 'x').resolve())
    assert resolved['c'] == 'plain'


def test_bundled_config_is_valid():
    config = get_config(constants.DEFAULT_CONFIG)
    assert config.settings == AnalysisSettings()
