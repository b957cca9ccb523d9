"""
Tests for configuration loading.
"""

import yaml

from photoindex.config import (
    get_config_value, get_default_config, load_config, save_config, update_config_value
)


class TestLoadConfig:
    """YAML loading merged over defaults."""

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_config(tmp_path / 'missing.yaml') == get_default_config()

    def test_defaults(self):
        config = get_default_config()
        assert config['similarity']['perceptual_threshold'] == 50
        assert config['search']['limit'] == 20
        assert config['trash']['max_age_days'] == 30
        assert config['trash']['max_size_bytes'] == 1024 ** 3

    def test_partial_file_is_merged(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text(yaml.safe_dump({'similarity': {'perceptual_threshold': 12}}))
        config = load_config(path)
        assert config['similarity']['perceptual_threshold'] == 12
        assert config['similarity']['hash_size'] == 16
        assert config['trash']['max_age_days'] == 30

    def test_environment_expansion(self, tmp_path, monkeypatch):
        monkeypatch.setenv('PHOTOINDEX_TEST_DB', 'sqlite:///tmp/x.db')
        path = tmp_path / 'config.yaml'
        path.write_text("database:\n  url: ${PHOTOINDEX_TEST_DB}\n  other: ${PHOTOINDEX_UNSET_VAR}\n")
        config = load_config(path)
        assert config['database']['url'] == 'sqlite:///tmp/x.db'
        assert config['database']['other'] == '${PHOTOINDEX_UNSET_VAR}'

    def test_env_var_selects_file(self, tmp_path, monkeypatch):
        path = tmp_path / 'env.yaml'
        path.write_text("search:\n  limit: 3\n")
        monkeypatch.setenv('PHOTOINDEX_CONFIG', str(path))
        assert load_config()['search']['limit'] == 3

    def test_invalid_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / 'bad.yaml'
        path.write_text("similarity: [unclosed\n")
        assert load_config(path) == get_default_config()

    def test_save_and_reload(self, tmp_path):
        config = get_default_config()
        config['search']['model_name'] = 'clip-vit'
        path = tmp_path / 'nested' / 'saved.yaml'
        assert save_config(config, path)
        assert load_config(path)['search']['model_name'] == 'clip-vit'


class TestDottedAccess:
    """get_config_value / update_config_value."""

    def test_get(self):
        config = get_default_config()
        assert get_config_value(config, 'trash.max_age_days') == 30
        assert get_config_value(config, 'trash.nope', 'fallback') == 'fallback'
        assert get_config_value(config, 'search.limit.deeper') is None

    def test_update_creates_sections(self):
        config = {}
        update_config_value(config, 'a.b.c', 1)
        assert config == {'a': {'b': {'c': 1}}}
