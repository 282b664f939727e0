"""
Tests for configuration management.
"""

import pytest
import yaml

from cwlogviewer.config.config import Config, TailConfig
from cwlogviewer.config.settings import Settings


class TestConfig:
    """Test cases for Config."""

    def test_defaults(self):
        """Test the default configuration values."""
        config = Config()

        assert config.fetch.page_size == Settings.DEFAULT_PAGE_SIZE
        assert config.tail.poll_interval == 5.0
        assert config.tail.dedup_window == 15.0
        assert config.export.format == 'logfile'
        assert config.validate() == []

    def test_from_dict_ignores_unknown_keys(self):
        """Test that unknown sections and options are ignored."""
        config = Config.from_dict({
            'aws': {'profile': 'dev', 'region': 'eu-west-1', 'colour': 'blue'},
            'tail': {'poll_interval': 2},
            'plugins': {'enabled': True},
        })

        assert config.aws.profile == 'dev'
        assert config.aws.region == 'eu-west-1'
        assert config.tail.poll_interval == 2
        assert config.fetch.page_size == Settings.DEFAULT_PAGE_SIZE

    def test_save_and_load(self, tmp_path):
        """Test that a saved configuration loads back unchanged."""
        path = tmp_path / 'nested' / 'config.yaml'
        config = Config()
        config.aws.profile = 'prod'
        config.export.format = 'json-lines'

        config.save(path)
        loaded = Config.load(path)

        assert loaded.aws.profile == 'prod'
        assert loaded.export.format == 'json-lines'
        assert yaml.safe_load(path.read_text())['fetch']['page_size'] == Settings.DEFAULT_PAGE_SIZE

    def test_load_empty_file(self, tmp_path):
        """Test that an empty file yields the defaults."""
        path = tmp_path / 'empty.yaml'
        path.write_text('')

        assert Config.load(path).to_dict() == Config().to_dict()

    def test_load_from_environment_path(self, tmp_path, monkeypatch):
        """Test that CWLOGVIEWER_CONFIG points at the configuration file."""
        path = tmp_path / 'env.yaml'
        path.write_text(yaml.dump({'display': {'theme': 'textual-dark'}}))
        monkeypatch.setenv('CWLOGVIEWER_CONFIG', str(path))

        assert Config.load().display.theme == 'textual-dark'

    def test_environment_overrides(self, monkeypatch):
        """Test that environment variables override defaults with the right types."""
        monkeypatch.setenv('CWLOGVIEWER_REGION', 'ap-southeast-2')
        monkeypatch.setenv('CWLOGVIEWER_PAGE_SIZE', '250')
        monkeypatch.setenv('CWLOGVIEWER_POLL_INTERVAL', '1.5')

        config = Config()

        assert config.aws.region == 'ap-southeast-2'
        assert config.fetch.page_size == 250
        assert config.tail.poll_interval == 1.5
        assert 'aws.region' in config.get_env_overrides()

    def test_cli_overrides(self):
        """Test that CLI options take precedence."""
        config = Config()
        config.apply_cli_overrides({'profile': 'ops', 'region': None, 'poll_interval': 0.5,
                                    'format': 'json-lines'})

        assert config.aws.profile == 'ops'
        assert config.aws.region is None
        assert config.tail.poll_interval == 0.5
        assert config.export.format == 'json-lines'

    def test_set_and_get_option(self):
        """Test dotted option access with string conversion."""
        config = Config()
        config.set_option('fetch.page_size', '500')
        config.set_option('retry.base_delay', '0.25')

        assert config.get_option('fetch.page_size') == 500
        assert config.get_option('retry.base_delay') == 0.25

    @pytest.mark.parametrize('key', ['page_size', 'fetch.unknown', 'nowhere.page_size', 'a.b.c'])
    def test_unknown_option(self, key):
        """Test that unknown keys raise KeyError."""
        with pytest.raises(KeyError):
            Config().get_option(key)

    def test_invalid_value(self):
        """Test that unconvertible values raise ValueError."""
        with pytest.raises(ValueError):
            Config().set_option('fetch.page_size', 'lots')

    def test_validate_reports_problems(self):
        """Test that validation lists each problem."""
        config = Config()
        config.fetch.page_size = 0
        config.tail.poll_interval = 0
        config.export.format = 'csv'
        config.logging.level = 'CHATTY'

        errors = config.validate()

        assert len(errors) == 4
        assert any('page size' in error for error in errors)
        assert any('csv' in error for error in errors)


class TestTailConfig:
    """Test cases for TailConfig."""

    def test_dedup_window_follows_poll_interval(self):
        """Test that the dedup horizon scales with the poll interval."""
        assert TailConfig(poll_interval=2.0).dedup_window == 6.0
        assert TailConfig(poll_interval=2.0, dedup_window_multiplier=5).dedup_window == 10.0
