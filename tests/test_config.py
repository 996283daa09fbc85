"""
Tests for configuration loading.
"""

import json
from pathlib import Path

import pytest

from genstream.utils.config import ConfigLoader, GenstreamConfig, StreamSettings, load_config
from genstream.utils.errors import ConfigurationError


class TestDefaults:
    """Default values."""

    def test_defaults(self):
        config = GenstreamConfig()
        assert config.stream.encoding == "utf-8"
        assert config.stream.stall_threshold == 180.0
        assert config.stream.check_interval == 5.0
        assert config.stream.max_probe_failures == 2
        assert config.transport.ping_path == "/ping"
        assert config.logging.level == "INFO"

    def test_base_url_trailing_slash(self):
        config = GenstreamConfig(transport={"base_url": "https://host/api/"})
        assert config.transport.base_url == "https://host/api"

    def test_log_level_is_normalised(self):
        config = GenstreamConfig(logging={"level": "debug"})
        assert config.logging.level == "DEBUG"

    def test_invalid_encoding(self):
        with pytest.raises(ValueError):
            StreamSettings(encoding="no-such-codec")

    def test_threshold_must_be_positive(self):
        with pytest.raises(ValueError):
            StreamSettings(stall_threshold=0)

    def test_validate_assignment(self):
        config = GenstreamConfig()
        with pytest.raises(ValueError):
            config.logging = {"level": "LOUD"}


class TestConfigLoader:
    """File, dict and environment sources."""

    def test_yaml_file(self, config_dir):
        path = config_dir / "genstream.yaml"
        path.write_text("stream:\n  stall_threshold: 60\ntransport:\n  token: abc\n")

        loader = ConfigLoader(environ={})
        loader.add_source(path)
        config = loader.load()

        assert config.stream.stall_threshold == 60
        assert config.transport.token == "abc"
        assert loader.get_config() is config

    def test_json_and_toml_files(self, config_dir):
        json_path = config_dir / "a.json"
        json_path.write_text(json.dumps({"stream": {"chunk_size": 10}}))
        toml_path = config_dir / "b.toml"
        toml_path.write_text('[transport]\nbase_url = "https://toml/api"\n')

        loader = ConfigLoader(environ={})
        loader.add_source(json_path)
        loader.add_source(toml_path)
        config = loader.load()

        assert config.stream.chunk_size == 10
        assert config.transport.base_url == "https://toml/api"

    def test_env_file(self, config_dir):
        path = config_dir / "settings.env"
        path.write_text(
            "# comment\n"
            "GENSTREAM_STREAM__MAX_PROBE_FAILURES=4\n"
            "GENSTREAM_LOGGING__ENABLE_FILE=yes\n"
            'GENSTREAM_TRANSPORT__TOKEN="quoted"\n'
        )
        loader = ConfigLoader(environ={})
        loader.add_source(path)
        config = loader.load()

        assert config.stream.max_probe_failures == 4
        assert config.logging.enable_file is True
        assert config.transport.token == "quoted"

    def test_priority_order(self):
        loader = ConfigLoader(environ={})
        loader.add_source({"stream": {"chunk_size": 3}}, priority=50)
        loader.add_source({"stream": {"chunk_size": 1, "encoding": "latin-1"}}, priority=1)
        config = loader.load()

        assert config.stream.chunk_size == 3
        assert config.stream.encoding == "latin-1"

    def test_environment_wins(self):
        loader = ConfigLoader(environ={
            "GENSTREAM_STREAM__STALL_THRESHOLD": "30.5",
            "GENSTREAM_DEBUG": "true",
            "OTHER_VAR": "ignored",
        })
        loader.add_source({"stream": {"stall_threshold": 10}}, priority=100)
        config = loader.load()

        assert config.stream.stall_threshold == 30.5
        assert config.debug is True

    def test_home_path_expansion(self):
        loader = ConfigLoader(environ={"GENSTREAM_LOGGING__DIRECTORY": "~/genstream-logs"})
        config = loader.load()
        assert config.logging.directory == Path.home() / "genstream-logs"

    def test_missing_file_is_skipped(self, config_dir):
        loader = ConfigLoader(environ={})
        loader.add_source(config_dir / "absent.yaml")
        assert loader.load() == GenstreamConfig()

    def test_unknown_file_type(self, config_dir):
        loader = ConfigLoader(environ={})
        with pytest.raises(ConfigurationError):
            loader.add_source(config_dir / "config.ini")

    def test_unparseable_file(self, config_dir):
        path = config_dir / "broken.json"
        path.write_text("{not json")
        loader = ConfigLoader(environ={})
        loader.add_source(path)
        with pytest.raises(ConfigurationError):
            loader.load()

    def test_validation_error(self):
        loader = ConfigLoader(environ={})
        loader.add_source({"stream": {"check_interval": -1}})
        with pytest.raises(ConfigurationError) as exc_info:
            loader.load()
        assert "stream.check_interval" in exc_info.value.message

    def test_get_config_before_load(self):
        with pytest.raises(ConfigurationError):
            ConfigLoader(environ={}).get_config()


class TestLoadConfig:
    """Standard entry point."""

    def test_paths_and_extra(self, config_dir):
        path = config_dir / "genstream.yaml"
        path.write_text("transport:\n  token: from-file\n")

        config = load_config([path], {"transport": {"probe_timeout": 2}}, environ={})

        assert config.transport.token == "from-file"
        assert config.transport.probe_timeout == 2

    def test_extra_overrides_files(self, config_dir):
        path = config_dir / "genstream.json"
        path.write_text(json.dumps({"logging": {"level": "ERROR"}}))

        config = load_config([path], {"logging": {"level": "DEBUG"}}, environ={})

        assert config.logging.level == "DEBUG"
