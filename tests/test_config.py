"""
Tests for configuration loading (defaults, YAML, environment) and logging setup.
"""
import logging
import logging.handlers

import yaml

from edgeml.config import (
    EdgeMLConfig,
    LogLevel,
    LoggingConfig,
    NetworkConfig,
    TrainingConfig,
    get_config,
    load_config,
    set_config,
)
from edgeml.logging_utils import configure_logging


class TestDefaults:
    """Built-in defaults."""

    def test_network_defaults(self):
        config = NetworkConfig()
        assert config.connection_timeout == 5.0
        assert config.send_timeout == 30.0
        assert config.close_grace_period == 0.1
        assert config.max_message_size == 256 * 1024 * 1024

    def test_training_defaults(self):
        config = TrainingConfig()
        assert config.completion_timeout == 10.0
        assert config.sender_placeholder == "@APP_RW_PATH@"
        assert config.receiver_placeholder == "@REMOTE_APP_RW_PATH@"


class TestEnvironment:
    """EDGEML_* overrides."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv('EDGEML_COMPLETION_TIMEOUT', '2.5')
        monkeypatch.setenv('EDGEML_CLOSE_GRACE_PERIOD', '0')
        monkeypatch.setenv('EDGEML_LOG_LEVEL', 'DEBUG')

        config = load_config()

        assert config.training.completion_timeout == 2.5
        assert config.network.close_grace_period == 0.0
        assert config.logging.level == LogLevel.DEBUG

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "edgeml.yaml"
        path.write_text(yaml.dump({'network': {'send_timeout': 12.0, 'listen_backlog': 4}}))
        monkeypatch.setenv('EDGEML_SEND_TIMEOUT', '7')

        config = load_config(str(path))

        assert config.network.send_timeout == 7.0
        assert config.network.listen_backlog == 4
        assert config.config_file == str(path)


class TestYaml:
    """YAML files."""

    def test_save_and_load(self, tmp_path):
        config = EdgeMLConfig()
        config.training.completion_timeout = 3.0
        config.training.receiver_placeholder = "@RECEIVER@"
        config.logging.level = LogLevel.WARNING
        path = tmp_path / "saved.yaml"

        config.save(str(path))
        loaded = load_config(str(path))

        assert loaded.training.completion_timeout == 3.0
        assert loaded.training.receiver_placeholder == "@RECEIVER@"
        assert loaded.logging.level == LogLevel.WARNING

    def test_invalid_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text(yaml.dump({'network': {'no_such_option': 1}}))

        config = load_config(str(path))

        assert config.network.connection_timeout == 5.0
        assert config.config_file is None

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(str(tmp_path / "absent.yaml"))
        assert config.fetch.timeout == 30.0


def test_global_config_is_cached(monkeypatch):
    monkeypatch.delenv('EDGEML_CONFIG_FILE', raising=False)
    set_config(None)

    assert get_config() is get_config()

    custom = EdgeMLConfig(debug_mode=True)
    set_config(custom)
    assert get_config() is custom


class TestConfigureLogging:
    """Handlers installed on the edgeml logger."""

    def test_file_handler_and_no_duplicates(self, tmp_path):
        log_file = tmp_path / "edgeml.log"
        config = LoggingConfig(level=LogLevel.DEBUG, file_path=str(log_file))
        logger = logging.getLogger("edgeml")
        before = list(logger.handlers)

        try:
            configure_logging(config)
            configure_logging(config)

            added = [h for h in logger.handlers if h not in before]
            assert len(added) == 2
            assert any(isinstance(h, logging.handlers.RotatingFileHandler) for h in added)
            assert logger.level == logging.DEBUG

            logging.getLogger("edgeml.test").debug("hello file")
            for handler in added:
                handler.flush()
            assert "hello file" in log_file.read_text()
        finally:
            for handler in list(logger.handlers):
                if handler not in before:
                    logger.removeHandler(handler)
                    handler.close()
            logger.setLevel(logging.NOTSET)
