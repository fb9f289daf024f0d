"""
Centralized configuration for the edgeml offloading layer.

Supports loading from YAML files, environment variables, and defaults.
"""

from dataclasses import dataclass, field
from enum import Enum
import logging
import os
from typing import Optional, Dict, Any
import yaml

from .core.placeholders import DEFAULT_SENDER_PLACEHOLDER, DEFAULT_RECEIVER_PLACEHOLDER

logger = logging.getLogger(__name__)


class LogLevel(Enum):
    """Log levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class NetworkConfig:
    """Edge transport configuration."""
    # Connection settings
    connection_timeout: float = 5.0
    send_timeout: float = 30.0
    listen_backlog: int = 8

    # Time to wait after releasing a transport before its identity is reused
    close_grace_period: float = 0.1

    # Upper bound for one framed message (metadata + buffers)
    max_message_size: int = 256 * 1024 * 1024

    @classmethod
    def from_env(cls) -> 'NetworkConfig':
        """Load network config from environment variables."""
        return cls(
            connection_timeout=float(os.getenv('EDGEML_CONNECTION_TIMEOUT', 5.0)),
            send_timeout=float(os.getenv('EDGEML_SEND_TIMEOUT', 30.0)),
            listen_backlog=int(os.getenv('EDGEML_LISTEN_BACKLOG', 8)),
            close_grace_period=float(os.getenv('EDGEML_CLOSE_GRACE_PERIOD', 0.1)),
            max_message_size=int(os.getenv('EDGEML_MAX_MESSAGE_SIZE', 256 * 1024 * 1024)),
        )


@dataclass
class TrainingConfig:
    """Training offloading configuration."""
    # Receiver gives up waiting for the pipeline sentinel after this many seconds
    completion_timeout: float = 10.0

    # Writable-root placeholders used in transfer tables and pipeline templates
    sender_placeholder: str = DEFAULT_SENDER_PLACEHOLDER
    receiver_placeholder: str = DEFAULT_RECEIVER_PLACEHOLDER

    @classmethod
    def from_env(cls) -> 'TrainingConfig':
        """Load training config from environment variables."""
        return cls(
            completion_timeout=float(os.getenv('EDGEML_COMPLETION_TIMEOUT', 10.0)),
            sender_placeholder=os.getenv('EDGEML_SENDER_PLACEHOLDER', DEFAULT_SENDER_PLACEHOLDER),
            receiver_placeholder=os.getenv('EDGEML_RECEIVER_PLACEHOLDER', DEFAULT_RECEIVER_PLACEHOLDER),
        )


@dataclass
class FetchConfig:
    """URI fetch configuration."""
    timeout: float = 30.0
    follow_redirects: bool = True

    @classmethod
    def from_env(cls) -> 'FetchConfig':
        """Load fetch config from environment variables."""
        return cls(
            timeout=float(os.getenv('EDGEML_FETCH_TIMEOUT', 30.0)),
            follow_redirects=os.getenv('EDGEML_FETCH_FOLLOW_REDIRECTS', 'true').lower() == 'true',
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: LogLevel = LogLevel.INFO
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_file_size_mb: int = 100
    backup_count: int = 5

    @classmethod
    def from_env(cls) -> 'LoggingConfig':
        """Load logging config from environment variables."""
        return cls(
            level=LogLevel(os.getenv('EDGEML_LOG_LEVEL', 'info').lower()),
            format=os.getenv('EDGEML_LOG_FORMAT', "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            file_path=os.getenv('EDGEML_LOG_FILE'),
            max_file_size_mb=int(os.getenv('EDGEML_LOG_MAX_SIZE_MB', 100)),
            backup_count=int(os.getenv('EDGEML_LOG_BACKUP_COUNT', 5))
        )


@dataclass
class EdgeMLConfig:
    """Main configuration class."""
    network: NetworkConfig = field(default_factory=NetworkConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    debug_mode: bool = False
    config_file: Optional[str] = None

    @classmethod
    def load(cls, path: Optional[str] = None) -> 'EdgeMLConfig':
        """
        Load configuration from YAML file and/or environment variables.

        Environment variables that are set override values from the file.

        Args:
            path: Path to YAML config file (optional)

        Returns:
            EdgeMLConfig instance with loaded settings
        """
        config = cls()

        if path and os.path.exists(path):
            try:
                with open(path, 'r') as f:
                    yaml_data = yaml.safe_load(f)

                if yaml_data:
                    config = cls._from_dict(yaml_data)
                    config.config_file = path

            except (OSError, yaml.YAMLError, TypeError, ValueError) as e:
                logger.warning(f"Failed to load config from {path}: {e}; using defaults and environment variables")

        config._apply_env_overrides()
        return config

    def _apply_env_overrides(self) -> None:
        env_network = NetworkConfig.from_env()
        env_training = TrainingConfig.from_env()
        env_fetch = FetchConfig.from_env()
        env_logging = LoggingConfig.from_env()

        overrides = (
            (self.network, env_network, {
                'connection_timeout': 'EDGEML_CONNECTION_TIMEOUT',
                'send_timeout': 'EDGEML_SEND_TIMEOUT',
                'listen_backlog': 'EDGEML_LISTEN_BACKLOG',
                'close_grace_period': 'EDGEML_CLOSE_GRACE_PERIOD',
                'max_message_size': 'EDGEML_MAX_MESSAGE_SIZE',
            }),
            (self.training, env_training, {
                'completion_timeout': 'EDGEML_COMPLETION_TIMEOUT',
                'sender_placeholder': 'EDGEML_SENDER_PLACEHOLDER',
                'receiver_placeholder': 'EDGEML_RECEIVER_PLACEHOLDER',
            }),
            (self.fetch, env_fetch, {
                'timeout': 'EDGEML_FETCH_TIMEOUT',
                'follow_redirects': 'EDGEML_FETCH_FOLLOW_REDIRECTS',
            }),
            (self.logging, env_logging, {
                'level': 'EDGEML_LOG_LEVEL',
                'format': 'EDGEML_LOG_FORMAT',
                'file_path': 'EDGEML_LOG_FILE',
                'max_file_size_mb': 'EDGEML_LOG_MAX_SIZE_MB',
                'backup_count': 'EDGEML_LOG_BACKUP_COUNT',
            }),
        )
        for target, source, env_names in overrides:
            for attr, env_name in env_names.items():
                if os.getenv(env_name) is not None:
                    setattr(target, attr, getattr(source, attr))

        if os.getenv('EDGEML_DEBUG') is not None:
            self.debug_mode = os.getenv('EDGEML_DEBUG', 'false').lower() == 'true'

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> 'EdgeMLConfig':
        """Create config from dictionary (YAML data)."""
        logging_data = dict(data.get('logging', {}))
        if 'level' in logging_data:
            logging_data['level'] = LogLevel(str(logging_data['level']).lower())

        return cls(
            network=NetworkConfig(**data.get('network', {})),
            training=TrainingConfig(**data.get('training', {})),
            fetch=FetchConfig(**data.get('fetch', {})),
            logging=LoggingConfig(**logging_data),
            debug_mode=data.get('debug_mode', False)
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary for serialization."""
        return {
            'network': {
                'connection_timeout': self.network.connection_timeout,
                'send_timeout': self.network.send_timeout,
                'listen_backlog': self.network.listen_backlog,
                'close_grace_period': self.network.close_grace_period,
                'max_message_size': self.network.max_message_size,
            },
            'training': {
                'completion_timeout': self.training.completion_timeout,
                'sender_placeholder': self.training.sender_placeholder,
                'receiver_placeholder': self.training.receiver_placeholder,
            },
            'fetch': {
                'timeout': self.fetch.timeout,
                'follow_redirects': self.fetch.follow_redirects,
            },
            'logging': {
                'level': self.logging.level.value,
                'format': self.logging.format,
                'file_path': self.logging.file_path,
                'max_file_size_mb': self.logging.max_file_size_mb,
                'backup_count': self.logging.backup_count
            },
            'debug_mode': self.debug_mode
        }

    def save(self, path: str) -> None:
        """Save configuration to YAML file."""
        with open(path, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


# Global configuration instance
_config: Optional[EdgeMLConfig] = None


def get_config() -> EdgeMLConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = EdgeMLConfig.load(os.getenv('EDGEML_CONFIG_FILE'))
    return _config


def set_config(config: Optional[EdgeMLConfig]) -> None:
    """Set (or reset with None) the global configuration instance."""
    global _config
    _config = config


def load_config(path: Optional[str] = None) -> EdgeMLConfig:
    """Load configuration from file and/or environment."""
    return EdgeMLConfig.load(path)
