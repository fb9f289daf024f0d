"""
edgeml: edge offloading and training coordination.

One node hands models, pipeline descriptions or computed replies to another
over a pluggable edge transport. Training mode builds on it: a sender ships
its training data and the receiver's pipeline, the receiver launches
training once everything has arrived and can hand trained artifacts back.

USAGE:
======

  import edgeml

  receiver = edgeml.OffloadingService.from_config_file("receiver.json")
  receiver.set_event_callback(lambda event, info: print(event, info.path))
  receiver.start()          # training mode: waits for the sender's data
  ...
  receiver.destroy()

CONFIGURATION:
==============

Timeouts, placeholders and logging come from ``edgeml.config``
(YAML file via EDGEML_CONFIG_FILE, EDGEML_* environment overrides).
"""

import logging

__version__ = "0.1.0"

from .config import EdgeMLConfig, get_config, load_config, set_config
from .core import (
    CompletionTimeoutError,
    ConfigurationError,
    ConnectType,
    EdgeEndpointConfig,
    EdgeMLException,
    EventInfo,
    InternalError,
    InvalidParameterError,
    NetworkError,
    NodeType,
    OffloadingMode,
    OffloadingState,
    OutOfResourcesError,
    PermissionDeniedError,
    ServiceDescriptor,
    ServiceEvent,
    ServiceNotFoundError,
    ServiceRegistry,
    ServiceType,
    TransferIOError,
    TransportException,
    UnsupportedError,
)
from .logging_utils import configure_logging
from .runtime import (
    CompletionDetector,
    EdgeSession,
    Installer,
    LocalModelStore,
    LocalPipelineEngine,
    LocalPipelineStore,
    OffloadingService,
    TrainingOffloading,
    UriResolver,
)
from .transport import EdgeMessage, EdgeTransport, LocalTransport, TCPTransport, create_transport

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    '__version__',
    # Configuration
    'EdgeMLConfig',
    'get_config',
    'load_config',
    'set_config',
    'configure_logging',
    # Services
    'OffloadingService',
    'TrainingOffloading',
    'CompletionDetector',
    'EdgeSession',
    'Installer',
    'UriResolver',
    'LocalModelStore',
    'LocalPipelineStore',
    'LocalPipelineEngine',
    # Transports
    'EdgeMessage',
    'EdgeTransport',
    'TCPTransport',
    'LocalTransport',
    'create_transport',
    # Types
    'ServiceType',
    'ServiceDescriptor',
    'ServiceRegistry',
    'ServiceEvent',
    'EventInfo',
    'EdgeEndpointConfig',
    'ConnectType',
    'NodeType',
    'OffloadingMode',
    'OffloadingState',
    # Errors
    'EdgeMLException',
    'InvalidParameterError',
    'ServiceNotFoundError',
    'PermissionDeniedError',
    'UnsupportedError',
    'ConfigurationError',
    'OutOfResourcesError',
    'TransferIOError',
    'CompletionTimeoutError',
    'InternalError',
    'TransportException',
    'NetworkError',
]
