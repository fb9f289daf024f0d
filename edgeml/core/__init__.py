"""Core types, errors and registries shared by the edgeml runtime."""

from .exceptions import (
    EdgeMLException,
    InvalidParameterError,
    ServiceNotFoundError,
    PermissionDeniedError,
    UnsupportedError,
    ConfigurationError,
    OutOfResourcesError,
    TransferIOError,
    CompletionTimeoutError,
    InternalError,
    TransportException,
    NetworkError,
)
from .types import (
    ServiceType,
    OffloadingMode,
    OffloadingState,
    TrainingRole,
    ConnectType,
    NodeType,
    EdgeEndpointConfig,
    ServiceDescriptor,
    parse_activate,
)
from .events import ServiceEvent, EventInfo, EventCallback
from .registry import ServiceRegistry
from .placeholders import (
    DEFAULT_SENDER_PLACEHOLDER,
    DEFAULT_RECEIVER_PLACEHOLDER,
    contains_placeholder,
    resolve_placeholder,
)

__all__ = [
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
    'ServiceType',
    'OffloadingMode',
    'OffloadingState',
    'TrainingRole',
    'ConnectType',
    'NodeType',
    'EdgeEndpointConfig',
    'ServiceDescriptor',
    'parse_activate',
    'ServiceEvent',
    'EventInfo',
    'EventCallback',
    'ServiceRegistry',
    'DEFAULT_SENDER_PLACEHOLDER',
    'DEFAULT_RECEIVER_PLACEHOLDER',
    'contains_placeholder',
    'resolve_placeholder',
]
