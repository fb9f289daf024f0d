"""Edge transports and transport selection."""

import logging
from typing import Optional

from .base import EdgeMessage, EdgeTransport, MessageHandler
from .tcp_transport import TCPTransport, encode_message
from .local_transport import LocalHub, LocalTransport, get_default_hub
from ..config import NetworkConfig
from ..core.exceptions import UnsupportedError
from ..core.types import ConnectType, EdgeEndpointConfig

logger = logging.getLogger(__name__)


def create_transport(endpoint: EdgeEndpointConfig, config: Optional[NetworkConfig] = None) -> EdgeTransport:
    """
    Select a transport implementation for the endpoint's connect type.

    Raises:
        UnsupportedError: For connect types without a built-in transport
    """
    if endpoint.connect_type == ConnectType.TCP:
        return TCPTransport(endpoint, config)
    if endpoint.connect_type == ConnectType.LOCAL:
        return LocalTransport(endpoint, config)

    logger.error(f"Connect type '{endpoint.connect_type.value}' is not supported")
    raise UnsupportedError(
        f"Unsupported connect type: {endpoint.connect_type.value}",
        context={'supported': 'tcp, local'},
    )


__all__ = [
    'EdgeMessage',
    'EdgeTransport',
    'MessageHandler',
    'TCPTransport',
    'encode_message',
    'LocalHub',
    'LocalTransport',
    'get_default_hub',
    'create_transport',
]
