"""
Transport abstraction. All edge transports (TCP, in-process) implement this.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..config import NetworkConfig, get_config
from ..core.types import EdgeEndpointConfig

logger = logging.getLogger(__name__)


@dataclass
class EdgeMessage:
    """One delivered message: string metadata plus one or more binary buffers."""
    metadata: Dict[str, str] = field(default_factory=dict)
    buffers: List[bytes] = field(default_factory=list)
    source: Optional[str] = None

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.metadata.get(key, default)

    @property
    def payload(self) -> bytes:
        """First buffer (models, pipelines and replies are single-buffer)."""
        return self.buffers[0] if self.buffers else b""


MessageHandler = Callable[[EdgeMessage], None]


class EdgeTransport(ABC):
    """Abstract base for all edge transports."""

    def __init__(self, endpoint: EdgeEndpointConfig, config: Optional[NetworkConfig] = None):
        self.endpoint = endpoint
        self.config = config or get_config().network
        self._handler: Optional[MessageHandler] = None
        self._running = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Transport name (for logging)."""
        pass

    @abstractmethod
    def start(self) -> None:
        """Start receiving (server-like roles begin listening here)."""
        pass

    @abstractmethod
    def connect(self) -> None:
        """Connect to the endpoint's destination (client-like roles)."""
        pass

    @abstractmethod
    def send(self, message: EdgeMessage) -> None:
        """Send one message. Raises NetworkError on failure."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop listening and join delivery threads. Idempotent."""
        pass

    @property
    def bound_port(self) -> Optional[int]:
        """Actual listening port, if the transport listens on one."""
        return None

    @property
    def is_running(self) -> bool:
        return self._running

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        """Register the inbound handler, invoked on the transport's delivery thread."""
        self._handler = handler

    def _deliver(self, message: EdgeMessage) -> None:
        handler = self._handler
        if handler is None:
            logger.warning(f"{self.name}: dropping message from {message.source}, no handler registered")
            return
        try:
            handler(message)
        except Exception as e:
            logger.error(f"{self.name}: error in message handler: {e}")
