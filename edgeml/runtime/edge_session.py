"""
Edge session: owns one transport for the lifetime of an offloading handle.

Outbound traffic goes through ``send``; inbound messages are handed to the
registered handler on the transport's delivery thread.
"""

import logging
import threading
import time
from typing import Any, Dict, Optional

from ..config import NetworkConfig, get_config
from ..core.exceptions import EdgeMLException, InternalError, NetworkError
from ..core.payload import to_buffers
from ..core.types import EdgeEndpointConfig
from ..transport import EdgeMessage, EdgeTransport, MessageHandler, create_transport

logger = logging.getLogger(__name__)


class EdgeSession:
    """
    A started edge transport plus its inbound handler.

    The transport is injected or created once with ``create_transport`` and
    reused until ``close``.
    """

    def __init__(self,
                 endpoint: EdgeEndpointConfig,
                 handler: Optional[MessageHandler] = None,
                 transport: Optional[EdgeTransport] = None,
                 config: Optional[NetworkConfig] = None):
        self.endpoint = endpoint
        self.config = config or get_config().network
        self._handler = handler
        self._transport = transport
        self._opened = threading.Event()
        self._closed = False

    @property
    def transport(self) -> Optional[EdgeTransport]:
        return self._transport

    @property
    def is_open(self) -> bool:
        return self._opened.is_set() and not self._closed

    @property
    def bound_port(self) -> Optional[int]:
        return self._transport.bound_port if self._transport is not None else None

    def open(self) -> 'EdgeSession':
        """
        Start the transport and, for client-like roles, connect to the destination.

        Raises:
            UnsupportedError: If the endpoint's connect type has no transport
            NetworkError: If listening or connecting fails
        """
        if self._closed:
            raise InternalError("Edge session is already closed")
        if self._opened.is_set():
            return self

        if self._transport is None:
            self._transport = create_transport(self.endpoint, self.config)

        self._transport.set_message_handler(self._on_message)
        try:
            self._transport.start()
            if self.endpoint.node_type.is_client:
                self._transport.connect()
        except EdgeMLException:
            self._transport.stop()
            raise
        except OSError as e:
            self._transport.stop()
            raise NetworkError(f"Failed to open edge session: {e}") from e

        self._opened.set()
        logger.info(
            f"Edge session opened ({self._transport.name}, {self.endpoint.node_type.value}, "
            f"{self.endpoint.host}:{self.bound_port or self.endpoint.port})"
        )
        return self

    def send(self, metadata: Dict[str, str], payload: Any) -> None:
        """
        Send one message: string metadata plus the payload's buffers.

        Raises:
            InternalError: If the session is not open
            InvalidParameterError: If the payload is empty or unsupported
            NetworkError: If the transport fails to send
        """
        if not self.is_open:
            raise InternalError("Edge session is not open")

        buffers = to_buffers(payload)
        message = EdgeMessage(metadata={str(k): str(v) for k, v in metadata.items()}, buffers=buffers)
        self._transport.send(message)
        logger.debug(f"Sent message {metadata} ({sum(len(b) for b in buffers)} bytes)")

    def close(self) -> None:
        """Stop the transport, then wait the configured grace period. Idempotent."""
        if self._closed:
            return
        self._closed = True

        if self._transport is not None:
            self._transport.stop()
            self._transport.set_message_handler(None)
        self._opened.clear()

        if self.config.close_grace_period > 0:
            time.sleep(self.config.close_grace_period)
        logger.info("Edge session closed")

    def _on_message(self, message: EdgeMessage) -> None:
        if self._closed:
            return
        # Messages racing open() are held until it returns
        if not self._opened.wait(timeout=self.config.connection_timeout):
            logger.warning(f"Dropping message from {message.source}: session never opened")
            return
        handler = self._handler
        if handler is not None and not self._closed:
            handler(message)

    def __enter__(self) -> 'EdgeSession':
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
