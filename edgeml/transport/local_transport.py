"""
In-process edge transport.

Pairs transports living in the same process through a ``LocalHub``: a
server-like transport registers a channel (its topic, or host:port when no
topic is set), and a client-like transport connects to the channel named by
its topic or dest_host:dest_port. Messages are handed to the receiver's own
delivery thread, so handlers never run on the sender's thread.
"""

import logging
import queue
import threading
from typing import Dict, List, Optional

from .base import EdgeMessage, EdgeTransport
from ..core.exceptions import InternalError, NetworkError

logger = logging.getLogger(__name__)

_STOP = object()


class LocalHub:
    """Channel name -> listening transport."""

    def __init__(self):
        self._listeners: Dict[str, 'LocalTransport'] = {}
        self._lock = threading.Lock()

    def register(self, channel: str, transport: 'LocalTransport') -> None:
        with self._lock:
            if channel in self._listeners:
                raise NetworkError(f"Channel '{channel}' is already in use", context={'channel': channel})
            self._listeners[channel] = transport

    def unregister(self, channel: str, transport: 'LocalTransport') -> None:
        with self._lock:
            if self._listeners.get(channel) is transport:
                del self._listeners[channel]

    def lookup(self, channel: str) -> Optional['LocalTransport']:
        with self._lock:
            return self._listeners.get(channel)


_default_hub = LocalHub()


def get_default_hub() -> LocalHub:
    return _default_hub


class LocalTransport(EdgeTransport):
    """Queue-backed transport for nodes sharing one process."""

    @property
    def name(self) -> str:
        return "LOCAL"

    def __init__(self, endpoint, config=None, hub: Optional[LocalHub] = None):
        super().__init__(endpoint, config)
        self.hub = hub or _default_hub
        self._channel: Optional[str] = None
        self._peers: List['LocalTransport'] = []
        self._peers_lock = threading.Lock()
        self._inbox: "queue.Queue" = queue.Queue()
        self._worker: Optional[threading.Thread] = None

    @property
    def channel(self) -> Optional[str]:
        return self._channel

    def start(self) -> None:
        if self._running:
            return

        if not self.endpoint.node_type.is_client:
            channel = self.endpoint.topic or self.endpoint.address
            self.hub.register(channel, self)
            self._channel = channel

        self._running = True
        self._worker = threading.Thread(target=self._delivery_loop, name="edgeml-local-delivery", daemon=True)
        self._worker.start()
        logger.info(f"Local transport started ({self.endpoint.node_type.value}, channel={self._channel})")

    def connect(self) -> None:
        if not self._running:
            raise InternalError("Local transport is not started")

        channel = self.endpoint.topic or self.endpoint.dest_address
        server = self.hub.lookup(channel)
        if server is None or not server.is_running:
            raise NetworkError(f"No local listener on channel '{channel}'", context={'channel': channel})

        self._add_peer(server)
        server._add_peer(self)
        logger.info(f"✅ Connected to local channel '{channel}'")

    def send(self, message: EdgeMessage) -> None:
        if not self._running:
            raise NetworkError("Local transport is not running")

        with self._peers_lock:
            peers = list(self._peers)
        if not peers:
            raise NetworkError(
                "No connected peer to send to",
                context={'node_type': self.endpoint.node_type.value},
            )

        for peer in peers:
            peer._enqueue(EdgeMessage(
                metadata=dict(message.metadata),
                buffers=[bytes(buf) for buf in message.buffers],
                source=self._channel or self.endpoint.address,
            ))

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False

        if self._channel is not None:
            self.hub.unregister(self._channel, self)

        with self._peers_lock:
            peers = list(self._peers)
            self._peers.clear()
        for peer in peers:
            peer._remove_peer(self)

        self._inbox.put(_STOP)
        if self._worker is not None and self._worker is not threading.current_thread():
            self._worker.join(timeout=self.config.connection_timeout)
        self._worker = None
        logger.info("Local transport stopped")

    def _add_peer(self, peer: 'LocalTransport') -> None:
        with self._peers_lock:
            if peer not in self._peers:
                self._peers.append(peer)

    def _remove_peer(self, peer: 'LocalTransport') -> None:
        with self._peers_lock:
            if peer in self._peers:
                self._peers.remove(peer)

    def _enqueue(self, message: EdgeMessage) -> None:
        if not self._running:
            raise NetworkError("Peer transport is not running")
        self._inbox.put(message)

    def _delivery_loop(self) -> None:
        while True:
            item = self._inbox.get()
            if item is _STOP:
                break
            self._deliver(item)
