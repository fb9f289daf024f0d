"""
TCP transport for edge offloading.

Uses length-prefixed framing over blocking sockets, one reader thread per
connection. Server-like roles listen on host:port; client-like roles connect
to dest_host:dest_port and receive replies on the same connection.

Protocol (one message):
    [4 bytes: metadata length (big-endian)]
    [N bytes: metadata (JSON object of strings)]
    [4 bytes: buffer count]
    per buffer:
        [8 bytes: buffer length]
        [N bytes: buffer data]
"""

import json
import logging
import socket
import struct
import threading
from typing import List, Optional

from .base import EdgeMessage, EdgeTransport
from ..core.exceptions import InternalError, NetworkError

logger = logging.getLogger(__name__)

_RECV_CHUNK = 1 << 20
_ACCEPT_POLL_INTERVAL = 0.2


def encode_message(message: EdgeMessage) -> List[bytes]:
    """Frame a message as a list of byte strings ready for sendall."""
    metadata_json = json.dumps(message.metadata).encode('utf-8')
    frames = [
        struct.pack('>I', len(metadata_json)),
        metadata_json,
        struct.pack('>I', len(message.buffers)),
    ]
    for buf in message.buffers:
        frames.append(struct.pack('>Q', len(buf)))
        frames.append(buf)
    return frames


class _PeerConnection:
    """A connected socket plus its reader thread."""

    def __init__(self, sock: socket.socket, address: str):
        self.sock = sock
        self.address = address
        self.send_lock = threading.Lock()
        self.thread: Optional[threading.Thread] = None
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Already disconnected
        self.sock.close()


class TCPTransport(EdgeTransport):
    """TCP edge transport with length-prefixed framing."""

    @property
    def name(self) -> str:
        return "TCP"

    def __init__(self, endpoint, config=None):
        super().__init__(endpoint, config)
        self._server_sock: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._peers: List[_PeerConnection] = []
        self._peers_lock = threading.Lock()
        self._bound_port: Optional[int] = None

    @property
    def bound_port(self) -> Optional[int]:
        return self._bound_port

    def start(self) -> None:
        """Start the transport; server-like roles bind and listen."""
        if self._running:
            return

        self._running = True
        if self.endpoint.node_type.is_client:
            logger.debug(f"TCP transport started as {self.endpoint.node_type.value}")
            return

        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.endpoint.host, self.endpoint.port))
            sock.listen(self.config.listen_backlog)
            sock.settimeout(_ACCEPT_POLL_INTERVAL)
        except OSError as e:
            self._running = False
            logger.error(f"❌ TCP transport failed to listen on {self.endpoint.address}: {e}")
            raise NetworkError(
                f"Failed to listen on {self.endpoint.address}: {e}",
                context={'host': self.endpoint.host, 'port': self.endpoint.port},
            ) from e

        self._server_sock = sock
        self._bound_port = sock.getsockname()[1]
        self._accept_thread = threading.Thread(
            target=self._accept_loop, name=f"edgeml-tcp-accept-{self._bound_port}", daemon=True
        )
        self._accept_thread.start()
        logger.info(f"✅ TCP transport listening on {self.endpoint.host}:{self._bound_port}")

    def connect(self) -> None:
        """Connect to dest_host:dest_port."""
        if not self._running:
            raise InternalError("TCP transport is not started")

        host, port = self.endpoint.dest_host, self.endpoint.dest_port
        try:
            sock = socket.create_connection((host, port), timeout=self.config.connection_timeout)
        except OSError as e:
            logger.error(f"❌ Connection to {host}:{port} failed: {e}")
            raise NetworkError(
                f"Failed to connect to {host}:{port}: {e}",
                context={'host': host, 'port': port},
            ) from e

        self._add_peer(sock, f"{host}:{port}")
        logger.info(f"✅ Connected to {host}:{port}")

    def send(self, message: EdgeMessage) -> None:
        """Send to the connected destination, or to every peer of a server."""
        if not self._running:
            raise NetworkError("TCP transport is not running")

        with self._peers_lock:
            peers = [peer for peer in self._peers if not peer.closed]

        if not peers:
            raise NetworkError(
                "No connected peer to send to",
                context={'node_type': self.endpoint.node_type.value},
            )

        frames = encode_message(message)
        total = sum(len(frame) for frame in frames)
        if total > self.config.max_message_size:
            raise NetworkError(
                f"Message too large: {total} bytes",
                context={'max_message_size': self.config.max_message_size},
            )

        for peer in peers:
            try:
                with peer.send_lock:
                    for frame in frames:
                        peer.sock.sendall(frame)
            except OSError as e:
                logger.error(f"❌ TCP send to {peer.address} failed: {e}")
                raise NetworkError(f"Failed to send to {peer.address}: {e}") from e
            logger.debug(f"TCP send complete: {total} bytes to {peer.address}")

    def stop(self) -> None:
        """Stop listening, close connections and join reader threads."""
        if not self._running:
            return
        self._running = False

        if self._server_sock is not None:
            self._server_sock.close()
            self._server_sock = None

        with self._peers_lock:
            peers = list(self._peers)
            self._peers.clear()

        for peer in peers:
            peer.close()

        current = threading.current_thread()
        threads = [self._accept_thread] + [peer.thread for peer in peers]
        for thread in threads:
            if thread is not None and thread is not current:
                thread.join(timeout=self.config.connection_timeout)

        self._accept_thread = None
        logger.info("TCP transport stopped")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _accept_loop(self) -> None:
        server_sock = self._server_sock
        while self._running and server_sock is not None:
            try:
                sock, addr = server_sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break  # Listening socket closed by stop()
            if not self._running:
                sock.close()
                break
            self._add_peer(sock, f"{addr[0]}:{addr[1]}")
            logger.debug(f"Client connected from {addr[0]}:{addr[1]}")

    def _add_peer(self, sock: socket.socket, address: str) -> None:
        # Bounds sendall; a recv timeout only wakes the reader to re-check state
        sock.settimeout(self.config.send_timeout)
        peer = _PeerConnection(sock, address)
        peer.thread = threading.Thread(
            target=self._read_loop, args=(peer,), name=f"edgeml-tcp-reader-{address}", daemon=True
        )
        with self._peers_lock:
            self._peers.append(peer)
        peer.thread.start()

    def _read_loop(self, peer: _PeerConnection) -> None:
        try:
            while self._running:
                message = self._read_message(peer)
                if message is None:
                    break
                self._deliver(message)
        except NetworkError as e:
            logger.error(f"Dropping connection to {peer.address}: {e}")
        except OSError as e:
            if self._running:
                logger.debug(f"Connection to {peer.address} failed: {e}")
        finally:
            peer.close()
            with self._peers_lock:
                if peer in self._peers:
                    self._peers.remove(peer)
            logger.debug(f"Connection closed by {peer.address}")

    def _read_message(self, peer: _PeerConnection) -> Optional[EdgeMessage]:
        header = self._recv_exact(peer.sock, 4)
        if header is None:
            return None
        metadata_len = struct.unpack('>I', header)[0]
        self._check_size(metadata_len)

        metadata_json = self._recv_exact(peer.sock, metadata_len)
        count_data = self._recv_exact(peer.sock, 4) if metadata_json is not None else None
        if count_data is None:
            return None

        try:
            metadata = json.loads(metadata_json.decode('utf-8'))
        except ValueError as e:
            raise NetworkError(f"Malformed metadata from {peer.address}: {e}") from e
        if not isinstance(metadata, dict):
            raise NetworkError(f"Malformed metadata from {peer.address}: not an object")

        buffers = []
        total = metadata_len
        for _ in range(struct.unpack('>I', count_data)[0]):
            size_data = self._recv_exact(peer.sock, 8)
            if size_data is None:
                return None
            size = struct.unpack('>Q', size_data)[0]
            total += size
            self._check_size(total)
            data = self._recv_exact(peer.sock, size)
            if data is None:
                return None
            buffers.append(data)

        logger.debug(f"Received message ({len(buffers)} buffers, {total} bytes) from {peer.address}")
        return EdgeMessage(
            metadata={str(k): str(v) for k, v in metadata.items()},
            buffers=buffers,
            source=peer.address,
        )

    def _check_size(self, size: int) -> None:
        if size > self.config.max_message_size:
            raise NetworkError(
                f"Incoming message too large: {size} bytes",
                context={'max_message_size': self.config.max_message_size},
            )

    def _recv_exact(self, sock: socket.socket, size: int) -> Optional[bytes]:
        """Read exactly ``size`` bytes; None on EOF or shutdown."""
        chunks = []
        remaining = size
        while remaining > 0:
            try:
                chunk = sock.recv(min(remaining, _RECV_CHUNK))
            except socket.timeout:
                if not self._running:
                    return None
                continue
            if not chunk:
                return None
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)
