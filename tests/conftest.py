"""
Pytest configuration and shared fixtures.

Provides:
- A fresh global configuration per test (no grace period, short timeouts)
- FakeTransport: records outbound messages, injects inbound ones
- EventRecorder: thread-safe observer for offloading events
- Writable roots for sender/receiver nodes
"""

import logging
import sys
import threading
from pathlib import Path
from typing import List, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from edgeml.config import EdgeMLConfig, set_config
from edgeml.core.exceptions import NetworkError
from edgeml.core.types import ConnectType, EdgeEndpointConfig, NodeType
from edgeml.transport import EdgeMessage, EdgeTransport, LocalHub


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def pytest_configure(config):
    """Register markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests that run two nodes end to end"
    )
    config.addinivalue_line(
        "markers", "network: marks tests that open loopback sockets"
    )


class FakeTransport(EdgeTransport):
    """In-memory transport: ``sent`` collects outbound messages, ``inject`` delivers inbound ones."""

    def __init__(self, endpoint=None, config=None):
        super().__init__(endpoint or EdgeEndpointConfig(
            connect_type=ConnectType.LOCAL,
            node_type=NodeType.QUERY_SERVER,
        ), config)
        self.sent: List[EdgeMessage] = []
        self.started = False
        self.connected = False
        self.stopped = False
        self.fail_connect = False

    @property
    def name(self) -> str:
        return "FAKE"

    def start(self) -> None:
        self.started = True
        self._running = True

    def connect(self) -> None:
        if self.fail_connect:
            raise NetworkError("connection refused")
        self.connected = True

    def send(self, message: EdgeMessage) -> None:
        if not self._running:
            raise NetworkError("fake transport is not running")
        self.sent.append(message)

    def stop(self) -> None:
        self.stopped = True
        self._running = False

    def inject(self, metadata, *buffers: bytes) -> None:
        """Deliver an inbound message synchronously on the calling thread."""
        self._deliver(EdgeMessage(metadata=dict(metadata), buffers=list(buffers), source="fake-peer"))


class EventRecorder:
    """Observer that records (event, info) pairs and lets tests wait for them."""

    def __init__(self):
        self.events: List[Tuple] = []
        self._cond = threading.Condition()

    def __call__(self, event, info) -> None:
        with self._cond:
            self.events.append((event, info))
            self._cond.notify_all()

    def of(self, event) -> list:
        with self._cond:
            return [info for ev, info in self.events if ev == event]

    def wait_for(self, event, count: int = 1, timeout: float = 5.0) -> list:
        with self._cond:
            self._cond.wait_for(
                lambda: len([1 for ev, _ in self.events if ev == event]) >= count,
                timeout,
            )
            return [info for ev, info in self.events if ev == event]


@pytest.fixture(autouse=True)
def edgeml_config():
    """Isolated global configuration for every test."""
    config = EdgeMLConfig()
    config.network.close_grace_period = 0.0
    config.network.connection_timeout = 2.0
    config.training.completion_timeout = 2.0
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def local_hub():
    return LocalHub()


@pytest.fixture
def sender_root(tmp_path):
    root = tmp_path / "sender"
    root.mkdir()
    return root


@pytest.fixture
def receiver_root(tmp_path):
    root = tmp_path / "receiver"
    root.mkdir()
    return root
